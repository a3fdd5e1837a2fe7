"""
Timezone helpers.

All persisted timestamps are UTC; the display timezone only affects formatting.
"""
from datetime import datetime, timedelta
import pytz

from ..core.config import settings


def utc_now() -> datetime:
    """Current time as an aware UTC datetime"""
    return datetime.now(pytz.UTC)


def ensure_utc(dt: datetime) -> datetime:
    """Treat naive datetimes (as returned by SQLite) as UTC"""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=pytz.UTC)
    return dt.astimezone(pytz.UTC)


def to_epoch_ms(dt: datetime) -> int:
    return int(ensure_utc(dt).timestamp() * 1000)


def deadline_for(started_at: datetime, duration_seconds: int) -> datetime:
    """Absolute deadline; always derived from the two immutable session fields"""
    return ensure_utc(started_at) + timedelta(seconds=duration_seconds)


def format_local_time(dt: datetime, format_str: str = None) -> str:
    tz = pytz.timezone(settings.default_timezone)
    return ensure_utc(dt).astimezone(tz).strftime(format_str or settings.timezone_display_format)
