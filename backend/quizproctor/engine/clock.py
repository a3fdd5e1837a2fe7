import asyncio
import logging
import math
from datetime import datetime
from typing import Awaitable, Callable, Optional

from ..core.config import settings
from ..utils.timezone import deadline_for, to_epoch_ms, utc_now
from .guard import OnceFlag, StopGuard

logger = logging.getLogger(__name__)


def remaining_ms(started_at: datetime, duration_seconds: int, now: datetime) -> int:
    """max(0, startedAt + duration*1000 - now), in milliseconds"""
    deadline = to_epoch_ms(started_at) + duration_seconds * 1000
    return max(0, deadline - to_epoch_ms(now))


class DeadlineClock:
    """Remaining-time source for one quiz session.

    Every tick recomputes the remaining time from the wall clock and the two
    immutable session fields, so sleeping tabs or slow ticks never drift.
    When the remaining time reaches zero ``on_expire`` is awaited once.
    """

    def __init__(
        self,
        started_at: datetime,
        duration_seconds: int,
        on_expire: Callable[[], Awaitable[None]],
        on_tick: Optional[Callable[[int], None]] = None,
        on_warning: Optional[Callable[[int], None]] = None,
        warning_threshold_seconds: Optional[int] = None,
        tick_seconds: Optional[float] = None,
        guard: Optional[StopGuard] = None,
        now: Callable[[], datetime] = utc_now,
    ):
        if duration_seconds <= 0:
            raise ValueError("duration_seconds must be positive")
        self.started_at = started_at
        self.duration_seconds = duration_seconds
        self.deadline = deadline_for(started_at, duration_seconds)
        self.warning_threshold_ms = 1000 * (
            settings.low_time_warning_seconds if warning_threshold_seconds is None else warning_threshold_seconds
        )
        self.tick_seconds = settings.clock_tick_seconds if tick_seconds is None else tick_seconds
        self._on_expire = on_expire
        self._on_tick = on_tick
        self._on_warning = on_warning
        self._guard = guard or StopGuard()
        self._now = now
        self._warned = OnceFlag()
        self._fired = OnceFlag()
        self._task: Optional[asyncio.Task] = None

    def remaining_ms(self) -> int:
        return remaining_ms(self.started_at, self.duration_seconds, self._now())

    @property
    def remaining_seconds(self) -> int:
        return math.ceil(self.remaining_ms() / 1000)

    @property
    def expired(self) -> bool:
        return self.remaining_ms() == 0

    @property
    def triggered(self) -> bool:
        return self._fired.is_set

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def tick(self) -> int:
        """Recompute the remaining time and fire warning/expiry callbacks"""
        if self._guard.stopped:
            return self.remaining_ms()

        remaining = self.remaining_ms()
        if self._on_tick:
            self._on_tick(remaining)

        if 0 < remaining <= self.warning_threshold_ms and self._warned.try_set():
            logger.info(f"Low time warning: {remaining // 1000}s remaining")
            if self._on_warning:
                self._on_warning(remaining)

        if remaining == 0 and self._fired.try_set():
            logger.info("Deadline reached, triggering submit")
            await self._on_expire()

        return remaining

    def rearm(self) -> None:
        """Allow expiry to fire again on a later tick (after a failed forced submit)"""
        self._fired.reset()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())

    async def _run(self) -> None:
        while not self._guard.stopped:
            try:
                await self.tick()
            except Exception as e:
                logger.error(f"Deadline clock tick failed: {e}", exc_info=True)
            await asyncio.sleep(self.tick_seconds)

    def stop(self) -> None:
        task, self._task = self._task, None
        # The expiry callback runs inside the clock task; it exits on the guard instead
        if task is not None and task is not asyncio.current_task():
            task.cancel()
