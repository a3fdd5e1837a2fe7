import logging

from sqlalchemy import select

from ..core.async_task import AsyncTask
from ..core.cache import cache
from ..core.celery_app import celery_app
from ..core.database import AsyncSessionLocal
from ..models.quiz_session import QuizSession
from ..utils.timezone import format_local_time, utc_now

logger = logging.getLogger(__name__)

NOTIFICATION_TTL = 86400 * 7
MAX_NOTIFICATIONS = 100


def classroom_notifications_key(classroom_id: str) -> str:
    return f"instructor_notifications:{classroom_id}"


async def _notify_flagged_internal(session_id: str, session_factory=AsyncSessionLocal):
    async with session_factory() as db:
        result = await db.execute(select(QuizSession).where(QuizSession.id == session_id))
        session = result.scalars().first()
        if not session:
            logger.warning(f"Flag notification skipped: session {session_id} not found")
            return {"status": "skipped", "reason": "session not found"}

        notification = {
            "type": "session_flagged",
            "session_id": session.id,
            "quiz_id": session.quiz_id,
            "student_id": session.student_id,
            "risk_score": session.risk_score,
            "reason": session.flag_reason,
            "violations": len(session.violations),
            "submitted_at": format_local_time(session.submitted_at) if session.submitted_at else None,
            "created_at": utc_now().isoformat(),
        }

    key = classroom_notifications_key(session.classroom_id)
    await cache.apush(key, notification, max_length=MAX_NOTIFICATIONS, ttl=NOTIFICATION_TTL)
    logger.info(f"Queued flag notification for session {session_id} in classroom {session.classroom_id}")
    return {"status": "sent", "notification": notification}


@celery_app.task(base=AsyncTask, bind=True, name="notify_session_flagged", max_retries=3)
async def notify_session_flagged(self, session_id: str):
    """Tell the classroom's instructors that a submitted session was flagged"""
    try:
        return await _notify_flagged_internal(session_id)
    except Exception as exc:
        logger.error(f"Failed to notify about flagged session {session_id}: {exc}")
        raise self.retry(exc=exc)
