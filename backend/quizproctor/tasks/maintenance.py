import logging

from ..core.async_task import AsyncTask
from ..core.celery_app import celery_app
from ..core.database import AsyncSessionLocal

logger = logging.getLogger(__name__)


async def _submit_overdue_internal(session_factory=AsyncSessionLocal, now=None):
    """Submit every in-progress session whose deadline and grace period have passed"""
    from ..services.session_service import QuizSessionService

    async with session_factory() as db:
        submitted = await QuizSessionService(db).submit_overdue_sessions(now=now)
    return {"submitted": submitted, "count": len(submitted)}


@celery_app.task(base=AsyncTask, name="submit_overdue_sessions")
async def submit_overdue_sessions():
    """Periodic sweep for sessions whose client never submitted (closed tab, lost device)"""
    try:
        return await _submit_overdue_internal()
    except Exception as exc:
        logger.error(f"Error in submit_overdue_sessions: {exc}", exc_info=True)
        raise
