import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.cache import cache
from ..core.config import settings
from ..core.exceptions import StateConflict
from ..engine.review import review_workflow
from ..models.quiz_session import QuizSession
from ..schemas.session import (
    ReviewAck,
    ReviewDecisionCreate,
    ReviewQueueItem,
    ReviewQueuePage,
    SessionState,
)
from ..utils.timezone import utc_now
from .session_service import QuizSessionService, submission_cache_key

logger = logging.getLogger(__name__)

# Review queue filter -> stored states
STATUS_FILTERS = {
    "pending": [SessionState.SUBMITTED.value, SessionState.FLAGGED.value, SessionState.UNDER_REVIEW.value],
    "flagged": [SessionState.FLAGGED.value],
    "under_review": [SessionState.UNDER_REVIEW.value],
    "reviewed": [SessionState.REVIEWED.value],
    "all": [
        SessionState.SUBMITTED.value,
        SessionState.FLAGGED.value,
        SessionState.UNDER_REVIEW.value,
        SessionState.REVIEWED.value,
    ],
}

# risk level -> [lower, upper) bounds of risk_score
RISK_LEVEL_BOUNDS = {
    "low": (0, 40),
    "medium": (40, 70),
    "high": (70, 101),
}


class ReviewService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def _get_session(self, session_id: str) -> QuizSession:
        return await QuizSessionService(self.db).get_session(session_id)

    async def _write_if_unchanged(self, session: QuizSession, values: dict) -> None:
        """Apply ``values`` only while the row is still in the state that was checked"""
        result = await self.db.execute(
            update(QuizSession)
            .where(QuizSession.id == session.id, QuizSession.state == session.state)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            raise StateConflict(f"Session {session.id} changed state while it was being reviewed")
        await self.db.commit()
        await self.db.refresh(session)

    async def get_sessions_for_review(
        self,
        classroom_id: str,
        status: str = "pending",
        risk_level: Optional[str] = None,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> ReviewQueuePage:
        limit = limit or settings.review_page_size
        states = STATUS_FILTERS.get(status or "pending", STATUS_FILTERS["pending"])

        query = select(QuizSession).filter(
            QuizSession.classroom_id == classroom_id,
            QuizSession.state.in_(states),
        )
        if risk_level in RISK_LEVEL_BOUNDS:
            lower, upper = RISK_LEVEL_BOUNDS[risk_level]
            query = query.filter(QuizSession.risk_score >= lower, QuizSession.risk_score < upper)

        total_result = await self.db.execute(select(func.count()).select_from(query.subquery()))
        total = total_result.scalar() or 0

        result = await self.db.execute(
            query.order_by(QuizSession.risk_score.desc(), QuizSession.submitted_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        items = [
            ReviewQueueItem(
                id=session.id,
                quiz_id=session.quiz_id,
                student_id=session.student_id,
                attempt_number=session.attempt_number,
                state=SessionState(session.state),
                percentage=session.percentage,
                final_percentage=session.final_percentage,
                risk_score=session.risk_score or 0,
                total_violations=len(session.violations),
                flag_reason=session.flag_reason,
                submitted_at=session.submitted_at,
                reviewed_at=session.reviewed_at,
            )
            for session in result.scalars().all()
        ]
        return ReviewQueuePage(sessions=items, total=total, page=page, limit=limit)

    async def review_session(
        self,
        session_id: str,
        decision: ReviewDecisionCreate,
        reviewer_id: str,
        now: Optional[datetime] = None,
    ) -> ReviewAck:
        session = await self._get_session(session_id)
        # Raises StateConflict before anything is written
        outcome = review_workflow.decide(SessionState(session.state), session.percentage, decision)

        await self._write_if_unchanged(session, {
            "state": outcome.state.value,
            "review_decision": outcome.decision.value,
            "review_notes": outcome.notes,
            "score_adjustment": outcome.score_adjustment,
            "final_percentage": outcome.final_percentage,
            "reviewed_at": now or utc_now(),
            "reviewed_by": reviewer_id,
        })
        await cache.adelete(submission_cache_key(session.id))

        logger.info(
            f"Session {session_id} reviewed by {reviewer_id}: {outcome.decision.value}, "
            f"{outcome.original_percentage}% -> {outcome.final_percentage}%"
        )
        return ReviewAck(
            session_id=session.id,
            state=outcome.state,
            decision=outcome.decision,
            percentage=session.percentage,
            final_percentage=outcome.final_percentage,
            retake_allowed=outcome.retake_allowed,
        )

    async def flag_session(self, session_id: str, reason: Optional[str], instructor_id: str) -> QuizSession:
        session = await self._get_session(session_id)
        target = review_workflow.flag_for_review(SessionState(session.state))
        values = {"state": target.value}
        if reason:
            values["flag_reason"] = reason
        await self._write_if_unchanged(session, values)
        await cache.adelete(submission_cache_key(session.id))
        logger.info(f"Session {session_id} flagged for review by {instructor_id}")
        return session
