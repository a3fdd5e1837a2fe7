from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ....core.cache import cache
from ....core.database import get_async_db
from ....schemas.session import (
    FlagRequest,
    QuizSessionOut,
    ReviewAck,
    ReviewDecisionCreate,
    ReviewQueuePage,
)
from ....services.review_service import ReviewService
from ....tasks.notifications import MAX_NOTIFICATIONS, classroom_notifications_key
from ...deps import CurrentUser, get_current_instructor

router = APIRouter()


@router.get("/classrooms/{classroom_id}/sessions/review", response_model=ReviewQueuePage)
async def get_sessions_for_review(
    classroom_id: str,
    status: str = Query("pending", pattern="^(pending|flagged|under_review|reviewed|all)$"),
    risk_level: Optional[str] = Query(None, pattern="^(low|medium|high)$"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: CurrentUser = Depends(get_current_instructor),
    db: AsyncSession = Depends(get_async_db),
):
    """Submitted sessions of a classroom, riskiest first"""
    return await ReviewService(db).get_sessions_for_review(classroom_id, status, risk_level, page, limit)


@router.post("/sessions/{session_id}/review", response_model=ReviewAck)
async def review_session(
    session_id: str,
    decision: ReviewDecisionCreate,
    current_user: CurrentUser = Depends(get_current_instructor),
    db: AsyncSession = Depends(get_async_db),
):
    return await ReviewService(db).review_session(session_id, decision, current_user.id)


@router.post("/sessions/{session_id}/flag", response_model=QuizSessionOut)
async def flag_session(
    session_id: str,
    request: FlagRequest,
    current_user: CurrentUser = Depends(get_current_instructor),
    db: AsyncSession = Depends(get_async_db),
):
    """Move a submitted session into manual review"""
    return await ReviewService(db).flag_session(session_id, request.reason, current_user.id)


@router.get("/classrooms/{classroom_id}/notifications", response_model=List[dict])
async def get_classroom_notifications(
    classroom_id: str,
    limit: int = Query(20, ge=1, le=MAX_NOTIFICATIONS),
    current_user: CurrentUser = Depends(get_current_instructor),
):
    """Recent flagged-session notifications, newest first"""
    return await cache.alist(classroom_notifications_key(classroom_id), limit=limit)
