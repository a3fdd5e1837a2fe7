from typing import Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from ....core.database import get_async_db
from ....core.exceptions import PermissionDenied
from ....schemas.proctoring import ViolationEvent
from ....schemas.quiz import QuizPublic
from ....schemas.session import (
    AnswersUpdate,
    EnvironmentConfirmRequest,
    QuizSessionOut,
    SaveAck,
    StartSessionRequest,
    SubmitResult,
    ViolationAck,
)
from ....services.session_service import QuizSessionService, quiz_to_public
from ...deps import CurrentUser, get_current_student, get_current_user

router = APIRouter()


@router.get("/quizzes/{quiz_id}", response_model=QuizPublic)
async def get_quiz(
    quiz_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Quiz as shown to a student, without correct answers"""
    quiz = await QuizSessionService(db).get_quiz(quiz_id)
    return quiz_to_public(quiz)


@router.post("/quizzes/{quiz_id}/sessions", response_model=QuizSessionOut, status_code=status.HTTP_201_CREATED)
async def start_session(
    quiz_id: str,
    request: Optional[StartSessionRequest] = None,
    current_user: CurrentUser = Depends(get_current_student),
    db: AsyncSession = Depends(get_async_db),
):
    proctoring_data = request.proctoring_data if request else None
    return await QuizSessionService(db).start_session(quiz_id, current_user.id, proctoring_data)


@router.get("/quizzes/{quiz_id}/sessions/current", response_model=Optional[QuizSessionOut])
async def get_current_session(
    quiz_id: str,
    current_user: CurrentUser = Depends(get_current_student),
    db: AsyncSession = Depends(get_async_db),
):
    """Latest attempt of the caller, used to resume after a reload"""
    return await QuizSessionService(db).get_current_session(quiz_id, current_user.id)


@router.get("/sessions/{session_id}", response_model=QuizSessionOut)
async def get_session(
    session_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    session = await QuizSessionService(db).get_session(session_id)
    if not current_user.is_instructor and session.student_id != current_user.id:
        raise PermissionDenied()
    return session


@router.post("/sessions/{session_id}/environment", response_model=QuizSessionOut)
async def confirm_environment(
    session_id: str,
    request: EnvironmentConfirmRequest,
    current_user: CurrentUser = Depends(get_current_student),
    db: AsyncSession = Depends(get_async_db),
):
    return await QuizSessionService(db).confirm_environment(session_id, current_user.id, request.proctoring_data)


@router.put("/sessions/{session_id}/answers", response_model=SaveAck)
async def save_answers(
    session_id: str,
    update: AnswersUpdate,
    current_user: CurrentUser = Depends(get_current_student),
    db: AsyncSession = Depends(get_async_db),
):
    return await QuizSessionService(db).save_answers(session_id, current_user.id, update.answers)


@router.post("/sessions/{session_id}/submit", response_model=SubmitResult)
async def submit_session(
    session_id: str,
    current_user: CurrentUser = Depends(get_current_student),
    db: AsyncSession = Depends(get_async_db),
):
    return await QuizSessionService(db).submit_session(session_id, current_user.id)


@router.post("/sessions/{session_id}/violations", response_model=ViolationAck, status_code=status.HTTP_201_CREATED)
async def report_violation(
    session_id: str,
    violation: ViolationEvent,
    current_user: CurrentUser = Depends(get_current_student),
    db: AsyncSession = Depends(get_async_db),
):
    return await QuizSessionService(db).report_violation(session_id, current_user.id, violation)
