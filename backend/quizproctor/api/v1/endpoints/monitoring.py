import logging
from typing import Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status
from pydantic import ValidationError

from ....core.database import AsyncSessionLocal
from ....core.exceptions import QuizEngineError
from ....core.security import ROLE_STUDENT
from ....schemas.monitoring import Intervention, RosterEntry, student_event_adapter
from ....services.monitoring_hub import monitoring_hub
from ....services.session_service import QuizSessionService
from ....utils.timezone import deadline_for, utc_now
from ...deps import user_from_token

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/monitoring/sessions/{session_id}")
async def student_monitoring(websocket: WebSocket, session_id: str, token: Optional[str] = Query(None)):
    """Student side: progress and violation events in, interventions out."""
    user = user_from_token(token)
    if user is None or user.role != ROLE_STUDENT:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    try:
        async with AsyncSessionLocal() as db:
            session = await QuizSessionService(db).get_owned_session(session_id, user.id)
    except QuizEngineError as e:
        logger.warning(f"[WS] rejected student {user.id} for session {session_id}: {e}")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    quiz_id = session.quiz_id
    remaining = deadline_for(session.started_at, session.duration_seconds) - utc_now()
    entry = RosterEntry(
        session_id=session.id,
        student_id=session.student_id,
        attempt_number=session.attempt_number,
        answered_questions=len(session.answers or {}),
        time_remaining=max(0, int(remaining.total_seconds())),
        violation_count=len(session.violations),
    )

    await websocket.accept()
    logger.info(f"[CONNECTED] student {user.id} session {session_id}")
    await monitoring_hub.connect_student(quiz_id, entry, websocket)
    try:
        while True:
            data = await websocket.receive_text()
            try:
                event = student_event_adapter.validate_json(data)
            except ValidationError as e:
                logger.warning(f"[WS] {session_id} invalid message format: {e}")
                continue
            await monitoring_hub.handle_student_event(quiz_id, session_id, event)
    except WebSocketDisconnect:
        logger.info(f"[DISCONNECTED] session {session_id}")
    finally:
        await monitoring_hub.disconnect_student(quiz_id, session_id, websocket)


@router.websocket("/monitoring/quizzes/{quiz_id}")
async def instructor_monitoring(websocket: WebSocket, quiz_id: str, token: Optional[str] = Query(None)):
    """Instructor side: roster snapshot and live events out, interventions in."""
    user = user_from_token(token)
    if user is None or not user.is_instructor:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    try:
        async with AsyncSessionLocal() as db:
            await QuizSessionService(db).get_quiz(quiz_id)
    except QuizEngineError as e:
        logger.warning(f"[WS] rejected instructor {user.id} for quiz {quiz_id}: {e}")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    logger.info(f"[CONNECTED] instructor {user.id} quiz {quiz_id}")
    await monitoring_hub.connect_instructor(quiz_id, websocket)
    try:
        while True:
            data = await websocket.receive_text()
            try:
                intervention = Intervention.model_validate_json(data)
            except ValidationError as e:
                logger.warning(f"[WS] quiz {quiz_id} invalid intervention: {e}")
                continue
            await monitoring_hub.intervene(quiz_id, intervention, issued_by=user.id)
    except WebSocketDisconnect:
        logger.info(f"[DISCONNECTED] instructor {user.id} quiz {quiz_id}")
    finally:
        await monitoring_hub.disconnect_instructor(quiz_id, websocket)
