import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.cache import cache
from ..core.config import settings
from ..core.exceptions import (
    AlreadyActiveSession,
    AttemptsExhausted,
    PermissionDenied,
    QuizNotAvailable,
    QuizNotFound,
    SessionNotFound,
    StateConflict,
)
from ..engine.transitions import flag_reason, is_submitted, resolve_submit_state
from ..models.proctoring_violation import ProctoringViolation
from ..models.quiz import Quiz
from ..models.quiz_session import QuizSession
from ..schemas.proctoring import ProctoringConfig, RiskPolicy, ViolationEvent
from ..schemas.quiz import QuestionPublic, QuizPublic
from ..schemas.session import (
    ReviewDecisionType,
    SaveAck,
    SessionState,
    SubmitResult,
    ViolationAck,
)
from ..tasks.notifications import notify_session_flagged
from ..utils.timezone import deadline_for, ensure_utc, utc_now

logger = logging.getLogger(__name__)

SUBMISSION_CACHE_TTL = 3600


def submission_cache_key(session_id: str) -> str:
    return f"submission:{session_id}"


def quiz_to_public(quiz: Quiz) -> QuizPublic:
    """Student view of a quiz; correct answers are stripped"""
    return QuizPublic(
        id=quiz.id,
        classroom_id=quiz.classroom_id,
        title=quiz.title,
        duration_minutes=quiz.duration_minutes,
        is_proctored=bool(quiz.is_proctored),
        proctoring=proctoring_config_for(quiz),
        scheduled_start_time=quiz.scheduled_start_time,
        scheduled_end_time=quiz.scheduled_end_time,
        allow_retakes=bool(quiz.allow_retakes),
        max_attempts=quiz.max_attempts or 1,
        questions=[
            QuestionPublic(
                id=str(q["id"]),
                text=q.get("text", ""),
                options=q.get("options", []),
                points=q.get("points", 1),
            )
            for q in (quiz.questions or [])
        ],
    )


def proctoring_config_for(quiz: Quiz) -> Optional[ProctoringConfig]:
    if not quiz.is_proctored:
        return None
    return ProctoringConfig.from_quiz_settings(quiz.proctoring_settings)


def grade_answers(quiz: Quiz, answers: Dict[str, Any]):
    """Sum the points of every question whose answer matches the stored correct answer"""
    score = 0.0
    total = 0.0
    for question in quiz.questions or []:
        points = float(question.get("points", 1))
        total += points
        given = (answers or {}).get(str(question["id"]))
        if given is not None and given == question.get("correct_answer"):
            score += points
    percentage = round(score / total * 100, 2) if total else 0.0
    return score, total, percentage


def submit_result_for(session: QuizSession) -> SubmitResult:
    return SubmitResult(
        session_id=session.id,
        score=session.score or 0,
        total_points=session.total_points or 0,
        percentage=session.percentage or 0,
        time_spent=session.time_spent or 0,
        state=SessionState(session.state),
    )


class QuizSessionService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_quiz(self, quiz_id: str) -> Quiz:
        result = await self.db.execute(select(Quiz).filter(Quiz.id == quiz_id))
        quiz = result.scalars().first()
        if not quiz:
            raise QuizNotFound(f"Quiz {quiz_id} not found")
        return quiz

    async def get_session(self, session_id: str) -> QuizSession:
        result = await self.db.execute(select(QuizSession).filter(QuizSession.id == session_id))
        session = result.scalars().first()
        if not session:
            raise SessionNotFound(f"Quiz session {session_id} not found")
        return session

    async def get_owned_session(self, session_id: str, student_id: str) -> QuizSession:
        session = await self.get_session(session_id)
        if session.student_id != student_id:
            raise PermissionDenied()
        return session

    async def get_latest_session(self, quiz_id: str, student_id: str) -> Optional[QuizSession]:
        result = await self.db.execute(
            select(QuizSession)
            .filter(QuizSession.quiz_id == quiz_id, QuizSession.student_id == student_id)
            .order_by(QuizSession.attempt_number.desc())
            .limit(1)
        )
        return result.scalars().first()

    def _ensure_available(self, quiz: Quiz, now: datetime) -> None:
        if quiz.status != "published":
            raise QuizNotAvailable(f"Quiz {quiz.id} is not published")
        if quiz.scheduled_start_time and now < ensure_utc(quiz.scheduled_start_time):
            raise QuizNotAvailable("Quiz has not started yet")
        if quiz.scheduled_end_time and now > ensure_utc(quiz.scheduled_end_time):
            raise QuizNotAvailable("Quiz has ended")

    def _next_attempt(self, quiz: Quiz, latest: Optional[QuizSession]) -> int:
        if latest is None:
            return 1
        state = SessionState(latest.state)
        if not is_submitted(state):
            raise AlreadyActiveSession(f"Session {latest.id} is still in progress")

        retake_granted = (
            state == SessionState.REVIEWED
            and latest.review_decision == ReviewDecisionType.RETAKE_REQUIRED.value
        )
        if retake_granted or (quiz.allow_retakes and latest.attempt_number < (quiz.max_attempts or 1)):
            return latest.attempt_number + 1
        if not quiz.allow_retakes and state != SessionState.REVIEWED:
            raise AlreadyActiveSession("A session for this quiz already exists")
        raise AttemptsExhausted(f"Maximum quiz attempts ({quiz.max_attempts}) reached")

    async def start_session(
        self,
        quiz_id: str,
        student_id: str,
        proctoring_data: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> QuizSession:
        now = now or utc_now()
        quiz = await self.get_quiz(quiz_id)
        self._ensure_available(quiz, now)
        latest = await self.get_latest_session(quiz_id, student_id)
        attempt_number = self._next_attempt(quiz, latest)

        session = QuizSession(
            id=str(uuid.uuid4()),
            quiz_id=quiz.id,
            student_id=student_id,
            classroom_id=quiz.classroom_id,
            attempt_number=attempt_number,
            state=SessionState.IN_PROGRESS.value,
            started_at=now,
            duration_seconds=quiz.duration_seconds,
            answers={},
            risk_score=0,
            violations=[],
            environment_confirmed=not quiz.is_proctored or proctoring_data is not None,
            proctoring_data=proctoring_data,
        )
        self.db.add(session)
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            logger.warning(f"Concurrent start for quiz {quiz_id} by {student_id}: {e}")
            raise AlreadyActiveSession("A session for this quiz already exists") from e
        await self.db.refresh(session)
        logger.info(f"Student {student_id} started quiz {quiz_id} (attempt {attempt_number}, session {session.id})")
        return session

    async def get_current_session(self, quiz_id: str, student_id: str) -> Optional[QuizSession]:
        await self.get_quiz(quiz_id)
        return await self.get_latest_session(quiz_id, student_id)

    async def confirm_environment(
        self,
        session_id: str,
        student_id: str,
        proctoring_data: Optional[Dict[str, Any]] = None,
    ) -> QuizSession:
        session = await self.get_owned_session(session_id, student_id)
        self._ensure_in_progress(session)
        session.environment_confirmed = True
        if proctoring_data is not None:
            session.proctoring_data = proctoring_data
        await self.db.commit()
        await self.db.refresh(session)
        logger.info(f"Environment confirmed for session {session_id}")
        return session

    def _ensure_in_progress(self, session: QuizSession) -> None:
        if session.state != SessionState.IN_PROGRESS.value:
            raise StateConflict(f"Session {session.id} is {session.state}")

    def _ensure_before_deadline(self, session: QuizSession, now: datetime) -> None:
        grace = timedelta(seconds=settings.submission_grace_seconds)
        if now > deadline_for(session.started_at, session.duration_seconds) + grace:
            raise StateConflict("Time for this quiz is up")

    async def save_answers(
        self,
        session_id: str,
        student_id: str,
        answers: Dict[str, Any],
        now: Optional[datetime] = None,
    ) -> SaveAck:
        """Upsert answers by question id; the last write for a question wins"""
        now = now or utc_now()
        session = await self.get_owned_session(session_id, student_id)
        self._ensure_in_progress(session)
        self._ensure_before_deadline(session, now)

        merged = dict(session.answers or {})
        merged.update({str(key): value for key, value in answers.items()})
        session.answers = merged
        session.updated_at = now
        await self.db.commit()
        return SaveAck(session_id=session.id, saved=len(answers), saved_at=now)

    async def report_violation(
        self,
        session_id: str,
        student_id: str,
        event: ViolationEvent,
    ) -> ViolationAck:
        session = await self.get_owned_session(session_id, student_id)
        self._ensure_in_progress(session)
        quiz = await self.get_quiz(session.quiz_id)
        policy = RiskPolicy.for_config(proctoring_config_for(quiz))

        violation = ProctoringViolation(
            session_id=session.id,
            student_id=student_id,
            violation_type=event.type.value,
            severity=event.severity.value,
            description=event.description,
            violation_metadata=event.metadata,
            timestamp=event.timestamp,
        )
        session.violations.append(violation)
        session.risk_score = policy.apply(session.risk_score or 0, event.severity)
        await self.db.commit()
        await self.db.refresh(violation)

        logger.warning(
            f"Violation {event.type.value} ({event.severity.value}) on session {session_id}, "
            f"risk score {session.risk_score}"
        )
        return ViolationAck(session_id=session.id, violation_id=violation.id, risk_score=session.risk_score)

    async def submit_session(
        self,
        session_id: str,
        student_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> SubmitResult:
        """Grade and close the session; repeated calls return the stored result"""
        session = (
            await self.get_owned_session(session_id, student_id)
            if student_id is not None
            else await self.get_session(session_id)
        )
        if is_submitted(SessionState(session.state)):
            cached = await cache.aget(submission_cache_key(session.id))
            if cached:
                return SubmitResult.model_validate(cached)
            return submit_result_for(session)

        now = now or utc_now()
        quiz = await self.get_quiz(session.quiz_id)
        policy = RiskPolicy.for_config(proctoring_config_for(quiz))

        score, total, percentage = grade_answers(quiz, session.answers)
        elapsed = int((now - ensure_utc(session.started_at)).total_seconds())
        state = resolve_submit_state(session.risk_score or 0, policy.threshold, session.violations)

        session.score = score
        session.total_points = total
        session.percentage = percentage
        session.time_spent = max(0, min(elapsed, session.duration_seconds))
        session.submitted_at = now
        session.state = state.value
        session.flag_reason = flag_reason(session.risk_score or 0, policy.threshold, session.violations)
        await self.db.commit()
        await self.db.refresh(session)

        result = submit_result_for(session)
        await cache.aset(submission_cache_key(session.id), result.model_dump(mode="json"), ttl=SUBMISSION_CACHE_TTL)
        logger.info(f"Session {session.id} submitted: {percentage}% ({state.value})")

        if state == SessionState.FLAGGED:
            try:
                notify_session_flagged.delay(session.id)
            except Exception as e:
                logger.error(f"Failed to schedule flag notification for {session.id}: {e}")
        return result

    async def submit_overdue_sessions(self, now: Optional[datetime] = None) -> List[str]:
        """Submit in-progress sessions whose deadline plus grace period has passed"""
        now = now or utc_now()
        result = await self.db.execute(
            select(QuizSession).filter(QuizSession.state == SessionState.IN_PROGRESS.value)
        )
        grace = timedelta(seconds=settings.submission_grace_seconds)
        submitted = []
        for session in result.scalars().all():
            if now <= deadline_for(session.started_at, session.duration_seconds) + grace:
                continue
            await self.submit_session(session.id, now=now)
            submitted.append(session.id)
        if submitted:
            logger.info(f"Submitted {len(submitted)} overdue session(s)")
        return submitted
