"""
Client-side quiz session lifecycle.

``QuizSessionMachine`` owns one student's attempt at one quiz. While the
session is in progress it runs the deadline clock, the autosave buffer, the
progress publisher and the proctoring signal feed; all of them share one
``StopGuard`` and are stopped together exactly once when the session leaves
``in_progress``.
"""
import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set

from ..core.config import settings
from ..core.exceptions import (
    AutosaveError,
    ProctoringInitError,
    QuizEngineError,
    SessionNotFound,
    StateConflict,
    SubmitError,
)
from ..schemas.monitoring import InterventionNotice
from ..schemas.proctoring import (
    MODERATE_PROCTORING_CONFIG,
    ProctoringConfig,
    RiskPolicy,
    ViolationEvent,
    ViolationType,
    risk_level,
)
from ..schemas.quiz import QuizPublic
from ..schemas.session import QuizSessionOut, SessionState, SubmitResult
from ..utils.timezone import utc_now
from .aggregator import ViolationAggregator
from .autosave import AutosaveManager
from .backend import SessionBackend
from .channel import StudentChannel
from .clock import DeadlineClock
from .guard import StopGuard
from .signals import NullSignalSource, ProctoringSignalSource
from .transitions import ACTIVE_STATES, ensure_transition, is_submitted

logger = logging.getLogger(__name__)

ChannelFactory = Callable[[str, Callable[[InterventionNotice], None]], StudentChannel]


def _violation_from_record(record) -> ViolationEvent:
    return ViolationEvent(
        type=ViolationType(record.violation_type),
        severity=record.severity,
        description=record.description or "",
        timestamp=record.timestamp,
        metadata=record.violation_metadata,
    )


def _result_from_session(session: QuizSessionOut) -> SubmitResult:
    return SubmitResult(
        session_id=session.id,
        score=session.score or 0,
        total_points=session.total_points or 0,
        percentage=session.percentage or 0,
        time_spent=session.time_spent or 0,
        state=session.state,
    )


class QuizSessionMachine:

    def __init__(
        self,
        backend: SessionBackend,
        quiz_id: str,
        signal_source: Optional[ProctoringSignalSource] = None,
        channel_factory: Optional[ChannelFactory] = None,
        policy: Optional[RiskPolicy] = None,
        on_state_change: Optional[Callable[[SessionState, SessionState], None]] = None,
        on_warning: Optional[Callable[[int], None]] = None,
        on_error: Optional[Callable[[Exception], None]] = None,
        on_intervention: Optional[Callable[[InterventionNotice], None]] = None,
        autosave_interval_seconds: Optional[float] = None,
        tick_seconds: Optional[float] = None,
        progress_interval_seconds: Optional[float] = None,
        submit_retry_seconds: Optional[float] = None,
        now: Callable[[], datetime] = utc_now,
    ):
        self.backend = backend
        self.quiz_id = quiz_id
        self.signal_source = signal_source or NullSignalSource()
        self.channel_factory = channel_factory
        self.policy = policy
        self.on_state_change = on_state_change
        self.on_warning = on_warning
        self.on_error = on_error
        self.on_intervention = on_intervention
        self.autosave_interval_seconds = autosave_interval_seconds
        self.tick_seconds = tick_seconds
        self.progress_interval_seconds = (
            settings.progress_interval_seconds if progress_interval_seconds is None else progress_interval_seconds
        )
        self.submit_retry_seconds = settings.submit_retry_seconds if submit_retry_seconds is None else submit_retry_seconds
        self._now = now

        self.state = SessionState.NOT_STARTED
        self.quiz: Optional[QuizPublic] = None
        self.config: Optional[ProctoringConfig] = None
        self.session: Optional[QuizSessionOut] = None
        self.result: Optional[SubmitResult] = None
        self.current_question = 0
        self.interventions: List[InterventionNotice] = []

        self.guard = StopGuard()
        self.clock: Optional[DeadlineClock] = None
        self.aggregator: Optional[ViolationAggregator] = None
        self.autosave: Optional[AutosaveManager] = None
        self.channel: Optional[StudentChannel] = None

        self._environment: Optional[Dict[str, Any]] = None
        self._submission: Optional[asyncio.Future] = None
        self._progress_task: Optional[asyncio.Task] = None
        self._retry_handle: Optional[asyncio.TimerHandle] = None
        self._unreported: List[ViolationEvent] = []
        self._reports: Set[asyncio.Task] = set()
        self._background: Set[asyncio.Task] = set()

    # State

    @property
    def session_id(self) -> Optional[str]:
        return self.session.id if self.session else None

    @property
    def remaining_seconds(self) -> Optional[int]:
        return self.clock.remaining_seconds if self.clock else None

    def _set_state(self, new: SessionState) -> None:
        old, self.state = self.state, SessionState(new)
        if old == self.state:
            return
        logger.info(f"Session {self.session_id or self.quiz_id}: {old.value} -> {self.state.value}")
        if self.on_state_change:
            self.on_state_change(old, self.state)

    def _transition(self, new: SessionState) -> None:
        ensure_transition(self.state, new)
        self._set_state(new)

    def _report_error(self, error: Exception) -> None:
        if self.on_error:
            self.on_error(error)

    # Setup

    async def prepare(self) -> QuizPublic:
        """Load the quiz and derive its proctoring configuration and risk policy"""
        self.quiz = await self.backend.get_quiz(self.quiz_id)
        if self.quiz.is_proctored:
            self.config = self.quiz.proctoring or MODERATE_PROCTORING_CONFIG
        if self.policy is None:
            self.policy = RiskPolicy.for_config(self.config)
        return self.quiz

    async def _initialize_signals(self) -> Dict[str, Any]:
        try:
            return await self.signal_source.initialize(self.config or MODERATE_PROCTORING_CONFIG)
        except ProctoringInitError as e:
            logger.error(f"Proctoring setup failed for quiz {self.quiz_id}: {e}")
            self._report_error(e)
            raise
        except Exception as e:
            logger.error(f"Proctoring setup failed for quiz {self.quiz_id}: {e}", exc_info=True)
            error = ProctoringInitError(str(e))
            self._report_error(error)
            raise error from e

    async def check_environment(self) -> Dict[str, Any]:
        """Run proctoring setup before the first start; may be retried after a failure"""
        if self.quiz is None:
            await self.prepare()
        if not self.quiz.is_proctored:
            raise StateConflict("Quiz does not require an environment check")
        if self.state != SessionState.ENVIRONMENT_CHECK:
            self._transition(SessionState.ENVIRONMENT_CHECK)
        self._environment = await self._initialize_signals()
        return self._environment

    async def start(self) -> QuizSessionOut:
        if self.quiz is None:
            await self.prepare()
        if self.session is not None:
            raise StateConflict("Session already started")
        if self.quiz.is_proctored and self._environment is None:
            await self.check_environment()
        ensure_transition(self.state, SessionState.IN_PROGRESS)

        session = await self.backend.start_session(self.quiz_id, self._environment)
        logger.info(f"Started session {session.id} (attempt {session.attempt_number}) for quiz {self.quiz_id}")
        self._attach(session)
        await self._enter_in_progress()
        return session

    async def resume(self) -> SessionState:
        """Reattach to the persisted session after a reload or reconnect"""
        if self.quiz is None:
            await self.prepare()
        session = await self.backend.get_current_session(self.quiz_id)
        if session is None:
            raise SessionNotFound(f"No session to resume for quiz {self.quiz_id}")

        if is_submitted(session.state):
            self.session = session
            self.result = _result_from_session(session)
            self._set_state(session.state)
            return self.state

        self._attach(session)
        self._set_state(SessionState.IN_PROGRESS)

        if self.clock.expired:
            logger.info(f"Session {session.id} resumed past its deadline; submitting")
            self.clock.start()
            await self.submit(forced=True)
            return self.state

        if self.quiz.is_proctored and not session.environment_confirmed:
            self._transition(SessionState.ENVIRONMENT_CHECK)
            self.clock.start()
            return self.state

        await self._enter_in_progress()
        return self.state

    async def confirm_environment(self) -> Dict[str, Any]:
        """Complete the proctoring re-setup required after a resume"""
        if self.session is None or self.state != SessionState.ENVIRONMENT_CHECK:
            raise StateConflict("No environment check pending")
        report = await self._initialize_signals()
        if self.clock.expired:
            await self.submit(forced=True)
            return report
        self.session = await self.backend.confirm_environment(self.session.id, report)
        await self._enter_in_progress()
        return report

    def _attach(self, session: QuizSessionOut) -> None:
        self.session = session
        self.clock = DeadlineClock(
            started_at=session.started_at,
            duration_seconds=session.duration_seconds,
            on_expire=self._submit_at_deadline,
            on_warning=self._low_time_warning,
            tick_seconds=self.tick_seconds,
            guard=self.guard,
            now=self._now,
        )
        self.aggregator = ViolationAggregator(
            policy=self.policy,
            initial_score=session.risk_score,
            history=[_violation_from_record(v) for v in session.violations],
            guard=self.guard,
        )
        self.aggregator.subscribe(self._violation_accepted)
        self.autosave = AutosaveManager(
            self.backend,
            session.id,
            initial_answers=session.answers,
            interval_seconds=self.autosave_interval_seconds,
            guard=self.guard,
        )
        if self.channel_factory is not None:
            self.channel = self.channel_factory(session.id, self._intervention_received)

    async def _enter_in_progress(self) -> None:
        if self.state != SessionState.IN_PROGRESS:
            self._transition(SessionState.IN_PROGRESS)
        self.clock.start()
        await self.signal_source.start(self.handle_violation)
        if self.channel is not None:
            self.channel.start()
            self._progress_task = asyncio.create_task(self._publish_progress())

    # Answers

    def set_answer(self, question_id: str, value: Any) -> bool:
        if self.state != SessionState.IN_PROGRESS:
            logger.info(f"Ignoring answer for {question_id} in state {self.state.value}")
            return False
        return self.autosave.set_answer(question_id, value)

    async def save(self) -> Optional[datetime]:
        """Manual save: flush every pending edit now"""
        if self.state != SessionState.IN_PROGRESS:
            raise StateConflict(f"Cannot save answers in state {self.state.value}")
        await self.autosave.flush()
        return self.autosave.last_saved_at

    def navigate(self, index: int) -> int:
        count = len(self.quiz.questions) if self.quiz else 0
        self.current_question = max(0, min(index, count - 1)) if count else 0
        return self.current_question

    @property
    def answered_questions(self) -> int:
        if self.autosave is None:
            return 0
        return sum(1 for value in self.autosave.answers.values() if value not in (None, ""))

    # Proctoring

    def handle_violation(self, event: ViolationEvent) -> Optional[ViolationEvent]:
        """Entry point for the proctoring signal feed"""
        if self.aggregator is None or self.state != SessionState.IN_PROGRESS:
            logger.debug(f"Ignoring {event.type.value} in state {self.state.value}")
            return None
        return self.aggregator.ingest(event)

    def _violation_accepted(self, event: ViolationEvent, score: int) -> None:
        self._unreported.append(event)
        task = asyncio.create_task(self._report_violation(event))
        self._reports.add(task)
        task.add_done_callback(self._reports.discard)
        if self.channel is not None:
            self._spawn(self.channel.report_violation(event))

    async def _report_violation(self, event: ViolationEvent) -> None:
        try:
            ack = await self.backend.report_violation(self.session.id, event)
        except StateConflict as e:
            self._drop_unreported(event)
            logger.warning(f"Violation for session {self.session.id} no longer accepted: {e}")
            return
        except QuizEngineError as e:
            logger.warning(f"Violation report for session {self.session.id} failed, will retry at submit: {e}")
            return
        self._drop_unreported(event)
        if ack.risk_score != self.aggregator.risk_score:
            logger.info(f"Stored risk score {ack.risk_score}, local {self.aggregator.risk_score}")

    def _drop_unreported(self, event: ViolationEvent) -> None:
        self._unreported = [pending for pending in self._unreported if pending is not event]

    async def _drain_violation_reports(self) -> None:
        if self._reports:
            await asyncio.gather(*list(self._reports), return_exceptions=True)
        for event in list(self._unreported):
            try:
                await self.backend.report_violation(self.session.id, event)
            except StateConflict as e:
                # The store already closed the session; its stored result wins
                logger.warning(f"Dropping unreported {event.type.value} for session {self.session.id}: {e}")
            self._drop_unreported(event)

    def _intervention_received(self, notice: InterventionNotice) -> None:
        self.interventions.append(notice)
        if self.on_intervention:
            self.on_intervention(notice)

    # Monitoring

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _publish_progress(self) -> None:
        while not self.guard.stopped:
            await self.channel.update_progress(
                current_question=self.current_question,
                answered_questions=self.answered_questions,
                time_remaining=self.clock.remaining_seconds,
            )
            await asyncio.sleep(self.progress_interval_seconds)

    def _low_time_warning(self, remaining_ms: int) -> None:
        if self.on_warning:
            self.on_warning(remaining_ms)

    # Submission

    async def submit(self, forced: bool = False) -> SubmitResult:
        """Submit the attempt; concurrent and repeated calls share one submission"""
        if self.result is not None:
            return self.result
        if self._submission is None or self._submission.done():
            if self.session is None or self.state not in ACTIVE_STATES:
                raise StateConflict(f"Cannot submit in state {self.state.value}")
            self._submission = asyncio.ensure_future(self._submit(forced))
        return await asyncio.shield(self._submission)

    async def _submit(self, forced: bool) -> SubmitResult:
        session_id = self.session.id
        try:
            await self.autosave.flush()
        except AutosaveError as e:
            if not forced:
                self._report_error(e)
                raise SubmitError(f"Could not save answers before submitting: {e}") from e
            logger.error(f"Deadline reached with unsaved answers for session {session_id}: {e}")

        # Nothing accepted after this point is part of the submitted attempt
        self.aggregator.seal()
        self.autosave.seal()
        try:
            await self._drain_violation_reports()
        except Exception as e:
            self._unseal()
            error = SubmitError(f"Could not report violations before submitting: {e}")
            self._report_error(error)
            raise error from e
        try:
            result = await self.backend.submit_session(session_id)
        except Exception as e:
            self._unseal()
            logger.error(f"Submit failed for session {session_id}: {e}")
            error = SubmitError(f"Could not submit quiz: {e}")
            self._report_error(error)
            raise error from e

        self.result = result
        if result.state in (SessionState.SUBMITTED, SessionState.FLAGGED):
            self._transition(result.state)
        else:
            self._set_state(result.state)
        logger.info(
            f"Session {session_id} submitted{' at deadline' if forced else ''}: "
            f"{result.percentage}% ({result.state.value})"
        )

        await self._stop_tasks()
        if self.channel is not None:
            await self.channel.complete_quiz()
            await self.channel.close()
        return result

    def _unseal(self) -> None:
        self.aggregator.unseal()
        self.autosave.unseal()

    async def _submit_at_deadline(self) -> None:
        try:
            await self.submit(forced=True)
        except QuizEngineError as e:
            logger.error(f"Automatic submit failed, retrying in {self.submit_retry_seconds}s: {e}")
            loop = asyncio.get_running_loop()
            self._retry_handle = loop.call_later(self.submit_retry_seconds, self._rearm_deadline)

    def _rearm_deadline(self) -> None:
        self._retry_handle = None
        if self.result is None and not self.guard.stopped and self.clock is not None:
            self.clock.rearm()

    async def _stop_tasks(self) -> None:
        if not self.guard.try_set():
            return
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None
        if self.clock is not None:
            self.clock.stop()
        if self.autosave is not None:
            self.autosave.stop()
        task, self._progress_task = self._progress_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
        await self.signal_source.stop()
        logger.info(f"Stopped session tasks for {self.session_id}")

    async def close(self) -> None:
        """Tear down local tasks without submitting (the session stays resumable)"""
        await self._stop_tasks()
        if self.channel is not None:
            await self.channel.close()

    # Views

    def snapshot(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "quiz_id": self.quiz_id,
            "state": self.state.value,
            "remaining_seconds": self.remaining_seconds,
            "current_question": self.current_question,
            "answered_questions": self.answered_questions,
            "answers": self.autosave.answers if self.autosave else {},
            "unsaved_changes": self.autosave.dirty if self.autosave else False,
            "last_saved_at": self.autosave.last_saved_at if self.autosave else None,
            "risk_score": self.aggregator.risk_score if self.aggregator else 0,
            "risk_level": risk_level(self.aggregator.risk_score if self.aggregator else 0),
            "violation_count": len(self.aggregator.violations) if self.aggregator else 0,
            "connection": self.channel.status.value if self.channel else None,
            "interventions": len(self.interventions),
        }

    def summary(self) -> Dict[str, Any]:
        summary = self.aggregator.summary() if self.aggregator else {}
        summary.update({
            "session_id": self.session_id,
            "state": self.state.value,
            "result": self.result.model_dump(mode="json") if self.result else None,
        })
        return summary
