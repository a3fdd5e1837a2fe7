"""
Client side of the monitoring channel.

A websocket per participant, reconnecting with backoff. Delivery is best
effort: while disconnected ``publish`` drops the event and returns False.
Reconnecting re-subscribes; history is never replayed.
"""
import asyncio
import logging
from collections import deque
from enum import Enum
from typing import Callable, Deque, Dict, Optional

import aiohttp
from pydantic import BaseModel, ValidationError

from ..schemas.monitoring import (
    CompleteQuiz,
    Intervention,
    InterventionDropped,
    InterventionNotice,
    ReportViolation,
    Roster,
    RosterEntry,
    StudentCompleted,
    StudentDisconnected,
    StudentProgress,
    StudentStarted,
    UpdateProgress,
    ViolationAlert,
    instructor_event_adapter,
)
from ..schemas.proctoring import ViolationEvent
from ..schemas.session import InterventionAction

logger = logging.getLogger(__name__)


class ConnectionStatus(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class MonitoringChannel:
    path: str = ""

    def __init__(
        self,
        base_url: str,
        token: str,
        http: Optional[aiohttp.ClientSession] = None,
        reconnect_delay: float = 1.0,
        max_reconnect_delay: float = 30.0,
        on_status: Optional[Callable[[ConnectionStatus], None]] = None,
    ):
        self.url = f"{base_url.rstrip('/')}/api/v1/monitoring/{self.path}"
        self.token = token
        self.reconnect_delay = reconnect_delay
        self.max_reconnect_delay = max_reconnect_delay
        self._on_status = on_status
        self._http = http
        self._owns_http = http is None
        self._ws = None
        self._task: Optional[asyncio.Task] = None
        self._closed = False
        self.status = ConnectionStatus.DISCONNECTED

    @property
    def http(self) -> aiohttp.ClientSession:
        if self._http is None:
            self._http = aiohttp.ClientSession()
        return self._http

    @property
    def connected(self) -> bool:
        return self.status == ConnectionStatus.CONNECTED

    def _set_status(self, status: ConnectionStatus) -> None:
        if status == self.status:
            return
        self.status = status
        logger.info(f"Monitoring channel {self.url}: {status.value}")
        if self._on_status:
            self._on_status(status)

    def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._closed = False
        self._task = asyncio.create_task(self._run())

    async def _run(self) -> None:
        delay = self.reconnect_delay
        while not self._closed:
            try:
                async with self.http.ws_connect(self.url, params={"token": self.token}, heartbeat=30) as ws:
                    self._ws = ws
                    self._set_status(ConnectionStatus.CONNECTED)
                    delay = self.reconnect_delay
                    async for message in ws:
                        if message.type == aiohttp.WSMsgType.TEXT:
                            self._handle_text(message.data)
                        elif message.type in (aiohttp.WSMsgType.ERROR, aiohttp.WSMsgType.CLOSED):
                            break
            except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
                logger.warning(f"Monitoring channel connection failed: {e}")
            finally:
                self._ws = None
                self._set_status(ConnectionStatus.DISCONNECTED)
            if self._closed:
                break
            await asyncio.sleep(delay)
            delay = min(delay * 2, self.max_reconnect_delay)

    def _handle_text(self, data: str) -> None:
        try:
            self._dispatch(data)
        except ValidationError as e:
            logger.warning(f"Ignoring malformed monitoring message: {e}")

    def _dispatch(self, data: str) -> None:
        raise NotImplementedError

    def _notify(self, callback: Optional[Callable], payload: BaseModel) -> None:
        if callback is None:
            return
        try:
            callback(payload)
        except Exception as e:
            logger.error(f"Monitoring listener failed on {getattr(payload, 'type', 'event')}: {e}", exc_info=True)

    async def publish(self, event: BaseModel) -> bool:
        ws = self._ws
        if ws is None or ws.closed:
            logger.debug(f"Dropping {getattr(event, 'type', 'event')}: channel disconnected")
            return False
        try:
            await ws.send_json(event.model_dump(mode="json"))
            return True
        except (aiohttp.ClientError, ConnectionResetError, RuntimeError) as e:
            logger.warning(f"Monitoring publish failed: {e}")
            return False

    async def close(self) -> None:
        self._closed = True
        ws, self._ws = self._ws, None
        if ws is not None and not ws.closed:
            await ws.close()
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
        if self._owns_http and self._http is not None:
            await self._http.close()
            self._http = None
        self._set_status(ConnectionStatus.DISCONNECTED)


class StudentChannel(MonitoringChannel):
    """Publishes progress and violations of one session; receives interventions"""

    def __init__(
        self,
        base_url: str,
        token: str,
        session_id: str,
        on_intervention: Optional[Callable[[InterventionNotice], None]] = None,
        **kwargs,
    ):
        self.session_id = session_id
        self.path = f"sessions/{session_id}"
        self._on_intervention = on_intervention
        super().__init__(base_url, token, **kwargs)

    def _dispatch(self, data: str) -> None:
        notice = InterventionNotice.model_validate_json(data)
        logger.warning(f"Intervention for session {self.session_id}: {notice.action.value}")
        self._notify(self._on_intervention, notice)

    async def update_progress(self, current_question: int, answered_questions: int, time_remaining: int) -> bool:
        return await self.publish(UpdateProgress(
            current_question=current_question,
            answered_questions=answered_questions,
            time_remaining=time_remaining,
        ))

    async def report_violation(self, violation: ViolationEvent) -> bool:
        return await self.publish(ReportViolation(violation=violation))

    async def complete_quiz(self) -> bool:
        return await self.publish(CompleteQuiz())


class InstructorChannel(MonitoringChannel):
    """Live roster and violations feed for one quiz"""

    def __init__(
        self,
        base_url: str,
        token: str,
        quiz_id: str,
        on_event: Optional[Callable[[BaseModel], None]] = None,
        max_violations: int = 200,
        **kwargs,
    ):
        self.quiz_id = quiz_id
        self.path = f"quizzes/{quiz_id}"
        self._on_event = on_event
        self.roster: Dict[str, RosterEntry] = {}
        self.violations: Deque[ViolationAlert] = deque(maxlen=max_violations)
        super().__init__(base_url, token, **kwargs)

    def _dispatch(self, data: str) -> None:
        event = instructor_event_adapter.validate_json(data)
        self.apply(event)
        self._notify(self._on_event, event)

    def apply(self, event: BaseModel) -> None:
        if isinstance(event, Roster):
            self.roster = {entry.session_id: entry for entry in event.students}
        elif isinstance(event, StudentStarted):
            self.roster[event.student.session_id] = event.student
        elif isinstance(event, StudentProgress):
            entry = self.roster.get(event.session_id)
            if entry is not None:
                self.roster[event.session_id] = entry.model_copy(update={
                    "current_question": event.current_question,
                    "answered_questions": event.answered_questions,
                    "time_remaining": event.time_remaining,
                    "connected": True,
                })
        elif isinstance(event, ViolationAlert):
            self.violations.appendleft(event)
            entry = self.roster.get(event.session_id)
            if entry is not None:
                self.roster[event.session_id] = entry.model_copy(
                    update={"violation_count": entry.violation_count + 1}
                )
        elif isinstance(event, StudentCompleted):
            self.roster.pop(event.session_id, None)
        elif isinstance(event, StudentDisconnected):
            entry = self.roster.get(event.session_id)
            if entry is not None:
                self.roster[event.session_id] = entry.model_copy(update={"connected": False})
        elif isinstance(event, InterventionDropped):
            logger.warning(f"Intervention {event.action.value} for {event.session_id} not delivered: {event.reason}")

    async def send_intervention(
        self,
        session_id: str,
        action: InterventionAction,
        message: Optional[str] = None,
    ) -> bool:
        return await self.publish(Intervention(session_id=session_id, action=action, message=message))
