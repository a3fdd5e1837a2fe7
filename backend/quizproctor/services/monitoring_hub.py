"""
Server side of the monitoring channel.

Rooms are keyed by quiz id. Each room holds the connected instructor
sockets, one student socket per session and the live roster. Delivery is
best effort: a socket that fails to receive is dropped from its room.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from fastapi import WebSocket
from pydantic import BaseModel

from ..core.cache import cache
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
)
from ..utils.timezone import utc_now

logger = logging.getLogger(__name__)

ROSTER_CACHE_TTL = 4 * 3600


def roster_cache_key(quiz_id: str) -> str:
    return f"quiz_roster:{quiz_id}"


@dataclass
class Room:
    instructors: Set[WebSocket] = field(default_factory=set)
    students: Dict[str, WebSocket] = field(default_factory=dict)
    roster: Dict[str, RosterEntry] = field(default_factory=dict)


class MonitoringHub:

    def __init__(self):
        self._rooms: Dict[str, Room] = {}

    def _open_room(self, quiz_id: str) -> Room:
        return self._rooms.setdefault(quiz_id, Room())

    def _release(self, quiz_id: str) -> None:
        room = self._rooms.get(quiz_id)
        if room is not None and not room.instructors and not room.students:
            del self._rooms[quiz_id]
            logger.debug(f"Closed monitoring room for quiz {quiz_id}")

    @property
    def open_rooms(self) -> List[str]:
        return list(self._rooms)

    def roster(self, quiz_id: str) -> List[RosterEntry]:
        room = self._rooms.get(quiz_id)
        return list(room.roster.values()) if room else []

    def is_student_connected(self, quiz_id: str, session_id: str) -> bool:
        room = self._rooms.get(quiz_id)
        return bool(room and session_id in room.students)

    async def _send(self, websocket: WebSocket, event: BaseModel) -> bool:
        try:
            await websocket.send_text(event.model_dump_json())
            return True
        except Exception as e:
            logger.warning(f"Dropping monitoring socket after send failure: {e}")
            return False

    async def _broadcast(self, quiz_id: str, event: BaseModel) -> None:
        room = self._rooms.get(quiz_id)
        if room is None:
            return
        for websocket in list(room.instructors):
            if not await self._send(websocket, event):
                room.instructors.discard(websocket)

    async def _mirror(self, quiz_id: str) -> None:
        entries = [entry.model_dump(mode="json") for entry in self.roster(quiz_id)]
        await cache.aset(roster_cache_key(quiz_id), entries, ttl=ROSTER_CACHE_TTL)

    # Instructors

    async def connect_instructor(self, quiz_id: str, websocket: WebSocket) -> None:
        room = self._open_room(quiz_id)
        room.instructors.add(websocket)
        snapshot = Roster(quiz_id=quiz_id, students=list(room.roster.values()))
        await self._send(websocket, snapshot)
        logger.info(f"Instructor joined monitoring for quiz {quiz_id} ({len(snapshot.students)} students)")

    async def disconnect_instructor(self, quiz_id: str, websocket: WebSocket) -> None:
        room = self._rooms.get(quiz_id)
        if room is not None:
            room.instructors.discard(websocket)
            self._release(quiz_id)

    async def intervene(self, quiz_id: str, intervention: Intervention, issued_by: Optional[str] = None) -> bool:
        """Forward an instructor intervention; returns False when it could not be delivered"""
        room = self._rooms.get(quiz_id)
        websocket = room.students.get(intervention.session_id) if room else None
        notice = InterventionNotice(
            session_id=intervention.session_id,
            action=intervention.action,
            message=intervention.message,
            issued_by=issued_by,
        )
        if websocket is not None and await self._send(websocket, notice):
            logger.info(f"Intervention {intervention.action.value} sent to session {intervention.session_id}")
            return True
        await self._broadcast(quiz_id, InterventionDropped(
            session_id=intervention.session_id,
            action=intervention.action,
            reason="student not connected",
        ))
        return False

    # Students

    async def connect_student(self, quiz_id: str, entry: RosterEntry, websocket: WebSocket) -> None:
        room = self._open_room(quiz_id)
        previous = room.roster.get(entry.session_id)
        if previous is not None:
            entry = previous.model_copy(update={"connected": True, "last_seen": utc_now()})
        room.students[entry.session_id] = websocket
        room.roster[entry.session_id] = entry
        await self._broadcast(quiz_id, StudentStarted(student=entry))
        await self._mirror(quiz_id)

    async def disconnect_student(self, quiz_id: str, session_id: str, websocket: Optional[WebSocket] = None) -> None:
        room = self._rooms.get(quiz_id)
        if room is None or (websocket is not None and room.students.get(session_id) is not websocket):
            return
        room.students.pop(session_id, None)
        entry = room.roster.get(session_id)
        if entry is not None:
            room.roster[session_id] = entry.model_copy(update={"connected": False})
            await self._broadcast(quiz_id, StudentDisconnected(session_id=session_id, student_id=entry.student_id))
            await self._mirror(quiz_id)
        self._release(quiz_id)

    async def handle_student_event(self, quiz_id: str, session_id: str, event: BaseModel) -> None:
        room = self._rooms.get(quiz_id)
        entry = room.roster.get(session_id) if room else None
        if entry is None:
            logger.debug(f"Event from unknown session {session_id} in quiz {quiz_id}")
            return

        if isinstance(event, UpdateProgress):
            room.roster[session_id] = entry.model_copy(update={
                "current_question": event.current_question,
                "answered_questions": event.answered_questions,
                "time_remaining": event.time_remaining,
                "last_seen": utc_now(),
            })
            await self._broadcast(quiz_id, StudentProgress(
                session_id=session_id,
                student_id=entry.student_id,
                current_question=event.current_question,
                answered_questions=event.answered_questions,
                time_remaining=event.time_remaining,
            ))
        elif isinstance(event, ReportViolation):
            room.roster[session_id] = entry.model_copy(update={
                "violation_count": entry.violation_count + 1,
                "last_seen": utc_now(),
            })
            await self._broadcast(quiz_id, ViolationAlert(
                session_id=session_id,
                student_id=entry.student_id,
                violation=event.violation,
            ))
        elif isinstance(event, CompleteQuiz):
            room.roster.pop(session_id, None)
            await self._broadcast(quiz_id, StudentCompleted(session_id=session_id, student_id=entry.student_id))
            logger.info(f"Session {session_id} completed quiz {quiz_id}")
        await self._mirror(quiz_id)


monitoring_hub = MonitoringHub()
