"""
Tests for the live monitoring hub and its websocket endpoints
"""
import json

import pytest
from starlette.websockets import WebSocketDisconnect

from quizproctor.core.security import ROLE_INSTRUCTOR
from quizproctor.schemas.monitoring import (
    CompleteQuiz,
    Intervention,
    ReportViolation,
    RosterEntry,
    UpdateProgress,
)
from quizproctor.schemas.proctoring import ViolationEvent, ViolationType
from quizproctor.schemas.session import InterventionAction
from quizproctor.services.monitoring_hub import MonitoringHub, roster_cache_key


class FakeSocket:
    def __init__(self, fail=False):
        self.fail = fail
        self.sent = []

    async def send_text(self, data):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(data)


class TestMonitoringHub:

    def setup_method(self):
        self.hub = MonitoringHub()
        self.entry = RosterEntry(session_id="session-1", student_id="student-1", time_remaining=3600)

    @pytest.mark.asyncio
    async def test_roster_follows_student_events(self, mock_cache):
        instructor = FakeSocket()
        await self.hub.connect_instructor("quiz-1", instructor)
        await self.hub.connect_student("quiz-1", self.entry, FakeSocket())

        await self.hub.handle_student_event("quiz-1", "session-1", UpdateProgress(
            current_question=3, answered_questions=2, time_remaining=3400,
        ))
        await self.hub.handle_student_event("quiz-1", "session-1", ReportViolation(
            violation=ViolationEvent(type=ViolationType.TAB_SWITCH),
        ))

        entry = self.hub.roster("quiz-1")[0]
        assert entry.current_question == 3
        assert entry.answered_questions == 2
        assert entry.violation_count == 1
        assert [json.loads(frame)["type"] for frame in instructor.sent] == [
            "roster", "studentStarted", "studentProgress", "violationAlert",
        ]
        mock_cache.aset.assert_awaited()
        assert mock_cache.aset.await_args.args[0] == roster_cache_key("quiz-1")

        await self.hub.handle_student_event("quiz-1", "session-1", CompleteQuiz())
        assert self.hub.roster("quiz-1") == []

    @pytest.mark.asyncio
    async def test_intervention_without_student_is_reported_dropped(self):
        instructor = FakeSocket()
        await self.hub.connect_instructor("quiz-1", instructor)

        delivered = await self.hub.intervene(
            "quiz-1", Intervention(session_id="session-9", action=InterventionAction.STOP)
        )

        assert delivered is False
        assert '"type":"interventionDropped"' in instructor.sent[-1]

    @pytest.mark.asyncio
    async def test_failed_instructor_socket_is_dropped(self):
        broken = FakeSocket(fail=True)
        await self.hub.connect_instructor("quiz-1", broken)
        await self.hub.connect_student("quiz-1", self.entry, FakeSocket())

        assert broken not in self.hub._rooms["quiz-1"].instructors

    @pytest.mark.asyncio
    async def test_stale_disconnect_keeps_the_new_socket(self):
        old, new = FakeSocket(), FakeSocket()
        await self.hub.connect_student("quiz-1", self.entry, old)
        await self.hub.connect_student("quiz-1", self.entry, new)

        await self.hub.disconnect_student("quiz-1", "session-1", old)

        assert self.hub.is_student_connected("quiz-1", "session-1")
        assert self.hub.roster("quiz-1")[0].connected

    @pytest.mark.asyncio
    async def test_events_from_unknown_sessions_are_ignored(self):
        instructor = FakeSocket()
        await self.hub.connect_instructor("quiz-1", instructor)

        await self.hub.handle_student_event("quiz-1", "session-x", CompleteQuiz())
        assert len(instructor.sent) == 1

    @pytest.mark.asyncio
    async def test_room_is_released_when_everyone_leaves(self):
        instructor, student = FakeSocket(), FakeSocket()
        await self.hub.connect_instructor("quiz-1", instructor)
        await self.hub.connect_student("quiz-1", self.entry, student)

        await self.hub.disconnect_student("quiz-1", "session-1", student)
        assert self.hub.open_rooms == ["quiz-1"]
        assert self.hub.roster("quiz-1")[0].connected is False

        await self.hub.disconnect_instructor("quiz-1", instructor)
        assert self.hub.open_rooms == []
        assert self.hub.roster("quiz-1") == []

    @pytest.mark.asyncio
    async def test_lookups_do_not_open_rooms(self):
        await self.hub.handle_student_event("quiz-2", "session-1", CompleteQuiz())
        await self.hub.disconnect_student("quiz-2", "session-1")
        await self.hub.disconnect_instructor("quiz-2", FakeSocket())
        delivered = await self.hub.intervene("quiz-2", Intervention(session_id="session-1", action=InterventionAction.PAUSE))

        assert delivered is False
        assert self.hub.open_rooms == []


class TestMonitoringWebsockets:

    @pytest.fixture
    def quiz_session(self, client, quiz_factory, student_headers):
        quiz = quiz_factory()
        session = client.post(f"/api/v1/quizzes/{quiz['id']}/sessions", headers=student_headers).json()
        return quiz["id"], session["id"]

    def test_live_session_flow(self, client, quiz_session, token_for):
        quiz_id, session_id = quiz_session
        instructor_url = f"/api/v1/monitoring/quizzes/{quiz_id}?token={token_for('teacher-1', ROLE_INSTRUCTOR)}"
        student_url = f"/api/v1/monitoring/sessions/{session_id}?token={token_for('student-1')}"

        with client.websocket_connect(instructor_url) as instructor:
            roster = instructor.receive_json()
            assert roster == {"type": "roster", "quiz_id": quiz_id, "students": []}

            with client.websocket_connect(student_url) as student:
                started = instructor.receive_json()
                assert started["type"] == "studentStarted"
                assert started["student"]["session_id"] == session_id
                assert started["student"]["time_remaining"] > 3500

                student.send_json({
                    "type": "updateProgress", "current_question": 2, "answered_questions": 1, "time_remaining": 3500,
                })
                progress = instructor.receive_json()
                assert progress["type"] == "studentProgress"
                assert progress["student_id"] == "student-1"
                assert progress["answered_questions"] == 1

                student.send_json({"type": "reportViolation", "violation": {"type": "tab_switch"}})
                alert = instructor.receive_json()
                assert alert["type"] == "violationAlert"
                assert alert["violation"]["type"] == "tab_switch"

                instructor.send_json({
                    "type": "intervention", "session_id": session_id, "action": "warning", "message": "Eyes on screen",
                })
                notice = student.receive_json()
                assert notice["type"] == "intervention"
                assert notice["action"] == "warning"
                assert notice["issued_by"] == "teacher-1"

                student.send_json({"type": "completeQuiz"})
                completed = instructor.receive_json()
                assert completed == {"type": "studentCompleted", "session_id": session_id, "student_id": "student-1"}

    def test_student_disconnect_is_broadcast(self, client, quiz_session, token_for):
        quiz_id, session_id = quiz_session
        instructor_url = f"/api/v1/monitoring/quizzes/{quiz_id}?token={token_for('teacher-1', ROLE_INSTRUCTOR)}"

        with client.websocket_connect(instructor_url) as instructor:
            instructor.receive_json()
            with client.websocket_connect(f"/api/v1/monitoring/sessions/{session_id}?token={token_for('student-1')}"):
                assert instructor.receive_json()["type"] == "studentStarted"

            disconnected = instructor.receive_json()
            assert disconnected["type"] == "studentDisconnected"

            instructor.send_json({"type": "intervention", "session_id": session_id, "action": "pause"})
            dropped = instructor.receive_json()
            assert dropped["type"] == "interventionDropped"
            assert dropped["action"] == "pause"

    def test_malformed_frames_are_ignored(self, client, quiz_session, token_for):
        quiz_id, session_id = quiz_session
        instructor_url = f"/api/v1/monitoring/quizzes/{quiz_id}?token={token_for('teacher-1', ROLE_INSTRUCTOR)}"

        with client.websocket_connect(instructor_url) as instructor:
            instructor.receive_json()
            with client.websocket_connect(f"/api/v1/monitoring/sessions/{session_id}?token={token_for('student-1')}") as student:
                instructor.receive_json()
                student.send_text("not json")
                student.send_json({"type": "updateProgress", "current_question": 1})
                assert instructor.receive_json()["type"] == "studentProgress"

    @pytest.mark.parametrize("role_user", [None, "student-2", "teacher-as-student"])
    def test_student_socket_rejected(self, client, quiz_session, token_for, role_user):
        _, session_id = quiz_session
        if role_user is None:
            token = "garbage"
        elif role_user == "teacher-as-student":
            token = token_for("teacher-1", ROLE_INSTRUCTOR)
        else:
            token = token_for(role_user)

        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect(f"/api/v1/monitoring/sessions/{session_id}?token={token}"):
                pass
        assert exc_info.value.code == 1008

    def test_instructor_socket_rejected(self, client, quiz_session, token_for):
        quiz_id, _ = quiz_session

        with pytest.raises(WebSocketDisconnect):
            with client.websocket_connect(f"/api/v1/monitoring/quizzes/{quiz_id}?token={token_for('student-1')}"):
                pass
        with pytest.raises(WebSocketDisconnect):
            url = f"/api/v1/monitoring/quizzes/missing?token={token_for('teacher-1', ROLE_INSTRUCTOR)}"
            with client.websocket_connect(url):
                pass
