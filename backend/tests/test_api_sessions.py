"""
API tests for the session store endpoints
"""
from datetime import timedelta

from quizproctor.utils.timezone import utc_now


def start(client, quiz_id, headers, **body):
    return client.post(f"/api/v1/quizzes/{quiz_id}/sessions", json=body or None, headers=headers)


def report(client, session_id, headers, kind, severity="medium"):
    return client.post(
        f"/api/v1/sessions/{session_id}/violations",
        json={"type": kind, "severity": severity},
        headers=headers,
    )


class TestQuizView:

    def test_correct_answers_are_not_exposed(self, client, quiz_factory, student_headers):
        quiz = quiz_factory()

        response = client.get(f"/api/v1/quizzes/{quiz['id']}", headers=student_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["duration_minutes"] == 60
        assert len(data["questions"]) == 5
        assert "correct_answer" not in response.text
        assert data["proctoring"] is None

    def test_proctored_quiz_exposes_configuration(self, client, quiz_factory, student_headers):
        quiz = quiz_factory(is_proctored=True, proctoring_settings={"suspiciousBehaviorThreshold": 50})

        data = client.get(f"/api/v1/quizzes/{quiz['id']}", headers=student_headers).json()

        assert data["is_proctored"] is True
        assert data["proctoring"]["suspicious_activity_threshold"] == 50

    def test_unknown_quiz(self, client, student_headers):
        response = client.get("/api/v1/quizzes/missing", headers=student_headers)

        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "quiz_not_found"

    def test_requires_token(self, client, quiz_factory):
        quiz = quiz_factory()
        assert client.get(f"/api/v1/quizzes/{quiz['id']}").status_code == 401


class TestStartSession:

    def test_start_returns_in_progress_session(self, client, quiz_factory, student_headers):
        quiz = quiz_factory()

        response = start(client, quiz["id"], student_headers)

        assert response.status_code == 201
        data = response.json()
        assert data["state"] == "in_progress"
        assert data["attempt_number"] == 1
        assert data["duration_seconds"] == 3600
        assert data["environment_confirmed"] is True
        assert data["deadline"] is not None
        assert data["student_id"] == "student-1"

    def test_second_start_conflicts(self, client, quiz_factory, student_headers):
        quiz = quiz_factory()
        start(client, quiz["id"], student_headers)

        response = start(client, quiz["id"], student_headers)

        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "already_active_session"

    def test_proctored_start_without_environment_data(self, client, quiz_factory, student_headers):
        quiz = quiz_factory(is_proctored=True)

        unconfirmed = start(client, quiz["id"], student_headers).json()
        assert unconfirmed["environment_confirmed"] is False

        response = client.post(
            f"/api/v1/sessions/{unconfirmed['id']}/environment",
            json={"proctoring_data": {"camera": "ok"}},
            headers=student_headers,
        )
        assert response.status_code == 200
        assert response.json()["environment_confirmed"] is True

    def test_proctored_start_with_environment_data(self, client, quiz_factory, student_headers):
        quiz = quiz_factory(is_proctored=True)

        data = start(client, quiz["id"], student_headers, proctoring_data={"camera": "ok"}).json()
        assert data["environment_confirmed"] is True

    def test_outside_schedule_window(self, client, quiz_factory, student_headers):
        later = quiz_factory(scheduled_start_time=utc_now() + timedelta(hours=2))
        ended = quiz_factory(scheduled_end_time=utc_now() - timedelta(hours=1))
        draft = quiz_factory(status="draft")

        for quiz in (later, ended, draft):
            response = start(client, quiz["id"], student_headers)
            assert response.status_code == 403
            assert response.json()["detail"]["code"] == "quiz_not_available"

    def test_instructors_cannot_take_quizzes(self, client, quiz_factory, instructor_headers):
        quiz = quiz_factory()
        assert start(client, quiz["id"], instructor_headers).status_code == 403

    def test_retakes_until_attempts_exhausted(self, client, quiz_factory, student_headers):
        quiz = quiz_factory(allow_retakes=True, max_attempts=2)

        first = start(client, quiz["id"], student_headers).json()
        client.post(f"/api/v1/sessions/{first['id']}/submit", headers=student_headers)
        second = start(client, quiz["id"], student_headers)
        assert second.status_code == 201
        assert second.json()["attempt_number"] == 2

        client.post(f"/api/v1/sessions/{second.json()['id']}/submit", headers=student_headers)
        third = start(client, quiz["id"], student_headers)
        assert third.status_code == 403
        assert third.json()["detail"]["code"] == "attempts_exhausted"

    def test_no_retakes_after_submission(self, client, quiz_factory, student_headers):
        quiz = quiz_factory()
        session = start(client, quiz["id"], student_headers).json()
        client.post(f"/api/v1/sessions/{session['id']}/submit", headers=student_headers)

        response = start(client, quiz["id"], student_headers)
        assert response.status_code == 409


class TestAnswersAndSubmit:

    def test_answers_survive_a_reload(self, client, quiz_factory, student_headers):
        quiz = quiz_factory()
        session = start(client, quiz["id"], student_headers).json()
        answers_url = f"/api/v1/sessions/{session['id']}/answers"

        first = client.put(answers_url, json={"answers": {"q1": "a"}}, headers=student_headers)
        assert first.status_code == 200
        assert first.json()["saved"] == 1

        current = client.get(f"/api/v1/quizzes/{quiz['id']}/sessions/current", headers=student_headers).json()
        assert current["id"] == session["id"]
        assert current["answers"] == {"q1": "a"}
        assert current["started_at"] == session["started_at"]

        client.put(answers_url, json={"answers": {"q2": "b"}}, headers=student_headers)
        client.put(answers_url, json={"answers": {"q2": "a"}}, headers=student_headers)

        stored = client.get(f"/api/v1/sessions/{session['id']}", headers=student_headers).json()
        assert stored["answers"] == {"q1": "a", "q2": "a"}

    def test_no_current_session(self, client, quiz_factory, student_headers):
        quiz = quiz_factory()
        response = client.get(f"/api/v1/quizzes/{quiz['id']}/sessions/current", headers=student_headers)

        assert response.status_code == 200
        assert response.json() is None

    def test_submit_grades_and_is_idempotent(self, client, quiz_factory, student_headers, mock_cache):
        quiz = quiz_factory()
        session = start(client, quiz["id"], student_headers).json()
        client.put(
            f"/api/v1/sessions/{session['id']}/answers",
            json={"answers": {"q1": "a", "q2": "b", "q3": "a"}},
            headers=student_headers,
        )

        first = client.post(f"/api/v1/sessions/{session['id']}/submit", headers=student_headers)
        second = client.post(f"/api/v1/sessions/{session['id']}/submit", headers=student_headers)

        assert first.status_code == 200
        assert first.json()["score"] == 2
        assert first.json()["total_points"] == 5
        assert first.json()["percentage"] == 40.0
        assert first.json()["state"] == "submitted"
        assert second.json() == first.json()
        mock_cache.aset.assert_any_await(
            f"submission:{session['id']}", first.json(), ttl=3600
        )

    def test_answers_rejected_after_submit(self, client, quiz_factory, student_headers):
        quiz = quiz_factory()
        session = start(client, quiz["id"], student_headers).json()
        client.post(f"/api/v1/sessions/{session['id']}/submit", headers=student_headers)

        response = client.put(
            f"/api/v1/sessions/{session['id']}/answers",
            json={"answers": {"q1": "a"}},
            headers=student_headers,
        )
        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "state_conflict"

    def test_other_students_cannot_touch_the_session(
        self, client, quiz_factory, student_headers, other_student_headers, instructor_headers
    ):
        quiz = quiz_factory()
        session = start(client, quiz["id"], student_headers).json()

        submit = client.post(f"/api/v1/sessions/{session['id']}/submit", headers=other_student_headers)
        view = client.get(f"/api/v1/sessions/{session['id']}", headers=other_student_headers)
        assert submit.status_code == 403
        assert submit.json()["detail"]["code"] == "permission_denied"
        assert view.status_code == 403

        assert client.get(f"/api/v1/sessions/{session['id']}", headers=instructor_headers).status_code == 200

    def test_unknown_session(self, client, student_headers):
        response = client.post("/api/v1/sessions/nope/submit", headers=student_headers)
        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "session_not_found"


class TestViolations:

    def test_risk_score_accumulates(self, client, quiz_factory, student_headers):
        quiz = quiz_factory(is_proctored=True)
        session = start(client, quiz["id"], student_headers, proctoring_data={}).json()

        first = report(client, session["id"], student_headers, "tab_switch")
        second = report(client, session["id"], student_headers, "right_click", "low")

        assert first.status_code == 201
        assert first.json()["risk_score"] == 15
        assert second.json()["risk_score"] == 20
        stored = client.get(f"/api/v1/sessions/{session['id']}", headers=student_headers).json()
        assert [v["violation_type"] for v in stored["violations"]] == ["tab_switch", "right_click"]

    def test_high_risk_submission_is_flagged(self, client, quiz_factory, student_headers, mock_flag_notification):
        quiz = quiz_factory(is_proctored=True)
        session = start(client, quiz["id"], student_headers, proctoring_data={}).json()
        for kind in ("tab_switch", "window_blur", "copy_paste"):
            report(client, session["id"], student_headers, kind)
        last = report(client, session["id"], student_headers, "multiple_faces", "high")
        assert last.json()["risk_score"] == 75

        result = client.post(f"/api/v1/sessions/{session['id']}/submit", headers=student_headers).json()

        assert result["state"] == "flagged"
        stored = client.get(f"/api/v1/sessions/{session['id']}", headers=student_headers).json()
        assert stored["flag_reason"] == "risk score 75 reached threshold 70"
        mock_flag_notification.delay.assert_called_once_with(session["id"])

    def test_low_risk_submission_is_not_flagged(self, client, quiz_factory, student_headers, mock_flag_notification):
        quiz = quiz_factory(is_proctored=True)
        session = start(client, quiz["id"], student_headers, proctoring_data={}).json()
        report(client, session["id"], student_headers, "right_click", "low")

        result = client.post(f"/api/v1/sessions/{session['id']}/submit", headers=student_headers).json()

        assert result["state"] == "submitted"
        mock_flag_notification.delay.assert_not_called()

    def test_invalid_violation_type(self, client, quiz_factory, student_headers):
        quiz = quiz_factory()
        session = start(client, quiz["id"], student_headers).json()

        assert report(client, session["id"], student_headers, "sneezing").status_code == 422
