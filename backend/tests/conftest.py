"""
Pytest configuration for the quiz proctor backend.

The database is a throwaway SQLite file (aiosqlite); Redis and Celery are
replaced with mocks so the suite runs without external services.
"""
import asyncio
import os
import tempfile
import uuid

_DB_DIR = tempfile.mkdtemp(prefix="quizproctor-tests-")
os.environ["DATABASE_URL_OVERRIDE"] = f"sqlite+aiosqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("ENVIRONMENT", "test")

import pytest
import pytest_asyncio
from unittest.mock import AsyncMock, MagicMock, patch
from fastapi.testclient import TestClient

from quizproctor.core.cache import cache
from quizproctor.core.database import AsyncSessionLocal, create_db_and_tables
from quizproctor.core.security import ROLE_INSTRUCTOR, ROLE_STUDENT, create_access_token
from quizproctor.models.quiz import Quiz


def quiz_values(**overrides):
    """Five one-point questions whose correct answer is always "a"."""
    values = {
        "id": f"quiz-{uuid.uuid4().hex[:8]}",
        "classroom_id": f"class-{uuid.uuid4().hex[:8]}",
        "teacher_id": "teacher-1",
        "title": "Unit 3 check",
        "duration_minutes": 60,
        "questions": [
            {"id": f"q{i}", "text": f"Question {i}", "options": ["a", "b", "c"], "correct_answer": "a", "points": 1}
            for i in range(1, 6)
        ],
        "is_proctored": False,
        "proctoring_settings": None,
        "status": "published",
        "allow_retakes": False,
        "max_attempts": 1,
    }
    values.update(overrides)
    return values


async def insert_quiz(**overrides) -> dict:
    values = quiz_values(**overrides)
    async with AsyncSessionLocal() as db:
        db.add(Quiz(**values))
        await db.commit()
    return values


@pytest.fixture(autouse=True)
def mock_cache():
    """Redis is never reached; reads miss and writes succeed"""
    with patch.object(cache, "aget", AsyncMock(return_value=None)) as aget, \
            patch.object(cache, "aset", AsyncMock(return_value=True)) as aset, \
            patch.object(cache, "adelete", AsyncMock(return_value=True)) as adelete, \
            patch.object(cache, "apush", AsyncMock(return_value=True)) as apush, \
            patch.object(cache, "alist", AsyncMock(return_value=[])) as alist, \
            patch.object(cache, "ahealth_check", AsyncMock(return_value=True)) as health:
        yield MagicMock(aget=aget, aset=aset, adelete=adelete, apush=apush, alist=alist, ahealth_check=health)


@pytest.fixture(autouse=True)
def mock_flag_notification():
    with patch("quizproctor.services.session_service.notify_session_flagged") as task:
        yield task


@pytest.fixture
def token_for():
    def make(user_id: str, role: str = ROLE_STUDENT) -> str:
        return create_access_token({"sub": user_id, "role": role})
    return make


@pytest.fixture
def student_headers(token_for):
    return {"Authorization": f"Bearer {token_for('student-1')}"}


@pytest.fixture
def other_student_headers(token_for):
    return {"Authorization": f"Bearer {token_for('student-2')}"}


@pytest.fixture
def instructor_headers(token_for):
    return {"Authorization": f"Bearer {token_for('teacher-1', ROLE_INSTRUCTOR)}"}


@pytest.fixture
def client(mock_cache):
    from quizproctor.main import app
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def quiz_factory():
    """Insert a quiz from a synchronous test; returns its column values"""
    asyncio.run(create_db_and_tables())

    def create(**overrides):
        return asyncio.run(insert_quiz(**overrides))
    return create


@pytest_asyncio.fixture
async def db():
    await create_db_and_tables()
    async with AsyncSessionLocal() as session:
        yield session
