import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import aiohttp

from ..core.exceptions import BackendUnavailable, error_from_detail
from ..schemas.proctoring import ViolationEvent
from ..schemas.quiz import QuizPublic
from ..schemas.session import (
    QuizSessionOut,
    ReviewAck,
    ReviewDecisionCreate,
    ReviewQueuePage,
    SaveAck,
    SubmitResult,
    ViolationAck,
)

logger = logging.getLogger(__name__)


class SessionBackend(ABC):
    """Operations the engine consumes from the remote session store"""

    @abstractmethod
    async def get_quiz(self, quiz_id: str) -> QuizPublic: ...

    @abstractmethod
    async def start_session(self, quiz_id: str, proctoring_data: Optional[Dict[str, Any]] = None) -> QuizSessionOut: ...

    @abstractmethod
    async def get_current_session(self, quiz_id: str) -> Optional[QuizSessionOut]: ...

    @abstractmethod
    async def confirm_environment(self, session_id: str, proctoring_data: Optional[Dict[str, Any]] = None) -> QuizSessionOut: ...

    @abstractmethod
    async def save_answers(self, session_id: str, answers: Dict[str, Any]) -> SaveAck: ...

    @abstractmethod
    async def submit_session(self, session_id: str) -> SubmitResult: ...

    @abstractmethod
    async def report_violation(self, session_id: str, violation: ViolationEvent) -> ViolationAck: ...

    @abstractmethod
    async def review_session(self, session_id: str, decision: ReviewDecisionCreate) -> ReviewAck: ...

    @abstractmethod
    async def flag_session(self, session_id: str, reason: Optional[str] = None) -> QuizSessionOut: ...

    @abstractmethod
    async def get_sessions_for_review(
        self,
        classroom_id: str,
        status: Optional[str] = None,
        risk_level: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> ReviewQueuePage: ...


class HttpSessionBackend(SessionBackend):
    """``SessionBackend`` over the REST API, using aiohttp"""

    def __init__(
        self,
        base_url: str,
        token: str,
        timeout: float = 10.0,
        http: Optional[aiohttp.ClientSession] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._http = http
        self._owns_http = http is None

    @property
    def http(self) -> aiohttp.ClientSession:
        if self._http is None:
            self._http = aiohttp.ClientSession(timeout=self.timeout)
        return self._http

    async def close(self) -> None:
        if self._http is not None and self._owns_http:
            await self._http.close()
            self._http = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.close()

    async def _request(self, method: str, path: str, json: Any = None, params: Optional[dict] = None) -> Any:
        url = f"{self.base_url}/api/v1{path}"
        headers = {"Authorization": f"Bearer {self.token}"}
        try:
            async with self.http.request(method, url, json=json, params=params, headers=headers) as response:
                try:
                    body = await response.json(content_type=None)
                except ValueError as e:
                    if response.status >= 400:
                        raise error_from_detail(None, response.status) from e
                    raise BackendUnavailable(f"Unreadable response from session store: {e}") from e
                if response.status >= 400:
                    detail = body.get("detail") if isinstance(body, dict) else body
                    raise error_from_detail(detail, response.status)
                return body
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"{method} {path} failed: {e}")
            raise BackendUnavailable(f"Session store unreachable: {e}") from e

    async def get_quiz(self, quiz_id: str) -> QuizPublic:
        return QuizPublic.model_validate(await self._request("GET", f"/quizzes/{quiz_id}"))

    async def start_session(self, quiz_id, proctoring_data=None) -> QuizSessionOut:
        body = await self._request("POST", f"/quizzes/{quiz_id}/sessions", json={"proctoring_data": proctoring_data})
        return QuizSessionOut.model_validate(body)

    async def get_current_session(self, quiz_id) -> Optional[QuizSessionOut]:
        body = await self._request("GET", f"/quizzes/{quiz_id}/sessions/current")
        return QuizSessionOut.model_validate(body) if body else None

    async def confirm_environment(self, session_id, proctoring_data=None) -> QuizSessionOut:
        body = await self._request(
            "POST", f"/sessions/{session_id}/environment", json={"proctoring_data": proctoring_data}
        )
        return QuizSessionOut.model_validate(body)

    async def save_answers(self, session_id, answers) -> SaveAck:
        body = await self._request("PUT", f"/sessions/{session_id}/answers", json={"answers": answers})
        return SaveAck.model_validate(body)

    async def submit_session(self, session_id) -> SubmitResult:
        return SubmitResult.model_validate(await self._request("POST", f"/sessions/{session_id}/submit"))

    async def report_violation(self, session_id, violation: ViolationEvent) -> ViolationAck:
        body = await self._request(
            "POST", f"/sessions/{session_id}/violations", json=violation.model_dump(mode="json")
        )
        return ViolationAck.model_validate(body)

    async def review_session(self, session_id, decision: ReviewDecisionCreate) -> ReviewAck:
        body = await self._request("POST", f"/sessions/{session_id}/review", json=decision.model_dump(mode="json"))
        return ReviewAck.model_validate(body)

    async def flag_session(self, session_id, reason=None) -> QuizSessionOut:
        body = await self._request("POST", f"/sessions/{session_id}/flag", json={"reason": reason})
        return QuizSessionOut.model_validate(body)

    async def get_sessions_for_review(self, classroom_id, status=None, risk_level=None, page=1, limit=20) -> ReviewQueuePage:
        params = {"page": page, "limit": limit}
        if status:
            params["status"] = status
        if risk_level:
            params["risk_level"] = risk_level
        body = await self._request("GET", f"/classrooms/{classroom_id}/sessions/review", params=params)
        return ReviewQueuePage.model_validate(body)
