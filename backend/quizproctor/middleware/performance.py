import itertools
import logging
import time

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

perf_logger = logging.getLogger("performance")


class PerformanceMiddleware(BaseHTTPMiddleware):
    """Tags each request with an id and timing headers; logs slow requests"""

    def __init__(self, app, slow_request_threshold: float = 1.0):
        super().__init__(app)
        self.slow_request_threshold = slow_request_threshold
        self._ids = itertools.count(1)

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request.state.request_id = request_id = f"req_{next(self._ids)}_{int(time.time())}"
        started = time.perf_counter()

        response = await call_next(request)

        elapsed = time.perf_counter() - started
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{elapsed:.4f}"
        if elapsed > self.slow_request_threshold:
            perf_logger.warning(
                f"{request.method} {request.url.path} [{request_id}] took {elapsed:.3f}s "
                f"(slow request threshold {self.slow_request_threshold}s)"
            )
        return response
