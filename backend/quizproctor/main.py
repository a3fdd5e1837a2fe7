from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
import logging
import time

import psutil
from sqlalchemy import text

from quizproctor.core.config import settings
from quizproctor.core.database import AsyncSessionLocal, create_db_and_tables
from quizproctor.core.cache import cache
from quizproctor.core.exceptions import QuizEngineError
from quizproctor.api.v1.api import api_router
from quizproctor.middleware.performance import PerformanceMiddleware

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"

app = FastAPI(
    title="Quiz Proctor API",
    description="Session store, monitoring hub and review workflow for proctored quizzes",
    version=API_VERSION,
    docs_url="/docs" if settings.environment == "development" else None,
    redoc_url="/redoc" if settings.environment == "development" else None
)

app.add_middleware(GZipMiddleware, minimum_size=1000)

app.add_middleware(
    PerformanceMiddleware,
    slow_request_threshold=settings.slow_request_threshold
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(QuizEngineError)
async def quiz_engine_exception_handler(request: Request, exc: QuizEngineError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.code} ({exc.message})")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_detail()})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    request_id = getattr(request.state, "request_id", "unknown")
    logger.error(f"Unhandled error on {request.method} {request.url.path} [{request_id}]: {exc}", exc_info=True)
    await cache.aset(
        f"error:{request_id}",
        {"error": repr(exc), "path": request.url.path, "method": request.method, "at": time.time()},
        ttl=3600,
    )
    return JSONResponse(
        status_code=500,
        content={"detail": {"code": "internal_error", "message": "Unexpected server error"}, "request_id": request_id},
    )


@app.on_event("startup")
async def on_startup():
    await create_db_and_tables()
    if await cache.ahealth_check():
        logger.info("Quiz Proctor API ready (database and cache reachable)")
    else:
        logger.warning("Quiz Proctor API ready without cache; submissions will not be memoized")


@app.on_event("shutdown")
async def on_shutdown():
    await cache.aclose()
    logger.info("Quiz Proctor API stopped")


app.include_router(api_router, prefix="/api/v1")


@app.get("/health")
async def health_check():
    """Cache, database and host metrics"""
    services = {"cache": "healthy" if await cache.ahealth_check() else "unhealthy"}
    try:
        async with AsyncSessionLocal() as db:
            await db.execute(text("SELECT 1"))
        services["database"] = "healthy"
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        services["database"] = f"error: {e}"

    return {
        "status": "healthy" if services["database"] == "healthy" else "unhealthy",
        "timestamp": time.time(),
        "version": API_VERSION,
        "services": services,
        "system": {
            "cpu_percent": psutil.cpu_percent(),
            "memory_percent": psutil.virtual_memory().percent,
            "disk_percent": psutil.disk_usage("/").percent,
        },
    }


@app.get("/")
async def read_root():
    return {
        "message": "Quiz Proctor API",
        "version": API_VERSION,
        "features": [
            "Proctored quiz sessions with absolute deadlines",
            "Answer autosave and idempotent submission",
            "Live monitoring over websockets",
            "Instructor review workflow",
        ]
    }
