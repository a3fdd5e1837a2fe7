from fastapi import APIRouter

from .endpoints import monitoring, quiz_sessions, reviews

api_router = APIRouter()

api_router.include_router(quiz_sessions.router, tags=["quiz-sessions"])
api_router.include_router(reviews.router, tags=["reviews"])
api_router.include_router(monitoring.router, tags=["monitoring"])
