from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel

from .proctoring import ProctoringConfig


class QuestionPublic(BaseModel):
    """Question as shown to a student; the correct answer is never included"""
    id: str
    text: str = ""
    options: List[Any] = []
    points: float = 1


class QuizPublic(BaseModel):
    id: str
    classroom_id: str
    title: str
    duration_minutes: int
    is_proctored: bool
    proctoring: Optional[ProctoringConfig] = None
    scheduled_start_time: Optional[datetime] = None
    scheduled_end_time: Optional[datetime] = None
    allow_retakes: bool
    max_attempts: int
    questions: List[QuestionPublic] = []
