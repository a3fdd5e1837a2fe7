from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, computed_field

from .proctoring import Severity, risk_level as classify_risk


class SessionState(str, Enum):
    NOT_STARTED = "not_started"
    ENVIRONMENT_CHECK = "environment_check"
    IN_PROGRESS = "in_progress"
    SUBMITTED = "submitted"
    FLAGGED = "flagged"
    UNDER_REVIEW = "under_review"
    REVIEWED = "reviewed"


class ReviewDecisionType(str, Enum):
    ACCEPT = "accept"
    REJECT = "reject"
    PARTIAL_CREDIT = "partial_credit"
    RETAKE_REQUIRED = "retake_required"


class InterventionAction(str, Enum):
    WARNING = "warning"
    PAUSE = "pause"
    STOP = "stop"


class ViolationOut(BaseModel):
    id: int
    violation_type: str
    severity: Severity
    description: Optional[str] = None
    violation_metadata: Optional[Dict[str, Any]] = None
    timestamp: datetime

    class Config:
        from_attributes = True


class QuizSessionOut(BaseModel):
    id: str
    quiz_id: str
    student_id: str
    classroom_id: str
    attempt_number: int
    state: SessionState
    started_at: Optional[datetime] = None
    duration_seconds: int
    answers: Dict[str, Any] = {}
    risk_score: int = 0
    environment_confirmed: bool = False
    violations: List[ViolationOut] = []
    submitted_at: Optional[datetime] = None
    score: Optional[float] = None
    total_points: Optional[float] = None
    percentage: Optional[float] = None
    time_spent: Optional[int] = None
    final_percentage: Optional[float] = None
    flag_reason: Optional[str] = None
    review_decision: Optional[ReviewDecisionType] = None
    review_notes: Optional[str] = None
    score_adjustment: Optional[float] = None
    reviewed_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None

    class Config:
        from_attributes = True

    @computed_field
    @property
    def deadline(self) -> Optional[datetime]:
        if self.started_at is None:
            return None
        return self.started_at + timedelta(seconds=self.duration_seconds)


class StartSessionRequest(BaseModel):
    proctoring_data: Optional[Dict[str, Any]] = None


class EnvironmentConfirmRequest(BaseModel):
    proctoring_data: Optional[Dict[str, Any]] = None


class AnswersUpdate(BaseModel):
    answers: Dict[str, Any]


class SaveAck(BaseModel):
    session_id: str
    saved: int
    saved_at: datetime


class ViolationAck(BaseModel):
    session_id: str
    violation_id: int
    risk_score: int


class SubmitResult(BaseModel):
    session_id: str
    score: float
    total_points: float
    percentage: float
    time_spent: int
    state: SessionState


class ReviewDecisionCreate(BaseModel):
    decision: ReviewDecisionType
    notes: Optional[str] = None
    score_adjustment: float = Field(default=0, ge=-100, le=100)


class ReviewAck(BaseModel):
    session_id: str
    state: SessionState
    decision: ReviewDecisionType
    percentage: Optional[float] = None
    final_percentage: float
    retake_allowed: bool


class FlagRequest(BaseModel):
    reason: Optional[str] = None


class ReviewQueueItem(BaseModel):
    id: str
    quiz_id: str
    student_id: str
    attempt_number: int
    state: SessionState
    percentage: Optional[float] = None
    final_percentage: Optional[float] = None
    risk_score: int
    total_violations: int
    flag_reason: Optional[str] = None
    submitted_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None

    @computed_field
    @property
    def risk_level(self) -> str:
        return classify_risk(self.risk_score)


class ReviewQueuePage(BaseModel):
    sessions: List[ReviewQueueItem]
    total: int
    page: int
    limit: int
