"""
Monitoring channel wire format.

Every frame is a JSON object tagged by ``type``. Students send
``StudentEvent``, instructors send ``Intervention``; the server answers with
``InstructorEvent`` (to instructors) or ``InterventionNotice`` (to students).
"""
from datetime import datetime
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

from .proctoring import ViolationEvent
from .session import InterventionAction
from ..utils.timezone import utc_now


class UpdateProgress(BaseModel):
    type: Literal["updateProgress"] = "updateProgress"
    current_question: int = 0
    answered_questions: int = 0
    time_remaining: int = 0  # seconds


class ReportViolation(BaseModel):
    type: Literal["reportViolation"] = "reportViolation"
    violation: ViolationEvent


class CompleteQuiz(BaseModel):
    type: Literal["completeQuiz"] = "completeQuiz"


StudentEvent = Annotated[
    Union[UpdateProgress, ReportViolation, CompleteQuiz],
    Field(discriminator="type"),
]


class Intervention(BaseModel):
    type: Literal["intervention"] = "intervention"
    session_id: str
    action: InterventionAction
    message: Optional[str] = None


class InterventionNotice(BaseModel):
    type: Literal["intervention"] = "intervention"
    session_id: str
    action: InterventionAction
    message: Optional[str] = None
    issued_by: Optional[str] = None
    issued_at: datetime = Field(default_factory=utc_now)


class RosterEntry(BaseModel):
    session_id: str
    student_id: str
    attempt_number: int = 1
    connected: bool = True
    current_question: int = 0
    answered_questions: int = 0
    time_remaining: Optional[int] = None
    violation_count: int = 0
    last_seen: datetime = Field(default_factory=utc_now)


class Roster(BaseModel):
    type: Literal["roster"] = "roster"
    quiz_id: str
    students: List[RosterEntry] = []


class StudentStarted(BaseModel):
    type: Literal["studentStarted"] = "studentStarted"
    student: RosterEntry


class StudentProgress(BaseModel):
    type: Literal["studentProgress"] = "studentProgress"
    session_id: str
    student_id: str
    current_question: int
    answered_questions: int
    time_remaining: int


class ViolationAlert(BaseModel):
    type: Literal["violationAlert"] = "violationAlert"
    session_id: str
    student_id: str
    violation: ViolationEvent


class StudentCompleted(BaseModel):
    type: Literal["studentCompleted"] = "studentCompleted"
    session_id: str
    student_id: str


class StudentDisconnected(BaseModel):
    type: Literal["studentDisconnected"] = "studentDisconnected"
    session_id: str
    student_id: str


class InterventionDropped(BaseModel):
    type: Literal["interventionDropped"] = "interventionDropped"
    session_id: str
    action: InterventionAction
    reason: str


InstructorEvent = Annotated[
    Union[
        Roster,
        StudentStarted,
        StudentProgress,
        ViolationAlert,
        StudentCompleted,
        StudentDisconnected,
        InterventionDropped,
    ],
    Field(discriminator="type"),
]

student_event_adapter = TypeAdapter(StudentEvent)
instructor_event_adapter = TypeAdapter(InstructorEvent)
