from sqlalchemy import Column, String, DateTime, Integer, Boolean, JSON
from sqlalchemy.orm import relationship
from ..core.database import Base
from ..utils.timezone import utc_now


class Quiz(Base):
    """Quiz definition; authored elsewhere, read-only for the session engine"""
    __tablename__ = "quizzes"

    id = Column(String, primary_key=True, index=True)
    classroom_id = Column(String, index=True, nullable=False)
    teacher_id = Column(String, nullable=True)
    title = Column(String, nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    # [{"id", "text", "options", "correct_answer", "points"}]
    questions = Column(JSON, default=list)
    is_proctored = Column(Boolean, default=False)
    proctoring_settings = Column(JSON, nullable=True)
    scheduled_start_time = Column(DateTime(timezone=True), nullable=True)
    scheduled_end_time = Column(DateTime(timezone=True), nullable=True)
    status = Column(String, default="published")
    allow_retakes = Column(Boolean, default=False)
    max_attempts = Column(Integer, default=1)
    created_at = Column(DateTime(timezone=True), default=utc_now)

    sessions = relationship("QuizSession", back_populates="quiz")

    @property
    def duration_seconds(self) -> int:
        return self.duration_minutes * 60

    @property
    def total_points(self) -> float:
        return float(sum(q.get("points", 1) for q in (self.questions or [])))

    def __repr__(self):
        return f"<Quiz {self.id} ({self.title})>"
