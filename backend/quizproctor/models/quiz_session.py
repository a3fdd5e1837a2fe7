from sqlalchemy import Column, String, DateTime, ForeignKey, Float, Text, Boolean, Integer, JSON, UniqueConstraint
from sqlalchemy.orm import relationship
from ..core.database import Base
from ..utils.timezone import utc_now


class QuizSession(Base):
    __tablename__ = "quiz_sessions"
    __table_args__ = (
        UniqueConstraint("quiz_id", "student_id", "attempt_number", name="uq_quiz_session_attempt"),
    )

    id = Column(String, primary_key=True, index=True)
    quiz_id = Column(String, ForeignKey("quizzes.id"), nullable=False, index=True)
    student_id = Column(String, nullable=False, index=True)
    classroom_id = Column(String, nullable=False, index=True)
    attempt_number = Column(Integer, nullable=False, default=1)
    state = Column(String, nullable=False, default="in_progress", index=True)

    # Deadline is always started_at + duration_seconds; no countdown is stored
    started_at = Column(DateTime(timezone=True), nullable=True)
    duration_seconds = Column(Integer, nullable=False)

    answers = Column(JSON, default=dict)
    risk_score = Column(Integer, default=0)
    environment_confirmed = Column(Boolean, default=False)
    proctoring_data = Column(JSON, nullable=True)

    submitted_at = Column(DateTime(timezone=True), nullable=True)
    score = Column(Float, nullable=True)
    total_points = Column(Float, nullable=True)
    percentage = Column(Float, nullable=True)
    time_spent = Column(Integer, nullable=True)
    final_percentage = Column(Float, nullable=True)
    flag_reason = Column(String, nullable=True)

    review_decision = Column(String, nullable=True)
    review_notes = Column(Text, nullable=True)
    score_adjustment = Column(Float, nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    reviewed_by = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    quiz = relationship("Quiz", back_populates="sessions")
    violations = relationship(
        "ProctoringViolation",
        back_populates="session",
        order_by="ProctoringViolation.id",
        lazy="selectin",
    )

    def __repr__(self):
        return f"<QuizSession {self.id} {self.state} attempt={self.attempt_number}>"
