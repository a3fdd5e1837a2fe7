from .quiz import Quiz
from .quiz_session import QuizSession
from .proctoring_violation import ProctoringViolation

__all__ = [
    "Quiz",
    "QuizSession",
    "ProctoringViolation",
]
