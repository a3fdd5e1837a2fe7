from .proctoring import (
    ViolationType,
    Severity,
    ViolationEvent,
    ProctoringConfig,
    RiskPolicy,
    STRICT_PROCTORING_CONFIG,
    MODERATE_PROCTORING_CONFIG,
    LENIENT_PROCTORING_CONFIG,
    BASIC_PROCTORING_CONFIG,
)
from .session import (
    SessionState,
    ReviewDecisionType,
    InterventionAction,
    QuizSessionOut,
    SubmitResult,
    ReviewDecisionCreate,
    ReviewQueuePage,
)
from .quiz import QuizPublic, QuestionPublic

__all__ = [
    "ViolationType",
    "Severity",
    "ViolationEvent",
    "ProctoringConfig",
    "RiskPolicy",
    "STRICT_PROCTORING_CONFIG",
    "MODERATE_PROCTORING_CONFIG",
    "LENIENT_PROCTORING_CONFIG",
    "BASIC_PROCTORING_CONFIG",
    "SessionState",
    "ReviewDecisionType",
    "InterventionAction",
    "QuizSessionOut",
    "SubmitResult",
    "ReviewDecisionCreate",
    "ReviewQueuePage",
    "QuizPublic",
    "QuestionPublic",
]
