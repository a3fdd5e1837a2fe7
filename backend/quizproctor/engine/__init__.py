from .aggregator import ViolationAggregator
from .autosave import AutosaveManager
from .backend import HttpSessionBackend, SessionBackend
from .channel import ConnectionStatus, InstructorChannel, MonitoringChannel, StudentChannel
from .clock import DeadlineClock, remaining_ms
from .guard import OnceFlag, StopGuard
from .review import ReviewOutcome, ReviewWorkflow, review_workflow
from .session_machine import QuizSessionMachine
from .signals import NullSignalSource, ProctoringSignalSource, QueueSignalSource
from .transitions import (
    ACTIVE_STATES,
    ALLOWED_TRANSITIONS,
    REVIEWABLE_STATES,
    SUBMITTED_STATES,
    can_transition,
    ensure_transition,
    resolve_submit_state,
)

__all__ = [
    "ViolationAggregator",
    "AutosaveManager",
    "SessionBackend",
    "HttpSessionBackend",
    "MonitoringChannel",
    "StudentChannel",
    "InstructorChannel",
    "ConnectionStatus",
    "DeadlineClock",
    "remaining_ms",
    "OnceFlag",
    "StopGuard",
    "ReviewOutcome",
    "ReviewWorkflow",
    "review_workflow",
    "QuizSessionMachine",
    "ProctoringSignalSource",
    "NullSignalSource",
    "QueueSignalSource",
    "ALLOWED_TRANSITIONS",
    "ACTIVE_STATES",
    "SUBMITTED_STATES",
    "REVIEWABLE_STATES",
    "can_transition",
    "ensure_transition",
    "resolve_submit_state",
]
