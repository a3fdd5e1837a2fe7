"""
Quiz session lifecycle.

The same table is enforced by the client state machine and by the session
store, so both sides agree on which moves are legal.
"""
from typing import Iterable, Optional

from ..core.exceptions import StateConflict
from ..schemas.proctoring import Severity, ViolationEvent
from ..schemas.session import SessionState

ALLOWED_TRANSITIONS = {
    SessionState.NOT_STARTED: {SessionState.ENVIRONMENT_CHECK, SessionState.IN_PROGRESS},
    SessionState.ENVIRONMENT_CHECK: {SessionState.IN_PROGRESS, SessionState.SUBMITTED, SessionState.FLAGGED},
    SessionState.IN_PROGRESS: {SessionState.ENVIRONMENT_CHECK, SessionState.SUBMITTED, SessionState.FLAGGED},
    SessionState.SUBMITTED: {SessionState.UNDER_REVIEW, SessionState.REVIEWED},
    SessionState.FLAGGED: {SessionState.UNDER_REVIEW, SessionState.REVIEWED},
    SessionState.UNDER_REVIEW: {SessionState.REVIEWED},
    SessionState.REVIEWED: set(),
}

ACTIVE_STATES = frozenset({SessionState.ENVIRONMENT_CHECK, SessionState.IN_PROGRESS})
SUBMITTED_STATES = frozenset({
    SessionState.SUBMITTED,
    SessionState.FLAGGED,
    SessionState.UNDER_REVIEW,
    SessionState.REVIEWED,
})
REVIEWABLE_STATES = frozenset({SessionState.SUBMITTED, SessionState.FLAGGED, SessionState.UNDER_REVIEW})


def can_transition(current: SessionState, target: SessionState) -> bool:
    return target in ALLOWED_TRANSITIONS[SessionState(current)]


def ensure_transition(current: SessionState, target: SessionState) -> None:
    if not can_transition(current, target):
        raise StateConflict(
            f"Cannot move session from {SessionState(current).value} to {SessionState(target).value}"
        )


def is_submitted(state: SessionState) -> bool:
    return SessionState(state) in SUBMITTED_STATES


def resolve_submit_state(
    risk_score: int,
    threshold: int,
    violations: Iterable[ViolationEvent] = (),
) -> SessionState:
    """Flagged when the risk score reached the threshold or any high-severity violation exists"""
    if flag_reason(risk_score, threshold, violations):
        return SessionState.FLAGGED
    return SessionState.SUBMITTED


def flag_reason(
    risk_score: int,
    threshold: int,
    violations: Iterable[ViolationEvent] = (),
) -> Optional[str]:
    if risk_score >= threshold:
        return f"risk score {risk_score} reached threshold {threshold}"
    for violation in violations:
        if Severity(violation.severity) == Severity.HIGH:
            return f"high severity violation: {getattr(violation.type, 'value', violation.type)}"
    return None
