"""
Post-submission review decisions.

Pure decision logic: given a session's state and computed percentage, work
out what a ``ReviewDecision`` does to it. Persistence lives in
``services.review_service``; both the API and offline tooling share this.
"""
from dataclasses import dataclass
from typing import Optional

from ..core.exceptions import StateConflict
from ..schemas.session import ReviewDecisionCreate, ReviewDecisionType, SessionState
from .transitions import REVIEWABLE_STATES, ensure_transition


@dataclass(frozen=True)
class ReviewOutcome:
    decision: ReviewDecisionType
    state: SessionState
    original_percentage: float
    final_percentage: float
    score_adjustment: float
    retake_allowed: bool
    notes: Optional[str] = None


def clamp_percentage(value: float) -> float:
    return round(max(0.0, min(100.0, value)), 2)


class ReviewWorkflow:
    """Applies an instructor decision to a submitted session"""

    def ensure_reviewable(self, state: SessionState) -> None:
        state = SessionState(state)
        if state == SessionState.REVIEWED:
            raise StateConflict("Session has already been reviewed")
        if state not in REVIEWABLE_STATES:
            raise StateConflict(f"Session in state {state.value} cannot be reviewed")

    def decide(
        self,
        state: SessionState,
        percentage: Optional[float],
        decision: ReviewDecisionCreate,
    ) -> ReviewOutcome:
        self.ensure_reviewable(state)
        ensure_transition(state, SessionState.REVIEWED)

        original = float(percentage or 0.0)
        adjustment = 0.0
        if decision.decision == ReviewDecisionType.ACCEPT:
            final = original
        elif decision.decision == ReviewDecisionType.REJECT:
            final = 0.0
        elif decision.decision == ReviewDecisionType.PARTIAL_CREDIT:
            adjustment = float(decision.score_adjustment)
            final = original + adjustment
        else:
            final = original

        return ReviewOutcome(
            decision=decision.decision,
            state=SessionState.REVIEWED,
            original_percentage=original,
            final_percentage=clamp_percentage(final),
            score_adjustment=adjustment,
            retake_allowed=decision.decision == ReviewDecisionType.RETAKE_REQUIRED,
            notes=decision.notes,
        )

    def flag_for_review(self, state: SessionState) -> SessionState:
        """Manual instructor flag: Submitted/Flagged -> UnderReview"""
        state = SessionState(state)
        if state == SessionState.UNDER_REVIEW:
            return state
        ensure_transition(state, SessionState.UNDER_REVIEW)
        return SessionState.UNDER_REVIEW


review_workflow = ReviewWorkflow()
