import logging
from collections import Counter
from datetime import datetime
from typing import Callable, Dict, List, Optional

from ..schemas.proctoring import RiskPolicy, Severity, ViolationEvent, ViolationType, risk_level
from ..utils.timezone import ensure_utc
from .guard import StopGuard

logger = logging.getLogger(__name__)


class ViolationAggregator:
    """Deduplicates proctoring signals and keeps the cumulative risk score.

    Events of the same type arriving within ``policy.dedup_window_seconds`` of
    the last accepted one are treated as detector jitter and dropped. The
    score only ever grows and is clamped to 0..100.
    """

    def __init__(
        self,
        policy: Optional[RiskPolicy] = None,
        initial_score: int = 0,
        history: Optional[List[ViolationEvent]] = None,
        guard: Optional[StopGuard] = None,
    ):
        self.policy = policy or RiskPolicy()
        self._score = max(0, min(100, initial_score))
        self._violations: List[ViolationEvent] = list(history or [])
        self._last_seen: Dict[ViolationType, datetime] = {}
        self._listeners: List[Callable[[ViolationEvent, int], None]] = []
        self._guard = guard
        self._sealed = False
        for violation in self._violations:
            self._last_seen[violation.type] = ensure_utc(violation.timestamp)

    @property
    def risk_score(self) -> int:
        return self._score

    @property
    def violations(self) -> List[ViolationEvent]:
        return list(self._violations)

    @property
    def threshold_reached(self) -> bool:
        return self._score >= self.policy.threshold

    @property
    def has_high_severity(self) -> bool:
        return any(v.severity == Severity.HIGH for v in self._violations)

    @property
    def should_flag(self) -> bool:
        return self.threshold_reached or self.has_high_severity

    def subscribe(self, listener: Callable[[ViolationEvent, int], None]) -> None:
        """Register a callback receiving each accepted violation and the new score"""
        self._listeners.append(listener)

    def seal(self) -> None:
        """Stop accepting events; used at the submit flush point"""
        self._sealed = True

    def unseal(self) -> None:
        self._sealed = False

    def _is_duplicate(self, event: ViolationEvent) -> bool:
        last = self._last_seen.get(event.type)
        if last is None:
            return False
        gap = (ensure_utc(event.timestamp) - last).total_seconds()
        return 0 <= gap < self.policy.dedup_window_seconds

    def ingest(self, event: ViolationEvent) -> Optional[ViolationEvent]:
        """Record one detector event; returns it when accepted, None when dropped"""
        if self._sealed or (self._guard is not None and self._guard.stopped):
            logger.debug(f"Ignoring {event.type.value} after session stop")
            return None
        if self._is_duplicate(event):
            logger.debug(f"Collapsed duplicate {event.type.value} within dedup window")
            return None

        self._last_seen[event.type] = ensure_utc(event.timestamp)
        self._violations.append(event)
        previous = self._score
        self._score = self.policy.apply(self._score, event.severity)

        logger.warning(
            f"Violation accepted: {event.type.value} ({event.severity.value}), "
            f"risk {previous} -> {self._score}"
        )
        if previous < self.policy.threshold <= self._score:
            logger.warning(f"Risk score crossed threshold {self.policy.threshold}; session will be flagged")

        for listener in self._listeners:
            try:
                listener(event, self._score)
            except Exception as e:
                logger.error(f"Violation listener failed: {e}", exc_info=True)
        return event

    def summary(self) -> dict:
        by_type = Counter(v.type.value for v in self._violations)
        by_severity = Counter(v.severity.value for v in self._violations)
        return {
            "total_violations": len(self._violations),
            "by_type": dict(by_type),
            "by_severity": {s.value: by_severity.get(s.value, 0) for s in Severity},
            "risk_score": self._score,
            "risk_level": risk_level(self._score),
            "threshold": self.policy.threshold,
            "flagged": self.should_flag,
        }
