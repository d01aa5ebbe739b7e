"""
Severity Classifier

Deterministic threshold tables for violations and collisions.
No side effects, no I/O: same event in, same annotation out.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Optional, Tuple

from ..contracts.events import EventKind, NormalizedEvent, Severity, SeverityAnnotation


SPEEDING = "speeding"
RED_LIGHT = "red light"
STOP_SIGN = "stop sign"

SPEEDING_HIGH_THRESHOLD = 80.0
SPEEDING_MEDIUM_THRESHOLD = 65.0

# (impact force strictly above, damage score, label) in descending order
DEFAULT_DAMAGE_BANDS: Tuple[Tuple[float, int, Severity], ...] = (
    (50.0, 100, Severity.HIGH),
    (25.0, 75, Severity.MEDIUM),
    (10.0, 50, Severity.LOW),
)
MINOR_DAMAGE_SCORE = 25


@dataclass
class SeverityPolicy:
    """All thresholds and scores used by the classifier."""
    speeding_high_threshold: float = SPEEDING_HIGH_THRESHOLD
    speeding_medium_threshold: float = SPEEDING_MEDIUM_THRESHOLD
    damage_bands: Tuple[Tuple[float, int, Severity], ...] = field(
        default_factory=lambda: DEFAULT_DAMAGE_BANDS
    )
    minor_damage_score: int = MINOR_DAMAGE_SCORE
    low_score: int = 25
    medium_score: int = 75
    high_score: int = 100

    def __post_init__(self):
        if self.speeding_medium_threshold > self.speeding_high_threshold:
            raise ValueError("speeding medium threshold must not exceed the high threshold")
        thresholds = [band[0] for band in self.damage_bands]
        if thresholds != sorted(thresholds, reverse=True):
            raise ValueError("damage bands must be ordered by descending impact force")

    def score_for(self, severity: Severity) -> int:
        return {
            Severity.LOW: self.low_score,
            Severity.MEDIUM: self.medium_score,
            Severity.HIGH: self.high_score,
        }[severity]


class SeverityClassifier:
    """Derives SeverityAnnotation for Violation and Collision events."""

    def __init__(self, policy: Optional[SeverityPolicy] = None):
        self._policy = policy or SeverityPolicy()

    @property
    def policy(self) -> SeverityPolicy:
        return self._policy

    def classify(self, event: NormalizedEvent) -> SeverityAnnotation:
        if event.kind == EventKind.VIOLATION:
            severity = self.violation_severity(event.subtype, event.number("speed") or 0.0)
            return SeverityAnnotation(severity=severity, score=self._policy.score_for(severity))
        if event.kind == EventKind.COLLISION:
            return self.collision_damage(event.number("impactForce") or 0.0)
        raise ValueError(f"No severity table for {event.kind.value} events")

    def violation_severity(self, violation_type: str, speed: float) -> Severity:
        label = (violation_type or "").lower()
        if SPEEDING in label:
            if speed > self._policy.speeding_high_threshold:
                return Severity.HIGH
            if speed > self._policy.speeding_medium_threshold:
                return Severity.MEDIUM
            return Severity.LOW
        if RED_LIGHT in label:
            return Severity.HIGH
        if STOP_SIGN in label:
            return Severity.MEDIUM
        return Severity.MEDIUM

    def collision_damage(self, impact_force: float) -> SeverityAnnotation:
        """Monotonic step function from impact force to damage score."""
        for threshold, score, severity in self._policy.damage_bands:
            if impact_force > threshold:
                return SeverityAnnotation(severity=severity, score=score)
        return SeverityAnnotation(severity=Severity.LOW, score=self._policy.minor_damage_score)
