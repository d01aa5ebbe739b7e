"""
Severity Classifier Tests

Threshold tables for violations and collisions.
"""

import pytest

from simtelemetry.contracts.events import EventKind, Severity
from simtelemetry.core.severity import SeverityClassifier, SeverityPolicy

from .fixtures import collision_event, make_event, violation_event


@pytest.fixture
def classifier():
    return SeverityClassifier()


class TestViolationSeverity:

    @pytest.mark.parametrize("speed,expected", [
        (90.0, Severity.HIGH),
        (80.1, Severity.HIGH),
        (80.0, Severity.MEDIUM),
        (75.5, Severity.MEDIUM),
        (65.0, Severity.LOW),
        (40.0, Severity.LOW),
    ])
    def test_speeding_bands(self, classifier, speed, expected):
        annotation = classifier.classify(violation_event("Speeding", speed))

        assert annotation.severity == expected

    def test_scores_follow_label(self, classifier):
        assert classifier.classify(violation_event("Speeding", 90)).score == 100
        assert classifier.classify(violation_event("Speeding", 70)).score == 75
        assert classifier.classify(violation_event("Speeding", 50)).score == 25

    def test_red_light_is_high(self, classifier):
        assert classifier.classify(violation_event("Red Light", 10)).severity == Severity.HIGH

    def test_stop_sign_is_medium(self, classifier):
        assert classifier.classify(violation_event("Stop Sign", 0)).severity == Severity.MEDIUM

    def test_type_match_is_case_insensitive(self, classifier):
        assert classifier.classify(violation_event("RED LIGHT running", 10)).severity == Severity.HIGH
        assert classifier.classify(violation_event("speeding", 85)).severity == Severity.HIGH

    def test_unknown_type_is_medium(self, classifier):
        assert classifier.classify(violation_event("Wrong Way", 20)).severity == Severity.MEDIUM

    def test_custom_thresholds(self):
        classifier = SeverityClassifier(SeverityPolicy(
            speeding_high_threshold=50.0,
            speeding_medium_threshold=30.0
        ))

        assert classifier.classify(violation_event("Speeding", 55)).severity == Severity.HIGH
        assert classifier.classify(violation_event("Speeding", 35)).severity == Severity.MEDIUM


class TestCollisionDamage:

    @pytest.mark.parametrize("force,severity,damage", [
        (60.0, Severity.HIGH, 100),
        (50.0, Severity.MEDIUM, 75),
        (30.0, Severity.MEDIUM, 75),
        (25.0, Severity.LOW, 50),
        (11.0, Severity.LOW, 50),
        (10.0, Severity.LOW, 25),
        (0.0, Severity.LOW, 25),
    ])
    def test_damage_bands(self, classifier, force, severity, damage):
        annotation = classifier.classify(collision_event(force))

        assert annotation.severity == severity
        assert annotation.score == damage

    def test_damage_is_monotonic(self, classifier):
        scores = [classifier.collision_damage(force).score for force in range(0, 120, 5)]

        assert scores == sorted(scores)


class TestClassifierBoundaries:

    def test_other_kinds_are_not_classified(self, classifier):
        event = make_event(EventKind.PROGRESS, {"level": 1, "score": 10})

        with pytest.raises(ValueError):
            classifier.classify(event)

    def test_inverted_speed_thresholds_rejected(self):
        with pytest.raises(ValueError):
            SeverityPolicy(speeding_high_threshold=60.0, speeding_medium_threshold=70.0)

    def test_unordered_damage_bands_rejected(self):
        with pytest.raises(ValueError):
            SeverityPolicy(damage_bands=((10.0, 50, Severity.LOW), (50.0, 100, Severity.HIGH)))
