"""
Normalizer Tests

Both wire formats, neutral defaults, and explicit rejection.

AXIOM UNDER TEST:
=================
Bad input is a value (Result.failure), never an exception.
"""

import pytest

from simtelemetry.contracts.base import ErrorCode
from simtelemetry.contracts.events import EventKind
from simtelemetry.normalization import EventNormalizer, NormalizationConfig

from .fixtures import SPEEDING_JSON, SPEEDING_PIPE, T0, make_raw


@pytest.fixture
def normalizer():
    return EventNormalizer()


# =============================================================================
# PIPE FORMAT
# =============================================================================

class TestPipeFormat:

    def test_speeding_violation(self, normalizer):
        result = normalizer.normalize(make_raw(SPEEDING_PIPE, EventKind.VIOLATION))

        assert result.is_success
        event = result.value
        assert event.kind == EventKind.VIOLATION
        assert event.field_map == {
            "type": "Speeding",
            "speed": 75.5,
            "location": "Highway Test",
            "violationNumber": 1,
        }

    def test_missing_positions_get_neutral_defaults(self, normalizer):
        event = normalizer.normalize(make_raw("Speeding", EventKind.VIOLATION)).value

        assert event.get("speed") == 0.0
        assert event.get("location") == "Unknown"
        assert event.get("violationNumber") == 0

    def test_uncoercible_number_becomes_default(self, normalizer):
        event = normalizer.normalize(make_raw("Speeding|fast|Main St|x", EventKind.VIOLATION)).value

        assert event.get("speed") == 0.0
        assert event.get("violationNumber") == 0
        assert event.get("location") == "Main St"

    def test_non_finite_number_becomes_default(self, normalizer):
        event = normalizer.normalize(make_raw("Vehicle|Wall|inf|1", EventKind.COLLISION)).value

        assert event.get("impactForce") == 0.0

    def test_integer_beyond_float_range_becomes_default(self, normalizer):
        huge = 10 ** 400
        event = normalizer.normalize(make_raw(
            {"type": "Speeding", "speed": huge, "violationNumber": huge}, EventKind.VIOLATION
        )).value

        assert event.get("speed") == 0.0
        assert event.get("violationNumber") == 0

    def test_extra_positions_are_ignored(self, normalizer):
        event = normalizer.normalize(make_raw("start|extra|more", EventKind.SESSION_CONTROL)).value

        assert event.field_map == {"action": "start"}

    def test_progress_fields(self, normalizer):
        event = normalizer.normalize(make_raw("3|1200|0.5|42.5", EventKind.PROGRESS)).value

        assert event.get("level") == 3
        assert event.get("score") == 1200
        assert event.get("completion") == 0.5
        assert event.get("timeSpent") == 42.5

    def test_bytes_payload_is_decoded(self, normalizer):
        result = normalizer.normalize(make_raw(SPEEDING_PIPE.encode(), EventKind.VIOLATION))

        assert result.is_success
        assert result.value.get("location") == "Highway Test"


# =============================================================================
# JSON FORMAT
# =============================================================================

class TestJsonFormat:

    def test_json_matches_pipe(self, normalizer):
        from_pipe = normalizer.normalize(make_raw(SPEEDING_PIPE, EventKind.VIOLATION)).value
        from_json = normalizer.normalize(make_raw(SPEEDING_JSON, EventKind.VIOLATION)).value

        assert from_pipe == from_json

    def test_mapping_payload(self, normalizer):
        payload = {"type": "Red Light", "speed": 30, "location": "5th Ave", "violationNumber": 2}
        event = normalizer.normalize(make_raw(payload, EventKind.VIOLATION)).value

        assert event.get("type") == "Red Light"
        assert event.get("speed") == 30.0
        assert isinstance(event.get("speed"), float)

    def test_client_timestamp_is_kept_but_not_trusted(self, normalizer):
        payload = '{"type": "Speeding", "speed": 70, "timestamp": "1999-01-01T00:00:00Z"}'
        event = normalizer.normalize(make_raw(payload, EventKind.VIOLATION, at=T0)).value

        assert event.occurred_at == T0
        assert event.get("clientTimestamp") == "1999-01-01T00:00:00Z"

    def test_nested_position_is_flattened(self, normalizer):
        payload = {"type": "Brake", "value": 0.8, "position": {"x": 1, "y": 2.5, "z": -3}}
        event = normalizer.normalize(make_raw(payload, EventKind.DRIVING_EVENT)).value

        assert event.get("positionX") == 1.0
        assert isinstance(event.get("positionX"), float)
        assert event.get("positionY") == 2.5
        assert event.get("positionZ") == -3.0

    def test_extra_scalars_kept_and_lists_dropped(self, normalizer):
        payload = {"type": "Lane", "value": 1, "distance": 12.5, "tags": ["a", "b"], "flag": True}
        event = normalizer.normalize(make_raw(payload, EventKind.DRIVING_EVENT)).value

        assert event.get("distance") == 12.5
        assert event.get("flag") == 1
        assert event.get("tags") is None

    @pytest.mark.parametrize("literal", ["Infinity", "-Infinity", "NaN", "1e999", "1" + "0" * 400])
    def test_non_finite_extra_fields_are_dropped(self, normalizer, literal):
        payload = '{"type": "Cruise", "distance": %s, "position": {"w": %s}}' % (literal, literal)
        event = normalizer.normalize(make_raw(payload, EventKind.DRIVING_EVENT)).value

        assert "distance" not in event.field_map
        assert "positionW" not in event.field_map
        assert event.get("type") == "Cruise"

    def test_envelope_ids_from_payload(self, normalizer):
        payload = {"type": "Speeding", "speed": 70, "sessionId": "s9", "userId": "u9"}
        event = normalizer.normalize(
            make_raw(payload, EventKind.VIOLATION, session_id=None, user_id=None)
        ).value

        assert event.session_id == "s9"
        assert event.user_id == "u9"
        assert event.get("sessionId") is None

    def test_transport_ids_win_over_payload(self, normalizer):
        payload = {"type": "Speeding", "speed": 70, "sessionId": "other"}
        event = normalizer.normalize(make_raw(payload, EventKind.VIOLATION, session_id="s1")).value

        assert event.session_id == "s1"

    def test_kind_from_payload_when_not_declared(self, normalizer):
        payload = {"kind": "collision", "type": "Vehicle", "objectHit": "Car_A", "impactForce": 5}
        event = normalizer.normalize(make_raw(payload, kind=None)).value

        assert event.kind == EventKind.COLLISION

    def test_missing_user_defaults_to_anonymous(self, normalizer):
        event = normalizer.normalize(make_raw(SPEEDING_PIPE, EventKind.VIOLATION, user_id=None)).value

        assert event.user_id == "anonymous"


# =============================================================================
# KIND PARSING
# =============================================================================

class TestKindParsing:

    @pytest.mark.parametrize("kind", ["Violation", "violation", "VIOLATION", " violation "])
    def test_case_insensitive(self, normalizer, kind):
        event = normalizer.normalize(make_raw(SPEEDING_PIPE, kind)).value

        assert event.kind == EventKind.VIOLATION

    @pytest.mark.parametrize("kind", ["DrivingEvent", "drivingEvent", "driving_event", "driving-event"])
    def test_separators_ignored(self, kind):
        assert EventKind.parse(kind) == EventKind.DRIVING_EVENT

    def test_unknown_kind(self):
        assert EventKind.parse("Teleport") is None
        assert EventKind.parse("") is None
        assert EventKind.parse(42) is None


# =============================================================================
# SESSION CONTROL
# =============================================================================

class TestSessionControl:

    @pytest.mark.parametrize("action", ["start", "END", " Snapshot "])
    def test_actions_are_canonicalized(self, normalizer, action):
        event = normalizer.normalize(make_raw(action, EventKind.SESSION_CONTROL)).value

        assert event.get("action") == action.strip().lower()
        assert event.subtype == action.strip().lower()

    def test_unknown_action_rejected(self, normalizer):
        result = normalizer.normalize(make_raw("pause", EventKind.SESSION_CONTROL))

        assert result.is_failure
        assert result.error.code == ErrorCode.MALFORMED_PAYLOAD


# =============================================================================
# REJECTION
# =============================================================================

class TestRejection:

    def test_missing_session_id(self, normalizer):
        result = normalizer.normalize(make_raw(SPEEDING_PIPE, EventKind.VIOLATION, session_id=None))

        assert result.is_failure
        assert result.error.code == ErrorCode.MISSING_REQUIRED_FIELD

    def test_blank_session_id(self, normalizer):
        result = normalizer.normalize(make_raw(SPEEDING_PIPE, EventKind.VIOLATION, session_id="  "))

        assert result.error.code == ErrorCode.MISSING_REQUIRED_FIELD

    def test_unknown_kind(self, normalizer):
        result = normalizer.normalize(make_raw(SPEEDING_PIPE, "Teleport"))

        assert result.error.code == ErrorCode.MISSING_REQUIRED_FIELD

    @pytest.mark.parametrize("payload", ["", "   ", "{not json", '{"a": 1'])
    def test_malformed_text(self, normalizer, payload):
        result = normalizer.normalize(make_raw(payload, EventKind.VIOLATION))

        assert result.is_failure
        assert result.error.code == ErrorCode.MALFORMED_PAYLOAD

    def test_unsupported_payload_type(self, normalizer):
        result = normalizer.normalize(make_raw(12345, EventKind.VIOLATION))

        assert result.error.code == ErrorCode.MALFORMED_PAYLOAD

    def test_error_carries_context(self, normalizer):
        result = normalizer.normalize(make_raw("{broken", EventKind.VIOLATION, at=T0))

        assert result.error.timestamp == T0
        assert result.error.context_value("kind") == "Violation"
        assert result.error.context_value("session_id") == "s1"
        assert result.error.context_value("sample") == "{broken"

    def test_sample_is_truncated(self):
        normalizer = EventNormalizer(NormalizationConfig(sample_length=10))
        result = normalizer.normalize(make_raw("{" + "x" * 100, EventKind.VIOLATION))

        assert len(result.error.context_value("sample")) == 10

    def test_no_exception_for_garbage(self, normalizer):
        for payload in [None, object(), 3.5, [1, 2], b"\xff\xfe", 10 ** 400, '{"a": ' * 100000]:
            result = normalizer.normalize(make_raw(payload, EventKind.COLLISION))
            assert result.is_success or result.is_failure
