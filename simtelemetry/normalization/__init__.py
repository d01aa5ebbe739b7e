"""
Normalization Layer

RESPONSIBILITY: Turn heterogeneous game-client payloads into canonical events
ALLOWED INPUTS: RawSubmission from the transport
OUTPUTS: NormalizedEvent (immutable) or a NormalizationError value

WHAT THIS LAYER MUST NOT DO:
============================
- Raise on bad input (malformed submissions become Result.failure)
- Assign sequence numbers or touch session state
- Perform I/O

WIRE FORMATS:
=============
Game clients use two sub-formats for the same logical event:
1. Pipe-delimited positional fields: "Speeding|75.5|Highway Test|1"
2. JSON objects: {"type": "Speeding", "speed": 75.5, ...}

A payload is JSON when it is a mapping or its text starts with "{";
everything else is pipe-delimited. Both formats go through the same
per-kind field table, so the same logical event normalizes identically.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple
import json
import logging
import math

from ..contracts.base import ErrorCode, Result, normalization_error
from ..contracts.events import (
    EventKind, FieldValue, NormalizedEvent, RawSubmission, SessionAction
)
from .dedup import DedupConfig, DeduplicationFilter

logger = logging.getLogger(__name__)


# =============================================================================
# FIELD TABLES (positional order = pipe order)
# =============================================================================

FIELD_TABLES: Dict[EventKind, Tuple[Tuple[str, type], ...]] = {
    EventKind.VIOLATION: (
        ("type", str),
        ("speed", float),
        ("location", str),
        ("violationNumber", int),
    ),
    EventKind.COLLISION: (
        ("type", str),
        ("objectHit", str),
        ("impactForce", float),
        ("collisionNumber", int),
    ),
    EventKind.DRIVING_EVENT: (
        ("type", str),
        ("value", float),
        ("positionX", float),
        ("positionY", float),
        ("positionZ", float),
    ),
    EventKind.PROGRESS: (
        ("level", int),
        ("score", int),
        ("completion", float),
        ("timeSpent", float),
    ),
    EventKind.PERFORMANCE_SNAPSHOT: (
        ("maxSpeedMPH", float),
        ("collisionCount", int),
        ("sessionDurationSeconds", float),
        ("sessionDurationFormatted", str),
        ("violationCount", int),
        ("averageSpeed", float),
        ("totalDistance", float),
        ("score", int),
        ("levelName", str),
    ),
    EventKind.SESSION_CONTROL: (
        ("action", str),
    ),
}

# Keys lifted out of JSON payloads into the event envelope
ENVELOPE_KEYS = frozenset({"sessionId", "userId", "kind"})

PIPE_SEPARATOR = "|"


@dataclass
class NormalizationConfig:
    """Neutral defaults used when a field is missing or uncoercible."""
    default_number: int = 0
    default_string: str = "Unknown"
    default_user_id: str = "anonymous"
    sample_length: int = 200


# =============================================================================
# NORMALIZER
# =============================================================================

class EventNormalizer:
    """
    Pure function of its input: same RawSubmission, same Result.

    GUARANTEES:
    ===========
    - Never raises for bad payloads; returns Result.failure instead
    - Table fields are always present in the output (neutral defaults)
    - kind and session_id are required; they are never coerced
    """

    def __init__(self, config: Optional[NormalizationConfig] = None):
        self._config = config or NormalizationConfig()

    def normalize(self, raw: RawSubmission) -> Result:
        kind = EventKind.parse(raw.kind)
        data: Optional[Dict[str, Any]] = None
        positional: Optional[List[str]] = None

        payload = raw.payload
        if isinstance(payload, Mapping):
            data = dict(payload)
        elif isinstance(payload, (str, bytes)):
            text = payload.decode("utf-8", errors="replace") if isinstance(payload, bytes) else payload
            text = text.strip()
            if not text:
                return self._fail(ErrorCode.MALFORMED_PAYLOAD, "Empty payload", raw)
            if text.startswith("{"):
                try:
                    decoded = json.loads(text)
                except (RecursionError, ValueError) as e:
                    return self._fail(ErrorCode.MALFORMED_PAYLOAD, f"Invalid JSON: {e}", raw)
                if not isinstance(decoded, dict):
                    return self._fail(ErrorCode.MALFORMED_PAYLOAD, "JSON payload is not an object", raw)
                data = decoded
            else:
                positional = [part.strip() for part in text.split(PIPE_SEPARATOR)]
        else:
            return self._fail(
                ErrorCode.MALFORMED_PAYLOAD,
                f"Unsupported payload type: {type(payload).__name__}",
                raw
            )

        # Envelope: transport context wins over ids embedded in the payload
        session_id = self._clean_id(raw.session_id)
        user_id = self._clean_id(raw.user_id)
        if data is not None:
            if kind is None:
                kind = EventKind.parse(data.get("kind"))
            session_id = session_id or self._clean_id(data.get("sessionId"))
            user_id = user_id or self._clean_id(data.get("userId"))

        if kind is None:
            return self._fail(ErrorCode.MISSING_REQUIRED_FIELD, "Event kind could not be determined", raw)
        if session_id is None:
            return self._fail(ErrorCode.MISSING_REQUIRED_FIELD, "Session id could not be determined", raw)

        if data is not None:
            fields = self._from_json(kind, data)
        else:
            fields = self._from_pipe(kind, positional or [])

        if kind == EventKind.SESSION_CONTROL:
            action = str(fields.get("action", "")).strip().lower()
            try:
                fields["action"] = SessionAction(action).value
            except ValueError:
                return self._fail(
                    ErrorCode.MALFORMED_PAYLOAD,
                    f"Unknown session action: {action!r}",
                    raw
                )

        return Result.success(NormalizedEvent.create(
            kind=kind,
            session_id=session_id,
            user_id=user_id or self._config.default_user_id,
            occurred_at=raw.received_at,
            fields=fields
        ))

    # =========================================================================
    # FORMAT PARSERS
    # =========================================================================

    def _from_pipe(self, kind: EventKind, parts: List[str]) -> Dict[str, FieldValue]:
        fields: Dict[str, FieldValue] = {}
        for index, (name, field_type) in enumerate(FIELD_TABLES[kind]):
            raw_value = parts[index] if index < len(parts) else None
            fields[name] = self._coerce(raw_value, field_type)
        return fields

    def _from_json(self, kind: EventKind, data: Dict[str, Any]) -> Dict[str, FieldValue]:
        fields: Dict[str, FieldValue] = {}
        for name, field_type in FIELD_TABLES[kind]:
            fields[name] = self._coerce(data.get(name), field_type)

        table_types = dict(FIELD_TABLES[kind])
        for key, value in data.items():
            if key in table_types or key in ENVELOPE_KEYS:
                continue
            if key == "timestamp":
                # Client clocks are untrusted; keep the value for reference only
                fields["clientTimestamp"] = str(value)
                continue
            if isinstance(value, Mapping):
                # {"position": {"x": 1}} -> positionX
                for sub_key, sub_value in value.items():
                    name = f"{key}{str(sub_key)[:1].upper()}{str(sub_key)[1:]}"
                    if name in table_types:
                        if name not in data:
                            fields[name] = self._coerce(sub_value, table_types[name])
                        continue
                    scalar = self._scalar(sub_value)
                    if scalar is not None:
                        fields[name] = scalar
                continue
            scalar = self._scalar(value)
            if scalar is not None:
                fields[key] = scalar
            else:
                logger.debug("Dropping non-scalar or non-finite field %r from %s payload", key, kind.value)
        return fields

    # =========================================================================
    # COERCION
    # =========================================================================

    def _coerce(self, value: Any, field_type: type) -> FieldValue:
        if field_type is str:
            if value is None:
                return self._config.default_string
            text = str(value).strip()
            return text if text else self._config.default_string

        if isinstance(value, bool):
            return field_type(int(value))
        if not isinstance(value, (int, float, str)):
            return field_type(self._config.default_number)
        try:
            number = float(value.strip() if isinstance(value, str) else value)
        except (OverflowError, ValueError):
            return field_type(self._config.default_number)
        if not math.isfinite(number):
            return field_type(self._config.default_number)
        if field_type is int and isinstance(value, int):
            return value
        return field_type(number)

    @staticmethod
    def _scalar(value: Any) -> Optional[FieldValue]:
        """Pass-through for extra keys; None drops the key."""
        if isinstance(value, bool):
            return int(value)
        if isinstance(value, str):
            return value
        if isinstance(value, (int, float)):
            # NaN, Infinity, 1e999 and ints beyond float range never reach the aggregates
            try:
                finite = math.isfinite(value)
            except OverflowError:
                return None
            return value if finite else None
        return None

    @staticmethod
    def _clean_id(value: Any) -> Optional[str]:
        if value is None:
            return None
        text = str(value).strip()
        return text or None

    def _fail(self, code: ErrorCode, message: str, raw: RawSubmission) -> Result:
        sample = raw.payload if isinstance(raw.payload, str) else repr(raw.payload)
        return Result.failure(normalization_error(
            code,
            message,
            timestamp=raw.received_at,
            kind=str(raw.kind.value if isinstance(raw.kind, EventKind) else raw.kind),
            session_id=str(raw.session_id),
            sample=sample[:self._config.sample_length]
        ))


__all__ = [
    'FIELD_TABLES',
    'ENVELOPE_KEYS',
    'NormalizationConfig',
    'EventNormalizer',
    'DedupConfig',
    'DeduplicationFilter',
]
