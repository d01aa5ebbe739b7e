"""
Event Contracts

Immutable data structures passed between the ingestion layers.

LAYER TRANSITIONS:
==================
1. Transport -> RawSubmission (opaque payload + declared kind)
2. Normalization -> NormalizedEvent (canonical record)
3. Core -> SeverityAnnotation, SessionStats, AggregationResult
4. Storage -> FlushReport

The only mutable session state lives inside the SessionAggregator; every
SessionStats that leaves it is a frozen point-in-time copy.
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, Mapping, Optional, Tuple, Union
from enum import Enum
import math


FieldValue = Union[int, float, str]


# =============================================================================
# ENUMS
# =============================================================================

class EventKind(Enum):
    """Kinds of submissions a game client can send."""
    VIOLATION = "Violation"
    COLLISION = "Collision"
    DRIVING_EVENT = "DrivingEvent"
    PROGRESS = "Progress"
    PERFORMANCE_SNAPSHOT = "PerformanceSnapshot"
    SESSION_CONTROL = "SessionControl"

    @classmethod
    def parse(cls, value: Union[EventKind, str, None]) -> Optional[EventKind]:
        """Parse a kind case-insensitively. Returns None when unknown."""
        if isinstance(value, EventKind):
            return value
        if not isinstance(value, str):
            return None
        token = value.strip().replace("_", "").replace("-", "").replace(" ", "").lower()
        if not token:
            return None
        for kind in cls:
            if kind.value.lower() == token:
                return kind
        return None


class Severity(Enum):
    """Severity labels attached to violations and collisions."""
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class SessionAction(Enum):
    """Actions carried by SessionControl submissions."""
    START = "start"
    END = "end"
    SNAPSHOT = "snapshot"


class AckStatus(Enum):
    """Immediate acknowledgment returned to the transport."""
    ACCEPTED = "accepted"
    SUPPRESSED = "suppressed"
    REJECTED = "rejected"


# =============================================================================
# STORAGE CONTRACT (collection names)
# =============================================================================

VIOLATIONS = "violations"
COLLISIONS = "collisions"
DRIVING_EVENTS = "drivingEvents"
GAME_PROGRESS = "gameProgress"
SESSIONS = "sessions"
PERFORMANCE_DATA = "performanceData"

COLLECTIONS: Tuple[str, ...] = (
    VIOLATIONS, COLLISIONS, DRIVING_EVENTS, GAME_PROGRESS, SESSIONS, PERFORMANCE_DATA
)

# SessionControl events persist only as session snapshots
COLLECTION_FOR_KIND: Dict[EventKind, str] = {
    EventKind.VIOLATION: VIOLATIONS,
    EventKind.COLLISION: COLLISIONS,
    EventKind.DRIVING_EVENT: DRIVING_EVENTS,
    EventKind.PROGRESS: GAME_PROGRESS,
    EventKind.PERFORMANCE_SNAPSHOT: PERFORMANCE_DATA,
}


# =============================================================================
# INGESTION CONTRACTS
# =============================================================================

@dataclass(frozen=True)
class RawSubmission:
    """
    Payload exactly as received from the transport.

    Transient: discarded after normalization. `session_id` and `user_id`
    are transport context (bridge session storage, HTTP path, ...) and win
    over any ids embedded in the payload.
    """
    payload: Any
    kind: Union[EventKind, str, None]
    received_at: datetime
    session_id: Optional[str] = None
    user_id: Optional[str] = None


@dataclass(frozen=True)
class NormalizedEvent:
    """
    Canonical record produced by the EventNormalizer.

    `occurred_at` is server time; client timestamps are untrusted and only
    kept as the string field `clientTimestamp`.
    """
    kind: EventKind
    session_id: str
    user_id: str
    occurred_at: datetime
    fields: Tuple[Tuple[str, FieldValue], ...] = field(default_factory=tuple)
    sequence_number: int = 0

    def __post_init__(self):
        if not isinstance(self.kind, EventKind):
            raise ValueError("NormalizedEvent.kind must be an EventKind")
        if not self.session_id or not self.session_id.strip():
            raise ValueError("NormalizedEvent.session_id must be a non-empty string")

    @staticmethod
    def create(
        kind: EventKind,
        session_id: str,
        user_id: str,
        occurred_at: datetime,
        fields: Mapping[str, FieldValue],
        sequence_number: int = 0
    ) -> NormalizedEvent:
        return NormalizedEvent(
            kind=kind,
            session_id=session_id,
            user_id=user_id,
            occurred_at=occurred_at,
            fields=tuple(fields.items()),
            sequence_number=sequence_number
        )

    def with_sequence(self, sequence_number: int) -> NormalizedEvent:
        """Return a copy carrying the per-session sequence number."""
        return replace(self, sequence_number=sequence_number)

    @property
    def field_map(self) -> Dict[str, FieldValue]:
        return dict(self.fields)

    def get(self, key: str, default: Optional[FieldValue] = None) -> Optional[FieldValue]:
        for k, v in self.fields:
            if k == key:
                return v
        return default

    def number(self, key: str) -> Optional[float]:
        """Finite numeric field value, or None when absent or not numeric."""
        value = self.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            try:
                number = float(value)
            except OverflowError:
                return None
            return number if math.isfinite(number) else None
        return None

    @property
    def subtype(self) -> str:
        if self.kind == EventKind.SESSION_CONTROL:
            return str(self.get("action", ""))
        return str(self.get("type", ""))

    @property
    def subject(self) -> str:
        """Location for violations, object hit for collisions."""
        if self.kind == EventKind.COLLISION:
            return str(self.get("objectHit", ""))
        return str(self.get("location", ""))

    def to_document(self) -> Dict[str, Any]:
        document: Dict[str, Any] = {
            "userId": self.user_id,
            "sessionId": self.session_id,
            "kind": self.kind.value,
            "sequenceNumber": self.sequence_number,
            "occurredAt": self.occurred_at.isoformat(),
        }
        document.update(self.fields)
        return document


# =============================================================================
# CORE CONTRACTS
# =============================================================================

@dataclass(frozen=True)
class SeverityAnnotation:
    """Derived severity for violations and collisions. Never input directly."""
    severity: Severity
    score: int

    def __post_init__(self):
        if not 0 <= self.score <= 100:
            raise ValueError("severity score must be between 0 and 100")


@dataclass(frozen=True)
class SessionStats:
    """
    Point-in-time copy of a session's running statistics.

    Emitted on every apply() and as snapshots for the `sessions` collection.
    """
    session_id: str
    user_id: str
    started_at: datetime
    last_event_at: datetime
    last_snapshot_at: datetime
    violation_count: int = 0
    collision_count: int = 0
    high_severity_count: int = 0
    max_speed: float = 0.0
    total_distance: float = 0.0
    score: int = 0
    level: int = 0
    event_count: int = 0
    progress_count: int = 0
    ended_at: Optional[datetime] = None
    end_reason: Optional[str] = None

    @property
    def is_ended(self) -> bool:
        return self.ended_at is not None

    @property
    def duration_seconds(self) -> float:
        """Seconds from start to end, or to the last event while running."""
        until = self.ended_at or self.last_event_at
        return max((until - self.started_at).total_seconds(), 0.0)

    def to_document(self, reason: Optional[str] = None) -> Dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "userId": self.user_id,
            "violationCount": self.violation_count,
            "collisionCount": self.collision_count,
            "highSeverityCount": self.high_severity_count,
            "maxSpeed": self.max_speed,
            "totalDistance": self.total_distance,
            "score": self.score,
            "level": self.level,
            "eventCount": self.event_count,
            "progressCount": self.progress_count,
            "duration": self.duration_seconds,
            "startedAt": self.started_at.isoformat(),
            "lastEventAt": self.last_event_at.isoformat(),
            "lastSnapshotAt": self.last_snapshot_at.isoformat(),
            "endedAt": self.ended_at.isoformat() if self.ended_at else None,
            "endReason": self.end_reason,
            "snapshotReason": reason,
        }

    @staticmethod
    def from_document(document: Mapping[str, Any]) -> SessionStats:
        """Rebuild stats from a persisted `sessions` document."""
        ended_at = document.get("endedAt")
        return SessionStats(
            session_id=document["sessionId"],
            user_id=document.get("userId", "anonymous"),
            started_at=datetime.fromisoformat(document["startedAt"]),
            last_event_at=datetime.fromisoformat(document["lastEventAt"]),
            last_snapshot_at=datetime.fromisoformat(document["lastSnapshotAt"]),
            violation_count=int(document.get("violationCount", 0)),
            collision_count=int(document.get("collisionCount", 0)),
            high_severity_count=int(document.get("highSeverityCount", 0)),
            max_speed=float(document.get("maxSpeed", 0.0)),
            total_distance=float(document.get("totalDistance", 0.0)),
            score=int(document.get("score", 0)),
            level=int(document.get("level", 0)),
            event_count=int(document.get("eventCount", 0)),
            progress_count=int(document.get("progressCount", 0)),
            ended_at=datetime.fromisoformat(ended_at) if ended_at else None,
            end_reason=document.get("endReason"),
        )


@dataclass(frozen=True)
class AggregationResult:
    """Output of SessionAggregator.apply()."""
    updated_stats: SessionStats
    snapshot_to_emit: Optional[SessionStats] = None
    snapshot_reason: Optional[str] = None


@dataclass(frozen=True)
class UserAggregate:
    """Totals across every session of one user."""
    user_id: str
    total_violations: int = 0
    total_collisions: int = 0
    total_sessions: int = 0

    def to_dict(self) -> dict:
        return {
            'user_id': self.user_id,
            'total_violations': self.total_violations,
            'total_collisions': self.total_collisions,
            'total_sessions': self.total_sessions,
        }


# =============================================================================
# STORAGE CONTRACTS
# =============================================================================

@dataclass(frozen=True)
class FlushReport:
    """Outcome of one drain/flush pass over the outbound queue."""
    succeeded: int = 0
    failed: int = 0
    dead_lettered: int = 0
    still_queued: int = 0

    def to_dict(self) -> dict:
        return {
            'succeeded': self.succeeded,
            'failed': self.failed,
            'dead_lettered': self.dead_lettered,
            'still_queued': self.still_queued,
        }


# =============================================================================
# INGRESS CONTRACTS
# =============================================================================

@dataclass(frozen=True)
class Acknowledgment:
    """Immediate answer to submit(); the transport may ignore it."""
    status: AckStatus
    session_id: Optional[str] = None
    sequence_number: Optional[int] = None
    error: Optional[Any] = None

    @property
    def accepted(self) -> bool:
        return self.status == AckStatus.ACCEPTED

    def to_dict(self) -> dict:
        return {
            'status': self.status.value,
            'session_id': self.session_id,
            'sequence_number': self.sequence_number,
            'error': self.error.message if self.error is not None else None,
        }
