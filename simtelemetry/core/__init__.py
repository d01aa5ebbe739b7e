"""
Core Layer

RESPONSIBILITY: Severity classification and session aggregation
ALLOWED INPUTS: NormalizedEvent from the normalization layer
OUTPUTS: SeverityAnnotation, AggregationResult (immutable)

WHAT THIS LAYER MUST NOT DO:
============================
- Perform I/O or persistence (snapshots are handed back, not saved)
- Parse wire formats
- Hold a session lock while anything waits on the network
"""

from .severity import (
    SeverityPolicy, SeverityClassifier,
    SPEEDING_HIGH_THRESHOLD, SPEEDING_MEDIUM_THRESHOLD, DEFAULT_DAMAGE_BANDS,
)
from .aggregator import (
    SnapshotPolicy, SessionAggregator,
    REASON_INTERVAL, REASON_VIOLATIONS, REASON_COLLISIONS, REASON_REQUESTED,
    REASON_SESSION_END, REASON_IDLE_TIMEOUT, END_EXPLICIT, END_IDLE,
)

__all__ = [
    'SeverityPolicy', 'SeverityClassifier',
    'SPEEDING_HIGH_THRESHOLD', 'SPEEDING_MEDIUM_THRESHOLD', 'DEFAULT_DAMAGE_BANDS',
    'SnapshotPolicy', 'SessionAggregator',
    'REASON_INTERVAL', 'REASON_VIOLATIONS', 'REASON_COLLISIONS', 'REASON_REQUESTED',
    'REASON_SESSION_END', 'REASON_IDLE_TIMEOUT', 'END_EXPLICIT', 'END_IDLE',
]
