"""
Contracts Module

Explicit interfaces and data transfer objects shared by all layers.
No layer may import implementation details from another layer.

DESIGN PRINCIPLES:
==================
1. All contract types are immutable (frozen dataclasses)
2. Failures are explicit values (Result / Error), not silent defaults
3. All timestamps are server-assigned UTC datetimes
"""

from .base import (
    ErrorCode, Error, Result, normalization_error,
    PersistenceError, CapacityError,
)
from .events import (
    FieldValue, EventKind, Severity, SessionAction, AckStatus,
    RawSubmission, NormalizedEvent, SeverityAnnotation, SessionStats,
    AggregationResult, UserAggregate, FlushReport, Acknowledgment,
    VIOLATIONS, COLLISIONS, DRIVING_EVENTS, GAME_PROGRESS, SESSIONS,
    PERFORMANCE_DATA, COLLECTIONS, COLLECTION_FOR_KIND,
)

__all__ = [
    'ErrorCode', 'Error', 'Result', 'normalization_error',
    'PersistenceError', 'CapacityError',
    'FieldValue', 'EventKind', 'Severity', 'SessionAction', 'AckStatus',
    'RawSubmission', 'NormalizedEvent', 'SeverityAnnotation', 'SessionStats',
    'AggregationResult', 'UserAggregate', 'FlushReport', 'Acknowledgment',
    'VIOLATIONS', 'COLLISIONS', 'DRIVING_EVENTS', 'GAME_PROGRESS', 'SESSIONS',
    'PERFORMANCE_DATA', 'COLLECTIONS', 'COLLECTION_FOR_KIND',
]
