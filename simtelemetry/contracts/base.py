"""
Base Contracts and Shared Types

These are the foundational types used across all layers.
All types here are IMMUTABLE and represent pure data.

BOUNDARY ENFORCEMENT:
=====================
- This module is READ-ONLY from all layers
- Errors are values: stages return Result, the orchestrator decides
  whether to log-and-continue or propagate
- Exceptions are reserved for the persistence boundary (PersistenceError)
  and for programming errors
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Tuple
from enum import Enum, auto


# =============================================================================
# ERROR STATES (Explicit, never silent)
# =============================================================================

class ErrorCode(Enum):
    """
    Explicit error codes for deterministic error handling.
    No silent fallbacks - every error state is enumerated.
    """
    # Normalization errors (terminal for the submission)
    MALFORMED_PAYLOAD = auto()
    MISSING_REQUIRED_FIELD = auto()

    # Pipeline errors (terminal for one accepted event)
    PROCESSING_FAILED = auto()

    # Persistence errors (recovered by the outbound queue)
    PERSISTENCE_FAILED = auto()

    # Capacity errors (dead-letter overflow)
    DEAD_LETTER_OVERFLOW = auto()


@dataclass(frozen=True)
class Error:
    """
    Immutable error representation with full context.
    Errors are data, not exceptions - they can be stored and queried.
    """
    code: ErrorCode
    message: str
    timestamp: datetime
    context: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)

    def with_context(self, key: str, value: str) -> Error:
        """Return new Error with additional context (immutable)."""
        return Error(
            code=self.code,
            message=self.message,
            timestamp=self.timestamp,
            context=self.context + ((key, value),)
        )

    def context_value(self, key: str) -> Optional[str]:
        for k, v in self.context:
            if k == key:
                return v
        return None


@dataclass(frozen=True)
class Result:
    """
    Generic result type for operations that can fail.
    Either contains a value OR an error, never both.
    """
    value: Optional[Any] = None
    error: Optional[Error] = None

    @property
    def is_success(self) -> bool:
        return self.error is None

    @property
    def is_failure(self) -> bool:
        return self.error is not None

    @staticmethod
    def success(value: Any) -> Result:
        return Result(value=value, error=None)

    @staticmethod
    def failure(error: Error) -> Result:
        return Result(value=None, error=error)


def normalization_error(
    code: ErrorCode,
    message: str,
    timestamp: Optional[datetime] = None,
    **context: str
) -> Error:
    """Build a NormalizationError value (MALFORMED_PAYLOAD / MISSING_REQUIRED_FIELD)."""
    error = Error(
        code=code,
        message=message,
        timestamp=timestamp or datetime.now(timezone.utc)
    )
    for key, value in context.items():
        error = error.with_context(key, value)
    return error


# =============================================================================
# EXCEPTIONS (persistence boundary only)
# =============================================================================

class PersistenceError(Exception):
    """Raised by a persistence gateway when a save cannot be completed.

    Transient by assumption: the outbound queue retries it with backoff.
    """

    def __init__(self, message: str, collection: Optional[str] = None):
        super().__init__(message)
        self.collection = collection


class CapacityError(Exception):
    """Dead-letter list overflow. Logged and counted, never raised to callers."""

    def __init__(self, message: str, evicted: Any = None):
        super().__init__(message)
        self.evicted = evicted
