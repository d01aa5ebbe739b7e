"""
Injectable Clock
================

Every time read in the ingestion core goes through a clock object so that
bucketing, snapshot timers, idle timeouts and retry backoff are
deterministic under test.

MODES:
- SystemClock: real UTC wall-clock time (server time, never client time)
- ManualClock: time only moves when told to
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional


class Clock:
    """Clock interface."""

    def now(self) -> datetime:
        raise NotImplementedError


class SystemClock(Clock):
    """Live clock backed by the system time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def __repr__(self) -> str:
        return "SystemClock()"


@dataclass
class ManualClock(Clock):
    """
    Clock that only advances explicitly.

    Counts reads so a run can be inspected afterwards.
    """
    _current: datetime = field(
        default_factory=lambda: datetime(2024, 1, 1, tzinfo=timezone.utc)
    )
    _reads: int = 0

    def __post_init__(self):
        if self._current.tzinfo is None:
            self._current = self._current.replace(tzinfo=timezone.utc)

    def now(self) -> datetime:
        self._reads += 1
        return self._current

    def advance(
        self,
        seconds: float = 0.0,
        delta: Optional[timedelta] = None
    ) -> datetime:
        """Move time forward and return the new current time."""
        step = delta if delta is not None else timedelta(seconds=seconds)
        if step < timedelta(0):
            raise ValueError("ManualClock cannot move backwards")
        self._current = self._current + step
        return self._current

    def set(self, value: datetime) -> None:
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        if value < self._current:
            raise ValueError("ManualClock cannot move backwards")
        self._current = value

    def read_count(self) -> int:
        return self._reads

    def __repr__(self) -> str:
        return f"ManualClock({self._current.isoformat()}, reads={self._reads})"
