"""
Deduplication Filter

Small-window suppression of immediately repeated emissions.

A sustained condition (speeding for three seconds, scraping along a wall)
makes the game client report the same violation or collision every frame.
The filter keeps the last few admitted emissions per session and drops an
event whose key was admitted less than bucket_seconds earlier. This is NOT
historical duplicate elimination: the same violation one bucket later is
admitted again.

KEY:
====
    kind | subtype | location-or-object

The time bucket is anchored on the last admitted emission of a key, not on
wall-clock second boundaries, so two emissions 500ms apart are always one
bucket (0.9s and 1.4s included). A sustained condition is therefore admitted
at most once per bucket_seconds.
"""

from __future__ import annotations
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Deque, Dict, FrozenSet, Optional, Tuple
import threading

from ..contracts.events import EventKind, NormalizedEvent


@dataclass
class DedupConfig:
    """Dedup window policy."""
    bucket_seconds: float = 1.0
    capacity: int = 10
    kinds: FrozenSet[EventKind] = field(
        default_factory=lambda: frozenset({EventKind.VIOLATION, EventKind.COLLISION})
    )

    def __post_init__(self):
        if self.bucket_seconds <= 0:
            raise ValueError("bucket_seconds must be positive")
        if self.capacity < 1:
            raise ValueError("capacity must be at least 1")


class DeduplicationFilter:
    """
    Bounded per-session FIFO key cache.

    Thread-safe; the only state it mutates is its own cache.
    """

    def __init__(self, config: Optional[DedupConfig] = None):
        self._config = config or DedupConfig()
        self._window = timedelta(seconds=self._config.bucket_seconds)
        self._recent: Dict[str, Deque[Tuple[str, datetime]]] = {}
        self._lock = threading.Lock()
        self._suppressed = 0

    def key_for(self, event: NormalizedEvent) -> str:
        return f"{event.kind.value}|{event.subtype}|{event.subject}"

    def admit(self, event: NormalizedEvent) -> bool:
        """True = forward, False = suppress as duplicate."""
        if event.kind not in self._config.kinds:
            return True

        key = self.key_for(event)
        at = event.occurred_at
        with self._lock:
            recent = self._recent.get(event.session_id)
            if recent is None:
                recent = deque(maxlen=self._config.capacity)
                self._recent[event.session_id] = recent
            for seen_key, seen_at in recent:
                if seen_key == key and timedelta(0) <= at - seen_at < self._window:
                    self._suppressed += 1
                    return False
            # deque(maxlen=...) evicts the oldest entry on overflow
            recent.append((key, at))
            return True

    def forget(self, session_id: str) -> None:
        with self._lock:
            self._recent.pop(session_id, None)

    def get_stats(self) -> dict:
        with self._lock:
            return {
                'tracked_sessions': len(self._recent),
                'suppressed': self._suppressed,
            }
