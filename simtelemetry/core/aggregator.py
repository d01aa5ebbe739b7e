"""
Session Aggregator

RESPONSIBILITY: Running per-session statistics and snapshot decisions
ALLOWED INPUTS: NormalizedEvent (+ SeverityAnnotation for violations/collisions)
OUTPUTS: AggregationResult (frozen SessionStats copies)

OWNERSHIP:
==========
The aggregator is the only component that mutates session state. It keeps a
private mutable record per session id and hands out frozen SessionStats.

SNAPSHOT TRIGGERS (auto-save):
==============================
A snapshot is emitted when any of these fire:
1. interval elapsed since the last snapshot (default 30s)
2. violation_count reaches a multiple of violation_every (default 5)
3. collision_count reaches a multiple of collision_every (default 3)
4. SessionControl:snapshot (forced)
5. SessionControl:end or idle timeout (final snapshot)

Bursts of activity are saved proactively, not only on the clock.

IMPLICIT START:
===============
An event for an unknown session that is not SessionControl:start opens the
session implicitly. The event is applied, never dropped.

CONCURRENCY:
============
Each session has its own re-entrant lock (see lock_for). The map itself is
guarded by a separate lock that is never held while a session is updated,
so different sessions aggregate in parallel.
"""

from __future__ import annotations
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Iterator, List, Optional
import logging
import threading

from ..contracts.events import (
    AggregationResult, EventKind, NormalizedEvent, SessionAction,
    SessionStats, Severity, SeverityAnnotation
)

logger = logging.getLogger(__name__)


# Snapshot reasons (persisted as snapshotReason)
REASON_INTERVAL = "interval"
REASON_VIOLATIONS = "violation_threshold"
REASON_COLLISIONS = "collision_threshold"
REASON_REQUESTED = "requested"
REASON_SESSION_END = "session_end"
REASON_IDLE_TIMEOUT = "idle_timeout"

END_EXPLICIT = "explicit"
END_IDLE = "idle_timeout"


@dataclass
class SnapshotPolicy:
    """Auto-save thresholds and session lifetime policy."""
    interval_seconds: float = 30.0
    violation_every: int = 5
    collision_every: int = 3
    idle_timeout_seconds: float = 600.0

    def __post_init__(self):
        if self.interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        if self.idle_timeout_seconds <= 0:
            raise ValueError("idle_timeout_seconds must be positive")

    @property
    def interval(self) -> timedelta:
        return timedelta(seconds=self.interval_seconds)

    @property
    def idle_timeout(self) -> timedelta:
        return timedelta(seconds=self.idle_timeout_seconds)


@dataclass
class _SessionState:
    """Mutable running statistics. Never leaves the aggregator."""
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
    dirty: bool = False

    def freeze(self) -> SessionStats:
        return SessionStats(
            session_id=self.session_id,
            user_id=self.user_id,
            started_at=self.started_at,
            last_event_at=self.last_event_at,
            last_snapshot_at=self.last_snapshot_at,
            violation_count=self.violation_count,
            collision_count=self.collision_count,
            high_severity_count=self.high_severity_count,
            max_speed=self.max_speed,
            total_distance=self.total_distance,
            score=self.score,
            level=self.level,
            event_count=self.event_count,
            progress_count=self.progress_count,
            ended_at=self.ended_at,
            end_reason=self.end_reason,
        )


class SessionAggregator:
    """Owns the session map; every mutation goes through this class."""

    def __init__(self, policy: Optional[SnapshotPolicy] = None):
        self._policy = policy or SnapshotPolicy()
        self._sessions: Dict[str, _SessionState] = {}
        self._locks: Dict[str, threading.RLock] = {}
        self._map_lock = threading.Lock()
        self._implicit_starts = 0
        self._snapshots_emitted = 0

    @property
    def policy(self) -> SnapshotPolicy:
        return self._policy

    # =========================================================================
    # LOCKING
    # =========================================================================

    @contextmanager
    def lock_for(self, session_id: str) -> Iterator[None]:
        """
        Serialize work on one session.

        Re-entrant. Survives eviction: a waiter that acquired the lock of an
        evicted session retries with the replacement lock.
        """
        while True:
            with self._map_lock:
                lock = self._locks.get(session_id)
                if lock is None:
                    lock = threading.RLock()
                    self._locks[session_id] = lock
            lock.acquire()
            with self._map_lock:
                current = self._locks.get(session_id)
            if current is lock:
                break
            lock.release()
        try:
            yield
        finally:
            lock.release()

    # =========================================================================
    # APPLY
    # =========================================================================

    def apply(
        self,
        event: NormalizedEvent,
        severity: Optional[SeverityAnnotation] = None
    ) -> AggregationResult:
        at = event.occurred_at
        action = event.get("action") if event.kind == EventKind.SESSION_CONTROL else None
        is_start = action == SessionAction.START.value

        with self.lock_for(event.session_id):
            state, created = self._get_or_start(event.session_id, event.user_id, at)
            if created and not is_start:
                self._count_implicit_start()
                logger.info(
                    "Implicit start for session %s (first event: %s)",
                    event.session_id, event.kind.value
                )

            reason: Optional[str] = None
            state.event_count += 1
            state.last_event_at = at
            state.dirty = True

            if event.kind == EventKind.SESSION_CONTROL:
                if is_start and not created:
                    logger.debug("Session %s already active; start ignored", event.session_id)
                elif action == SessionAction.END.value:
                    state.ended_at = at
                    state.end_reason = END_EXPLICIT
                    reason = REASON_SESSION_END
                elif action == SessionAction.SNAPSHOT.value:
                    reason = REASON_REQUESTED

            elif event.kind == EventKind.VIOLATION:
                state.violation_count += 1
                every = self._policy.violation_every
                if every > 0 and state.violation_count % every == 0:
                    reason = REASON_VIOLATIONS

            elif event.kind == EventKind.COLLISION:
                state.collision_count += 1
                every = self._policy.collision_every
                if every > 0 and state.collision_count % every == 0:
                    reason = REASON_COLLISIONS

            elif event.kind == EventKind.DRIVING_EVENT:
                distance = event.number("distance")
                if distance is not None and distance > 0:
                    state.total_distance += distance

            elif event.kind == EventKind.PROGRESS:
                state.progress_count += 1
                if event.get("scoreDelta") is not None:
                    delta = event.number("scoreDelta")
                    if delta is not None:
                        state.score += int(delta)
                else:
                    # Progress reports are absolute, not increments
                    state.score = int(event.number("score") or 0)
                    state.level = int(event.number("level") or 0)

            if severity is not None and severity.severity == Severity.HIGH:
                state.high_severity_count += 1

            for key in ("speed", "maxSpeedMPH"):
                speed = event.number(key)
                if speed is not None and speed > state.max_speed:
                    state.max_speed = speed

            if reason is None and at - state.last_snapshot_at >= self._policy.interval:
                reason = REASON_INTERVAL

            return self._result(state, reason, at)

    # =========================================================================
    # EXPLICIT SCORE OPERATIONS
    # =========================================================================

    def set_score(
        self,
        session_id: str,
        score: int,
        at: datetime,
        level: Optional[int] = None,
        user_id: Optional[str] = None
    ) -> AggregationResult:
        """Overwrite the session score (and optionally level)."""
        with self.lock_for(session_id):
            state = self._touch(session_id, user_id, at)
            state.score = int(score)
            if level is not None:
                state.level = int(level)
            return self._result(state, self._interval_reason(state, at), at)

    def add_score(
        self,
        session_id: str,
        delta: int,
        at: datetime,
        user_id: Optional[str] = None
    ) -> AggregationResult:
        """Increment the session score."""
        with self.lock_for(session_id):
            state = self._touch(session_id, user_id, at)
            state.score += int(delta)
            return self._result(state, self._interval_reason(state, at), at)

    # =========================================================================
    # TIMER TICK
    # =========================================================================

    def collect_due(self, now: datetime) -> List[AggregationResult]:
        """
        Periodic snapshots for quiet-but-changed sessions, and idle expiry.

        Replaces per-frame polling: the orchestrator calls this on a timer.
        """
        with self._map_lock:
            session_ids = list(self._sessions.keys())

        results: List[AggregationResult] = []
        for session_id in session_ids:
            with self.lock_for(session_id):
                state = self._sessions.get(session_id)
                if state is None or state.ended_at is not None:
                    continue
                if now - state.last_event_at >= self._policy.idle_timeout:
                    state.ended_at = now
                    state.end_reason = END_IDLE
                    logger.info(
                        "Session %s idle since %s; ending",
                        session_id, state.last_event_at.isoformat()
                    )
                    results.append(self._result(state, REASON_IDLE_TIMEOUT, now))
                elif state.dirty and now - state.last_snapshot_at >= self._policy.interval:
                    results.append(self._result(state, REASON_INTERVAL, now))
        return results

    # =========================================================================
    # LIFECYCLE & QUERIES
    # =========================================================================

    def evict(self, session_id: str, only_if_ended: bool = False) -> Optional[SessionStats]:
        """Drop a session from memory (after its final snapshot is queued)."""
        with self._map_lock:
            state = self._sessions.get(session_id)
            if state is None or (only_if_ended and state.ended_at is None):
                return None
            del self._sessions[session_id]
            self._locks.pop(session_id, None)
        logger.debug("Evicted session %s", session_id)
        return state.freeze()

    def get(self, session_id: str) -> Optional[SessionStats]:
        with self._map_lock:
            if session_id not in self._sessions:
                return None
        with self.lock_for(session_id):
            state = self._sessions.get(session_id)
            return state.freeze() if state is not None else None

    def sessions_for_user(self, user_id: str) -> List[SessionStats]:
        with self._map_lock:
            session_ids = [
                s.session_id for s in self._sessions.values() if s.user_id == user_id
            ]
        stats = []
        for session_id in session_ids:
            current = self.get(session_id)
            if current is not None:
                stats.append(current)
        return stats

    def ended_session_ids(self) -> List[str]:
        """Sessions that ended and are waiting to be evicted."""
        with self._map_lock:
            return [s.session_id for s in self._sessions.values() if s.ended_at is not None]

    @property
    def active_count(self) -> int:
        with self._map_lock:
            return sum(1 for s in self._sessions.values() if s.ended_at is None)

    def get_stats(self) -> dict:
        with self._map_lock:
            tracked = len(self._sessions)
        return {
            'tracked_sessions': tracked,
            'active_sessions': self.active_count,
            'implicit_starts': self._implicit_starts,
            'snapshots_emitted': self._snapshots_emitted,
        }

    # =========================================================================
    # INTERNALS (caller holds the session lock)
    # =========================================================================

    def _get_or_start(self, session_id: str, user_id: str, at: datetime):
        with self._map_lock:
            state = self._sessions.get(session_id)
            if state is not None and state.ended_at is None:
                return state, False
            if state is not None:
                logger.info("Session %s reopened after end", session_id)
            state = _SessionState(
                session_id=session_id,
                user_id=user_id,
                started_at=at,
                last_event_at=at,
                last_snapshot_at=at,
            )
            self._sessions[session_id] = state
            return state, True

    def _touch(self, session_id: str, user_id: Optional[str], at: datetime) -> _SessionState:
        state, created = self._get_or_start(session_id, user_id or "anonymous", at)
        if created:
            self._count_implicit_start()
            logger.info("Implicit start for session %s (score update)", session_id)
        state.last_event_at = at
        state.dirty = True
        return state

    def _count_implicit_start(self) -> None:
        with self._map_lock:
            self._implicit_starts += 1

    def _interval_reason(self, state: _SessionState, at: datetime) -> Optional[str]:
        if at - state.last_snapshot_at >= self._policy.interval:
            return REASON_INTERVAL
        return None

    def _result(
        self,
        state: _SessionState,
        reason: Optional[str],
        at: datetime
    ) -> AggregationResult:
        if reason is None:
            return AggregationResult(updated_stats=state.freeze())
        state.last_snapshot_at = at
        state.dirty = False
        with self._map_lock:
            self._snapshots_emitted += 1
        snapshot = state.freeze()
        return AggregationResult(
            updated_stats=snapshot,
            snapshot_to_emit=snapshot,
            snapshot_reason=reason
        )
