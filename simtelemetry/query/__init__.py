"""
Query Layer

RESPONSIBILITY: Read-only access to session statistics, user totals and progress
ALLOWED INPUTS: Session ids, user ids
OUTPUTS: SessionStats, UserAggregate, progress documents

WHAT THIS LAYER MUST NOT DO:
============================
- Mutate session state or enqueue records
- Count the same session twice

SOURCES:
========
1. Live sessions held by the SessionAggregator (authoritative while present)
2. The latest persisted `sessions` snapshot, for sessions already evicted,
   when the gateway offers history

SESSION IDENTITY:
=================
A session id is reused when a client keeps sending after `end`. Each run
of a session is identified by (session_id, started_at): the final snapshot
of an ended run still counts after the same id reopens with zeroed counters.

A PersistenceError from the history lookup propagates to the caller.
"""

from __future__ import annotations
from datetime import datetime
from typing import Any, Dict, Optional, Tuple
import logging

from ..contracts.events import GAME_PROGRESS, SESSIONS, SessionStats, UserAggregate
from ..core.aggregator import SessionAggregator
from ..storage.gateway import PersistenceGateway

logger = logging.getLogger(__name__)

RunKey = Tuple[str, datetime]


class QueryService:
    """Read-only queries over live and persisted sessions."""

    def __init__(self, aggregator: SessionAggregator, gateway: PersistenceGateway):
        self._aggregator = aggregator
        self._gateway = gateway

    async def get_session_stats(self, session_id: str) -> Optional[SessionStats]:
        live = self._aggregator.get(session_id)
        if live is not None:
            return live
        if not self._gateway.supports_history:
            return None

        documents = await self._gateway.find(SESSIONS, "sessionId", session_id)
        if not documents:
            return None
        return SessionStats.from_document(documents[-1])

    async def get_user_aggregate(self, user_id: str) -> UserAggregate:
        runs: Dict[RunKey, SessionStats] = {}
        if self._gateway.supports_history:
            runs.update(await self._persisted_runs(user_id))
        # Live state supersedes the persisted snapshot of the same run
        for stats in self._aggregator.sessions_for_user(user_id):
            runs[(stats.session_id, stats.started_at)] = stats

        return UserAggregate(
            user_id=user_id,
            total_violations=sum(s.violation_count for s in runs.values()),
            total_collisions=sum(s.collision_count for s in runs.values()),
            total_sessions=len(runs)
        )

    async def get_latest_progress(self, user_id: str) -> Optional[Dict[str, Any]]:
        """
        The user's most recent progress, for restoring a game.

        The latest persisted `gameProgress` document when history is
        available; otherwise the score and level of the user's most recently
        active live session. None when the user has no progress at all.
        """
        if self._gateway.supports_history:
            documents = await self._gateway.find(GAME_PROGRESS, "userId", user_id)
            if documents:
                return documents[-1]

        live = [
            stats for stats in self._aggregator.sessions_for_user(user_id)
            if stats.progress_count or stats.score or stats.level
        ]
        if not live:
            return None
        latest = max(live, key=lambda s: s.last_event_at)
        return {
            "userId": latest.user_id,
            "sessionId": latest.session_id,
            "level": latest.level,
            "score": latest.score,
            "occurredAt": latest.last_event_at.isoformat(),
        }

    async def _persisted_runs(self, user_id: str) -> Dict[RunKey, SessionStats]:
        """Latest snapshot of each persisted run (documents are oldest first)."""
        latest: Dict[Tuple[str, str], dict] = {}
        for document in await self._gateway.find(SESSIONS, "userId", user_id):
            session_id = document.get("sessionId")
            if session_id:
                latest[(session_id, str(document.get("startedAt")))] = document

        runs: Dict[RunKey, SessionStats] = {}
        for (session_id, _), document in latest.items():
            try:
                stats = SessionStats.from_document(document)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping unreadable snapshot for session %s: %s", session_id, e)
                continue
            runs[(stats.session_id, stats.started_at)] = stats
        return runs


__all__ = ['QueryService']
