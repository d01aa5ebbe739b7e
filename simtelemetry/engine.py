"""
Engine Orchestration Module

The Ingestor wires the layers together and owns the background tasks.

DESIGN PRINCIPLES:
==================
1. Layers communicate ONLY through contracts
2. Collaborators are injected; there are no module-level singletons
3. Each stage returns a value; the Ingestor decides to log-and-continue
4. submit() never waits on the network

LAYER FLOW:
===========
1. Normalization: RawSubmission -> NormalizedEvent (or Error)
2. Sequencing: per-session sequence number
3. Dedup: suppress repeated emissions
4. Core: SeverityAnnotation, then AggregationResult
5. Storage: event document + snapshot enqueued for persistence
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional
import asyncio
import logging
import threading

from .contracts.base import Error, ErrorCode
from .contracts.events import (
    Acknowledgment, AckStatus, AggregationResult, COLLECTION_FOR_KIND,
    EventKind, NormalizedEvent, RawSubmission, SESSIONS, SessionStats,
    Severity, SeverityAnnotation
)
from .normalization import EventNormalizer, NormalizationConfig
from .normalization.dedup import DedupConfig, DeduplicationFilter
from .core.severity import SeverityClassifier, SeverityPolicy
from .core.aggregator import SessionAggregator, SnapshotPolicy
from .storage.gateway import PersistenceGateway, InMemoryGateway
from .storage.queue import OutboundQueue, QueueConfig
from .observability import HealthReport, MetricsCollector
from .temporal.clock import Clock, SystemClock

logger = logging.getLogger(__name__)

_CLASSIFIED_KINDS = (EventKind.VIOLATION, EventKind.COLLISION)


@dataclass
class IngestorConfig:
    """Unified configuration for the ingestion pipeline."""
    normalization: Optional[NormalizationConfig] = None
    dedup: Optional[DedupConfig] = None
    severity: Optional[SeverityPolicy] = None
    snapshots: Optional[SnapshotPolicy] = None
    queue: Optional[QueueConfig] = None
    tick_interval_seconds: float = 5.0

    def __post_init__(self):
        self.normalization = self.normalization or NormalizationConfig()
        self.dedup = self.dedup or DedupConfig()
        self.severity = self.severity or SeverityPolicy()
        self.snapshots = self.snapshots or SnapshotPolicy()
        self.queue = self.queue or QueueConfig()


class Ingestor:
    """
    Single ingress point for game-client telemetry.

    submit() is synchronous and thread-safe. Persistence happens later on
    the queue's drain loop; callers only ever see an Acknowledgment.
    """

    def __init__(
        self,
        normalizer: EventNormalizer,
        dedup: DeduplicationFilter,
        classifier: SeverityClassifier,
        aggregator: SessionAggregator,
        queue: OutboundQueue,
        gateway: PersistenceGateway,
        clock: Optional[Clock] = None,
        metrics: Optional[MetricsCollector] = None,
        tick_interval_seconds: float = 5.0
    ):
        self._normalizer = normalizer
        self._dedup = dedup
        self._classifier = classifier
        self._aggregator = aggregator
        self._queue = queue
        self._gateway = gateway
        self._clock = clock or SystemClock()
        self._metrics = metrics or MetricsCollector()
        self._tick_interval = tick_interval_seconds

        self._sequences: Dict[str, int] = {}
        self._counter_lock = threading.Lock()
        self._accepted = 0
        self._suppressed = 0
        self._rejected = 0

        self._tick_task: Optional[asyncio.Task] = None

    @classmethod
    def create(
        cls,
        gateway: Optional[PersistenceGateway] = None,
        config: Optional[IngestorConfig] = None,
        clock: Optional[Clock] = None,
        metrics: Optional[MetricsCollector] = None
    ) -> Ingestor:
        """Build an Ingestor with default collaborators."""
        config = config or IngestorConfig()
        gateway = gateway or InMemoryGateway()
        clock = clock or SystemClock()
        metrics = metrics or MetricsCollector()
        return cls(
            normalizer=EventNormalizer(config.normalization),
            dedup=DeduplicationFilter(config.dedup),
            classifier=SeverityClassifier(config.severity),
            aggregator=SessionAggregator(config.snapshots),
            queue=OutboundQueue(gateway, config.queue, clock, metrics),
            gateway=gateway,
            clock=clock,
            metrics=metrics,
            tick_interval_seconds=config.tick_interval_seconds
        )

    # =========================================================================
    # INGRESS
    # =========================================================================

    def submit(
        self,
        payload: Any,
        kind: Any,
        session_id: Optional[str] = None,
        user_id: Optional[str] = None
    ) -> Acknowledgment:
        """Accept one raw submission. Never raises for bad input."""
        raw = RawSubmission(
            payload=payload,
            kind=kind,
            received_at=self._clock.now(),
            session_id=session_id,
            user_id=user_id
        )

        try:
            result = self._normalizer.normalize(raw)
        except Exception as e:
            logger.exception("Normalizer failed on %s submission", kind)
            return self._reject(self._processing_error(e, raw), session_id)
        if result.is_failure:
            return self._reject(result.error, session_id)
        event: NormalizedEvent = result.value

        try:
            return self._process(event)
        except Exception as e:
            logger.exception(
                "Failed to process %s event for session %s",
                event.kind.value, event.session_id
            )
            return self._reject(self._processing_error(e, raw), event.session_id)

    def set_score(
        self,
        session_id: str,
        score: int,
        level: Optional[int] = None,
        user_id: Optional[str] = None
    ) -> SessionStats:
        """Overwrite a session's score; snapshots it if one is due."""
        with self._aggregator.lock_for(session_id):
            outcome = self._aggregator.set_score(
                session_id, score, self._clock.now(), level=level, user_id=user_id
            )
            self._emit_snapshot(outcome)
        return outcome.updated_stats

    def add_score(
        self,
        session_id: str,
        delta: int,
        user_id: Optional[str] = None
    ) -> SessionStats:
        """Increment a session's score; snapshots it if one is due."""
        with self._aggregator.lock_for(session_id):
            outcome = self._aggregator.add_score(
                session_id, delta, self._clock.now(), user_id=user_id
            )
            self._emit_snapshot(outcome)
        return outcome.updated_stats

    # =========================================================================
    # PIPELINE
    # =========================================================================

    def _process(self, event: NormalizedEvent) -> Acknowledgment:
        with self._aggregator.lock_for(event.session_id):
            event = event.with_sequence(self._next_sequence(event.session_id))

            if not self._dedup.admit(event):
                with self._counter_lock:
                    self._suppressed += 1
                self._metrics.increment("events_suppressed_total", labels={"kind": event.kind.value})
                logger.debug(
                    "Suppressed repeated %s (%s) for session %s",
                    event.kind.value, event.subtype, event.session_id
                )
                return Acknowledgment(
                    status=AckStatus.SUPPRESSED,
                    session_id=event.session_id,
                    sequence_number=event.sequence_number
                )

            severity: Optional[SeverityAnnotation] = None
            if event.kind in _CLASSIFIED_KINDS:
                severity = self._classifier.classify(event)

            outcome = self._aggregator.apply(event, severity)

            collection = COLLECTION_FOR_KIND.get(event.kind)
            if collection is not None:
                self._queue.enqueue(collection, self._event_document(event, severity))
            self._emit_snapshot(outcome)

        with self._counter_lock:
            self._accepted += 1
        self._metrics.increment("events_accepted_total", labels={"kind": event.kind.value})
        if severity is not None and severity.severity == Severity.HIGH:
            logger.info(
                "High severity %s (%s) in session %s",
                event.kind.value, event.subtype, event.session_id
            )

        return Acknowledgment(
            status=AckStatus.ACCEPTED,
            session_id=event.session_id,
            sequence_number=event.sequence_number
        )

    @staticmethod
    def _event_document(
        event: NormalizedEvent,
        severity: Optional[SeverityAnnotation]
    ) -> Dict[str, Any]:
        document = event.to_document()
        if severity is not None:
            document["severity"] = severity.severity.value
            if event.kind == EventKind.COLLISION:
                document["damage"] = severity.score
            else:
                document["severityScore"] = severity.score
        return document

    def _emit_snapshot(self, outcome: AggregationResult) -> None:
        snapshot = outcome.snapshot_to_emit
        if snapshot is None:
            return
        self._queue.enqueue(SESSIONS, snapshot.to_document(outcome.snapshot_reason))
        self._metrics.increment(
            "snapshots_emitted_total", labels={"reason": outcome.snapshot_reason or ""}
        )
        logger.debug(
            "Snapshot queued for session %s (%s)",
            snapshot.session_id, outcome.snapshot_reason
        )

    def _next_sequence(self, session_id: str) -> int:
        # caller holds the session lock
        with self._counter_lock:
            sequence = self._sequences.get(session_id, 0) + 1
            self._sequences[session_id] = sequence
        return sequence

    @staticmethod
    def _processing_error(exc: Exception, raw: RawSubmission) -> Error:
        return Error(
            code=ErrorCode.PROCESSING_FAILED,
            message=f"{type(exc).__name__}: {exc}",
            timestamp=raw.received_at
        )

    def _reject(self, error: Error, session_id: Optional[str]) -> Acknowledgment:
        with self._counter_lock:
            self._rejected += 1
        self._metrics.increment("events_rejected_total", labels={"code": error.code.name})
        logger.warning(
            "Rejected submission (%s): %s [sample=%r]",
            error.code.name, error.message, error.context_value("sample")
        )
        return Acknowledgment(
            status=AckStatus.REJECTED,
            session_id=session_id,
            error=error
        )

    # =========================================================================
    # TIMER TICK
    # =========================================================================

    def tick(self, now: Optional[datetime] = None) -> List[AggregationResult]:
        """
        Periodic work: interval and idle-timeout snapshots, then eviction
        of ended sessions whose final snapshot is already queued.
        """
        now = now or self._clock.now()
        outcomes = self._aggregator.collect_due(now)
        for outcome in outcomes:
            with self._aggregator.lock_for(outcome.updated_stats.session_id):
                self._emit_snapshot(outcome)

        for session_id in self._aggregator.ended_session_ids():
            with self._aggregator.lock_for(session_id):
                if self._aggregator.evict(session_id, only_if_ended=True) is not None:
                    self._dedup.forget(session_id)
                    with self._counter_lock:
                        self._sequences.pop(session_id, None)

        self._metrics.set_gauge("sessions_active", self._aggregator.active_count)
        return outcomes

    async def _tick_loop(self) -> None:
        while True:
            await asyncio.sleep(self._tick_interval)
            try:
                self.tick()
            except Exception:
                logger.exception("Tick failed")

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def start(self) -> None:
        """Start the tick loop and the queue's drain loop."""
        if self._tick_task is not None and not self._tick_task.done():
            return
        self._queue.start()
        self._tick_task = asyncio.get_running_loop().create_task(self._tick_loop())
        logger.info("Ingestor started (tick every %.1fs)", self._tick_interval)

    async def stop(self, timeout: Optional[float] = None) -> None:
        """Stop background work and give the queue its final flush window."""
        if self._tick_task is not None:
            self._tick_task.cancel()
            try:
                await self._tick_task
            except asyncio.CancelledError:
                pass
            self._tick_task = None

        report = await self._queue.close(timeout)
        await self._gateway.close()
        logger.info(
            "Ingestor stopped: %d flushed, %d dead-lettered, %d dropped",
            report.succeeded, report.dead_lettered, report.still_queued
        )

    @property
    def running(self) -> bool:
        return self._tick_task is not None and not self._tick_task.done()

    # =========================================================================
    # HEALTH & ACCESSORS
    # =========================================================================

    def health(self) -> HealthReport:
        with self._counter_lock:
            accepted, suppressed, rejected = self._accepted, self._suppressed, self._rejected
        return HealthReport(
            queue_depth=self._queue.depth,
            dead_letter_count=self._queue.dead_letter_count,
            active_sessions=self._aggregator.active_count,
            accepted=accepted,
            suppressed=suppressed,
            rejected=rejected,
            running=self.running
        )

    @property
    def aggregator(self) -> SessionAggregator:
        return self._aggregator

    @property
    def queue(self) -> OutboundQueue:
        return self._queue

    @property
    def gateway(self) -> PersistenceGateway:
        return self._gateway

    @property
    def metrics(self) -> MetricsCollector:
        return self._metrics

    @property
    def clock(self) -> Clock:
        return self._clock
