"""
Outbound Queue

Buffers records while the persistence backend is slow or unreachable and
flushes them in arrival order once it answers again.

GUARANTEES:
===========
1. enqueue() never blocks on I/O and never raises
2. FIFO: if A was enqueued before B, A is persisted before B
3. A failed record stops the pass; it is retried with exponential backoff
   (base 1s, doubling, capped at 60s)
4. After max_attempts the record moves to a bounded dead-letter list
   (logged, never silently discarded)
5. Shutdown gets a bounded final flush window; leftovers are logged and
   dropped

CONCURRENCY:
============
Many producers, one consumer. Producers append under a threading.Lock so
they may live on any thread (request handlers, the event loop). Only one
drain pass runs at a time; a second caller returns immediately. The lock
is never held across a gateway call.
"""

from __future__ import annotations
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Deque, Dict, List, Mapping, Optional
import asyncio
import logging
import threading

from ..contracts.base import CapacityError
from ..contracts.events import FlushReport
from ..temporal.clock import Clock, SystemClock
from .gateway import PersistenceGateway

logger = logging.getLogger(__name__)


@dataclass
class QueueConfig:
    """Retry, scheduling and capacity policy for the outbound queue."""
    base_backoff_seconds: float = 1.0
    max_backoff_seconds: float = 60.0
    max_attempts: int = 10
    drain_interval_seconds: float = 5.0
    dead_letter_capacity: int = 1000
    shutdown_timeout_seconds: float = 5.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.dead_letter_capacity < 1:
            raise ValueError("dead_letter_capacity must be at least 1")

    def backoff(self, attempts: int) -> timedelta:
        """Delay before the next attempt after `attempts` failures."""
        seconds = self.base_backoff_seconds * (2 ** max(attempts - 1, 0))
        return timedelta(seconds=min(seconds, self.max_backoff_seconds))


@dataclass
class QueuedRecord:
    """A record awaiting persistence. Private to the queue."""
    collection: str
    record: Dict[str, Any]
    first_queued_at: datetime
    attempts: int = 0
    next_attempt_at: Optional[datetime] = None
    last_error: Optional[str] = None


@dataclass(frozen=True)
class DeadLetter:
    """A record that exhausted its attempts, kept for manual inspection."""
    collection: str
    record: Dict[str, Any]
    attempts: int
    first_queued_at: datetime
    dead_lettered_at: datetime
    last_error: Optional[str]

    def to_dict(self) -> dict:
        return {
            'collection': self.collection,
            'record': self.record,
            'attempts': self.attempts,
            'first_queued_at': self.first_queued_at.isoformat(),
            'dead_lettered_at': self.dead_lettered_at.isoformat(),
            'last_error': self.last_error,
        }


class OutboundQueue:
    """Ordered in-memory buffer in front of a PersistenceGateway."""

    def __init__(
        self,
        gateway: PersistenceGateway,
        config: Optional[QueueConfig] = None,
        clock: Optional[Clock] = None,
        metrics=None
    ):
        self._gateway = gateway
        self._config = config or QueueConfig()
        self._clock = clock or SystemClock()
        self._metrics = metrics

        self._pending: Deque[QueuedRecord] = deque()
        self._dead: Deque[DeadLetter] = deque()
        self._lock = threading.Lock()
        self._draining = False

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._wakeup: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None
        self._stopping = False

        self._persisted = 0
        self._dead_evicted = 0
        self._dropped = 0

    @property
    def config(self) -> QueueConfig:
        return self._config

    # =========================================================================
    # PRODUCER SIDE
    # =========================================================================

    def enqueue(self, collection: str, record: Mapping[str, Any]) -> None:
        """Append a record. Never blocks on I/O, never raises."""
        try:
            item = QueuedRecord(
                collection=collection,
                record=dict(record),
                first_queued_at=self._clock.now()
            )
            with self._lock:
                self._pending.append(item)
                depth = len(self._pending)
            self._gauge("queue_depth", depth)
            self._wake()
        except Exception:
            logger.exception("Failed to enqueue record for %s", collection)

    # =========================================================================
    # CONSUMER SIDE
    # =========================================================================

    async def drain(self, force: bool = False) -> FlushReport:
        """
        One FIFO pass over the pending records.

        Stops at the first record that is still inside its backoff window
        (unless force=True) or that fails again.
        """
        with self._lock:
            if self._draining:
                return FlushReport(still_queued=len(self._pending))
            self._draining = True

        succeeded = failed = dead_lettered = 0
        try:
            while True:
                with self._lock:
                    if not self._pending:
                        break
                    head = self._pending[0]

                now = self._clock.now()
                if not force and head.next_attempt_at is not None and now < head.next_attempt_at:
                    break

                try:
                    doc_id = await self._gateway.save(head.collection, head.record)
                except Exception as e:
                    head.attempts += 1
                    head.last_error = f"{type(e).__name__}: {e}"
                    failed += 1
                    self._count("queue_save_failures_total")

                    if head.attempts >= self._config.max_attempts:
                        with self._lock:
                            self._pending.popleft()
                        self._dead_letter(head, now)
                        dead_lettered += 1
                        continue

                    delay = self._config.backoff(head.attempts)
                    head.next_attempt_at = now + delay
                    logger.warning(
                        "Save to %s failed (attempt %d/%d), retrying in %.0fs: %s",
                        head.collection, head.attempts, self._config.max_attempts,
                        delay.total_seconds(), head.last_error
                    )
                    break

                with self._lock:
                    self._pending.popleft()
                    self._persisted += 1
                succeeded += 1
                self._count("queue_persisted_total")
                logger.debug("Persisted %s record as %s", head.collection, doc_id)
        finally:
            with self._lock:
                self._draining = False
                remaining = len(self._pending)
            self._gauge("queue_depth", remaining)

        return FlushReport(
            succeeded=succeeded,
            failed=failed,
            dead_lettered=dead_lettered,
            still_queued=remaining
        )

    async def flush(self) -> FlushReport:
        """One pass that ignores backoff windows."""
        return await self.drain(force=True)

    # =========================================================================
    # BACKGROUND LOOP
    # =========================================================================

    def start(self) -> asyncio.Task:
        """Start the background drain loop on the running event loop."""
        if self._task is None or self._task.done():
            self._stopping = False
            self._task = asyncio.get_running_loop().create_task(self.run())
        return self._task

    async def run(self) -> None:
        """Drain after an enqueue, when the head record's backoff ends, or every drain_interval seconds."""
        self._loop = asyncio.get_running_loop()
        self._wakeup = asyncio.Event()
        if self.depth:
            self._wakeup.set()
        logger.info("Outbound queue drain loop started")
        try:
            while not self._stopping:
                try:
                    await asyncio.wait_for(self._wakeup.wait(), timeout=self._next_wait())
                except asyncio.TimeoutError:
                    pass
                self._wakeup.clear()
                if self._stopping:
                    break
                try:
                    await self.drain()
                except Exception:
                    logger.exception("Drain pass failed")
        finally:
            self._loop = None
            self._wakeup = None
            logger.info("Outbound queue drain loop stopped")

    def _next_wait(self) -> float:
        """Seconds to sleep before the next pass."""
        interval = self._config.drain_interval_seconds
        with self._lock:
            head = self._pending[0] if self._pending else None
        if head is None or head.next_attempt_at is None:
            return interval
        remaining = (head.next_attempt_at - self._clock.now()).total_seconds()
        return min(interval, max(remaining, 0.0))

    async def close(self, timeout: Optional[float] = None) -> FlushReport:
        """
        Stop the loop and give the queue a bounded final flush.

        Records still pending afterwards are logged and dropped; the
        returned report counts them in still_queued.
        """
        timeout = self._config.shutdown_timeout_seconds if timeout is None else timeout
        self._stopping = True
        self._wake()
        task = self._task

        async def final_flush() -> FlushReport:
            if task is not None:
                await task
            return await self.flush()

        report = FlushReport()
        try:
            report = await asyncio.wait_for(final_flush(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Shutdown flush window of %.1fs elapsed", timeout)
        finally:
            if task is not None and not task.done():
                task.cancel()
            self._task = None

        with self._lock:
            dropped = list(self._pending)
            self._pending.clear()
            self._dropped += len(dropped)
        if dropped:
            logger.error("Dropping %d unflushed records at shutdown", len(dropped))
            for item in dropped:
                logger.warning(
                    "Dropped %s record queued at %s after %d attempts",
                    item.collection, item.first_queued_at.isoformat(), item.attempts
                )
        self._gauge("queue_depth", 0)

        return FlushReport(
            succeeded=report.succeeded,
            failed=report.failed,
            dead_lettered=report.dead_lettered,
            still_queued=len(dropped)
        )

    # =========================================================================
    # HEALTH
    # =========================================================================

    @property
    def depth(self) -> int:
        with self._lock:
            return len(self._pending)

    @property
    def dead_letter_count(self) -> int:
        with self._lock:
            return len(self._dead)

    def dead_letters(self) -> List[DeadLetter]:
        with self._lock:
            return list(self._dead)

    def get_stats(self) -> dict:
        with self._lock:
            return {
                'depth': len(self._pending),
                'dead_letters': len(self._dead),
                'persisted': self._persisted,
                'dead_letter_evictions': self._dead_evicted,
                'dropped_at_shutdown': self._dropped,
            }

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _dead_letter(self, item: QueuedRecord, now: datetime) -> None:
        letter = DeadLetter(
            collection=item.collection,
            record=item.record,
            attempts=item.attempts,
            first_queued_at=item.first_queued_at,
            dead_lettered_at=now,
            last_error=item.last_error
        )
        overflow: Optional[CapacityError] = None
        with self._lock:
            if len(self._dead) >= self._config.dead_letter_capacity:
                evicted = self._dead.popleft()
                self._dead_evicted += 1
                overflow = CapacityError(
                    f"Dead-letter list full ({self._config.dead_letter_capacity}); "
                    f"evicted oldest {evicted.collection} record",
                    evicted
                )
            self._dead.append(letter)
            count = len(self._dead)

        logger.error(
            "Dead-lettered %s record after %d attempts: %s",
            item.collection, item.attempts, item.last_error
        )
        self._count("dead_letters_total")
        self._gauge("dead_letter_count", count)
        if overflow is not None:
            logger.error("%s", overflow)
            self._count("dead_letter_evictions_total")

    def _wake(self) -> None:
        loop, wakeup = self._loop, self._wakeup
        if loop is None or wakeup is None or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(wakeup.set)
        except RuntimeError:
            # loop shut down between the check and the call
            pass

    def _count(self, name: str) -> None:
        if self._metrics is not None:
            self._metrics.increment(name)

    def _gauge(self, name: str, value: float) -> None:
        if self._metrics is not None:
            self._metrics.set_gauge(name, value)
