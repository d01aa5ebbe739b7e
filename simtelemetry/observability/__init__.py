"""
Observability Layer

RESPONSIBILITY: Logging setup, metrics, health reporting
ALLOWED INPUTS: Counters and gauges pushed by other layers
OUTPUTS: MetricPoint series, HealthReport

WHAT THIS LAYER MUST NOT DO:
============================
- Modify system behavior
- Make decisions based on recorded metrics
- Block or delay other layer operations
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union
import logging
import threading


LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'


def configure_logging(level: Union[int, str] = logging.INFO) -> None:
    """Configure root logging for the service process."""
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger('simtelemetry').setLevel(level)


# =============================================================================
# METRICS COLLECTOR
# =============================================================================

class MetricType(Enum):
    """Types of metrics collected."""
    COUNTER = "counter"
    GAUGE = "gauge"


@dataclass
class MetricDefinition:
    """Definition of a metric to collect."""
    name: str
    metric_type: MetricType
    description: str
    labels: Tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class MetricPoint:
    """Immutable metric data point."""
    metric_name: str
    value: float
    timestamp: datetime
    labels: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)


class MetricsCollector:
    """
    Counters and gauges for the ingestion pipeline.

    Every update appends a point; counters also keep a running total so
    health checks do not have to sum series.
    """

    def __init__(self, history_limit: int = 1000):
        self._history_limit = history_limit
        self._metrics: Dict[str, List[MetricPoint]] = {}
        self._definitions: Dict[str, MetricDefinition] = {}
        self._totals: Dict[str, float] = {}
        self._lock = threading.Lock()
        self._register_default_metrics()

    def _register_default_metrics(self):
        """Register standard metrics."""
        defaults = [
            MetricDefinition(
                name="events_accepted_total",
                metric_type=MetricType.COUNTER,
                description="Submissions normalized and applied",
                labels=("kind",)
            ),
            MetricDefinition(
                name="events_suppressed_total",
                metric_type=MetricType.COUNTER,
                description="Submissions dropped as duplicates",
                labels=("kind",)
            ),
            MetricDefinition(
                name="events_rejected_total",
                metric_type=MetricType.COUNTER,
                description="Submissions that failed normalization",
                labels=("code",)
            ),
            MetricDefinition(
                name="snapshots_emitted_total",
                metric_type=MetricType.COUNTER,
                description="Session snapshots queued for persistence",
                labels=("reason",)
            ),
            MetricDefinition(
                name="queue_persisted_total",
                metric_type=MetricType.COUNTER,
                description="Records saved by the gateway"
            ),
            MetricDefinition(
                name="queue_save_failures_total",
                metric_type=MetricType.COUNTER,
                description="Failed gateway save attempts"
            ),
            MetricDefinition(
                name="dead_letters_total",
                metric_type=MetricType.COUNTER,
                description="Records moved to the dead-letter list"
            ),
            MetricDefinition(
                name="dead_letter_evictions_total",
                metric_type=MetricType.COUNTER,
                description="Dead letters evicted because the list was full"
            ),
            MetricDefinition(
                name="queue_depth",
                metric_type=MetricType.GAUGE,
                description="Records waiting in the outbound queue"
            ),
            MetricDefinition(
                name="dead_letter_count",
                metric_type=MetricType.GAUGE,
                description="Records held in the dead-letter list"
            ),
            MetricDefinition(
                name="sessions_active",
                metric_type=MetricType.GAUGE,
                description="Sessions tracked in memory and not ended"
            ),
        ]

        for definition in defaults:
            self.register_metric(definition)

    def register_metric(self, definition: MetricDefinition):
        """Register a new metric definition."""
        with self._lock:
            self._definitions[definition.name] = definition
            self._metrics.setdefault(definition.name, [])

    def record(
        self,
        metric_name: str,
        value: float,
        labels: Optional[Dict[str, str]] = None
    ):
        """Record a metric data point."""
        label_tuple = tuple(sorted(labels.items())) if labels else ()
        point = MetricPoint(
            metric_name=metric_name,
            value=value,
            timestamp=datetime.now(timezone.utc),
            labels=label_tuple
        )
        with self._lock:
            points = self._metrics.setdefault(metric_name, [])
            points.append(point)
            if len(points) > self._history_limit:
                del points[:len(points) - self._history_limit]

    def increment(
        self,
        metric_name: str,
        value: float = 1,
        labels: Optional[Dict[str, str]] = None
    ):
        """Add to a counter."""
        with self._lock:
            self._totals[metric_name] = self._totals.get(metric_name, 0) + value
        self.record(metric_name, value, labels)

    def set_gauge(
        self,
        metric_name: str,
        value: float,
        labels: Optional[Dict[str, str]] = None
    ):
        """Set a gauge to its current value."""
        self.record(metric_name, value, labels)

    def total(self, metric_name: str) -> float:
        """Running total of a counter."""
        with self._lock:
            return self._totals.get(metric_name, 0)

    def get_metric(self, metric_name: str) -> List[MetricPoint]:
        with self._lock:
            return list(self._metrics.get(metric_name, []))

    def get_latest(self, metric_name: str) -> Optional[MetricPoint]:
        """Get the latest value for a metric."""
        with self._lock:
            points = self._metrics.get(metric_name, [])
            return points[-1] if points else None

    def definitions(self) -> List[MetricDefinition]:
        with self._lock:
            return list(self._definitions.values())

    def summary(self) -> Dict[str, float]:
        """Counter totals and latest gauge values."""
        with self._lock:
            result: Dict[str, float] = {}
            for name, definition in self._definitions.items():
                if definition.metric_type == MetricType.COUNTER:
                    result[name] = self._totals.get(name, 0)
                else:
                    points = self._metrics.get(name, [])
                    result[name] = points[-1].value if points else 0
            return result


# =============================================================================
# HEALTH
# =============================================================================

@dataclass(frozen=True)
class HealthReport:
    """Operational state of one ingestor."""
    queue_depth: int
    dead_letter_count: int
    active_sessions: int
    accepted: int = 0
    suppressed: int = 0
    rejected: int = 0
    running: bool = False

    @property
    def status(self) -> str:
        return "degraded" if self.dead_letter_count > 0 else "healthy"

    def to_dict(self) -> dict:
        return {
            'status': self.status,
            'queue_depth': self.queue_depth,
            'dead_letter_count': self.dead_letter_count,
            'active_sessions': self.active_sessions,
            'accepted': self.accepted,
            'suppressed': self.suppressed,
            'rejected': self.rejected,
            'running': self.running,
        }


__all__ = [
    'LOG_FORMAT', 'configure_logging',
    'MetricType', 'MetricDefinition', 'MetricPoint', 'MetricsCollector',
    'HealthReport',
]
