"""
Observability & Audit Layer

RESPONSIBILITY: Audit logging and metrics for every layer
ALLOWED INPUTS: Notifications from the log, the queue and the store
OUTPUTS: AuditLogEntry records, MetricPoint series

WHAT THIS LAYER MUST NOT DO:
============================
- Modify system behavior
- Filter or interpret events (only record them)
- Block other layer operations beyond a short append
"""

from __future__ import annotations
from dataclasses import dataclass, field
from collections import deque
from typing import Deque, Dict, List, Optional, Tuple
from enum import Enum
import itertools
import threading

from ..config import ObservabilityConfig
from ..contracts.base import Error, Timestamp


# =============================================================================
# AUDIT RECORDS
# =============================================================================

class AuditEventType(Enum):
    """Explicit audit event types."""
    SNAPSHOT = "snapshot"
    WARNING = "warning"
    QUERY = "query"
    ERROR = "error"
    SYSTEM = "system"


@dataclass(frozen=True)
class AuditLogEntry:
    """Immutable audit log entry."""
    entry_id: str
    event_type: AuditEventType
    timestamp: Timestamp
    layer: str  # Which layer generated this
    action: str
    subject_id: Optional[str] = None
    metadata: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class MetricPoint:
    """Immutable metric data point."""
    metric_name: str
    value: float
    timestamp: Timestamp
    labels: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)


# =============================================================================
# LOG COLLECTORS (One per layer)
# =============================================================================

class LogCollector:
    """
    Append-only audit collector for one layer.

    Keeps the most recent max_entries; older entries are dropped and
    counted in dropped_count.
    """

    def __init__(self, layer_name: str, max_entries: Optional[int] = None):
        self._layer_name = layer_name
        self._entries: Deque[AuditLogEntry] = deque(maxlen=max_entries)
        self._dropped = 0
        self._lock = threading.Lock()

    def collect(self, entry: AuditLogEntry):
        """Collect an audit entry (append-only)."""
        with self._lock:
            if len(self._entries) == self._entries.maxlen:
                self._dropped += 1
            self._entries.append(entry)

    def get_entries(
        self,
        event_type: Optional[AuditEventType] = None,
        action: Optional[str] = None
    ) -> List[AuditLogEntry]:
        """Get entries, optionally filtered."""
        with self._lock:
            entries = list(self._entries)

        if event_type:
            entries = [e for e in entries if e.event_type == event_type]
        if action:
            entries = [e for e in entries if e.action == action]

        return entries

    @property
    def layer_name(self) -> str:
        return self._layer_name

    @property
    def entry_count(self) -> int:
        return len(self._entries)

    @property
    def dropped_count(self) -> int:
        return self._dropped


# =============================================================================
# METRICS COLLECTOR
# =============================================================================

class MetricsCollector:
    """
    Time series of metric points, the most recent max_points per metric.
    Aggregates cover the retained window.
    """

    def __init__(self, max_points: Optional[int] = None):
        self._max_points = max_points
        self._metrics: Dict[str, Deque[MetricPoint]] = {}
        self._lock = threading.Lock()

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
            timestamp=Timestamp.now(),
            labels=label_tuple
        )
        with self._lock:
            series = self._metrics.get(metric_name)
            if series is None:
                series = self._metrics[metric_name] = deque(maxlen=self._max_points)
            series.append(point)

    def get_metric(self, metric_name: str) -> List[MetricPoint]:
        with self._lock:
            return list(self._metrics.get(metric_name, []))

    def get_latest(self, metric_name: str) -> Optional[MetricPoint]:
        points = self.get_metric(metric_name)
        return points[-1] if points else None

    def total(self, metric_name: str) -> float:
        """Sum of all recorded values (counter semantics)."""
        return sum(p.value for p in self.get_metric(metric_name))

    def compute_aggregates(self, metric_name: str) -> Dict[str, float]:
        """Compute aggregate statistics for a metric."""
        points = self.get_metric(metric_name)

        if not points:
            return {}

        values = [p.value for p in points]

        return {
            'count': len(values),
            'sum': sum(values),
            'min': min(values),
            'max': max(values),
            'avg': sum(values) / len(values),
        }


# =============================================================================
# OBSERVABILITY ENGINE
# =============================================================================

LAYERS = ('temporal', 'consistency', 'store', 'api')


class ObservabilityEngine:
    """
    Central Observability Engine.

    BOUNDARY ENFORCEMENT:
    - ONLY observes, never modifies
    - Provides read-only access to collected data
    """

    def __init__(self, config: Optional[ObservabilityConfig] = None):
        self._config = config or ObservabilityConfig()
        self._collectors: Dict[str, LogCollector] = {
            name: LogCollector(name, self._config.max_audit_entries) for name in LAYERS
        }
        self._metrics = (
            MetricsCollector(self._config.max_metric_points)
            if self._config.enable_metrics else None
        )
        self._entry_counter = itertools.count(1)

    def log_audit(
        self,
        layer: str,
        action: str,
        subject_id: Optional[str] = None,
        event_type: AuditEventType = AuditEventType.SYSTEM,
        **metadata: object
    ):
        """Record an audit entry for a layer."""
        if not self._config.enable_audit:
            return
        collector = self._collectors.get(layer)
        if collector is None:
            return
        collector.collect(AuditLogEntry(
            entry_id=f"audit_{next(self._entry_counter):08d}",
            event_type=event_type,
            timestamp=Timestamp.now(),
            layer=layer,
            action=action,
            subject_id=subject_id,
            metadata=tuple(sorted((k, str(v)) for k, v in metadata.items()))
        ))

    def log_error(self, layer: str, error: Error, subject_id: Optional[str] = None):
        """Record a typed failure as an audit entry."""
        self.log_audit(
            layer,
            action=error.code.name.lower(),
            subject_id=subject_id,
            event_type=AuditEventType.ERROR,
            message=error.message,
            **dict(error.context)
        )

    def collect_metric(
        self,
        metric_name: str,
        value: float = 1.0,
        labels: Optional[Dict[str, str]] = None
    ):
        """Collect a metric data point."""
        if self._metrics:
            self._metrics.record(metric_name, value, labels)

    def get_layer_log(self, layer_name: str) -> List[AuditLogEntry]:
        collector = self._collectors.get(layer_name)
        if not collector:
            return []
        return collector.get_entries()

    def get_unified_log(self) -> List[AuditLogEntry]:
        """All layers, ordered by entry id (i.e. recording order)."""
        entries = []
        for collector in self._collectors.values():
            entries.extend(collector.get_entries())
        entries.sort(key=lambda e: e.entry_id)
        return entries

    def get_metrics(self) -> Optional[MetricsCollector]:
        """Get metrics collector (read-only access)."""
        return self._metrics

    def generate_audit_report(self) -> Dict:
        """Counts by layer and event type."""
        entries = self.get_unified_log()

        by_layer: Dict[str, int] = {}
        by_type: Dict[str, int] = {}
        for entry in entries:
            by_layer[entry.layer] = by_layer.get(entry.layer, 0) + 1
            by_type[entry.event_type.value] = by_type.get(entry.event_type.value, 0) + 1

        return {
            'total_entries': len(entries),
            'by_layer': by_layer,
            'by_event_type': by_type,
            'dropped_entries': sum(c.dropped_count for c in self._collectors.values()),
            'generated_at': Timestamp.now().to_iso()
        }
