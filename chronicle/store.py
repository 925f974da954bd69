"""
Project Store
=============

One explicit store object per project. Every consumer (HTTP layer,
comparison sessions, detectors, change sources) is handed the store;
nothing reaches the snapshot log or warning queue through module state.

NOTIFICATIONS:
subscribe(listener) registers a callable receiving a StoreEvent after
every successful mutation. Listeners run on the mutating thread after
the mutation has been committed. A failing listener is recorded in the
audit log and never undoes or breaks the mutation.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple
import threading

from .config import ChronicleConfig
from .contracts.base import EntityType, Timestamp
from .contracts.snapshots import ChangeType, FieldChange, StateSnapshot
from .contracts.warnings import (
    ConsistencyWarning,
    Severity,
    WarningCounts,
    WarningDraft,
    WarningType,
)
from .comparison.selector import ComparisonSelector
from .consistency.queue import ConsistencyQueue
from .observability import AuditEventType, ObservabilityEngine
from .storage import SnapshotStorageBackend, WarningStorageBackend
from .temporal.compaction import KeyframePolicy
from .temporal.diff import DiffEngine
from .temporal.reconstruction import ReconstructionEngine, TrackPoint
from .temporal.recorder import SnapshotRecorder
from .temporal.snapshot_log import SnapshotLog


@dataclass(frozen=True)
class StoreEvent:
    """What changed. kind is e.g. "snapshot_appended", "warning_resolved"."""
    kind: str
    project_id: str
    subject_id: Optional[str] = None


Listener = Callable[[StoreEvent], None]


class ProjectStore:
    """
    Query surface and write API for one project.

    QUERY SURFACE:
    ==============
    get_snapshots, get_snapshot, compare, warning_counts,
    list_warnings, resolve_warning, dismiss_warning
    """

    def __init__(
        self,
        project_id: str,
        config: Optional[ChronicleConfig] = None,
        backend: Optional[SnapshotStorageBackend] = None,
        observability: Optional[ObservabilityEngine] = None,
        warning_backend: Optional[WarningStorageBackend] = None
    ):
        self._project_id = project_id
        self._config = config or ChronicleConfig()
        self._observability = observability or ObservabilityEngine(self._config.observability)

        self._log = SnapshotLog(
            project_id,
            backend=backend,
            config=self._config.snapshot_log,
            observability=self._observability
        )
        self._reconstruction = ReconstructionEngine(self._log, self._observability)
        self._diff = DiffEngine()
        self._recorder = SnapshotRecorder(
            self._log,
            self._reconstruction,
            policy=KeyframePolicy.from_config(self._config.snapshot_log),
            diff_engine=self._diff
        )
        self._warnings = ConsistencyQueue(
            project_id,
            config=self._config.consistency,
            observability=self._observability,
            backend=warning_backend
        )

        self._listeners: List[Listener] = []
        self._listeners_lock = threading.Lock()

    @property
    def project_id(self) -> str:
        return self._project_id

    @property
    def log(self) -> SnapshotLog:
        return self._log

    @property
    def reconstruction(self) -> ReconstructionEngine:
        return self._reconstruction

    @property
    def warnings(self) -> ConsistencyQueue:
        return self._warnings

    # =========================================================================
    # SUBSCRIPTIONS
    # =========================================================================

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener. Returns a callable that unsubscribes it."""
        with self._listeners_lock:
            self._listeners.append(listener)

        def unsubscribe():
            with self._listeners_lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, kind: str, subject_id: Optional[str] = None):
        event = StoreEvent(kind=kind, project_id=self._project_id, subject_id=subject_id)
        with self._listeners_lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception as e:
                self._observability.log_audit(
                    "store", "listener_failed", subject_id=subject_id,
                    event_type=AuditEventType.ERROR,
                    event_kind=kind, failure=repr(e)
                )

    # =========================================================================
    # SNAPSHOTS
    # =========================================================================

    def append_snapshot(self, snapshot: StateSnapshot, backfill: bool = False) -> StateSnapshot:
        stored = self._log.append(snapshot, backfill=backfill)
        self._notify("snapshot_appended", stored.id)
        return stored

    def record_state(
        self,
        entity_id: str,
        entity_type: EntityType,
        state: Mapping[str, Any],
        change_type: Optional[ChangeType] = None,
        **extra: Any
    ) -> StateSnapshot:
        """Record a full entity state; the recorder picks keyframe or delta."""
        stored = self._recorder.record(entity_id, entity_type, state, change_type=change_type, **extra)
        self._notify("snapshot_appended", stored.id)
        return stored

    def checkpoint(self, entity_id: str, after_snapshot_id: str) -> StateSnapshot:
        keyframe = self._reconstruction.checkpoint(entity_id, after_snapshot_id)
        self._notify("keyframe_inserted", keyframe.id)
        return keyframe

    def get_snapshots(self, entity_id: str) -> Tuple[StateSnapshot, ...]:
        return self._log.list_by_entity(entity_id)

    def get_snapshot(self, snapshot_id: str) -> StateSnapshot:
        return self._log.get(snapshot_id)

    def materialize(self, snapshot_id: str) -> Dict[str, Any]:
        snapshot = self._log.get(snapshot_id)
        return self._reconstruction.materialize(snapshot.entity_id, snapshot_id)

    def state_at_chapter(self, entity_id: str, chapter_order: int) -> Dict[str, Any]:
        return self._reconstruction.state_at_chapter(entity_id, chapter_order)

    def latest_state(self, entity_id: str) -> Dict[str, Any]:
        return self._reconstruction.latest_state(entity_id)

    def evolution_track(
        self,
        entity_id: str,
        from_chapter: Optional[int] = None,
        to_chapter: Optional[int] = None
    ) -> List[TrackPoint]:
        return self._reconstruction.evolution_track(entity_id, from_chapter, to_chapter)

    def compare(self, from_id: str, to_id: str) -> Dict[str, FieldChange]:
        """
        Diff the materialized states of two snapshots.

        The snapshots may belong to different entities of the project.
        """
        from_state = self.materialize(from_id)
        to_state = self.materialize(to_id)
        self._observability.log_audit(
            "store", "compared", subject_id=to_id,
            event_type=AuditEventType.QUERY, from_id=from_id
        )
        return self._diff.diff(from_state, to_state)

    def new_selector(self) -> ComparisonSelector:
        """A comparison session whose pair trigger runs compare()."""
        return ComparisonSelector(comparer=lambda a, b: self.compare(a.id, b.id))

    # =========================================================================
    # WARNINGS
    # =========================================================================

    def add_warning(self, draft: WarningDraft) -> ConsistencyWarning:
        warning = self._warnings.insert(draft)
        self._notify("warning_created", warning.id)
        return warning

    def get_warning(self, warning_id: str) -> ConsistencyWarning:
        return self._warnings.get(warning_id)

    def warning_counts(self) -> WarningCounts:
        return self._warnings.counts()

    def list_warnings(
        self,
        severity: Optional[Severity] = None,
        entity_type: Optional[EntityType] = None,
        warning_type: Optional[WarningType] = None
    ) -> List[ConsistencyWarning]:
        return self._warnings.list(severity=severity, entity_type=entity_type, warning_type=warning_type)

    def resolve_warning(self, warning_id: str, note: Optional[str] = None) -> ConsistencyWarning:
        warning = self._warnings.resolve(warning_id, note)
        self._notify("warning_resolved", warning_id)
        return warning

    def dismiss_warning(self, warning_id: str) -> ConsistencyWarning:
        warning = self._warnings.dismiss(warning_id)
        self._notify("warning_dismissed", warning_id)
        return warning

    def bulk_resolve(self, warning_ids: Iterable[str], note: Optional[str] = None) -> int:
        count = self._warnings.bulk_resolve(warning_ids, note)
        if count:
            self._notify("warnings_resolved")
        return count

    def bulk_dismiss(self, warning_ids: Iterable[str]) -> int:
        count = self._warnings.bulk_dismiss(warning_ids)
        if count:
            self._notify("warnings_dismissed")
        return count

    def cleanup_resolved(self, retention_days: Optional[int] = None, now: Optional[Timestamp] = None) -> int:
        return self._warnings.cleanup_resolved(retention_days, now)

    # =========================================================================
    # CASCADES
    # =========================================================================

    def delete_entity(self, entity_id: str) -> Tuple[int, int]:
        """Remove an entity's history and warnings. Returns (snapshots, warnings)."""
        snapshots = self._log.delete_entity(entity_id)
        warnings = self._warnings.delete_by_entity(entity_id)
        self._notify("entity_deleted", entity_id)
        return snapshots, warnings

    def entity_ids(self) -> Tuple[str, ...]:
        return self._log.entity_ids()
