"""
Snapshot Log
============

Append-only, per-entity ordered store of StateSnapshot records.

INVARIANTS:
- No updates or deletes (project/entity cascade excepted)
- The first snapshot of every entity is a keyframe
- Every entity log is ordered by created_at; ties keep insertion order
- Keyframe checkpoints are additive: they sit immediately after the
  snapshot they checkpoint and never replace history

CONCURRENCY:
- One re-entrant lock per entity serialises writers for that entity
- Different entities never contend beyond a short registry lookup
- Readers take an immutable copy of an entity's log (snapshot isolation)

This is the SOURCE OF TRUTH for every entity's evolution.
"""

from __future__ import annotations
from bisect import bisect_right
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple
import threading

from ..config import SnapshotLogConfig
from ..contracts.errors import (
    DuplicateSnapshotError,
    MissingBaseKeyframeError,
    OutOfOrderError,
    SnapshotNotFoundError,
    StorageUnavailableError,
)
from ..contracts.snapshots import ChangeType, StateSnapshot
from ..observability import AuditEventType, ObservabilityEngine
from ..storage import SnapshotStorageBackend


@dataclass
class _EntityLog:
    """Mutable holder guarded by its own lock. Never handed out."""
    entries: List[StateSnapshot] = field(default_factory=list)
    next_sequence: int = 1
    version: int = 0
    # Set under lock by delete_entity; a writer that finds it set starts over
    deleted: bool = False
    lock: threading.RLock = field(default_factory=threading.RLock)


@dataclass(frozen=True)
class LogView:
    """
    Immutable copy of one entity's log at a point in time.

    version increases on every write, so two views with the same version
    are identical.
    """
    entity_id: str
    version: int
    entries: Tuple[StateSnapshot, ...]

    def index_of(self, snapshot_id: str) -> int:
        for i, entry in enumerate(self.entries):
            if entry.id == snapshot_id:
                return i
        raise SnapshotNotFoundError(
            f"Snapshot {snapshot_id} is not in the log of entity {self.entity_id}",
            snapshot_id=snapshot_id,
            entity_id=self.entity_id
        )


class SnapshotLog:
    """
    Append-only snapshot log for one project.

    GUARANTEES:
    ===========
    1. NO updates - snapshots are immutable once written
    2. NO out-of-order appends unless explicitly flagged as backfill
    3. Idempotent re-append of an identical snapshot (dedup by id)
    4. Write-through persistence with bounded retry of transient failures
    """

    def __init__(
        self,
        project_id: str,
        backend: Optional[SnapshotStorageBackend] = None,
        config: Optional[SnapshotLogConfig] = None,
        observability: Optional[ObservabilityEngine] = None
    ):
        self._project_id = project_id
        self._backend = backend
        self._config = config or SnapshotLogConfig()
        self._observability = observability

        self._entities: Dict[str, _EntityLog] = {}
        self._index: Dict[str, str] = {}  # snapshot_id -> entity_id
        self._registry_lock = threading.Lock()

        if self._backend is not None:
            self._hydrate()

    @property
    def project_id(self) -> str:
        return self._project_id

    # =========================================================================
    # WRITES
    # =========================================================================

    def append(self, snapshot: StateSnapshot, backfill: bool = False) -> StateSnapshot:
        """
        Append a snapshot to its entity's log.

        Returns the stored record (with its log-assigned sequence).
        Fails with OutOfOrderError when created_at precedes the current
        tail, unless backfill is set.
        """
        if snapshot.project_id != self._project_id:
            raise ValueError(
                f"Snapshot belongs to project {snapshot.project_id}, not {self._project_id}"
            )

        with self._held(snapshot.entity_id, create=True) as entity_log:
            existing = self._existing(snapshot)
            if existing is not None:
                return existing

            if not entity_log.entries and not snapshot.is_keyframe:
                raise MissingBaseKeyframeError(
                    f"First snapshot of entity {snapshot.entity_id} must be a keyframe",
                    entity_id=snapshot.entity_id,
                    snapshot_id=snapshot.id
                )

            tail = entity_log.entries[-1] if entity_log.entries else None
            if tail is not None and snapshot.created_at < tail.created_at and not backfill:
                error = OutOfOrderError(
                    f"Snapshot {snapshot.id} at {snapshot.created_at.to_iso()} precedes "
                    f"tail {tail.id} at {tail.created_at.to_iso()}",
                    entity_id=snapshot.entity_id,
                    snapshot_id=snapshot.id,
                    tail_id=tail.id
                )
                self._log_error(error, snapshot.id)
                raise error

            position = self._placement(entity_log.entries, snapshot)
            if position == 0 and entity_log.entries and not snapshot.is_keyframe:
                raise MissingBaseKeyframeError(
                    f"Backfilled delta {snapshot.id} would precede the base keyframe",
                    entity_id=snapshot.entity_id,
                    snapshot_id=snapshot.id
                )

            if backfill:
                self._check_backfill(entity_log, snapshot, position)

            stored = replace(snapshot, sequence=entity_log.next_sequence)
            self._persist(stored)
            self._insert(entity_log, stored, position)

        self._audit(
            "snapshot_appended",
            stored,
            keyframe=stored.is_keyframe,
            backfill=backfill,
            sequence=stored.sequence
        )
        if self._observability:
            self._observability.collect_metric(
                "snapshots_appended_total", 1.0,
                {"kind": "keyframe" if stored.is_keyframe else "delta"}
            )
        return stored

    def insert_keyframe(
        self,
        entity_id: str,
        after_snapshot_id: str,
        state: Mapping[str, Any],
        change_summary: str = "",
        snapshot_id: Optional[str] = None
    ) -> StateSnapshot:
        """
        Insert a compaction keyframe immediately after an existing snapshot.

        The caller supplies the materialized state at after_snapshot_id and
        must hold locked(entity_id) while computing it.
        """
        with self._held(entity_id) as entity_log:
            anchor = self._find_in(entity_log, after_snapshot_id)
            keyframe = StateSnapshot.keyframe(
                project_id=self._project_id,
                entity_id=entity_id,
                entity_type=anchor.entity_type,
                state=state,
                change_type=ChangeType.UPDATE,
                created_at=anchor.created_at,
                snapshot_id=snapshot_id,
                change_summary=change_summary,
                chapter_order=anchor.chapter_order,
                chapter_id=anchor.chapter_id,
                checkpoint_of=anchor.id,
            )
            existing = self._existing(keyframe)
            if existing is not None:
                return existing

            position = self._placement(entity_log.entries, keyframe)
            stored = replace(keyframe, sequence=entity_log.next_sequence)
            self._persist(stored)
            self._insert(entity_log, stored, position)

        self._audit("keyframe_inserted", stored, checkpoint_of=anchor.id)
        return stored

    def delete_entity(self, entity_id: str) -> int:
        """
        Cascade delete of an entity's whole history.

        Runs under the entity's writer lock, so no append can reach the
        backend after the cascade and resurrect the entity on hydration.
        """
        entity_log = self._entity(entity_id, required=False)
        if entity_log is None:
            return 0

        with entity_log.lock:
            if entity_log.deleted:
                return 0
            with self._registry_lock:
                if self._entities.get(entity_id) is entity_log:
                    del self._entities[entity_id]
                for entry in entity_log.entries:
                    self._index.pop(entry.id, None)
            entity_log.deleted = True
            if self._backend is not None:
                self._backend.delete_entity(self._project_id, entity_id)
            removed = len(entity_log.entries)

        if self._observability:
            self._observability.log_audit(
                "temporal", "entity_deleted", subject_id=entity_id,
                event_type=AuditEventType.SNAPSHOT, removed=removed
            )
        return removed

    # =========================================================================
    # READS
    # =========================================================================

    @contextmanager
    def locked(self, entity_id: str) -> Iterator[None]:
        """Hold the entity's writer lock (re-entrant)."""
        with self._held(entity_id, create=True):
            yield

    def view(self, entity_id: str) -> LogView:
        """Immutable copy-on-read view of an entity's log."""
        entity_log = self._entity(entity_id, create=False, required=False)
        if entity_log is None:
            return LogView(entity_id=entity_id, version=0, entries=())
        with entity_log.lock:
            if entity_log.deleted:
                return LogView(entity_id=entity_id, version=0, entries=())
            return LogView(
                entity_id=entity_id,
                version=entity_log.version,
                entries=tuple(entity_log.entries)
            )

    def list_by_entity(self, entity_id: str) -> Tuple[StateSnapshot, ...]:
        """Ascending log order. Finite, restartable (a fresh tuple)."""
        return self.view(entity_id).entries

    def get(self, snapshot_id: str) -> StateSnapshot:
        snapshot = self.find(snapshot_id)
        if snapshot is None:
            raise SnapshotNotFoundError(
                f"Snapshot {snapshot_id} not found", snapshot_id=snapshot_id
            )
        return snapshot

    def find(self, snapshot_id: str) -> Optional[StateSnapshot]:
        with self._registry_lock:
            entity_id = self._index.get(snapshot_id)
        if entity_id is None:
            return None
        for entry in self.view(entity_id).entries:
            if entry.id == snapshot_id:
                return entry
        return None

    def tail(self, entity_id: str) -> Optional[StateSnapshot]:
        entries = self.view(entity_id).entries
        return entries[-1] if entries else None

    def entity_ids(self) -> Tuple[str, ...]:
        with self._registry_lock:
            return tuple(sorted(eid for eid, log in self._entities.items() if log.entries))

    def count(self, entity_id: str) -> int:
        return len(self.view(entity_id).entries)

    def keyframe_count(self, entity_id: str) -> int:
        return sum(1 for s in self.view(entity_id).entries if s.is_keyframe)

    def snapshots_since_keyframe(self, entity_id: str) -> int:
        """Number of snapshots after the most recent keyframe (0 if tail is one)."""
        entries = self.view(entity_id).entries
        for distance, entry in enumerate(reversed(entries)):
            if entry.is_keyframe:
                return distance
        return len(entries)

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _entity(self, entity_id: str, create: bool = False, required: bool = True) -> Optional[_EntityLog]:
        with self._registry_lock:
            entity_log = self._entities.get(entity_id)
            if entity_log is None and create:
                entity_log = _EntityLog()
                self._entities[entity_id] = entity_log
        if entity_log is None and required:
            raise SnapshotNotFoundError(
                f"Entity {entity_id} has no snapshot log", entity_id=entity_id
            )
        return entity_log

    @contextmanager
    def _held(self, entity_id: str, create: bool = False) -> Iterator[_EntityLog]:
        """Lock the live log of an entity, skipping one deleted while we waited."""
        while True:
            entity_log = self._entity(entity_id, create=create)
            with entity_log.lock:
                if not entity_log.deleted:
                    yield entity_log
                    return

    def _check_backfill(self, entity_log: _EntityLog, snapshot: StateSnapshot, position: int):
        """A checkpoint's state is fixed, so nothing may be backfilled before one."""
        for entry in entity_log.entries[position:]:
            if entry.checkpoint_of is not None:
                error = OutOfOrderError(
                    f"Backfill {snapshot.id} at {snapshot.created_at.to_iso()} precedes "
                    f"checkpoint {entry.id} of {entry.checkpoint_of}",
                    entity_id=snapshot.entity_id,
                    snapshot_id=snapshot.id,
                    checkpoint_id=entry.id
                )
                self._log_error(error, snapshot.id)
                raise error

    def _find_in(self, entity_log: _EntityLog, snapshot_id: str) -> StateSnapshot:
        for entry in entity_log.entries:
            if entry.id == snapshot_id:
                return entry
        raise SnapshotNotFoundError(
            f"Snapshot {snapshot_id} not found", snapshot_id=snapshot_id
        )

    def _existing(self, snapshot: StateSnapshot) -> Optional[StateSnapshot]:
        """Identical re-append returns the stored record; a conflicting one fails."""
        stored = self.find(snapshot.id)
        if stored is None:
            return None
        if stored.content_fingerprint() != snapshot.content_fingerprint():
            raise DuplicateSnapshotError(
                f"Snapshot id {snapshot.id} already stored with different content",
                snapshot_id=snapshot.id
            )
        return stored

    @staticmethod
    def _placement(entries: List[StateSnapshot], snapshot: StateSnapshot) -> int:
        """
        Checkpoints go right after their anchor; everything else goes after
        every entry with created_at <= its own.
        """
        if snapshot.checkpoint_of is not None:
            for i, entry in enumerate(entries):
                if entry.id == snapshot.checkpoint_of:
                    return i + 1
            raise SnapshotNotFoundError(
                f"Checkpoint anchor {snapshot.checkpoint_of} not found",
                snapshot_id=snapshot.checkpoint_of
            )
        times = [entry.created_at.value for entry in entries]
        return bisect_right(times, snapshot.created_at.value)

    def _insert(self, entity_log: _EntityLog, stored: StateSnapshot, position: int):
        entity_log.entries.insert(position, stored)
        entity_log.next_sequence = max(entity_log.next_sequence, stored.sequence + 1)
        entity_log.version += 1
        with self._registry_lock:
            self._index[stored.id] = stored.entity_id

    def _persist(self, snapshot: StateSnapshot):
        """Write-through with bounded retry. Backends dedup by id."""
        if self._backend is None:
            return
        attempts = 0
        while True:
            try:
                self._backend.write_snapshot(snapshot)
                return
            except StorageUnavailableError as e:
                if attempts >= self._config.max_write_retries:
                    self._log_error(e, snapshot.id)
                    raise
                attempts += 1
                if self._observability:
                    self._observability.collect_metric("storage_write_retries_total", 1.0)

    def _hydrate(self):
        """Rebuild entity logs from the backend in write (sequence) order."""
        by_entity: Dict[str, List[StateSnapshot]] = {}
        for snapshot in self._backend.load_snapshots(self._project_id):
            by_entity.setdefault(snapshot.entity_id, []).append(snapshot)

        for entity_id, snapshots in by_entity.items():
            entity_log = _EntityLog()
            for snapshot in sorted(snapshots, key=lambda s: s.sequence):
                position = self._placement(entity_log.entries, snapshot)
                entity_log.entries.insert(position, snapshot)
                entity_log.next_sequence = max(entity_log.next_sequence, snapshot.sequence + 1)
                self._index[snapshot.id] = entity_id
            entity_log.version = len(entity_log.entries)
            self._entities[entity_id] = entity_log

    def _audit(self, action: str, snapshot: StateSnapshot, **metadata: object):
        if self._observability:
            self._observability.log_audit(
                "temporal", action, subject_id=snapshot.id,
                event_type=AuditEventType.SNAPSHOT,
                entity_id=snapshot.entity_id, **metadata
            )

    def _log_error(self, error, subject_id: str):
        if self._observability:
            self._observability.log_error("temporal", error.error, subject_id=subject_id)
