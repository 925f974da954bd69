"""
Consistency Warning Queue
=========================

Owns the lifecycle of detector findings for one project.

LIFECYCLE:
- insert(): detector submits a draft, queue creates a PENDING warning
- resolve(): PENDING -> RESOLVED with a note
- dismiss(): PENDING -> DISMISSED
- Terminal states are final; a second transition is an error

CONCURRENCY:
One lock serialises every mutation. Two racing transitions on the same
warning are ordered by the lock; the loser sees a terminal status and
gets AlreadyTerminalError (first writer wins).

PERSISTENCE:
With a WarningStorageBackend every insert and transition is written
through before it becomes visible, and the queue hydrates from the
backend on construction. A failed write leaves the warning unchanged.

AGGREGATES:
counts() and list() are computed from the PENDING set at call time, so
they are always consistent with it.
"""

from __future__ import annotations
from collections import OrderedDict
from datetime import timedelta
from typing import Dict, Iterable, List, Optional
import threading

from ..config import ConsistencyConfig
from ..contracts.base import EntityType, Timestamp
from ..contracts.errors import AlreadyTerminalError, NotFoundError
from ..contracts.warnings import (
    SEVERITY_ORDER,
    ConsistencyWarning,
    Severity,
    WarningCounts,
    WarningDraft,
    WarningType,
)
from ..observability import AuditEventType, ObservabilityEngine
from ..storage import WarningStorageBackend
from ..rules.classification import classify_severity, severity_rank


class ConsistencyQueue:

    def __init__(
        self,
        project_id: str,
        config: Optional[ConsistencyConfig] = None,
        observability: Optional[ObservabilityEngine] = None,
        backend: Optional[WarningStorageBackend] = None
    ):
        self._project_id = project_id
        self._config = config or ConsistencyConfig()
        self._observability = observability
        self._backend = backend
        self._warnings: Dict[str, ConsistencyWarning] = {}
        self._lock = threading.Lock()

        if self._backend is not None:
            for warning in self._backend.load_warnings(project_id):
                self._warnings[warning.id] = warning

    @property
    def project_id(self) -> str:
        return self._project_id

    # =========================================================================
    # DETECTOR SIDE
    # =========================================================================

    def insert(self, draft: WarningDraft) -> ConsistencyWarning:
        """
        Create a PENDING warning from a detector draft.

        A PENDING warning for the same (entity_id, warning_type) is
        returned unchanged instead of creating a duplicate.
        """
        if draft.project_id != self._project_id:
            raise ValueError(
                f"Warning belongs to project {draft.project_id}, not {self._project_id}"
            )
        severity = classify_severity(draft.severity, draft.warning_type)

        with self._lock:
            if draft.entity_id is not None:
                for existing in self._warnings.values():
                    if (existing.is_pending
                            and existing.entity_id == draft.entity_id
                            and existing.warning_type == draft.warning_type):
                        return existing

            warning = ConsistencyWarning.from_draft(draft, severity)
            self._commit(warning)

        self._audit("warning_created", warning.id, severity=severity.value,
                    warning_type=warning.warning_type.value)
        return warning

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def resolve(self, warning_id: str, note: Optional[str] = None) -> ConsistencyWarning:
        """
        PENDING -> RESOLVED.

        Raises NotFoundError for an unknown id and AlreadyTerminalError
        when the warning has already left PENDING.
        """
        note = note or self._config.default_resolution_note
        with self._lock:
            warning = self._pending(warning_id)
            updated = warning.resolved(note)
            self._commit(updated)
        self._transitioned(updated)
        return updated

    def dismiss(self, warning_id: str) -> ConsistencyWarning:
        """PENDING -> DISMISSED. Same preconditions as resolve()."""
        with self._lock:
            warning = self._pending(warning_id)
            updated = warning.dismissed()
            self._commit(updated)
        self._transitioned(updated)
        return updated

    def bulk_resolve(self, warning_ids: Iterable[str], note: Optional[str] = None) -> int:
        """Resolve each id; unknown or terminal ids are skipped. Returns the number resolved."""
        note = note or self._config.default_resolution_note
        return self._bulk(warning_ids, lambda w: w.resolved(note))

    def bulk_dismiss(self, warning_ids: Iterable[str]) -> int:
        return self._bulk(warning_ids, lambda w: w.dismissed())

    def resolve_by_entity(self, entity_id: str, note: Optional[str] = None) -> int:
        """Resolve every PENDING warning raised against an entity."""
        with self._lock:
            ids = [w.id for w in self._warnings.values()
                   if w.is_pending and w.entity_id == entity_id]
        return self.bulk_resolve(ids, note)

    # =========================================================================
    # QUERIES
    # =========================================================================

    def get(self, warning_id: str) -> ConsistencyWarning:
        with self._lock:
            warning = self._warnings.get(warning_id)
        if warning is None:
            raise NotFoundError(f"Warning {warning_id} not found", warning_id=warning_id)
        return warning

    def counts(self) -> WarningCounts:
        """Counts over the PENDING set only."""
        with self._lock:
            pending = [w for w in self._warnings.values() if w.is_pending]
        return WarningCounts(
            error=sum(1 for w in pending if w.severity is Severity.ERROR),
            warning=sum(1 for w in pending if w.severity is Severity.WARNING),
            info=sum(1 for w in pending if w.severity is Severity.INFO),
        )

    def list(
        self,
        severity: Optional[Severity] = None,
        entity_type: Optional[EntityType] = None,
        warning_type: Optional[WarningType] = None
    ) -> List[ConsistencyWarning]:
        """
        PENDING warnings ordered ERROR, WARNING, INFO; newest first
        within a severity.
        """
        if entity_type is not None:
            entity_type = EntityType.parse(entity_type)
        if warning_type is not None:
            warning_type = WarningType.parse(warning_type)

        with self._lock:
            pending = [w for w in self._warnings.values() if w.is_pending]

        selected = [
            w for w in pending
            if (severity is None or w.severity is severity)
            and (entity_type is None or w.entity_type == entity_type)
            and (warning_type is None or w.warning_type == warning_type)
        ]
        # Stable sort: newest first, then by severity rank
        selected.sort(key=lambda w: w.created_at.value, reverse=True)
        selected.sort(key=lambda w: severity_rank(w.severity))
        return selected

    def grouped(self, **filters) -> "OrderedDict[Severity, List[ConsistencyWarning]]":
        """list() split into ERROR / WARNING / INFO groups (always all three keys)."""
        groups: OrderedDict = OrderedDict((s, []) for s in SEVERITY_ORDER)
        for warning in self.list(**filters):
            groups[warning.severity].append(warning)
        return groups

    def by_entity(self, entity_id: str) -> List[ConsistencyWarning]:
        """Every warning for an entity regardless of status, newest first."""
        with self._lock:
            matching = [w for w in self._warnings.values() if w.entity_id == entity_id]
        return sorted(matching, key=lambda w: w.created_at.value, reverse=True)

    def __len__(self) -> int:
        with self._lock:
            return len(self._warnings)

    # =========================================================================
    # CASCADES / RETENTION
    # =========================================================================

    def delete_by_entity(self, entity_id: str) -> int:
        with self._lock:
            doomed = [wid for wid, w in self._warnings.items() if w.entity_id == entity_id]
            self._forget(doomed)
        if doomed:
            self._audit("warnings_deleted", entity_id, removed=len(doomed))
        return len(doomed)

    def delete_all(self) -> int:
        with self._lock:
            removed = len(self._warnings)
            if self._backend is not None:
                self._backend.delete_project(self._project_id)
            self._warnings.clear()
        return removed

    def cleanup_resolved(self, retention_days: Optional[int] = None, now: Optional[Timestamp] = None) -> int:
        """Drop terminal warnings that left PENDING more than retention_days ago."""
        if retention_days is None:
            retention_days = self._config.retention_days
        cutoff = (now or Timestamp.now()).value - timedelta(days=retention_days)
        with self._lock:
            doomed = [
                wid for wid, w in self._warnings.items()
                if w.status.is_terminal and w.terminal_at.value < cutoff
            ]
            self._forget(doomed)
        if doomed:
            self._audit("warnings_cleaned", None, removed=len(doomed))
        return len(doomed)

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _pending(self, warning_id: str) -> ConsistencyWarning:
        """Caller holds the lock."""
        warning = self._warnings.get(warning_id)
        if warning is None:
            raise NotFoundError(f"Warning {warning_id} not found", warning_id=warning_id)
        if warning.status.is_terminal:
            error = AlreadyTerminalError(
                f"Warning {warning_id} is already {warning.status.value}",
                warning_id=warning_id,
                status=warning.status.value
            )
            if self._observability:
                self._observability.log_error("consistency", error.error, subject_id=warning_id)
            raise error
        return warning

    def _bulk(self, warning_ids: Iterable[str], transition) -> int:
        changed: List[ConsistencyWarning] = []
        try:
            with self._lock:
                for warning_id in warning_ids:
                    warning = self._warnings.get(warning_id)
                    if warning is None or not warning.is_pending:
                        continue
                    updated = transition(warning)
                    self._commit(updated)
                    changed.append(updated)
        finally:
            for updated in changed:
                self._transitioned(updated)
        return len(changed)

    def _commit(self, warning: ConsistencyWarning):
        """Caller holds the lock. Persist first, then publish."""
        if self._backend is not None:
            self._backend.write_warning(warning)
        self._warnings[warning.id] = warning

    def _forget(self, warning_ids: List[str]):
        """Caller holds the lock."""
        if warning_ids and self._backend is not None:
            self._backend.delete_warnings(self._project_id, warning_ids)
        for wid in warning_ids:
            del self._warnings[wid]

    def _transitioned(self, warning: ConsistencyWarning):
        self._audit("warning_" + warning.status.value.lower(), warning.id,
                    severity=warning.severity.value)
        if self._observability:
            self._observability.collect_metric(
                "warnings_transitioned_total", 1.0, {"status": warning.status.value}
            )

    def _audit(self, action: str, subject_id: Optional[str], **metadata: object):
        if self._observability:
            self._observability.log_audit(
                "consistency", action, subject_id=subject_id,
                event_type=AuditEventType.WARNING, **metadata
            )
