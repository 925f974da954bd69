"""
Engine Orchestration Module

Owns exactly one ProjectStore per project for the whole process.

DESIGN PRINCIPLES:
==================
1. Layers communicate ONLY through contracts
2. One store per project, created lazily, shared by every consumer
3. All operations are traceable through one shared observability engine
4. Project deletion cascades to snapshots, warnings and storage
"""

from __future__ import annotations
from typing import Dict, Optional, Tuple
import threading

from .config import ChronicleConfig
from .observability import AuditEventType, ObservabilityEngine
from .storage import (
    SnapshotStorageBackend,
    WarningStorageBackend,
    create_backend,
    create_warning_backend,
)
from .store import ProjectStore


class EvolutionEngine:
    """
    Process-wide entry point.

    LAYER FLOW:
    ===========
    1. Change source / detector -> ProjectStore write API
    2. ProjectStore -> SnapshotLog / ConsistencyQueue
    3. SnapshotLog / ConsistencyQueue -> storage backends (write-through)
    4. Observability records every layer
    """

    def __init__(
        self,
        config: Optional[ChronicleConfig] = None,
        backend: Optional[SnapshotStorageBackend] = None,
        warning_backend: Optional[WarningStorageBackend] = None
    ):
        self._config = config or ChronicleConfig()
        self._backend = backend or create_backend(
            self._config.storage.backend_type,
            self._config.storage.storage_dir
        )
        self._warning_backend = warning_backend or create_warning_backend(
            self._config.storage.backend_type,
            self._config.storage.storage_dir
        )
        self._observability = ObservabilityEngine(self._config.observability)
        self._stores: Dict[str, ProjectStore] = {}
        self._lock = threading.Lock()

    @property
    def config(self) -> ChronicleConfig:
        return self._config

    def project(self, project_id: str) -> ProjectStore:
        """The store for a project, created (and hydrated) on first use."""
        if not project_id:
            raise ValueError("project_id must be a non-empty string")
        with self._lock:
            store = self._stores.get(project_id)
            if store is None:
                store = ProjectStore(
                    project_id,
                    config=self._config,
                    backend=self._backend,
                    observability=self._observability,
                    warning_backend=self._warning_backend
                )
                self._stores[project_id] = store
                self._observability.log_audit(
                    "store", "project_opened", subject_id=project_id,
                    event_type=AuditEventType.SYSTEM,
                    entities=len(store.entity_ids())
                )
            return store

    def project_ids(self) -> Tuple[str, ...]:
        with self._lock:
            return tuple(sorted(self._stores))

    def delete_project(self, project_id: str) -> int:
        """Cascade delete. Returns the number of snapshots removed from storage."""
        with self._lock:
            store = self._stores.pop(project_id, None)
        if store is not None:
            store.warnings.delete_all()
        self._warning_backend.delete_project(project_id)
        removed = self._backend.delete_project(project_id)
        self._observability.log_audit(
            "store", "project_deleted", subject_id=project_id,
            event_type=AuditEventType.SYSTEM, snapshots=removed
        )
        return removed

    def get_observability(self) -> ObservabilityEngine:
        """Read-only access to the audit trail and metrics."""
        return self._observability

    def health(self) -> Dict:
        return {
            'status': 'ok',
            'projects_loaded': len(self.project_ids()),
            'storage': self._config.storage.backend_type,
            'keyframe_interval': self._config.snapshot_log.keyframe_interval,
        }
