"""
Snapshot Storage Layer

RESPONSIBILITY: Write-through persistence of snapshot logs and warning sets
ALLOWED INPUTS: StateSnapshot records already accepted by a SnapshotLog,
                ConsistencyWarning records after every queue transition
OUTPUTS: Stored records, hydration streams

WHAT THIS LAYER MUST NOT DO:
============================
- Decide ordering (the SnapshotLog does)
- Modify stored snapshots
- Decide warning lifecycle rules (the ConsistencyQueue does)
- Delete data except for project/entity cascades

IDEMPOTENCY:
============
Every snapshot backend deduplicates by snapshot id. Re-writing a snapshot
that is already stored is a no-op, which is what makes transient-failure
retries safe. Warning backends keep the latest record per warning id.
"""

from __future__ import annotations
from typing import Any, Dict, Iterator, List, Optional
import json
import os
import threading

from ..contracts.base import EntityType, Timestamp
from ..contracts.errors import StorageCorruptionError, StorageUnavailableError
from ..contracts.snapshots import ABSENT, ChangeType, FieldChange, StateSnapshot
from ..contracts.warnings import ConsistencyWarning, Severity, WarningStatus, WarningType
from ..domain.serialization import CanonicalEncoder


# =============================================================================
# RECORD MAPPING
# =============================================================================

def _decode_value(value: Any) -> Any:
    if value == {"$absent": True}:
        return ABSENT
    return value


def _change_to_record(change: FieldChange) -> Dict[str, Any]:
    return {
        'field_path': change.field_path,
        'old_value': change.old_value,
        'new_value': change.new_value,
        'change_reason': change.change_reason,
        'source_text': change.source_text,
    }


def _change_from_record(data: Dict[str, Any]) -> FieldChange:
    return FieldChange(
        field_path=data['field_path'],
        old_value=_decode_value(data.get('old_value')),
        new_value=_decode_value(data.get('new_value')),
        change_reason=data.get('change_reason'),
        source_text=data.get('source_text'),
    )


def snapshot_to_record(snapshot: StateSnapshot) -> Dict[str, Any]:
    """Plain-JSON record of a snapshot."""
    if snapshot.is_keyframe:
        payload = dict(snapshot.payload)
    else:
        payload = {path: _change_to_record(c) for path, c in snapshot.payload.items()}

    return {
        'id': snapshot.id,
        'project_id': snapshot.project_id,
        'entity_id': snapshot.entity_id,
        'entity_type': snapshot.entity_type.value,
        'created_at': snapshot.created_at.to_iso(),
        'change_type': snapshot.change_type.value,
        'is_keyframe': snapshot.is_keyframe,
        'payload': payload,
        'change_summary': snapshot.change_summary,
        'ai_confidence': snapshot.ai_confidence,
        'chapter_order': snapshot.chapter_order,
        'chapter_id': snapshot.chapter_id,
        'source_text': snapshot.source_text,
        'change_records': [_change_to_record(c) for c in snapshot.change_records],
        'checkpoint_of': snapshot.checkpoint_of,
        'sequence': snapshot.sequence,
    }


def snapshot_from_record(data: Dict[str, Any]) -> StateSnapshot:
    if data['is_keyframe']:
        payload = dict(data['payload'])
    else:
        payload = {path: _change_from_record(c) for path, c in data['payload'].items()}

    return StateSnapshot(
        id=data['id'],
        project_id=data['project_id'],
        entity_id=data['entity_id'],
        entity_type=EntityType(data['entity_type']),
        created_at=Timestamp.from_iso(data['created_at']),
        change_type=ChangeType(data['change_type']),
        is_keyframe=data['is_keyframe'],
        payload=payload,
        change_summary=data.get('change_summary') or "",
        ai_confidence=data.get('ai_confidence'),
        chapter_order=data.get('chapter_order'),
        chapter_id=data.get('chapter_id'),
        source_text=data.get('source_text'),
        change_records=tuple(_change_from_record(c) for c in data.get('change_records', [])),
        checkpoint_of=data.get('checkpoint_of'),
        sequence=data.get('sequence', 0),
    )


def _timestamp_or_none(raw: Optional[str]) -> Optional[Timestamp]:
    return Timestamp.from_iso(raw) if raw else None


def warning_to_record(warning: ConsistencyWarning) -> Dict[str, Any]:
    """Plain-JSON record of a warning in its current status."""
    return {
        'id': warning.id,
        'project_id': warning.project_id,
        'warning_type': warning.warning_type.value,
        'severity': warning.severity.value,
        'description': warning.description,
        'status': warning.status.value,
        'created_at': warning.created_at.to_iso(),
        'entity_id': warning.entity_id,
        'entity_type': warning.entity_type.value if warning.entity_type else None,
        'entity_name': warning.entity_name,
        'suggestion': warning.suggestion,
        'field_path': warning.field_path,
        'expected_value': warning.expected_value,
        'actual_value': warning.actual_value,
        'related_entity_ids': list(warning.related_entity_ids),
        'suggested_resolution': warning.suggested_resolution,
        'resolution': warning.resolution,
        'resolved_at': warning.resolved_at.to_iso() if warning.resolved_at else None,
        'dismissed_at': warning.dismissed_at.to_iso() if warning.dismissed_at else None,
    }


def warning_from_record(data: Dict[str, Any]) -> ConsistencyWarning:
    return ConsistencyWarning(
        id=data['id'],
        project_id=data['project_id'],
        warning_type=WarningType.parse(data['warning_type']),
        severity=Severity(data['severity']),
        description=data['description'],
        status=WarningStatus(data['status']),
        created_at=Timestamp.from_iso(data['created_at']),
        entity_id=data.get('entity_id'),
        entity_type=EntityType.parse(data['entity_type']) if data.get('entity_type') else None,
        entity_name=data.get('entity_name'),
        suggestion=data.get('suggestion'),
        field_path=data.get('field_path'),
        expected_value=data.get('expected_value'),
        actual_value=data.get('actual_value'),
        related_entity_ids=tuple(data.get('related_entity_ids') or ()),
        suggested_resolution=data.get('suggested_resolution'),
        resolution=data.get('resolution'),
        resolved_at=_timestamp_or_none(data.get('resolved_at')),
        dismissed_at=_timestamp_or_none(data.get('dismissed_at')),
    )


# =============================================================================
# STORAGE INTERFACES (Dependency Inversion)
# =============================================================================

class SnapshotStorageBackend:
    """
    Abstract storage backend interface.

    Implementations may use memory, files or a database while keeping the
    same append-only, dedup-by-id semantics.
    """

    def write_snapshot(self, snapshot: StateSnapshot) -> bool:
        """
        Persist a snapshot. Returns False if the id was already stored.
        Raises StorageUnavailableError on transient failure.
        """
        raise NotImplementedError

    def load_snapshots(self, project_id: str) -> Iterator[StateSnapshot]:
        """Stream every stored snapshot of a project (hydration)."""
        raise NotImplementedError

    def delete_entity(self, project_id: str, entity_id: str) -> int:
        """Cascade delete. Returns the number of snapshots removed."""
        raise NotImplementedError

    def delete_project(self, project_id: str) -> int:
        raise NotImplementedError


class WarningStorageBackend:
    """
    Abstract persistence of one mutable warning set per project.

    write_warning is called after insert and after every transition; the
    latest record written for an id is the one hydrated.
    """

    def write_warning(self, warning: ConsistencyWarning):
        """Raises StorageUnavailableError on transient failure."""
        raise NotImplementedError

    def load_warnings(self, project_id: str) -> List[ConsistencyWarning]:
        """Latest record of every stored warning, in first-write order."""
        raise NotImplementedError

    def delete_warnings(self, project_id: str, warning_ids) -> int:
        raise NotImplementedError

    def delete_project(self, project_id: str) -> int:
        raise NotImplementedError


# =============================================================================
# IN-MEMORY STORAGE BACKENDS (Reference Implementation)
# =============================================================================

class InMemorySnapshotBackend(SnapshotStorageBackend):
    """
    In-memory implementation. Suitable for testing and single-process use.
    """

    def __init__(self):
        self._records: Dict[str, Dict[str, StateSnapshot]] = {}
        self._lock = threading.Lock()

    def write_snapshot(self, snapshot: StateSnapshot) -> bool:
        with self._lock:
            project = self._records.setdefault(snapshot.project_id, {})
            if snapshot.id in project:
                return False
            project[snapshot.id] = snapshot
            return True

    def load_snapshots(self, project_id: str) -> Iterator[StateSnapshot]:
        with self._lock:
            records = list(self._records.get(project_id, {}).values())
        return iter(records)

    def delete_entity(self, project_id: str, entity_id: str) -> int:
        with self._lock:
            project = self._records.get(project_id, {})
            doomed = [sid for sid, s in project.items() if s.entity_id == entity_id]
            for sid in doomed:
                del project[sid]
            return len(doomed)

    def delete_project(self, project_id: str) -> int:
        with self._lock:
            return len(self._records.pop(project_id, {}))


class InMemoryWarningBackend(WarningStorageBackend):

    def __init__(self):
        self._records: Dict[str, Dict[str, ConsistencyWarning]] = {}
        self._lock = threading.Lock()

    def write_warning(self, warning: ConsistencyWarning):
        with self._lock:
            self._records.setdefault(warning.project_id, {})[warning.id] = warning

    def load_warnings(self, project_id: str) -> List[ConsistencyWarning]:
        with self._lock:
            return list(self._records.get(project_id, {}).values())

    def delete_warnings(self, project_id: str, warning_ids) -> int:
        with self._lock:
            project = self._records.get(project_id, {})
            removed = 0
            for warning_id in warning_ids:
                if project.pop(warning_id, None) is not None:
                    removed += 1
            return removed

    def delete_project(self, project_id: str) -> int:
        with self._lock:
            return len(self._records.pop(project_id, {}))


# =============================================================================
# FILE-BASED STORAGE BACKENDS
# =============================================================================

def _read_jsonl(path: str, project_id: str) -> List[Dict[str, Any]]:
    """Every record of a JSONL file; [] when it does not exist."""
    if not os.path.exists(path):
        return []
    records = []
    try:
        with open(path, 'r', encoding='utf-8') as f:
            for line_number, line in enumerate(f, start=1):
                if not line.strip():
                    continue
                try:
                    records.append(json.loads(line))
                except json.JSONDecodeError as e:
                    raise StorageCorruptionError(
                        f"Corrupt record in {path} at line {line_number}: {e.msg}",
                        project_id=project_id,
                        path=path,
                        line=line_number
                    ) from e
    except OSError as e:
        raise StorageUnavailableError(
            f"Failed to read {path}: {e}", project_id=project_id
        ) from e
    return records


def _write_jsonl(path: str, project_id: str, records: List[Dict[str, Any]]):
    """Replace a JSONL file atomically."""
    tmp_path = path + ".tmp"
    try:
        with open(tmp_path, 'w', encoding='utf-8') as f:
            for record in records:
                f.write(json.dumps(record, cls=CanonicalEncoder, ensure_ascii=False) + '\n')
        os.replace(tmp_path, path)
    except OSError as e:
        raise StorageUnavailableError(
            f"Failed to rewrite {path}: {e}", project_id=project_id
        ) from e


def _append_jsonl(path: str, record: Dict[str, Any], **context: str):
    line = json.dumps(record, cls=CanonicalEncoder, ensure_ascii=False)
    try:
        with open(path, 'a', encoding='utf-8') as f:
            f.write(line + '\n')
    except OSError as e:
        raise StorageUnavailableError(f"Failed to write {path}: {e}", **context) from e


class FileSnapshotBackend(SnapshotStorageBackend):
    """
    Append-only JSONL file per project: ``<storage_dir>/<project_id>.jsonl``.

    The id index is rebuilt from disk on start-up. Cascade deletes rewrite
    the project file without the removed entity.
    """

    def __init__(self, storage_dir: str):
        self._storage_dir = storage_dir
        self._lock = threading.Lock()
        self._known_ids: Dict[str, set] = {}

        os.makedirs(storage_dir, exist_ok=True)

    def _path(self, project_id: str) -> str:
        return os.path.join(self._storage_dir, f"{project_id}.jsonl")

    def _ids(self, project_id: str) -> set:
        if project_id not in self._known_ids:
            self._known_ids[project_id] = {
                record['id'] for record in self._read_records(project_id)
            }
        return self._known_ids[project_id]

    def _read_records(self, project_id: str) -> List[Dict[str, Any]]:
        return _read_jsonl(self._path(project_id), project_id)

    def write_snapshot(self, snapshot: StateSnapshot) -> bool:
        with self._lock:
            ids = self._ids(snapshot.project_id)
            if snapshot.id in ids:
                return False
            _append_jsonl(
                self._path(snapshot.project_id),
                snapshot_to_record(snapshot),
                snapshot_id=snapshot.id
            )
            ids.add(snapshot.id)
            return True

    def load_snapshots(self, project_id: str) -> Iterator[StateSnapshot]:
        with self._lock:
            records = self._read_records(project_id)
        try:
            snapshots = [snapshot_from_record(r) for r in records]
        except (KeyError, ValueError) as e:
            raise StorageCorruptionError(
                f"Undecodable snapshot record for project {project_id}: {e!r}",
                project_id=project_id
            ) from e
        return iter(snapshots)

    def delete_entity(self, project_id: str, entity_id: str) -> int:
        with self._lock:
            records = self._read_records(project_id)
            keep = [r for r in records if r['entity_id'] != entity_id]
            removed = len(records) - len(keep)
            if removed:
                _write_jsonl(self._path(project_id), project_id, keep)
                self._known_ids[project_id] = {r['id'] for r in keep}
            return removed

    def delete_project(self, project_id: str) -> int:
        with self._lock:
            removed = len(self._read_records(project_id))
            path = self._path(project_id)
            if os.path.exists(path):
                os.remove(path)
            self._known_ids.pop(project_id, None)
            return removed


class FileWarningBackend(WarningStorageBackend):
    """
    One JSONL record per warning write: ``<storage_dir>/<project_id>.warnings.jsonl``.

    Transitions append a new record for the same id; the last one wins on
    load. Deletes rewrite the file with only the surviving latest records.
    """

    def __init__(self, storage_dir: str):
        self._storage_dir = storage_dir
        self._lock = threading.Lock()

        os.makedirs(storage_dir, exist_ok=True)

    def _path(self, project_id: str) -> str:
        return os.path.join(self._storage_dir, f"{project_id}.warnings.jsonl")

    def _latest(self, project_id: str) -> Dict[str, Dict[str, Any]]:
        latest: Dict[str, Dict[str, Any]] = {}
        for record in _read_jsonl(self._path(project_id), project_id):
            latest[record['id']] = record
        return latest

    def write_warning(self, warning: ConsistencyWarning):
        with self._lock:
            _append_jsonl(
                self._path(warning.project_id),
                warning_to_record(warning),
                warning_id=warning.id
            )

    def load_warnings(self, project_id: str) -> List[ConsistencyWarning]:
        with self._lock:
            latest = self._latest(project_id)
        try:
            return [warning_from_record(r) for r in latest.values()]
        except (KeyError, ValueError) as e:
            raise StorageCorruptionError(
                f"Undecodable warning record for project {project_id}: {e!r}",
                project_id=project_id
            ) from e

    def delete_warnings(self, project_id: str, warning_ids) -> int:
        doomed = set(warning_ids)
        with self._lock:
            latest = self._latest(project_id)
            keep = [r for wid, r in latest.items() if wid not in doomed]
            removed = len(latest) - len(keep)
            if removed:
                _write_jsonl(self._path(project_id), project_id, keep)
            return removed

    def delete_project(self, project_id: str) -> int:
        with self._lock:
            removed = len(self._latest(project_id))
            path = self._path(project_id)
            if os.path.exists(path):
                os.remove(path)
            return removed


def create_backend(backend_type: str = "memory", storage_dir: Optional[str] = None) -> SnapshotStorageBackend:
    """Create storage backend based on configuration."""
    if backend_type == "file" and storage_dir:
        return FileSnapshotBackend(storage_dir)
    return InMemorySnapshotBackend()


def create_warning_backend(backend_type: str = "memory", storage_dir: Optional[str] = None) -> WarningStorageBackend:
    """Warning persistence matching the snapshot backend choice."""
    if backend_type == "file" and storage_dir:
        return FileWarningBackend(storage_dir)
    return InMemoryWarningBackend()
