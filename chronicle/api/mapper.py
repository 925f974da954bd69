"""
API Mapper
==========

Transforms internal contracts into plain DTO dicts, and request bodies
into contracts. No logic beyond shape conversion.

- ABSENT renders as null; the derived classification is exposed instead
- Change lists are ordered lexicographically by field path
"""

from typing import Any, Dict, List, Mapping

from ..contracts.base import EntityType, Timestamp
from ..contracts.snapshots import ABSENT, ChangeType, FieldChange, StateSnapshot
from ..contracts.warnings import ConsistencyWarning, WarningCounts, WarningDraft
from ..temporal.reconstruction import TrackPoint
from .schemas import FieldChangeIn, SnapshotIn, WarningIn


# =============================================================================
# CONTRACTS -> DTO
# =============================================================================

def _value(value: Any) -> Any:
    return None if value is ABSENT else value


def change_to_dto(change: FieldChange) -> Dict[str, Any]:
    return {
        "field_path": change.field_path,
        "old_value": _value(change.old_value),
        "new_value": _value(change.new_value),
        "classification": change.classification.value,
        "change_reason": change.change_reason,
        "source_text": change.source_text,
    }


def changes_to_dto(changes: Mapping[str, FieldChange]) -> List[Dict[str, Any]]:
    return [change_to_dto(changes[path]) for path in sorted(changes)]


def snapshot_to_dto(snapshot: StateSnapshot) -> Dict[str, Any]:
    if snapshot.is_keyframe:
        payload = dict(snapshot.payload)
    else:
        payload = {path: change_to_dto(change) for path, change in snapshot.payload.items()}

    return {
        "id": snapshot.id,
        "project_id": snapshot.project_id,
        "entity_id": snapshot.entity_id,
        "entity_type": snapshot.entity_type.value,
        "created_at": snapshot.created_at.to_iso(),
        "change_type": snapshot.change_type.value,
        "is_keyframe": snapshot.is_keyframe,
        "payload": payload,
        "change_summary": snapshot.change_summary,
        "ai_confidence": snapshot.ai_confidence,
        "chapter_order": snapshot.chapter_order,
        "chapter_id": snapshot.chapter_id,
        "source_text": snapshot.source_text,
        "change_records": [change_to_dto(c) for c in snapshot.change_records],
        "checkpoint_of": snapshot.checkpoint_of,
        "sequence": snapshot.sequence,
    }


def warning_to_dto(warning: ConsistencyWarning) -> Dict[str, Any]:
    return {
        "id": warning.id,
        "project_id": warning.project_id,
        "warning_type": warning.warning_type.value,
        "known_type": warning.warning_type.is_known,
        "severity": warning.severity.value,
        "description": warning.description,
        "status": warning.status.value,
        "created_at": warning.created_at.to_iso(),
        "entity_id": warning.entity_id,
        "entity_type": warning.entity_type.value if warning.entity_type else None,
        "entity_name": warning.entity_name,
        "suggestion": warning.suggestion,
        "field_path": warning.field_path,
        "expected_value": warning.expected_value,
        "actual_value": warning.actual_value,
        "related_entity_ids": list(warning.related_entity_ids),
        "suggested_resolution": warning.suggested_resolution,
        "resolution": warning.resolution,
        "resolved_at": warning.resolved_at.to_iso() if warning.resolved_at else None,
        "dismissed_at": warning.dismissed_at.to_iso() if warning.dismissed_at else None,
    }


def counts_to_dto(counts: WarningCounts) -> Dict[str, int]:
    return counts.to_dict()


def track_point_to_dto(point: TrackPoint) -> Dict[str, Any]:
    return {
        "snapshot_id": point.snapshot_id,
        "chapter_order": point.chapter_order,
        "change_type": point.change_type.value,
        "change_summary": point.change_summary,
        "state": dict(point.state),
    }


# =============================================================================
# REQUESTS -> CONTRACTS
# =============================================================================

def _change_from_body(path: str, body: FieldChangeIn) -> FieldChange:
    sent = body.model_fields_set
    return FieldChange(
        field_path=path,
        old_value=body.old_value if "old_value" in sent else ABSENT,
        new_value=body.new_value if "new_value" in sent else ABSENT,
        change_reason=body.change_reason,
        source_text=body.source_text,
    )


def snapshot_from_body(project_id: str, entity_id: str, body: SnapshotIn) -> StateSnapshot:
    """Raises ValueError for a malformed snapshot."""
    common = dict(
        project_id=project_id,
        entity_id=entity_id,
        entity_type=EntityType.parse(body.entity_type),
        change_type=ChangeType(body.change_type.upper()),
        created_at=Timestamp(value=body.created_at) if body.created_at else None,
        snapshot_id=body.id,
        change_summary=body.change_summary,
        ai_confidence=body.ai_confidence,
        chapter_order=body.chapter_order,
        chapter_id=body.chapter_id,
        source_text=body.source_text,
    )
    if body.is_keyframe:
        if body.state is None:
            raise ValueError("a keyframe requires 'state'")
        return StateSnapshot.keyframe(state=body.state, **common)

    if body.changes is None:
        raise ValueError("a delta requires 'changes'")
    changes = {path: _change_from_body(path, c) for path, c in body.changes.items()}
    return StateSnapshot.delta(changes=changes, **common)


def draft_from_body(project_id: str, body: WarningIn) -> WarningDraft:
    return WarningDraft(
        project_id=project_id,
        warning_type=body.warning_type,
        description=body.description,
        severity=body.severity,
        entity_id=body.entity_id,
        entity_type=body.entity_type,
        entity_name=body.entity_name,
        suggestion=body.suggestion,
        field_path=body.field_path,
        expected_value=body.expected_value,
        actual_value=body.actual_value,
        related_entity_ids=tuple(body.related_entity_ids),
        suggested_resolution=body.suggested_resolution,
    )
