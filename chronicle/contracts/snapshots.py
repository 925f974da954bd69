"""
Snapshot Contracts
==================

StateSnapshot: one record in an entity's append-only evolution log.
FieldChange: one unit of difference between two states.

PAYLOAD SHAPES:
- keyframe: field path -> value (the COMPLETE state)
- delta:    field path -> FieldChange (relative to the previous snapshot)

ABSENCE:
A missing field is the ABSENT sentinel, never None. None is a legal value.
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional, Tuple

from .base import EntityType, Timestamp, generate_id


class _Absent:
    """Marker for a field path that does not exist in a state."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "ABSENT"

    def __copy__(self):
        return self

    def __deepcopy__(self, memo):
        return self

    def __reduce__(self):
        return (_Absent, ())


ABSENT = _Absent()


class ChangeType(Enum):
    """How significant the edit behind a snapshot was."""
    INITIAL = "INITIAL"
    UPDATE = "UPDATE"
    MAJOR_CHANGE = "MAJOR_CHANGE"


class ChangeKind(Enum):
    """Derived classification of a FieldChange."""
    ADDED = "added"
    REMOVED = "removed"
    MODIFIED = "modified"


@dataclass(frozen=True)
class FieldChange:
    """
    Difference at one field path.

    old_value is ABSENT when the path did not exist before,
    new_value is ABSENT when the path no longer exists.
    """
    field_path: str
    old_value: Any = ABSENT
    new_value: Any = ABSENT
    change_reason: Optional[str] = None
    source_text: Optional[str] = None

    def __post_init__(self):
        if not self.field_path:
            raise ValueError("field_path must be a non-empty string")

    @property
    def classification(self) -> ChangeKind:
        from ..rules.classification import classify_change
        return classify_change(self)

    def inverted(self) -> FieldChange:
        """The same change seen from the other side."""
        return replace(self, old_value=self.new_value, new_value=self.old_value)

    @property
    def removes_field(self) -> bool:
        """A None or ABSENT new value drops the field on replay."""
        return self.new_value is ABSENT or self.new_value is None


@dataclass(frozen=True)
class StateSnapshot:
    """
    Immutable evolution record for one entity.

    INVARIANTS:
    - The first snapshot in an entity's log is a keyframe
    - A delta has exactly one logical predecessor: the previous
      snapshot for the same entity in (created_at, sequence) order
    - sequence is assigned by the SnapshotLog, never by callers
    """
    id: str
    project_id: str
    entity_id: str
    entity_type: EntityType
    created_at: Timestamp
    change_type: ChangeType
    is_keyframe: bool
    payload: Mapping[str, Any]

    change_summary: str = ""
    ai_confidence: Optional[float] = None
    chapter_order: Optional[int] = None
    chapter_id: Optional[str] = None
    source_text: Optional[str] = None
    change_records: Tuple[FieldChange, ...] = field(default_factory=tuple)

    # Set on compaction keyframes: id of the snapshot whose state this checkpoints
    checkpoint_of: Optional[str] = None
    sequence: int = 0

    def __post_init__(self):
        if not self.entity_id:
            raise ValueError("entity_id must be a non-empty string")
        if not isinstance(self.entity_type, EntityType):
            object.__setattr__(self, 'entity_type', EntityType.parse(self.entity_type))
        if self.ai_confidence is not None and not 0.0 <= self.ai_confidence <= 1.0:
            raise ValueError("ai_confidence must be between 0.0 and 1.0")
        if self.checkpoint_of is not None and not self.is_keyframe:
            raise ValueError("only keyframes can be checkpoints")
        if not self.is_keyframe:
            for path, value in self.payload.items():
                if not isinstance(value, FieldChange):
                    raise ValueError(f"delta payload at '{path}' must be a FieldChange")
                if value.field_path != path:
                    raise ValueError(f"delta payload key '{path}' != field_path '{value.field_path}'")
        # Read-only view over a private copy
        object.__setattr__(self, 'payload', MappingProxyType(dict(self.payload)))
        object.__setattr__(self, 'change_records', tuple(self.change_records))

    @staticmethod
    def keyframe(
        project_id: str,
        entity_id: str,
        entity_type: EntityType,
        state: Mapping[str, Any],
        change_type: ChangeType = ChangeType.INITIAL,
        created_at: Optional[Timestamp] = None,
        snapshot_id: Optional[str] = None,
        **extra: Any
    ) -> StateSnapshot:
        """Build a keyframe carrying the complete state."""
        return StateSnapshot(
            id=snapshot_id or generate_id("snap"),
            project_id=project_id,
            entity_id=entity_id,
            entity_type=entity_type,
            created_at=created_at or Timestamp.now(),
            change_type=change_type,
            is_keyframe=True,
            payload=dict(state),
            **extra
        )

    @staticmethod
    def delta(
        project_id: str,
        entity_id: str,
        entity_type: EntityType,
        changes: Mapping[str, FieldChange],
        change_type: ChangeType = ChangeType.UPDATE,
        created_at: Optional[Timestamp] = None,
        snapshot_id: Optional[str] = None,
        **extra: Any
    ) -> StateSnapshot:
        """Build a delta relative to the entity's previous snapshot."""
        return StateSnapshot(
            id=snapshot_id or generate_id("snap"),
            project_id=project_id,
            entity_id=entity_id,
            entity_type=entity_type,
            created_at=created_at or Timestamp.now(),
            change_type=change_type,
            is_keyframe=False,
            payload=dict(changes),
            **extra
        )

    def content_fingerprint(self) -> str:
        """Hash of everything except the log-assigned sequence."""
        from ..domain.serialization import fingerprint
        return fingerprint({
            'id': self.id,
            'project_id': self.project_id,
            'entity_id': self.entity_id,
            'entity_type': self.entity_type,
            'created_at': self.created_at,
            'change_type': self.change_type,
            'is_keyframe': self.is_keyframe,
            'payload': dict(self.payload),
            'change_summary': self.change_summary,
            'ai_confidence': self.ai_confidence,
            'chapter_order': self.chapter_order,
            'chapter_id': self.chapter_id,
            'source_text': self.source_text,
            'change_records': list(self.change_records),
            'checkpoint_of': self.checkpoint_of,
        })
