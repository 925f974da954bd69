"""
Consistency Warning Contracts
=============================

Findings raised by an external detector against a narrative entity.

LIFECYCLE:
    PENDING --resolve(note)--> RESOLVED   (terminal)
    PENDING --dismiss()------> DISMISSED  (terminal)

No transition leaves a terminal state.
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import ClassVar, FrozenSet, Optional, Tuple

from .base import EntityType, OpenTag, Timestamp, generate_id


class Severity(Enum):
    """Display priority. Fixed ordering ERROR > WARNING > INFO."""
    ERROR = "ERROR"
    WARNING = "WARNING"
    INFO = "INFO"


# Display order, highest priority first
SEVERITY_ORDER: Tuple[Severity, ...] = (Severity.ERROR, Severity.WARNING, Severity.INFO)


class WarningStatus(Enum):
    PENDING = "PENDING"
    RESOLVED = "RESOLVED"
    DISMISSED = "DISMISSED"

    @property
    def is_terminal(self) -> bool:
        return self is not WarningStatus.PENDING


@dataclass(frozen=True)
class WarningType(OpenTag):
    """Kinds of inconsistency a detector may report."""
    KNOWN: ClassVar[FrozenSet[str]] = frozenset({
        "NAME_CONFLICT",
        "MISSING_FIELD",
        "RELATIONSHIP_INCONSISTENCY",
        "TIMELINE_CONFLICT",
        "PLOT_HOLE",
        "CHARACTER_INCONSISTENCY",
        "SETTING_VIOLATION",
        "PLOT_LOOP_UNCLOSED",
        "REFERENCE_BROKEN",
    })


for _name in sorted(WarningType.KNOWN):
    setattr(WarningType, _name, WarningType(_name))
del _name


@dataclass(frozen=True)
class WarningDraft:
    """
    What a detector submits. The queue assigns id, status and timestamps.

    severity may be a Severity, a raw string, or None; it is classified
    on insert (see rules.classification.classify_severity).
    """
    project_id: str
    warning_type: WarningType
    description: str
    severity: object = None
    entity_id: Optional[str] = None
    entity_type: Optional[EntityType] = None
    entity_name: Optional[str] = None
    suggestion: Optional[str] = None
    field_path: Optional[str] = None
    expected_value: Optional[str] = None
    actual_value: Optional[str] = None
    related_entity_ids: Tuple[str, ...] = field(default_factory=tuple)
    suggested_resolution: Optional[str] = None

    def __post_init__(self):
        if not self.description or not self.description.strip():
            raise ValueError("description must be a non-empty string")
        object.__setattr__(self, 'warning_type', WarningType.parse(self.warning_type))
        if self.entity_type is not None:
            object.__setattr__(self, 'entity_type', EntityType.parse(self.entity_type))
        object.__setattr__(self, 'related_entity_ids', tuple(self.related_entity_ids))


@dataclass(frozen=True)
class ConsistencyWarning:
    """Immutable view of one finding. Transitions produce new records."""
    id: str
    project_id: str
    warning_type: WarningType
    severity: Severity
    description: str
    status: WarningStatus
    created_at: Timestamp

    entity_id: Optional[str] = None
    entity_type: Optional[EntityType] = None
    entity_name: Optional[str] = None
    suggestion: Optional[str] = None
    field_path: Optional[str] = None
    expected_value: Optional[str] = None
    actual_value: Optional[str] = None
    related_entity_ids: Tuple[str, ...] = field(default_factory=tuple)
    suggested_resolution: Optional[str] = None

    resolution: Optional[str] = None
    resolved_at: Optional[Timestamp] = None
    dismissed_at: Optional[Timestamp] = None

    @staticmethod
    def from_draft(draft: WarningDraft, severity: Severity) -> ConsistencyWarning:
        return ConsistencyWarning(
            id=generate_id("warn"),
            project_id=draft.project_id,
            warning_type=draft.warning_type,
            severity=severity,
            description=draft.description,
            status=WarningStatus.PENDING,
            created_at=Timestamp.now(),
            entity_id=draft.entity_id,
            entity_type=draft.entity_type,
            entity_name=draft.entity_name,
            suggestion=draft.suggestion,
            field_path=draft.field_path,
            expected_value=draft.expected_value,
            actual_value=draft.actual_value,
            related_entity_ids=draft.related_entity_ids,
            suggested_resolution=draft.suggested_resolution,
        )

    @property
    def is_pending(self) -> bool:
        return self.status is WarningStatus.PENDING

    def resolved(self, note: str) -> ConsistencyWarning:
        return replace(
            self,
            status=WarningStatus.RESOLVED,
            resolution=note,
            resolved_at=Timestamp.now(),
        )

    def dismissed(self) -> ConsistencyWarning:
        return replace(
            self,
            status=WarningStatus.DISMISSED,
            dismissed_at=Timestamp.now(),
        )

    @property
    def terminal_at(self) -> Timestamp:
        """When the warning left PENDING (creation time while still PENDING)."""
        return self.resolved_at or self.dismissed_at or self.created_at


@dataclass(frozen=True)
class WarningCounts:
    """
    Aggregate over the PENDING set only.
    INVARIANT: total == error + warning + info
    """
    error: int = 0
    warning: int = 0
    info: int = 0

    @property
    def total(self) -> int:
        return self.error + self.warning + self.info

    def for_severity(self, severity: Severity) -> int:
        return getattr(self, severity.value.lower())

    def to_dict(self) -> dict:
        return {
            'error': self.error,
            'warning': self.warning,
            'info': self.info,
            'total': self.total,
        }
