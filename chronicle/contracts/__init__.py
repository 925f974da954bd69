"""
Contracts Module

Explicit data types and failures shared by every layer.

DESIGN PRINCIPLES:
==================
1. All contract types are immutable (frozen dataclasses)
2. All failures are typed and carry a structured Error record
3. Absence is explicit (ABSENT), never conflated with None
4. All timestamps use UTC and are never mutated
"""

from .base import EntityType, Error, ErrorCode, OpenTag, Timestamp, generate_id
from .errors import (
    AlreadyTerminalError,
    ChronicleError,
    DuplicateSnapshotError,
    MissingBaseKeyframeError,
    NotFoundError,
    OutOfOrderError,
    SnapshotNotFoundError,
    StorageCorruptionError,
    StorageUnavailableError,
)
from .snapshots import ABSENT, ChangeKind, ChangeType, FieldChange, StateSnapshot
from .warnings import (
    SEVERITY_ORDER,
    ConsistencyWarning,
    Severity,
    WarningCounts,
    WarningDraft,
    WarningStatus,
    WarningType,
)

__all__ = [
    'ABSENT',
    'AlreadyTerminalError',
    'ChangeKind',
    'ChangeType',
    'ChronicleError',
    'ConsistencyWarning',
    'DuplicateSnapshotError',
    'EntityType',
    'Error',
    'ErrorCode',
    'FieldChange',
    'MissingBaseKeyframeError',
    'NotFoundError',
    'OpenTag',
    'OutOfOrderError',
    'SEVERITY_ORDER',
    'Severity',
    'SnapshotNotFoundError',
    'StateSnapshot',
    'StorageCorruptionError',
    'StorageUnavailableError',
    'Timestamp',
    'WarningCounts',
    'WarningDraft',
    'WarningStatus',
    'WarningType',
    'generate_id',
]
