"""
Test Fixtures

Deterministic factories shared by every suite.
All timestamps are fixed - no wall-clock dependence.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from chronicle.contracts.base import EntityType, Timestamp
from chronicle.contracts.errors import StorageUnavailableError
from chronicle.contracts.snapshots import ABSENT, ChangeType, FieldChange, StateSnapshot
from chronicle.contracts.warnings import ConsistencyWarning, WarningDraft, WarningType
from chronicle.storage import InMemorySnapshotBackend, InMemoryWarningBackend


# =============================================================================
# FIXED TIMESTAMPS (deterministic)
# =============================================================================

EPOCH = datetime(2026, 1, 1, 0, 0, 0, tzinfo=timezone.utc)

PROJECT = "proj_test"
ENTITY = "char_alice"


def at(minutes: int) -> Timestamp:
    """EPOCH + minutes."""
    return Timestamp(value=EPOCH + timedelta(minutes=minutes))


# =============================================================================
# SNAPSHOT FACTORIES
# =============================================================================

def make_keyframe(
    state: Dict[str, Any],
    minute: int = 0,
    snapshot_id: Optional[str] = None,
    entity_id: str = ENTITY,
    **extra: Any
) -> StateSnapshot:
    return StateSnapshot.keyframe(
        project_id=PROJECT,
        entity_id=entity_id,
        entity_type=EntityType.CHARACTER,
        state=state,
        created_at=at(minute),
        snapshot_id=snapshot_id,
        **extra
    )


def make_delta(
    changes: Dict[str, tuple],
    minute: int,
    snapshot_id: Optional[str] = None,
    entity_id: str = ENTITY,
    change_type: ChangeType = ChangeType.UPDATE,
    **extra: Any
) -> StateSnapshot:
    """changes: path -> (old, new); use ABSENT for a missing side."""
    return StateSnapshot.delta(
        project_id=PROJECT,
        entity_id=entity_id,
        entity_type=EntityType.CHARACTER,
        changes={
            path: FieldChange(field_path=path, old_value=old, new_value=new)
            for path, (old, new) in changes.items()
        },
        change_type=change_type,
        created_at=at(minute),
        snapshot_id=snapshot_id,
        **extra
    )


def alice_history():
    """K0 {name: Alice} -> D1 name Alice->Alicia -> D2 age added 30."""
    k0 = make_keyframe({"name": "Alice"}, minute=0, snapshot_id="K0")
    d1 = make_delta({"name": ("Alice", "Alicia")}, minute=1, snapshot_id="D1")
    d2 = make_delta({"age": (ABSENT, "30")}, minute=2, snapshot_id="D2")
    return k0, d1, d2


# =============================================================================
# WARNING FACTORIES
# =============================================================================

def make_draft(
    warning_type: str = "NAME_CONFLICT",
    severity: Any = "ERROR",
    entity_id: Optional[str] = ENTITY,
    description: str = "Alice is called Alicia in chapter 3",
    **extra: Any
) -> WarningDraft:
    entity_type = extra.pop("entity_type", EntityType.CHARACTER if entity_id else None)
    return WarningDraft(
        project_id=PROJECT,
        warning_type=WarningType.parse(warning_type),
        description=description,
        severity=severity,
        entity_id=entity_id,
        entity_type=entity_type,
        **extra
    )


# =============================================================================
# STORAGE DOUBLES
# =============================================================================

class FlakyBackend(InMemorySnapshotBackend):
    """Fails the first `failures` writes with a transient error."""

    def __init__(self, failures: int):
        super().__init__()
        self.failures = failures
        self.attempts = 0

    def write_snapshot(self, snapshot: StateSnapshot) -> bool:
        self.attempts += 1
        if self.failures > 0:
            self.failures -= 1
            raise StorageUnavailableError("disk busy", snapshot_id=snapshot.id)
        return super().write_snapshot(snapshot)


class FlakyWarningBackend(InMemoryWarningBackend):
    """Fails the next `failures` warning writes with a transient error."""

    def __init__(self, failures: int = 0):
        super().__init__()
        self.failures = failures

    def write_warning(self, warning: ConsistencyWarning):
        if self.failures > 0:
            self.failures -= 1
            raise StorageUnavailableError("disk busy", warning_id=warning.id)
        super().write_warning(warning)
