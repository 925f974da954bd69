"""
Snapshot Recorder
=================

Entry point for entity change sources that hold a full current state
rather than a ready-made snapshot.

FLOW:
full state -> diff against the materialized previous state
           -> KeyframePolicy picks keyframe or delta
           -> change summary -> SnapshotLog.append

The whole decision runs under the entity's writer lock, so two recorders
racing on one entity never compute deltas against the same predecessor.
"""

from __future__ import annotations
from dataclasses import replace
from typing import Any, Mapping, Optional

from ..contracts.base import EntityType, Timestamp
from ..contracts.snapshots import ChangeType, StateSnapshot
from .compaction import KeyframePolicy
from .diff import DiffEngine, summarize_changes
from .reconstruction import ReconstructionEngine
from .snapshot_log import SnapshotLog


class SnapshotRecorder:

    def __init__(
        self,
        log: SnapshotLog,
        reconstruction: ReconstructionEngine,
        policy: Optional[KeyframePolicy] = None,
        diff_engine: Optional[DiffEngine] = None
    ):
        self._log = log
        self._reconstruction = reconstruction
        self._policy = policy or KeyframePolicy()
        self._diff = diff_engine or DiffEngine()

    def record(
        self,
        entity_id: str,
        entity_type: EntityType,
        state: Mapping[str, Any],
        change_type: Optional[ChangeType] = None,
        change_reason: Optional[str] = None,
        created_at: Optional[Timestamp] = None,
        **extra: Any
    ) -> StateSnapshot:
        """
        Record the entity's new full state. Returns the appended snapshot.

        extra is passed through to the snapshot (chapter_order, chapter_id,
        ai_confidence, source_text). Fields whose value is None are treated
        as absent, whichever of keyframe or delta the policy picks.
        """
        # None drops a field on delta replay, so a recorded state never holds one
        state = {path: value for path, value in state.items() if value is not None}

        with self._log.locked(entity_id):
            existing = self._log.count(entity_id)
            previous = self._reconstruction.latest_state(entity_id)
            changes = self._diff.diff(previous, state)

            if existing == 0:
                change_type = ChangeType.INITIAL
            elif change_type is None:
                change_type = ChangeType.UPDATE

            source_text = extra.get('source_text')
            change_records = tuple(
                replace(change, change_reason=change_reason, source_text=source_text)
                for change in changes.values()
            )

            common = dict(
                project_id=self._log.project_id,
                entity_id=entity_id,
                entity_type=entity_type,
                change_type=change_type,
                created_at=created_at,
                change_summary=summarize_changes(changes) if existing else summarize_changes({}),
                change_records=change_records,
                **extra
            )

            keyframe = self._policy.should_keyframe(
                existing_count=existing,
                since_keyframe=self._log.snapshots_since_keyframe(entity_id),
                change_type=change_type
            )
            if keyframe:
                snapshot = StateSnapshot.keyframe(state=state, **common)
            else:
                snapshot = StateSnapshot.delta(changes=changes, **common)

            return self._log.append(snapshot)
