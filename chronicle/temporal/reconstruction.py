"""
Reconstruction Engine
=====================

Materializes the full state of an entity at any snapshot in its log.

ALGORITHM:
1. Take an immutable view of the entity's log
2. Walk backward from the target until a keyframe is found
   (the first snapshot is always one)
3. Start from that keyframe's complete payload
4. Apply each delta up to and including the target, in log order:
   a None or ABSENT new value removes the field

Cost is O(distance to the previous keyframe).

ISOLATION:
Every read works on one LogView. A keyframe inserted concurrently is
either entirely visible or entirely invisible, never half-applied.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence
import copy

from ..contracts.snapshots import ChangeType, StateSnapshot
from ..observability import AuditEventType, ObservabilityEngine
from .snapshot_log import LogView, SnapshotLog


@dataclass(frozen=True)
class TrackPoint:
    """One step of an entity's evolution, with its materialized state."""
    snapshot_id: str
    chapter_order: Optional[int]
    change_type: ChangeType
    change_summary: str
    state: Mapping[str, Any]


def apply_snapshot(state: Dict[str, Any], snapshot: StateSnapshot) -> Dict[str, Any]:
    """Apply one snapshot on top of a state. Keyframes replace it."""
    if snapshot.is_keyframe:
        return copy.deepcopy(dict(snapshot.payload))
    for path, change in snapshot.payload.items():
        if change.removes_field:
            state.pop(path, None)
        else:
            state[path] = copy.deepcopy(change.new_value)
    return state


def replay(entries: Sequence[StateSnapshot], index: int) -> Dict[str, Any]:
    """Replay entries[base..index] where base is the nearest keyframe at or before index."""
    base = index
    while not entries[base].is_keyframe:
        base -= 1
        if base < 0:
            # Unreachable while the base-keyframe invariant holds
            raise ValueError("no keyframe precedes the requested snapshot")
    state: Dict[str, Any] = {}
    for entry in entries[base:index + 1]:
        state = apply_snapshot(state, entry)
    return state


class ReconstructionEngine:
    """
    Read-only over a SnapshotLog, except for checkpoint() which asks the
    log to insert an additive keyframe.
    """

    def __init__(self, log: SnapshotLog, observability: Optional[ObservabilityEngine] = None):
        self._log = log
        self._observability = observability

    def materialize(self, entity_id: str, snapshot_id: str) -> Dict[str, Any]:
        """
        Full state at snapshot_id.

        Raises SnapshotNotFoundError when snapshot_id is not part of
        entity_id's log.
        """
        view = self._log.view(entity_id)
        return self._materialize_in(view, snapshot_id)

    def latest_state(self, entity_id: str) -> Dict[str, Any]:
        view = self._log.view(entity_id)
        if not view.entries:
            return {}
        return self._materialize_in(view, view.entries[-1].id)

    def state_at_chapter(self, entity_id: str, chapter_order: int) -> Dict[str, Any]:
        """
        State as of a chapter: the snapshot with the highest chapter_order
        not after it (latest in log order on ties). Empty if none.
        """
        view = self._log.view(entity_id)
        best_index = None
        best_order = None
        for i, entry in enumerate(view.entries):
            if entry.chapter_order is None or entry.chapter_order > chapter_order:
                continue
            if best_order is None or entry.chapter_order >= best_order:
                best_index, best_order = i, entry.chapter_order
        if best_index is None:
            return {}
        return self._materialize_in(view, view.entries[best_index].id)

    def evolution_track(
        self,
        entity_id: str,
        from_chapter: Optional[int] = None,
        to_chapter: Optional[int] = None
    ) -> List[TrackPoint]:
        """
        Materialized state after every snapshot, in log order.

        Checkpoint keyframes repeat their anchor and are skipped. With a
        chapter range, only snapshots carrying a chapter_order inside it
        are reported.
        """
        view = self._log.view(entity_id)
        bounded = from_chapter is not None or to_chapter is not None

        points: List[TrackPoint] = []
        state: Dict[str, Any] = {}
        for entry in view.entries:
            state = apply_snapshot(state, entry)
            if entry.checkpoint_of is not None:
                continue
            if bounded:
                if entry.chapter_order is None:
                    continue
                if from_chapter is not None and entry.chapter_order < from_chapter:
                    continue
                if to_chapter is not None and entry.chapter_order > to_chapter:
                    continue
            points.append(TrackPoint(
                snapshot_id=entry.id,
                chapter_order=entry.chapter_order,
                change_type=entry.change_type,
                change_summary=entry.change_summary,
                state=copy.deepcopy(state)
            ))
        return points

    def checkpoint(self, entity_id: str, after_snapshot_id: str) -> StateSnapshot:
        """
        Insert a compaction keyframe carrying the state at after_snapshot_id.

        Materialization and insert happen under the entity's writer lock so
        no append can slip between them.
        """
        with self._log.locked(entity_id):
            state = self.materialize(entity_id, after_snapshot_id)
            return self._log.insert_keyframe(
                entity_id,
                after_snapshot_id,
                state,
                change_summary=f"checkpoint of {after_snapshot_id}"
            )

    def _materialize_in(self, view: LogView, snapshot_id: str) -> Dict[str, Any]:
        index = view.index_of(snapshot_id)
        state = replay(view.entries, index)

        if self._observability:
            base = index
            while not view.entries[base].is_keyframe:
                base -= 1
            self._observability.collect_metric(
                "materialize_replay_length", float(index - base),
                {"entity_id": view.entity_id}
            )
            self._observability.log_audit(
                "temporal", "materialized", subject_id=snapshot_id,
                event_type=AuditEventType.QUERY, replay_length=index - base
            )
        return state
