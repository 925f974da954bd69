"""
Temporal Evolution Layer
========================

Event-sourced history of narrative entities.

INVARIANTS:
- All state is derived from the append-only snapshot log
- No mutation of stored snapshots
- Same log -> same materialized state (deterministic)
- Keyframes are additive checkpoints, never replacements

Modules:
- snapshot_log: Append-only per-entity snapshot storage
- compaction: Keyframe placement policy
- reconstruction: Point-in-time materialization by replay
- diff: Structural state differences
- recorder: Full-state in, keyframe or delta out
"""

from .snapshot_log import LogView, SnapshotLog
from .compaction import KeyframePolicy
from .reconstruction import ReconstructionEngine, TrackPoint
from .diff import DiffEngine, summarize_changes
from .recorder import SnapshotRecorder

__all__ = [
    'LogView',
    'SnapshotLog',
    'KeyframePolicy',
    'ReconstructionEngine',
    'TrackPoint',
    'DiffEngine',
    'summarize_changes',
    'SnapshotRecorder',
]
