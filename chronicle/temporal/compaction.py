"""
Keyframe Compaction Policy
==========================

Decides when the next snapshot of an entity is written as a keyframe.

TRADE-OFF:
More keyframes -> shorter replay chains, more storage.
Replay cost of materialize() is bounded by keyframe_interval.
"""

from __future__ import annotations
from dataclasses import dataclass

from ..config import SnapshotLogConfig
from ..contracts.snapshots import ChangeType


@dataclass(frozen=True)
class KeyframePolicy:
    """
    Pure decision function over the current log shape.

    RULES (first match wins):
    1. Empty log -> keyframe (the base)
    2. MAJOR_CHANGE and keyframe_on_major_change -> keyframe
    3. interval snapshots since the last keyframe -> keyframe
    4. Otherwise -> delta
    """
    interval: int = 10
    on_major_change: bool = False

    def __post_init__(self):
        if self.interval < 1:
            raise ValueError("interval must be >= 1")

    @staticmethod
    def from_config(config: SnapshotLogConfig) -> KeyframePolicy:
        return KeyframePolicy(
            interval=config.keyframe_interval,
            on_major_change=config.keyframe_on_major_change
        )

    def should_keyframe(
        self,
        existing_count: int,
        since_keyframe: int,
        change_type: ChangeType = ChangeType.UPDATE
    ) -> bool:
        if existing_count == 0:
            return True
        if self.on_major_change and change_type is ChangeType.MAJOR_CHANGE:
            return True
        return since_keyframe + 1 >= self.interval
