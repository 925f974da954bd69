"""
Configuration
=============

Dataclass configuration for every layer, composed into ChronicleConfig.
Defaults are filled in __post_init__; environment overrides are read
once by ChronicleConfig.from_env().

ENVIRONMENT:
- CHRONICLE_STORAGE_DIR               -> file backend rooted here
- CHRONICLE_KEYFRAME_INTERVAL         -> snapshots per keyframe
- CHRONICLE_KEYFRAME_ON_MAJOR_CHANGE  -> "1"/"true" forces keyframes on MAJOR_CHANGE
- CHRONICLE_MAX_WRITE_RETRIES         -> transient storage retry budget
- CHRONICLE_RETENTION_DAYS            -> terminal warning retention
- CHRONICLE_MAX_AUDIT_ENTRIES         -> audit entries kept per layer
- CHRONICLE_MAX_METRIC_POINTS         -> points kept per metric
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Mapping, Optional
import os


DEFAULT_KEYFRAME_INTERVAL = 10
DEFAULT_RESOLUTION_NOTE = "手动解决"  # "manually resolved"
DEFAULT_MAX_AUDIT_ENTRIES = 10000
DEFAULT_MAX_METRIC_POINTS = 10000


@dataclass
class SnapshotLogConfig:
    """Compaction policy and write behaviour of the snapshot log."""
    keyframe_interval: int = DEFAULT_KEYFRAME_INTERVAL
    keyframe_on_major_change: bool = False
    max_write_retries: int = 3

    def __post_init__(self):
        if self.keyframe_interval < 1:
            raise ValueError("keyframe_interval must be >= 1")
        if self.max_write_retries < 0:
            raise ValueError("max_write_retries must be >= 0")


@dataclass
class StorageConfig:
    """Configuration for snapshot and warning persistence."""
    backend_type: str = "memory"  # "memory" or "file"
    storage_dir: Optional[str] = None

    def __post_init__(self):
        if self.backend_type not in ("memory", "file"):
            raise ValueError(f"Unknown backend_type: {self.backend_type}")
        if self.backend_type == "file" and not self.storage_dir:
            raise ValueError("file backend requires storage_dir")


@dataclass
class ConsistencyConfig:
    """Lifecycle defaults for consistency warnings."""
    default_resolution_note: str = DEFAULT_RESOLUTION_NOTE
    retention_days: int = 30


@dataclass
class ObservabilityConfig:
    """Configuration for observability engine. Buffers are bounded."""
    enable_metrics: bool = True
    enable_audit: bool = True
    max_audit_entries: int = DEFAULT_MAX_AUDIT_ENTRIES
    max_metric_points: int = DEFAULT_MAX_METRIC_POINTS

    def __post_init__(self):
        if self.max_audit_entries < 1 or self.max_metric_points < 1:
            raise ValueError("observability buffer sizes must be >= 1")


@dataclass
class ChronicleConfig:
    """Unified configuration for the entire core."""
    snapshot_log: SnapshotLogConfig = None
    storage: StorageConfig = None
    consistency: ConsistencyConfig = None
    observability: ObservabilityConfig = None

    def __post_init__(self):
        self.snapshot_log = self.snapshot_log or SnapshotLogConfig()
        self.storage = self.storage or StorageConfig()
        self.consistency = self.consistency or ConsistencyConfig()
        self.observability = self.observability or ObservabilityConfig()

    @staticmethod
    def from_env(environ: Optional[Mapping[str, str]] = None) -> ChronicleConfig:
        env = os.environ if environ is None else environ

        storage_dir = env.get("CHRONICLE_STORAGE_DIR")
        storage = (
            StorageConfig(backend_type="file", storage_dir=storage_dir)
            if storage_dir else StorageConfig()
        )

        snapshot_log = SnapshotLogConfig(
            keyframe_interval=int(env.get("CHRONICLE_KEYFRAME_INTERVAL", DEFAULT_KEYFRAME_INTERVAL)),
            keyframe_on_major_change=_flag(env.get("CHRONICLE_KEYFRAME_ON_MAJOR_CHANGE")),
            max_write_retries=int(env.get("CHRONICLE_MAX_WRITE_RETRIES", 3)),
        )

        consistency = ConsistencyConfig(
            retention_days=int(env.get("CHRONICLE_RETENTION_DAYS", 30)),
        )

        observability = ObservabilityConfig(
            max_audit_entries=int(env.get("CHRONICLE_MAX_AUDIT_ENTRIES", DEFAULT_MAX_AUDIT_ENTRIES)),
            max_metric_points=int(env.get("CHRONICLE_MAX_METRIC_POINTS", DEFAULT_MAX_METRIC_POINTS)),
        )

        return ChronicleConfig(
            snapshot_log=snapshot_log,
            storage=storage,
            consistency=consistency,
            observability=observability,
        )


def _flag(raw: Optional[str]) -> bool:
    return (raw or "").strip().lower() in ("1", "true", "yes", "on")
