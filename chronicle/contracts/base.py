"""
Base Contracts and Shared Types

These are the foundational types used across all layers.
All types here are IMMUTABLE and represent pure data.

BOUNDARY ENFORCEMENT:
=====================
- This module is READ-ONLY from all layers
- All types are frozen dataclasses for immutability guarantee
- Tag sets are OPEN: unknown tags are carried, never rejected
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import ClassVar, FrozenSet, Tuple
from enum import Enum, auto
import uuid


# =============================================================================
# ERROR STATES (Explicit, never silent)
# =============================================================================

class ErrorCode(Enum):
    """
    Explicit error codes for deterministic error handling.
    No silent fallbacks - every error state is enumerated.
    """
    # Snapshot log errors
    OUT_OF_ORDER = auto()
    MISSING_BASE_KEYFRAME = auto()
    DUPLICATE_SNAPSHOT = auto()
    SNAPSHOT_NOT_FOUND = auto()

    # Consistency queue errors
    WARNING_NOT_FOUND = auto()
    ALREADY_TERMINAL = auto()

    # Storage errors
    STORAGE_UNAVAILABLE = auto()
    STORAGE_CORRUPTION = auto()


@dataclass(frozen=True)
class Error:
    """
    Immutable error representation with full context.
    Errors are data - they can be stored, audited and returned over the wire.
    """
    code: ErrorCode
    message: str
    timestamp: datetime
    context: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)

    @staticmethod
    def create(code: ErrorCode, message: str, **context: str) -> Error:
        return Error(
            code=code,
            message=message,
            timestamp=datetime.now(timezone.utc),
            context=tuple(sorted((k, str(v)) for k, v in context.items()))
        )


# =============================================================================
# TEMPORAL TYPES (Immutable, explicit semantics)
# =============================================================================

@dataclass(frozen=True)
class Timestamp:
    """
    Immutable timestamp with explicit semantics.
    All timestamps are UTC, never local time.
    """
    value: datetime

    def __post_init__(self):
        # Ensure UTC timezone
        if self.value.tzinfo is None:
            object.__setattr__(self, 'value', self.value.replace(tzinfo=timezone.utc))

    @staticmethod
    def now() -> Timestamp:
        return Timestamp(value=datetime.now(timezone.utc))

    @staticmethod
    def from_iso(iso_string: str) -> Timestamp:
        dt = datetime.fromisoformat(iso_string.replace('Z', '+00:00'))
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return Timestamp(value=dt)

    def to_iso(self) -> str:
        return self.value.isoformat()

    def __lt__(self, other: Timestamp) -> bool:
        return self.value < other.value

    def __le__(self, other: Timestamp) -> bool:
        return self.value <= other.value


# =============================================================================
# IDENTITY
# =============================================================================

def generate_id(prefix: str) -> str:
    """Generate an opaque unique identifier, e.g. ``snap_3f2a9c0d1e4b5a67``."""
    return f"{prefix}_{uuid.uuid4().hex[:16]}"


# =============================================================================
# OPEN TAG SETS
# =============================================================================

@dataclass(frozen=True)
class OpenTag:
    """
    A string-keyed classification with a set of known tags.

    WHY OPEN:
    Detectors and entity sources may introduce new types without a schema
    change. Unknown tags are preserved verbatim and flagged via is_known.
    """
    value: str

    KNOWN: ClassVar[FrozenSet[str]] = frozenset()

    def __post_init__(self):
        if not isinstance(self.value, str) or not self.value.strip():
            raise ValueError(f"{type(self).__name__} must be a non-empty string")
        object.__setattr__(self, 'value', self.value.strip().upper())

    @classmethod
    def parse(cls, raw: str):
        if isinstance(raw, cls):
            return raw
        return cls(value=raw)

    @property
    def is_known(self) -> bool:
        return self.value in self.KNOWN

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class EntityType(OpenTag):
    """Narrative entity types whose evolution can be tracked."""
    KNOWN: ClassVar[FrozenSet[str]] = frozenset({
        "CHARACTER", "WIKI_ENTRY", "RELATIONSHIP", "PLOT_LOOP", "CHAPTER",
    })


EntityType.CHARACTER = EntityType("CHARACTER")
EntityType.WIKI_ENTRY = EntityType("WIKI_ENTRY")
EntityType.RELATIONSHIP = EntityType("RELATIONSHIP")
EntityType.PLOT_LOOP = EntityType("PLOT_LOOP")
EntityType.CHAPTER = EntityType("CHAPTER")
