"""
Typed Failures
==============

Every failure in the core is reported to the caller as a typed exception
carrying an immutable Error record. No failure is fatal to the process and
none crosses entity (or warning) boundaries.

RETRY CLASSIFICATION:
- StorageUnavailableError is the ONLY retryable class
- Everything else is surfaced to the caller, never retried
"""

from __future__ import annotations

from .base import Error, ErrorCode


class ChronicleError(Exception):
    """Base class. ``error`` holds the structured record."""

    code: ErrorCode = ErrorCode.STORAGE_CORRUPTION
    retryable: bool = False

    def __init__(self, message: str, **context: str):
        super().__init__(message)
        self.error = Error.create(self.code, message, **context)


class OutOfOrderError(ChronicleError):
    """Append precedes the entity's tail. Reorder or mark as backfill."""
    code = ErrorCode.OUT_OF_ORDER


class MissingBaseKeyframeError(ChronicleError):
    """The first snapshot of an entity must be a keyframe."""
    code = ErrorCode.MISSING_BASE_KEYFRAME


class DuplicateSnapshotError(ChronicleError):
    """Same snapshot id re-appended with different content."""
    code = ErrorCode.DUPLICATE_SNAPSHOT


class NotFoundError(ChronicleError):
    """Unknown id."""
    code = ErrorCode.WARNING_NOT_FOUND


class SnapshotNotFoundError(NotFoundError):
    """Snapshot id unknown or not part of the requested entity's log."""
    code = ErrorCode.SNAPSHOT_NOT_FOUND


class AlreadyTerminalError(ChronicleError):
    """Lifecycle transition attempted on a RESOLVED or DISMISSED warning."""
    code = ErrorCode.ALREADY_TERMINAL


class StorageUnavailableError(ChronicleError):
    """Transient failure of the storage backing the log."""
    code = ErrorCode.STORAGE_UNAVAILABLE
    retryable = True


class StorageCorruptionError(ChronicleError):
    """A stored record could not be decoded. Not retryable."""
    code = ErrorCode.STORAGE_CORRUPTION
