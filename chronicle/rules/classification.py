"""
Classification Rules
====================

Pure functions. No state, no storage, no side effects.

- classify_change: FieldChange -> added | removed | modified
- classify_severity: raw detector severity + warning type -> Severity
- default_expanded: which severity groups a warning list opens by default
"""

from __future__ import annotations
from typing import Dict, Mapping, Optional

from ..contracts.snapshots import ABSENT, ChangeKind, FieldChange
from ..contracts.warnings import SEVERITY_ORDER, Severity, WarningCounts, WarningType


def classify_change(change: FieldChange) -> ChangeKind:
    """
    added    : old value absent
    removed  : new value absent
    modified : both present
    """
    if change.old_value is ABSENT:
        return ChangeKind.ADDED
    if change.new_value is ABSENT:
        return ChangeKind.REMOVED
    return ChangeKind.MODIFIED


# Raw severity spellings seen from detectors
SEVERITY_ALIASES: Dict[str, Severity] = {
    "ERROR": Severity.ERROR,
    "CRITICAL": Severity.ERROR,
    "HIGH": Severity.ERROR,
    "WARNING": Severity.WARNING,
    "WARN": Severity.WARNING,
    "MEDIUM": Severity.WARNING,
    "INFO": Severity.INFO,
    "LOW": Severity.INFO,
    "HINT": Severity.INFO,
}

# Fallback when a detector does not (or cannot) say
DEFAULT_SEVERITY_BY_TYPE: Dict[str, Severity] = {
    "NAME_CONFLICT": Severity.ERROR,
    "TIMELINE_CONFLICT": Severity.ERROR,
    "CHARACTER_INCONSISTENCY": Severity.ERROR,
    "MISSING_FIELD": Severity.WARNING,
    "RELATIONSHIP_INCONSISTENCY": Severity.WARNING,
    "PLOT_HOLE": Severity.WARNING,
    "SETTING_VIOLATION": Severity.WARNING,
    "PLOT_LOOP_UNCLOSED": Severity.WARNING,
    "REFERENCE_BROKEN": Severity.WARNING,
}


def classify_severity(raw: object, warning_type: Optional[WarningType] = None) -> Severity:
    """
    Map a raw finding severity to ERROR / WARNING / INFO.

    Unrecognised or missing values fall back to the warning type's
    default; unknown types default to INFO.
    """
    if isinstance(raw, Severity):
        return raw
    if isinstance(raw, str):
        parsed = SEVERITY_ALIASES.get(raw.strip().upper())
        if parsed is not None:
            return parsed
    if warning_type is not None:
        return DEFAULT_SEVERITY_BY_TYPE.get(WarningType.parse(warning_type).value, Severity.INFO)
    return Severity.INFO


def severity_rank(severity: Severity) -> int:
    """0 for ERROR, 1 for WARNING, 2 for INFO."""
    return SEVERITY_ORDER.index(severity)


def default_expanded(counts: WarningCounts) -> Mapping[Severity, bool]:
    """
    ERROR is always open; WARNING opens when there are no errors;
    INFO opens only when nothing more severe is pending.
    """
    return {
        Severity.ERROR: True,
        Severity.WARNING: counts.error == 0,
        Severity.INFO: counts.error == 0 and counts.warning == 0,
    }
