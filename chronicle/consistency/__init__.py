"""
Consistency Layer

RESPONSIBILITY: Lifecycle, storage and aggregation of detector findings
ALLOWED INPUTS: WarningDraft from an external detector, user transitions
OUTPUTS: ConsistencyWarning records, WarningCounts

WHAT THIS LAYER MUST NOT DO:
============================
- Detect inconsistencies (detectors are external)
- Reopen a RESOLVED or DISMISSED warning
"""

from .queue import ConsistencyQueue

__all__ = ['ConsistencyQueue']
