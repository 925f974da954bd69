"""
Comparison Layer

Selection of the two snapshots that feed a diff.
"""

from .selector import ComparisonSelector, ComparisonTicket, SelectionState

__all__ = [
    'ComparisonSelector',
    'ComparisonTicket',
    'SelectionState',
]
