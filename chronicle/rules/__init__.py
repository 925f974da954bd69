from .classification import (
    classify_change,
    classify_severity,
    default_expanded,
    severity_rank,
)

__all__ = [
    'classify_change',
    'classify_severity',
    'default_expanded',
    'severity_rank',
]
