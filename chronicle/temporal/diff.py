"""
Diff Engine
===========

Structural difference between two materialized states.

RULES:
- Paths compared: union of both states' keys
- Two values are equal iff their canonical serializations are identical
  (sorted keys, no whitespace), so nested objects compare structurally
- Unchanged paths are omitted
- A path missing on one side is ABSENT on that side

ORDERING:
The returned mapping is built in lexicographic field-path order and
sorted_changes() returns the same order as a list. Nothing depends on the
iteration order of the input states.
"""

from __future__ import annotations
from typing import Any, Dict, List, Mapping

from ..contracts.snapshots import ABSENT, FieldChange
from ..domain.serialization import canonical_dumps


class DiffEngine:
    """Stateless. Safe to share across threads."""

    def diff(self, state_a: Mapping[str, Any], state_b: Mapping[str, Any]) -> Dict[str, FieldChange]:
        changes: Dict[str, FieldChange] = {}
        for path in sorted(set(state_a) | set(state_b)):
            old_value = state_a.get(path, ABSENT)
            new_value = state_b.get(path, ABSENT)
            if self._equal(old_value, new_value):
                continue
            changes[path] = FieldChange(
                field_path=path,
                old_value=old_value,
                new_value=new_value
            )
        return changes

    def sorted_changes(self, state_a: Mapping[str, Any], state_b: Mapping[str, Any]) -> List[FieldChange]:
        """Display order: lexicographic by field path."""
        changes = self.diff(state_a, state_b)
        return [changes[path] for path in sorted(changes)]

    @staticmethod
    def _equal(a: Any, b: Any) -> bool:
        if a is ABSENT or b is ABSENT:
            return a is b
        return canonical_dumps(a) == canonical_dumps(b)


def summarize_changes(changes: Mapping[str, FieldChange]) -> str:
    """
    Human-readable change summary: ``"path: old -> new; ..."``.

    No changes yields "初始状态" ("initial state").
    """
    if not changes:
        return "初始状态"
    parts = []
    for path in sorted(changes):
        change = changes[path]
        parts.append(f"{path}: {_render(change.old_value)} -> {_render(change.new_value)}")
    return "; ".join(parts)


def _render(value: Any) -> str:
    if value is ABSENT or value is None:
        return "null"
    if isinstance(value, str):
        return value
    return canonical_dumps(value)
