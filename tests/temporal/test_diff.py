"""
Diff Engine Tests

INVARIANTS TESTED:
1. diff(A, A) is empty
2. diff(A, B) and diff(B, A) cover the same paths with sides swapped
3. Structural equality for nested values
4. Output order is lexicographic by field path
"""

from hypothesis import given, strategies as st

from chronicle.contracts import ABSENT, ChangeKind
from chronicle.temporal import DiffEngine, ReconstructionEngine, SnapshotLog, summarize_changes
from tests.fixtures import PROJECT, alice_history

# =============================================================================
# STRATEGIES (Generators)
# =============================================================================

leaf = st.one_of(st.none(), st.booleans(), st.integers(), st.text(max_size=5))
values = st.recursive(
    leaf,
    lambda children: st.one_of(
        st.lists(children, max_size=3),
        st.dictionaries(st.text(max_size=3), children, max_size=3),
    ),
    max_leaves=8,
)
states = st.dictionaries(st.sampled_from(["a", "b", "c", "d.e", "f"]), values, max_size=5)

SWAPPED = {
    ChangeKind.ADDED: ChangeKind.REMOVED,
    ChangeKind.REMOVED: ChangeKind.ADDED,
    ChangeKind.MODIFIED: ChangeKind.MODIFIED,
}


class TestDiffProperties:

    @given(states)
    def test_idempotence(self, state):
        assert DiffEngine().diff(state, state) == {}

    @given(states, states)
    def test_symmetry(self, a, b):
        engine = DiffEngine()
        forward = engine.diff(a, b)
        backward = engine.diff(b, a)

        assert set(forward) == set(backward)
        for path, change in forward.items():
            reverse = backward[path]
            assert reverse.old_value == change.new_value
            assert reverse.new_value == change.old_value
            assert reverse.classification is SWAPPED[change.classification]

    @given(states, states)
    def test_lexicographic_order(self, a, b):
        changes = DiffEngine().sorted_changes(a, b)
        paths = [c.field_path for c in changes]
        assert paths == sorted(paths)


class TestDiffRules:

    def test_alice_scenario(self):
        log = SnapshotLog(PROJECT)
        for snapshot in alice_history():
            log.append(snapshot)
        reconstruction = ReconstructionEngine(log)

        changes = DiffEngine().diff(
            reconstruction.materialize("char_alice", "K0"),
            reconstruction.materialize("char_alice", "D2"),
        )

        assert set(changes) == {"name", "age"}
        assert changes["name"].classification is ChangeKind.MODIFIED
        assert (changes["name"].old_value, changes["name"].new_value) == ("Alice", "Alicia")
        assert changes["age"].classification is ChangeKind.ADDED
        assert changes["age"].old_value is ABSENT
        assert changes["age"].new_value == "30"

    def test_nested_key_order_is_irrelevant(self):
        a = {"profile": {"x": 1, "y": [1, 2]}}
        b = {"profile": {"y": [1, 2], "x": 1}}
        assert DiffEngine().diff(a, b) == {}

    def test_list_order_matters(self):
        changes = DiffEngine().diff({"tags": [1, 2]}, {"tags": [2, 1]})
        assert changes["tags"].classification is ChangeKind.MODIFIED

    def test_none_versus_missing(self):
        changes = DiffEngine().diff({"age": None}, {})
        assert changes["age"].classification is ChangeKind.REMOVED
        assert changes["age"].old_value is None

    def test_one_and_true_differ(self):
        assert "flag" in DiffEngine().diff({"flag": 1}, {"flag": True})


class TestChangeSummary:

    def test_no_changes(self):
        assert summarize_changes({}) == "初始状态"

    def test_summary_format(self):
        changes = DiffEngine().diff({"name": "Alice"}, {"name": "Alicia", "age": 30})
        assert summarize_changes(changes) == "age: null -> 30; name: Alice -> Alicia"
