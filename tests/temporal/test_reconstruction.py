"""
Reconstruction Tests

INVARIANTS TESTED:
1. materialize() == applying every delta since creation, in order
2. Result is independent of keyframe placement
3. Snapshot ids from another entity are rejected
4. Materialized states are private copies
5. A checkpoint never changes a materialized state, backfills included
6. Readers racing appends and checkpoints never see a skipped delta
"""

import threading

import pytest
from hypothesis import given, settings, strategies as st
from hypothesis.strategies import composite

from chronicle.contracts import ABSENT, OutOfOrderError, SnapshotNotFoundError
from chronicle.observability import ObservabilityEngine
from chronicle.temporal import ReconstructionEngine, SnapshotLog
from chronicle.temporal.reconstruction import apply_snapshot
from tests.fixtures import PROJECT, alice_history, make_delta, make_keyframe


def build(*snapshots, observability=None):
    log = SnapshotLog(PROJECT, observability=observability)
    for snapshot in snapshots:
        log.append(snapshot)
    return log, ReconstructionEngine(log, observability)


# =============================================================================
# STRATEGIES (Generators)
# =============================================================================

FIELDS = ("name", "age", "title", "status")
VALUES = st.one_of(
    st.none(),
    st.integers(min_value=0, max_value=5),
    st.sampled_from(["a", "b", "c"]),
    st.lists(st.integers(min_value=0, max_value=3), max_size=2),
)


@composite
def histories(draw):
    """Initial state plus a list of edits: path -> new value (ABSENT removes)."""
    initial = draw(st.dictionaries(st.sampled_from(FIELDS), VALUES, max_size=3))
    edits = draw(st.lists(
        st.dictionaries(
            st.sampled_from(FIELDS),
            st.one_of(VALUES, st.just(ABSENT)),
            min_size=1,
            max_size=3
        ),
        min_size=1,
        max_size=12
    ))
    return initial, edits


def naive_states(initial, edits):
    """Reference model: full state after each edit."""
    states = [dict(initial)]
    current = dict(initial)
    for edit in edits:
        current = dict(current)
        for path, value in edit.items():
            if value is ABSENT or value is None:
                current.pop(path, None)
            else:
                current[path] = value
        states.append(current)
    return states


def as_snapshots(initial, edits, keyframe_positions=frozenset()):
    """K0 followed by one snapshot per edit; positions in keyframe_positions are keyframes."""
    states = naive_states(initial, edits)
    snapshots = [make_keyframe(initial, minute=0, snapshot_id="S0")]
    for i, edit in enumerate(edits, start=1):
        snapshot_id = f"S{i}"
        if i in keyframe_positions:
            snapshots.append(make_keyframe(states[i], minute=i, snapshot_id=snapshot_id))
        else:
            changes = {path: (states[i - 1].get(path, ABSENT), value) for path, value in edit.items()}
            snapshots.append(make_delta(changes, minute=i, snapshot_id=snapshot_id))
    return snapshots, states


# =============================================================================
# PROPERTY TESTS
# =============================================================================

class TestReconstructionProperties:

    @given(histories())
    @settings(max_examples=75)
    def test_materialize_matches_full_replay(self, history):
        initial, edits = history
        snapshots, states = as_snapshots(initial, edits)
        _, engine = build(*snapshots)
        for i, snapshot in enumerate(snapshots):
            assert engine.materialize("char_alice", snapshot.id) == states[i]

    @given(histories(), st.data())
    @settings(max_examples=75)
    def test_invariant_under_keyframe_placement(self, history, data):
        initial, edits = history
        positions = data.draw(st.frozensets(st.integers(min_value=1, max_value=len(edits))))
        snapshots, states = as_snapshots(initial, edits, positions)
        _, engine = build(*snapshots)
        for i, snapshot in enumerate(snapshots):
            assert engine.materialize("char_alice", snapshot.id) == states[i]

    @given(histories(), st.data())
    @settings(max_examples=75)
    def test_inserted_keyframe_changes_nothing(self, history, data):
        initial, edits = history
        snapshots, _ = as_snapshots(initial, edits)
        log, engine = build(*snapshots)
        before = {s.id: engine.materialize("char_alice", s.id) for s in snapshots}

        anchor = data.draw(st.sampled_from(snapshots))
        engine.checkpoint("char_alice", anchor.id)

        after = {s.id: engine.materialize("char_alice", s.id) for s in snapshots}
        assert after == before
        assert log.keyframe_count("char_alice") >= 2


# =============================================================================
# CONCRETE SCENARIOS
# =============================================================================

class TestMaterialize:

    def test_alice_scenario(self):
        _, engine = build(*alice_history())
        assert engine.materialize("char_alice", "K0") == {"name": "Alice"}
        assert engine.materialize("char_alice", "D1") == {"name": "Alicia"}
        assert engine.materialize("char_alice", "D2") == {"name": "Alicia", "age": "30"}

    def test_null_new_value_removes_field(self):
        _, engine = build(
            make_keyframe({"name": "Alice", "age": "30"}, minute=0, snapshot_id="K0"),
            make_delta({"age": ("30", None)}, minute=1, snapshot_id="D1"),
        )
        assert engine.materialize("char_alice", "D1") == {"name": "Alice"}

    def test_snapshot_of_other_entity_rejected(self):
        _, engine = build(
            make_keyframe({"name": "Alice"}, snapshot_id="K0"),
            make_keyframe({"name": "Bob"}, snapshot_id="B0", entity_id="char_bob"),
        )
        with pytest.raises(SnapshotNotFoundError):
            engine.materialize("char_alice", "B0")

    def test_unknown_snapshot(self):
        _, engine = build(make_keyframe({"name": "Alice"}))
        with pytest.raises(SnapshotNotFoundError):
            engine.materialize("char_alice", "nope")

    def test_result_is_a_private_copy(self):
        _, engine = build(make_keyframe({"tags": ["brave"]}, snapshot_id="K0"))
        state = engine.materialize("char_alice", "K0")
        state["tags"].append("reckless")
        assert engine.materialize("char_alice", "K0") == {"tags": ["brave"]}

    def test_replay_length_metric(self):
        observability = ObservabilityEngine()
        _, engine = build(*alice_history(), observability=observability)
        engine.materialize("char_alice", "D2")
        assert observability.get_metrics().get_latest("materialize_replay_length").value == 2.0

    def test_keyframe_shortens_replay(self):
        observability = ObservabilityEngine()
        log, engine = build(*alice_history(), observability=observability)
        engine.checkpoint("char_alice", "D1")
        engine.materialize("char_alice", "D2")
        assert observability.get_metrics().get_latest("materialize_replay_length").value == 1.0

    def test_apply_keyframe_replaces_state(self):
        keyframe = make_keyframe({"name": "Bob"})
        assert apply_snapshot({"name": "Alice", "age": 3}, keyframe) == {"name": "Bob"}


class TestChapterQueries:

    @pytest.fixture
    def engine(self):
        _, engine = build(
            make_keyframe({"name": "Alice"}, minute=0, snapshot_id="K0", chapter_order=1),
            make_delta({"name": ("Alice", "Alicia")}, minute=1, snapshot_id="D1", chapter_order=3),
            make_delta({"age": (ABSENT, "30")}, minute=2, snapshot_id="D2", chapter_order=5),
        )
        return engine

    def test_state_at_chapter(self, engine):
        assert engine.state_at_chapter("char_alice", 0) == {}
        assert engine.state_at_chapter("char_alice", 1) == {"name": "Alice"}
        assert engine.state_at_chapter("char_alice", 4) == {"name": "Alicia"}
        assert engine.state_at_chapter("char_alice", 99) == {"name": "Alicia", "age": "30"}

    def test_latest_state(self, engine):
        assert engine.latest_state("char_alice") == {"name": "Alicia", "age": "30"}
        assert engine.latest_state("ghost") == {}

    def test_evolution_track(self, engine):
        track = engine.evolution_track("char_alice")
        assert [p.snapshot_id for p in track] == ["K0", "D1", "D2"]
        assert track[1].state == {"name": "Alicia"}

    def test_evolution_track_range(self, engine):
        track = engine.evolution_track("char_alice", from_chapter=2, to_chapter=5)
        assert [p.snapshot_id for p in track] == ["D1", "D2"]

    def test_track_skips_checkpoints(self, engine):
        engine.checkpoint("char_alice", "D1")
        assert [p.snapshot_id for p in engine.evolution_track("char_alice")] == ["K0", "D1", "D2"]


class TestCheckpointsAndBackfill:

    def build_history(self, with_checkpoint):
        log, engine = build(
            make_keyframe({"name": "A"}, minute=0, snapshot_id="K0"),
            make_delta({"name": ("A", "B")}, minute=10, snapshot_id="D1"),
            make_delta({"age": (ABSENT, 1)}, minute=20, snapshot_id="D2"),
        )
        if with_checkpoint:
            engine.checkpoint("char_alice", "D1")
        return log, engine

    def test_backfill_cannot_hide_behind_checkpoint(self):
        plain_log, plain = self.build_history(with_checkpoint=False)
        plain_log.append(make_delta({"title": (ABSENT, "Dr")}, minute=5, snapshot_id="BF"), backfill=True)
        assert plain.materialize("char_alice", "D2") == {"name": "B", "title": "Dr", "age": 1}

        checkpointed_log, checkpointed = self.build_history(with_checkpoint=True)
        with pytest.raises(OutOfOrderError):
            checkpointed_log.append(
                make_delta({"title": (ABSENT, "Dr")}, minute=5, snapshot_id="BF"), backfill=True
            )
        assert checkpointed.materialize("char_alice", "D2") == {"name": "B", "age": 1}

    @given(histories(), st.data())
    @settings(max_examples=50)
    def test_checkpoint_then_backfill_matches_plain_log(self, history, data):
        initial, edits = history
        snapshots, _ = as_snapshots(initial, edits)
        anchor = data.draw(st.sampled_from(snapshots))
        minute = data.draw(st.integers(min_value=0, max_value=len(edits)))

        plain_log, plain = build(*snapshots)
        checkpointed_log, checkpointed = build(*snapshots)
        checkpointed.checkpoint("char_alice", anchor.id)

        backfill = make_delta({"title": (ABSENT, "Dr")}, minute=minute, snapshot_id="BF")
        try:
            checkpointed_log.append(backfill, backfill=True)
        except OutOfOrderError:
            return
        plain_log.append(backfill, backfill=True)

        for snapshot in snapshots + [backfill]:
            assert checkpointed.materialize("char_alice", snapshot.id) == \
                plain.materialize("char_alice", snapshot.id)


class TestSnapshotIsolation:

    ROUNDS = 60

    def expected(self, n):
        state = {"n": n}
        state.update({f"h{j}": j for j in range(1, n + 1)})
        return state

    def test_readers_racing_appends_and_checkpoints(self):
        log, engine = build(make_keyframe({"n": 0}, minute=0, snapshot_id="D0"))
        done = threading.Event()
        failures = []

        def writer():
            try:
                for i in range(1, self.ROUNDS + 1):
                    log.append(make_delta(
                        {"n": (i - 1, i), f"h{i}": (ABSENT, i)},
                        minute=i, snapshot_id=f"D{i}"
                    ))
                    if i % 7 == 0:
                        engine.checkpoint("char_alice", f"D{i}")
            finally:
                done.set()

        def reader():
            while not done.is_set():
                latest = engine.latest_state("char_alice")
                if latest != self.expected(latest["n"]):
                    failures.append(("latest", latest))
                view = log.view("char_alice")
                for entry in view.entries[::5]:
                    if entry.checkpoint_of is not None:
                        continue
                    n = int(entry.id[1:])
                    state = engine.materialize("char_alice", entry.id)
                    if state != self.expected(n):
                        failures.append((entry.id, state))

        threads = [threading.Thread(target=writer)]
        threads += [threading.Thread(target=reader) for _ in range(3)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert failures == []
        assert engine.latest_state("char_alice") == self.expected(self.ROUNDS)
        assert log.keyframe_count("char_alice") == 1 + self.ROUNDS // 7

    def test_view_is_stable_while_log_grows(self):
        log, engine = build(*alice_history())
        view = log.view("char_alice")
        engine.checkpoint("char_alice", "D1")
        log.append(make_delta({"age": ("30", "31")}, minute=3, snapshot_id="D3"))
        assert [s.id for s in view.entries] == ["K0", "D1", "D2"]
        assert log.view("char_alice").version == view.version + 2
