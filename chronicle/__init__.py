"""
Chronicle: Narrative Evolution & Consistency Core

Tracks how narrative entities (characters, wiki facts, plot threads) evolve
across chapters and owns the lifecycle of consistency findings raised
against them.

LAYER STRUCTURE:
================

1. CONTRACTS (contracts/)
   - Immutable data: StateSnapshot, FieldChange, ConsistencyWarning
   - Explicit error states (ErrorCode) and the typed exception taxonomy

2. RULES (rules/)
   - Pure functions: change classification, severity classification
   - MUST NOT: hold state or touch storage

3. TEMPORAL (temporal/)
   - Append-only snapshot log with keyframe checkpoints
   - Reconstruction by replay, structural diffing, snapshot recording
   - MUST NOT: rewrite or delete history (cascade deletes excepted)

4. COMPARISON (comparison/)
   - Selection state machine choosing the two sides of a comparison

5. CONSISTENCY (consistency/)
   - Detector-fed warning queue with resolve/dismiss lifecycle
   - MUST NOT: detect inconsistencies itself

6. STORAGE (storage/)
   - Write-through persistence of snapshot logs and warning records

7. OBSERVABILITY (observability/)
   - Audit log and metrics; never alters behaviour

8. STORE / ENGINE (store.py, engine.py)
   - One explicit store object per project, subscription notifications
   - Query surface consumed by the HTTP layer (api/)

CONSTRAINTS ENFORCED:
=====================
- Append-only: keyframes are additive checkpoints, never replacements
- Deterministic: same log -> same materialized state, same diff
- Explicit errors: every failure is a typed exception carrying an Error
- Terminal warning states are final
"""
