"""
Comparison Selector
===================

State machine picking the two sides (from, to) of a snapshot comparison
out of an arbitrary click sequence.

TRANSITIONS on select(s):
    Empty                      -> OneSelected(s)
    OneSelected(f),  s == f    -> Empty
    OneSelected(f),  s != f    -> TwoSelected(f, s)      [triggers comparison]
    TwoSelected(f,t), s == f   -> OneSelected(t)         [t becomes the anchor]
    TwoSelected(f,t), s == t   -> OneSelected(f)
    TwoSelected(f,t), other    -> OneSelected(s)         [restart]
clear() -> Empty from any state.

STALE RESULTS:
Entering TwoSelected issues a ComparisonTicket. Leaving TwoSelected (or
clear()) invalidates it, so a late complete() for an abandoned
comparison is discarded instead of overwriting the current selection.
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional
import threading

from ..contracts.errors import ChronicleError
from ..contracts.snapshots import StateSnapshot


class SelectionState(Enum):
    EMPTY = "empty"
    ONE_SELECTED = "one_selected"
    TWO_SELECTED = "two_selected"


@dataclass(frozen=True)
class ComparisonTicket:
    """Handle for one in-flight comparison."""
    generation: int
    from_id: str
    to_id: str


Comparer = Callable[[StateSnapshot, StateSnapshot], Any]


class ComparisonSelector:
    """
    One comparison session. Thread-safe; not shared between sessions.

    If a comparer is given it runs synchronously on the TwoSelected
    trigger and its result (or typed failure) is stored on the selector.
    Without one, callers run the comparison themselves and report back
    through complete() / fail().
    """

    def __init__(self, comparer: Optional[Comparer] = None):
        self._comparer = comparer
        self._lock = threading.Lock()
        self._from: Optional[StateSnapshot] = None
        self._to: Optional[StateSnapshot] = None
        self._generation = 0
        self._ticket: Optional[ComparisonTicket] = None
        self._result: Any = None
        self._error: Optional[ChronicleError] = None

    # =========================================================================
    # STATE
    # =========================================================================

    @property
    def state(self) -> SelectionState:
        with self._lock:
            return self._state()

    @property
    def from_snapshot(self) -> Optional[StateSnapshot]:
        return self._from

    @property
    def to_snapshot(self) -> Optional[StateSnapshot]:
        return self._to

    @property
    def result(self) -> Any:
        return self._result

    @property
    def error(self) -> Optional[ChronicleError]:
        return self._error

    @property
    def pending_ticket(self) -> Optional[ComparisonTicket]:
        """Ticket of the current comparison if no outcome has been accepted yet."""
        with self._lock:
            if self._ticket is None or self._result is not None or self._error is not None:
                return None
            return self._ticket

    def is_selected(self, snapshot_id: str) -> bool:
        with self._lock:
            return any(s is not None and s.id == snapshot_id for s in (self._from, self._to))

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    def select(self, snapshot: StateSnapshot) -> Optional[ComparisonTicket]:
        """
        Apply one click. Returns the new ticket when the click completes a
        pair, otherwise None.
        """
        with self._lock:
            state = self._state()

            if state is SelectionState.EMPTY:
                self._set(snapshot, None)
                return None

            if state is SelectionState.ONE_SELECTED:
                if snapshot.id == self._from.id:
                    self._set(None, None)
                    return None
                pair = (self._from, snapshot)
                self._set(*pair)
                ticket = self._ticket
            else:
                if snapshot.id == self._from.id:
                    self._set(self._to, None)
                elif snapshot.id == self._to.id:
                    self._set(self._from, None)
                else:
                    self._set(snapshot, None)
                return None

        if self._comparer is not None:
            self._run(ticket, *pair)
        return ticket

    def clear(self):
        """Back to Empty. Any outstanding ticket becomes stale."""
        with self._lock:
            self._set(None, None)

    def complete(self, ticket: ComparisonTicket, result: Any) -> bool:
        """Store a comparison result. False if the ticket is stale."""
        with self._lock:
            if not self._is_current(ticket):
                return False
            self._result = result
            self._error = None
            return True

    def fail(self, ticket: ComparisonTicket, error: ChronicleError) -> bool:
        """Store a comparison failure. False if the ticket is stale."""
        with self._lock:
            if not self._is_current(ticket):
                return False
            self._error = error
            self._result = None
            return True

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _state(self) -> SelectionState:
        if self._from is None:
            return SelectionState.EMPTY
        if self._to is None:
            return SelectionState.ONE_SELECTED
        return SelectionState.TWO_SELECTED

    def _set(self, from_snapshot: Optional[StateSnapshot], to_snapshot: Optional[StateSnapshot]):
        self._from = from_snapshot
        self._to = to_snapshot
        self._generation += 1
        self._result = None
        self._error = None
        if from_snapshot is not None and to_snapshot is not None:
            self._ticket = ComparisonTicket(
                generation=self._generation,
                from_id=from_snapshot.id,
                to_id=to_snapshot.id
            )
        else:
            self._ticket = None

    def _is_current(self, ticket: ComparisonTicket) -> bool:
        return self._ticket is not None and ticket.generation == self._ticket.generation

    def _run(self, ticket: ComparisonTicket, from_snapshot: StateSnapshot, to_snapshot: StateSnapshot):
        try:
            result = self._comparer(from_snapshot, to_snapshot)
        except ChronicleError as e:
            self.fail(ticket, e)
            return
        self.complete(ticket, result)
