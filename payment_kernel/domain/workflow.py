"""
Workflow state-machine types (``payment_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects describing a lifecycle as a table of legal
transitions.  Payment transactions, disbursements and settlement batches
each declare one ``Workflow`` and route every status change through it,
so the set of legal moves lives in exactly one place per entity.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
* Terminal states have no outgoing transitions.
"""

from __future__ import annotations

from collections.abc import Hashable
from dataclasses import dataclass, field


@dataclass(frozen=True)
class Transition:
    """A legal move between two states, named by the entity method that makes it."""

    from_state: Hashable
    to_state: Hashable
    action: str


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for an entity lifecycle.

    Contract: frozen; validated at construction so a malformed table fails
    at import time rather than on the first transition attempt.
    """

    name: str
    description: str
    initial_state: Hashable
    states: tuple[Hashable, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[Hashable, ...] = ()
    _index: dict = field(default_factory=dict, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        known = set(self.states)
        if self.initial_state not in known:
            raise ValueError(f"{self.name}: initial state {self.initial_state!r} is not declared")
        for t in self.transitions:
            if t.from_state not in known or t.to_state not in known:
                raise ValueError(f"{self.name}: transition {t.action!r} uses an undeclared state")
            if t.from_state in self.terminal_states:
                raise ValueError(f"{self.name}: terminal state {t.from_state!r} has an outgoing transition")
            self._index[(t.from_state, t.to_state)] = t

    def can_transition(self, from_state: Hashable, to_state: Hashable) -> bool:
        return (from_state, to_state) in self._index

    def transition_for(self, from_state: Hashable, to_state: Hashable) -> Transition | None:
        return self._index.get((from_state, to_state))

    def targets_from(self, state: Hashable) -> frozenset:
        """All states reachable from ``state`` in one step."""
        return frozenset(t.to_state for t in self.transitions if t.from_state == state)

    def sources_of(self, to_state: Hashable) -> frozenset:
        """All states from which ``to_state`` may be entered."""
        return frozenset(t.from_state for t in self.transitions if t.to_state == to_state)

    def is_terminal(self, state: Hashable) -> bool:
        return state in self.terminal_states
