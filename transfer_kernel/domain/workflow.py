"""
Workflow value objects (``transfer_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects describing a fixed state machine: named guards,
transitions and the workflow that owns them.  The store-request lifecycle
in ``state_machine`` is declared with these types.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
* Terminal states have no outgoing transitions.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Guard:
    """A named condition that must hold before a transition fires.

    Descriptive only: evaluation lives in ``state_machine.GUARD_EVALUATORS``.
    """
    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """A legal (from_state, action) -> to_state move.

    ``writes_ledger=True`` marks transitions that append quantity ledger
    rows; ``requires_reason=True`` marks transitions that need a non-empty
    reason from the caller.
    """
    from_state: str
    to_state: str
    action: str
    guard: Guard | None = None
    writes_ledger: bool = False
    requires_reason: bool = False


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for a document lifecycle."""
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.initial_state not in self.states:
            raise ValueError(
                f"Workflow {self.name}: initial state '{self.initial_state}' "
                f"is not a declared state"
            )
        for t in self.transitions:
            for state in (t.from_state, t.to_state):
                if state not in self.states:
                    raise ValueError(
                        f"Workflow {self.name}: transition '{t.action}' "
                        f"references unknown state '{state}'"
                    )
            if t.from_state in self.terminal_states:
                raise ValueError(
                    f"Workflow {self.name}: terminal state '{t.from_state}' "
                    f"has outgoing transition '{t.action}'"
                )

    def transitions_from(self, state: str, action: str) -> tuple[Transition, ...]:
        """All transitions leaving ``state`` via ``action``."""
        return tuple(
            t for t in self.transitions
            if t.from_state == state and t.action == action
        )

    def allowed_actions(self, state: str) -> tuple[str, ...]:
        """Distinct actions with at least one transition out of ``state``."""
        seen: list[str] = []
        for t in self.transitions:
            if t.from_state == state and t.action not in seen:
                seen.append(t.action)
        return tuple(seen)

    def is_terminal(self, state: str) -> bool:
        return state in self.terminal_states

    def find(self, from_state: str, action: str, to_state: str) -> Transition | None:
        for t in self.transitions:
            if (t.from_state, t.action, t.to_state) == (from_state, action, to_state):
                return t
        return None
