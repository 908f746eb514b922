"""
Workflow table types (``disbursement_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects describing a role-routed state machine.  The routing
policy declares its rules as ``Transition`` rows inside one ``Workflow``;
nothing else in the kernel encodes "who acts next".

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
* Terminal states have no outgoing transitions.
* A transition into a terminal state routes to nobody; any other
  transition routes to at least one role.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Guard:
    """A named condition that must hold before a transition fires.

    Contract: frozen, descriptive only.
    Non-goals: does not evaluate the condition -- the routing policy does.
    """
    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """One routing rule.

    ``actor_roles`` lists the roles allowed to fire it; ``next_action_by`` is
    the set of roles that own the request afterwards.  ``liquidates_advance``
    marks the liquidation approval whose side effect closes the linked
    cash advance.
    """
    from_state: str
    to_state: str
    action: str
    actor_roles: tuple[str, ...]
    next_action_by: tuple[str, ...] = ()
    guard: Guard | None = None
    liquidates_advance: bool = False


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for a request lifecycle."""
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.initial_state not in self.states:
            raise ValueError(
                f"Workflow {self.name}: initial state {self.initial_state!r} "
                f"is not a declared state"
            )
        for t in self.transitions:
            for state in (t.from_state, t.to_state):
                if state not in self.states:
                    raise ValueError(
                        f"Workflow {self.name}: transition {t.action} "
                        f"references unknown state {state!r}"
                    )
            if t.from_state in self.terminal_states:
                raise ValueError(
                    f"Workflow {self.name}: terminal state {t.from_state!r} "
                    f"has an outgoing transition ({t.action})"
                )
            if (t.to_state in self.terminal_states) == bool(t.next_action_by):
                raise ValueError(
                    f"Workflow {self.name}: transition {t.from_state}->"
                    f"{t.to_state} must route to nobody iff it is terminal"
                )

    def transitions_from(self, state: str, action: str | None = None) -> tuple[Transition, ...]:
        """Transitions leaving ``state`` (optionally only for ``action``), in declared order."""
        return tuple(
            t for t in self.transitions
            if t.from_state == state and (action is None or t.action == action)
        )
