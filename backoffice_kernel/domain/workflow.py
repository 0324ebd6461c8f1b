"""
Canonical workflow types (``backoffice_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for document state machines.  Every document type
(cash advance, settlement, reimbursement, sales order, purchase order,
delivery order) declares exactly one ``Workflow`` built from these types,
so the transition discipline is defined once.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/`` or outer layers.

Invariants enforced
-------------------
* ``initial_state``, ``terminal_states``, ``deletable_states`` and every
  transition endpoint are members of ``states`` (checked at construction).
* Terminal states have no outgoing transitions.
* Several transitions may share ``(from_state, action)``; together they form
  the set of allowed destinations and must share the same guard.
* ``resolve_transition`` is a pure function of ``(workflow, status, action)``.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from backoffice_kernel.exceptions import InvalidTransitionError


@dataclass(frozen=True)
class Guard:
    """A condition that must be satisfied before a transition fires.

    Contract: frozen, descriptive only.
    Non-goals: does not evaluate the condition -- the guard executor does.
    """
    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """A legal state transition in a workflow.

    ``system=True`` marks transitions normally fired by side effects rather
    than by a person (e.g. promoting a sales order to invoicing).
    """
    from_state: str
    to_state: str
    action: str
    guard: Guard | None = None
    system: bool = False


@dataclass(frozen=True)
class TransitionDecision:
    """Outcome of looking up ``(status, action)`` in a workflow table."""
    from_state: str
    action: str
    destinations: frozenset[str]
    guard: Guard | None = None

    @property
    def single_destination(self) -> str | None:
        if len(self.destinations) == 1:
            return next(iter(self.destinations))
        return None


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for a document lifecycle.

    Contract: frozen; validated on construction.
    ``deletable_states`` are the statuses from which a soft delete is allowed.
    """
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()
    deletable_states: tuple[str, ...] = field(default=())

    def __post_init__(self) -> None:
        known = set(self.states)
        referenced = {self.initial_state, *self.terminal_states, *self.deletable_states}
        for t in self.transitions:
            referenced.update((t.from_state, t.to_state))
        unknown = referenced - known
        if unknown:
            raise ValueError(
                f"Workflow {self.name} references unknown states: {sorted(unknown)}"
            )
        for t in self.transitions:
            if t.from_state in self.terminal_states:
                raise ValueError(
                    f"Workflow {self.name}: terminal state {t.from_state} "
                    f"has outgoing transition '{t.action}'"
                )
        guards: dict[tuple[str, str], Guard | None] = {}
        for t in self.transitions:
            key = (t.from_state, t.action)
            if key in guards and guards[key] != t.guard:
                raise ValueError(
                    f"Workflow {self.name}: transitions for {key} disagree on guard"
                )
            guards[key] = t.guard

    @property
    def actions(self) -> tuple[str, ...]:
        """Every action named anywhere in the table, in declaration order."""
        return tuple(dict.fromkeys(t.action for t in self.transitions))


def fan_in(
    from_states: tuple[str, ...],
    to_state: str,
    action: str,
    guard: Guard | None = None,
    system: bool = False,
) -> tuple[Transition, ...]:
    """One transition per source state, all to the same destination."""
    return tuple(
        Transition(s, to_state, action, guard=guard, system=system)
        for s in from_states
    )


def allowed_actions(workflow: Workflow, status: str) -> tuple[str, ...]:
    """Actions legal from ``status``, in declaration order."""
    return tuple(
        dict.fromkeys(t.action for t in workflow.transitions if t.from_state == status)
    )


def resolve_transition(workflow: Workflow, status: str, action: str) -> TransitionDecision:
    """Look up the allowed destinations for ``(status, action)``.

    Raises:
        InvalidTransitionError: the pair is absent from the table.
    """
    matches = [
        t for t in workflow.transitions
        if t.from_state == status and t.action == action
    ]
    if not matches:
        raise InvalidTransitionError(
            workflow.name, status, action, allowed_actions(workflow, status)
        )
    return TransitionDecision(
        from_state=status,
        action=action,
        destinations=frozenset(t.to_state for t in matches),
        guard=matches[0].guard,
    )
