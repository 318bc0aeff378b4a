"""
Canonical workflow types (``billing_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for status state machines.  Unit entries, claims and
rate catalogs each declare one ``Workflow`` whose ``transitions`` tuple is
the explicit adjacency table for that entity.  ``Workflow.apply`` is the
single gate every status change goes through: an edge not in the table is
a ``TransitionError``, a role outside the edge's ``allowed_roles`` is an
``AuthorizationError``.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``models/``, ``services/``, or outer layers.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
* Terminal states have no outgoing transitions.
* All transitions sharing an action share the same role gate.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from billing_kernel.exceptions import AuthorizationError, TransitionError


@dataclass(frozen=True)
class Guard:
    """A condition that must be satisfied before a transition fires.

    Contract: frozen, descriptive only.
    Non-goals: does not evaluate the condition -- the owning service does.
    """
    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """A valid state transition in a workflow.

    ``allowed_roles`` empty means any actor (or the system itself) may fire
    the transition.
    """
    from_state: str
    to_state: str
    action: str
    guard: Guard | None = None
    allowed_roles: frozenset[str] = field(default_factory=frozenset)


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for a document lifecycle.

    Contract: frozen; ``transitions`` reference only states in ``states``.
    Guarantees: ``initial_state`` is a member of ``states``.
    """
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.initial_state not in self.states:
            raise ValueError(
                f"{self.name}: initial state {self.initial_state!r} not in states"
            )
        gates: dict[str, frozenset[str]] = {}
        for t in self.transitions:
            for state in (t.from_state, t.to_state):
                if state not in self.states:
                    raise ValueError(
                        f"{self.name}: transition {t.action} references unknown state {state!r}"
                    )
            if t.from_state in self.terminal_states:
                raise ValueError(
                    f"{self.name}: terminal state {t.from_state!r} has outgoing transition {t.action}"
                )
            if gates.setdefault(t.action, t.allowed_roles) != t.allowed_roles:
                raise ValueError(
                    f"{self.name}: action {t.action} declares inconsistent role gates"
                )

    @property
    def actions(self) -> tuple[str, ...]:
        seen: dict[str, None] = {}
        for t in self.transitions:
            seen.setdefault(t.action, None)
        return tuple(seen)

    def adjacency(self) -> dict[str, frozenset[str]]:
        """Return ``{state: reachable states}`` for one step."""
        table: dict[str, set[str]] = {s: set() for s in self.states}
        for t in self.transitions:
            table[t.from_state].add(t.to_state)
        return {s: frozenset(targets) for s, targets in table.items()}

    def sources_for(self, action: str) -> tuple[str, ...]:
        """States from which ``action`` may fire."""
        return tuple(
            dict.fromkeys(t.from_state for t in self.transitions if t.action == action)
        )

    def roles_for(self, action: str) -> frozenset[str]:
        for t in self.transitions:
            if t.action == action:
                return t.allowed_roles
        raise ValueError(f"{self.name}: unknown action {action!r}")

    def apply(
        self,
        entity_id: object,
        current_state: str,
        action: str,
        *,
        role: str | None = None,
        actor_id: object = None,
        to_state: str | None = None,
    ) -> Transition:
        """Resolve the edge for ``action`` out of ``current_state``.

        Role is checked before status so that an unauthorized caller learns
        nothing about the entity's state.

        Raises:
            AuthorizationError: ``role`` is not in the action's role gate.
            TransitionError: no edge ``current_state --action--> to_state``.
        """
        allowed = self.roles_for(action)
        if allowed and role not in allowed:
            raise AuthorizationError(
                actor_id=actor_id,
                role=role or "system",
                action=action,
                allowed_roles=allowed,
            )

        for t in self.transitions:
            if t.action != action or t.from_state != current_state:
                continue
            if to_state is not None and t.to_state != to_state:
                continue
            return t

        requested = to_state or next(
            t.to_state for t in self.transitions if t.action == action
        )
        raise TransitionError(
            entity=self.name,
            entity_id=entity_id,
            current_status=current_state,
            requested_status=requested,
            action=action,
            expected=self.sources_for(action),
        )
