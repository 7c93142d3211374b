"""
Shared state machine definitions (``billing_modules._workflow``).

Each module declares its lifecycle as a ``Workflow`` table.  Services ask
the table whether an action is legal from the current state before they
change anything, so the table is the single list of legal transitions.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class Guard:
    """A condition for a transition."""
    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """A valid state transition."""
    from_state: str
    to_state: str
    action: str
    guard: Guard | None = None


@dataclass(frozen=True)
class Workflow:
    """A state machine definition."""
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]

    def allows(self, from_state: str, action: str) -> bool:
        """True if ``action`` has at least one transition out of ``from_state``."""
        return any(
            t.from_state == from_state and t.action == action
            for t in self.transitions
        )

    def targets(self, from_state: str, action: str) -> frozenset[str]:
        """States reachable from ``from_state`` through ``action``."""
        return frozenset(
            t.to_state for t in self.transitions
            if t.from_state == from_state and t.action == action
        )

    def sources(self, action: str) -> frozenset[str]:
        """States from which ``action`` is legal."""
        return frozenset(t.from_state for t in self.transitions if t.action == action)
