"""
Acting principal for audit attribution.

Contract:
    The engine never authenticates anyone. The outer application injects an
    ``ActorProvider`` that names the principal performing the current
    operation; the name is stamped onto status history rows, invoice
    audit columns and audit records.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

SYSTEM_ACTOR = "system"


@runtime_checkable
class ActorProvider(Protocol):
    """Supplies the identifier of the acting principal."""

    def current_actor(self) -> str: ...


class FixedActorProvider:
    """Provider that always returns the same principal (default: ``system``)."""

    def __init__(self, actor: str = SYSTEM_ACTOR):
        self._actor = actor

    def current_actor(self) -> str:
        return self._actor
