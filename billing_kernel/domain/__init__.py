"""Pure domain helpers: clock and acting principal."""

from billing_kernel.domain.actor import ActorProvider, FixedActorProvider, SYSTEM_ACTOR
from billing_kernel.domain.clock import Clock, DeterministicClock, SystemClock

__all__ = [
    "ActorProvider",
    "FixedActorProvider",
    "SYSTEM_ACTOR",
    "Clock",
    "DeterministicClock",
    "SystemClock",
]
