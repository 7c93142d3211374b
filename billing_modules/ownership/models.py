"""
Ownership Domain Models (``billing_modules.ownership.models``).

Responsibility
--------------
Frozen dataclass value objects for fractional ownership of property assets
(buildings and units): the asset itself, dated ownership shares, the input
shape for a new share set, and the resolved (owner, percent) pairs.

Architecture position
---------------------
**Modules layer** -- pure data definitions with ZERO I/O.

Invariants enforced
-------------------
* All models are ``frozen=True``.
* Percentages are ``Decimal`` -- NEVER ``float``.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID


class AssetType(Enum):
    """Kinds of property asset that can be owned."""
    BUILDING = "building"
    UNIT = "unit"


@dataclass(frozen=True)
class PropertyAsset:
    """A building or unit; the unit of contention for ownership changes."""
    id: UUID
    org_id: UUID
    asset_type: AssetType
    name: str
    parent_id: UUID | None = None
    version: bytes | None = None


@dataclass(frozen=True)
class ShareInput:
    """One owner's requested percentage in a new share set."""
    owner_id: UUID
    share_percent: Decimal


@dataclass(frozen=True)
class OwnershipShare:
    """An owner's percentage of an asset over [effective_from, effective_to]."""
    id: UUID
    asset_id: UUID
    owner_id: UUID
    share_percent: Decimal
    effective_from: datetime
    effective_to: datetime | None = None  # None = open-ended


@dataclass(frozen=True)
class ResolvedShare:
    """An (owner, percent) pair valid at a resolved instant."""
    owner_id: UUID
    share_percent: Decimal


@dataclass(frozen=True)
class OwnerAllocation:
    """An amount apportioned to one owner."""
    owner_id: UUID
    share_percent: Decimal
    amount: Decimal
