"""
Ownership Module.

Fractional ownership of buildings and units: share-set validation,
point-in-time resolution, atomic replacement and owner apportioning.
"""

from billing_modules.ownership.models import (
    AssetType,
    OwnerAllocation,
    OwnershipShare,
    PropertyAsset,
    ResolvedShare,
    ShareInput,
)
from billing_modules.ownership.service import (
    OwnershipResolver,
    apportion,
    validate_share_set,
)

__all__ = [
    "AssetType",
    "OwnerAllocation",
    "OwnershipShare",
    "PropertyAsset",
    "ResolvedShare",
    "ShareInput",
    "OwnershipResolver",
    "apportion",
    "validate_share_set",
]
