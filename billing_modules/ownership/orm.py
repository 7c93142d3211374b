"""
Ownership ORM Models (``billing_modules.ownership.orm``).

Responsibility
--------------
SQLAlchemy persistence for property assets and their dated ownership
shares.  Maps the frozen dataclasses in ``models.py`` to tables.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``billing_kernel.db`` and
sibling ``models.py``.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, Index, Integer, LargeBinary, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from billing_kernel.db.base import TrackedBase
from billing_kernel.db.types import new_version_token


class PropertyAssetModel(TrackedBase):
    """
    ORM model for buildings and units.

    Guarantees:
        - version changes on every UPDATE (compare-and-swap at flush).
        - share_revision increments each time a share set is replaced, so a
          share change always produces an UPDATE of this row.
    """

    __tablename__ = "property_assets"

    __table_args__ = (
        Index("idx_property_assets_org_id", "org_id"),
        Index("idx_property_assets_parent_id", "parent_id"),
    )

    org_id: Mapped[UUID] = mapped_column(nullable=False)
    asset_type: Mapped[str] = mapped_column(String(20), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    parent_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("property_assets.id"), nullable=True
    )
    share_revision: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    version: Mapped[bytes] = mapped_column(LargeBinary(16), nullable=False)

    __mapper_args__ = {
        "version_id_col": version,
        "version_id_generator": new_version_token,
    }

    shares: Mapped[list["OwnershipShareModel"]] = relationship(
        back_populates="asset",
        lazy="selectin",
        order_by="OwnershipShareModel.effective_from",
    )

    def to_dto(self):
        """Convert ORM model to frozen dataclass."""
        from billing_modules.ownership.models import AssetType, PropertyAsset

        return PropertyAsset(
            id=self.id,
            org_id=self.org_id,
            asset_type=AssetType(self.asset_type),
            name=self.name,
            parent_id=self.parent_id,
            version=self.version,
        )

    def __repr__(self) -> str:
        return f"<PropertyAssetModel {self.asset_type}: {self.name}>"


class OwnershipShareModel(TrackedBase):
    """
    ORM model for one owner's dated percentage of an asset.

    Guarantees:
        - effective_to is None while the share is open.
        - Closed shares end one microsecond before their successor begins.
    """

    __tablename__ = "ownership_shares"

    __table_args__ = (
        Index("idx_ownership_shares_asset_id", "asset_id"),
        Index("idx_ownership_shares_owner_id", "owner_id"),
        Index("idx_ownership_shares_open", "asset_id", "effective_to"),
    )

    asset_id: Mapped[UUID] = mapped_column(
        ForeignKey("property_assets.id"), nullable=False
    )
    owner_id: Mapped[UUID] = mapped_column(nullable=False)
    share_percent: Mapped[Decimal] = mapped_column(Numeric(9, 4), nullable=False)
    effective_from: Mapped[datetime] = mapped_column(nullable=False)
    effective_to: Mapped[datetime | None] = mapped_column(nullable=True)

    asset: Mapped["PropertyAssetModel"] = relationship(back_populates="shares")

    def to_dto(self):
        """Convert ORM model to frozen dataclass."""
        from billing_modules.ownership.models import OwnershipShare

        return OwnershipShare(
            id=self.id,
            asset_id=self.asset_id,
            owner_id=self.owner_id,
            share_percent=self.share_percent,
            effective_from=self.effective_from,
            effective_to=self.effective_to,
        )

    def __repr__(self) -> str:
        return f"<OwnershipShareModel {self.owner_id}: {self.share_percent}%>"
