"""
Ownership Resolver (``billing_modules.ownership.service``).

Responsibility
--------------
Validates ownership share sets, resolves the owners of a building or unit
at an instant, replaces share sets atomically, and apportions amounts
across owners.

Architecture position
---------------------
**Modules layer** -- ``validate_share_set`` and ``apportion`` are pure
functions shared by building and unit callers.  ``OwnershipResolver``
reads and writes through the caller's session and never commits.

Invariants enforced
-------------------
* A share set sums to 100 within the configured tolerance, has no
  duplicate owner and no non-positive percent before it is accepted.
* Replacing a share set closes every open share one microsecond before
  the new set begins, under a lock on the asset row; the asset's version
  token changes with every replacement.
* Resolution is deterministic: shares are returned sorted by owner id.

Failure modes
-------------
* ``InvalidShareSetError`` -- validation failure (carries computed sum).
* ``AssetNotFoundError`` -- asset row missing.
* ``ConcurrencyConflictError`` -- caller's asset version is stale.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Sequence
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from billing_kernel.db.types import round_money
from billing_kernel.domain.actor import ActorProvider, FixedActorProvider
from billing_kernel.exceptions import (
    AssetNotFoundError,
    ConcurrencyConflictError,
    InvalidShareSetError,
)
from billing_kernel.logging_config import get_logger
from billing_kernel.models.audit_record import AuditAction
from billing_kernel.services.audit_sink import AuditSink, NullAuditSink
from billing_modules.ownership.models import (
    OwnerAllocation,
    ResolvedShare,
    ShareInput,
)
from billing_modules.ownership.orm import OwnershipShareModel, PropertyAssetModel

logger = get_logger("modules.ownership.service")

REQUIRED_TOTAL = Decimal("100")
DEFAULT_TOLERANCE = Decimal("0.01")
ONE_TICK = timedelta(microseconds=1)


def validate_share_set(
    shares: Sequence[ShareInput],
    tolerance: Decimal = DEFAULT_TOLERANCE,
) -> Decimal:
    """
    Check a proposed share set and return its total.

    Raises InvalidShareSetError when the set is empty, repeats an owner,
    holds a non-positive percent, or sums outside 100 +/- tolerance.
    """
    if not shares:
        raise InvalidShareSetError("At least one ownership share is required")

    owner_ids = [s.owner_id for s in shares]
    if len(set(owner_ids)) != len(owner_ids):
        raise InvalidShareSetError("Each owner can only appear once")

    if any(s.share_percent <= 0 for s in shares):
        raise InvalidShareSetError("All ownership shares must be greater than 0")

    total = sum((Decimal(s.share_percent) for s in shares), Decimal("0"))
    if abs(total - REQUIRED_TOTAL) > tolerance:
        raise InvalidShareSetError(
            f"Ownership shares must sum to 100%. Current sum: {total}%",
            computed_sum=total,
            expected_sum=REQUIRED_TOTAL,
        )
    return total


def apportion(
    amount: Decimal,
    shares: Sequence[ResolvedShare],
) -> tuple[OwnerAllocation, ...]:
    """
    Split ``amount`` across owners by percentage, at two decimal places.

    The rounding residue goes to the largest share (lowest owner id on a
    tie), so the parts always add back to ``amount``.
    """
    if not shares:
        return ()

    total_percent = sum((s.share_percent for s in shares), Decimal("0"))
    parts = {
        s.owner_id: round_money(amount * s.share_percent / total_percent)
        for s in shares
    }
    residue = amount - sum(parts.values(), Decimal("0"))
    if residue:
        largest = sorted(shares, key=lambda s: (-s.share_percent, str(s.owner_id)))[0]
        parts[largest.owner_id] += residue

    return tuple(
        OwnerAllocation(
            owner_id=s.owner_id,
            share_percent=s.share_percent,
            amount=parts[s.owner_id],
        )
        for s in sorted(shares, key=lambda s: str(s.owner_id))
    )


def as_instant(as_of: date | datetime) -> datetime:
    """Dates resolve at midnight UTC; datetimes are normalized to UTC."""
    if isinstance(as_of, datetime):
        if as_of.tzinfo is None:
            raise ValueError("as_of datetime must be timezone-aware")
        return as_of.astimezone(timezone.utc)
    return datetime.combine(as_of, time.min, tzinfo=timezone.utc)


class OwnershipResolver:
    """
    Resolves and replaces ownership share sets.

    Contract:
        Runs inside the caller's session.  ``set_shares`` flushes; the
        caller commits.
    """

    def __init__(
        self,
        session: Session,
        tolerance: Decimal = DEFAULT_TOLERANCE,
        audit_sink: AuditSink | None = None,
        actor_provider: ActorProvider | None = None,
    ):
        self._session = session
        self._tolerance = tolerance
        self._audit = audit_sink or NullAuditSink()
        self._actors = actor_provider or FixedActorProvider()

    def resolve_shares(
        self,
        asset_id: UUID,
        as_of: date | datetime,
    ) -> list[ResolvedShare]:
        """Shares open at ``as_of``, sorted by owner id."""
        instant = as_instant(as_of)
        rows = self._session.execute(
            select(OwnershipShareModel)
            .where(OwnershipShareModel.asset_id == asset_id)
            .where(OwnershipShareModel.effective_from <= instant)
            .where(
                or_(
                    OwnershipShareModel.effective_to.is_(None),
                    OwnershipShareModel.effective_to >= instant,
                )
            )
        ).scalars().all()

        resolved = sorted(
            (ResolvedShare(owner_id=r.owner_id, share_percent=r.share_percent) for r in rows),
            key=lambda s: str(s.owner_id),
        )
        logger.debug(
            "ownership_resolved",
            extra={
                "asset_id": str(asset_id),
                "as_of": instant.isoformat(),
                "owner_count": len(resolved),
            },
        )
        return resolved

    def resolve_for_lease(
        self,
        unit_id: UUID,
        building_id: UUID | None,
        as_of: date | datetime,
    ) -> list[ResolvedShare]:
        """Unit owners, or the building's owners when the unit has none."""
        shares = self.resolve_shares(unit_id, as_of)
        if not shares and building_id is not None:
            shares = self.resolve_shares(building_id, as_of)
        return shares

    def set_shares(
        self,
        asset_id: UUID,
        shares: Sequence[ShareInput],
        effective_from: datetime,
        expected_version: bytes | None = None,
    ) -> bytes:
        """
        Replace the asset's open share set from ``effective_from`` onward.

        Returns the asset's new version token.
        """
        total = validate_share_set(shares, self._tolerance)
        effective_from = as_instant(effective_from)
        actor = self._actors.current_actor()

        asset = self._session.execute(
            select(PropertyAssetModel)
            .where(PropertyAssetModel.id == asset_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if asset is None:
            raise AssetNotFoundError(asset_id)

        if expected_version is not None and asset.version != expected_version:
            raise ConcurrencyConflictError("PropertyAsset", asset_id)

        open_shares = self._session.execute(
            select(OwnershipShareModel)
            .where(OwnershipShareModel.asset_id == asset_id)
            .where(OwnershipShareModel.effective_to.is_(None))
        ).scalars().all()

        for share in open_shares:
            if effective_from <= share.effective_from:
                raise InvalidShareSetError(
                    f"New shares must start after the current set "
                    f"(current set effective from {share.effective_from.isoformat()})"
                )

        before = [s.to_dto() for s in open_shares]
        for share in open_shares:
            share.effective_to = effective_from - ONE_TICK
            share.updated_by = actor

        new_rows = [
            OwnershipShareModel(
                asset_id=asset_id,
                owner_id=s.owner_id,
                share_percent=Decimal(s.share_percent),
                effective_from=effective_from,
                effective_to=None,
                created_by=actor,
            )
            for s in shares
        ]
        self._session.add_all(new_rows)

        asset.share_revision += 1
        asset.updated_by = actor
        try:
            self._session.flush()
        except StaleDataError as exc:
            raise ConcurrencyConflictError("PropertyAsset", asset_id) from exc

        self._audit.record(
            self._session,
            entity_type="PropertyAsset",
            entity_id=asset_id,
            action=AuditAction.OWNERSHIP_CHANGED,
            actor=actor,
            before=before,
            after=[r.to_dto() for r in new_rows],
        )

        logger.info(
            "ownership_shares_set",
            extra={
                "asset_id": str(asset_id),
                "owner_count": len(new_rows),
                "total_percent": str(total),
                "effective_from": effective_from.isoformat(),
                "closed_share_count": len(open_shares),
            },
        )
        return asset.version
