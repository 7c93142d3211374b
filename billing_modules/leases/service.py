"""
Charge Accumulator (``billing_modules.leases.service``).

Responsibility
--------------
Turns a lease's term history and recurring charges into the ordered line
items of one billing period: rent per covering term (escalated and
prorated), fixed term charges, then recurring charges.

Architecture position
---------------------
**Modules layer** -- pure computation over ``Lease`` DTOs.  The only I/O
is the optional ownership lookup used when lines are split by owner.

Invariants enforced
-------------------
* Every billable day of the period is covered by exactly one term, or
  ``NoApplicableTermError`` names the first uncovered day.
* Escalated rent is computed from term data alone and frozen into the
  line, so regenerating a period reproduces identical amounts.
* Line numbers are contiguous from 1 in output order.

Failure modes
-------------
* ``InvalidBillingPeriodError`` -- period end before start.
* ``NoApplicableTermError`` -- data gap in the term history.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import date
from decimal import Decimal

from billing_kernel.db.types import round_money
from billing_kernel.exceptions import InvalidBillingPeriodError, NoApplicableTermError
from billing_kernel.logging_config import get_logger
from billing_modules.leases.calculations import (
    ONE_DAY,
    ProrationPolicy,
    escalated_rent,
    overlap,
    proration_policy_for,
)
from billing_modules.leases.models import (
    ChargeCode,
    ChargeFrequency,
    Lease,
    LeaseTerm,
    LineItem,
    ProrationMethod,
)
from billing_modules.ownership.service import OwnershipResolver, apportion

logger = get_logger("modules.leases.service")


def describe_period(label: str, start: date, end: date, prorated: bool) -> str:
    """``Rent for Feb 2026`` or ``Rent for Feb 01 - Feb 14, 2026 (Prorated)``."""
    if not prorated:
        return f"{label} for {start.strftime('%b %Y')}"
    return (
        f"{label} for {start.strftime('%b %d')} - "
        f"{end.strftime('%b %d, %Y')} (Prorated)"
    )


class ChargeAccumulator:
    """
    Builds invoice line items for a lease and billing period.

    Contract:
        Stateless apart from its configuration.  Pass an
        ``OwnershipResolver`` and ``split_by_owner=True`` to attach owner
        allocations to every line.
    """

    def __init__(
        self,
        default_proration: ProrationMethod = ProrationMethod.ACTUAL_DAYS,
        ownership: OwnershipResolver | None = None,
        split_by_owner: bool = False,
    ):
        self._default_proration = default_proration
        self._ownership = ownership
        self._split_by_owner = split_by_owner and ownership is not None

    def build_line_items(
        self,
        lease: Lease,
        period_start: date,
        period_end: date,
        proration: ProrationPolicy | None = None,
    ) -> list[LineItem]:
        if period_end < period_start:
            raise InvalidBillingPeriodError(period_start, period_end)

        policy = proration or proration_policy_for(
            lease.proration_method or self._default_proration
        )

        window = overlap(
            period_start,
            period_end,
            lease.start_date,
            lease.end_date or period_end,
        )
        if window is None:
            raise NoApplicableTermError(lease.id, period_start, period_start, period_end)

        segments = self._term_segments(lease, window[0], window[1], period_start, period_end)

        items: list[LineItem] = []
        for term, seg_start, seg_end in segments:
            items.extend(
                self._term_lines(term, seg_start, seg_end, period_start, period_end, policy)
            )
        items.extend(
            self._recurring_lines(lease, window[0], window[1], period_start, period_end, policy)
        )

        items = [replace(item, line_number=n) for n, item in enumerate(items, start=1)]
        if self._split_by_owner:
            items = [self._with_allocations(lease, item) for item in items]

        logger.info(
            "line_items_built",
            extra={
                "lease_id": str(lease.id),
                "period_start": period_start.isoformat(),
                "period_end": period_end.isoformat(),
                "line_count": len(items),
                "segment_count": len(segments),
                "proration_method": policy.method.value,
                "total": str(sum((i.total_amount for i in items), Decimal("0"))),
            },
        )
        return items

    def _term_segments(
        self,
        lease: Lease,
        window_start: date,
        window_end: date,
        period_start: date,
        period_end: date,
    ) -> list[tuple[LeaseTerm, date, date]]:
        """Split the billable window at term boundaries; gaps are errors."""
        terms = sorted(
            (
                t for t in lease.terms
                if overlap(t.effective_from, t.effective_to or window_end, window_start, window_end)
            ),
            key=lambda t: t.effective_from,
        )

        segments: list[tuple[LeaseTerm, date, date]] = []
        cursor = window_start
        for term in terms:
            if cursor > window_end:
                break
            if not term.covers(cursor):
                if term.effective_from > cursor:
                    break
                continue
            seg_end = min(window_end, term.effective_to or window_end)
            segments.append((term, cursor, seg_end))
            cursor = seg_end + ONE_DAY

        if cursor <= window_end:
            logger.warning(
                "lease_term_gap_detected",
                extra={
                    "lease_id": str(lease.id),
                    "uncovered_date": cursor.isoformat(),
                    "term_count": len(lease.terms),
                },
            )
            raise NoApplicableTermError(lease.id, cursor, period_start, period_end)
        return segments

    def _term_lines(
        self,
        term: LeaseTerm,
        seg_start: date,
        seg_end: date,
        period_start: date,
        period_end: date,
        policy: ProrationPolicy,
    ) -> list[LineItem]:
        prorated = (seg_start, seg_end) != (period_start, period_end)
        charges = (
            (ChargeCode.RENT, "Rent", escalated_rent(term, seg_start)),
            (ChargeCode.MAINTENANCE, "Maintenance charge", round_money(term.maintenance_charge)),
            (ChargeCode.OTHER_FIXED, "Fixed charge", round_money(term.other_fixed_charge)),
        )
        lines = []
        for code, label, full_amount in charges:
            if full_amount <= 0:
                continue
            amount = policy.prorate(full_amount, seg_start, seg_end, period_start, period_end)
            lines.append(
                LineItem(
                    line_number=0,
                    charge_code=code,
                    description=describe_period(label, seg_start, seg_end, prorated),
                    period_start=seg_start,
                    period_end=seg_end,
                    amount=amount,
                    full_amount=full_amount,
                    is_prorated=prorated,
                    lease_term_id=term.id,
                )
            )
        return lines

    def _recurring_lines(
        self,
        lease: Lease,
        window_start: date,
        window_end: date,
        period_start: date,
        period_end: date,
        policy: ProrationPolicy,
    ) -> list[LineItem]:
        lines = []
        for charge in lease.recurring_charges:
            if not charge.is_active or charge.frequency != ChargeFrequency.MONTHLY:
                continue
            span = overlap(
                charge.start_date,
                charge.end_date or window_end,
                window_start,
                window_end,
            )
            if span is None:
                continue
            prorated = span != (period_start, period_end)
            amount = policy.prorate(charge.amount, span[0], span[1], period_start, period_end)
            if amount <= 0:
                continue
            description = charge.description
            if prorated:
                description = (
                    f"{charge.description} ({span[0].strftime('%b %d')} - "
                    f"{span[1].strftime('%b %d, %Y')}, Prorated)"
                )
            lines.append(
                LineItem(
                    line_number=0,
                    charge_code=charge.charge_code,
                    description=description,
                    period_start=span[0],
                    period_end=span[1],
                    amount=amount,
                    full_amount=round_money(charge.amount),
                    is_prorated=prorated,
                    recurring_charge_id=charge.id,
                )
            )
        return lines

    def _with_allocations(self, lease: Lease, item: LineItem) -> LineItem:
        shares = self._ownership.resolve_for_lease(
            lease.unit_id, lease.building_id, item.period_start
        )
        if not shares:
            logger.warning(
                "owner_split_skipped_no_shares",
                extra={
                    "lease_id": str(lease.id),
                    "unit_id": str(lease.unit_id),
                    "as_of": item.period_start.isoformat(),
                },
            )
            return item
        return replace(item, allocations=apportion(item.total_amount, shares))
