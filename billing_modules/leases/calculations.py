"""
Lease Billing Pure Calculation Functions.

Domain math behind line generation:
- Day counting and range overlap for inclusive calendar periods
- Proration policies (actual days, thirty-day month)
- Rent escalation by elapsed whole months
"""

from abc import ABC, abstractmethod
from datetime import date, timedelta
from decimal import Decimal

from billing_kernel.db.types import round_money
from billing_modules.leases.models import EscalationType, LeaseTerm, ProrationMethod

ONE_DAY = timedelta(days=1)


def days_inclusive(start: date, end: date) -> int:
    """Number of calendar days in [start, end]."""
    return (end - start).days + 1


def overlap(
    a_start: date,
    a_end: date,
    b_start: date,
    b_end: date,
) -> tuple[date, date] | None:
    """Intersection of two inclusive ranges, or None."""
    start = max(a_start, b_start)
    end = min(a_end, b_end)
    if end < start:
        return None
    return start, end


def whole_months_between(start: date, end: date) -> int:
    """
    Completed calendar months from ``start`` to ``end``.

    Jan 15 -> Feb 14 is 0 months, Jan 15 -> Feb 15 is 1 month.
    """
    months = (end.year - start.year) * 12 + (end.month - start.month)
    if end.day < start.day:
        months -= 1
    return months


class ProrationPolicy(ABC):
    """
    Splits a full-period amount across a usage range.

    Contract:
        ``prorate(amount, usage_start, usage_end, period_start, period_end)``
        returns the share of ``amount`` for the days of the usage range that
        fall inside the billing period, rounded to two decimal places.  A
        usage range equal to the whole period always yields ``amount``.
    """

    method: ProrationMethod

    def prorate(
        self,
        amount: Decimal,
        usage_start: date,
        usage_end: date,
        period_start: date,
        period_end: date,
    ) -> Decimal:
        if amount < 0:
            raise ValueError("Full amount cannot be negative")
        if usage_end < usage_start or period_end < period_start:
            raise ValueError("End date cannot be before start date")

        window = overlap(usage_start, usage_end, period_start, period_end)
        if window is None or amount == 0:
            return round_money(Decimal("0"))
        if window == (period_start, period_end):
            return round_money(amount)

        return round_money(
            amount * self._fraction(days_inclusive(*window), days_inclusive(period_start, period_end))
        )

    @abstractmethod
    def _fraction(self, used_days: int, period_days: int) -> Decimal: ...


class ActualDaysProration(ProrationPolicy):
    """amount x used days / days in the billing period."""

    method = ProrationMethod.ACTUAL_DAYS

    def _fraction(self, used_days: int, period_days: int) -> Decimal:
        return Decimal(used_days) / Decimal(period_days)


class ThirtyDayProration(ProrationPolicy):
    """amount x used days / 30, never more than the full amount."""

    method = ProrationMethod.THIRTY_DAY

    def _fraction(self, used_days: int, period_days: int) -> Decimal:
        return Decimal(min(used_days, 30)) / Decimal(30)


_POLICIES: dict[ProrationMethod, ProrationPolicy] = {
    ProrationMethod.ACTUAL_DAYS: ActualDaysProration(),
    ProrationMethod.THIRTY_DAY: ThirtyDayProration(),
}


def proration_policy_for(method: ProrationMethod) -> ProrationPolicy:
    return _POLICIES[method]


def escalation_steps(term: LeaseTerm, as_of: date) -> int:
    """How many escalation intervals of ``term`` have completed by ``as_of``."""
    if (
        term.escalation_type == EscalationType.NONE
        or not term.escalation_every_months
        or term.escalation_value is None
        or as_of < term.effective_from
    ):
        return 0
    return whole_months_between(term.effective_from, as_of) // term.escalation_every_months


def escalated_rent(term: LeaseTerm, as_of: date) -> Decimal:
    """
    Monthly rent in force on ``as_of``.

    Percentage escalation compounds per step; fixed-amount escalation adds
    the value per step.  Pure function of the term data, so regenerating a
    period reproduces the same amount.
    """
    steps = escalation_steps(term, as_of)
    if steps == 0:
        return round_money(term.monthly_rent)
    if term.escalation_type == EscalationType.PERCENTAGE:
        factor = (Decimal("1") + term.escalation_value / Decimal("100")) ** steps
        return round_money(term.monthly_rent * factor)
    return round_money(term.monthly_rent + term.escalation_value * steps)
