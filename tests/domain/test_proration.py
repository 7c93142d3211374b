"""
Tests for proration policies and rent escalation.

Validates:
- Actual-days and thirty-day proration, including the 30-day cap
- A usage range covering the whole period always yields the full amount
- Percentage and fixed-amount escalation by completed intervals
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from billing_modules.leases.calculations import (
    ActualDaysProration,
    ThirtyDayProration,
    days_inclusive,
    escalated_rent,
    overlap,
    whole_months_between,
)
from billing_modules.leases.models import EscalationType, LeaseTerm


def _term(**kwargs) -> LeaseTerm:
    defaults = dict(
        id=uuid4(),
        lease_id=uuid4(),
        effective_from=date(2026, 1, 1),
        monthly_rent=Decimal("10000"),
    )
    defaults.update(kwargs)
    return LeaseTerm(**defaults)


class TestDayArithmetic:

    def test_days_inclusive(self):
        assert days_inclusive(date(2026, 2, 1), date(2026, 2, 28)) == 28
        assert days_inclusive(date(2026, 3, 5), date(2026, 3, 5)) == 1

    def test_overlap(self):
        assert overlap(date(2026, 1, 1), date(2026, 1, 31), date(2026, 1, 15), date(2026, 2, 15)) == (
            date(2026, 1, 15),
            date(2026, 1, 31),
        )
        assert overlap(date(2026, 1, 1), date(2026, 1, 31), date(2026, 2, 1), date(2026, 2, 28)) is None

    def test_whole_months_between(self):
        assert whole_months_between(date(2026, 1, 15), date(2026, 2, 14)) == 0
        assert whole_months_between(date(2026, 1, 15), date(2026, 2, 15)) == 1
        assert whole_months_between(date(2025, 1, 1), date(2026, 1, 1)) == 12


class TestActualDaysProration:

    def test_full_period_returns_full_amount(self):
        amount = ActualDaysProration().prorate(
            Decimal("20000"), date(2026, 2, 1), date(2026, 2, 28), date(2026, 2, 1), date(2026, 2, 28)
        )
        assert amount == Decimal("20000.00")

    def test_half_month(self):
        # 15 of 30 days in April
        amount = ActualDaysProration().prorate(
            Decimal("30000"), date(2026, 4, 16), date(2026, 4, 30), date(2026, 4, 1), date(2026, 4, 30)
        )
        assert amount == Decimal("15000.00")

    def test_rounds_half_up(self):
        # 10000 x 1/31 = 322.580...
        amount = ActualDaysProration().prorate(
            Decimal("10000"), date(2026, 1, 31), date(2026, 1, 31), date(2026, 1, 1), date(2026, 1, 31)
        )
        assert amount == Decimal("322.58")

    def test_usage_outside_period_is_zero(self):
        amount = ActualDaysProration().prorate(
            Decimal("10000"), date(2026, 3, 1), date(2026, 3, 31), date(2026, 1, 1), date(2026, 1, 31)
        )
        assert amount == Decimal("0.00")

    def test_negative_amount_rejected(self):
        with pytest.raises(ValueError):
            ActualDaysProration().prorate(
                Decimal("-1"), date(2026, 1, 1), date(2026, 1, 31), date(2026, 1, 1), date(2026, 1, 31)
            )


class TestThirtyDayProration:

    def test_thirty_one_days_capped_at_full_amount(self):
        # Jan 1 - Jan 31 inside a Jan 1 - Feb 1 period: 31 days, capped at 30/30
        amount = ThirtyDayProration().prorate(
            Decimal("9000"), date(2026, 1, 1), date(2026, 1, 31), date(2026, 1, 1), date(2026, 2, 1)
        )
        assert amount == Decimal("9000.00")

    def test_ten_days(self):
        amount = ThirtyDayProration().prorate(
            Decimal("9000"), date(2026, 2, 19), date(2026, 2, 28), date(2026, 2, 1), date(2026, 2, 28)
        )
        assert amount == Decimal("3000.00")


class TestProrationProperties:

    @settings(max_examples=200)
    @given(
        amount=st.decimals(min_value=0, max_value=1_000_000, places=2),
        start_offset=st.integers(min_value=0, max_value=30),
        length=st.integers(min_value=0, max_value=30),
    )
    def test_never_exceeds_full_amount(self, amount, start_offset, length):
        period_start, period_end = date(2026, 1, 1), date(2026, 1, 31)
        usage_start = date(2026, 1, 1 + start_offset)
        usage_end = date(2026, 1, min(31, 1 + start_offset + length))
        for policy in (ActualDaysProration(), ThirtyDayProration()):
            prorated = policy.prorate(amount, usage_start, usage_end, period_start, period_end)
            assert Decimal("0") <= prorated <= amount


class TestEscalation:

    def test_no_escalation(self):
        term = _term()
        assert escalated_rent(term, date(2030, 1, 1)) == Decimal("10000.00")

    def test_percentage_compounds_per_interval(self):
        term = _term(
            escalation_type=EscalationType.PERCENTAGE,
            escalation_value=Decimal("10"),
            escalation_every_months=12,
        )
        assert escalated_rent(term, date(2026, 12, 31)) == Decimal("10000.00")
        assert escalated_rent(term, date(2027, 1, 1)) == Decimal("11000.00")
        assert escalated_rent(term, date(2028, 1, 1)) == Decimal("12100.00")

    def test_fixed_amount_adds_per_interval(self):
        term = _term(
            escalation_type=EscalationType.FIXED_AMOUNT,
            escalation_value=Decimal("500"),
            escalation_every_months=6,
        )
        assert escalated_rent(term, date(2026, 7, 1)) == Decimal("10500.00")
        assert escalated_rent(term, date(2027, 7, 1)) == Decimal("11500.00")

    def test_escalation_is_pure(self):
        term = _term(
            escalation_type=EscalationType.PERCENTAGE,
            escalation_value=Decimal("5"),
            escalation_every_months=12,
        )
        assert escalated_rent(term, date(2029, 3, 1)) == escalated_rent(term, date(2029, 3, 1))
