"""
Tests for the charge accumulator.

Validates:
- Full-month rent, maintenance and fixed charges become separate lines
- Mid-period term changes split the period and prorate each segment
- Lease start/end inside a period prorates the covered days only
- Uncovered days raise NoApplicableTermError
- Monthly recurring charges are billed; inactive and non-monthly are not
- Owner allocations when split_by_owner is on
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from billing_kernel.exceptions import InvalidBillingPeriodError, NoApplicableTermError
from billing_modules.leases.models import ChargeCode, ChargeFrequency, EscalationType, ProrationMethod
from billing_modules.leases.service import ChargeAccumulator
from billing_modules.ownership.models import AssetType
from billing_modules.ownership.service import OwnershipResolver

FEB_START, FEB_END = date(2026, 2, 1), date(2026, 2, 28)


@pytest.fixture
def accumulator():
    return ChargeAccumulator()


class TestSingleTerm:

    def test_scenario_a_single_rent_line(self, accumulator, lease_builder):
        lease = lease_builder(monthly_rent=Decimal("20000"))
        items = accumulator.build_line_items(lease, FEB_START, FEB_END)

        assert len(items) == 1
        assert items[0].charge_code == ChargeCode.RENT
        assert items[0].amount == Decimal("20000.00")
        assert items[0].is_prorated is False
        assert items[0].line_number == 1
        assert items[0].description == "Rent for Feb 2026"

    def test_maintenance_and_fixed_charges_are_separate_lines(self, accumulator, lease_builder):
        lease = lease_builder(terms=[{
            "effective_from": date(2026, 1, 1),
            "monthly_rent": Decimal("20000"),
            "maintenance_charge": Decimal("1500"),
            "other_fixed_charge": Decimal("250"),
        }])
        items = accumulator.build_line_items(lease, FEB_START, FEB_END)

        assert [i.charge_code for i in items] == [
            ChargeCode.RENT, ChargeCode.MAINTENANCE, ChargeCode.OTHER_FIXED,
        ]
        assert [i.line_number for i in items] == [1, 2, 3]
        assert sum(i.total_amount for i in items) == Decimal("21750.00")

    def test_escalated_rent_used_for_segment(self, accumulator, lease_builder):
        lease = lease_builder(
            start_date=date(2025, 1, 1),
            terms=[{
                "effective_from": date(2025, 1, 1),
                "monthly_rent": Decimal("10000"),
                "escalation_type": EscalationType.PERCENTAGE,
                "escalation_value": Decimal("10"),
                "escalation_every_months": 12,
            }],
        )
        items = accumulator.build_line_items(lease, FEB_START, FEB_END)
        assert items[0].amount == Decimal("11000.00")

    def test_reversed_period_rejected(self, accumulator, lease_builder):
        with pytest.raises(InvalidBillingPeriodError):
            accumulator.build_line_items(lease_builder(), FEB_END, FEB_START)


class TestPartialPeriods:

    def test_mid_period_term_change_splits_lines(self, accumulator, lease_builder):
        lease = lease_builder(terms=[
            {"effective_from": date(2026, 1, 1), "effective_to": date(2026, 2, 14),
             "monthly_rent": Decimal("28000")},
            {"effective_from": date(2026, 2, 15), "monthly_rent": Decimal("56000")},
        ])
        items = accumulator.build_line_items(lease, FEB_START, FEB_END)

        assert len(items) == 2
        assert all(i.is_prorated for i in items)
        # 14/28 of each rent
        assert items[0].amount == Decimal("14000.00")
        assert items[1].amount == Decimal("28000.00")
        assert items[0].period_end == date(2026, 2, 14)
        assert items[1].period_start == date(2026, 2, 15)

    def test_lease_starting_mid_month(self, accumulator, lease_builder):
        lease = lease_builder(monthly_rent=Decimal("28000"), start_date=date(2026, 2, 22))
        items = accumulator.build_line_items(lease, FEB_START, FEB_END)

        assert len(items) == 1
        assert items[0].amount == Decimal("7000.00")
        assert "(Prorated)" in items[0].description

    def test_lease_ending_mid_month(self, accumulator, lease_builder):
        lease = lease_builder(
            monthly_rent=Decimal("28000"),
            start_date=date(2025, 1, 1),
            end_date=date(2026, 2, 7),
        )
        items = accumulator.build_line_items(lease, FEB_START, FEB_END)
        assert items[0].amount == Decimal("7000.00")

    def test_thirty_day_method_from_lease_override(self, accumulator, lease_builder):
        lease = lease_builder(
            monthly_rent=Decimal("9000"),
            start_date=date(2026, 2, 19),
            proration_method=ProrationMethod.THIRTY_DAY,
        )
        items = accumulator.build_line_items(lease, FEB_START, FEB_END)
        assert items[0].amount == Decimal("3000.00")

    def test_gap_between_terms_raises(self, accumulator, lease_builder):
        lease = lease_builder(terms=[
            {"effective_from": date(2026, 1, 1), "effective_to": date(2026, 2, 10),
             "monthly_rent": Decimal("20000")},
            {"effective_from": date(2026, 2, 16), "monthly_rent": Decimal("20000")},
        ])
        with pytest.raises(NoApplicableTermError) as exc_info:
            accumulator.build_line_items(lease, FEB_START, FEB_END)
        assert exc_info.value.uncovered_date == date(2026, 2, 11)

    def test_period_outside_lease_raises(self, accumulator, lease_builder):
        lease = lease_builder(start_date=date(2026, 6, 1))
        with pytest.raises(NoApplicableTermError):
            accumulator.build_line_items(lease, FEB_START, FEB_END)


class TestRecurringCharges:

    def test_monthly_charge_billed(self, accumulator, lease_builder):
        lease = lease_builder(recurring=[{
            "charge_code": "PARKING",
            "description": "Parking bay 12",
            "amount": Decimal("1200"),
            "start_date": date(2026, 1, 1),
        }])
        items = accumulator.build_line_items(lease, FEB_START, FEB_END)

        assert [i.charge_code for i in items] == [ChargeCode.RENT, "PARKING"]
        assert items[1].amount == Decimal("1200.00")
        assert items[1].recurring_charge_id is not None

    def test_inactive_and_non_monthly_charges_skipped(self, accumulator, lease_builder):
        lease = lease_builder(recurring=[
            {"charge_code": "GYM", "description": "Gym", "amount": Decimal("500"),
             "start_date": date(2026, 1, 1), "is_active": False},
            {"charge_code": "INS", "description": "Insurance", "amount": Decimal("3000"),
             "start_date": date(2026, 1, 1), "frequency": ChargeFrequency.YEARLY},
        ])
        items = accumulator.build_line_items(lease, FEB_START, FEB_END)
        assert [i.charge_code for i in items] == [ChargeCode.RENT]

    def test_charge_starting_mid_month_prorated(self, accumulator, lease_builder):
        lease = lease_builder(recurring=[{
            "charge_code": "PARKING",
            "description": "Parking",
            "amount": Decimal("2800"),
            "start_date": date(2026, 2, 15),
        }])
        items = accumulator.build_line_items(lease, FEB_START, FEB_END)
        assert items[1].amount == Decimal("1400.00")
        assert items[1].is_prorated


class TestOwnerSplit:

    def test_allocations_follow_unit_shares(self, session, add_asset, lease_builder):
        owner_a, owner_b = uuid4(), uuid4()
        since = datetime(2025, 1, 1, tzinfo=timezone.utc)
        unit_id = add_asset(AssetType.UNIT, shares=[(owner_a, "60", since), (owner_b, "40", since)])
        lease = lease_builder(unit_id=unit_id)

        accumulator = ChargeAccumulator(ownership=OwnershipResolver(session), split_by_owner=True)
        items = accumulator.build_line_items(lease, FEB_START, FEB_END)

        parts = {a.owner_id: a.amount for a in items[0].allocations}
        assert parts == {owner_a: Decimal("12000.00"), owner_b: Decimal("8000.00")}

    def test_falls_back_to_building_owners(self, session, add_asset, lease_builder):
        owner = uuid4()
        since = datetime(2025, 1, 1, tzinfo=timezone.utc)
        building_id = add_asset(AssetType.BUILDING, shares=[(owner, "100", since)])
        unit_id = add_asset(AssetType.UNIT, parent_id=building_id)
        lease = lease_builder(unit_id=unit_id, building_id=building_id)

        accumulator = ChargeAccumulator(ownership=OwnershipResolver(session), split_by_owner=True)
        items = accumulator.build_line_items(lease, FEB_START, FEB_END)
        assert [a.owner_id for a in items[0].allocations] == [owner]

    def test_no_shares_leaves_line_unallocated(self, session, add_asset, lease_builder):
        lease = lease_builder(unit_id=add_asset(AssetType.UNIT))
        accumulator = ChargeAccumulator(ownership=OwnershipResolver(session), split_by_owner=True)
        items = accumulator.build_line_items(lease, FEB_START, FEB_END)
        assert items[0].allocations == ()
