"""
Tests for share-set validation and owner apportioning.

Validates:
- Shares must sum to 100 within tolerance, be positive and name each
  owner once
- Apportioned parts add back to the amount exactly
- The rounding residue goes to the largest share
"""

from decimal import Decimal
from uuid import UUID, uuid4

import pytest
from hypothesis import assume, given, settings
from hypothesis import strategies as st

from billing_kernel.exceptions import ErrorCategory, InvalidShareSetError
from billing_modules.ownership.models import ResolvedShare, ShareInput
from billing_modules.ownership.service import apportion, validate_share_set


def _shares(*percents) -> list[ShareInput]:
    return [ShareInput(owner_id=uuid4(), share_percent=Decimal(p)) for p in percents]


class TestValidateShareSet:

    def test_exact_hundred_accepted(self):
        assert validate_share_set(_shares("60", "40")) == Decimal("100")

    def test_within_tolerance_accepted(self):
        assert validate_share_set(_shares("33.33", "33.33", "33.33")) == Decimal("99.99")

    def test_outside_tolerance_rejected_with_computed_sum(self):
        with pytest.raises(InvalidShareSetError) as exc_info:
            validate_share_set(_shares("60", "39"))
        assert exc_info.value.computed_sum == Decimal("99")
        assert exc_info.value.expected_sum == Decimal("100")
        assert exc_info.value.category == ErrorCategory.BUSINESS_RULE

    def test_custom_tolerance(self):
        validate_share_set(_shares("60", "39.5"), tolerance=Decimal("0.5"))

    def test_empty_rejected(self):
        with pytest.raises(InvalidShareSetError):
            validate_share_set([])

    def test_duplicate_owner_rejected(self):
        owner = uuid4()
        with pytest.raises(InvalidShareSetError):
            validate_share_set([
                ShareInput(owner_id=owner, share_percent=Decimal("50")),
                ShareInput(owner_id=owner, share_percent=Decimal("50")),
            ])

    @pytest.mark.parametrize("bad", ["0", "-10"])
    def test_non_positive_percent_rejected(self, bad):
        with pytest.raises(InvalidShareSetError):
            validate_share_set(_shares("100", bad))


class TestApportion:

    def test_even_split(self):
        shares = [
            ResolvedShare(owner_id=uuid4(), share_percent=Decimal("50")),
            ResolvedShare(owner_id=uuid4(), share_percent=Decimal("50")),
        ]
        parts = apportion(Decimal("20000.00"), shares)
        assert [p.amount for p in parts] == [Decimal("10000.00"), Decimal("10000.00")]

    def test_residue_goes_to_largest_share(self):
        big = ResolvedShare(owner_id=UUID(int=2), share_percent=Decimal("33.34"))
        small_a = ResolvedShare(owner_id=UUID(int=1), share_percent=Decimal("33.33"))
        small_b = ResolvedShare(owner_id=UUID(int=3), share_percent=Decimal("33.33"))
        parts = {p.owner_id: p.amount for p in apportion(Decimal("100.00"), [small_a, big, small_b])}
        assert sum(parts.values()) == Decimal("100.00")
        assert parts[big.owner_id] >= parts[small_a.owner_id]

    def test_no_shares_no_parts(self):
        assert apportion(Decimal("100.00"), []) == ()

    @settings(max_examples=200)
    @given(
        amount=st.decimals(min_value=0, max_value=10_000_000, places=2),
        weights=st.lists(st.integers(min_value=1, max_value=10_000), min_size=1, max_size=8),
    )
    def test_parts_always_sum_to_amount(self, amount, weights):
        total = sum(weights)
        shares = [
            ResolvedShare(owner_id=uuid4(), share_percent=Decimal(w) * 100 / Decimal(total))
            for w in weights
        ]
        assume(all(s.share_percent > 0 for s in shares))
        parts = apportion(amount, shares)
        assert sum((p.amount for p in parts), Decimal("0")) == amount
        assert len(parts) == len(shares)
