"""
Billing Configuration Schema (``billing_config.schema``).

Responsibility
--------------
The frozen, validated settings object every billing component reads.
Values come from YAML (``billing_config.loader``); nothing here touches
the filesystem.

Architecture position
---------------------
**Config layer** -- pure data.  No dependency on kernel, modules or
services; modules translate it into their own config objects.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

PRORATION_METHODS = frozenset({"actual_days", "thirty_day"})


@dataclass(frozen=True)
class BillingConfig:
    """Organization-wide billing settings."""

    config_id: str = "default"
    version: int = 1

    default_proration_method: str = "actual_days"
    invoice_prefix: str = "INV"
    credit_note_prefix: str = "CN"
    number_width: int = 6
    payment_term_days: int = 0

    # Allowed distance from 100 for an ownership share set
    share_tolerance: Decimal = Decimal("0.01")

    partially_paid_on_credit: bool = False
    split_by_owner: bool = False

    checksum: str = ""

    def __post_init__(self):
        if self.default_proration_method not in PRORATION_METHODS:
            raise ValueError(
                f"default_proration_method must be one of {sorted(PRORATION_METHODS)}, "
                f"got {self.default_proration_method!r}"
            )
        if not self.invoice_prefix or not self.credit_note_prefix:
            raise ValueError("Document prefixes must not be blank")
        if self.number_width < 1:
            raise ValueError("number_width must be positive")
        if self.payment_term_days < 0:
            raise ValueError("payment_term_days cannot be negative")
        if self.share_tolerance < 0:
            raise ValueError("share_tolerance cannot be negative")
