"""
Leases Module.

Lease term history, recurring charges, and the charge accumulator that
turns them into invoice line items for a billing period.
"""

from billing_modules.leases.calculations import (
    ActualDaysProration,
    ProrationPolicy,
    ThirtyDayProration,
    escalated_rent,
    proration_policy_for,
)
from billing_modules.leases.models import (
    ChargeCode,
    ChargeFrequency,
    EscalationType,
    Lease,
    LeaseStatus,
    LeaseTerm,
    LineItem,
    ProrationMethod,
    RecurringCharge,
)
from billing_modules.leases.service import ChargeAccumulator

__all__ = [
    "ActualDaysProration",
    "ProrationPolicy",
    "ThirtyDayProration",
    "escalated_rent",
    "proration_policy_for",
    "ChargeCode",
    "ChargeFrequency",
    "EscalationType",
    "Lease",
    "LeaseStatus",
    "LeaseTerm",
    "LineItem",
    "ProrationMethod",
    "RecurringCharge",
    "ChargeAccumulator",
]
