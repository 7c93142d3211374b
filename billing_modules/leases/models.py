"""
Lease Domain Models (``billing_modules.leases.models``).

Responsibility
--------------
Frozen dataclass value objects for the billing-relevant parts of a lease:
the lease itself, its dated financial terms, its recurring charges, and
the line items the charge accumulator produces from them.

Architecture position
---------------------
**Modules layer** -- pure data definitions with ZERO I/O.

Invariants enforced
-------------------
* All models are ``frozen=True``.
* All monetary fields use ``Decimal`` -- NEVER ``float``.
* LeaseTerm date ranges are inclusive calendar dates; ``effective_to``
  of ``None`` means open-ended.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from billing_modules.ownership.models import OwnerAllocation


class LeaseStatus(Enum):
    """Lease lifecycle states (owned by the outer application)."""
    DRAFT = "draft"
    ACTIVE = "active"
    ENDED = "ended"
    TERMINATED = "terminated"


class EscalationType(Enum):
    """How rent grows over a term."""
    NONE = "none"
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"


class ProrationMethod(Enum):
    """Partial-period policies."""
    ACTUAL_DAYS = "actual_days"
    THIRTY_DAY = "thirty_day"


class ChargeFrequency(Enum):
    """Billing frequency of a recurring charge."""
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"
    ONE_TIME = "one_time"


class ChargeCode:
    """Charge codes for lines generated from lease terms."""
    RENT = "RENT"
    MAINTENANCE = "MAINT"
    OTHER_FIXED = "OTHER"


@dataclass(frozen=True)
class LeaseTerm:
    """A time-bounded set of financial conditions on a lease."""
    id: UUID
    lease_id: UUID
    effective_from: date
    monthly_rent: Decimal
    effective_to: date | None = None
    security_deposit: Decimal = Decimal("0")
    maintenance_charge: Decimal = Decimal("0")
    other_fixed_charge: Decimal = Decimal("0")
    escalation_type: EscalationType = EscalationType.NONE
    escalation_value: Decimal | None = None
    escalation_every_months: int | None = None

    def covers(self, day: date) -> bool:
        """True if ``day`` falls inside this term."""
        return self.effective_from <= day and (
            self.effective_to is None or day <= self.effective_to
        )


@dataclass(frozen=True)
class RecurringCharge:
    """A recurring charge (parking, amenities) billed alongside rent."""
    id: UUID
    lease_id: UUID
    charge_code: str
    description: str
    amount: Decimal
    start_date: date
    end_date: date | None = None
    frequency: ChargeFrequency = ChargeFrequency.MONTHLY
    is_active: bool = True


@dataclass(frozen=True)
class Lease:
    """A tenancy on a unit, with its term history."""
    id: UUID
    org_id: UUID
    unit_id: UUID
    lease_number: str
    start_date: date
    status: LeaseStatus = LeaseStatus.ACTIVE
    end_date: date | None = None
    building_id: UUID | None = None
    payment_term_days: int | None = None  # None = organization default
    invoice_prefix: str | None = None
    proration_method: ProrationMethod | None = None
    payment_instructions: str | None = None
    terms: tuple[LeaseTerm, ...] = field(default_factory=tuple)
    recurring_charges: tuple[RecurringCharge, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class LineItem:
    """One billable item produced by the charge accumulator."""
    line_number: int
    charge_code: str
    description: str
    period_start: date
    period_end: date
    amount: Decimal
    full_amount: Decimal
    is_prorated: bool
    quantity: Decimal = Decimal("1")
    tax_amount: Decimal = Decimal("0.00")
    lease_term_id: UUID | None = None
    recurring_charge_id: UUID | None = None
    allocations: tuple[OwnerAllocation, ...] = field(default_factory=tuple)

    @property
    def unit_price(self) -> Decimal:
        return self.amount

    @property
    def total_amount(self) -> Decimal:
        return self.amount + self.tax_amount
