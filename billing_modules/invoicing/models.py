"""
Invoicing Domain Models (``billing_modules.invoicing.models``).

Responsibility
--------------
Frozen dataclass value objects for invoices, their lines and per-owner
line allocations.

Architecture position
---------------------
**Modules layer** -- pure data definitions with ZERO I/O.

Invariants enforced
-------------------
* All models are ``frozen=True``.
* ``paid_amount + credited_amount + balance_amount == total_amount``.
* ``version`` is the opaque token a caller passes back as
  ``expected_version`` on its next mutating call.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID


class InvoiceStatus(Enum):
    """Invoice lifecycle states."""
    DRAFT = "draft"
    ISSUED = "issued"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"
    WRITTEN_OFF = "written_off"
    VOIDED = "voided"


TERMINAL_STATUSES = frozenset({
    InvoiceStatus.CANCELLED,
    InvoiceStatus.WRITTEN_OFF,
    InvoiceStatus.VOIDED,
})

# Statuses in which an invoice accepts payments
PAYABLE_STATUSES = frozenset({
    InvoiceStatus.ISSUED,
    InvoiceStatus.PARTIALLY_PAID,
    InvoiceStatus.OVERDUE,
})

# Statuses in which an invoice may be voided (subject to paid_amount == 0)
VOIDABLE_STATUSES = PAYABLE_STATUSES

# Statuses in which credit notes may be raised against an invoice
CREDITABLE_STATUSES = PAYABLE_STATUSES | {InvoiceStatus.PAID}


@dataclass(frozen=True)
class LineAllocation:
    """One owner's part of an invoice line."""
    owner_id: UUID
    share_percent: Decimal
    amount: Decimal


@dataclass(frozen=True)
class InvoiceLine:
    """A single billable line on an invoice."""
    id: UUID
    invoice_id: UUID
    line_number: int
    charge_code: str
    description: str
    quantity: Decimal
    unit_price: Decimal
    amount: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    period_start: date | None = None
    period_end: date | None = None
    is_prorated: bool = False
    lease_term_id: UUID | None = None
    allocations: tuple[LineAllocation, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class Invoice:
    """An invoice for one lease and billing period."""
    id: UUID
    org_id: UUID
    lease_id: UUID
    invoice_number: str
    billing_period_start: date
    billing_period_end: date
    invoice_date: date
    due_date: date
    status: InvoiceStatus
    subtotal: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    paid_amount: Decimal
    credited_amount: Decimal
    balance_amount: Decimal
    version: bytes
    issued_at: datetime | None = None
    paid_at: datetime | None = None
    voided_at: datetime | None = None
    void_reason: str | None = None
    payment_instructions: str | None = None
    lines: tuple[InvoiceLine, ...] = field(default_factory=tuple)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
