"""
Payment Domain Models (``billing_modules.payments.models``).

Responsibility
--------------
Frozen dataclass value objects for payments recorded against invoices and
for their append-only status history.

Architecture position
---------------------
**Modules layer** -- pure data definitions with ZERO I/O.

Invariants enforced
-------------------
* All models are ``frozen=True``.
* Only ``COMPLETED`` payments count towards an invoice's paid amount.
* ``COMPLETED`` and ``REJECTED`` are terminal.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID


class PaymentMode(Enum):
    """How the money was paid."""
    CASH = "cash"
    ONLINE = "online"
    BANK_TRANSFER = "bank_transfer"
    CHEQUE = "cheque"
    UPI = "upi"
    OTHER = "other"


class PaymentStatus(Enum):
    """Payment confirmation states."""
    PENDING = "pending"
    PENDING_CONFIRMATION = "pending_confirmation"
    COMPLETED = "completed"
    REJECTED = "rejected"


AWAITING_DECISION = frozenset({
    PaymentStatus.PENDING,
    PaymentStatus.PENDING_CONFIRMATION,
})


@dataclass(frozen=True)
class PaymentStatusChange:
    """One row of a payment's status history."""
    id: UUID
    payment_id: UUID
    from_status: PaymentStatus | None
    to_status: PaymentStatus
    changed_at: datetime
    changed_by: str
    reason: str | None = None


@dataclass(frozen=True)
class Payment:
    """Money received, or claimed as received, against one invoice."""
    id: UUID
    org_id: UUID
    invoice_id: UUID
    lease_id: UUID
    payment_mode: PaymentMode
    status: PaymentStatus
    amount: Decimal
    payment_date_utc: datetime
    received_by: str
    version: bytes
    transaction_reference: str | None = None
    payer_name: str | None = None
    notes: str | None = None
    confirmed_at: datetime | None = None
    rejected_at: datetime | None = None
    rejection_reason: str | None = None
    history: tuple[PaymentStatusChange, ...] = field(default_factory=tuple)

    @property
    def is_completed(self) -> bool:
        return self.status == PaymentStatus.COMPLETED
