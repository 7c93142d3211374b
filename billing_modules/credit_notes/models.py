"""
Credit Note Domain Models (``billing_modules.credit_notes.models``).

Responsibility
--------------
Frozen dataclass value objects for credit notes, their lines, and the
line requests callers submit.

Architecture position
---------------------
**Modules layer** -- pure data definitions with ZERO I/O.

Invariants enforced
-------------------
* All models are ``frozen=True``.
* Amounts are positive and represent a reduction of the invoice.
* ``total_amount`` equals the sum of line totals.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID


class CreditNoteReason(Enum):
    """Why the credit was granted."""
    INVOICE_ERROR = "invoice_error"
    DISCOUNT = "discount"
    REFUND = "refund"
    GOODWILL = "goodwill"
    ADJUSTMENT = "adjustment"
    OTHER = "other"


class CreditNoteStatus(Enum):
    """A credit note is drafted, then applied or voided."""
    DRAFT = "draft"
    APPLIED = "applied"
    VOIDED = "voided"


@dataclass(frozen=True)
class CreditNoteLineRequest:
    """Caller input: credit ``amount`` against one invoice line."""
    invoice_line_id: UUID
    amount: Decimal
    notes: str | None = None


@dataclass(frozen=True)
class CreditNoteLine:
    """One credited invoice line."""
    id: UUID
    credit_note_id: UUID
    invoice_line_id: UUID
    line_number: int
    description: str
    amount: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    notes: str | None = None


@dataclass(frozen=True)
class CreditNote:
    """A reduction of an issued invoice, referencing its original lines."""
    id: UUID
    org_id: UUID
    invoice_id: UUID
    credit_note_number: str
    credit_note_date: date
    reason: CreditNoteReason
    status: CreditNoteStatus
    total_amount: Decimal
    version: bytes
    notes: str | None = None
    applied_at: datetime | None = None
    voided_at: datetime | None = None
    void_reason: str | None = None
    lines: tuple[CreditNoteLine, ...] = field(default_factory=tuple)

    @property
    def is_applied(self) -> bool:
        return self.applied_at is not None
