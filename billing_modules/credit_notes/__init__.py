"""Credit notes module -- line-referenced reductions of issued invoices."""

from billing_modules.credit_notes.models import (
    CreditNote,
    CreditNoteLine,
    CreditNoteLineRequest,
    CreditNoteReason,
    CreditNoteStatus,
)
from billing_modules.credit_notes.workflows import CREDIT_NOTE_WORKFLOW

__all__ = [
    "CREDIT_NOTE_WORKFLOW",
    "CreditNote",
    "CreditNoteLine",
    "CreditNoteLineRequest",
    "CreditNoteReason",
    "CreditNoteStatus",
]
