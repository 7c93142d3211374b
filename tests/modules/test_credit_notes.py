"""
Tests for credit notes.

Validates:
- Creation checks invoice status, line membership and remaining amounts
- Numbering uses the credit note prefix on its own sequence
- Applying recomputes the invoice (Scenario C)
- Voided drafts release their amount; applied notes cannot be voided
- Tax is credited in proportion to the invoice line
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from billing_kernel.exceptions import (
    CreditExceedsRemainingError,
    EmptyCreditNoteError,
    ImmutabilityViolationError,
    InvalidCreditNoteStateError,
    InvalidInvoiceStateError,
    LineNotOnInvoiceError,
    MissingReasonError,
    ValidationError,
)
from billing_modules.credit_notes.models import (
    CreditNoteLineRequest,
    CreditNoteReason,
    CreditNoteStatus,
)
from billing_modules.credit_notes.orm import CreditNoteModel
from billing_modules.invoicing.models import InvoiceStatus

ISSUED_ON = date(2026, 2, 10)


def _request(invoice, amount, line_index=0):
    return CreditNoteLineRequest(invoice.lines[line_index].id, Decimal(amount))


class TestCreateCreditNote:

    def test_draft_created_with_number(self, issued_invoice, credit):
        note = credit(issued_invoice, "1000", apply=False)

        assert note.status == CreditNoteStatus.DRAFT
        assert note.credit_note_number == "CN-000001"
        assert note.total_amount == Decimal("1000")
        assert note.lines[0].description.startswith("Credit for: Rent")

    def test_draft_does_not_change_invoice(self, orchestrator, issued_invoice, credit):
        credit(issued_invoice, "1000", apply=False)
        invoice = orchestrator.invoices.get_invoice(issued_invoice.id)
        assert invoice.credited_amount == Decimal("0.00")

    def test_empty_note_rejected(self, orchestrator, issued_invoice):
        with pytest.raises(EmptyCreditNoteError):
            orchestrator.credit_notes.create_credit_note(
                issued_invoice.id, CreditNoteReason.DISCOUNT, [], ISSUED_ON
            )

    def test_non_positive_amount_rejected(self, orchestrator, issued_invoice):
        with pytest.raises(ValidationError):
            orchestrator.credit_notes.create_credit_note(
                issued_invoice.id, CreditNoteReason.DISCOUNT, [_request(issued_invoice, "0")], ISSUED_ON
            )

    @pytest.mark.parametrize("amount", ["0.001", "10.005"])
    def test_sub_cent_amount_rejected(self, orchestrator, issued_invoice, amount):
        with pytest.raises(ValidationError) as exc_info:
            orchestrator.credit_notes.create_credit_note(
                issued_invoice.id,
                CreditNoteReason.DISCOUNT,
                [_request(issued_invoice, amount)],
                ISSUED_ON,
            )
        assert exc_info.value.field == "amount"
        assert orchestrator.credit_notes.list_for_invoice(issued_invoice.id) == []

    def test_foreign_line_rejected(self, orchestrator, issued_invoice):
        with pytest.raises(LineNotOnInvoiceError):
            orchestrator.credit_notes.create_credit_note(
                issued_invoice.id,
                CreditNoteReason.DISCOUNT,
                [CreditNoteLineRequest(uuid4(), Decimal("10"))],
                ISSUED_ON,
            )

    def test_credit_beyond_line_total_rejected(self, issued_invoice, credit):
        with pytest.raises(CreditExceedsRemainingError) as exc_info:
            credit(issued_invoice, "20000.01", apply=False)
        assert exc_info.value.remaining == Decimal("20000.00")

    def test_outstanding_drafts_count_against_remaining(self, issued_invoice, credit):
        credit(issued_invoice, "15000", apply=False)
        with pytest.raises(CreditExceedsRemainingError) as exc_info:
            credit(issued_invoice, "6000", apply=False)
        assert exc_info.value.remaining == Decimal("5000.00")

    def test_repeated_line_requests_are_summed(self, orchestrator, issued_invoice):
        with pytest.raises(CreditExceedsRemainingError):
            orchestrator.credit_notes.create_credit_note(
                issued_invoice.id,
                CreditNoteReason.ADJUSTMENT,
                [_request(issued_invoice, "12000"), _request(issued_invoice, "9000")],
                ISSUED_ON,
            )

    def test_draft_invoice_cannot_be_credited(self, orchestrator, add_lease, credit):
        draft = orchestrator.invoices.create_draft(add_lease().id, date(2026, 3, 1), date(2026, 3, 31))
        with pytest.raises(InvalidInvoiceStateError):
            credit(draft, "10", apply=False)


class TestApplyCreditNote:

    def test_scenario_c_credit_after_partial_payment(self, orchestrator, issued_invoice, pay, credit):
        pay(issued_invoice.id, "5000")
        note = credit(issued_invoice, "3000")

        assert note.status == CreditNoteStatus.APPLIED
        assert note.is_applied
        invoice = orchestrator.invoices.get_invoice(issued_invoice.id)
        assert invoice.paid_amount == Decimal("5000.00")
        assert invoice.credited_amount == Decimal("3000.00")
        assert invoice.balance_amount == Decimal("12000.00")
        assert invoice.status == InvoiceStatus.PARTIALLY_PAID

    def test_credit_only_keeps_issued(self, orchestrator, issued_invoice, credit):
        credit(issued_invoice, "3000")
        invoice = orchestrator.invoices.get_invoice(issued_invoice.id)
        assert invoice.status == InvoiceStatus.ISSUED
        assert invoice.balance_amount == Decimal("17000.00")

    def test_credit_covering_balance_pays_invoice(self, orchestrator, issued_invoice, pay, credit):
        pay(issued_invoice.id, "15000")
        credit(issued_invoice, "5000")
        assert orchestrator.invoices.get_invoice(issued_invoice.id).status == InvoiceStatus.PAID

    def test_apply_twice_refused(self, orchestrator, issued_invoice, credit):
        note = credit(issued_invoice, "100")
        with pytest.raises(InvalidCreditNoteStateError):
            orchestrator.credit_notes.apply(note.id)

    def test_apply_after_invoice_voided_refused(self, orchestrator, issued_invoice, credit):
        note = credit(issued_invoice, "100", apply=False)
        orchestrator.invoices.void(issued_invoice.id, "re-billed")
        with pytest.raises(InvalidInvoiceStateError):
            orchestrator.credit_notes.apply(note.id)


class TestVoidCreditNote:

    def test_void_draft_releases_amount(self, orchestrator, issued_invoice, credit):
        note = credit(issued_invoice, "15000", apply=False)
        voided = orchestrator.credit_notes.void(note.id, "raised in error")

        assert voided.status == CreditNoteStatus.VOIDED
        assert voided.void_reason == "raised in error"
        remaining = orchestrator.credit_notes.remaining_by_line(issued_invoice.id)
        assert remaining[issued_invoice.lines[0].id] == Decimal("20000.00")

    def test_applied_note_cannot_be_voided(self, orchestrator, issued_invoice, credit):
        note = credit(issued_invoice, "100")
        with pytest.raises(InvalidCreditNoteStateError) as exc_info:
            orchestrator.credit_notes.void(note.id, "oops")
        assert "irreversible" in exc_info.value.reason

    def test_reason_required(self, orchestrator, issued_invoice, credit):
        note = credit(issued_invoice, "100", apply=False)
        with pytest.raises(MissingReasonError):
            orchestrator.credit_notes.void(note.id, "")

    def test_applied_note_row_is_frozen(self, session, issued_invoice, credit):
        note = credit(issued_invoice, "100")
        row = session.get(CreditNoteModel, note.id)
        row.total_amount = Decimal("1")
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
