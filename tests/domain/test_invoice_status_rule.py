"""
Tests for the invoice status rule and the workflow tables.

Validates:
- derive_invoice_status boundaries (paid, partially paid, issued)
- The overdue flag never outranks paid; without it the due date plays no part
- The credit-only boundary under both settings of partially_paid_on_credit
- Workflow tables allow exactly the documented transitions
"""

from decimal import Decimal

import pytest
from hypothesis import given
from hypothesis import strategies as st

from billing_modules.credit_notes.workflows import CREDIT_NOTE_WORKFLOW
from billing_modules.invoicing.models import InvoiceStatus
from billing_modules.invoicing.workflows import INVOICE_WORKFLOW, derive_invoice_status
from billing_modules.payments.workflows import PAYMENT_WORKFLOW

TOTAL = Decimal("20000.00")


def _status(paid, balance, on_credit=False, overdue=False):
    return derive_invoice_status(
        TOTAL, Decimal(paid), Decimal(balance), on_credit, overdue=overdue
    )


class TestDeriveInvoiceStatus:

    def test_untouched_invoice_is_issued(self):
        assert _status("0", "20000") == InvoiceStatus.ISSUED

    def test_zero_balance_is_paid(self):
        assert _status("20000", "0") == InvoiceStatus.PAID

    def test_negative_balance_is_paid(self):
        assert _status("20000", "-5") == InvoiceStatus.PAID

    def test_partial_payment(self):
        assert _status("5000", "15000") == InvoiceStatus.PARTIALLY_PAID

    def test_overdue_flag_on_unpaid_invoice(self):
        assert _status("0", "20000", overdue=True) == InvoiceStatus.OVERDUE

    def test_overdue_flag_on_partly_paid_invoice(self):
        assert _status("5000", "15000", overdue=True) == InvoiceStatus.OVERDUE

    def test_paid_beats_overdue(self):
        assert _status("20000", "0", overdue=True) == InvoiceStatus.PAID

    def test_credit_settled_beats_overdue(self):
        assert _status("0", "0", overdue=True) == InvoiceStatus.PAID

    def test_credit_only_reduction_stays_issued_by_default(self):
        # 5000 credited, nothing paid
        assert _status("0", "15000") == InvoiceStatus.ISSUED

    def test_credit_only_reduction_partially_paid_when_configured(self):
        assert _status("0", "15000", on_credit=True) == InvoiceStatus.PARTIALLY_PAID

    def test_credit_covering_everything_is_paid(self):
        assert _status("0", "0") == InvoiceStatus.PAID

    @given(
        paid=st.decimals(min_value=0, max_value=20000, places=2),
        credited=st.decimals(min_value=0, max_value=20000, places=2),
        on_credit=st.booleans(),
        overdue=st.booleans(),
    )
    def test_status_follows_balance(self, paid, credited, on_credit, overdue):
        balance = TOTAL - paid - credited
        status = derive_invoice_status(TOTAL, paid, balance, on_credit, overdue=overdue)
        if balance <= 0:
            assert status == InvoiceStatus.PAID
        elif overdue:
            assert status == InvoiceStatus.OVERDUE
        elif paid > 0:
            assert status == InvoiceStatus.PARTIALLY_PAID
        else:
            assert status in (InvoiceStatus.ISSUED, InvoiceStatus.PARTIALLY_PAID)

    @given(
        paid=st.decimals(min_value=0, max_value=Decimal("19999.99"), places=2),
        on_credit=st.booleans(),
    )
    def test_clearing_the_flag_restores_payment_status(self, paid, on_credit):
        balance = TOTAL - paid
        expected = InvoiceStatus.PARTIALLY_PAID if paid > 0 else InvoiceStatus.ISSUED
        assert derive_invoice_status(TOTAL, paid, balance, on_credit) == expected


class TestInvoiceWorkflow:

    @pytest.mark.parametrize("state", ["issued", "partially_paid", "overdue"])
    def test_void_allowed_from_open_states(self, state):
        assert INVOICE_WORKFLOW.allows(state, "void")

    @pytest.mark.parametrize("state", ["draft", "paid", "voided", "cancelled", "written_off"])
    def test_void_refused_elsewhere(self, state):
        assert not INVOICE_WORKFLOW.allows(state, "void")

    def test_issue_only_from_draft(self):
        assert INVOICE_WORKFLOW.sources("issue") == frozenset({"draft"})

    def test_issue_always_lands_issued(self):
        assert INVOICE_WORKFLOW.targets("draft", "issue") == frozenset({"issued"})

    def test_payment_can_lift_overdue(self):
        assert {"partially_paid", "paid"} <= INVOICE_WORKFLOW.targets("overdue", "recompute")

    def test_recompute_never_leaves_open_states(self):
        for state in ("issued", "partially_paid", "overdue", "paid"):
            assert INVOICE_WORKFLOW.targets(state, "recompute") <= {
                "issued", "partially_paid", "overdue", "paid",
            }

    def test_terminal_states_have_no_exits(self):
        for state in ("voided", "cancelled", "written_off"):
            assert not any(t.from_state == state for t in INVOICE_WORKFLOW.transitions)


class TestPaymentAndCreditNoteWorkflows:

    @pytest.mark.parametrize("state", ["pending", "pending_confirmation"])
    def test_pending_payments_can_be_decided(self, state):
        assert PAYMENT_WORKFLOW.allows(state, "confirm")
        assert PAYMENT_WORKFLOW.allows(state, "reject")

    @pytest.mark.parametrize("state", ["completed", "rejected"])
    def test_decided_payments_are_final(self, state):
        assert not PAYMENT_WORKFLOW.allows(state, "confirm")
        assert not PAYMENT_WORKFLOW.allows(state, "reject")

    def test_credit_note_transitions(self):
        assert CREDIT_NOTE_WORKFLOW.allows("draft", "apply")
        assert CREDIT_NOTE_WORKFLOW.allows("draft", "void")
        assert not CREDIT_NOTE_WORKFLOW.allows("applied", "void")
        assert not CREDIT_NOTE_WORKFLOW.allows("voided", "apply")
