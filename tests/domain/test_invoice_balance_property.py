"""
Random payment and credit note histories against one issued invoice.

Each example issues a fresh February invoice, sometimes with the clock
already past its due date, then runs a drawn sequence of operations:
record, confirm and reject payments; create, apply and leave drafts of
credit notes; run the overdue check.

Validates, after every step:
- paid + credited + balance == total
- paid and credited equal the confirmed payments and applied credit notes
- status == derive_invoice_status(...) with the overdue flag tracked from
  the operations (raised by the overdue check, cleared by a confirmation)
- Refusals happen exactly when the balance or the line remainder says so
"""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from billing_kernel.db.types import ZERO
from billing_kernel.exceptions import (
    CreditExceedsRemainingError,
    InvalidInvoiceStateError,
    PaymentExceedsBalanceError,
)
from billing_modules.credit_notes.models import CreditNoteLineRequest, CreditNoteReason
from billing_modules.invoicing.models import InvoiceStatus
from billing_modules.invoicing.workflows import derive_invoice_status
from billing_modules.payments.models import PaymentMode

FEB = (date(2026, 2, 1), date(2026, 2, 28))
BEFORE_DUE = date(2026, 2, 10)
AFTER_DUE = date(2026, 3, 15)
PAID_ON = datetime(2026, 2, 5, 9, 0, tzinfo=timezone.utc)

amounts = st.decimals(
    min_value=Decimal("0.01"),
    max_value=Decimal("25000.00"),
    places=2,
    allow_nan=False,
    allow_infinity=False,
)
picks = st.integers(min_value=0, max_value=7)

operations = st.lists(
    st.one_of(
        st.tuples(st.just("record"), amounts, st.booleans()),
        st.tuples(st.just("confirm"), picks),
        st.tuples(st.just("reject"), picks),
        st.tuples(st.just("credit"), amounts, st.booleans()),
        st.tuples(st.just("apply"), picks),
        st.tuples(st.just("overdue_check")),
    ),
    min_size=1,
    max_size=12,
)


class _Ledger:
    """What the invoice should hold, kept independently of the services."""

    def __init__(self, invoice):
        self.total = invoice.total_amount
        self.line_id = invoice.lines[0].id
        self.line_total = invoice.lines[0].total_amount
        self.pending: list = []
        self.draft_notes: list = []
        self.paid = ZERO
        self.credited = ZERO
        self.reserved_credit = ZERO
        self.overdue = False

    @property
    def balance(self):
        return self.total - self.paid - self.credited

    @property
    def pending_total(self):
        return sum((p.amount for p in self.pending), ZERO)


def _issue(orchestrator, add_lease):
    lease = add_lease(monthly_rent=Decimal("20000"))
    draft = orchestrator.invoices.create_draft(lease.id, *FEB)
    return orchestrator.invoices.issue(draft.id)


def _step(orchestrator, clock, invoice_id, ledger, op):
    kind = op[0]

    if kind == "record":
        _, amount, by_payer = op
        if ledger.balance <= 0:
            with pytest.raises(InvalidInvoiceStateError):
                orchestrator.payments.record_payment(
                    invoice_id, amount, PaymentMode.CASH, PAID_ON
                )
        elif amount > ledger.balance - ledger.pending_total:
            with pytest.raises(PaymentExceedsBalanceError):
                orchestrator.payments.record_payment(
                    invoice_id, amount, PaymentMode.CASH, PAID_ON
                )
        else:
            ledger.pending.append(
                orchestrator.payments.record_payment(
                    invoice_id,
                    amount,
                    PaymentMode.CASH,
                    PAID_ON,
                    submitted_by_payer=by_payer,
                )
            )

    elif kind in ("confirm", "reject") and ledger.pending:
        payment = ledger.pending.pop(op[1] % len(ledger.pending))
        if kind == "confirm":
            orchestrator.payments.confirm_payment(payment.id)
            ledger.paid += payment.amount
            ledger.overdue = False
        else:
            orchestrator.payments.reject_payment(payment.id, "not received")

    elif kind == "credit":
        _, amount, apply_now = op
        request = CreditNoteLineRequest(ledger.line_id, amount)
        if amount > ledger.line_total - ledger.reserved_credit:
            with pytest.raises(CreditExceedsRemainingError):
                orchestrator.credit_notes.create_credit_note(
                    invoice_id, CreditNoteReason.ADJUSTMENT, [request], BEFORE_DUE
                )
            return
        note = orchestrator.credit_notes.create_credit_note(
            invoice_id, CreditNoteReason.ADJUSTMENT, [request], BEFORE_DUE
        )
        ledger.reserved_credit += amount
        if apply_now:
            orchestrator.credit_notes.apply(note.id)
            ledger.credited += amount
        else:
            ledger.draft_notes.append(note)

    elif kind == "apply" and ledger.draft_notes:
        note = ledger.draft_notes.pop(op[1] % len(ledger.draft_notes))
        orchestrator.credit_notes.apply(note.id)
        ledger.credited += note.total_amount

    elif kind == "overdue_check":
        today = clock.today()
        orchestrator.invoices.recompute(invoice_id, overdue_as_of=today)
        if today > FEB[1]:
            ledger.overdue = True


class TestInvoiceBalanceHistory:

    @given(late=st.booleans(), ops=operations)
    @settings(
        max_examples=60,
        deadline=None,
        suppress_health_check=[HealthCheck.too_slow, HealthCheck.function_scoped_fixture],
    )
    def test_totals_and_status_hold_after_every_step(
        self, orchestrator, deterministic_clock, billing_config, add_lease, late, ops
    ):
        deterministic_clock.set_date(AFTER_DUE if late else BEFORE_DUE)
        issued = _issue(orchestrator, add_lease)
        assert issued.status == InvoiceStatus.ISSUED
        ledger = _Ledger(issued)

        for op in ops:
            _step(orchestrator, deterministic_clock, issued.id, ledger, op)

            invoice = orchestrator.invoices.get_invoice(issued.id)
            assert invoice.paid_amount + invoice.credited_amount + invoice.balance_amount == (
                invoice.total_amount
            )
            assert invoice.paid_amount == ledger.paid
            assert invoice.credited_amount == ledger.credited
            assert invoice.status == derive_invoice_status(
                invoice.total_amount,
                invoice.paid_amount,
                invoice.balance_amount,
                billing_config.partially_paid_on_credit,
                overdue=ledger.overdue,
            )
