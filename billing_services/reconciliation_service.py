"""
billing_services.reconciliation_service -- Stored totals vs. history.

Responsibility:
    Detects invoices whose stored paid_amount, credited_amount,
    balance_amount or status disagree with what their completed payments
    and applied credit notes imply, and repairs them through the invoice
    recompute path.

Architecture position:
    Services -- read-mostly orchestration over the invoicing module.
    Runs inside the caller's session; ``repair`` flushes, the caller
    commits.

Invariants enforced:
    - Expected values are derived with the same status rule recompute
      uses (``derive_invoice_status``, keeping the overdue flag while no
      new payment has landed), so a repaired invoice never shows
      up as a discrepancy again.
    - Drafts and terminal invoices are never reported: recompute does not
      own their totals.

Failure modes:
    - InvoiceNotFoundError from ``repair`` for an unknown invoice.
    - InvalidInvoiceStateError from ``repair`` when the corrected status
      is not reachable from the stored one.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from billing_config.schema import BillingConfig
from billing_kernel.db.types import ZERO, round_money
from billing_kernel.logging_config import get_logger
from billing_modules.credit_notes.models import CreditNoteStatus
from billing_modules.credit_notes.orm import CreditNoteModel
from billing_modules.invoicing.models import TERMINAL_STATUSES, Invoice, InvoiceStatus
from billing_modules.invoicing.orm import InvoiceModel
from billing_modules.invoicing.service import InvoiceLifecycleManager
from billing_modules.invoicing.workflows import derive_invoice_status
from billing_modules.payments.models import PaymentStatus
from billing_modules.payments.orm import PaymentModel
from billing_services._run_types import InvoiceDiscrepancy

logger = get_logger("services.reconciliation")

_SKIPPED_STATUSES = tuple(
    s.value for s in TERMINAL_STATUSES | {InvoiceStatus.DRAFT}
)


class BillingReconciliationService:
    """
    Finds and repairs drifted invoice totals.

    Contract:
        ``find_discrepancies`` is read-only.  ``repair`` delegates to
        ``InvoiceLifecycleManager.recompute``.
    """

    def __init__(
        self,
        session: Session,
        invoices: InvoiceLifecycleManager,
        config: BillingConfig | None = None,
    ):
        self._session = session
        self._invoices = invoices
        self._config = config or BillingConfig()

    def find_discrepancies(self, org_id: UUID | None = None) -> list[InvoiceDiscrepancy]:
        paid = (
            select(
                PaymentModel.invoice_id.label("invoice_id"),
                func.sum(PaymentModel.amount).label("total"),
            )
            .where(PaymentModel.status == PaymentStatus.COMPLETED.value)
            .group_by(PaymentModel.invoice_id)
            .subquery()
        )
        credited = (
            select(
                CreditNoteModel.invoice_id.label("invoice_id"),
                func.sum(CreditNoteModel.total_amount).label("total"),
            )
            .where(CreditNoteModel.status == CreditNoteStatus.APPLIED.value)
            .group_by(CreditNoteModel.invoice_id)
            .subquery()
        )
        stmt = (
            select(InvoiceModel, paid.c.total, credited.c.total)
            .outerjoin(paid, paid.c.invoice_id == InvoiceModel.id)
            .outerjoin(credited, credited.c.invoice_id == InvoiceModel.id)
            .where(InvoiceModel.status.not_in(_SKIPPED_STATUSES))
            .order_by(InvoiceModel.invoice_number)
        )
        if org_id is not None:
            stmt = stmt.where(InvoiceModel.org_id == org_id)

        found: list[InvoiceDiscrepancy] = []
        for invoice, paid_total, credited_total in self._session.execute(stmt):
            expected_paid = _money(paid_total)
            expected_credited = _money(credited_total)
            expected_balance = invoice.total_amount - expected_paid - expected_credited
            expected_status = derive_invoice_status(
                invoice.total_amount,
                expected_paid,
                expected_balance,
                self._config.partially_paid_on_credit,
                overdue=(
                    invoice.status == InvoiceStatus.OVERDUE.value
                    and expected_paid == invoice.paid_amount
                ),
            ).value

            discrepancy = InvoiceDiscrepancy(
                invoice_id=invoice.id,
                invoice_number=invoice.invoice_number,
                stored_paid=invoice.paid_amount,
                expected_paid=expected_paid,
                stored_credited=invoice.credited_amount,
                expected_credited=expected_credited,
                stored_balance=invoice.balance_amount,
                expected_balance=expected_balance,
                stored_status=invoice.status,
                expected_status=expected_status,
            )
            if discrepancy.fields:
                found.append(discrepancy)

        for d in found:
            logger.warning(
                "invoice_discrepancy_detected",
                extra={
                    "invoice_id": str(d.invoice_id),
                    "invoice_number": d.invoice_number,
                    "fields": list(d.fields),
                },
            )
        logger.info(
            "reconciliation_check_completed",
            extra={
                "org_id": str(org_id) if org_id else None,
                "discrepancy_count": len(found),
            },
        )
        return found

    def repair(self, invoice_id: UUID) -> Invoice:
        invoice = self._invoices.recompute(invoice_id)
        logger.info(
            "invoice_repaired",
            extra={
                "invoice_id": str(invoice_id),
                "status": invoice.status.value,
                "balance_amount": str(invoice.balance_amount),
            },
        )
        return invoice


def _money(value) -> Decimal:
    if value is None:
        return ZERO
    return round_money(Decimal(str(value)))
