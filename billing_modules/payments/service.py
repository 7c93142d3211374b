"""
Payment Confirmation Service (``billing_modules.payments.service``).

Responsibility
--------------
Records payments against open invoices and moves them through the
confirmation workflow.  A confirmed payment triggers an invoice
recompute; a rejected one leaves the invoice untouched.

Architecture position
---------------------
**Modules layer** -- stateful service over the caller's session.  Flushes,
never commits.

Invariants enforced
-------------------
* The status history row is written before the payment status changes,
  so every status the payment has held is in the history.
* Completed and rejected payments never change again.
* Invoice totals are recomputed from storage after the confirmed payment
  has been flushed, never incremented in memory.

Failure modes
-------------
* ``InvalidPaymentError`` -- non-positive or sub-cent amount, missing
  reference.
* ``PaymentExceedsBalanceError`` -- amount above the outstanding balance
  less the payments still awaiting confirmation.
* ``InvalidPaymentStateError`` -- payment already completed or rejected.
* ``InvalidInvoiceStateError`` -- invoice not payable, or voided.
* ``InvoiceNotFoundError`` -- the payment's invoice is gone.
* ``MissingReasonError`` -- rejection without a reason.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from billing_kernel.db.types import ZERO, round_money
from billing_kernel.domain.actor import ActorProvider, FixedActorProvider
from billing_kernel.domain.clock import Clock
from billing_kernel.exceptions import (
    ConcurrencyConflictError,
    InvalidInvoiceStateError,
    InvalidPaymentError,
    InvalidPaymentStateError,
    InvoiceNotFoundError,
    MissingReasonError,
    PaymentExceedsBalanceError,
    PaymentNotFoundError,
)
from billing_kernel.logging_config import get_logger
from billing_kernel.models.audit_record import AuditAction
from billing_kernel.services.audit_sink import AuditSink, NullAuditSink
from billing_modules.invoicing.models import PAYABLE_STATUSES, InvoiceStatus
from billing_modules.invoicing.orm import InvoiceModel
from billing_modules.invoicing.service import InvoiceLifecycleManager
from billing_modules.payments.models import (
    AWAITING_DECISION,
    Payment,
    PaymentMode,
    PaymentStatus,
)
from billing_modules.payments.orm import PaymentModel, PaymentStatusHistoryModel
from billing_modules.payments.workflows import PAYMENT_WORKFLOW

logger = get_logger("modules.payments.service")

DEFAULT_CONFIRM_REASON = "Payment confirmed by owner"


class PaymentService:
    """
    Records, confirms and rejects payments.

    Contract:
        ``confirm_payment`` delegates the invoice update to
        ``InvoiceLifecycleManager.recompute`` in the same session.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock,
        invoices: InvoiceLifecycleManager,
        audit_sink: AuditSink | None = None,
        actor_provider: ActorProvider | None = None,
    ):
        self._session = session
        self._clock = clock
        self._invoices = invoices
        self._audit = audit_sink or NullAuditSink()
        self._actors = actor_provider or FixedActorProvider()

    def get_payment(self, payment_id: UUID) -> Payment:
        payment = self._session.get(PaymentModel, payment_id)
        if payment is None:
            raise PaymentNotFoundError(payment_id)
        return payment.to_dto()

    def list_for_invoice(self, invoice_id: UUID) -> list[Payment]:
        rows = self._session.execute(
            select(PaymentModel)
            .where(PaymentModel.invoice_id == invoice_id)
            .order_by(PaymentModel.payment_date_utc, PaymentModel.created_at)
        ).scalars().all()
        return [r.to_dto() for r in rows]

    def record_payment(
        self,
        invoice_id: UUID,
        amount: Decimal,
        payment_mode: PaymentMode,
        payment_date_utc: datetime,
        transaction_reference: str | None = None,
        payer_name: str | None = None,
        notes: str | None = None,
        submitted_by_payer: bool = False,
    ) -> Payment:
        """
        Record a payment awaiting confirmation.

        Payer submissions start as ``PENDING_CONFIRMATION``; payments the
        landlord enters start as ``PENDING``.
        """
        if amount <= ZERO:
            raise InvalidPaymentError("Payment amount must be greater than zero", field="amount")
        if amount != round_money(amount):
            raise InvalidPaymentError(
                "Payment amount cannot have more than two decimal places", field="amount"
            )
        if payment_mode != PaymentMode.CASH and not (
            transaction_reference and transaction_reference.strip()
        ):
            raise InvalidPaymentError(
                "Transaction reference is required for non-cash payments",
                field="transaction_reference",
            )
        if payment_date_utc.tzinfo is None:
            raise InvalidPaymentError(
                "Payment date must be timezone-aware", field="payment_date_utc"
            )

        invoice = self._session.execute(
            select(InvoiceModel)
            .where(InvoiceModel.id == invoice_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if invoice is None:
            raise InvoiceNotFoundError(invoice_id)

        if InvoiceStatus(invoice.status) not in PAYABLE_STATUSES:
            raise InvalidInvoiceStateError(invoice_id, invoice.status, "record a payment against")
        pending = self._pending_total(invoice.id)
        if amount > invoice.balance_amount - pending:
            raise PaymentExceedsBalanceError(
                invoice_id, amount, invoice.balance_amount, pending
            )

        actor = self._actors.current_actor()
        now = self._clock.now()
        status = (
            PaymentStatus.PENDING_CONFIRMATION if submitted_by_payer else PaymentStatus.PENDING
        )
        payment = PaymentModel(
            org_id=invoice.org_id,
            invoice_id=invoice.id,
            lease_id=invoice.lease_id,
            payment_mode=payment_mode.value,
            status=status.value,
            amount=amount,
            payment_date_utc=payment_date_utc,
            transaction_reference=transaction_reference,
            payer_name=payer_name,
            notes=notes,
            received_by=actor,
            created_by=actor,
        )
        self._session.add(payment)
        self._session.flush()

        self._append_history(
            payment,
            None,
            status,
            "Payment submitted by payer" if submitted_by_payer else "Payment recorded",
            actor,
            now,
        )
        self._session.flush()

        dto = payment.to_dto()
        self._audit.record(
            self._session,
            entity_type="Payment",
            entity_id=payment.id,
            action=AuditAction.PAYMENT_RECORDED,
            actor=actor,
            after=dto,
        )
        logger.info(
            "payment_recorded",
            extra={
                "payment_id": str(payment.id),
                "invoice_id": str(invoice_id),
                "amount": str(amount),
                "payment_mode": payment_mode.value,
                "status": status.value,
            },
        )
        return dto

    def confirm_payment(
        self,
        payment_id: UUID,
        notes: str | None = None,
        expected_version: bytes | None = None,
    ) -> Payment:
        """Complete a pending payment and recompute its invoice."""
        payment = self._load_for_update(payment_id)
        self._check_version(payment, expected_version)
        self._require(payment, "confirm")

        invoice = self._session.get(InvoiceModel, payment.invoice_id)
        if invoice is None:
            logger.error(
                "payment_invoice_missing",
                extra={
                    "payment_id": str(payment_id),
                    "invoice_id": str(payment.invoice_id),
                },
            )
            raise InvoiceNotFoundError(payment.invoice_id)
        if invoice.status == InvoiceStatus.VOIDED.value:
            raise InvalidInvoiceStateError(
                invoice.id, invoice.status, "confirm a payment against"
            )

        before = payment.to_dto()
        actor = self._actors.current_actor()
        now = self._clock.now()

        self._append_history(
            payment,
            PaymentStatus(payment.status),
            PaymentStatus.COMPLETED,
            notes or DEFAULT_CONFIRM_REASON,
            actor,
            now,
        )
        self._flush(payment)

        payment.status = PaymentStatus.COMPLETED.value
        payment.confirmed_at = now
        payment.updated_by = actor
        self._flush(payment)

        updated_invoice = self._invoices.recompute(invoice.id)

        dto = payment.to_dto()
        self._audit.record(
            self._session,
            entity_type="Payment",
            entity_id=payment.id,
            action=AuditAction.PAYMENT_CONFIRMED,
            actor=actor,
            before=before,
            after=dto,
        )
        logger.info(
            "payment_confirmed",
            extra={
                "payment_id": str(payment.id),
                "invoice_id": str(invoice.id),
                "amount": str(payment.amount),
                "invoice_status": updated_invoice.status.value,
                "invoice_balance": str(updated_invoice.balance_amount),
            },
        )
        return dto

    def reject_payment(
        self,
        payment_id: UUID,
        reason: str,
        expected_version: bytes | None = None,
    ) -> Payment:
        """Reject a pending payment.  Invoice totals do not change."""
        if not reason or not reason.strip():
            raise MissingReasonError("reject a payment")

        payment = self._load_for_update(payment_id)
        self._check_version(payment, expected_version)
        self._require(payment, "reject")

        before = payment.to_dto()
        actor = self._actors.current_actor()
        now = self._clock.now()

        self._append_history(
            payment,
            PaymentStatus(payment.status),
            PaymentStatus.REJECTED,
            reason.strip(),
            actor,
            now,
        )
        self._flush(payment)

        payment.status = PaymentStatus.REJECTED.value
        payment.rejected_at = now
        payment.rejection_reason = reason.strip()
        payment.updated_by = actor
        self._flush(payment)

        dto = payment.to_dto()
        self._audit.record(
            self._session,
            entity_type="Payment",
            entity_id=payment.id,
            action=AuditAction.PAYMENT_REJECTED,
            actor=actor,
            before=before,
            after=dto,
        )
        logger.info(
            "payment_rejected",
            extra={
                "payment_id": str(payment.id),
                "invoice_id": str(payment.invoice_id),
                "reason": payment.rejection_reason,
            },
        )
        return dto

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _pending_total(self, invoice_id: UUID) -> Decimal:
        total = self._session.execute(
            select(func.sum(PaymentModel.amount))
            .where(PaymentModel.invoice_id == invoice_id)
            .where(PaymentModel.status.in_([s.value for s in AWAITING_DECISION]))
        ).scalar_one()
        return round_money(Decimal(str(total))) if total is not None else ZERO

    def _append_history(
        self,
        payment: PaymentModel,
        from_status: PaymentStatus | None,
        to_status: PaymentStatus,
        reason: str | None,
        actor: str,
        at: datetime,
    ) -> None:
        payment.history.append(
            PaymentStatusHistoryModel(
                from_status=from_status.value if from_status else None,
                to_status=to_status.value,
                changed_at=at,
                changed_by=actor,
                reason=reason,
                created_by=actor,
            )
        )

    def _load_for_update(self, payment_id: UUID) -> PaymentModel:
        payment = self._session.execute(
            select(PaymentModel)
            .where(PaymentModel.id == payment_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if payment is None:
            raise PaymentNotFoundError(payment_id)
        return payment

    def _check_version(self, payment: PaymentModel, expected_version: bytes | None) -> None:
        if expected_version is not None and payment.version != expected_version:
            raise ConcurrencyConflictError("Payment", payment.id)

    def _require(self, payment: PaymentModel, action: str) -> None:
        if not PAYMENT_WORKFLOW.allows(payment.status, action):
            raise InvalidPaymentStateError(payment.id, payment.status, action)

    def _flush(self, payment: PaymentModel) -> None:
        try:
            self._session.flush()
        except StaleDataError as exc:
            raise ConcurrencyConflictError("Payment", payment.id) from exc
