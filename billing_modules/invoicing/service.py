"""
Invoice Lifecycle Manager (``billing_modules.invoicing.service``).

Responsibility
--------------
Creates, regenerates, issues, voids and discards lease invoices, and
recomputes the paid, credited and balance figures of an open invoice from
its payment and credit note history.

Architecture position
---------------------
**Modules layer** -- stateful service over the caller's session.  Flushes,
never commits; ``billing_services.BillingEngine`` owns the transaction.

Invariants enforced
-------------------
* At most one non-voided invoice per (lease, billing period).
* Invoice numbers come from the per-organization sequence and are never
  reused, even when a draft is discarded.
* ``paid + credited + balance == total`` after every recompute, with paid
  and credited summed from storage under a lock on the invoice row.
* Status after issuance is decided only by ``derive_invoice_status``.

Failure modes
-------------
* ``LeaseNotFoundError`` / ``InvoiceNotFoundError`` -- missing rows.
* ``LeaseNotActiveError`` -- lease is not active.
* ``DuplicateInvoiceError`` -- period already invoiced.
* ``InvalidInvoiceStateError`` -- action not legal in the current status.
* ``ConcurrencyConflictError`` -- stale ``expected_version``.
* ``MissingReasonError`` -- void without a reason.
"""

from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified
from sqlalchemy.orm.exc import StaleDataError

from billing_kernel.db.types import ZERO, round_money
from billing_kernel.domain.actor import ActorProvider, FixedActorProvider
from billing_kernel.domain.clock import Clock
from billing_kernel.exceptions import (
    ConcurrencyConflictError,
    DuplicateInvoiceError,
    InvalidBillingPeriodError,
    InvalidInvoiceStateError,
    InvoiceNotFoundError,
    LeaseNotActiveError,
    LeaseNotFoundError,
    MissingReasonError,
)
from billing_kernel.logging_config import get_logger
from billing_kernel.models.audit_record import AuditAction
from billing_kernel.services.audit_sink import AuditSink, NullAuditSink
from billing_kernel.services.sequence_service import SequenceService
from billing_modules.credit_notes.orm import CreditNoteModel
from billing_modules.invoicing.config import InvoicingConfig
from billing_modules.invoicing.models import TERMINAL_STATUSES, Invoice, InvoiceStatus
from billing_modules.invoicing.orm import InvoiceLineModel, InvoiceModel
from billing_modules.invoicing.workflows import INVOICE_WORKFLOW, derive_invoice_status
from billing_modules.leases.models import Lease, LeaseStatus, LineItem
from billing_modules.leases.orm import LeaseModel
from billing_modules.leases.service import ChargeAccumulator
from billing_modules.ownership.service import OwnershipResolver
from billing_modules.payments.orm import PaymentModel

logger = get_logger("modules.invoicing.service")


class InvoiceLifecycleManager:
    """
    Owns the invoice state machine.

    Contract:
        Every mutating method locks the invoice (or lease) row it changes,
        checks ``expected_version`` when one is given, and flushes.  A
        version mismatch detected by the ORM at UPDATE time surfaces as
        ``ConcurrencyConflictError``.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock,
        config: InvoicingConfig | None = None,
        accumulator: ChargeAccumulator | None = None,
        audit_sink: AuditSink | None = None,
        actor_provider: ActorProvider | None = None,
    ):
        self._session = session
        self._clock = clock
        self._config = config or InvoicingConfig.with_defaults()
        self._accumulator = accumulator or ChargeAccumulator(
            default_proration=self._config.default_proration,
            ownership=OwnershipResolver(session) if self._config.split_by_owner else None,
            split_by_owner=self._config.split_by_owner,
        )
        self._audit = audit_sink or NullAuditSink()
        self._actors = actor_provider or FixedActorProvider()
        self._sequences = SequenceService(session, width=self._config.number_width)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_invoice(self, invoice_id: UUID) -> Invoice:
        invoice = self._session.get(InvoiceModel, invoice_id)
        if invoice is None:
            raise InvoiceNotFoundError(invoice_id)
        return invoice.to_dto()

    def find_open_invoice(
        self,
        lease_id: UUID,
        period_start: date,
        period_end: date,
    ) -> Invoice | None:
        """The non-voided invoice for exactly this lease and period, if any."""
        row = self._find_existing(lease_id, period_start, period_end, lock=False)
        return row.to_dto() if row is not None else None

    # -------------------------------------------------------------------------
    # Draft creation
    # -------------------------------------------------------------------------

    def create_draft(
        self,
        lease_id: UUID,
        period_start: date,
        period_end: date,
        regenerate: bool = False,
        expected_version: bytes | None = None,
    ) -> Invoice:
        """
        Build a draft invoice for one lease and billing period.

        With ``regenerate=True`` an existing draft for the same period has
        its lines rebuilt in place; any other existing invoice is a
        duplicate.
        """
        if period_end < period_start:
            raise InvalidBillingPeriodError(period_start, period_end)

        lease_row = self._session.execute(
            select(LeaseModel)
            .where(LeaseModel.id == lease_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if lease_row is None:
            raise LeaseNotFoundError(lease_id)

        lease = lease_row.to_dto()
        if lease.status != LeaseStatus.ACTIVE:
            raise LeaseNotActiveError(lease_id, lease.status.value)

        existing = self._find_existing(lease_id, period_start, period_end, lock=True)
        if existing is not None:
            if regenerate and existing.status == InvoiceStatus.DRAFT.value:
                return self._regenerate(existing, lease, expected_version)
            logger.warning(
                "invoice_duplicate_rejected",
                extra={
                    "lease_id": str(lease_id),
                    "period_start": period_start.isoformat(),
                    "period_end": period_end.isoformat(),
                    "existing_invoice_id": str(existing.id),
                    "existing_status": existing.status,
                },
            )
            raise DuplicateInvoiceError(lease_id, period_start, period_end, existing.id)

        items = self._accumulator.build_line_items(lease, period_start, period_end)
        actor = self._actors.current_actor()
        prefix = lease.invoice_prefix or self._config.invoice_prefix
        invoice_number = self._sequences.next_document_number(lease.org_id, prefix)

        invoice = InvoiceModel(
            org_id=lease.org_id,
            lease_id=lease.id,
            invoice_number=invoice_number,
            billing_period_start=period_start,
            billing_period_end=period_end,
            invoice_date=period_end,
            due_date=self._due_date(lease, period_end),
            status=InvoiceStatus.DRAFT.value,
            payment_instructions=lease.payment_instructions,
            lines=[InvoiceLineModel.from_line_item(item, actor) for item in items],
            created_by=actor,
        )
        _apply_totals(invoice, items)
        self._session.add(invoice)

        try:
            self._session.flush()
        except IntegrityError as exc:
            # Another transaction invoiced the same period first
            raise DuplicateInvoiceError(lease_id, period_start, period_end) from exc

        dto = invoice.to_dto()
        self._audit.record(
            self._session,
            entity_type="Invoice",
            entity_id=invoice.id,
            action=AuditAction.INVOICE_DRAFTED,
            actor=actor,
            after=dto,
        )
        logger.info(
            "invoice_drafted",
            extra={
                "invoice_id": str(invoice.id),
                "invoice_number": invoice_number,
                "lease_id": str(lease_id),
                "period_start": period_start.isoformat(),
                "period_end": period_end.isoformat(),
                "line_count": len(items),
                "total_amount": str(invoice.total_amount),
            },
        )
        return dto

    def _regenerate(
        self,
        invoice: InvoiceModel,
        lease: Lease,
        expected_version: bytes | None,
    ) -> Invoice:
        self._check_version(invoice, expected_version)
        before = invoice.to_dto()
        actor = self._actors.current_actor()

        items = self._accumulator.build_line_items(
            lease, invoice.billing_period_start, invoice.billing_period_end
        )

        # Old lines must be gone before new ones reuse their line numbers
        invoice.lines.clear()
        self._flush(invoice)

        invoice.lines.extend(InvoiceLineModel.from_line_item(item, actor) for item in items)
        invoice.due_date = self._due_date(lease, invoice.billing_period_end)
        invoice.payment_instructions = lease.payment_instructions
        invoice.updated_by = actor
        # Line changes alone leave the invoice row untouched; force a new version
        flag_modified(invoice, "updated_by")
        _apply_totals(invoice, items)
        self._flush(invoice)

        dto = invoice.to_dto()
        self._audit.record(
            self._session,
            entity_type="Invoice",
            entity_id=invoice.id,
            action=AuditAction.INVOICE_REGENERATED,
            actor=actor,
            before=before,
            after=dto,
        )
        logger.info(
            "invoice_regenerated",
            extra={
                "invoice_id": str(invoice.id),
                "invoice_number": invoice.invoice_number,
                "previous_total": str(before.total_amount),
                "total_amount": str(invoice.total_amount),
                "line_count": len(items),
            },
        )
        return dto

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def issue(self, invoice_id: UUID, expected_version: bytes | None = None) -> Invoice:
        """Finalize a draft.  Its lines become immutable."""
        invoice = self._load_for_update(invoice_id)
        self._check_version(invoice, expected_version)
        self._require(invoice, "issue")

        if not invoice.lines or invoice.total_amount <= ZERO:
            raise InvalidInvoiceStateError(
                invoice_id,
                invoice.status,
                "issue",
                reason="invoice needs at least one line and a positive total",
            )

        before = invoice.to_dto()
        actor = self._actors.current_actor()
        invoice.issued_at = self._clock.now()
        invoice.status = InvoiceStatus.ISSUED.value
        invoice.updated_by = actor
        self._flush(invoice)

        dto = invoice.to_dto()
        self._audit.record(
            self._session,
            entity_type="Invoice",
            entity_id=invoice.id,
            action=AuditAction.INVOICE_ISSUED,
            actor=actor,
            before=before,
            after=dto,
        )
        logger.info(
            "invoice_issued",
            extra={
                "invoice_id": str(invoice.id),
                "invoice_number": invoice.invoice_number,
                "status": invoice.status,
                "total_amount": str(invoice.total_amount),
                "due_date": invoice.due_date.isoformat(),
            },
        )
        return dto

    def void(
        self,
        invoice_id: UUID,
        reason: str,
        expected_version: bytes | None = None,
    ) -> Invoice:
        """
        Void an open invoice that has no confirmed payments.

        An invoice with money received against it is corrected with a
        credit note instead.
        """
        if not reason or not reason.strip():
            raise MissingReasonError("void an invoice")

        invoice = self._load_for_update(invoice_id)
        self._check_version(invoice, expected_version)
        self._require(invoice, "void")

        if invoice.paid_amount > ZERO or self._completed_payment_total(invoice.id) > ZERO:
            raise InvalidInvoiceStateError(
                invoice_id,
                invoice.status,
                "void",
                reason="confirmed payments exist; issue a credit note instead",
            )

        before = invoice.to_dto()
        actor = self._actors.current_actor()
        invoice.status = InvoiceStatus.VOIDED.value
        invoice.voided_at = self._clock.now()
        invoice.void_reason = reason.strip()
        invoice.updated_by = actor
        self._flush(invoice)

        dto = invoice.to_dto()
        self._audit.record(
            self._session,
            entity_type="Invoice",
            entity_id=invoice.id,
            action=AuditAction.INVOICE_VOIDED,
            actor=actor,
            before=before,
            after=dto,
        )
        logger.info(
            "invoice_voided",
            extra={
                "invoice_id": str(invoice.id),
                "invoice_number": invoice.invoice_number,
                "previous_status": before.status.value,
                "void_reason": invoice.void_reason,
            },
        )
        return dto

    def discard_draft(self, invoice_id: UUID, expected_version: bytes | None = None) -> None:
        """Delete a draft and its lines.  The invoice number is not reused."""
        invoice = self._load_for_update(invoice_id)
        self._check_version(invoice, expected_version)
        self._require(invoice, "discard")

        before = invoice.to_dto()
        self._session.delete(invoice)
        self._flush(invoice)

        self._audit.record(
            self._session,
            entity_type="Invoice",
            entity_id=invoice_id,
            action=AuditAction.INVOICE_DISCARDED,
            actor=self._actors.current_actor(),
            before=before,
        )
        logger.info(
            "invoice_draft_discarded",
            extra={
                "invoice_id": str(invoice_id),
                "invoice_number": before.invoice_number,
                "lease_id": str(before.lease_id),
            },
        )

    def recompute(self, invoice_id: UUID, overdue_as_of: date | None = None) -> Invoice:
        """
        Re-derive paid, credited, balance and status from storage.

        Overdue is a flag on top of the payment-driven status.  It is set
        only when ``overdue_as_of`` is given and the due date lies before
        it (the overdue sweep), kept while no new payment lands, and
        cleared by the next confirmed payment.

        The invoice row is locked and refreshed first, so concurrent
        payment confirmations on one invoice each see the other's
        committed payment.  Drafts and terminal invoices are returned
        unchanged.
        """
        invoice = self._load_for_update(invoice_id)
        current = InvoiceStatus(invoice.status)
        if current == InvoiceStatus.DRAFT or current in TERMINAL_STATUSES:
            return invoice.to_dto()

        paid = self._completed_payment_total(invoice.id)
        credited = self._applied_credit_total(invoice.id)
        balance = invoice.total_amount - paid - credited
        overdue = (
            overdue_as_of is not None and invoice.due_date < overdue_as_of
        ) or (current == InvoiceStatus.OVERDUE and paid == invoice.paid_amount)
        status = derive_invoice_status(
            invoice.total_amount,
            paid,
            balance,
            self._config.partially_paid_on_credit,
            overdue=overdue,
        )

        if (
            paid == invoice.paid_amount
            and credited == invoice.credited_amount
            and balance == invoice.balance_amount
            and status == current
        ):
            return invoice.to_dto()

        if status not in {
            InvoiceStatus(s) for s in INVOICE_WORKFLOW.targets(current.value, "recompute")
        }:
            raise InvalidInvoiceStateError(
                invoice_id, current.value, "recompute", reason=f"cannot move to {status.value}"
            )

        before = invoice.to_dto()
        actor = self._actors.current_actor()
        invoice.paid_amount = paid
        invoice.credited_amount = credited
        invoice.balance_amount = balance
        invoice.status = status.value
        if status == InvoiceStatus.PAID:
            if invoice.paid_at is None:
                invoice.paid_at = self._clock.now()
        else:
            invoice.paid_at = None
        invoice.updated_by = actor
        self._flush(invoice)

        if balance < ZERO:
            logger.warning(
                "invoice_overpaid",
                extra={
                    "invoice_id": str(invoice.id),
                    "balance_amount": str(balance),
                },
            )

        dto = invoice.to_dto()
        self._audit.record(
            self._session,
            entity_type="Invoice",
            entity_id=invoice.id,
            action=AuditAction.INVOICE_RECOMPUTED,
            actor=actor,
            before=before,
            after=dto,
        )
        logger.info(
            "invoice_recomputed",
            extra={
                "invoice_id": str(invoice.id),
                "previous_status": current.value,
                "status": status.value,
                "paid_amount": str(paid),
                "credited_amount": str(credited),
                "balance_amount": str(balance),
            },
        )
        return dto

    # -------------------------------------------------------------------------
    # Stored totals
    # -------------------------------------------------------------------------

    def _completed_payment_total(self, invoice_id: UUID) -> Decimal:
        return _sum_money(
            self._session.execute(
                select(func.sum(PaymentModel.amount))
                .where(PaymentModel.invoice_id == invoice_id)
                .where(PaymentModel.status == "completed")
            ).scalar()
        )

    def _applied_credit_total(self, invoice_id: UUID) -> Decimal:
        return _sum_money(
            self._session.execute(
                select(func.sum(CreditNoteModel.total_amount))
                .where(CreditNoteModel.invoice_id == invoice_id)
                .where(CreditNoteModel.status == "applied")
            ).scalar()
        )

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _find_existing(
        self,
        lease_id: UUID,
        period_start: date,
        period_end: date,
        lock: bool,
    ) -> InvoiceModel | None:
        stmt = (
            select(InvoiceModel)
            .where(InvoiceModel.lease_id == lease_id)
            .where(InvoiceModel.billing_period_start == period_start)
            .where(InvoiceModel.billing_period_end == period_end)
            .where(InvoiceModel.status != InvoiceStatus.VOIDED.value)
        )
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return self._session.execute(stmt).scalars().first()

    def _load_for_update(self, invoice_id: UUID) -> InvoiceModel:
        invoice = self._session.execute(
            select(InvoiceModel)
            .where(InvoiceModel.id == invoice_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if invoice is None:
            raise InvoiceNotFoundError(invoice_id)
        return invoice

    def _check_version(self, invoice: InvoiceModel, expected_version: bytes | None) -> None:
        if expected_version is not None and invoice.version != expected_version:
            logger.warning(
                "invoice_version_conflict",
                extra={"invoice_id": str(invoice.id), "status": invoice.status},
            )
            raise ConcurrencyConflictError("Invoice", invoice.id)

    def _require(self, invoice: InvoiceModel, action: str) -> None:
        if not INVOICE_WORKFLOW.allows(invoice.status, action):
            raise InvalidInvoiceStateError(invoice.id, invoice.status, action)

    def _flush(self, invoice: InvoiceModel) -> None:
        try:
            self._session.flush()
        except StaleDataError as exc:
            raise ConcurrencyConflictError("Invoice", invoice.id) from exc

    def _due_date(self, lease: Lease, period_end: date) -> date:
        term_days = lease.payment_term_days
        if term_days is None:
            term_days = self._config.payment_term_days
        return period_end + timedelta(days=term_days)


def _apply_totals(invoice: InvoiceModel, items: list[LineItem]) -> None:
    invoice.subtotal = sum((i.amount for i in items), ZERO)
    invoice.tax_amount = sum((i.tax_amount for i in items), ZERO)
    invoice.total_amount = sum((i.total_amount for i in items), ZERO)
    invoice.paid_amount = ZERO
    invoice.credited_amount = ZERO
    invoice.balance_amount = invoice.total_amount


def _sum_money(value) -> Decimal:
    if value is None:
        return ZERO
    return round_money(Decimal(str(value)))
