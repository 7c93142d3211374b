"""
Credit Note Issuer (``billing_modules.credit_notes.service``).

Responsibility
--------------
Creates credit notes against lines of an issued invoice, applies them
(reducing the invoice balance through a recompute) and voids drafts.

Architecture position
---------------------
**Modules layer** -- stateful service over the caller's session.  Flushes,
never commits.

Invariants enforced
-------------------
* Every credit note line references a line of the credited invoice.
* Per invoice line, credits across all non-voided credit notes (drafts
  included) never exceed the line total.
* Applying is one-way.  An applied credit note cannot be voided.

Failure modes
-------------
* ``EmptyCreditNoteError`` -- no lines.
* ``ValidationError`` -- non-positive or sub-cent line amount.
* ``InvalidInvoiceStateError`` -- invoice not issued, or voided.
* ``LineNotOnInvoiceError`` -- line belongs to another invoice.
* ``CreditExceedsRemainingError`` -- amount above the uncredited remainder.
* ``InvalidCreditNoteStateError`` -- already applied or voided.
* ``MissingReasonError`` -- void without a reason.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Sequence
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from billing_kernel.db.types import ZERO, round_money
from billing_kernel.domain.actor import ActorProvider, FixedActorProvider
from billing_kernel.domain.clock import Clock
from billing_kernel.exceptions import (
    ConcurrencyConflictError,
    CreditExceedsRemainingError,
    CreditNoteNotFoundError,
    EmptyCreditNoteError,
    InvalidCreditNoteStateError,
    InvalidInvoiceStateError,
    InvoiceNotFoundError,
    LineNotOnInvoiceError,
    MissingReasonError,
    ValidationError,
)
from billing_kernel.logging_config import get_logger
from billing_kernel.models.audit_record import AuditAction
from billing_kernel.services.audit_sink import AuditSink, NullAuditSink
from billing_kernel.services.sequence_service import SequenceService
from billing_modules.credit_notes.models import (
    CreditNote,
    CreditNoteLineRequest,
    CreditNoteReason,
    CreditNoteStatus,
)
from billing_modules.credit_notes.orm import CreditNoteLineModel, CreditNoteModel
from billing_modules.credit_notes.workflows import CREDIT_NOTE_WORKFLOW
from billing_modules.invoicing.config import InvoicingConfig
from billing_modules.invoicing.models import CREDITABLE_STATUSES, InvoiceStatus
from billing_modules.invoicing.orm import InvoiceLineModel, InvoiceModel
from billing_modules.invoicing.service import InvoiceLifecycleManager

logger = get_logger("modules.credit_notes.service")


class CreditNoteService:
    """
    Issues, applies and voids credit notes.

    Contract:
        ``apply`` locks the credit note and then the invoice, and hands the
        balance update to ``InvoiceLifecycleManager.recompute``.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock,
        invoices: InvoiceLifecycleManager,
        config: InvoicingConfig | None = None,
        audit_sink: AuditSink | None = None,
        actor_provider: ActorProvider | None = None,
    ):
        self._session = session
        self._clock = clock
        self._invoices = invoices
        self._config = config or InvoicingConfig.with_defaults()
        self._audit = audit_sink or NullAuditSink()
        self._actors = actor_provider or FixedActorProvider()
        self._sequences = SequenceService(session, width=self._config.number_width)

    def get_credit_note(self, credit_note_id: UUID) -> CreditNote:
        credit_note = self._session.get(CreditNoteModel, credit_note_id)
        if credit_note is None:
            raise CreditNoteNotFoundError(credit_note_id)
        return credit_note.to_dto()

    def list_for_invoice(self, invoice_id: UUID) -> list[CreditNote]:
        rows = self._session.execute(
            select(CreditNoteModel)
            .where(CreditNoteModel.invoice_id == invoice_id)
            .order_by(CreditNoteModel.credit_note_number)
        ).scalars().all()
        return [r.to_dto() for r in rows]

    def remaining_by_line(self, invoice_id: UUID) -> dict[UUID, Decimal]:
        """Uncredited amount of every line on the invoice."""
        invoice = self._session.get(InvoiceModel, invoice_id)
        if invoice is None:
            raise InvoiceNotFoundError(invoice_id)
        credited = self._prior_credits([line.id for line in invoice.lines])
        return {
            line.id: line.total_amount - credited.get(line.id, ZERO)
            for line in invoice.lines
        }

    def create_credit_note(
        self,
        invoice_id: UUID,
        reason: CreditNoteReason,
        lines: Sequence[CreditNoteLineRequest],
        credit_note_date: date,
        notes: str | None = None,
    ) -> CreditNote:
        """
        Draft a credit note against lines of ``invoice_id``.

        Several requests for the same invoice line are summed before the
        remaining-amount check.
        """
        if not lines:
            raise EmptyCreditNoteError()
        for request in lines:
            if request.amount <= ZERO:
                raise ValidationError("Credit note line amount must be positive", field="amount")
            if request.amount != round_money(request.amount):
                raise ValidationError(
                    "Credit note line amount cannot have more than two decimal places",
                    field="amount",
                )

        invoice = self._session.execute(
            select(InvoiceModel)
            .where(InvoiceModel.id == invoice_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if invoice is None:
            raise InvoiceNotFoundError(invoice_id)
        if InvoiceStatus(invoice.status) not in CREDITABLE_STATUSES:
            raise InvalidInvoiceStateError(
                invoice_id,
                invoice.status,
                "credit",
                reason="credit notes need an issued, partially paid, paid or overdue invoice",
            )

        invoice_lines = {line.id: line for line in invoice.lines}
        requested: dict[UUID, Decimal] = defaultdict(lambda: ZERO)
        for request in lines:
            if request.invoice_line_id not in invoice_lines:
                raise LineNotOnInvoiceError(invoice_id, request.invoice_line_id)
            requested[request.invoice_line_id] += request.amount

        prior = self._prior_credits(list(requested))
        for line_id, amount in requested.items():
            remaining = invoice_lines[line_id].total_amount - prior.get(line_id, ZERO)
            if amount > remaining:
                logger.warning(
                    "credit_exceeds_remaining",
                    extra={
                        "invoice_id": str(invoice_id),
                        "invoice_line_id": str(line_id),
                        "requested": str(amount),
                        "remaining": str(remaining),
                    },
                )
                raise CreditExceedsRemainingError(line_id, amount, remaining)

        actor = self._actors.current_actor()
        number = self._sequences.next_document_number(
            invoice.org_id, self._config.credit_note_prefix
        )
        credit_note = CreditNoteModel(
            org_id=invoice.org_id,
            invoice_id=invoice.id,
            credit_note_number=number,
            credit_note_date=credit_note_date,
            reason=reason.value,
            status=CreditNoteStatus.DRAFT.value,
            notes=notes,
            lines=[
                _credit_line(n, invoice_lines[request.invoice_line_id], request, actor)
                for n, request in enumerate(lines, start=1)
            ],
            created_by=actor,
        )
        credit_note.total_amount = sum((line.total_amount for line in credit_note.lines), ZERO)
        self._session.add(credit_note)
        self._session.flush()

        dto = credit_note.to_dto()
        self._audit.record(
            self._session,
            entity_type="CreditNote",
            entity_id=credit_note.id,
            action=AuditAction.CREDIT_NOTE_CREATED,
            actor=actor,
            after=dto,
        )
        logger.info(
            "credit_note_created",
            extra={
                "credit_note_id": str(credit_note.id),
                "credit_note_number": number,
                "invoice_id": str(invoice_id),
                "reason": reason.value,
                "line_count": len(lines),
                "total_amount": str(credit_note.total_amount),
            },
        )
        return dto

    def apply(self, credit_note_id: UUID, expected_version: bytes | None = None) -> CreditNote:
        """Apply a draft credit note and recompute its invoice."""
        credit_note = self._load_for_update(credit_note_id)
        self._check_version(credit_note, expected_version)
        self._require(credit_note, "apply")

        invoice = self._session.execute(
            select(InvoiceModel)
            .where(InvoiceModel.id == credit_note.invoice_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if invoice is None:
            logger.error(
                "credit_note_invoice_missing",
                extra={
                    "credit_note_id": str(credit_note_id),
                    "invoice_id": str(credit_note.invoice_id),
                },
            )
            raise InvoiceNotFoundError(credit_note.invoice_id)
        if InvoiceStatus(invoice.status) not in CREDITABLE_STATUSES:
            raise InvalidInvoiceStateError(
                invoice.id, invoice.status, "apply a credit note to"
            )

        before = credit_note.to_dto()
        actor = self._actors.current_actor()
        credit_note.status = CreditNoteStatus.APPLIED.value
        credit_note.applied_at = self._clock.now()
        credit_note.updated_by = actor
        self._flush(credit_note)

        updated_invoice = self._invoices.recompute(invoice.id)

        dto = credit_note.to_dto()
        self._audit.record(
            self._session,
            entity_type="CreditNote",
            entity_id=credit_note.id,
            action=AuditAction.CREDIT_NOTE_APPLIED,
            actor=actor,
            before=before,
            after=dto,
        )
        logger.info(
            "credit_note_applied",
            extra={
                "credit_note_id": str(credit_note.id),
                "invoice_id": str(invoice.id),
                "total_amount": str(credit_note.total_amount),
                "invoice_status": updated_invoice.status.value,
                "invoice_balance": str(updated_invoice.balance_amount),
            },
        )
        return dto

    def void(
        self,
        credit_note_id: UUID,
        reason: str,
        expected_version: bytes | None = None,
    ) -> CreditNote:
        """Void a draft credit note.  Its credit no longer counts against the lines."""
        if not reason or not reason.strip():
            raise MissingReasonError("void a credit note")

        credit_note = self._load_for_update(credit_note_id)
        self._check_version(credit_note, expected_version)
        if credit_note.status == CreditNoteStatus.APPLIED.value:
            raise InvalidCreditNoteStateError(
                credit_note_id,
                credit_note.status,
                "void",
                reason="applied credit notes are irreversible; issue a counter-adjustment",
            )
        self._require(credit_note, "void")

        before = credit_note.to_dto()
        actor = self._actors.current_actor()
        credit_note.status = CreditNoteStatus.VOIDED.value
        credit_note.voided_at = self._clock.now()
        credit_note.void_reason = reason.strip()
        credit_note.updated_by = actor
        self._flush(credit_note)

        dto = credit_note.to_dto()
        self._audit.record(
            self._session,
            entity_type="CreditNote",
            entity_id=credit_note.id,
            action=AuditAction.CREDIT_NOTE_VOIDED,
            actor=actor,
            before=before,
            after=dto,
        )
        logger.info(
            "credit_note_voided",
            extra={
                "credit_note_id": str(credit_note.id),
                "invoice_id": str(credit_note.invoice_id),
                "void_reason": credit_note.void_reason,
            },
        )
        return dto

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _prior_credits(self, invoice_line_ids: list[UUID]) -> dict[UUID, Decimal]:
        if not invoice_line_ids:
            return {}
        rows = self._session.execute(
            select(
                CreditNoteLineModel.invoice_line_id,
                func.sum(CreditNoteLineModel.total_amount),
            )
            .join(CreditNoteModel, CreditNoteModel.id == CreditNoteLineModel.credit_note_id)
            .where(CreditNoteLineModel.invoice_line_id.in_(invoice_line_ids))
            .where(CreditNoteModel.status != CreditNoteStatus.VOIDED.value)
            .group_by(CreditNoteLineModel.invoice_line_id)
        ).all()
        return {
            line_id: round_money(Decimal(str(total)))
            for line_id, total in rows
            if total is not None
        }

    def _load_for_update(self, credit_note_id: UUID) -> CreditNoteModel:
        credit_note = self._session.execute(
            select(CreditNoteModel)
            .where(CreditNoteModel.id == credit_note_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if credit_note is None:
            raise CreditNoteNotFoundError(credit_note_id)
        return credit_note

    def _check_version(self, credit_note: CreditNoteModel, expected_version: bytes | None) -> None:
        if expected_version is not None and credit_note.version != expected_version:
            raise ConcurrencyConflictError("CreditNote", credit_note.id)

    def _require(self, credit_note: CreditNoteModel, action: str) -> None:
        if not CREDIT_NOTE_WORKFLOW.allows(credit_note.status, action):
            raise InvalidCreditNoteStateError(credit_note.id, credit_note.status, action)

    def _flush(self, credit_note: CreditNoteModel) -> None:
        try:
            self._session.flush()
        except StaleDataError as exc:
            raise ConcurrencyConflictError("CreditNote", credit_note.id) from exc


def _credit_line(
    line_number: int,
    invoice_line: InvoiceLineModel,
    request: CreditNoteLineRequest,
    actor: str,
) -> CreditNoteLineModel:
    # Tax is credited in the same proportion it carries on the invoice line
    tax = ZERO
    if invoice_line.total_amount > ZERO:
        tax = round_money(request.amount * invoice_line.tax_amount / invoice_line.total_amount)
    return CreditNoteLineModel(
        invoice_line_id=invoice_line.id,
        line_number=line_number,
        description=f"Credit for: {invoice_line.description}",
        amount=request.amount - tax,
        tax_amount=tax,
        total_amount=request.amount,
        notes=request.notes,
        created_by=actor,
    )
