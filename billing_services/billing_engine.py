"""
billing_services.billing_engine -- Transactional facade over the billing modules.

Responsibility:
    The single entry point the outer application calls.  Every operation
    opens its own session, builds a ``BillingOrchestrator``, runs one state
    transition, and commits once.  Domain errors come back as tagged
    ``EngineResult`` values instead of exceptions, so the boundary layer can
    map ``ErrorKind`` to its own transport codes.

Architecture position:
    Services -- top of the stack.  Owns the transaction boundary; module
    services below it only flush.

Invariants enforced:
    - One commit per state transition; any error rolls the whole
      transition back.
    - A set cancellation event is honoured before work starts and again
      before commit.
    - Immutability listeners are registered before the first operation.

Failure modes:
    - ``BillingError`` subclasses become failed results.  Data-integrity
      errors are logged at ERROR and reported as "unable to process".
    - Anything else (programming errors, database outages) propagates
      after rollback.

Usage:
    engine = BillingEngine(session_factory, clock=SystemClock())
    result = engine.generate_invoice(lease_id, date(2026, 1, 1), date(2026, 1, 31))
    if result.ok:
        invoice_id = result.value
    elif result.error_kind is ErrorKind.DUPLICATE_INVOICE:
        ...
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Generic, TypeVar
from uuid import UUID, uuid4

from sqlalchemy.orm import Session, sessionmaker

from billing_config import get_billing_config
from billing_config.schema import BillingConfig
from billing_kernel.domain.actor import ActorProvider, FixedActorProvider
from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.exceptions import BillingError, ErrorCategory, OperationCancelledError
from billing_kernel.logging_config import LogContext, get_logger
from billing_kernel.services.audit_sink import AuditSink, DatabaseAuditSink
from billing_modules._immutability import register_immutability_listeners
from billing_modules.credit_notes.models import (
    CreditNote,
    CreditNoteLineRequest,
    CreditNoteReason,
)
from billing_modules.invoicing.models import Invoice
from billing_modules.ownership.models import ResolvedShare, ShareInput
from billing_modules.payments.models import Payment, PaymentMode
from billing_services._run_types import InvoiceDiscrepancy, InvoiceRun, SweepResult
from billing_services.invoice_run_service import InvoiceRunService
from billing_services.orchestrator import BillingOrchestrator
from billing_services.overdue_sweep import OverdueSweepService
from billing_services.reconciliation_service import BillingReconciliationService

logger = get_logger("services.engine")

T = TypeVar("T")

GENERIC_FAILURE_MESSAGE = "unable to process"


class ErrorKind(str, Enum):
    """Failure tags carried by ``EngineResult``; values are error codes."""

    # Validation
    VALIDATION = "VALIDATION_ERROR"
    MISSING_REASON = "MISSING_REASON"
    INVALID_BILLING_PERIOD = "INVALID_BILLING_PERIOD"
    INVALID_PAYMENT = "INVALID_PAYMENT"
    EMPTY_CREDIT_NOTE = "EMPTY_CREDIT_NOTE"

    # State conflicts
    STATE_CONFLICT = "STATE_CONFLICT"
    CONCURRENCY_CONFLICT = "CONCURRENCY_CONFLICT"
    INVALID_INVOICE_STATE = "INVALID_INVOICE_STATE"
    INVALID_PAYMENT_STATE = "INVALID_PAYMENT_STATE"
    INVALID_CREDIT_NOTE_STATE = "INVALID_CREDIT_NOTE_STATE"
    LEASE_NOT_ACTIVE = "LEASE_NOT_ACTIVE"
    DUPLICATE_INVOICE = "DUPLICATE_INVOICE"
    IMMUTABILITY_VIOLATION = "IMMUTABILITY_VIOLATION"
    OPERATION_CANCELLED = "OPERATION_CANCELLED"

    # Data integrity
    DATA_INTEGRITY = "DATA_INTEGRITY_ERROR"
    LEASE_NOT_FOUND = "LEASE_NOT_FOUND"
    INVOICE_NOT_FOUND = "INVOICE_NOT_FOUND"
    PAYMENT_NOT_FOUND = "PAYMENT_NOT_FOUND"
    CREDIT_NOTE_NOT_FOUND = "CREDIT_NOTE_NOT_FOUND"
    ASSET_NOT_FOUND = "ASSET_NOT_FOUND"

    # Business rules
    BUSINESS_RULE = "BUSINESS_RULE_ERROR"
    NO_APPLICABLE_TERM = "NO_APPLICABLE_TERM"
    INVALID_SHARE_SET = "INVALID_SHARE_SET"
    LINE_NOT_ON_INVOICE = "LINE_NOT_ON_INVOICE"
    CREDIT_EXCEEDS_REMAINING = "CREDIT_EXCEEDS_REMAINING"
    PAYMENT_EXCEEDS_BALANCE = "PAYMENT_EXCEEDS_BALANCE"

    @classmethod
    def for_error(cls, exc: BillingError) -> "ErrorKind":
        try:
            return cls(exc.code)
        except ValueError:
            return _CATEGORY_FALLBACK[exc.category]


_CATEGORY_FALLBACK = {
    ErrorCategory.VALIDATION: ErrorKind.VALIDATION,
    ErrorCategory.STATE_CONFLICT: ErrorKind.STATE_CONFLICT,
    ErrorCategory.DATA_INTEGRITY: ErrorKind.DATA_INTEGRITY,
    ErrorCategory.BUSINESS_RULE: ErrorKind.BUSINESS_RULE,
    ErrorCategory.CANCELLED: ErrorKind.OPERATION_CANCELLED,
}


@dataclass(frozen=True)
class EngineResult(Generic[T]):
    """Tagged outcome of one engine operation."""

    ok: bool
    value: T | None = None
    error_kind: ErrorKind | None = None
    category: ErrorCategory | None = None
    message: str = ""
    details: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def success(cls, value: T | None = None) -> "EngineResult[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, exc: BillingError) -> "EngineResult[T]":
        if exc.category == ErrorCategory.DATA_INTEGRITY:
            message, details = GENERIC_FAILURE_MESSAGE, {}
        else:
            message, details = str(exc), exc.details()
        return cls(
            ok=False,
            error_kind=ErrorKind.for_error(exc),
            category=exc.category,
            message=message,
            details=details,
        )

    def unwrap(self) -> T:
        """The value of a successful result; raises on failure."""
        if not self.ok:
            raise RuntimeError(f"{self.error_kind.value}: {self.message}")
        return self.value


class BillingEngine:
    """
    Facade over invoicing, payments, credit notes and ownership.

    Contract:
        Thread-safe as long as ``session_factory`` is: every call uses its
        own session.  Share the engine, not sessions.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        clock: Clock | None = None,
        config: BillingConfig | None = None,
        actor_provider: ActorProvider | None = None,
        audit_sink: AuditSink | None = None,
    ):
        self._factory = session_factory
        self._clock = clock or SystemClock()
        self._config = config or get_billing_config()
        self._actors = actor_provider or FixedActorProvider()
        self._audit = audit_sink or DatabaseAuditSink(self._clock)
        register_immutability_listeners()

    @property
    def config(self) -> BillingConfig:
        return self._config

    # -------------------------------------------------------------------------
    # Invoices
    # -------------------------------------------------------------------------

    def generate_invoice(
        self,
        lease_id: UUID,
        period_start: date,
        period_end: date,
        regenerate: bool = False,
        expected_version: bytes | None = None,
        cancel: threading.Event | None = None,
    ) -> EngineResult[UUID]:
        """Draft (or, with ``regenerate``, rebuild) the invoice for a period."""
        return self._execute(
            "generate_invoice",
            lambda o: o.invoices.create_draft(
                lease_id,
                period_start,
                period_end,
                regenerate=regenerate,
                expected_version=expected_version,
            ).id,
            cancel,
            lease_id=lease_id,
        )

    def issue_invoice(
        self,
        invoice_id: UUID,
        expected_version: bytes | None = None,
        cancel: threading.Event | None = None,
    ) -> EngineResult[Invoice]:
        return self._execute(
            "issue_invoice",
            lambda o: o.invoices.issue(invoice_id, expected_version),
            cancel,
            invoice_id=invoice_id,
        )

    def void_invoice(
        self,
        invoice_id: UUID,
        reason: str,
        expected_version: bytes | None = None,
        cancel: threading.Event | None = None,
    ) -> EngineResult[Invoice]:
        return self._execute(
            "void_invoice",
            lambda o: o.invoices.void(invoice_id, reason, expected_version),
            cancel,
            invoice_id=invoice_id,
        )

    def discard_draft(
        self,
        invoice_id: UUID,
        expected_version: bytes | None = None,
        cancel: threading.Event | None = None,
    ) -> EngineResult[None]:
        return self._execute(
            "discard_draft",
            lambda o: o.invoices.discard_draft(invoice_id, expected_version),
            cancel,
            invoice_id=invoice_id,
        )

    def recompute_invoice(
        self,
        invoice_id: UUID,
        cancel: threading.Event | None = None,
    ) -> EngineResult[Invoice]:
        return self._execute(
            "recompute_invoice",
            lambda o: o.invoices.recompute(invoice_id),
            cancel,
            invoice_id=invoice_id,
        )

    def get_invoice(self, invoice_id: UUID) -> EngineResult[Invoice]:
        return self._execute(
            "get_invoice",
            lambda o: o.invoices.get_invoice(invoice_id),
            invoice_id=invoice_id,
        )

    # -------------------------------------------------------------------------
    # Payments
    # -------------------------------------------------------------------------

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
        cancel: threading.Event | None = None,
    ) -> EngineResult[UUID]:
        return self._execute(
            "record_payment",
            lambda o: o.payments.record_payment(
                invoice_id,
                amount,
                payment_mode,
                payment_date_utc,
                transaction_reference=transaction_reference,
                payer_name=payer_name,
                notes=notes,
                submitted_by_payer=submitted_by_payer,
            ).id,
            cancel,
            invoice_id=invoice_id,
        )

    def confirm_payment(
        self,
        payment_id: UUID,
        notes: str | None = None,
        expected_version: bytes | None = None,
        cancel: threading.Event | None = None,
    ) -> EngineResult[Payment]:
        return self._execute(
            "confirm_payment",
            lambda o: o.payments.confirm_payment(payment_id, notes, expected_version),
            cancel,
            payment_id=payment_id,
        )

    def reject_payment(
        self,
        payment_id: UUID,
        reason: str,
        expected_version: bytes | None = None,
        cancel: threading.Event | None = None,
    ) -> EngineResult[Payment]:
        return self._execute(
            "reject_payment",
            lambda o: o.payments.reject_payment(payment_id, reason, expected_version),
            cancel,
            payment_id=payment_id,
        )

    def get_payment(self, payment_id: UUID) -> EngineResult[Payment]:
        return self._execute(
            "get_payment",
            lambda o: o.payments.get_payment(payment_id),
            payment_id=payment_id,
        )

    # -------------------------------------------------------------------------
    # Credit notes
    # -------------------------------------------------------------------------

    def create_credit_note(
        self,
        invoice_id: UUID,
        reason: CreditNoteReason,
        lines: Sequence[CreditNoteLineRequest],
        credit_note_date: date,
        notes: str | None = None,
        cancel: threading.Event | None = None,
    ) -> EngineResult[UUID]:
        return self._execute(
            "create_credit_note",
            lambda o: o.credit_notes.create_credit_note(
                invoice_id, reason, lines, credit_note_date, notes=notes
            ).id,
            cancel,
            invoice_id=invoice_id,
        )

    def apply_credit_note(
        self,
        credit_note_id: UUID,
        expected_version: bytes | None = None,
        cancel: threading.Event | None = None,
    ) -> EngineResult[CreditNote]:
        return self._execute(
            "apply_credit_note",
            lambda o: o.credit_notes.apply(credit_note_id, expected_version),
            cancel,
        )

    def void_credit_note(
        self,
        credit_note_id: UUID,
        reason: str,
        expected_version: bytes | None = None,
        cancel: threading.Event | None = None,
    ) -> EngineResult[CreditNote]:
        return self._execute(
            "void_credit_note",
            lambda o: o.credit_notes.void(credit_note_id, reason, expected_version),
            cancel,
        )

    def get_credit_note(self, credit_note_id: UUID) -> EngineResult[CreditNote]:
        return self._execute(
            "get_credit_note",
            lambda o: o.credit_notes.get_credit_note(credit_note_id),
        )

    # -------------------------------------------------------------------------
    # Ownership
    # -------------------------------------------------------------------------

    def set_ownership_shares(
        self,
        asset_id: UUID,
        shares: Sequence[ShareInput],
        effective_from: datetime,
        expected_version: bytes | None = None,
        cancel: threading.Event | None = None,
    ) -> EngineResult[None]:
        def _set(o: BillingOrchestrator) -> None:
            o.ownership.set_shares(asset_id, shares, effective_from, expected_version)

        return self._execute("set_ownership_shares", _set, cancel)

    def resolve_ownership(
        self,
        asset_id: UUID,
        as_of: date | datetime,
    ) -> EngineResult[list[ResolvedShare]]:
        return self._execute(
            "resolve_ownership",
            lambda o: o.ownership.resolve_shares(asset_id, as_of),
        )

    # -------------------------------------------------------------------------
    # Batch operations
    # -------------------------------------------------------------------------

    def run_invoices(
        self,
        org_id: UUID,
        period_start: date,
        period_end: date,
        cancel: threading.Event | None = None,
    ) -> EngineResult[InvoiceRun]:
        """Draft invoices for every active lease; one transaction per lease."""
        service = InvoiceRunService(
            self._factory,
            self._clock,
            self._config,
            audit_sink=self._audit,
            actor_provider=self._actors,
        )
        return self._call(
            "run_invoices",
            lambda: service.run(org_id, period_start, period_end, cancel=cancel),
            cancel,
        )

    def sweep_overdue(
        self,
        org_id: UUID,
        as_of: date | None = None,
        cancel: threading.Event | None = None,
    ) -> EngineResult[SweepResult]:
        service = OverdueSweepService(
            self._factory,
            self._clock,
            self._config,
            audit_sink=self._audit,
            actor_provider=self._actors,
        )
        return self._call("sweep_overdue", lambda: service.sweep(org_id, as_of), cancel)

    def find_discrepancies(
        self,
        org_id: UUID | None = None,
    ) -> EngineResult[list[InvoiceDiscrepancy]]:
        return self._execute(
            "find_discrepancies",
            lambda o: self._reconciliation(o).find_discrepancies(org_id),
        )

    def repair_invoice(
        self,
        invoice_id: UUID,
        cancel: threading.Event | None = None,
    ) -> EngineResult[Invoice]:
        return self._execute(
            "repair_invoice",
            lambda o: self._reconciliation(o).repair(invoice_id),
            cancel,
            invoice_id=invoice_id,
        )

    # -------------------------------------------------------------------------
    # Transaction boundary
    # -------------------------------------------------------------------------

    def _orchestrator(self, session: Session) -> BillingOrchestrator:
        return BillingOrchestrator(
            session,
            self._clock,
            self._config,
            audit_sink=self._audit,
            actor_provider=self._actors,
        )

    def _reconciliation(self, o: BillingOrchestrator) -> BillingReconciliationService:
        return BillingReconciliationService(o.session, o.invoices, self._config)

    def _execute(
        self,
        operation: str,
        work: Callable[[BillingOrchestrator], T],
        cancel: threading.Event | None = None,
        **context: Any,
    ) -> EngineResult[T]:
        """Run ``work`` in a fresh session and commit once."""
        with self._bind(operation, **context):
            session = self._factory()
            try:
                _check_cancel(cancel, operation)
                value = work(self._orchestrator(session))
                _check_cancel(cancel, operation)
                session.commit()
            except BillingError as exc:
                session.rollback()
                return self._failed(operation, exc)
            except Exception:
                session.rollback()
                logger.exception("billing_operation_crashed", extra={"operation": operation})
                raise
            finally:
                session.close()

            logger.debug("billing_operation_committed", extra={"operation": operation})
            return EngineResult.success(value)

    def _call(
        self,
        operation: str,
        work: Callable[[], T],
        cancel: threading.Event | None = None,
    ) -> EngineResult[T]:
        """Run a batch service that manages its own transactions."""
        with self._bind(operation):
            try:
                _check_cancel(cancel, operation)
                return EngineResult.success(work())
            except BillingError as exc:
                return self._failed(operation, exc)

    def _bind(self, operation: str, **context: Any):
        return LogContext.bind(
            correlation_id=LogContext.get_all().get("correlation_id") or uuid4(),
            actor_id=self._actors.current_actor(),
            operation=operation,
            **context,
        )

    def _failed(self, operation: str, exc: BillingError) -> EngineResult[Any]:
        extra = {
            "operation": operation,
            "error_code": exc.code,
            "category": exc.category.value,
            "error_details": {k: str(v) for k, v in exc.details().items()},
        }
        if exc.category == ErrorCategory.DATA_INTEGRITY:
            logger.error("billing_operation_failed", extra=extra)
        else:
            logger.info("billing_operation_rejected", extra=extra)
        return EngineResult.failure(exc)


def _check_cancel(cancel: threading.Event | None, operation: str) -> None:
    if cancel is not None and cancel.is_set():
        raise OperationCancelledError(operation)
