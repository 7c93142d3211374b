"""
OverdueSweepService -- Moves past-due invoices to OVERDUE.

Contract:
    ``sweep(org_id, as_of)`` recomputes every ISSUED or PARTIALLY_PAID
    invoice of the organization whose due date is before ``as_of``, with
    the overdue flag raised.  An invoice that still has a positive balance
    becomes OVERDUE; one that turns out settled becomes PAID.  The sweep is
    the only path that marks an invoice overdue.  Each invoice is
    recomputed in its own transaction; a failure is logged and counted,
    and the sweep moves on.

Architecture: billing_services.  The external scheduler calls this once a
    day; the engine has no timer of its own.
"""

from __future__ import annotations

from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from billing_config.schema import BillingConfig
from billing_kernel.db.engine import session_scope
from billing_kernel.domain.actor import ActorProvider
from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.exceptions import BillingError
from billing_kernel.logging_config import LogContext, get_logger
from billing_kernel.services.audit_sink import AuditSink
from billing_modules.invoicing.models import InvoiceStatus
from billing_modules.invoicing.orm import InvoiceModel
from billing_services._run_types import SweepResult
from billing_services.orchestrator import BillingOrchestrator

logger = get_logger("services.overdue_sweep")

SWEPT_STATUSES = (InvoiceStatus.ISSUED.value, InvoiceStatus.PARTIALLY_PAID.value)


class OverdueSweepService:
    """Daily overdue detection."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        clock: Clock | None = None,
        config: BillingConfig | None = None,
        audit_sink: AuditSink | None = None,
        actor_provider: ActorProvider | None = None,
    ):
        self._factory = session_factory
        self._clock = clock or SystemClock()
        self._config = config or BillingConfig()
        self._audit = audit_sink
        self._actors = actor_provider

    def candidates(self, org_id: UUID, as_of: date) -> list[UUID]:
        """Invoices the sweep would look at, oldest due date first."""
        with session_scope(self._factory) as session:
            return list(
                session.execute(
                    select(InvoiceModel.id)
                    .where(InvoiceModel.org_id == org_id)
                    .where(InvoiceModel.status.in_(SWEPT_STATUSES))
                    .where(InvoiceModel.due_date < as_of)
                    .order_by(InvoiceModel.due_date, InvoiceModel.invoice_number)
                ).scalars()
            )

    def sweep(self, org_id: UUID, as_of: date | None = None) -> SweepResult:
        as_of = as_of or self._clock.today()
        invoice_ids = self.candidates(org_id, as_of)

        marked: list[UUID] = []
        failures: list[tuple[UUID, str]] = []
        for invoice_id in invoice_ids:
            with LogContext.bind(invoice_id=invoice_id):
                try:
                    with session_scope(self._factory) as session:
                        orchestrator = BillingOrchestrator(
                            session,
                            self._clock,
                            self._config,
                            audit_sink=self._audit,
                            actor_provider=self._actors,
                        )
                        invoice = orchestrator.invoices.recompute(
                            invoice_id, overdue_as_of=as_of
                        )
                except BillingError as exc:
                    logger.warning(
                        "overdue_sweep_invoice_failed",
                        extra={"invoice_id": str(invoice_id), "error_code": exc.code},
                    )
                    failures.append((invoice_id, exc.code))
                    continue
            if invoice.status == InvoiceStatus.OVERDUE:
                marked.append(invoice_id)

        logger.info(
            "overdue_sweep_completed",
            extra={
                "org_id": str(org_id),
                "as_of": as_of.isoformat(),
                "examined": len(invoice_ids),
                "marked_overdue": len(marked),
                "failures": len(failures),
            },
        )
        return SweepResult(
            org_id=org_id,
            as_of=as_of,
            examined=len(invoice_ids),
            marked_overdue=tuple(marked),
            failures=tuple(failures),
        )
