"""
InvoiceRunService -- Batch invoice generation for one organization.

Contract:
    ``run()`` drafts an invoice for every active lease of the organization
    and billing period.  Each lease is generated in its own transaction, so
    one lease failing (duplicate period, no applicable term) never rolls
    back another lease's invoice.

Architecture: billing_services.  Builds a ``BillingOrchestrator`` per lease
    transaction and records the outcome in ``InvoiceRunModel``.

Invariants enforced:
    - One transaction per lease; the run record is written in transactions
      of its own before and after the lease loop.
    - success_count + failure_count == total_leases.
    - Status: COMPLETED when nothing failed, FAILED when nothing succeeded,
      COMPLETED_WITH_ERRORS otherwise.  An organization with no active
      leases completes with a note.
"""

from __future__ import annotations

import threading
from datetime import date
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from billing_config.schema import BillingConfig
from billing_kernel.db.engine import session_scope
from billing_kernel.domain.actor import ActorProvider, FixedActorProvider
from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.exceptions import BillingError, InvalidBillingPeriodError, OperationCancelledError
from billing_kernel.logging_config import LogContext, get_logger
from billing_kernel.services.audit_sink import AuditSink, NullAuditSink
from billing_modules.leases.models import LeaseStatus
from billing_modules.leases.orm import LeaseModel
from billing_services._run_types import InvoiceRun, InvoiceRunStatus
from billing_services.orchestrator import BillingOrchestrator
from billing_services.orm import InvoiceRunItemModel, InvoiceRunModel

logger = get_logger("services.invoice_run")

# Number of per-lease errors kept in the run's error summary
MAX_REPORTED_ERRORS = 10

NO_ACTIVE_LEASES = "No active leases found"
ALL_FAILED = "All invoices failed to generate"


def new_run_number(period_start: date) -> str:
    """RUN-<yyyymm>-<8 hex>, e.g. RUN-202601-3FA2C19B."""
    return f"RUN-{period_start:%Y%m}-{uuid4().hex[:8].upper()}"


class InvoiceRunService:
    """Drafts invoices for every active lease of an organization."""

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
        self._audit = audit_sink or NullAuditSink()
        self._actors = actor_provider or FixedActorProvider()

    def get_run(self, run_id: UUID) -> InvoiceRun | None:
        with session_scope(self._factory) as session:
            run = session.get(InvoiceRunModel, run_id)
            return run.to_dto() if run is not None else None

    def run(
        self,
        org_id: UUID,
        period_start: date,
        period_end: date,
        cancel: threading.Event | None = None,
    ) -> InvoiceRun:
        """
        Generate drafts for the period and return the recorded run.

        When ``cancel`` is set mid-run, the remaining leases are recorded
        as failed with ``OPERATION_CANCELLED``; drafts already committed
        stay.
        """
        if period_end < period_start:
            raise InvalidBillingPeriodError(period_start, period_end)

        actor = self._actors.current_actor()
        run_id = self._start_run(org_id, period_start, period_end, actor)

        with session_scope(self._factory) as session:
            lease_ids = list(
                session.execute(
                    select(LeaseModel.id)
                    .where(LeaseModel.org_id == org_id)
                    .where(LeaseModel.status == LeaseStatus.ACTIVE.value)
                    .order_by(LeaseModel.lease_number)
                ).scalars()
            )

        items: list[InvoiceRunItemModel] = []
        for lease_id in lease_ids:
            if cancel is not None and cancel.is_set():
                exc = OperationCancelledError("invoice_run")
                items.append(self._failed_item(lease_id, exc.code, str(exc), actor))
                continue
            items.append(self._generate_one(lease_id, period_start, period_end, actor))

        return self._finish_run(run_id, items, actor)

    # -------------------------------------------------------------------------
    # Per-lease generation
    # -------------------------------------------------------------------------

    def _generate_one(
        self,
        lease_id: UUID,
        period_start: date,
        period_end: date,
        actor: str,
    ) -> InvoiceRunItemModel:
        with LogContext.bind(lease_id=lease_id):
            try:
                with session_scope(self._factory) as session:
                    orchestrator = BillingOrchestrator(
                        session,
                        self._clock,
                        self._config,
                        audit_sink=self._audit,
                        actor_provider=self._actors,
                    )
                    invoice = orchestrator.invoices.create_draft(
                        lease_id, period_start, period_end
                    )
            except BillingError as exc:
                logger.warning(
                    "invoice_run_lease_failed",
                    extra={"lease_id": str(lease_id), "error_code": exc.code, "error": str(exc)},
                )
                return self._failed_item(lease_id, exc.code, str(exc), actor)
            except Exception as exc:
                logger.exception(
                    "invoice_run_lease_crashed",
                    extra={"lease_id": str(lease_id)},
                )
                return self._failed_item(lease_id, "UNHANDLED_EXCEPTION", str(exc), actor)

        return InvoiceRunItemModel(
            lease_id=lease_id,
            invoice_id=invoice.id,
            is_success=True,
            processed_at=self._clock.now(),
            created_by=actor,
        )

    def _failed_item(
        self,
        lease_id: UUID,
        code: str,
        message: str,
        actor: str,
    ) -> InvoiceRunItemModel:
        return InvoiceRunItemModel(
            lease_id=lease_id,
            is_success=False,
            error_code=code,
            error_message=message,
            processed_at=self._clock.now(),
            created_by=actor,
        )

    # -------------------------------------------------------------------------
    # Run record
    # -------------------------------------------------------------------------

    def _start_run(
        self,
        org_id: UUID,
        period_start: date,
        period_end: date,
        actor: str,
    ) -> UUID:
        with session_scope(self._factory) as session:
            run = InvoiceRunModel(
                org_id=org_id,
                run_number=new_run_number(period_start),
                billing_period_start=period_start,
                billing_period_end=period_end,
                status=InvoiceRunStatus.IN_PROGRESS.value,
                started_at=self._clock.now(),
                created_by=actor,
            )
            session.add(run)
            session.flush()
            logger.info(
                "invoice_run_started",
                extra={
                    "run_id": str(run.id),
                    "run_number": run.run_number,
                    "org_id": str(org_id),
                    "period_start": period_start.isoformat(),
                    "period_end": period_end.isoformat(),
                },
            )
            return run.id

    def _finish_run(
        self,
        run_id: UUID,
        items: list[InvoiceRunItemModel],
        actor: str,
    ) -> InvoiceRun:
        succeeded = sum(1 for i in items if i.is_success)
        failed = len(items) - succeeded

        with session_scope(self._factory) as session:
            run = session.get(InvoiceRunModel, run_id)
            run.items.extend(items)
            run.total_leases = len(items)
            run.success_count = succeeded
            run.failure_count = failed
            run.completed_at = self._clock.now()
            run.updated_by = actor

            if not items:
                run.status = InvoiceRunStatus.COMPLETED.value
                run.notes = NO_ACTIVE_LEASES
            elif failed == 0:
                run.status = InvoiceRunStatus.COMPLETED.value
            elif succeeded == 0:
                run.status = InvoiceRunStatus.FAILED.value
                run.error_message = ALL_FAILED
            else:
                run.status = InvoiceRunStatus.COMPLETED_WITH_ERRORS.value
                run.error_message = _error_summary(items)
            session.flush()
            dto = run.to_dto()

        log = logger.warning if failed else logger.info
        log(
            "invoice_run_completed",
            extra={
                "run_id": str(run_id),
                "run_number": dto.run_number,
                "status": dto.status.value,
                "total_leases": dto.total_leases,
                "success_count": succeeded,
                "failure_count": failed,
            },
        )
        return dto


def _error_summary(items: list[InvoiceRunItemModel]) -> str:
    errors = [i.error_message or i.error_code or "" for i in items if not i.is_success]
    return "; ".join(errors[:MAX_REPORTED_ERRORS])
