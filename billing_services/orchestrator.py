"""
billing_services.orchestrator -- Per-session wiring of the billing modules.

Responsibility:
    Creates every module service exactly once for a session and wires them
    together: the invoice lifecycle manager is shared by the payment and
    credit note services so that both recompute invoices through it.

Architecture position:
    Services -- the only place module services are constructed and composed.
    ``BillingEngine``, ``InvoiceRunService``, ``OverdueSweepService`` and
    ``BillingReconciliationService`` build one orchestrator per transaction.

Usage:
    orchestrator = BillingOrchestrator(session, clock, config)
    orchestrator.invoices.create_draft(lease_id, start, end)
    orchestrator.payments.confirm_payment(payment_id)
"""

from __future__ import annotations

from sqlalchemy.orm import Session

from billing_config.schema import BillingConfig
from billing_kernel.domain.actor import ActorProvider, FixedActorProvider
from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.services.audit_sink import AuditSink, NullAuditSink
from billing_modules.credit_notes.service import CreditNoteService
from billing_modules.invoicing.config import InvoicingConfig
from billing_modules.invoicing.service import InvoiceLifecycleManager
from billing_modules.leases.service import ChargeAccumulator
from billing_modules.ownership.service import OwnershipResolver
from billing_modules.payments.service import PaymentService


class BillingOrchestrator:
    """
    Central factory for module services.

    Non-goals:
        - Does NOT manage transaction boundaries (caller's responsibility).
        - Does NOT own the Session lifecycle (no commit/rollback).
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: BillingConfig | None = None,
        audit_sink: AuditSink | None = None,
        actor_provider: ActorProvider | None = None,
    ) -> None:
        self.session = session
        self.clock = clock or SystemClock()
        self.config = config or BillingConfig()
        audit = audit_sink or NullAuditSink()
        actors = actor_provider or FixedActorProvider()
        invoicing = InvoicingConfig.from_billing_config(self.config)

        self.ownership = OwnershipResolver(
            session,
            tolerance=self.config.share_tolerance,
            audit_sink=audit,
            actor_provider=actors,
        )
        self.accumulator = ChargeAccumulator(
            default_proration=invoicing.default_proration,
            ownership=self.ownership if invoicing.split_by_owner else None,
            split_by_owner=invoicing.split_by_owner,
        )
        self.invoices = InvoiceLifecycleManager(
            session,
            self.clock,
            config=invoicing,
            accumulator=self.accumulator,
            audit_sink=audit,
            actor_provider=actors,
        )
        self.payments = PaymentService(
            session,
            self.clock,
            self.invoices,
            audit_sink=audit,
            actor_provider=actors,
        )
        self.credit_notes = CreditNoteService(
            session,
            self.clock,
            self.invoices,
            config=invoicing,
            audit_sink=audit,
            actor_provider=actors,
        )
