"""
billing_services -- Package init and public API.

Responsibility:
    Orchestration over the billing modules: the ``BillingEngine`` facade
    (transaction boundary and tagged results), batch invoice runs, the
    overdue sweep and totals reconciliation.

Architecture position:
    Services -- top layer.

    Dependency direction:
        billing_services/ -> billing_modules/  (allowed)
        billing_services/ -> billing_kernel/   (allowed)
        billing_modules/  -> billing_services/ (FORBIDDEN)
        billing_kernel/   -> billing_services/ (FORBIDDEN)
"""

from billing_services._run_types import (
    InvoiceDiscrepancy,
    InvoiceRun,
    InvoiceRunItem,
    InvoiceRunStatus,
    SweepResult,
)
from billing_services.billing_engine import BillingEngine, EngineResult, ErrorKind
from billing_services.invoice_run_service import InvoiceRunService
from billing_services.orchestrator import BillingOrchestrator
from billing_services.overdue_sweep import OverdueSweepService
from billing_services.reconciliation_service import BillingReconciliationService

__all__ = [
    "BillingEngine",
    "BillingOrchestrator",
    "BillingReconciliationService",
    "EngineResult",
    "ErrorKind",
    "InvoiceDiscrepancy",
    "InvoiceRun",
    "InvoiceRunItem",
    "InvoiceRunService",
    "InvoiceRunStatus",
    "OverdueSweepService",
    "SweepResult",
]
