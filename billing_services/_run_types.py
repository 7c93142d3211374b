"""
billing_services._run_types -- DTOs for batch billing operations.

Responsibility:
    Frozen dataclasses produced by the invoice run, the overdue sweep and
    the reconciliation check.

Architecture position:
    Services -- these types live here because the services that produce
    them live here.  They have no kernel dependency.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID


class InvoiceRunStatus(Enum):
    """Invoice run lifecycle."""
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    FAILED = "failed"


@dataclass(frozen=True)
class InvoiceRunItem:
    """Outcome of one lease within a run."""
    id: UUID
    lease_id: UUID
    is_success: bool
    processed_at: datetime
    invoice_id: UUID | None = None
    error_code: str | None = None
    error_message: str | None = None


@dataclass(frozen=True)
class InvoiceRun:
    """One invoice generation pass over an organization's active leases."""
    id: UUID
    org_id: UUID
    run_number: str
    billing_period_start: date
    billing_period_end: date
    status: InvoiceRunStatus
    started_at: datetime
    total_leases: int = 0
    success_count: int = 0
    failure_count: int = 0
    completed_at: datetime | None = None
    error_message: str | None = None
    notes: str | None = None
    items: tuple[InvoiceRunItem, ...] = field(default_factory=tuple)

    @property
    def invoice_ids(self) -> tuple[UUID, ...]:
        return tuple(i.invoice_id for i in self.items if i.invoice_id is not None)


@dataclass(frozen=True)
class SweepResult:
    """Outcome of an overdue sweep."""
    org_id: UUID
    as_of: date
    examined: int
    marked_overdue: tuple[UUID, ...] = ()
    failures: tuple[tuple[UUID, str], ...] = ()

    @property
    def failure_count(self) -> int:
        return len(self.failures)


@dataclass(frozen=True)
class InvoiceDiscrepancy:
    """Stored invoice totals that disagree with payment and credit history."""
    invoice_id: UUID
    invoice_number: str
    stored_paid: Decimal
    expected_paid: Decimal
    stored_credited: Decimal
    expected_credited: Decimal
    stored_balance: Decimal
    expected_balance: Decimal
    stored_status: str
    expected_status: str

    @property
    def fields(self) -> tuple[str, ...]:
        out = []
        if self.stored_paid != self.expected_paid:
            out.append("paid_amount")
        if self.stored_credited != self.expected_credited:
            out.append("credited_amount")
        if self.stored_balance != self.expected_balance:
            out.append("balance_amount")
        if self.stored_status != self.expected_status:
            out.append("status")
        return tuple(out)
