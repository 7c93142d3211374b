"""
SQLAlchemy ORM persistence models for invoice runs.

Responsibility
--------------
``InvoiceRunModel`` records each batch invoice generation pass for an
organization and billing period; ``InvoiceRunItemModel`` records the
outcome for every lease the pass touched.

Architecture position
---------------------
**Services layer** -- ORM models consumed by ``InvoiceRunService``.
Inherits from ``TrackedBase`` (kernel db layer).

Invariants enforced
-------------------
* ``run_number`` is unique.
* Enum fields are stored as strings.
* A run's counters always equal the number of its items by outcome.
"""

from datetime import date, datetime
from uuid import UUID

from sqlalchemy import ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from billing_kernel.db.base import TrackedBase


class InvoiceRunModel(TrackedBase):
    """
    Auditable record of one invoice run.

    Maps to the ``InvoiceRun`` DTO in ``billing_services._run_types``.
    Lifecycle: IN_PROGRESS -> COMPLETED / COMPLETED_WITH_ERRORS / FAILED.
    """

    __tablename__ = "invoice_runs"

    __table_args__ = (
        UniqueConstraint("run_number", name="uq_invoice_runs_run_number"),
        Index("idx_invoice_runs_org_period", "org_id", "billing_period_start"),
        Index("idx_invoice_runs_status", "status"),
    )

    org_id: Mapped[UUID] = mapped_column(nullable=False)
    run_number: Mapped[str] = mapped_column(String(50), nullable=False)
    billing_period_start: Mapped[date] = mapped_column(nullable=False)
    billing_period_end: Mapped[date] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="in_progress")
    started_at: Mapped[datetime] = mapped_column(nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    total_leases: Mapped[int] = mapped_column(Integer, default=0)
    success_count: Mapped[int] = mapped_column(Integer, default=0)
    failure_count: Mapped[int] = mapped_column(Integer, default=0)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    items: Mapped[list["InvoiceRunItemModel"]] = relationship(
        back_populates="run",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="InvoiceRunItemModel.processed_at",
    )

    def to_dto(self):
        from billing_services._run_types import InvoiceRun, InvoiceRunStatus

        return InvoiceRun(
            id=self.id,
            org_id=self.org_id,
            run_number=self.run_number,
            billing_period_start=self.billing_period_start,
            billing_period_end=self.billing_period_end,
            status=InvoiceRunStatus(self.status),
            started_at=self.started_at,
            total_leases=self.total_leases,
            success_count=self.success_count,
            failure_count=self.failure_count,
            completed_at=self.completed_at,
            error_message=self.error_message,
            notes=self.notes,
            items=tuple(i.to_dto() for i in self.items),
        )

    def __repr__(self) -> str:
        return f"<InvoiceRunModel {self.run_number} [{self.status}]>"


class InvoiceRunItemModel(TrackedBase):
    """Per-lease outcome within an invoice run."""

    __tablename__ = "invoice_run_items"

    __table_args__ = (
        UniqueConstraint("run_id", "lease_id", name="uq_invoice_run_items_lease"),
    )

    run_id: Mapped[UUID] = mapped_column(ForeignKey("invoice_runs.id"), nullable=False)
    lease_id: Mapped[UUID] = mapped_column(nullable=False)
    invoice_id: Mapped[UUID | None] = mapped_column(nullable=True)
    is_success: Mapped[bool] = mapped_column(default=False)
    error_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    processed_at: Mapped[datetime] = mapped_column(nullable=False)

    run: Mapped["InvoiceRunModel"] = relationship(back_populates="items")

    def to_dto(self):
        from billing_services._run_types import InvoiceRunItem

        return InvoiceRunItem(
            id=self.id,
            lease_id=self.lease_id,
            is_success=self.is_success,
            processed_at=self.processed_at,
            invoice_id=self.invoice_id,
            error_code=self.error_code,
            error_message=self.error_message,
        )
