"""
Invoicing ORM Models (``billing_modules.invoicing.orm``).

Responsibility
--------------
SQLAlchemy persistence for invoices, invoice lines and per-owner line
allocations.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``billing_kernel.db`` and
sibling ``models.py``.

Guarantees
----------
* invoice_number is unique (uq_invoices_invoice_number).
* At most one non-voided invoice per (lease, billing period): a partial
  unique index excludes voided rows.
* ``version`` changes on every UPDATE; SQLAlchemy compares it at flush
  time and raises StaleDataError when another transaction got there
  first.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Boolean,
    ForeignKey,
    Index,
    Integer,
    LargeBinary,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from billing_kernel.db.base import TrackedBase
from billing_kernel.db.types import new_version_token

_NOT_VOIDED = text("status <> 'voided'")


class InvoiceModel(TrackedBase):
    """
    ORM model for lease invoices.

    Lines are stored in a child table via the ``lines`` relationship and
    are deleted with a discarded draft.
    """

    __tablename__ = "invoices"

    __table_args__ = (
        UniqueConstraint("invoice_number", name="uq_invoices_invoice_number"),
        Index(
            "uq_invoices_lease_period_open",
            "lease_id",
            "billing_period_start",
            "billing_period_end",
            unique=True,
            postgresql_where=_NOT_VOIDED,
            sqlite_where=_NOT_VOIDED,
        ),
        Index("idx_invoices_org_id", "org_id"),
        Index("idx_invoices_status", "status"),
        Index("idx_invoices_due_date", "due_date"),
    )

    org_id: Mapped[UUID] = mapped_column(nullable=False)
    lease_id: Mapped[UUID] = mapped_column(ForeignKey("leases.id"), nullable=False)
    invoice_number: Mapped[str] = mapped_column(String(50), nullable=False)
    billing_period_start: Mapped[date] = mapped_column(nullable=False)
    billing_period_end: Mapped[date] = mapped_column(nullable=False)
    invoice_date: Mapped[date] = mapped_column(nullable=False)
    due_date: Mapped[date] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="draft", nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(nullable=False)
    paid_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    credited_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    balance_amount: Mapped[Decimal] = mapped_column(nullable=False)
    issued_at: Mapped[datetime | None] = mapped_column(nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(nullable=True)
    voided_at: Mapped[datetime | None] = mapped_column(nullable=True)
    void_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    payment_instructions: Mapped[str | None] = mapped_column(Text, nullable=True)
    version: Mapped[bytes] = mapped_column(LargeBinary(16), nullable=False)

    __mapper_args__ = {
        "version_id_col": version,
        "version_id_generator": new_version_token,
    }

    lines: Mapped[list["InvoiceLineModel"]] = relationship(
        back_populates="invoice",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="InvoiceLineModel.line_number",
    )

    def to_dto(self):
        """Convert ORM model to frozen dataclass."""
        from billing_modules.invoicing.models import Invoice, InvoiceStatus

        return Invoice(
            id=self.id,
            org_id=self.org_id,
            lease_id=self.lease_id,
            invoice_number=self.invoice_number,
            billing_period_start=self.billing_period_start,
            billing_period_end=self.billing_period_end,
            invoice_date=self.invoice_date,
            due_date=self.due_date,
            status=InvoiceStatus(self.status),
            subtotal=self.subtotal,
            tax_amount=self.tax_amount,
            total_amount=self.total_amount,
            paid_amount=self.paid_amount,
            credited_amount=self.credited_amount,
            balance_amount=self.balance_amount,
            version=self.version,
            issued_at=self.issued_at,
            paid_at=self.paid_at,
            voided_at=self.voided_at,
            void_reason=self.void_reason,
            payment_instructions=self.payment_instructions,
            lines=tuple(line.to_dto() for line in self.lines),
        )

    def __repr__(self) -> str:
        return f"<InvoiceModel {self.invoice_number}: {self.status}>"


class InvoiceLineModel(TrackedBase):
    """
    ORM model for invoice lines.

    Immutable once the parent invoice has left draft
    (see billing_modules._immutability).
    """

    __tablename__ = "invoice_lines"

    __table_args__ = (
        UniqueConstraint("invoice_id", "line_number", name="uq_invoice_lines_invoice_line_number"),
        Index("idx_invoice_lines_invoice_id", "invoice_id"),
    )

    invoice_id: Mapped[UUID] = mapped_column(ForeignKey("invoices.id"), nullable=False)
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    charge_code: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    period_start: Mapped[date | None] = mapped_column(nullable=True)
    period_end: Mapped[date | None] = mapped_column(nullable=True)
    quantity: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(nullable=False)
    is_prorated: Mapped[bool] = mapped_column(Boolean, default=False)
    lease_term_id: Mapped[UUID | None] = mapped_column(nullable=True)
    recurring_charge_id: Mapped[UUID | None] = mapped_column(nullable=True)

    invoice: Mapped["InvoiceModel"] = relationship(back_populates="lines")

    allocations: Mapped[list["InvoiceLineAllocationModel"]] = relationship(
        back_populates="line",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def to_dto(self):
        """Convert ORM model to frozen dataclass."""
        from billing_modules.invoicing.models import InvoiceLine

        return InvoiceLine(
            id=self.id,
            invoice_id=self.invoice_id,
            line_number=self.line_number,
            charge_code=self.charge_code,
            description=self.description,
            quantity=self.quantity,
            unit_price=self.unit_price,
            amount=self.amount,
            tax_amount=self.tax_amount,
            total_amount=self.total_amount,
            period_start=self.period_start,
            period_end=self.period_end,
            is_prorated=self.is_prorated,
            lease_term_id=self.lease_term_id,
            allocations=tuple(
                a.to_dto() for a in sorted(self.allocations, key=lambda a: str(a.owner_id))
            ),
        )

    @classmethod
    def from_line_item(cls, item, created_by: str) -> "InvoiceLineModel":
        """Create a line from a charge accumulator ``LineItem``."""
        return cls(
            line_number=item.line_number,
            charge_code=item.charge_code,
            description=item.description,
            period_start=item.period_start,
            period_end=item.period_end,
            quantity=item.quantity,
            unit_price=item.unit_price,
            amount=item.amount,
            tax_amount=item.tax_amount,
            total_amount=item.total_amount,
            is_prorated=item.is_prorated,
            lease_term_id=item.lease_term_id,
            recurring_charge_id=item.recurring_charge_id,
            allocations=[
                InvoiceLineAllocationModel(
                    owner_id=a.owner_id,
                    share_percent=a.share_percent,
                    amount=a.amount,
                    created_by=created_by,
                )
                for a in item.allocations
            ],
            created_by=created_by,
        )

    def __repr__(self) -> str:
        return f"<InvoiceLineModel {self.line_number}: {self.charge_code} {self.total_amount}>"


class InvoiceLineAllocationModel(TrackedBase):
    """ORM model for one owner's part of an invoice line."""

    __tablename__ = "invoice_line_allocations"

    __table_args__ = (
        UniqueConstraint("invoice_line_id", "owner_id", name="uq_invoice_line_allocations_owner"),
    )

    invoice_line_id: Mapped[UUID] = mapped_column(
        ForeignKey("invoice_lines.id"), nullable=False
    )
    owner_id: Mapped[UUID] = mapped_column(nullable=False)
    share_percent: Mapped[Decimal] = mapped_column(Numeric(9, 4), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)

    line: Mapped["InvoiceLineModel"] = relationship(back_populates="allocations")

    def to_dto(self):
        """Convert ORM model to frozen dataclass."""
        from billing_modules.invoicing.models import LineAllocation

        return LineAllocation(
            owner_id=self.owner_id,
            share_percent=self.share_percent,
            amount=self.amount,
        )
