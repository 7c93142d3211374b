"""
Credit Note ORM Models (``billing_modules.credit_notes.orm``).

Responsibility
--------------
SQLAlchemy persistence for credit notes and credit note lines.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``billing_kernel.db`` and
sibling ``models.py``.

Guarantees
----------
* credit_note_number is unique.
* Applied credit notes and their lines are immutable (see
  ``billing_modules._immutability``).
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, Index, Integer, LargeBinary, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from billing_kernel.db.base import TrackedBase
from billing_kernel.db.types import new_version_token


class CreditNoteModel(TrackedBase):
    """ORM model for credit notes."""

    __tablename__ = "credit_notes"

    __table_args__ = (
        UniqueConstraint("credit_note_number", name="uq_credit_notes_number"),
        Index("idx_credit_notes_invoice_status", "invoice_id", "status"),
    )

    org_id: Mapped[UUID] = mapped_column(nullable=False)
    invoice_id: Mapped[UUID] = mapped_column(ForeignKey("invoices.id"), nullable=False)
    credit_note_number: Mapped[str] = mapped_column(String(50), nullable=False)
    credit_note_date: Mapped[date] = mapped_column(nullable=False)
    reason: Mapped[str] = mapped_column(String(30), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="draft", nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    applied_at: Mapped[datetime | None] = mapped_column(nullable=True)
    voided_at: Mapped[datetime | None] = mapped_column(nullable=True)
    void_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    version: Mapped[bytes] = mapped_column(LargeBinary(16), nullable=False)

    __mapper_args__ = {
        "version_id_col": version,
        "version_id_generator": new_version_token,
    }

    lines: Mapped[list["CreditNoteLineModel"]] = relationship(
        back_populates="credit_note",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="CreditNoteLineModel.line_number",
    )

    def to_dto(self):
        """Convert ORM model to frozen dataclass."""
        from billing_modules.credit_notes.models import (
            CreditNote,
            CreditNoteReason,
            CreditNoteStatus,
        )

        return CreditNote(
            id=self.id,
            org_id=self.org_id,
            invoice_id=self.invoice_id,
            credit_note_number=self.credit_note_number,
            credit_note_date=self.credit_note_date,
            reason=CreditNoteReason(self.reason),
            status=CreditNoteStatus(self.status),
            total_amount=self.total_amount,
            version=self.version,
            notes=self.notes,
            applied_at=self.applied_at,
            voided_at=self.voided_at,
            void_reason=self.void_reason,
            lines=tuple(line.to_dto() for line in self.lines),
        )

    def __repr__(self) -> str:
        return f"<CreditNoteModel {self.credit_note_number}: {self.status}>"


class CreditNoteLineModel(TrackedBase):
    """ORM model for credit note lines."""

    __tablename__ = "credit_note_lines"

    __table_args__ = (
        UniqueConstraint("credit_note_id", "line_number", name="uq_credit_note_lines_number"),
        Index("idx_credit_note_lines_invoice_line", "invoice_line_id"),
    )

    credit_note_id: Mapped[UUID] = mapped_column(ForeignKey("credit_notes.id"), nullable=False)
    invoice_line_id: Mapped[UUID] = mapped_column(
        ForeignKey("invoice_lines.id"), nullable=False
    )
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    credit_note: Mapped["CreditNoteModel"] = relationship(back_populates="lines")

    def to_dto(self):
        """Convert ORM model to frozen dataclass."""
        from billing_modules.credit_notes.models import CreditNoteLine

        return CreditNoteLine(
            id=self.id,
            credit_note_id=self.credit_note_id,
            invoice_line_id=self.invoice_line_id,
            line_number=self.line_number,
            description=self.description,
            amount=self.amount,
            tax_amount=self.tax_amount,
            total_amount=self.total_amount,
            notes=self.notes,
        )
