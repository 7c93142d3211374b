"""
Payment ORM Models (``billing_modules.payments.orm``).

Responsibility
--------------
SQLAlchemy persistence for payments and their status history.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``billing_kernel.db`` and
sibling ``models.py``.

Guarantees
----------
* ``payment_status_history`` is append-only (see
  ``billing_modules._immutability``).
* ``version`` changes on every UPDATE of a payment row.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, Index, LargeBinary, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from billing_kernel.db.base import TrackedBase
from billing_kernel.db.types import new_version_token


class PaymentModel(TrackedBase):
    """ORM model for payments."""

    __tablename__ = "payments"

    __table_args__ = (
        Index("idx_payments_invoice_status", "invoice_id", "status"),
        Index("idx_payments_org_id", "org_id"),
    )

    org_id: Mapped[UUID] = mapped_column(nullable=False)
    invoice_id: Mapped[UUID] = mapped_column(ForeignKey("invoices.id"), nullable=False)
    lease_id: Mapped[UUID] = mapped_column(nullable=False)
    payment_mode: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(30), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    payment_date_utc: Mapped[datetime] = mapped_column(nullable=False)
    transaction_reference: Mapped[str | None] = mapped_column(String(200), nullable=True)
    payer_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    received_by: Mapped[str] = mapped_column(String(100), nullable=False)
    confirmed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    version: Mapped[bytes] = mapped_column(LargeBinary(16), nullable=False)

    __mapper_args__ = {
        "version_id_col": version,
        "version_id_generator": new_version_token,
    }

    history: Mapped[list["PaymentStatusHistoryModel"]] = relationship(
        back_populates="payment",
        lazy="selectin",
        order_by="PaymentStatusHistoryModel.changed_at",
    )

    def to_dto(self):
        """Convert ORM model to frozen dataclass."""
        from billing_modules.payments.models import Payment, PaymentMode, PaymentStatus

        return Payment(
            id=self.id,
            org_id=self.org_id,
            invoice_id=self.invoice_id,
            lease_id=self.lease_id,
            payment_mode=PaymentMode(self.payment_mode),
            status=PaymentStatus(self.status),
            amount=self.amount,
            payment_date_utc=self.payment_date_utc,
            received_by=self.received_by,
            version=self.version,
            transaction_reference=self.transaction_reference,
            payer_name=self.payer_name,
            notes=self.notes,
            confirmed_at=self.confirmed_at,
            rejected_at=self.rejected_at,
            rejection_reason=self.rejection_reason,
            history=tuple(h.to_dto() for h in self.history),
        )

    def __repr__(self) -> str:
        return f"<PaymentModel {self.id}: {self.amount} {self.status}>"


class PaymentStatusHistoryModel(TrackedBase):
    """Append-only record of one payment status change."""

    __tablename__ = "payment_status_history"

    __table_args__ = (
        Index("idx_payment_status_history_payment", "payment_id", "changed_at"),
    )

    payment_id: Mapped[UUID] = mapped_column(ForeignKey("payments.id"), nullable=False)
    from_status: Mapped[str | None] = mapped_column(String(30), nullable=True)
    to_status: Mapped[str] = mapped_column(String(30), nullable=False)
    changed_at: Mapped[datetime] = mapped_column(nullable=False)
    changed_by: Mapped[str] = mapped_column(String(100), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    payment: Mapped["PaymentModel"] = relationship(back_populates="history")

    def to_dto(self):
        """Convert ORM model to frozen dataclass."""
        from billing_modules.payments.models import PaymentStatus, PaymentStatusChange

        return PaymentStatusChange(
            id=self.id,
            payment_id=self.payment_id,
            from_status=PaymentStatus(self.from_status) if self.from_status else None,
            to_status=PaymentStatus(self.to_status),
            changed_at=self.changed_at,
            changed_by=self.changed_by,
            reason=self.reason,
        )
