"""
Module: billing_kernel.models.audit_record
Responsibility: ORM persistence for before/after audit snapshots.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Audit records are append-only; the immutability listeners block any
      UPDATE or DELETE.

Audit relevance:
    Every invoice, payment, credit note and ownership transition writes one
    AuditRecord carrying the acting principal and JSON snapshots of the
    entity before and after the transition.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import Base, UTCDateTime, UUIDString


class AuditAction(str, Enum):
    """Types of auditable billing actions."""

    # Invoice lifecycle
    INVOICE_DRAFTED = "invoice_drafted"
    INVOICE_REGENERATED = "invoice_regenerated"
    INVOICE_DISCARDED = "invoice_discarded"
    INVOICE_ISSUED = "invoice_issued"
    INVOICE_VOIDED = "invoice_voided"
    INVOICE_RECOMPUTED = "invoice_recomputed"

    # Payment lifecycle
    PAYMENT_RECORDED = "payment_recorded"
    PAYMENT_CONFIRMED = "payment_confirmed"
    PAYMENT_REJECTED = "payment_rejected"

    # Credit note lifecycle
    CREDIT_NOTE_CREATED = "credit_note_created"
    CREDIT_NOTE_APPLIED = "credit_note_applied"
    CREDIT_NOTE_VOIDED = "credit_note_voided"

    # Ownership
    OWNERSHIP_CHANGED = "ownership_changed"


class AuditRecord(Base):
    """
    One before/after snapshot of an audited entity.

    Rows are append-only.
    """

    __tablename__ = "audit_records"

    __table_args__ = (
        Index("idx_audit_records_entity", "entity_type", "entity_id"),
        Index("idx_audit_records_action", "action"),
        Index("idx_audit_records_occurred", "occurred_at"),
    )

    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)

    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    action: Mapped[str] = mapped_column(String(50), nullable=False)

    actor: Mapped[str] = mapped_column(String(100), nullable=False)

    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    before: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    after: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    def __repr__(self) -> str:
        return f"<AuditRecord {self.action} on {self.entity_type}:{self.entity_id}>"
