"""
Lease ORM Models (``billing_modules.leases.orm``).

Responsibility
--------------
SQLAlchemy persistence for leases, lease terms and recurring charges.
The outer application owns the CRUD lifecycle of these rows; the billing
engine only reads them (``to_dto``).  ``from_dto`` exists for seeding.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``billing_kernel.db`` and
sibling ``models.py``.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Boolean,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from billing_kernel.db.base import TrackedBase


class LeaseModel(TrackedBase):
    """
    ORM model for leases.

    Guarantees:
        - lease_number is unique per organization.
        - terms are loaded ordered by effective_from.
    """

    __tablename__ = "leases"

    __table_args__ = (
        UniqueConstraint("org_id", "lease_number", name="uq_leases_org_lease_number"),
        Index("idx_leases_org_id", "org_id"),
        Index("idx_leases_unit_id", "unit_id"),
        Index("idx_leases_status", "status"),
    )

    org_id: Mapped[UUID] = mapped_column(nullable=False)
    unit_id: Mapped[UUID] = mapped_column(nullable=False)
    building_id: Mapped[UUID | None] = mapped_column(nullable=True)
    lease_number: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="active")
    start_date: Mapped[date] = mapped_column(nullable=False)
    end_date: Mapped[date | None] = mapped_column(nullable=True)
    payment_term_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    invoice_prefix: Mapped[str | None] = mapped_column(String(20), nullable=True)
    proration_method: Mapped[str | None] = mapped_column(String(20), nullable=True)
    payment_instructions: Mapped[str | None] = mapped_column(Text, nullable=True)

    terms: Mapped[list["LeaseTermModel"]] = relationship(
        back_populates="lease",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="LeaseTermModel.effective_from",
    )

    recurring_charges: Mapped[list["LeaseRecurringChargeModel"]] = relationship(
        back_populates="lease",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="LeaseRecurringChargeModel.start_date",
    )

    def to_dto(self):
        """Convert ORM model to frozen dataclass."""
        from billing_modules.leases.models import Lease, LeaseStatus, ProrationMethod

        return Lease(
            id=self.id,
            org_id=self.org_id,
            unit_id=self.unit_id,
            building_id=self.building_id,
            lease_number=self.lease_number,
            status=LeaseStatus(self.status),
            start_date=self.start_date,
            end_date=self.end_date,
            payment_term_days=self.payment_term_days,
            invoice_prefix=self.invoice_prefix,
            proration_method=(
                ProrationMethod(self.proration_method) if self.proration_method else None
            ),
            payment_instructions=self.payment_instructions,
            terms=tuple(t.to_dto() for t in self.terms),
            recurring_charges=tuple(c.to_dto() for c in self.recurring_charges),
        )

    @classmethod
    def from_dto(cls, dto, created_by: str) -> "LeaseModel":
        """Create ORM model (with terms and charges) from frozen dataclass."""
        return cls(
            id=dto.id,
            org_id=dto.org_id,
            unit_id=dto.unit_id,
            building_id=dto.building_id,
            lease_number=dto.lease_number,
            status=dto.status.value,
            start_date=dto.start_date,
            end_date=dto.end_date,
            payment_term_days=dto.payment_term_days,
            invoice_prefix=dto.invoice_prefix,
            proration_method=dto.proration_method.value if dto.proration_method else None,
            payment_instructions=dto.payment_instructions,
            terms=[LeaseTermModel.from_dto(t, created_by) for t in dto.terms],
            recurring_charges=[
                LeaseRecurringChargeModel.from_dto(c, created_by)
                for c in dto.recurring_charges
            ],
            created_by=created_by,
        )

    def __repr__(self) -> str:
        return f"<LeaseModel {self.lease_number}: {self.status}>"


class LeaseTermModel(TrackedBase):
    """
    ORM model for lease terms.

    Guarantees:
        - One row per dated set of financial conditions.
        - Escalation value holds a percent or an amount per escalation_type.
    """

    __tablename__ = "lease_terms"

    __table_args__ = (
        Index("idx_lease_terms_lease_id", "lease_id"),
        Index("idx_lease_terms_effective", "lease_id", "effective_from"),
    )

    lease_id: Mapped[UUID] = mapped_column(ForeignKey("leases.id"), nullable=False)
    effective_from: Mapped[date] = mapped_column(nullable=False)
    effective_to: Mapped[date | None] = mapped_column(nullable=True)
    monthly_rent: Mapped[Decimal] = mapped_column(nullable=False)
    security_deposit: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    maintenance_charge: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    other_fixed_charge: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    escalation_type: Mapped[str] = mapped_column(String(20), default="none")
    escalation_value: Mapped[Decimal | None] = mapped_column(Numeric(18, 4), nullable=True)
    escalation_every_months: Mapped[int | None] = mapped_column(Integer, nullable=True)

    lease: Mapped["LeaseModel"] = relationship(back_populates="terms")

    def to_dto(self):
        """Convert ORM model to frozen dataclass."""
        from billing_modules.leases.models import EscalationType, LeaseTerm

        return LeaseTerm(
            id=self.id,
            lease_id=self.lease_id,
            effective_from=self.effective_from,
            effective_to=self.effective_to,
            monthly_rent=self.monthly_rent,
            security_deposit=self.security_deposit,
            maintenance_charge=self.maintenance_charge,
            other_fixed_charge=self.other_fixed_charge,
            escalation_type=EscalationType(self.escalation_type),
            escalation_value=self.escalation_value,
            escalation_every_months=self.escalation_every_months,
        )

    @classmethod
    def from_dto(cls, dto, created_by: str) -> "LeaseTermModel":
        """Create ORM model from frozen dataclass."""
        return cls(
            id=dto.id,
            lease_id=dto.lease_id,
            effective_from=dto.effective_from,
            effective_to=dto.effective_to,
            monthly_rent=dto.monthly_rent,
            security_deposit=dto.security_deposit,
            maintenance_charge=dto.maintenance_charge,
            other_fixed_charge=dto.other_fixed_charge,
            escalation_type=dto.escalation_type.value,
            escalation_value=dto.escalation_value,
            escalation_every_months=dto.escalation_every_months,
            created_by=created_by,
        )

    def __repr__(self) -> str:
        return f"<LeaseTermModel {self.effective_from}..{self.effective_to}: {self.monthly_rent}>"


class LeaseRecurringChargeModel(TrackedBase):
    """ORM model for recurring charges attached to a lease."""

    __tablename__ = "lease_recurring_charges"

    __table_args__ = (
        Index("idx_lease_recurring_charges_lease_id", "lease_id"),
    )

    lease_id: Mapped[UUID] = mapped_column(ForeignKey("leases.id"), nullable=False)
    charge_code: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    frequency: Mapped[str] = mapped_column(String(20), default="monthly")
    start_date: Mapped[date] = mapped_column(nullable=False)
    end_date: Mapped[date | None] = mapped_column(nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    lease: Mapped["LeaseModel"] = relationship(back_populates="recurring_charges")

    def to_dto(self):
        """Convert ORM model to frozen dataclass."""
        from billing_modules.leases.models import ChargeFrequency, RecurringCharge

        return RecurringCharge(
            id=self.id,
            lease_id=self.lease_id,
            charge_code=self.charge_code,
            description=self.description,
            amount=self.amount,
            frequency=ChargeFrequency(self.frequency),
            start_date=self.start_date,
            end_date=self.end_date,
            is_active=self.is_active,
        )

    @classmethod
    def from_dto(cls, dto, created_by: str) -> "LeaseRecurringChargeModel":
        """Create ORM model from frozen dataclass."""
        return cls(
            id=dto.id,
            lease_id=dto.lease_id,
            charge_code=dto.charge_code,
            description=dto.description,
            amount=dto.amount,
            frequency=dto.frequency.value,
            start_date=dto.start_date,
            end_date=dto.end_date,
            is_active=dto.is_active,
            created_by=created_by,
        )
