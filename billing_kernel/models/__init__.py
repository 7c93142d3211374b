"""Kernel ORM models shared by every billing module."""

from billing_kernel.models.audit_record import AuditAction, AuditRecord
from billing_kernel.services.sequence_service import SequenceCounter

__all__ = [
    "AuditAction",
    "AuditRecord",
    "SequenceCounter",
]
