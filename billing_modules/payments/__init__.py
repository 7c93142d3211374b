"""Payments module -- payment recording and confirmation workflow."""

from billing_modules.payments.models import (
    AWAITING_DECISION,
    Payment,
    PaymentMode,
    PaymentStatus,
    PaymentStatusChange,
)
from billing_modules.payments.workflows import PAYMENT_WORKFLOW

__all__ = [
    "AWAITING_DECISION",
    "PAYMENT_WORKFLOW",
    "Payment",
    "PaymentMode",
    "PaymentStatus",
    "PaymentStatusChange",
]
