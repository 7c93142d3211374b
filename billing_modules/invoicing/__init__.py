"""
Invoicing module -- invoice lifecycle, status rule and persistence.

Import the lifecycle service from ``billing_modules.invoicing.service``
directly; it depends on the payment and credit note packages.
"""

from billing_modules.invoicing.config import InvoicingConfig
from billing_modules.invoicing.models import (
    CREDITABLE_STATUSES,
    PAYABLE_STATUSES,
    TERMINAL_STATUSES,
    VOIDABLE_STATUSES,
    Invoice,
    InvoiceLine,
    InvoiceStatus,
    LineAllocation,
)
from billing_modules.invoicing.workflows import INVOICE_WORKFLOW, derive_invoice_status

__all__ = [
    "CREDITABLE_STATUSES",
    "INVOICE_WORKFLOW",
    "PAYABLE_STATUSES",
    "TERMINAL_STATUSES",
    "VOIDABLE_STATUSES",
    "Invoice",
    "InvoiceLine",
    "InvoiceStatus",
    "InvoicingConfig",
    "LineAllocation",
    "derive_invoice_status",
]
