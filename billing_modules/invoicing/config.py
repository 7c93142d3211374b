"""
Invoicing Configuration Schema.

Organization-level billing settings: document prefixes, payment terms,
proration default, and the status policy for credit-only reductions.
Per-lease overrides (payment terms, prefix, proration) take precedence.
"""

from dataclasses import dataclass
from typing import Self

from billing_kernel.logging_config import get_logger
from billing_modules.leases.models import ProrationMethod

logger = get_logger("modules.invoicing.config")


@dataclass(frozen=True)
class InvoicingConfig:
    """Configuration schema for the invoicing, payment and credit note modules."""

    invoice_prefix: str = "INV"
    credit_note_prefix: str = "CN"

    # Width of the zero-padded sequence part, e.g. INV-000042
    number_width: int = 6

    # Days after the period end before an invoice falls due
    payment_term_days: int = 0

    default_proration: ProrationMethod = ProrationMethod.ACTUAL_DAYS

    # When True, a credit note that reduces the balance of an unpaid
    # invoice moves it to partially_paid; otherwise it stays issued.
    partially_paid_on_credit: bool = False

    # Attach per-owner allocations to every invoice line
    split_by_owner: bool = False

    def __post_init__(self):
        if not self.invoice_prefix or not self.invoice_prefix.strip():
            raise ValueError("invoice_prefix must not be blank")
        if not self.credit_note_prefix or not self.credit_note_prefix.strip():
            raise ValueError("credit_note_prefix must not be blank")
        if self.invoice_prefix == self.credit_note_prefix:
            raise ValueError("invoice_prefix and credit_note_prefix must differ")
        if self.number_width < 1:
            raise ValueError("number_width must be positive")
        if self.payment_term_days < 0:
            raise ValueError("payment_term_days cannot be negative")

        logger.info(
            "invoicing_config_initialized",
            extra={
                "invoice_prefix": self.invoice_prefix,
                "credit_note_prefix": self.credit_note_prefix,
                "payment_term_days": self.payment_term_days,
                "default_proration": self.default_proration.value,
                "partially_paid_on_credit": self.partially_paid_on_credit,
                "split_by_owner": self.split_by_owner,
            },
        )

    @classmethod
    def with_defaults(cls) -> Self:
        """Create config with standard defaults."""
        return cls()

    @classmethod
    def from_billing_config(cls, config) -> Self:
        """Translate a ``billing_config.BillingConfig``."""
        return cls(
            invoice_prefix=config.invoice_prefix,
            credit_note_prefix=config.credit_note_prefix,
            number_width=config.number_width,
            payment_term_days=config.payment_term_days,
            default_proration=ProrationMethod(config.default_proration_method),
            partially_paid_on_credit=config.partially_paid_on_credit,
            split_by_owner=config.split_by_owner,
        )
