"""
Typed Exception Hierarchy for the Billing Kernel.

===============================================================================
ERROR CATEGORIES
===============================================================================

Every error belongs to exactly one category. The category decides how the
boundary layer reacts, while the ``code`` identifies the exact failure:

    VALIDATION      Bad input shape (missing reason, empty share set).
                    Reported synchronously, never retried automatically.
    STATE_CONFLICT  Invalid state transition or concurrency mismatch.
                    The caller must re-read current state and decide
                    whether to retry.
    DATA_INTEGRITY  A referenced invoice, lease or line is missing when it
                    must exist. Fatal for the operation, logged at ERROR,
                    surfaced as a generic "unable to process" message.
    BUSINESS_RULE   The request is well formed but violates a rule
                    (credit exceeds remaining, shares do not sum to 100).
                    Carries the computed and expected values.
    CANCELLED       The caller's cancellation signal fired; the
                    transaction was rolled back.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    BillingError (base)
    |
    +-- ValidationError
    |   +-- MissingReasonError
    |   +-- InvalidBillingPeriodError
    |   +-- InvalidPaymentError
    |   +-- EmptyCreditNoteError
    |
    +-- StateConflictError
    |   +-- ConcurrencyConflictError
    |   +-- InvalidInvoiceStateError
    |   +-- InvalidPaymentStateError
    |   +-- InvalidCreditNoteStateError
    |   +-- LeaseNotActiveError
    |   +-- DuplicateInvoiceError
    |   +-- ImmutabilityViolationError
    |   +-- OperationCancelledError
    |
    +-- DataIntegrityError
    |   +-- LeaseNotFoundError
    |   +-- InvoiceNotFoundError
    |   +-- PaymentNotFoundError
    |   +-- CreditNoteNotFoundError
    |   +-- AssetNotFoundError
    |
    +-- BusinessRuleError
        +-- NoApplicableTermError
        +-- InvalidShareSetError
        +-- LineNotOnInvoiceError
        +-- CreditExceedsRemainingError
        +-- PaymentExceedsBalanceError

===============================================================================
HANDLING PATTERNS
===============================================================================

    try:
        manager.void(invoice_id, reason, expected_version)
    except ConcurrencyConflictError as e:
        # re-read, show the fresh state, let the user decide
        return reload(e.entity_id)
    except InvalidInvoiceStateError as e:
        return {"error": e.code, "status": e.current_status}

Codes are class attributes so they can be read without instantiation.
Every constructor stores its context as attributes before building the
message, so the structured logger can serialize them.
"""

from decimal import Decimal
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Coarse error taxonomy used by the boundary layer."""

    VALIDATION = "validation"
    STATE_CONFLICT = "state_conflict"
    DATA_INTEGRITY = "data_integrity"
    BUSINESS_RULE = "business_rule"
    CANCELLED = "cancelled"


class BillingError(Exception):
    """
    Base exception for all billing kernel errors.

    Subclasses must define a ``code`` class attribute and inherit a
    ``category`` from one of the four category bases.
    """

    code: str = "BILLING_ERROR"
    category: ErrorCategory = ErrorCategory.BUSINESS_RULE

    def details(self) -> dict[str, Any]:
        """Structured attributes of this error, for results and logs."""
        return {
            k: v for k, v in vars(self).items()
            if not k.startswith("_")
        }


class ValidationError(BillingError):
    """Base exception for malformed input."""

    code: str = "VALIDATION_ERROR"
    category = ErrorCategory.VALIDATION

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class StateConflictError(BillingError):
    """Base exception for invalid transitions and concurrency conflicts."""

    code: str = "STATE_CONFLICT"
    category = ErrorCategory.STATE_CONFLICT


class DataIntegrityError(BillingError):
    """Base exception for references that must exist but do not."""

    code: str = "DATA_INTEGRITY_ERROR"
    category = ErrorCategory.DATA_INTEGRITY


class BusinessRuleError(BillingError):
    """Base exception for well-formed requests that violate a rule."""

    code: str = "BUSINESS_RULE_ERROR"
    category = ErrorCategory.BUSINESS_RULE


# Validation errors


class MissingReasonError(ValidationError):
    """A transition that requires a reason was given none."""

    code: str = "MISSING_REASON"

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"A reason is required to {operation}", field="reason")


class InvalidBillingPeriodError(ValidationError):
    """Billing period end precedes its start."""

    code: str = "INVALID_BILLING_PERIOD"

    def __init__(self, period_start: Any, period_end: Any):
        self.period_start = period_start
        self.period_end = period_end
        super().__init__(
            f"Billing period end {period_end} is before start {period_start}",
            field="period_end",
        )


class InvalidPaymentError(ValidationError):
    """Payment request is malformed (non-positive amount, missing reference)."""

    code: str = "INVALID_PAYMENT"


class EmptyCreditNoteError(ValidationError):
    """Credit note request carries no lines."""

    code: str = "EMPTY_CREDIT_NOTE"

    def __init__(self):
        super().__init__("A credit note requires at least one line", field="lines")


# State-conflict errors


class ConcurrencyConflictError(StateConflictError):
    """The entity changed since the caller last read it."""

    code: str = "CONCURRENCY_CONFLICT"

    def __init__(self, entity_type: str, entity_id: Any):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Concurrency conflict on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


class InvalidInvoiceStateError(StateConflictError):
    """Requested operation is not allowed in the invoice's current status."""

    code: str = "INVALID_INVOICE_STATE"

    def __init__(self, invoice_id: Any, current_status: str, operation: str, reason: str = ""):
        self.invoice_id = invoice_id
        self.current_status = current_status
        self.operation = operation
        self.reason = reason
        message = f"Cannot {operation} invoice {invoice_id} in status {current_status}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class InvalidPaymentStateError(StateConflictError):
    """Payment is already in a terminal status."""

    code: str = "INVALID_PAYMENT_STATE"

    def __init__(self, payment_id: Any, current_status: str, operation: str):
        self.payment_id = payment_id
        self.current_status = current_status
        self.operation = operation
        super().__init__(
            f"Cannot {operation} payment {payment_id} in status {current_status}"
        )


class InvalidCreditNoteStateError(StateConflictError):
    """Credit note is already applied or voided."""

    code: str = "INVALID_CREDIT_NOTE_STATE"

    def __init__(self, credit_note_id: Any, current_state: str, operation: str, reason: str = ""):
        self.credit_note_id = credit_note_id
        self.current_state = current_state
        self.operation = operation
        self.reason = reason
        message = f"Cannot {operation} credit note {credit_note_id} ({current_state})"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class LeaseNotActiveError(StateConflictError):
    """Invoices can only be generated for active leases."""

    code: str = "LEASE_NOT_ACTIVE"

    def __init__(self, lease_id: Any, status: str):
        self.lease_id = lease_id
        self.status = status
        super().__init__(f"Lease {lease_id} is {status}, not active")


class DuplicateInvoiceError(StateConflictError):
    """A non-voided invoice already exists for the lease and period."""

    code: str = "DUPLICATE_INVOICE"

    def __init__(self, lease_id: Any, period_start: Any, period_end: Any, existing_invoice_id: Any = None):
        self.lease_id = lease_id
        self.period_start = period_start
        self.period_end = period_end
        self.existing_invoice_id = existing_invoice_id
        super().__init__(
            f"Invoice already exists for lease {lease_id} "
            f"period {period_start}..{period_end}"
        )


class ImmutabilityViolationError(StateConflictError):
    """
    Attempted to modify or delete an immutable record.

    Issued invoice lines, payment status history, applied credit notes and
    audit records are immutable.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: Any, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


class OperationCancelledError(StateConflictError):
    """The caller's cancellation signal was set; nothing was committed."""

    code: str = "OPERATION_CANCELLED"
    category = ErrorCategory.CANCELLED

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"Operation {operation} was cancelled")


# Data-integrity errors


class LeaseNotFoundError(DataIntegrityError):
    code: str = "LEASE_NOT_FOUND"

    def __init__(self, lease_id: Any):
        self.lease_id = lease_id
        super().__init__(f"Lease not found: {lease_id}")


class InvoiceNotFoundError(DataIntegrityError):
    code: str = "INVOICE_NOT_FOUND"

    def __init__(self, invoice_id: Any):
        self.invoice_id = invoice_id
        super().__init__(f"Invoice not found: {invoice_id}")


class PaymentNotFoundError(DataIntegrityError):
    code: str = "PAYMENT_NOT_FOUND"

    def __init__(self, payment_id: Any):
        self.payment_id = payment_id
        super().__init__(f"Payment not found: {payment_id}")


class CreditNoteNotFoundError(DataIntegrityError):
    code: str = "CREDIT_NOTE_NOT_FOUND"

    def __init__(self, credit_note_id: Any):
        self.credit_note_id = credit_note_id
        super().__init__(f"Credit note not found: {credit_note_id}")


class AssetNotFoundError(DataIntegrityError):
    code: str = "ASSET_NOT_FOUND"

    def __init__(self, asset_id: Any):
        self.asset_id = asset_id
        super().__init__(f"Property asset not found: {asset_id}")


# Business-rule errors


class NoApplicableTermError(BusinessRuleError):
    """
    No lease term covers part of the billing period.

    This signals a data gap in the lease's term history and is reported,
    never skipped.
    """

    code: str = "NO_APPLICABLE_TERM"

    def __init__(self, lease_id: Any, uncovered_date: Any, period_start: Any, period_end: Any):
        self.lease_id = lease_id
        self.uncovered_date = uncovered_date
        self.period_start = period_start
        self.period_end = period_end
        super().__init__(
            f"No lease term covers {uncovered_date} for lease {lease_id} "
            f"(period {period_start}..{period_end})"
        )


class InvalidShareSetError(BusinessRuleError):
    """Ownership share set failed validation."""

    code: str = "INVALID_SHARE_SET"

    def __init__(
        self,
        reason: str,
        computed_sum: Decimal | None = None,
        expected_sum: Decimal = Decimal("100"),
    ):
        self.reason = reason
        self.computed_sum = computed_sum
        self.expected_sum = expected_sum
        super().__init__(reason)


class LineNotOnInvoiceError(BusinessRuleError):
    code: str = "LINE_NOT_ON_INVOICE"

    def __init__(self, invoice_id: Any, invoice_line_id: Any):
        self.invoice_id = invoice_id
        self.invoice_line_id = invoice_line_id
        super().__init__(
            f"Invoice line {invoice_line_id} does not belong to invoice {invoice_id}"
        )


class CreditExceedsRemainingError(BusinessRuleError):
    code: str = "CREDIT_EXCEEDS_REMAINING"

    def __init__(self, invoice_line_id: Any, requested: Decimal, remaining: Decimal):
        self.invoice_line_id = invoice_line_id
        self.requested = requested
        self.remaining = remaining
        super().__init__(
            f"credit amount {requested:.2f} exceeds remaining line amount {remaining:.2f}"
        )


class PaymentExceedsBalanceError(BusinessRuleError):
    code: str = "PAYMENT_EXCEEDS_BALANCE"

    def __init__(
        self,
        invoice_id: Any,
        requested: Decimal,
        balance: Decimal,
        pending: Decimal = Decimal("0"),
    ):
        self.invoice_id = invoice_id
        self.requested = requested
        self.balance = balance
        self.pending = pending
        message = f"payment amount {requested:.2f} exceeds outstanding balance {balance:.2f}"
        if pending:
            message += f" less {pending:.2f} awaiting confirmation"
        super().__init__(message)
