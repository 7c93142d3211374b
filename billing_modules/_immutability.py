"""
ORM-Level Immutability Enforcement (``billing_modules._immutability``).

===============================================================================
HOW IT WORKS
===============================================================================

SQLAlchemy fires mapper events before UPDATE/DELETE statements reach the
database.  The listeners below inspect the pending change and raise
``ImmutabilityViolationError`` when it touches a frozen record:

    session.flush()
         |
         v
    [before_update] --> _check_*_update() --> ImmutabilityViolationError
         |
         v
    [before_delete] --> _check_*_delete() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity                  | When Immutable
------------------------|-----------------------------------------------------
Invoice                 | Amounts, number, lease and period once issued;
                        | deletion unless draft
InvoiceLine             | When the parent invoice is not a draft (no inserts either)
InvoiceLineAllocation   | When the parent invoice is not a draft
Payment                 | Once completed or rejected
PaymentStatusHistory    | ALWAYS (append-only)
CreditNote              | Once applied or voided
CreditNoteLine          | When the parent credit note is applied or voided
AuditRecord             | ALWAYS (append-only)

Status, paid, credited and balance fields of an issued invoice stay
writable: recomputation owns them.  The transition that freezes a record
(draft -> issued, draft -> applied, pending -> completed) is allowed; only
changes after it are blocked.  ``updated_at``, ``updated_by`` and
``version`` are bookkeeping and always writable.

===============================================================================
USAGE
===============================================================================

    from billing_modules._immutability import register_immutability_listeners
    register_immutability_listeners()   # idempotent; BillingEngine calls it

Tests that must write a forbidden change call
``unregister_immutability_listeners()`` and register again afterwards.
"""

from sqlalchemy import event, inspect, select
from sqlalchemy.orm.attributes import get_history

from billing_kernel.exceptions import ImmutabilityViolationError
from billing_kernel.logging_config import get_logger

logger = get_logger("modules.immutability")

_BOOKKEEPING_FIELDS = frozenset({"updated_at", "updated_by", "version"})

_FROZEN_INVOICE_FIELDS = frozenset({
    "org_id",
    "lease_id",
    "invoice_number",
    "billing_period_start",
    "billing_period_end",
    "invoice_date",
    "subtotal",
    "tax_amount",
    "total_amount",
    "issued_at",
})


def _blocked(entity_type: str, entity_id, operation: str, reason: str, field: str | None = None):
    extra = {
        "entity_type": entity_type,
        "entity_id": str(entity_id),
        "operation": operation,
    }
    if field is not None:
        extra["field"] = field
    logger.error("immutability_violation_blocked", extra=extra)
    return ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _status_before_flush(target) -> str:
    """The status the row had before this flush began."""
    history = get_history(target, "status")
    if history.deleted:
        return history.deleted[0]
    return target.status


def _changed_fields(target, ignore=_BOOKKEEPING_FIELDS) -> list[str]:
    return [
        attr.key
        for attr in inspect(target).attrs
        if attr.key not in ignore and attr.history.has_changes()
    ]


# -----------------------------------------------------------------------------
# Invoice
# -----------------------------------------------------------------------------


def _check_invoice_update(mapper, connection, target):
    if _status_before_flush(target) == "draft":
        return
    for key in _changed_fields(target):
        if key in _FROZEN_INVOICE_FIELDS:
            raise _blocked(
                "Invoice",
                target.id,
                "UPDATE",
                f"Cannot modify field '{key}' on an issued invoice",
                field=key,
            )


def _check_invoice_delete(mapper, connection, target):
    if _status_before_flush(target) != "draft":
        raise _blocked(
            "Invoice",
            target.id,
            "DELETE",
            "Only draft invoices can be deleted",
        )


def _stored_invoice_status(connection, invoice_id) -> str | None:
    from billing_modules.invoicing.orm import InvoiceModel

    table = InvoiceModel.__table__
    return connection.execute(
        select(table.c.status).where(table.c.id == invoice_id)
    ).scalar()


def _check_invoice_line_change(operation):
    def _check(mapper, connection, target):
        status = _stored_invoice_status(connection, target.invoice_id)
        if status is not None and status != "draft":
            raise _blocked(
                "InvoiceLine",
                target.id,
                operation,
                "Invoice lines cannot change after the invoice is issued",
            )
    _check.__name__ = f"_check_invoice_line_{operation.lower()}"
    return _check


_check_invoice_line_insert = _check_invoice_line_change("INSERT")
_check_invoice_line_update = _check_invoice_line_change("UPDATE")
_check_invoice_line_delete = _check_invoice_line_change("DELETE")


def _check_allocation_change(operation):
    def _check(mapper, connection, target):
        from billing_modules.invoicing.orm import InvoiceLineModel

        lines = InvoiceLineModel.__table__
        invoice_id = connection.execute(
            select(lines.c.invoice_id).where(lines.c.id == target.invoice_line_id)
        ).scalar()
        if invoice_id is None:
            return
        status = _stored_invoice_status(connection, invoice_id)
        if status is not None and status != "draft":
            raise _blocked(
                "InvoiceLineAllocation",
                target.id,
                operation,
                "Owner allocations cannot change after the invoice is issued",
            )
    _check.__name__ = f"_check_allocation_{operation.lower()}"
    return _check


_check_allocation_insert = _check_allocation_change("INSERT")
_check_allocation_update = _check_allocation_change("UPDATE")
_check_allocation_delete = _check_allocation_change("DELETE")


# -----------------------------------------------------------------------------
# Payments
# -----------------------------------------------------------------------------


def _check_payment_update(mapper, connection, target):
    previous = _status_before_flush(target)
    if previous in ("completed", "rejected"):
        changed = _changed_fields(target)
        if changed:
            raise _blocked(
                "Payment",
                target.id,
                "UPDATE",
                f"Cannot modify field '{changed[0]}' on a {previous} payment",
                field=changed[0],
            )


def _check_payment_delete(mapper, connection, target):
    raise _blocked("Payment", target.id, "DELETE", "Payments cannot be deleted")


def _check_payment_history_update(mapper, connection, target):
    raise _blocked(
        "PaymentStatusHistory",
        target.id,
        "UPDATE",
        "Payment status history is append-only",
    )


def _check_payment_history_delete(mapper, connection, target):
    raise _blocked(
        "PaymentStatusHistory",
        target.id,
        "DELETE",
        "Payment status history is append-only",
    )


# -----------------------------------------------------------------------------
# Credit notes
# -----------------------------------------------------------------------------


def _check_credit_note_update(mapper, connection, target):
    previous = _status_before_flush(target)
    if previous in ("applied", "voided"):
        changed = _changed_fields(target)
        if changed:
            raise _blocked(
                "CreditNote",
                target.id,
                "UPDATE",
                f"Cannot modify field '{changed[0]}' on a {previous} credit note",
                field=changed[0],
            )


def _check_credit_note_delete(mapper, connection, target):
    if _status_before_flush(target) != "draft":
        raise _blocked(
            "CreditNote",
            target.id,
            "DELETE",
            "Applied or voided credit notes cannot be deleted",
        )


def _check_credit_note_line_change(operation):
    def _check(mapper, connection, target):
        from billing_modules.credit_notes.orm import CreditNoteModel

        table = CreditNoteModel.__table__
        status = connection.execute(
            select(table.c.status).where(table.c.id == target.credit_note_id)
        ).scalar()
        if status is not None and status != "draft":
            raise _blocked(
                "CreditNoteLine",
                target.id,
                operation,
                f"Credit note lines cannot change once the credit note is {status}",
            )
    _check.__name__ = f"_check_credit_note_line_{operation.lower()}"
    return _check


_check_credit_note_line_update = _check_credit_note_line_change("UPDATE")
_check_credit_note_line_delete = _check_credit_note_line_change("DELETE")


# -----------------------------------------------------------------------------
# Audit records
# -----------------------------------------------------------------------------


def _check_audit_record_update(mapper, connection, target):
    raise _blocked("AuditRecord", target.id, "UPDATE", "Audit records are immutable")


def _check_audit_record_delete(mapper, connection, target):
    raise _blocked("AuditRecord", target.id, "DELETE", "Audit records cannot be deleted")


# -----------------------------------------------------------------------------
# Registration
# -----------------------------------------------------------------------------


def _listeners():
    from billing_kernel.models.audit_record import AuditRecord
    from billing_modules.credit_notes.orm import CreditNoteLineModel, CreditNoteModel
    from billing_modules.invoicing.orm import (
        InvoiceLineAllocationModel,
        InvoiceLineModel,
        InvoiceModel,
    )
    from billing_modules.payments.orm import PaymentModel, PaymentStatusHistoryModel

    return (
        (InvoiceModel, "before_update", _check_invoice_update),
        (InvoiceModel, "before_delete", _check_invoice_delete),
        (InvoiceLineModel, "before_insert", _check_invoice_line_insert),
        (InvoiceLineModel, "before_update", _check_invoice_line_update),
        (InvoiceLineModel, "before_delete", _check_invoice_line_delete),
        (InvoiceLineAllocationModel, "before_insert", _check_allocation_insert),
        (InvoiceLineAllocationModel, "before_update", _check_allocation_update),
        (InvoiceLineAllocationModel, "before_delete", _check_allocation_delete),
        (PaymentModel, "before_update", _check_payment_update),
        (PaymentModel, "before_delete", _check_payment_delete),
        (PaymentStatusHistoryModel, "before_update", _check_payment_history_update),
        (PaymentStatusHistoryModel, "before_delete", _check_payment_history_delete),
        (CreditNoteModel, "before_update", _check_credit_note_update),
        (CreditNoteModel, "before_delete", _check_credit_note_delete),
        (CreditNoteLineModel, "before_update", _check_credit_note_line_update),
        (CreditNoteLineModel, "before_delete", _check_credit_note_line_delete),
        (AuditRecord, "before_update", _check_audit_record_update),
        (AuditRecord, "before_delete", _check_audit_record_delete),
    )


def register_immutability_listeners() -> None:
    """Register every immutability listener.  Safe to call repeatedly."""
    for target, event_name, listener_fn in _listeners():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def _safe_remove_listener(target, event_name, listener_fn):
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners() -> None:
    """
    Remove immutability listeners.

    WARNING: Only use this in tests that must write a forbidden change.
    """
    for target, event_name, listener_fn in _listeners():
        _safe_remove_listener(target, event_name, listener_fn)
