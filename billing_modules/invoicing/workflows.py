"""
Invoicing Workflows.

The invoice state machine and the status rule that recomputation uses.
``derive_invoice_status`` is the only place an open invoice's status is
decided; no caller sets ``status`` to a payment-driven value directly.
"""

from decimal import Decimal

from billing_kernel.logging_config import get_logger
from billing_modules._workflow import Guard, Transition, Workflow
from billing_modules.invoicing.models import InvoiceStatus

logger = get_logger("modules.invoicing.workflows")


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

HAS_LINES_AND_POSITIVE_TOTAL = Guard(
    name="has_lines_and_positive_total",
    description="Invoice has at least one line and a total greater than zero",
)

NO_CONFIRMED_PAYMENTS = Guard(
    name="no_confirmed_payments",
    description="Paid amount is zero",
)

BALANCE_SETTLED = Guard(
    name="balance_settled",
    description="Balance is zero or below",
)

BALANCE_OPEN = Guard(
    name="balance_open",
    description="Balance is above zero",
)


# -----------------------------------------------------------------------------
# Invoice Workflow
# -----------------------------------------------------------------------------

_OPEN = ("issued", "partially_paid", "overdue", "paid")

INVOICE_WORKFLOW = Workflow(
    name="lease_invoice",
    description="Lease invoice lifecycle",
    initial_state="draft",
    # "discarded" is not stored; the draft row is deleted
    states=(*(s.value for s in InvoiceStatus), "discarded"),
    transitions=(
        Transition("draft", "draft", action="regenerate"),
        Transition("draft", "discarded", action="discard"),
        Transition("draft", "issued", action="issue", guard=HAS_LINES_AND_POSITIVE_TOTAL),
        Transition("issued", "voided", action="void", guard=NO_CONFIRMED_PAYMENTS),
        Transition("partially_paid", "voided", action="void", guard=NO_CONFIRMED_PAYMENTS),
        Transition("overdue", "voided", action="void", guard=NO_CONFIRMED_PAYMENTS),
        *(
            Transition(src, dst, action="recompute", guard=guard)
            for src in _OPEN
            for dst, guard in (
                ("paid", BALANCE_SETTLED),
                ("partially_paid", BALANCE_OPEN),
                ("overdue", BALANCE_OPEN),
                ("issued", BALANCE_OPEN),
            )
        ),
    ),
)

logger.info(
    "invoice_workflow_registered",
    extra={
        "workflow_name": INVOICE_WORKFLOW.name,
        "state_count": len(INVOICE_WORKFLOW.states),
        "transition_count": len(INVOICE_WORKFLOW.transitions),
        "initial_state": INVOICE_WORKFLOW.initial_state,
    },
)


def derive_invoice_status(
    total: Decimal,
    paid: Decimal,
    balance: Decimal,
    partially_paid_on_credit: bool = False,
    overdue: bool = False,
) -> InvoiceStatus:
    """
    Status of an open (issued, unpaid or partly paid) invoice.

        balance <= 0                           -> paid
        balance > 0 and paid > 0               -> partially_paid
        balance > 0, paid == 0, credited > 0   -> partially_paid when
                                                  partially_paid_on_credit,
                                                  otherwise issued
        otherwise                              -> issued

    ``credited`` is ``total - paid - balance``.  ``overdue`` is the flag the
    overdue sweep sets; it turns an issued or partially paid result into
    overdue and never outranks paid.
    """
    if balance <= 0:
        return InvoiceStatus.PAID
    credited = total - paid - balance
    if paid > 0:
        status = InvoiceStatus.PARTIALLY_PAID
    elif credited > 0 and partially_paid_on_credit:
        status = InvoiceStatus.PARTIALLY_PAID
    else:
        status = InvoiceStatus.ISSUED
    if overdue:
        return InvoiceStatus.OVERDUE
    return status
