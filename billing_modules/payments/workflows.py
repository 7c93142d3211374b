"""
Payment Workflows.

Two entry states (a payment the landlord recorded, and one the payer
submitted for confirmation) and two terminal outcomes.
"""

from billing_kernel.logging_config import get_logger
from billing_modules._workflow import Guard, Transition, Workflow
from billing_modules.payments.models import PaymentStatus

logger = get_logger("modules.payments.workflows")


INVOICE_NOT_VOIDED = Guard(
    name="invoice_not_voided",
    description="Target invoice exists and has not been voided",
)

REASON_GIVEN = Guard(
    name="reason_given",
    description="A non-blank rejection reason was supplied",
)


PAYMENT_WORKFLOW = Workflow(
    name="payment",
    description="Payment confirmation lifecycle",
    initial_state=PaymentStatus.PENDING.value,
    states=tuple(s.value for s in PaymentStatus),
    transitions=(
        Transition("pending", "completed", action="confirm", guard=INVOICE_NOT_VOIDED),
        Transition("pending_confirmation", "completed", action="confirm", guard=INVOICE_NOT_VOIDED),
        Transition("pending", "rejected", action="reject", guard=REASON_GIVEN),
        Transition("pending_confirmation", "rejected", action="reject", guard=REASON_GIVEN),
    ),
)

logger.info(
    "payment_workflow_registered",
    extra={
        "workflow_name": PAYMENT_WORKFLOW.name,
        "state_count": len(PAYMENT_WORKFLOW.states),
        "transition_count": len(PAYMENT_WORKFLOW.transitions),
        "initial_state": PAYMENT_WORKFLOW.initial_state,
    },
)
