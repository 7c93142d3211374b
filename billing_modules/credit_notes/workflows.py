"""
Credit Note Workflows.

A credit note is applied or voided once.  Both outcomes are terminal;
an applied credit note is corrected with a counter-adjustment.
"""

from billing_kernel.logging_config import get_logger
from billing_modules._workflow import Guard, Transition, Workflow
from billing_modules.credit_notes.models import CreditNoteStatus

logger = get_logger("modules.credit_notes.workflows")


INVOICE_OPEN = Guard(
    name="invoice_open",
    description="Target invoice is issued and not voided",
)


CREDIT_NOTE_WORKFLOW = Workflow(
    name="credit_note",
    description="Credit note lifecycle",
    initial_state=CreditNoteStatus.DRAFT.value,
    states=tuple(s.value for s in CreditNoteStatus),
    transitions=(
        Transition("draft", "applied", action="apply", guard=INVOICE_OPEN),
        Transition("draft", "voided", action="void"),
    ),
)

logger.info(
    "credit_note_workflow_registered",
    extra={
        "workflow_name": CREDIT_NOTE_WORKFLOW.name,
        "state_count": len(CREDIT_NOTE_WORKFLOW.states),
        "transition_count": len(CREDIT_NOTE_WORKFLOW.transitions),
        "initial_state": CREDIT_NOTE_WORKFLOW.initial_state,
    },
)
