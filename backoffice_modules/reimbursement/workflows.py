"""
Reimbursement Workflow (``backoffice_modules.reimbursement.workflows``).

A claim is created ``submitted`` and is either approved (with the bank
account that pays it) or rejected (with a reason).  Both outcomes are
terminal; submitted and rejected claims may be soft-deleted.
"""

from backoffice_kernel.domain.workflow import Guard, Transition, Workflow
from backoffice_kernel.logging_config import get_logger

logger = get_logger("modules.reimbursement.workflows")


BANK_ACCOUNT_PROVIDED = Guard(
    name="bank_account_provided",
    description="A bank account code is required to approve a reimbursement",
)

REASON_PROVIDED = Guard(
    name="reason_provided",
    description="A rejection reason is required",
)


REIMBURSEMENT_WORKFLOW = Workflow(
    name="reimbursement",
    description="Employee reimbursement claim approval",
    initial_state="submitted",
    states=("submitted", "approved", "rejected"),
    terminal_states=("approved", "rejected"),
    deletable_states=("submitted", "rejected"),
    transitions=(
        Transition("submitted", "approved", action="approve", guard=BANK_ACCOUNT_PROVIDED),
        Transition("submitted", "rejected", action="reject", guard=REASON_PROVIDED),
    ),
)

logger.info(
    "reimbursement_workflow_registered",
    extra={
        "workflow_name": REIMBURSEMENT_WORKFLOW.name,
        "state_count": len(REIMBURSEMENT_WORKFLOW.states),
        "transition_count": len(REIMBURSEMENT_WORKFLOW.transitions),
        "initial_state": REIMBURSEMENT_WORKFLOW.initial_state,
    },
)
