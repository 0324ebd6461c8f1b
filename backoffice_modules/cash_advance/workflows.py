"""
Cash Advance Workflows (``backoffice_modules.cash_advance.workflows``).

Responsibility
--------------
Declares the state machines for the cash advance lifecycle and for the
settlement document that closes an advance out.  Guards express the
preconditions evaluated by ``backoffice_services.guards``.

Architecture position
---------------------
**Modules layer** -- declarative workflow definitions.  Imports canonical
Guard, Transition, Workflow from ``backoffice_kernel.domain.workflow``.
Consumed by the workflow engine at runtime.

Invariants enforced
-------------------
* All ``Workflow``, ``Transition`` and ``Guard`` instances are frozen.
* ``approved`` is not a cash advance state: approval moves a submitted
  advance straight to ``active``.
* ``settlement_reject`` is the only transition that moves an advance
  backwards (``in_settlement`` -> ``active``).

Audit relevance
---------------
Workflow definitions are logged at module-load time with state counts and
transition counts for configuration audit.
"""

from backoffice_kernel.domain.workflow import Guard, Transition, Workflow, fan_in
from backoffice_kernel.logging_config import get_logger

logger = get_logger("modules.cash_advance.workflows")


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

ACTOR_IS_CREATOR = Guard(
    name="actor_is_creator",
    description="Only the creator of the cash advance may submit it",
)

REASON_PROVIDED = Guard(
    name="reason_provided",
    description="A rejection reason is required",
)

AMOUNT_WITHIN_REMAINING = Guard(
    name="amount_within_remaining",
    description="Transaction amount must be greater than zero and not exceed the remaining amount",
)

REFUND_PROOF_IF_REMAINING = Guard(
    name="refund_proof_if_remaining",
    description="Refund proof is required when an amount remains unused",
)


# -----------------------------------------------------------------------------
# Cash Advance Workflow
# -----------------------------------------------------------------------------

CASH_ADVANCE_WORKFLOW = Workflow(
    name="cash_advance",
    description="Cash advance request, spending and settlement",
    initial_state="draft",
    states=(
        "draft",
        "submitted",
        "active",
        "partially_used",
        "fully_used",
        "in_settlement",
        "completed",
        "rejected",
    ),
    terminal_states=("completed", "rejected"),
    deletable_states=("draft", "rejected"),
    transitions=(
        Transition("draft", "submitted", action="submit", guard=ACTOR_IS_CREATOR),
        Transition("submitted", "active", action="approve"),
        Transition("submitted", "rejected", action="reject", guard=REASON_PROVIDED),
        # record_transaction lands on either sub-state depending on the balance left
        *fan_in(("active", "partially_used"), "partially_used",
                action="record_transaction", guard=AMOUNT_WITHIN_REMAINING),
        *fan_in(("active", "partially_used"), "fully_used",
                action="record_transaction", guard=AMOUNT_WITHIN_REMAINING),
        *fan_in(("active", "partially_used", "fully_used"), "in_settlement",
                action="settle", guard=REFUND_PROOF_IF_REMAINING),
        Transition("in_settlement", "completed", action="settlement_approve"),
        Transition("in_settlement", "active", action="settlement_reject"),
    ),
)

logger.info(
    "cash_advance_workflow_registered",
    extra={
        "workflow_name": CASH_ADVANCE_WORKFLOW.name,
        "state_count": len(CASH_ADVANCE_WORKFLOW.states),
        "transition_count": len(CASH_ADVANCE_WORKFLOW.transitions),
        "initial_state": CASH_ADVANCE_WORKFLOW.initial_state,
    },
)


# -----------------------------------------------------------------------------
# Settlement Workflow
# -----------------------------------------------------------------------------

SETTLEMENT_WORKFLOW = Workflow(
    name="settlement",
    description="Settlement of a cash advance",
    initial_state="submitted",
    states=("submitted", "approved", "rejected"),
    terminal_states=("approved", "rejected"),
    transitions=(
        Transition("submitted", "approved", action="approve"),
        Transition("submitted", "rejected", action="reject"),
    ),
)

logger.info(
    "settlement_workflow_registered",
    extra={
        "workflow_name": SETTLEMENT_WORKFLOW.name,
        "state_count": len(SETTLEMENT_WORKFLOW.states),
        "transition_count": len(SETTLEMENT_WORKFLOW.transitions),
        "initial_state": SETTLEMENT_WORKFLOW.initial_state,
    },
)
