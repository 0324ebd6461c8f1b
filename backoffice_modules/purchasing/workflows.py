"""
Purchasing Workflows (``backoffice_modules.purchasing.workflows``).

Responsibility
--------------
State machines for sales orders, purchase orders and delivery orders.

Invariants enforced
-------------------
* Purchase orders need two approvals in order: supervisor, then finance.
  Finance approval is what triggers the delivery order and AP invoice
  (see ``purchasing.side_effects``).
* Sales order transitions are ``system=True``: they are normally fired by
  side effects of purchase and delivery orders, not by a person.
* ``ready_to_invoice`` is guarded whoever fires it: no live, unrejected
  purchase order may still be undelivered.

Audit relevance
---------------
Workflow definitions are logged at module-load time with state counts and
transition counts for configuration audit.
"""

from backoffice_kernel.domain.workflow import Guard, Transition, Workflow, fan_in
from backoffice_kernel.logging_config import get_logger

logger = get_logger("modules.purchasing.workflows")


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

REASON_PROVIDED = Guard(
    name="reason_provided",
    description="A rejection reason is required",
)

PROOF_OF_DELIVERY_PROVIDED = Guard(
    name="proof_of_delivery_provided",
    description="Received date, receiver and proof of delivery are required",
)

ALL_PURCHASE_ORDERS_DELIVERED = Guard(
    name="all_purchase_orders_delivered",
    description="Every live purchase order of the sales order must be delivered",
)


# -----------------------------------------------------------------------------
# Sales Order Workflow
# -----------------------------------------------------------------------------

SALES_ORDER_WORKFLOW = Workflow(
    name="sales_order",
    description="Customer order from intake to invoicing",
    initial_state="submitted",
    states=("submitted", "processing", "invoicing"),
    terminal_states=("invoicing",),
    deletable_states=("submitted",),
    transitions=(
        Transition("submitted", "processing", action="start_processing", system=True),
        *fan_in(("submitted", "processing"), "invoicing",
                action="ready_to_invoice", system=True,
                guard=ALL_PURCHASE_ORDERS_DELIVERED),
    ),
)


# -----------------------------------------------------------------------------
# Purchase Order Workflow
# -----------------------------------------------------------------------------

PURCHASE_ORDER_WORKFLOW = Workflow(
    name="purchase_order",
    description="Supplier purchase order with supervisor and finance approval",
    initial_state="submitted",
    states=("submitted", "approved_spv", "approved_finance", "rejected"),
    terminal_states=("approved_finance", "rejected"),
    deletable_states=("submitted", "rejected"),
    transitions=(
        Transition("submitted", "approved_spv", action="approve_spv"),
        Transition("approved_spv", "approved_finance", action="approve_finance"),
        *fan_in(("submitted", "approved_spv"), "rejected",
                action="reject", guard=REASON_PROVIDED),
    ),
)


# -----------------------------------------------------------------------------
# Delivery Order Workflow
# -----------------------------------------------------------------------------

DELIVERY_ORDER_WORKFLOW = Workflow(
    name="delivery_order",
    description="Delivery of purchased goods to the customer",
    initial_state="shipping",
    states=("shipping", "delivered"),
    terminal_states=("delivered",),
    transitions=(
        Transition("shipping", "delivered", action="deliver", guard=PROOF_OF_DELIVERY_PROVIDED),
    ),
)


for _workflow in (SALES_ORDER_WORKFLOW, PURCHASE_ORDER_WORKFLOW, DELIVERY_ORDER_WORKFLOW):
    logger.info(
        f"{_workflow.name}_workflow_registered",
        extra={
            "workflow_name": _workflow.name,
            "state_count": len(_workflow.states),
            "transition_count": len(_workflow.transitions),
            "initial_state": _workflow.initial_state,
        },
    )
