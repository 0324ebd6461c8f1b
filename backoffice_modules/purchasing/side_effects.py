"""
Purchasing Side Effects (``backoffice_modules.purchasing.side_effects``).

Responsibility
--------------
Dependent-document actions fired by purchase and delivery order
transitions:

==============================  ===============================  ========
trigger                         effect                           critical
==============================  ===============================  ========
purchase_order -> submitted     mark_sales_order_processing      no
purchase_order -> approved_fin  create_delivery_order            yes
purchase_order -> approved_fin  create_ap_invoice                yes
delivery_order -> delivered     mark_purchase_orders_delivered   yes
==============================  ===============================  ========

Architecture position
---------------------
**Modules layer** -- effect functions run by
``backoffice_services.side_effects.SideEffectDispatcher`` inside a
``HandlerContext``; the dispatcher owns the idempotency ledger.

Invariants enforced
-------------------
* Sales order moves go through ``resolve_transition`` on the sales order
  table, so a side effect can never put a sales order in an illegal state.
* Lock order: delivery order, then purchase orders (by code), then the
  sales order.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any

from sqlalchemy import select

from backoffice_kernel.domain.workflow import allowed_actions, resolve_transition
from backoffice_kernel.exceptions import InternalError
from backoffice_kernel.logging_config import get_logger
from backoffice_modules.purchasing.handlers import SalesOrderHandler
from backoffice_modules.purchasing.orm import (
    DELIVERY_CREATED,
    DELIVERY_DELIVERED,
    AccountsPayableInvoiceModel,
    DeliveryOrderModel,
    PurchaseOrderModel,
    SalesOrderModel,
)
from backoffice_modules.purchasing.workflows import (
    DELIVERY_ORDER_WORKFLOW,
    SALES_ORDER_WORKFLOW,
)
from backoffice_services.guards import default_guard_executor
from backoffice_services.handlers import HandlerContext
from backoffice_services.side_effects import SideEffect

logger = get_logger("modules.purchasing.side_effects")

AP_INVOICE_PREFIX = "AP"
DELIVERY_ORDER_PREFIX = "DO"


def _lock_purchase_order(ctx: HandlerContext, code: str) -> PurchaseOrderModel:
    purchase_order = ctx.session.execute(
        select(PurchaseOrderModel)
        .where(PurchaseOrderModel.code == code)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if purchase_order is None:
        raise InternalError(f"Purchase order {code} vanished during side effect")
    return purchase_order


def _lock_sales_order(ctx: HandlerContext, code: str) -> SalesOrderModel | None:
    return ctx.session.execute(
        select(SalesOrderModel)
        .where(SalesOrderModel.code == code, SalesOrderModel.is_deleted.is_(False))
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()


def _advance_sales_order(ctx: HandlerContext, sales_order: SalesOrderModel, action: str) -> bool:
    """Fire a system transition on a sales order if its table and guard allow it."""
    if action not in allowed_actions(SALES_ORDER_WORKFLOW, sales_order.status):
        return False
    decision = resolve_transition(SALES_ORDER_WORKFLOW, sales_order.status, action)
    if decision.guard is not None:
        context = SalesOrderHandler().guard_context(ctx, sales_order, {})
        if not default_guard_executor().evaluate(decision.guard, context):
            logger.info(
                "sales_order_guard_blocked",
                extra={
                    "so_code": sales_order.code,
                    "action": action,
                    "guard_name": decision.guard.name,
                },
            )
            return False
    old_status = sales_order.status
    sales_order.status = decision.single_destination
    sales_order.updated_by = ctx.actor.code
    sales_order.updated_at = ctx.now
    logger.info(
        "sales_order_advanced",
        extra={
            "so_code": sales_order.code,
            "action": action,
            "from_state": old_status,
            "to_state": sales_order.status,
        },
    )
    return True


def mark_sales_order_processing(ctx: HandlerContext, po_code: str) -> dict[str, Any]:
    purchase_order = _lock_purchase_order(ctx, po_code)
    sales_order = _lock_sales_order(ctx, purchase_order.so_code)
    if sales_order is None:
        return {"so_code": purchase_order.so_code, "changed": False}
    changed = _advance_sales_order(ctx, sales_order, "start_processing")
    return {"so_code": sales_order.code, "so_status": sales_order.status, "changed": changed}


def create_delivery_order(ctx: HandlerContext, po_code: str) -> dict[str, Any]:
    purchase_order = _lock_purchase_order(ctx, po_code)
    code = ctx.codes.generate(DELIVERY_ORDER_PREFIX)
    now = ctx.now
    ctx.session.add(
        DeliveryOrderModel(
            code=code,
            status=DELIVERY_ORDER_WORKFLOW.initial_state,
            sales_order_id=purchase_order.sales_order_id,
            so_code=purchase_order.so_code,
            purchase_order_codes=[purchase_order.code],
            created_by=ctx.actor.code,
            created_by_name=ctx.actor.name,
            created_at=now,
            updated_at=now,
        )
    )
    purchase_order.delivery_status = DELIVERY_CREATED
    return {"delivery_order_code": code}


def create_ap_invoice(ctx: HandlerContext, po_code: str) -> dict[str, Any]:
    purchase_order = _lock_purchase_order(ctx, po_code)
    code = ctx.codes.generate(AP_INVOICE_PREFIX)
    invoice_date = ctx.today
    due_date = invoice_date + timedelta(days=ctx.options.ap_due_days)
    ctx.session.add(
        AccountsPayableInvoiceModel(
            code=code,
            purchase_order_id=purchase_order.id,
            po_code=purchase_order.code,
            supplier_name=purchase_order.supplier_name,
            amount=purchase_order.total_amount,
            invoice_date=invoice_date,
            due_date=due_date,
            status="unpaid",
            created_by=ctx.actor.code,
            created_at=ctx.now,
            updated_at=ctx.now,
        )
    )
    return {"ap_invoice_code": code, "due_date": due_date}


def mark_purchase_orders_delivered(ctx: HandlerContext, do_code: str) -> dict[str, Any]:
    delivery_order = ctx.session.execute(
        select(DeliveryOrderModel).where(DeliveryOrderModel.code == do_code)
    ).scalar_one()
    po_codes = sorted(delivery_order.purchase_order_codes or [])
    for po_code in po_codes:
        _lock_purchase_order(ctx, po_code).delivery_status = DELIVERY_DELIVERED

    sales_order = _lock_sales_order(ctx, delivery_order.so_code)
    if sales_order is None:
        return {"purchase_order_codes": po_codes, "so_code": delivery_order.so_code}

    ctx.session.flush()
    invoiced = _advance_sales_order(ctx, sales_order, "ready_to_invoice")
    return {
        "purchase_order_codes": po_codes,
        "so_code": sales_order.code,
        "so_status": sales_order.status,
        "sales_order_invoiced": invoiced,
    }


PURCHASING_SIDE_EFFECTS: tuple[SideEffect, ...] = (
    SideEffect(
        name="mark_sales_order_processing",
        document_type="purchase_order",
        trigger_status="submitted",
        fn=mark_sales_order_processing,
        critical=False,
        description="A new purchase order moves its submitted sales order to processing",
    ),
    SideEffect(
        name="create_delivery_order",
        document_type="purchase_order",
        trigger_status="approved_finance",
        fn=create_delivery_order,
        description="One delivery order (shipping) per finance-approved purchase order",
    ),
    SideEffect(
        name="create_ap_invoice",
        document_type="purchase_order",
        trigger_status="approved_finance",
        fn=create_ap_invoice,
        description="One unpaid AP invoice per finance-approved purchase order",
    ),
    SideEffect(
        name="mark_purchase_orders_delivered",
        document_type="delivery_order",
        trigger_status="delivered",
        fn=mark_purchase_orders_delivered,
        description="Delivered orders mark their purchase orders and may invoice the sales order",
    ),
)
