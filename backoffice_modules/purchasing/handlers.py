"""
Purchasing Handlers (``backoffice_modules.purchasing.handlers``).

Responsibility
--------------
Document handlers for sales orders, purchase orders and delivery orders.
Purchase orders are validated against their parent sales order; delivery
orders are only ever created by the ``create_delivery_order`` side effect.
"""

from __future__ import annotations

from collections.abc import Mapping
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from backoffice_kernel.exceptions import DocumentNotFoundError, InternalError, ValidationFailedError
from backoffice_modules.purchasing.orm import (
    DELIVERY_DELIVERED,
    DELIVERY_NOT_CREATED,
    DeliveryOrderModel,
    PurchaseOrderItemModel,
    PurchaseOrderModel,
    SalesOrderModel,
)
from backoffice_modules.purchasing.workflows import (
    DELIVERY_ORDER_WORKFLOW,
    PURCHASE_ORDER_WORKFLOW,
    SALES_ORDER_WORKFLOW,
)
from backoffice_services.handlers import ActionOutcome, DocumentHandler, HandlerContext, row_to_dict
from backoffice_services.payload import (
    optional_date,
    optional_text,
    require_amount,
    require_items,
    require_not_future,
    require_quantity,
    require_text,
)

ITEM_PREFIX = "POI"


def purchase_order_delivery_counts(session: Session, sales_order_id: UUID) -> dict[str, int]:
    """Live, unrejected purchase orders of a sales order, split by delivery."""
    rows = session.execute(
        select(PurchaseOrderModel.delivery_status, func.count())
        .where(
            PurchaseOrderModel.sales_order_id == sales_order_id,
            PurchaseOrderModel.is_deleted.is_(False),
            PurchaseOrderModel.status != "rejected",
        )
        .group_by(PurchaseOrderModel.delivery_status)
    ).all()
    delivered = sum(n for status, n in rows if status == DELIVERY_DELIVERED)
    outstanding = sum(n for status, n in rows if status != DELIVERY_DELIVERED)
    return {"outstanding_purchase_orders": outstanding, "delivered_purchase_orders": delivered}


class SalesOrderHandler(DocumentHandler):
    document_type = "sales_order"
    model = SalesOrderModel
    workflow = SALES_ORDER_WORKFLOW
    code_prefix = "SO"
    search_columns = ("code", "customer_name")
    name_field = "customer_name"

    def parse_create(self, ctx: HandlerContext, payload: Mapping[str, Any]) -> dict[str, Any]:
        return {
            "customer_name": require_text(payload, "customer_name", max_length=150),
            "notes": optional_text(payload, "notes"),
        }

    def build(self, ctx: HandlerContext, code: str, data: Mapping[str, Any]) -> SalesOrderModel:
        return SalesOrderModel(code=code, **data)

    def guard_context(self, ctx, document, data) -> dict[str, Any]:
        context = super().guard_context(ctx, document, data)
        context.update(purchase_order_delivery_counts(ctx.session, document.id))
        return context

    def children(self, document: SalesOrderModel) -> dict[str, list[dict[str, Any]]]:
        return {
            "purchase_orders": [
                {
                    "code": po.code,
                    "status": po.status,
                    "supplier_name": po.supplier_name,
                    "total_amount": po.total_amount,
                    "delivery_status": po.delivery_status,
                }
                for po in document.purchase_orders
                if not po.is_deleted
            ]
        }


class PurchaseOrderHandler(DocumentHandler):
    document_type = "purchase_order"
    model = PurchaseOrderModel
    workflow = PURCHASE_ORDER_WORKFLOW
    code_prefix = "PO"
    search_columns = ("code", "so_code", "supplier_name")
    name_field = "supplier_name"

    def parse_create(self, ctx: HandlerContext, payload: Mapping[str, Any]) -> dict[str, Any]:
        so_code = require_text(payload, "so_code", max_length=50)
        supplier_name = require_text(payload, "supplier_name", max_length=150)
        items = []
        for item in require_items(payload, "items"):
            quantity = require_quantity(item, "quantity")
            price = require_amount(item, "purchase_price", allow_zero=True)
            items.append(
                {
                    "product_code": optional_text(item, "product_code", max_length=50),
                    "product_name": require_text(item, "product_name", max_length=255),
                    "quantity": quantity,
                    "purchase_price": price,
                    "line_total": price * quantity,
                }
            )

        sales_order = ctx.session.execute(
            select(SalesOrderModel).where(
                SalesOrderModel.code == so_code, SalesOrderModel.is_deleted.is_(False)
            )
        ).scalar_one_or_none()
        if sales_order is None:
            raise DocumentNotFoundError(SalesOrderHandler.document_type, so_code)
        if sales_order.status in SALES_ORDER_WORKFLOW.terminal_states:
            raise ValidationFailedError(
                f"Sales order {so_code} is {sales_order.status}; no new purchase orders",
                field="so_code",
            )

        return {
            "sales_order_id": sales_order.id,
            "so_code": so_code,
            "supplier_name": supplier_name,
            "notes": optional_text(payload, "notes"),
            "items": items,
            "total_amount": sum((i["line_total"] for i in items), Decimal("0")),
        }

    def build(self, ctx: HandlerContext, code: str, data: Mapping[str, Any]) -> PurchaseOrderModel:
        purchase_order = PurchaseOrderModel(
            code=code,
            sales_order_id=data["sales_order_id"],
            so_code=data["so_code"],
            supplier_name=data["supplier_name"],
            notes=data["notes"],
            total_amount=data["total_amount"],
            delivery_status=DELIVERY_NOT_CREATED,
        )
        for item in data["items"]:
            purchase_order.items.append(
                PurchaseOrderItemModel(
                    code=ctx.codes.generate(ITEM_PREFIX),
                    created_by=ctx.actor.code,
                    created_at=ctx.now,
                    updated_at=ctx.now,
                    **item,
                )
            )
        return purchase_order

    def parse_approve_spv(self, ctx, document, payload) -> dict[str, Any]:
        return {"notes": optional_text(payload, "notes")}

    def on_approve_spv(self, ctx, document, decision, data) -> ActionOutcome:
        self.stamp(ctx, document, "approved_spv")
        if data["notes"]:
            document.approval_notes = data["notes"]
        return ActionOutcome(decision.single_destination)

    parse_approve_finance = parse_approve_spv

    def on_approve_finance(self, ctx, document, decision, data) -> ActionOutcome:
        self.stamp(ctx, document, "approved_finance")
        if data["notes"]:
            document.approval_notes = data["notes"]
        return ActionOutcome(decision.single_destination)

    def parse_reject(self, ctx, document, payload) -> dict[str, Any]:
        return {"reason": optional_text(payload, "reason")}

    def on_reject(self, ctx, document, decision, data) -> ActionOutcome:
        self.stamp(ctx, document, "rejected")
        document.rejection_reason = data["reason"]
        return ActionOutcome(decision.single_destination)

    def deletable_children(self, document: PurchaseOrderModel) -> list[Any]:
        return [i for i in document.items if not i.is_deleted]

    def children(self, document: PurchaseOrderModel) -> dict[str, list[dict[str, Any]]]:
        return {"items": [row_to_dict(i) for i in document.items if not i.is_deleted]}


class DeliveryOrderHandler(DocumentHandler):
    document_type = "delivery_order"
    model = DeliveryOrderModel
    workflow = DELIVERY_ORDER_WORKFLOW
    code_prefix = "DO"
    search_columns = ("code", "so_code", "received_by")
    name_field = "so_code"

    def parse_create(self, ctx: HandlerContext, payload: Mapping[str, Any]) -> dict[str, Any]:
        raise ValidationFailedError(
            "Delivery orders are created when a purchase order is finance-approved"
        )

    def build(self, ctx: HandlerContext, code: str, data: Mapping[str, Any]) -> DeliveryOrderModel:
        raise InternalError("Delivery orders are built by the create_delivery_order side effect")

    def parse_deliver(self, ctx, document, payload) -> dict[str, Any]:
        received_date = optional_date(payload, "received_date")
        if received_date is not None:
            require_not_future(received_date, ctx.today, "received_date")
        return {
            "received_date": received_date,
            "received_by": optional_text(payload, "received_by", max_length=150),
            "proof_of_delivery_path": optional_text(payload, "proof_of_delivery_path", max_length=500),
            "notes": optional_text(payload, "notes"),
        }

    def on_deliver(self, ctx, document, decision, data) -> ActionOutcome:
        document.received_date = data["received_date"]
        document.received_by = data["received_by"]
        document.proof_of_delivery_path = data["proof_of_delivery_path"]
        if data["notes"]:
            document.notes = data["notes"]
        document.delivered_at = ctx.now
        return ActionOutcome(decision.single_destination)
