"""
Purchasing ORM Models (``backoffice_modules.purchasing.orm``).

Responsibility
--------------
Persistence for the order-to-invoice chain: sales orders, the purchase
orders (and items) raised under them, the delivery orders and accounts
payable invoices generated when a purchase order is finance-approved.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``backoffice_kernel.db.base``.

Invariants enforced
-------------------
* A purchase order's ``total_amount`` equals the sum of its item line
  totals (quantity x purchase price).
* ``delivery_status`` only moves forward: not_created -> created -> delivered.
* At most one AP invoice per purchase order (unique ``po_code``).
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backoffice_kernel.db.base import TrackedBase, WorkflowDocument

DELIVERY_NOT_CREATED = "not_created"
DELIVERY_CREATED = "created"
DELIVERY_DELIVERED = "delivered"


# ---------------------------------------------------------------------------
# SalesOrderModel
# ---------------------------------------------------------------------------


class SalesOrderModel(WorkflowDocument):
    """A customer order that purchase orders are raised against."""

    __tablename__ = "sales_orders"

    document_type = "sales_order"

    customer_name: Mapped[str] = mapped_column(String(150), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    purchase_orders: Mapped[list["PurchaseOrderModel"]] = relationship(
        "PurchaseOrderModel",
        back_populates="sales_order",
        order_by="PurchaseOrderModel.code",
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<SalesOrderModel {self.code} [{self.status}]>"


# ---------------------------------------------------------------------------
# PurchaseOrderModel
# ---------------------------------------------------------------------------


class PurchaseOrderModel(WorkflowDocument):
    """
    A supplier order under a sales order.

    Guarantees:
        - approve_spv precedes approve_finance.
        - delivery_status is one of not_created / created / delivered.
    """

    __tablename__ = "purchase_orders"

    document_type = "purchase_order"

    __table_args__ = (
        CheckConstraint("total_amount >= 0", name="ck_purchase_order_total_non_negative"),
        CheckConstraint(
            "delivery_status IN ('not_created', 'created', 'delivered')",
            name="ck_purchase_order_delivery_status",
        ),
        Index("idx_purchase_order_sales_order", "sales_order_id"),
    )

    sales_order_id: Mapped[UUID] = mapped_column(ForeignKey("sales_orders.id"), nullable=False)
    so_code: Mapped[str] = mapped_column(String(50), nullable=False)
    supplier_name: Mapped[str] = mapped_column(String(150), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    total_amount: Mapped[Decimal]
    delivery_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=DELIVERY_NOT_CREATED,
    )

    approved_spv_by: Mapped[str | None] = mapped_column(String(50), nullable=True)
    approved_spv_at: Mapped[datetime | None]
    approved_finance_by: Mapped[str | None] = mapped_column(String(50), nullable=True)
    approved_finance_at: Mapped[datetime | None]
    approval_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejected_by: Mapped[str | None] = mapped_column(String(50), nullable=True)
    rejected_at: Mapped[datetime | None]
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    sales_order: Mapped["SalesOrderModel"] = relationship(
        "SalesOrderModel",
        back_populates="purchase_orders",
    )
    items: Mapped[list["PurchaseOrderItemModel"]] = relationship(
        "PurchaseOrderItemModel",
        back_populates="purchase_order",
        order_by="PurchaseOrderItemModel.code",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<PurchaseOrderModel {self.code} [{self.status}/{self.delivery_status}]>"


class PurchaseOrderItemModel(TrackedBase):
    """One product line on a purchase order."""

    __tablename__ = "purchase_order_items"

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_po_item_quantity_positive"),
        CheckConstraint("purchase_price >= 0", name="ck_po_item_price_non_negative"),
        Index("idx_po_item_purchase_order", "purchase_order_id"),
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    purchase_order_id: Mapped[UUID] = mapped_column(
        ForeignKey("purchase_orders.id"), nullable=False,
    )
    product_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity: Mapped[int]
    purchase_price: Mapped[Decimal]
    line_total: Mapped[Decimal]
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    purchase_order: Mapped["PurchaseOrderModel"] = relationship(
        "PurchaseOrderModel",
        back_populates="items",
    )


# ---------------------------------------------------------------------------
# DeliveryOrderModel
# ---------------------------------------------------------------------------


class DeliveryOrderModel(WorkflowDocument):
    """
    Shipment of purchased goods to the customer.

    Created by the ``create_delivery_order`` side effect with status
    ``shipping``; ``purchase_order_codes`` lists the orders it delivers.
    """

    __tablename__ = "delivery_orders"

    document_type = "delivery_order"

    __table_args__ = (
        Index("idx_delivery_order_so_code", "so_code"),
    )

    sales_order_id: Mapped[UUID] = mapped_column(ForeignKey("sales_orders.id"), nullable=False)
    so_code: Mapped[str] = mapped_column(String(50), nullable=False)
    purchase_order_codes: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    received_date: Mapped[date | None]
    received_by: Mapped[str | None] = mapped_column(String(150), nullable=True)
    proof_of_delivery_path: Mapped[str | None] = mapped_column(String(500), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    delivered_at: Mapped[datetime | None]

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<DeliveryOrderModel {self.code} [{self.status}]>"


# ---------------------------------------------------------------------------
# AccountsPayableInvoiceModel
# ---------------------------------------------------------------------------


class AccountsPayableInvoiceModel(TrackedBase):
    """
    Supplier invoice created when a purchase order is finance-approved.

    Not a workflow document: payment is out of scope, so it stays ``unpaid``.
    """

    __tablename__ = "ap_invoices"

    __table_args__ = (
        UniqueConstraint("po_code", name="uq_ap_invoice_po_code"),
        CheckConstraint("amount >= 0", name="ck_ap_invoice_amount_non_negative"),
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    purchase_order_id: Mapped[UUID] = mapped_column(
        ForeignKey("purchase_orders.id"), nullable=False,
    )
    po_code: Mapped[str] = mapped_column(String(50), nullable=False)
    supplier_name: Mapped[str] = mapped_column(String(150), nullable=False)
    amount: Mapped[Decimal]
    invoice_date: Mapped[date]
    due_date: Mapped[date]
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="unpaid")

    def __repr__(self) -> str:
        return f"<AccountsPayableInvoiceModel {self.code} for {self.po_code} [{self.status}]>"
