"""
Purchasing Module (``backoffice_modules.purchasing``).

Responsibility
--------------
The order-to-invoice chain: sales orders, purchase orders raised against
them, and the delivery orders and AP invoices generated by side effects
when a purchase order is finance-approved.

Architecture position
---------------------
**Modules layer** -- ORM models, transition tables, document handlers and
side effects registered into the services layer.
"""

from backoffice_modules.purchasing.handlers import (
    DeliveryOrderHandler,
    PurchaseOrderHandler,
    SalesOrderHandler,
)
from backoffice_modules.purchasing.side_effects import PURCHASING_SIDE_EFFECTS
from backoffice_modules.purchasing.workflows import (
    DELIVERY_ORDER_WORKFLOW,
    PURCHASE_ORDER_WORKFLOW,
    SALES_ORDER_WORKFLOW,
)

__all__ = [
    "DELIVERY_ORDER_WORKFLOW",
    "PURCHASE_ORDER_WORKFLOW",
    "PURCHASING_SIDE_EFFECTS",
    "SALES_ORDER_WORKFLOW",
    "DeliveryOrderHandler",
    "PurchaseOrderHandler",
    "SalesOrderHandler",
    "register",
]


def register(registry, dispatcher) -> None:
    registry.register(SalesOrderHandler())
    registry.register(PurchaseOrderHandler())
    registry.register(DeliveryOrderHandler())
    for effect in PURCHASING_SIDE_EFFECTS:
        dispatcher.register(effect)
