"""
Cash Advance Module (``backoffice_modules.cash_advance``).

Responsibility
--------------
Cash advances handed to employees ahead of spending: request, approval,
expense transactions against the advance, and settlement of what was
used or refunded.

Architecture position
---------------------
**Modules layer** -- ORM models, transition tables and document handlers
registered into the services-layer ``HandlerRegistry``.
"""

from backoffice_modules.cash_advance.handlers import CashAdvanceHandler, SettlementHandler
from backoffice_modules.cash_advance.workflows import CASH_ADVANCE_WORKFLOW, SETTLEMENT_WORKFLOW

__all__ = [
    "CASH_ADVANCE_WORKFLOW",
    "SETTLEMENT_WORKFLOW",
    "CashAdvanceHandler",
    "SettlementHandler",
    "register",
]


def register(registry, dispatcher) -> None:
    registry.register(CashAdvanceHandler())
    registry.register(SettlementHandler())
