"""
Reimbursement Module (``backoffice_modules.reimbursement``).

Employee expense claims paid back after the fact: a claim with one or more
items is submitted, then approved against a bank account or rejected.
"""

from backoffice_modules.reimbursement.handlers import ReimbursementHandler
from backoffice_modules.reimbursement.workflows import REIMBURSEMENT_WORKFLOW

__all__ = ["REIMBURSEMENT_WORKFLOW", "ReimbursementHandler", "register"]


def register(registry, dispatcher) -> None:
    registry.register(ReimbursementHandler())
