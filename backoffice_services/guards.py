"""
backoffice_services.guards -- Transition guard evaluation.

Responsibility:
    Transitions name their guard (``backoffice_kernel.domain.workflow.Guard``);
    this module maps each name to a predicate.  The workflow engine calls
    ``GuardExecutor.require`` once the transition is resolved and before
    anything is written.  A false predicate raises ``GuardFailedError``
    (kind ``validation_failed``).

Architecture position:
    Services layer.  Predicates read a context assembled by the document
    handler (a mapping, or any object with attributes) and do no I/O.

Invariants enforced:
    - A guard with no registered evaluator fails closed.
    - An evaluator that raises fails closed (logged as guard_evaluation_error).
"""

from __future__ import annotations

from collections.abc import Mapping
from decimal import Decimal, InvalidOperation
from typing import Any, Callable

from backoffice_kernel.domain.workflow import Guard
from backoffice_kernel.exceptions import GuardFailedError
from backoffice_kernel.logging_config import get_logger

logger = get_logger("services.guards")

Evaluator = Callable[[Any], bool]

BUILTIN_GUARDS: dict[str, Evaluator] = {}


def _builtin(name: str) -> Callable[[Evaluator], Evaluator]:
    def _register(fn: Evaluator) -> Evaluator:
        BUILTIN_GUARDS[name] = fn
        return fn

    return _register


def _value(context: Any, key: str) -> Any:
    if isinstance(context, Mapping):
        return context.get(key)
    return getattr(context, key, None)


def _amount(context: Any, key: str) -> Decimal | None:
    raw = _value(context, key)
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, Decimal):
        return raw
    try:
        return Decimal(str(raw))
    except InvalidOperation:
        return None


def _has_text(context: Any, key: str) -> bool:
    raw = _value(context, key)
    return isinstance(raw, str) and raw.strip() != ""


@_builtin("actor_is_creator")
def _actor_is_creator(context: Any) -> bool:
    actor_code = _value(context, "actor_code")
    return actor_code is not None and actor_code == _value(context, "created_by")


@_builtin("reason_provided")
def _reason_provided(context: Any) -> bool:
    return _has_text(context, "reason")


@_builtin("amount_within_remaining")
def _amount_within_remaining(context: Any) -> bool:
    amount = _amount(context, "amount")
    remaining = _amount(context, "remaining_amount")
    return amount is not None and remaining is not None and 0 < amount <= remaining


@_builtin("refund_proof_if_remaining")
def _refund_proof_if_remaining(context: Any) -> bool:
    # Leftover money must come back with proof; a fully used advance needs none.
    remaining = _amount(context, "remaining_amount")
    if remaining is None or remaining < 0:
        return False
    return remaining == 0 or _has_text(context, "refund_proof_path")


@_builtin("bank_account_provided")
def _bank_account_provided(context: Any) -> bool:
    return _has_text(context, "bank_account_code")


@_builtin("proof_of_delivery_provided")
def _proof_of_delivery_provided(context: Any) -> bool:
    if _value(context, "received_date") is None:
        return False
    return all(_has_text(context, key) for key in ("received_by", "proof_of_delivery_path"))


@_builtin("all_purchase_orders_delivered")
def _all_purchase_orders_delivered(context: Any) -> bool:
    outstanding = _value(context, "outstanding_purchase_orders")
    delivered = _value(context, "delivered_purchase_orders")
    return outstanding == 0 and isinstance(delivered, int) and delivered > 0


class GuardExecutor:
    """Guard name -> predicate.  Starts empty; see default_guard_executor()."""

    def __init__(self, evaluators: Mapping[str, Evaluator] | None = None) -> None:
        self._evaluators: dict[str, Evaluator] = dict(evaluators or {})

    def register(self, guard_name: str, evaluator: Evaluator) -> None:
        self._evaluators[guard_name] = evaluator

    def evaluate(self, guard: Guard, context: Any = None) -> bool:
        evaluator = self._evaluators.get(guard.name)
        if evaluator is None:
            logger.warning("guard_no_evaluator", extra={"guard_name": guard.name})
            return False
        try:
            return bool(evaluator(context))
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "guard_evaluation_error",
                extra={"guard_name": guard.name, "error": f"{type(exc).__name__}: {exc}"},
            )
            return False

    def require(self, guard: Guard | None, context: Any = None) -> None:
        """No-op for an unguarded transition; GuardFailedError when the guard fails."""
        if guard is not None and not self.evaluate(guard, context):
            raise GuardFailedError(guard.name, guard.description)


def default_guard_executor() -> GuardExecutor:
    """An executor preloaded with every guard the document workflows declare."""
    return GuardExecutor(BUILTIN_GUARDS)
