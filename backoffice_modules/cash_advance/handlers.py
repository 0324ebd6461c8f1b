"""
Cash Advance Handlers (``backoffice_modules.cash_advance.handlers``).

Responsibility
--------------
Document handlers for ``cash_advance`` and ``settlement``: payload
validation, balance arithmetic for ``record_transaction``, creation of the
settlement document on ``settle``, and settlement resolution.

Architecture position
---------------------
**Modules layer** -- plugs into ``backoffice_services.WorkflowEngine`` via
the ``DocumentHandler`` contract.  Runs inside the engine's transaction.

Invariants enforced
-------------------
* ``total_amount == used_amount + remaining_amount`` after every write;
  a violation raises ``InternalError`` and rolls the transaction back.
* Settlement resolution has ONE implementation (``resolve_settlement``)
  shared by the advance's ``settlement_approve`` / ``settlement_reject``
  and the settlement's ``approve`` / ``reject``; both documents change in
  the same transaction.
* Lock order is always advance first, then settlement.
"""

from __future__ import annotations

from collections.abc import Mapping
from decimal import Decimal
from typing import Any

from sqlalchemy import select

from backoffice_kernel.domain.workflow import TransitionDecision, resolve_transition
from backoffice_kernel.exceptions import InternalError, InvalidTransitionError, ValidationFailedError
from backoffice_kernel.logging_config import get_logger
from backoffice_modules.cash_advance.orm import (
    CashAdvanceModel,
    CashAdvanceTransactionModel,
    SettlementModel,
)
from backoffice_modules.cash_advance.workflows import CASH_ADVANCE_WORKFLOW, SETTLEMENT_WORKFLOW
from backoffice_services.handlers import ActionOutcome, DocumentHandler, HandlerContext, row_to_dict
from backoffice_services.payload import (
    optional_date,
    optional_text,
    require_amount,
    require_date,
    require_not_future,
    require_text,
)

logger = get_logger("modules.cash_advance.handlers")

TRANSACTION_PREFIX = "CATRX"


def _check_balance(advance: CashAdvanceModel) -> None:
    if advance.used_amount < 0 or advance.remaining_amount < 0:
        raise InternalError(f"Cash advance {advance.code} has a negative balance")
    if advance.used_amount + advance.remaining_amount != advance.total_amount:
        raise InternalError(
            f"Cash advance {advance.code}: used {advance.used_amount} + remaining "
            f"{advance.remaining_amount} != total {advance.total_amount}"
        )


def _lock_advance(ctx: HandlerContext, code: str) -> CashAdvanceModel | None:
    return ctx.session.execute(
        select(CashAdvanceModel)
        .where(CashAdvanceModel.code == code, CashAdvanceModel.is_deleted.is_(False))
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()


def _lock_open_settlement(ctx: HandlerContext, advance: CashAdvanceModel) -> SettlementModel:
    settlement = ctx.session.execute(
        select(SettlementModel)
        .where(
            SettlementModel.cash_advance_id == advance.id,
            SettlementModel.status == SETTLEMENT_WORKFLOW.initial_state,
            SettlementModel.is_deleted.is_(False),
        )
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if settlement is None:
        raise InternalError(f"Cash advance {advance.code} is in settlement without an open settlement")
    return settlement


def resolve_settlement(
    ctx: HandlerContext,
    advance: CashAdvanceModel,
    settlement: SettlementModel,
    approve: bool,
    reason: str | None = None,
) -> tuple[str, str]:
    """
    Approve or reject ``settlement`` and move ``advance`` accordingly.

    Both moves are checked against their own transition tables, so either
    entry point fails with InvalidTransitionError if the other document is
    not in the expected state.

    Returns:
        (advance_status, settlement_status)
    """
    advance_action = "settlement_approve" if approve else "settlement_reject"
    settlement_action = "approve" if approve else "reject"
    advance_to = resolve_transition(
        CASH_ADVANCE_WORKFLOW, advance.status, advance_action
    ).single_destination
    settlement_to = resolve_transition(
        SETTLEMENT_WORKFLOW, settlement.status, settlement_action
    ).single_destination

    now = ctx.now
    if approve:
        settlement.approved_by = ctx.actor.code
        settlement.approved_at = now
        advance.settled_at = now
    else:
        settlement.rejected_by = ctx.actor.code
        settlement.rejected_at = now
        settlement.rejection_reason = reason

    settlement.status = settlement_to
    settlement.updated_by = ctx.actor.code
    settlement.updated_at = now
    advance.status = advance_to
    advance.updated_by = ctx.actor.code
    advance.updated_at = now

    logger.info(
        "settlement_resolved",
        extra={
            "ca_code": advance.code,
            "settlement_code": settlement.code,
            "approved": approve,
            "ca_status": advance_to,
        },
    )
    return advance_to, settlement_to


def _parse_optional_reason(
    ctx: HandlerContext, document: Any, payload: Mapping[str, Any]
) -> dict[str, Any]:
    return {"reason": optional_text(payload, "reason")}


# ---------------------------------------------------------------------------
# Cash advance
# ---------------------------------------------------------------------------


class CashAdvanceHandler(DocumentHandler):
    document_type = "cash_advance"
    model = CashAdvanceModel
    workflow = CASH_ADVANCE_WORKFLOW
    code_prefix = "CA"
    search_columns = ("code", "employee_name", "purpose", "project_code")
    name_field = "employee_name"

    def parse_create(self, ctx: HandlerContext, payload: Mapping[str, Any]) -> dict[str, Any]:
        return {
            "employee_name": require_text(payload, "employee_name", max_length=150),
            "purpose": require_text(payload, "purpose"),
            "total_amount": require_amount(payload, "total_amount"),
            "request_date": optional_date(payload, "request_date") or ctx.today,
            "project_code": optional_text(payload, "project_code", max_length=50),
            "notes": optional_text(payload, "notes"),
        }

    def build(self, ctx: HandlerContext, code: str, data: Mapping[str, Any]) -> CashAdvanceModel:
        return CashAdvanceModel(
            code=code,
            employee_name=data["employee_name"],
            purpose=data["purpose"],
            request_date=data["request_date"],
            project_code=data["project_code"],
            notes=data["notes"],
            total_amount=data["total_amount"],
            used_amount=Decimal("0"),
            remaining_amount=data["total_amount"],
        )

    # submit / approve / reject

    def on_submit(self, ctx, document, decision, data) -> ActionOutcome:
        document.submitted_at = ctx.now
        return ActionOutcome(decision.single_destination)

    def parse_approve(self, ctx, document, payload) -> dict[str, Any]:
        return {"notes": optional_text(payload, "notes")}

    def on_approve(self, ctx, document, decision, data) -> ActionOutcome:
        self.stamp(ctx, document, "approved")
        document.approval_notes = data["notes"]
        return ActionOutcome(
            decision.single_destination,
            {"remaining_amount": document.remaining_amount},
        )

    parse_reject = staticmethod(_parse_optional_reason)

    def on_reject(self, ctx, document, decision, data) -> ActionOutcome:
        self.stamp(ctx, document, "rejected")
        document.rejection_reason = data["reason"]
        return ActionOutcome(decision.single_destination)

    # record_transaction

    def parse_record_transaction(
        self, ctx: HandlerContext, document: CashAdvanceModel, payload: Mapping[str, Any]
    ) -> dict[str, Any]:
        return {
            "transaction_date": require_not_future(
                require_date(payload, "transaction_date"), ctx.today, "transaction_date"
            ),
            "description": require_text(payload, "description"),
            "category": require_text(payload, "category", max_length=100),
            "amount": require_amount(payload, "amount"),
            "receipt_path": optional_text(payload, "receipt_path", max_length=500),
            "notes": optional_text(payload, "notes"),
        }

    def on_record_transaction(
        self,
        ctx: HandlerContext,
        document: CashAdvanceModel,
        decision: TransitionDecision,
        data: Mapping[str, Any],
    ) -> ActionOutcome:
        amount: Decimal = data["amount"]
        transaction_code = ctx.codes.generate(TRANSACTION_PREFIX)
        ctx.session.add(
            CashAdvanceTransactionModel(
                code=transaction_code,
                cash_advance_id=document.id,
                ca_code=document.code,
                transaction_date=data["transaction_date"],
                description=data["description"],
                category=data["category"],
                amount=amount,
                receipt_path=data["receipt_path"],
                notes=data["notes"],
                created_by=ctx.actor.code,
                created_at=ctx.now,
                updated_at=ctx.now,
            )
        )
        document.used_amount = document.used_amount + amount
        document.remaining_amount = document.remaining_amount - amount
        _check_balance(document)

        new_status = "fully_used" if document.remaining_amount == 0 else "partially_used"
        return ActionOutcome(
            new_status,
            {
                "transaction_code": transaction_code,
                "used_amount": document.used_amount,
                "remaining_amount": document.remaining_amount,
            },
        )

    # settle

    def parse_settle(
        self, ctx: HandlerContext, document: CashAdvanceModel, payload: Mapping[str, Any]
    ) -> dict[str, Any]:
        settlement_date = optional_date(payload, "settlement_date") or ctx.today
        return {
            "settlement_date": require_not_future(settlement_date, ctx.today, "settlement_date"),
            "refund_proof_path": optional_text(payload, "refund_proof_path", max_length=500),
            "notes": optional_text(payload, "notes"),
        }

    def on_settle(
        self,
        ctx: HandlerContext,
        document: CashAdvanceModel,
        decision: TransitionDecision,
        data: Mapping[str, Any],
    ) -> ActionOutcome:
        _check_balance(document)
        settlement_code = ctx.codes.generate(SettlementHandler.code_prefix)
        now = ctx.now
        ctx.session.add(
            SettlementModel(
                code=settlement_code,
                status=SETTLEMENT_WORKFLOW.initial_state,
                cash_advance_id=document.id,
                ca_code=document.code,
                settlement_date=data["settlement_date"],
                total_ca_amount=document.total_amount,
                total_used_amount=document.used_amount,
                remaining_amount=document.remaining_amount,
                ca_status_at_settle=document.status,
                refund_proof_path=data["refund_proof_path"],
                notes=data["notes"],
                created_by=ctx.actor.code,
                created_by_name=ctx.actor.name,
                created_at=now,
                updated_at=now,
            )
        )
        return ActionOutcome(
            decision.single_destination,
            {
                "settlement_code": settlement_code,
                "remaining_amount": document.remaining_amount,
            },
        )

    # settlement_approve / settlement_reject

    def on_settlement_approve(self, ctx, document, decision, data) -> ActionOutcome:
        settlement = _lock_open_settlement(ctx, document)
        status, settlement_status = resolve_settlement(ctx, document, settlement, approve=True)
        return ActionOutcome(
            status,
            {"settlement_code": settlement.code, "settlement_status": settlement_status},
        )

    parse_settlement_reject = staticmethod(_parse_optional_reason)

    def on_settlement_reject(self, ctx, document, decision, data) -> ActionOutcome:
        settlement = _lock_open_settlement(ctx, document)
        status, settlement_status = resolve_settlement(
            ctx, document, settlement, approve=False, reason=data["reason"]
        )
        return ActionOutcome(
            status,
            {"settlement_code": settlement.code, "settlement_status": settlement_status},
        )

    # views

    def deletable_children(self, document: CashAdvanceModel) -> list[Any]:
        return [t for t in document.transactions if not t.is_deleted]

    def children(self, document: CashAdvanceModel) -> dict[str, list[dict[str, Any]]]:
        return {
            "transactions": [
                row_to_dict(t) for t in document.transactions if not t.is_deleted
            ],
            "settlements": [
                row_to_dict(s) for s in document.settlements if not s.is_deleted
            ],
        }


# ---------------------------------------------------------------------------
# Settlement
# ---------------------------------------------------------------------------


class SettlementHandler(DocumentHandler):
    document_type = "settlement"
    model = SettlementModel
    workflow = SETTLEMENT_WORKFLOW
    code_prefix = "CASETTLE"
    search_columns = ("code", "ca_code")
    name_field = "ca_code"

    def lock(self, session, code):
        """Lock the parent advance before the settlement itself."""
        ca_code = session.execute(
            select(SettlementModel.ca_code).where(SettlementModel.code == code)
        ).scalar_one_or_none()
        if ca_code is not None:
            session.execute(
                select(CashAdvanceModel.id)
                .where(CashAdvanceModel.code == ca_code)
                .with_for_update()
            )
        return super().lock(session, code)

    def parse_create(self, ctx: HandlerContext, payload: Mapping[str, Any]) -> dict[str, Any]:
        raise ValidationFailedError(
            "Settlements are created by the settle action on a cash advance"
        )

    def build(self, ctx: HandlerContext, code: str, data: Mapping[str, Any]) -> SettlementModel:
        raise InternalError("Settlements are built by CashAdvanceHandler.on_settle")

    def _advance(self, ctx: HandlerContext, document: SettlementModel) -> CashAdvanceModel:
        advance = _lock_advance(ctx, document.ca_code)
        if advance is None:
            raise InvalidTransitionError(
                CASH_ADVANCE_WORKFLOW.name, "deleted", "settlement_approve"
            )
        return advance

    def on_approve(self, ctx, document, decision, data) -> ActionOutcome:
        advance = self._advance(ctx, document)
        advance_status, status = resolve_settlement(ctx, advance, document, approve=True)
        return ActionOutcome(status, {"ca_code": advance.code, "ca_status": advance_status})

    parse_reject = staticmethod(_parse_optional_reason)

    def on_reject(self, ctx, document, decision, data) -> ActionOutcome:
        advance = self._advance(ctx, document)
        advance_status, status = resolve_settlement(
            ctx, advance, document, approve=False, reason=data["reason"]
        )
        return ActionOutcome(status, {"ca_code": advance.code, "ca_status": advance_status})
