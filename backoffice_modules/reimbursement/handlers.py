"""
Reimbursement Handler (``backoffice_modules.reimbursement.handlers``).

Validates claims and their items, computes the claim total from the items,
and records the approver's bank account or the rejection reason.
"""

from __future__ import annotations

from collections.abc import Mapping
from decimal import Decimal
from typing import Any

from backoffice_modules.reimbursement.orm import ReimbursementItemModel, ReimbursementModel
from backoffice_modules.reimbursement.workflows import REIMBURSEMENT_WORKFLOW
from backoffice_services.handlers import ActionOutcome, DocumentHandler, HandlerContext, row_to_dict
from backoffice_services.payload import (
    optional_text,
    require_amount,
    require_date,
    require_items,
    require_text,
)

ITEM_PREFIX = "REIMI"


class ReimbursementHandler(DocumentHandler):
    document_type = "reimbursement"
    model = ReimbursementModel
    workflow = REIMBURSEMENT_WORKFLOW
    code_prefix = "REIM"
    search_columns = ("code", "title", "submitted_by_user_name", "project_code")
    name_field = "title"

    def parse_create(self, ctx: HandlerContext, payload: Mapping[str, Any]) -> dict[str, Any]:
        items = [
            {
                "item_date": require_date(item, "item_date"),
                "description": require_text(item, "description"),
                "amount": require_amount(item, "amount"),
                "attachment_path": optional_text(item, "attachment_path", max_length=500),
            }
            for item in require_items(payload, "items")
        ]
        return {
            "title": require_text(payload, "title", max_length=255),
            "submitted_by_user_name": require_text(payload, "submitted_by_user_name", max_length=150),
            "category_code": optional_text(payload, "category_code", max_length=50),
            "project_code": optional_text(payload, "project_code", max_length=50),
            "notes": optional_text(payload, "notes"),
            "items": items,
            "total_amount": sum((i["amount"] for i in items), Decimal("0")),
        }

    def build(self, ctx: HandlerContext, code: str, data: Mapping[str, Any]) -> ReimbursementModel:
        reimbursement = ReimbursementModel(
            code=code,
            title=data["title"],
            submitted_by_user_name=data["submitted_by_user_name"],
            category_code=data["category_code"],
            project_code=data["project_code"],
            notes=data["notes"],
            total_amount=data["total_amount"],
        )
        for item in data["items"]:
            reimbursement.items.append(
                ReimbursementItemModel(
                    code=ctx.codes.generate(ITEM_PREFIX),
                    created_by=ctx.actor.code,
                    created_at=ctx.now,
                    updated_at=ctx.now,
                    **item,
                )
            )
        return reimbursement

    def parse_approve(self, ctx, document, payload) -> dict[str, Any]:
        return {
            "bank_account_code": optional_text(payload, "bank_account_code", max_length=50),
            "payment_proof_path": optional_text(payload, "payment_proof_path", max_length=500),
        }

    def on_approve(self, ctx, document, decision, data) -> ActionOutcome:
        self.stamp(ctx, document, "approved")
        document.bank_account_code = data["bank_account_code"]
        if data["payment_proof_path"]:
            document.payment_proof_path = data["payment_proof_path"]
        return ActionOutcome(
            decision.single_destination,
            {"bank_account_code": document.bank_account_code},
        )

    def parse_reject(self, ctx, document, payload) -> dict[str, Any]:
        return {"reason": optional_text(payload, "reason")}

    def on_reject(self, ctx, document, decision, data) -> ActionOutcome:
        self.stamp(ctx, document, "rejected")
        document.rejection_reason = data["reason"]
        return ActionOutcome(decision.single_destination)

    def deletable_children(self, document: ReimbursementModel) -> list[Any]:
        return [i for i in document.items if not i.is_deleted]

    def children(self, document: ReimbursementModel) -> dict[str, list[dict[str, Any]]]:
        return {"items": [row_to_dict(i) for i in document.items if not i.is_deleted]}
