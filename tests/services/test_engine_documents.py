"""
WorkflowEngine create / read / list / delete paths and the records every
operation leaves behind (audit trail, workflow trace, logs).
"""

import pytest
from sqlalchemy import select

from backoffice_kernel.domain.dtos import DocumentFilter, PageRequest
from backoffice_kernel.exceptions import (
    ConflictError,
    DocumentNotFoundError,
    IdempotencyConflictError,
    InvalidTransitionError,
    UnknownDocumentTypeError,
    ValidationFailedError,
)
from backoffice_modules.reimbursement.orm import ReimbursementItemModel
from backoffice_services import EngineOptions, WorkflowEngine


def _claim(title="Client visit Bandung", *amounts):
    return {
        "title": title,
        "submitted_by_user_name": "Budi Santoso",
        "items": [
            {"item_date": "2025-03-01", "description": f"Item {i}", "amount": amount}
            for i, amount in enumerate(amounts or ("350000",), start=1)
        ],
    }


class TestCreate:

    def test_initial_state_and_metadata(self, workflow_engine, actor, deterministic_clock):
        result = workflow_engine.create_document("cash_advance", {
            "employee_name": "Budi Santoso",
            "purpose": "Site survey",
            "total_amount": "1000000",
        }, actor)
        assert result.created is True
        assert result.code == "CA-2025-0001"
        assert result.status == "draft"

        view = workflow_engine.get_document("cash_advance", result.code)
        assert view.version == 1
        assert view["created_by"] == actor.code
        assert view["created_by_name"] == actor.name
        assert view["request_date"] == deterministic_clock.today()
        assert view["remaining_amount"] == view["total_amount"]
        assert view.allowed_actions == ("submit",)

    def test_total_is_sum_of_items(self, workflow_engine, actor):
        code = workflow_engine.create_document(
            "reimbursement", _claim("Trip", "350000", "125000.50"), actor
        ).code
        view = workflow_engine.get_document("reimbursement", code)
        assert str(view["total_amount"]) in ("475000.50", "475000.5")
        assert [i["code"] for i in view.children["items"]] == ["REIMI-2025-0001", "REIMI-2025-0002"]

    def test_invalid_payload_writes_nothing(self, workflow_engine, actor):
        with pytest.raises(ValidationFailedError) as exc_info:
            workflow_engine.create_document("cash_advance", {"employee_name": "Budi"}, actor)
        assert exc_info.value.field == "purpose"
        assert workflow_engine.list_documents("cash_advance").pagination.total == 0

    def test_failed_create_does_not_consume_a_code(self, workflow_engine, actor):
        with pytest.raises(ValidationFailedError):
            workflow_engine.create_document("reimbursement", _claim("Trip", "-1"), actor)
        assert workflow_engine.create_document("reimbursement", _claim(), actor).code == "REIM-2025-0001"

    def test_unknown_document_type(self, workflow_engine, actor):
        with pytest.raises(UnknownDocumentTypeError):
            workflow_engine.create_document("invoice", {}, actor)
        with pytest.raises(UnknownDocumentTypeError):
            workflow_engine.get_document("invoice", "INV-2025-0001")
        with pytest.raises(UnknownDocumentTypeError):
            workflow_engine.list_documents("invoice")

    def test_settlement_not_created_directly(self, workflow_engine, actor):
        with pytest.raises(ValidationFailedError):
            workflow_engine.create_document("settlement", {"ca_code": "CA-2025-0001"}, actor)

    def test_delivery_order_not_created_directly(self, workflow_engine, actor):
        with pytest.raises(ValidationFailedError):
            workflow_engine.create_document("delivery_order", {"po_code": "PO-2025-0001"}, actor)


class TestIdempotentCreate:

    def test_replay_returns_first_document(self, workflow_engine, actor):
        first = workflow_engine.create_document("reimbursement", _claim(), actor, idempotency_key="k-1")
        second = workflow_engine.create_document("reimbursement", _claim(), actor, idempotency_key="k-1")
        assert second.created is False
        assert second.code == first.code
        assert second.status == "submitted"
        assert workflow_engine.list_documents("reimbursement").pagination.total == 1

    def test_key_scoped_per_actor(self, workflow_engine, actor, approver):
        first = workflow_engine.create_document("reimbursement", _claim(), actor, idempotency_key="k-1")
        other = workflow_engine.create_document("reimbursement", _claim(), approver, idempotency_key="k-1")
        assert other.created is True
        assert other.code != first.code

    def test_key_reused_for_other_type(self, workflow_engine, actor):
        workflow_engine.create_document("reimbursement", _claim(), actor, idempotency_key="k-1")
        with pytest.raises(IdempotencyConflictError) as exc_info:
            workflow_engine.create_document(
                "sales_order", {"customer_name": "PT Sinar Jaya"}, actor, idempotency_key="k-1"
            )
        assert isinstance(exc_info.value, ConflictError)
        assert workflow_engine.list_documents("sales_order").pagination.total == 0


class TestVersioning:

    def test_version_increments(self, workflow_engine, create_cash_advance, actor):
        code = create_cash_advance(activate=False)
        result = workflow_engine.apply_action("cash_advance", code, "submit", actor, expected_version=1)
        assert result.version == 2
        assert workflow_engine.get_document("cash_advance", code).version == 2

    def test_stale_expected_version(self, workflow_engine, create_cash_advance, actor):
        code = create_cash_advance(activate=False)
        workflow_engine.apply_action("cash_advance", code, "submit", actor)
        with pytest.raises(ConflictError):
            workflow_engine.apply_action("cash_advance", code, "approve", actor, expected_version=1)
        assert workflow_engine.get_document("cash_advance", code).status == "submitted"


class TestTransitionsRejected:

    def test_action_not_in_table(self, workflow_engine, create_cash_advance, actor):
        code = create_cash_advance(activate=False)
        with pytest.raises(InvalidTransitionError) as exc_info:
            workflow_engine.apply_action("cash_advance", code, "approve", actor)
        assert exc_info.value.current_status == "draft"
        assert exc_info.value.allowed_actions == ("submit",)

    def test_unknown_code(self, workflow_engine, actor):
        with pytest.raises(DocumentNotFoundError):
            workflow_engine.apply_action("cash_advance", "CA-2025-9999", "submit", actor)


class TestReads:

    @pytest.fixture
    def claims(self, workflow_engine, actor, approver, deterministic_clock):
        codes = []
        for title, who in [
            ("Client visit Bandung", actor),
            ("Conference Jakarta", actor),
            ("Bandung warehouse audit", approver),
        ]:
            codes.append(workflow_engine.create_document("reimbursement", _claim(title), who).code)
            deterministic_clock.advance(60)
        workflow_engine.apply_action(
            "reimbursement", codes[1], "approve", approver, {"bank_account_code": "BCA-001"}
        )
        return codes

    def test_get_missing(self, workflow_engine):
        with pytest.raises(DocumentNotFoundError) as exc_info:
            workflow_engine.get_document("reimbursement", "REIM-2025-0042")
        assert exc_info.value.kind == "not_found"

    def test_newest_first(self, workflow_engine, claims):
        page = workflow_engine.list_documents("reimbursement")
        assert [item.code for item in page.items] == list(reversed(claims))
        assert page.pagination.to_dict() == {"page": 1, "page_size": 20, "total": 3, "total_pages": 1}

    def test_status_counts_ignore_status_filter(self, workflow_engine, claims):
        page = workflow_engine.list_documents(
            "reimbursement", filter=DocumentFilter(status="submitted")
        )
        assert {item.code for item in page.items} == {claims[0], claims[2]}
        assert page.pagination.total == 2
        assert dict(page.status_counts) == {"submitted": 2, "approved": 1}

    def test_search_is_case_insensitive(self, workflow_engine, claims):
        page = workflow_engine.list_documents("reimbursement", filter=DocumentFilter(search="bandung"))
        assert {item.code for item in page.items} == {claims[0], claims[2]}

    def test_blank_search_ignored(self, workflow_engine, claims):
        page = workflow_engine.list_documents("reimbursement", filter=DocumentFilter(search="   "))
        assert page.pagination.total == 3

    def test_created_by(self, workflow_engine, claims, approver):
        page = workflow_engine.list_documents(
            "reimbursement", filter=DocumentFilter(created_by=approver.code)
        )
        assert [item.code for item in page.items] == [claims[2]]

    def test_paging(self, workflow_engine, claims):
        page = workflow_engine.list_documents("reimbursement", page=PageRequest(page=2, size=2))
        assert [item.code for item in page.items] == [claims[0]]
        assert page.pagination.total_pages == 2

    def test_page_size_clamped(self, workflow_engine, session_factory, claims, deterministic_clock):
        small = WorkflowEngine(
            session_factory,
            workflow_engine.registry,
            dispatcher=workflow_engine.dispatcher,
            clock=deterministic_clock,
            options=EngineOptions(max_page_size=2),
        )
        page = small.list_documents("reimbursement", page=PageRequest(size=500))
        assert len(page.items) == 2
        assert page.pagination.page_size == 2

    def test_views_are_read_only(self, workflow_engine, claims):
        view = workflow_engine.get_document("reimbursement", claims[0])
        with pytest.raises(TypeError):
            view.fields["status"] = "approved"
        with pytest.raises(TypeError):
            view.children["items"][0]["amount"] = 1


class TestDelete:

    def test_soft_delete_cascades_to_children(self, workflow_engine, actor, committed):
        code = workflow_engine.create_document("reimbursement", _claim("Trip", "1", "2"), actor).code
        workflow_engine.delete_document("reimbursement", code, actor)

        with pytest.raises(DocumentNotFoundError):
            workflow_engine.get_document("reimbursement", code)
        flags = committed(
            lambda s: s.execute(select(ReimbursementItemModel.is_deleted)).scalars().all()
        )
        assert flags == [True, True]

    def test_hidden_from_lists_unless_requested(self, workflow_engine, actor):
        code = workflow_engine.create_document("reimbursement", _claim(), actor).code
        workflow_engine.delete_document("reimbursement", code, actor)

        assert workflow_engine.list_documents("reimbursement").pagination.total == 0
        page = workflow_engine.list_documents(
            "reimbursement", filter=DocumentFilter(include_deleted=True)
        )
        [item] = page.items
        assert item["is_deleted"] is True
        assert item["deleted_by"] == actor.code
        assert item.allowed_actions == ()

    def test_delete_twice_is_not_found(self, workflow_engine, actor):
        code = workflow_engine.create_document("reimbursement", _claim(), actor).code
        workflow_engine.delete_document("reimbursement", code, actor)
        with pytest.raises(DocumentNotFoundError):
            workflow_engine.delete_document("reimbursement", code, actor)

    def test_deleted_document_refuses_actions(self, workflow_engine, actor, approver):
        code = workflow_engine.create_document("reimbursement", _claim(), actor).code
        workflow_engine.delete_document("reimbursement", code, actor)
        with pytest.raises(DocumentNotFoundError):
            workflow_engine.apply_action(
                "reimbursement", code, "approve", approver, {"bank_account_code": "BCA-001"}
            )

    def test_only_from_deletable_states(self, workflow_engine, create_cash_advance, actor):
        code = create_cash_advance()
        with pytest.raises(InvalidTransitionError) as exc_info:
            workflow_engine.delete_document("cash_advance", code, actor)
        assert exc_info.value.action == "delete"
        assert exc_info.value.current_status == "active"
        assert "record_transaction" in exc_info.value.allowed_actions
        assert workflow_engine.get_document("cash_advance", code).status == "active"

    def test_rejected_advance_deletable(self, workflow_engine, create_cash_advance, actor, approver):
        code = create_cash_advance(activate=False)
        workflow_engine.apply_action("cash_advance", code, "submit", actor)
        workflow_engine.apply_action("cash_advance", code, "reject", approver, {"reason": "No budget"})
        workflow_engine.delete_document("cash_advance", code, actor)
        assert workflow_engine.list_documents("cash_advance").pagination.total == 0


class TestRecords:

    def test_audit_trail(self, workflow_engine, actor, approver):
        code = workflow_engine.create_document("reimbursement", _claim(), actor).code
        workflow_engine.apply_action("reimbursement", code, "reject", approver, {"reason": "Duplicate claim"})

        trace = workflow_engine.trace("reimbursement", code)
        assert trace.actions == ("create", "reject")
        create, reject = trace.entries
        assert create.before is None
        assert create.after["status"] == "submitted"
        assert reject.actor_code == approver.code
        assert reject.before["status"] == "submitted"
        assert reject.after["status"] == "rejected"
        assert reject.after["rejection_reason"] == "Duplicate claim"
        assert reject.notes == "Duplicate claim"

    def test_delete_audited(self, workflow_engine, actor):
        code = workflow_engine.create_document("reimbursement", _claim(), actor).code
        workflow_engine.delete_document("reimbursement", code, actor)
        assert workflow_engine.trace("reimbursement", code).actions == ("create", "delete")

    def test_rejected_action_leaves_no_audit(self, workflow_engine, actor, approver):
        code = workflow_engine.create_document("reimbursement", _claim(), actor).code
        with pytest.raises(ValidationFailedError):
            workflow_engine.apply_action("reimbursement", code, "reject", approver, {"reason": ""})
        assert workflow_engine.trace("reimbursement", code).actions == ("create",)

    def test_workflow_trace_records(self, workflow_engine, actor, approver, trace_records):
        code = workflow_engine.create_document("reimbursement", _claim(), actor).code
        with pytest.raises(ValidationFailedError):
            workflow_engine.apply_action("reimbursement", code, "approve", approver, {})
        workflow_engine.apply_action(
            "reimbursement", code, "approve", approver, {"bank_account_code": "BCA-001"}
        )
        with pytest.raises(InvalidTransitionError):
            workflow_engine.apply_action("reimbursement", code, "reject", approver, {"reason": "Late"})

        guard, success, invalid = trace_records
        assert guard["outcome"] == "guard_failed"
        assert guard["from_state"] == "submitted"
        assert "to_state" not in guard
        assert guard["reason"].startswith("Precondition failed")

        assert success["outcome"] == "success"
        assert success["to_state"] == "approved"
        assert success["workflow"] == "reimbursement"
        assert success["actor_code"] == approver.code
        assert success["document_code"] == code

        assert invalid["outcome"] == "invalid_transition"
        assert invalid["from_state"] == "approved"

    def test_transition_logged(self, workflow_engine, actor, captured_logs):
        code = workflow_engine.create_document("reimbursement", _claim(), actor).code
        workflow_engine.apply_action("reimbursement", code, "reject", actor, {"reason": "Typo"})
        [record] = [r for r in captured_logs() if r["message"] == "workflow_transition"]
        assert record["trace_type"] == "WORKFLOW_TRANSITION"
        assert record["document_type"] == "reimbursement"
        assert record["duration_ms"] >= 0
