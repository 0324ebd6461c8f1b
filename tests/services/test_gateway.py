"""
Token-authenticated gateway over the workflow engine.
"""

import pytest

from backoffice_kernel.domain.dtos import DocumentFilter
from backoffice_kernel.exceptions import DocumentNotFoundError, UnauthorizedError
from backoffice_kernel.logging_config import LogContext

REIMBURSEMENT = {
    "title": "Client visit Bandung",
    "submitted_by_user_name": "Budi Santoso",
    "items": [{"item_date": "2025-03-01", "description": "Train", "amount": "350000"}],
}


@pytest.fixture
def token(identity, actor):
    return identity.issue(actor)


class TestAuthentication:

    def test_authenticate_header(self, gateway, token, actor):
        assert gateway.authenticate_header(f"Bearer {token}") == actor

    def test_invalid_token_rejected_before_any_write(self, gateway, workflow_engine):
        with pytest.raises(UnauthorizedError):
            gateway.create_document("forged", "reimbursement", REIMBURSEMENT)
        assert workflow_engine.list_documents("reimbursement").pagination.total == 0


class TestDelegation:

    def test_full_round_trip(self, gateway, token, identity, approver):
        created = gateway.create_document(token, "reimbursement", REIMBURSEMENT)
        approver_token = identity.issue(approver)

        result = gateway.apply_action(
            approver_token, "reimbursement", created.code, "approve",
            {"bank_account_code": "BCA-001"},
        )
        assert result.new_status == "approved"

        view = gateway.get_document(token, "reimbursement", created.code)
        assert view.fields["approved_by"] == approver.code

        page = gateway.list_documents(token, "reimbursement", filter=DocumentFilter(status="approved"))
        assert [item.code for item in page.items] == [created.code]

    def test_delete(self, gateway, token):
        created = gateway.create_document(token, "reimbursement", REIMBURSEMENT)
        gateway.delete_document(token, "reimbursement", created.code)
        with pytest.raises(DocumentNotFoundError):
            gateway.get_document(token, "reimbursement", created.code)

    def test_correlation_id_in_logs(self, gateway, token, captured_logs):
        gateway.create_document(token, "reimbursement", REIMBURSEMENT, correlation_id="req-42")
        created = [r for r in captured_logs() if r["message"] == "document_created"]
        assert created[0]["correlation_id"] == "req-42"
        assert created[0]["actor_code"] == "EMP001"
        assert LogContext.get_all() == {}

    def test_correlation_id_generated(self, gateway, token, captured_logs):
        gateway.create_document(token, "reimbursement", REIMBURSEMENT)
        created = [r for r in captured_logs() if r["message"] == "document_created"]
        assert len(created[0]["correlation_id"]) == 36
