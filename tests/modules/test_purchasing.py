"""
Order-to-invoice chain: sales order -> purchase orders -> delivery order and
AP invoice on finance approval -> sales order invoicing on delivery.
"""

from datetime import date, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from backoffice_kernel.exceptions import (
    DocumentNotFoundError,
    GuardFailedError,
    InvalidTransitionError,
    ValidationFailedError,
)
from backoffice_modules.purchasing.orm import AccountsPayableInvoiceModel, DeliveryOrderModel

PROOF = {
    "received_date": "2025-03-03",
    "received_by": "Andi (warehouse)",
    "proof_of_delivery_path": "uploads/pod-001.jpg",
}


def _count(committed, model):
    return committed(lambda s: s.execute(select(func.count()).select_from(model)).scalar_one())


@pytest.fixture
def approve_finance(workflow_engine, approver):
    def _approve(po_code):
        workflow_engine.apply_action("purchase_order", po_code, "approve_spv", approver)
        return workflow_engine.apply_action("purchase_order", po_code, "approve_finance", approver)

    return _approve


class TestPurchaseOrderCreate:

    def test_total_from_items(self, workflow_engine, create_sales_order, create_purchase_order):
        po_code = create_purchase_order(create_sales_order())
        view = workflow_engine.get_document("purchase_order", po_code)
        assert view.status == "submitted"
        assert view["total_amount"] == Decimal("1600000")
        assert view["delivery_status"] == "not_created"
        assert [i["line_total"] for i in view.children["items"]] == [Decimal("1500000"), Decimal("100000")]
        assert view.children["items"][0]["code"] == "POI-2025-0001"

    def test_moves_sales_order_to_processing(
        self, workflow_engine, create_sales_order, create_purchase_order
    ):
        so_code = create_sales_order()
        po_code = create_purchase_order(so_code)
        sales_order = workflow_engine.get_document("sales_order", so_code)
        assert sales_order.status == "processing"
        [child] = sales_order.children["purchase_orders"]
        assert child["code"] == po_code

    def test_second_order_leaves_processing_alone(
        self, workflow_engine, create_sales_order, create_purchase_order
    ):
        so_code = create_sales_order()
        create_purchase_order(so_code)
        create_purchase_order(so_code, supplier_name="PT Baja")
        sales_order = workflow_engine.get_document("sales_order", so_code)
        assert sales_order.status == "processing"
        assert len(sales_order.children["purchase_orders"]) == 2

    def test_unknown_sales_order(self, create_purchase_order, workflow_engine):
        with pytest.raises(DocumentNotFoundError) as exc_info:
            create_purchase_order("SO-2025-0404")
        assert exc_info.value.kind == "not_found"
        assert workflow_engine.list_documents("purchase_order").pagination.total == 0

    def test_zero_price_allowed(self, workflow_engine, create_sales_order, create_purchase_order):
        po_code = create_purchase_order(
            create_sales_order(),
            items=[{"product_name": "Sample", "quantity": 1, "purchase_price": "0"}],
        )
        assert workflow_engine.get_document("purchase_order", po_code)["total_amount"] == 0

    @pytest.mark.parametrize(
        "item,field",
        [
            ({"product_name": "Pipe", "quantity": 0, "purchase_price": "1"}, "quantity"),
            ({"product_name": "Pipe", "quantity": 1, "purchase_price": "-1"}, "purchase_price"),
            ({"quantity": 1, "purchase_price": "1"}, "product_name"),
        ],
    )
    def test_invalid_items(self, create_sales_order, create_purchase_order, item, field):
        so_code = create_sales_order()
        with pytest.raises(ValidationFailedError) as exc_info:
            create_purchase_order(so_code, items=[item])
        assert exc_info.value.field == field

    def test_sales_order_deletable_only_before_orders(
        self, workflow_engine, create_sales_order, create_purchase_order, actor
    ):
        fresh = create_sales_order()
        workflow_engine.delete_document("sales_order", fresh, actor)

        busy = create_sales_order()
        create_purchase_order(busy)
        with pytest.raises(InvalidTransitionError):
            workflow_engine.delete_document("sales_order", busy, actor)


class TestApprovals:

    def test_finance_before_spv_is_invalid(
        self, workflow_engine, create_sales_order, create_purchase_order, approver
    ):
        po_code = create_purchase_order(create_sales_order())
        with pytest.raises(InvalidTransitionError):
            workflow_engine.apply_action("purchase_order", po_code, "approve_finance", approver)

    def test_reject_after_spv(self, workflow_engine, create_sales_order, create_purchase_order, approver):
        po_code = create_purchase_order(create_sales_order())
        workflow_engine.apply_action("purchase_order", po_code, "approve_spv", approver)
        with pytest.raises(GuardFailedError):
            workflow_engine.apply_action("purchase_order", po_code, "reject", approver)
        workflow_engine.apply_action("purchase_order", po_code, "reject", approver, {"reason": "Price too high"})

        view = workflow_engine.get_document("purchase_order", po_code)
        assert view.status == "rejected"
        assert view["approved_spv_by"] == approver.code
        assert view["rejection_reason"] == "Price too high"

    def test_approval_stamps(self, workflow_engine, create_sales_order, create_purchase_order, approve_finance, approver):
        po_code = create_purchase_order(create_sales_order())
        approve_finance(po_code)
        view = workflow_engine.get_document("purchase_order", po_code)
        assert view["approved_spv_by"] == approver.code
        assert view["approved_finance_by"] == approver.code
        assert view.allowed_actions == ()

    def test_approval_notes_stored(self, workflow_engine, create_sales_order, create_purchase_order, approver):
        po_code = create_purchase_order(create_sales_order())
        workflow_engine.apply_action(
            "purchase_order", po_code, "approve_spv", approver, {"notes": "Supplier confirmed stock"}
        )
        assert workflow_engine.get_document("purchase_order", po_code)["approval_notes"] == "Supplier confirmed stock"

        workflow_engine.apply_action("purchase_order", po_code, "approve_finance", approver)
        assert workflow_engine.get_document("purchase_order", po_code)["approval_notes"] == "Supplier confirmed stock"


class TestFinanceApprovalEffects:

    def test_exactly_one_delivery_order_and_invoice(
        self, workflow_engine, create_sales_order, create_purchase_order, approve_finance, committed
    ):
        so_code = create_sales_order()
        po_code = create_purchase_order(so_code)
        result = approve_finance(po_code)

        effects = {e["name"]: e for e in result.derived_fields["side_effects"]}
        assert set(effects) == {"create_delivery_order", "create_ap_invoice"}
        assert all(e["critical"] and e["dispatched"] for e in effects.values())
        do_code = effects["create_delivery_order"]["result"]["delivery_order_code"]
        assert do_code == "DO-2025-0001"
        assert effects["create_ap_invoice"]["result"]["ap_invoice_code"] == "AP-2025-0001"

        assert _count(committed, DeliveryOrderModel) == 1
        assert _count(committed, AccountsPayableInvoiceModel) == 1

        delivery_order = workflow_engine.get_document("delivery_order", do_code)
        assert delivery_order.status == "shipping"
        assert delivery_order["so_code"] == so_code
        assert tuple(delivery_order["purchase_order_codes"]) == (po_code,)
        assert workflow_engine.get_document("purchase_order", po_code)["delivery_status"] == "created"

    def test_invoice_terms(
        self, create_sales_order, create_purchase_order, approve_finance, committed, deterministic_clock
    ):
        po_code = create_purchase_order(create_sales_order())
        approve_finance(po_code)
        invoice = committed(lambda s: s.execute(select(AccountsPayableInvoiceModel)).scalar_one())
        assert invoice.po_code == po_code
        assert invoice.supplier_name == "CV Maju"
        assert invoice.amount == Decimal("1600000")
        assert invoice.status == "unpaid"
        assert invoice.invoice_date == deterministic_clock.today()
        assert invoice.due_date == date(2025, 3, 3) + timedelta(days=30)

    def test_retried_dispatch_creates_nothing(
        self, workflow_engine, create_sales_order, create_purchase_order, approve_finance,
        approver, committed,
    ):
        po_code = create_purchase_order(create_sales_order())
        approve_finance(po_code)

        for _ in range(2):
            outcomes = workflow_engine.redispatch(
                "purchase_order", po_code, "approved_spv", "approved_finance", approver
            )
            assert {o.name for o in outcomes} == {"create_delivery_order", "create_ap_invoice"}
            assert not any(o.dispatched for o in outcomes)

        assert _count(committed, DeliveryOrderModel) == 1
        assert _count(committed, AccountsPayableInvoiceModel) == 1

    def test_effects_audited_once(
        self, workflow_engine, create_sales_order, create_purchase_order, approve_finance, approver
    ):
        po_code = create_purchase_order(create_sales_order())
        approve_finance(po_code)
        workflow_engine.redispatch("purchase_order", po_code, "approved_spv", "approved_finance", approver)

        trace = workflow_engine.trace("purchase_order", po_code)
        assert trace.actions == (
            "create", "side_effect", "approve_spv", "approve_finance", "side_effect", "side_effect",
        )
        assert [e.notes for e in trace.entries if e.action == "side_effect"] == [
            "mark_sales_order_processing", "create_delivery_order", "create_ap_invoice",
        ]


class TestDelivery:

    @pytest.fixture
    def shipping(self, create_sales_order, create_purchase_order, approve_finance):
        so_code = create_sales_order()
        po_code = create_purchase_order(so_code)
        do_code = approve_finance(po_code).derived_fields["side_effects"][0]["result"]["delivery_order_code"]
        return so_code, po_code, do_code

    @pytest.mark.parametrize("missing", sorted(PROOF))
    def test_proof_required(self, workflow_engine, shipping, approver, missing):
        _, _, do_code = shipping
        payload = {k: v for k, v in PROOF.items() if k != missing}
        with pytest.raises(GuardFailedError) as exc_info:
            workflow_engine.apply_action("delivery_order", do_code, "deliver", approver, payload)
        assert exc_info.value.guard_name == "proof_of_delivery_provided"
        assert workflow_engine.get_document("delivery_order", do_code).status == "shipping"

    def test_future_received_date(self, workflow_engine, shipping, approver):
        _, _, do_code = shipping
        with pytest.raises(ValidationFailedError) as exc_info:
            workflow_engine.apply_action(
                "delivery_order", do_code, "deliver", approver, {**PROOF, "received_date": "2025-03-10"}
            )
        assert exc_info.value.field == "received_date"

    def test_deliver_invoices_sales_order(self, workflow_engine, shipping, approver):
        so_code, po_code, do_code = shipping
        result = workflow_engine.apply_action("delivery_order", do_code, "deliver", approver, PROOF)

        [effect] = result.derived_fields["side_effects"]
        assert effect["name"] == "mark_purchase_orders_delivered"
        assert effect["result"]["sales_order_invoiced"] is True

        delivery_order = workflow_engine.get_document("delivery_order", do_code)
        assert delivery_order.status == "delivered"
        assert delivery_order["received_by"] == "Andi (warehouse)"
        assert delivery_order["received_date"] == date(2025, 3, 3)
        assert workflow_engine.get_document("purchase_order", po_code)["delivery_status"] == "delivered"
        assert workflow_engine.get_document("sales_order", so_code).status == "invoicing"

    def test_waits_for_every_live_order(
        self, workflow_engine, create_sales_order, create_purchase_order, approve_finance, approver
    ):
        so_code = create_sales_order()
        first, second, dropped = (create_purchase_order(so_code) for _ in range(3))
        workflow_engine.apply_action("purchase_order", dropped, "reject", approver, {"reason": "Duplicate"})

        do_codes = [
            approve_finance(po).derived_fields["side_effects"][0]["result"]["delivery_order_code"]
            for po in (first, second)
        ]

        workflow_engine.apply_action("delivery_order", do_codes[0], "deliver", approver, PROOF)
        assert workflow_engine.get_document("sales_order", so_code).status == "processing"

        workflow_engine.apply_action("delivery_order", do_codes[1], "deliver", approver, PROOF)
        assert workflow_engine.get_document("sales_order", so_code).status == "invoicing"

    def test_invoicing_by_hand_waits_for_delivery(self, workflow_engine, shipping, approver):
        so_code, _, do_code = shipping
        with pytest.raises(GuardFailedError) as exc_info:
            workflow_engine.apply_action("sales_order", so_code, "ready_to_invoice", approver)
        assert exc_info.value.guard_name == "all_purchase_orders_delivered"
        assert workflow_engine.get_document("sales_order", so_code).status == "processing"

        workflow_engine.apply_action("delivery_order", do_code, "deliver", approver, PROOF)
        assert workflow_engine.get_document("sales_order", so_code).status == "invoicing"

    def test_sales_order_without_orders_cannot_invoice(self, workflow_engine, create_sales_order, approver):
        so_code = create_sales_order()
        with pytest.raises(GuardFailedError):
            workflow_engine.apply_action("sales_order", so_code, "ready_to_invoice", approver)
        assert workflow_engine.get_document("sales_order", so_code).status == "submitted"

    def test_no_new_orders_once_invoicing(self, shipping, workflow_engine, approver, create_purchase_order):
        so_code, _, do_code = shipping
        workflow_engine.apply_action("delivery_order", do_code, "deliver", approver, PROOF)
        with pytest.raises(ValidationFailedError) as exc_info:
            create_purchase_order(so_code)
        assert exc_info.value.field == "so_code"

    def test_deliver_twice_is_invalid(self, workflow_engine, shipping, approver):
        _, _, do_code = shipping
        workflow_engine.apply_action("delivery_order", do_code, "deliver", approver, PROOF)
        with pytest.raises(InvalidTransitionError):
            workflow_engine.apply_action("delivery_order", do_code, "deliver", approver, PROOF)
