import pytest

from partsflow.errors import (
    DuplicateKeyError,
    EmptyDocumentError,
    ExceedsOrderedQuantityError,
    InvalidTransitionError,
    NotFoundError,
)
from partsflow.extensions import db
from partsflow.models import PurchaseOrder, PurchaseOrderLine, StockItem
from partsflow.services import purchase_order_service as po_service
from partsflow.services.purchase_order_service import (
    PO_STATUS_CANCELLED,
    PO_STATUS_CLOSED,
    PO_STATUS_DRAFT,
    PO_STATUS_PARTIALLY_RECEIVED,
    PO_STATUS_PENDING,
    PO_STATUS_RECEIVED,
)


def _qty(item_id):
    return db.session.get(StockItem, item_id).quantity_on_hand


@pytest.fixture
def submitted_order(brake_pad, oil_filter):
    order = po_service.create_purchase_order(
        vendor_name="Bosch Distributors",
        lines=[
            {"part_number": "BRK-001", "quantity": 4},
            {"stock_item_id": oil_filter.id, "quantity": 10, "unit_price_cents": 250},
        ],
        actor="buyer",
    )
    po_service.submit_purchase_order(order.id)
    db.session.commit()
    return order


class TestCreatePurchaseOrder:
    def test_draft_with_priced_lines(self, brake_pad):
        order = po_service.create_purchase_order(
            vendor_name="Bosch Distributors",
            lines=[{"part_number": "brk-001", "quantity": 4}],
        )
        db.session.commit()

        assert order.status == PO_STATUS_DRAFT
        assert order.document_number.startswith("PO")
        line = order.lines[0]
        assert line.stock_item_id == brake_pad.id
        assert line.unit_price_cents == 1000
        assert line.tax_rate_bps == 1800
        assert order.subtotal_cents == 4000
        assert order.tax_cents == 720
        assert order.total_cents == 4720
        assert order.payment_status == "UNPAID"

    def test_unknown_part_can_be_ordered(self, db_session):
        order = po_service.create_purchase_order(
            vendor_name="Vendor",
            lines=[{"part_number": "NEW-1", "part_name": "New Part", "quantity": 2, "unit_price_cents": 500}],
        )
        assert order.lines[0].stock_item_id is None
        assert order.total_cents == 1000

    def test_duplicate_part_rejected(self, brake_pad):
        order = po_service.create_purchase_order(vendor_name="Vendor", lines=[{"part_number": "BRK-001", "quantity": 1}])
        db.session.commit()
        with pytest.raises(DuplicateKeyError):
            po_service.add_ordered_part(order.id, {"stock_item_id": brake_pad.id, "quantity": 3})
        db.session.rollback()
        assert len(db.session.get(PurchaseOrder, order.id).lines) == 1

    def test_submit_requires_lines(self, db_session):
        order = po_service.create_purchase_order(vendor_name="Vendor")
        with pytest.raises(EmptyDocumentError):
            po_service.submit_purchase_order(order.id)
        db_session.rollback()

    def test_unknown_order(self, db_session):
        with pytest.raises(NotFoundError):
            po_service.get_purchase_order(12345)


class TestInwardAndReject:
    def test_partial_then_full_receipt(self, submitted_order, brake_pad, oil_filter):
        assert submitted_order.status == PO_STATUS_PENDING

        order = po_service.inward_parts(submitted_order.id, [{"part_number": "BRK-001", "quantity": 3}])
        db.session.commit()
        assert order.status == PO_STATUS_PARTIALLY_RECEIVED
        assert _qty(brake_pad.id) == 13

        order = po_service.inward_parts(order.id, [
            {"part_number": "BRK-001", "quantity": 1},
            {"part_number": "OIL-100", "quantity": 8},
        ])
        order = po_service.reject_parts(order.id, [{"part_number": "OIL-100", "quantity": 2}], reason="Crushed box")
        db.session.commit()

        assert order.status == PO_STATUS_RECEIVED
        assert _qty(brake_pad.id) == 14
        assert _qty(oil_filter.id) == 13
        assert order.pending_parts() == []
        assert [r.kind for r in order.receipts] == ["INWARD", "INWARD", "INWARD", "REJECT"]

    def test_receipt_beyond_ordered_rejected(self, submitted_order, brake_pad):
        po_service.inward_parts(submitted_order.id, [{"part_number": "BRK-001", "quantity": 3}])
        db.session.commit()

        with pytest.raises(ExceedsOrderedQuantityError) as excinfo:
            po_service.inward_parts(submitted_order.id, [{"part_number": "BRK-001", "quantity": 2}])
        db.session.rollback()

        assert excinfo.value.max_allowed == 1
        assert _qty(brake_pad.id) == 13

    def test_bound_counts_whole_batch(self, submitted_order, brake_pad, oil_filter):
        with pytest.raises(ExceedsOrderedQuantityError):
            po_service.inward_parts(submitted_order.id, [
                {"part_number": "OIL-100", "quantity": 5},
                {"part_number": "BRK-001", "quantity": 2},
                {"part_number": "OIL-100", "quantity": 6},
            ])
        db.session.rollback()

        assert _qty(oil_filter.id) == 5
        assert _qty(brake_pad.id) == 10
        assert db.session.get(PurchaseOrder, submitted_order.id).receipts == []

    def test_rejected_units_never_touch_stock(self, submitted_order, brake_pad):
        order = po_service.reject_parts(submitted_order.id, [{"part_number": "BRK-001", "quantity": 4}])
        assert _qty(brake_pad.id) == 10
        assert order.pending_parts()[0]["part_number"] == "OIL-100"
        assert order.status == PO_STATUS_PARTIALLY_RECEIVED

    def test_inward_without_stock_update(self, submitted_order, brake_pad):
        order = po_service.inward_parts(
            submitted_order.id,
            [{"part_number": "BRK-001", "quantity": 4}],
            update_stock=False,
        )
        assert _qty(brake_pad.id) == 10
        assert order.receipts[0].stock_updated is False

    def test_inward_of_unstocked_part_needs_stock_item(self, db_session):
        order = po_service.create_purchase_order(
            vendor_name="Vendor",
            lines=[{"part_number": "NEW-1", "part_name": "New", "quantity": 2, "unit_price_cents": 100}],
        )
        po_service.submit_purchase_order(order.id)
        db_session.commit()

        with pytest.raises(NotFoundError):
            po_service.inward_parts(order.id, [{"part_number": "NEW-1", "quantity": 1}])
        db_session.rollback()

    def test_part_not_on_order(self, submitted_order):
        with pytest.raises(NotFoundError):
            po_service.inward_parts(submitted_order.id, [{"part_number": "ZZZ", "quantity": 1}])
        db.session.rollback()

    def test_draft_cannot_receive(self, brake_pad):
        order = po_service.create_purchase_order(vendor_name="Vendor", lines=[{"part_number": "BRK-001", "quantity": 1}])
        with pytest.raises(InvalidTransitionError):
            po_service.inward_parts(order.id, [{"part_number": "BRK-001", "quantity": 1}])
        db.session.rollback()


class TestCloseCancelAndPay:
    def test_payment_updates_balance(self, submitted_order):
        order = po_service.record_order_payment(submitted_order.id, 1000)
        assert order.paid_cents == 1000
        assert order.balance_cents == order.total_cents - 1000
        assert order.payment_status == "PARTIAL"

    def test_close_received_order(self, submitted_order):
        po_service.reject_parts(submitted_order.id, [
            {"part_number": "BRK-001", "quantity": 4},
            {"part_number": "OIL-100", "quantity": 10},
        ])
        order = po_service.close_purchase_order(submitted_order.id)
        assert order.status == PO_STATUS_CLOSED
        assert order.closed_at is not None

    def test_received_order_cannot_be_cancelled(self, submitted_order):
        po_service.reject_parts(submitted_order.id, [
            {"part_number": "BRK-001", "quantity": 4},
            {"part_number": "OIL-100", "quantity": 10},
        ])
        db.session.commit()
        with pytest.raises(InvalidTransitionError):
            po_service.cancel_purchase_order(submitted_order.id)
        db.session.rollback()

    def test_cancel_keeps_receipts_and_stock(self, submitted_order, brake_pad):
        po_service.inward_parts(submitted_order.id, [{"part_number": "BRK-001", "quantity": 2}])
        order = po_service.cancel_purchase_order(submitted_order.id, "Vendor out of stock")
        db.session.commit()

        assert order.status == PO_STATUS_CANCELLED
        assert order.cancellation_reason == "Vendor out of stock"
        assert len(order.receipts) == 1
        assert _qty(brake_pad.id) == 12

        with pytest.raises(InvalidTransitionError):
            po_service.inward_parts(order.id, [{"part_number": "BRK-001", "quantity": 1}])
        db.session.rollback()

    def test_list_by_status(self, submitted_order, brake_pad):
        po_service.create_purchase_order(vendor_name="Other", lines=[{"part_number": "BRK-001", "quantity": 1}])
        db.session.commit()
        pending = po_service.list_purchase_orders(status=PO_STATUS_PENDING)
        assert [o.id for o in pending] == [submitted_order.id]


class TestDeleteOrder:
    def test_draft_is_deleted_with_lines(self, brake_pad):
        order = po_service.create_purchase_order(
            vendor_name="Bosch Distributors", lines=[{"part_number": "BRK-001", "quantity": 2}],
        )
        db.session.commit()
        order_id = order.id

        po_service.delete_purchase_order(order_id)
        db.session.commit()

        assert db.session.get(PurchaseOrder, order_id) is None
        assert db.session.query(PurchaseOrderLine).count() == 0

    def test_submitted_order_must_be_cancelled(self, submitted_order):
        with pytest.raises(InvalidTransitionError):
            po_service.delete_purchase_order(submitted_order.id)
        db.session.rollback()
        assert db.session.get(PurchaseOrder, submitted_order.id).status == PO_STATUS_PENDING

    def test_unknown_order(self, db_session):
        with pytest.raises(NotFoundError):
            po_service.delete_purchase_order(9999)
        db_session.rollback()
