import pytest

from partsflow.errors import (
    EmptyDocumentError,
    ExceedsOrderedQuantityError,
    InvalidTransitionError,
    NotFoundError,
)
from partsflow.extensions import db
from partsflow.models import StockInward, StockItem
from partsflow.services import inward_service, ledger_service
from partsflow.services import purchase_order_service as po_service
from partsflow.services.inward_service import (
    INWARD_STATUS_CANCELLED,
    INWARD_STATUS_PENDING_VERIFICATION,
    INWARD_STATUS_VERIFIED,
)


def _qty(item_id):
    return db.session.get(StockItem, item_id).quantity_on_hand


def _pending_inward(lines, **kwargs):
    inward = inward_service.create_stock_inward(vendor_name="Local Supplier", lines=lines, **kwargs)
    inward_service.submit_for_verification(inward.id)
    db.session.commit()
    return inward


class TestStandaloneInward:
    def test_verify_adds_every_line_to_stock(self, brake_pad, oil_filter):
        inward = _pending_inward(
            [
                {"part_number": "BRK-001", "quantity": 6},
                {"stock_item_id": oil_filter.id, "quantity": 2, "unit_price_cents": 280},
            ],
            invoice_number="INV-778",
        )
        assert inward.status == INWARD_STATUS_PENDING_VERIFICATION
        assert _qty(brake_pad.id) == 10

        inward = inward_service.verify_and_update_stock(inward.id, actor="storekeeper")
        db.session.commit()

        assert inward.status == INWARD_STATUS_VERIFIED
        assert inward.is_verified is True
        assert inward.stock_updated is True
        assert inward.verified_by == "storekeeper"
        assert _qty(brake_pad.id) == 16
        assert _qty(oil_filter.id) == 7

        movement = ledger_service.list_movements(brake_pad.id)[0]
        assert movement.document_type == "STOCK_INWARD"
        assert movement.document_number == inward.document_number

    def test_totals_follow_inward_prices(self, brake_pad):
        inward = inward_service.create_stock_inward(
            vendor_name="Local Supplier",
            lines=[{"part_number": "BRK-001", "quantity": 2, "unit_price_cents": 900, "tax_rate_bps": 0}],
            bill_discount_value=100,
        )
        assert inward.subtotal_cents == 1800
        assert inward.bill_discount_cents == 100
        assert inward.total_cents == 1700

    def test_lines_must_resolve_to_stock(self, db_session):
        with pytest.raises(NotFoundError):
            inward_service.create_stock_inward(
                vendor_name="Local Supplier",
                lines=[{"part_number": "GHOST", "part_name": "Ghost", "quantity": 1, "unit_price_cents": 10}],
            )
        db_session.rollback()
        assert db_session.query(StockInward).count() == 0

    def test_verification_is_single_use(self, brake_pad):
        inward = _pending_inward([{"part_number": "BRK-001", "quantity": 1}])
        inward_service.verify_and_update_stock(inward.id)
        db.session.commit()

        with pytest.raises(InvalidTransitionError):
            inward_service.verify_and_update_stock(inward.id)
        db.session.rollback()
        assert _qty(brake_pad.id) == 11

    def test_verified_inward_cannot_be_cancelled(self, brake_pad):
        inward = _pending_inward([{"part_number": "BRK-001", "quantity": 1}])
        inward_service.verify_and_update_stock(inward.id)
        db.session.commit()

        with pytest.raises(InvalidTransitionError):
            inward_service.cancel_stock_inward(inward.id)
        db.session.rollback()

    def test_cancel_pending_inward_leaves_stock(self, brake_pad):
        inward = _pending_inward([{"part_number": "BRK-001", "quantity": 5}])
        inward = inward_service.cancel_stock_inward(inward.id, "Wrong invoice")
        db.session.commit()

        assert inward.status == INWARD_STATUS_CANCELLED
        assert _qty(brake_pad.id) == 10

    def test_lines_locked_after_submit(self, brake_pad):
        inward = _pending_inward([{"part_number": "BRK-001", "quantity": 1}])
        with pytest.raises(InvalidTransitionError):
            inward_service.add_inward_line(inward.id, {"part_number": "BRK-001", "quantity": 1})
        db.session.rollback()

    def test_submit_requires_lines(self, db_session):
        inward = inward_service.create_stock_inward(vendor_name="Local Supplier")
        with pytest.raises(EmptyDocumentError):
            inward_service.submit_for_verification(inward.id)
        db_session.rollback()


class TestInwardAgainstPurchaseOrder:
    @pytest.fixture
    def order(self, brake_pad, oil_filter):
        order = po_service.create_purchase_order(
            vendor_name="Bosch Distributors",
            lines=[
                {"part_number": "BRK-001", "quantity": 4},
                {"part_number": "OIL-100", "quantity": 6},
            ],
        )
        po_service.submit_purchase_order(order.id)
        db.session.commit()
        return order

    def test_defaults_to_pending_parts(self, order):
        po_service.reject_parts(order.id, [{"part_number": "OIL-100", "quantity": 1}])
        inward = inward_service.create_inward_from_purchase_order(order.id, invoice_number="BD-1")
        db.session.commit()

        assert inward.vendor_name == "Bosch Distributors"
        assert inward.purchase_order_id == order.id
        assert {line.part_number: line.quantity for line in inward.lines} == {"BRK-001": 4, "OIL-100": 5}

    def test_verification_backfills_order_receipts(self, order, brake_pad, oil_filter):
        inward = inward_service.create_inward_from_purchase_order(order.id)
        inward_service.submit_for_verification(inward.id)
        inward_service.verify_and_update_stock(inward.id, actor="storekeeper")
        db.session.commit()

        order = po_service.get_purchase_order(order.id)
        assert order.status == po_service.PO_STATUS_RECEIVED
        assert {r.stock_inward_id for r in order.receipts} == {inward.id}
        assert all(r.stock_updated for r in order.receipts)
        assert _qty(brake_pad.id) == 14
        assert _qty(oil_filter.id) == 11

    def test_extra_part_is_stocked_without_receipt(self, order, make_item):
        wiper = make_item("WIP-1", 0)
        inward = inward_service.create_stock_inward(
            vendor_name="Bosch Distributors",
            purchase_order_id=order.id,
            lines=[{"part_number": "BRK-001", "quantity": 2}, {"part_number": "WIP-1", "quantity": 3}],
        )
        inward_service.submit_for_verification(inward.id)
        inward_service.verify_and_update_stock(inward.id)
        db.session.commit()

        assert _qty(wiper.id) == 3
        order = po_service.get_purchase_order(order.id)
        assert [(r.part_number, r.quantity) for r in order.receipts] == [("BRK-001", 2)]
        assert order.status == po_service.PO_STATUS_PARTIALLY_RECEIVED

    def test_verification_bounded_by_order(self, order, brake_pad):
        first = inward_service.create_inward_from_purchase_order(
            order.id, lines=[{"part_number": "BRK-001", "quantity": 3}],
        )
        second = inward_service.create_inward_from_purchase_order(
            order.id, lines=[{"part_number": "BRK-001", "quantity": 3}],
        )
        for inward in (first, second):
            inward_service.submit_for_verification(inward.id)
        inward_service.verify_and_update_stock(first.id)
        db.session.commit()

        with pytest.raises(ExceedsOrderedQuantityError):
            inward_service.verify_and_update_stock(second.id)
        db.session.rollback()

        assert _qty(brake_pad.id) == 13
        assert db.session.get(StockInward, second.id).status == INWARD_STATUS_PENDING_VERIFICATION

    def test_draft_order_cannot_be_inwarded(self, brake_pad):
        draft = po_service.create_purchase_order(vendor_name="V", lines=[{"part_number": "BRK-001", "quantity": 1}])
        with pytest.raises(InvalidTransitionError):
            inward_service.create_inward_from_purchase_order(draft.id)
        db.session.rollback()


class TestDeleteInward:
    def test_draft_is_deleted(self, brake_pad):
        inward = inward_service.create_stock_inward(
            vendor_name="Local Supplier", lines=[{"part_number": "BRK-001", "quantity": 2}],
        )
        db.session.commit()
        inward_id = inward.id

        inward_service.delete_stock_inward(inward_id)
        db.session.commit()
        assert db.session.get(StockInward, inward_id) is None

    def test_submitted_inward_cannot_be_deleted(self, brake_pad):
        inward = _pending_inward([{"part_number": "BRK-001", "quantity": 2}])

        with pytest.raises(InvalidTransitionError):
            inward_service.delete_stock_inward(inward.id)
        db.session.rollback()
        assert db.session.get(StockInward, inward.id).status == INWARD_STATUS_PENDING_VERIFICATION
