import pytest

from partsflow.errors import (
    ExceedsReceivedQuantityError,
    InsufficientStockError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from partsflow.extensions import db
from partsflow.models import PurchaseReturn, PurchaseReturnLine, StockItem
from partsflow.services import inward_service
from partsflow.services import purchase_order_service as po_service
from partsflow.services import purchase_return_service as returns
from partsflow.services.purchase_return_service import (
    REFUND_STATUS_COMPLETED,
    REFUND_STATUS_NOT_APPLICABLE,
    REFUND_STATUS_PARTIAL,
    REFUND_STATUS_PENDING,
    RETURN_STATUS_APPROVED,
    RETURN_STATUS_CANCELLED,
    RETURN_STATUS_CLOSED,
    RETURN_STATUS_DELIVERED,
    RETURN_STATUS_DRAFT,
    RETURN_STATUS_PENDING_APPROVAL,
    RETURN_STATUS_SHIPPED,
)


def _qty(item_id):
    return db.session.get(StockItem, item_id).quantity_on_hand


def _submitted_return(lines):
    purchase_return = returns.create_purchase_return(vendor_name="Bosch Distributors", lines=lines)
    returns.submit_return_for_approval(purchase_return.id)
    db.session.commit()
    return purchase_return


@pytest.fixture
def approved_return(brake_pad):
    purchase_return = _submitted_return([{"part_number": "BRK-001", "quantity": 2, "reason": "defective"}])
    returns.approve_return(purchase_return.id, actor="manager")
    db.session.commit()
    return purchase_return


class TestApproval:
    def test_draft_totals_and_approval_deducts(self, brake_pad):
        purchase_return = returns.create_purchase_return(
            vendor_name="Bosch Distributors",
            lines=[{"part_number": "BRK-001", "quantity": 2, "reason": "DEFECTIVE", "condition": "opened"}],
        )
        db.session.commit()
        assert purchase_return.status == RETURN_STATUS_DRAFT
        assert purchase_return.document_number.startswith("PR")
        assert purchase_return.total_cents == 2360
        assert purchase_return.refund_status == REFUND_STATUS_PENDING
        assert purchase_return.lines[0].condition == "OPENED"

        returns.submit_return_for_approval(purchase_return.id)
        assert purchase_return.status == RETURN_STATUS_PENDING_APPROVAL
        assert _qty(brake_pad.id) == 10

        purchase_return = returns.approve_return(purchase_return.id, actor="manager")
        db.session.commit()
        assert purchase_return.status == RETURN_STATUS_APPROVED
        assert purchase_return.stock_deducted is True
        assert purchase_return.approved_by == "manager"
        assert _qty(brake_pad.id) == 8

    def test_reason_is_required(self, brake_pad):
        with pytest.raises(ValidationError):
            returns.create_purchase_return(
                vendor_name="Bosch Distributors",
                lines=[{"part_number": "BRK-001", "quantity": 1}],
            )
        db.session.rollback()

    def test_shortfall_blocks_approval(self, brake_pad, oil_filter):
        purchase_return = _submitted_return([
            {"part_number": "BRK-001", "quantity": 2, "reason": "EXCESS_STOCK"},
            {"part_number": "OIL-100", "quantity": 6, "reason": "EXCESS_STOCK"},
        ])
        with pytest.raises(InsufficientStockError):
            returns.approve_return(purchase_return.id)
        db.session.rollback()

        assert _qty(brake_pad.id) == 10
        assert db.session.get(PurchaseReturn, purchase_return.id).status == RETURN_STATUS_PENDING_APPROVAL

    def test_cancel_after_approval_restores_stock(self, approved_return, brake_pad):
        purchase_return = returns.cancel_return(approved_return.id, "Vendor refused")
        db.session.commit()
        assert purchase_return.status == RETURN_STATUS_CANCELLED
        assert _qty(brake_pad.id) == 10


class TestShippingAndRefunds:
    def test_full_lifecycle_with_refunds(self, approved_return):
        with pytest.raises(ValidationError):
            returns.mark_return_shipped(approved_return.id, shipment_method="CARRIER_PIGEON")
        db.session.rollback()

        purchase_return = returns.mark_return_shipped(
            approved_return.id, shipment_method="courier", carrier="BlueDart", tracking_number="BD123",
        )
        assert purchase_return.status == RETURN_STATUS_SHIPPED
        assert purchase_return.shipped_at is not None

        purchase_return = returns.record_refund(approved_return.id, amount_cents=1000, method="CREDIT_NOTE")
        assert purchase_return.refund_status == REFUND_STATUS_PARTIAL
        assert purchase_return.balance_cents == 1360
        db.session.commit()

        with pytest.raises(ValidationError):
            returns.record_refund(approved_return.id, amount_cents=1361, method="CASH")
        db.session.rollback()

        returns.mark_return_delivered(approved_return.id)
        purchase_return = returns.close_return(approved_return.id)
        assert purchase_return.status == RETURN_STATUS_CLOSED

        purchase_return = returns.record_refund(approved_return.id, amount_cents=1360, method="bank transfer")
        db.session.commit()
        assert purchase_return.refund_status == REFUND_STATUS_COMPLETED
        assert purchase_return.refund_method == "BANK_TRANSFER"
        assert purchase_return.refunded_cents == 2360

    def test_close_without_refund(self, approved_return):
        returns.mark_return_shipped(approved_return.id, shipment_method="PICKUP")
        returns.mark_return_delivered(approved_return.id)
        purchase_return = returns.close_return(approved_return.id, without_refund=True)
        db.session.commit()
        assert purchase_return.refund_status == REFUND_STATUS_NOT_APPLICABLE

        with pytest.raises(InvalidTransitionError):
            returns.record_refund(approved_return.id, amount_cents=100, method="CASH")
        db.session.rollback()

    def test_shipped_return_cannot_be_cancelled(self, approved_return):
        returns.mark_return_shipped(approved_return.id, shipment_method="COURIER")
        db.session.commit()
        with pytest.raises(InvalidTransitionError):
            returns.cancel_return(approved_return.id)
        db.session.rollback()

    def test_no_refund_before_approval(self, brake_pad):
        purchase_return = _submitted_return([{"part_number": "BRK-001", "quantity": 1, "reason": "DAMAGED"}])
        with pytest.raises(InvalidTransitionError):
            returns.record_refund(purchase_return.id, amount_cents=100, method="CASH")
        db.session.rollback()

    def test_delivery_requires_shipment(self, approved_return):
        with pytest.raises(InvalidTransitionError):
            returns.mark_return_delivered(approved_return.id)
        db.session.rollback()
        assert db.session.get(PurchaseReturn, approved_return.id).status != RETURN_STATUS_DELIVERED


class TestReturnAgainstInward:
    @pytest.fixture
    def inward(self, brake_pad):
        inward = inward_service.create_stock_inward(
            vendor_name="Local Supplier",
            lines=[{"part_number": "BRK-001", "quantity": 3, "unit_price_cents": 900, "tax_rate_bps": 0}],
        )
        db.session.commit()
        return inward

    def test_inward_must_be_verified(self, inward):
        with pytest.raises(InvalidTransitionError):
            returns.create_return_from_stock_inward(
                inward.id, lines=[{"part_number": "BRK-001", "quantity": 1, "reason": "DEFECTIVE"}],
            )
        db.session.rollback()

    def test_defaults_from_inward(self, inward, brake_pad):
        inward_service.submit_for_verification(inward.id)
        inward_service.verify_and_update_stock(inward.id)
        db.session.commit()

        purchase_return = returns.create_return_from_stock_inward(
            inward.id, lines=[{"part_number": "brk-001", "quantity": 2, "reason": "DEFECTIVE"}],
        )
        db.session.commit()

        assert purchase_return.vendor_name == "Local Supplier"
        assert purchase_return.stock_inward_id == inward.id
        assert purchase_return.lines[0].unit_price_cents == 900
        assert purchase_return.total_cents == 1800

    def test_bounded_by_inwarded_quantity(self, inward, make_item):
        make_item("OTHER-1", 5)
        inward_service.submit_for_verification(inward.id)
        inward_service.verify_and_update_stock(inward.id)
        db.session.commit()

        with pytest.raises(ExceedsReceivedQuantityError) as excinfo:
            returns.create_return_from_stock_inward(
                inward.id, lines=[{"part_number": "BRK-001", "quantity": 4, "reason": "DEFECTIVE"}],
            )
        db.session.rollback()
        assert excinfo.value.max_allowed == 3
        assert excinfo.value.requested == 4

        with pytest.raises(NotFoundError):
            returns.create_return_from_stock_inward(
                inward.id, lines=[{"part_number": "OTHER-1", "quantity": 1, "reason": "DEFECTIVE"}],
            )
        db.session.rollback()


class TestReturnBounds:
    @pytest.fixture
    def verified_inward(self, brake_pad):
        inward = inward_service.create_stock_inward(
            vendor_name="Local Supplier",
            lines=[{"part_number": "BRK-001", "quantity": 3, "unit_price_cents": 900, "tax_rate_bps": 0}],
        )
        inward_service.submit_for_verification(inward.id)
        inward_service.verify_and_update_stock(inward.id)
        db.session.commit()
        return inward

    def _return(self, inward, *quantities):
        return returns.create_return_from_stock_inward(
            inward.id,
            lines=[{"part_number": "BRK-001", "quantity": qty, "reason": "DEFECTIVE"} for qty in quantities],
        )

    def test_repeated_part_lines_are_summed(self, verified_inward):
        with pytest.raises(ExceedsReceivedQuantityError) as excinfo:
            self._return(verified_inward, 2, 2)
        db.session.rollback()

        assert excinfo.value.requested == 4
        assert excinfo.value.max_allowed == 3
        assert db.session.query(PurchaseReturn).count() == 0

    def test_string_quantity_is_coerced_before_bound(self, verified_inward):
        with pytest.raises(ExceedsReceivedQuantityError) as excinfo:
            self._return(verified_inward, "13")
        db.session.rollback()
        assert excinfo.value.requested == 13

        with pytest.raises(ValidationError):
            self._return(verified_inward, "lots")
        db.session.rollback()

        purchase_return = self._return(verified_inward, "2")
        db.session.commit()
        assert purchase_return.lines[0].quantity == 2

    def test_earlier_returns_use_up_the_bound(self, verified_inward):
        first = self._return(verified_inward, 2)
        self._return(verified_inward, 1)
        db.session.commit()

        with pytest.raises(ExceedsReceivedQuantityError) as excinfo:
            self._return(verified_inward, 1)
        db.session.rollback()
        assert excinfo.value.max_allowed == 0

        returns.cancel_return(first.id, "Raised twice")
        db.session.commit()

        again = self._return(verified_inward, 2)
        db.session.commit()
        assert again.status == RETURN_STATUS_DRAFT

    def test_added_line_counts_against_bound(self, verified_inward):
        purchase_return = self._return(verified_inward, 2)
        db.session.commit()

        with pytest.raises(ExceedsReceivedQuantityError) as excinfo:
            returns.add_return_line(
                purchase_return.id, {"part_number": "BRK-001", "quantity": 2, "reason": "DAMAGED"},
            )
        db.session.rollback()
        assert excinfo.value.max_allowed == 1

        purchase_return = returns.add_return_line(
            purchase_return.id, {"part_number": "BRK-001", "quantity": 1, "reason": "DAMAGED"},
        )
        db.session.commit()
        assert [line.quantity for line in purchase_return.lines] == [2, 1]
        assert purchase_return.lines[1].unit_price_cents == 900


class TestReturnAgainstPurchaseOrder:
    @pytest.fixture
    def received_order(self, brake_pad, oil_filter):
        order = po_service.create_purchase_order(
            vendor_name="Bosch Distributors",
            lines=[
                {"part_number": "BRK-001", "quantity": 4},
                {"part_number": "OIL-100", "quantity": 6},
            ],
        )
        po_service.submit_purchase_order(order.id)
        po_service.inward_parts(order.id, [{"part_number": "BRK-001", "quantity": 3}])
        po_service.inward_parts(order.id, [{"part_number": "OIL-100", "quantity": 6}], update_stock=False)
        db.session.commit()
        return order

    def test_defaults_from_order(self, received_order, brake_pad):
        purchase_return = returns.create_return_from_purchase_order(
            received_order.id, lines=[{"part_number": "BRK-001", "quantity": 2, "reason": "WRONG_ITEM"}],
        )
        db.session.commit()

        assert purchase_return.vendor_name == "Bosch Distributors"
        assert purchase_return.purchase_order_id == received_order.id
        assert purchase_return.stock_inward_id is None
        assert purchase_return.lines[0].unit_price_cents == 1000
        assert purchase_return.total_cents == 2360

    def test_bounded_by_stocked_receipts(self, received_order):
        returns.create_return_from_purchase_order(
            received_order.id, lines=[{"part_number": "BRK-001", "quantity": 2, "reason": "DEFECTIVE"}],
        )
        db.session.commit()

        with pytest.raises(ExceedsReceivedQuantityError) as excinfo:
            returns.create_return_from_purchase_order(
                received_order.id, lines=[{"part_number": "BRK-001", "quantity": 2, "reason": "DEFECTIVE"}],
            )
        db.session.rollback()
        assert excinfo.value.max_allowed == 1

    def test_receipts_that_skipped_stock_are_not_returnable(self, received_order):
        with pytest.raises(NotFoundError):
            returns.create_return_from_purchase_order(
                received_order.id, lines=[{"part_number": "OIL-100", "quantity": 1, "reason": "DEFECTIVE"}],
            )
        db.session.rollback()

    def test_order_without_stocked_receipts(self, brake_pad):
        order = po_service.create_purchase_order(
            vendor_name="Bosch Distributors", lines=[{"part_number": "BRK-001", "quantity": 4}],
        )
        po_service.submit_purchase_order(order.id)
        db.session.commit()

        with pytest.raises(InvalidTransitionError):
            returns.create_return_from_purchase_order(
                order.id, lines=[{"part_number": "BRK-001", "quantity": 1, "reason": "DEFECTIVE"}],
            )
        db.session.rollback()


class TestDeleteReturn:
    def test_draft_is_deleted_with_lines(self, brake_pad):
        purchase_return = returns.create_purchase_return(
            vendor_name="Bosch Distributors",
            lines=[{"part_number": "BRK-001", "quantity": 1, "reason": "DEFECTIVE"}],
        )
        db.session.commit()
        return_id = purchase_return.id

        returns.delete_purchase_return(return_id)
        db.session.commit()

        with pytest.raises(NotFoundError):
            returns.get_purchase_return(return_id)
        assert db.session.query(PurchaseReturnLine).count() == 0

    def test_submitted_return_must_be_cancelled(self, brake_pad):
        purchase_return = _submitted_return([{"part_number": "BRK-001", "quantity": 1, "reason": "DEFECTIVE"}])

        with pytest.raises(InvalidTransitionError):
            returns.delete_purchase_return(purchase_return.id)
        db.session.rollback()
        assert db.session.get(PurchaseReturn, purchase_return.id).status == RETURN_STATUS_PENDING_APPROVAL
