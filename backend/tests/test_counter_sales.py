import pytest

from partsflow.errors import (
    EmptyDocumentError,
    InsufficientStockError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from partsflow.extensions import db
from partsflow.models import CounterSale, CounterSalePayment, StockItem
from partsflow.services import counter_sale_service as sales
from partsflow.services.counter_sale_service import (
    SALE_STATUS_CANCELLED,
    SALE_STATUS_COMPLETED,
    SALE_STATUS_DRAFT,
    SALE_STATUS_REFUNDED,
    WALK_IN_CUSTOMER,
)


def _qty(item_id):
    return db.session.get(StockItem, item_id).quantity_on_hand


class TestQuickSale:
    def test_completes_and_deducts(self, brake_pad, oil_filter):
        sale = sales.quick_sale(
            items=[
                {"part_number": "BRK-001", "quantity": 2},
                {"stock_item_id": oil_filter.id, "quantity": 1},
            ],
            payments=[{"method": "cash", "amount_cents": 3990}],
            actor="counter",
        )
        db.session.commit()

        assert sale.status == SALE_STATUS_COMPLETED
        assert sale.document_number.startswith("CS")
        assert sale.customer_name == WALK_IN_CUSTOMER
        assert sale.stock_deducted is True
        assert sale.subtotal_cents == 3450
        assert sale.tax_cents == 540
        assert sale.total_cents == 3990
        assert sale.payment_status == "PAID"
        assert sale.balance_cents == 0
        assert sale.payments[0].method == "CASH"
        assert _qty(brake_pad.id) == 8
        assert _qty(oil_filter.id) == 4

    def test_shortfall_rolls_back_whole_sale(self, brake_pad, oil_filter):
        with pytest.raises(InsufficientStockError):
            sales.quick_sale(items=[
                {"part_number": "BRK-001", "quantity": 2},
                {"part_number": "OIL-100", "quantity": 6},
            ])
        db.session.rollback()

        assert _qty(brake_pad.id) == 10
        assert _qty(oil_filter.id) == 5
        assert db.session.query(CounterSale).count() == 0

    def test_same_part_on_two_lines_checked_together(self, oil_filter):
        with pytest.raises(InsufficientStockError):
            sales.quick_sale(items=[
                {"part_number": "OIL-100", "quantity": 3},
                {"part_number": "OIL-100", "quantity": 3},
            ])
        db.session.rollback()
        assert _qty(oil_filter.id) == 5

    def test_every_item_must_be_stocked(self, brake_pad):
        with pytest.raises(NotFoundError):
            sales.quick_sale(items=[
                {"part_number": "BRK-001", "quantity": 1},
                {"part_number": "HORN-1", "part_name": "Horn", "quantity": 1, "unit_price_cents": 800},
            ])
        db.session.rollback()
        assert _qty(brake_pad.id) == 10

    def test_bad_payment_method(self, brake_pad):
        with pytest.raises(ValidationError):
            sales.quick_sale(
                items=[{"part_number": "BRK-001", "quantity": 1}],
                payments=[{"method": "BITCOIN", "amount_cents": 100}],
            )
        db.session.rollback()


class TestDraftSale:
    def test_unknown_part_blocks_completion_until_stocked(self, make_item):
        sale = sales.create_counter_sale(
            lines=[{"part_number": "horn-1", "part_name": "Horn", "quantity": 1, "unit_price_cents": 800}],
            customer_name="Anita",
        )
        db.session.commit()
        assert sale.status == SALE_STATUS_DRAFT
        assert sale.lines[0].stock_item_id is None
        assert sale.total_cents == 800

        with pytest.raises(NotFoundError):
            sales.complete_sale(sale.id)
        db.session.rollback()

        horn = make_item("HORN-1", 3)
        sale = sales.complete_sale(sale.id)
        db.session.commit()

        assert sale.status == SALE_STATUS_COMPLETED
        assert sale.lines[0].stock_item_id == horn.id
        assert _qty(horn.id) == 2

    def test_edit_lines_while_draft(self, brake_pad, oil_filter):
        sale = sales.create_counter_sale(lines=[{"part_number": "BRK-001", "quantity": 1}])
        sale = sales.add_sale_items(sale.id, [{"part_number": "OIL-100", "quantity": 2, "discount_value": 100}])
        db.session.commit()
        assert sale.total_cents == 1770 + 800

        sale = sales.remove_sale_item(sale.id, sale.lines[0].id)
        db.session.commit()
        assert [l.part_number for l in sale.lines] == ["OIL-100"]
        assert sale.total_cents == 800

    def test_complete_requires_lines(self, db_session):
        sale = sales.create_counter_sale()
        with pytest.raises(EmptyDocumentError):
            sales.complete_sale(sale.id)
        db_session.rollback()

    def test_completed_sale_is_not_editable_but_takes_payments(self, brake_pad):
        sale = sales.quick_sale(items=[{"part_number": "BRK-001", "quantity": 1}])
        db.session.commit()
        assert sale.payment_status == "UNPAID"

        with pytest.raises(InvalidTransitionError):
            sales.add_sale_items(sale.id, [{"part_number": "BRK-001", "quantity": 1}])
        db.session.rollback()

        sale = sales.add_payment(sale.id, amount_cents=1000, method="UPI", reference="TXN1")
        assert sale.paid_cents == 1000
        assert sale.balance_cents == 770
        assert sale.payment_status == "PARTIAL"


class TestCancelAndRefund:
    def test_cancel_completed_sale_restores_stock(self, brake_pad):
        sale = sales.quick_sale(items=[{"part_number": "BRK-001", "quantity": 3}])
        db.session.commit()
        assert _qty(brake_pad.id) == 7

        sale = sales.cancel_sale(sale.id, "Customer changed mind")
        db.session.commit()
        assert sale.status == SALE_STATUS_CANCELLED
        assert _qty(brake_pad.id) == 10

    def test_cancel_draft_moves_no_stock(self, brake_pad):
        sale = sales.create_counter_sale(lines=[{"part_number": "BRK-001", "quantity": 3}])
        sale = sales.cancel_sale(sale.id)
        assert sale.status == SALE_STATUS_CANCELLED
        assert _qty(brake_pad.id) == 10

    def test_refund(self, brake_pad):
        sale = sales.quick_sale(items=[{"part_number": "BRK-001", "quantity": 2}])
        sale = sales.refund_sale(sale.id, "Wrong fitment")
        db.session.commit()

        assert sale.status == SALE_STATUS_REFUNDED
        assert sale.refunded_at is not None
        assert _qty(brake_pad.id) == 10

        with pytest.raises(InvalidTransitionError):
            sales.cancel_sale(sale.id)
        db.session.rollback()

    def test_draft_cannot_be_refunded(self, brake_pad):
        sale = sales.create_counter_sale(lines=[{"part_number": "BRK-001", "quantity": 1}])
        db.session.commit()
        with pytest.raises(InvalidTransitionError):
            sales.refund_sale(sale.id)
        db.session.rollback()


class TestDeleteSale:
    def test_draft_is_deleted_with_payments(self, brake_pad):
        sale = sales.create_counter_sale(lines=[{"part_number": "BRK-001", "quantity": 1}])
        sales.add_payment(sale.id, amount_cents=500, method="cash")
        db.session.commit()
        sale_id = sale.id

        sales.delete_counter_sale(sale_id)
        db.session.commit()

        assert db.session.get(CounterSale, sale_id) is None
        assert db.session.query(CounterSalePayment).count() == 0

    def test_completed_sale_cannot_be_deleted(self, brake_pad):
        sale = sales.quick_sale(items=[{"part_number": "BRK-001", "quantity": 1}])
        db.session.commit()

        with pytest.raises(InvalidTransitionError):
            sales.delete_counter_sale(sale.id)
        db.session.rollback()
        assert db.session.get(CounterSale, sale.id).status == SALE_STATUS_COMPLETED
        assert _qty(brake_pad.id) == 9
