from __future__ import annotations

from sqlalchemy.orm import declared_attr

from ..extensions import db


class PricedLineMixin:
    """
    Columns shared by every priced document line.

    stock_item_id is a weak reference: lines keep their own part_number and
    part_name snapshot so the document stays readable if the item changes.
    discount_value is cents for FLAT discounts and basis points for PERCENT.
    The *_cents amounts below it are derived by the totals recalculation.
    """

    @declared_attr
    def stock_item_id(cls):
        return db.Column(db.Integer, db.ForeignKey("stock_items.id"), nullable=True, index=True)

    part_number = db.Column(db.String(64), nullable=False)
    part_name = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False, default=0)

    discount_type = db.Column(db.String(8), nullable=False, default="FLAT")
    discount_value = db.Column(db.Integer, nullable=False, default=0)
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)

    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    line_total_cents = db.Column(db.Integer, nullable=False, default=0)

    def priced_line_dict(self) -> dict:
        return {
            "id": self.id,
            "stock_item_id": self.stock_item_id,
            "part_number": self.part_number,
            "part_name": self.part_name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "discount_type": self.discount_type,
            "discount_value": self.discount_value,
            "tax_rate_bps": self.tax_rate_bps,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "line_total_cents": self.line_total_cents,
        }


class DocumentTotalsMixin:
    """Header amounts kept in sync with the lines on every mutation."""

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    item_discount_cents = db.Column(db.Integer, nullable=False, default=0)

    bill_discount_type = db.Column(db.String(8), nullable=False, default="FLAT")
    bill_discount_value = db.Column(db.Integer, nullable=False, default=0)
    bill_discount_cents = db.Column(db.Integer, nullable=False, default=0)

    total_discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    paid_cents = db.Column(db.Integer, nullable=False, default=0)
    balance_cents = db.Column(db.Integer, nullable=False, default=0)
    payment_status = db.Column(db.String(16), nullable=False, default="UNPAID")

    def totals_dict(self) -> dict:
        return {
            "subtotal_cents": self.subtotal_cents,
            "item_discount_cents": self.item_discount_cents,
            "bill_discount_type": self.bill_discount_type,
            "bill_discount_value": self.bill_discount_value,
            "bill_discount_cents": self.bill_discount_cents,
            "total_discount_cents": self.total_discount_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "paid_cents": self.paid_cents,
            "balance_cents": self.balance_cents,
            "payment_status": self.payment_status,
        }
