from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow
from .common import DocumentTotalsMixin, PricedLineMixin


class CounterSale(DocumentTotalsMixin, db.Model):
    """
    Over-the-counter parts sale.

    LIFECYCLE:
    1. DRAFT: Lines and payments being captured
    2. COMPLETED: Stock deducted (stock_deducted flips to True once)
    3. REFUNDED: Completed sale reversed, stock restored
    4. CANCELLED: Draft or completed sale voided, stock restored if deducted
    """
    __tablename__ = "counter_sales"
    __table_args__ = (
        db.UniqueConstraint("document_number", name="uq_counter_sales_docnum"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_number = db.Column(db.String(64), nullable=False)
    workshop_code = db.Column(db.String(32), nullable=False, index=True)

    customer_name = db.Column(db.String(255), nullable=False, default="Walk-in Customer")
    customer_phone = db.Column(db.String(32), nullable=True)
    vehicle_reg_number = db.Column(db.String(32), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    # DRAFT, COMPLETED, CANCELLED, REFUNDED
    status = db.Column(db.String(16), nullable=False, default="DRAFT", index=True)
    stock_deducted = db.Column(db.Boolean, nullable=False, default=False)

    created_by = db.Column(db.String(64), nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)
    cancelled_at = db.Column(db.DateTime, nullable=True)
    cancellation_reason = db.Column(db.Text, nullable=True)
    refunded_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    lines = db.relationship(
        "CounterSaleLine",
        backref="counter_sale",
        cascade="all, delete-orphan",
        order_by="CounterSaleLine.id",
    )
    payments = db.relationship(
        "CounterSalePayment",
        backref="counter_sale",
        cascade="all, delete-orphan",
        order_by="CounterSalePayment.id",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_number": self.document_number,
            "workshop_code": self.workshop_code,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "vehicle_reg_number": self.vehicle_reg_number,
            "notes": self.notes,
            "status": self.status,
            "stock_deducted": self.stock_deducted,
            "created_by": self.created_by,
            "completed_at": to_utc_z(self.completed_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "cancellation_reason": self.cancellation_reason,
            "refunded_at": to_utc_z(self.refunded_at),
            "created_at": to_utc_z(self.created_at),
            "lines": [line.to_dict() for line in self.lines],
            "payments": [payment.to_dict() for payment in self.payments],
            **self.totals_dict(),
        }


class CounterSaleLine(PricedLineMixin, db.Model):
    __tablename__ = "counter_sale_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    counter_sale_id = db.Column(db.Integer, db.ForeignKey("counter_sales.id"), nullable=False, index=True)

    def to_dict(self) -> dict:
        return {"counter_sale_id": self.counter_sale_id, **self.priced_line_dict()}


class CounterSalePayment(db.Model):
    __tablename__ = "counter_sale_payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    counter_sale_id = db.Column(db.Integer, db.ForeignKey("counter_sales.id"), nullable=False, index=True)

    # CASH, CARD, UPI, BANK_TRANSFER, CREDIT, OTHER
    method = db.Column(db.String(16), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    reference = db.Column(db.String(128), nullable=True)

    received_by = db.Column(db.String(64), nullable=True)
    received_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "counter_sale_id": self.counter_sale_id,
            "method": self.method,
            "amount_cents": self.amount_cents,
            "reference": self.reference,
            "received_by": self.received_by,
            "received_at": to_utc_z(self.received_at),
        }
