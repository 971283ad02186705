from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow
from .common import DocumentTotalsMixin, PricedLineMixin


class PurchaseOrder(DocumentTotalsMixin, db.Model):
    """
    Purchase order raised against a vendor.

    LIFECYCLE:
    1. DRAFT: Order created, lines being added
    2. PENDING: Submitted to vendor, nothing received yet
    3. PARTIALLY_RECEIVED / RECEIVED: derived from the receipts log
    4. CLOSED: Closed by a user (short-closed or fully received)
    5. CANCELLED: Cancelled before being fully received

    Received quantities are never stored on the lines; they are summed from
    the append-only receipts log (INWARD and REJECT rows).
    """
    __tablename__ = "purchase_orders"
    __table_args__ = (
        db.UniqueConstraint("document_number", name="uq_purchase_orders_docnum"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_number = db.Column(db.String(64), nullable=False)
    workshop_code = db.Column(db.String(32), nullable=False, index=True)

    vendor_name = db.Column(db.String(255), nullable=False)
    vendor_reference = db.Column(db.String(128), nullable=True)
    expected_date = db.Column(db.DateTime, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    # DRAFT, PENDING, PARTIALLY_RECEIVED, RECEIVED, CLOSED, CANCELLED
    status = db.Column(db.String(24), nullable=False, default="DRAFT", index=True)

    created_by = db.Column(db.String(64), nullable=True)
    submitted_at = db.Column(db.DateTime, nullable=True)
    closed_at = db.Column(db.DateTime, nullable=True)
    cancelled_at = db.Column(db.DateTime, nullable=True)
    cancellation_reason = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    lines = db.relationship(
        "PurchaseOrderLine",
        backref="purchase_order",
        cascade="all, delete-orphan",
        order_by="PurchaseOrderLine.id",
    )
    receipts = db.relationship(
        "PurchaseOrderReceipt",
        backref="purchase_order",
        cascade="all, delete-orphan",
        order_by="PurchaseOrderReceipt.id",
    )

    def receipt_totals(self) -> dict[int, dict[str, int]]:
        """Inwarded and rejected quantity per order line id."""
        totals = {line.id: {"INWARD": 0, "REJECT": 0} for line in self.lines}
        for receipt in self.receipts:
            bucket = totals.setdefault(receipt.purchase_order_line_id, {"INWARD": 0, "REJECT": 0})
            bucket[receipt.kind] += receipt.quantity
        return totals

    def pending_parts(self) -> list[dict]:
        """ordered - inwarded - rejected per line, for lines with anything outstanding."""
        totals = self.receipt_totals()
        pending = []
        for line in self.lines:
            done = totals.get(line.id, {"INWARD": 0, "REJECT": 0})
            remaining = line.quantity - done["INWARD"] - done["REJECT"]
            if remaining > 0:
                pending.append({
                    "purchase_order_line_id": line.id,
                    "stock_item_id": line.stock_item_id,
                    "part_number": line.part_number,
                    "part_name": line.part_name,
                    "ordered_qty": line.quantity,
                    "inwarded_qty": done["INWARD"],
                    "rejected_qty": done["REJECT"],
                    "pending_qty": remaining,
                })
        return pending

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "document_number": self.document_number,
            "workshop_code": self.workshop_code,
            "vendor_name": self.vendor_name,
            "vendor_reference": self.vendor_reference,
            "expected_date": to_utc_z(self.expected_date),
            "notes": self.notes,
            "status": self.status,
            "created_by": self.created_by,
            "submitted_at": to_utc_z(self.submitted_at),
            "closed_at": to_utc_z(self.closed_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "cancellation_reason": self.cancellation_reason,
            "created_at": to_utc_z(self.created_at),
            **self.totals_dict(),
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
            data["receipts"] = [receipt.to_dict() for receipt in self.receipts]
            data["pending_parts"] = self.pending_parts()
        return data


class PurchaseOrderLine(PricedLineMixin, db.Model):
    __tablename__ = "purchase_order_lines"
    __table_args__ = (
        db.UniqueConstraint("purchase_order_id", "part_number", name="uq_po_lines_order_part"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    purchase_order_id = db.Column(db.Integer, db.ForeignKey("purchase_orders.id"), nullable=False, index=True)

    def to_dict(self) -> dict:
        return {"purchase_order_id": self.purchase_order_id, **self.priced_line_dict()}


class PurchaseOrderReceipt(db.Model):
    """
    Append-only receipt log entry against a purchase order line.

    kind=INWARD means units were accepted (and usually stocked); kind=REJECT
    means units were refused at the door and never touch stock.
    """
    __tablename__ = "purchase_order_receipts"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    purchase_order_id = db.Column(db.Integer, db.ForeignKey("purchase_orders.id"), nullable=False, index=True)
    purchase_order_line_id = db.Column(db.Integer, db.ForeignKey("purchase_order_lines.id"), nullable=False)

    part_number = db.Column(db.String(64), nullable=False)
    kind = db.Column(db.String(8), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)

    stock_inward_id = db.Column(db.Integer, db.ForeignKey("stock_inwards.id"), nullable=True)
    stock_updated = db.Column(db.Boolean, nullable=False, default=False)
    reason = db.Column(db.String(255), nullable=True)
    recorded_by = db.Column(db.String(64), nullable=True)
    recorded_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "purchase_order_line_id": self.purchase_order_line_id,
            "part_number": self.part_number,
            "kind": self.kind,
            "quantity": self.quantity,
            "stock_inward_id": self.stock_inward_id,
            "stock_updated": self.stock_updated,
            "reason": self.reason,
            "recorded_by": self.recorded_by,
            "recorded_at": to_utc_z(self.recorded_at),
        }


class StockInward(DocumentTotalsMixin, db.Model):
    """
    Goods receipt note.

    LIFECYCLE:
    1. DRAFT: Lines being entered
    2. PENDING_VERIFICATION: Submitted for a second pair of eyes
    3. VERIFIED: Stock incremented (terminal, irreversible)
    4. CANCELLED: Cancelled before verification

    Once is_verified is set, the stock it added can only be compensated by a
    purchase return.
    """
    __tablename__ = "stock_inwards"
    __table_args__ = (
        db.UniqueConstraint("document_number", name="uq_stock_inwards_docnum"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_number = db.Column(db.String(64), nullable=False)
    workshop_code = db.Column(db.String(32), nullable=False, index=True)

    purchase_order_id = db.Column(db.Integer, db.ForeignKey("purchase_orders.id"), nullable=True, index=True)
    vendor_name = db.Column(db.String(255), nullable=False)
    invoice_number = db.Column(db.String(64), nullable=True)
    invoice_date = db.Column(db.DateTime, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    # DRAFT, PENDING_VERIFICATION, VERIFIED, CANCELLED
    status = db.Column(db.String(24), nullable=False, default="DRAFT", index=True)
    is_verified = db.Column(db.Boolean, nullable=False, default=False)
    stock_updated = db.Column(db.Boolean, nullable=False, default=False)

    created_by = db.Column(db.String(64), nullable=True)
    submitted_at = db.Column(db.DateTime, nullable=True)
    verified_by = db.Column(db.String(64), nullable=True)
    verified_at = db.Column(db.DateTime, nullable=True)
    cancelled_at = db.Column(db.DateTime, nullable=True)
    cancellation_reason = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    purchase_order = db.relationship("PurchaseOrder")
    lines = db.relationship(
        "StockInwardLine",
        backref="stock_inward",
        cascade="all, delete-orphan",
        order_by="StockInwardLine.id",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_number": self.document_number,
            "workshop_code": self.workshop_code,
            "purchase_order_id": self.purchase_order_id,
            "vendor_name": self.vendor_name,
            "invoice_number": self.invoice_number,
            "invoice_date": to_utc_z(self.invoice_date),
            "notes": self.notes,
            "status": self.status,
            "is_verified": self.is_verified,
            "stock_updated": self.stock_updated,
            "created_by": self.created_by,
            "submitted_at": to_utc_z(self.submitted_at),
            "verified_by": self.verified_by,
            "verified_at": to_utc_z(self.verified_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "cancellation_reason": self.cancellation_reason,
            "created_at": to_utc_z(self.created_at),
            "lines": [line.to_dict() for line in self.lines],
            **self.totals_dict(),
        }


class StockInwardLine(PricedLineMixin, db.Model):
    __tablename__ = "stock_inward_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    stock_inward_id = db.Column(db.Integer, db.ForeignKey("stock_inwards.id"), nullable=False, index=True)

    def to_dict(self) -> dict:
        return {"stock_inward_id": self.stock_inward_id, **self.priced_line_dict()}


class PurchaseReturn(DocumentTotalsMixin, db.Model):
    """
    Return of purchased parts to the vendor.

    LIFECYCLE:
    1. DRAFT -> PENDING_APPROVAL -> APPROVED (stock deducted here)
    2. APPROVED -> SHIPPED -> DELIVERED -> CLOSED
    3. CANCELLED from DRAFT, PENDING_APPROVAL or APPROVED (stock restored)

    refund_status is a separate sub-state (PENDING, PARTIAL, COMPLETED,
    NOT_APPLICABLE) driven by recorded refunds against total_cents.
    """
    __tablename__ = "purchase_returns"
    __table_args__ = (
        db.UniqueConstraint("document_number", name="uq_purchase_returns_docnum"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_number = db.Column(db.String(64), nullable=False)
    workshop_code = db.Column(db.String(32), nullable=False, index=True)

    vendor_name = db.Column(db.String(255), nullable=False)
    stock_inward_id = db.Column(db.Integer, db.ForeignKey("stock_inwards.id"), nullable=True, index=True)
    purchase_order_id = db.Column(db.Integer, db.ForeignKey("purchase_orders.id"), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    # DRAFT, PENDING_APPROVAL, APPROVED, SHIPPED, DELIVERED, CLOSED, CANCELLED
    status = db.Column(db.String(24), nullable=False, default="DRAFT", index=True)
    stock_deducted = db.Column(db.Boolean, nullable=False, default=False)

    shipment_method = db.Column(db.String(32), nullable=True)
    carrier = db.Column(db.String(128), nullable=True)
    tracking_number = db.Column(db.String(128), nullable=True)

    refund_status = db.Column(db.String(16), nullable=False, default="PENDING")
    refunded_cents = db.Column(db.Integer, nullable=False, default=0)
    refund_method = db.Column(db.String(32), nullable=True)
    refund_reference = db.Column(db.String(128), nullable=True)

    created_by = db.Column(db.String(64), nullable=True)
    submitted_at = db.Column(db.DateTime, nullable=True)
    approved_by = db.Column(db.String(64), nullable=True)
    approved_at = db.Column(db.DateTime, nullable=True)
    shipped_at = db.Column(db.DateTime, nullable=True)
    delivered_at = db.Column(db.DateTime, nullable=True)
    closed_at = db.Column(db.DateTime, nullable=True)
    cancelled_at = db.Column(db.DateTime, nullable=True)
    cancellation_reason = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    lines = db.relationship(
        "PurchaseReturnLine",
        backref="purchase_return",
        cascade="all, delete-orphan",
        order_by="PurchaseReturnLine.id",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_number": self.document_number,
            "workshop_code": self.workshop_code,
            "vendor_name": self.vendor_name,
            "stock_inward_id": self.stock_inward_id,
            "purchase_order_id": self.purchase_order_id,
            "notes": self.notes,
            "status": self.status,
            "stock_deducted": self.stock_deducted,
            "shipment_method": self.shipment_method,
            "carrier": self.carrier,
            "tracking_number": self.tracking_number,
            "refund_status": self.refund_status,
            "refunded_cents": self.refunded_cents,
            "refund_method": self.refund_method,
            "refund_reference": self.refund_reference,
            "created_by": self.created_by,
            "submitted_at": to_utc_z(self.submitted_at),
            "approved_by": self.approved_by,
            "approved_at": to_utc_z(self.approved_at),
            "shipped_at": to_utc_z(self.shipped_at),
            "delivered_at": to_utc_z(self.delivered_at),
            "closed_at": to_utc_z(self.closed_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "cancellation_reason": self.cancellation_reason,
            "created_at": to_utc_z(self.created_at),
            "lines": [line.to_dict() for line in self.lines],
            **self.totals_dict(),
        }


class PurchaseReturnLine(PricedLineMixin, db.Model):
    __tablename__ = "purchase_return_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    purchase_return_id = db.Column(db.Integer, db.ForeignKey("purchase_returns.id"), nullable=False, index=True)

    # DEFECTIVE, DAMAGED, WRONG_ITEM, EXPIRED, QUALITY_ISSUE, EXCESS_STOCK, OTHER
    reason = db.Column(db.String(24), nullable=False)
    # UNOPENED, OPENED, USED, DAMAGED
    condition = db.Column(db.String(16), nullable=False, default="UNOPENED")
    remarks = db.Column(db.String(255), nullable=True)

    def to_dict(self) -> dict:
        return {
            "purchase_return_id": self.purchase_return_id,
            "reason": self.reason,
            "condition": self.condition,
            "remarks": self.remarks,
            **self.priced_line_dict(),
        }
