from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class StockIssue(db.Model):
    """
    Parts issued from stock against a job card (workshop repair order).

    LIFECYCLE (derived from the lines after every issue/return):
    PENDING -> PARTIALLY_ISSUED -> ISSUED -> PARTIALLY_RETURNED -> RETURNED
    CANCELLED is sticky; cancelling restores issued - returned per line.

    Valuation totals cover issued quantity only: purchase value, selling
    value and the margin between them.
    """
    __tablename__ = "stock_issues"
    __table_args__ = (
        db.UniqueConstraint("document_number", name="uq_stock_issues_docnum"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_number = db.Column(db.String(64), nullable=False)
    workshop_code = db.Column(db.String(32), nullable=False, index=True)

    job_card_number = db.Column(db.String(64), nullable=True, index=True)
    vehicle_reg_number = db.Column(db.String(32), nullable=True)
    issued_to = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    # PENDING, PARTIALLY_ISSUED, ISSUED, PARTIALLY_RETURNED, RETURNED, CANCELLED
    status = db.Column(db.String(24), nullable=False, default="PENDING", index=True)
    stock_deducted = db.Column(db.Boolean, nullable=False, default=False)

    total_purchase_value_cents = db.Column(db.Integer, nullable=False, default=0)
    total_selling_value_cents = db.Column(db.Integer, nullable=False, default=0)
    total_margin_cents = db.Column(db.Integer, nullable=False, default=0)

    created_by = db.Column(db.String(64), nullable=True)
    issued_at = db.Column(db.DateTime, nullable=True)
    cancelled_at = db.Column(db.DateTime, nullable=True)
    cancellation_reason = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    lines = db.relationship(
        "StockIssueLine",
        backref="stock_issue",
        cascade="all, delete-orphan",
        order_by="StockIssueLine.id",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_number": self.document_number,
            "workshop_code": self.workshop_code,
            "job_card_number": self.job_card_number,
            "vehicle_reg_number": self.vehicle_reg_number,
            "issued_to": self.issued_to,
            "notes": self.notes,
            "status": self.status,
            "stock_deducted": self.stock_deducted,
            "total_purchase_value_cents": self.total_purchase_value_cents,
            "total_selling_value_cents": self.total_selling_value_cents,
            "total_margin_cents": self.total_margin_cents,
            "created_by": self.created_by,
            "issued_at": to_utc_z(self.issued_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "cancellation_reason": self.cancellation_reason,
            "created_at": to_utc_z(self.created_at),
            "lines": [line.to_dict() for line in self.lines],
        }


class StockIssueLine(db.Model):
    __tablename__ = "stock_issue_lines"
    __table_args__ = (
        db.CheckConstraint("issued_qty >= 0 AND returned_qty >= 0", name="ck_issue_lines_qty"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    stock_issue_id = db.Column(db.Integer, db.ForeignKey("stock_issues.id"), nullable=False, index=True)
    stock_item_id = db.Column(db.Integer, db.ForeignKey("stock_items.id"), nullable=False)

    part_number = db.Column(db.String(64), nullable=False)
    part_name = db.Column(db.String(255), nullable=False)

    requested_qty = db.Column(db.Integer, nullable=False)
    issued_qty = db.Column(db.Integer, nullable=False, default=0)
    returned_qty = db.Column(db.Integer, nullable=False, default=0)

    # Price snapshots taken from the stock item when units are issued
    purchase_price_cents = db.Column(db.Integer, nullable=False, default=0)
    selling_price_cents = db.Column(db.Integer, nullable=False, default=0)

    # PENDING, PARTIALLY_ISSUED, ISSUED, RETURNED, CANCELLED
    status = db.Column(db.String(24), nullable=False, default="PENDING")

    @property
    def pending_qty(self) -> int:
        return max(self.requested_qty - (self.issued_qty or 0) - (self.returned_qty or 0), 0)

    @property
    def outstanding_qty(self) -> int:
        """Units still out of stock on behalf of this line."""
        return (self.issued_qty or 0) - (self.returned_qty or 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "stock_issue_id": self.stock_issue_id,
            "stock_item_id": self.stock_item_id,
            "part_number": self.part_number,
            "part_name": self.part_name,
            "requested_qty": self.requested_qty,
            "issued_qty": self.issued_qty,
            "returned_qty": self.returned_qty,
            "pending_qty": self.pending_qty,
            "purchase_price_cents": self.purchase_price_cents,
            "selling_price_cents": self.selling_price_cents,
            "status": self.status,
        }


class StockTransfer(db.Model):
    """
    Inter-workshop stock transfer document.

    LIFECYCLE:
    1. DRAFT: Transfer created, lines added
    2. PENDING_APPROVAL: Submitted
    3. APPROVED: Availability confirmed at the source, nothing moved yet
    4. IN_TRANSIT: Dispatched (source stock deducted)
    5. DELIVERED: Arrived at destination, not yet counted
    6. RECEIVED: Counted in (good units added to destination stock)
    7. CANCELLED: Any time before RECEIVED (dispatched units restored)
    """
    __tablename__ = "stock_transfers"
    __table_args__ = (
        db.UniqueConstraint("document_number", name="uq_stock_transfers_docnum"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_number = db.Column(db.String(64), nullable=False)

    from_workshop_code = db.Column(db.String(32), nullable=False, index=True)
    to_workshop_code = db.Column(db.String(32), nullable=False, index=True)

    # STOCK_BALANCING, URGENT_REQUIREMENT, WORKSHOP_CLOSURE, EXCESS_STOCK, OTHER
    reason = db.Column(db.String(24), nullable=False, default="OTHER")
    # VEHICLE, COURIER, HAND_CARRY, OTHER
    transfer_method = db.Column(db.String(16), nullable=True)
    tracking_reference = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    # DRAFT, PENDING_APPROVAL, APPROVED, IN_TRANSIT, DELIVERED, RECEIVED, CANCELLED
    status = db.Column(db.String(24), nullable=False, default="DRAFT", index=True)
    source_stock_deducted = db.Column(db.Boolean, nullable=False, default=False)
    destination_stock_added = db.Column(db.Boolean, nullable=False, default=False)

    created_by = db.Column(db.String(64), nullable=True)
    approved_by = db.Column(db.String(64), nullable=True)
    dispatched_by = db.Column(db.String(64), nullable=True)
    received_by = db.Column(db.String(64), nullable=True)

    submitted_at = db.Column(db.DateTime, nullable=True)
    approved_at = db.Column(db.DateTime, nullable=True)
    dispatched_at = db.Column(db.DateTime, nullable=True)
    delivered_at = db.Column(db.DateTime, nullable=True)
    received_at = db.Column(db.DateTime, nullable=True)
    cancelled_at = db.Column(db.DateTime, nullable=True)
    cancellation_reason = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    lines = db.relationship(
        "StockTransferLine",
        backref="stock_transfer",
        cascade="all, delete-orphan",
        order_by="StockTransferLine.id",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_number": self.document_number,
            "from_workshop_code": self.from_workshop_code,
            "to_workshop_code": self.to_workshop_code,
            "reason": self.reason,
            "transfer_method": self.transfer_method,
            "tracking_reference": self.tracking_reference,
            "notes": self.notes,
            "status": self.status,
            "source_stock_deducted": self.source_stock_deducted,
            "destination_stock_added": self.destination_stock_added,
            "created_by": self.created_by,
            "approved_by": self.approved_by,
            "dispatched_by": self.dispatched_by,
            "received_by": self.received_by,
            "submitted_at": to_utc_z(self.submitted_at),
            "approved_at": to_utc_z(self.approved_at),
            "dispatched_at": to_utc_z(self.dispatched_at),
            "delivered_at": to_utc_z(self.delivered_at),
            "received_at": to_utc_z(self.received_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "cancellation_reason": self.cancellation_reason,
            "created_at": to_utc_z(self.created_at),
            "lines": [line.to_dict() for line in self.lines],
        }


class StockTransferLine(db.Model):
    __tablename__ = "stock_transfer_lines"
    __table_args__ = (
        db.UniqueConstraint("stock_transfer_id", "stock_item_id", name="uq_transfer_lines_item"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    stock_transfer_id = db.Column(db.Integer, db.ForeignKey("stock_transfers.id"), nullable=False, index=True)

    # Source workshop item
    stock_item_id = db.Column(db.Integer, db.ForeignKey("stock_items.id"), nullable=False)
    # Destination workshop item, set on receive
    destination_stock_item_id = db.Column(db.Integer, db.ForeignKey("stock_items.id"), nullable=True)

    part_number = db.Column(db.String(64), nullable=False)
    part_name = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    sent_qty = db.Column(db.Integer, nullable=False, default=0)
    received_qty = db.Column(db.Integer, nullable=False, default=0)
    damaged_qty = db.Column(db.Integer, nullable=False, default=0)

    # Cost snapshot captured at dispatch time
    unit_cost_cents = db.Column(db.Integer, nullable=True)

    # PENDING, RECEIVED, PARTIAL, DAMAGED
    status = db.Column(db.String(16), nullable=False, default="PENDING")
    remarks = db.Column(db.String(255), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "stock_transfer_id": self.stock_transfer_id,
            "stock_item_id": self.stock_item_id,
            "destination_stock_item_id": self.destination_stock_item_id,
            "part_number": self.part_number,
            "part_name": self.part_name,
            "quantity": self.quantity,
            "sent_qty": self.sent_qty,
            "received_qty": self.received_qty,
            "damaged_qty": self.damaged_qty,
            "unit_cost_cents": self.unit_cost_cents,
            "status": self.status,
            "remarks": self.remarks,
        }
