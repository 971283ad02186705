from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class StockAlert(db.Model):
    """
    A low-stock warning raised for one stock item.

    LIFECYCLE:
    ACTIVE -> ACKNOWLEDGED -> RESOLVED
    ACTIVE or ACKNOWLEDGED -> IGNORED

    At most one open (ACTIVE or ACKNOWLEDGED) alert exists per stock item;
    generation skips items that already have one. The quantity and level
    columns are a snapshot taken when the alert was raised.
    """
    __tablename__ = "stock_alerts"
    __table_args__ = (
        db.UniqueConstraint("alert_number", name="uq_stock_alerts_number"),
        db.Index("ix_stock_alerts_item_status", "stock_item_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    alert_number = db.Column(db.String(64), nullable=False)
    workshop_code = db.Column(db.String(32), nullable=False, index=True)

    stock_item_id = db.Column(db.Integer, db.ForeignKey("stock_items.id"), nullable=False)
    part_number = db.Column(db.String(64), nullable=False)
    part_name = db.Column(db.String(255), nullable=False)
    current_qty = db.Column(db.Integer, nullable=False)
    min_stock_level = db.Column(db.Integer, nullable=False)
    reorder_qty = db.Column(db.Integer, nullable=False, default=0)

    # LOW_STOCK, OUT_OF_STOCK
    alert_type = db.Column(db.String(16), nullable=False)
    # LOW, MEDIUM, HIGH, CRITICAL
    priority = db.Column(db.String(16), nullable=False, index=True)
    # ACTIVE, ACKNOWLEDGED, RESOLVED, IGNORED
    status = db.Column(db.String(16), nullable=False, default="ACTIVE", index=True)

    notes = db.Column(db.Text, nullable=True)
    resolution_note = db.Column(db.Text, nullable=True)

    created_by = db.Column(db.String(64), nullable=True)
    acknowledged_by = db.Column(db.String(64), nullable=True)
    acknowledged_at = db.Column(db.DateTime, nullable=True)
    resolved_by = db.Column(db.String(64), nullable=True)
    resolved_at = db.Column(db.DateTime, nullable=True)
    ignored_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    stock_item = db.relationship("StockItem")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "alert_number": self.alert_number,
            "workshop_code": self.workshop_code,
            "stock_item_id": self.stock_item_id,
            "part_number": self.part_number,
            "part_name": self.part_name,
            "current_qty": self.current_qty,
            "min_stock_level": self.min_stock_level,
            "reorder_qty": self.reorder_qty,
            "alert_type": self.alert_type,
            "priority": self.priority,
            "status": self.status,
            "notes": self.notes,
            "resolution_note": self.resolution_note,
            "created_by": self.created_by,
            "acknowledged_by": self.acknowledged_by,
            "acknowledged_at": to_utc_z(self.acknowledged_at),
            "resolved_by": self.resolved_by,
            "resolved_at": to_utc_z(self.resolved_at),
            "ignored_at": to_utc_z(self.ignored_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
