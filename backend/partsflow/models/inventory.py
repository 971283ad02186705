from __future__ import annotations

from ..extensions import db
from ..time_utils import days_since, to_utc_z, utcnow


class StockItem(db.Model):
    """
    Stock master record and the authoritative quantity on hand.

    WORKSHOP SCOPE: part numbers are unique within a workshop; the same part
    may be stocked once per workshop, which is what transfers move between.

    quantity_on_hand is only changed through ledger_service.adjust_stock,
    which applies the delta as a conditional UPDATE so the value can never
    drop below zero.
    """
    __tablename__ = "stock_items"
    __table_args__ = (
        db.UniqueConstraint("workshop_code", "part_number", name="uq_stock_items_workshop_part"),
        db.CheckConstraint("quantity_on_hand >= 0", name="ck_stock_items_qty_non_negative"),
        db.Index("ix_stock_items_workshop_active", "workshop_code", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    workshop_code = db.Column(db.String(32), nullable=False, index=True)

    part_number = db.Column(db.String(64), nullable=False)
    part_name = db.Column(db.String(255), nullable=False)
    brand = db.Column(db.String(128), nullable=True)
    category = db.Column(db.String(128), nullable=True)
    location = db.Column(db.String(128), nullable=True)

    quantity_on_hand = db.Column(db.Integer, nullable=False, default=0)

    purchase_price_cents = db.Column(db.Integer, nullable=False, default=0)
    selling_price_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)

    min_stock_level = db.Column(db.Integer, nullable=False, default=0)
    max_stock_level = db.Column(db.Integer, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    last_movement_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    @property
    def ageing_days(self) -> int | None:
        return days_since(self.last_movement_at or self.created_at)

    @property
    def total_value_cents(self) -> int:
        return (self.quantity_on_hand or 0) * (self.purchase_price_cents or 0)

    @property
    def is_low_stock(self) -> bool:
        return bool(self.is_active) and (self.quantity_on_hand or 0) <= (self.min_stock_level or 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "workshop_code": self.workshop_code,
            "part_number": self.part_number,
            "part_name": self.part_name,
            "brand": self.brand,
            "category": self.category,
            "location": self.location,
            "quantity_on_hand": self.quantity_on_hand,
            "purchase_price_cents": self.purchase_price_cents,
            "selling_price_cents": self.selling_price_cents,
            "tax_rate_bps": self.tax_rate_bps,
            "min_stock_level": self.min_stock_level,
            "max_stock_level": self.max_stock_level,
            "is_active": self.is_active,
            "is_low_stock": self.is_low_stock,
            "ageing_days": self.ageing_days,
            "total_value_cents": self.total_value_cents,
            "last_movement_at": to_utc_z(self.last_movement_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Append-only audit row written for every successful stock adjustment.

    quantity_after is the on-hand value the conditional UPDATE produced, so
    the movement log can be replayed to audit the current quantity.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_item_occurred", "stock_item_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    stock_item_id = db.Column(db.Integer, db.ForeignKey("stock_items.id"), nullable=False, index=True)

    quantity_delta = db.Column(db.Integer, nullable=False)
    quantity_after = db.Column(db.Integer, nullable=False)

    # PURCHASE_ORDER, STOCK_INWARD, STOCK_ISSUE, COUNTER_SALE, ... or MANUAL
    document_type = db.Column(db.String(32), nullable=False, default="MANUAL")
    document_number = db.Column(db.String(64), nullable=True, index=True)
    note = db.Column(db.String(255), nullable=True)
    actor = db.Column(db.String(64), nullable=True)

    occurred_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    stock_item = db.relationship("StockItem", backref=db.backref("movements", lazy="dynamic"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "stock_item_id": self.stock_item_id,
            "quantity_delta": self.quantity_delta,
            "quantity_after": self.quantity_after,
            "document_type": self.document_type,
            "document_number": self.document_number,
            "note": self.note,
            "actor": self.actor,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class DocumentSequence(db.Model):
    """
    Atomic counter per dated document prefix (e.g. "PO2610", "CS261019").

    next_number is the value the next allocation will hand out.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("prefix", name="uq_document_sequences_prefix"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    prefix = db.Column(db.String(32), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
