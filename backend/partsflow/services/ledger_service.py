# Overview: Stock ledger; the only code path that changes quantity_on_hand.

"""
Stock ledger.

Every quantity change goes through adjust_stock, which applies the delta
as one conditional UPDATE:

    UPDATE stock_items
       SET quantity_on_hand = quantity_on_hand + :delta
     WHERE id = :id AND quantity_on_hand + :delta >= 0

so the read-check-write happens inside the database and two writers can
never drive a quantity negative. Zero matched rows means either the item
does not exist or the delta would overdraw it; in both cases nothing
changed.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Mapping

from flask import current_app
from sqlalchemy import update

from ..errors import DuplicateKeyError, InsufficientStockError, NotFoundError, ValidationError
from ..extensions import db
from ..models import StockItem, StockMovement
from ..time_utils import utcnow
from ..validation import cents, non_negative_quantity, normalize_part_number, rate_bps, required_text, optional_text
from .concurrency import lock_for_update, run_with_retry


@dataclass(frozen=True)
class Resolved:
    item: StockItem


@dataclass(frozen=True)
class Unresolved:
    """Lookup found nothing; carries what the caller asked for."""
    stock_item_id: int | None
    part_number: str | None
    workshop_code: str


def default_workshop() -> str:
    return current_app.config.get("DEFAULT_WORKSHOP", "MAIN")


def get_stock_item(stock_item_id: int) -> StockItem:
    item = db.session.get(StockItem, stock_item_id)
    if not item:
        raise NotFoundError(f"Stock item {stock_item_id} not found", stock_item_id=stock_item_id)
    return item


def find_stock_item(part_number: str, workshop_code: str | None = None) -> StockItem | None:
    return (
        db.session.query(StockItem)
        .filter_by(
            workshop_code=workshop_code or default_workshop(),
            part_number=normalize_part_number(part_number),
        )
        .first()
    )


def get_stock_item_by_part_number(part_number: str, workshop_code: str | None = None) -> StockItem:
    item = find_stock_item(part_number, workshop_code)
    if not item:
        raise NotFoundError(
            f"Part {part_number} not found in workshop {workshop_code or default_workshop()}",
            part_number=part_number,
        )
    return item


def resolve_part(
    *,
    stock_item_id: int | None = None,
    part_number: str | None = None,
    workshop_code: str | None = None,
) -> Resolved | Unresolved:
    """
    Resolve a line reference to a stock item, id first, then part number.

    An id that points at another workshop's item does not resolve; the part
    number is then looked up within the requested workshop.
    """
    workshop_code = workshop_code or default_workshop()

    if stock_item_id is not None:
        item = db.session.get(StockItem, stock_item_id)
        if item and item.workshop_code == workshop_code:
            return Resolved(item)

    if part_number:
        item = find_stock_item(part_number, workshop_code)
        if item:
            return Resolved(item)

    return Unresolved(stock_item_id=stock_item_id, part_number=part_number, workshop_code=workshop_code)


def require_resolved(result: Resolved | Unresolved) -> StockItem:
    if isinstance(result, Resolved):
        return result.item
    ref = result.part_number or result.stock_item_id
    raise NotFoundError(
        f"Part {ref} not found in workshop {result.workshop_code}",
        part_number=result.part_number,
        stock_item_id=result.stock_item_id,
    )


def adjust_stock(
    stock_item_id: int,
    delta: int,
    *,
    document_type: str = "MANUAL",
    document_number: str | None = None,
    note: str | None = None,
    actor: str | None = None,
) -> StockItem:
    """
    Atomically add delta to quantity_on_hand.

    Raises NotFoundError for an unknown item and InsufficientStockError when
    the result would be negative; quantity_on_hand is untouched in both
    cases.
    """
    delta = int(delta)
    now = utcnow()

    stmt = (
        update(StockItem)
        .where(
            StockItem.id == stock_item_id,
            StockItem.quantity_on_hand + delta >= 0,
        )
        .values(
            quantity_on_hand=StockItem.quantity_on_hand + delta,
            last_movement_at=now,
            updated_at=now,
        )
        .execution_options(synchronize_session="fetch")
    )
    result = db.session.execute(stmt)

    if not result.rowcount:
        item = db.session.get(StockItem, stock_item_id)
        if not item:
            raise NotFoundError(f"Stock item {stock_item_id} not found", stock_item_id=stock_item_id)
        db.session.refresh(item)
        raise InsufficientStockError(item.part_number, item.quantity_on_hand, -delta)

    item = db.session.get(StockItem, stock_item_id)
    db.session.refresh(item)

    db.session.add(StockMovement(
        stock_item_id=item.id,
        quantity_delta=delta,
        quantity_after=item.quantity_on_hand,
        document_type=document_type,
        document_number=document_number,
        note=note,
        actor=actor,
        occurred_at=now,
    ))
    db.session.flush()

    current_app.logger.debug(
        "Stock %s %+d -> %d (%s %s)",
        item.part_number, delta, item.quantity_on_hand, document_type, document_number or "-",
    )
    return item


def check_availability(requirements: Mapping[int, int]) -> list[StockItem]:
    """
    Verify that every stock item can cover its required quantity.

    requirements maps stock_item_id -> total quantity needed; callers sum
    their lines per item first so two lines for the same part are checked
    together. Raises on the first shortfall, before anything is deducted.
    """
    items = []
    for stock_item_id, qty in requirements.items():
        item = lock_for_update(db.session.query(StockItem).filter_by(id=stock_item_id)).first()
        if not item:
            raise NotFoundError(f"Stock item {stock_item_id} not found", stock_item_id=stock_item_id)
        if item.quantity_on_hand < qty:
            raise InsufficientStockError(item.part_number, item.quantity_on_hand, qty)
        items.append(item)
    return items


def sum_by_item(pairs: Iterable[tuple[int, int]]) -> dict[int, int]:
    totals: dict[int, int] = {}
    for stock_item_id, qty in pairs:
        if qty:
            totals[stock_item_id] = totals.get(stock_item_id, 0) + qty
    return totals


def create_stock_item(
    *,
    part_number: str,
    part_name: str,
    workshop_code: str | None = None,
    brand: str | None = None,
    category: str | None = None,
    location: str | None = None,
    quantity_on_hand: int = 0,
    purchase_price_cents: int = 0,
    selling_price_cents: int = 0,
    tax_rate_bps: int = 0,
    min_stock_level: int = 0,
    max_stock_level: int | None = None,
    actor: str | None = None,
) -> StockItem:
    """
    Register a part in a workshop's stock.

    An opening quantity is booked as a movement so the audit trail starts
    from zero.
    """
    def _op():
        code = workshop_code or default_workshop()
        number = normalize_part_number(part_number)
        if find_stock_item(number, code):
            raise DuplicateKeyError(
                f"Part {number} already exists in workshop {code}",
                part_number=number,
                workshop_code=code,
            )

        opening = non_negative_quantity(quantity_on_hand, "quantity_on_hand")
        max_level = None if max_stock_level is None else non_negative_quantity(max_stock_level, "max_stock_level")
        min_level = non_negative_quantity(min_stock_level, "min_stock_level")
        if max_level is not None and max_level < min_level:
            raise ValidationError("max_stock_level must be >= min_stock_level")

        item = StockItem(
            workshop_code=code,
            part_number=number,
            part_name=required_text(part_name, "part_name"),
            brand=optional_text(brand, "brand", 128),
            category=optional_text(category, "category", 128),
            location=optional_text(location, "location", 128),
            quantity_on_hand=0,
            purchase_price_cents=cents(purchase_price_cents, "purchase_price_cents"),
            selling_price_cents=cents(selling_price_cents, "selling_price_cents"),
            tax_rate_bps=rate_bps(tax_rate_bps, "tax_rate_bps"),
            min_stock_level=min_level,
            max_stock_level=max_level,
            is_active=True,
        )
        db.session.add(item)
        db.session.flush()

        if opening:
            adjust_stock(item.id, opening, note="Opening stock", actor=actor)
        return item

    return run_with_retry(_op)


UPDATABLE_FIELDS = {
    "part_name": lambda v: required_text(v, "part_name"),
    "brand": lambda v: optional_text(v, "brand", 128),
    "category": lambda v: optional_text(v, "category", 128),
    "location": lambda v: optional_text(v, "location", 128),
    "purchase_price_cents": lambda v: cents(v, "purchase_price_cents"),
    "selling_price_cents": lambda v: cents(v, "selling_price_cents"),
    "tax_rate_bps": lambda v: rate_bps(v, "tax_rate_bps"),
    "min_stock_level": lambda v: non_negative_quantity(v, "min_stock_level"),
    "max_stock_level": lambda v: None if v is None else non_negative_quantity(v, "max_stock_level"),
}


def update_stock_item(stock_item_id: int, changes: dict) -> StockItem:
    """Patch master data. Quantity is deliberately not patchable here."""
    def _op():
        item = get_stock_item(stock_item_id)
        for key in changes:
            if key not in UPDATABLE_FIELDS:
                raise ValidationError(f"Field not allowed: {key}")
        for key, raw in changes.items():
            setattr(item, key, UPDATABLE_FIELDS[key](raw))
        if item.max_stock_level is not None and item.max_stock_level < item.min_stock_level:
            raise ValidationError("max_stock_level must be >= min_stock_level")
        db.session.flush()
        return item

    return run_with_retry(_op)


def deactivate_stock_item(stock_item_id: int) -> StockItem:
    """Soft-delete; the row stays so historical documents still resolve."""
    def _op():
        item = get_stock_item(stock_item_id)
        item.is_active = False
        db.session.flush()
        return item

    return run_with_retry(_op)


def list_low_stock(workshop_code: str | None = None, limit: int = 100) -> list[StockItem]:
    return (
        db.session.query(StockItem)
        .filter(
            StockItem.workshop_code == (workshop_code or default_workshop()),
            StockItem.is_active.is_(True),
            StockItem.quantity_on_hand <= StockItem.min_stock_level,
        )
        .order_by(StockItem.quantity_on_hand.asc(), StockItem.part_number.asc())
        .limit(max(1, min(limit, 500)))
        .all()
    )


def list_movements(stock_item_id: int, limit: int = 100) -> list[StockMovement]:
    get_stock_item(stock_item_id)
    return (
        db.session.query(StockMovement)
        .filter_by(stock_item_id=stock_item_id)
        .order_by(StockMovement.id.desc())
        .limit(max(1, min(limit, 500)))
        .all()
    )
