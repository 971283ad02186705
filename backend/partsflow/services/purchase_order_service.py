# backend/partsflow/services/purchase_order_service.py
"""
Purchase order service.

LIFECYCLE:
1. DRAFT: Order created, lines added
2. PENDING: Submitted, awaiting goods
3. PARTIALLY_RECEIVED: Some ordered units inwarded or rejected
4. RECEIVED: Every ordered unit inwarded or rejected
5. CLOSED: Closed by a user
6. CANCELLED: Cancelled before being fully received

Receiving status is never set by hand: after every receipt it is derived
from ordered vs inwarded + rejected quantities.
"""
from __future__ import annotations

from ..errors import (
    DuplicateKeyError,
    EmptyDocumentError,
    ExceedsOrderedQuantityError,
    NotFoundError,
    ValidationError,
)
from ..extensions import db
from ..models import PurchaseOrder, PurchaseOrderLine, PurchaseOrderReceipt
from ..validation import optional_datetime, optional_text, positive_cents, positive_quantity, required_text
from . import ledger_service
from .concurrency import lock_for_update, run_with_retry
from .document_service import next_document_number
from .workflow import (
    DocumentWorkflow,
    post_stock,
    priced_line_spec,
    recalculate_document,
    require_lines,
    set_bill_discount,
    transitions,
)


DOCUMENT_TYPE = "PURCHASE_ORDER"

PO_STATUS_DRAFT = "DRAFT"
PO_STATUS_PENDING = "PENDING"
PO_STATUS_PARTIALLY_RECEIVED = "PARTIALLY_RECEIVED"
PO_STATUS_RECEIVED = "RECEIVED"
PO_STATUS_CLOSED = "CLOSED"
PO_STATUS_CANCELLED = "CANCELLED"

RECEIPT_INWARD = "INWARD"
RECEIPT_REJECT = "REJECT"

RECEIVING_STATUSES = {PO_STATUS_PENDING, PO_STATUS_PARTIALLY_RECEIVED}

workflow = DocumentWorkflow("purchase order", transitions(
    ("add_line", {PO_STATUS_DRAFT, PO_STATUS_PENDING}),
    ("submit", {PO_STATUS_DRAFT}, PO_STATUS_PENDING, "submitted_at"),
    ("inward", RECEIVING_STATUSES),
    ("reject", RECEIVING_STATUSES),
    ("record_payment", {PO_STATUS_PENDING, PO_STATUS_PARTIALLY_RECEIVED, PO_STATUS_RECEIVED, PO_STATUS_CLOSED}),
    ("close", {PO_STATUS_PENDING, PO_STATUS_PARTIALLY_RECEIVED, PO_STATUS_RECEIVED}, PO_STATUS_CLOSED, "closed_at"),
    ("cancel", {PO_STATUS_DRAFT, PO_STATUS_PENDING, PO_STATUS_PARTIALLY_RECEIVED}, PO_STATUS_CANCELLED, "cancelled_at"),
    ("delete", {PO_STATUS_DRAFT}),
))


def get_purchase_order(order_id: int, *, lock: bool = False) -> PurchaseOrder:
    query = db.session.query(PurchaseOrder).filter_by(id=order_id)
    order = (lock_for_update(query) if lock else query).first()
    if not order:
        raise NotFoundError(f"Purchase order {order_id} not found", purchase_order_id=order_id)
    return order


def derive_status(order: PurchaseOrder) -> str:
    """
    Receiving status from the receipts log.

    CANCELLED, CLOSED and DRAFT are explicit states and are never
    overridden by quantities.
    """
    if order.status in (PO_STATUS_CANCELLED, PO_STATUS_CLOSED, PO_STATUS_DRAFT):
        return order.status

    ordered = sum(line.quantity for line in order.lines)
    done = sum(r.quantity for r in order.receipts)
    if done == 0:
        return PO_STATUS_PENDING
    if done >= ordered:
        return PO_STATUS_RECEIVED
    return PO_STATUS_PARTIALLY_RECEIVED


def _refresh(order: PurchaseOrder) -> None:
    recalculate_document(order, paid_cents=order.paid_cents or 0)
    order.status = derive_status(order)


def _add_line(order: PurchaseOrder, payload: dict) -> PurchaseOrderLine:
    spec = priced_line_spec(
        payload,
        workshop_code=order.workshop_code,
        price_field="purchase_price_cents",
        require_stock=False,
    )
    if any(line.part_number == spec.part_number for line in order.lines):
        raise DuplicateKeyError(
            f"Part {spec.part_number} is already on purchase order {order.document_number}",
            part_number=spec.part_number,
        )
    line = PurchaseOrderLine()
    spec.apply_to(line)
    order.lines.append(line)
    return line


def create_purchase_order(
    *,
    vendor_name: str,
    lines: list[dict] | None = None,
    workshop_code: str | None = None,
    vendor_reference: str | None = None,
    expected_date: str | None = None,
    bill_discount_value: int = 0,
    bill_discount_type: str | None = None,
    notes: str | None = None,
    actor: str | None = None,
) -> PurchaseOrder:
    """Create a DRAFT purchase order, optionally with its initial lines."""
    def _op():
        order = PurchaseOrder(
            document_number=next_document_number(DOCUMENT_TYPE),
            workshop_code=workshop_code or ledger_service.default_workshop(),
            vendor_name=required_text(vendor_name, "vendor_name"),
            vendor_reference=optional_text(vendor_reference, "vendor_reference", 128),
            expected_date=optional_datetime(expected_date, "expected_date"),
            notes=notes,
            status=PO_STATUS_DRAFT,
            created_by=actor,
            paid_cents=0,
        )
        set_bill_discount(order, bill_discount_value, bill_discount_type)
        db.session.add(order)

        for payload in lines or []:
            _add_line(order, payload)

        _refresh(order)
        db.session.flush()
        return order

    return run_with_retry(_op)


def add_ordered_part(order_id: int, payload: dict) -> PurchaseOrder:
    """Add one part to a DRAFT or PENDING order; a part may appear only once."""
    def _op():
        order = get_purchase_order(order_id, lock=True)
        workflow.check(order, "add_line")
        _add_line(order, payload)
        _refresh(order)
        db.session.flush()
        return order

    return run_with_retry(_op)


def submit_purchase_order(order_id: int) -> PurchaseOrder:
    def _op():
        order = get_purchase_order(order_id, lock=True)
        workflow.check(order, "submit")
        if not order.lines:
            raise EmptyDocumentError("purchase order", "submit")
        workflow.apply(order, "submit")
        _refresh(order)
        db.session.flush()
        return order

    return run_with_retry(_op)


def _line_for(order: PurchaseOrder, part: dict) -> PurchaseOrderLine:
    line_id = part.get("purchase_order_line_id")
    stock_item_id = part.get("stock_item_id")
    part_number = (part.get("part_number") or "").strip().upper() or None

    for line in order.lines:
        if line_id is not None and line.id == line_id:
            return line
        if line_id is None and part_number and line.part_number == part_number:
            return line
        if line_id is None and not part_number and stock_item_id is not None and line.stock_item_id == stock_item_id:
            return line

    ref = line_id or part_number or stock_item_id
    raise NotFoundError(
        f"Part {ref} is not on purchase order {order.document_number}",
        part_number=part_number,
    )


def validate_receipts(order: PurchaseOrder, parts: list[dict]) -> list[tuple[PurchaseOrderLine, int]]:
    """
    Match parts to order lines and check every quantity against what is
    still outstanding, counting earlier parts in the same batch.
    """
    require_lines(parts, "parts")
    totals = order.receipt_totals()
    batch: dict[int, int] = {}
    matched = []

    for part in parts:
        if not isinstance(part, dict):
            raise ValidationError("Each part must be an object")
        line = _line_for(order, part)
        qty = positive_quantity(part.get("quantity"))
        done = totals.get(line.id, {RECEIPT_INWARD: 0, RECEIPT_REJECT: 0})
        remaining = line.quantity - done[RECEIPT_INWARD] - done[RECEIPT_REJECT] - batch.get(line.id, 0)
        if qty > remaining:
            raise ExceedsOrderedQuantityError(line.part_number, max(remaining, 0), qty)
        batch[line.id] = batch.get(line.id, 0) + qty
        matched.append((line, qty))

    return matched


def append_receipts(
    order: PurchaseOrder,
    matched: list[tuple[PurchaseOrderLine, int]],
    *,
    kind: str,
    stock_updated: bool = False,
    stock_inward_id: int | None = None,
    reason: str | None = None,
    actor: str | None = None,
) -> None:
    for line, qty in matched:
        order.receipts.append(PurchaseOrderReceipt(
            purchase_order_line_id=line.id,
            part_number=line.part_number,
            kind=kind,
            quantity=qty,
            stock_inward_id=stock_inward_id,
            stock_updated=stock_updated,
            reason=reason,
            recorded_by=actor,
        ))
    _refresh(order)


def inward_parts(
    order_id: int,
    parts: list[dict],
    *,
    update_stock: bool = True,
    actor: str | None = None,
) -> PurchaseOrder:
    """
    Record accepted units against the order.

    Each part is bounded by ordered - inwarded - rejected. With update_stock
    the units are added to the ordering workshop's stock; every line must
    then resolve to a stock item.
    """
    def _op():
        order = get_purchase_order(order_id, lock=True)
        workflow.check(order, "inward")
        matched = validate_receipts(order, parts)

        if update_stock:
            movements = []
            for line, qty in matched:
                item = ledger_service.require_resolved(ledger_service.resolve_part(
                    stock_item_id=line.stock_item_id,
                    part_number=line.part_number,
                    workshop_code=order.workshop_code,
                ))
                line.stock_item_id = item.id
                movements.append((item.id, qty))
            post_stock(
                movements,
                direction=1,
                document_type=DOCUMENT_TYPE,
                document_number=order.document_number,
                note="Inward against purchase order",
                actor=actor,
            )

        append_receipts(order, matched, kind=RECEIPT_INWARD, stock_updated=update_stock, actor=actor)
        db.session.flush()
        return order

    return run_with_retry(_op)


def reject_parts(
    order_id: int,
    parts: list[dict],
    *,
    reason: str | None = None,
    actor: str | None = None,
) -> PurchaseOrder:
    """Record refused units; they count toward completion but never touch stock."""
    def _op():
        order = get_purchase_order(order_id, lock=True)
        workflow.check(order, "reject")
        matched = validate_receipts(order, parts)
        append_receipts(
            order, matched,
            kind=RECEIPT_REJECT,
            reason=optional_text(reason, "reason"),
            actor=actor,
        )
        db.session.flush()
        return order

    return run_with_retry(_op)


def record_order_payment(order_id: int, amount_cents: int) -> PurchaseOrder:
    def _op():
        order = get_purchase_order(order_id, lock=True)
        workflow.check(order, "record_payment")
        amount = positive_cents(amount_cents, "amount_cents")
        order.paid_cents = (order.paid_cents or 0) + amount
        _refresh(order)
        db.session.flush()
        return order

    return run_with_retry(_op)


def close_purchase_order(order_id: int) -> PurchaseOrder:
    def _op():
        order = get_purchase_order(order_id, lock=True)
        workflow.apply(order, "close")
        db.session.flush()
        return order

    return run_with_retry(_op)


def cancel_purchase_order(order_id: int, reason: str | None = None) -> PurchaseOrder:
    """Cancel an order that has not been fully received; receipts are kept."""
    def _op():
        order = get_purchase_order(order_id, lock=True)
        workflow.apply(order, "cancel")
        order.cancellation_reason = optional_text(reason, "reason", 1000)
        db.session.flush()
        return order

    return run_with_retry(_op)


def delete_purchase_order(order_id: int) -> None:
    """Delete a DRAFT order with its lines; submitted orders are cancelled instead."""
    def _op():
        workflow.delete(get_purchase_order(order_id, lock=True))

    return run_with_retry(_op)


def list_purchase_orders(
    *,
    status: str | None = None,
    workshop_code: str | None = None,
    limit: int = 100,
) -> list[PurchaseOrder]:
    query = db.session.query(PurchaseOrder)
    if status:
        query = query.filter(PurchaseOrder.status == status)
    if workshop_code:
        query = query.filter(PurchaseOrder.workshop_code == workshop_code)
    return query.order_by(PurchaseOrder.id.desc()).limit(max(1, min(limit, 500))).all()
