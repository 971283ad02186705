# backend/partsflow/services/purchase_return_service.py
"""
Purchase return service: parts sent back to the vendor.

LIFECYCLE:
1. DRAFT: Lines added, each with a return reason and condition
2. PENDING_APPROVAL: Submitted for approval
3. APPROVED: Stock deducted for every line
4. SHIPPED -> DELIVERED -> CLOSED: Logistics to the vendor
5. CANCELLED: From DRAFT, PENDING_APPROVAL or APPROVED; restores stock

Refunds follow their own sub-state (PENDING, PARTIAL, COMPLETED) driven by
recorded refund amounts against the return value, independent of the
shipping lifecycle.
"""
from __future__ import annotations

from sqlalchemy import func

from ..errors import (
    EmptyDocumentError,
    ExceedsReceivedQuantityError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from ..extensions import db
from ..models import PurchaseReturn, PurchaseReturnLine
from ..validation import choice, optional_text, positive_cents, positive_quantity, required_text
from . import inward_service, ledger_service, purchase_order_service
from .concurrency import lock_for_update, run_with_retry
from .document_service import next_document_number
from .workflow import (
    DocumentWorkflow,
    post_stock,
    priced_line_spec,
    recalculate_document,
    require_lines,
    transitions,
)


DOCUMENT_TYPE = "PURCHASE_RETURN"

RETURN_STATUS_DRAFT = "DRAFT"
RETURN_STATUS_PENDING_APPROVAL = "PENDING_APPROVAL"
RETURN_STATUS_APPROVED = "APPROVED"
RETURN_STATUS_SHIPPED = "SHIPPED"
RETURN_STATUS_DELIVERED = "DELIVERED"
RETURN_STATUS_CLOSED = "CLOSED"
RETURN_STATUS_CANCELLED = "CANCELLED"

REFUND_STATUS_PENDING = "PENDING"
REFUND_STATUS_PARTIAL = "PARTIAL"
REFUND_STATUS_COMPLETED = "COMPLETED"
REFUND_STATUS_NOT_APPLICABLE = "NOT_APPLICABLE"

RETURN_REASONS = ("DEFECTIVE", "DAMAGED", "WRONG_ITEM", "EXPIRED", "QUALITY_ISSUE", "EXCESS_STOCK", "OTHER")
ITEM_CONDITIONS = ("UNOPENED", "OPENED", "USED", "DAMAGED")
SHIPMENT_METHODS = ("COURIER", "HAND_DELIVERY", "PICKUP", "TRANSPORT", "OTHER")
REFUND_METHODS = ("CREDIT_NOTE", "BANK_TRANSFER", "CASH", "ADJUSTMENT")

workflow = DocumentWorkflow("purchase return", transitions(
    ("add_line", {RETURN_STATUS_DRAFT}),
    ("delete", {RETURN_STATUS_DRAFT}),
    ("submit", {RETURN_STATUS_DRAFT}, RETURN_STATUS_PENDING_APPROVAL, "submitted_at"),
    ("approve", {RETURN_STATUS_PENDING_APPROVAL}, RETURN_STATUS_APPROVED, "approved_at"),
    ("ship", {RETURN_STATUS_APPROVED}, RETURN_STATUS_SHIPPED, "shipped_at"),
    ("deliver", {RETURN_STATUS_SHIPPED}, RETURN_STATUS_DELIVERED, "delivered_at"),
    ("close", {RETURN_STATUS_DELIVERED}, RETURN_STATUS_CLOSED, "closed_at"),
    ("refund", {RETURN_STATUS_APPROVED, RETURN_STATUS_SHIPPED, RETURN_STATUS_DELIVERED, RETURN_STATUS_CLOSED}),
    ("cancel", {RETURN_STATUS_DRAFT, RETURN_STATUS_PENDING_APPROVAL, RETURN_STATUS_APPROVED},
     RETURN_STATUS_CANCELLED, "cancelled_at"),
))


def get_purchase_return(return_id: int, *, lock: bool = False) -> PurchaseReturn:
    query = db.session.query(PurchaseReturn).filter_by(id=return_id)
    purchase_return = (lock_for_update(query) if lock else query).first()
    if not purchase_return:
        raise NotFoundError(f"Purchase return {return_id} not found", purchase_return_id=return_id)
    return purchase_return


def refund_status(purchase_return: PurchaseReturn) -> str:
    if purchase_return.refund_status == REFUND_STATUS_NOT_APPLICABLE:
        return REFUND_STATUS_NOT_APPLICABLE
    refunded = purchase_return.refunded_cents or 0
    if refunded <= 0:
        return REFUND_STATUS_PENDING
    if refunded >= purchase_return.total_cents:
        return REFUND_STATUS_COMPLETED
    return REFUND_STATUS_PARTIAL


def _recalculate(purchase_return: PurchaseReturn) -> None:
    recalculate_document(purchase_return, paid_cents=purchase_return.refunded_cents or 0)
    purchase_return.refund_status = refund_status(purchase_return)


def _add_line(purchase_return: PurchaseReturn, payload: dict) -> PurchaseReturnLine:
    spec = priced_line_spec(
        payload,
        workshop_code=purchase_return.workshop_code,
        price_field="purchase_price_cents",
        require_stock=True,
    )
    line = PurchaseReturnLine(
        reason=choice(payload.get("reason"), "reason", RETURN_REASONS),
        condition=choice(payload.get("condition") or "UNOPENED", "condition", ITEM_CONDITIONS),
        remarks=optional_text(payload.get("remarks"), "remarks"),
    )
    spec.apply_to(line)
    purchase_return.lines.append(line)
    return line


def _new_return(
    *,
    vendor_name: str,
    workshop_code: str | None,
    stock_inward_id: int | None = None,
    purchase_order_id: int | None = None,
    notes: str | None = None,
    actor: str | None = None,
) -> PurchaseReturn:
    purchase_return = PurchaseReturn(
        document_number=next_document_number(DOCUMENT_TYPE),
        workshop_code=workshop_code or ledger_service.default_workshop(),
        vendor_name=required_text(vendor_name, "vendor_name"),
        stock_inward_id=stock_inward_id,
        purchase_order_id=purchase_order_id,
        notes=notes,
        status=RETURN_STATUS_DRAFT,
        stock_deducted=False,
        refund_status=REFUND_STATUS_PENDING,
        refunded_cents=0,
        bill_discount_type="FLAT",
        bill_discount_value=0,
        created_by=actor,
    )
    db.session.add(purchase_return)
    return purchase_return


def create_purchase_return(
    *,
    vendor_name: str,
    lines: list[dict] | None = None,
    workshop_code: str | None = None,
    notes: str | None = None,
    actor: str | None = None,
) -> PurchaseReturn:
    """Create a DRAFT return not tied to any inward or order."""
    def _op():
        purchase_return = _new_return(
            vendor_name=vendor_name,
            workshop_code=workshop_code,
            notes=notes,
            actor=actor,
        )
        for payload in lines or []:
            _add_line(purchase_return, payload)
        _recalculate(purchase_return)
        db.session.flush()
        return purchase_return

    return run_with_retry(_op)


# -----------------------------------------------------------------------------
# Returns against an inward or a purchase order
# -----------------------------------------------------------------------------

def _returned_quantities(criterion) -> dict[str, int]:
    """Units per part already on non-cancelled returns matching criterion."""
    rows = (
        db.session.query(PurchaseReturnLine.part_number, func.sum(PurchaseReturnLine.quantity))
        .join(PurchaseReturn, PurchaseReturnLine.purchase_return_id == PurchaseReturn.id)
        .filter(criterion, PurchaseReturn.status != RETURN_STATUS_CANCELLED)
        .group_by(PurchaseReturnLine.part_number)
        .all()
    )
    return {part_number: int(total or 0) for part_number, total in rows}


def _enforce_return_bound(requested: dict[str, int], received: dict[str, int], criterion) -> None:
    """
    requested + already returned may not exceed received, per part.

    Parts absent from received are not bounded by this source.
    """
    returned = _returned_quantities(criterion)
    for part_number, qty in requested.items():
        if part_number not in received:
            continue
        remaining = max(received[part_number] - returned.get(part_number, 0), 0)
        if qty > remaining:
            raise ExceedsReceivedQuantityError(part_number, remaining, qty)


def _stocked_receipts(order) -> dict[str, int]:
    """Units per part that reached stock through INWARD receipts on the order."""
    received: dict[str, int] = {}
    for receipt in order.receipts:
        if receipt.kind == purchase_order_service.RECEIPT_INWARD and receipt.stock_updated:
            received[receipt.part_number] = received.get(receipt.part_number, 0) + receipt.quantity
    return received


def _source_line_payloads(lines: list[dict], sources: dict, label: str) -> tuple[list[dict], dict[str, int]]:
    """
    Match return payloads to source lines by part number (or stock item id)
    and fill prices from the source. Returns the payloads and the requested
    quantity per part, summed across the batch.
    """
    payloads = []
    requested: dict[str, int] = {}
    for payload in require_lines(lines, "lines"):
        if not isinstance(payload, dict):
            raise ValidationError("Each line must be an object")
        part_number = (payload.get("part_number") or "").strip().upper()
        if not part_number and payload.get("stock_item_id") is not None:
            part_number = next(
                (number for number, line in sources.items() if line.stock_item_id == payload.get("stock_item_id")),
                "",
            )
        source = sources.get(part_number)
        if source is None:
            raise NotFoundError(f"Part {part_number or payload.get('stock_item_id')} is not on {label}")

        qty = positive_quantity(payload.get("quantity"))
        requested[part_number] = requested.get(part_number, 0) + qty
        payloads.append({
            "stock_item_id": source.stock_item_id,
            "part_number": source.part_number,
            "quantity": qty,
            "unit_price_cents": payload.get("unit_price_cents", source.unit_price_cents),
            "discount_type": payload.get("discount_type", source.discount_type),
            "discount_value": payload.get("discount_value", source.discount_value),
            "tax_rate_bps": payload.get("tax_rate_bps", source.tax_rate_bps),
            "reason": payload.get("reason"),
            "condition": payload.get("condition"),
            "remarks": payload.get("remarks"),
        })
    return payloads, requested


def _bounded_payloads(lines: list[dict], *, inward=None, order=None) -> list[dict]:
    """
    Validate return lines against their source document.

    With an inward, parts must be on the inward and stay within its
    inwarded quantity; when the inward belongs to an order, the order's
    stocked receipts bound the same parts too. With only an order, parts
    must have reached stock through the order's receipts.
    """
    if inward is not None:
        sources = {}
        received: dict[str, int] = {}
        for line in inward.lines:
            sources.setdefault(line.part_number, line)
            received[line.part_number] = received.get(line.part_number, 0) + line.quantity
        label = f"inward {inward.document_number}"
    else:
        received = _stocked_receipts(order)
        sources = {line.part_number: line for line in order.lines if line.part_number in received}
        label = f"purchase order {order.document_number}"

    payloads, requested = _source_line_payloads(lines, sources, label)
    if inward is not None:
        _enforce_return_bound(requested, received, PurchaseReturn.stock_inward_id == inward.id)
    if order is not None:
        _enforce_return_bound(requested, _stocked_receipts(order), PurchaseReturn.purchase_order_id == order.id)
    return payloads


def _return_sources(purchase_return: PurchaseReturn) -> dict:
    sources = {}
    if purchase_return.stock_inward_id:
        sources["inward"] = inward_service.get_stock_inward(purchase_return.stock_inward_id)
    if purchase_return.purchase_order_id:
        sources["order"] = purchase_order_service.get_purchase_order(purchase_return.purchase_order_id)
    return sources


def create_return_from_stock_inward(
    inward_id: int,
    *,
    lines: list[dict],
    notes: str | None = None,
    actor: str | None = None,
) -> PurchaseReturn:
    """
    Raise a return against a verified inward. Each part must appear on the
    inward, and the units held by every open return for the inward may not
    exceed the units inwarded. Prices default to the inward's.
    """
    def _op():
        inward = inward_service.get_stock_inward(inward_id)
        if not inward.is_verified:
            raise InvalidTransitionError("stock inward", inward.status, "return against")

        order = None
        if inward.purchase_order_id:
            order = purchase_order_service.get_purchase_order(inward.purchase_order_id)
        payloads = _bounded_payloads(lines, inward=inward, order=order)

        purchase_return = _new_return(
            vendor_name=inward.vendor_name,
            workshop_code=inward.workshop_code,
            stock_inward_id=inward.id,
            purchase_order_id=inward.purchase_order_id,
            notes=notes,
            actor=actor,
        )
        for payload in payloads:
            _add_line(purchase_return, payload)
        _recalculate(purchase_return)
        db.session.flush()
        return purchase_return

    return run_with_retry(_op)


def create_return_from_purchase_order(
    order_id: int,
    *,
    lines: list[dict],
    notes: str | None = None,
    actor: str | None = None,
) -> PurchaseReturn:
    """
    Raise a return against a purchase order's stocked receipts.

    Only parts inwarded into stock on the order can be returned, up to the
    stocked quantity less what open returns against the order already hold.
    """
    def _op():
        order = purchase_order_service.get_purchase_order(order_id)
        if not _stocked_receipts(order):
            raise InvalidTransitionError("purchase order", order.status, "return against")
        payloads = _bounded_payloads(lines, order=order)

        purchase_return = _new_return(
            vendor_name=order.vendor_name,
            workshop_code=order.workshop_code,
            purchase_order_id=order.id,
            notes=notes,
            actor=actor,
        )
        for payload in payloads:
            _add_line(purchase_return, payload)
        _recalculate(purchase_return)
        db.session.flush()
        return purchase_return

    return run_with_retry(_op)


def add_return_line(return_id: int, payload: dict) -> PurchaseReturn:
    """Add a line to a DRAFT return; linked returns keep their source bound."""
    def _op():
        purchase_return = get_purchase_return(return_id, lock=True)
        workflow.check(purchase_return, "add_line")
        sources = _return_sources(purchase_return)
        line_payload = _bounded_payloads([payload], **sources)[0] if sources else payload
        _add_line(purchase_return, line_payload)
        _recalculate(purchase_return)
        db.session.flush()
        return purchase_return

    return run_with_retry(_op)


def delete_purchase_return(return_id: int) -> None:
    """Delete a DRAFT return; anything further along is cancelled instead."""
    def _op():
        purchase_return = get_purchase_return(return_id, lock=True)
        workflow.delete(purchase_return)

    return run_with_retry(_op)


def submit_return_for_approval(return_id: int) -> PurchaseReturn:
    def _op():
        purchase_return = get_purchase_return(return_id, lock=True)
        workflow.check(purchase_return, "submit")
        if not purchase_return.lines:
            raise EmptyDocumentError("purchase return", "submit")
        workflow.apply(purchase_return, "submit")
        db.session.flush()
        return purchase_return

    return run_with_retry(_op)


def approve_return(return_id: int, *, actor: str | None = None) -> PurchaseReturn:
    """Approve and take every returned unit out of stock, all or nothing."""
    def _op():
        purchase_return = get_purchase_return(return_id, lock=True)
        workflow.check(purchase_return, "approve")

        post_stock(
            [(line.stock_item_id, line.quantity) for line in purchase_return.lines],
            direction=-1,
            document_type=DOCUMENT_TYPE,
            document_number=purchase_return.document_number,
            note=f"Returned to {purchase_return.vendor_name}",
            actor=actor,
        )
        purchase_return.stock_deducted = True
        purchase_return.approved_by = actor
        workflow.apply(purchase_return, "approve")
        db.session.flush()
        return purchase_return

    return run_with_retry(_op)


def mark_return_shipped(
    return_id: int,
    *,
    shipment_method: str,
    carrier: str | None = None,
    tracking_number: str | None = None,
) -> PurchaseReturn:
    def _op():
        purchase_return = get_purchase_return(return_id, lock=True)
        workflow.check(purchase_return, "ship")
        purchase_return.shipment_method = choice(shipment_method, "shipment_method", SHIPMENT_METHODS)
        purchase_return.carrier = optional_text(carrier, "carrier", 128)
        purchase_return.tracking_number = optional_text(tracking_number, "tracking_number", 128)
        workflow.apply(purchase_return, "ship")
        db.session.flush()
        return purchase_return

    return run_with_retry(_op)


def mark_return_delivered(return_id: int) -> PurchaseReturn:
    def _op():
        purchase_return = get_purchase_return(return_id, lock=True)
        workflow.apply(purchase_return, "deliver")
        db.session.flush()
        return purchase_return

    return run_with_retry(_op)


def close_return(return_id: int, *, without_refund: bool = False) -> PurchaseReturn:
    """Close a delivered return. without_refund marks the refund not applicable."""
    def _op():
        purchase_return = get_purchase_return(return_id, lock=True)
        workflow.apply(purchase_return, "close")
        if without_refund and purchase_return.refund_status == REFUND_STATUS_PENDING:
            purchase_return.refund_status = REFUND_STATUS_NOT_APPLICABLE
        db.session.flush()
        return purchase_return

    return run_with_retry(_op)


def record_refund(
    return_id: int,
    *,
    amount_cents: int,
    method: str,
    reference: str | None = None,
) -> PurchaseReturn:
    def _op():
        purchase_return = get_purchase_return(return_id, lock=True)
        workflow.check(purchase_return, "refund")
        if purchase_return.refund_status == REFUND_STATUS_NOT_APPLICABLE:
            raise InvalidTransitionError("purchase return", purchase_return.status, "refund")

        amount = positive_cents(amount_cents, "amount_cents")
        outstanding = purchase_return.total_cents - (purchase_return.refunded_cents or 0)
        if amount > outstanding:
            raise ValidationError(
                f"Refund {amount} exceeds outstanding amount {max(outstanding, 0)}"
            )
        purchase_return.refunded_cents = (purchase_return.refunded_cents or 0) + amount
        purchase_return.refund_method = choice(method, "method", REFUND_METHODS)
        purchase_return.refund_reference = optional_text(reference, "reference", 128)
        _recalculate(purchase_return)
        db.session.flush()
        return purchase_return

    return run_with_retry(_op)


def cancel_return(return_id: int, reason: str | None = None, *, actor: str | None = None) -> PurchaseReturn:
    def _op():
        purchase_return = get_purchase_return(return_id, lock=True)
        workflow.check(purchase_return, "cancel")

        if purchase_return.stock_deducted:
            post_stock(
                [(line.stock_item_id, line.quantity) for line in purchase_return.lines],
                direction=1,
                document_type=DOCUMENT_TYPE,
                document_number=purchase_return.document_number,
                note="Purchase return cancelled",
                actor=actor,
            )
        workflow.apply(purchase_return, "cancel")
        purchase_return.cancellation_reason = optional_text(reason, "reason", 1000)
        db.session.flush()
        return purchase_return

    return run_with_retry(_op)


def list_purchase_returns(*, status: str | None = None, limit: int = 100):
    query = db.session.query(PurchaseReturn)
    if status:
        query = query.filter(PurchaseReturn.status == status)
    return query.order_by(PurchaseReturn.id.desc()).limit(max(1, min(limit, 500))).all()
