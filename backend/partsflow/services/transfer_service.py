# backend/partsflow/services/transfer_service.py
"""
Inter-workshop stock transfer service.

LIFECYCLE:
1. DRAFT: Transfer created, lines added
2. PENDING_APPROVAL: Submitted
3. APPROVED: Source availability confirmed; nothing moves yet
4. IN_TRANSIT: Dispatched; source stock deducted
5. DELIVERED: Arrived at the destination workshop
6. RECEIVED: Counted in; good units added to destination stock
7. CANCELLED: Any time before RECEIVED; dispatched units go back to source

Damaged or missing units are recorded on the line but never added at the
destination; they stay out of stock and are settled outside this document.
"""
from __future__ import annotations

from ..errors import (
    DuplicateKeyError,
    EmptyDocumentError,
    ExceedsIssuedQuantityError,
    NotFoundError,
    ValidationError,
)
from ..extensions import db
from ..models import StockItem, StockTransfer, StockTransferLine
from ..validation import choice, non_negative_quantity, optional_text, positive_quantity, required_text
from . import ledger_service
from .concurrency import lock_for_update, run_with_retry
from .document_service import next_document_number
from .workflow import DocumentWorkflow, post_stock, transitions


DOCUMENT_TYPE = "STOCK_TRANSFER"

TRANSFER_STATUS_DRAFT = "DRAFT"
TRANSFER_STATUS_PENDING_APPROVAL = "PENDING_APPROVAL"
TRANSFER_STATUS_APPROVED = "APPROVED"
TRANSFER_STATUS_IN_TRANSIT = "IN_TRANSIT"
TRANSFER_STATUS_DELIVERED = "DELIVERED"
TRANSFER_STATUS_RECEIVED = "RECEIVED"
TRANSFER_STATUS_CANCELLED = "CANCELLED"

LINE_STATUS_PENDING = "PENDING"
LINE_STATUS_RECEIVED = "RECEIVED"
LINE_STATUS_PARTIAL = "PARTIAL"
LINE_STATUS_DAMAGED = "DAMAGED"

TRANSFER_REASONS = ("STOCK_BALANCING", "URGENT_REQUIREMENT", "WORKSHOP_CLOSURE", "EXCESS_STOCK", "OTHER")
TRANSFER_METHODS = ("VEHICLE", "COURIER", "HAND_CARRY", "OTHER")

workflow = DocumentWorkflow("stock transfer", transitions(
    ("add_line", {TRANSFER_STATUS_DRAFT}),
    ("submit", {TRANSFER_STATUS_DRAFT}, TRANSFER_STATUS_PENDING_APPROVAL, "submitted_at"),
    ("approve", {TRANSFER_STATUS_PENDING_APPROVAL}, TRANSFER_STATUS_APPROVED, "approved_at"),
    ("dispatch", {TRANSFER_STATUS_APPROVED}, TRANSFER_STATUS_IN_TRANSIT, "dispatched_at"),
    ("deliver", {TRANSFER_STATUS_IN_TRANSIT}, TRANSFER_STATUS_DELIVERED, "delivered_at"),
    ("receive", {TRANSFER_STATUS_IN_TRANSIT, TRANSFER_STATUS_DELIVERED}, TRANSFER_STATUS_RECEIVED, "received_at"),
    ("cancel", {
        TRANSFER_STATUS_DRAFT,
        TRANSFER_STATUS_PENDING_APPROVAL,
        TRANSFER_STATUS_APPROVED,
        TRANSFER_STATUS_IN_TRANSIT,
        TRANSFER_STATUS_DELIVERED,
    }, TRANSFER_STATUS_CANCELLED, "cancelled_at"),
    ("delete", {TRANSFER_STATUS_DRAFT}),
))


def get_stock_transfer(transfer_id: int, *, lock: bool = False) -> StockTransfer:
    query = db.session.query(StockTransfer).filter_by(id=transfer_id)
    transfer = (lock_for_update(query) if lock else query).first()
    if not transfer:
        raise NotFoundError(f"Transfer {transfer_id} not found", stock_transfer_id=transfer_id)
    return transfer


def _add_line(transfer: StockTransfer, payload: dict) -> StockTransferLine:
    if not isinstance(payload, dict):
        raise ValidationError("Each line must be an object")
    item = ledger_service.require_resolved(ledger_service.resolve_part(
        stock_item_id=payload.get("stock_item_id"),
        part_number=payload.get("part_number"),
        workshop_code=transfer.from_workshop_code,
    ))
    if any(line.stock_item_id == item.id for line in transfer.lines):
        raise DuplicateKeyError(
            f"Part {item.part_number} already on transfer {transfer.document_number}",
            part_number=item.part_number,
        )
    line = StockTransferLine(
        stock_item_id=item.id,
        part_number=item.part_number,
        part_name=item.part_name,
        quantity=positive_quantity(payload.get("quantity")),
        sent_qty=0,
        received_qty=0,
        damaged_qty=0,
        status=LINE_STATUS_PENDING,
        remarks=optional_text(payload.get("remarks"), "remarks"),
    )
    transfer.lines.append(line)
    return line


def create_stock_transfer(
    *,
    from_workshop_code: str,
    to_workshop_code: str,
    lines: list[dict] | None = None,
    reason: str | None = None,
    transfer_method: str | None = None,
    notes: str | None = None,
    actor: str | None = None,
) -> StockTransfer:
    def _op():
        source = required_text(from_workshop_code, "from_workshop_code", 32)
        destination = required_text(to_workshop_code, "to_workshop_code", 32)
        if source == destination:
            raise ValidationError("Cannot transfer to the same workshop")

        transfer = StockTransfer(
            document_number=next_document_number(DOCUMENT_TYPE),
            from_workshop_code=source,
            to_workshop_code=destination,
            reason=choice(reason or "OTHER", "reason", TRANSFER_REASONS),
            transfer_method=choice(transfer_method, "transfer_method", TRANSFER_METHODS) if transfer_method else None,
            notes=notes,
            status=TRANSFER_STATUS_DRAFT,
            source_stock_deducted=False,
            destination_stock_added=False,
            created_by=actor,
        )
        db.session.add(transfer)
        for payload in lines or []:
            _add_line(transfer, payload)
        db.session.flush()
        return transfer

    return run_with_retry(_op)


def add_transfer_line(transfer_id: int, payload: dict) -> StockTransfer:
    def _op():
        transfer = get_stock_transfer(transfer_id, lock=True)
        workflow.check(transfer, "add_line")
        _add_line(transfer, payload)
        db.session.flush()
        return transfer

    return run_with_retry(_op)


def submit_transfer(transfer_id: int) -> StockTransfer:
    def _op():
        transfer = get_stock_transfer(transfer_id, lock=True)
        workflow.check(transfer, "submit")
        if not transfer.lines:
            raise EmptyDocumentError("transfer", "submit")
        workflow.apply(transfer, "submit")
        db.session.flush()
        return transfer

    return run_with_retry(_op)


def _requirements(transfer: StockTransfer) -> dict[int, int]:
    return ledger_service.sum_by_item((line.stock_item_id, line.quantity) for line in transfer.lines)


def approve_transfer(transfer_id: int, *, actor: str | None = None) -> StockTransfer:
    """Approve after confirming the source can cover every line. No stock moves."""
    def _op():
        transfer = get_stock_transfer(transfer_id, lock=True)
        workflow.check(transfer, "approve")
        ledger_service.check_availability(_requirements(transfer))
        workflow.apply(transfer, "approve")
        transfer.approved_by = actor
        db.session.flush()
        return transfer

    return run_with_retry(_op)


def dispatch_transfer(
    transfer_id: int,
    *,
    transfer_method: str | None = None,
    tracking_reference: str | None = None,
    actor: str | None = None,
) -> StockTransfer:
    """Take every line out of source stock and mark the transfer in transit."""
    def _op():
        transfer = get_stock_transfer(transfer_id, lock=True)
        workflow.check(transfer, "dispatch")

        post_stock(
            [(line.stock_item_id, line.quantity) for line in transfer.lines],
            direction=-1,
            document_type=DOCUMENT_TYPE,
            document_number=transfer.document_number,
            note=f"Dispatched to {transfer.to_workshop_code}",
            actor=actor,
        )

        for line in transfer.lines:
            line.sent_qty = line.quantity
            source = db.session.get(StockItem, line.stock_item_id)
            line.unit_cost_cents = source.purchase_price_cents if source else None

        if transfer_method:
            transfer.transfer_method = choice(transfer_method, "transfer_method", TRANSFER_METHODS)
        transfer.tracking_reference = optional_text(tracking_reference, "tracking_reference", 128)
        transfer.source_stock_deducted = True
        transfer.dispatched_by = actor
        workflow.apply(transfer, "dispatch")
        db.session.flush()
        return transfer

    return run_with_retry(_op)


def mark_transfer_delivered(transfer_id: int) -> StockTransfer:
    def _op():
        transfer = get_stock_transfer(transfer_id, lock=True)
        workflow.apply(transfer, "deliver")
        db.session.flush()
        return transfer

    return run_with_retry(_op)


def _destination_item(transfer: StockTransfer, line: StockTransferLine) -> StockItem:
    """Find the part at the destination, creating it from the source master data if absent."""
    existing = ledger_service.find_stock_item(line.part_number, transfer.to_workshop_code)
    if existing:
        return existing

    source = ledger_service.get_stock_item(line.stock_item_id)
    item = StockItem(
        workshop_code=transfer.to_workshop_code,
        part_number=source.part_number,
        part_name=source.part_name,
        brand=source.brand,
        category=source.category,
        quantity_on_hand=0,
        purchase_price_cents=source.purchase_price_cents,
        selling_price_cents=source.selling_price_cents,
        tax_rate_bps=source.tax_rate_bps,
        min_stock_level=0,
        max_stock_level=None,
        is_active=True,
    )
    db.session.add(item)
    db.session.flush()
    return item


def receive_transfer(
    transfer_id: int,
    items: list[dict] | None = None,
    *,
    actor: str | None = None,
) -> StockTransfer:
    """
    Count the transfer in at the destination.

    items may give received_qty and damaged_qty per line; lines not listed
    are received in full. received + damaged may not exceed what was sent.
    """
    def _op():
        transfer = get_stock_transfer(transfer_id, lock=True)
        workflow.check(transfer, "receive")

        counts = {}
        for item in items or []:
            if not isinstance(item, dict):
                raise ValidationError("Each item must be an object")
            line = _line_for(transfer, item)
            damaged = non_negative_quantity(item.get("damaged_qty") or 0, "damaged_qty")
            received = non_negative_quantity(
                item.get("received_qty", max(line.sent_qty - damaged, 0)),
                "received_qty",
            )
            if received + damaged > line.sent_qty:
                raise ExceedsIssuedQuantityError(line.part_number, line.sent_qty, received + damaged)
            counts[line.id] = (received, damaged)

        movements = []
        for line in transfer.lines:
            received, damaged = counts.get(line.id, (line.sent_qty, 0))
            line.received_qty = received
            line.damaged_qty = damaged
            if damaged > 0:
                line.status = LINE_STATUS_DAMAGED
            elif received < line.quantity:
                line.status = LINE_STATUS_PARTIAL
            else:
                line.status = LINE_STATUS_RECEIVED

            destination = _destination_item(transfer, line)
            line.destination_stock_item_id = destination.id
            movements.append((destination.id, received))

        post_stock(
            movements,
            direction=1,
            document_type=DOCUMENT_TYPE,
            document_number=transfer.document_number,
            note=f"Received from {transfer.from_workshop_code}",
            actor=actor,
        )

        transfer.destination_stock_added = True
        transfer.received_by = actor
        workflow.apply(transfer, "receive")
        db.session.flush()
        return transfer

    return run_with_retry(_op)


def _line_for(transfer: StockTransfer, item: dict) -> StockTransferLine:
    line_id = item.get("line_id")
    stock_item_id = item.get("stock_item_id")
    part_number = (item.get("part_number") or "").strip().upper() or None
    for line in transfer.lines:
        if line_id is not None and line.id == line_id:
            return line
        if line_id is None and stock_item_id is not None and line.stock_item_id == stock_item_id:
            return line
        if line_id is None and stock_item_id is None and part_number and line.part_number == part_number:
            return line
    raise NotFoundError(
        f"Part {line_id or stock_item_id or part_number} is not on transfer {transfer.document_number}"
    )


def cancel_transfer(transfer_id: int, reason: str | None = None, *, actor: str | None = None) -> StockTransfer:
    """Cancel before receipt; anything already dispatched returns to the source."""
    def _op():
        transfer = get_stock_transfer(transfer_id, lock=True)
        workflow.check(transfer, "cancel")

        if transfer.source_stock_deducted:
            post_stock(
                [(line.stock_item_id, line.sent_qty) for line in transfer.lines],
                direction=1,
                document_type=DOCUMENT_TYPE,
                document_number=transfer.document_number,
                note="Transfer cancelled",
                actor=actor,
            )
        workflow.apply(transfer, "cancel")
        transfer.cancellation_reason = optional_text(reason, "reason", 1000)
        db.session.flush()
        return transfer

    return run_with_retry(_op)


def delete_stock_transfer(transfer_id: int) -> None:
    def _op():
        workflow.delete(get_stock_transfer(transfer_id, lock=True))

    return run_with_retry(_op)


def list_stock_transfers(*, status: str | None = None, workshop_code: str | None = None, limit: int = 100):
    query = db.session.query(StockTransfer)
    if status:
        query = query.filter(StockTransfer.status == status)
    if workshop_code:
        query = query.filter(
            (StockTransfer.from_workshop_code == workshop_code)
            | (StockTransfer.to_workshop_code == workshop_code)
        )
    return query.order_by(StockTransfer.id.desc()).limit(max(1, min(limit, 500))).all()
