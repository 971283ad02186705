# backend/partsflow/services/inward_service.py
"""
Stock inward (goods receipt) service.

LIFECYCLE:
1. DRAFT: Lines entered
2. PENDING_VERIFICATION: Submitted for verification
3. VERIFIED: Stock incremented; terminal and irreversible
4. CANCELLED: Cancelled before verification

Verification is the single point where an inward touches stock. When the
inward was raised against a purchase order, verification also back-fills
INWARD receipts on that order so its receiving status advances.
"""
from __future__ import annotations

from ..errors import EmptyDocumentError, InvalidTransitionError, NotFoundError, ValidationError
from ..extensions import db
from ..models import StockInward, StockInwardLine
from ..validation import optional_datetime, optional_text, required_text
from . import ledger_service, purchase_order_service
from .concurrency import lock_for_update, run_with_retry
from .document_service import next_document_number
from .workflow import (
    DocumentWorkflow,
    post_stock,
    priced_line_spec,
    recalculate_document,
    set_bill_discount,
    transitions,
)


DOCUMENT_TYPE = "STOCK_INWARD"

INWARD_STATUS_DRAFT = "DRAFT"
INWARD_STATUS_PENDING_VERIFICATION = "PENDING_VERIFICATION"
INWARD_STATUS_VERIFIED = "VERIFIED"
INWARD_STATUS_CANCELLED = "CANCELLED"

workflow = DocumentWorkflow("stock inward", transitions(
    ("add_line", {INWARD_STATUS_DRAFT}),
    ("submit", {INWARD_STATUS_DRAFT}, INWARD_STATUS_PENDING_VERIFICATION, "submitted_at"),
    ("verify", {INWARD_STATUS_PENDING_VERIFICATION}, INWARD_STATUS_VERIFIED, "verified_at"),
    ("cancel", {INWARD_STATUS_DRAFT, INWARD_STATUS_PENDING_VERIFICATION}, INWARD_STATUS_CANCELLED, "cancelled_at"),
    ("delete", {INWARD_STATUS_DRAFT}),
))


def get_stock_inward(inward_id: int, *, lock: bool = False) -> StockInward:
    query = db.session.query(StockInward).filter_by(id=inward_id)
    inward = (lock_for_update(query) if lock else query).first()
    if not inward:
        raise NotFoundError(f"Stock inward {inward_id} not found", stock_inward_id=inward_id)
    return inward


def _add_line(inward: StockInward, payload: dict) -> StockInwardLine:
    spec = priced_line_spec(
        payload,
        workshop_code=inward.workshop_code,
        price_field="purchase_price_cents",
        require_stock=True,
    )
    line = StockInwardLine()
    spec.apply_to(line)
    inward.lines.append(line)
    return line


def create_stock_inward(
    *,
    vendor_name: str,
    lines: list[dict] | None = None,
    workshop_code: str | None = None,
    purchase_order_id: int | None = None,
    invoice_number: str | None = None,
    invoice_date: str | None = None,
    bill_discount_value: int = 0,
    bill_discount_type: str | None = None,
    notes: str | None = None,
    actor: str | None = None,
) -> StockInward:
    """
    Create a DRAFT inward. Every line must resolve to a stock item in the
    receiving workshop, since verification will add to it.
    """
    def _op():
        order = None
        if purchase_order_id is not None:
            order = purchase_order_service.get_purchase_order(purchase_order_id)
            if order.status not in purchase_order_service.RECEIVING_STATUSES:
                raise InvalidTransitionError("purchase order", order.status, "inward against")

        inward = StockInward(
            document_number=next_document_number(DOCUMENT_TYPE),
            workshop_code=workshop_code or (order.workshop_code if order else ledger_service.default_workshop()),
            purchase_order_id=order.id if order else None,
            vendor_name=required_text(vendor_name or (order.vendor_name if order else None), "vendor_name"),
            invoice_number=optional_text(invoice_number, "invoice_number", 64),
            invoice_date=optional_datetime(invoice_date, "invoice_date"),
            notes=notes,
            status=INWARD_STATUS_DRAFT,
            is_verified=False,
            stock_updated=False,
            created_by=actor,
        )
        set_bill_discount(inward, bill_discount_value, bill_discount_type)
        db.session.add(inward)

        for payload in lines or []:
            _add_line(inward, payload)

        recalculate_document(inward)
        db.session.flush()
        return inward

    return run_with_retry(_op)


def create_inward_from_purchase_order(
    order_id: int,
    *,
    lines: list[dict] | None = None,
    invoice_number: str | None = None,
    invoice_date: str | None = None,
    actor: str | None = None,
) -> StockInward:
    """
    Raise an inward for a purchase order.

    Without explicit lines, one line per pending part is created at the
    ordered price, discount and tax.
    """
    def _op():
        order = purchase_order_service.get_purchase_order(order_id)
        if lines is None:
            by_line = {line.id: line for line in order.lines}
            payloads = []
            for pending in order.pending_parts():
                ordered = by_line[pending["purchase_order_line_id"]]
                payloads.append({
                    "stock_item_id": ordered.stock_item_id,
                    "part_number": ordered.part_number,
                    "quantity": pending["pending_qty"],
                    "unit_price_cents": ordered.unit_price_cents,
                    "discount_type": ordered.discount_type,
                    "discount_value": ordered.discount_value,
                    "tax_rate_bps": ordered.tax_rate_bps,
                })
        else:
            payloads = lines

        if not payloads:
            raise ValidationError(f"Purchase order {order.document_number} has nothing pending")

        return create_stock_inward(
            vendor_name=order.vendor_name,
            lines=payloads,
            workshop_code=order.workshop_code,
            purchase_order_id=order.id,
            invoice_number=invoice_number,
            invoice_date=invoice_date,
            actor=actor,
        )

    return run_with_retry(_op)


def add_inward_line(inward_id: int, payload: dict) -> StockInward:
    def _op():
        inward = get_stock_inward(inward_id, lock=True)
        workflow.check(inward, "add_line")
        _add_line(inward, payload)
        recalculate_document(inward)
        db.session.flush()
        return inward

    return run_with_retry(_op)


def submit_for_verification(inward_id: int) -> StockInward:
    def _op():
        inward = get_stock_inward(inward_id, lock=True)
        workflow.check(inward, "submit")
        if not inward.lines:
            raise EmptyDocumentError("stock inward", "submit")
        workflow.apply(inward, "submit")
        db.session.flush()
        return inward

    return run_with_retry(_op)


def verify_and_update_stock(inward_id: int, *, actor: str | None = None) -> StockInward:
    """
    Verify an inward: add every line to stock and, for a purchase-order
    inward, record matching INWARD receipts on the order.

    Lines whose part is not on the order are still stocked; lines that are
    on the order must fit within its outstanding quantity.
    """
    def _op():
        inward = get_stock_inward(inward_id, lock=True)
        workflow.check(inward, "verify")
        if inward.is_verified:
            raise InvalidTransitionError("stock inward", INWARD_STATUS_VERIFIED, "verify")

        order = None
        matched = []
        if inward.purchase_order_id:
            order = purchase_order_service.get_purchase_order(inward.purchase_order_id, lock=True)
            purchase_order_service.workflow.check(order, "inward")
            on_order = {line.part_number for line in order.lines}
            parts = [
                {"part_number": line.part_number, "quantity": line.quantity}
                for line in inward.lines
                if line.part_number in on_order
            ]
            if parts:
                matched = purchase_order_service.validate_receipts(order, parts)

        post_stock(
            [(line.stock_item_id, line.quantity) for line in inward.lines],
            direction=1,
            document_type=DOCUMENT_TYPE,
            document_number=inward.document_number,
            note="Stock inward verified",
            actor=actor,
        )

        if order is not None and matched:
            purchase_order_service.append_receipts(
                order, matched,
                kind=purchase_order_service.RECEIPT_INWARD,
                stock_updated=True,
                stock_inward_id=inward.id,
                actor=actor,
            )

        workflow.apply(inward, "verify")
        inward.is_verified = True
        inward.stock_updated = True
        inward.verified_by = actor
        db.session.flush()
        return inward

    return run_with_retry(_op)


def cancel_stock_inward(inward_id: int, reason: str | None = None) -> StockInward:
    def _op():
        inward = get_stock_inward(inward_id, lock=True)
        workflow.apply(inward, "cancel")
        inward.cancellation_reason = optional_text(reason, "reason", 1000)
        db.session.flush()
        return inward

    return run_with_retry(_op)


def delete_stock_inward(inward_id: int) -> None:
    def _op():
        workflow.delete(get_stock_inward(inward_id, lock=True))

    return run_with_retry(_op)


def list_stock_inwards(*, status: str | None = None, purchase_order_id: int | None = None, limit: int = 100):
    query = db.session.query(StockInward)
    if status:
        query = query.filter(StockInward.status == status)
    if purchase_order_id:
        query = query.filter(StockInward.purchase_order_id == purchase_order_id)
    return query.order_by(StockInward.id.desc()).limit(max(1, min(limit, 500))).all()
