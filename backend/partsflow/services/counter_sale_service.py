# backend/partsflow/services/counter_sale_service.py
"""
Counter sale service.

LIFECYCLE:
1. DRAFT: Lines and payments captured; lines may reference unknown parts
2. COMPLETED: Every line resolved and deducted from stock
3. REFUNDED: Completed sale reversed, stock restored
4. CANCELLED: Draft or completed sale voided, stock restored if deducted

Totals (discounts, tax, balance, payment status) are recomputed after every
line or payment change.
"""
from __future__ import annotations

from ..errors import EmptyDocumentError, NotFoundError, ValidationError
from ..extensions import db
from ..models import CounterSale, CounterSaleLine, CounterSalePayment
from ..validation import choice, optional_text, positive_cents
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


DOCUMENT_TYPE = "COUNTER_SALE"

SALE_STATUS_DRAFT = "DRAFT"
SALE_STATUS_COMPLETED = "COMPLETED"
SALE_STATUS_CANCELLED = "CANCELLED"
SALE_STATUS_REFUNDED = "REFUNDED"

PAYMENT_METHODS = ("CASH", "CARD", "UPI", "BANK_TRANSFER", "CREDIT", "OTHER")

WALK_IN_CUSTOMER = "Walk-in Customer"

workflow = DocumentWorkflow("counter sale", transitions(
    ("edit", {SALE_STATUS_DRAFT}),
    ("add_payment", {SALE_STATUS_DRAFT, SALE_STATUS_COMPLETED}),
    ("complete", {SALE_STATUS_DRAFT}, SALE_STATUS_COMPLETED, "completed_at"),
    ("cancel", {SALE_STATUS_DRAFT, SALE_STATUS_COMPLETED}, SALE_STATUS_CANCELLED, "cancelled_at"),
    ("refund", {SALE_STATUS_COMPLETED}, SALE_STATUS_REFUNDED, "refunded_at"),
    ("delete", {SALE_STATUS_DRAFT}),
))


def get_counter_sale(sale_id: int, *, lock: bool = False) -> CounterSale:
    query = db.session.query(CounterSale).filter_by(id=sale_id)
    sale = (lock_for_update(query) if lock else query).first()
    if not sale:
        raise NotFoundError(f"Counter sale {sale_id} not found", counter_sale_id=sale_id)
    return sale


def _recalculate(sale: CounterSale) -> None:
    recalculate_document(sale, paid_cents=sum(p.amount_cents for p in sale.payments))


def _add_line(sale: CounterSale, payload: dict, *, require_stock: bool = False) -> CounterSaleLine:
    spec = priced_line_spec(
        payload,
        workshop_code=sale.workshop_code,
        price_field="selling_price_cents",
        require_stock=require_stock,
    )
    line = CounterSaleLine()
    spec.apply_to(line)
    sale.lines.append(line)
    return line


def _add_payment(sale: CounterSale, payload: dict, actor: str | None) -> CounterSalePayment:
    if not isinstance(payload, dict):
        raise ValidationError("Each payment must be an object")
    payment = CounterSalePayment(
        method=choice(payload.get("method"), "method", PAYMENT_METHODS),
        amount_cents=positive_cents(payload.get("amount_cents"), "amount_cents"),
        reference=optional_text(payload.get("reference"), "reference", 128),
        received_by=actor,
    )
    sale.payments.append(payment)
    return payment


def _new_sale(
    *,
    workshop_code: str | None,
    customer_name: str | None,
    customer_phone: str | None,
    vehicle_reg_number: str | None,
    bill_discount_value: int,
    bill_discount_type: str | None,
    notes: str | None,
    actor: str | None,
) -> CounterSale:
    sale = CounterSale(
        document_number=next_document_number(DOCUMENT_TYPE),
        workshop_code=workshop_code or ledger_service.default_workshop(),
        customer_name=optional_text(customer_name, "customer_name") or WALK_IN_CUSTOMER,
        customer_phone=optional_text(customer_phone, "customer_phone", 32),
        vehicle_reg_number=optional_text(vehicle_reg_number, "vehicle_reg_number", 32),
        notes=notes,
        status=SALE_STATUS_DRAFT,
        stock_deducted=False,
        created_by=actor,
    )
    set_bill_discount(sale, bill_discount_value, bill_discount_type)
    return sale


def _resolve_all(sale: CounterSale) -> None:
    """Bind every line to a stock item; unknown parts block completion."""
    for line in sale.lines:
        item = ledger_service.require_resolved(ledger_service.resolve_part(
            stock_item_id=line.stock_item_id,
            part_number=line.part_number,
            workshop_code=sale.workshop_code,
        ))
        line.stock_item_id = item.id


def _deduct(sale: CounterSale, actor: str | None) -> None:
    post_stock(
        [(line.stock_item_id, line.quantity) for line in sale.lines],
        direction=-1,
        document_type=DOCUMENT_TYPE,
        document_number=sale.document_number,
        note=f"Counter sale to {sale.customer_name}",
        actor=actor,
    )
    sale.stock_deducted = True


def _restore(sale: CounterSale, note: str, actor: str | None) -> None:
    if not sale.stock_deducted:
        return
    post_stock(
        [(line.stock_item_id, line.quantity) for line in sale.lines],
        direction=1,
        document_type=DOCUMENT_TYPE,
        document_number=sale.document_number,
        note=note,
        actor=actor,
    )


def create_counter_sale(
    *,
    lines: list[dict] | None = None,
    workshop_code: str | None = None,
    customer_name: str | None = None,
    customer_phone: str | None = None,
    vehicle_reg_number: str | None = None,
    bill_discount_value: int = 0,
    bill_discount_type: str | None = None,
    notes: str | None = None,
    actor: str | None = None,
) -> CounterSale:
    def _op():
        sale = _new_sale(
            workshop_code=workshop_code,
            customer_name=customer_name,
            customer_phone=customer_phone,
            vehicle_reg_number=vehicle_reg_number,
            bill_discount_value=bill_discount_value,
            bill_discount_type=bill_discount_type,
            notes=notes,
            actor=actor,
        )
        db.session.add(sale)
        for payload in lines or []:
            _add_line(sale, payload)
        _recalculate(sale)
        db.session.flush()
        return sale

    return run_with_retry(_op)


def add_sale_items(sale_id: int, items: list[dict]) -> CounterSale:
    def _op():
        sale = get_counter_sale(sale_id, lock=True)
        workflow.check(sale, "edit")
        for payload in require_lines(items):
            _add_line(sale, payload)
        _recalculate(sale)
        db.session.flush()
        return sale

    return run_with_retry(_op)


def remove_sale_item(sale_id: int, line_id: int) -> CounterSale:
    def _op():
        sale = get_counter_sale(sale_id, lock=True)
        workflow.check(sale, "edit")
        line = next((l for l in sale.lines if l.id == line_id), None)
        if line is None:
            raise NotFoundError(f"Line {line_id} is not on sale {sale.document_number}")
        sale.lines.remove(line)
        _recalculate(sale)
        db.session.flush()
        return sale

    return run_with_retry(_op)


def add_payment(
    sale_id: int,
    *,
    amount_cents: int,
    method: str,
    reference: str | None = None,
    actor: str | None = None,
) -> CounterSale:
    def _op():
        sale = get_counter_sale(sale_id, lock=True)
        workflow.check(sale, "add_payment")
        _add_payment(sale, {"amount_cents": amount_cents, "method": method, "reference": reference}, actor)
        _recalculate(sale)
        db.session.flush()
        return sale

    return run_with_retry(_op)


def complete_sale(sale_id: int, *, actor: str | None = None) -> CounterSale:
    """
    Complete a draft: resolve every line, check availability for all of
    them together, then deduct.
    """
    def _op():
        sale = get_counter_sale(sale_id, lock=True)
        workflow.check(sale, "complete")
        if not sale.lines:
            raise EmptyDocumentError("counter sale", "complete")

        _resolve_all(sale)
        _deduct(sale, actor)
        workflow.apply(sale, "complete")
        _recalculate(sale)
        db.session.flush()
        return sale

    return run_with_retry(_op)


def quick_sale(
    *,
    items: list[dict],
    payments: list[dict] | None = None,
    workshop_code: str | None = None,
    customer_name: str | None = None,
    customer_phone: str | None = None,
    vehicle_reg_number: str | None = None,
    bill_discount_value: int = 0,
    bill_discount_type: str | None = None,
    notes: str | None = None,
    actor: str | None = None,
) -> CounterSale:
    """
    Create and complete a sale in one step.

    Every item must resolve to stock and all of them are availability-checked
    before anything is deducted.
    """
    def _op():
        require_lines(items)
        sale = _new_sale(
            workshop_code=workshop_code,
            customer_name=customer_name,
            customer_phone=customer_phone,
            vehicle_reg_number=vehicle_reg_number,
            bill_discount_value=bill_discount_value,
            bill_discount_type=bill_discount_type,
            notes=notes,
            actor=actor,
        )
        for payload in items:
            _add_line(sale, payload, require_stock=True)
        for payload in payments or []:
            _add_payment(sale, payload, actor)

        db.session.add(sale)
        _deduct(sale, actor)
        workflow.apply(sale, "complete")
        _recalculate(sale)
        db.session.flush()
        return sale

    return run_with_retry(_op)


def cancel_sale(sale_id: int, reason: str | None = None, *, actor: str | None = None) -> CounterSale:
    def _op():
        sale = get_counter_sale(sale_id, lock=True)
        workflow.check(sale, "cancel")
        _restore(sale, "Counter sale cancelled", actor)
        workflow.apply(sale, "cancel")
        sale.cancellation_reason = optional_text(reason, "reason", 1000)
        db.session.flush()
        return sale

    return run_with_retry(_op)


def refund_sale(sale_id: int, reason: str | None = None, *, actor: str | None = None) -> CounterSale:
    def _op():
        sale = get_counter_sale(sale_id, lock=True)
        workflow.check(sale, "refund")
        _restore(sale, "Counter sale refunded", actor)
        workflow.apply(sale, "refund")
        sale.cancellation_reason = optional_text(reason, "reason", 1000)
        db.session.flush()
        return sale

    return run_with_retry(_op)


def delete_counter_sale(sale_id: int) -> None:
    def _op():
        workflow.delete(get_counter_sale(sale_id, lock=True))

    return run_with_retry(_op)


def list_counter_sales(*, status: str | None = None, limit: int = 100):
    query = db.session.query(CounterSale)
    if status:
        query = query.filter(CounterSale.status == status)
    return query.order_by(CounterSale.id.desc()).limit(max(1, min(limit, 500))).all()
