# Overview: Shared state-machine and stock-posting machinery for document workflows.

"""
Every document type declares a DocumentWorkflow: a table of named
transitions, each listing the statuses it may start from and the status it
lands in. Services call workflow.apply(doc, "approve") instead of
hand-writing status checks, so an operation attempted from the wrong state
always surfaces as the same InvalidTransitionError.

Stock effects are posted with post_stock, which sums quantities per stock
item, checks availability for every outbound item first, and only then
adjusts. A multi-line transition therefore either moves all of its stock
or none of it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from flask import current_app

from ..errors import InvalidTransitionError, ValidationError
from ..extensions import db
from ..models import StockItem
from ..time_utils import utcnow
from ..validation import cents, choice, optional_text, positive_quantity, rate_bps, required_text
from . import ledger_service
from .totals import DISCOUNT_FLAT, DISCOUNT_TYPES, LineInput, compute_document


@dataclass(frozen=True)
class Transition:
    name: str
    sources: frozenset
    target: str | None = None
    stamp: str | None = None


class DocumentWorkflow:
    def __init__(self, document_type: str, transitions: Iterable[Transition]):
        self.document_type = document_type
        self.transitions = {t.name: t for t in transitions}

    def check(self, doc, name: str) -> Transition:
        transition = self.transitions[name]
        if doc.status not in transition.sources:
            raise InvalidTransitionError(self.document_type, doc.status, name)
        return transition

    def apply(self, doc, name: str) -> None:
        """Check the transition and move the document to its target status."""
        transition = self.check(doc, name)
        previous = doc.status
        if transition.target:
            doc.status = transition.target
        if transition.stamp:
            setattr(doc, transition.stamp, utcnow())
        current_app.logger.info(
            "%s %s: %s -> %s",
            self.document_type, getattr(doc, "document_number", doc.id), previous, doc.status,
        )

    def delete(self, doc) -> None:
        """Check the delete transition and remove the document with its lines."""
        self.check(doc, "delete")
        current_app.logger.info(
            "%s %s deleted in %s status",
            self.document_type, getattr(doc, "document_number", doc.id), doc.status,
        )
        db.session.delete(doc)
        db.session.flush()


def transitions(*rows) -> list[Transition]:
    """Build transitions from (name, sources, target[, stamp]) tuples."""
    return [Transition(row[0], frozenset(row[1]), *row[2:]) for row in rows]


# -----------------------------------------------------------------------------
# Stock posting
# -----------------------------------------------------------------------------

def post_stock(
    movements: Iterable[tuple[int, int]],
    *,
    direction: int,
    document_type: str,
    document_number: str,
    note: str | None = None,
    actor: str | None = None,
) -> None:
    """
    Apply (stock_item_id, qty) movements in one direction (+1 in, -1 out).

    Outbound movements are availability-checked as a whole before the first
    adjustment, so a shortfall on any item leaves every item untouched.
    """
    if direction not in (1, -1):
        raise ValueError("direction must be +1 or -1")

    requirements = ledger_service.sum_by_item(movements)
    if not requirements:
        return

    if direction < 0:
        ledger_service.check_availability(requirements)

    for stock_item_id, qty in requirements.items():
        ledger_service.adjust_stock(
            stock_item_id,
            direction * qty,
            document_type=document_type,
            document_number=document_number,
            note=note,
            actor=actor,
        )


# -----------------------------------------------------------------------------
# Priced lines and totals
# -----------------------------------------------------------------------------

def line_inputs(lines) -> list[LineInput]:
    return [
        LineInput(
            quantity=line.quantity,
            unit_price_cents=line.unit_price_cents,
            discount_value=line.discount_value or 0,
            discount_type=line.discount_type or DISCOUNT_FLAT,
            tax_rate_bps=line.tax_rate_bps or 0,
        )
        for line in lines
    ]


def recalculate_document(doc, *, paid_cents: int = 0) -> None:
    """Recompute derived line and header amounts from stored inputs."""
    amounts = compute_document(
        line_inputs(doc.lines),
        bill_discount_value=doc.bill_discount_value or 0,
        bill_discount_type=doc.bill_discount_type or DISCOUNT_FLAT,
        paid_cents=paid_cents,
    )
    for line, line_amounts in zip(doc.lines, amounts.lines):
        line.discount_cents = line_amounts.discount_cents
        line.tax_cents = line_amounts.tax_cents
        line.line_total_cents = line_amounts.line_total_cents

    doc.subtotal_cents = amounts.subtotal_cents
    doc.item_discount_cents = amounts.item_discount_cents
    doc.bill_discount_cents = amounts.bill_discount_cents
    doc.total_discount_cents = amounts.total_discount_cents
    doc.tax_cents = amounts.tax_cents
    doc.total_cents = amounts.total_cents
    doc.paid_cents = amounts.paid_cents
    doc.balance_cents = amounts.balance_cents
    doc.payment_status = amounts.payment_status


def set_bill_discount(doc, value, discount_type: str | None) -> None:
    doc.bill_discount_type = choice(discount_type or DISCOUNT_FLAT, "bill_discount_type", DISCOUNT_TYPES)
    doc.bill_discount_value = (
        rate_bps(value or 0, "bill_discount_value")
        if doc.bill_discount_type != DISCOUNT_FLAT
        else cents(value or 0, "bill_discount_value")
    )


@dataclass
class PricedLineSpec:
    """Validated input for one priced line, before it is attached to a document."""
    stock_item: StockItem | None
    part_number: str
    part_name: str
    quantity: int
    unit_price_cents: int
    discount_type: str
    discount_value: int
    tax_rate_bps: int

    def apply_to(self, line) -> None:
        line.stock_item_id = self.stock_item.id if self.stock_item else None
        line.part_number = self.part_number
        line.part_name = self.part_name
        line.quantity = self.quantity
        line.unit_price_cents = self.unit_price_cents
        line.discount_type = self.discount_type
        line.discount_value = self.discount_value
        line.tax_rate_bps = self.tax_rate_bps


def priced_line_spec(
    payload: dict,
    *,
    workshop_code: str,
    price_field: str,
    require_stock: bool,
    quantity_field: str = "quantity",
) -> PricedLineSpec:
    """
    Validate one line payload, filling blanks from the resolved stock item.

    price_field names the StockItem price used when unit_price_cents is
    omitted (purchase_price_cents for buying documents, selling_price_cents
    for sales). An unresolved part needs an explicit part_number, part_name
    and unit_price_cents; when require_stock is set it is rejected outright.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Each line must be an object")

    resolved = ledger_service.resolve_part(
        stock_item_id=payload.get("stock_item_id"),
        part_number=payload.get("part_number"),
        workshop_code=workshop_code,
    )
    item = ledger_service.require_resolved(resolved) if require_stock else getattr(resolved, "item", None)

    if item is None:
        part_number = required_text(payload.get("part_number"), "part_number", 64).upper()
        part_name = required_text(payload.get("part_name"), "part_name")
        if payload.get("unit_price_cents") is None:
            raise ValidationError(f"unit_price_cents is required for unknown part {part_number}")

    discount_type = choice(payload.get("discount_type") or DISCOUNT_FLAT, "discount_type", DISCOUNT_TYPES)
    raw_discount = payload.get("discount_value") or 0
    discount_value = (
        rate_bps(raw_discount, "discount_value")
        if discount_type != DISCOUNT_FLAT
        else cents(raw_discount, "discount_value")
    )

    unit_price = payload.get("unit_price_cents")
    tax_rate = payload.get("tax_rate_bps")

    return PricedLineSpec(
        stock_item=item,
        part_number=item.part_number if item else part_number,
        part_name=(optional_text(payload.get("part_name"), "part_name") or item.part_name) if item else part_name,
        quantity=positive_quantity(payload.get(quantity_field), quantity_field),
        unit_price_cents=cents(
            unit_price if unit_price is not None else getattr(item, price_field),
            "unit_price_cents",
        ),
        discount_type=discount_type,
        discount_value=discount_value,
        tax_rate_bps=rate_bps(
            tax_rate if tax_rate is not None else (item.tax_rate_bps if item else 0),
            "tax_rate_bps",
        ),
    )


def require_lines(items, field: str = "items") -> list:
    if not isinstance(items, list) or not items:
        raise ValidationError(f"{field} must be a non-empty list")
    return items
