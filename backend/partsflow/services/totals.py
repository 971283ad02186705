# Overview: Pure money arithmetic for document lines and headers.

"""
Document totals.

All amounts are integer cents and all rates are integer basis points
(1800 = 18%). Percentages are applied with half-up rounding to the cent,
per line, before anything is summed, so recomputing a document from its
own stored inputs always yields the same figures.

Per line:
    gross          = unit_price * quantity
    discount       = gross * bps / 10000   (PERCENT)  or  discount_value (FLAT)
    item_subtotal  = gross - discount
    tax            = item_subtotal * tax_bps / 10000
    line_total     = item_subtotal + tax

Per document:
    subtotal       = sum(gross)
    bill_discount  = applied to (subtotal - item_discount + tax)
    total          = subtotal - item_discount + tax - bill_discount
    balance        = max(total - paid, 0)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from ..errors import ValidationError

DISCOUNT_FLAT = "FLAT"
DISCOUNT_PERCENT = "PERCENT"
DISCOUNT_TYPES = (DISCOUNT_FLAT, DISCOUNT_PERCENT)

PAYMENT_STATUS_UNPAID = "UNPAID"
PAYMENT_STATUS_PARTIAL = "PARTIAL"
PAYMENT_STATUS_PAID = "PAID"

BPS_SCALE = 10_000


def apply_bps(amount_cents: int, rate_bps: int) -> int:
    """amount * rate, half-up rounded to the cent (amounts are never negative)."""
    return (amount_cents * rate_bps + BPS_SCALE // 2) // BPS_SCALE


@dataclass(frozen=True)
class LineInput:
    quantity: int
    unit_price_cents: int
    discount_value: int = 0
    discount_type: str = DISCOUNT_FLAT
    tax_rate_bps: int = 0


@dataclass(frozen=True)
class LineAmounts:
    gross_cents: int
    discount_cents: int
    taxable_cents: int
    tax_cents: int
    line_total_cents: int


@dataclass(frozen=True)
class DocumentAmounts:
    lines: list[LineAmounts] = field(default_factory=list)
    subtotal_cents: int = 0
    item_discount_cents: int = 0
    bill_discount_cents: int = 0
    total_discount_cents: int = 0
    tax_cents: int = 0
    total_cents: int = 0
    paid_cents: int = 0
    balance_cents: int = 0
    payment_status: str = PAYMENT_STATUS_PAID


def _discount(base_cents: int, value: int, discount_type: str) -> int:
    if value < 0:
        raise ValidationError("Discount cannot be negative")
    if discount_type == DISCOUNT_PERCENT:
        if value > BPS_SCALE:
            raise ValidationError("Percent discount cannot exceed 100%")
        return apply_bps(base_cents, value)
    if discount_type == DISCOUNT_FLAT:
        if value > base_cents:
            raise ValidationError(f"Discount {value} exceeds amount {base_cents}")
        return value
    raise ValidationError(f"discount_type must be one of: {', '.join(DISCOUNT_TYPES)}")


def compute_line(line: LineInput) -> LineAmounts:
    gross = line.unit_price_cents * line.quantity
    discount = _discount(gross, line.discount_value or 0, line.discount_type or DISCOUNT_FLAT)
    taxable = gross - discount
    tax = apply_bps(taxable, line.tax_rate_bps or 0)
    return LineAmounts(
        gross_cents=gross,
        discount_cents=discount,
        taxable_cents=taxable,
        tax_cents=tax,
        line_total_cents=taxable + tax,
    )


def payment_status(total_cents: int, paid_cents: int) -> str:
    if paid_cents >= total_cents:
        return PAYMENT_STATUS_PAID
    if paid_cents > 0:
        return PAYMENT_STATUS_PARTIAL
    return PAYMENT_STATUS_UNPAID


def compute_document(
    lines: Iterable[LineInput],
    *,
    bill_discount_value: int = 0,
    bill_discount_type: str = DISCOUNT_FLAT,
    paid_cents: int = 0,
) -> DocumentAmounts:
    line_amounts = [compute_line(line) for line in lines]

    subtotal = sum(a.gross_cents for a in line_amounts)
    item_discount = sum(a.discount_cents for a in line_amounts)
    tax = sum(a.tax_cents for a in line_amounts)

    before_bill_discount = subtotal - item_discount + tax
    bill_discount = _discount(before_bill_discount, bill_discount_value or 0, bill_discount_type or DISCOUNT_FLAT)
    total = before_bill_discount - bill_discount

    return DocumentAmounts(
        lines=line_amounts,
        subtotal_cents=subtotal,
        item_discount_cents=item_discount,
        bill_discount_cents=bill_discount,
        total_discount_cents=item_discount + bill_discount,
        tax_cents=tax,
        total_cents=total,
        paid_cents=paid_cents,
        balance_cents=max(total - paid_cents, 0),
        payment_status=payment_status(total, paid_cents),
    )
