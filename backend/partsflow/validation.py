from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable

from .errors import ValidationError
from .time_utils import parse_iso_datetime


# Maximum price: 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999

# 100% expressed in basis points
MAX_RATE_BPS = 10_000


def coerce_int(value: Any, field: str) -> int:
    """
    Strict integer coercion for JSON and CLI input.

    Rejects floats, booleans, decimal strings and scientific notation.
    """
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        if 'e' in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if '.' in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    raise ValidationError(f"{field} must be an integer")


def positive_quantity(value: Any, field: str = "quantity") -> int:
    qty = coerce_int(value, field)
    if qty < 1:
        raise ValidationError(f"{field} must be >= 1")
    return qty


def non_negative_quantity(value: Any, field: str) -> int:
    qty = coerce_int(value, field)
    if qty < 0:
        raise ValidationError(f"{field} must be >= 0")
    return qty


def cents(value: Any, field: str) -> int:
    amount = coerce_int(value, field)
    if amount < 0:
        raise ValidationError(f"{field} must be >= 0")
    if amount > MAX_PRICE_CENTS:
        raise ValidationError(f"{field} cannot exceed {MAX_PRICE_CENTS}")
    return amount


def positive_cents(value: Any, field: str) -> int:
    amount = cents(value, field)
    if amount == 0:
        raise ValidationError(f"{field} must be > 0")
    return amount


def rate_bps(value: Any, field: str) -> int:
    rate = coerce_int(value, field)
    if rate < 0 or rate > MAX_RATE_BPS:
        raise ValidationError(f"{field} must be between 0 and {MAX_RATE_BPS} basis points")
    return rate


def choice(value: Any, field: str, allowed: Iterable[str]) -> str:
    allowed = tuple(allowed)
    if value is None:
        raise ValidationError(f"{field} is required")
    normalized = str(value).strip().upper().replace(" ", "_")
    if normalized not in allowed:
        raise ValidationError(f"{field} must be one of: {', '.join(allowed)}")
    return normalized


def required_text(value: Any, field: str, max_length: int = 255) -> str:
    if value is None:
        raise ValidationError(f"{field} is required")
    text = str(value).strip()
    if not text:
        raise ValidationError(f"{field} cannot be blank")
    if len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return text


def optional_text(value: Any, field: str, max_length: int = 255) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return text


def require_fields(payload: dict | None, *fields: str) -> dict:
    """Ensure a JSON body is an object carrying every named key."""
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    missing = [f for f in fields if f not in payload]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")
    return payload


def normalize_part_number(value: Any) -> str:
    return required_text(value, "part_number", max_length=64).upper()


def optional_datetime(value: Any, field: str) -> datetime | None:
    """ISO-8601 string (or datetime) to a UTC-naive datetime; None/blank -> None."""
    if value is None or isinstance(value, datetime):
        return value
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be an ISO-8601 date string")
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 date, got {value!r}")
