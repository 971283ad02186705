# Overview: Atomic document number allocation for every document type.

from __future__ import annotations

from datetime import datetime

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence
from ..time_utils import utcnow
from .concurrency import run_with_retry
from ..errors import ValidationError


# document type -> (prefix, strftime date stamp)
DOCUMENT_PREFIXES = {
    "PURCHASE_ORDER": ("PO", "%y%m"),
    "STOCK_INWARD": ("INW", "%y%m"),
    "STOCK_ISSUE": ("ISS", "%y%m"),
    "COUNTER_SALE": ("CS", "%y%m%d"),
    "PURCHASE_RETURN": ("PR", "%y%m"),
    "STOCK_TRANSFER": ("TRF", "%y%m"),
    "STOCK_ALERT": ("ALT", "%y%m"),
}


def sequence_prefix(document_type: str, on: datetime | None = None) -> str:
    """Dated prefix the counter is keyed by, e.g. PO2610 or CS261019."""
    try:
        prefix, stamp = DOCUMENT_PREFIXES[document_type]
    except KeyError:
        raise ValidationError(f"Unknown document type: {document_type}")
    return f"{prefix}{(on or utcnow()).strftime(stamp)}"


def _current_counter(prefix: str) -> int:
    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(prefix=prefix)
        .scalar()
    )
    return current - 1


def next_document_number(document_type: str, *, on: datetime | None = None, pad: int = 4) -> str:
    """
    Atomically allocate the next document number for a document type.

    The counter row is bumped with a single UPDATE, so two writers can never
    read the same value. A new period starts its own row; a concurrent first
    insert for the same prefix loses on the unique constraint and falls back
    to the UPDATE path.
    """
    def _op() -> str:
        prefix = sequence_prefix(document_type, on)

        stmt = (
            update(DocumentSequence)
            .where(DocumentSequence.prefix == prefix)
            .values(next_number=DocumentSequence.next_number + 1)
        )

        result = db.session.execute(stmt)
        if result.rowcount:
            db.session.flush()
            next_num = _current_counter(prefix)
        else:
            seq = DocumentSequence(prefix=prefix, next_number=2)
            try:
                with db.session.begin_nested():
                    db.session.add(seq)
                next_num = 1
            except IntegrityError:
                result = db.session.execute(stmt)
                if not result.rowcount:
                    raise
                db.session.flush()
                next_num = _current_counter(prefix)

        return f"{prefix}{next_num:0{pad}d}"

    return run_with_retry(_op)
