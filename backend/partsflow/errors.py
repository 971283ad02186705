# Overview: Error kinds raised by the ledger and document workflows, and their HTTP mapping.

from __future__ import annotations

from flask import current_app, jsonify
from werkzeug.exceptions import HTTPException

from .extensions import db


class WorkflowError(Exception):
    """Base class for every business rule failure."""

    code = "WORKFLOW_ERROR"

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        payload = {"error": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(WorkflowError, ValueError):
    """400-level input problem."""

    code = "VALIDATION_ERROR"


class NotFoundError(WorkflowError):
    code = "NOT_FOUND"


class InvalidTransitionError(WorkflowError):
    """Operation not permitted from the document's current status."""

    code = "INVALID_TRANSITION"

    def __init__(self, document_type: str, status: str, operation: str):
        super().__init__(
            f"Cannot {operation} {document_type} in {status} status",
            document_type=document_type,
            status=status,
            operation=operation,
        )
        self.status = status
        self.operation = operation


class InsufficientStockError(WorkflowError):
    code = "INSUFFICIENT_STOCK"

    def __init__(self, part_number: str, available: int, requested: int):
        super().__init__(
            f"Insufficient stock for {part_number}. Available: {available}, requested: {requested}",
            part_number=part_number,
            available=available,
            requested=requested,
        )
        self.part_number = part_number
        self.available = available
        self.requested = requested


class QuantityBoundError(WorkflowError):
    """A quantity exceeds what the document still allows for a part."""

    code = "QUANTITY_BOUND"
    limit_name = "allowed"

    def __init__(self, part_number: str, max_allowed: int, requested: int):
        super().__init__(
            f"Quantity {requested} for {part_number} exceeds {self.limit_name} quantity. "
            f"Max allowed: {max_allowed}",
            part_number=part_number,
            max_allowed=max_allowed,
            requested=requested,
        )
        self.part_number = part_number
        self.max_allowed = max_allowed
        self.requested = requested


class ExceedsRequestedQuantityError(QuantityBoundError):
    code = "EXCEEDS_REQUESTED_QUANTITY"
    limit_name = "requested"


class ExceedsOrderedQuantityError(QuantityBoundError):
    code = "EXCEEDS_ORDERED_QUANTITY"
    limit_name = "ordered"


class ExceedsIssuedQuantityError(QuantityBoundError):
    code = "EXCEEDS_ISSUED_QUANTITY"
    limit_name = "issued"


class ExceedsReceivedQuantityError(QuantityBoundError):
    """Return quantity beyond what was received and not yet returned."""

    code = "EXCEEDS_RECEIVED_QUANTITY"
    limit_name = "returnable"


class DuplicateKeyError(WorkflowError):
    code = "DUPLICATE_KEY"


class EmptyDocumentError(WorkflowError):
    code = "EMPTY_DOCUMENT"

    def __init__(self, document_type: str, operation: str):
        super().__init__(
            f"Cannot {operation} {document_type} with no lines",
            document_type=document_type,
        )


STATUS_BY_ERROR = (
    (NotFoundError, 404),
    (InvalidTransitionError, 409),
    (InsufficientStockError, 409),
    (DuplicateKeyError, 409),
    (WorkflowError, 400),
)


def status_for(exc: WorkflowError) -> int:
    for kind, status in STATUS_BY_ERROR:
        if isinstance(exc, kind):
            return status
    return 400


def register_error_handlers(app) -> None:
    @app.errorhandler(WorkflowError)
    def handle_workflow_error(exc: WorkflowError):
        db.session.rollback()
        status = status_for(exc)
        current_app.logger.info("Rejected %s: %s", exc.code, exc.message)
        return jsonify(exc.to_dict()), status

    @app.errorhandler(Exception)
    def handle_unexpected_error(exc: Exception):
        if isinstance(exc, HTTPException):
            return exc
        db.session.rollback()
        current_app.logger.exception("Unhandled error")
        return jsonify({"error": "Internal server error", "code": "INTERNAL_ERROR"}), 500
