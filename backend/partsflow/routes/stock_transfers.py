# backend/partsflow/routes/stock_transfers.py
"""
Inter-workshop transfer API routes.
"""
from flask import Blueprint, jsonify, g, request

from ..decorators import json_body, with_actor
from ..services import transfer_service
from ..services.concurrency import commit_with_retry
from ..validation import require_fields


stock_transfers_bp = Blueprint("stock_transfers", __name__, url_prefix="/api/stock-transfers")


@stock_transfers_bp.post("")
@with_actor
def create_transfer():
    """
    Create a DRAFT transfer.

    Request body:
    {
        "from_workshop_code": str,
        "to_workshop_code": str,
        "lines": [{"stock_item_id" | "part_number", "quantity"}],
        "reason": str (optional),
        "transfer_method": str (optional)
    }

    Returns:
        201: Transfer created
        400: Same source and destination, or invalid input
    """
    data = require_fields(json_body(), "from_workshop_code", "to_workshop_code")
    transfer = transfer_service.create_stock_transfer(
        from_workshop_code=data["from_workshop_code"],
        to_workshop_code=data["to_workshop_code"],
        lines=data.get("lines") or [],
        reason=data.get("reason"),
        transfer_method=data.get("transfer_method"),
        notes=data.get("notes"),
        actor=g.actor,
    )
    commit_with_retry()
    return jsonify(transfer.to_dict()), 201


@stock_transfers_bp.get("")
def list_transfers():
    transfers = transfer_service.list_stock_transfers(
        status=request.args.get("status"),
        workshop_code=request.args.get("workshop_code"),
        limit=request.args.get("limit", 100, type=int),
    )
    return jsonify({"stock_transfers": [t.to_dict() for t in transfers]})


@stock_transfers_bp.get("/<int:transfer_id>")
def get_transfer(transfer_id: int):
    return jsonify(transfer_service.get_stock_transfer(transfer_id).to_dict())


@stock_transfers_bp.post("/<int:transfer_id>/lines")
def add_transfer_line(transfer_id: int):
    transfer = transfer_service.add_transfer_line(transfer_id, json_body())
    commit_with_retry()
    return jsonify(transfer.to_dict()), 201


@stock_transfers_bp.post("/<int:transfer_id>/submit")
def submit_transfer(transfer_id: int):
    transfer = transfer_service.submit_transfer(transfer_id)
    commit_with_retry()
    return jsonify(transfer.to_dict())


@stock_transfers_bp.post("/<int:transfer_id>/approve")
@with_actor
def approve_transfer(transfer_id: int):
    transfer = transfer_service.approve_transfer(transfer_id, actor=g.actor)
    commit_with_retry()
    return jsonify(transfer.to_dict())


@stock_transfers_bp.post("/<int:transfer_id>/dispatch")
@with_actor
def dispatch_transfer(transfer_id: int):
    """Deduct source stock and mark the transfer IN_TRANSIT."""
    data = json_body()
    transfer = transfer_service.dispatch_transfer(
        transfer_id,
        transfer_method=data.get("transfer_method"),
        tracking_reference=data.get("tracking_reference"),
        actor=g.actor,
    )
    commit_with_retry()
    return jsonify(transfer.to_dict())


@stock_transfers_bp.post("/<int:transfer_id>/deliver")
def deliver_transfer(transfer_id: int):
    transfer = transfer_service.mark_transfer_delivered(transfer_id)
    commit_with_retry()
    return jsonify(transfer.to_dict())


@stock_transfers_bp.post("/<int:transfer_id>/receive")
@with_actor
def receive_transfer(transfer_id: int):
    """
    Receive at the destination.

    Request body (optional):
    {"items": [{"line_id" | "part_number", "received_qty", "damaged_qty"}]}
    """
    transfer = transfer_service.receive_transfer(transfer_id, json_body().get("items"), actor=g.actor)
    commit_with_retry()
    return jsonify(transfer.to_dict())


@stock_transfers_bp.post("/<int:transfer_id>/cancel")
@with_actor
def cancel_transfer(transfer_id: int):
    transfer = transfer_service.cancel_transfer(transfer_id, json_body().get("reason"), actor=g.actor)
    commit_with_retry()
    return jsonify(transfer.to_dict())


@stock_transfers_bp.delete("/<int:transfer_id>")
def delete_stock_transfer(transfer_id: int):
    transfer_service.delete_stock_transfer(transfer_id)
    commit_with_retry()
    return jsonify({"message": "Stock transfer deleted", "id": transfer_id}), 200
