# Overview: Flask API routes for stock inwards (goods receipts).

from flask import Blueprint, jsonify, g, request

from ..decorators import json_body, with_actor
from ..services import inward_service
from ..services.concurrency import commit_with_retry
from ..validation import require_fields


stock_inwards_bp = Blueprint("stock_inwards", __name__, url_prefix="/api/stock-inwards")


@stock_inwards_bp.post("")
@with_actor
def create_stock_inward():
    """
    Create a DRAFT inward.

    Request body:
    {
        "vendor_name": str,
        "lines": [{"stock_item_id" | "part_number", "quantity", "unit_price_cents"?, "tax_rate_bps"?}],
        "purchase_order_id": int (optional),
        "invoice_number": str (optional)
    }
    """
    data = require_fields(json_body(), "vendor_name")
    inward = inward_service.create_stock_inward(
        vendor_name=data["vendor_name"],
        lines=data.get("lines") or [],
        workshop_code=data.get("workshop_code"),
        purchase_order_id=data.get("purchase_order_id"),
        invoice_number=data.get("invoice_number"),
        invoice_date=data.get("invoice_date"),
        bill_discount_value=data.get("bill_discount_value", 0),
        bill_discount_type=data.get("bill_discount_type"),
        notes=data.get("notes"),
        actor=g.actor,
    )
    commit_with_retry()
    return jsonify(inward.to_dict()), 201


@stock_inwards_bp.get("")
def list_stock_inwards():
    inwards = inward_service.list_stock_inwards(
        status=request.args.get("status"),
        purchase_order_id=request.args.get("purchase_order_id", type=int),
        limit=request.args.get("limit", 100, type=int),
    )
    return jsonify({"stock_inwards": [i.to_dict() for i in inwards]})


@stock_inwards_bp.get("/<int:inward_id>")
def get_stock_inward(inward_id: int):
    return jsonify(inward_service.get_stock_inward(inward_id).to_dict())


@stock_inwards_bp.post("/<int:inward_id>/lines")
def add_inward_line(inward_id: int):
    inward = inward_service.add_inward_line(inward_id, json_body())
    commit_with_retry()
    return jsonify(inward.to_dict()), 201


@stock_inwards_bp.post("/<int:inward_id>/submit")
def submit_for_verification(inward_id: int):
    inward = inward_service.submit_for_verification(inward_id)
    commit_with_retry()
    return jsonify(inward.to_dict())


@stock_inwards_bp.post("/<int:inward_id>/verify")
@with_actor
def verify_stock_inward(inward_id: int):
    """Verify and add every line to stock. Irreversible."""
    inward = inward_service.verify_and_update_stock(inward_id, actor=g.actor)
    commit_with_retry()
    return jsonify(inward.to_dict())


@stock_inwards_bp.post("/<int:inward_id>/cancel")
def cancel_stock_inward(inward_id: int):
    inward = inward_service.cancel_stock_inward(inward_id, json_body().get("reason"))
    commit_with_retry()
    return jsonify(inward.to_dict())


@stock_inwards_bp.delete("/<int:inward_id>")
def delete_stock_inward(inward_id: int):
    inward_service.delete_stock_inward(inward_id)
    commit_with_retry()
    return jsonify({"message": "Stock inward deleted", "id": inward_id}), 200
