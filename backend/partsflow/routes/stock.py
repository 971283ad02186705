# Overview: Flask API routes for stock master data and the ledger.

# backend/partsflow/routes/stock.py
"""
Stock API routes.

Quantities are never patched directly: they change through documents or
through POST /api/stock/<id>/adjust, which goes through the ledger and
leaves a movement row.
"""

from flask import Blueprint, jsonify, g, request

from ..decorators import json_body, with_actor
from ..services import ledger_service
from ..services.concurrency import commit_with_retry
from ..validation import coerce_int, require_fields


stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")


@stock_bp.post("")
@with_actor
def create_stock_item():
    """
    Register a part in a workshop.

    Request body:
    {
        "part_number": str,
        "part_name": str,
        "workshop_code": str (optional),
        "quantity_on_hand": int (optional opening stock),
        "purchase_price_cents": int, "selling_price_cents": int,
        "tax_rate_bps": int, "min_stock_level": int, ...
    }

    Returns:
        201: Stock item created
        409: Part already exists in the workshop
    """
    data = require_fields(json_body(), "part_number", "part_name")
    item = ledger_service.create_stock_item(
        part_number=data["part_number"],
        part_name=data["part_name"],
        workshop_code=data.get("workshop_code"),
        brand=data.get("brand"),
        category=data.get("category"),
        location=data.get("location"),
        quantity_on_hand=data.get("quantity_on_hand", 0),
        purchase_price_cents=data.get("purchase_price_cents", 0),
        selling_price_cents=data.get("selling_price_cents", 0),
        tax_rate_bps=data.get("tax_rate_bps", 0),
        min_stock_level=data.get("min_stock_level", 0),
        max_stock_level=data.get("max_stock_level"),
        actor=g.actor,
    )
    commit_with_retry()
    return jsonify(item.to_dict()), 201


@stock_bp.get("/<int:stock_item_id>")
def get_stock_item(stock_item_id: int):
    return jsonify(ledger_service.get_stock_item(stock_item_id).to_dict())


@stock_bp.get("/by-part/<part_number>")
def get_stock_item_by_part(part_number: str):
    item = ledger_service.get_stock_item_by_part_number(part_number, request.args.get("workshop_code"))
    return jsonify(item.to_dict())


@stock_bp.patch("/<int:stock_item_id>")
def update_stock_item(stock_item_id: int):
    """Patch master data (names, prices, levels). quantity_on_hand is rejected."""
    item = ledger_service.update_stock_item(stock_item_id, json_body())
    commit_with_retry()
    return jsonify(item.to_dict())


@stock_bp.post("/<int:stock_item_id>/deactivate")
def deactivate_stock_item(stock_item_id: int):
    item = ledger_service.deactivate_stock_item(stock_item_id)
    commit_with_retry()
    return jsonify(item.to_dict())


@stock_bp.post("/<int:stock_item_id>/adjust")
@with_actor
def adjust_stock(stock_item_id: int):
    """
    Manual stock correction.

    Request body:
    {
        "delta": int (non-zero, may be negative),
        "note": str (optional)
    }

    Returns:
        200: Adjusted item
        409: Adjustment would take stock below zero
    """
    data = require_fields(json_body(), "delta")
    delta = coerce_int(data["delta"], "delta")
    if delta == 0:
        return jsonify({"error": "delta must be non-zero"}), 400

    item = ledger_service.adjust_stock(
        stock_item_id,
        delta,
        note=data.get("note") or "Manual adjustment",
        actor=g.actor,
    )
    commit_with_retry()
    return jsonify(item.to_dict())


@stock_bp.get("/<int:stock_item_id>/movements")
def list_movements(stock_item_id: int):
    limit = request.args.get("limit", 100, type=int)
    movements = ledger_service.list_movements(stock_item_id, limit)
    return jsonify({"movements": [m.to_dict() for m in movements]})


@stock_bp.get("/low")
def list_low_stock():
    limit = request.args.get("limit", 100, type=int)
    items = ledger_service.list_low_stock(request.args.get("workshop_code"), limit)
    return jsonify({"items": [item.to_dict() for item in items]})
