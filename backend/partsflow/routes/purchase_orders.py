# Overview: Flask API routes for purchase orders; parses input and returns JSON responses.

# backend/partsflow/routes/purchase_orders.py
"""
Purchase order API routes.

Workflow errors are turned into JSON responses by the handlers in
partsflow.errors, which also roll the session back.
"""

from flask import Blueprint, jsonify, g, request

from ..decorators import json_body, with_actor
from ..services import inward_service, purchase_order_service
from ..services.concurrency import commit_with_retry
from ..validation import require_fields


purchase_orders_bp = Blueprint("purchase_orders", __name__, url_prefix="/api/purchase-orders")


@purchase_orders_bp.post("")
@with_actor
def create_purchase_order():
    """
    Create a DRAFT purchase order.

    Request body:
    {
        "vendor_name": str,
        "lines": [{"stock_item_id" | "part_number", "quantity", "unit_price_cents"?,
                   "discount_type"?, "discount_value"?, "tax_rate_bps"?}],
        "workshop_code": str (optional),
        "expected_date": ISO-8601 (optional)
    }

    Returns:
        201: Purchase order created
    """
    data = require_fields(json_body(), "vendor_name")
    order = purchase_order_service.create_purchase_order(
        vendor_name=data["vendor_name"],
        lines=data.get("lines") or [],
        workshop_code=data.get("workshop_code"),
        vendor_reference=data.get("vendor_reference"),
        expected_date=data.get("expected_date"),
        bill_discount_value=data.get("bill_discount_value", 0),
        bill_discount_type=data.get("bill_discount_type"),
        notes=data.get("notes"),
        actor=g.actor,
    )
    commit_with_retry()
    return jsonify(order.to_dict()), 201


@purchase_orders_bp.get("")
def list_purchase_orders():
    orders = purchase_order_service.list_purchase_orders(
        status=request.args.get("status"),
        workshop_code=request.args.get("workshop_code"),
        limit=request.args.get("limit", 100, type=int),
    )
    return jsonify({"purchase_orders": [o.to_dict(include_lines=False) for o in orders]})


@purchase_orders_bp.get("/<int:order_id>")
def get_purchase_order(order_id: int):
    return jsonify(purchase_order_service.get_purchase_order(order_id).to_dict())


@purchase_orders_bp.post("/<int:order_id>/lines")
def add_ordered_part(order_id: int):
    order = purchase_order_service.add_ordered_part(order_id, json_body())
    commit_with_retry()
    return jsonify(order.to_dict()), 201


@purchase_orders_bp.post("/<int:order_id>/submit")
def submit_purchase_order(order_id: int):
    order = purchase_order_service.submit_purchase_order(order_id)
    commit_with_retry()
    return jsonify(order.to_dict())


@purchase_orders_bp.post("/<int:order_id>/inward")
@with_actor
def inward_parts(order_id: int):
    """
    Record received units directly against the order.

    Request body:
    {
        "parts": [{"part_number" | "purchase_order_line_id", "quantity"}],
        "update_stock": bool (default true)
    }

    Returns:
        200: Updated order
        400: Quantity exceeds what is still outstanding
    """
    data = require_fields(json_body(), "parts")
    order = purchase_order_service.inward_parts(
        order_id,
        data["parts"],
        update_stock=bool(data.get("update_stock", True)),
        actor=g.actor,
    )
    commit_with_retry()
    return jsonify(order.to_dict())


@purchase_orders_bp.post("/<int:order_id>/reject")
@with_actor
def reject_parts(order_id: int):
    data = require_fields(json_body(), "parts")
    order = purchase_order_service.reject_parts(
        order_id,
        data["parts"],
        reason=data.get("reason"),
        actor=g.actor,
    )
    commit_with_retry()
    return jsonify(order.to_dict())


@purchase_orders_bp.post("/<int:order_id>/stock-inward")
@with_actor
def create_inward_from_order(order_id: int):
    """Raise a DRAFT stock inward for the order's pending parts (or the given lines)."""
    data = json_body()
    inward = inward_service.create_inward_from_purchase_order(
        order_id,
        lines=data.get("lines"),
        invoice_number=data.get("invoice_number"),
        invoice_date=data.get("invoice_date"),
        actor=g.actor,
    )
    commit_with_retry()
    return jsonify(inward.to_dict()), 201


@purchase_orders_bp.post("/<int:order_id>/payments")
def record_payment(order_id: int):
    data = require_fields(json_body(), "amount_cents")
    order = purchase_order_service.record_order_payment(order_id, data["amount_cents"])
    commit_with_retry()
    return jsonify(order.to_dict())


@purchase_orders_bp.post("/<int:order_id>/close")
def close_purchase_order(order_id: int):
    order = purchase_order_service.close_purchase_order(order_id)
    commit_with_retry()
    return jsonify(order.to_dict())


@purchase_orders_bp.post("/<int:order_id>/cancel")
def cancel_purchase_order(order_id: int):
    order = purchase_order_service.cancel_purchase_order(order_id, json_body().get("reason"))
    commit_with_retry()
    return jsonify(order.to_dict())


@purchase_orders_bp.delete("/<int:order_id>")
def delete_purchase_order(order_id: int):
    """Delete a DRAFT order. Anything already submitted must be cancelled."""
    purchase_order_service.delete_purchase_order(order_id)
    commit_with_retry()
    return jsonify({"message": "Purchase order deleted", "id": order_id}), 200
