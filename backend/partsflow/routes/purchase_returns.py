# Overview: Flask API routes for purchase returns to vendors.

from flask import Blueprint, jsonify, g, request

from ..decorators import json_body, with_actor
from ..services import purchase_return_service
from ..services.concurrency import commit_with_retry
from ..validation import require_fields


purchase_returns_bp = Blueprint("purchase_returns", __name__, url_prefix="/api/purchase-returns")


@purchase_returns_bp.post("")
@with_actor
def create_purchase_return():
    """
    Create a DRAFT return.

    Request body:
    {
        "vendor_name": str,
        "lines": [{"stock_item_id" | "part_number", "quantity", "reason", "condition"?}],
        "stock_inward_id": int (optional),
        "purchase_order_id": int (optional)
    }

    When stock_inward_id is given the parts are validated against that
    verified inward and vendor_name is taken from it. purchase_order_id
    does the same against everything the order has received into stock.
    """
    data = json_body()
    if data.get("stock_inward_id") is not None:
        data = require_fields(data, "lines")
        purchase_return = purchase_return_service.create_return_from_stock_inward(
            data["stock_inward_id"],
            lines=data["lines"],
            notes=data.get("notes"),
            actor=g.actor,
        )
    elif data.get("purchase_order_id") is not None:
        data = require_fields(data, "lines")
        purchase_return = purchase_return_service.create_return_from_purchase_order(
            data["purchase_order_id"],
            lines=data["lines"],
            notes=data.get("notes"),
            actor=g.actor,
        )
    else:
        data = require_fields(data, "vendor_name")
        purchase_return = purchase_return_service.create_purchase_return(
            vendor_name=data["vendor_name"],
            lines=data.get("lines") or [],
            workshop_code=data.get("workshop_code"),
            notes=data.get("notes"),
            actor=g.actor,
        )
    commit_with_retry()
    return jsonify(purchase_return.to_dict()), 201


@purchase_returns_bp.get("")
def list_purchase_returns():
    returns = purchase_return_service.list_purchase_returns(
        status=request.args.get("status"),
        limit=request.args.get("limit", 100, type=int),
    )
    return jsonify({"purchase_returns": [r.to_dict() for r in returns]})


@purchase_returns_bp.get("/<int:return_id>")
def get_purchase_return(return_id: int):
    return jsonify(purchase_return_service.get_purchase_return(return_id).to_dict())


@purchase_returns_bp.post("/<int:return_id>/lines")
def add_return_line(return_id: int):
    purchase_return = purchase_return_service.add_return_line(return_id, json_body())
    commit_with_retry()
    return jsonify(purchase_return.to_dict()), 201


@purchase_returns_bp.post("/<int:return_id>/submit")
def submit_return(return_id: int):
    purchase_return = purchase_return_service.submit_return_for_approval(return_id)
    commit_with_retry()
    return jsonify(purchase_return.to_dict())


@purchase_returns_bp.post("/<int:return_id>/approve")
@with_actor
def approve_return(return_id: int):
    """Approve and deduct every returned unit from stock."""
    purchase_return = purchase_return_service.approve_return(return_id, actor=g.actor)
    commit_with_retry()
    return jsonify(purchase_return.to_dict())


@purchase_returns_bp.post("/<int:return_id>/ship")
def ship_return(return_id: int):
    data = require_fields(json_body(), "shipment_method")
    purchase_return = purchase_return_service.mark_return_shipped(
        return_id,
        shipment_method=data["shipment_method"],
        carrier=data.get("carrier"),
        tracking_number=data.get("tracking_number"),
    )
    commit_with_retry()
    return jsonify(purchase_return.to_dict())


@purchase_returns_bp.post("/<int:return_id>/deliver")
def deliver_return(return_id: int):
    purchase_return = purchase_return_service.mark_return_delivered(return_id)
    commit_with_retry()
    return jsonify(purchase_return.to_dict())


@purchase_returns_bp.post("/<int:return_id>/refunds")
def record_refund(return_id: int):
    data = require_fields(json_body(), "amount_cents", "method")
    purchase_return = purchase_return_service.record_refund(
        return_id,
        amount_cents=data["amount_cents"],
        method=data["method"],
        reference=data.get("reference"),
    )
    commit_with_retry()
    return jsonify(purchase_return.to_dict())


@purchase_returns_bp.post("/<int:return_id>/close")
def close_return(return_id: int):
    purchase_return = purchase_return_service.close_return(
        return_id,
        without_refund=bool(json_body().get("without_refund", False)),
    )
    commit_with_retry()
    return jsonify(purchase_return.to_dict())


@purchase_returns_bp.post("/<int:return_id>/cancel")
@with_actor
def cancel_return(return_id: int):
    purchase_return = purchase_return_service.cancel_return(return_id, json_body().get("reason"), actor=g.actor)
    commit_with_retry()
    return jsonify(purchase_return.to_dict())


@purchase_returns_bp.delete("/<int:return_id>")
def delete_purchase_return(return_id: int):
    purchase_return_service.delete_purchase_return(return_id)
    commit_with_retry()
    return jsonify({"message": "Purchase return deleted", "id": return_id}), 200
