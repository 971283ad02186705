# Overview: Flask API routes for counter sales.

from flask import Blueprint, jsonify, g, request

from ..decorators import json_body, with_actor
from ..services import counter_sale_service
from ..services.concurrency import commit_with_retry
from ..validation import require_fields


counter_sales_bp = Blueprint("counter_sales", __name__, url_prefix="/api/counter-sales")


def _sale_fields(data: dict) -> dict:
    return {
        "workshop_code": data.get("workshop_code"),
        "customer_name": data.get("customer_name"),
        "customer_phone": data.get("customer_phone"),
        "vehicle_reg_number": data.get("vehicle_reg_number"),
        "bill_discount_value": data.get("bill_discount_value", 0),
        "bill_discount_type": data.get("bill_discount_type"),
        "notes": data.get("notes"),
    }


@counter_sales_bp.post("")
@with_actor
def create_counter_sale():
    """
    Create a DRAFT sale.

    Lines may name parts not in stock (part_number, part_name and
    unit_price_cents required); those must be resolved before completion.
    """
    data = json_body()
    sale = counter_sale_service.create_counter_sale(
        lines=data.get("lines") or [],
        actor=g.actor,
        **_sale_fields(data),
    )
    commit_with_retry()
    return jsonify(sale.to_dict()), 201


@counter_sales_bp.post("/quick")
@with_actor
def quick_sale():
    """
    Create and complete a sale in one call.

    Request body:
    {
        "items": [{"stock_item_id" | "part_number", "quantity", ...}],
        "payments": [{"method": "CASH", "amount_cents": int, "reference"?}]
    }

    Returns:
        201: Completed sale
        404: An item does not resolve to stock
        409: Insufficient stock for any item (nothing deducted)
    """
    data = require_fields(json_body(), "items")
    sale = counter_sale_service.quick_sale(
        items=data["items"],
        payments=data.get("payments") or [],
        actor=g.actor,
        **_sale_fields(data),
    )
    commit_with_retry()
    return jsonify(sale.to_dict()), 201


@counter_sales_bp.get("")
def list_counter_sales():
    sales = counter_sale_service.list_counter_sales(
        status=request.args.get("status"),
        limit=request.args.get("limit", 100, type=int),
    )
    return jsonify({"counter_sales": [s.to_dict() for s in sales]})


@counter_sales_bp.get("/<int:sale_id>")
def get_counter_sale(sale_id: int):
    return jsonify(counter_sale_service.get_counter_sale(sale_id).to_dict())


@counter_sales_bp.post("/<int:sale_id>/items")
def add_sale_items(sale_id: int):
    data = require_fields(json_body(), "items")
    sale = counter_sale_service.add_sale_items(sale_id, data["items"])
    commit_with_retry()
    return jsonify(sale.to_dict()), 201


@counter_sales_bp.delete("/<int:sale_id>/items/<int:line_id>")
def remove_sale_item(sale_id: int, line_id: int):
    sale = counter_sale_service.remove_sale_item(sale_id, line_id)
    commit_with_retry()
    return jsonify(sale.to_dict())


@counter_sales_bp.post("/<int:sale_id>/payments")
@with_actor
def add_payment(sale_id: int):
    data = require_fields(json_body(), "amount_cents", "method")
    sale = counter_sale_service.add_payment(
        sale_id,
        amount_cents=data["amount_cents"],
        method=data["method"],
        reference=data.get("reference"),
        actor=g.actor,
    )
    commit_with_retry()
    return jsonify(sale.to_dict()), 201


@counter_sales_bp.post("/<int:sale_id>/complete")
@with_actor
def complete_sale(sale_id: int):
    sale = counter_sale_service.complete_sale(sale_id, actor=g.actor)
    commit_with_retry()
    return jsonify(sale.to_dict())


@counter_sales_bp.post("/<int:sale_id>/cancel")
@with_actor
def cancel_sale(sale_id: int):
    sale = counter_sale_service.cancel_sale(sale_id, json_body().get("reason"), actor=g.actor)
    commit_with_retry()
    return jsonify(sale.to_dict())


@counter_sales_bp.post("/<int:sale_id>/refund")
@with_actor
def refund_sale(sale_id: int):
    sale = counter_sale_service.refund_sale(sale_id, json_body().get("reason"), actor=g.actor)
    commit_with_retry()
    return jsonify(sale.to_dict())


@counter_sales_bp.delete("/<int:sale_id>")
def delete_counter_sale(sale_id: int):
    counter_sale_service.delete_counter_sale(sale_id)
    commit_with_retry()
    return jsonify({"message": "Counter sale deleted", "id": sale_id}), 200
