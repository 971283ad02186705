# Overview: Flask API routes for low-stock alerts.

from flask import Blueprint, jsonify, g, request

from ..decorators import json_body, with_actor
from ..services import stock_alert_service
from ..services.concurrency import commit_with_retry
from ..validation import require_fields


stock_alerts_bp = Blueprint("stock_alerts", __name__, url_prefix="/api/stock-alerts")


@stock_alerts_bp.post("/generate")
@with_actor
def generate_low_stock_alerts():
    """
    Scan a workshop and raise alerts for low items without an open alert.

    Request body (optional): {"workshop_code": str}
    """
    result = stock_alert_service.generate_low_stock_alerts(json_body().get("workshop_code"), actor=g.actor)
    commit_with_retry()
    return jsonify(result.to_dict()), 201 if result.created else 200


@stock_alerts_bp.get("")
def list_stock_alerts():
    alerts = stock_alert_service.list_stock_alerts(
        status=request.args.get("status"),
        priority=request.args.get("priority"),
        alert_type=request.args.get("alert_type"),
        workshop_code=request.args.get("workshop_code"),
        limit=request.args.get("limit", 100, type=int),
    )
    return jsonify({"stock_alerts": [alert.to_dict() for alert in alerts]})


@stock_alerts_bp.get("/summary")
def active_alert_summary():
    return jsonify(stock_alert_service.active_alert_summary(request.args.get("workshop_code")))


@stock_alerts_bp.get("/<int:alert_id>")
def get_stock_alert(alert_id: int):
    return jsonify(stock_alert_service.get_stock_alert(alert_id).to_dict())


@stock_alerts_bp.post("/<int:alert_id>/acknowledge")
@with_actor
def acknowledge_alert(alert_id: int):
    alert = stock_alert_service.acknowledge_alert(alert_id, actor=g.actor)
    commit_with_retry()
    return jsonify(alert.to_dict())


@stock_alerts_bp.post("/<int:alert_id>/resolve")
@with_actor
def resolve_alert(alert_id: int):
    alert = stock_alert_service.resolve_alert(alert_id, json_body().get("resolution_note"), actor=g.actor)
    commit_with_retry()
    return jsonify(alert.to_dict())


@stock_alerts_bp.post("/<int:alert_id>/ignore")
def ignore_alert(alert_id: int):
    alert = stock_alert_service.ignore_alert(alert_id, json_body().get("reason"))
    commit_with_retry()
    return jsonify(alert.to_dict())


@stock_alerts_bp.post("/bulk-resolve")
@with_actor
def bulk_resolve_alerts():
    """
    Resolve several open alerts in one go.

    Request body: {"alert_ids": [int], "resolution_note": str (optional)}
    """
    data = require_fields(json_body(), "alert_ids")
    alerts = stock_alert_service.bulk_resolve_alerts(
        data["alert_ids"],
        data.get("resolution_note"),
        actor=g.actor,
    )
    commit_with_retry()
    return jsonify({"resolved": len(alerts), "stock_alerts": [alert.to_dict() for alert in alerts]})


@stock_alerts_bp.delete("/<int:alert_id>")
def delete_stock_alert(alert_id: int):
    stock_alert_service.delete_stock_alert(alert_id)
    commit_with_retry()
    return jsonify({"message": "Stock alert deleted", "id": alert_id}), 200
