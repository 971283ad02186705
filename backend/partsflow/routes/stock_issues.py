# Overview: Flask API routes for stock issues against job cards.

from flask import Blueprint, jsonify, g, request

from ..decorators import json_body, with_actor
from ..services import issue_service
from ..services.concurrency import commit_with_retry
from ..validation import require_fields


stock_issues_bp = Blueprint("stock_issues", __name__, url_prefix="/api/stock-issues")


@stock_issues_bp.post("")
@with_actor
def create_stock_issue():
    """
    Create a PENDING issue request.

    Request body:
    {
        "lines": [{"stock_item_id" | "part_number", "quantity"}],
        "job_card_number": str (optional),
        "vehicle_reg_number": str (optional),
        "issued_to": str (optional)
    }
    """
    data = require_fields(json_body(), "lines")
    issue = issue_service.create_stock_issue(
        lines=data["lines"],
        workshop_code=data.get("workshop_code"),
        job_card_number=data.get("job_card_number"),
        vehicle_reg_number=data.get("vehicle_reg_number"),
        issued_to=data.get("issued_to"),
        notes=data.get("notes"),
        actor=g.actor,
    )
    commit_with_retry()
    return jsonify(issue.to_dict()), 201


@stock_issues_bp.get("")
def list_stock_issues():
    issues = issue_service.list_stock_issues(
        status=request.args.get("status"),
        job_card_number=request.args.get("job_card_number"),
        limit=request.args.get("limit", 100, type=int),
    )
    return jsonify({"stock_issues": [i.to_dict() for i in issues]})


@stock_issues_bp.get("/<int:issue_id>")
def get_stock_issue(issue_id: int):
    return jsonify(issue_service.get_stock_issue(issue_id).to_dict())


@stock_issues_bp.post("/<int:issue_id>/issue")
@with_actor
def issue_parts(issue_id: int):
    """
    Issue quantities against request lines.

    Request body:
    {"items": [{"line_id" | "stock_item_id" | "part_number", "quantity"}]}

    Returns:
        200: Updated issue
        400: Quantity exceeds what was requested
        409: Insufficient stock for any item (nothing issued)
    """
    data = require_fields(json_body(), "items")
    issue = issue_service.issue_parts(issue_id, data["items"], actor=g.actor)
    commit_with_retry()
    return jsonify(issue.to_dict())


@stock_issues_bp.post("/<int:issue_id>/issue-all")
@with_actor
def issue_all_parts(issue_id: int):
    """Best-effort issue of all pending quantities; shortfalls are listed in errors."""
    result = issue_service.issue_all_parts(issue_id, actor=g.actor)
    commit_with_retry()
    return jsonify(result.to_dict())


@stock_issues_bp.post("/<int:issue_id>/return")
@with_actor
def return_parts(issue_id: int):
    data = require_fields(json_body(), "items")
    issue = issue_service.return_parts(issue_id, data["items"], actor=g.actor)
    commit_with_retry()
    return jsonify(issue.to_dict())


@stock_issues_bp.post("/<int:issue_id>/cancel")
@with_actor
def cancel_stock_issue(issue_id: int):
    issue = issue_service.cancel_stock_issue(issue_id, json_body().get("reason"), actor=g.actor)
    commit_with_retry()
    return jsonify(issue.to_dict())


@stock_issues_bp.delete("/<int:issue_id>")
def delete_stock_issue(issue_id: int):
    """Delete a PENDING issue; once parts have gone out it can only be cancelled."""
    issue_service.delete_stock_issue(issue_id)
    commit_with_retry()
    return jsonify({"message": "Stock issue deleted", "id": issue_id}), 200
