# backend/partsflow/services/issue_service.py
"""
Stock issue service: parts drawn from stock against a job card.

Each line tracks requested, issued and returned quantities. Statuses are
derived, never set directly:

    line:     PENDING -> PARTIALLY_ISSUED -> ISSUED, RETURNED once every
              issued unit is back
    document: PENDING / PARTIALLY_ISSUED / ISSUED / PARTIALLY_RETURNED /
              RETURNED from its lines; CANCELLED is sticky
"""
from __future__ import annotations

from dataclasses import dataclass, field

from ..errors import (
    ExceedsIssuedQuantityError,
    ExceedsRequestedQuantityError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from ..extensions import db
from ..models import StockIssue, StockIssueLine, StockItem
from ..time_utils import utcnow
from ..validation import optional_text, positive_quantity
from . import ledger_service
from .concurrency import lock_for_update, run_with_retry
from .document_service import next_document_number
from .workflow import DocumentWorkflow, post_stock, require_lines, transitions


DOCUMENT_TYPE = "STOCK_ISSUE"

ISSUE_STATUS_PENDING = "PENDING"
ISSUE_STATUS_PARTIALLY_ISSUED = "PARTIALLY_ISSUED"
ISSUE_STATUS_ISSUED = "ISSUED"
ISSUE_STATUS_PARTIALLY_RETURNED = "PARTIALLY_RETURNED"
ISSUE_STATUS_RETURNED = "RETURNED"
ISSUE_STATUS_CANCELLED = "CANCELLED"

LINE_STATUS_PENDING = "PENDING"
LINE_STATUS_PARTIALLY_ISSUED = "PARTIALLY_ISSUED"
LINE_STATUS_ISSUED = "ISSUED"
LINE_STATUS_RETURNED = "RETURNED"
LINE_STATUS_CANCELLED = "CANCELLED"

OPEN_STATUSES = {
    ISSUE_STATUS_PENDING,
    ISSUE_STATUS_PARTIALLY_ISSUED,
    ISSUE_STATUS_ISSUED,
    ISSUE_STATUS_PARTIALLY_RETURNED,
}

workflow = DocumentWorkflow("stock issue", transitions(
    ("issue", {ISSUE_STATUS_PENDING, ISSUE_STATUS_PARTIALLY_ISSUED, ISSUE_STATUS_PARTIALLY_RETURNED}),
    ("return", {
        ISSUE_STATUS_PARTIALLY_ISSUED,
        ISSUE_STATUS_ISSUED,
        ISSUE_STATUS_PARTIALLY_RETURNED,
    }),
    ("cancel", OPEN_STATUSES, ISSUE_STATUS_CANCELLED, "cancelled_at"),
    ("delete", {ISSUE_STATUS_PENDING}),
))


@dataclass
class IssueAllResult:
    issue: StockIssue
    errors: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"issue": self.issue.to_dict(), "errors": self.errors}


def line_status(line: StockIssueLine) -> str:
    if line.status == LINE_STATUS_CANCELLED:
        return LINE_STATUS_CANCELLED
    if line.issued_qty > 0 and line.returned_qty >= line.issued_qty:
        return LINE_STATUS_RETURNED
    if line.issued_qty >= line.requested_qty:
        return LINE_STATUS_ISSUED
    if line.issued_qty > 0:
        return LINE_STATUS_PARTIALLY_ISSUED
    return LINE_STATUS_PENDING


def derive_status(issue: StockIssue) -> str:
    if issue.status == ISSUE_STATUS_CANCELLED:
        return ISSUE_STATUS_CANCELLED
    statuses = [line.status for line in issue.lines]
    if not statuses:
        return ISSUE_STATUS_PENDING
    if all(s == LINE_STATUS_RETURNED for s in statuses):
        return ISSUE_STATUS_RETURNED
    if any(line.returned_qty > 0 for line in issue.lines):
        return ISSUE_STATUS_PARTIALLY_RETURNED
    if all(s == LINE_STATUS_ISSUED for s in statuses):
        return ISSUE_STATUS_ISSUED
    if any(line.issued_qty > 0 for line in issue.lines):
        return ISSUE_STATUS_PARTIALLY_ISSUED
    return ISSUE_STATUS_PENDING


def recalculate_issue(issue: StockIssue) -> None:
    """Refresh line statuses, document status and issued-quantity valuation."""
    purchase = selling = 0
    for line in issue.lines:
        line.status = line_status(line)
        purchase += line.issued_qty * line.purchase_price_cents
        selling += line.issued_qty * line.selling_price_cents

    issue.total_purchase_value_cents = purchase
    issue.total_selling_value_cents = selling
    issue.total_margin_cents = selling - purchase
    issue.status = derive_status(issue)


def get_stock_issue(issue_id: int, *, lock: bool = False) -> StockIssue:
    query = db.session.query(StockIssue).filter_by(id=issue_id)
    issue = (lock_for_update(query) if lock else query).first()
    if not issue:
        raise NotFoundError(f"Stock issue {issue_id} not found", stock_issue_id=issue_id)
    return issue


def create_stock_issue(
    *,
    lines: list[dict],
    workshop_code: str | None = None,
    job_card_number: str | None = None,
    vehicle_reg_number: str | None = None,
    issued_to: str | None = None,
    notes: str | None = None,
    actor: str | None = None,
) -> StockIssue:
    """
    Create a PENDING issue request. Nothing leaves stock until issue_parts.

    Every line must resolve to a stock item; the same part may be requested
    only once per issue.
    """
    def _op():
        code = workshop_code or ledger_service.default_workshop()
        require_lines(lines, "lines")

        issue = StockIssue(
            document_number=next_document_number(DOCUMENT_TYPE),
            workshop_code=code,
            job_card_number=optional_text(job_card_number, "job_card_number", 64),
            vehicle_reg_number=optional_text(vehicle_reg_number, "vehicle_reg_number", 32),
            issued_to=optional_text(issued_to, "issued_to", 128),
            notes=notes,
            status=ISSUE_STATUS_PENDING,
            stock_deducted=False,
            created_by=actor,
        )

        seen = set()
        for payload in lines:
            if not isinstance(payload, dict):
                raise ValidationError("Each line must be an object")
            item = ledger_service.require_resolved(ledger_service.resolve_part(
                stock_item_id=payload.get("stock_item_id"),
                part_number=payload.get("part_number"),
                workshop_code=code,
            ))
            if item.id in seen:
                raise ValidationError(f"Part {item.part_number} is requested more than once")
            seen.add(item.id)
            issue.lines.append(StockIssueLine(
                stock_item_id=item.id,
                part_number=item.part_number,
                part_name=item.part_name,
                requested_qty=positive_quantity(payload.get("quantity"), "quantity"),
                issued_qty=0,
                returned_qty=0,
                purchase_price_cents=item.purchase_price_cents,
                selling_price_cents=item.selling_price_cents,
                status=LINE_STATUS_PENDING,
            ))

        db.session.add(issue)
        recalculate_issue(issue)
        db.session.flush()
        return issue

    return run_with_retry(_op)


def _line_for(issue: StockIssue, item: dict) -> StockIssueLine:
    line_id = item.get("line_id")
    stock_item_id = item.get("stock_item_id")
    part_number = (item.get("part_number") or "").strip().upper() or None
    for line in issue.lines:
        if line_id is not None and line.id == line_id:
            return line
        if line_id is None and stock_item_id is not None and line.stock_item_id == stock_item_id:
            return line
        if line_id is None and stock_item_id is None and part_number and line.part_number == part_number:
            return line
    raise NotFoundError(
        f"Part {line_id or stock_item_id or part_number} is not on issue {issue.document_number}"
    )


def _snapshot_prices(line: StockIssueLine) -> None:
    stock = db.session.get(StockItem, line.stock_item_id)
    if stock is not None:
        line.purchase_price_cents = stock.purchase_price_cents
        line.selling_price_cents = stock.selling_price_cents


def _match(issue: StockIssue, items: list[dict], *, bound, error_cls) -> list[tuple[StockIssueLine, int]]:
    """Pair items with lines and enforce a per-line bound across the whole batch."""
    require_lines(items, "items")
    batch: dict[int, int] = {}
    matched = []
    for item in items:
        if not isinstance(item, dict):
            raise ValidationError("Each item must be an object")
        line = _line_for(issue, item)
        qty = positive_quantity(item.get("quantity"))
        allowed = bound(line) - batch.get(line.id, 0)
        if qty > allowed:
            raise error_cls(line.part_number, max(allowed, 0), qty)
        batch[line.id] = batch.get(line.id, 0) + qty
        matched.append((line, qty))
    return matched


def issue_parts(issue_id: int, items: list[dict], *, actor: str | None = None) -> StockIssue:
    """
    Issue quantities against request lines.

    Every item is bounded by requested - issued and checked for
    availability before any stock is deducted.
    """
    def _op():
        issue = get_stock_issue(issue_id, lock=True)
        workflow.check(issue, "issue")
        matched = _match(
            issue, items,
            bound=lambda line: line.requested_qty - line.issued_qty,
            error_cls=ExceedsRequestedQuantityError,
        )

        post_stock(
            [(line.stock_item_id, qty) for line, qty in matched],
            direction=-1,
            document_type=DOCUMENT_TYPE,
            document_number=issue.document_number,
            note=f"Issued to job card {issue.job_card_number or '-'}",
            actor=actor,
        )

        for line, qty in matched:
            _snapshot_prices(line)
            line.issued_qty += qty

        issue.stock_deducted = True
        issue.issued_at = issue.issued_at or utcnow()
        recalculate_issue(issue)
        db.session.flush()
        return issue

    return run_with_retry(_op)


def issue_all_parts(issue_id: int, *, actor: str | None = None) -> IssueAllResult:
    """
    Best-effort issue of everything still pending.

    Each line gets min(pending, available); lines that cannot be covered in
    full are reported in errors instead of failing the whole call.
    """
    def _op():
        issue = get_stock_issue(issue_id, lock=True)
        workflow.check(issue, "issue")
        errors = []
        issued_any = False

        for line in issue.lines:
            pending = line.pending_qty
            if pending <= 0:
                continue
            stock = lock_for_update(db.session.query(StockItem).filter_by(id=line.stock_item_id)).first()
            if stock is None:
                errors.append({"part_number": line.part_number, "error": "Stock item not found"})
                continue
            qty = min(pending, stock.quantity_on_hand)
            if qty < pending:
                errors.append({
                    "part_number": line.part_number,
                    "error": "Insufficient stock",
                    "available": stock.quantity_on_hand,
                    "requested": pending,
                })
            if qty <= 0:
                continue

            ledger_service.adjust_stock(
                line.stock_item_id,
                -qty,
                document_type=DOCUMENT_TYPE,
                document_number=issue.document_number,
                note=f"Issued to job card {issue.job_card_number or '-'}",
                actor=actor,
            )
            _snapshot_prices(line)
            line.issued_qty += qty
            issued_any = True

        if issued_any:
            issue.stock_deducted = True
            issue.issued_at = issue.issued_at or utcnow()
        recalculate_issue(issue)
        db.session.flush()
        return IssueAllResult(issue=issue, errors=errors)

    return run_with_retry(_op)


def return_parts(issue_id: int, items: list[dict], *, actor: str | None = None) -> StockIssue:
    """Return issued units to stock; bounded by issued - returned per line."""
    def _op():
        issue = get_stock_issue(issue_id, lock=True)
        workflow.check(issue, "return")
        matched = _match(
            issue, items,
            bound=lambda line: line.issued_qty - line.returned_qty,
            error_cls=ExceedsIssuedQuantityError,
        )

        post_stock(
            [(line.stock_item_id, qty) for line, qty in matched],
            direction=1,
            document_type=DOCUMENT_TYPE,
            document_number=issue.document_number,
            note="Returned from job card",
            actor=actor,
        )

        for line, qty in matched:
            line.returned_qty += qty

        recalculate_issue(issue)
        db.session.flush()
        return issue

    return run_with_retry(_op)


def cancel_stock_issue(issue_id: int, reason: str | None = None, *, actor: str | None = None) -> StockIssue:
    """
    Cancel the issue and put back whatever is still out (issued - returned).
    """
    def _op():
        issue = get_stock_issue(issue_id, lock=True)
        workflow.check(issue, "cancel")

        if issue.stock_deducted:
            post_stock(
                [(line.stock_item_id, line.outstanding_qty) for line in issue.lines],
                direction=1,
                document_type=DOCUMENT_TYPE,
                document_number=issue.document_number,
                note="Issue cancelled",
                actor=actor,
            )

        for line in issue.lines:
            line.status = LINE_STATUS_CANCELLED
        workflow.apply(issue, "cancel")
        issue.cancellation_reason = optional_text(reason, "reason", 1000)
        db.session.flush()
        return issue

    return run_with_retry(_op)


def delete_stock_issue(issue_id: int) -> None:
    """Delete an issue before any part has left the store."""
    def _op():
        issue = get_stock_issue(issue_id, lock=True)
        if issue.stock_deducted:
            raise InvalidTransitionError("stock issue", issue.status, "delete")
        workflow.delete(issue)

    return run_with_retry(_op)


def list_stock_issues(*, status: str | None = None, job_card_number: str | None = None, limit: int = 100):
    query = db.session.query(StockIssue)
    if status:
        query = query.filter(StockIssue.status == status)
    if job_card_number:
        query = query.filter(StockIssue.job_card_number == job_card_number)
    return query.order_by(StockIssue.id.desc()).limit(max(1, min(limit, 500))).all()
