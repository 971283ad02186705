# Overview: Low-stock alerts raised from the stock master and worked through to resolution.

"""
Stock alert service.

generate_low_stock_alerts scans a workshop for active items at or below
their minimum level and raises one alert per item. An item that already
has an open alert (ACTIVE or ACKNOWLEDGED) is skipped, so running the scan
repeatedly never stacks duplicates.

Priority follows how far the quantity has fallen against the minimum:

    qty == 0              CRITICAL  (OUT_OF_STOCK)
    qty <= 25% of min     HIGH
    qty <= 50% of min     MEDIUM
    otherwise             LOW
"""

from __future__ import annotations

from dataclasses import dataclass, field

from sqlalchemy import func

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import StockAlert, StockItem
from ..validation import choice, optional_text, positive_quantity
from . import ledger_service
from .concurrency import lock_for_update, run_with_retry
from .document_service import next_document_number
from .workflow import DocumentWorkflow, transitions


DOCUMENT_TYPE = "STOCK_ALERT"

ALERT_TYPE_LOW_STOCK = "LOW_STOCK"
ALERT_TYPE_OUT_OF_STOCK = "OUT_OF_STOCK"

PRIORITY_LOW = "LOW"
PRIORITY_MEDIUM = "MEDIUM"
PRIORITY_HIGH = "HIGH"
PRIORITY_CRITICAL = "CRITICAL"
PRIORITIES = (PRIORITY_CRITICAL, PRIORITY_HIGH, PRIORITY_MEDIUM, PRIORITY_LOW)

ALERT_STATUS_ACTIVE = "ACTIVE"
ALERT_STATUS_ACKNOWLEDGED = "ACKNOWLEDGED"
ALERT_STATUS_RESOLVED = "RESOLVED"
ALERT_STATUS_IGNORED = "IGNORED"
ALERT_STATUSES = (ALERT_STATUS_ACTIVE, ALERT_STATUS_ACKNOWLEDGED, ALERT_STATUS_RESOLVED, ALERT_STATUS_IGNORED)

OPEN_STATUSES = {ALERT_STATUS_ACTIVE, ALERT_STATUS_ACKNOWLEDGED}

workflow = DocumentWorkflow("stock alert", transitions(
    ("acknowledge", {ALERT_STATUS_ACTIVE}, ALERT_STATUS_ACKNOWLEDGED, "acknowledged_at"),
    ("resolve", OPEN_STATUSES, ALERT_STATUS_RESOLVED, "resolved_at"),
    ("ignore", OPEN_STATUSES, ALERT_STATUS_IGNORED, "ignored_at"),
    ("delete", ALERT_STATUSES),
))


@dataclass
class GenerateResult:
    created: list[StockAlert] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "created": len(self.created),
            "skipped": len(self.skipped),
            "skipped_parts": self.skipped,
            "alerts": [alert.to_dict() for alert in self.created],
        }


def alert_priority(quantity: int, min_stock_level: int) -> str:
    if quantity <= 0:
        return PRIORITY_CRITICAL
    if quantity * 4 <= min_stock_level:
        return PRIORITY_HIGH
    if quantity * 2 <= min_stock_level:
        return PRIORITY_MEDIUM
    return PRIORITY_LOW


def reorder_quantity(item: StockItem) -> int:
    """Units needed to bring the item back to its max level (or min when no max is set)."""
    target = item.max_stock_level if item.max_stock_level is not None else item.min_stock_level
    return max((target or 0) - (item.quantity_on_hand or 0), 0)


def get_stock_alert(alert_id: int, *, lock: bool = False) -> StockAlert:
    query = db.session.query(StockAlert).filter_by(id=alert_id)
    alert = (lock_for_update(query) if lock else query).first()
    if not alert:
        raise NotFoundError(f"Stock alert {alert_id} not found", stock_alert_id=alert_id)
    return alert


def _open_alert_item_ids(workshop_code: str) -> set[int]:
    rows = (
        db.session.query(StockAlert.stock_item_id)
        .filter(StockAlert.workshop_code == workshop_code, StockAlert.status.in_(OPEN_STATUSES))
        .all()
    )
    return {stock_item_id for (stock_item_id,) in rows}


def _raise_alert(item: StockItem, actor: str | None) -> StockAlert:
    qty = item.quantity_on_hand or 0
    alert = StockAlert(
        alert_number=next_document_number(DOCUMENT_TYPE),
        workshop_code=item.workshop_code,
        stock_item_id=item.id,
        part_number=item.part_number,
        part_name=item.part_name,
        current_qty=qty,
        min_stock_level=item.min_stock_level or 0,
        reorder_qty=reorder_quantity(item),
        alert_type=ALERT_TYPE_OUT_OF_STOCK if qty <= 0 else ALERT_TYPE_LOW_STOCK,
        priority=alert_priority(qty, item.min_stock_level or 0),
        status=ALERT_STATUS_ACTIVE,
        created_by=actor,
    )
    db.session.add(alert)
    return alert


def generate_low_stock_alerts(workshop_code: str | None = None, *, actor: str | None = None) -> GenerateResult:
    """Raise an alert for every low item in the workshop without an open one."""
    def _op():
        workshop = workshop_code or ledger_service.default_workshop()
        already_open = _open_alert_item_ids(workshop)
        low_items = (
            db.session.query(StockItem)
            .filter(
                StockItem.workshop_code == workshop,
                StockItem.is_active.is_(True),
                StockItem.quantity_on_hand <= StockItem.min_stock_level,
            )
            .order_by(StockItem.quantity_on_hand.asc(), StockItem.part_number.asc())
            .all()
        )

        result = GenerateResult()
        for item in low_items:
            if item.id in already_open:
                result.skipped.append(item.part_number)
                continue
            result.created.append(_raise_alert(item, actor))
        db.session.flush()
        return result

    return run_with_retry(_op)


def acknowledge_alert(alert_id: int, *, actor: str | None = None) -> StockAlert:
    def _op():
        alert = get_stock_alert(alert_id, lock=True)
        workflow.apply(alert, "acknowledge")
        alert.acknowledged_by = actor
        db.session.flush()
        return alert

    return run_with_retry(_op)


def resolve_alert(alert_id: int, resolution_note: str | None = None, *, actor: str | None = None) -> StockAlert:
    def _op():
        alert = get_stock_alert(alert_id, lock=True)
        workflow.apply(alert, "resolve")
        alert.resolved_by = actor
        alert.resolution_note = optional_text(resolution_note, "resolution_note", 1000)
        db.session.flush()
        return alert

    return run_with_retry(_op)


def ignore_alert(alert_id: int, reason: str | None = None) -> StockAlert:
    """Close the alert without acting on it; the reason is appended to notes."""
    def _op():
        alert = get_stock_alert(alert_id, lock=True)
        workflow.apply(alert, "ignore")
        reason_text = optional_text(reason, "reason", 1000)
        if reason_text:
            entry = f"Ignored: {reason_text}"
            alert.notes = f"{alert.notes}\n{entry}" if alert.notes else entry
        db.session.flush()
        return alert

    return run_with_retry(_op)


def bulk_resolve_alerts(
    alert_ids: list,
    resolution_note: str | None = None,
    *,
    actor: str | None = None,
) -> list[StockAlert]:
    """
    Resolve several alerts at once, all or nothing: an unknown id or an
    alert that is already closed fails the whole batch.
    """
    def _op():
        if not isinstance(alert_ids, list) or not alert_ids:
            raise ValidationError("alert_ids must be a non-empty list")
        ids = sorted({positive_quantity(alert_id, "alert_ids") for alert_id in alert_ids})
        note = optional_text(resolution_note, "resolution_note", 1000)

        alerts = []
        for alert_id in ids:
            alert = get_stock_alert(alert_id, lock=True)
            workflow.check(alert, "resolve")
            alerts.append(alert)

        for alert in alerts:
            workflow.apply(alert, "resolve")
            alert.resolved_by = actor
            alert.resolution_note = note
        db.session.flush()
        return alerts

    return run_with_retry(_op)


def delete_stock_alert(alert_id: int) -> None:
    def _op():
        workflow.delete(get_stock_alert(alert_id, lock=True))

    return run_with_retry(_op)


def list_stock_alerts(
    *,
    status: str | None = None,
    priority: str | None = None,
    alert_type: str | None = None,
    workshop_code: str | None = None,
    limit: int = 100,
) -> list[StockAlert]:
    query = db.session.query(StockAlert)
    if status:
        query = query.filter(StockAlert.status == choice(status, "status", ALERT_STATUSES))
    if priority:
        query = query.filter(StockAlert.priority == choice(priority, "priority", PRIORITIES))
    if alert_type:
        query = query.filter(
            StockAlert.alert_type == choice(alert_type, "alert_type", (ALERT_TYPE_LOW_STOCK, ALERT_TYPE_OUT_OF_STOCK))
        )
    if workshop_code:
        query = query.filter(StockAlert.workshop_code == workshop_code)
    return query.order_by(StockAlert.id.desc()).limit(max(1, min(limit, 500))).all()


def active_alert_summary(workshop_code: str | None = None) -> dict:
    """Count of ACTIVE alerts per priority, plus the total."""
    query = db.session.query(StockAlert.priority, func.count(StockAlert.id)).filter(
        StockAlert.status == ALERT_STATUS_ACTIVE
    )
    if workshop_code:
        query = query.filter(StockAlert.workshop_code == workshop_code)
    counts = dict(query.group_by(StockAlert.priority).all())

    summary = {priority.lower(): int(counts.get(priority, 0)) for priority in PRIORITIES}
    summary["total"] = sum(summary.values())
    return summary
