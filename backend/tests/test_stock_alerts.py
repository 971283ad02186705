import pytest

from partsflow.errors import InvalidTransitionError, NotFoundError, ValidationError
from partsflow.extensions import db
from partsflow.models import StockAlert
from partsflow.services import ledger_service
from partsflow.services import stock_alert_service as alerts
from partsflow.services.stock_alert_service import (
    ALERT_STATUS_ACKNOWLEDGED,
    ALERT_STATUS_ACTIVE,
    ALERT_STATUS_IGNORED,
    ALERT_STATUS_RESOLVED,
)


ACTOR = {"X-User-Id": "store-01"}


@pytest.fixture
def low_items(make_item, brake_pad):
    return {
        "empty": make_item("EMPTY-1", 0, min_stock_level=4),
        "high": make_item("HIGH-1", 1, min_stock_level=4),
        "medium": make_item("MED-1", 2, min_stock_level=4),
        "low": make_item("LOW-1", 3, min_stock_level=4, max_stock_level=10),
        "ok": make_item("OK-1", 5, min_stock_level=4),
        "north": make_item("EMPTY-1", 0, min_stock_level=2, workshop_code="NORTH"),
    }


def _generate():
    result = alerts.generate_low_stock_alerts(actor="planner")
    db.session.commit()
    return result


class TestPriority:
    @pytest.mark.parametrize("qty, min_level, expected", [
        (0, 4, "CRITICAL"),
        (0, 0, "CRITICAL"),
        (1, 4, "HIGH"),
        (2, 8, "HIGH"),
        (2, 4, "MEDIUM"),
        (3, 4, "LOW"),
        (4, 4, "LOW"),
    ])
    def test_priority_bands(self, qty, min_level, expected):
        assert alerts.alert_priority(qty, min_level) == expected


class TestGenerate:
    def test_one_alert_per_low_item(self, low_items):
        result = _generate()

        assert [a.part_number for a in result.created] == ["EMPTY-1", "HIGH-1", "MED-1", "LOW-1"]
        assert [a.priority for a in result.created] == ["CRITICAL", "HIGH", "MEDIUM", "LOW"]
        assert [a.alert_type for a in result.created] == ["OUT_OF_STOCK", "LOW_STOCK", "LOW_STOCK", "LOW_STOCK"]
        assert all(a.status == ALERT_STATUS_ACTIVE for a in result.created)
        assert all(a.workshop_code == "MAIN" for a in result.created)
        assert result.created[0].alert_number.startswith("ALT")
        assert result.created[0].created_by == "planner"
        assert result.skipped == []

    def test_reorder_quantity_targets_max_then_min(self, low_items):
        by_part = {a.part_number: a for a in _generate().created}
        assert by_part["LOW-1"].reorder_qty == 7
        assert by_part["EMPTY-1"].reorder_qty == 4

    def test_open_alert_is_not_duplicated(self, low_items):
        first = _generate()
        alerts.acknowledge_alert(first.created[0].id, actor="manager")
        db.session.commit()

        second = _generate()
        assert second.created == []
        assert sorted(second.skipped) == ["EMPTY-1", "HIGH-1", "LOW-1", "MED-1"]
        assert db.session.query(StockAlert).count() == 4

    def test_closed_alert_allows_a_new_one(self, low_items):
        first = _generate()
        empty_alert = first.created[0]
        alerts.resolve_alert(empty_alert.id, "PO raised")
        db.session.commit()

        second = _generate()
        assert [a.part_number for a in second.created] == ["EMPTY-1"]
        assert second.created[0].id != empty_alert.id

    def test_other_workshop_scanned_on_request(self, low_items):
        result = alerts.generate_low_stock_alerts("NORTH")
        db.session.commit()
        assert [(a.part_number, a.workshop_code) for a in result.created] == [("EMPTY-1", "NORTH")]

    def test_inactive_items_are_ignored(self, make_item):
        item = make_item("OLD-1", 0, min_stock_level=3)
        ledger_service.deactivate_stock_item(item.id)
        db.session.commit()

        assert _generate().created == []


class TestLifecycle:
    @pytest.fixture
    def alert(self, low_items):
        return _generate().created[0]

    def test_acknowledge_then_resolve(self, alert):
        alert = alerts.acknowledge_alert(alert.id, actor="manager")
        assert alert.status == ALERT_STATUS_ACKNOWLEDGED
        assert alert.acknowledged_by == "manager"
        assert alert.acknowledged_at is not None

        alert = alerts.resolve_alert(alert.id, "Ordered 10 units", actor="manager")
        db.session.commit()
        assert alert.status == ALERT_STATUS_RESOLVED
        assert alert.resolution_note == "Ordered 10 units"
        assert alert.resolved_by == "manager"
        assert alert.resolved_at is not None

    def test_ignore_appends_reason_to_notes(self, alert):
        alert.notes = "Seasonal part"
        db.session.commit()

        alert = alerts.ignore_alert(alert.id, "Discontinued by vendor")
        db.session.commit()
        assert alert.status == ALERT_STATUS_IGNORED
        assert alert.notes == "Seasonal part\nIgnored: Discontinued by vendor"

    def test_closed_alert_cannot_be_reopened(self, alert):
        alerts.ignore_alert(alert.id)
        db.session.commit()

        with pytest.raises(InvalidTransitionError):
            alerts.acknowledge_alert(alert.id)
        db.session.rollback()

        with pytest.raises(InvalidTransitionError):
            alerts.resolve_alert(alert.id)
        db.session.rollback()
        assert db.session.get(StockAlert, alert.id).status == ALERT_STATUS_IGNORED

    def test_acknowledged_alert_cannot_be_acknowledged_again(self, alert):
        alerts.acknowledge_alert(alert.id)
        db.session.commit()
        with pytest.raises(InvalidTransitionError):
            alerts.acknowledge_alert(alert.id)
        db.session.rollback()

    def test_delete(self, alert):
        alert_id = alert.id
        alerts.delete_stock_alert(alert_id)
        db.session.commit()
        with pytest.raises(NotFoundError):
            alerts.get_stock_alert(alert_id)


class TestBulkResolve:
    def test_resolves_every_listed_alert(self, low_items):
        created = _generate().created
        resolved = alerts.bulk_resolve_alerts([created[0].id, created[1].id, created[0].id], "Weekly order")
        db.session.commit()

        assert sorted(a.id for a in resolved) == sorted([created[0].id, created[1].id])
        assert all(a.status == ALERT_STATUS_RESOLVED for a in resolved)
        assert all(a.resolution_note == "Weekly order" for a in resolved)
        assert db.session.get(StockAlert, created[2].id).status == ALERT_STATUS_ACTIVE

    def test_closed_alert_fails_whole_batch(self, low_items):
        created = _generate().created
        alerts.ignore_alert(created[1].id)
        db.session.commit()

        with pytest.raises(InvalidTransitionError):
            alerts.bulk_resolve_alerts([created[0].id, created[1].id])
        db.session.rollback()
        assert db.session.get(StockAlert, created[0].id).status == ALERT_STATUS_ACTIVE

    def test_unknown_id_fails_whole_batch(self, low_items):
        created = _generate().created
        with pytest.raises(NotFoundError):
            alerts.bulk_resolve_alerts([created[0].id, 9999])
        db.session.rollback()
        assert db.session.get(StockAlert, created[0].id).status == ALERT_STATUS_ACTIVE

    @pytest.mark.parametrize("alert_ids", [[], "1,2", None, [1.5]])
    def test_ids_must_be_integers(self, db_session, alert_ids):
        with pytest.raises(ValidationError):
            alerts.bulk_resolve_alerts(alert_ids)
        db_session.rollback()


class TestListingAndSummary:
    def test_summary_counts_active_by_priority(self, low_items):
        created = _generate().created
        alerts.acknowledge_alert(created[1].id)
        db.session.commit()

        assert alerts.active_alert_summary() == {
            "critical": 1, "high": 0, "medium": 1, "low": 1, "total": 3,
        }

    def test_filters(self, low_items):
        _generate()
        critical = alerts.list_stock_alerts(priority="critical")
        assert [a.part_number for a in critical] == ["EMPTY-1"]

        out_of_stock = alerts.list_stock_alerts(alert_type="OUT_OF_STOCK")
        assert len(out_of_stock) == 1

        with pytest.raises(ValidationError):
            alerts.list_stock_alerts(status="SNOOZED")


class TestAlertRoutes:
    def test_generate_acknowledge_and_bulk_resolve(self, client, low_items):
        response = client.post("/api/stock-alerts/generate", json={}, headers=ACTOR)
        assert response.status_code == 201
        body = response.get_json()
        assert body["created"] == 4
        assert body["alerts"][0]["created_by"] == "store-01"

        response = client.post("/api/stock-alerts/generate", json={})
        assert response.status_code == 200
        assert response.get_json()["skipped"] == 4

        ids = [a["id"] for a in body["alerts"]]
        response = client.post(f"/api/stock-alerts/{ids[0]}/acknowledge", headers=ACTOR)
        assert response.get_json()["acknowledged_by"] == "store-01"

        response = client.post("/api/stock-alerts/bulk-resolve", json={"alert_ids": ids[:2]})
        assert response.status_code == 200
        assert response.get_json()["resolved"] == 2

        response = client.post(f"/api/stock-alerts/{ids[0]}/resolve", json={})
        assert response.status_code == 409
        assert response.get_json()["code"] == "INVALID_TRANSITION"

        summary = client.get("/api/stock-alerts/summary").get_json()
        assert summary["total"] == 2

        listed = client.get("/api/stock-alerts?status=RESOLVED").get_json()["stock_alerts"]
        assert sorted(a["id"] for a in listed) == sorted(ids[:2])

    def test_bulk_resolve_requires_ids(self, client, db_session):
        response = client.post("/api/stock-alerts/bulk-resolve", json={})
        assert response.status_code == 400

    def test_unknown_alert(self, client, db_session):
        assert client.get("/api/stock-alerts/999").status_code == 404
        assert client.delete("/api/stock-alerts/999").status_code == 404


class TestAlertCommand:
    def test_generate_from_cli(self, app, low_items):
        runner = app.test_cli_runner()
        result = runner.invoke(args=["stock", "alerts"])
        assert result.exit_code == 0, result.output
        assert "PASS 4 created, 0 skipped" in result.output

        result = runner.invoke(args=["stock", "alerts"])
        assert "PASS 0 created, 4 skipped" in result.output
