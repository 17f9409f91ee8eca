"""
Inventory API Component Tests

FastAPI routes over a ledger wired to the in-memory repository. The ledger
dependency is overridden; the application lifespan is not started.

Usage:
    pytest tests/component/inventory/test_inventory_api.py -v
"""
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from microservices.inventory_service.factory import build_stock_ledger
from microservices.inventory_service.main import API_PREFIX, app, get_ledger
from microservices.inventory_service.models import utc_now
from tests.component.mocks import MockStockRepository, unavailable
from tests.fixtures import make_register_request, make_reserve_request

pytestmark = [pytest.mark.component, pytest.mark.api]


@pytest.fixture
def api_repo():
    return MockStockRepository()


@pytest.fixture
def client(api_repo, mock_event_bus, test_settings):
    ledger = build_stock_ledger(api_repo, settings=test_settings, event_bus=mock_event_bus)
    app.dependency_overrides[get_ledger] = lambda: ledger
    yield TestClient(app)
    app.dependency_overrides.clear()


def _register(client, item_id="item_a", location_id="loc_a", quantity=10, **overrides):
    response = client.post(
        f"{API_PREFIX}/stock",
        json=make_register_request(item_id, location_id, quantity, **overrides),
    )
    assert response.status_code == 201, response.text
    return response.json()


def _reserve(client, quantity=1, holder_ref="cart_1", **overrides):
    response = client.post(
        f"{API_PREFIX}/reservations",
        json=make_reserve_request("item_a", "loc_a", quantity, holder_ref, **overrides),
    )
    assert response.status_code == 201, response.text
    return response.json()


# =============================================================================
# Health
# =============================================================================

class TestHealth:

    def test_health(self, client):
        for path in ("/health", f"{API_PREFIX}/health"):
            response = client.get(path)
            assert response.status_code == 200
            assert response.json()["service"] == "inventory_service"

    def test_ledger_unavailable_returns_503(self):
        app.dependency_overrides.clear()
        response = TestClient(app).get(f"{API_PREFIX}/stock/item_a/loc_a")
        assert response.status_code == 503


# =============================================================================
# Stock
# =============================================================================

class TestStockRoutes:

    def test_register_and_query(self, client):
        created = _register(client, quantity=12)
        assert created["on_hand"] == 12
        assert created["available"] == 12

        response = client.get(f"{API_PREFIX}/stock/item_a/loc_a")
        assert response.status_code == 200
        assert response.json()["version"] == 1

    def test_register_duplicate_conflicts(self, client):
        _register(client)
        response = client.post(f"{API_PREFIX}/stock", json=make_register_request("item_a", "loc_a"))
        assert response.status_code == 409
        assert response.json()["code"] == "duplicate_stock_level"

    def test_unknown_level_404(self, client):
        response = client.get(f"{API_PREFIX}/stock/ghost/loc_a")
        assert response.status_code == 404
        assert response.json()["code"] == "stock_level_not_found"

    def test_adjust(self, client):
        _register(client, quantity=5)
        response = client.post(
            f"{API_PREFIX}/stock/item_a/loc_a/adjust",
            json={"delta": 3, "reason": "delivery", "actor_ref": "usr_ops"},
        )
        assert response.status_code == 200
        assert response.json()["on_hand"] == 8

    def test_adjust_below_reserved_422(self, client):
        _register(client, quantity=5)
        _reserve(client, quantity=4)
        response = client.post(
            f"{API_PREFIX}/stock/item_a/loc_a/adjust",
            json={"delta": -2, "reason": "damage", "actor_ref": "usr_ops"},
        )
        assert response.status_code == 422
        assert response.json()["code"] == "invalid_adjustment"

    def test_adjust_zero_delta_400(self, client):
        _register(client)
        response = client.post(
            f"{API_PREFIX}/stock/item_a/loc_a/adjust",
            json={"delta": 0, "reason": "noop", "actor_ref": "usr_ops"},
        )
        assert response.status_code == 400

    def test_adjust_retried_with_same_key(self, client):
        _register(client, quantity=5)
        body = {"delta": 3, "reason": "delivery", "actor_ref": "usr_ops", "idempotency_key": "po_1"}

        first = client.post(f"{API_PREFIX}/stock/item_a/loc_a/adjust", json=body)
        again = client.post(f"{API_PREFIX}/stock/item_a/loc_a/adjust", json=body)

        assert first.json()["on_hand"] == 8
        assert again.status_code == 200
        assert again.json()["on_hand"] == 8
        report = client.get(f"{API_PREFIX}/stock/item_a/loc_a/reconcile").json()
        assert report["consistent"] is True

    def test_list_stock_with_summary(self, client):
        _register(client, "item_a", "loc_a", quantity=5, reorder_point=10)
        _register(client, "item_b", "loc_a", quantity=40, reorder_point=10)
        _register(client, "item_c", "loc_b", quantity=0, reorder_point=10)

        response = client.get(f"{API_PREFIX}/stock", params={"location_id": "loc_a", "low_stock_only": "true"})

        assert response.status_code == 200
        body = response.json()
        assert [level["item_id"] for level in body["levels"]] == ["item_a"]
        assert body["summary"]["item_count"] == 2
        assert body["summary"]["low_stock_count"] == 1
        assert body["summary"]["active_alert_count"] == 1
        assert body["summary"]["total_on_hand"] == 45

    def test_list_stock_pagination(self, client):
        for item_id in ("item_a", "item_b", "item_c"):
            _register(client, item_id, "loc_a", quantity=20)

        response = client.get(f"{API_PREFIX}/stock", params={"limit": 1, "offset": 2})

        assert [level["item_id"] for level in response.json()["levels"]] == ["item_c"]
        assert response.json()["summary"]["item_count"] == 3

    def test_batch_adjust(self, client):
        _register(client, quantity=5)
        response = client.post(
            f"{API_PREFIX}/stock/adjust/batch",
            json={
                "entries": [
                    {"item_id": "item_a", "location_id": "loc_a", "quantity": 9},
                    {"item_id": "ghost", "location_id": "loc_a", "delta": 1},
                ],
                "reason": "count",
                "actor_ref": "usr_ops",
            },
        )
        assert response.status_code == 200
        body = response.json()
        assert body[0]["stock_level"]["on_hand"] == 9
        assert body[1]["success"] is False

    def test_batch_entry_needs_delta_or_quantity(self, client):
        response = client.post(
            f"{API_PREFIX}/stock/adjust/batch",
            json={
                "entries": [{"item_id": "item_a", "location_id": "loc_a"}],
                "reason": "count",
                "actor_ref": "usr_ops",
            },
        )
        assert response.status_code == 422

    def test_thresholds_and_reconcile(self, client):
        _register(client, quantity=5)
        response = client.patch(
            f"{API_PREFIX}/stock/item_a/loc_a/thresholds",
            json={"reorder_point": 7, "maximum_stock": 40},
        )
        assert response.status_code == 200
        assert response.json()["reorder_point"] == 7

        report = client.get(f"{API_PREFIX}/stock/item_a/loc_a/reconcile").json()
        assert report["consistent"] is True
        assert report["replayed_on_hand"] == 5

    def test_storage_failure_503(self, client, api_repo):
        _register(client)
        api_repo.set_error("get_stock_level", unavailable("get_stock_level"))
        response = client.get(f"{API_PREFIX}/stock/item_a/loc_a")
        assert response.status_code == 503
        assert response.json()["code"] == "repository_unavailable"


# =============================================================================
# Reservations
# =============================================================================

class TestReservationRoutes:

    def test_reserve_commit_flow(self, client):
        _register(client, quantity=10)
        reservation = _reserve(client, quantity=7)
        assert reservation["status"] == "active"

        response = client.post(
            f"{API_PREFIX}/reservations/{reservation['reservation_id']}/commit",
            json={"reference_id": "ord_1"},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["applied"] is True
        assert body["stock_level"]["on_hand"] == 3

        again = client.post(f"{API_PREFIX}/reservations/{reservation['reservation_id']}/commit")
        assert again.status_code == 200
        assert again.json()["applied"] is False

    def test_release_without_body(self, client):
        _register(client, quantity=10)
        reservation = _reserve(client, quantity=2)

        response = client.post(f"{API_PREFIX}/reservations/{reservation['reservation_id']}/release")

        assert response.status_code == 200
        assert response.json()["reservation"]["release_reason"] == "released"

    def test_insufficient_stock_409(self, client):
        _register(client, quantity=1)
        response = client.post(
            f"{API_PREFIX}/reservations",
            json=make_reserve_request("item_a", "loc_a", 2, "cart_1"),
        )
        assert response.status_code == 409
        body = response.json()
        assert body["code"] == "insufficient_stock"
        assert body["context"]["available"] == 1

    def test_zero_quantity_400(self, client):
        _register(client)
        response = client.post(
            f"{API_PREFIX}/reservations",
            json=make_reserve_request("item_a", "loc_a", 0, "cart_1"),
        )
        assert response.status_code == 400
        assert response.json()["code"] == "invalid_quantity"

    def test_extend_and_validate(self, client):
        _register(client)
        reservation = _reserve(client, ttl_minutes=5)

        response = client.post(
            f"{API_PREFIX}/reservations/{reservation['reservation_id']}/extend",
            json={"additional_minutes": 10},
        )
        assert response.status_code == 200

        validation = client.get(f"{API_PREFIX}/reservations/{reservation['reservation_id']}/validate").json()
        assert validation["valid"] is True

    def test_extend_terminal_409(self, client):
        _register(client)
        reservation = _reserve(client)
        client.post(f"{API_PREFIX}/reservations/{reservation['reservation_id']}/release")

        response = client.post(
            f"{API_PREFIX}/reservations/{reservation['reservation_id']}/extend",
            json={"additional_minutes": 10},
        )
        assert response.status_code == 409
        assert response.json()["code"] == "reservation_terminal"

    def test_unknown_reservation_404(self, client):
        response = client.get(f"{API_PREFIX}/reservations/res_missing")
        assert response.status_code == 404

    def test_bulk_reserve(self, client):
        _register(client, "item_a", quantity=5)
        _register(client, "item_b", quantity=5)
        response = client.post(
            f"{API_PREFIX}/reservations/bulk",
            json={
                "holder_ref": "cart_1",
                "lines": [
                    {"item_id": "item_a", "location_id": "loc_a", "quantity": 2},
                    {"item_id": "item_b", "location_id": "loc_a", "quantity": 1},
                ],
            },
        )
        assert response.status_code == 200
        assert response.json()["success"] is True
        assert len(response.json()["reservations"]) == 2

    def test_list_by_status_and_sweep(self, client, api_repo):
        _register(client)
        reservation = _reserve(client)
        stored = api_repo._reservations[reservation["reservation_id"]]
        api_repo.set_reservation(stored.model_copy(update={"expires_at": utc_now() - timedelta(minutes=1)}))

        active = client.get(f"{API_PREFIX}/reservations", params={"status": "active"}).json()
        assert [r["reservation_id"] for r in active] == [reservation["reservation_id"]]

        swept = client.post(f"{API_PREFIX}/reservations/sweep").json()
        assert swept["expired"] == 1

        expired = client.get(f"{API_PREFIX}/reservations", params={"status": "expired"}).json()
        assert len(expired) == 1


# =============================================================================
# Movements / Alerts
# =============================================================================

class TestMovementAndAlertRoutes:

    def test_movements_filtered_by_type(self, client):
        _register(client, quantity=5)
        _reserve(client, quantity=1)

        response = client.get(f"{API_PREFIX}/movements", params={"item_id": "item_a", "movement_type": "reserve"})

        assert response.status_code == 200
        assert [m["movement_type"] for m in response.json()] == ["reserve"]

    def test_alert_lifecycle(self, client):
        _register(client, quantity=0)

        listing = client.get(f"{API_PREFIX}/alerts", params={"item_id": "item_a"}).json()
        assert listing["stats"]["total"] == 1
        alert = listing["alerts"][0]
        assert alert["alert_type"] == "out_of_stock"

        ack = client.post(f"{API_PREFIX}/alerts/{alert['alert_id']}/acknowledge", json={"actor_ref": "usr_ops"})
        assert ack.status_code == 200
        assert ack.json()["status"] == "acknowledged"

        snooze = client.post(
            f"{API_PREFIX}/alerts/{alert['alert_id']}/snooze",
            json={"until": (utc_now() + timedelta(hours=1)).isoformat(), "actor_ref": "usr_ops"},
        )
        assert snooze.status_code == 200
        assert snooze.json()["status"] == "snoozed"

        cancel = client.post(
            f"{API_PREFIX}/alerts/{alert['alert_id']}/cancel",
            json={"actor_ref": "usr_ops", "notes": "discontinued"},
        )
        assert cancel.json()["status"] == "cancelled"

        resolve = client.post(f"{API_PREFIX}/alerts/{alert['alert_id']}/resolve", json={"actor_ref": "usr_ops"})
        assert resolve.status_code == 409
        assert resolve.json()["code"] == "invalid_alert_transition"

    def test_unknown_alert_404(self, client):
        assert client.get(f"{API_PREFIX}/alerts/alert_missing").status_code == 404

    def test_snooze_until_without_timezone(self, client):
        _register(client, quantity=0)
        alert = client.get(f"{API_PREFIX}/alerts", params={"item_id": "item_a"}).json()["alerts"][0]

        response = client.post(
            f"{API_PREFIX}/alerts/{alert['alert_id']}/snooze",
            json={"until": "2099-01-01T00:00:00", "actor_ref": "usr_ops"},
        )

        assert response.status_code == 200
        assert response.json()["status"] == "snoozed"
        assert response.json()["snoozed_until"].startswith("2099-01-01T00:00:00")

    def test_time_filters_without_timezone(self, client):
        _register(client, quantity=0)

        alerts = client.get(
            f"{API_PREFIX}/alerts",
            params={"item_id": "item_a", "start_time": "2000-01-01T00:00:00", "end_time": "2099-01-01T00:00:00"},
        )
        movements = client.get(f"{API_PREFIX}/movements", params={"start_time": "2000-01-01T00:00:00"})
        reservations = client.get(f"{API_PREFIX}/reservations", params={"end_time": "2099-01-01T00:00:00"})

        assert alerts.status_code == 200
        assert alerts.json()["stats"]["total"] == 1
        assert movements.status_code == 200
        assert reservations.status_code == 200
