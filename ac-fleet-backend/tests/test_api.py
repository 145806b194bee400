"""HTTP surface tests using FastAPI's TestClient."""
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from acfleet.database import get_db
from acfleet.main import app
from acfleet.routers.devices import get_bridge
from acfleet.routers.events import get_event_service


@pytest.fixture
def client(session_factory, service, bridge, tenancy):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_event_service] = lambda: service
    app.dependency_overrides[get_bridge] = lambda: bridge
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def as_tenant(tenancy):
    return {"X-Actor-Role": "tenant", "X-Actor-Id": str(tenancy.tenant.id)}


def as_manager(tenancy):
    return {"X-Actor-Role": "sub-tenant", "X-Actor-Id": str(tenancy.manager.id)}


def event_body(tenancy, minutes=60, **overrides):
    now = datetime.now(timezone.utc)
    body = {
        "name": "Quarterly review",
        "device_id": tenancy.device.id,
        "start_time": (now + timedelta(seconds=2)).isoformat(),
        "end_time": (now + timedelta(minutes=minutes)).isoformat(),
        "temperature": 22,
    }
    body.update(overrides)
    return body


def test_health(client):
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"

    detail = client.get("/api/v1/health").json()
    assert detail["connected_devices"] == []


def test_create_and_stop_event(client, tenancy):
    response = client.post("/api/v1/events/", json=event_body(tenancy), headers=as_tenant(tenancy))
    assert response.status_code == 201
    payload = response.json()
    assert payload["success"] is True
    assert payload["event"]["status"] == "active"
    assert payload["warnings"]  # device is offline

    event_id = payload["event"]["id"]
    stopped = client.post(f"/api/v1/events/{event_id}/stop", headers=as_tenant(tenancy))
    assert stopped.status_code == 200
    assert stopped.json()["event"]["status"] == "stopped"

    again = client.post(f"/api/v1/events/{event_id}/stop", headers=as_tenant(tenancy))
    assert again.status_code == 409


def test_sub_tenant_conflict_is_409(client, tenancy):
    client.post("/api/v1/events/", json=event_body(tenancy), headers=as_tenant(tenancy))
    response = client.post("/api/v1/events/", json=event_body(tenancy, name="Standup"), headers=as_manager(tenancy))
    assert response.status_code == 409
    assert "precedence" in response.json()["detail"]


def test_validation_errors_are_422(client, tenancy):
    response = client.post("/api/v1/events/", json=event_body(tenancy, temperature=35), headers=as_tenant(tenancy))
    assert response.status_code == 422


def test_unknown_actor(client, tenancy):
    response = client.get("/api/v1/events/", headers={"X-Actor-Role": "tenant", "X-Actor-Id": "9999"})
    assert response.status_code == 401

    response = client.get("/api/v1/events/", headers={"X-Actor-Role": "janitor", "X-Actor-Id": "1"})
    assert response.status_code == 401


def test_list_is_scoped(client, tenancy):
    client.post("/api/v1/events/", json=event_body(tenancy), headers=as_tenant(tenancy))

    assert len(client.get("/api/v1/events/", headers=as_tenant(tenancy)).json()) == 1
    assert client.get("/api/v1/events/", headers=as_manager(tenancy)).json() == []
    assert len(client.get("/api/v1/events/?status=active", headers=as_tenant(tenancy)).json()) == 1
    assert client.get("/api/v1/events/?status=scheduled", headers=as_tenant(tenancy)).json() == []


def test_get_event_from_other_tenant_is_404(client, tenancy):
    created = client.post("/api/v1/events/", json=event_body(tenancy), headers=as_tenant(tenancy)).json()
    other = {"X-Actor-Role": "tenant", "X-Actor-Id": str(tenancy.other_tenant.id)}
    response = client.get(f"/api/v1/events/{created['event']['id']}", headers=other)
    assert response.status_code == 404


def test_disable_enable_and_delete(client, tenancy):
    created = client.post("/api/v1/events/", json=event_body(tenancy), headers=as_tenant(tenancy)).json()
    event_id = created["event"]["id"]

    disabled = client.post(f"/api/v1/events/{event_id}/disable", headers=as_tenant(tenancy)).json()
    assert disabled["event"]["is_disabled"] is True

    enabled = client.post(f"/api/v1/events/{event_id}/enable", headers=as_tenant(tenancy)).json()
    assert enabled["success"] is True
    assert enabled["event"]["status"] == "active"

    assert client.delete(f"/api/v1/events/{event_id}", headers=as_tenant(tenancy)).status_code == 409
    client.post(f"/api/v1/events/{event_id}/stop", headers=as_tenant(tenancy))
    assert client.delete(f"/api/v1/events/{event_id}", headers=as_tenant(tenancy)).status_code == 200


def test_devices_listing_and_manual_power(client, tenancy, session_factory):
    devices = client.get("/api/v1/devices/", headers=as_manager(tenancy)).json()
    assert [d["serial_number"] for d in devices] == ["AC-001"]
    assert devices[0]["connected"] is False

    response = client.post(f"/api/v1/devices/{tenancy.device.id}/power", json={"on": True},
                           headers=as_tenant(tenancy))
    assert response.status_code == 200
    assert response.json()["delivered"] is False

    device = client.get(f"/api/v1/devices/{tenancy.device.id}", headers=as_tenant(tenancy)).json()
    assert device["is_on"] is True


def test_foreign_device_is_404(client, tenancy):
    response = client.get(f"/api/v1/devices/{tenancy.foreign_device.id}", headers=as_tenant(tenancy))
    assert response.status_code == 404


def test_temperature_command_validates_range(client, tenancy):
    response = client.post(f"/api/v1/devices/{tenancy.device.id}/temperature", json={"temperature": 40},
                           headers=as_tenant(tenancy))
    assert response.status_code == 422

    response = client.post(f"/api/v1/devices/{tenancy.device.id}/temperature", json={"temperature": 20},
                           headers=as_tenant(tenancy))
    assert response.status_code == 200


def test_device_socket_restores_state_and_notifies_observers(client, tenancy, bridge):
    with client.websocket_connect("/ws/observer") as observer_ws:
        with client.websocket_connect("/ws/device") as device_ws:
            device_ws.send_json({"type": "DEVICE_CONNECTED", "serial": "AC-001"})
            assert device_ws.receive_json() == {"type": "POWER_OFF"}
            assert device_ws.receive_json() == {"type": "SET_TEMP", "temp": 24}

            announced = observer_ws.receive_json()
            assert announced["type"] == "CONNECTED"
            assert announced["serial_number"] == "AC-001"

            observer_ws.send_json({"type": "SET_TEMP", "serial": "AC-001", "temp": 19})
            assert device_ws.receive_json() == {"type": "SET_TEMP", "temp": 19}


def test_device_socket_survives_bad_frames(client, tenancy, bridge):
    with client.websocket_connect("/ws/observer") as observer_ws:
        with client.websocket_connect("/ws/device") as device_ws:
            device_ws.send_json({"type": "DEVICE_CONNECTED", "serial": "AC-001"})
            device_ws.receive_json()
            device_ws.receive_json()
            assert observer_ws.receive_json()["type"] == "CONNECTED"

            device_ws.send_text("{not json")
            device_ws.send_json({"type": "TEMP_UPDATE", "serial": "AC-001", "temp": "warm"})
            device_ws.send_json({"type": "TEMP_UPDATE", "serial": "AC-001", "temp": 21})

            update = observer_ws.receive_json()
            assert update["type"] == "TEMP_UPDATE"
            assert update["temp"] == 21
            assert bridge.is_connected("AC-001")
