"""
test_api.py — HTTP and WebSocket routes against an in-process platform.

Every test gets a fresh Platform built from simulation providers and
in-memory stores, injected through ``app.dependency_overrides``.

Run with:
    pytest tests/test_api.py -v
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from backend.app.core.config import Settings
from backend.app.dependencies import build_platform, get_platform
from backend.app.main import app
from backend.app.notifications.models import Channel

from conftest import DELHI, push_token


@pytest.fixture
def platform():
    cfg = Settings(
        PUSH_PROVIDER="simulation",
        EMAIL_PROVIDER="simulation",
        SMS_PROVIDER="simulation",
        HISTORY_BACKEND="memory",
        EMERGENCY_STORE="memory",
    )
    return build_platform(cfg)


@pytest.fixture
def client(platform):
    app.dependency_overrides[get_platform] = lambda: platform
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()


def _sos(client, tourist_id="t1", **extra):
    body = {"tourist_id": tourist_id, "latitude": DELHI.latitude, "longitude": DELHI.longitude}
    body.update(extra)
    return client.post("/api/v1/emergency/sos", json=body)


class TestRootAndHealth:

    def test_root(self, client):
        data = client.get("/").json()
        assert "notification-dispatch" in data["modules"]

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        names = {c["name"] for c in data["components"]}
        assert names == {"notification_history", "emergency_store", "delivery_channels", "realtime"}

    def test_ready(self, client):
        assert client.get("/health/ready").status_code == 200
        assert client.get("/health/live").json() == {"status": "alive"}


class TestNotificationRoutes:

    def test_send_to_registered_user(self, client, platform):
        client.post("/api/v1/notifications/register-token", json={
            "user_id": "u1", "push_token": push_token(1), "platform": "ios",
        })
        response = client.post("/api/v1/notifications/send", json={
            "type": "safetyUpdate",
            "recipients": ["u1"],
            "title": "Road closure",
            "body": "Rajpath closed until 18:00",
            "channels": ["push"],
        })
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["summary"]["successful"] == 1
        assert platform.dispatcher.providers[Channel.PUSH].sent[0]["to"] == push_token(1)

    def test_unknown_user_counts_as_failed(self, client):
        data = client.post("/api/v1/notifications/send", json={
            "type": "system", "recipients": ["ghost"], "title": "Hi", "body": "There",
        }).json()
        assert data["success"] is False
        assert data["summary"]["failed"] == 1

    def test_invalid_type_is_422(self, client):
        response = client.post("/api/v1/notifications/send", json={
            "type": "postcard", "recipients": ["u1"], "title": "Hi", "body": "There",
        })
        assert response.status_code == 422

    def test_invalid_channel_is_422(self, client):
        response = client.post("/api/v1/notifications/send", json={
            "type": "system", "recipients": ["u1"], "title": "Hi", "body": "There", "channels": ["fax"],
        })
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_invalid_token_rejected(self, client):
        response = client.post("/api/v1/notifications/register-token", json={
            "user_id": "u1", "push_token": "nope",
        })
        assert response.status_code == 422

    def test_deactivate_unknown_is_404(self, client):
        response = client.post("/api/v1/notifications/deactivate-token", json={"user_id": "ghost"})
        assert response.status_code == 404

    def test_preferences_and_history(self, client):
        client.post("/api/v1/notifications/register-token", json={"user_id": "u1", "push_token": push_token(1)})
        prefs = client.put("/api/v1/notifications/preferences/u1", json={"preferences": {"weatherAlert": False}})
        assert prefs.json()["preferences"] == {"weatherAlert": False}

        for kind in ("weatherAlert", "safetyUpdate"):
            client.post("/api/v1/notifications/send", json={
                "type": kind, "recipients": ["u1"], "title": "T", "body": "B", "channels": ["push"],
            })

        history = client.get("/api/v1/notifications/history/u1").json()
        assert history["pagination"]["total"] == 1
        assert history["notifications"][0]["notification"]["type"] == "safetyUpdate"
        assert history["statistics"]["success_rate"]["overall"] == 100.0

    def test_history_rejects_bad_channel(self, client):
        assert client.get("/api/v1/notifications/history/u1?channel=fax").status_code == 422

    def test_geofence_alert(self, client):
        client.post("/api/v1/notifications/register-token", json={"user_id": "u1", "push_token": push_token(1)})
        client.post("/api/v1/safety/geofences", json={
            "geofence_id": "old-town", "name": "Old Town", "safety_level": "unsafe",
            "latitude": DELHI.latitude, "longitude": DELHI.longitude, "radius_m": 300,
        })
        data = client.post("/api/v1/notifications/geofence-alert", json={
            "user_id": "u1", "geofence_id": "old-town", "event_type": "entry",
        }).json()
        assert data["summary"]["severity"] == "high"
        assert data["summary"]["successful"] == 1

    def test_geofence_alert_unknown_zone(self, client):
        response = client.post("/api/v1/notifications/geofence-alert", json={
            "user_id": "u1", "geofence_id": "nowhere", "event_type": "exit",
        })
        assert response.status_code == 404

    def test_channel_self_test(self, client, platform):
        data = client.post("/api/v1/notifications/test-channels", json={
            "email": "qa@example.com", "phone_number": "+1 555 010 0000",
        }).json()
        assert data["success"] is True
        assert platform.dispatcher.providers[Channel.EMAIL].outbox[0].to == "qa@example.com"
        assert platform.dispatcher.providers[Channel.SMS].outbox[0].to == "15550100000"

    def test_channel_self_test_needs_target(self, client):
        assert client.post("/api/v1/notifications/test-channels", json={}).status_code == 422


class TestEmergencyRoutes:

    def test_sos_lifecycle(self, client):
        response = _sos(client, message="Lost")
        assert response.status_code == 201
        emergency_id = response.json()["emergency"]["id"]

        active = client.get("/api/v1/emergency/active").json()
        assert active["count"] == 1

        tracking = client.get("/api/v1/emergency/tracking/t1").json()
        assert tracking["tracking"]["status"] == "emergency"

        responded = client.post(f"/api/v1/emergency/{emergency_id}/respond", json={"actor": "officer-1"})
        assert responded.json()["emergency"]["status"] == "responded"

        noted = client.post(f"/api/v1/emergency/{emergency_id}/notes", json={"note": "On scene"})
        assert noted.json()["emergency"]["timeline"][-1]["note"] == "On scene"

        resolved = client.post(f"/api/v1/emergency/{emergency_id}/resolve", json={"actor": "officer-1"})
        assert resolved.json()["emergency"]["status"] == "resolved"

        again = client.post(f"/api/v1/emergency/{emergency_id}/resolve", json={})
        assert again.status_code == 409
        assert again.json()["error"]["code"] == "INVALID_STATE_TRANSITION"

        assert client.get("/api/v1/emergency/active").json()["count"] == 0

    def test_duplicate_client_id_is_409(self, client):
        assert _sos(client, emergency_id="SOS-CLIENT-1").status_code == 201
        assert _sos(client, emergency_id="SOS-CLIENT-1").status_code == 409

    def test_unknown_emergency_is_404(self, client):
        assert client.get("/api/v1/emergency/SOS-NOPE").status_code == 404
        assert client.get("/api/v1/emergency/tracking/nobody").status_code == 404

    def test_out_of_range_coordinates(self, client):
        response = client.post("/api/v1/emergency/sos", json={"tourist_id": "t1", "latitude": 91, "longitude": 0})
        assert response.status_code == 422

    def test_emergency_alert_via_both_routes(self, client, platform):
        emergency_id = _sos(client).json()["emergency"]["id"]
        client.post("/api/v1/notifications/register-token", json={"user_id": "n1", "push_token": push_token(2)})
        client.post("/api/v1/safety/location", json={"tourist_id": "n1", "latitude": 28.64, "longitude": 77.2167})

        direct = client.post(f"/api/v1/emergency/{emergency_id}/alert", json={"radius_m": 3000}).json()
        assert direct["summary"]["successful"] == 1

        via_notifications = client.post("/api/v1/notifications/emergency-alert", json={
            "emergency_id": emergency_id, "message": "Avoid the area",
        }).json()
        assert via_notifications["summary"]["total_users"] == 1

        timeline = client.get(f"/api/v1/emergency/{emergency_id}").json()["emergency"]["timeline"]
        assert [t["action"] for t in timeline].count("alert_sent") == 2


class TestSafetyAndUsers:

    def test_score_with_coordinates(self, client):
        data = client.post("/api/v1/safety/score", json={
            "tourist_id": "t1", "latitude": DELHI.latitude, "longitude": DELHI.longitude,
        }).json()
        assert 0 <= data["safety_score"]["overall_score"] <= 100

    def test_score_without_location_is_422(self, client):
        assert client.post("/api/v1/safety/score", json={"tourist_id": "ghost"}).status_code == 422

    def test_geofences_at(self, client):
        client.post("/api/v1/safety/geofences", json={
            "geofence_id": "fort", "name": "Red Fort", "safety_level": "very_safe",
            "latitude": DELHI.latitude, "longitude": DELHI.longitude, "radius_m": 500,
        })
        data = client.get(
            "/api/v1/safety/geofences/at", params={"latitude": DELHI.latitude, "longitude": DELHI.longitude},
        ).json()
        assert data["count"] == 1

    def test_profile_round_trip(self, client):
        client.put("/api/v1/users/u1", json={
            "name": "Priya",
            "email": "priya@example.com",
            "emergency_contacts": [{"name": "Ravi", "phone": "+919810000002"}],
        })
        data = client.get("/api/v1/users/u1").json()
        assert data["profile"]["emergency_contacts"][0]["name"] == "Ravi"
        assert data["push"] is None
        assert client.get("/api/v1/users/ghost").status_code == 404


class TestWebSockets:

    def test_tourist_socket(self, client):
        with client.websocket_connect("/ws/tourist/t1") as ws:
            assert ws.receive_json()["type"] == "connected"

            ws.send_json({"type": "ping"})
            assert ws.receive_json()["type"] == "pong"

            ws.send_json({"type": "location_update", "latitude": DELHI.latitude, "longitude": DELHI.longitude})
            assert ws.receive_json()["type"] == "location_ack"

            ws.send_text("not json")
            assert ws.receive_json() == {"type": "error", "message": "Invalid JSON"}

            ws.send_json({"type": "location_update", "latitude": 200, "longitude": 0})
            assert ws.receive_json()["code"] == "VALIDATION_ERROR"

            ws.send_json({"type": "dance"})
            assert ws.receive_json()["type"] == "error"

    def test_sos_over_socket_reaches_dashboard(self, client):
        with client.websocket_connect("/ws/dashboard") as dashboard:
            assert dashboard.receive_json()["active_emergencies"] == []
            with client.websocket_connect("/ws/tourist/t1") as ws:
                ws.receive_json()
                ws.send_json({"type": "sos", "latitude": DELHI.latitude, "longitude": DELHI.longitude})
                ack = ws.receive_json()
                assert ack["type"] == "sos_ack"

                event = dashboard.receive_json()
                assert event["event"] == "emergency_alert"
                assert event["payload"]["id"] == ack["emergency_id"]
