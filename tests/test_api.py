"""
End-to-end tests through the FastAPI app.

Covers:
  - Trigger → 201 "sent" → background SMS / email fan-out, with and
    without a location
  - The response returns while delivery is still in flight
  - No-contacts guard, request validation, authentication failures
  - History, detail, status update, statistics, test alert, deliveries
  - Health probes and root metadata
  - WebSocket handshake rejection and event round trip

Run with: pytest tests/test_api.py -v
"""

import asyncio

import pytest
from starlette.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from backend.app.core.errors import AuthError
from backend.app.main import create_app
from backend.app.realtime.hub import BroadcastHub
from backend.app.users.models import UserIdentity
from tests.helpers import GatedSmsSender, auth_headers, make_contact, make_user


async def _seed_contacts(app, user, with_email_on_first=True):
    async with app.state.session_factory() as s:
        await make_contact(
            s, user, name="First", phone="+15550000001", priority=1,
            email="first@example.com" if with_email_on_first else None,
        )
        await make_contact(s, user, name="Second", phone="+15550000002", priority=2)
        await s.commit()


ALERT_BODY = {
    "alertType": "medical",
    "message": "I fell",
    "latitude": 40.7128,
    "longitude": -74.006,
}


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Triggering alerts
# ═══════════════════════════════════════════════════════════════════════════

class TestTrigger:
    async def test_end_to_end(self, app, client, api_user, sms_sender, email_sender, sleep):
        user, headers = api_user
        await _seed_contacts(app, user)

        resp = await client.post("/api/v1/alerts", json=ALERT_BODY, headers=headers)
        assert resp.status_code == 201
        body = resp.json()
        assert body["message"] == "Emergency alert sent successfully"
        assert body["alert"]["status"] == "sent"
        assert body["alert"]["contactsNotified"] == 2
        assert body["alert"]["alertType"] == "medical"

        await app.state.dispatcher.drain()
        assert [m["to"] for m in sms_sender.sent] == ["+15550000001", "+15550000002"]
        assert [m["to"] for m in email_sender.sent] == ["first@example.com"]
        assert sleep.calls == [1.0]
        assert "Maps: https://maps.google.com/?q=40.7128,-74.006" in sms_sender.sent[0]["body"]

    async def test_end_to_end_without_location(
        self, app, client, api_user, sms_sender, email_sender,
    ):
        user, headers = api_user
        await _seed_contacts(app, user)

        resp = await client.post(
            "/api/v1/alerts",
            json={"alertType": "medical", "message": "I fell"},
            headers=headers,
        )
        assert resp.status_code == 201
        assert resp.json()["alert"]["contactsNotified"] == 2

        await app.state.dispatcher.drain()
        assert len(sms_sender.sent) == 2
        assert len(email_sender.sent) == 1
        for sms in sms_sender.sent:
            assert "Location:" not in sms["body"]
            assert "Maps:" not in sms["body"]
            assert "Message: I fell" in sms["body"]

    async def test_response_does_not_wait_for_delivery(self, app, client, api_user, dispatcher):
        user, headers = api_user
        await _seed_contacts(app, user)
        gate = asyncio.Event()
        sms = GatedSmsSender(gate)
        dispatcher.sms_sender = sms

        try:
            resp = await client.post("/api/v1/alerts", json=ALERT_BODY, headers=headers)
            assert resp.status_code == 201
            assert resp.json()["alert"]["status"] == "sent"
            assert dispatcher.in_flight == 1

            # First contact's SMS hangs; nothing is attempted for the second
            await asyncio.wait_for(sms.first_started.wait(), timeout=1)
            alert_id = resp.json()["alert"]["id"]
            assert sms.started == ["+15550000001"]
            assert dispatcher.delivery_log.for_alert(alert_id) == []
        finally:
            gate.set()

        await dispatcher.drain()
        assert sms.started == ["+15550000001", "+15550000002"]
        attempts = dispatcher.delivery_log.for_alert(alert_id)
        assert [a.contact_name for a in attempts] == ["First", "First", "Second"]

    async def test_no_contacts(self, client, api_user):
        _, headers = api_user
        resp = await client.post("/api/v1/alerts", json=ALERT_BODY, headers=headers)
        assert resp.status_code == 400
        assert resp.json()["error"] == "NO_EMERGENCY_CONTACTS"

        history = (await client.get("/api/v1/alerts", headers=headers)).json()
        assert history["count"] == 0

    @pytest.mark.parametrize("body", [
        {"alertType": "alien-invasion"},
        {"alertType": "medical", "latitude": 95.0, "longitude": 0.0},
        {"alertType": "medical", "latitude": 10.0},
        {"alertType": "medical", "message": "x" * 501},
    ])
    async def test_validation(self, client, api_user, body):
        _, headers = api_user
        resp = await client.post("/api/v1/alerts", json=body, headers=headers)
        assert resp.status_code == 400
        assert resp.json()["error"] == "VALIDATION_ERROR"

    async def test_missing_token(self, client):
        resp = await client.post("/api/v1/alerts", json=ALERT_BODY)
        assert resp.status_code == 401

    async def test_token_for_unknown_user(self, client):
        ghost = UserIdentity(id="ghost", name="Ghost")
        resp = await client.post("/api/v1/alerts", json=ALERT_BODY, headers=auth_headers(ghost))
        assert resp.status_code == 401


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Reading and updating alerts
# ═══════════════════════════════════════════════════════════════════════════

class TestAlertResources:
    async def _trigger(self, app, client, headers):
        resp = await client.post("/api/v1/alerts", json=ALERT_BODY, headers=headers)
        await app.state.dispatcher.drain()
        return resp.json()["alert"]["id"]

    async def test_history_and_detail(self, app, client, api_user):
        user, headers = api_user
        await _seed_contacts(app, user)
        alert_id = await self._trigger(app, client, headers)

        history = (await client.get("/api/v1/alerts", headers=headers)).json()
        assert history["count"] == 1
        assert history["alerts"][0]["contactNames"] == ["First", "Second"]
        assert history["alerts"][0]["metadata"]["user_agent"]

        detail = (await client.get(f"/api/v1/alerts/{alert_id}", headers=headers)).json()
        assert detail["alert"]["id"] == alert_id
        assert len(detail["alert"]["contactDetails"]) == 2

    async def test_status_update(self, app, client, api_user):
        user, headers = api_user
        await _seed_contacts(app, user)
        alert_id = await self._trigger(app, client, headers)

        resp = await client.put(
            f"/api/v1/alerts/{alert_id}/status",
            json={"status": "resolved", "notes": "Safe now"}, headers=headers,
        )
        assert resp.status_code == 200
        assert resp.json()["alert"]["status"] == "resolved"
        assert resp.json()["alert"]["resolvedAt"] is not None

        stats = (await client.get("/api/v1/alerts/stats", headers=headers)).json()["stats"]
        assert stats["total"] == 1
        assert stats["resolved"] == 1
        assert stats["sent"] == 0

    async def test_invalid_status(self, app, client, api_user):
        user, headers = api_user
        await _seed_contacts(app, user)
        alert_id = await self._trigger(app, client, headers)
        resp = await client.put(
            f"/api/v1/alerts/{alert_id}/status", json={"status": "exploded"}, headers=headers,
        )
        assert resp.status_code == 400

    async def test_other_users_alert(self, app, client, api_user):
        user, headers = api_user
        await _seed_contacts(app, user)
        alert_id = await self._trigger(app, client, headers)

        async with app.state.session_factory() as s:
            intruder = await make_user(s, name="Intruder")
            await s.commit()
        resp = await client.get(f"/api/v1/alerts/{alert_id}", headers=auth_headers(intruder))
        assert resp.status_code == 403
        resp = await client.put(
            f"/api/v1/alerts/{alert_id}/status",
            json={"status": "resolved"}, headers=auth_headers(intruder),
        )
        assert resp.status_code == 403

    async def test_missing_alert(self, client, api_user):
        _, headers = api_user
        resp = await client.get("/api/v1/alerts/does-not-exist", headers=headers)
        assert resp.status_code == 404

    async def test_deliveries(self, app, client, api_user):
        user, headers = api_user
        await _seed_contacts(app, user)
        alert_id = await self._trigger(app, client, headers)

        trail = (await client.get(f"/api/v1/alerts/{alert_id}/deliveries", headers=headers)).json()
        assert trail["summary"]["attempts"] == 3
        assert trail["summary"]["byChannel"]["sms"]["success"] == 2
        assert {a["contactName"] for a in trail["attempts"]} == {"First", "Second"}

    async def test_test_alert(self, app, client, api_user, sms_sender):
        user, headers = api_user
        await _seed_contacts(app, user)

        resp = await client.post("/api/v1/alerts/test", headers=headers)
        assert resp.status_code == 200
        test_alert = resp.json()["testAlert"]
        assert test_alert["contactTested"] == "First"
        assert test_alert["deliveries"][0]["isTest"] is True
        assert len(sms_sender.sent) == 1

        history = (await client.get("/api/v1/alerts", headers=headers)).json()
        assert history["count"] == 0


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: Health & metadata
# ═══════════════════════════════════════════════════════════════════════════

class TestHealth:
    async def test_root(self, client):
        body = (await client.get("/")).json()
        assert "alerts" in body["modules"]

    async def test_health(self, client):
        resp = await client.get("/health")
        assert resp.status_code == 200
        report = resp.json()
        names = {c["name"] for c in report["components"]}
        assert names == {"database", "delivery_channels", "realtime"}
        assert report["status"] == "healthy"

    async def test_ready_and_live(self, client):
        assert (await client.get("/health/live")).json() == {"status": "alive"}
        assert (await client.get("/health/ready")).status_code == 200

    async def test_request_id_echoed(self, client):
        resp = await client.get("/health/live", headers={"X-Request-ID": "abc123"})
        assert resp.headers["X-Request-ID"] == "abc123"


# ═══════════════════════════════════════════════════════════════════════════
# Section 4: WebSocket
# ═══════════════════════════════════════════════════════════════════════════

class TestWebSocket:
    def test_handshake_without_token_rejected(self, tmp_path):
        app = create_app(database_url=f"sqlite+aiosqlite:///{tmp_path / 'ws.db'}")
        client = TestClient(app)
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect("/ws"):
                pass
        assert exc_info.value.code == 4401

    def test_event_round_trip(self, tmp_path):
        jane = UserIdentity(id="u-jane", name="Jane")

        async def authenticate(token):
            if token != "good":
                raise AuthError("Invalid token", status_code=403)
            return jane

        app = create_app(database_url=f"sqlite+aiosqlite:///{tmp_path / 'ws.db'}")
        app.state.hub = BroadcastHub(authenticate)
        client = TestClient(app)

        with pytest.raises(WebSocketDisconnect):
            with client.websocket_connect("/ws?token=bad"):
                pass

        with client.websocket_connect("/ws?token=good") as ws:
            welcome = ws.receive_json()
            assert welcome["event"] == "connected"
            assert welcome["data"]["userId"] == "u-jane"

            ws.send_json({"event": "teleport", "data": {}})
            assert ws.receive_json()["data"]["message"] == "Unknown event: teleport"

            ws.send_json(["not", "an", "object"])
            assert ws.receive_json()["event"] == "error"

        assert app.state.hub.connected_count() == 0
