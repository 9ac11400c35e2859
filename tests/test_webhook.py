"""Tests for BridgeRoutes."""

import pytest
from unittest.mock import AsyncMock
from fastapi import FastAPI
from fastapi.testclient import TestClient

from wa_call_bridge.exceptions import CallSessionBusyError
from wa_call_bridge.orchestrator import BridgeOrchestrator
from wa_call_bridge.signaling import SignalingChannel, SignalingHub
from wa_call_bridge.webhook import BridgeRoutes, verify_subscription

CONNECT_PAYLOAD = {
    "object": "whatsapp_business_account",
    "entry": [{"changes": [{"value": {
        "calls": [{"id": "wacid.1", "event": "connect", "session": {"sdp_type": "offer", "sdp": "v=0"}}],
        "contacts": [{"profile": {"name": "Ada"}, "wa_id": "15550001111"}],
    }}]}],
}


@pytest.fixture
def app_with_routes():
    app = FastAPI()
    orchestrator = AsyncMock(spec=BridgeOrchestrator)
    hub = SignalingHub()
    BridgeRoutes(orchestrator, hub, verify_token="verify-me").register(app)
    return app, orchestrator, hub


class TestVerifySubscription:
    def test_match_echoes_challenge(self):
        assert verify_subscription("subscribe", "verify-me", "1158201444", "verify-me") == (200, "1158201444")

    def test_wrong_token(self):
        assert verify_subscription("subscribe", "nope", "1", "verify-me") == (403, "")

    def test_wrong_mode(self):
        assert verify_subscription("unsubscribe", "verify-me", "1", "verify-me") == (403, "")

    def test_missing_params(self):
        assert verify_subscription(None, "verify-me", "1", "verify-me")[0] == 400
        assert verify_subscription("subscribe", None, "1", "verify-me")[0] == 400

    def test_unconfigured_token_never_matches(self):
        assert verify_subscription("subscribe", "", "1", "")[0] == 400
        assert verify_subscription("subscribe", "anything", "1", "")[0] == 403


class TestWebhookVerification:
    def test_verify_success(self, app_with_routes):
        app, _, _ = app_with_routes
        client = TestClient(app)

        response = client.get("/webhook", params={
            "hub.mode": "subscribe", "hub.verify_token": "verify-me", "hub.challenge": "12345",
        })
        assert response.status_code == 200
        assert response.text == "12345"

    def test_verify_wrong_token(self, app_with_routes):
        app, _, _ = app_with_routes
        client = TestClient(app)

        response = client.get("/webhook", params={
            "hub.mode": "subscribe", "hub.verify_token": "wrong", "hub.challenge": "12345",
        })
        assert response.status_code == 403

    def test_verify_missing_params(self, app_with_routes):
        app, _, _ = app_with_routes
        client = TestClient(app)

        response = client.get("/webhook")
        assert response.status_code == 400


class TestWebhookEvents:
    def test_connect_event_dispatched(self, app_with_routes):
        app, orchestrator, _ = app_with_routes
        client = TestClient(app)

        response = client.post("/webhook", json=CONNECT_PAYLOAD)
        assert response.status_code == 200

        event = orchestrator.handle_call_event.await_args.args[0]
        assert event.call_id == "wacid.1"
        assert event.event == "connect"
        assert event.sdp == "v=0"
        assert event.caller_name == "Ada"

    def test_status_update_acknowledged(self, app_with_routes):
        app, orchestrator, _ = app_with_routes
        client = TestClient(app)

        response = client.post("/webhook", json={"entry": [{"changes": [{"value": {"statuses": []}}]}]})
        assert response.status_code == 200
        orchestrator.handle_call_event.assert_not_awaited()

    def test_malformed_body_acknowledged(self, app_with_routes):
        app, orchestrator, _ = app_with_routes
        client = TestClient(app)

        response = client.post("/webhook", content=b"not json", headers={"Content-Type": "application/json"})
        assert response.status_code == 200
        orchestrator.handle_call_event.assert_not_awaited()

    def test_non_utf8_body_acknowledged(self, app_with_routes):
        app, orchestrator, _ = app_with_routes
        client = TestClient(app)

        response = client.post("/webhook", content=b"\x80\x81 not utf-8", headers={"Content-Type": "application/json"})
        assert response.status_code == 200
        orchestrator.handle_call_event.assert_not_awaited()

    def test_handler_failure_returns_500(self, app_with_routes):
        app, orchestrator, _ = app_with_routes
        orchestrator.handle_call_event.side_effect = RuntimeError("boom")
        client = TestClient(app)

        response = client.post("/webhook", json=CONNECT_PAYLOAD)
        assert response.status_code == 500


class TestInitiateCall:
    def test_missing_phone_number(self, app_with_routes):
        app, orchestrator, _ = app_with_routes
        client = TestClient(app)

        response = client.post("/initiate-call", json={"callerName": "Support"})
        assert response.status_code == 400
        assert response.json() == {"success": False, "error": "Phone number is required"}
        orchestrator.request_outbound_call.assert_not_awaited()

    def test_non_utf8_body(self, app_with_routes):
        app, orchestrator, _ = app_with_routes
        client = TestClient(app)

        response = client.post(
            "/initiate-call", content=b"\x80\x81 not utf-8", headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert response.json() == {"success": False, "error": "Phone number is required"}
        orchestrator.request_outbound_call.assert_not_awaited()

    def test_non_string_phone_number(self, app_with_routes):
        app, _, _ = app_with_routes
        client = TestClient(app)

        response = client.post("/initiate-call", json={"phoneNumber": 15551234567})
        assert response.status_code == 400

    def test_accepted(self, app_with_routes):
        app, orchestrator, _ = app_with_routes
        client = TestClient(app)

        response = client.post("/initiate-call", json={"phoneNumber": "15551234567", "callerName": "Support"})
        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "message": "Initiating call to 15551234567. Waiting for WebRTC setup...",
        }
        orchestrator.request_outbound_call.assert_awaited_once_with("15551234567", "Support")

    def test_busy(self, app_with_routes):
        app, orchestrator, _ = app_with_routes
        orchestrator.request_outbound_call.side_effect = CallSessionBusyError("wacid.1")
        client = TestClient(app)

        response = client.post("/initiate-call", json={"phoneNumber": "15551234567"})
        assert response.status_code == 409
        assert response.json()["success"] is False


class TestSignalingSocket:
    def test_events_dispatched_and_channel_released(self, app_with_routes):
        app, orchestrator, hub = app_with_routes
        client = TestClient(app)

        with client.websocket_connect("/signaling") as ws:
            ws.send_json(["not", "an", "event"])
            ws.send_json({"event": "browser-offer", "data": "v=0"})
            ws.send_json({"event": "reject-call", "data": "wacid.1"})

        calls = orchestrator.dispatch_browser_event.await_args_list
        assert [c.args[1:] for c in calls] == [("browser-offer", "v=0"), ("reject-call", "wacid.1")]
        channel = calls[0].args[0]
        assert isinstance(channel, SignalingChannel)
        assert channel.closed
        assert hub.channels == []
        orchestrator.unbind_signaling.assert_awaited_once_with(channel)
