"""Tests for the FastAPI endpoints."""

from __future__ import annotations

import json
import time
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from fastapi.testclient import TestClient
from langchain_core.messages import AIMessage

from frontapp_bridge.server import app
from frontapp_bridge.services.frontapp_client import set_frontapp_client
from frontapp_bridge.webhooks.verifier import SIGNATURE_HEADER, SignatureVerifier, compute_signature

SECRET = "test-webhook-secret"


# ── Fixtures ────────────────────────────────────────────────────────


@pytest.fixture
def frontapp_client(make_frontapp_client):
    """Process-wide FrontappClient backed by a mock transport."""

    def _handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/conversations/cnv_1":
            return httpx.Response(200, json={"id": "cnv_1", "subject": "Refund"})
        return httpx.Response(404, json={"_error": {"message": "Not found"}})

    client = make_frontapp_client(_handler)
    set_frontapp_client(client)
    yield client
    set_frontapp_client(None)


@pytest.fixture
def mock_agent():
    """Create a mock agent and attach it to app state (mirrors the lifespan)."""
    agent = MagicMock()
    agent.ainvoke = AsyncMock(
        return_value={"messages": [AIMessage(content="You have 3 open conversations.")]},
    )
    app.state.agent = agent
    yield agent
    app.state.agent = None


@pytest.fixture
def mock_dispatcher():
    dispatcher = MagicMock()
    dispatcher.handle = AsyncMock(return_value={"conversation_id": "cnv_1"})
    return dispatcher


@pytest.fixture
def webhooks(mock_dispatcher):
    """Wire a real verifier and a mock dispatcher into app state."""
    app.state.verifier = SignatureVerifier(SECRET)
    app.state.dispatcher = mock_dispatcher
    yield app.state.verifier
    app.state.verifier = None
    app.state.dispatcher = None


@pytest.fixture
def client(frontapp_client, mock_agent):
    return TestClient(app)


def _signed(data: dict) -> tuple[bytes, dict[str, str]]:
    body = json.dumps(data).encode()
    return body, {
        SIGNATURE_HEADER: compute_signature(body, SECRET),
        "Content-Type": "application/json",
    }


# ── Health / root ───────────────────────────────────────────────────


class TestHealthEndpoint:
    def test_health_returns_ok(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["service"] == "frontapp-bridge"
        assert data["agent_ready"] is True
        assert data["rate_limit"] == {"delay_seconds": 0.0, "reset_at": 0.0}

    def test_request_id_echoed(self, client):
        response = client.get("/api/health", headers={"X-Request-ID": "req-42"})
        assert response.headers["X-Request-ID"] == "req-42"

    def test_root(self, client):
        assert client.get("/").json()["webhooks"] == "/webhooks"


# ── Webhooks ────────────────────────────────────────────────────────


class TestWebhookEndpoint:
    def test_valid_delivery_accepted_and_dispatched(self, client, webhooks, mock_dispatcher):
        body, headers = _signed({
            "type": "conversation.created",
            "payload": {"id": "cnv_1", "created_at": time.time()},
        })

        response = client.post("/webhooks", content=body, headers=headers)

        assert response.status_code == 200
        assert response.json() == {"status": "accepted"}
        mock_dispatcher.handle.assert_awaited_once()
        envelope = mock_dispatcher.handle.await_args.args[0]
        assert envelope.dedup_key == ("conversation.created", "cnv_1")

    def test_replayed_delivery_rejected(self, client, webhooks, mock_dispatcher):
        body, headers = _signed({"type": "contact.created", "payload": {"id": "crd_1"}})

        first = client.post("/webhooks", content=body, headers=headers)
        second = client.post("/webhooks", content=body, headers=headers)

        assert first.status_code == 200
        assert second.status_code == 409
        assert second.json() == {"error": "Duplicate webhook"}
        assert mock_dispatcher.handle.await_count == 1

    def test_bad_signature_rejected(self, client, webhooks, mock_dispatcher):
        body, headers = _signed({"type": "contact.created", "payload": {"id": "crd_1"}})
        headers[SIGNATURE_HEADER] = "0" * 64

        response = client.post("/webhooks", content=body, headers=headers)

        assert response.status_code == 401
        assert response.json() == {"error": "Invalid signature"}
        mock_dispatcher.handle.assert_not_awaited()

    def test_tampered_body_with_original_signature_rejected(
        self, client, webhooks, mock_dispatcher,
    ):
        _, headers = _signed({"type": "contact.created", "payload": {"id": "crd_1"}})
        tampered = json.dumps({"type": "contact.created", "payload": {"id": "crd_2"}}).encode()

        response = client.post("/webhooks", content=tampered, headers=headers)

        assert response.status_code == 401
        assert response.json() == {"error": "Invalid signature"}
        mock_dispatcher.handle.assert_not_awaited()

    def test_non_ascii_signature_rejected(self, client, webhooks, mock_dispatcher):
        body, headers = _signed({"type": "contact.created", "payload": {"id": "crd_1"}})
        headers[SIGNATURE_HEADER] = "café".encode("latin-1")

        response = client.post("/webhooks", content=body, headers=headers)

        assert response.status_code == 401
        assert response.json() == {"error": "Invalid signature"}
        mock_dispatcher.handle.assert_not_awaited()

    def test_rejection_metric_carries_event_type(self, client, webhooks):
        body, headers = _signed({"type": "contact.created", "payload": {"id": "crd_7"}})

        with patch("frontapp_bridge.api.webhooks.metrics") as mock_metrics:
            client.post("/webhooks", content=body, headers=headers)
            client.post("/webhooks", content=body, headers=headers)

        mock_metrics.record_webhook.assert_any_call(
            "contact.created", "rejected", reason="DuplicateWebhookError",
        )

    def test_signature_rejection_metric_is_unknown_type(self, client, webhooks):
        body, headers = _signed({"type": "contact.created", "payload": {"id": "crd_1"}})
        headers[SIGNATURE_HEADER] = "0" * 64

        with patch("frontapp_bridge.api.webhooks.metrics") as mock_metrics:
            client.post("/webhooks", content=body, headers=headers)

        mock_metrics.record_webhook.assert_called_once_with(
            "unknown", "rejected", reason="InvalidSignatureError",
        )

    def test_missing_signature_rejected(self, client, webhooks):
        body, _ = _signed({"type": "contact.created", "payload": {"id": "crd_1"}})
        response = client.post("/webhooks", content=body)
        assert response.status_code == 401
        assert response.json() == {"error": "Missing signature header"}

    def test_stale_delivery_rejected(self, client, webhooks):
        body, headers = _signed({
            "type": "contact.created",
            "payload": {"id": "crd_1", "created_at": time.time() - 3600},
        })
        response = client.post("/webhooks", content=body, headers=headers)
        assert response.status_code == 400
        assert response.json() == {"error": "Webhook is too old"}

    def test_missing_payload_rejected(self, client, webhooks):
        body, headers = _signed({"type": "contact.created"})
        response = client.post("/webhooks", content=body, headers=headers)
        assert response.status_code == 400
        assert response.json() == {"error": "Missing payload"}

    def test_processing_failure_still_acknowledged(self, client, webhooks, mock_dispatcher):
        mock_dispatcher.handle.side_effect = RuntimeError("handler blew up")
        body, headers = _signed({"type": "contact.created", "payload": {"id": "crd_9"}})

        response = client.post("/webhooks", content=body, headers=headers)

        assert response.status_code == 200
        mock_dispatcher.handle.assert_awaited_once()

    def test_unconfigured_returns_503(self, client):
        app.state.verifier = None
        response = client.post("/webhooks", content=b"{}")
        assert response.status_code == 503


# ── Tools ───────────────────────────────────────────────────────────


class TestToolEndpoints:
    def test_list_tools(self, client):
        response = client.get("/api/tools")
        assert response.status_code == 200
        tools = response.json()
        assert len(tools) == 20
        by_name = {t["name"]: t for t in tools}
        assert "conversation_id" in by_name["get_conversation"]["args_schema"]["properties"]

    def test_call_tool_success(self, client):
        response = client.post("/api/tools/get_conversation", json={"conversation_id": "cnv_1"})
        assert response.status_code == 200
        data = response.json()
        assert data["is_error"] is False
        assert json.loads(data["content"][0]["text"])["subject"] == "Refund"

    def test_call_tool_api_error_is_200_with_is_error(self, client):
        response = client.post("/api/tools/get_contact", json={"contact_id": "crd_missing"})
        assert response.status_code == 200
        assert response.json()["is_error"] is True

    def test_unknown_tool_404(self, client):
        response = client.post("/api/tools/delete_everything", json={})
        assert response.status_code == 404

    def test_bad_arguments_422(self, client):
        response = client.post("/api/tools/get_conversation", json={})
        assert response.status_code == 422


# ── Chat ────────────────────────────────────────────────────────────


class TestChatEndpoint:
    def test_chat_returns_response(self, client, mock_agent):
        response = client.post(
            "/api/chat",
            json={"message": "How many open conversations?", "session_id": "test-session-1"},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["reply"] == "You have 3 open conversations."
        assert data["session_id"] == "test-session-1"

    def test_chat_passes_session_id(self, client, mock_agent):
        client.post("/api/chat", json={"message": "Hi!", "session_id": "my-unique-session"})
        call_args = mock_agent.ainvoke.await_args
        assert call_args.kwargs["config"]["configurable"]["thread_id"] == "my-unique-session"

    def test_chat_validates_empty_message(self, client):
        response = client.post("/api/chat", json={"message": "", "session_id": "s"})
        assert response.status_code == 422

    def test_chat_handles_agent_error(self, client, mock_agent):
        mock_agent.ainvoke.side_effect = RuntimeError("LLM exploded")
        response = client.post("/api/chat", json={"message": "Hello!", "session_id": "s"})
        assert response.status_code == 500
        # Internal details must not leak
        assert "exploded" not in response.json()["detail"]

    def test_chat_unavailable_without_agent(self, client):
        app.state.agent = None
        response = client.post("/api/chat", json={"message": "Hello!", "session_id": "s"})
        assert response.status_code == 503
