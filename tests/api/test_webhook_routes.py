"""
Tests for the webhook HTTP endpoints.

Run against the full application built by the app factory, with the
provider replaced by the mock transport.
"""

import json

import pytest
from fastapi.testclient import TestClient

from leadrelay.core.app_factory import create_app
from tests.utils import VERIFY_TOKEN, WebhookPayloadBuilder, sign

WEBHOOK_URL = "/api/v1/webhook"


@pytest.fixture
def build_client(container_factory):
    """Return (client, container) for the given setting overrides."""
    clients = []

    def _build(**overrides):
        container = container_factory(**overrides)
        client = TestClient(create_app(container=container))
        client.__enter__()
        clients.append(client)
        return client, container

    yield _build
    for client in clients:
        client.__exit__(None, None, None)


@pytest.fixture
def client(build_client):
    return build_client()[0]


def post_signed(client: TestClient, body: bytes, signature: str | None = None):
    headers = {"Content-Type": "application/json"}
    headers["X-Hub-Signature-256"] = signature if signature is not None else sign(body)
    return client.post(WEBHOOK_URL, content=body, headers=headers)


class TestVerification:
    """Tests for GET /webhook."""

    def test_echoes_challenge(self, client):
        response = client.get(
            WEBHOOK_URL,
            params={"hub.mode": "subscribe", "hub.verify_token": VERIFY_TOKEN, "hub.challenge": "12345"},
        )

        assert response.status_code == 200
        assert response.text == "12345"

    def test_wrong_token(self, client):
        response = client.get(
            WEBHOOK_URL,
            params={"hub.mode": "subscribe", "hub.verify_token": "nope", "hub.challenge": "12345"},
        )

        assert response.status_code == 403

    def test_missing_parameters(self, client):
        assert client.get(WEBHOOK_URL, params={"hub.mode": "subscribe"}).status_code == 400

    def test_unconfigured_verify_token(self, build_client):
        client, _ = build_client(WHATSAPP_VERIFY_TOKEN="")

        response = client.get(
            WEBHOOK_URL,
            params={"hub.mode": "subscribe", "hub.verify_token": "anything", "hub.challenge": "1"},
        )

        assert response.status_code == 403


class TestReceive:
    """Tests for POST /webhook."""

    def test_processes_signed_delivery(self, build_client, provider):
        client, container = build_client()
        body = WebhookPayloadBuilder().with_text_message("15550001", "hello").build_body()

        response = post_signed(client, body)

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["success"] is True
        assert data["processed_messages"] == 1
        assert data["errors"] == []
        assert "X-Request-ID" in response.headers
        assert container.store.get("wamid.in1") is not None
        assert provider.payloads[-1]["status"] == "read"

    def test_correlation_id_propagates(self, client):
        body = WebhookPayloadBuilder().build_body()

        response = client.post(
            WEBHOOK_URL,
            content=body,
            headers={"X-Hub-Signature-256": sign(body), "X-Correlation-ID": "req_fixed"},
        )

        assert response.headers["X-Correlation-ID"] == "req_fixed"
        assert response.headers["X-Request-ID"] == "req_fixed"

    @pytest.mark.parametrize("signature", ["", "sha256=deadbeef", "md5=abc"])
    def test_rejects_bad_signature(self, build_client, signature):
        client, container = build_client()
        body = WebhookPayloadBuilder().with_text_message("15550001", "hello").build_body()

        response = post_signed(client, body, signature)

        assert response.status_code == 403
        assert len(container.store) == 0

    def test_rejects_when_secret_unconfigured(self, build_client):
        client, _ = build_client(META_APP_SECRET="")
        body = WebhookPayloadBuilder().build_body()

        assert post_signed(client, body).status_code == 403

    def test_invalid_json(self, client):
        response = post_signed(client, b"{not json")

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"
        assert response.json()["details"] == {"field": "body"}

    def test_invalid_structure(self, client):
        body = json.dumps({"object": "page", "entry": []}).encode()

        response = post_signed(client, body)

        assert response.status_code == 400
        data = response.json()
        assert data["error"] is True
        assert data["code"] == "VALIDATION_ERROR"
        assert data["kind"] == "validation"
        assert data["retryable"] is False
        assert data["details"] == {"field": "object"}

    def test_item_errors_still_acknowledged(self, client):
        body = WebhookPayloadBuilder().with_message({"id": "wamid.bad", "type": "text"}).build_body()

        response = post_signed(client, body)

        assert response.status_code == 200
        assert response.json()["success"] is False
        assert len(response.json()["errors"]) == 1

    def test_background_mode_acknowledges_immediately(self, build_client):
        client, container = build_client(WEBHOOK_BACKGROUND_PROCESSING=True)
        body = WebhookPayloadBuilder().with_text_message("15550001", "hello").build_body()

        response = post_signed(client, body)

        assert response.status_code == 200
        assert response.json() == {"status": "accepted"}
        # TestClient runs background tasks before returning
        assert container.store.get("wamid.in1") is not None


class TestHealth:
    """Tests for the health endpoints."""

    def test_liveness(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_healthy(self, client):
        response = client.get(f"{WEBHOOK_URL}/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["service"] == "whatsapp-message-service"
        assert data["config"]["has_access_token"] is True
        assert data["circuit_breaker"]["state"] == "closed"
        assert "inbound" in data["rate_limiters"]

    def test_unhealthy_returns_503(self, build_client):
        client, container = build_client()
        container.health_monitor.increment_messages_received()
        container.health_monitor.increment_errors()

        response = client.get(f"{WEBHOOK_URL}/health")

        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"
        assert response.json()["metrics"]["error_rate"] == 1.0
