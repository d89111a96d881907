"""
Integration tests for the HTTP API.

Tests coverage:
- POST /messages/{token}: token check, one turn per request, redelivery flag,
  503 when the session is locked by another process
- POST /flows/validate: issues, initial message, unloadable definitions
- GET /health and GET /
"""

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient
from redis.exceptions import LockError

from api.main import app
from api.routes.messages import get_engine

VALID_TOKEN = "test_api_token_0123456789abcdef"


@pytest.fixture
def client(make_engine, greeting_flow):
    engine = make_engine(greeting_flow)
    app.dependency_overrides[get_engine] = lambda: engine
    yield TestClient(app)
    app.dependency_overrides.clear()


# ============================================================================
# Messages
# ============================================================================


class TestMessageRoute:
    """Test the inbound message route."""

    def test_invalid_token_rejected(self, client):
        response = client.post(
            "/messages/wrong-token",
            json={"tenant_id": "tenant-1", "session_id": "s-1", "text": "Hola"},
        )

        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid token"

    def test_runs_one_turn(self, client):
        response = client.post(
            f"/messages/{VALID_TOKEN}",
            json={"tenant_id": "tenant-1", "session_id": "s-1", "text": "Hola", "message_id": "m-1"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["messages"] == ["Hola", "¿Qué deseas hacer?\n1. cita\n2. info"]
        assert body["session_status"] == "suspended"
        assert body["duplicate"] is False

    def test_conversation_across_requests(self, client):
        client.post(
            f"/messages/{VALID_TOKEN}",
            json={"tenant_id": "tenant-1", "session_id": "s-1", "text": "Hola", "message_id": "m-1"},
        )

        response = client.post(
            f"/messages/{VALID_TOKEN}",
            json={"tenant_id": "tenant-1", "session_id": "s-1", "text": "info", "message_id": "m-2"},
        )

        assert response.json()["messages"] == ["Abrimos de lunes a viernes."]
        assert response.json()["session_status"] == "completed"

    def test_redelivery_flagged(self, client):
        payload = {"tenant_id": "tenant-1", "session_id": "s-1", "text": "Hola", "message_id": "m-1"}

        first = client.post(f"/messages/{VALID_TOKEN}", json=payload)
        second = client.post(f"/messages/{VALID_TOKEN}", json=payload)

        assert second.json()["duplicate"] is True
        assert second.json()["messages"] == first.json()["messages"]

    def test_missing_session_id(self, client):
        response = client.post(f"/messages/{VALID_TOKEN}", json={"tenant_id": "tenant-1", "text": "Hola"})

        assert response.status_code == 422

    def test_busy_session_returns_503(self, client, session_store):
        session_store.session_lock = MagicMock(side_effect=LockError("Unable to acquire lock"))

        response = client.post(
            f"/messages/{VALID_TOKEN}",
            json={"tenant_id": "tenant-1", "session_id": "s-1", "text": "Hola"},
        )

        assert response.status_code == 503
        assert response.json()["detail"] == "Session busy, retry later"


# ============================================================================
# Flow validation
# ============================================================================


class TestFlowValidationRoute:
    """Test flow authoring validation."""

    def test_valid_flow(self, client, greeting_flow):
        response = client.post("/flows/validate", json=greeting_flow)

        assert response.status_code == 200
        body = response.json()
        assert body["valid"] is True
        assert body["flow_id"] == "test-flow"
        assert body["node_count"] == 5
        assert body["edge_count"] == 4
        assert body["initial_message"]["text"] == "Hola"
        assert body["initial_message"]["branch"] == "entry_target"

    def test_unknown_kind_reported(self, client, build_flow):
        definition = build_flow(
            [("start", "start", {}), ("x", "teleport", {})],
            [("start", "x")],
        )

        body = client.post("/flows/validate", json=definition).json()

        assert body["valid"] is False
        assert body["issues"][0]["code"] == "unknown_node_kind"
        assert body["issues"][0]["node_id"] == "x"

    def test_empty_flow_rejected(self, client):
        response = client.post("/flows/validate", json={"id": "empty", "nodes": [], "edges": []})

        assert response.status_code == 422
        assert response.json()["detail"]["flow_id"] == "empty"

    def test_dangling_edge_rejected(self, client, build_flow):
        definition = build_flow([("start", "start", {"message": "Hola"})], [("start", "ghost")])

        response = client.post("/flows/validate", json=definition)

        assert response.status_code == 422
        assert response.json()["detail"]["target"] == "ghost"


# ============================================================================
# Health
# ============================================================================


class TestHealth:
    def test_health_without_redis(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["redis"] == "not_used"
        assert "scheduling" in body["circuit_breakers"]

    def test_root(self, client):
        assert "Chatflow" in client.get("/").json()["message"]
