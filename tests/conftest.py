"""
Test configuration and fixtures.

This module sets up test environment and provides shared fixtures for all tests.
"""

import os
from typing import Any
from unittest.mock import AsyncMock

import pytest

# Override settings for tests. Must be set BEFORE any import of shared.config
os.environ["REDIS_URL"] = "redis://localhost:6379/0"
os.environ["SESSION_BACKEND"] = "memory"
os.environ["API_AUTH_TOKEN"] = "test_api_token_0123456789abcdef"
os.environ["FLOW_DEFINITIONS_DIR"] = "flows"

from chatflow.engine import ConversationEngine, FlowInterpreter, FlowRepository  # noqa: E402
from chatflow.executors import build_registry  # noqa: E402
from chatflow.flow import load_flow_graph  # noqa: E402
from chatflow.services import Providers  # noqa: E402
from chatflow.state import ExecutionContext, InMemorySessionStore  # noqa: E402

FALLBACK_MESSAGE = "Lo siento, ocurrió un error al procesar tu solicitud."


# ============================================================================
# Flow builders
# ============================================================================


@pytest.fixture
def build_flow():
    """
    Build a raw flow definition from compact tuples.

    Usage:
        build_flow(
            [("start", "start", {}), ("hola", "message", {"message": "Hola"})],
            [("start", "hola"), ("cond", "a", "cita")],
        )
    """
    def _build(
        nodes: list[tuple[str, str, dict[str, Any]]],
        edges: list[tuple],
        flow_id: str = "test-flow",
    ) -> dict[str, Any]:
        return {
            "id": flow_id,
            "nodes": [
                {"id": node_id, "type": node_type, "position": {"x": 0, "y": 0}, "data": data}
                for node_id, node_type, data in nodes
            ],
            "edges": [
                {
                    "id": f"e{index}",
                    "source": edge[0],
                    "target": edge[1],
                    "sourceHandle": edge[2] if len(edge) > 2 else None,
                }
                for index, edge in enumerate(edges)
            ],
        }
    return _build


@pytest.fixture
def greeting_flow(build_flow):
    """start -> "Hola" -> condition prompt with two options."""
    return build_flow(
        [
            ("start", "start", {"label": "Inicio"}),
            ("hola", "message", {"message": "Hola"}),
            (
                "menu",
                "condition",
                {"question": "¿Qué deseas hacer?", "options": ["cita", "info"]},
            ),
            ("cita", "message", {"message": "Vamos a agendar tu cita."}),
            ("info", "message", {"message": "Abrimos de lunes a viernes."}),
        ],
        [
            ("start", "hola"),
            ("hola", "menu"),
            ("menu", "cita", "cita"),
            ("menu", "info", "info"),
        ],
    )


# ============================================================================
# Engine fixtures
# ============================================================================


@pytest.fixture
def context():
    return ExecutionContext(tenant_id="tenant-1", session_id="session-1")


@pytest.fixture
def mock_scheduling():
    return AsyncMock()


@pytest.fixture
def providers(mock_scheduling):
    return Providers(
        scheduling=mock_scheduling,
        catalog=AsyncMock(),
        crm=AsyncMock(),
        text_generator=AsyncMock(),
    )


@pytest.fixture
def registry(providers):
    return build_registry(providers, timeout_seconds=2.0)


@pytest.fixture
def interpreter(registry):
    return FlowInterpreter(registry, max_hops=20)


@pytest.fixture
def fallback_message():
    return FALLBACK_MESSAGE


@pytest.fixture
def session_store():
    return InMemorySessionStore()


@pytest.fixture
def make_engine(session_store, interpreter):
    """Engine over the in-memory store with one tenant flow registered."""
    def _make(definition: dict[str, Any], tenant_id: str = "tenant-1") -> ConversationEngine:
        flows = FlowRepository()
        flows.register(tenant_id, load_flow_graph(definition))
        return ConversationEngine(
            store=session_store,
            flows=flows,
            interpreter=interpreter,
            fallback_message=FALLBACK_MESSAGE,
        )
    return _make
