"""
Unit tests for chatflow/flow/resolver.py - Message resolution.

Tests coverage:
- resolve(): direct keys, nested keys, heuristic, not found
- find_entry_node()
- find_initial_message(): every fallback branch and its diagnostic
"""

import pytest

from chatflow.flow.loader import load_flow_graph
from chatflow.flow.models import Node, NodeKind
from chatflow.flow.resolver import (
    InitialMessageBranch,
    find_entry_node,
    find_initial_message,
    resolve,
)


def make_node(config, kind=NodeKind.MESSAGE, node_id="n1"):
    return Node(id=node_id, kind=kind, raw_type=kind.value, config=config)


# ============================================================================
# resolve()
# ============================================================================


class TestResolve:
    """Test message text resolution strategies."""

    @pytest.mark.parametrize("key", ["message", "messageText", "content", "text"])
    def test_direct_keys(self, key):
        resolution = resolve(make_node({key: "Hola, bienvenido"}))

        assert resolution.found
        assert resolution.text == "Hola, bienvenido"
        assert resolution.source == f"data.{key}"

    def test_direct_key_priority(self):
        """Test that `message` wins over later keys."""
        resolution = resolve(make_node({"text": "segundo", "message": "primero"}))

        assert resolution.text == "primero"

    def test_blank_direct_key_is_skipped(self):
        resolution = resolve(make_node({"message": "   ", "content": "Contenido"}))

        assert resolution.source == "data.content"

    def test_nested_keys(self):
        resolution = resolve(make_node({"data": {"messageText": "Mensaje anidado"}}))

        assert resolution.text == "Mensaje anidado"
        assert resolution.source == "data.data.messageText"

    def test_heuristic_picks_long_string(self):
        resolution = resolve(make_node({"nodeId": "abcdefghijklmnop", "body": "Un texto bastante largo"}))

        assert resolution.text == "Un texto bastante largo"
        assert resolution.source == "heuristic:data.body"
        assert resolution.diagnostic["strategy"] == "heuristic"

    def test_heuristic_ignores_short_strings(self):
        resolution = resolve(make_node({"label": "Corto"}))

        assert not resolution.found

    def test_heuristic_can_be_disabled(self):
        resolution = resolve(make_node({"label": "Etiqueta de inicio larga"}), allow_heuristic=False)

        assert not resolution.found
        assert resolution.diagnostic["strategies_tried"] == ["direct_keys", "nested_keys"]

    def test_not_found_diagnostic(self):
        resolution = resolve(make_node({"foo": 1}, node_id="silent"))

        assert resolution.text is None
        assert resolution.diagnostic["node_id"] == "silent"
        assert resolution.diagnostic["payload_keys"] == ["foo"]
        assert resolution.diagnostic["reason"] == "no message text found"


# ============================================================================
# Entry node and initial message
# ============================================================================


class TestFindEntryNode:
    """Test nominal entry node selection."""

    def test_first_start_node(self, build_flow):
        graph = load_flow_graph(build_flow(
            [("m", "message", {"message": "Hola"}), ("s1", "start", {}), ("s2", "start", {})],
            [("s1", "m"), ("s2", "m")],
        ))

        assert find_entry_node(graph).id == "s1"

    def test_first_message_node_without_start(self, build_flow):
        graph = load_flow_graph(build_flow(
            [("c", "condition", {}), ("m", "message", {"message": "Hola"})],
            [("m", "c")],
        ))

        assert find_entry_node(graph).id == "m"


class TestFindInitialMessage:
    """Test the opening-message fallback chain."""

    def test_entry_target(self, greeting_flow):
        initial = find_initial_message(load_flow_graph(greeting_flow))

        assert initial.branch == InitialMessageBranch.ENTRY_TARGET
        assert initial.text == "Hola"
        assert initial.node_id == "hola"
        assert initial.diagnostic["entry_nodes"] == ["start"]

    def test_entry_node_without_edges(self, build_flow):
        graph = load_flow_graph(build_flow(
            [("start", "start", {"message": "Bienvenido al asistente"})], []
        ))

        initial = find_initial_message(graph)

        assert initial.branch == InitialMessageBranch.ENTRY_NODE
        assert initial.node_id == "start"

    def test_first_message_node_without_start(self, build_flow):
        graph = load_flow_graph(build_flow(
            [("m1", "message", {"message": "Primero"}), ("m2", "message", {"message": "Segundo"})],
            [("m1", "m2")],
        ))

        initial = find_initial_message(graph)

        assert initial.branch == InitialMessageBranch.FIRST_MESSAGE_NODE
        assert initial.text == "Primero"

    def test_message_scan_when_target_has_no_text(self, build_flow):
        graph = load_flow_graph(build_flow(
            [
                ("start", "start", {}),
                ("cond", "condition", {"variable": "x"}),
                ("later", "message", {"message": "Más adelante"}),
            ],
            [("start", "cond"), ("cond", "later")],
        ))

        initial = find_initial_message(graph)

        assert initial.branch == InitialMessageBranch.MESSAGE_SCAN
        assert initial.node_id == "later"
        assert "entry_target_failure" in initial.diagnostic

    def test_not_found(self, build_flow):
        graph = load_flow_graph(build_flow(
            [("start", "start", {}), ("cond", "condition", {})],
            [("start", "cond")],
        ))

        initial = find_initial_message(graph)

        assert initial.branch == InitialMessageBranch.NOT_FOUND
        assert initial.text is None
        assert initial.diagnostic["reason"] == "no resolvable message node in graph"
