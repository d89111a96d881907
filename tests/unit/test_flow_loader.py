"""
Unit tests for chatflow/flow/loader.py - Flow definition parsing and validation.

Tests coverage:
- Node type aliases and the data.type / data.nodeType fallbacks
- Catalog nodes (products vs services)
- Structural errors: no nodes, duplicate ids, dangling edges, bad shape
- Unknown node kinds are tolerated at load time
- Edge selection helpers on FlowGraph
- validate_flow_graph() issues
- load_flow_file()
"""

import json

import pytest

from chatflow.flow.loader import (
    NodeTypeAliases,
    load_flow_file,
    load_flow_graph,
    validate_flow_graph,
)
from chatflow.flow.models import NodeKind, StructuralError


# ============================================================================
# Node kinds
# ============================================================================


class TestNodeKinds:
    """Test mapping of authored node types to kinds."""

    @pytest.mark.parametrize(
        "raw_type,expected",
        [
            ("start", NodeKind.START),
            ("messageNode", NodeKind.MESSAGE),
            ("buttons", NodeKind.INPUT),
            ("conditional", NodeKind.CONDITION),
            ("ai", NodeKind.TEXT_GENERATION),
            ("check-availability", NodeKind.AVAILABILITY_CHECK),
            ("bookAppointmentNode", NodeKind.BOOK_APPOINTMENT),
            ("reschedule_appointment", NodeKind.RESCHEDULE_APPOINTMENT),
            ("cancel-appointment", NodeKind.CANCEL_APPOINTMENT),
            ("leadQualificationNode", NodeKind.LEAD_QUALIFICATION),
            ("end", NodeKind.END),
            ("teleport", NodeKind.UNKNOWN),
            (None, NodeKind.UNKNOWN),
        ],
    )
    def test_kind_for_aliases(self, raw_type, expected):
        """Test that aliases resolve case-insensitively."""
        assert NodeTypeAliases.kind_for(raw_type) == expected

    def test_type_falls_back_to_data_type(self):
        """Test that data.type is used when the top-level type is unknown."""
        graph = load_flow_graph({
            "nodes": [{"id": "n1", "type": "custom", "data": {"type": "message", "message": "Hola"}}],
            "edges": [],
        })

        assert graph.nodes["n1"].kind == NodeKind.MESSAGE

    def test_type_falls_back_to_data_node_type(self):
        """Test that data.nodeType is used as the last candidate."""
        graph = load_flow_graph({
            "nodes": [{"id": "n1", "data": {"nodeType": "end"}}],
            "edges": [],
        })

        assert graph.nodes["n1"].kind == NodeKind.END

    def test_products_node_sets_catalog(self):
        """Test that product nodes are catalog-listing nodes over products."""
        graph = load_flow_graph({
            "nodes": [{"id": "p", "type": "productNode", "data": {}}],
            "edges": [],
        })

        node = graph.nodes["p"]
        assert node.kind == NodeKind.CATALOG_LISTING
        assert node.config["catalog"] == "products"

    def test_services_node_sets_catalog(self):
        """Test that service nodes are catalog-listing nodes over services."""
        graph = load_flow_graph({
            "nodes": [{"id": "s", "type": "services", "data": {}}],
            "edges": [],
        })

        assert graph.nodes["s"].config["catalog"] == "services"

    def test_unknown_kind_is_recorded_not_fatal(self, build_flow):
        """Test that unknown kinds load and are listed on the graph."""
        graph = load_flow_graph(build_flow(
            [("start", "start", {}), ("x", "teleport", {})],
            [("start", "x")],
        ))

        assert graph.nodes["x"].kind == NodeKind.UNKNOWN
        assert graph.nodes["x"].raw_type == "teleport"
        assert graph.unknown_nodes == ["x"]


# ============================================================================
# Structural errors
# ============================================================================


class TestStructuralErrors:
    """Test definitions rejected at load time."""

    def test_no_nodes_raises(self):
        with pytest.raises(StructuralError, match="no nodes"):
            load_flow_graph({"nodes": [], "edges": []})

    def test_duplicate_node_id_raises(self, build_flow):
        with pytest.raises(StructuralError) as exc_info:
            load_flow_graph(build_flow(
                [("a", "message", {"message": "uno"}), ("a", "message", {"message": "dos"})],
                [],
            ))

        assert exc_info.value.diagnostic["node_id"] == "a"

    def test_dangling_edge_raises_with_diagnostic(self, build_flow):
        """Test that edges to missing nodes are reported with both ends."""
        with pytest.raises(StructuralError) as exc_info:
            load_flow_graph(build_flow(
                [("start", "start", {}), ("a", "message", {"message": "Hola"})],
                [("start", "a"), ("a", "ghost")],
            ))

        diagnostic = exc_info.value.diagnostic
        assert diagnostic["source"] == "a"
        assert diagnostic["target"] == "ghost"
        assert "ghost" in diagnostic["error"]

    def test_invalid_shape_raises(self):
        """Test that pydantic validation errors become StructuralError."""
        with pytest.raises(StructuralError) as exc_info:
            load_flow_graph({"nodes": [{"type": "message"}], "edges": []}, flow_id="broken")

        assert exc_info.value.diagnostic["flow_id"] == "broken"
        assert exc_info.value.diagnostic["validation_errors"]

    def test_start_without_edges_or_message_raises(self, build_flow):
        with pytest.raises(StructuralError, match="Entry node"):
            load_flow_graph(build_flow([("start", "start", {})], []))

    def test_start_without_edges_but_with_message_loads(self, build_flow):
        graph = load_flow_graph(build_flow([("start", "start", {"message": "Bienvenido"})], []))

        assert "start" in graph.nodes

    def test_json_string_definition(self, build_flow):
        definition = build_flow([("m", "message", {"message": "Hola"})], [])

        graph = load_flow_graph(json.dumps(definition))

        assert graph.flow_id == "test-flow"


# ============================================================================
# Edge selection
# ============================================================================


class TestEdgeSelection:
    """Test FlowGraph edge helpers."""

    @pytest.fixture
    def graph(self, build_flow):
        return load_flow_graph(build_flow(
            [
                ("check", "check-availability", {}),
                ("yes", "message", {"message": "Hay hueco"}),
                ("yes2", "message", {"message": "Duplicado"}),
                ("no", "message", {"message": "No hay hueco"}),
                ("next", "message", {"message": "Siguiente"}),
            ],
            [
                ("check", "no", "not_available"),
                ("check", "yes", "available"),
                ("check", "yes2", "available"),
                ("check", "next", "next"),
            ],
        ))

    def test_select_edge_matches_tag(self, graph):
        assert graph.select_edge("check", "not_available").target == "no"

    def test_select_edge_first_declared_wins(self, graph):
        assert graph.select_edge("check", "available").target == "yes"

    def test_select_edge_no_match(self, graph):
        assert graph.select_edge("check", "error") is None

    def test_default_edge_is_first_untagged(self, graph):
        assert graph.default_edge("check").target == "next"

    def test_first_edge_ignores_tags(self, graph):
        assert graph.first_edge("check").target == "no"

    def test_outgoing_preserves_order(self, graph):
        assert [e.target for e in graph.outgoing("check")] == ["no", "yes", "yes2", "next"]

    def test_get_node_missing_raises(self, graph):
        with pytest.raises(StructuralError):
            graph.get_node("nope")


# ============================================================================
# validate_flow_graph()
# ============================================================================


class TestValidateFlowGraph:
    """Test strict authoring checks."""

    def test_clean_flow_has_no_issues(self, greeting_flow):
        assert validate_flow_graph(load_flow_graph(greeting_flow)) == []

    def test_reports_unknown_duplicate_and_unreachable(self, build_flow):
        graph = load_flow_graph(build_flow(
            [
                ("start", "start", {}),
                ("menu", "condition", {"options": ["a"]}),
                ("a1", "message", {"message": "Opción A"}),
                ("a2", "message", {"message": "Otra A"}),
                ("x", "teleport", {}),
                ("orphan", "message", {"message": "Nadie llega aquí"}),
            ],
            [
                ("start", "menu"),
                ("menu", "a1", "a"),
                ("menu", "a2", "a"),
                ("a1", "x"),
            ],
        ))

        issues = validate_flow_graph(graph)
        codes = {(issue["code"], issue["node_id"]) for issue in issues}

        assert ("unknown_node_kind", "x") in codes
        assert ("duplicate_branch_tag", "menu") in codes
        assert ("unreachable_node", "orphan") in codes
        unreachable = next(i for i in issues if i["code"] == "unreachable_node")
        assert unreachable["severity"] == "warning"


# ============================================================================
# load_flow_file()
# ============================================================================


class TestLoadFlowFile:
    """Test loading definitions from disk."""

    def test_file_stem_is_flow_id(self, tmp_path, greeting_flow):
        path = tmp_path / "acme.json"
        path.write_text(json.dumps(greeting_flow), encoding="utf-8")

        graph = load_flow_file(path)

        assert graph.flow_id == "acme"
        assert len(graph.nodes) == 5

    def test_invalid_json_raises(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{nodes: ", encoding="utf-8")

        with pytest.raises(StructuralError, match="not valid JSON"):
            load_flow_file(path)
