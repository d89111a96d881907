"""
FlowGraph data model.

This module defines the in-memory representation of an operator-authored
conversation graph:
- NodeKind: Enum of node kinds the interpreter understands
- Node: One step of the conversation (immutable once loaded)
- Edge: Directed connection between two nodes, optionally tagged with a branch
- FlowGraph: Nodes (in declaration order) plus ordered edges
- StructuralError: Raised when a graph is malformed

No behaviour beyond lookups lives here; parsing and validation are in
chatflow.flow.loader.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

# sourceHandle values the visual builder emits for plain "continue" connectors
UNTAGGED_HANDLES = (None, "", "next", "default")


class StructuralError(Exception):
    """
    Malformed flow graph.

    Raised for dangling edges, unmatched branch tags, an exceeded hop budget
    or an unknown node kind reached during traversal. The diagnostic dict is
    meant for operator-facing tooling and is never shown to end users.
    """

    def __init__(self, message: str, diagnostic: dict[str, Any] | None = None):
        super().__init__(message)
        self.diagnostic: dict[str, Any] = {"error": message, **(diagnostic or {})}


class NodeKind(str, Enum):
    """Kinds of nodes recognized by the interpreter."""

    START = "start"
    MESSAGE = "message"
    INPUT = "input"
    CONDITION = "condition"
    TEXT_GENERATION = "text-generation"
    AVAILABILITY_CHECK = "availability-check"
    BOOK_APPOINTMENT = "book-appointment"
    RESCHEDULE_APPOINTMENT = "reschedule-appointment"
    CANCEL_APPOINTMENT = "cancel-appointment"
    LEAD_QUALIFICATION = "lead-qualification"
    CATALOG_LISTING = "catalog-listing"
    END = "end"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Node:
    """
    A single conversation step.

    Attributes:
        id: Node id, unique within the graph
        kind: Resolved node kind
        raw_type: Type string exactly as authored (kept for diagnostics)
        config: Kind-specific payload (the authored `data` object)
        position: Canvas position from the visual builder, if any
    """

    id: str
    kind: NodeKind
    raw_type: str
    config: dict[str, Any] = field(default_factory=dict)
    position: dict[str, Any] | None = None


@dataclass(frozen=True)
class Edge:
    """Directed connection; branch_tag comes from the authored sourceHandle."""

    id: str
    source: str
    target: str
    branch_tag: str | None = None


@dataclass
class FlowGraph:
    """
    Loaded conversation graph.

    Read-only after load, so one instance can be shared by every session of
    a tenant.
    """

    nodes: dict[str, Node]
    edges: list[Edge]
    unknown_nodes: list[str] = field(default_factory=list)
    flow_id: str | None = None

    def get_node(self, node_id: str) -> Node:
        node = self.nodes.get(node_id)
        if node is None:
            raise StructuralError(
                f"Node '{node_id}' does not exist in flow",
                {"node_id": node_id, "flow_id": self.flow_id},
            )
        return node

    def outgoing(self, node_id: str) -> list[Edge]:
        """Outgoing edges of a node, in declaration order."""
        return [edge for edge in self.edges if edge.source == node_id]

    def select_edge(self, node_id: str, branch: str) -> Edge | None:
        """
        Pick the outgoing edge whose branch tag equals `branch`.

        When two edges share a tag the first declared one wins.
        """
        for edge in self.outgoing(node_id):
            if edge.branch_tag == branch:
                return edge
        return None

    def default_edge(self, node_id: str) -> Edge | None:
        """First untagged outgoing edge ("next" and "default" count as untagged)."""
        for edge in self.outgoing(node_id):
            if edge.branch_tag in UNTAGGED_HANDLES:
                return edge
        return None

    def first_edge(self, node_id: str) -> Edge | None:
        edges = self.outgoing(node_id)
        return edges[0] if edges else None

    def nodes_of_kind(self, kind: NodeKind) -> list[Node]:
        return [node for node in self.nodes.values() if node.kind == kind]
