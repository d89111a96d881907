"""
Flow definition loader and validation.

Parses the JSON document produced by the visual builder:

    {
        "nodes": [{"id": "...", "type": "...", "position": {...}, "data": {...}}],
        "edges": [{"id": "...", "source": "...", "target": "...", "sourceHandle": "..."}]
    }

into a FlowGraph. Raw shapes are validated with pydantic models that allow
extra fields, because builder versions add keys freely.

Two entry points:
- load_flow_graph(): used at runtime. Fails with StructuralError on dangling
  edges, duplicate node ids, an empty graph or an entry node that leads
  nowhere. Unknown node kinds are recorded, not fatal: the interpreter only
  fails if a conversation actually reaches one.
- validate_flow_graph(): strict checks for offline tooling (unknown kinds,
  duplicate branch tags, unreachable nodes), returned as a list of issues.
"""

import json
import logging
from pathlib import Path
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from chatflow.flow.models import Edge, FlowGraph, Node, NodeKind, StructuralError
from chatflow.flow.resolver import find_entry_node, resolve

logger = logging.getLogger(__name__)


class RawNode(BaseModel):
    """Node as authored by the visual builder."""

    model_config = ConfigDict(extra="allow")

    id: str
    type: str | None = None
    position: dict[str, Any] | None = None
    data: dict[str, Any] = Field(default_factory=dict)


class RawEdge(BaseModel):
    """Edge as authored by the visual builder."""

    model_config = ConfigDict(extra="allow")

    id: str | None = None
    source: str
    target: str
    sourceHandle: str | None = None


class RawFlowDefinition(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str | None = None
    nodes: list[RawNode] = Field(default_factory=list)
    edges: list[RawEdge] = Field(default_factory=list)


class NodeTypeAliases:
    """Maps authored type strings (case-insensitive) to node kinds."""

    ALIASES: ClassVar[dict[str, NodeKind]] = {
        "start": NodeKind.START,
        "startnode": NodeKind.START,
        "message": NodeKind.MESSAGE,
        "messagenode": NodeKind.MESSAGE,
        "text": NodeKind.MESSAGE,
        "textnode": NodeKind.MESSAGE,
        "input": NodeKind.INPUT,
        "inputnode": NodeKind.INPUT,
        "buttons": NodeKind.INPUT,
        "buttonsnode": NodeKind.INPUT,
        "list": NodeKind.INPUT,
        "listnode": NodeKind.INPUT,
        "condition": NodeKind.CONDITION,
        "conditional": NodeKind.CONDITION,
        "conditionalnode": NodeKind.CONDITION,
        "branch": NodeKind.CONDITION,
        "ai": NodeKind.TEXT_GENERATION,
        "ainode": NodeKind.TEXT_GENERATION,
        "text-generation": NodeKind.TEXT_GENERATION,
        "textgeneration": NodeKind.TEXT_GENERATION,
        "check-availability": NodeKind.AVAILABILITY_CHECK,
        "check_availability": NodeKind.AVAILABILITY_CHECK,
        "checkavailabilitynode": NodeKind.AVAILABILITY_CHECK,
        "availability-check": NodeKind.AVAILABILITY_CHECK,
        "book-appointment": NodeKind.BOOK_APPOINTMENT,
        "book_appointment": NodeKind.BOOK_APPOINTMENT,
        "bookappointmentnode": NodeKind.BOOK_APPOINTMENT,
        "reschedule-appointment": NodeKind.RESCHEDULE_APPOINTMENT,
        "reschedule_appointment": NodeKind.RESCHEDULE_APPOINTMENT,
        "rescheduleappointmentnode": NodeKind.RESCHEDULE_APPOINTMENT,
        "cancel-appointment": NodeKind.CANCEL_APPOINTMENT,
        "cancel_appointment": NodeKind.CANCEL_APPOINTMENT,
        "cancelappointmentnode": NodeKind.CANCEL_APPOINTMENT,
        "lead-qualification": NodeKind.LEAD_QUALIFICATION,
        "lead_qualification": NodeKind.LEAD_QUALIFICATION,
        "leadqualificationnode": NodeKind.LEAD_QUALIFICATION,
        "products": NodeKind.CATALOG_LISTING,
        "productnode": NodeKind.CATALOG_LISTING,
        "productsnode": NodeKind.CATALOG_LISTING,
        "services": NodeKind.CATALOG_LISTING,
        "servicesnode": NodeKind.CATALOG_LISTING,
        "catalog-listing": NodeKind.CATALOG_LISTING,
        "end": NodeKind.END,
        "endnode": NodeKind.END,
    }

    # Catalog nodes are one kind; the authored type picks the catalog
    SERVICE_CATALOG_TYPES: ClassVar[frozenset[str]] = frozenset(
        {"services", "servicesnode"}
    )

    @classmethod
    def kind_for(cls, raw_type: str | None) -> NodeKind:
        if not raw_type:
            return NodeKind.UNKNOWN
        return cls.ALIASES.get(raw_type.strip().lower(), NodeKind.UNKNOWN)


def _resolve_type(raw: RawNode) -> tuple[NodeKind, str]:
    """Kind from `type`, falling back to `data.type` / `data.nodeType`."""
    candidates = [raw.type, raw.data.get("type"), raw.data.get("nodeType")]
    for candidate in candidates:
        if isinstance(candidate, str):
            kind = NodeTypeAliases.kind_for(candidate)
            if kind != NodeKind.UNKNOWN:
                return kind, candidate
    first = next((c for c in candidates if isinstance(c, str)), "")
    return NodeKind.UNKNOWN, first


def _build_node(raw: RawNode) -> Node:
    kind, raw_type = _resolve_type(raw)
    config = dict(raw.data)
    if kind == NodeKind.CATALOG_LISTING and "catalog" not in config:
        is_services = raw_type.strip().lower() in NodeTypeAliases.SERVICE_CATALOG_TYPES
        config["catalog"] = "services" if is_services else "products"
    return Node(
        id=raw.id,
        kind=kind,
        raw_type=raw_type,
        config=config,
        position=raw.position,
    )


def load_flow_graph(definition: dict[str, Any] | str, flow_id: str | None = None) -> FlowGraph:
    """
    Parse and validate a raw flow definition.

    Args:
        definition: Parsed JSON dict or JSON string
        flow_id: Optional identifier used in diagnostics

    Returns:
        FlowGraph ready for interpretation

    Raises:
        StructuralError: If the definition is malformed
    """
    try:
        if isinstance(definition, str):
            raw = RawFlowDefinition.model_validate_json(definition)
        else:
            raw = RawFlowDefinition.model_validate(definition)
    except ValidationError as e:
        raise StructuralError(
            "Flow definition does not match the expected shape",
            {"flow_id": flow_id, "validation_errors": e.errors(include_url=False, include_context=False)},
        ) from e

    flow_id = flow_id or raw.id

    if not raw.nodes:
        raise StructuralError("Flow has no nodes", {"flow_id": flow_id})

    nodes: dict[str, Node] = {}
    unknown: list[str] = []
    for raw_node in raw.nodes:
        if raw_node.id in nodes:
            raise StructuralError(
                f"Duplicate node id '{raw_node.id}'",
                {"flow_id": flow_id, "node_id": raw_node.id},
            )
        node = _build_node(raw_node)
        nodes[node.id] = node
        if node.kind == NodeKind.UNKNOWN:
            unknown.append(node.id)
            logger.warning(
                f"Unrecognized node type '{node.raw_type}' for node {node.id} in flow {flow_id}",
                extra={"node_id": node.id},
            )

    edges: list[Edge] = []
    for index, raw_edge in enumerate(raw.edges):
        missing = [end for end in (raw_edge.source, raw_edge.target) if end not in nodes]
        if missing:
            raise StructuralError(
                f"Edge references missing node(s): {', '.join(missing)}",
                {
                    "flow_id": flow_id,
                    "edge_id": raw_edge.id,
                    "source": raw_edge.source,
                    "target": raw_edge.target,
                },
            )
        edges.append(
            Edge(
                id=raw_edge.id or f"edge-{index}",
                source=raw_edge.source,
                target=raw_edge.target,
                branch_tag=raw_edge.sourceHandle,
            )
        )

    graph = FlowGraph(nodes=nodes, edges=edges, unknown_nodes=unknown, flow_id=flow_id)

    entry = find_entry_node(graph)
    if (
        entry is not None
        and entry.kind == NodeKind.START
        and not graph.outgoing(entry.id)
        and not resolve(entry).found
    ):
        raise StructuralError(
            "Entry node has no outgoing edges and no message",
            {"flow_id": flow_id, "node_id": entry.id},
        )

    logger.info(
        f"Flow {flow_id} loaded: {len(nodes)} nodes, {len(edges)} edges, "
        f"{len(unknown)} unknown"
    )
    return graph


def load_flow_file(path: str | Path) -> FlowGraph:
    """Load a flow definition from a JSON file; the file stem is the flow id."""
    path = Path(path)
    try:
        definition = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise StructuralError(
            f"Flow file is not valid JSON: {e}", {"flow_id": path.stem}
        ) from e
    return load_flow_graph(definition, flow_id=path.stem)


def _reachable_from(graph: FlowGraph, start_id: str) -> set[str]:
    seen = {start_id}
    pending = [start_id]
    while pending:
        current = pending.pop()
        for edge in graph.outgoing(current):
            if edge.target not in seen:
                seen.add(edge.target)
                pending.append(edge.target)
    return seen


def validate_flow_graph(graph: FlowGraph) -> list[dict[str, Any]]:
    """
    Strict structural checks for authoring tooling.

    Returns:
        List of issues, each {"severity", "code", "node_id", "detail"}.
        Severity "error" means the flow would fail at runtime when the
        offending path is taken.
    """
    issues: list[dict[str, Any]] = []

    for node_id in graph.unknown_nodes:
        issues.append({
            "severity": "error",
            "code": "unknown_node_kind",
            "node_id": node_id,
            "detail": f"type '{graph.nodes[node_id].raw_type}' is not supported",
        })

    for node_id in graph.nodes:
        seen_tags: dict[str, str] = {}
        for edge in graph.outgoing(node_id):
            if edge.branch_tag is None:
                continue
            if edge.branch_tag in seen_tags:
                issues.append({
                    "severity": "error",
                    "code": "duplicate_branch_tag",
                    "node_id": node_id,
                    "detail": (
                        f"edges {seen_tags[edge.branch_tag]} and {edge.id} share "
                        f"branch '{edge.branch_tag}'; only the first is ever taken"
                    ),
                })
            else:
                seen_tags[edge.branch_tag] = edge.id

    entry = find_entry_node(graph)
    if entry is not None:
        reachable = _reachable_from(graph, entry.id)
        for node_id in graph.nodes:
            if node_id not in reachable:
                issues.append({
                    "severity": "warning",
                    "code": "unreachable_node",
                    "node_id": node_id,
                    "detail": f"not reachable from entry node {entry.id}",
                })

    return issues
