"""
Message Resolver.

Flows authored with different versions of the visual builder store message
text under different payload keys. The resolver hides that drift behind an
ordered list of strategies, first match wins:

1. direct keys:  data.message, data.messageText, data.content, data.text
2. nested keys:  the same keys inside data.data
3. heuristic:    first string field longer than 10 characters whose key does
                 not look like an id/type field

Both `resolve()` and `find_initial_message()` return diagnostics as data,
so validation tooling can show which strategy (or fallback branch) fired
without a debugger.

Usage:
    resolution = resolve(node)
    if resolution.found:
        text = resolution.text

    initial = find_initial_message(graph)
    print(initial.branch, initial.diagnostic)
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from chatflow.flow.models import FlowGraph, Node, NodeKind

logger = logging.getLogger(__name__)

MESSAGE_KEYS = ("message", "messageText", "content", "text")
NESTED_PAYLOAD_KEY = "data"
HEURISTIC_MIN_LENGTH = 10
HEURISTIC_EXCLUDED_MARKERS = ("id", "type")


@dataclass(frozen=True)
class MessageResolution:
    """Outcome of resolving a node's message text."""

    text: str | None
    source: str | None
    diagnostic: dict[str, Any] = field(default_factory=dict)

    @property
    def found(self) -> bool:
        return self.text is not None


Strategy = Callable[[dict[str, Any]], tuple[str, str] | None]


def _non_empty_string(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def _direct_keys(payload: dict[str, Any]) -> tuple[str, str] | None:
    for key in MESSAGE_KEYS:
        if _non_empty_string(payload.get(key)):
            return payload[key], f"data.{key}"
    return None


def _nested_keys(payload: dict[str, Any]) -> tuple[str, str] | None:
    nested = payload.get(NESTED_PAYLOAD_KEY)
    if not isinstance(nested, dict):
        return None
    for key in MESSAGE_KEYS:
        if _non_empty_string(nested.get(key)):
            return nested[key], f"data.{NESTED_PAYLOAD_KEY}.{key}"
    return None


def _heuristic(payload: dict[str, Any]) -> tuple[str, str] | None:
    for key, value in payload.items():
        lowered = key.lower()
        if any(marker in lowered for marker in HEURISTIC_EXCLUDED_MARKERS):
            continue
        if isinstance(value, str) and len(value.strip()) > HEURISTIC_MIN_LENGTH:
            return value, f"heuristic:data.{key}"
    return None


# Ordered; new legacy shapes are supported by appending a strategy here.
RESOLUTION_STRATEGIES: tuple[tuple[str, Strategy], ...] = (
    ("direct_keys", _direct_keys),
    ("nested_keys", _nested_keys),
    ("heuristic", _heuristic),
)


def resolve(node: Node, allow_heuristic: bool = True) -> MessageResolution:
    """
    Return the best available human-readable message for a node.

    Args:
        node: Node whose payload is inspected
        allow_heuristic: Whether the last-resort heuristic strategy may fire.
            Disabled for start/end nodes, whose labels would otherwise be
            picked up as message text.

    Returns:
        MessageResolution with text and source tag, or text=None plus a
        diagnostic listing every strategy tried.
    """
    payload = node.config or {}
    tried: list[str] = []

    for name, strategy in RESOLUTION_STRATEGIES:
        if name == "heuristic" and not allow_heuristic:
            continue
        tried.append(name)
        match = strategy(payload)
        if match is not None:
            text, source = match
            return MessageResolution(
                text=text,
                source=source,
                diagnostic={"node_id": node.id, "strategy": name, "source": source},
            )

    diagnostic = {
        "node_id": node.id,
        "node_type": node.raw_type,
        "strategies_tried": tried,
        "payload_keys": sorted(payload.keys()),
        "reason": "no message text found",
    }
    logger.debug(
        f"No message resolved for node {node.id} (tried {', '.join(tried)})",
        extra={"node_id": node.id, "node_kind": node.kind.value},
    )
    return MessageResolution(text=None, source=None, diagnostic=diagnostic)


def is_message_node(node: Node) -> bool:
    """Message-like node: message kind, or a payload carrying a known message key."""
    if node.kind == NodeKind.MESSAGE:
        return True
    return _direct_keys(node.config or {}) is not None


def find_entry_nodes(graph: FlowGraph) -> list[Node]:
    return graph.nodes_of_kind(NodeKind.START)


def find_entry_node(graph: FlowGraph) -> Node | None:
    """
    Nominal entry node: the first start node, else the first message-like
    node, else the first declared node.
    """
    entries = find_entry_nodes(graph)
    if entries:
        return entries[0]
    for node in graph.nodes.values():
        if is_message_node(node):
            return node
    return next(iter(graph.nodes.values()), None)


class InitialMessageBranch(str, Enum):
    """Which fallback branch produced the opening message."""

    ENTRY_TARGET = "entry_target"
    ENTRY_NODE = "entry_node"
    FIRST_MESSAGE_NODE = "first_message_node"
    MESSAGE_SCAN = "message_scan"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class InitialMessage:
    text: str | None
    node_id: str | None
    source: str | None
    branch: InitialMessageBranch
    diagnostic: dict[str, Any] = field(default_factory=dict)


def _scan_for_message(
    graph: FlowGraph, diagnostic: dict[str, Any]
) -> InitialMessage:
    for node in graph.nodes.values():
        if not is_message_node(node):
            continue
        resolution = resolve(node)
        if resolution.found:
            diagnostic["scanned_node"] = node.id
            return InitialMessage(
                text=resolution.text,
                node_id=node.id,
                source=resolution.source,
                branch=InitialMessageBranch.MESSAGE_SCAN,
                diagnostic=diagnostic,
            )
    diagnostic["reason"] = "no resolvable message node in graph"
    return InitialMessage(
        text=None,
        node_id=None,
        source=None,
        branch=InitialMessageBranch.NOT_FOUND,
        diagnostic=diagnostic,
    )


def find_initial_message(graph: FlowGraph) -> InitialMessage:
    """
    Locate the conversation's opening line.

    Fallback chain:
        (a) find start node(s)
        (b) none: first message-like node in declaration order
        (c) start node with edges: resolve the target of its first edge
        (d) start node without edges: resolve the start node itself
        (e) anything failed: scan every node for a resolvable message

    Args:
        graph: Loaded flow graph

    Returns:
        InitialMessage whose `branch` names the fallback that fired and whose
        `diagnostic` records every step attempted.
    """
    entries = find_entry_nodes(graph)
    diagnostic: dict[str, Any] = {
        "flow_id": graph.flow_id,
        "entry_nodes": [node.id for node in entries],
        "steps": [],
    }

    if not entries:
        diagnostic["steps"].append("no_entry_node")
        for node in graph.nodes.values():
            if not is_message_node(node):
                continue
            resolution = resolve(node)
            diagnostic["steps"].append(f"first_message_node:{node.id}")
            if resolution.found:
                return InitialMessage(
                    text=resolution.text,
                    node_id=node.id,
                    source=resolution.source,
                    branch=InitialMessageBranch.FIRST_MESSAGE_NODE,
                    diagnostic=diagnostic,
                )
            diagnostic["first_message_node_failure"] = resolution.diagnostic
            break
        return _scan_for_message(graph, diagnostic)

    entry = entries[0]
    first = graph.first_edge(entry.id)

    if first is None:
        diagnostic["steps"].append(f"entry_without_edges:{entry.id}")
        resolution = resolve(entry)
        if resolution.found:
            return InitialMessage(
                text=resolution.text,
                node_id=entry.id,
                source=resolution.source,
                branch=InitialMessageBranch.ENTRY_NODE,
                diagnostic=diagnostic,
            )
        diagnostic["entry_node_failure"] = resolution.diagnostic
        return _scan_for_message(graph, diagnostic)

    diagnostic["steps"].append(f"entry_target:{first.target}")
    target = graph.nodes.get(first.target)
    if target is not None:
        resolution = resolve(target)
        if resolution.found:
            return InitialMessage(
                text=resolution.text,
                node_id=target.id,
                source=resolution.source,
                branch=InitialMessageBranch.ENTRY_TARGET,
                diagnostic=diagnostic,
            )
        diagnostic["entry_target_failure"] = resolution.diagnostic
    else:
        diagnostic["entry_target_failure"] = {"reason": f"target '{first.target}' missing"}

    return _scan_for_message(graph, diagnostic)
