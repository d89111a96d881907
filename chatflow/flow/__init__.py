"""
Flow graph package.

- models: FlowGraph, Node, Edge, NodeKind, StructuralError
- loader: raw definition parsing and validation
- resolver: message resolution with diagnostics
"""

from chatflow.flow.loader import load_flow_file, load_flow_graph, validate_flow_graph
from chatflow.flow.models import Edge, FlowGraph, Node, NodeKind, StructuralError
from chatflow.flow.resolver import (
    InitialMessage,
    InitialMessageBranch,
    MessageResolution,
    find_entry_node,
    find_initial_message,
    resolve,
)

__all__ = [
    "Edge",
    "FlowGraph",
    "InitialMessage",
    "InitialMessageBranch",
    "MessageResolution",
    "Node",
    "NodeKind",
    "StructuralError",
    "find_entry_node",
    "find_initial_message",
    "load_flow_file",
    "load_flow_graph",
    "resolve",
    "validate_flow_graph",
]
