#!/usr/bin/env python3
"""
Validate a flow definition before publishing it.

Loads the JSON file exported by the visual builder, runs the structural
checks and resolves the opening message, then prints a JSON report.

Usage:
------
python scripts/validate_flow.py flows/demo.json [--strict]

Options:
  --strict   Treat warnings (e.g. unreachable nodes) as failures

Exit codes:
  0  Flow loads and has no error-level issues
  1  Flow cannot be loaded or has error-level issues
"""

import json
import logging
import sys
from argparse import ArgumentParser
from dataclasses import asdict

from chatflow.flow import StructuralError, find_initial_message, load_flow_file, validate_flow_graph
from chatflow.flow.models import FlowGraph
from chatflow.flow.resolver import is_message_node, resolve

# Configure logging
logging.basicConfig(
    level=logging.WARNING,
    format="%(asctime)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def resolver_report(graph: FlowGraph) -> list[dict]:
    """Resolver outcome for every message-like node, in declaration order."""
    report = []
    for node in graph.nodes.values():
        if not is_message_node(node):
            continue
        resolution = resolve(node)
        report.append({
            "node_id": node.id,
            "kind": node.kind.value,
            "text": resolution.text,
            "source": resolution.source,
            "diagnostic": resolution.diagnostic,
        })
    return report


def build_report(path: str) -> tuple[dict, bool]:
    """Return (report, ok) for one flow file."""
    try:
        graph = load_flow_file(path)
    except StructuralError as e:
        return {"path": path, "loaded": False, "error": str(e), "diagnostic": e.diagnostic}, False

    issues = validate_flow_graph(graph)
    initial = find_initial_message(graph)
    initial_payload = asdict(initial)
    initial_payload["branch"] = initial.branch.value

    report = {
        "path": path,
        "loaded": True,
        "flow_id": graph.flow_id,
        "node_count": len(graph.nodes),
        "edge_count": len(graph.edges),
        "issues": issues,
        "initial_message": initial_payload,
        "message_nodes": resolver_report(graph),
    }
    return report, not any(issue["severity"] == "error" for issue in issues)


def main() -> int:
    parser = ArgumentParser(description="Validate a chat flow definition")
    parser.add_argument("path", help="Path to the flow JSON file")
    parser.add_argument("--strict", action="store_true", help="Fail on warnings too")
    args = parser.parse_args()

    try:
        report, ok = build_report(args.path)
    except FileNotFoundError:
        logger.error(f"Flow file not found: {args.path}")
        return 1

    if args.strict and report.get("issues"):
        ok = False

    print(json.dumps(report, indent=2, ensure_ascii=False))
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
