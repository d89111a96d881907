"""Flow authoring tooling: validate a definition before publishing it."""

import logging
from dataclasses import asdict

from fastapi import APIRouter, HTTPException

from api.models.messages import FlowValidationRequest, FlowValidationResponse
from chatflow.flow import StructuralError, find_initial_message, load_flow_graph, validate_flow_graph

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/flows")


@router.post("/validate", response_model=FlowValidationResponse)
async def validate_flow(payload: FlowValidationRequest) -> FlowValidationResponse:
    """
    Load a flow definition and report issues plus the resolved greeting.

    Raises:
        HTTPException 422: The definition cannot be loaded at all
    """
    try:
        graph = load_flow_graph(payload.model_dump(), flow_id=payload.id)
    except StructuralError as e:
        logger.info(f"Flow definition rejected: {e}")
        raise HTTPException(status_code=422, detail=e.diagnostic) from e

    issues = validate_flow_graph(graph)
    initial = find_initial_message(graph)
    initial_payload = asdict(initial)
    initial_payload["branch"] = initial.branch.value

    return FlowValidationResponse(
        valid=not any(issue["severity"] == "error" for issue in issues),
        flow_id=graph.flow_id,
        node_count=len(graph.nodes),
        edge_count=len(graph.edges),
        issues=issues,
        initial_message=initial_payload,
    )
