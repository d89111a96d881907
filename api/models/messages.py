"""Pydantic models for the message and flow tooling routes."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class MessageRequest(BaseModel):
    """Inbound user message posted by a channel adapter."""
    model_config = ConfigDict(extra="allow")

    tenant_id: str = Field(..., min_length=1)
    session_id: str = Field(..., min_length=1)
    text: str = ""
    message_id: str | None = None


class MessageResponse(BaseModel):
    """Outbound reply for one turn."""

    status: str = "ok"
    session_id: str
    messages: list[str]
    session_status: str
    duplicate: bool = False


class FlowValidationRequest(BaseModel):
    """Raw flow definition as exported by the visual builder."""
    model_config = ConfigDict(extra="allow")

    id: str | None = None
    nodes: list[dict[str, Any]] = []
    edges: list[dict[str, Any]] = []


class FlowValidationResponse(BaseModel):
    valid: bool
    flow_id: str | None = None
    node_count: int = 0
    edge_count: int = 0
    issues: list[dict[str, Any]] = []
    initial_message: dict[str, Any] | None = None
