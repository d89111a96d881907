"""Inbound message route handler."""

import hmac
import logging
from functools import lru_cache

from fastapi import APIRouter, Depends, HTTPException, Request
from redis.exceptions import LockError

from api.models.messages import MessageRequest, MessageResponse
from chatflow.engine import ConversationEngine, InboundMessage, build_engine
from shared.config import get_settings

logger = logging.getLogger(__name__)

router = APIRouter()


@lru_cache
def get_engine() -> ConversationEngine:
    """Process-wide engine (cached so per-session locks are shared)."""
    return build_engine(get_settings())


@router.post("/messages/{token}", response_model=MessageResponse)
async def receive_message(
    request: Request,
    token: str,
    payload: MessageRequest,
    engine: ConversationEngine = Depends(get_engine),
) -> MessageResponse:
    """
    Run one conversation turn synchronously and return the reply.

    Authentication: Token in URL path must match API_AUTH_TOKEN.

    Raises:
        HTTPException 401: Invalid token
        HTTPException 503: Session busy in another process
    """
    settings = get_settings()

    # Validate token using timing-safe comparison
    if not hmac.compare_digest(token, settings.API_AUTH_TOKEN):
        client_host = request.client.host if request.client else "unknown"
        logger.warning(
            f"Invalid message route token attempted from IP: {client_host}",
            extra={"request_path": request.url.path},
        )
        raise HTTPException(status_code=401, detail="Invalid token")

    inbound = InboundMessage(
        tenant_id=payload.tenant_id,
        session_id=payload.session_id,
        text=payload.text,
        message_id=payload.message_id,
    )
    try:
        reply = await engine.handle_message(inbound)
    except LockError as e:
        logger.warning(
            f"Session lock not acquired: {e}",
            extra={"tenant_id": payload.tenant_id, "session_id": payload.session_id},
        )
        raise HTTPException(status_code=503, detail="Session busy, retry later") from e

    return MessageResponse(
        session_id=reply.session_id,
        messages=reply.messages,
        session_status=reply.status.value,
        duplicate=reply.duplicate,
    )
