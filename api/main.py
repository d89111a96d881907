"""
FastAPI API Service Entry Point
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from api.routes import flows, messages
from shared.circuit_breaker import get_breaker_status
from shared.logging_config import configure_logging

# Configure structured JSON logging on startup
configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Chatflow Engine API",
    version="1.0.0",
)

# Inbound messages from channel adapters
app.include_router(messages.router, tags=["messages"])

# Flow authoring tooling
app.include_router(flows.router, tags=["flows"])


# Exception handler for validation errors
@app.exception_handler(ValidationError)
async def validation_exception_handler(request: Request, exc: ValidationError) -> JSONResponse:
    """Return 400 with validation error details."""
    return JSONResponse(
        status_code=400,
        content={"error": "Validation error", "details": exc.errors(include_url=False)},
    )


@app.get("/health")
async def health_check() -> JSONResponse:
    """
    Health check endpoint for Docker health checks and monitoring.

    Checks:
    - Redis connectivity (PING command), only when sessions live in Redis
    - Circuit breaker states of the external providers

    Returns:
        200 OK if all systems healthy
        503 Service Unavailable if degraded
    """
    from shared.config import get_settings
    from shared.redis_client import get_redis_client

    health_status = {
        "status": "healthy",
        "redis": "not_used",
        "circuit_breakers": get_breaker_status(),
    }
    status_code = 200

    if get_settings().SESSION_BACKEND == "redis":
        try:
            redis_client = get_redis_client()
            await redis_client.ping()
            health_status["redis"] = "connected"
        except Exception:
            health_status["redis"] = "disconnected"
            health_status["status"] = "degraded"
            status_code = 503

    return JSONResponse(status_code=status_code, content=health_status)


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint"""
    return {"message": "Chatflow Engine API - Use /health for health checks"}
