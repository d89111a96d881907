"""
Configuration module - Central access point for environment variables.

CRITICAL: Access ALL environment variables through this module.
NEVER use os.getenv() directly in application code.
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Redis
    REDIS_URL: str = Field(
        default="redis://redis:6379/0",
        description="Redis connection string"
    )

    # Session persistence
    SESSION_BACKEND: str = Field(
        default="redis",
        description="Session store backend: 'redis' or 'memory'"
    )
    SESSION_TTL_SECONDS: int = Field(
        default=604800,
        description="TTL for persisted sessions and transcripts (7 days)"
    )
    SESSION_LOCK_TIMEOUT_SECONDS: float = Field(
        default=60.0,
        description="Expiry of the cross-process session lock held during one turn"
    )
    SESSION_LOCK_WAIT_SECONDS: float = Field(
        default=30.0,
        description="How long a turn waits for another process to release the session"
    )

    # Flow definitions
    FLOW_DEFINITIONS_DIR: str = Field(
        default="flows",
        description="Directory holding one <tenant_id>.json flow definition per tenant"
    )
    FLOW_MAX_HOPS: int = Field(
        default=20,
        description="Maximum node traversals in a single turn before the flow is considered cyclic"
    )
    EXECUTOR_TIMEOUT_SECONDS: float = Field(
        default=10.0,
        description="Upper bound for a single node executor call"
    )
    FALLBACK_ERROR_MESSAGE: str = Field(
        default=(
            "Lo siento, ocurrió un error al procesar tu solicitud. "
            "Por favor, intenta nuevamente más tarde."
        ),
        description="Message sent to the end user when a flow is structurally broken"
    )

    # Scheduling service
    SCHEDULING_API_URL: str = Field(
        default="",
        description="Base URL of the scheduling API. Empty uses the in-memory scheduler"
    )
    SCHEDULING_API_TOKEN: str = Field(default="scheduling-token-placeholder")

    # Catalog and CRM services
    CATALOG_API_URL: str = Field(
        default="",
        description="Base URL of the catalog API. Empty falls back to the example catalog"
    )
    CRM_API_URL: str = Field(
        default="",
        description="Base URL of the lead CRM API. Empty disables stage updates"
    )

    # OpenRouter (Unified LLM API)
    OPENROUTER_API_KEY: str = Field(default="sk-or-placeholder")
    LLM_MODEL: str = Field(
        default="openai/gpt-4o-mini",
        description="Model used by text-generation nodes (OpenRouter format)"
    )

    # HTTP API
    API_AUTH_TOKEN: str = Field(
        default="chatflow_api_token_placeholder",
        description="Secret token for the inbound message route (min 24 chars recommended)"
    )

    # Application Settings
    TIMEZONE: str = Field(default="Europe/Madrid")
    LOG_LEVEL: str = Field(default="INFO")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are loaded only once.
    """
    return Settings()
