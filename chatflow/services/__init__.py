"""
Side-effect providers used by node executors.

Providers:
- scheduling: availability, booking, rescheduling, cancellation
- catalog: product/service listing
- crm: lead funnel stage updates
- llm: text generation (OpenRouter)

build_providers() picks HTTP clients when their base URL is configured and
local fallbacks otherwise.
"""

from dataclasses import dataclass

from chatflow.services.catalog import CatalogProvider, HttpCatalogClient
from chatflow.services.crm import HttpCrmClient, LeadCrmProvider
from chatflow.services.errors import ConfigurationError, ExternalServiceError
from chatflow.services.llm import OpenRouterTextGenerator, TextGenerator
from chatflow.services.scheduling import (
    HttpSchedulingClient,
    InMemorySchedulingProvider,
    SchedulingProvider,
)
from shared.config import Settings


@dataclass
class Providers:
    scheduling: SchedulingProvider
    catalog: CatalogProvider | None = None
    crm: LeadCrmProvider | None = None
    text_generator: TextGenerator | None = None


def build_providers(settings: Settings) -> Providers:
    timeout = settings.EXECUTOR_TIMEOUT_SECONDS

    if settings.SCHEDULING_API_URL:
        scheduling: SchedulingProvider = HttpSchedulingClient(
            settings.SCHEDULING_API_URL,
            token=settings.SCHEDULING_API_TOKEN,
            timeout=timeout,
        )
    else:
        scheduling = InMemorySchedulingProvider(timezone=settings.TIMEZONE)

    return Providers(
        scheduling=scheduling,
        catalog=HttpCatalogClient(settings.CATALOG_API_URL, timeout=timeout)
        if settings.CATALOG_API_URL
        else None,
        crm=HttpCrmClient(settings.CRM_API_URL, timeout=timeout) if settings.CRM_API_URL else None,
        text_generator=OpenRouterTextGenerator(
            api_key=settings.OPENROUTER_API_KEY,
            model=settings.LLM_MODEL,
        ),
    )


__all__ = [
    "CatalogProvider",
    "ConfigurationError",
    "ExternalServiceError",
    "LeadCrmProvider",
    "Providers",
    "SchedulingProvider",
    "TextGenerator",
    "build_providers",
]
