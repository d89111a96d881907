"""Lead CRM provider: moves qualified leads through the sales funnel."""

import logging
from typing import Protocol

from chatflow.services.http import JsonApiClient
from shared.circuit_breaker import crm_breaker

logger = logging.getLogger(__name__)

# Funnel stage per qualification level
STAGE_BY_LEVEL = {
    "high": "opportunity",
    "medium": "qualification",
    "low": "prospecting",
}


class LeadCrmProvider(Protocol):
    async def update_lead_stage(
        self, tenant_id: str, lead_id: str, stage: str, score: int
    ) -> None: ...


class HttpCrmClient(JsonApiClient):
    service_name = "crm"

    def __init__(self, base_url: str, timeout: float = 10.0):
        super().__init__(base_url, crm_breaker, timeout=timeout)

    async def update_lead_stage(
        self, tenant_id: str, lead_id: str, stage: str, score: int
    ) -> None:
        await self.request(
            "PATCH",
            f"/tenants/{tenant_id}/leads/{lead_id}",
            json={"stage": stage, "score": score},
        )
        logger.info(
            f"Lead {lead_id} moved to stage '{stage}' (score={score})",
            extra={"tenant_id": tenant_id},
        )
