"""
Catalog lookup provider (products and services).

When the catalog API is unavailable, or returns nothing, catalog nodes fall
back to EXAMPLE_PRODUCTS / EXAMPLE_SERVICES so the conversation never
dead-ends on a listing step.
"""

import logging
from dataclasses import dataclass
from typing import Any, Protocol

from chatflow.services.http import JsonApiClient
from shared.circuit_breaker import catalog_breaker

logger = logging.getLogger(__name__)

PRODUCTS = "products"
SERVICES = "services"


@dataclass(frozen=True)
class CatalogItem:
    id: str
    name: str
    price: float | None = None
    currency: str = "USD"
    description: str | None = None
    duration_minutes: int | None = None
    stock: int | None = None

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> "CatalogItem":
        return cls(
            id=str(payload.get("id", "")),
            name=payload.get("name", ""),
            price=payload.get("price"),
            currency=payload.get("currency") or "USD",
            description=payload.get("description"),
            duration_minutes=payload.get("duration_minutes"),
            stock=payload.get("stock"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "price": self.price,
            "currency": self.currency,
            "description": self.description,
            "duration_minutes": self.duration_minutes,
            "stock": self.stock,
        }


EXAMPLE_PRODUCTS = [
    CatalogItem("1", "Producto Premium", 299.99, "USD", "Alta calidad para uso profesional", stock=15),
    CatalogItem("2", "Producto Estándar", 149.99, "USD", "Calidad-precio excelente para uso diario", stock=42),
    CatalogItem("3", "Producto Básico", 79.99, "USD", "Solución económica para necesidades básicas", stock=108),
]

EXAMPLE_SERVICES = [
    CatalogItem("1", "Servicio de consultoría básica", 100, "USD", "Asesoramiento inicial para definir necesidades", duration_minutes=60),
    CatalogItem("2", "Servicio de consultoría avanzada", 200, "USD", "Asesoramiento detallado con análisis de casos", duration_minutes=90),
    CatalogItem("3", "Servicio premium", 350, "USD", "Solución integral con seguimiento continuo", duration_minutes=120),
]


class CatalogProvider(Protocol):
    async def list_items(
        self,
        tenant_id: str,
        catalog: str,
        category_id: str | None = None,
        limit: int = 5,
        sort_by: str | None = None,
        sort_direction: str = "asc",
    ) -> list[CatalogItem]: ...


class HttpCatalogClient(JsonApiClient):
    service_name = "catalog"

    def __init__(self, base_url: str, timeout: float = 10.0):
        super().__init__(base_url, catalog_breaker, timeout=timeout)

    async def list_items(
        self,
        tenant_id: str,
        catalog: str,
        category_id: str | None = None,
        limit: int = 5,
        sort_by: str | None = None,
        sort_direction: str = "asc",
    ) -> list[CatalogItem]:
        params: dict[str, Any] = {"limit": limit, "sort_direction": sort_direction}
        if category_id:
            params["category_id"] = category_id
        if sort_by:
            params["sort_by"] = sort_by

        payload = await self.request("GET", f"/tenants/{tenant_id}/{catalog}", params=params)
        items = payload.get("data", []) if isinstance(payload, dict) else payload or []
        return [CatalogItem.from_api(item) for item in items]
