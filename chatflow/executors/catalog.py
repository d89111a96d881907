"""
Catalog-listing executor (products / services).

Always routes to `response`. A failed, slow or empty lookup falls back to the
example catalog so the flow keeps moving.
"""

import asyncio
import logging
from typing import Any, Mapping

from chatflow.executors.base import Branch, ExecutionResult, config_value
from chatflow.services.catalog import (
    EXAMPLE_PRODUCTS,
    EXAMPLE_SERVICES,
    SERVICES,
    CatalogItem,
    CatalogProvider,
)
from chatflow.services.errors import ExternalServiceError
from chatflow.state.context import ExecutionContext

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 5
PRODUCTS_TEMPLATE = "Estos son nuestros productos disponibles:\n{{products_list}}"
SERVICES_TEMPLATE = "Estos son nuestros servicios disponibles:\n{{services_list}}"


def _format_price(item: CatalogItem) -> str:
    if item.price is None:
        return ""
    return f"{item.currency} {item.price:g}"


def format_products(items: list[CatalogItem]) -> str:
    lines = []
    for index, item in enumerate(items, start=1):
        line = f"{index}. {item.name}"
        price = _format_price(item)
        if price:
            line += f": {price}"
        if item.stock is not None:
            line += f" ({item.stock} disponibles)"
        lines.append(line)
        if item.description:
            lines.append(f"   {item.description}")
    return "\n".join(lines)


def format_services(items: list[CatalogItem]) -> str:
    lines = []
    for index, item in enumerate(items, start=1):
        line = f"{index}. {item.name}"
        if item.price is not None:
            line += f": ${item.price:g}"
        if item.duration_minutes:
            line += f" (Duración: {item.duration_minutes} min)"
        lines.append(line)
    return "\n".join(lines)


def _parse_limit(value: Any) -> int:
    try:
        limit = int(value)
    except (TypeError, ValueError):
        return DEFAULT_LIMIT
    return limit if limit > 0 else DEFAULT_LIMIT


async def execute_catalog_listing(
    tenant_id: str,
    context: ExecutionContext,
    config: Mapping[str, Any],
    *,
    catalog: CatalogProvider | None = None,
    fetch_timeout: float | None = None,
) -> ExecutionResult:
    kind = str(config_value(config, "catalog", default="products"))
    is_services = kind == SERVICES
    limit = _parse_limit(config_value(config, "limit", default=DEFAULT_LIMIT))

    items: list[CatalogItem] = []
    if catalog is not None:
        try:
            items = await asyncio.wait_for(
                catalog.list_items(
                    tenant_id,
                    kind,
                    category_id=config_value(config, "categoryId", "category_id"),
                    limit=limit,
                    sort_by=config_value(config, "sortBy", "sort_by"),
                    sort_direction=str(config_value(config, "sortDirection", "sort_direction",
                                                    default="asc")),
                ),
                timeout=fetch_timeout,
            )
        except (ExternalServiceError, ValueError, asyncio.TimeoutError) as e:
            logger.warning(
                f"Catalog lookup failed, using example {kind}: {type(e).__name__}: {e}",
                extra={"tenant_id": tenant_id, "session_id": context.session_id},
            )

    if not items:
        items = list(EXAMPLE_SERVICES if is_services else EXAMPLE_PRODUCTS)

    items = items[:limit]
    list_key = "services_list" if is_services else "products_list"
    formatted = format_services(items) if is_services else format_products(items)

    updated = context.merge({
        kind: [item.to_dict() for item in items],
        list_key: formatted,
    })

    template = config_value(
        config,
        "messageTemplate",
        "message_template",
        default=SERVICES_TEMPLATE if is_services else PRODUCTS_TEMPLATE,
    )
    return ExecutionResult.of(Branch.RESPONSE, updated.render(template), updated)
