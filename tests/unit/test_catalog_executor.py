"""Unit tests for the catalog-listing and text-generation executors."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from chatflow.executors import build_registry
from chatflow.executors.base import Branch
from chatflow.executors.catalog import DEFAULT_LIMIT, execute_catalog_listing, format_services
from chatflow.executors.text_generation import MISSING_PROMPT_MESSAGE, execute_text_generation
from chatflow.flow.models import NodeKind
from chatflow.services import Providers
from chatflow.services.catalog import CatalogItem
from chatflow.services.errors import ExternalServiceError


class TestCatalogListing:
    """Test product and service listings."""

    @pytest.mark.asyncio
    async def test_lists_provider_products(self, context):
        catalog = AsyncMock()
        catalog.list_items.return_value = [
            CatalogItem(id="p1", name="Champú", price=12.5, currency="EUR", stock=3),
        ]

        result = await execute_catalog_listing(
            "tenant-1", context, {"catalog": "products", "limit": 2}, catalog=catalog
        )

        assert result.next_branch == Branch.RESPONSE
        assert result.outputs.message.startswith("Estos son nuestros productos disponibles:")
        assert "1. Champú: EUR 12.5 (3 disponibles)" in result.outputs.message
        assert result.outputs.context.get("products")[0]["name"] == "Champú"
        catalog.list_items.assert_awaited_once_with(
            "tenant-1", "products", category_id=None, limit=2, sort_by=None, sort_direction="asc"
        )

    @pytest.mark.asyncio
    async def test_provider_failure_falls_back_to_examples(self, context):
        catalog = AsyncMock()
        catalog.list_items.side_effect = ExternalServiceError("catalog", "HTTP 500", 500)

        result = await execute_catalog_listing(
            "tenant-1", context, {"catalog": "services"}, catalog=catalog
        )

        assert result.next_branch == Branch.RESPONSE
        assert "servicios" in result.outputs.message
        assert len(result.outputs.context.get("services")) == 3
        assert result.outputs.context.get("services_list")

    @pytest.mark.asyncio
    async def test_slow_provider_falls_back_to_examples(self, context):
        async def slow_list_items(*args, **kwargs):
            await asyncio.sleep(5)
            return []

        catalog = AsyncMock()
        catalog.list_items.side_effect = slow_list_items

        result = await execute_catalog_listing(
            "tenant-1", context, {"catalog": "products"}, catalog=catalog, fetch_timeout=0.05
        )

        assert result.next_branch == Branch.RESPONSE
        assert "Producto Premium" in result.outputs.message

    @pytest.mark.asyncio
    async def test_slow_provider_through_registry_shows_examples(self, context):
        """The fetch gives up before the registry timeout, so the examples are still rendered."""
        async def slow_list_items(*args, **kwargs):
            await asyncio.sleep(5)
            return []

        catalog = AsyncMock()
        catalog.list_items.side_effect = slow_list_items
        registry = build_registry(
            Providers(scheduling=AsyncMock(), catalog=catalog, crm=None, text_generator=AsyncMock()),
            timeout_seconds=0.2,
        )

        result = await registry.execute(NodeKind.CATALOG_LISTING, "tenant-1", context, {})

        assert result.next_branch == Branch.RESPONSE
        assert "Producto Premium" in result.outputs.message

    @pytest.mark.asyncio
    @pytest.mark.parametrize("limit", ["{{limit}}", "cinco", None, 0, -2])
    async def test_invalid_limit_uses_default(self, context, limit):
        result = await execute_catalog_listing("tenant-1", context, {"catalog": "products", "limit": limit})

        assert result.next_branch == Branch.RESPONSE
        assert len(result.outputs.context.get("products")) <= DEFAULT_LIMIT
        assert "Premium" in result.outputs.message

    @pytest.mark.asyncio
    async def test_without_provider_uses_examples(self, context):
        result = await execute_catalog_listing("tenant-1", context, {})

        assert result.next_branch == Branch.RESPONSE
        assert "Premium" in result.outputs.message

    @pytest.mark.asyncio
    async def test_custom_template(self, context):
        result = await execute_catalog_listing(
            "tenant-1",
            context.merge({"name": "Ana"}),
            {"catalog": "services", "messageTemplate": "{{name}}, mira:\n{{services_list}}", "limit": 1},
        )

        assert result.outputs.message.startswith("Ana, mira:\n1. ")
        assert "2. " not in result.outputs.message

    def test_format_services(self):
        text = format_services([CatalogItem(id="s", name="Corte", price=20, duration_minutes=45)])

        assert text == "1. Corte: $20 (Duración: 45 min)"


class TestTextGeneration:
    """Test the text-generation executor."""

    @pytest.mark.asyncio
    async def test_stores_reply(self, context):
        generator = AsyncMock()
        generator.generate.return_value = "Claro, te ayudo."

        result = await execute_text_generation(
            "tenant-1",
            context.merge({"name": "Ana"}),
            {"prompt": "Saluda a {{name}}", "systemPrompt": "Eres amable", "responseVariableName": "reply"},
            generator=generator,
        )

        assert result.next_branch == Branch.RESPONSE
        assert result.outputs.message == "Claro, te ayudo."
        assert result.outputs.context.get("reply") == "Claro, te ayudo."
        generator.generate.assert_awaited_once_with("Saluda a Ana", system_prompt="Eres amable")

    @pytest.mark.asyncio
    async def test_empty_prompt_is_error(self, context):
        result = await execute_text_generation("tenant-1", context, {}, generator=AsyncMock())

        assert result.next_branch == Branch.ERROR
        assert result.outputs.message == MISSING_PROMPT_MESSAGE
