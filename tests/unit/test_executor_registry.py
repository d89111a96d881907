"""
Unit tests for the ExecutorRegistry error boundary.

Tests coverage:
- Dispatch by kind
- Exceptions and timeouts become the kind's error branch
- Context is left untouched on failure
- Unregistered kinds raise StructuralError
- build_registry() wires every executor kind
"""

import asyncio

import pytest

from chatflow.executors import build_registry
from chatflow.executors.base import (
    DEFAULT_ERROR_MESSAGE,
    Branch,
    ExecutionResult,
    ExecutorRegistry,
    config_flag,
    config_value,
)
from chatflow.flow.models import NodeKind, StructuralError


class TestExecutorRegistry:
    """Test registration and the catch-all boundary."""

    @pytest.mark.asyncio
    async def test_dispatches_to_registered_executor(self, context):
        async def executor(tenant_id, ctx, config):
            return ExecutionResult.of(Branch.RESPONSE, f"{tenant_id}:{config['x']}", ctx.merge({"y": 1}))

        registry = ExecutorRegistry()
        registry.register(NodeKind.TEXT_GENERATION, executor)

        result = await registry.execute(NodeKind.TEXT_GENERATION, "tenant-1", context, {"x": "a"})

        assert result.next_branch == Branch.RESPONSE
        assert result.outputs.message == "tenant-1:a"
        assert result.outputs.context.get("y") == 1

    @pytest.mark.asyncio
    async def test_exception_becomes_error_branch(self, context):
        async def executor(tenant_id, ctx, config):
            raise RuntimeError("provider exploded")

        registry = ExecutorRegistry()
        registry.register(NodeKind.BOOK_APPOINTMENT, executor, error_message="No se pudo reservar")

        result = await registry.execute(NodeKind.BOOK_APPOINTMENT, "tenant-1", context, {})

        assert result.next_branch == Branch.ERROR
        assert result.outputs.message == "No se pudo reservar"
        assert result.outputs.context is context

    @pytest.mark.asyncio
    async def test_custom_error_branch(self, context):
        async def executor(tenant_id, ctx, config):
            raise ValueError("bad id")

        registry = ExecutorRegistry()
        registry.register(NodeKind.CANCEL_APPOINTMENT, executor, error_branch=Branch.FAILURE)

        result = await registry.execute(NodeKind.CANCEL_APPOINTMENT, "tenant-1", context, {})

        assert result.next_branch == Branch.FAILURE
        assert result.outputs.message == DEFAULT_ERROR_MESSAGE

    @pytest.mark.asyncio
    async def test_timeout_becomes_error_branch(self, context):
        async def executor(tenant_id, ctx, config):
            await asyncio.sleep(5)

        registry = ExecutorRegistry(timeout_seconds=0.01)
        registry.register(NodeKind.AVAILABILITY_CHECK, executor)

        result = await registry.execute(NodeKind.AVAILABILITY_CHECK, "tenant-1", context, {})

        assert result.next_branch == Branch.ERROR
        assert result.outputs.context is context

    @pytest.mark.asyncio
    async def test_unregistered_kind_raises(self, context):
        with pytest.raises(StructuralError) as exc_info:
            await ExecutorRegistry().execute(NodeKind.CATALOG_LISTING, "tenant-1", context, {})

        assert exc_info.value.diagnostic["node_kind"] == "catalog-listing"

    def test_build_registry_covers_executor_kinds(self, providers):
        registry = build_registry(providers)

        assert set(registry.kinds()) == {
            NodeKind.AVAILABILITY_CHECK,
            NodeKind.BOOK_APPOINTMENT,
            NodeKind.RESCHEDULE_APPOINTMENT,
            NodeKind.CANCEL_APPOINTMENT,
            NodeKind.LEAD_QUALIFICATION,
            NodeKind.CATALOG_LISTING,
            NodeKind.TEXT_GENERATION,
            NodeKind.CONDITION,
        }
        assert registry.get(NodeKind.BOOK_APPOINTMENT).side_effecting
        assert not registry.get(NodeKind.CATALOG_LISTING).side_effecting
        assert registry.get(NodeKind.RESCHEDULE_APPOINTMENT).error_branch == Branch.FAILURE


class TestConfigHelpers:
    """Test config_value / config_flag."""

    def test_config_value_first_non_empty(self):
        assert config_value({"a": "", "b": "x"}, "a", "b") == "x"
        assert config_value({}, "a", default=3) == 3

    @pytest.mark.parametrize("value,expected", [(True, True), ("true", True), ("sí", True), ("no", False), (0, False)])
    def test_config_flag(self, value, expected):
        assert config_flag({"flag": value}, "flag") is expected
