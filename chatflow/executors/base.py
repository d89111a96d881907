"""
Node Executor contract and registry.

Every side-effecting node kind is implemented by one async function with the
uniform contract:

    async def execute(tenant_id, context, config) -> ExecutionResult

registered by kind in an ExecutorRegistry. Executors never commit state:
they return a new ExecutionContext inside ExecutionResult.outputs and the
interpreter decides whether to keep it.

The registry is the error boundary. Every call is bounded by a timeout and
any exception (provider failure, timeout, bug) becomes the kind's error
branch plus a user-safe message, with the context left as it was before the
call.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping

from chatflow.flow.models import NodeKind, StructuralError
from chatflow.state.context import ExecutionContext

logger = logging.getLogger(__name__)


class Branch:
    """Sentinel branch vocabulary shared with flow authors."""

    SUCCESS = "success"
    FAILURE = "failure"
    ERROR = "error"
    RESPONSE = "response"
    AVAILABLE = "available"
    NOT_AVAILABLE = "not_available"
    QUALIFIED = "qualified"
    NOT_QUALIFIED = "not_qualified"
    NEED_REASON = "needReason"
    NEED_DATE_TIME = "needDateTime"
    DEFAULT = "default"


DEFAULT_ERROR_MESSAGE = (
    "Lo siento, hubo un problema al procesar tu solicitud. "
    "Por favor, intenta nuevamente."
)

# Context key set by executors that need one more piece of user input
AWAITING_INPUT_KEY = "awaiting_input"


@dataclass(frozen=True)
class ExecutionOutputs:
    message: str
    context: ExecutionContext


@dataclass(frozen=True)
class ExecutionResult:
    next_branch: str
    outputs: ExecutionOutputs

    @classmethod
    def of(cls, branch: str, message: str, context: ExecutionContext) -> "ExecutionResult":
        return cls(next_branch=branch, outputs=ExecutionOutputs(message=message, context=context))


ExecutorFunc = Callable[[str, ExecutionContext, Mapping[str, Any]], Awaitable[ExecutionResult]]


@dataclass(frozen=True)
class RegisteredExecutor:
    kind: NodeKind
    func: ExecutorFunc
    error_branch: str
    error_message: str
    side_effecting: bool


def config_value(config: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    """First non-empty value among alternative config keys (camelCase / snake_case)."""
    for key in keys:
        value = config.get(key)
        if value is not None and value != "":
            return value
    return default


def config_flag(config: Mapping[str, Any], *keys: str) -> bool:
    value = config_value(config, *keys, default=False)
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "si", "sí")
    return bool(value)


class ExecutorRegistry:
    """
    Kind -> executor table with a timeout and catch-all boundary.

    Example:
        >>> registry = ExecutorRegistry(timeout_seconds=10)
        >>> registry.register(NodeKind.CATALOG_LISTING, execute_catalog, error_branch=Branch.RESPONSE)
        >>> result = await registry.execute(NodeKind.CATALOG_LISTING, "tenant-1", context, config)
    """

    def __init__(self, timeout_seconds: float = 10.0):
        self.timeout_seconds = timeout_seconds
        self._executors: dict[NodeKind, RegisteredExecutor] = {}

    def register(
        self,
        kind: NodeKind,
        func: ExecutorFunc,
        error_branch: str = Branch.ERROR,
        error_message: str = DEFAULT_ERROR_MESSAGE,
        side_effecting: bool = False,
    ) -> None:
        self._executors[kind] = RegisteredExecutor(
            kind=kind,
            func=func,
            error_branch=error_branch,
            error_message=error_message,
            side_effecting=side_effecting,
        )

    def get(self, kind: NodeKind) -> RegisteredExecutor | None:
        return self._executors.get(kind)

    def __contains__(self, kind: NodeKind) -> bool:
        return kind in self._executors

    def kinds(self) -> list[NodeKind]:
        return list(self._executors)

    async def execute(
        self,
        kind: NodeKind,
        tenant_id: str,
        context: ExecutionContext,
        config: Mapping[str, Any],
    ) -> ExecutionResult:
        """
        Run the executor registered for `kind`.

        Raises:
            StructuralError: If no executor is registered for the kind
        """
        registered = self._executors.get(kind)
        if registered is None:
            raise StructuralError(
                f"No executor registered for node kind '{kind.value}'",
                {"node_kind": kind.value, "node_id": context.current_node_id},
            )

        log_extra = {
            "tenant_id": tenant_id,
            "session_id": context.session_id,
            "node_id": context.current_node_id,
            "node_kind": kind.value,
        }

        try:
            result = await asyncio.wait_for(
                registered.func(tenant_id, context, config),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.error(
                f"Executor '{kind.value}' timed out after {self.timeout_seconds}s",
                extra=log_extra,
            )
            return ExecutionResult.of(registered.error_branch, registered.error_message, context)
        except Exception as e:
            logger.error(
                f"Executor '{kind.value}' failed: {type(e).__name__}: {e}",
                extra=log_extra,
                exc_info=True,
            )
            return ExecutionResult.of(registered.error_branch, registered.error_message, context)

        logger.info(
            f"Executor '{kind.value}' -> {result.next_branch}",
            extra={**log_extra, "branch": result.next_branch},
        )
        return result
