"""
Conversation Engine (per-session dispatcher).

Entry point for every inbound message. For one message it:

1. Serializes on the session id: an in-process lock first, then the
   store's session lock (a Redis lock when sessions live in Redis, so the
   API and every stream worker take turns). Different sessions run
   concurrently
2. Loads the tenant's FlowGraph and the persisted session
3. Drops redelivered messages (same message_id as the last processed one)
   and replays the previous reply instead of re-running side effects
4. Runs one interpreter turn and persists the resulting session
5. On StructuralError marks the session failed, stores the diagnostic and
   answers with the configured fallback message

Completed and failed sessions restart at the entry node on the next
message, keeping their variables.
"""

import logging
from pathlib import Path

from pydantic import BaseModel, Field

from chatflow.engine.interpreter import FlowInterpreter, TurnResult
from chatflow.executors import build_registry
from chatflow.flow.loader import load_flow_file
from chatflow.flow.models import FlowGraph, StructuralError
from chatflow.services import build_providers
from chatflow.state.schemas import ConversationSession, MessageDirection, SessionStatus
from chatflow.state.store import (
    InMemorySessionStore,
    KeyedLocks,
    RedisSessionStore,
    SessionStore,
)
from shared.config import Settings, get_settings
from shared.redis_client import get_redis_client

logger = logging.getLogger(__name__)

RESTARTABLE_STATUSES = (SessionStatus.COMPLETED, SessionStatus.FAILED)


class InboundMessage(BaseModel):
    """One user message addressed to a tenant's flow."""

    tenant_id: str = Field(..., min_length=1)
    session_id: str = Field(..., min_length=1)
    text: str = ""
    message_id: str | None = None


class EngineReply(BaseModel):
    """What the engine answers for one inbound message."""

    session_id: str
    messages: list[str] = Field(default_factory=list)
    status: SessionStatus
    duplicate: bool = False

    @property
    def text(self) -> str:
        return "\n\n".join(self.messages)


class FlowRepository:
    """
    Per-tenant FlowGraph cache.

    Flows are read from `{directory}/{tenant_id}.json` on first use, or
    registered programmatically with register().
    """

    def __init__(self, directory: str | Path | None = None):
        self.directory = Path(directory) if directory else None
        self._graphs: dict[str, FlowGraph] = {}

    def register(self, tenant_id: str, graph: FlowGraph) -> None:
        self._graphs[tenant_id] = graph

    def invalidate(self, tenant_id: str) -> None:
        self._graphs.pop(tenant_id, None)

    def get(self, tenant_id: str) -> FlowGraph:
        """
        Raises:
            StructuralError: No flow defined for the tenant, or the file is malformed
        """
        graph = self._graphs.get(tenant_id)
        if graph is not None:
            return graph

        if self.directory is None:
            raise StructuralError(f"No flow registered for tenant '{tenant_id}'", {"tenant_id": tenant_id})

        path = self.directory / f"{tenant_id}.json"
        if not path.is_file():
            raise StructuralError(
                f"No flow definition for tenant '{tenant_id}'",
                {"tenant_id": tenant_id, "path": str(path)},
            )

        graph = load_flow_file(path)
        self._graphs[tenant_id] = graph
        logger.info(
            f"Loaded flow '{graph.flow_id}' with {len(graph.nodes)} nodes",
            extra={"tenant_id": tenant_id},
        )
        return graph


class ConversationEngine:
    """
    Serializes turns per session and owns the failure policy.

    Example:
        >>> engine = ConversationEngine(store, flows, interpreter)
        >>> reply = await engine.handle_message(
        ...     InboundMessage(tenant_id="acme", session_id="wa-123", text="Hola", message_id="m-1")
        ... )
        >>> reply.messages, reply.status
    """

    def __init__(
        self,
        store: SessionStore,
        flows: FlowRepository,
        interpreter: FlowInterpreter,
        fallback_message: str | None = None,
    ):
        self.store = store
        self.flows = flows
        self.interpreter = interpreter
        self.fallback_message = fallback_message or get_settings().FALLBACK_ERROR_MESSAGE
        self.locks = KeyedLocks()

    async def handle_message(self, message: InboundMessage) -> EngineReply:
        async with self.locks.hold(message.session_id):
            async with self.store.session_lock(message.session_id):
                return await self._handle_locked(message)

    async def _handle_locked(self, message: InboundMessage) -> EngineReply:
        log_extra = {"tenant_id": message.tenant_id, "session_id": message.session_id}

        session = await self.store.load_session(message.session_id)

        if (
            session is not None
            and message.message_id is not None
            and session.last_inbound_id == message.message_id
        ):
            logger.info(
                f"Duplicate delivery of message {message.message_id}, replaying previous reply",
                extra=log_extra,
            )
            return EngineReply(
                session_id=session.session_id,
                messages=list(session.last_outbound),
                status=session.status,
                duplicate=True,
            )

        if session is None:
            session = ConversationSession(session_id=message.session_id, tenant_id=message.tenant_id)
            logger.info("Starting new conversation session", extra=log_extra)
        elif session.status in RESTARTABLE_STATUSES:
            logger.info(
                f"Restarting {session.status.value} session at entry node",
                extra=log_extra,
            )
            session = session.model_copy(
                update={
                    "status": SessionStatus.ACTIVE,
                    "current_node_id": None,
                    "waiting_for": None,
                }
            )

        await self.store.append_message(session.session_id, message.text, MessageDirection.INBOUND)

        try:
            graph = self.flows.get(message.tenant_id)
            result: TurnResult = await self.interpreter.run_turn(graph, session, message.text)
            session = result.session
            messages = result.messages
            session.last_error = None

            logger.info(
                f"Turn finished: status={session.status.value} node={session.current_node_id} "
                f"hops={len(result.visited)}",
                extra=log_extra,
            )

        except StructuralError as e:
            logger.error(
                f"Flow structural error: {e}",
                extra={**log_extra, "node_id": e.diagnostic.get("node_id")},
            )
            partial_context = getattr(e, "context", None)
            session = session.model_copy(
                update={
                    "status": SessionStatus.FAILED,
                    "last_error": e.diagnostic,
                    "waiting_for": None,
                    "variables": (
                        dict(partial_context.variables) if partial_context is not None
                        else session.variables
                    ),
                }
            )
            messages = [self.fallback_message]

        session.last_inbound_id = message.message_id
        session.last_outbound = list(messages)

        for text in messages:
            await self.store.append_message(session.session_id, text, MessageDirection.OUTBOUND)
        await self.store.save_session(session)

        return EngineReply(session_id=session.session_id, messages=messages, status=session.status)


def build_session_store(settings: Settings) -> SessionStore:
    if settings.SESSION_BACKEND == "memory":
        return InMemorySessionStore()
    return RedisSessionStore(
        get_redis_client(),
        ttl_seconds=settings.SESSION_TTL_SECONDS,
        lock_timeout=settings.SESSION_LOCK_TIMEOUT_SECONDS,
        lock_wait=settings.SESSION_LOCK_WAIT_SECONDS,
    )


def build_engine(settings: Settings | None = None) -> ConversationEngine:
    """Wire store, flow repository, providers, registry and interpreter from settings."""
    settings = settings or get_settings()
    registry = build_registry(
        build_providers(settings),
        timeout_seconds=settings.EXECUTOR_TIMEOUT_SECONDS,
        timezone=settings.TIMEZONE,
    )
    return ConversationEngine(
        store=build_session_store(settings),
        flows=FlowRepository(settings.FLOW_DEFINITIONS_DIR),
        interpreter=FlowInterpreter(registry, max_hops=settings.FLOW_MAX_HOPS),
        fallback_message=settings.FALLBACK_ERROR_MESSAGE,
    )
