"""
Session Store / Message Log.

The interpreter only talks to persistence through the narrow SessionStore
protocol:

    load_session(session_id) -> ConversationSession | None
    save_session(session)
    append_message(session_id, text, direction)
    session_lock(session_id) -> async context manager held for one turn

Implementations:
- InMemorySessionStore: process-local, used by tests and single-process demos
- RedisSessionStore: JSON session documents plus a transcript list per
  session, both expiring after SESSION_TTL_SECONDS. The session lock is a
  Redis lock, so the API process and every stream worker sharing the store
  run turns for one session one at a time

Sessions are never deleted by the engine; retention is handled by the TTL.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from datetime import UTC, datetime
from typing import Any, Protocol

from redis import ConnectionError as RedisConnectionError
from redis import TimeoutError as RedisTimeoutError
from redis.asyncio import Redis
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from chatflow.state.schemas import (
    ConversationSession,
    MessageDirection,
    TranscriptEntry,
)

logger = logging.getLogger(__name__)

SESSION_KEY_PREFIX = "chatflow:session:"
TRANSCRIPT_KEY_PREFIX = "chatflow:transcript:"
LOCK_KEY_PREFIX = "chatflow:lock:"
TRANSCRIPT_MAX_ENTRIES = 500


class KeyedLocks:
    """
    One asyncio.Lock per key, discarded once no task holds or waits on it.

    Example:
        >>> locks = KeyedLocks()
        >>> async with locks.hold("wa-123"):
        ...     ...
        >>> len(locks)
        0
    """

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def __contains__(self, key: str) -> bool:
        return key in self._locks

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]


class SessionStore(Protocol):
    """Persistence contract consumed by the engine."""

    async def load_session(self, session_id: str) -> ConversationSession | None: ...

    async def save_session(self, session: ConversationSession) -> None: ...

    async def append_message(
        self, session_id: str, text: str, direction: MessageDirection
    ) -> None: ...

    def session_lock(self, session_id: str) -> AbstractAsyncContextManager[Any]: ...


class InMemorySessionStore:
    """Session store backed by dicts. Stores deep copies so callers cannot mutate state."""

    def __init__(self):
        self.sessions: dict[str, ConversationSession] = {}
        self.transcripts: dict[str, list[TranscriptEntry]] = {}
        self.session_locks = KeyedLocks()
        self._lock = asyncio.Lock()

    def session_lock(self, session_id: str) -> AbstractAsyncContextManager[None]:
        return self.session_locks.hold(session_id)

    async def load_session(self, session_id: str) -> ConversationSession | None:
        session = self.sessions.get(session_id)
        return session.model_copy(deep=True) if session else None

    async def save_session(self, session: ConversationSession) -> None:
        async with self._lock:
            session.updated_at = datetime.now(UTC)
            self.sessions[session.session_id] = session.model_copy(deep=True)

    async def append_message(
        self, session_id: str, text: str, direction: MessageDirection
    ) -> None:
        async with self._lock:
            self.transcripts.setdefault(session_id, []).append(
                TranscriptEntry(session_id=session_id, direction=direction, text=text)
            )

    async def get_transcript(self, session_id: str) -> list[TranscriptEntry]:
        return list(self.transcripts.get(session_id, []))


_redis_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=5),
    retry=retry_if_exception_type((RedisConnectionError, RedisTimeoutError)),
    reraise=True,
)


class RedisSessionStore:
    """
    Session store backed by Redis.

    Key patterns:
        - chatflow:session:{session_id}     JSON ConversationSession
        - chatflow:transcript:{session_id}  list of JSON TranscriptEntry (capped)
        - chatflow:lock:{session_id}        turn lock shared by every process
    """

    def __init__(
        self,
        client: Redis,
        ttl_seconds: int = 604800,
        lock_timeout: float = 60.0,
        lock_wait: float = 30.0,
    ):
        self.client = client
        self.ttl_seconds = ttl_seconds
        self.lock_timeout = lock_timeout
        self.lock_wait = lock_wait

    def session_lock(self, session_id: str) -> AbstractAsyncContextManager[Any]:
        """
        Redis lock serializing turns for one session across processes.

        The lock expires after lock_timeout so a crashed holder cannot block
        the session forever.

        Raises:
            redis.exceptions.LockError: If not acquired within lock_wait seconds
        """
        return self.client.lock(
            f"{LOCK_KEY_PREFIX}{session_id}",
            timeout=self.lock_timeout,
            blocking_timeout=self.lock_wait,
        )

    @_redis_retry
    async def load_session(self, session_id: str) -> ConversationSession | None:
        raw = await self.client.get(f"{SESSION_KEY_PREFIX}{session_id}")
        if raw is None:
            return None
        return ConversationSession.model_validate_json(raw)

    @_redis_retry
    async def save_session(self, session: ConversationSession) -> None:
        session.updated_at = datetime.now(UTC)
        await self.client.set(
            f"{SESSION_KEY_PREFIX}{session.session_id}",
            session.model_dump_json(),
            ex=self.ttl_seconds,
        )
        logger.debug(
            f"Session saved: status={session.status.value} node={session.current_node_id}",
            extra={"session_id": session.session_id, "tenant_id": session.tenant_id},
        )

    @_redis_retry
    async def append_message(
        self, session_id: str, text: str, direction: MessageDirection
    ) -> None:
        key = f"{TRANSCRIPT_KEY_PREFIX}{session_id}"
        entry = TranscriptEntry(session_id=session_id, direction=direction, text=text)
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.rpush(key, entry.model_dump_json())
            pipe.ltrim(key, -TRANSCRIPT_MAX_ENTRIES, -1)
            pipe.expire(key, self.ttl_seconds)
            await pipe.execute()

    async def get_transcript(self, session_id: str) -> list[TranscriptEntry]:
        raw_entries = await self.client.lrange(f"{TRANSCRIPT_KEY_PREFIX}{session_id}", 0, -1)
        return [TranscriptEntry.model_validate_json(raw) for raw in raw_entries]
