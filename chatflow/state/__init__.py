"""
Conversation state package.

- context: ExecutionContext and {{variable}} templating
- schemas: ConversationSession, SessionStatus, transcript entries
- store: SessionStore protocol with in-memory and Redis implementations
"""

from chatflow.state.context import ExecutionContext
from chatflow.state.schemas import (
    ConversationSession,
    MessageDirection,
    SessionStatus,
    TranscriptEntry,
)
from chatflow.state.store import (
    InMemorySessionStore,
    KeyedLocks,
    RedisSessionStore,
    SessionStore,
)

__all__ = [
    "ConversationSession",
    "ExecutionContext",
    "InMemorySessionStore",
    "KeyedLocks",
    "MessageDirection",
    "RedisSessionStore",
    "SessionStatus",
    "SessionStore",
    "TranscriptEntry",
]
