"""
Session schemas.

ConversationSession is what the Session Store persists between turns: the
node pointer, the committed context variables and the interpreter status.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from chatflow.state.context import ExecutionContext


class SessionStatus(str, Enum):
    """
    Interpreter state of a conversation.

    A session that does not exist yet is "idle"; that state is never persisted.
    """

    ACTIVE = "active"
    SUSPENDED = "suspended"
    COMPLETED = "completed"
    FAILED = "failed"


class MessageDirection(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class TranscriptEntry(BaseModel):
    session_id: str
    direction: MessageDirection
    text: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class ConversationSession(BaseModel):
    """Persisted conversation state for one user/channel pair."""

    session_id: str
    tenant_id: str
    current_node_id: str | None = None
    status: SessionStatus = SessionStatus.ACTIVE
    variables: dict[str, Any] = Field(default_factory=dict)

    # Capture variable the suspended node is waiting for
    waiting_for: str | None = None

    # Redelivery detection: id of the last processed inbound message and
    # the outbound text it produced
    last_inbound_id: str | None = None
    last_outbound: list[str] = Field(default_factory=list)

    # Operator-facing diagnostic of the last StructuralError
    last_error: dict[str, Any] | None = None

    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def to_context(self) -> ExecutionContext:
        return ExecutionContext(
            tenant_id=self.tenant_id,
            session_id=self.session_id,
            variables=self.variables,
            current_node_id=self.current_node_id,
        )
