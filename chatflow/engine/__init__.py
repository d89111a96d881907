"""
Flow execution engine.

- interpreter: FlowInterpreter, one turn of graph traversal
- dispatcher: ConversationEngine, per-session serialization and failure policy
"""

from chatflow.engine.dispatcher import (
    ConversationEngine,
    EngineReply,
    FlowRepository,
    InboundMessage,
    build_engine,
)
from chatflow.engine.interpreter import FlowInterpreter, TurnResult

__all__ = [
    "ConversationEngine",
    "EngineReply",
    "FlowInterpreter",
    "FlowRepository",
    "InboundMessage",
    "TurnResult",
    "build_engine",
]
