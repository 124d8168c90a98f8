"""Chat module: message persistence and the human->AI turn."""

from .models import Message, MessageRole, TranscriptTurn
from .message_store import MessageStore
from .orchestrator import (
    GATEWAY_FAILURE_FALLBACK,
    ChatOrchestrator,
    Operation,
    RequestContext,
    TurnResult,
    TurnState,
)

__all__ = [
    "GATEWAY_FAILURE_FALLBACK",
    "ChatOrchestrator",
    "Message",
    "MessageRole",
    "MessageStore",
    "Operation",
    "RequestContext",
    "TranscriptTurn",
    "TurnResult",
    "TurnState",
]
