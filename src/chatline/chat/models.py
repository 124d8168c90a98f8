"""Chat data models."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class MessageRole(str, Enum):
    """Message author role.

    The persisted and wire value for assistant messages is ``"ai"``;
    ``"assistant"`` is accepted on input.
    """

    USER = "user"
    ASSISTANT = "ai"

    @classmethod
    def _missing_(cls, value: object) -> MessageRole | None:
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered == "assistant":
                return cls.ASSISTANT
            for member in cls:
                if member.value == lowered:
                    return member
        return None

    @property
    def openai_role(self) -> str:
        """Role name understood by chat-completion APIs."""
        return "user" if self is MessageRole.USER else "assistant"


class Message(BaseModel):
    """A persisted chat message. Immutable once stored."""

    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    role: MessageRole
    text: str
    timestamp: datetime

    @classmethod
    def from_db_row(cls, row: dict) -> Message:
        """Create from database row."""
        timestamp = row["timestamp"]
        if isinstance(timestamp, str):
            timestamp = datetime.fromisoformat(timestamp)
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            role=MessageRole(row["sender"]),
            text=row["text"],
            timestamp=timestamp,
        )

    def to_public(self) -> dict[str, Any]:
        """Client-facing shape: ``{id, text, sender, timestamp}``."""
        return {
            "id": self.id,
            "text": self.text,
            "sender": self.role.value,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class TranscriptTurn:
    """One (role, text) entry of a conversation transcript."""

    role: MessageRole
    text: str

    @classmethod
    def from_message(cls, message: Message) -> TranscriptTurn:
        return cls(role=message.role, text=message.text)


# API Request/Response models


class CreateMessageRequest(BaseModel):
    """Request to persist a message."""

    text: str = Field(..., min_length=1, max_length=100000)
    sender: MessageRole = MessageRole.USER

    @field_validator("text")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("text must not be blank")
        return value


class MessageResponse(BaseModel):
    """Message as returned to clients."""

    id: str
    text: str
    sender: MessageRole
    timestamp: datetime

    @classmethod
    def from_message(cls, message: Message) -> MessageResponse:
        return cls(
            id=message.id,
            text=message.text,
            sender=message.role,
            timestamp=message.timestamp,
        )


class TranscriptEntry(BaseModel):
    """A transcript entry supplied by the client."""

    sender: MessageRole
    text: str = Field(..., max_length=100000)

    def to_turn(self) -> TranscriptTurn:
        return TranscriptTurn(role=self.sender, text=self.text)


class CompletionRequest(BaseModel):
    """Full transcript, oldest first."""

    messages: list[TranscriptEntry] = Field(..., min_length=1, max_length=500)


class CompletionResponse(BaseModel):
    """AI reply to a transcript."""

    reply: str


class SendTurnRequest(BaseModel):
    """Request to run a full human->AI turn."""

    text: str = Field(..., min_length=1, max_length=100000)

    @field_validator("text")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("text must not be blank")
        return value


class TurnResponse(BaseModel):
    """Outcome of a human->AI turn."""

    reply: str
    state: str
    degraded: bool = False
    error: str | None = None
    user_message: MessageResponse | None = None
    assistant_message: MessageResponse | None = None
