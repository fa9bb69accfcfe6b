"""Data models for storage layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Optional

from commerce_copilot.core.types import ConversationKind, MessageRole, ParticipantRole


def utcnow() -> datetime:
    return datetime.now(UTC)


def to_db_time(value: datetime | None) -> str | None:
    """Fixed-width ISO timestamps so lexical order in SQLite equals time order."""
    if value is None:
        return None
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def from_db_time(value: str | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromisoformat(value)


@dataclass
class Conversation:
    id: int
    metadata: dict[str, Any]
    created_at: datetime
    updated_at: datetime
    last_message_at: Optional[datetime] = None
    last_message_id: Optional[int] = None
    deleted_at: Optional[datetime] = None

    @property
    def kind(self) -> ConversationKind | None:
        value = self.metadata.get("type")
        try:
            return ConversationKind(value) if value else None
        except ValueError:
            return None


@dataclass
class Participant:
    id: int
    conversation_id: int
    identity: Optional[str]  # None for the assistant and for an unclaimed seat
    role: ParticipantRole
    unread_count: int = 0
    settings: dict[str, Any] = field(default_factory=dict)

    @property
    def is_placeholder(self) -> bool:
        return self.identity is None and self.role != ParticipantRole.ASSISTANT


@dataclass
class Message:
    id: int
    conversation_id: int
    role: MessageRole
    content: Optional[str]
    created_at: datetime
    sender_participant_id: Optional[int] = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class NewMessage:
    """A message that has not been written yet."""

    role: MessageRole
    content: Optional[str]
    sender_participant_id: Optional[int] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class ConversationContext:
    """A resolved conversation plus the two participants a turn needs."""

    conversation: Conversation
    human: Participant
    assistant: Participant
    created: bool = False


@dataclass
class MessagePage:
    items: list[Message]
    next_cursor: Optional[int] = None


@dataclass
class ConversationPage:
    items: list[Conversation]
    next_cursor: Optional[int] = None
