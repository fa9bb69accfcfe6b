"""Request and response bodies for the HTTP API."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from commerce_copilot.ai.metadata import ToolUsage, decode_tool_usage
from commerce_copilot.core.types import MessageRole, ParticipantRole
from commerce_copilot.storage.models import Conversation, Message, Participant


class TurnRequestBody(BaseModel):
    """One human turn."""

    conversation_id: Optional[int] = Field(default=None, description="Omit to continue the latest conversation")
    sender_identity: str = Field(..., min_length=1, max_length=128)
    text: str = Field(..., description="The human message")
    metadata: dict[str, Any] = Field(default_factory=dict)


class MessageView(BaseModel):
    id: int
    role: MessageRole
    content: Optional[str]
    metadata: dict[str, Any]
    created_at: datetime
    tool: Optional[ToolUsage] = None

    @classmethod
    def from_message(cls, message: Message, with_tool: bool = False) -> MessageView:
        return cls(
            id=message.id,
            role=message.role,
            content=message.content,
            metadata=message.metadata,
            created_at=message.created_at,
            tool=decode_tool_usage(message.metadata) if with_tool else None,
        )


class TurnResponse(BaseModel):
    conversation_id: int
    human_message: MessageView
    assistant_message: MessageView
    outcome: str


class MessagePageResponse(BaseModel):
    conversation_id: int
    items: list[MessageView]
    next_cursor: Optional[int] = None


class ConversationView(BaseModel):
    id: int
    metadata: dict[str, Any]
    created_at: datetime
    updated_at: datetime
    last_message_at: Optional[datetime] = None
    last_message_id: Optional[int] = None

    @classmethod
    def from_conversation(cls, conversation: Conversation) -> ConversationView:
        return cls(
            id=conversation.id,
            metadata=conversation.metadata,
            created_at=conversation.created_at,
            updated_at=conversation.updated_at,
            last_message_at=conversation.last_message_at,
            last_message_id=conversation.last_message_id,
        )


class ConversationPageResponse(BaseModel):
    items: list[ConversationView]
    next_cursor: Optional[int] = None


class ParticipantView(BaseModel):
    id: int
    conversation_id: int
    identity: Optional[str]
    role: ParticipantRole
    unread_count: int = 0

    @classmethod
    def from_participant(cls, participant: Participant) -> ParticipantView:
        return cls(
            id=participant.id,
            conversation_id=participant.conversation_id,
            identity=participant.identity,
            role=participant.role,
            unread_count=participant.unread_count,
        )


class ToolSchemaResponse(BaseModel):
    profile: str
    tools: list[dict[str, Any]]


class HealthResponse(BaseModel):
    status: str
    timestamp: datetime
    version: str
    profiles: list[str]
