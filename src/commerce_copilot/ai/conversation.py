"""Convert stored conversation messages to Anthropic API message format."""

from __future__ import annotations

from typing import Any

from commerce_copilot.core.types import MessageRole
from commerce_copilot.storage.models import Message

_ROLE_MAP = {
    MessageRole.HUMAN: "user",
    MessageRole.ASSISTANT: "assistant",
}


def build_history(messages: list[Message]) -> list[dict[str, Any]]:
    """Map stored messages, oldest first, to model turns.

    System messages (the welcome text) and empty messages are not replayed.
    """
    history: list[dict[str, Any]] = []
    for message in messages:
        role = _ROLE_MAP.get(message.role)
        if role is None or not message.content:
            continue
        history.append({"role": role, "content": message.content})
    return history


def with_human_turn(history: list[dict[str, Any]], text: str) -> list[dict[str, Any]]:
    return [*history, {"role": "user", "content": text}]
