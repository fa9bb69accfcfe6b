"""Tests for plain-text rendering and history building."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from commerce_copilot.ai.conversation import build_history, with_human_turn
from commerce_copilot.ai.formatting import sanitize_markdown
from commerce_copilot.core.types import MessageRole
from commerce_copilot.storage.models import Message


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("Your order is **shipped**.", "Your order is shipped."),
        ("It is __very__ close.", "It is very close."),
        ("An *italic* word", "An italic word"),
        ("An _italic_ word", "An italic word"),
        ("~~old price~~ new price", "old price new price"),
        ("Use code `SUMMER10`", "Use code SUMMER10"),
        ("## Summary\nAll good", "Summary\nAll good"),
        ("  padded  ", "padded"),
    ],
)
def test_strips_markdown(raw, expected):
    assert sanitize_markdown(raw) == expected


@pytest.mark.parametrize(
    "text",
    ["field order_id is set", "2 * 3 = 6", "* first\n* second", "snake_case_name"],
)
def test_leaves_plain_text_alone(text):
    assert sanitize_markdown(text) == text


def test_empty_text():
    assert sanitize_markdown("") == ""


def _message(message_id: int, role: MessageRole, content: str | None) -> Message:
    return Message(
        id=message_id,
        conversation_id=1,
        role=role,
        content=content,
        created_at=datetime(2024, 1, 1, tzinfo=UTC),
    )


def test_build_history_maps_roles_and_skips_system():
    messages = [
        _message(1, MessageRole.SYSTEM, "Welcome!"),
        _message(2, MessageRole.HUMAN, "hi"),
        _message(3, MessageRole.ASSISTANT, "hello"),
        _message(4, MessageRole.ASSISTANT, ""),
    ]

    history = build_history(messages)

    assert history == [{"role": "user", "content": "hi"}, {"role": "assistant", "content": "hello"}]
    assert with_human_turn(history, "next")[-1] == {"role": "user", "content": "next"}
    assert len(history) == 2
