"""Tests for the Anthropic model adapter."""

from __future__ import annotations

import asyncio
from types import SimpleNamespace

import pytest

from commerce_copilot.ai.client import AnthropicClient, CallRequest, GenerationOptions, normalize_history
from commerce_copilot.config import AnthropicConfig
from commerce_copilot.errors import ModelTimeoutError


def _text(text: str):
    return SimpleNamespace(type="text", text=text)


def _tool_use(name: str, args: dict, block_id: str = "toolu_1"):
    return SimpleNamespace(type="tool_use", id=block_id, name=name, input=args)


def _response(*blocks):
    return SimpleNamespace(
        content=list(blocks),
        usage=SimpleNamespace(input_tokens=12, output_tokens=7),
        stop_reason="end_turn",
    )


class FakeMessages:
    def __init__(self, responses):
        self.responses = list(responses)
        self.calls: list[dict] = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        item = self.responses.pop(0)
        if callable(item):
            return await item()
        return item


def _client(*responses) -> tuple[AnthropicClient, FakeMessages]:
    client = AnthropicClient(AnthropicConfig(api_key="test-key"))
    messages = FakeMessages(responses)
    client._client = SimpleNamespace(messages=messages)
    return client, messages


OPTIONS = GenerationOptions(
    model="test-model",
    system_prompt="You are a helpful shop assistant.",
    tools=[{"name": "track_order", "description": "Track", "input_schema": {"type": "object"}}],
    timeout=1.0,
)


class TestNormalizeHistory:
    def test_drops_leading_assistant_and_merges_runs(self):
        history = [
            {"role": "assistant", "content": "Welcome!"},
            {"role": "user", "content": "hi"},
            {"role": "user", "content": "anyone there?"},
            {"role": "assistant", "content": "yes"},
            {"role": "user", "content": ""},
        ]

        assert normalize_history(history) == [
            {"role": "user", "content": "hi\n\nanyone there?"},
            {"role": "assistant", "content": "yes"},
        ]


class TestGenerate:
    async def test_text_reply(self):
        client, messages = _client(_response(_text("Hello "), _text("there")))

        reply = await client.generate("hi", [], OPTIONS)

        assert reply.text == "Hello \nthere"
        assert reply.call_request is None
        assert reply.input_tokens == 12
        sent = messages.calls[0]
        assert sent["model"] == "test-model"
        assert sent["system"] == "You are a helpful shop assistant."
        assert sent["tools"] == OPTIONS.tools
        assert sent["messages"] == [{"role": "user", "content": "hi"}]

    async def test_first_tool_use_wins(self):
        client, _ = _client(
            _response(
                _text("Let me check."),
                _tool_use("track_order", {"orderNumber": "ORD-123"}),
                _tool_use("get_order_detail", {"orderNumber": "ORD-123"}, "toolu_2"),
            )
        )

        reply = await client.generate("where is ORD-123?", [], OPTIONS)

        assert reply.call_request == CallRequest(id="toolu_1", name="track_order", args={"orderNumber": "ORD-123"})

    async def test_long_text_is_truncated(self):
        client, _ = _client(_response(_text("x" * 50)))

        reply = await client.generate("hi", [], GenerationOptions(model="m", max_response_chars=10))

        assert reply.text == "x" * 10

    async def test_no_tools_key_without_tools(self):
        client, messages = _client(_response(_text("ok")))

        await client.generate("hi", [], GenerationOptions(model="m"))

        assert "tools" not in messages.calls[0]

    async def test_timeout_maps_to_model_timeout(self):
        async def never():
            await asyncio.sleep(5)

        client, _ = _client(never)

        with pytest.raises(ModelTimeoutError):
            await client.generate("hi", [], GenerationOptions(model="m", timeout=0.05))


class TestToolResultCall:
    async def test_message_shape(self):
        client, messages = _client(_response(_text("It shipped.")))
        call = CallRequest(id="toolu_9", name="track_order", args={"orderNumber": "ORD-123"})
        history = [{"role": "user", "content": "where is ORD-123?"}]

        reply = await client.generate_with_tool_result(history, call, {"status": "SHIPPED"}, OPTIONS)

        assert reply.text == "It shipped."
        sent = messages.calls[0]["messages"]
        assert sent[0] == {"role": "user", "content": "where is ORD-123?"}
        assert sent[1]["role"] == "assistant"
        assert sent[1]["content"][0] == {
            "type": "tool_use",
            "id": "toolu_9",
            "name": "track_order",
            "input": {"orderNumber": "ORD-123"},
        }
        result_block = sent[2]["content"][0]
        assert result_block["type"] == "tool_result"
        assert result_block["tool_use_id"] == "toolu_9"
        assert result_block["content"] == '{"status": "SHIPPED"}'
        assert result_block["is_error"] is False

    async def test_error_result_flagged_and_second_request_ignored(self):
        client, messages = _client(_response(_tool_use("track_order", {"orderNumber": "ORD-1"})))
        call = CallRequest(id="toolu_1", name="track_order", args={"orderNumber": "ORD-999"})

        reply = await client.generate_with_tool_result(
            [{"role": "user", "content": "status?"}], call, {"error": "Order ORD-999 not found"}, OPTIONS
        )

        assert reply.call_request is None
        assert messages.calls[0]["messages"][2]["content"][0]["is_error"] is True
