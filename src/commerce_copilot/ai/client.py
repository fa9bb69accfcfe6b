"""Model service adapter: the two-phase exchange on top of the Anthropic API."""

from __future__ import annotations

import asyncio
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

from commerce_copilot.config import AnthropicConfig
from commerce_copilot.errors import ModelTimeoutError, UpstreamError
from commerce_copilot.log import get_logger

logger = get_logger(__name__)


@dataclass
class CallRequest:
    """A model's request to invoke one tool."""

    id: str
    name: str
    args: dict[str, Any] = field(default_factory=dict)


@dataclass
class ModelReply:
    """Unified reply of one model call: text, a call-request, or neither."""

    text: str = ""
    call_request: Optional[CallRequest] = None
    input_tokens: int = 0
    output_tokens: int = 0
    raw: Any = None


@dataclass
class GenerationOptions:
    model: str
    system_prompt: str = ""
    tools: list[dict[str, Any]] = field(default_factory=list)
    temperature: float = 0.2
    max_tokens: int = 1024
    timeout: float = 30.0
    max_response_chars: int = 6000


class ModelClient(ABC):
    """Abstract base class for model backends."""

    provider: str = "unknown"

    @abstractmethod
    async def generate(
        self,
        turn_text: str,
        history: list[dict[str, Any]],
        options: GenerationOptions,
    ) -> ModelReply:
        """First call: the history plus the new human turn, with tools offered."""
        ...

    @abstractmethod
    async def generate_with_tool_result(
        self,
        history: list[dict[str, Any]],
        call_request: CallRequest,
        tool_result: dict[str, Any],
        options: GenerationOptions,
    ) -> ModelReply:
        """Second call: ``history`` already ends with the human turn."""
        ...


def normalize_history(history: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Make history acceptable to the Messages API.

    The first message must come from the user and roles must alternate, so
    leading assistant turns are dropped and consecutive same-role text turns
    are merged.
    """
    messages: list[dict[str, Any]] = []
    for entry in history:
        role = entry.get("role")
        content = entry.get("content")
        if role not in ("user", "assistant") or content in (None, "", []):
            continue
        if not messages and role == "assistant":
            continue
        if messages and messages[-1]["role"] == role:
            previous = messages[-1]["content"]
            if isinstance(previous, str) and isinstance(content, str):
                messages[-1] = {"role": role, "content": f"{previous}\n\n{content}"}
                continue
        messages.append({"role": role, "content": content})
    return messages


def _truncate(text: str, limit: int) -> str:
    if limit and len(text) > limit:
        return text[:limit].rstrip()
    return text


class AnthropicClient(ModelClient):
    """Anthropic API backend using the official SDK."""

    provider = "anthropic"

    def __init__(self, config: AnthropicConfig):
        import anthropic

        self._anthropic = anthropic
        self._client = anthropic.AsyncAnthropic(
            api_key=config.api_key,
            base_url=config.base_url,
            max_retries=config.max_retries,
            timeout=config.timeout,
        )

    async def generate(
        self,
        turn_text: str,
        history: list[dict[str, Any]],
        options: GenerationOptions,
    ) -> ModelReply:
        messages = normalize_history([*history, {"role": "user", "content": turn_text}])
        return await self._create(messages, options)

    async def generate_with_tool_result(
        self,
        history: list[dict[str, Any]],
        call_request: CallRequest,
        tool_result: dict[str, Any],
        options: GenerationOptions,
    ) -> ModelReply:
        messages = normalize_history(history)
        messages.append(
            {
                "role": "assistant",
                "content": [
                    {
                        "type": "tool_use",
                        "id": call_request.id,
                        "name": call_request.name,
                        "input": call_request.args,
                    }
                ],
            }
        )
        messages.append(
            {
                "role": "user",
                "content": [
                    {
                        "type": "tool_result",
                        "tool_use_id": call_request.id,
                        "content": json.dumps(tool_result, ensure_ascii=False, default=str),
                        "is_error": "error" in tool_result,
                    }
                ],
            }
        )
        reply = await self._create(messages, options)
        # The exchange is two calls at most; a second call-request is ignored.
        reply.call_request = None
        return reply

    async def _create(self, messages: list[dict[str, Any]], options: GenerationOptions) -> ModelReply:
        kwargs: dict[str, Any] = {
            "model": options.model,
            "max_tokens": options.max_tokens,
            "system": options.system_prompt,
            "messages": messages,
            "temperature": options.temperature,
        }
        if options.tools:
            kwargs["tools"] = options.tools

        logger.debug("api_request", model=options.model, message_count=len(messages))
        try:
            response = await asyncio.wait_for(
                self._client.messages.create(**kwargs), timeout=options.timeout
            )
        except asyncio.TimeoutError as e:
            logger.warning("api_timeout", model=options.model, timeout=options.timeout)
            raise ModelTimeoutError(f"Model call timed out after {options.timeout}s") from e
        except self._anthropic.APIError as e:
            logger.error("api_error", model=options.model, error=str(e))
            raise UpstreamError(str(e)) from e

        logger.debug(
            "api_response",
            model=options.model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            stop_reason=response.stop_reason,
        )
        return self._parse(response, options)

    @staticmethod
    def _parse(response: Any, options: GenerationOptions) -> ModelReply:
        call_request = None
        text_parts: list[str] = []
        for block in response.content:
            if block.type == "tool_use" and call_request is None:
                call_request = CallRequest(id=block.id, name=block.name, args=dict(block.input or {}))
            elif block.type == "text":
                text_parts.append(block.text)

        text = "\n".join(part for part in text_parts if part).strip()
        return ModelReply(
            text=_truncate(text, options.max_response_chars),
            call_request=call_request,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            raw=response,
        )
