"""Tool registry: the whitelist the model is allowed to call, and dispatch."""

from __future__ import annotations

import asyncio
from typing import Any, Optional

from pydantic import ValidationError

from commerce_copilot.ai.confirmation import ConfirmationPolicy, NeedsConfirmation
from commerce_copilot.ai.tools.base import ToolContext, ToolDescriptor, ToolResult
from commerce_copilot.errors import DuplicateToolError, ToolError, UnknownToolError
from commerce_copilot.log import get_logger

logger = get_logger(__name__)


def _format_validation_error(exc: ValidationError) -> str:
    problems = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err["loc"]) or "arguments"
        problems.append(f"{location}: {err['msg']}")
    return "Invalid arguments: " + "; ".join(problems)


class ToolRegistry:
    """Registry of tools one assistant profile may call.

    Built at startup and frozen before the first turn.
    """

    def __init__(self, name: str = "default"):
        self.name = name
        self._tools: dict[str, ToolDescriptor] = {}
        self._frozen = False

    def register(self, descriptor: ToolDescriptor) -> None:
        if self._frozen:
            raise RuntimeError(f"Tool registry '{self.name}' is frozen")
        if descriptor.name in self._tools:
            raise DuplicateToolError(descriptor.name)
        self._tools[descriptor.name] = descriptor
        logger.info("tool_registered", registry=self.name, tool_name=descriptor.name)

    def freeze(self) -> ToolRegistry:
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def names(self) -> list[str]:
        return list(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def export_schema(self) -> list[dict[str, Any]]:
        return [descriptor.to_api_dict() for descriptor in self._tools.values()]

    async def dispatch(
        self,
        name: str,
        args: dict[str, Any] | None,
        ctx: ToolContext,
        policy: Optional[ConfirmationPolicy] = None,
        timeout: Optional[float] = None,
    ) -> ToolResult:
        """Run one call-request against the whitelist.

        Raises ``UnknownToolError`` for names outside the whitelist. Every
        other failure (bad arguments, state lookup or handler errors, timeouts)
        comes back as a result whose payload is ``{"error": message}``.
        """
        descriptor = self._tools.get(name)
        if descriptor is None:
            raise UnknownToolError(name)

        raw_args = dict(args or {})
        try:
            parsed = descriptor.args_model.model_validate(raw_args)
        except ValidationError as e:
            message = _format_validation_error(e)
            logger.info("tool_args_rejected", tool=name, error=message)
            return ToolResult(tool_name=name, args=raw_args, payload={"error": message})

        clean_args = parsed.model_dump(mode="json", by_alias=True, exclude_none=True)

        if policy is not None:
            # State lookups are service calls: bounded and folded like the handler.
            try:
                decision = await asyncio.wait_for(policy.evaluate(descriptor, parsed, ctx), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning("tool_timeout", tool=name, timeout=timeout, stage="confirmation")
                return ToolResult(tool_name=name, args=clean_args, payload={"error": f"{name} timed out"})
            except ToolError as e:
                logger.info("tool_failed", tool=name, error=str(e), stage="confirmation")
                return ToolResult(tool_name=name, args=clean_args, payload={"error": str(e)})
            except Exception as e:
                logger.error("tool_execution_error", tool=name, error=str(e), stage="confirmation", exc_info=True)
                return ToolResult(tool_name=name, args=clean_args, payload={"error": str(e) or type(e).__name__})
            if isinstance(decision, NeedsConfirmation):
                return ToolResult(
                    tool_name=name,
                    args=clean_args,
                    payload={"state": decision.state, "resourceKey": decision.resource_key},
                    confirmation_required=True,
                    explanation=decision.explanation,
                )

        logger.info("tool_execute", tool=name, conversation_id=ctx.conversation_id)
        try:
            payload = await asyncio.wait_for(descriptor.handler(parsed, ctx), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("tool_timeout", tool=name, timeout=timeout)
            payload = {"error": f"{name} timed out"}
        except ToolError as e:
            logger.info("tool_failed", tool=name, error=str(e))
            payload = {"error": str(e)}
        except Exception as e:
            logger.error("tool_execution_error", tool=name, error=str(e), exc_info=True)
            payload = {"error": str(e) or type(e).__name__}

        if not isinstance(payload, dict):
            payload = {"result": payload}
        return ToolResult(tool_name=name, args=clean_args, payload=payload)
