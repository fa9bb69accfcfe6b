"""Turn orchestrator: receives a human turn, runs the two-call model exchange, persists the pair."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from commerce_copilot.ai.client import CallRequest, GenerationOptions, ModelClient, ModelReply
from commerce_copilot.ai.confirmation import (
    PENDING_KEY,
    ConfirmationPolicy,
    ConfirmationSignal,
    pending_record,
    signal_from_pending,
)
from commerce_copilot.ai.conversation import build_history, with_human_turn
from commerce_copilot.ai.formatting import sanitize_markdown
from commerce_copilot.ai.metadata import redact_result
from commerce_copilot.ai.tools.base import ToolContext, ToolResult
from commerce_copilot.ai.tools.registry import ToolRegistry
from commerce_copilot.ai.turn import TurnOutcome, TurnPhase, TurnResult, TurnState
from commerce_copilot.config import FallbackMessages, ProfileConfig, TurnConfig
from commerce_copilot.core.locks import KeyedLocks
from commerce_copilot.core.types import MessageRole
from commerce_copilot.errors import BadRequestError, NotFoundError, UnknownToolError, UpstreamError
from commerce_copilot.log import bound_context, get_logger
from commerce_copilot.storage.conversation_repo import ConversationRepository
from commerce_copilot.storage.models import (
    Conversation,
    ConversationContext,
    ConversationPage,
    MessagePage,
    NewMessage,
    Participant,
    utcnow,
)

logger = get_logger(__name__)


@dataclass
class TurnRequest:
    sender_identity: str
    text: str
    conversation_id: Optional[int] = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class _ToolOutcome:
    call: CallRequest
    result: Optional[ToolResult] = None  # None when the call was blocked


class TurnOrchestrator:
    """Handles the full flow for one assistant profile.

    human turn -> conversation -> history -> model -> (tool -> model) -> persisted pair
    """

    def __init__(
        self,
        profile: ProfileConfig,
        repo: ConversationRepository,
        model_client: ModelClient,
        registry: ToolRegistry,
        turn_config: TurnConfig,
        messages: FallbackMessages,
        policy: Optional[ConfirmationPolicy] = None,
    ):
        if not registry.frozen:
            raise RuntimeError(f"Tool registry for profile '{profile.id}' must be frozen")
        self._profile = profile
        self._repo = repo
        self._model = model_client
        self._registry = registry
        self._turn_config = turn_config
        self._messages = messages
        self._policy = policy or ConfirmationPolicy()
        self._conversation_locks = KeyedLocks()
        self._resolve_locks = KeyedLocks()
        self._inflight: set[asyncio.Task] = set()

    @property
    def profile(self) -> ProfileConfig:
        return self._profile

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    def generation_options(self) -> GenerationOptions:
        ai = self._profile.ai
        return GenerationOptions(
            model=ai.model,
            system_prompt=ai.system_prompt,
            tools=self._registry.export_schema(),
            temperature=ai.temperature,
            max_tokens=ai.max_tokens,
            timeout=ai.request_timeout,
            max_response_chars=ai.max_response_chars,
        )

    # ------------------------------------------------------------------
    # Submit turn
    # ------------------------------------------------------------------

    async def submit_turn(self, request: TurnRequest) -> TurnResult:
        """Process one human turn end-to-end.

        Validation and conversation resolution errors propagate as
        ``ProtocolError``. After that the turn always finalizes with an
        assistant message, and it runs to completion even if the caller is
        cancelled.
        """
        text = (request.text or "").strip()
        identity = (request.sender_identity or "").strip()
        if not identity:
            raise BadRequestError("sender_identity is required")
        if not text:
            raise BadRequestError("Message text must not be empty")
        if len(text) > self._turn_config.max_message_length:
            raise BadRequestError(
                f"Message text exceeds {self._turn_config.max_message_length} characters"
            )

        if request.conversation_id is None:
            async with self._resolve_locks.hold((identity, self._profile.kind)):
                context = await self._repo.ensure_conversation(identity, self._profile)
        else:
            context = await self._repo.ensure_conversation(identity, self._profile, request.conversation_id)

        task = asyncio.create_task(self._run_serialized(context, text, dict(request.metadata or {})))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return await asyncio.shield(task)

    async def drain(self) -> None:
        """Wait for turns whose callers went away."""
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)

    async def _run_serialized(self, context: ConversationContext, text: str, metadata: dict[str, Any]) -> TurnResult:
        conversation_id = context.conversation.id
        async with self._conversation_locks.hold(conversation_id):
            with bound_context(conversation_id=conversation_id, profile=self._profile.id):
                return await self._run_turn(context, text, metadata)

    async def _run_turn(self, context: ConversationContext, text: str, metadata: dict[str, Any]) -> TurnResult:
        received_at = utcnow()
        state = TurnState()
        identity = context.human.identity

        # Re-read under the lock: a turn queued ahead of us may have changed it.
        conversation = await self._repo.get_conversation(context.conversation.id)
        if conversation is None:
            raise NotFoundError(f"Conversation #{context.conversation.id} not found")
        signal = signal_from_pending(conversation.metadata.get(PENDING_KEY), text)

        stored = await self._repo.load_history(conversation.id, self._turn_config.history_limit)
        history = build_history(stored)
        options = self.generation_options()
        logger.info("turn_received", identity=identity, history_size=len(history))

        state.advance(TurnPhase.FIRST_MODEL_CALL)
        reply = await self._call_model("first", self._model.generate(text, history, options))

        tool: Optional[_ToolOutcome] = None
        if reply is None or (reply.call_request is None and not reply.text):
            state.finalize(self._messages.apology, TurnOutcome.DEGRADED)
        elif reply.call_request is None:
            state.advance(TurnPhase.DIRECT_ANSWER)
            state.finalize(reply.text, TurnOutcome.ANSWERED)
        else:
            call = reply.call_request
            state.advance(TurnPhase.TOOL_REQUESTED)
            tool = _ToolOutcome(call=call)
            ctx = ToolContext(
                identity=identity,
                role=context.human.role,
                conversation_id=conversation.id,
                confirmation=signal,
            )
            state.advance(TurnPhase.DISPATCHED)
            try:
                tool.result = await self._registry.dispatch(
                    call.name,
                    call.args,
                    ctx,
                    policy=self._policy,
                    timeout=self._turn_config.tool_timeout,
                )
            except UnknownToolError as e:
                logger.warning("tool_blocked", tool=e.name, identity=identity)
                state.finalize(self._messages.not_supported.format(tool=e.name), TurnOutcome.TOOL_BLOCKED)
            else:
                await self._summarize(state, history, text, call, tool.result, options)

        final_text = sanitize_markdown(state.final_text) or self._messages.apology
        return await self._persist(context, conversation, text, metadata, received_at, state, final_text, tool, signal)

    async def _summarize(
        self,
        state: TurnState,
        history: list[dict[str, Any]],
        text: str,
        call: CallRequest,
        result: ToolResult,
        options: GenerationOptions,
    ) -> None:
        state.advance(TurnPhase.SECOND_MODEL_CALL)
        reply = await self._call_model(
            "second",
            self._model.generate_with_tool_result(
                with_human_turn(history, text), call, result.to_model_payload(), options
            ),
        )
        if reply is not None and reply.text:
            outcome = TurnOutcome.CONFIRMATION_REQUIRED if result.confirmation_required else TurnOutcome.TOOL_ANSWERED
            state.finalize(reply.text, outcome)
            return

        if result.confirmation_required:
            state.finalize(result.explanation or self._messages.processed, TurnOutcome.CONFIRMATION_REQUIRED)
        elif result.ok:
            state.finalize(self._messages.processed, TurnOutcome.TOOL_FALLBACK)
        else:
            state.finalize(self._messages.tool_failed, TurnOutcome.TOOL_FALLBACK)

    async def _call_model(self, phase: str, call: Awaitable[ModelReply]) -> ModelReply | None:
        """Await one model call; failures become None."""
        try:
            reply = await call
        except UpstreamError as e:
            logger.warning("model_call_failed", phase=phase, error=str(e), error_type=type(e).__name__)
            return None
        except Exception as e:
            logger.error("model_call_error", phase=phase, error=str(e), exc_info=True)
            return None
        reply.text = (reply.text or "").strip()
        if reply.call_request is None and not reply.text:
            logger.warning("model_empty_response", phase=phase)
        return reply

    async def _persist(
        self,
        context: ConversationContext,
        conversation: Conversation,
        text: str,
        metadata: dict[str, Any],
        received_at: datetime,
        state: TurnState,
        final_text: str,
        tool: Optional[_ToolOutcome],
        signal: Optional[ConfirmationSignal],
    ) -> TurnResult:
        assistant_meta: dict[str, Any] = {
            "type": "tool_blocked" if state.outcome == TurnOutcome.TOOL_BLOCKED else "assistant_final",
            "provider": getattr(self._model, "provider", "unknown"),
            "model": self._profile.ai.model,
            "outcome": state.outcome.value,
        }
        pending = None
        if tool is not None:
            assistant_meta["toolUsed"] = tool.call.name
            if tool.result is None:
                assistant_meta["toolArgs"] = tool.call.args
            else:
                result = tool.result
                assistant_meta["toolArgs"] = result.args
                assistant_meta["toolResult"] = redact_result(result.to_model_payload())
                assistant_meta["confirmationRequired"] = result.confirmation_required
                if result.confirmation_required:
                    pending = pending_record(
                        result.tool_name, result.payload.get("resourceKey"), result.payload.get("state")
                    )
        if signal is not None:
            assistant_meta["confirmationSignal"] = {"tool": signal.tool_name, "resourceKey": signal.resource_key}

        human = NewMessage(
            role=MessageRole.HUMAN,
            content=text,
            sender_participant_id=context.human.id,
            metadata={**metadata, "type": "user_message"},
            created_at=received_at,
        )
        assistant = NewMessage(
            role=MessageRole.ASSISTANT,
            content=final_text,
            sender_participant_id=context.assistant.id,
            metadata=assistant_meta,
        )
        patch = {
            "type": self._profile.kind.value,
            "lastInteractionAt": assistant.created_at.isoformat(),
            "lastInteractionIdentity": context.human.identity,
            PENDING_KEY: pending,
        }
        human_message, assistant_message = await self._repo.append_turn(conversation.id, human, assistant, patch)

        logger.info(
            "turn_finalized",
            outcome=state.outcome.value,
            phases=[p.value for p in state.trail],
            tool=tool.call.name if tool else None,
            assistant_message_id=assistant_message.id,
        )
        return TurnResult(
            conversation_id=conversation.id,
            human_message=human_message,
            assistant_message=assistant_message,
            outcome=state.outcome,
        )

    # ------------------------------------------------------------------
    # Conversation queries
    # ------------------------------------------------------------------

    async def _require_access(self, conversation_id: int, identity: str) -> None:
        conversation = await self._repo.get_conversation(conversation_id)
        if conversation is None or conversation.kind != self._profile.kind:
            raise NotFoundError(f"Conversation #{conversation_id} not found")
        await self._repo.require_participant(conversation_id, identity)

    async def list_messages(
        self,
        conversation_id: int,
        identity: str,
        page_size: Optional[int] = None,
        cursor: Optional[int] = None,
    ) -> MessagePage:
        await self._require_access(conversation_id, identity)
        return await self._repo.list_messages(conversation_id, page_size, cursor)

    async def list_conversations(
        self, identity: str, limit: Optional[int] = None, cursor: Optional[int] = None
    ) -> ConversationPage:
        return await self._repo.list_conversations(identity, self._profile.kind, limit, cursor)

    async def mark_read(self, conversation_id: int, identity: str) -> None:
        await self._require_access(conversation_id, identity)
        await self._repo.mark_read(conversation_id, identity)

    async def delete_conversation(self, conversation_id: int, identity: str) -> None:
        await self._require_access(conversation_id, identity)
        await self._repo.soft_delete(conversation_id, identity)

    async def claim_support_seat(self, conversation_id: int, identity: str) -> Participant:
        """Let an operator take the conversation's open support seat.

        Claiming again with the same identity returns the existing seat.
        """
        identity = identity.strip()
        if not identity:
            raise BadRequestError("identity is required")
        conversation = await self._repo.get_conversation(conversation_id)
        if conversation is None or conversation.kind != self._profile.kind:
            raise NotFoundError(f"Conversation #{conversation_id} not found")
        return await self._repo.claim_support_seat(conversation_id, identity)
