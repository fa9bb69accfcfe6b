"""Confirmation gate for tools that mutate an existing resource.

A tool opts in by registering a ``ConfirmationRule``: how to load the current
state of the resource it targets, which states are guarded, and which
argument carries the explicit confirmation. While the resource is in a
guarded state the handler is not run; the turn instead answers with an
explanation and records a pending confirmation on the conversation, which a
confirming reply on the next turn can satisfy.
"""

from __future__ import annotations

import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional, Union

from pydantic import BaseModel

from commerce_copilot.core.types import SideEffect
from commerce_copilot.log import get_logger
from commerce_copilot.storage.models import utcnow

if TYPE_CHECKING:
    from commerce_copilot.ai.tools.base import ToolContext, ToolDescriptor

logger = get_logger(__name__)

PENDING_KEY = "pending_confirmation"

CONFIRMATION_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"(?:^|\s)(?:ok(?:e|ay)?\s*(?:rồi|roi)?|được|chuẩn|ổn|chốt)(?:\s|[.!,]|$)", re.IGNORECASE),
    re.compile(r"\b(?:dùng|xài|giữ)\s*(?:mẫu|bản|phương án|post)\s*(?:này|đó|kia)?", re.IGNORECASE),
    re.compile(r"\b(?:yes|yep|confirm(?:ed)?|approved?|ship\s+it|go\s+live|lock\s*(?:it)?\s*in)\b", re.IGNORECASE),
    re.compile(r"\b(?:looks?|sounds?)\s+good\b", re.IGNORECASE),
    re.compile(r"\b(?:use|keep)\s+(?:this|that|it)\b", re.IGNORECASE),
    re.compile(r"\b(?:final|finalize|publish)\s+(?:this|it|the\s+post)\b", re.IGNORECASE),
]


def detect_confirmation(text: str) -> bool:
    """True when ``text`` reads as an explicit go-ahead."""
    normalized = text.strip()
    if not normalized:
        return False
    return any(pattern.search(normalized) for pattern in CONFIRMATION_PATTERNS)


@dataclass(frozen=True)
class Allowed:
    pass


@dataclass(frozen=True)
class NeedsConfirmation:
    explanation: str
    state: Optional[str] = None
    resource_key: Optional[str] = None


Decision = Union[Allowed, NeedsConfirmation]


@dataclass(frozen=True)
class ConfirmationSignal:
    """A confirming human reply, bound to the action it was asked for."""

    tool_name: str
    resource_key: str


StateLoader = Callable[[BaseModel, "ToolContext"], Awaitable[Optional[str]]]


def _default_explain(tool_name: str, state: str) -> str:
    return (
        f"This item is currently {state}. Running {tool_name} would change it, "
        "so please confirm that you want to go ahead."
    )


@dataclass(frozen=True)
class ConfirmationRule:
    load_state: StateLoader
    guarded_states: frozenset[str]
    resource_key: Callable[[BaseModel], str]
    confirm_field: str = "confirm"
    explain: Callable[[str, str], str] = field(default=_default_explain)


def requires_confirmation(
    tool_name: str,
    current_state: Optional[str],
    confirmed: bool,
    rule: ConfirmationRule,
) -> Decision:
    if current_state is None or current_state not in rule.guarded_states or confirmed:
        return Allowed()
    return NeedsConfirmation(explanation=rule.explain(tool_name, current_state), state=current_state)


class ConfirmationPolicy:
    """Evaluates registered rules for ``mutates_existing`` tools."""

    async def evaluate(self, descriptor: ToolDescriptor, args: BaseModel, ctx: ToolContext) -> Decision:
        rule = descriptor.confirmation
        if rule is None or descriptor.side_effect != SideEffect.MUTATES_EXISTING:
            return Allowed()

        resource_key = rule.resource_key(args)
        state = await rule.load_state(args, ctx)
        confirmed = bool(getattr(args, rule.confirm_field, False))
        signal = ctx.confirmation
        if (
            not confirmed
            and signal is not None
            and signal.tool_name == descriptor.name
            and signal.resource_key == resource_key
        ):
            confirmed = True
            logger.info("confirmation_carried_over", tool=descriptor.name, resource_key=resource_key)

        decision = requires_confirmation(descriptor.name, state, confirmed, rule)
        if isinstance(decision, NeedsConfirmation):
            logger.info("confirmation_required", tool=descriptor.name, resource_key=resource_key, state=state)
            return NeedsConfirmation(explanation=decision.explanation, state=state, resource_key=resource_key)
        return decision


def pending_record(tool_name: str, resource_key: Optional[str], state: Optional[str]) -> dict[str, Any]:
    return {
        "tool": tool_name,
        "resourceKey": resource_key,
        "state": state,
        "requestedAt": utcnow().isoformat(),
    }


def signal_from_pending(pending: Optional[dict[str, Any]], text: str) -> Optional[ConfirmationSignal]:
    """Turn a stored pending record plus a confirming reply into a signal."""
    if not pending or not pending.get("tool") or pending.get("resourceKey") is None:
        return None
    if not detect_confirmation(text):
        return None
    return ConfirmationSignal(tool_name=pending["tool"], resource_key=str(pending["resourceKey"]))
