"""Turn lifecycle: phases, allowed transitions and the outcome of a finished turn."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Optional

from commerce_copilot.storage.models import Message


class TurnPhase(StrEnum):
    RECEIVED = "received"
    FIRST_MODEL_CALL = "first_model_call"
    DIRECT_ANSWER = "direct_answer"
    TOOL_REQUESTED = "tool_requested"
    DISPATCHED = "dispatched"
    SECOND_MODEL_CALL = "second_model_call"
    FINALIZED = "finalized"


class TurnOutcome(StrEnum):
    ANSWERED = "answered"  # first call answered directly
    TOOL_ANSWERED = "tool_answered"  # tool ran, second call summarized
    TOOL_FALLBACK = "tool_fallback"  # tool ran, canned text replaced the summary
    CONFIRMATION_REQUIRED = "confirmation_required"
    TOOL_BLOCKED = "tool_blocked"  # call-request outside the whitelist
    DEGRADED = "degraded"  # first call failed or returned nothing


TRANSITIONS: dict[TurnPhase, frozenset[TurnPhase]] = {
    TurnPhase.RECEIVED: frozenset({TurnPhase.FIRST_MODEL_CALL}),
    TurnPhase.FIRST_MODEL_CALL: frozenset(
        {TurnPhase.DIRECT_ANSWER, TurnPhase.TOOL_REQUESTED, TurnPhase.FINALIZED}
    ),
    TurnPhase.DIRECT_ANSWER: frozenset({TurnPhase.FINALIZED}),
    TurnPhase.TOOL_REQUESTED: frozenset({TurnPhase.DISPATCHED}),
    TurnPhase.DISPATCHED: frozenset({TurnPhase.SECOND_MODEL_CALL, TurnPhase.FINALIZED}),
    TurnPhase.SECOND_MODEL_CALL: frozenset({TurnPhase.FINALIZED}),
    TurnPhase.FINALIZED: frozenset(),
}


class IllegalTransition(RuntimeError):
    pass


@dataclass
class TurnState:
    """Mutable per-turn scratch state. Never persisted."""

    phase: TurnPhase = TurnPhase.RECEIVED
    trail: list[TurnPhase] = field(default_factory=list)
    final_text: str = ""
    outcome: Optional[TurnOutcome] = None

    def advance(self, target: TurnPhase) -> None:
        if target not in TRANSITIONS[self.phase]:
            raise IllegalTransition(f"{self.phase} -> {target}")
        self.trail.append(self.phase)
        self.phase = target

    def finalize(self, text: str, outcome: TurnOutcome) -> None:
        self.advance(TurnPhase.FINALIZED)
        self.final_text = text
        self.outcome = outcome


@dataclass
class TurnResult:
    conversation_id: int
    human_message: Message
    assistant_message: Message
    outcome: TurnOutcome
