"""Tool descriptors: what the model may call and how a call is decoded and run."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from commerce_copilot.core.types import ParticipantRole, SideEffect

if TYPE_CHECKING:
    from commerce_copilot.ai.confirmation import ConfirmationRule, ConfirmationSignal


class ToolArgs(BaseModel):
    """Base for tool argument models.

    Decoding is strict about shape: unknown fields are rejected. Fields are
    exposed to the model in camelCase and accepted in either spelling.
    """

    model_config = ConfigDict(
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


@dataclass
class ToolContext:
    """Who is calling, from which conversation."""

    identity: str
    role: ParticipantRole
    conversation_id: int
    confirmation: Optional[ConfirmationSignal] = None


Handler = Callable[[Any, ToolContext], Awaitable[dict[str, Any]]]


@dataclass(frozen=True)
class ToolDescriptor:
    name: str
    description: str
    args_model: type[ToolArgs]
    handler: Handler
    side_effect: SideEffect = SideEffect.READ_ONLY
    confirmation: Optional[ConfirmationRule] = None

    @property
    def input_schema(self) -> dict[str, Any]:
        schema = self.args_model.model_json_schema(by_alias=True)
        schema.pop("title", None)
        return schema

    def to_api_dict(self) -> dict[str, Any]:
        """Serialize to the Anthropic API tool definition format."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }


@dataclass
class ToolResult:
    tool_name: str
    args: dict[str, Any]
    payload: dict[str, Any] = field(default_factory=dict)
    confirmation_required: bool = False
    explanation: Optional[str] = None

    @property
    def ok(self) -> bool:
        return "error" not in self.payload and not self.confirmation_required

    def to_model_payload(self) -> dict[str, Any]:
        if self.confirmation_required:
            return {
                "confirmationRequired": True,
                "message": self.explanation,
                **self.payload,
            }
        return self.payload
