"""Configuration loader with YAML parsing, env-var interpolation, and Pydantic validation."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from commerce_copilot.core.types import ConversationKind, ParticipantRole


class AIConfig(BaseModel):
    model: str = "claude-sonnet-4-20250514"
    max_tokens: int = 1024
    system_prompt: str = ""
    temperature: float = 0.2
    tools: list[str] = Field(default_factory=list)
    request_timeout: float = 30.0  # seconds, per model call
    max_response_chars: int = 6000


class ProfileConfig(BaseModel):
    id: str
    kind: ConversationKind
    human_role: ParticipantRole = ParticipantRole.HUMAN
    assistant_name: str = "Assistant"
    welcome_message: Optional[str] = None
    support_seat: bool = False  # reserve an unclaimed operator seat on creation
    ai: AIConfig = Field(default_factory=AIConfig)


class AnthropicConfig(BaseModel):
    api_key: str
    base_url: Optional[str] = None
    max_retries: int = 2
    timeout: int = 60


class StorageConfig(BaseModel):
    db_path: str = "./data/commerce_copilot.db"


class ServerConfig(BaseModel):
    host: str = "127.0.0.1"
    port: int = 8000


class TurnConfig(BaseModel):
    history_limit: int = Field(default=40, ge=1, le=200)
    tool_timeout: float = 15.0  # seconds, per tool dispatch
    max_message_length: int = 4000


class FallbackMessages(BaseModel):
    """User-visible texts substituted when a turn degrades."""

    apology: str = "Sorry, I'm having trouble answering right now. Please try again in a moment."
    not_supported: str = "Sorry, the {tool} feature is not available right now."
    processed: str = "Your request has been processed."
    tool_failed: str = "Sorry, I couldn't complete that request. Please try again later."


class AppConfig(BaseModel):
    log_level: str = "INFO"
    log_json: bool = False
    data_dir: str = "./data"
    anthropic: Optional[AnthropicConfig] = None
    storage: StorageConfig = Field(default_factory=StorageConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    turn: TurnConfig = Field(default_factory=TurnConfig)
    messages: FallbackMessages = Field(default_factory=FallbackMessages)
    profiles: list[ProfileConfig]

    @model_validator(mode="after")
    def _unique_profiles(self) -> AppConfig:
        ids = [p.id for p in self.profiles]
        if len(ids) != len(set(ids)):
            raise ValueError(f"Duplicate profile ids: {ids}")
        return self

    def get_profile(self, profile_id: str) -> ProfileConfig | None:
        return next((p for p in self.profiles if p.id == profile_id), None)


_ENV_VAR_PATTERN = re.compile(r"\$\{(\w+)\}")


def _interpolate_env_vars(text: str, extra: dict[str, str] | None = None) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        if extra and var_name in extra:
            return extra[var_name]
        value = os.environ.get(var_name)
        if value is None:
            return match.group(0)
        return value

    return _ENV_VAR_PATTERN.sub(_replace, text)


def load_config(config_path: str | Path = "config.yaml", env_path: str | Path = ".env") -> AppConfig:
    """Load and validate configuration from YAML file with env-var interpolation."""
    env_file = Path(env_path)
    if env_file.exists():
        load_dotenv(env_file)

    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    raw_text = config_file.read_text(encoding="utf-8")

    # data_dir may be referenced by other values as ${data_dir}
    raw_data = yaml.safe_load(raw_text) or {}
    data_dir = _interpolate_env_vars(str(raw_data.get("data_dir", "./data")))

    interpolated = _interpolate_env_vars(raw_text, extra={"data_dir": data_dir})
    data = yaml.safe_load(interpolated)

    return AppConfig(**data)
