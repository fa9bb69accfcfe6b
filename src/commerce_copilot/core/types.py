"""Shared types and enumerations."""

from __future__ import annotations

from enum import StrEnum


class ConversationKind(StrEnum):
    STOREFRONT = "STOREFRONT"
    ADMIN_COPILOT = "ADMIN_COPILOT"


class ParticipantRole(StrEnum):
    HUMAN = "human"
    ADMIN = "admin"
    ASSISTANT = "assistant"


class MessageRole(StrEnum):
    HUMAN = "human"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class SideEffect(StrEnum):
    READ_ONLY = "read_only"
    CREATES_NEW = "creates_new"
    MUTATES_EXISTING = "mutates_existing"
