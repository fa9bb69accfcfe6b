"""Exception hierarchy shared by the store, the tool registry and the orchestrator."""

from __future__ import annotations


class CopilotError(Exception):
    """Base class for all commerce-copilot errors."""


class ProtocolError(CopilotError):
    """A turn was rejected before any model call."""

    status_code = 400


class BadRequestError(ProtocolError):
    status_code = 400


class NotFoundError(ProtocolError):
    status_code = 404


class ForbiddenError(ProtocolError):
    status_code = 403


class UpstreamError(CopilotError):
    """The model service failed or returned something unusable."""


class ModelTimeoutError(UpstreamError):
    pass


class ToolError(CopilotError):
    """A tool handler failed. Recovered into an ``{"error": ...}`` result."""


class ToolArgumentError(ToolError):
    pass


class UnknownToolError(CopilotError):
    """The model asked for a tool outside the whitelist."""

    def __init__(self, name: str):
        super().__init__(f"Tool {name} is not supported")
        self.name = name


class DuplicateToolError(CopilotError):
    def __init__(self, name: str):
        super().__init__(f"Tool already registered: {name}")
        self.name = name
