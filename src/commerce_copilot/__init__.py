"""Tool-augmented conversational orchestrator for commerce assistants."""

__version__ = "0.1.0"
