"""
In-stream error taxonomy for the tool loop engine.

Pre-stream failures (auth, validation, payload size, budget) are HTTP
errors and live in api.middleware.exception_handlers. The classes here
are raised after the event stream has started and are either recovered
internally, contained to one tool call or attachment, or reported as an
``error`` event.
"""

from __future__ import annotations

from typing import Any


class EngineError(Exception):
    """Base class for errors raised inside the engine."""


class ProviderRateLimitError(EngineError):
    """Transient provider throttling. Retried by the RetryGovernor."""

    def __init__(self, message: str = "Provider rate limit", retry_after: float | None = None):
        super().__init__(message)
        self.retry_after = retry_after


class ProviderError(EngineError):
    """Any non-throttling provider failure. Terminal for the request."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ToolExecutionError(EngineError):
    """A tool handler failed. Contained to one invocation."""

    def __init__(self, tool_name: str, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.tool_name = tool_name
        self.details = details


class UnknownToolError(ToolExecutionError):
    """The provider asked for a tool that is not registered."""

    def __init__(self, tool_name: str):
        super().__init__(tool_name, f"Unknown tool: {tool_name}")


class PreprocessingError(EngineError):
    """A document attachment could not be summarized. Substituted inline."""

    def __init__(self, attachment_name: str, message: str):
        super().__init__(f"{attachment_name}: {message}")
        self.attachment_name = attachment_name
        self.reason = message


class PersistenceError(EngineError):
    """Conversation storage failed. Logged only."""


class UsageLedgerError(EngineError):
    """Usage ledger unreachable. Logged only."""


__all__ = [
    "EngineError",
    "PersistenceError",
    "PreprocessingError",
    "ProviderError",
    "ProviderRateLimitError",
    "ToolExecutionError",
    "UnknownToolError",
    "UsageLedgerError",
]
