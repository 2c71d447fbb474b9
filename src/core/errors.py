"""Error taxonomy for the agent tool layer.

Every ToolError is caught at the executor boundary and serialized as
{"ok": false, "error": <message>}. AgentConfigError is the only failure
that escapes a turn.
"""

from __future__ import annotations


class ToolError(Exception):
    """Base class for failures reported back to the model."""


class NotFound(ToolError):
    """No record matches inside the household."""


class Ambiguous(ToolError):
    """More than one record matches; the caller must supply an id."""

    def __init__(self, message: str, candidates: list[tuple[int, str]]) -> None:
        super().__init__(message)
        self.candidates = candidates


class ToolValidationError(ToolError):
    """Arguments are missing or malformed."""


class FeatureUnavailable(ToolError):
    """The part of the schema this tool depends on is not installed."""


class DomainInvariantViolation(ToolError):
    """The request would break a business rule."""


class AgentConfigError(Exception):
    """The hosted model is unreachable or misconfigured."""


class MessageRejected(Exception):
    """An incoming user message fails validation; shown to the user as is."""
