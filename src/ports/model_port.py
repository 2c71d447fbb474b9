"""Model port — abstract interface for a tool-calling language model.

The turn loop depends on this protocol, never on a specific provider.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol


class ModelError(Exception):
    """Raised when the hosted model cannot be reached or rejects the request."""


@dataclass(frozen=True)
class ToolCall:
    """One function call requested by the model. arguments is raw JSON text."""

    name: str
    call_id: str
    arguments: str


@dataclass
class ModelResponse:
    response_id: str
    text: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)


class ModelPort(Protocol):
    """Abstract model interface used by the turn loop.

    previous_response_id continues a conversation server-side: when it is
    set, input_items only carry the new function_call_output items.
    """

    async def respond(
        self,
        input_items: list[dict[str, Any]],
        tools: list[dict[str, Any]],
        previous_response_id: str | None = None,
    ) -> ModelResponse: ...
