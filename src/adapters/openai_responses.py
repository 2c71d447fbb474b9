"""OpenAI Responses API adapter — implements ModelPort.

Wraps openai.AsyncOpenAI. The system prompt travels as the first input item
of a turn and is carried forward server-side by previous_response_id.
"""

from __future__ import annotations

import logging
from typing import Any

from openai import AsyncOpenAI, OpenAIError

from src.ports.model_port import ModelError, ModelResponse, ToolCall

logger = logging.getLogger(__name__)


class OpenAIResponsesModel:
    """OpenAI implementation of ModelPort."""

    def __init__(self, api_key: str, model: str, client: AsyncOpenAI | None = None) -> None:
        self._client = client or AsyncOpenAI(api_key=api_key)
        self._model = model

    async def respond(
        self,
        input_items: list[dict[str, Any]],
        tools: list[dict[str, Any]],
        previous_response_id: str | None = None,
    ) -> ModelResponse:
        request: dict[str, Any] = {
            "model": self._model,
            "input": input_items,
            "tools": tools,
        }
        if previous_response_id:
            request["previous_response_id"] = previous_response_id

        try:
            response = await self._client.responses.create(**request)
        except OpenAIError as exc:
            logger.error("OpenAI Responses call failed: %s", exc)
            raise ModelError(f"OpenAI error: {exc}") from exc

        return parse_response(response)


def _message_text(item: Any) -> str:
    parts = getattr(item, "content", None) or []
    return "\n".join(
        part.text for part in parts if isinstance(getattr(part, "text", None), str)
    ).strip()


def parse_response(response: Any) -> ModelResponse:
    """Extract the final text and the function calls of a Responses API object."""
    output = response.output or []
    tool_calls = [
        ToolCall(name=item.name, call_id=item.call_id, arguments=item.arguments or "")
        for item in output
        if getattr(item, "type", None) == "function_call" and item.name and item.call_id
    ]

    text = (getattr(response, "output_text", None) or "").strip()
    if not text:
        for item in output:
            if getattr(item, "type", None) == "message":
                text = _message_text(item)
                if text:
                    break

    logger.debug(
        "Model response %s: %d tool call(s), %d chars", response.id, len(tool_calls), len(text),
    )
    return ModelResponse(response_id=response.id, text=text, tool_calls=tool_calls)
