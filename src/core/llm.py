"""
Soot Assistant — Auxiliary LLM provider.

Plain text completion for the side jobs that do not need tool calling:
conversation titles and the morning briefing. `complete()` routes to the
provider named by LLM_PROVIDER: openai (default), gemini, anthropic, cohere.

The agent itself never goes through here; it talks to the OpenAI Responses
API through src.adapters.openai_responses.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


class LLMError(Exception):
    """The provider answered without any usable text."""


@dataclass(frozen=True)
class Prompt:
    system: str
    user_message: str
    max_tokens: int
    temperature: float


_ProviderFn = Callable[[str, str, Prompt], Awaitable[str]]

# ---------------------------------------------------------------------------
# Providers: each returns the raw text, possibly empty
# ---------------------------------------------------------------------------


async def _gemini(api_key: str, model: str, prompt: Prompt) -> str:
    import google.generativeai as genai

    genai.configure(api_key=api_key)
    gm = genai.GenerativeModel(model_name=model, system_instruction=prompt.system)
    response = await gm.generate_content_async(
        prompt.user_message,
        generation_config=genai.types.GenerationConfig(
            max_output_tokens=prompt.max_tokens,
            temperature=prompt.temperature,
        ),
    )
    return response.text


async def _anthropic(api_key: str, model: str, prompt: Prompt) -> str:
    import anthropic

    client = anthropic.AsyncAnthropic(api_key=api_key)
    response = await client.messages.create(
        model=model,
        max_tokens=prompt.max_tokens,
        temperature=prompt.temperature,
        system=prompt.system,
        messages=[{"role": "user", "content": prompt.user_message}],
    )
    return "".join(block.text for block in response.content if block.type == "text")


async def _openai(api_key: str, model: str, prompt: Prompt) -> str:
    from openai import AsyncOpenAI

    client = AsyncOpenAI(api_key=api_key)
    response = await client.chat.completions.create(
        model=model,
        max_tokens=prompt.max_tokens,
        temperature=prompt.temperature,
        messages=[
            {"role": "system", "content": prompt.system},
            {"role": "user", "content": prompt.user_message},
        ],
    )
    return response.choices[0].message.content or ""


async def _cohere(api_key: str, model: str, prompt: Prompt) -> str:
    import cohere

    client = cohere.AsyncClientV2(api_key=api_key)
    response = await client.chat(
        model=model,
        max_tokens=prompt.max_tokens,
        temperature=prompt.temperature,
        messages=[
            {"role": "system", "content": prompt.system},
            {"role": "user", "content": prompt.user_message},
        ],
    )
    return "".join(item.text for item in response.message.content or [] if item.type == "text")


_PROVIDERS: dict[str, tuple[_ProviderFn, str]] = {
    "openai":    (_openai,    "gpt-4o-mini"),
    "gemini":    (_gemini,    "gemini-2.0-flash"),
    "anthropic": (_anthropic, "claude-haiku-4-5-20251001"),
    "cohere":    (_cohere,    "command-a-03-2025"),
}


# ---------------------------------------------------------------------------
# Selection
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class _Choice:
    name: str
    fn: _ProviderFn
    model: str
    api_key: str


_choice: _Choice | None = None


def _api_key(provider_name: str) -> str:
    from src.config import settings

    # The agent key doubles as the auxiliary key when both run on OpenAI.
    if not settings.LLM_API_KEY and provider_name == "openai":
        return settings.OPENAI_API_KEY
    return settings.LLM_API_KEY


def _select() -> _Choice:
    from src.config import settings

    name = settings.LLM_PROVIDER.lower()
    if name not in _PROVIDERS:
        raise ValueError(f"Unknown LLM_PROVIDER={name!r}. Supported: {', '.join(_PROVIDERS)}")
    fn, default_model = _PROVIDERS[name]
    choice = _Choice(name, fn, settings.LLM_MODEL or default_model, _api_key(name))
    logger.info("Auxiliary LLM: %s, model: %s", choice.name, choice.model)
    return choice


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def is_configured() -> bool:
    """True when the selected provider has an API key."""
    from src.config import settings

    return bool(_api_key(settings.LLM_PROVIDER.lower()))


async def complete(
    system: str,
    user_message: str,
    max_tokens: int = 256,
    temperature: float = 0.3,
) -> str:
    """Send a prompt to the configured provider and return the stripped text.

    Raises LLMError on an empty answer and lets provider errors propagate;
    callers decide on a fallback.
    """
    global _choice
    if _choice is None:
        _choice = _select()

    prompt = Prompt(system, user_message, max_tokens, temperature)
    text = (await _choice.fn(_choice.api_key, _choice.model, prompt)).strip()
    if not text:
        raise LLMError(f"{_choice.name} returned an empty completion")
    return text


def reset_provider() -> None:
    """Forget the cached provider so the next call re-reads settings."""
    global _choice
    _choice = None
