"""
Soot Assistant — Conversation titles.

New conversations are titled "Conversation dd/mm/yyyy HH:MM". After the
first user message a detached job asks the auxiliary LLM for a short title
and applies it only if the conversation still has its original title.
The job never blocks a turn; its failures are logged and dropped.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Awaitable, Callable

from src.core import llm
from src.data.conversation_db import ConversationDB

logger = logging.getLogger(__name__)

TITLE_MAX_LENGTH = 120
SOURCE_MAX_LENGTH = 700

_DEFAULT_TITLE_RE = re.compile(r"^Conversation\s+\d{2}/\d{2}/\d{4}")

_TITLE_SYSTEM = "\n".join([
    "Génère un titre clair pour une conversation utilisateur/assistant de gestion de maison.",
    "Contraintes:",
    "- Français.",
    "- Entre 3 et 8 mots.",
    "- Maximum 60 caractères.",
    "- Ne mets ni guillemets ni point final.",
    "- Ne commence pas par 'Conversation'.",
    "Objectif: résumer l'intention principale de l'utilisateur.",
    "Retourne uniquement le titre.",
])

TitleGenerator = Callable[[str, list[str]], Awaitable[str | None]]

# Strong references to running jobs; asyncio only keeps weak ones.
_background_tasks: set[asyncio.Task] = set()


def is_default_conversation_title(title: str) -> bool:
    return bool(_DEFAULT_TITLE_RE.match(title))


def _compact(value: str) -> str:
    return re.sub(r"\s+", " ", value).strip()


def crop_text(value: str, max_length: int) -> str:
    compact = _compact(value)
    if len(compact) <= max_length:
        return compact
    return f"{compact[:max_length].rstrip()}..."


def normalize_title(raw: str) -> str | None:
    """Strip quotes and trailing dots; None when nothing is left."""
    cleaned = _compact(raw)
    cleaned = re.sub(r"^[\"'`«\s]+", "", cleaned)
    cleaned = re.sub(r"[\"'`»\s]+$", "", cleaned)
    cleaned = re.sub(r"\.+$", "", cleaned).strip()
    if not cleaned:
        return None
    return crop_text(cleaned, TITLE_MAX_LENGTH)


async def generate_conversation_title(message: str, attachment_names: list[str]) -> str | None:
    """Ask the auxiliary LLM for a title. None when no provider is configured."""
    if not llm.is_configured():
        return None
    names = [crop_text(name, 80) for name in attachment_names[:6]]
    prompt = "\n".join([
        f"Message utilisateur: {crop_text(message, SOURCE_MAX_LENGTH) or '(message vide)'}",
        f"Pièces jointes: {', '.join(names) or 'aucune'}",
    ])
    raw = await llm.complete(_TITLE_SYSTEM, prompt, max_tokens=60, temperature=0.2)
    return normalize_title(raw or "")


async def run_retitle_job(
    conversations: ConversationDB,
    conversation_id: int,
    user_id: int,
    current_title: str,
    message: str,
    attachment_names: list[str],
    generator: TitleGenerator = generate_conversation_title,
) -> bool:
    """Generate and apply a title. Returns True if the conversation was renamed."""
    title = await generator(message, attachment_names)
    if not title or title == current_title:
        return False
    return conversations.retitle_if_unchanged(conversation_id, user_id, current_title, title)


def _job_done(task: asyncio.Task) -> None:
    _background_tasks.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(
            "Conversation retitle job failed (%s): %s", task.get_name(), exc, exc_info=exc,
        )


def enqueue_retitle_job(
    conversations: ConversationDB,
    conversation_id: int,
    user_id: int,
    current_title: str,
    message: str,
    attachment_names: list[str],
    generator: TitleGenerator = generate_conversation_title,
) -> asyncio.Task:
    """Start run_retitle_job in the background without awaiting it."""
    task = asyncio.create_task(
        run_retitle_job(
            conversations, conversation_id, user_id, current_title,
            message, attachment_names, generator,
        ),
        name=f"retitle-{conversation_id}",
    )
    _background_tasks.add(task)
    task.add_done_callback(_job_done)
    return task
