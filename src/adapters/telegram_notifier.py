"""Telegram notification adapter — implements NotificationPort.

Wraps a telegram.Bot instance. Long texts are sent as several messages
because Telegram caps a message at 4096 characters.
"""

from __future__ import annotations

import logging

from telegram import Bot

logger = logging.getLogger(__name__)

TELEGRAM_MESSAGE_LIMIT = 4096


def split_message(text: str, limit: int = TELEGRAM_MESSAGE_LIMIT) -> list[str]:
    """Cut a text into Telegram-sized chunks, preferring line breaks."""
    chunks: list[str] = []
    remaining = text
    while len(remaining) > limit:
        cut = remaining.rfind("\n", 0, limit)
        if cut <= 0:
            cut = limit
        chunks.append(remaining[:cut])
        remaining = remaining[cut:].lstrip("\n")
    if remaining or not chunks:
        chunks.append(remaining)
    return chunks


class TelegramNotifier:
    """Telegram implementation of NotificationPort."""

    def __init__(self, bot: Bot) -> None:
        self._bot = bot

    async def send_message(self, user_id: int, text: str) -> None:
        chunks = split_message(text)
        for chunk in chunks:
            await self._bot.send_message(chat_id=user_id, text=chunk)
        logger.debug("Sent %d message(s) to %d", len(chunks), user_id)
