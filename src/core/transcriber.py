"""
Soot Assistant — Audio Transcriber.

Voice notes sent to the bot are transcribed with OpenAI Whisper, then the
text goes through the same agent turn as a typed message.
"""

from __future__ import annotations

import logging
from pathlib import Path

from openai import AsyncOpenAI

from src.config import settings

logger = logging.getLogger(__name__)

_client: AsyncOpenAI | None = None


def _get_client() -> AsyncOpenAI:
    global _client
    if _client is None:
        _client = AsyncOpenAI(api_key=settings.OPENAI_API_KEY)
    return _client


async def transcribe_audio(file_path: str) -> str:
    """Transcribe an audio file using OpenAI Whisper.

    Args:
        file_path: Path to the audio file (OGG, MP3, etc.).

    Returns:
        Transcribed text string.

    Raises:
        openai.OpenAIError: If the Whisper API call fails.
    """
    try:
        with open(file_path, "rb") as audio_file:
            response = await _get_client().audio.transcriptions.create(
                model="whisper-1",
                file=audio_file,
                language="fr",
            )
    except Exception as exc:
        logger.error("Whisper transcription failed for %s: %s", file_path, exc)
        raise
    text = response.text.strip()
    logger.info("Transcribed %d chars from %s", len(text), Path(file_path).name)
    return text
