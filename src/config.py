"""
Soot Assistant — Centralized configuration.

Loads all settings from .env and validates required keys.
This module is the foundation for every other module in the project.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (two levels up from src/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Telegram
    TELEGRAM_BOT_TOKEN: str

    # Agent: OpenAI Responses API (tool calling)
    OPENAI_API_KEY: str = ""
    AGENT_MODEL: str = "gpt-4.1-mini"
    AGENT_MAX_STEPS: int = 8
    AGENT_HISTORY_LIMIT: int = 60

    # Auxiliary text completion for titles and briefings (gemini, anthropic, openai, cohere)
    LLM_PROVIDER: str = "openai"
    LLM_MODEL: str = ""          # empty → smart default per provider
    LLM_API_KEY: str = ""        # empty → falls back to OPENAI_API_KEY for openai

    # SQLite
    DATABASE_PATH: str = "data/soot.db"
    ATTACHMENTS_DIR: str = "data/agent-uploads"

    # Budget module (tables are only created when enabled)
    BUDGET_ENABLED: bool = True

    # Security
    ALLOWED_USER_IDS: list[int] = []

    # Morning Briefing + recurring task materialization
    MORNING_BRIEFING_HOUR: int = 8
    TIMEZONE: str = "Europe/Paris"
    RECURRENCE_HORIZON_DAYS: int = 90

    @field_validator("ALLOWED_USER_IDS", mode="before")
    @classmethod
    def parse_user_ids(cls, v: str | list[int]) -> list[int]:
        if isinstance(v, list):
            return v
        if isinstance(v, str) and v.strip():
            return [int(uid.strip()) for uid in v.split(",") if uid.strip()]
        return []

    @field_validator("MORNING_BRIEFING_HOUR", "AGENT_MAX_STEPS", "AGENT_HISTORY_LIMIT",
                     "RECURRENCE_HORIZON_DAYS", mode="before")
    @classmethod
    def parse_int(cls, v: str | int) -> int:
        return int(v)

    @field_validator("BUDGET_ENABLED", mode="before")
    @classmethod
    def parse_bool(cls, v: str | bool) -> bool:
        if isinstance(v, bool):
            return v
        return str(v).strip().lower() not in ("0", "false", "no", "off", "")


def _load_settings() -> Settings:
    """Load settings from environment, validating required keys."""
    token = os.getenv("TELEGRAM_BOT_TOKEN", "")

    if not token or token.startswith("your-"):
        print("ERROR: TELEGRAM_BOT_TOKEN is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    # OPENAI_API_KEY is checked at turn time: the bot still starts and
    # answers with a configuration error instead of crashing.
    return Settings(
        TELEGRAM_BOT_TOKEN=token,
        OPENAI_API_KEY=os.getenv("OPENAI_API_KEY", ""),
        AGENT_MODEL=os.getenv("AGENT_MODEL", "gpt-4.1-mini"),
        AGENT_MAX_STEPS=os.getenv("AGENT_MAX_STEPS", "8"),
        AGENT_HISTORY_LIMIT=os.getenv("AGENT_HISTORY_LIMIT", "60"),
        LLM_PROVIDER=os.getenv("LLM_PROVIDER", "openai"),
        LLM_MODEL=os.getenv("LLM_MODEL", ""),
        LLM_API_KEY=os.getenv("LLM_API_KEY", ""),
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/soot.db"),
        ATTACHMENTS_DIR=os.getenv("ATTACHMENTS_DIR", "data/agent-uploads"),
        BUDGET_ENABLED=os.getenv("BUDGET_ENABLED", "true"),
        ALLOWED_USER_IDS=os.getenv("ALLOWED_USER_IDS", ""),
        MORNING_BRIEFING_HOUR=os.getenv("MORNING_BRIEFING_HOUR", "8"),
        TIMEZONE=os.getenv("TIMEZONE", "Europe/Paris"),
        RECURRENCE_HORIZON_DAYS=os.getenv("RECURRENCE_HORIZON_DAYS", "90"),
    )


# Singleton, imported by all other modules as:
#   from src.config import settings
settings = _load_settings()
