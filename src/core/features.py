"""Optional parts of the schema, detected once at start-up."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from src.data.db import BUDGET_TABLES, HouseholdDB

logger = logging.getLogger(__name__)

CONVERSATION_TABLES = ("agent_conversations", "agent_messages", "agent_attachments")


@dataclass(frozen=True)
class FeatureFlags:
    budget: bool = True
    conversations: bool = True

    @classmethod
    def detect(cls, db: HouseholdDB) -> FeatureFlags:
        """Inspect sqlite_master and report which modules are installed."""
        tables = db.existing_tables()
        flags = cls(
            budget=all(t in tables for t in BUDGET_TABLES),
            conversations=all(t in tables for t in CONVERSATION_TABLES),
        )
        logger.info("Features: budget=%s conversations=%s", flags.budget, flags.conversations)
        return flags
