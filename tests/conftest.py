"""Shared test fixtures and configuration.

Sets up fake environment variables so src.config doesn't sys.exit(),
and provides common fixtures like a temp DB and a household with a member.
"""

import json
import os

# Patch env vars BEFORE any src imports
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "fake-token-for-tests")
os.environ.setdefault("OPENAI_API_KEY", "")
os.environ.setdefault("LLM_API_KEY", "")
os.environ.setdefault("LLM_PROVIDER", "openai")
os.environ.setdefault("ALLOWED_USER_IDS", "12345")
os.environ.setdefault("DATABASE_PATH", ":memory:")

from datetime import date

import pytest

TODAY = date(2025, 3, 15)


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_soot.db")


@pytest.fixture
def db(tmp_db_path):
    """Return a HouseholdDB (budget enabled) backed by a temp file."""
    from src.data.db import HouseholdDB
    return HouseholdDB(db_path=tmp_db_path, enable_budget=True)


@pytest.fixture
def conversation_db(tmp_db_path):
    """Return a ConversationDB sharing the temp file."""
    from src.data.conversation_db import ConversationDB
    return ConversationDB(db_path=tmp_db_path)


@pytest.fixture
def house(db):
    return db.create_household("Maison Test")


@pytest.fixture
def other_house(db):
    return db.create_household("Maison Voisine")


@pytest.fixture
def member(db, house):
    return db.add_member(house.id, 12345, "Alice Martin", "alice@example.com")


@pytest.fixture
def ctx(house, member):
    from src.core.tools import ToolContext
    return ToolContext(user_id=member.id, house_id=house.id)


@pytest.fixture
def executor(db):
    """ToolExecutor with budget enabled and a fixed clock (2025-03-15)."""
    from src.core.features import FeatureFlags
    from src.core.tools import ToolExecutor
    return ToolExecutor(db, FeatureFlags(budget=True), clock=lambda: TODAY)


@pytest.fixture
def call_tool(executor, ctx):
    """Run a tool and decode its JSON result."""

    async def _call(name, args=None, context=None):
        raw = await executor.execute(name, args or {}, context or ctx)
        return json.loads(raw)

    return _call
