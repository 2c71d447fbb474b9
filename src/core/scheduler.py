"""
Soot Assistant — Daily Jobs.

Runs once a day at MORNING_BRIEFING_HOUR (TIMEZONE):

1. Recurring tasks: every household gets the missing instances of its
   recurring templates for the next RECURRENCE_HORIZON_DAYS days.
2. Morning briefing: every member receives today's open tasks and the
   important dates of the coming week, summarized by the auxiliary LLM
   when one is configured.

This module is provider-agnostic: it depends on the NotificationPort
protocol, not on Telegram.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import date
from typing import TYPE_CHECKING

from src.config import settings
from src.core import llm
from src.core.formatting import format_date, format_human_today
from src.core.important_dates import upcoming
from src.core.recurrence import ensure_recurring_tasks

if TYPE_CHECKING:
    from src.data.db import HouseholdDB
    from src.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)

BRIEFING_DATES_WINDOW_DAYS = 7

_BRIEFING_SYSTEM = (
    "Tu es Soot, l'assistant de la maison. "
    "Résume les tâches du jour et les dates importantes suivantes en un message "
    "de bonjour chaleureux et concis, en français. Emojis avec parcimonie. "
    "S'il n'y a rien, dis-le simplement. Moins de 150 mots."
)


async def run_daily_jobs(
    db: HouseholdDB,
    notifier: NotificationPort,
    today: date | None = None,
) -> None:
    """Materialize recurring tasks, then send the morning briefings."""
    today = today or date.today()
    materialize_all_households(db, today)
    await send_morning_briefing(db, notifier, today)


# ---------------------------------------------------------------------------
# Recurring tasks
# ---------------------------------------------------------------------------


def materialize_all_households(db: HouseholdDB, today: date | None = None) -> int:
    """Returns the number of task instances created across households."""
    total = 0
    for household in db.list_households():
        try:
            created = ensure_recurring_tasks(
                db, household.id, today, horizon_days=settings.RECURRENCE_HORIZON_DAYS,
            )
        except sqlite3.Error as exc:
            logger.error("Recurring tasks failed for household #%d: %s", household.id, exc)
            continue
        total += len(created)
    return total


# ---------------------------------------------------------------------------
# Morning briefing
# ---------------------------------------------------------------------------


async def send_morning_briefing(
    db: HouseholdDB,
    notifier: NotificationPort,
    today: date | None = None,
) -> None:
    """Send the briefing of each household to each of its members."""
    today = today or date.today()
    for household in db.list_households():
        members = db.list_members(household.id)
        if not members:
            continue
        summary = await build_morning_summary(db, household.id, today)
        for member in members:
            try:
                await notifier.send_message(member.telegram_user_id, summary)
                logger.info("Morning briefing sent to user %d", member.telegram_user_id)
            except Exception as exc:
                logger.error(
                    "Failed to send morning briefing to %d: %s", member.telegram_user_id, exc,
                )


def collect_briefing_data(db: HouseholdDB, house_id: int, today: date) -> str:
    """Plain-text list of today's open tasks and the coming important dates."""
    tasks = db.tasks_for_day(house_id, today.isoformat())
    if tasks:
        lines = [f"  - {t.title}" for t in tasks]
        tasks_text = "Tâches du jour:\n" + "\n".join(lines)
    else:
        tasks_text = "Tâches du jour: aucune"

    dates = upcoming(
        db.list_all("important_date", house_id), today, within_days=BRIEFING_DATES_WINDOW_DAYS,
    )
    if dates:
        lines = [f"  - {item.title} ({format_date(occurrence)})" for item, occurrence in dates]
        dates_text = "Dates importantes cette semaine:\n" + "\n".join(lines)
    else:
        dates_text = "Dates importantes cette semaine: aucune"

    return f"{tasks_text}\n\n{dates_text}"


async def build_morning_summary(db: HouseholdDB, house_id: int, today: date) -> str:
    """Gather tasks and dates, then ask the LLM for a friendly summary.

    Graceful degradation:
    - DB fails -> fallback message
    - No provider or LLM fails -> raw text formatting
    """
    greeting = f"Bonjour ! Nous sommes {format_human_today(today)}."
    try:
        raw_data = collect_briefing_data(db, house_id, today)
    except sqlite3.Error as exc:
        logger.warning("Morning briefing: data fetch failed for household #%d: %s", house_id, exc)
        return f"{greeting}\n\nJe n'ai pas pu charger les tâches ce matin. Demande-moi « mes tâches du jour »."

    if not llm.is_configured():
        return f"{greeting}\n\n{raw_data}"

    try:
        summary = await llm.complete(
            system=_BRIEFING_SYSTEM,
            user_message=f"Date: {format_human_today(today)}\n\n{raw_data}",
            max_tokens=400,
        )
        return summary.strip()
    except Exception as exc:
        logger.warning("Morning briefing: LLM summarization failed: %s", exc)
        return f"{greeting}\n\n{raw_data}"
