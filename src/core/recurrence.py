"""
Soot Assistant — Recurring task materialization.

A recurring task is a template plus concrete instances (parent_id ->
template). Creating one stores the first instance; this module fills in
the following ones up to a rolling horizon. Run daily from the scheduler.
"""

from __future__ import annotations

import calendar
import logging
from datetime import date, timedelta

from src.data.db import TASK_RELATION_COLUMNS, HouseholdDB
from src.data.models import RecurrenceUnit, Task

logger = logging.getLogger(__name__)

HORIZON_DAYS = 90


def _add_months(day: date, months: int) -> date:
    """Month arithmetic; the day clamps to the end of a shorter month."""
    index = day.month - 1 + months
    year, month = day.year + index // 12, index % 12 + 1
    last = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last))


def add_interval(day: date, unit: RecurrenceUnit, interval: int) -> date:
    """Shift a date by `interval` recurrence units."""
    if unit == RecurrenceUnit.DAILY:
        return day + timedelta(days=interval)
    if unit == RecurrenceUnit.WEEKLY:
        return day + timedelta(weeks=interval)
    if unit == RecurrenceUnit.MONTHLY:
        return _add_months(day, interval)
    return _add_months(day, 12 * interval)


def occurrences(
    anchor: date, unit: RecurrenceUnit, interval: int, start: date, end: date,
) -> list[date]:
    """Occurrences of a series in [start, end].

    Every occurrence is computed from the anchor (anchor + k * interval),
    so a 31st does not drift to the 28th after February.
    """
    interval = max(1, interval)
    result: list[date] = []
    k = 0
    if anchor < start and unit in (RecurrenceUnit.DAILY, RecurrenceUnit.WEEKLY):
        step = interval if unit == RecurrenceUnit.DAILY else 7 * interval
        k = (start - anchor).days // step
    while True:
        current = add_interval(anchor, unit, k * interval)
        if current > end:
            return result
        if current >= start:
            result.append(current)
        k += 1


def ensure_recurring_tasks(
    db: HouseholdDB,
    house_id: int,
    today: date | None = None,
    horizon_days: int = HORIZON_DAYS,
) -> list[Task]:
    """Create the missing instances of every template of a household.

    Covers [today, today + horizon_days]; due dates that already have an
    instance are skipped, so running this repeatedly is harmless.
    Returns the tasks created.
    """
    today = today or date.today()
    horizon = today + timedelta(days=horizon_days)
    created: list[Task] = []

    for template in db.list_recurring_templates(house_id):
        existing = db.instance_due_dates(house_id, template.id)
        anchor = date.fromisoformat(template.due_date)
        for due in occurrences(
            anchor, template.recurrence_unit, template.recurrence_interval or 1, today, horizon,
        ):
            if due.isoformat() in existing:
                continue
            created.append(db.create_task(
                house_id,
                template.title,
                description=template.description,
                due_date=due.isoformat(),
                reminder_offset_days=template.reminder_offset_days,
                created_by=template.created_by,
                assignee_id=template.assignee_id,
                relations={col: getattr(template, col) for col in TASK_RELATION_COLUMNS},
                parent_id=template.id,
            ))

    if created:
        logger.info("Materialized %d recurring task(s) for household #%d", len(created), house_id)
    return created
