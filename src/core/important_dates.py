"""Next occurrences of birthdays, anniversaries and other important dates."""

from __future__ import annotations

import calendar
from datetime import date

from src.data.models import ImportantDate


def _in_year(source: date, year: int) -> date:
    # 29 February falls back to the last day of February.
    last = calendar.monthrange(year, source.month)[1]
    return date(year, source.month, min(source.day, last))


def next_occurrence(source: date, recurring_yearly: bool, today: date | None = None) -> date:
    """The date itself for one-off dates, else the next yearly anniversary (today included)."""
    if not recurring_yearly:
        return source
    today = today or date.today()
    this_year = _in_year(source, today.year)
    if this_year >= today:
        return this_year
    return _in_year(source, today.year + 1)


def upcoming(
    items: list[ImportantDate], today: date | None = None, within_days: int | None = None,
) -> list[tuple[ImportantDate, date]]:
    """(item, next occurrence) pairs sorted by occurrence.

    One-off dates already past are dropped. within_days limits the window.
    """
    today = today or date.today()
    pairs = []
    for item in items:
        occurrence = next_occurrence(date.fromisoformat(item.date), item.is_recurring_yearly, today)
        if occurrence < today:
            continue
        if within_days is not None and (occurrence - today).days > within_days:
            continue
        pairs.append((item, occurrence))
    pairs.sort(key=lambda pair: (pair[1], pair[0].title))
    return pairs


def occurrences_between(
    items: list[ImportantDate], start: date, end: date,
) -> list[tuple[ImportantDate, date]]:
    """Every occurrence in [start, end], yearly dates repeated per year."""
    found = []
    for item in items:
        source = date.fromisoformat(item.date)
        if not item.is_recurring_yearly:
            if start <= source <= end:
                found.append((item, source))
            continue
        for year in range(max(start.year, source.year), end.year + 1):
            occurrence = _in_year(source, year)
            if start <= occurrence <= end:
                found.append((item, occurrence))
    found.sort(key=lambda pair: (pair[1], pair[0].title))
    return found
