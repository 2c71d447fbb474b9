"""
Soot Assistant — Monthly budget.

A month's budget is its concrete entries plus one projected entry for each
active recurring rule that has not been materialized that month yet.
"""

from __future__ import annotations

import calendar
import logging
from dataclasses import dataclass, field
from datetime import date

from src.data.db import HouseholdDB
from src.data.models import BudgetEntrySource, BudgetEntryType

logger = logging.getLogger(__name__)


def month_key(day: date) -> str:
    return f"{day.year:04d}-{day.month:02d}"


def month_bounds(month: str) -> tuple[date, date]:
    """First and last day of a YYYY-MM month."""
    year, number = (int(part) for part in month.split("-"))
    return date(year, number, 1), date(year, number, calendar.monthrange(year, number)[1])


def shift_month(month: str, delta: int) -> str:
    year, number = (int(part) for part in month.split("-"))
    index = year * 12 + number - 1 + delta
    return f"{index // 12:04d}-{index % 12 + 1:02d}"


def recurring_date_for_month(month: str, day_of_month: int | None) -> date:
    """The day a monthly rule lands on, clamped into the month."""
    first, last = month_bounds(month)
    return first.replace(day=max(1, min(day_of_month or 1, last.day)))


@dataclass
class BudgetLine:
    id: str
    type: BudgetEntryType
    source: BudgetEntrySource
    label: str
    amount_cents: int
    occurred_on: date
    is_forecast: bool
    projected: bool


@dataclass
class MonthlyBudget:
    month: str
    lines: list[BudgetLine] = field(default_factory=list)

    @property
    def income_cents(self) -> int:
        return sum(l.amount_cents for l in self.lines if l.type == BudgetEntryType.INCOME)

    @property
    def expense_cents(self) -> int:
        return sum(l.amount_cents for l in self.lines if l.type == BudgetEntryType.EXPENSE)

    @property
    def balance_cents(self) -> int:
        return self.income_cents - self.expense_cents


def build_monthly_budget(db: HouseholdDB, house_id: int, month: str) -> MonthlyBudget:
    """Concrete entries + projections, sorted by date."""
    entries = db.month_entries(house_id, month)
    materialized = {e.recurring_entry_id for e in entries if e.recurring_entry_id is not None}

    lines = [
        BudgetLine(
            id=str(e.id),
            type=e.type,
            source=e.source,
            label=e.label,
            amount_cents=e.amount_cents,
            occurred_on=date.fromisoformat(e.occurred_on),
            is_forecast=e.is_forecast,
            projected=False,
        )
        for e in entries
    ]
    for rule in db.active_recurring_entries(house_id, month):
        if rule.id in materialized:
            continue
        lines.append(BudgetLine(
            id=f"projected-{rule.id}-{month}",
            type=rule.type,
            source=BudgetEntrySource.RECURRING,
            label=rule.label,
            amount_cents=rule.amount_cents,
            occurred_on=recurring_date_for_month(month, rule.day_of_month),
            is_forecast=True,
            projected=True,
        ))

    # sort() is stable: same-day lines keep concrete-before-projected order.
    lines.sort(key=lambda l: l.occurred_on)
    budget = MonthlyBudget(month=month, lines=lines)
    logger.debug(
        "Budget %s for household #%d: %d lines, balance %d cents",
        month, house_id, len(lines), budget.balance_cents,
    )
    return budget
