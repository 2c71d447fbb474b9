"""Tests for src.core.recurrence — recurring task materialization."""

from datetime import date

import pytest

from src.core.recurrence import add_interval, ensure_recurring_tasks, occurrences
from src.data.models import RecurrenceUnit


class TestOccurrences:
    def test_monthly_end_of_month_does_not_drift(self):
        dates = occurrences(
            date(2025, 1, 31), RecurrenceUnit.MONTHLY, 1, date(2025, 1, 1), date(2025, 5, 31),
        )
        assert dates == [
            date(2025, 1, 31), date(2025, 2, 28), date(2025, 3, 31),
            date(2025, 4, 30), date(2025, 5, 31),
        ]

    def test_daily_anchor_before_window(self):
        dates = occurrences(
            date(2025, 3, 1), RecurrenceUnit.DAILY, 2, date(2025, 3, 10), date(2025, 3, 15),
        )
        assert dates == [date(2025, 3, 11), date(2025, 3, 13), date(2025, 3, 15)]

    def test_yearly_leap_day(self):
        dates = occurrences(
            date(2024, 2, 29), RecurrenceUnit.YEARLY, 1, date(2024, 1, 1), date(2028, 12, 31),
        )
        assert dates == [
            date(2024, 2, 29), date(2025, 2, 28), date(2026, 2, 28),
            date(2027, 2, 28), date(2028, 2, 29),
        ]

    @pytest.mark.parametrize("unit, interval, expected", [
        (RecurrenceUnit.DAILY, 3, date(2025, 3, 18)),
        (RecurrenceUnit.WEEKLY, 2, date(2025, 3, 29)),
        (RecurrenceUnit.MONTHLY, 1, date(2025, 4, 15)),
        (RecurrenceUnit.YEARLY, 1, date(2026, 3, 15)),
    ])
    def test_add_interval(self, unit, interval, expected):
        assert add_interval(date(2025, 3, 15), unit, interval) == expected


class TestEnsureRecurringTasks:
    def test_weekly_fills_horizon(self, db, house):
        template, _ = db.create_recurring_task(
            house.id, "Sortir les poubelles", RecurrenceUnit.WEEKLY, 1, "2025-03-10",
        )
        created = ensure_recurring_tasks(db, house.id, today=date(2025, 3, 10), horizon_days=21)
        assert [t.due_date for t in created] == ["2025-03-17", "2025-03-24", "2025-03-31"]
        assert all(t.parent_id == template.id for t in created)

    def test_idempotent(self, db, house):
        db.create_recurring_task(house.id, "Arroser", RecurrenceUnit.DAILY, 1, "2025-03-10")
        ensure_recurring_tasks(db, house.id, today=date(2025, 3, 10), horizon_days=5)
        again = ensure_recurring_tasks(db, house.id, today=date(2025, 3, 10), horizon_days=5)
        assert again == []
        assert len(db.list_tasks(house.id, limit=50)) == 6

    def test_instances_copy_template_fields(self, db, house, member):
        zone = db.create_named("zone", house.id, "Jardin")
        db.create_recurring_task(
            house.id, "Tondre", RecurrenceUnit.WEEKLY, 2, "2025-03-10",
            description="Côté rue",
            assignee_id=member.id,
            relations={"zone_id": zone.id},
        )
        created = ensure_recurring_tasks(db, house.id, today=date(2025, 3, 10), horizon_days=14)
        assert len(created) == 1
        instance = created[0]
        assert instance.due_date == "2025-03-24"
        assert instance.description == "Côté rue"
        assert instance.assignee_id == member.id
        assert instance.zone_id == zone.id

    def test_other_households_untouched(self, db, house, other_house):
        db.create_recurring_task(other_house.id, "Arroser", RecurrenceUnit.DAILY, 1, "2025-03-10")
        assert ensure_recurring_tasks(db, house.id, today=date(2025, 3, 10)) == []
