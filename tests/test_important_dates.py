"""Tests for src.core.important_dates."""

from datetime import date

from src.core.important_dates import next_occurrence, occurrences_between, upcoming
from src.data.models import ImportantDate, ImportantDateType

TODAY = date(2025, 3, 15)


def _item(title, iso, yearly=True, item_id=1):
    return ImportantDate(item_id, 1, title, ImportantDateType.BIRTHDAY, iso, yearly)


class TestNextOccurrence:
    def test_later_this_year(self):
        assert next_occurrence(date(1990, 6, 1), True, TODAY) == date(2025, 6, 1)

    def test_already_passed_rolls_to_next_year(self):
        assert next_occurrence(date(1990, 2, 10), True, TODAY) == date(2026, 2, 10)

    def test_today_counts(self):
        assert next_occurrence(date(1990, 3, 15), True, TODAY) == TODAY

    def test_leap_day_in_common_year(self):
        assert next_occurrence(date(2000, 2, 29), True, date(2025, 1, 1)) == date(2025, 2, 28)

    def test_one_off_is_the_date_itself(self):
        assert next_occurrence(date(2024, 5, 1), False, TODAY) == date(2024, 5, 1)


class TestUpcoming:
    def test_sorted_and_past_one_offs_dropped(self):
        items = [
            _item("Léa", "2015-04-02", item_id=1),
            _item("Brocante", "2025-03-01", yearly=False, item_id=2),
            _item("Tom", "2012-03-20", item_id=3),
        ]
        result = upcoming(items, TODAY)
        assert [(item.title, when) for item, when in result] == [
            ("Tom", date(2025, 3, 20)),
            ("Léa", date(2025, 4, 2)),
        ]

    def test_within_days(self):
        items = [_item("Tom", "2012-03-20"), _item("Léa", "2015-04-20")]
        assert [item.title for item, _ in upcoming(items, TODAY, within_days=7)] == ["Tom"]


class TestOccurrencesBetween:
    def test_yearly_and_one_off(self):
        items = [
            _item("Tom", "2012-03-20"),
            _item("Fête", "2025-03-16", yearly=False),
            _item("Vacances", "2025-08-01", yearly=False),
        ]
        found = occurrences_between(items, TODAY, date(2025, 3, 22))
        assert [(item.title, when) for item, when in found] == [
            ("Fête", date(2025, 3, 16)),
            ("Tom", date(2025, 3, 20)),
        ]

    def test_not_before_source_year(self):
        items = [_item("Mariage", "2026-03-18")]
        assert occurrences_between(items, TODAY, date(2025, 3, 22)) == []
