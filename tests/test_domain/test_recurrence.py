"""
Tests for recurrence projection
"""
from datetime import date

import pytest

from app.domain.recurrence import next_occurrence, project_occurrences, add_months


def test_once_has_no_next_occurrence():
    assert next_occurrence(date(2024, 1, 15), "once") is None


def test_weekly_and_biweekly_step_in_days():
    assert next_occurrence(date(2024, 1, 15), "weekly") == date(2024, 1, 22)
    assert next_occurrence(date(2024, 1, 15), "biweekly") == date(2024, 1, 29)


def test_monthly_keeps_day_of_month():
    assert next_occurrence(date(2024, 1, 15), "monthly") == date(2024, 2, 15)


def test_monthly_clamps_to_last_day():
    """Jan 31 monthly -> Feb 29 in a leap year, Feb 28 otherwise"""
    assert next_occurrence(date(2024, 1, 31), "monthly") == date(2024, 2, 29)
    assert next_occurrence(date(2023, 1, 31), "monthly") == date(2023, 2, 28)


def test_quarterly_crosses_year():
    assert next_occurrence(date(2024, 11, 30), "quarterly") == date(2025, 2, 28)


def test_annual_from_leap_day():
    assert next_occurrence(date(2024, 2, 29), "annual") == date(2025, 2, 28)


def test_unknown_frequency_rejected():
    with pytest.raises(ValueError):
        next_occurrence(date(2024, 1, 1), "daily")


def test_add_months_negative():
    assert add_months(date(2024, 3, 31), -1) == date(2024, 2, 29)


def test_project_occurrences_chains_from_previous_date():
    """Clamped dates stay clamped, exactly like the lazy spawn chain"""
    dates = project_occurrences(date(2024, 1, 31), "monthly", date(2024, 4, 30))
    assert dates == [date(2024, 1, 31), date(2024, 2, 29), date(2024, 3, 29), date(2024, 4, 29)]


def test_project_occurrences_once_and_empty_range():
    assert project_occurrences(date(2024, 1, 1), "once", date(2024, 12, 31)) == [date(2024, 1, 1)]
    assert project_occurrences(date(2024, 2, 1), "weekly", date(2024, 1, 1)) == []


def test_project_occurrences_respects_limit():
    dates = project_occurrences(date(2024, 1, 1), "weekly", date(2030, 1, 1), limit=5)
    assert len(dates) == 5
    assert dates[-1] == date(2024, 1, 29)
