from datetime import date, timedelta

import pytest

from models import BudgetPeriod
from periods import budget_period, current_month, current_week, trailing_days


def _days(start: date, count: int):
    return [start + timedelta(days=i) for i in range(count)]


def test_weekly_period_starts_on_sunday_and_spans_seven_days() -> None:
    for today in _days(date(2024, 12, 20), 60):
        period = budget_period(BudgetPeriod.weekly, today=today)
        assert period.start.weekday() == 6  # Sunday
        assert period.end - period.start == timedelta(days=6)
        assert period.start <= today <= period.end


def test_weekly_period_on_a_sunday_starts_that_day() -> None:
    sunday = date(2026, 10, 18)
    period = current_week(sunday)
    assert period.start == sunday
    assert period.end == date(2026, 10, 24)


def test_weekly_period_on_saturday_reaches_back_to_sunday() -> None:
    period = current_week(date(2026, 10, 24))
    assert period.start == date(2026, 10, 18)
    assert period.end == date(2026, 10, 24)


def test_monthly_period_covers_calendar_month_regardless_of_weekday() -> None:
    for today in _days(date(2024, 1, 1), 400):
        period = budget_period(BudgetPeriod.monthly, today=today)
        assert period.start == today.replace(day=1)
        assert (period.end + timedelta(days=1)).day == 1
        assert period.end.month == today.month


@pytest.mark.parametrize(
    "today, end",
    [
        (date(2024, 2, 10), date(2024, 2, 29)),
        (date(2025, 2, 10), date(2025, 2, 28)),
        (date(2025, 12, 31), date(2025, 12, 31)),
        (date(2026, 4, 1), date(2026, 4, 30)),
    ],
)
def test_monthly_period_last_day(today: date, end: date) -> None:
    assert current_month(today).end == end


def test_no_budget_uses_monthly_window() -> None:
    today = date(2026, 10, 18)
    assert budget_period(None, today=today) == current_month(today)


def test_trailing_days_is_inclusive_of_today() -> None:
    period = trailing_days(7, today=date(2026, 10, 18))
    assert period.start == date(2026, 10, 12)
    assert period.end == date(2026, 10, 18)
    assert period.contains(date(2026, 10, 12))
    assert not period.contains(date(2026, 10, 11))
