from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings
from models import BudgetPeriod


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end


def local_today() -> date:
    return datetime.now(ZoneInfo(get_settings().timezone)).date()


def current_week(today: Optional[date] = None) -> Period:
    today = today or local_today()
    # date.weekday() is Monday=0; weeks here start on Sunday
    days_since_sunday = (today.weekday() + 1) % 7
    start = today - timedelta(days=days_since_sunday)
    return Period("weekly", start, start + timedelta(days=6))


def current_month(today: Optional[date] = None) -> Period:
    today = today or local_today()
    first = today.replace(day=1)
    if first.month == 12:
        next_month = first.replace(year=first.year + 1, month=1)
    else:
        next_month = first.replace(month=first.month + 1)
    return Period("monthly", first, next_month - date.resolution)


def budget_period(
    period: Optional[BudgetPeriod], *, today: Optional[date] = None
) -> Period:
    """Window the current budget is measured against.

    Without a budget the calendar month is used.
    """
    if period == BudgetPeriod.weekly:
        return current_week(today)
    return current_month(today)


def trailing_days(days: int, *, today: Optional[date] = None) -> Period:
    if days < 1:
        raise ValueError("days must be positive")
    today = today or local_today()
    return Period(f"last_{days}_days", today - timedelta(days=days - 1), today)
