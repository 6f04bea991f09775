from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def local_now() -> datetime:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).replace(tzinfo=None, microsecond=0)


def _shift_month(year: int, month: int, months: int) -> tuple[int, int]:
    total_months = month - 1 + months
    return year + total_months // 12, total_months % 12 + 1


def month_period(day: date) -> Period:
    first = day.replace(day=1)
    year, month = _shift_month(first.year, first.month, 1)
    end = date(year, month, 1) - date.resolution
    return Period(f"{first.year:04d}-{first.month:02d}", first, end)


def validate_day_of_month(day_of_month: int) -> int:
    if day_of_month < 1 or day_of_month > 28:
        raise ValueError("Day of month must be between 1 and 28")
    return day_of_month


def next_monthly_run(today: date, day_of_month: int) -> date:
    """The given day of the month after ``today``.

    Days are capped at 28, so every month has the requested day.
    """
    validate_day_of_month(day_of_month)
    year, month = _shift_month(today.year, today.month, 1)
    return date(year, month, day_of_month)


def first_run_for(
    day_of_month: int, *, today: Optional[date] = None
) -> tuple[date, bool]:
    """Return this month's occurrence and whether it already lies in the past."""
    today = today or local_today()
    validate_day_of_month(day_of_month)
    this_month = today.replace(day=day_of_month)
    return this_month, this_month < today
