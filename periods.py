from dataclasses import dataclass
from datetime import datetime, time, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings


@dataclass(frozen=True)
class Period:
    slug: str
    start: Optional[datetime]
    end: Optional[datetime]

    def contains(self, moment: datetime) -> bool:
        if self.start is not None and moment < self.start:
            return False
        if self.end is not None and moment > self.end:
            return False
        return True


PERIOD_SLUGS = ("week", "month", "year")


def local_now() -> datetime:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).replace(tzinfo=None)


def add_months(year: int, month: int, count: int) -> tuple[int, int]:
    month_index = (year * 12) + (month - 1) + count
    return month_index // 12, (month_index % 12) + 1


def month_range(year: int, month: int, slug: str = "month") -> Period:
    start = datetime(year, month, 1)
    next_year, next_month = add_months(year, month, 1)
    last_day = datetime(next_year, next_month, 1) - timedelta(days=1)
    end = datetime.combine(last_day.date(), time.max)
    return Period(slug, start, end)


def current_month_range(now: datetime) -> Period:
    return month_range(now.year, now.month, "current_month")


def previous_month_range(now: datetime) -> Period:
    year, month = add_months(now.year, now.month, -1)
    return month_range(year, month, "previous_month")


def period_start(period: Optional[str], now: datetime) -> Optional[datetime]:
    """Lower bound of a named period anchored at ``now``.

    Weeks start on Sunday. Unknown names give ``None``, i.e. no lower bound.
    """
    midnight = datetime.combine(now.date(), time.min)
    if period == "week":
        days_since_sunday = (now.weekday() + 1) % 7
        return midnight - timedelta(days=days_since_sunday)
    if period == "month":
        return midnight.replace(day=1)
    if period == "year":
        return midnight.replace(month=1, day=1)
    return None


def resolve_period(period: Optional[str], *, now: datetime) -> Period:
    return Period(period or "all", period_start(period, now), None)


def trend_window(months: int, now: datetime) -> Period:
    start_year, start_month = add_months(now.year, now.month, -(months - 1))
    end = current_month_range(now).end
    return Period(f"last_{months}_months", datetime(start_year, start_month, 1), end)
