from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings


@dataclass(frozen=True)
class Period:
    start: date
    end: date

    def contains(self, value: date) -> bool:
        return self.start <= value <= self.end


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def start_of_month(today: date) -> date:
    return today.replace(day=1)


def end_of_month(today: date) -> date:
    first = today.replace(day=1)
    if first.month == 12:
        next_month = first.replace(year=first.year + 1, month=1)
    else:
        next_month = first.replace(month=first.month + 1)
    return next_month - date.resolution


def current_month(today: Optional[date] = None) -> Period:
    today = today or local_today()
    return Period(start_of_month(today), end_of_month(today))


def previous_month(today: Optional[date] = None) -> Period:
    today = today or local_today()
    last_month_end = start_of_month(today) - date.resolution
    return Period(last_month_end.replace(day=1), last_month_end)
