from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional, Union
from zoneinfo import ZoneInfo

from config import get_settings

DEFAULT_RANGE_OPTION = "12m"


def local_today() -> date:
    return datetime.now(ZoneInfo(get_settings().timezone)).date()


def normalize_day(value: Union[date, datetime, str]) -> str:
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return date.fromisoformat(value.strip()[:10]).isoformat()


@dataclass(frozen=True)
class DateRange:
    slug: str
    start: date
    end: date

    @property
    def key(self) -> tuple[str, str]:
        # equal ranges built from different objects must compare equal
        return (self.start.isoformat(), self.end.isoformat())

    @property
    def date_from(self) -> str:
        return self.start.isoformat()

    @property
    def date_to(self) -> str:
        return self.end.isoformat()

    def contains(self, day: Union[date, datetime, str]) -> bool:
        value = normalize_day(day)
        return self.date_from <= value <= self.date_to


def _shift_months(d: date, count: int) -> date:
    month_index = (d.year * 12) + (d.month - 1) + count
    year = month_index // 12
    month = (month_index % 12) + 1
    first = date(year, month, 1)
    if month == 12:
        last_day = (date(year + 1, 1, 1) - date.resolution).day
    else:
        last_day = (date(year, month + 1, 1) - date.resolution).day
    return first.replace(day=min(d.day, last_day))


def resolve_date_range(
    option: Optional[str],
    start: Optional[str] = None,
    end: Optional[str] = None,
    *,
    today: Optional[date] = None,
) -> DateRange:
    today = today or local_today()
    option = option or DEFAULT_RANGE_OPTION
    if option == "custom":
        if not start or not end:
            raise ValueError("Custom range requires start and end dates")
        start_date = date.fromisoformat(start)
        end_date = date.fromisoformat(end)
        if start_date > end_date:
            raise ValueError("Start date must be before end date")
        return DateRange("custom", start_date, end_date)
    if option == "ytd":
        return DateRange(option, date(today.year, 1, 1), today)
    if option == "qtd":
        quarter_month = ((today.month - 1) // 3) * 3 + 1
        return DateRange(option, date(today.year, quarter_month, 1), today)
    if option == "mtd":
        return DateRange(option, today.replace(day=1), today)
    if option == "last_month":
        first_this = today.replace(day=1)
        last_month_end = first_this - date.resolution
        return DateRange(option, last_month_end.replace(day=1), last_month_end)
    if option == "last_week":
        return DateRange(option, today - timedelta(days=7), today)
    if option == "current_week":
        # weeks start on Sunday
        days_since_sunday = (today.weekday() + 1) % 7
        return DateRange(option, today - timedelta(days=days_since_sunday), today)
    if option == "6m":
        return DateRange(option, _shift_months(today, -6), today)
    if option == "12m":
        return DateRange(option, _shift_months(today, -12), today)
    raise ValueError(f"Unknown date range: {option}")


def year_range(year: int) -> DateRange:
    return DateRange(f"year_{year}", date(year, 1, 1), date(year, 12, 31))
