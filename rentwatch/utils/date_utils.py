"""Date manipulation utilities"""

from datetime import date, datetime, timedelta
from typing import List, Optional, Union
from zoneinfo import ZoneInfo

WEEKDAY_NAMES = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]


def generate_date_range(start: date, end: date) -> List[date]:
    """Generate list of dates from start to end (inclusive)"""
    days = (end - start).days + 1
    return [start + timedelta(days=i) for i in range(days)]


def days_between(start: date, end: date) -> int:
    """Calendar days from start to end (negative if end is earlier)"""
    return (end - start).days


def add_months(value: date, months: int) -> date:
    """Shift by whole months, keeping the day of month.

    Only safe for days 1-28, which is all the due-date generator produces.
    """
    month_index = value.month - 1 + months
    return value.replace(year=value.year + month_index // 12, month=month_index % 12 + 1)


def effective_today(as_of: Optional[Union[date, datetime]] = None, tz: str = "Pacific/Auckland") -> date:
    """
    Resolve the evaluation day.

    An explicit date is returned untouched; a datetime is converted to the
    jurisdiction's timezone first so the day rolls over at local midnight.
    Without an override the current day in that timezone is used.
    """
    if as_of is None:
        return datetime.now(ZoneInfo(tz)).date()
    if isinstance(as_of, datetime):
        if as_of.tzinfo is None:
            return as_of.date()
        return as_of.astimezone(ZoneInfo(tz)).date()
    return as_of


def to_local(moment: datetime, tz: str = "Pacific/Auckland") -> datetime:
    """Convert an aware timestamp to local time; naive timestamps are taken as local already"""
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(ZoneInfo(tz))
