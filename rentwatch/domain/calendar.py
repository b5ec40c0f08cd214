"""NZ working-day arithmetic for RTA deadlines"""

import logging
from datetime import date, datetime, timedelta
from typing import Dict, FrozenSet, Iterable, Optional, Protocol, Set

from rentwatch.domain.constants import SERVICE_CUTOFF_HOUR
from rentwatch.infrastructure.observability.metrics import holiday_fallback_counter
from rentwatch.utils.date_utils import generate_date_range, to_local


class HolidayProvider(Protocol):
    """Source of public holidays, keyed by year"""

    def holidays_for(self, year: int, region: Optional[str] = None) -> Optional[FrozenSet[date]]:
        """National holidays plus the region's anniversary day, or None for an unknown year"""
        ...


class StaticHolidayProvider:
    """In-memory holiday table"""

    def __init__(
        self,
        national: Dict[int, Iterable[date]],
        regional: Optional[Dict[int, Dict[str, date]]] = None,
    ):
        self._national = {year: frozenset(days) for year, days in national.items()}
        self._regional = regional or {}

    @property
    def known_years(self) -> Set[int]:
        return set(self._national)

    def holidays_for(self, year: int, region: Optional[str] = None) -> Optional[FrozenSet[date]]:
        national = self._national.get(year)
        if national is None:
            return None
        anniversary = self._regional.get(year, {}).get(region) if region else None
        if anniversary is None:
            return national
        return national | {anniversary}


def in_summer_closedown(day: date) -> bool:
    """25 December to 15 January inclusive"""
    return (day.month == 12 and day.day >= 25) or (day.month == 1 and day.day <= 15)


class WorkingDayCalendar:
    """
    Working-day calendar for the Residential Tenancies Act.

    A day is not a working day when it is a Saturday or Sunday, a national
    public holiday, the configured region's anniversary day, or (when
    exclude_summer_closedown is set) inside the 25 December to 15 January
    closedown. Years missing from the holiday table fall back to weekend-only
    exclusion and are reported once per calendar instance.
    """

    def __init__(
        self,
        provider: HolidayProvider,
        region: Optional[str] = None,
        exclude_summer_closedown: bool = True,
        tz: str = "Pacific/Auckland",
    ):
        self.provider = provider
        self.region = region
        self.exclude_summer_closedown = exclude_summer_closedown
        self.tz = tz
        self._warned_years: Set[int] = set()

    def _holidays(self, year: int, region: Optional[str]) -> FrozenSet[date]:
        holidays = self.provider.holidays_for(year, region)
        if holidays is not None:
            return holidays

        if year not in self._warned_years:
            self._warned_years.add(year)
            holiday_fallback_counter.labels(year=str(year)).inc()
            logging.warning(
                "No holiday data for year, counting weekends only",
                extra={"year": year, "region": region},
            )
        return frozenset()

    def is_working_day(self, day: date, region: Optional[str] = None) -> bool:
        if day.weekday() >= 5:
            return False
        if self.exclude_summer_closedown and in_summer_closedown(day):
            return False
        return day not in self._holidays(day.year, region or self.region)

    def working_days_between(self, start: date, end: date) -> int:
        """
        Working days after start up to and including end.

        Reversed arguments give the negated count, so
        working_days_between(d, d) == 0.
        """
        if end < start:
            return -self.working_days_between(end, start)

        return sum(1 for day in generate_date_range(start + timedelta(days=1), end) if self.is_working_day(day))

    def next_working_day(self, day: date) -> date:
        """The day itself when it is a working day, otherwise the next one"""
        current = day
        while not self.is_working_day(current):
            current += timedelta(days=1)
        return current

    def add_working_days(self, day: date, days: int) -> date:
        current = day
        remaining = days
        while remaining > 0:
            current += timedelta(days=1)
            if self.is_working_day(current):
                remaining -= 1
        return current

    def official_service_date(self, sent_at: datetime) -> date:
        """
        Date an emailed notice is deemed served.

        Sent before 17:00 local time on a working day: served that day.
        Otherwise: served on the next working day.
        """
        local = to_local(sent_at, self.tz)
        sent_day = local.date()
        if self.is_working_day(sent_day) and local.hour < SERVICE_CUTOFF_HOUR:
            return sent_day
        return self.next_working_day(sent_day + timedelta(days=1))
