"""NZ public holiday table loaded from JSON"""

import json
import logging
from datetime import date
from pathlib import Path
from typing import Dict, List, Optional, Union

from rentwatch.config import settings
from rentwatch.domain.calendar import StaticHolidayProvider, WorkingDayCalendar
from rentwatch.domain.exceptions import InvalidSettingsError

DEFAULT_HOLIDAY_FILE = Path(__file__).with_name("nz_holidays.json")

# Regions with an anniversary day in the bundled table
NZ_REGIONS = [
    "Wellington",
    "Auckland",
    "Nelson",
    "Taranaki",
    "Otago",
    "Southland",
    "Hawke's Bay",
    "Canterbury",
]


class JsonHolidayProvider(StaticHolidayProvider):
    """
    Holiday provider backed by a JSON file of the form

        {"2026": {"national": ["2026-01-01", ...], "regional": {"Auckland": "2026-01-26", ...}}}

    Add a year to the file to extend coverage; years not present fall back to
    weekend-only counting in the calendar.
    """

    def __init__(self, path: Optional[Union[str, Path]] = None):
        self.path = Path(path) if path else DEFAULT_HOLIDAY_FILE
        with self.path.open(encoding="utf-8") as f:
            raw = json.load(f)

        national: Dict[int, List[date]] = {}
        regional: Dict[int, Dict[str, date]] = {}
        for year_key, entry in raw.items():
            year = int(year_key)
            national[year] = [date.fromisoformat(d) for d in entry.get("national", [])]
            regional[year] = {
                region: date.fromisoformat(d) for region, d in entry.get("regional", {}).items()
            }

        super().__init__(national, regional)
        logging.debug(
            "Holiday table loaded",
            extra={"path": str(self.path), "years": sorted(self.known_years)},
        )


def build_calendar(
    path: Optional[Union[str, Path]] = None,
    region: Optional[str] = None,
) -> WorkingDayCalendar:
    """Calendar wired from configuration"""
    region = region or settings.region
    if region is not None and region not in NZ_REGIONS:
        raise InvalidSettingsError(f"Unknown NZ region: {region!r}")
    return WorkingDayCalendar(
        JsonHolidayProvider(path or settings.holiday_data_path),
        region=region,
        exclude_summer_closedown=settings.exclude_summer_closedown,
        tz=settings.timezone,
    )
