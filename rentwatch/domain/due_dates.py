"""Due-date generation for rent obligations"""

import logging
from datetime import date, timedelta
from typing import Union

from rentwatch.domain.constants import DEFAULT_MAX_PERIODS, LOOKAHEAD_CAP_DAYS, MAX_MONTHLY_DUE_DAY
from rentwatch.domain.exceptions import InputError, InvalidDueDayError, InvalidFrequencyError
from rentwatch.domain.models import DueDateSchedule, Frequency, TenancySettings
from rentwatch.infrastructure.observability.metrics import truncated_schedule_counter
from rentwatch.utils.date_utils import WEEKDAY_NAMES, add_months

_STEP_DAYS = {Frequency.WEEKLY: 7, Frequency.FORTNIGHTLY: 14}


def parse_frequency(value: Union[str, Frequency]) -> Frequency:
    """Map a stored frequency label onto the enum, rejecting anything unknown"""
    if isinstance(value, Frequency):
        return value
    try:
        return Frequency(str(value).strip().capitalize())
    except ValueError as e:
        raise InvalidFrequencyError(f"Unknown rent frequency: {value!r}") from e


def resolve_due_day(frequency: Frequency, due_day: Union[str, int]) -> int:
    """
    Normalise the due day for a frequency.

    Returns the Python weekday index (Monday=0) for Weekly/Fortnightly and the
    day of month for Monthly.

    Raises:
        InvalidDueDayError: unknown weekday name or day of month outside 1-28
    """
    if frequency is Frequency.MONTHLY:
        if isinstance(due_day, bool):
            raise InvalidDueDayError(f"Invalid day of month: {due_day!r}")
        try:
            day = int(due_day)
        except (TypeError, ValueError) as e:
            raise InvalidDueDayError(f"Invalid day of month: {due_day!r}") from e
        if not 1 <= day <= MAX_MONTHLY_DUE_DAY:
            raise InvalidDueDayError(f"Day of month must be between 1 and {MAX_MONTHLY_DUE_DAY}, got {day}")
        return day

    if not isinstance(due_day, str):
        raise InvalidDueDayError(f"Weekly and fortnightly rent needs a weekday name, got {due_day!r}")
    name = due_day.strip().capitalize()
    if name not in WEEKDAY_NAMES:
        raise InvalidDueDayError(f"Invalid day name: {due_day!r}")
    return WEEKDAY_NAMES.index(name)


def first_due_date(frequency: Frequency, due_day: Union[str, int], anchor_date: date) -> date:
    """
    First due date on or after the anchor.

    An anchor that already falls on the due weekday (or day of month) is
    itself the first due date.
    """
    target = resolve_due_day(frequency, due_day)

    if frequency is Frequency.MONTHLY:
        this_month = anchor_date.replace(day=target)
        return this_month if anchor_date.day <= target else add_months(this_month, 1)

    offset = (target - anchor_date.weekday() + 7) % 7
    return anchor_date + timedelta(days=offset)


def advance_due_date(frequency: Frequency, current: date) -> date:
    """Step one rent cycle forward"""
    if frequency is Frequency.MONTHLY:
        return add_months(current, 1)
    return current + timedelta(days=_STEP_DAYS[frequency])


def generate_due_dates(
    frequency: Union[str, Frequency],
    due_day: Union[str, int],
    anchor_date: date,
    upper_bound: date,
    max_periods: int = DEFAULT_MAX_PERIODS,
) -> DueDateSchedule:
    """
    Generate the ordered due dates for a tenancy.

    Requirements:
    - Weekly/Fortnightly: first matching weekday on/after the anchor, then every 7/14 days
    - Monthly: this month's due day if not yet passed, else next month's; then whole months
    - Generation stops after the first date on or after upper_bound (that date is included)
    - Runaway guards: at most max_periods dates, nothing beyond upper_bound + 366 days

    Args:
        frequency: Weekly, Fortnightly or Monthly
        due_day: Weekday name, or day of month (1-28) for Monthly
        anchor_date: Search starts here (normally the tracking start date)
        upper_bound: Horizon date
        max_periods: Hard cap on generated dates

    Returns:
        DueDateSchedule whose truncated flag is set when a guard stopped generation

    Example:
        Weekly on Wednesday from Thu 2026-01-01 to 2026-01-22
        -> 2026-01-07, 2026-01-14, 2026-01-21, 2026-01-28
    """
    frequency = parse_frequency(frequency)
    if max_periods < 1:
        raise InputError(f"max_periods must be positive, got {max_periods}")

    lookahead_limit = upper_bound + timedelta(days=LOOKAHEAD_CAP_DAYS)
    current = first_due_date(frequency, due_day, anchor_date)
    dates = []
    truncated = False

    while True:
        if current > lookahead_limit or len(dates) >= max_periods:
            truncated = True
            break
        dates.append(current)
        if current >= upper_bound:
            break
        current = advance_due_date(frequency, current)

    if truncated:
        truncated_schedule_counter.inc()
        logging.warning(
            "Due-date generation truncated",
            extra={
                "frequency": frequency.value,
                "due_day": str(due_day),
                "anchor_date": anchor_date.isoformat(),
                "upper_bound": upper_bound.isoformat(),
                "generated": len(dates),
                "max_periods": max_periods,
            },
        )

    return DueDateSchedule(dates=dates, truncated=truncated)


def due_dates_through(
    settings: TenancySettings, as_of: date, max_periods: int = DEFAULT_MAX_PERIODS
) -> DueDateSchedule:
    """Due dates of a tenancy that have fallen due on or before as_of"""
    schedule = generate_due_dates(
        settings.frequency,
        settings.due_day,
        settings.tracking_start_date,
        as_of,
        max_periods=max_periods,
    )
    elapsed = [d for d in schedule.dates if d <= as_of]
    return DueDateSchedule(dates=elapsed, truncated=schedule.truncated)


def next_due_date_after(settings: TenancySettings, after: date) -> date:
    """First due date strictly after the given day"""
    frequency = parse_frequency(settings.frequency)
    current = first_due_date(frequency, settings.due_day, settings.tracking_start_date)
    if current > after:
        return current
    # Jump close to the target instead of walking every cycle from the start
    if frequency is not Frequency.MONTHLY:
        step = _STEP_DAYS[frequency]
        current += timedelta(days=((after - current).days // step) * step)
    else:
        current = add_months(current, (after.year - current.year) * 12 + after.month - current.month)
    while current <= after:
        current = advance_due_date(frequency, current)
    return current
