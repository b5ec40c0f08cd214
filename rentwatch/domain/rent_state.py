"""
Rent state calculation.

The balance is derived from the tenancy settings and the payment history
alone, never from stored ledger rows:

    current_balance = rent owed through as_of + opening_arrears
                      + schedule_adjustment - payments received through as_of

Payments are applied first-in-first-out: the opening debit first, then each
rent cycle oldest-first. The first item left unsatisfied is what the
overdue counters are measured from.
"""

import logging
from dataclasses import replace
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, Iterable, Optional, Sequence, Union

from rentwatch.config import settings as app_settings
from rentwatch.domain.calendar import WorkingDayCalendar
from rentwatch.domain.due_dates import (
    due_dates_through,
    first_due_date,
    next_due_date_after,
    parse_frequency,
    resolve_due_day,
)
from rentwatch.domain.exceptions import InputError, InvalidSettingsError
from rentwatch.domain.models import PaymentHistoryEntry, RentCalculationResult, TenancySettings
from rentwatch.infrastructure.holidays import build_calendar
from rentwatch.utils.date_utils import days_between, effective_today
from rentwatch.utils.money import sum_money, to_money


def validate_settings(settings: TenancySettings) -> TenancySettings:
    """
    Check tenancy settings and return a normalised copy.

    Raises:
        InvalidFrequencyError / InvalidDueDayError: unusable schedule
        InvalidSettingsError: non-positive rent, negative opening arrears, missing start date
    """
    frequency = parse_frequency(settings.frequency)
    resolve_due_day(frequency, settings.due_day)

    if not isinstance(settings.tracking_start_date, date):
        raise InvalidSettingsError("tracking_start_date is required")
    if isinstance(settings.tracking_start_date, datetime):
        raise InvalidSettingsError("tracking_start_date must be a date, not a datetime")

    try:
        rent_amount = to_money(settings.rent_amount)
        opening_arrears = to_money(settings.opening_arrears or 0)
        schedule_adjustment = to_money(settings.schedule_adjustment or 0)
    except ValueError as e:
        raise InvalidSettingsError(str(e)) from e

    if rent_amount <= 0:
        raise InvalidSettingsError(f"rent_amount must be positive, got {rent_amount}")
    if opening_arrears < 0:
        raise InvalidSettingsError(f"opening_arrears cannot be negative, got {opening_arrears}")

    return replace(
        settings,
        frequency=frequency,
        rent_amount=rent_amount,
        opening_arrears=opening_arrears,
        schedule_adjustment=schedule_adjustment,
    )


def calculate_rent_state(
    settings: Optional[TenancySettings],
    payments: Iterable[PaymentHistoryEntry],
    as_of: Optional[Union[date, datetime]] = None,
    calendar: Optional[WorkingDayCalendar] = None,
    max_periods: Optional[int] = None,
) -> Optional[RentCalculationResult]:
    """
    Calculate balance and overdue counters as of a given day.

    Args:
        settings: Tenancy rent terms (None when the tenancy is not configured)
        payments: Payment history; entries dated after as_of are ignored
        as_of: Evaluation day, defaults to today in the configured timezone
        calendar: Working-day calendar, defaults to the configured NZ calendar
        max_periods: Cap on generated due dates, defaults to max_ledger_periods

    Returns:
        RentCalculationResult, or None when settings are absent or unusable.
        A missing configuration is never reported as a zero balance.
    """
    if settings is None:
        return None
    try:
        settings = validate_settings(settings)
    except InputError as e:
        logging.warning("Rent state unavailable: invalid tenancy settings", extra={"error": str(e)})
        return None

    today = effective_today(as_of, tz=app_settings.timezone)
    calendar = calendar or build_calendar()
    schedule = due_dates_through(settings, today, max_periods or app_settings.max_ledger_periods)

    rent = settings.rent_amount
    initial_debit = to_money(settings.opening_arrears + settings.schedule_adjustment)
    total_rent_due = to_money(rent * len(schedule.dates))
    total_paid = sum_money(p.amount for p in payments if p.date <= today)
    current_balance = total_rent_due + initial_debit - total_paid

    # FIFO: opening debit first, then cycles oldest-first
    paid_until_date = None
    oldest_unpaid = None
    remaining = total_paid - initial_debit
    if remaining < 0:
        oldest_unpaid = settings.tracking_start_date
    else:
        for due in schedule.dates:
            if remaining < rent:
                oldest_unpaid = due
                break
            remaining -= rent
            paid_until_date = due

    days_overdue = 0
    working_days_overdue = 0
    if oldest_unpaid is not None and oldest_unpaid < today:
        days_overdue = days_between(oldest_unpaid, today)
        working_days_overdue = calendar.working_days_between(oldest_unpaid, today)

    return RentCalculationResult(
        current_balance=current_balance,
        days_overdue=days_overdue,
        working_days_overdue=working_days_overdue,
        paid_until_date=paid_until_date,
        total_rent_due=total_rent_due,
        total_paid=total_paid,
        opening_arrears=settings.opening_arrears,
        schedule_adjustment=settings.schedule_adjustment,
        cycles_elapsed=len(schedule.dates),
        first_due_date=first_due_date(settings.frequency, settings.due_day, settings.tracking_start_date),
        next_due_date=next_due_date_after(settings, today),
        oldest_unpaid_due_date=oldest_unpaid,
        as_of=today,
        schedule_truncated=schedule.truncated,
    )


def raw_balance(settings: TenancySettings, payments: Iterable[PaymentHistoryEntry], as_of: date, max_periods: int) -> Decimal:
    """Balance under the settings ignoring any schedule adjustment"""
    settings = validate_settings(settings)
    schedule = due_dates_through(settings, as_of, max_periods)
    total_paid = sum_money(p.amount for p in payments if p.date <= as_of)
    return to_money(settings.rent_amount * len(schedule.dates)) + settings.opening_arrears - total_paid


def fifo_coverage(
    settings: TenancySettings,
    payments: Iterable[PaymentHistoryEntry],
    as_of: date,
    due_dates: Sequence[date],
) -> Dict[date, Decimal]:
    """
    How much of the rent due on each date the payments received through
    as_of cover, applying them to the opening debit first and then to the
    dates oldest-first.
    """
    settings = validate_settings(settings)
    total_paid = sum_money(p.amount for p in payments if p.date <= as_of)
    remaining = total_paid - to_money(settings.opening_arrears + settings.schedule_adjustment)

    coverage = {}
    for due in sorted(due_dates):
        applied = min(settings.rent_amount, max(remaining, Decimal("0")))
        coverage[due] = applied
        remaining -= applied
    return coverage
