"""
Ledger regeneration planning.

When rent terms change the obligation rows are rebuilt on the new schedule.
The amount the tenant owes must not change in the process: the preserved
balance is spread over the rebuilt rows newest-first, and the settings carry
a schedule adjustment so the calculator reproduces the same balance from
settings and payments alone.
"""

from dataclasses import replace
from datetime import date
from decimal import Decimal
from typing import Iterable, List, Optional

from rentwatch.domain.due_dates import generate_due_dates, parse_frequency, resolve_due_day
from rentwatch.domain.models import ObligationStatus, PaymentHistoryEntry, PaymentObligation, TenancySettings
from rentwatch.domain.rent_state import fifo_coverage, raw_balance, validate_settings
from rentwatch.utils.money import to_money


def should_regenerate(old: Optional[TenancySettings], new: TenancySettings) -> bool:
    """True when rent amount, frequency or due day changed"""
    if old is None:
        return True

    old_frequency = parse_frequency(old.frequency)
    new_frequency = parse_frequency(new.frequency)
    if old_frequency != new_frequency:
        return True
    if to_money(old.rent_amount) != to_money(new.rent_amount):
        return True
    return resolve_due_day(old_frequency, old.due_day) != resolve_due_day(new_frequency, new.due_day)


def compute_schedule_adjustment(
    new_settings: TenancySettings,
    payments: Iterable[PaymentHistoryEntry],
    preserved_balance: Decimal,
    as_of: date,
    max_periods: int,
) -> Decimal:
    """Adjustment that makes the new settings reproduce the preserved balance"""
    unadjusted = replace(new_settings, schedule_adjustment=Decimal("0"))
    return to_money(preserved_balance - raw_balance(unadjusted, payments, as_of, max_periods))


def _status_for(amount_due: Decimal, amount_paid: Decimal) -> ObligationStatus:
    if amount_paid <= 0:
        return ObligationStatus.UNPAID
    if amount_paid >= amount_due:
        return ObligationStatus.PAID
    return ObligationStatus.PARTIAL


def plan_regenerated_ledger(
    tenant_id: str,
    new_settings: TenancySettings,
    preserved_balance: Decimal,
    as_of: date,
    max_periods: int,
) -> List[PaymentObligation]:
    """
    Build the replacement obligation rows.

    Rows due on or before as_of absorb the owed balance newest-to-oldest, each
    up to its amount due. Fully absorbed rows stay Unpaid, the row the balance
    runs out on is Partial and older rows are Paid. A credit balance prepays
    rows due after as_of oldest-first. Owed balance left over once every past
    row is Unpaid belongs to the opening debit and is carried by the schedule
    adjustment instead.

    Example:
        Weekly $500, three past rows and one upcoming, preserved balance $700
        -> oldest Paid, middle Partial ($300 paid), newest Unpaid, upcoming Unpaid
    """
    settings = validate_settings(new_settings)
    schedule = generate_due_dates(
        settings.frequency,
        settings.due_day,
        settings.tracking_start_date,
        as_of,
        max_periods=max_periods,
    )
    rows = [
        PaymentObligation(id=None, tenant_id=tenant_id, due_date=due, amount_due=settings.rent_amount)
        for due in schedule.dates
    ]

    past = [r for r in rows if r.due_date <= as_of]
    future = [r for r in rows if r.due_date > as_of]

    owed = max(to_money(preserved_balance), Decimal("0"))
    for row in reversed(past):
        absorbed = min(owed, row.amount_due)
        row.amount_paid = row.amount_due - absorbed
        owed -= absorbed

    credit = max(-to_money(preserved_balance), Decimal("0"))
    for row in future:
        applied = min(credit, row.amount_due)
        row.amount_paid = applied
        credit -= applied

    for row in rows:
        row.status = _status_for(row.amount_due, row.amount_paid)
    return rows


def plan_missing_obligations(
    tenant_id: str,
    settings: TenancySettings,
    payments: Iterable[PaymentHistoryEntry],
    existing_due_dates: Iterable[date],
    as_of: date,
    max_periods: int,
) -> List[PaymentObligation]:
    """
    Rows for due dates that have arrived since the ledger was last built.

    Covers the schedule through as_of plus the next upcoming date, skipping
    dates that already have a row. A new row is marked paid as far as the
    payments received through as_of reach it oldest-first, so money left over
    once every older row was paid is not lost.
    """
    settings = validate_settings(settings)
    schedule = generate_due_dates(
        settings.frequency,
        settings.due_day,
        settings.tracking_start_date,
        as_of,
        max_periods=max_periods,
    )
    existing = set(existing_due_dates)
    missing = [due for due in schedule.dates if due not in existing]
    if not missing:
        return []

    coverage = fifo_coverage(settings, payments, as_of, schedule.dates)
    rows = []
    for due in missing:
        paid = coverage[due]
        rows.append(
            PaymentObligation(
                id=None,
                tenant_id=tenant_id,
                due_date=due,
                amount_due=settings.rent_amount,
                amount_paid=paid,
                status=_status_for(settings.rent_amount, paid),
            )
        )
    return rows
