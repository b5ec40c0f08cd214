"""
RTA compliance state machine.

Everything here is recomputed from notices, ledger rows and the rent state on
every read; no compliance state is stored.

- s55(1)(aa): three strikes whose official service dates fall inside a 90-day
  window anchored at the first strike
- s56: 14-day notice to remedy, judged against the debt it was issued for
- s55(1)(a): 21 days in arrears
- Tribunal application due within 28 days of the third strike
"""

from dataclasses import replace
from datetime import date, timedelta
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence

from rentwatch.domain.calendar import WorkingDayCalendar
from rentwatch.domain.constants import (
    MAX_STRIKES,
    REMEDY_PERIOD_DAYS,
    STRIKE_NOTICE_WORKING_DAYS,
    STRIKE_TIER_THRESHOLDS,
    STRIKE_WINDOW_DAYS,
    TERMINATION_ARREARS_DAYS,
    TRIBUNAL_FILING_WINDOW_DAYS,
)
from rentwatch.domain.exceptions import InvalidNoticeError
from rentwatch.domain.models import (
    ComplianceSnapshot,
    NoticeType,
    PaymentAllocation,
    PaymentObligation,
    RemedyNoticeMetadata,
    RemedyNoticeStatus,
    RentCalculationResult,
    StrikeNotice,
    StrikeWindowStatus,
    TierState,
    TribunalWindowStatus,
)
from rentwatch.utils.money import sum_money, to_money


def _strike_windows(notices: Iterable[StrikeNotice], as_of: date) -> List[List[StrikeNotice]]:
    """Served strikes grouped into 90-day windows, oldest window first"""
    strikes = sorted(
        (n for n in notices if n.type.is_strike and n.official_service_date <= as_of),
        key=lambda n: n.official_service_date,
    )
    windows: List[List[StrikeNotice]] = []
    for strike in strikes:
        if windows:
            window_start = windows[-1][0].official_service_date
            if strike.official_service_date <= window_start + timedelta(days=STRIKE_WINDOW_DAYS):
                windows[-1].append(strike)
                continue
        windows.append([strike])
    return windows


def active_strikes(notices: Iterable[StrikeNotice], as_of: date) -> List[StrikeNotice]:
    """
    Strikes that currently count towards s55(1)(aa).

    Only the most recent window matters. It stays active while it is open, and
    indefinitely once it holds three strikes. A window that lapsed with fewer
    than three strikes contributes nothing.
    """
    windows = _strike_windows(notices, as_of)
    if not windows:
        return []

    current = windows[-1]
    if len(current) >= MAX_STRIKES:
        return current[:MAX_STRIKES]

    window_end = current[0].official_service_date + timedelta(days=STRIKE_WINDOW_DAYS)
    if as_of > window_end:
        return []
    return current


def check_strike_window_status(first_osd: date, active_count: int, as_of: date) -> StrikeWindowStatus:
    window_end = first_osd + timedelta(days=STRIKE_WINDOW_DAYS)
    days_left = (window_end - as_of).days
    is_expired = days_left < 0

    return StrikeWindowStatus(
        is_expired=is_expired,
        days_remaining=None if is_expired else days_left,
        window_expiry_date=window_end,
        active_strike_count=0 if is_expired else active_count,
    )


def strike_tier_states(active_count: int, working_days_overdue: int) -> Dict[int, TierState]:
    """
    State of each strike tier.

    Tiers already issued are SENT. The next tier is ELIGIBLE once rent is
    overdue by its working-day threshold (5, 10, 15). Everything else is
    INACTIVE, so at most one tier is ever ELIGIBLE.
    """
    states = {}
    for tier, threshold in sorted(STRIKE_TIER_THRESHOLDS.items()):
        if tier <= active_count:
            states[tier] = TierState.SENT
        elif tier == active_count + 1 and working_days_overdue >= threshold:
            states[tier] = TierState.ELIGIBLE
        else:
            states[tier] = TierState.INACTIVE
    return states


def _allocated_to_debt(
    allocations: Iterable[PaymentAllocation], snapshot: RemedyNoticeMetadata, osd: date
) -> Decimal:
    """
    Allocations that pay the debt a notice was served for: those on a
    snapshotted due date, and those on a date up to service that was not in
    the ledger at the time (the same rent periods after a regeneration moved
    their due dates).
    """
    snapshotted = set(snapshot.due_dates)
    known = set(snapshot.ledger_due_dates)
    return sum_money(
        a.amount
        for a in allocations
        if a.due_date in snapshotted or (known and a.due_date <= osd and a.due_date not in known)
    )


def build_remedy_metadata(
    obligations: Iterable[PaymentObligation],
    as_of: date,
    allocations: Iterable[PaymentAllocation] = (),
) -> RemedyNoticeMetadata:
    """Freeze the debt a notice to remedy is being issued for"""
    unpaid = sorted(
        (o for o in obligations if o.due_date <= as_of and o.amount_outstanding > 0),
        key=lambda o: o.due_date,
    )
    snapshot = RemedyNoticeMetadata(
        due_dates=[o.due_date for o in unpaid],
        total_amount_owed=sum_money(o.amount_outstanding for o in unpaid),
        unpaid_amounts={o.due_date: o.amount_outstanding for o in unpaid},
        ledger_entry_ids=[str(o.id) for o in unpaid if o.id is not None],
        ledger_due_dates=sorted(o.due_date for o in obligations if o.due_date <= as_of),
    )
    return replace(snapshot, amount_allocated_at_issue=_allocated_to_debt(allocations, snapshot, as_of))


def check_remedy_notice_status(
    notice: StrikeNotice,
    allocations: Iterable[PaymentAllocation],
    as_of: date,
) -> RemedyNoticeStatus:
    """
    Evaluate a 14-day notice to remedy.

    The notice is remedied once the payments allocated since service to the
    snapshotted due dates reach the amount owed at issuance. Allocations are
    written when a payment is applied and survive ledger regeneration, so a
    change of rent terms cannot remedy or un-remedy a notice; a payment on a
    due date the regeneration moved still counts. Payments against other
    rent do not remedy it, and new arrears do not un-remedy it.

    Raises:
        InvalidNoticeError: notice is not a remedy notice or carries no snapshot
    """
    if notice.type is not NoticeType.REMEDY_NOTICE:
        raise InvalidNoticeError(f"Notice {notice.id} is a {notice.type.value}, not a notice to remedy")
    snapshot = notice.debt_snapshot
    if snapshot is None:
        raise InvalidNoticeError(f"Notice to remedy {notice.id} has no debt snapshot")

    expiry = notice.official_service_date + timedelta(days=REMEDY_PERIOD_DAYS)
    days_past_expiry = (as_of - expiry).days
    is_expired = days_past_expiry > 0

    allocated = _allocated_to_debt(allocations, snapshot, notice.official_service_date)
    amount_paid = max(allocated - to_money(snapshot.amount_allocated_at_issue), to_money(0))
    is_remedied = amount_paid >= snapshot.total_amount_owed

    return RemedyNoticeStatus(
        notice_id=notice.id,
        is_expired=is_expired,
        is_remedied=is_remedied,
        days_remaining=None if is_expired else -days_past_expiry,
        days_overdue=days_past_expiry if is_expired else None,
        can_file_to_tribunal=is_expired and not is_remedied,
        amount_required=snapshot.total_amount_owed,
        amount_paid_toward_notice=amount_paid,
        expiry_date=expiry,
    )


def check_tribunal_window_status(third_osd: date, as_of: date) -> TribunalWindowStatus:
    """28-day filing window after the third strike; a closed window stays closed"""
    deadline = third_osd + timedelta(days=TRIBUNAL_FILING_WINDOW_DAYS)
    days_remaining = (deadline - as_of).days
    return TribunalWindowStatus(
        is_open=days_remaining >= 0,
        days_remaining=days_remaining,
        deadline_date=deadline,
    )


def next_strikeable_due_date(
    obligations: Iterable[PaymentObligation],
    notices: Iterable[StrikeNotice],
    as_of: date,
    calendar: WorkingDayCalendar,
) -> Optional[date]:
    """
    Oldest unpaid rent occasion that can carry a new strike.

    It must be at least 5 working days overdue and no strike may already be
    tied to it.
    """
    struck = {n.due_date_for for n in notices if n.type.is_strike and n.due_date_for is not None}
    candidates = sorted(
        o.due_date
        for o in obligations
        if o.amount_outstanding > 0 and o.due_date <= as_of and o.due_date not in struck
    )
    for due in candidates:
        if calendar.working_days_between(due, as_of) >= STRIKE_NOTICE_WORKING_DAYS:
            return due
    return None


def evaluate_compliance(
    rent_state: Optional[RentCalculationResult],
    notices: Sequence[StrikeNotice],
    obligations: Sequence[PaymentObligation],
    as_of: date,
    calendar: WorkingDayCalendar,
    allocations: Sequence[PaymentAllocation] = (),
) -> Optional[ComplianceSnapshot]:
    """
    Aggregate compliance view for one tenancy.

    Returns None when there is no rent state, mirroring the calculator: an
    unconfigured tenancy has no compliance position rather than a clean one.
    """
    if rent_state is None:
        return None

    active = active_strikes(notices, as_of)
    windows = _strike_windows(notices, as_of)

    window_status = None
    if windows:
        window_status = check_strike_window_status(
            windows[-1][0].official_service_date, len(active), as_of
        )

    tribunal_status = None
    if len(active) >= MAX_STRIKES:
        tribunal_status = check_tribunal_window_status(active[MAX_STRIKES - 1].official_service_date, as_of)

    remedy_statuses = [
        check_remedy_notice_status(n, allocations, as_of)
        for n in sorted(notices, key=lambda n: n.official_service_date)
        if n.type is NoticeType.REMEDY_NOTICE and n.official_service_date <= as_of
    ]

    return ComplianceSnapshot(
        as_of=as_of,
        tier_states=strike_tier_states(len(active), rent_state.working_days_overdue),
        active_strike_count=len(active),
        active_strikes=active,
        window_status=window_status,
        tribunal_status=tribunal_status,
        remedy_statuses=remedy_statuses,
        working_days_overdue=rent_state.working_days_overdue,
        days_overdue=rent_state.days_overdue,
        arrears_termination_eligible=rent_state.days_overdue >= TERMINATION_ARREARS_DAYS,
        next_strikeable_due_date=next_strikeable_due_date(obligations, notices, as_of, calendar),
    )
