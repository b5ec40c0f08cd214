"""Domain models - pure Python dataclasses representing tenancy entities"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Union


class Frequency(str, Enum):
    WEEKLY = "Weekly"
    FORTNIGHTLY = "Fortnightly"
    MONTHLY = "Monthly"


class ObligationStatus(str, Enum):
    UNPAID = "Unpaid"
    PARTIAL = "Partial"
    PAID = "Paid"


class NoticeType(str, Enum):
    STRIKE_1 = "Strike1"
    STRIKE_2 = "Strike2"
    STRIKE_3 = "Strike3"
    REMEDY_NOTICE = "RemedyNotice"

    @property
    def is_strike(self) -> bool:
        return self is not NoticeType.REMEDY_NOTICE

    @property
    def strike_tier(self) -> Optional[int]:
        if not self.is_strike:
            return None
        return int(self.value.removeprefix("Strike"))


class TierState(str, Enum):
    SENT = "SENT"
    ELIGIBLE = "ELIGIBLE"
    INACTIVE = "INACTIVE"


class QueueStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class TenancySettings:
    """Rent terms for one tenancy"""

    frequency: Frequency
    rent_amount: Decimal
    due_day: Union[str, int]  # weekday name for Weekly/Fortnightly, 1-28 for Monthly
    tracking_start_date: date
    opening_arrears: Decimal = Decimal("0")
    # Carried across ledger regenerations so the owed balance survives a schedule change
    schedule_adjustment: Decimal = Decimal("0")


@dataclass
class PaymentObligation:
    """Ledger row: one rent cycle owed by a tenant"""

    id: Optional[str]
    tenant_id: str
    due_date: date
    amount_due: Decimal
    amount_paid: Decimal = Decimal("0")
    status: ObligationStatus = ObligationStatus.UNPAID

    @property
    def amount_outstanding(self) -> Decimal:
        return max(self.amount_due - self.amount_paid, Decimal("0"))


@dataclass(frozen=True)
class PaymentHistoryEntry:
    """Money actually received from the tenant"""

    amount: Decimal
    date: date
    method: str
    id: Optional[str] = None
    obligation_id: Optional[str] = None


@dataclass(frozen=True)
class PaymentAllocation:
    """Part of a payment applied to the rent due on one date; never rewritten"""

    due_date: date
    amount: Decimal
    obligation_id: Optional[str] = None
    payment_id: Optional[str] = None


@dataclass(frozen=True)
class RemedyNoticeMetadata:
    """Debt snapshot frozen when a 14-day notice to remedy is issued"""

    due_dates: List[date]
    total_amount_owed: Decimal
    unpaid_amounts: Dict[date, Decimal] = field(default_factory=dict)
    ledger_entry_ids: List[str] = field(default_factory=list)
    # Every ledger due date up to service; dates outside it were rescheduled by a regeneration
    ledger_due_dates: List[date] = field(default_factory=list)
    # Allocations the notice already counted as paid when it was served
    amount_allocated_at_issue: Decimal = Decimal("0")


@dataclass(frozen=True)
class StrikeNotice:
    """Statutory notice served on a tenant"""

    type: NoticeType
    sent_at: datetime
    official_service_date: date
    id: Optional[str] = None
    due_date_for: Optional[date] = None  # rent occasion a strike is tied to
    debt_snapshot: Optional[RemedyNoticeMetadata] = None


@dataclass
class DueDateSchedule:
    """Output of the due-date generator"""

    dates: List[date]
    truncated: bool = False


@dataclass
class RentCalculationResult:
    """Balance and overdue snapshot as of a given day (derived, never stored)"""

    current_balance: Decimal
    days_overdue: int
    working_days_overdue: int
    paid_until_date: Optional[date]

    total_rent_due: Decimal
    total_paid: Decimal
    opening_arrears: Decimal
    schedule_adjustment: Decimal
    cycles_elapsed: int
    first_due_date: date
    next_due_date: date
    oldest_unpaid_due_date: Optional[date]
    as_of: date
    schedule_truncated: bool = False

    @property
    def is_overdue(self) -> bool:
        return self.current_balance > 0

    @property
    def has_credit(self) -> bool:
        return self.current_balance < 0

    @property
    def credit_amount(self) -> Decimal:
        return -self.current_balance if self.has_credit else Decimal("0")


@dataclass
class StrikeWindowStatus:
    is_expired: bool
    days_remaining: Optional[int]
    window_expiry_date: date
    active_strike_count: int


@dataclass
class TribunalWindowStatus:
    is_open: bool
    days_remaining: int  # negative once the window has closed
    deadline_date: date


@dataclass
class RemedyNoticeStatus:
    notice_id: Optional[str]
    is_expired: bool
    is_remedied: bool
    days_remaining: Optional[int]
    days_overdue: Optional[int]
    can_file_to_tribunal: bool
    amount_required: Decimal
    amount_paid_toward_notice: Decimal
    expiry_date: date


@dataclass
class ComplianceSnapshot:
    """Everything the compliance state machine derives for one evaluation"""

    as_of: date
    tier_states: Dict[int, TierState]
    active_strike_count: int
    active_strikes: List[StrikeNotice]
    window_status: Optional[StrikeWindowStatus]
    tribunal_status: Optional[TribunalWindowStatus]
    remedy_statuses: List[RemedyNoticeStatus]
    working_days_overdue: int
    days_overdue: int
    arrears_termination_eligible: bool
    next_strikeable_due_date: Optional[date] = None

    @property
    def eligible_tier(self) -> Optional[int]:
        for tier, state in self.tier_states.items():
            if state is TierState.ELIGIBLE:
                return tier
        return None


@dataclass
class ReconciliationResult:
    records_deleted: int
    records_created: int
    balance_preserved: bool
    previous_balance: Decimal
    new_balance: Decimal
    schedule_adjustment: Decimal


@dataclass
class RegenerationRequest:
    """Queued ledger regeneration for a settings change"""

    id: str
    tenant_id: str
    old_rent_amount: Optional[Decimal]
    new_rent_amount: Decimal
    old_frequency: Optional[str]
    new_frequency: str
    old_due_day: Optional[str]
    new_due_day: str
    triggered_at: datetime
    status: QueueStatus = QueueStatus.PENDING
    processed_at: Optional[datetime] = None
    error_message: Optional[str] = None


@dataclass
class Expense:
    """Deductible landlord expense, GST inclusive"""

    date: date
    vendor: str
    category: str
    amount: Decimal
    notes: str = "IRD Compliant Record"
