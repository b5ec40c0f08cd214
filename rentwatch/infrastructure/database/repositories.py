"""Data access layer for tenancy entities"""

import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

from rentwatch.domain.due_dates import parse_frequency
from rentwatch.domain.exceptions import NoticeNotFoundError, RegenerationInProgressError, TenantNotFoundError
from rentwatch.domain.models import (
    NoticeType,
    ObligationStatus,
    PaymentAllocation,
    PaymentHistoryEntry,
    PaymentObligation,
    QueueStatus,
    RegenerationRequest,
    RemedyNoticeMetadata,
    StrikeNotice,
    TenancySettings,
)
from rentwatch.infrastructure.database.models import (
    LedgerRegenerationQueue,
    NoticeRow,
    PaymentAllocationRow,
    PaymentHistoryRow,
    PaymentObligationRow,
    Tenant,
)
from rentwatch.utils.money import to_money


def _as_uuid(value: Any) -> uuid.UUID:
    return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))


def _due_day_from_column(frequency: Optional[str], value: Optional[str]) -> Optional[Any]:
    if value is None:
        return None
    # Monthly due days are stored as text alongside weekday names
    return int(value) if frequency == "Monthly" and value.isdigit() else value


def settings_from_row(tenant: Tenant) -> Optional[TenancySettings]:
    """Rent terms of a tenant row, or None when the tenancy is not configured"""
    if tenant.frequency is None or tenant.rent_amount is None or tenant.tracking_start_date is None:
        return None
    return TenancySettings(
        frequency=tenant.frequency,
        rent_amount=to_money(tenant.rent_amount),
        due_day=_due_day_from_column(tenant.frequency, tenant.due_day),
        tracking_start_date=tenant.tracking_start_date,
        opening_arrears=to_money(tenant.opening_arrears or 0),
        schedule_adjustment=to_money(tenant.schedule_adjustment or 0),
    )


def snapshot_to_json(snapshot: RemedyNoticeMetadata) -> Dict[str, Any]:
    return {
        "ledger_entry_ids": list(snapshot.ledger_entry_ids),
        "due_dates": [d.isoformat() for d in snapshot.due_dates],
        "total_amount_owed": str(snapshot.total_amount_owed),
        "unpaid_amounts": {d.isoformat(): str(a) for d, a in snapshot.unpaid_amounts.items()},
        "ledger_due_dates": [d.isoformat() for d in snapshot.ledger_due_dates],
        "amount_allocated_at_issue": str(snapshot.amount_allocated_at_issue),
    }


def snapshot_from_json(data: Optional[Dict[str, Any]]) -> Optional[RemedyNoticeMetadata]:
    if not data:
        return None
    return RemedyNoticeMetadata(
        due_dates=[date.fromisoformat(d) for d in data.get("due_dates", [])],
        total_amount_owed=to_money(data.get("total_amount_owed", "0")),
        unpaid_amounts={date.fromisoformat(d): to_money(a) for d, a in data.get("unpaid_amounts", {}).items()},
        ledger_entry_ids=list(data.get("ledger_entry_ids", [])),
        ledger_due_dates=[date.fromisoformat(d) for d in data.get("ledger_due_dates", [])],
        amount_allocated_at_issue=to_money(data.get("amount_allocated_at_issue", "0")),
    )


class TenantRepository:
    """Repository for tenancies and their rent terms"""

    def __init__(self, db: Session):
        self.db = db

    def create_tenant(
        self,
        name: str,
        settings: Optional[TenancySettings] = None,
        tenant_id: Optional[str] = None,
    ) -> Tenant:
        db_tenant = Tenant(id=tenant_id or str(uuid.uuid4()), name=name)
        if settings is not None:
            self._write_settings(db_tenant, settings)
        self.db.add(db_tenant)
        self.db.flush()
        return db_tenant

    def get(self, tenant_id: str) -> Optional[Tenant]:
        return self.db.query(Tenant).filter(Tenant.id == tenant_id).first()

    def get_or_raise(self, tenant_id: str) -> Tenant:
        tenant = self.get(tenant_id)
        if tenant is None:
            raise TenantNotFoundError(f"Tenant {tenant_id} not found")
        return tenant

    def get_settings(self, tenant_id: str) -> Optional[TenancySettings]:
        """Current rent terms; raises TenantNotFoundError for an unknown tenant"""
        return settings_from_row(self.get_or_raise(tenant_id))

    def update_settings(self, tenant_id: str, settings: TenancySettings) -> Tenant:
        tenant = self.get_or_raise(tenant_id)
        self._write_settings(tenant, settings)
        self.db.flush()
        return tenant

    @staticmethod
    def _write_settings(tenant: Tenant, settings: TenancySettings) -> None:
        tenant.frequency = parse_frequency(settings.frequency).value
        tenant.rent_amount = to_money(settings.rent_amount)
        tenant.due_day = str(settings.due_day)
        tenant.tracking_start_date = settings.tracking_start_date
        tenant.opening_arrears = to_money(settings.opening_arrears or 0)
        tenant.schedule_adjustment = to_money(settings.schedule_adjustment or 0)


class ObligationRepository:
    """Repository for rent ledger rows"""

    def __init__(self, db: Session):
        self.db = db

    @staticmethod
    def to_domain(row: PaymentObligationRow) -> PaymentObligation:
        return PaymentObligation(
            id=str(row.id),
            tenant_id=row.tenant_id,
            due_date=row.due_date,
            amount_due=to_money(row.amount_due),
            amount_paid=to_money(row.amount_paid),
            status=ObligationStatus(row.status),
        )

    def list_for_tenant(self, tenant_id: str) -> List[PaymentObligation]:
        """Ledger rows ordered oldest first"""
        rows = (
            self.db.query(PaymentObligationRow)
            .filter(PaymentObligationRow.tenant_id == tenant_id)
            .order_by(PaymentObligationRow.due_date.asc())
            .all()
        )
        return [self.to_domain(r) for r in rows]

    def add_many(self, obligations: List[PaymentObligation]) -> int:
        for obligation in obligations:
            self.db.add(
                PaymentObligationRow(
                    tenant_id=obligation.tenant_id,
                    due_date=obligation.due_date,
                    amount_due=to_money(obligation.amount_due),
                    amount_paid=to_money(obligation.amount_paid),
                    status=obligation.status.value,
                )
            )
        self.db.flush()
        return len(obligations)

    def delete_from(self, tenant_id: str, from_date: date) -> int:
        """Delete rows due on or after from_date"""
        deleted = (
            self.db.query(PaymentObligationRow)
            .filter(
                PaymentObligationRow.tenant_id == tenant_id,
                PaymentObligationRow.due_date >= from_date,
            )
            .delete(synchronize_session="fetch")
        )
        self.db.flush()
        return deleted

    def apply_payment(self, tenant_id: str, amount: Decimal) -> Tuple[List[PaymentAllocation], Decimal]:
        """
        Spread a payment across open rows oldest-first.

        Returns the allocation made to each row credited and any amount left
        over once every row is paid.
        """
        remaining = to_money(amount)
        allocations = []
        open_rows = (
            self.db.query(PaymentObligationRow)
            .filter(
                PaymentObligationRow.tenant_id == tenant_id,
                PaymentObligationRow.status != ObligationStatus.PAID.value,
            )
            .order_by(PaymentObligationRow.due_date.asc())
            .all()
        )
        for row in open_rows:
            if remaining <= 0:
                break
            outstanding = to_money(row.amount_due) - to_money(row.amount_paid)
            applied = min(outstanding, remaining)
            if applied <= 0:
                continue
            row.amount_paid = to_money(row.amount_paid) + applied
            row.status = (
                ObligationStatus.PAID.value if applied == outstanding else ObligationStatus.PARTIAL.value
            )
            remaining -= applied
            allocations.append(PaymentAllocation(due_date=row.due_date, amount=applied, obligation_id=str(row.id)))

        self.db.flush()
        return allocations, remaining


class PaymentHistoryRepository:
    """Repository for received payments"""

    def __init__(self, db: Session):
        self.db = db

    def add(
        self,
        tenant_id: str,
        entry: PaymentHistoryEntry,
        allocations: Iterable[PaymentAllocation] = (),
    ) -> PaymentHistoryRow:
        db_payment = PaymentHistoryRow(
            tenant_id=tenant_id,
            amount=to_money(entry.amount),
            paid_on=entry.date,
            method=entry.method,
            obligation_id=_as_uuid(entry.obligation_id) if entry.obligation_id else None,
        )
        for allocation in allocations:
            db_payment.allocations.append(
                PaymentAllocationRow(tenant_id=tenant_id, due_date=allocation.due_date, amount=to_money(allocation.amount))
            )
        self.db.add(db_payment)
        self.db.flush()
        return db_payment

    def list_for_tenant(self, tenant_id: str) -> List[PaymentHistoryEntry]:
        rows = (
            self.db.query(PaymentHistoryRow)
            .filter(PaymentHistoryRow.tenant_id == tenant_id)
            .order_by(PaymentHistoryRow.paid_on.asc(), PaymentHistoryRow.created_at.asc())
            .all()
        )
        return [
            PaymentHistoryEntry(
                amount=to_money(r.amount),
                date=r.paid_on,
                method=r.method,
                id=str(r.id),
                obligation_id=str(r.obligation_id) if r.obligation_id else None,
            )
            for r in rows
        ]

    def list_allocations(self, tenant_id: str) -> List[PaymentAllocation]:
        """Every allocation ever made for the tenant, oldest due date first"""
        rows = (
            self.db.query(PaymentAllocationRow)
            .filter(PaymentAllocationRow.tenant_id == tenant_id)
            .order_by(PaymentAllocationRow.due_date.asc(), PaymentAllocationRow.created_at.asc())
            .all()
        )
        return [
            PaymentAllocation(due_date=r.due_date, amount=to_money(r.amount), payment_id=str(r.payment_id))
            for r in rows
        ]


class NoticeRepository:
    """Repository for served notices"""

    def __init__(self, db: Session):
        self.db = db

    @staticmethod
    def to_domain(row: NoticeRow) -> StrikeNotice:
        return StrikeNotice(
            type=NoticeType(row.notice_type),
            sent_at=row.sent_at,
            official_service_date=row.official_service_date,
            id=str(row.id),
            due_date_for=row.due_date_for,
            debt_snapshot=snapshot_from_json(row.debt_snapshot),
        )

    def add(self, tenant_id: str, notice: StrikeNotice) -> StrikeNotice:
        db_notice = NoticeRow(
            tenant_id=tenant_id,
            notice_type=notice.type.value,
            sent_at=notice.sent_at,
            official_service_date=notice.official_service_date,
            due_date_for=notice.due_date_for,
            debt_snapshot=snapshot_to_json(notice.debt_snapshot) if notice.debt_snapshot else None,
        )
        self.db.add(db_notice)
        self.db.flush()
        return self.to_domain(db_notice)

    def list_for_tenant(self, tenant_id: str) -> List[StrikeNotice]:
        rows = (
            self.db.query(NoticeRow)
            .filter(NoticeRow.tenant_id == tenant_id)
            .order_by(NoticeRow.official_service_date.asc())
            .all()
        )
        return [self.to_domain(r) for r in rows]

    def get(self, tenant_id: str, notice_id: str) -> StrikeNotice:
        row = (
            self.db.query(NoticeRow)
            .filter(NoticeRow.tenant_id == tenant_id, NoticeRow.id == _as_uuid(notice_id))
            .first()
        )
        if row is None:
            raise NoticeNotFoundError(f"Notice {notice_id} not found for tenant {tenant_id}")
        return self.to_domain(row)


class RegenerationQueueRepository:
    """Repository for the ledger regeneration queue"""

    def __init__(self, db: Session):
        self.db = db

    @staticmethod
    def to_domain(row: LedgerRegenerationQueue) -> RegenerationRequest:
        return RegenerationRequest(
            id=str(row.id),
            tenant_id=row.tenant_id,
            old_rent_amount=to_money(row.old_rent_amount) if row.old_rent_amount is not None else None,
            new_rent_amount=to_money(row.new_rent_amount),
            old_frequency=row.old_frequency,
            new_frequency=row.new_frequency,
            old_due_day=row.old_due_day,
            new_due_day=row.new_due_day,
            triggered_at=row.triggered_at,
            status=QueueStatus(row.status),
            processed_at=row.processed_at,
            error_message=row.error_message,
        )

    def get(self, request_id: str) -> Optional[RegenerationRequest]:
        row = self.db.get(LedgerRegenerationQueue, _as_uuid(request_id))
        return self.to_domain(row) if row else None

    def _outstanding(self, tenant_id: str) -> Optional[LedgerRegenerationQueue]:
        return (
            self.db.query(LedgerRegenerationQueue)
            .filter(
                LedgerRegenerationQueue.tenant_id == tenant_id,
                LedgerRegenerationQueue.status.in_([QueueStatus.PENDING.value, QueueStatus.PROCESSING.value]),
            )
            .order_by(LedgerRegenerationQueue.triggered_at.asc())
            .first()
        )

    def enqueue(
        self,
        tenant_id: str,
        old: Optional[TenancySettings],
        new: TenancySettings,
    ) -> Tuple[RegenerationRequest, bool]:
        """
        Queue a regeneration, folding it into the tenant's pending request if one exists.

        The pending request keeps its original old_* values so the processor
        still recognises the settings it was queued against.

        Returns:
            (request, coalesced)

        Raises:
            RegenerationInProgressError: the tenant's request is being processed
        """
        new_frequency = getattr(new.frequency, "value", new.frequency)
        existing = self._outstanding(tenant_id)

        if existing is not None and existing.status == QueueStatus.PROCESSING.value:
            raise RegenerationInProgressError(
                f"Ledger regeneration {existing.id} for tenant {tenant_id} is already in progress"
            )

        if existing is not None:
            existing.new_rent_amount = to_money(new.rent_amount)
            existing.new_frequency = new_frequency
            existing.new_due_day = str(new.due_day)
            existing.triggered_at = datetime.now(timezone.utc)
            self.db.flush()
            return self.to_domain(existing), True

        db_request = LedgerRegenerationQueue(
            tenant_id=tenant_id,
            old_rent_amount=to_money(old.rent_amount) if old else None,
            new_rent_amount=to_money(new.rent_amount),
            old_frequency=getattr(old.frequency, "value", old.frequency) if old else None,
            new_frequency=new_frequency,
            old_due_day=str(old.due_day) if old else None,
            new_due_day=str(new.due_day),
            status=QueueStatus.PENDING.value,
        )
        self.db.add(db_request)
        self.db.flush()
        return self.to_domain(db_request), False

    def list_pending(self, limit: int = 10) -> List[RegenerationRequest]:
        rows = (
            self.db.query(LedgerRegenerationQueue)
            .filter(LedgerRegenerationQueue.status == QueueStatus.PENDING.value)
            .order_by(LedgerRegenerationQueue.triggered_at.asc())
            .limit(limit)
            .all()
        )
        return [self.to_domain(r) for r in rows]

    def claim(self, request_id: str) -> bool:
        """Move pending -> processing; False when another worker got there first"""
        claimed = (
            self.db.query(LedgerRegenerationQueue)
            .filter(
                LedgerRegenerationQueue.id == _as_uuid(request_id),
                LedgerRegenerationQueue.status == QueueStatus.PENDING.value,
            )
            .update(
                {
                    LedgerRegenerationQueue.status: QueueStatus.PROCESSING.value,
                    LedgerRegenerationQueue.attempts: LedgerRegenerationQueue.attempts + 1,
                },
                synchronize_session="fetch",
            )
        )
        return claimed == 1

    def _finish(self, request_id: str, status: QueueStatus, error_message: Optional[str] = None) -> None:
        (
            self.db.query(LedgerRegenerationQueue)
            .filter(LedgerRegenerationQueue.id == _as_uuid(request_id))
            .update(
                {
                    LedgerRegenerationQueue.status: status.value,
                    LedgerRegenerationQueue.processed_at: datetime.now(timezone.utc),
                    LedgerRegenerationQueue.error_message: error_message,
                },
                synchronize_session="fetch",
            )
        )

    def mark_completed(self, request_id: str) -> None:
        self._finish(request_id, QueueStatus.COMPLETED)

    def mark_failed(self, request_id: str, error_message: str) -> None:
        self._finish(request_id, QueueStatus.FAILED, error_message)

    def retry_failed(self, request_id: str) -> bool:
        """
        Put a failed request back in the queue.

        Returns False when the request is not failed or the tenant already has
        another request outstanding.
        """
        row = self.db.get(LedgerRegenerationQueue, _as_uuid(request_id))
        if row is None or row.status != QueueStatus.FAILED.value:
            return False
        if self._outstanding(row.tenant_id) is not None:
            return False

        reset = (
            self.db.query(LedgerRegenerationQueue)
            .filter(
                LedgerRegenerationQueue.id == _as_uuid(request_id),
                LedgerRegenerationQueue.status == QueueStatus.FAILED.value,
            )
            .update(
                {
                    LedgerRegenerationQueue.status: QueueStatus.PENDING.value,
                    LedgerRegenerationQueue.error_message: None,
                    LedgerRegenerationQueue.processed_at: None,
                },
                synchronize_session="fetch",
            )
        )
        return reset == 1

    def cleanup(self, older_than_days: int = 7) -> int:
        """Purge finished requests processed before the cutoff"""
        cutoff = datetime.now(timezone.utc) - timedelta(days=older_than_days)
        return (
            self.db.query(LedgerRegenerationQueue)
            .filter(
                LedgerRegenerationQueue.status.in_([QueueStatus.COMPLETED.value, QueueStatus.FAILED.value]),
                LedgerRegenerationQueue.processed_at < cutoff,
            )
            .delete(synchronize_session="fetch")
        )
