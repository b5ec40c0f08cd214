"""Application service for reading and changing a tenancy"""

import logging
from dataclasses import replace
from datetime import date, datetime
from typing import Iterable, Optional, Union

from sqlalchemy.orm import Session

from rentwatch.config import settings as app_settings
from rentwatch.domain.calendar import WorkingDayCalendar
from rentwatch.domain.compliance import build_remedy_metadata, check_remedy_notice_status, evaluate_compliance
from rentwatch.domain.exceptions import InputError, InvalidNoticeError, InvalidSettingsError
from rentwatch.domain.export import export_expenses_csv
from rentwatch.domain.models import (
    ComplianceSnapshot,
    NoticeType,
    ReconciliationResult,
    RegenerationRequest,
    RemedyNoticeStatus,
    RentCalculationResult,
    StrikeNotice,
    TenancySettings,
)
from rentwatch.domain.reconciliation import plan_missing_obligations, should_regenerate
from rentwatch.domain.rent_state import calculate_rent_state
from rentwatch.infrastructure.database.repositories import (
    NoticeRepository,
    ObligationRepository,
    PaymentHistoryRepository,
    RegenerationQueueRepository,
    TenantRepository,
)
from rentwatch.infrastructure.holidays import build_calendar
from rentwatch.infrastructure.observability.logging import log_rent_state
from rentwatch.infrastructure.observability.metrics import regeneration_enqueued_counter
from rentwatch.services.ledger_queue import CompletionNotifier
from rentwatch.services.rate_limiter import RateLimiter
from rentwatch.services.reconciler import LedgerReconciler
from rentwatch.services.schemas import ExpenseRecord, NoticeRequest, PaymentRequest, SettingsChangeRequest
from rentwatch.utils.date_utils import effective_today


class TenancyService:
    """
    Loads a tenant's rows and evaluates rent state and compliance.

    Reads, payments and notices first bring the ledger up to their evaluation
    day, so reads flush too. The caller commits.
    """

    def __init__(
        self,
        db: Session,
        calendar: Optional[WorkingDayCalendar] = None,
        rate_limiter: Optional[RateLimiter] = None,
        notifier: Optional[CompletionNotifier] = None,
    ):
        self.db = db
        self.calendar = calendar or build_calendar()
        self.rate_limiter = rate_limiter or RateLimiter(
            app_settings.settings_change_max_attempts,
            app_settings.settings_change_window_seconds,
            action="settings_change",
        )
        self.notifier = notifier
        self.tenants = TenantRepository(db)
        self.obligations = ObligationRepository(db)
        self.payments = PaymentHistoryRepository(db)
        self.notices = NoticeRepository(db)
        self.queue = RegenerationQueueRepository(db)

    def _today(self, as_of: Optional[Union[date, datetime]]) -> date:
        return effective_today(as_of, tz=app_settings.timezone)

    # Reads

    def sync_ledger(self, tenant_id: str, as_of: Optional[Union[date, datetime]] = None) -> int:
        """
        Add ledger rows for rent that has fallen due since the ledger was built.

        Returns the number of rows added (0 for an unconfigured tenancy or
        unusable terms, which the rent state reports as unavailable).
        """
        settings = self.tenants.get_settings(tenant_id)
        if settings is None:
            return 0
        today = self._today(as_of)
        try:
            rows = plan_missing_obligations(
                tenant_id,
                settings,
                self.payments.list_for_tenant(tenant_id),
                (o.due_date for o in self.obligations.list_for_tenant(tenant_id)),
                today,
                app_settings.max_ledger_periods,
            )
        except InputError as e:
            logging.warning(
                "Ledger sync skipped: invalid tenancy settings", extra={"tenant_id": tenant_id, "error": str(e)}
            )
            return 0

        created = self.obligations.add_many(rows)
        if created:
            logging.info(
                "Ledger rows added",
                extra={"tenant_id": tenant_id, "records_created": created, "as_of": today.isoformat()},
            )
        return created

    def get_rent_state(
        self, tenant_id: str, as_of: Optional[Union[date, datetime]] = None
    ) -> Optional[RentCalculationResult]:
        """Rent state, or None when the tenancy has no rent terms"""
        today = self._today(as_of)
        self.sync_ledger(tenant_id, today)
        return self._rent_state(tenant_id, today)

    def _rent_state(self, tenant_id: str, today: date) -> Optional[RentCalculationResult]:
        state = calculate_rent_state(
            self.tenants.get_settings(tenant_id),
            self.payments.list_for_tenant(tenant_id),
            today,
            self.calendar,
            app_settings.max_ledger_periods,
        )
        if state is not None:
            log_rent_state(tenant_id, state.current_balance, state.days_overdue, state.working_days_overdue)
        return state

    def get_compliance(
        self, tenant_id: str, as_of: Optional[Union[date, datetime]] = None
    ) -> Optional[ComplianceSnapshot]:
        today = self._today(as_of)
        self.sync_ledger(tenant_id, today)
        return evaluate_compliance(
            self._rent_state(tenant_id, today),
            self.notices.list_for_tenant(tenant_id),
            self.obligations.list_for_tenant(tenant_id),
            today,
            self.calendar,
            self.payments.list_allocations(tenant_id),
        )

    def get_remedy_status(
        self, tenant_id: str, notice_id: str, as_of: Optional[Union[date, datetime]] = None
    ) -> RemedyNoticeStatus:
        today = self._today(as_of)
        self.sync_ledger(tenant_id, today)
        notice = self.notices.get(tenant_id, notice_id)
        return check_remedy_notice_status(notice, self.payments.list_allocations(tenant_id), today)

    # Writes

    def configure_tenancy(
        self,
        tenant_id: str,
        settings: TenancySettings,
        as_of: Optional[Union[date, datetime]] = None,
    ) -> ReconciliationResult:
        """Set the first rent terms of a tenancy and build its ledger"""
        if self.tenants.get_settings(tenant_id) is not None:
            raise InvalidSettingsError(f"Tenant {tenant_id} is already configured; request a settings change")
        return LedgerReconciler(self.db, self.calendar).regenerate_ledger(tenant_id, settings, as_of)

    def record_payment(self, payload: PaymentRequest) -> str:
        """Append a payment and apply it to open ledger rows oldest-first"""
        self.tenants.get_or_raise(payload.tenant_id)
        self.sync_ledger(payload.tenant_id, payload.paid_on)
        allocations, unapplied = self.obligations.apply_payment(payload.tenant_id, payload.amount)
        entry = replace(payload.to_entry(), obligation_id=allocations[0].obligation_id if allocations else None)
        row = self.payments.add(payload.tenant_id, entry, allocations)
        logging.info(
            "Payment recorded",
            extra={
                "tenant_id": payload.tenant_id,
                "amount": str(payload.amount),
                "paid_on": payload.paid_on.isoformat(),
                "unapplied": str(unapplied),
            },
        )
        return str(row.id)

    def issue_notice(self, payload: NoticeRequest) -> StrikeNotice:
        """
        Serve a notice and store it with its official service date.

        Strikes are tied to a rent occasion (the oldest strikeable one unless
        given); notices to remedy freeze the debt outstanding at service.

        Raises:
            InvalidNoticeError: nothing to remedy, or the strike is not the
                eligible tier, repeats an occasion or shares a service day
                with an earlier strike
        """
        tenant_id = payload.tenant_id
        self.tenants.get_or_raise(tenant_id)
        osd = self.calendar.official_service_date(payload.sent_at)
        self.sync_ledger(tenant_id, osd)

        if payload.notice_type is NoticeType.REMEDY_NOTICE:
            snapshot = build_remedy_metadata(
                self.obligations.list_for_tenant(tenant_id), osd, self.payments.list_allocations(tenant_id)
            )
            if not snapshot.due_dates:
                raise InvalidNoticeError(f"Tenant {tenant_id} has no unpaid rent to remedy")
            notice = StrikeNotice(
                type=payload.notice_type,
                sent_at=payload.sent_at,
                official_service_date=osd,
                debt_snapshot=snapshot,
            )
        else:
            notice = StrikeNotice(
                type=payload.notice_type,
                sent_at=payload.sent_at,
                official_service_date=osd,
                due_date_for=self._strike_occasion(tenant_id, payload, osd),
            )

        stored = self.notices.add(tenant_id, notice)
        logging.info(
            "Notice issued",
            extra={
                "tenant_id": tenant_id,
                "notice_id": stored.id,
                "notice_type": stored.type.value,
                "official_service_date": osd.isoformat(),
            },
        )
        return stored

    def _strike_occasion(self, tenant_id: str, payload: NoticeRequest, osd: date) -> date:
        """Rent occasion a strike served on osd is for, once the strike is shown to be allowed"""
        compliance = self.get_compliance(tenant_id, osd)
        if compliance is None:
            raise InvalidNoticeError(f"Tenant {tenant_id} has no rent terms; a strike cannot be issued")

        tier = payload.notice_type.strike_tier
        if tier != compliance.eligible_tier:
            raise InvalidNoticeError(
                f"Strike {tier} is {compliance.tier_states[tier].value} for tenant {tenant_id} on {osd.isoformat()}"
            )

        strikes = [n for n in self.notices.list_for_tenant(tenant_id) if n.type.is_strike]
        # s55(1)(aa): strikes are served on separate occasions
        if any(n.official_service_date == osd for n in strikes):
            raise InvalidNoticeError(f"Tenant {tenant_id} was already served a strike on {osd.isoformat()}")

        due_date_for = payload.due_date_for or compliance.next_strikeable_due_date
        if due_date_for is None:
            raise InvalidNoticeError(f"Tenant {tenant_id} has no rent occasion that can carry a strike")
        if any(n.due_date_for == due_date_for for n in strikes):
            raise InvalidNoticeError(f"A strike was already issued for the rent due {due_date_for.isoformat()}")
        return due_date_for

    def request_settings_change(self, payload: SettingsChangeRequest) -> Optional[RegenerationRequest]:
        """
        Queue a change of rent amount, frequency or due day.

        Returns the queued request, or None when nothing that affects the
        schedule changed. Only requests that would queue a regeneration
        count towards the rate limit.

        Raises:
            InvalidSettingsError: the tenancy has no rent terms yet
            RateLimitExceededError: too many changes for this tenant
            RegenerationInProgressError: a regeneration is being processed
        """
        current = self.tenants.get_settings(payload.tenant_id)
        if current is None:
            raise InvalidSettingsError(f"Tenant {payload.tenant_id} has no rent terms yet; configure the tenancy first")

        proposed = replace(
            current,
            rent_amount=payload.rent_amount,
            frequency=payload.frequency,
            due_day=payload.due_day,
        )
        if not should_regenerate(current, proposed):
            return None

        self.rate_limiter.enforce(f"settings_change:{payload.tenant_id}")
        request, coalesced = self.queue.enqueue(payload.tenant_id, current, proposed)
        regeneration_enqueued_counter.labels(mode="coalesced" if coalesced else "created").inc()
        if self.notifier is not None:
            self.notifier.expect(payload.tenant_id)
        logging.info(
            "Ledger regeneration queued",
            extra={"tenant_id": payload.tenant_id, "request_id": request.id, "coalesced": coalesced},
        )
        return request


def export_expenses(records: Iterable[ExpenseRecord]) -> str:
    """IR3R CSV for validated expense records"""
    return export_expenses_csv(record.to_domain() for record in records)
