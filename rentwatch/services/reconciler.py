"""Balance-preserving ledger regeneration"""

import logging
from dataclasses import replace
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, Union

from sqlalchemy.orm import Session

from rentwatch.config import settings as app_settings
from rentwatch.domain.calendar import WorkingDayCalendar
from rentwatch.domain.exceptions import LedgerIntegrityError
from rentwatch.domain.models import ReconciliationResult, TenancySettings
from rentwatch.domain.reconciliation import compute_schedule_adjustment, plan_regenerated_ledger
from rentwatch.domain.rent_state import calculate_rent_state, raw_balance, validate_settings
from rentwatch.infrastructure.database.repositories import (
    ObligationRepository,
    PaymentHistoryRepository,
    TenantRepository,
)
from rentwatch.infrastructure.holidays import build_calendar
from rentwatch.utils.date_utils import effective_today


class LedgerReconciler:
    """
    Rebuilds a tenant's obligation rows after a change of rent terms.

    All writes go through the given session and are only flushed: the caller
    owns the transaction and must roll it back if this raises.
    """

    def __init__(
        self,
        db: Session,
        calendar: Optional[WorkingDayCalendar] = None,
        max_periods: Optional[int] = None,
    ):
        self.db = db
        self.calendar = calendar or build_calendar()
        self.max_periods = max_periods or app_settings.max_ledger_periods
        self.tenants = TenantRepository(db)
        self.obligations = ObligationRepository(db)
        self.payments = PaymentHistoryRepository(db)

    def regenerate_ledger(
        self,
        tenant_id: str,
        new_settings: TenancySettings,
        as_of: Optional[Union[date, datetime]] = None,
    ) -> ReconciliationResult:
        """
        Regenerate the ledger under new settings without changing what is owed.

        Flow:
        1. Compute the current balance under the old settings
        2. Delete rows due on or after the tracking start date
        3. Generate the due dates under the new settings
        4. Create one row per due date at the new rent amount
        5. Spread the preserved balance over the new rows
        6. Store the new settings with a compensating schedule adjustment

        Raises:
            TenantNotFoundError: unknown tenant
            InputError: new settings are unusable
            LedgerIntegrityError: the rebuilt ledger does not reproduce the balance
        """
        today = effective_today(as_of, tz=app_settings.timezone)
        new_settings = validate_settings(new_settings)
        old_settings = self.tenants.get_settings(tenant_id)
        payments = self.payments.list_for_tenant(tenant_id)

        # 1. Balance to preserve
        previous_state = calculate_rent_state(
            old_settings, payments, today, self.calendar, self.max_periods
        )
        if previous_state is not None:
            preserved = previous_state.current_balance
        else:
            preserved = raw_balance(new_settings, payments, today, self.max_periods) + new_settings.schedule_adjustment

        # 2. Drop the old schedule
        delete_from = new_settings.tracking_start_date
        if old_settings is not None:
            delete_from = min(delete_from, old_settings.tracking_start_date)
        records_deleted = self.obligations.delete_from(tenant_id, delete_from)

        # 3-5. New rows with the balance redistributed
        rows = plan_regenerated_ledger(tenant_id, new_settings, preserved, today, self.max_periods)
        records_created = self.obligations.add_many(rows)

        # 6. Settings carry whatever the new schedule alone does not explain
        adjustment = compute_schedule_adjustment(new_settings, payments, preserved, today, self.max_periods)
        self.tenants.update_settings(tenant_id, replace(new_settings, schedule_adjustment=adjustment))

        new_state = calculate_rent_state(
            self.tenants.get_settings(tenant_id), payments, today, self.calendar, self.max_periods
        )
        new_balance = new_state.current_balance if new_state else Decimal("0")
        if new_state is None or new_balance != preserved:
            raise LedgerIntegrityError(
                f"Regenerated ledger for tenant {tenant_id} gives balance {new_balance}, expected {preserved}"
            )

        logging.info(
            "Ledger regenerated",
            extra={
                "tenant_id": tenant_id,
                "records_deleted": records_deleted,
                "records_created": records_created,
                "preserved_balance": str(preserved),
                "schedule_adjustment": str(adjustment),
            },
        )
        return ReconciliationResult(
            records_deleted=records_deleted,
            records_created=records_created,
            balance_preserved=True,
            previous_balance=preserved,
            new_balance=new_balance,
            schedule_adjustment=adjustment,
        )
