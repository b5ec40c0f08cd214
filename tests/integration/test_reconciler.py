"""Integration tests for balance-preserving ledger regeneration"""

import pytest
from dataclasses import replace
from datetime import date, datetime
from decimal import Decimal
from unittest.mock import patch
from zoneinfo import ZoneInfo
from rentwatch.domain.exceptions import InvalidDueDayError, LedgerIntegrityError, TenantNotFoundError
from rentwatch.domain.models import Frequency, NoticeType, ObligationStatus, PaymentHistoryEntry
from rentwatch.domain.rent_state import calculate_rent_state
from rentwatch.infrastructure.database.repositories import (
    ObligationRepository,
    PaymentHistoryRepository,
    TenantRepository,
)
from rentwatch.services.reconciler import LedgerReconciler
from rentwatch.services.schemas import NoticeRequest, PaymentRequest
from rentwatch.services.tenancy import TenancyService

AS_OF = date(2026, 1, 22)
NZ = ZoneInfo("Pacific/Auckland")


@pytest.fixture
def reconciler(db, calendar):
    return LedgerReconciler(db, calendar, max_periods=200)


@pytest.fixture
def configured_tenant(db, reconciler, weekly_settings):
    """Weekly tenancy with $700 paid on 10 January, committed"""
    TenantRepository(db).create_tenant("Aroha Ngata", tenant_id="tenant_1")
    reconciler.regenerate_ledger("tenant_1", weekly_settings, AS_OF)
    allocations, _ = ObligationRepository(db).apply_payment("tenant_1", Decimal("700"))
    PaymentHistoryRepository(db).add(
        "tenant_1",
        PaymentHistoryEntry(amount=Decimal("700"), date=date(2026, 1, 10), method="bank_transfer"),
        allocations,
    )
    db.commit()
    return "tenant_1"


def _balance(db, tenant_id, calendar):
    state = calculate_rent_state(
        TenantRepository(db).get_settings(tenant_id),
        PaymentHistoryRepository(db).list_for_tenant(tenant_id),
        AS_OF,
        calendar,
    )
    return state.current_balance


def test_first_configuration_builds_ledger(db, reconciler, weekly_settings):
    TenantRepository(db).create_tenant("Aroha Ngata", tenant_id="tenant_1")

    result = reconciler.regenerate_ledger("tenant_1", weekly_settings, AS_OF)
    rows = ObligationRepository(db).list_for_tenant("tenant_1")

    assert result.records_deleted == 0
    assert result.records_created == 4
    assert result.previous_balance == Decimal("1500.00")
    assert result.schedule_adjustment == Decimal("0.00")
    assert [r.status for r in rows] == [ObligationStatus.UNPAID] * 4
    assert rows[-1].due_date == date(2026, 1, 28)


def test_frequency_change_preserves_balance(db, reconciler, configured_tenant, weekly_settings, calendar):
    """$800 owed on weekly terms is still $800 on monthly terms"""
    assert _balance(db, configured_tenant, calendar) == Decimal("800.00")
    monthly = replace(weekly_settings, frequency=Frequency.MONTHLY, rent_amount=Decimal("2000"), due_day=1)

    result = reconciler.regenerate_ledger(configured_tenant, monthly, AS_OF)
    db.commit()
    rows = ObligationRepository(db).list_for_tenant(configured_tenant)

    assert result.records_deleted == 4
    assert result.records_created == 2
    assert result.schedule_adjustment == Decimal("-500.00")
    assert result.new_balance == result.previous_balance == Decimal("800.00")
    assert [r.due_date for r in rows] == [date(2026, 1, 1), date(2026, 2, 1)]
    assert rows[0].status is ObligationStatus.PARTIAL
    assert rows[0].amount_outstanding == Decimal("800.00")
    assert _balance(db, configured_tenant, calendar) == Decimal("800.00")


def test_regeneration_is_repeatable(db, reconciler, configured_tenant, weekly_settings, calendar):
    """Regenerating twice with the same terms leaves the balance alone"""
    fortnightly = replace(weekly_settings, frequency=Frequency.FORTNIGHTLY, rent_amount=Decimal("1000"))

    reconciler.regenerate_ledger(configured_tenant, fortnightly, AS_OF)
    reconciler.regenerate_ledger(configured_tenant, fortnightly, AS_OF)

    assert _balance(db, configured_tenant, calendar) == Decimal("800.00")


def test_integrity_failure_rolls_back(db, reconciler, configured_tenant, weekly_settings):
    monthly = replace(weekly_settings, frequency=Frequency.MONTHLY, rent_amount=Decimal("2000"), due_day=1)

    with patch("rentwatch.services.reconciler.compute_schedule_adjustment", return_value=Decimal("0")):
        with pytest.raises(LedgerIntegrityError):
            reconciler.regenerate_ledger(configured_tenant, monthly, AS_OF)
    db.rollback()

    rows = ObligationRepository(db).list_for_tenant(configured_tenant)
    settings = TenantRepository(db).get_settings(configured_tenant)
    assert len(rows) == 4
    assert rows[0].status is ObligationStatus.PAID
    assert settings.frequency == Frequency.WEEKLY


def test_invalid_settings_rejected(db, reconciler, configured_tenant, weekly_settings):
    with pytest.raises(InvalidDueDayError):
        reconciler.regenerate_ledger(configured_tenant, replace(weekly_settings, due_day="Funday"), AS_OF)


def test_unknown_tenant(reconciler, weekly_settings):
    with pytest.raises(TenantNotFoundError):
        reconciler.regenerate_ledger("missing", weekly_settings, AS_OF)


def test_amount_only_change_preserves_balance(db, reconciler, configured_tenant, weekly_settings, calendar):
    """Same Wednesdays at $550: the $800 owed sits on the newest rows"""
    result = reconciler.regenerate_ledger(configured_tenant, replace(weekly_settings, rent_amount=Decimal("550")), AS_OF)
    db.commit()
    rows = ObligationRepository(db).list_for_tenant(configured_tenant)

    assert result.schedule_adjustment == Decimal("-150.00")
    assert result.new_balance == result.previous_balance == Decimal("800.00")
    assert [r.due_date for r in rows] == [date(2026, 1, 7), date(2026, 1, 14), date(2026, 1, 21), date(2026, 1, 28)]
    assert [r.status for r in rows] == [
        ObligationStatus.PAID,
        ObligationStatus.PARTIAL,
        ObligationStatus.UNPAID,
        ObligationStatus.UNPAID,
    ]
    assert sum(r.amount_outstanding for r in rows if r.due_date <= AS_OF) == Decimal("800.00")
    assert _balance(db, configured_tenant, calendar) == Decimal("800.00")


def test_due_day_only_change_preserves_balance(db, reconciler, configured_tenant, weekly_settings, calendar):
    """Wednesday to Thursday: 1 January itself becomes a due date and 22 January is the last"""
    result = reconciler.regenerate_ledger(configured_tenant, replace(weekly_settings, due_day="Thursday"), AS_OF)
    db.commit()
    rows = ObligationRepository(db).list_for_tenant(configured_tenant)

    assert result.records_created == 4
    assert result.schedule_adjustment == Decimal("-500.00")
    assert [r.due_date for r in rows] == [date(2026, 1, 1), date(2026, 1, 8), date(2026, 1, 15), date(2026, 1, 22)]
    assert rows[2].amount_outstanding == Decimal("300.00")
    assert rows[3].amount_outstanding == Decimal("500.00")
    assert _balance(db, configured_tenant, calendar) == Decimal("800.00")


class TestAfterTimePasses:
    """Rent terms changed on 22 January, ledger read again in February"""

    @pytest.fixture
    def service(self, db, calendar, reconciler, configured_tenant, weekly_settings):
        reconciler.regenerate_ledger(configured_tenant, replace(weekly_settings, rent_amount=Decimal("550")), AS_OF)
        db.commit()
        return TenancyService(db, calendar)

    def test_new_rent_is_added_to_the_ledger(self, db, service, configured_tenant):
        """Four weeks at $550 less the $700 paid, carried at the preserved balance"""
        state = service.get_rent_state(configured_tenant, date(2026, 2, 5))
        rows = ObligationRepository(db).list_for_tenant(configured_tenant)

        assert state.current_balance == Decimal("1900.00")
        assert rows[-2].due_date == date(2026, 2, 4)
        assert rows[-1].due_date == date(2026, 2, 11)
        assert sum(r.amount_outstanding for r in rows if r.due_date <= date(2026, 2, 5)) == state.current_balance

    def test_remedy_notice_covers_the_whole_debt(self, db, service, configured_tenant):
        notice = service.issue_notice(
            NoticeRequest(
                tenant_id=configured_tenant,
                notice_type=NoticeType.REMEDY_NOTICE,
                sent_at=datetime(2026, 2, 5, 10, 0, tzinfo=NZ),
            )
        )
        state = service.get_rent_state(configured_tenant, date(2026, 2, 5))

        assert notice.debt_snapshot.total_amount_owed == state.current_balance == Decimal("1900.00")
        assert notice.debt_snapshot.due_dates == [
            date(2026, 1, 14),
            date(2026, 1, 21),
            date(2026, 1, 28),
            date(2026, 2, 4),
        ]

        service.record_payment(
            PaymentRequest(tenant_id=configured_tenant, amount=Decimal("1900"), paid_on=date(2026, 2, 9))
        )
        status = service.get_remedy_status(configured_tenant, notice.id, date(2026, 2, 20))

        assert status.amount_paid_toward_notice == Decimal("1900.00")
        assert status.is_remedied is True
        assert status.can_file_to_tribunal is False
