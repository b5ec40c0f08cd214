"""Integration tests for the regeneration queue processor"""

import threading
import pytest
from dataclasses import replace
from datetime import date
from decimal import Decimal
from rentwatch.domain.exceptions import (
    InvalidSettingsError,
    RateLimitExceededError,
    RegenerationInProgressError,
    SettingsConflictError,
)
from rentwatch.domain.models import Frequency, QueueStatus
from rentwatch.infrastructure.database.repositories import (
    ObligationRepository,
    RegenerationQueueRepository,
    TenantRepository,
)
from rentwatch.infrastructure.database.session import session_scope
from rentwatch.services.ledger_queue import CompletionNotifier, RegenerationQueueProcessor, TenantLockRegistry
from rentwatch.services.rate_limiter import RateLimiter
from rentwatch.services.schemas import PaymentRequest, SettingsChangeRequest
from rentwatch.services.tenancy import TenancyService

AS_OF = date(2026, 1, 22)
TENANT = "tenant_1"


@pytest.fixture
def notifier():
    return CompletionNotifier()


@pytest.fixture
def processor(session_factory, calendar, notifier):
    return RegenerationQueueProcessor(session_factory, calendar, notifier=notifier, max_periods=200)


@pytest.fixture
def configured(session_factory, calendar, weekly_settings):
    """Weekly $500 tenancy owing $800 as of 22 January"""
    with session_scope(session_factory) as db:
        TenantRepository(db).create_tenant("Aroha Ngata", tenant_id=TENANT)
        service = TenancyService(db, calendar)
        service.configure_tenancy(TENANT, weekly_settings, AS_OF)
        service.record_payment(PaymentRequest(tenant_id=TENANT, amount=Decimal("700"), paid_on=date(2026, 1, 10)))
    return TENANT


def _monthly_change(rent: str = "2000") -> SettingsChangeRequest:
    return SettingsChangeRequest(tenant_id=TENANT, rent_amount=Decimal(rent), frequency=Frequency.MONTHLY, due_day=1)


def _request_change(session_factory, calendar, notifier, payload):
    with session_scope(session_factory) as db:
        return TenancyService(db, calendar, notifier=notifier).request_settings_change(payload)


def _queue_status(session_factory, request_id):
    with session_scope(session_factory) as db:
        return RegenerationQueueRepository(db).get(request_id)


def test_settings_change_is_processed(session_factory, calendar, notifier, processor, configured):
    request = _request_change(session_factory, calendar, notifier, _monthly_change())

    assert processor.process_pending(as_of=AS_OF) == 1

    result = notifier.wait(TENANT, timeout=1)
    assert result.records_deleted == 4
    assert result.records_created == 2
    assert _queue_status(session_factory, request.id).status is QueueStatus.COMPLETED

    with session_scope(session_factory) as db:
        service = TenancyService(db, calendar)
        settings = TenantRepository(db).get_settings(TENANT)
        assert settings.frequency == Frequency.MONTHLY
        assert settings.due_day == 1
        assert service.get_rent_state(TENANT, AS_OF).current_balance == Decimal("800.00")


def test_unchanged_terms_are_not_queued(session_factory, calendar, notifier, configured):
    payload = SettingsChangeRequest(
        tenant_id=TENANT, rent_amount=Decimal("500.00"), frequency=Frequency.WEEKLY, due_day="Wednesday"
    )

    assert _request_change(session_factory, calendar, notifier, payload) is None


def test_unconfigured_tenancy_cannot_change_terms(session_factory, calendar, notifier):
    with session_scope(session_factory) as db:
        TenantRepository(db).create_tenant("New Tenant", tenant_id=TENANT)

    with pytest.raises(InvalidSettingsError):
        _request_change(session_factory, calendar, notifier, _monthly_change())


def test_changes_coalesce_into_one_request(session_factory, calendar, notifier, processor, configured):
    first = _request_change(session_factory, calendar, notifier, _monthly_change("2000"))
    second = _request_change(session_factory, calendar, notifier, _monthly_change("2100"))

    assert second.id == first.id
    assert processor.process_pending(as_of=AS_OF) == 1

    with session_scope(session_factory) as db:
        assert TenantRepository(db).get_settings(TENANT).rent_amount == Decimal("2100.00")
        assert TenancyService(db, calendar).get_rent_state(TENANT, AS_OF).current_balance == Decimal("800.00")


def test_settings_conflict_fails_request(session_factory, calendar, notifier, processor, configured, weekly_settings):
    """Terms edited behind the queue's back are not overwritten"""
    request = _request_change(session_factory, calendar, notifier, _monthly_change())
    with session_scope(session_factory) as db:
        TenantRepository(db).update_settings(TENANT, replace(weekly_settings, rent_amount=Decimal("550")))

    assert processor.process_pending(as_of=AS_OF) == 0

    with pytest.raises(SettingsConflictError):
        notifier.wait(TENANT, timeout=1)
    failed = _queue_status(session_factory, request.id)
    assert failed.status is QueueStatus.FAILED
    assert "changed after regeneration" in failed.error_message
    with session_scope(session_factory) as db:
        assert len(ObligationRepository(db).list_for_tenant(TENANT)) == 4


def test_failed_request_is_only_retried_on_demand(
    session_factory, calendar, notifier, processor, configured, weekly_settings
):
    request = _request_change(session_factory, calendar, notifier, _monthly_change())
    with session_scope(session_factory) as db:
        TenantRepository(db).update_settings(TENANT, replace(weekly_settings, rent_amount=Decimal("550")))
    processor.process_pending(as_of=AS_OF)

    assert processor.process_pending(as_of=AS_OF) == 0

    with session_scope(session_factory) as db:
        TenantRepository(db).update_settings(TENANT, weekly_settings)
    assert processor.retry_failed(request.id) is True
    assert processor.process_pending(as_of=AS_OF) == 1
    assert _queue_status(session_factory, request.id).status is QueueStatus.COMPLETED


def test_request_claimed_elsewhere_is_skipped(session_factory, calendar, notifier, processor, configured):
    request = _request_change(session_factory, calendar, notifier, _monthly_change())
    with session_scope(session_factory) as db:
        assert RegenerationQueueRepository(db).claim(request.id) is True

    assert processor.process_request(request.id, as_of=AS_OF) is None
    assert _queue_status(session_factory, request.id).status is QueueStatus.PROCESSING


def test_change_refused_while_processing(session_factory, calendar, notifier, configured):
    request = _request_change(session_factory, calendar, notifier, _monthly_change())
    with session_scope(session_factory) as db:
        RegenerationQueueRepository(db).claim(request.id)

    with pytest.raises(RegenerationInProgressError):
        _request_change(session_factory, calendar, notifier, _monthly_change("2100"))


def test_settings_changes_are_rate_limited(session_factory, calendar, configured):
    limiter = RateLimiter(max_attempts=1, window_seconds=60)
    with session_scope(session_factory) as db:
        service = TenancyService(db, calendar, rate_limiter=limiter)
        service.request_settings_change(_monthly_change("2000"))

        with pytest.raises(RateLimitExceededError):
            service.request_settings_change(_monthly_change("2100"))


def test_unchanged_terms_do_not_use_up_the_limit(session_factory, calendar, configured):
    limiter = RateLimiter(max_attempts=1, window_seconds=60)
    unchanged = SettingsChangeRequest(
        tenant_id=TENANT, rent_amount=Decimal("500.00"), frequency=Frequency.WEEKLY, due_day="Wednesday"
    )
    with session_scope(session_factory) as db:
        service = TenancyService(db, calendar, rate_limiter=limiter)
        assert service.request_settings_change(unchanged) is None
        assert service.request_settings_change(unchanged) is None

        assert service.request_settings_change(_monthly_change()) is not None


def test_cleanup_purges_finished_requests(session_factory, calendar, notifier, processor, configured):
    _request_change(session_factory, calendar, notifier, _monthly_change())
    processor.process_pending(as_of=AS_OF)

    assert processor.cleanup(older_than_days=7) == 0
    assert processor.cleanup(older_than_days=0) == 1


class TestCompletionNotifier:
    def test_wait_times_out_with_none(self, caplog):
        assert CompletionNotifier().wait(TENANT, timeout=0.01) is None
        assert "Timed out waiting for ledger regeneration" in caplog.text

    def test_result_published_before_wait(self):
        notifier = CompletionNotifier()
        notifier.expect(TENANT)
        notifier.resolve(TENANT, "done")

        assert notifier.wait(TENANT, timeout=0.01) == "done"

    def test_waiter_released_from_another_thread(self):
        notifier = CompletionNotifier()
        notifier.expect(TENANT)
        timer = threading.Timer(0.05, notifier.resolve, args=(TENANT, "done"))
        timer.start()

        assert notifier.wait(TENANT, timeout=2) == "done"
        timer.join()


class TestTenantLockRegistry:
    def test_one_lock_per_tenant(self):
        locks = TenantLockRegistry()

        assert locks.lock_for("a") is locks.lock_for("a")
        assert locks.lock_for("a") is not locks.lock_for("b")

    def test_hold_is_reentrant(self):
        locks = TenantLockRegistry()

        with locks.hold("a"):
            with locks.hold("a", timeout=0.01):
                pass

    def test_held_lock_blocks_other_threads(self):
        locks = TenantLockRegistry()
        errors = []

        def contend():
            try:
                with locks.hold("a", timeout=0.05):
                    pass
            except RegenerationInProgressError as e:
                errors.append(e)

        with locks.hold("a"):
            thread = threading.Thread(target=contend)
            thread.start()
            thread.join()

        assert len(errors) == 1
