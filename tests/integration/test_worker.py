"""Integration tests for the queue worker loop"""

import threading
from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock
from rentwatch.domain.models import Frequency
from rentwatch.infrastructure.database.repositories import TenantRepository
from rentwatch.infrastructure.database.session import session_scope
from rentwatch.services.ledger_queue import RegenerationQueueProcessor
from rentwatch.services.schemas import SettingsChangeRequest
from rentwatch.services.tenancy import TenancyService
from rentwatch.worker import run_worker


def test_worker_drains_queue(session_factory, calendar, weekly_settings):
    with session_scope(session_factory) as db:
        TenantRepository(db).create_tenant("Aroha Ngata", tenant_id="tenant_1")
        service = TenancyService(db, calendar)
        service.configure_tenancy("tenant_1", weekly_settings, date(2026, 1, 22))
        service.request_settings_change(
            SettingsChangeRequest(
                tenant_id="tenant_1", rent_amount=Decimal("550"), frequency=Frequency.WEEKLY, due_day="Wednesday"
            )
        )

    processor = RegenerationQueueProcessor(session_factory, calendar)
    completed = run_worker(processor, threading.Event(), poll_interval=0, max_iterations=2)

    assert completed == 1
    with session_scope(session_factory) as db:
        assert TenantRepository(db).get_settings("tenant_1").rent_amount == Decimal("550.00")


def test_worker_stops_when_signalled():
    processor = MagicMock()
    processor.process_pending.return_value = 0
    stop_event = threading.Event()
    stop_event.set()

    assert run_worker(processor, stop_event, poll_interval=0) == 0
    processor.process_pending.assert_not_called()


def test_worker_runs_cleanup_on_first_pass():
    processor = MagicMock()
    processor.process_pending.return_value = 0
    limiter = MagicMock()

    run_worker(processor, threading.Event(), poll_interval=0, rate_limiter=limiter, max_iterations=1)

    processor.cleanup.assert_called_once()
    limiter.purge_expired.assert_called_once()
