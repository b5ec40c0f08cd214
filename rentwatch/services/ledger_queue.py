"""Serialized processing of queued ledger regenerations"""

import logging
import threading
import time
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeout
from contextlib import contextmanager
from dataclasses import replace
from datetime import date
from typing import Dict, Iterator, Optional

from sqlalchemy.orm import sessionmaker

from rentwatch.config import settings as app_settings
from rentwatch.domain.calendar import WorkingDayCalendar
from rentwatch.domain.due_dates import parse_frequency
from rentwatch.domain.exceptions import ReconciliationFailure, RegenerationInProgressError, SettingsConflictError
from rentwatch.domain.models import ReconciliationResult, RegenerationRequest, TenancySettings
from rentwatch.infrastructure.database.repositories import RegenerationQueueRepository, TenantRepository
from rentwatch.infrastructure.database.session import SessionLocal, session_scope
from rentwatch.infrastructure.holidays import build_calendar
from rentwatch.infrastructure.observability.logging import log_regeneration
from rentwatch.infrastructure.observability.metrics import record_regeneration
from rentwatch.services.reconciler import LedgerReconciler
from rentwatch.utils.money import to_money


class TenantLockRegistry:
    """One re-entrant lock per tenant id"""

    def __init__(self):
        self._locks: Dict[str, threading.RLock] = {}
        self._guard = threading.Lock()

    def lock_for(self, tenant_id: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(tenant_id)
            if lock is None:
                lock = self._locks[tenant_id] = threading.RLock()
            return lock

    @contextmanager
    def hold(self, tenant_id: str, timeout: float = -1) -> Iterator[None]:
        lock = self.lock_for(tenant_id)
        if not lock.acquire(timeout=timeout):
            raise RegenerationInProgressError(f"Timed out waiting for the ledger lock of tenant {tenant_id}")
        try:
            yield
        finally:
            lock.release()


class CompletionNotifier:
    """
    Lets callers wait for a tenant's regeneration to finish.

    There is one future per tenant. A result published before anyone waits is
    kept until the next wait() collects it or expect() starts a new round.
    """

    def __init__(self):
        self._futures: Dict[str, Future] = {}
        self._guard = threading.Lock()

    def expect(self, tenant_id: str) -> Future:
        """Future for the tenant's next outcome, replacing a finished one"""
        with self._guard:
            future = self._futures.get(tenant_id)
            if future is None or future.done():
                future = self._futures[tenant_id] = Future()
            return future

    def _current(self, tenant_id: str) -> Future:
        with self._guard:
            future = self._futures.get(tenant_id)
            if future is None:
                future = self._futures[tenant_id] = Future()
            return future

    def resolve(self, tenant_id: str, result: ReconciliationResult) -> None:
        future = self._current(tenant_id)
        if not future.done():
            future.set_result(result)

    def fail(self, tenant_id: str, error: ReconciliationFailure) -> None:
        future = self._current(tenant_id)
        if not future.done():
            future.set_exception(error)

    def wait(self, tenant_id: str, timeout: Optional[float] = None) -> Optional[ReconciliationResult]:
        """
        Block until the tenant's regeneration finishes.

        Returns the result, or None when the timeout elapses (logged and
        treated as complete).

        Raises:
            ReconciliationFailure: the regeneration failed
        """
        timeout = app_settings.completion_timeout_seconds if timeout is None else timeout
        future = self._current(tenant_id)
        try:
            result = future.result(timeout=timeout)
        except FutureTimeout:
            logging.warning(
                "Timed out waiting for ledger regeneration",
                extra={"tenant_id": tenant_id, "timeout_seconds": timeout},
            )
            return None

        with self._guard:
            if self._futures.get(tenant_id) is future:
                del self._futures[tenant_id]
        return result


class RegenerationQueueProcessor:
    """
    Drains the regeneration queue.

    Each request is claimed with a conditional update, processed under the
    tenant's lock and completed in the same transaction as the regenerated
    ledger. Failures are recorded in a separate transaction and are only
    retried through retry_failed().
    """

    def __init__(
        self,
        session_factory: sessionmaker = SessionLocal,
        calendar: Optional[WorkingDayCalendar] = None,
        locks: Optional[TenantLockRegistry] = None,
        notifier: Optional[CompletionNotifier] = None,
        batch_size: Optional[int] = None,
        max_periods: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.calendar = calendar or build_calendar()
        self.locks = locks or TenantLockRegistry()
        self.notifier = notifier or CompletionNotifier()
        self.batch_size = batch_size or app_settings.queue_batch_size
        self.max_periods = max_periods or app_settings.max_ledger_periods

    def process_pending(self, as_of: Optional[date] = None) -> int:
        """Process one batch of pending requests, returning how many completed"""
        with session_scope(self.session_factory) as db:
            pending = RegenerationQueueRepository(db).list_pending(self.batch_size)

        completed = 0
        for request in pending:
            if self.process_request(request.id, as_of) is not None:
                completed += 1
        return completed

    def process_request(self, request_id: str, as_of: Optional[date] = None) -> Optional[ReconciliationResult]:
        with session_scope(self.session_factory) as db:
            request = RegenerationQueueRepository(db).get(request_id)
        if request is None:
            return None

        with self.locks.hold(request.tenant_id):
            with session_scope(self.session_factory) as db:
                if not RegenerationQueueRepository(db).claim(request_id):
                    logging.info(
                        "Regeneration already claimed",
                        extra={"request_id": request_id, "tenant_id": request.tenant_id},
                    )
                    return None
            return self._run(request, as_of)

    def _run(self, request: RegenerationRequest, as_of: Optional[date]) -> Optional[ReconciliationResult]:
        start_time = time.time()
        db = self.session_factory()
        try:
            current = TenantRepository(db).get_settings(request.tenant_id)
            new_settings = self._apply_request(request, current)
            result = LedgerReconciler(db, self.calendar, self.max_periods).regenerate_ledger(
                request.tenant_id, new_settings, as_of
            )
            RegenerationQueueRepository(db).mark_completed(request.id)
            db.commit()
        except Exception as e:
            db.rollback()
            duration = time.time() - start_time
            self._mark_failed(request.id, str(e))
            record_regeneration("failed", duration)
            log_regeneration(request.id, request.tenant_id, "failed", duration * 1000, error=str(e))
            failure = e if isinstance(e, ReconciliationFailure) else ReconciliationFailure(str(e))
            self.notifier.fail(request.tenant_id, failure)
            return None
        finally:
            db.close()

        duration = time.time() - start_time
        record_regeneration("completed", duration)
        log_regeneration(
            request.id,
            request.tenant_id,
            "completed",
            duration * 1000,
            records_deleted=result.records_deleted,
            records_created=result.records_created,
        )
        self.notifier.resolve(request.tenant_id, result)
        return result

    @staticmethod
    def _apply_request(request: RegenerationRequest, current: Optional[TenancySettings]) -> TenancySettings:
        """New settings for the request, refusing if the tenant moved on since it was queued"""
        if current is None:
            raise SettingsConflictError(f"Tenant {request.tenant_id} has no rent terms to regenerate from")

        unchanged = (
            request.old_rent_amount is not None
            and to_money(current.rent_amount) == request.old_rent_amount
            and parse_frequency(current.frequency).value == request.old_frequency
            and str(current.due_day) == request.old_due_day
        )
        if not unchanged:
            raise SettingsConflictError(
                f"Settings of tenant {request.tenant_id} changed after regeneration {request.id} was queued"
            )

        return replace(
            current,
            rent_amount=request.new_rent_amount,
            frequency=parse_frequency(request.new_frequency),
            due_day=int(request.new_due_day) if request.new_due_day.isdigit() else request.new_due_day,
        )

    def _mark_failed(self, request_id: str, message: str) -> None:
        with session_scope(self.session_factory) as db:
            RegenerationQueueRepository(db).mark_failed(request_id, message)

    def retry_failed(self, request_id: str) -> bool:
        with session_scope(self.session_factory) as db:
            return RegenerationQueueRepository(db).retry_failed(request_id)

    def cleanup(self, older_than_days: Optional[int] = None) -> int:
        days = app_settings.queue_retention_days if older_than_days is None else older_than_days
        with session_scope(self.session_factory) as db:
            purged = RegenerationQueueRepository(db).cleanup(days)
        if purged:
            logging.info("Purged finished regenerations", extra={"count": purged, "older_than_days": days})
        return purged
