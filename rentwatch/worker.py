"""Regeneration queue worker"""

import logging
import signal
import threading
import time
from typing import Optional

from prometheus_client import start_http_server

from rentwatch.config import settings
from rentwatch.infrastructure.database.models import Base
from rentwatch.infrastructure.database.session import engine
from rentwatch.infrastructure.observability.logging import setup_logging
from rentwatch.services.ledger_queue import RegenerationQueueProcessor
from rentwatch.services.rate_limiter import RateLimiter

# Finished queue rows are purged roughly hourly
CLEANUP_INTERVAL_SECONDS = 3600


def run_worker(
    processor: RegenerationQueueProcessor,
    stop_event: threading.Event,
    poll_interval: Optional[float] = None,
    rate_limiter: Optional[RateLimiter] = None,
    max_iterations: Optional[int] = None,
) -> int:
    """
    Poll the queue until stopped.

    Returns the number of regenerations completed.
    """
    poll_interval = settings.queue_poll_interval_seconds if poll_interval is None else poll_interval
    completed = 0
    iterations = 0
    last_cleanup: Optional[float] = None

    while not stop_event.is_set():
        completed += processor.process_pending()

        now = time.monotonic()
        if last_cleanup is None or now - last_cleanup >= CLEANUP_INTERVAL_SECONDS:
            processor.cleanup()
            if rate_limiter is not None:
                rate_limiter.purge_expired()
            last_cleanup = now

        iterations += 1
        if max_iterations is not None and iterations >= max_iterations:
            break
        stop_event.wait(poll_interval)

    return completed


def main() -> None:
    setup_logging(settings.log_level)
    Base.metadata.create_all(bind=engine)

    if settings.metrics_port:
        start_http_server(settings.metrics_port)
        logging.info("Metrics endpoint started", extra={"port": settings.metrics_port})

    stop_event = threading.Event()

    def _stop(signum, frame):
        logging.info("Worker stopping", extra={"signal": signum})
        stop_event.set()

    signal.signal(signal.SIGTERM, _stop)
    signal.signal(signal.SIGINT, _stop)

    logging.info("Worker started", extra={"service": settings.service_name})
    completed = run_worker(RegenerationQueueProcessor(), stop_event)
    logging.info("Worker stopped", extra={"completed": completed})


if __name__ == "__main__":
    main()
