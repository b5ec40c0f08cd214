"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

from pythonjsonlogger.json import JsonFormatter

from rentwatch.config import settings


class CustomJsonFormatter(JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = settings.service_name


def setup_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging"""
    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s")
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_regeneration(
    request_id: str,
    tenant_id: str,
    outcome: str,
    duration_ms: float,
    records_deleted: int = 0,
    records_created: int = 0,
    error: Optional[str] = None,
) -> None:
    """Log structured regeneration outcome for audit"""
    extra = {
        "request_id": request_id,
        "tenant_id": tenant_id,
        "step": "ledger_regeneration",
        "outcome": outcome,
        "records_deleted": records_deleted,
        "records_created": records_created,
        "duration_ms": duration_ms,
    }
    if error is not None:
        extra["error"] = error
        logging.error("Ledger regeneration failed", extra=extra)
    else:
        logging.info("Ledger regeneration completed", extra=extra)


def log_rent_state(tenant_id: str, balance: Decimal, days_overdue: int, working_days_overdue: int) -> None:
    """Log a computed rent state at debug level"""
    logging.debug(
        "Rent state calculated",
        extra={
            "tenant_id": tenant_id,
            "step": "rent_state",
            "current_balance": str(balance),
            "days_overdue": days_overdue,
            "working_days_overdue": working_days_overdue,
        },
    )
