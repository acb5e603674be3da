"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pythonjsonlogger import jsonlogger

from ledger_bank_api.config import settings


class CustomJsonFormatter(jsonlogger.JsonFormatter):
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


def log_payment(
    payment_id: str,
    outcome: str,
    duration_ms: float,
    reason: Optional[str] = None,
    correlation_id: Optional[str] = None,
) -> None:
    """Log structured payment processing outcome"""
    extra = {
        "payment_id": payment_id,
        "step": "payment_processed",
        "outcome": outcome,
        "duration_ms": duration_ms,
    }
    if reason:
        extra["reason"] = reason
    if correlation_id:
        extra["correlation_id"] = correlation_id
    level = logging.INFO if outcome == "completed" else logging.WARNING
    logging.getLogger("ledger_bank_api.payments").log(level, "Payment processed", extra=extra)


def log_job(
    job_id: str,
    worker: str,
    attempt: int,
    outcome: str,
    duration_ms: float,
    error: Optional[str] = None,
    correlation_id: Optional[str] = None,
) -> None:
    """Log structured background job outcome"""
    extra = {
        "job_id": job_id,
        "worker": worker,
        "attempt": attempt,
        "outcome": outcome,
        "duration_ms": duration_ms,
    }
    if error:
        extra["error"] = error
    if correlation_id:
        extra["correlation_id"] = correlation_id
    level = logging.INFO if outcome == "completed" else logging.ERROR
    logging.getLogger("ledger_bank_api.workers").log(level, f"Job {outcome}", extra=extra)
