"""Structured JSON logging for ledger operations and scheduled jobs"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict

from pythonjsonlogger import jsonlogger

from ledger_core.domain.models import JobResult

LOG_FORMAT = "%(timestamp)s %(level)s %(name)s %(message)s"


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter stamping every record with UTC time, level and service"""

    def __init__(self, *args, service_name: str = "ledger-core", **kwargs):
        super().__init__(*args, **kwargs)
        self.service_name = service_name

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = self.service_name


def setup_logging(level: str = "INFO", service_name: str = "ledger-core") -> None:
    """Send JSON records for the whole process to stdout"""
    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(CustomJsonFormatter(LOG_FORMAT, service_name=service_name))
    root.addHandler(handler)


def log_ledger_operation(
    operation: str,
    user_id: str | None,
    entity_id: str,
    duration_ms: float,
) -> None:
    """Log a committed balance-affecting operation"""
    logging.getLogger("ledger_core.ledger").info(
        "Ledger operation committed",
        extra={
            "step": "ledger_commit",
            "operation": operation,
            "user_id": user_id,
            "entity_id": entity_id,
            "duration_ms": duration_ms,
        },
    )


def log_job_result(job_name: str, result: JobResult) -> None:
    """Log the summary of a scheduled job run"""
    logger = logging.getLogger("ledger_core.jobs")
    extra = {
        "step": "job_complete",
        "job": job_name,
        "processed": result.processed,
        "errors": result.errors,
        "duration_ms": result.duration_ms,
    }
    if result.errors:
        logger.warning(f"{job_name} completed with {result.errors} error(s)", extra=extra)
    else:
        logger.info(f"{job_name} completed: {result.processed} record(s) processed", extra=extra)
