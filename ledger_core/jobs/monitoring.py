"""End-of-run bookkeeping shared by the scheduled jobs"""

import logging
import threading
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy.orm import sessionmaker

from ledger_core.domain.exceptions import JobCancelledError
from ledger_core.domain.models import JobResult
from ledger_core.infrastructure.database.repositories import FunctionLogRepository
from ledger_core.infrastructure.observability.logging import log_job_result
from ledger_core.infrastructure.observability.metrics import record_job_run

logger = logging.getLogger(__name__)


def write_function_log(session_factory: sessionmaker, job_name: str, executed_at: datetime, result: JobResult) -> None:
    """Persist the run summary; a failure here is logged, never raised"""
    session = session_factory()
    try:
        FunctionLogRepository(session).create_log(job_name, executed_at, result)
        session.commit()
    except Exception as e:
        session.rollback()
        logger.error(f"Failed to write function log for {job_name}: {e}", extra={"job": job_name})
    finally:
        session.close()


def finish_run(
    session_factory: sessionmaker,
    job_name: str,
    executed_at: datetime,
    processed: int,
    errors: List[Dict[str, str]],
    duration_ms: int,
    **extra,
) -> JobResult:
    """Build, log and persist the result of a run that reached the end"""
    result = JobResult(
        success=not errors,
        processed=processed,
        errors=len(errors),
        duration_ms=duration_ms,
        error_details=errors,
        **extra,
    )
    log_job_result(job_name, result)
    record_job_run(job_name, result.processed, result.errors, duration_ms)
    write_function_log(session_factory, job_name, executed_at, result)
    return result


def fail_run(
    session_factory: sessionmaker,
    job_name: str,
    executed_at: datetime,
    processed: int,
    errors: List[Dict[str, str]],
    duration_ms: int,
    error: Exception,
) -> JobResult:
    """Record a run aborted by an error outside the per-record loop"""
    logger.exception(f"Critical error in {job_name}: {error}", extra={"job": job_name})
    result = JobResult(
        success=False,
        processed=processed,
        errors=len(errors) + 1,
        duration_ms=duration_ms,
        error_details=errors,
        critical_error=str(error),
    )
    record_job_run(job_name, result.processed, result.errors, duration_ms, failed=True)
    write_function_log(session_factory, job_name, executed_at, result)
    return result


def raise_if_cancelled(cancel_event: Optional[threading.Event], job_name: str) -> None:
    """
    Checkpoint called before every commit of a scheduled job.

    Raises:
        JobCancelledError: the runner timed out and asked the job to stop
    """
    if cancel_event is not None and cancel_event.is_set():
        raise JobCancelledError(f"{job_name} cancelled after timeout")
