"""Scheduler-side harness: wall-clock timeout and whole-run retry with backoff"""

import asyncio
import logging
import threading
from typing import Callable, Optional

from ledger_core.config import Settings, settings as default_settings
from ledger_core.domain.exceptions import JobTimeoutError
from ledger_core.domain.models import JobResult
from ledger_core.infrastructure.observability.metrics import job_attempt_counter

logger = logging.getLogger(__name__)

# A job accepts a ``cancel_event`` keyword and checks it before each commit
Job = Callable[..., JobResult]


class AttemptTimedOut(Exception):
    """One attempt ran past the timeout and its worker has since stopped"""


class ScheduledJobRunner:
    """Runs a scheduled job the way the production scheduler does"""

    def __init__(
        self,
        timeout_seconds: float | None = None,
        max_retries: int | None = None,
        backoff_base: float | None = None,
        backoff_max: float | None = None,
        settings: Optional[Settings] = None,
    ):
        settings = settings or default_settings
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else settings.job_timeout_seconds
        self.max_retries = max_retries if max_retries is not None else settings.job_max_retries
        self.backoff_base = backoff_base if backoff_base is not None else settings.job_backoff_base
        self.backoff_max = backoff_max if backoff_max is not None else settings.job_backoff_max

    async def _attempt(self, job_name: str, job: Job) -> JobResult:
        """
        Run one attempt in a worker thread.

        On timeout the job's cancel event is set and the worker is awaited
        until it stops, so two attempts never write at the same time. A
        worker that finishes cleanly after the deadline has committed all of
        its work; its result is returned rather than running the job again.
        """
        cancel_event = threading.Event()
        worker = asyncio.ensure_future(asyncio.to_thread(job, cancel_event=cancel_event))

        done, _ = await asyncio.wait({worker}, timeout=self.timeout_seconds)
        if worker in done:
            return worker.result()

        cancel_event.set()
        logger.warning(
            f"{job_name} exceeded {self.timeout_seconds}s, waiting for it to stop",
            extra={"job": job_name},
        )
        await asyncio.wait({worker})

        error = worker.exception()
        if error is None:
            logger.warning(f"{job_name} finished after the timeout", extra={"job": job_name})
            return worker.result()
        raise AttemptTimedOut(f"timed out after {self.timeout_seconds}s ({error})") from error

    async def run(self, job_name: str, job: Job) -> JobResult:
        """
        Run ``job`` under the timeout, retrying the whole run.

        Retry strategy:
        - Only run-level failures (the job raised, or timed out) are retried;
          a returned result with per-record errors is final
        - Exponential backoff: base, 2*base, 4*base, ... capped at backoff_max
        - At most max_retries retries after the first attempt

        A timed-out job is asked to stop at its next commit checkpoint.
        Batches it committed before that stay committed, and the retry
        re-derives the remaining work from the store.

        Raises:
            JobTimeoutError: the last attempt exceeded the timeout
            The job's own exception when the last attempt raised
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                result = await self._attempt(job_name, job)
                job_attempt_counter.labels(job=job_name, outcome="succeeded").inc()
                return result

            except AttemptTimedOut as e:
                job_attempt_counter.labels(job=job_name, outcome="timed_out").inc()
                if attempt > self.max_retries:
                    raise JobTimeoutError(f"{job_name} {e} on attempt {attempt}") from e.__cause__
                reason = str(e)

            except Exception as e:
                job_attempt_counter.labels(job=job_name, outcome="failed").inc()
                if attempt > self.max_retries:
                    # Final failure after all retries
                    raise
                reason = str(e)

            backoff = min(self.backoff_max, self.backoff_base * (2 ** (attempt - 1)))
            logger.warning(
                f"{job_name} attempt {attempt} failed ({reason}), retrying in {backoff}s",
                extra={"job": job_name, "attempt": attempt, "backoff_seconds": backoff},
            )
            await asyncio.sleep(backoff)
