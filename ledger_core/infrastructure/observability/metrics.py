"""Prometheus metrics for ledger operations and scheduled batch jobs"""

from prometheus_client import Counter, Histogram

# Ledger metrics
ledger_operation_counter = Counter(
    "ledger_operations_total",
    "Balance-affecting ledger operations",
    ["operation", "outcome"],  # outcome: committed | rejected
)

transaction_conflict_counter = Counter(
    "ledger_transaction_conflicts_total",
    "Optimistic transaction attempts lost to a concurrent writer",
)

# Batch job metrics
job_run_counter = Counter(
    "batch_job_runs_total",
    "Scheduled job runs",
    ["job", "outcome"],  # success | partial | failed
)

job_record_counter = Counter(
    "batch_job_records_total",
    "Records handled by scheduled jobs",
    ["job", "status"],  # processed | error
)

job_duration_histogram = Histogram(
    "batch_job_duration_seconds",
    "Scheduled job run time",
    ["job"],
    buckets=[0.5, 1.0, 5.0, 15.0, 60.0, 180.0, 540.0],
)

job_attempt_counter = Counter(
    "batch_job_attempts_total",
    "Scheduler-level job attempts",
    ["job", "outcome"],  # succeeded | failed | timed_out
)


def record_ledger_operation(operation: str, committed: bool) -> None:
    outcome = "committed" if committed else "rejected"
    ledger_operation_counter.labels(operation=operation, outcome=outcome).inc()


def record_job_run(job: str, processed: int, errors: int, duration_ms: int, failed: bool = False) -> None:
    """Record run outcome, per-record counts and duration for one job run"""
    if failed:
        outcome = "failed"
    elif errors:
        outcome = "partial"
    else:
        outcome = "success"
    job_run_counter.labels(job=job, outcome=outcome).inc()
    job_record_counter.labels(job=job, status="processed").inc(processed)
    job_record_counter.labels(job=job, status="error").inc(errors)
    job_duration_histogram.labels(job=job).observe(duration_ms / 1000)
