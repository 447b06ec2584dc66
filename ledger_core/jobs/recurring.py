"""Daily job that turns due recurring expense templates into real expenses

Each due template either ends (end date passed → inactive) or produces one
expense through the same staging code as LedgerService.create_expense and
advances its next due date. The new expense, its balance effect and the
template update always land in the same batch commit.

Expense ids are derived from (template id, due date), so a rerun after a
partial failure never materializes the same occurrence twice.
"""

import logging
import threading
import time
import uuid
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy.orm import sessionmaker

from ledger_core.config import Settings, settings as default_settings
from ledger_core.domain.exceptions import ValidationError
from ledger_core.domain.models import JobResult, PaymentType
from ledger_core.domain.schedule import has_ended, next_due_date
from ledger_core.infrastructure.database.models import RecurringExpense
from ledger_core.infrastructure.database.repositories import LedgerRepository, RecurringExpenseRepository
from ledger_core.infrastructure.database.transactions import BatchCommitError, BatchWriter
from ledger_core.jobs.monitoring import fail_run, finish_run, raise_if_cancelled
from ledger_core.services.ledger import apply_new_expense
from ledger_core.services.schemas import CreateExpenseRequest, parse_request
from ledger_core.utils.date_utils import elapsed_ms, utc_now

logger = logging.getLogger(__name__)

JOB_NAME = "create_recurring_expenses"

OCCURRENCE_NAMESPACE = uuid.UUID("6f1d3c2e-8a4b-4e7f-9c21-5d0b7a3e9f14")

CREATED = "created"
ADVANCED = "advanced"
DEACTIVATED = "deactivated"


def occurrence_expense_id(recurring_id: str, due_date: datetime) -> str:
    """Deterministic expense id for one occurrence of a template"""
    return str(uuid.uuid5(OCCURRENCE_NAMESPACE, f"{recurring_id}:{due_date.isoformat()}"))


def build_expense_request(template: RecurringExpense, now: datetime) -> CreateExpenseRequest:
    """Expense input derived from a template; raises ValidationError on bad templates"""
    payment: Dict[str, Optional[str]] = {"payment_type": template.payment_type}
    if template.payment_type == PaymentType.DEBIT.value:
        payment["account_id"] = template.account_id
    elif template.payment_type == PaymentType.CREDIT.value:
        payment["credit_card_id"] = template.credit_card_id

    return parse_request(
        CreateExpenseRequest,
        {
            "name": template.name,
            "amount": template.amount,
            "category": template.category or "Uncategorized",
            "date": now,
            "payment": payment,
            "is_installment": template.is_installment,
            "installment_months": template.installment_months,
            "is_from_recurring": True,
            "recurring_expense_id": template.id,
        },
    )


def _process_template(repo: LedgerRepository, template: RecurringExpense, now: datetime, settings: Settings) -> str:
    """
    Stage the writes for one due template and return what happened.

    Every check runs before the first mutation, so a raised error leaves
    the batch session untouched.
    """
    missing = [field for field in ("user_id", "name", "amount") if not getattr(template, field)]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    if has_ended(template.end_date, now):
        logger.info(f"Recurring expense {template.id} has ended, deactivating", extra={"job": JOB_NAME})
        template.is_active = False
        return DEACTIVATED

    due_date = template.next_due_date
    following = next_due_date(due_date, template.frequency)
    request = build_expense_request(template, now)

    expense_id = occurrence_expense_id(template.id, due_date)
    outcome = CREATED
    if repo.find_expense(expense_id) is None:
        apply_new_expense(repo, template.user_id, request, settings.overdraft_limit, expense_id=expense_id)
    else:
        logger.info(
            f"Occurrence {due_date.isoformat()} of {template.id} already materialized",
            extra={"job": JOB_NAME, "expense_id": expense_id},
        )
        outcome = ADVANCED

    template.last_created_at = now
    template.next_due_date = following
    return outcome


def _commit_batch(writer: BatchWriter, outcomes: Dict[str, str], errors: List[Dict[str, str]]) -> int:
    """Commit staged templates; returns how many expenses were created"""
    try:
        committed = writer.commit()
    except BatchCommitError as e:
        logger.error(str(e), extra={"job": JOB_NAME})
        for recurring_id in e.keys:
            outcomes.pop(recurring_id, None)
            errors.append({"recurring_id": recurring_id, "error": f"Batch commit failed: {e.cause}"})
        return 0

    return sum(1 for recurring_id in committed if outcomes.pop(recurring_id) == CREATED)


def create_recurring_expenses(
    session_factory: sessionmaker,
    settings: Optional[Settings] = None,
    now: Optional[datetime] = None,
    cancel_event: Optional[threading.Event] = None,
) -> JobResult:
    """
    Materialize every active template whose next due date has arrived.

    Templates with missing fields, an unknown frequency, a missing payment
    source or an account that cannot cover the expense are reported in
    error_details and stay due, so the next run tries them again. A template
    whose occurrence already exists is only advanced and is not counted.

    ``cancel_event`` is checked before every batch commit; once set, the
    uncommitted batch is dropped and the run ends with JobCancelledError.

    Returns:
        JobResult with processed (expenses created), errors, error_details, duration_ms

    Raises:
        Any run-level error, after writing a failed monitoring log entry
    """
    settings = settings or default_settings
    now = now or utc_now()
    start = time.monotonic()

    processed = 0
    errors: List[Dict[str, str]] = []
    outcomes: Dict[str, str] = {}

    logger.info(f"Starting {JOB_NAME}", extra={"job": JOB_NAME, "executed_at": now.isoformat()})

    try:
        with BatchWriter(session_factory, settings.batch_size) as writer:
            repo = LedgerRepository(writer.session)
            templates = RecurringExpenseRepository(writer.session).find_due(now)
            logger.info(f"Found {len(templates)} recurring expense(s) due", extra={"job": JOB_NAME})

            for recurring_id, template in [(t.id, t) for t in templates]:
                try:
                    outcome = _process_template(repo, template, now, settings)
                except Exception as e:
                    logger.warning(f"Skipping recurring expense {recurring_id}: {e}", extra={"job": JOB_NAME})
                    errors.append({"recurring_id": recurring_id, "error": str(e)})
                    continue

                # New expense + balance update + template update, or just the template
                writer.stage(recurring_id, operations=3 if outcome == CREATED else 1)
                outcomes[recurring_id] = outcome

                if writer.is_full:
                    raise_if_cancelled(cancel_event, JOB_NAME)
                    processed += _commit_batch(writer, outcomes, errors)

            raise_if_cancelled(cancel_event, JOB_NAME)
            processed += _commit_batch(writer, outcomes, errors)

    except Exception as e:
        fail_run(session_factory, JOB_NAME, now, processed, errors, elapsed_ms(start), e)
        raise

    return finish_run(session_factory, JOB_NAME, now, processed, errors, elapsed_ms(start))
