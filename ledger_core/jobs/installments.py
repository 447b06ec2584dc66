"""Monthly job that pays one installment on every open credit installment expense

Consistency is per record, not per run: each expense is amortized on its
own, expense updates are committed in batches, and a failing record or batch
is reported without stopping the rest. Card balances are adjusted after the
expense batches commit, one small transaction per card, so each card write
reads the value current at write time.
"""

import logging
import threading
import time
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy.orm import Session, sessionmaker

from ledger_core.config import Settings, settings as default_settings
from ledger_core.domain.exceptions import JobCancelledError
from ledger_core.domain.installments import amortize
from ledger_core.domain.models import JobResult
from ledger_core.infrastructure.database.repositories import ExpenseRepository, LedgerRepository
from ledger_core.infrastructure.database.transactions import BatchCommitError, BatchWriter, run_transaction
from ledger_core.jobs.monitoring import fail_run, finish_run, raise_if_cancelled
from ledger_core.utils.date_utils import elapsed_ms, utc_now
from ledger_core.utils.decimal_utils import coerce_decimal, to_money

logger = logging.getLogger(__name__)

JOB_NAME = "reduce_installment_debt"

ZERO = Decimal("0.00")


def _commit_batch(
    writer: BatchWriter,
    pending: Dict[str, Tuple[Optional[str], Decimal]],
    card_deltas: Dict[str, Decimal],
    errors: List[Dict[str, str]],
) -> int:
    """Commit staged expense updates and fold their debt reductions into card deltas"""
    try:
        committed = writer.commit()
    except BatchCommitError as e:
        logger.error(str(e), extra={"job": JOB_NAME})
        for expense_id in e.keys:
            pending.pop(expense_id, None)
            errors.append({"expense_id": expense_id, "error": f"Batch commit failed: {e.cause}"})
        return 0

    for expense_id in committed:
        card_id, reduction = pending.pop(expense_id)
        if card_id:
            card_deltas[card_id] = card_deltas.get(card_id, ZERO) - reduction
    return len(committed)


def _apply_card_delta(card_id: str, delta: Decimal):
    def _apply(session: Session) -> Tuple[Decimal, Decimal]:
        card = LedgerRepository(session).get_credit_card(card_id)
        current = coerce_decimal(card.current_balance)
        card.current_balance = max(ZERO, to_money(current + delta))
        return current, card.current_balance

    return _apply


def reduce_installment_debt(
    session_factory: sessionmaker,
    settings: Optional[Settings] = None,
    now: Optional[datetime] = None,
    cancel_event: Optional[threading.Event] = None,
) -> JobResult:
    """
    Advance every open credit installment expense by one month.

    Per expense: amortize, stage the update, remember the card's debt
    reduction. Malformed expenses (missing amount or months) are skipped
    and reported. After all batches commit, each card is reduced once by
    the total of its committed reductions.

    ``cancel_event`` is checked before every expense batch commit. Once set,
    the uncommitted batch is dropped, the cards still receive the reductions
    of the batches that did commit, and the run ends with JobCancelledError.

    Returns:
        JobResult with processed/errors/error_details/cards_updated/duration_ms

    Raises:
        Any run-level error (e.g. the initial query failing), after writing a
        failed monitoring log entry, so the scheduler can retry the run.
    """
    settings = settings or default_settings
    executed_at = now or utc_now()
    start = time.monotonic()

    processed = 0
    errors: List[Dict[str, str]] = []
    pending: Dict[str, Tuple[Optional[str], Decimal]] = {}
    card_deltas: Dict[str, Decimal] = {}
    cancelled: Optional[JobCancelledError] = None

    logger.info(f"Starting {JOB_NAME}", extra={"job": JOB_NAME, "executed_at": executed_at.isoformat()})

    try:
        try:
            with BatchWriter(session_factory, settings.batch_size) as writer:
                expenses = ExpenseRepository(writer.session).find_open_installments()
                logger.info(f"Found {len(expenses)} installment expense(s) to process", extra={"job": JOB_NAME})

                for expense_id, expense in [(e.id, e) for e in expenses]:
                    try:
                        result = amortize(expense)
                        card_id = expense.credit_card_id
                    except Exception as e:
                        logger.warning(f"Skipping expense {expense_id}: {e}", extra={"job": JOB_NAME})
                        errors.append({"expense_id": expense_id, "error": str(e)})
                        continue

                    expense.installment_months_paid = result.installment_months_paid
                    expense.monthly_payment = result.monthly_payment
                    expense.remaining_debt = result.remaining_debt
                    expense.is_fully_paid = result.is_fully_paid
                    writer.stage(expense_id)
                    pending[expense_id] = (card_id, result.debt_reduction)

                    logger.debug(
                        f"Reduced debt for {expense_id} "
                        f"({result.installment_months_paid}/{expense.installment_months} months)",
                        extra={"job": JOB_NAME},
                    )

                    if writer.is_full:
                        raise_if_cancelled(cancel_event, JOB_NAME)
                        processed += _commit_batch(writer, pending, card_deltas, errors)

                raise_if_cancelled(cancel_event, JOB_NAME)
                processed += _commit_batch(writer, pending, card_deltas, errors)
        except JobCancelledError as e:
            logger.warning(f"{JOB_NAME} cancelled after {processed} record(s)", extra={"job": JOB_NAME})
            cancelled = e

        # Committed expense batches always reach their cards
        cards_updated = 0
        for card_id, delta in card_deltas.items():
            try:
                before, after = run_transaction(
                    session_factory, _apply_card_delta(card_id, delta), settings.transaction_max_attempts
                )
            except Exception as e:
                logger.error(f"Error updating credit card {card_id}: {e}", extra={"job": JOB_NAME})
                errors.append({"credit_card_id": card_id, "error": str(e)})
                continue
            cards_updated += 1
            logger.info(f"Updated credit card {card_id}: {before} -> {after}", extra={"job": JOB_NAME})

        if cancelled is not None:
            raise cancelled

    except Exception as e:
        fail_run(session_factory, JOB_NAME, executed_at, processed, errors, elapsed_ms(start), e)
        raise

    return finish_run(
        session_factory,
        JOB_NAME,
        executed_at,
        processed,
        errors,
        elapsed_ms(start),
        cards_updated=cards_updated,
    )
