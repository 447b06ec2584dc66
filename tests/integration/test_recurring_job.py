"""Integration tests for the daily recurring expense job"""

import threading
from datetime import datetime
from decimal import Decimal

import pytest

from conftest import USER_ID
from ledger_core.domain.exceptions import JobCancelledError
from ledger_core.infrastructure.database.models import Account, CreditCard, Expense, RecurringExpense
from ledger_core.infrastructure.database.repositories import FunctionLogRepository
from ledger_core.jobs.recurring import JOB_NAME, create_recurring_expenses, occurrence_expense_id

NOW = datetime(2024, 7, 1, 0, 0)


def template_data(account_id, **overrides):
    data = {
        "name": "Gym",
        "amount": "45.00",
        "category": "Health",
        "frequency": "monthly",
        "start_date": datetime(2024, 5, 31),
        "payment": {"payment_type": "debit", "account_id": account_id},
    }
    data.update(overrides)
    return data


def insert_template(session_factory, **fields):
    """Template row written around the service, as legacy data would be"""
    values = {
        "user_id": USER_ID,
        "name": "Legacy",
        "amount": Decimal("10.00"),
        "frequency": "monthly",
        "payment_type": "debit",
        "next_due_date": datetime(2024, 6, 15),
        "is_active": True,
    }
    values.update(fields)
    with session_factory() as session:
        template = RecurringExpense(**values)
        session.add(template)
        session.commit()
        return template.id


def expenses_for(session_factory, recurring_id):
    with session_factory() as session:
        rows = session.query(Expense).filter(Expense.recurring_expense_id == recurring_id).all()
        session.expunge_all()
    return rows


def test_due_template_creates_expense_and_advances(portfolio, session_factory, test_settings, load, account_id):
    recurring_id = portfolio.create_recurring_expense(USER_ID, template_data(account_id))
    assert load(RecurringExpense, recurring_id).next_due_date == datetime(2024, 6, 30)

    result = create_recurring_expenses(session_factory, test_settings, now=NOW)

    assert result.success is True
    assert result.processed == 1
    assert result.errors == 0

    [expense] = expenses_for(session_factory, recurring_id)
    assert expense.id == occurrence_expense_id(recurring_id, datetime(2024, 6, 30))
    assert expense.is_from_recurring is True
    assert expense.amount == Decimal("45.00")
    assert expense.date == NOW
    assert load(Account, account_id).balance == Decimal("955.00")

    template = load(RecurringExpense, recurring_id)
    assert template.next_due_date == datetime(2024, 7, 30)
    assert template.last_created_at == NOW
    assert template.is_active is True


def test_future_and_inactive_templates_skipped(portfolio, session_factory, test_settings, load, account_id):
    future_id = portfolio.create_recurring_expense(
        USER_ID, template_data(account_id, start_date=datetime(2024, 6, 20))
    )
    inactive_id = portfolio.create_recurring_expense(USER_ID, template_data(account_id))
    portfolio.deactivate_recurring_expense(inactive_id)

    result = create_recurring_expenses(session_factory, test_settings, now=NOW)

    assert result.processed == 0
    assert expenses_for(session_factory, future_id) == []
    assert expenses_for(session_factory, inactive_id) == []
    assert load(Account, account_id).balance == Decimal("1000.00")


def test_ended_template_is_deactivated(portfolio, session_factory, test_settings, load, account_id):
    recurring_id = portfolio.create_recurring_expense(
        USER_ID,
        template_data(account_id, start_date=datetime(2024, 5, 1), end_date=datetime(2024, 6, 15)),
    )

    result = create_recurring_expenses(session_factory, test_settings, now=NOW)

    assert result.success is True
    assert result.processed == 0
    assert load(RecurringExpense, recurring_id).is_active is False
    assert expenses_for(session_factory, recurring_id) == []


def test_one_occurrence_per_run_when_behind(portfolio, session_factory, test_settings, load, account_id):
    recurring_id = portfolio.create_recurring_expense(
        USER_ID, template_data(account_id, frequency="weekly", start_date=datetime(2024, 6, 1))
    )

    create_recurring_expenses(session_factory, test_settings, now=NOW)

    assert len(expenses_for(session_factory, recurring_id)) == 1
    assert load(RecurringExpense, recurring_id).next_due_date == datetime(2024, 6, 15)


def test_invalid_frequency_reported_and_left_due(session_factory, test_settings, load, account_id):
    recurring_id = insert_template(session_factory, frequency="fortnightly", account_id=account_id)

    result = create_recurring_expenses(session_factory, test_settings, now=NOW)

    assert result.processed == 0
    assert result.errors == 1
    assert result.error_details[0]["recurring_id"] == recurring_id
    assert "fortnightly" in result.error_details[0]["error"]
    assert load(RecurringExpense, recurring_id).next_due_date == datetime(2024, 6, 15)
    assert load(Account, account_id).balance == Decimal("1000.00")


@pytest.mark.parametrize("missing", ["user_id", "name", "amount"])
def test_missing_required_field_reported(session_factory, test_settings, account_id, missing):
    recurring_id = insert_template(session_factory, account_id=account_id, **{missing: None})

    result = create_recurring_expenses(session_factory, test_settings, now=NOW)

    assert result.errors == 1
    assert result.error_details == [
        {"recurring_id": recurring_id, "error": f"Missing required fields: {missing}"}
    ]


def test_missing_payment_account_reported(session_factory, test_settings, count_rows):
    insert_template(session_factory, account_id="missing")

    result = create_recurring_expenses(session_factory, test_settings, now=NOW)

    assert result.errors == 1
    assert "Account not found: missing" in result.error_details[0]["error"]
    assert count_rows(Expense) == 0


def test_insufficient_funds_keeps_template_due(portfolio, session_factory, test_settings, load, account_id):
    """Test the template is retried next run instead of being advanced"""
    recurring_id = portfolio.create_recurring_expense(USER_ID, template_data(account_id, amount="1500.01"))

    result = create_recurring_expenses(session_factory, test_settings, now=NOW)

    assert result.errors == 1
    assert load(RecurringExpense, recurring_id).next_due_date == datetime(2024, 6, 30)
    assert load(Account, account_id).balance == Decimal("1000.00")
    assert expenses_for(session_factory, recurring_id) == []


def test_rerun_never_duplicates_an_occurrence(portfolio, session_factory, test_settings, load, account_id):
    """Test an occurrence that already exists is not charged again"""
    recurring_id = portfolio.create_recurring_expense(USER_ID, template_data(account_id))
    create_recurring_expenses(session_factory, test_settings, now=NOW)

    # Roll the template back as if its update had been lost
    with session_factory() as session:
        session.get(RecurringExpense, recurring_id).next_due_date = datetime(2024, 6, 30)
        session.commit()

    result = create_recurring_expenses(session_factory, test_settings, now=NOW)

    assert result.errors == 0
    assert result.processed == 0
    assert len(expenses_for(session_factory, recurring_id)) == 1
    assert load(Account, account_id).balance == Decimal("955.00")
    assert load(RecurringExpense, recurring_id).next_due_date == datetime(2024, 7, 30)


def test_credit_installment_template(portfolio, session_factory, test_settings, load, card_id):
    recurring_id = portfolio.create_recurring_expense(
        USER_ID,
        template_data(
            None,
            amount="300.00",
            payment={"payment_type": "credit", "credit_card_id": card_id},
            is_installment=True,
            installment_months=3,
        ),
    )

    create_recurring_expenses(session_factory, test_settings, now=NOW)

    [expense] = expenses_for(session_factory, recurring_id)
    assert expense.is_installment is True
    assert expense.monthly_payment == Decimal("100.00000000")
    assert expense.remaining_debt == Decimal("300.00")
    assert load(CreditCard, card_id).current_balance == Decimal("300.00")


def test_many_templates_across_small_batches(portfolio, session_factory, test_settings, load, account_id):
    for _ in range(5):
        portfolio.create_recurring_expense(USER_ID, template_data(account_id, amount="10.00"))

    result = create_recurring_expenses(
        session_factory, test_settings.model_copy(update={"batch_size": 4}), now=NOW
    )

    assert result.processed == 5
    assert load(Account, account_id).balance == Decimal("950.00")


def test_run_is_logged(portfolio, session_factory, test_settings, account_id):
    portfolio.create_recurring_expense(USER_ID, template_data(account_id))

    create_recurring_expenses(session_factory, test_settings, now=NOW)

    with session_factory() as session:
        [log] = FunctionLogRepository(session).get_logs(JOB_NAME)
        assert log.success is True
        assert log.processed == 1
        assert log.errors == 0
        assert log.error_details is None
        assert log.cards_updated is None


def test_cancelled_run_leaves_templates_due(portfolio, session_factory, test_settings, load, account_id):
    recurring_id = portfolio.create_recurring_expense(USER_ID, template_data(account_id))
    cancel_event = threading.Event()
    cancel_event.set()

    with pytest.raises(JobCancelledError):
        create_recurring_expenses(session_factory, test_settings, now=NOW, cancel_event=cancel_event)

    assert expenses_for(session_factory, recurring_id) == []
    assert load(Account, account_id).balance == Decimal("1000.00")
    assert load(RecurringExpense, recurring_id).next_due_date == datetime(2024, 6, 30)
