"""Integration tests for process wiring and scheduled entry points"""

from datetime import timedelta
from decimal import Decimal

import pytest

from ledger_core import main
from ledger_core.config import Settings
from ledger_core.infrastructure.database.models import FunctionLog
from ledger_core.utils.date_utils import utc_now


@pytest.fixture
def app_settings(tmp_path, monkeypatch) -> Settings:
    settings = Settings(
        database_url=f"sqlite:///{tmp_path / 'app.db'}",
        overdraft_limit=Decimal("0"),
        job_timeout_seconds=10.0,
        job_max_retries=0,
    )
    monkeypatch.setattr(main, "default_settings", settings)
    monkeypatch.setattr(main, "setup_logging", lambda level, service_name: None)
    return settings


def test_create_services_share_one_store(app_settings):
    ledger, portfolio = main.create_services()

    account_id = portfolio.create_account("user_1", {"name": "Cash", "balance": "20.00"})
    ledger.create_expense(
        "user_1",
        {
            "name": "Coffee",
            "amount": "3.50",
            "category": "Food",
            "payment": {"payment_type": "debit", "account_id": account_id},
        },
    )

    assert portfolio.get_financial_summary("user_1").total_money == Decimal("16.50")


def test_installment_entrypoint(app_settings):
    ledger, portfolio = main.create_services()
    card_id = portfolio.create_credit_card("user_1", {"name": "Visa"})
    ledger.create_expense(
        "user_1",
        {
            "name": "Phone",
            "amount": "600.00",
            "category": "Electronics",
            "payment": {"payment_type": "credit", "credit_card_id": card_id},
            "is_installment": True,
            "installment_months": 12,
        },
    )

    result = main.reduce_installment_debt_entrypoint()

    assert result["success"] is True
    assert result["processed"] == 1
    assert result["cards_updated"] == 1
    assert "duration_ms" in result


def test_recurring_entrypoint(app_settings):
    _, portfolio = main.create_services()
    account_id = portfolio.create_account("user_1", {"name": "Checking", "balance": "100.00"})
    portfolio.create_recurring_expense(
        "user_1",
        {
            "name": "News",
            "amount": "5.00",
            "category": "Media",
            "frequency": "daily",
            "start_date": utc_now() - timedelta(days=3),
            "payment": {"payment_type": "debit", "account_id": account_id},
        },
    )

    result = main.create_recurring_expenses_entrypoint()

    assert result == {"success": True, "processed": 1, "errors": 0, "duration_ms": result["duration_ms"]}

    session_factory = main.create_session_factory_from_settings(app_settings)
    with session_factory() as session:
        assert session.query(FunctionLog).count() == 1
