"""Pytest fixtures for testing"""

from decimal import Decimal
from typing import Generator

import pytest
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from ledger_core.config import Settings
from ledger_core.infrastructure.database.models import Base
from ledger_core.infrastructure.database.session import create_db_engine, create_session_factory, init_db
from ledger_core.services.ledger import LedgerService
from ledger_core.services.portfolio import PortfolioService

USER_ID = "user_1"


@pytest.fixture
def engine(tmp_path) -> Generator[Engine, None, None]:
    """File-backed SQLite so that separate sessions use separate connections"""
    engine = create_db_engine(f"sqlite:///{tmp_path / 'test.db'}")
    init_db(engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> sessionmaker:
    return create_session_factory(engine)


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        database_url="sqlite://",
        overdraft_limit=Decimal("500"),
        transaction_max_attempts=3,
        batch_size=400,
        job_timeout_seconds=5.0,
        job_max_retries=2,
        job_backoff_base=0.01,
        job_backoff_max=0.05,
    )


@pytest.fixture
def ledger(session_factory: sessionmaker, test_settings: Settings) -> LedgerService:
    return LedgerService(session_factory, test_settings)


@pytest.fixture
def portfolio(session_factory: sessionmaker, test_settings: Settings) -> PortfolioService:
    return PortfolioService(session_factory, test_settings)


@pytest.fixture
def load(session_factory: sessionmaker):
    """Read a row in a fresh session, detached so attributes stay readable"""

    def _load(model, entity_id):
        with session_factory(expire_on_commit=False) as session:
            row = session.get(model, entity_id)
            if row is not None:
                session.expunge(row)
            return row

    return _load


@pytest.fixture
def count_rows(session_factory: sessionmaker):
    def _count(model) -> int:
        with session_factory() as session:
            return session.query(model).count()

    return _count


@pytest.fixture
def account_id(portfolio: PortfolioService) -> str:
    """Checking account holding $1000"""
    return portfolio.create_account(USER_ID, {"name": "Checking", "balance": Decimal("1000.00")})


@pytest.fixture
def card_id(portfolio: PortfolioService) -> str:
    """Credit card with no debt"""
    return portfolio.create_credit_card(USER_ID, {"name": "Visa", "credit_limit": Decimal("5000.00")})


def debit_expense(account_id: str, amount: str, **overrides) -> dict:
    data = {
        "name": "Groceries",
        "amount": Decimal(amount),
        "category": "Food",
        "payment": {"payment_type": "debit", "account_id": account_id},
    }
    data.update(overrides)
    return data


def credit_expense(card_id: str, amount: str, **overrides) -> dict:
    data = {
        "name": "Laptop",
        "amount": Decimal(amount),
        "category": "Shopping",
        "payment": {"payment_type": "credit", "credit_card_id": card_id},
    }
    data.update(overrides)
    return data
