"""SQLAlchemy ORM models - one table per ledger collection

Every mutable row carries a ``version`` column wired as SQLAlchemy's
``version_id_col``: UPDATE and DELETE statements match on ``(id, version)``
and raise ``StaleDataError`` when a concurrent transaction got there first.
"""

import uuid
from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()

MONEY = Numeric(14, 2)
RATE = Numeric(18, 8)


def new_id() -> str:
    """Client-assigned document id"""
    return str(uuid.uuid4())


class Account(Base):
    """Bank or cash account holding money"""

    __tablename__ = "accounts"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(Text, nullable=False, index=True)
    name = Column(Text, nullable=False)
    type = Column(Text, nullable=False, default="checking")
    balance = Column(MONEY, nullable=False, default=0)
    currency = Column(Text, nullable=False, default="USD")
    annual_return = Column(Numeric(7, 4), nullable=True)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())

    __mapper_args__ = {"version_id_col": version}


class Investment(Base):
    """Holding whose current amount counts toward total money"""

    __tablename__ = "investments"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(Text, nullable=False, index=True)
    name = Column(Text, nullable=False)
    current_amount = Column(MONEY, nullable=False)
    annual_return_percentage = Column(Numeric(7, 2), nullable=False)
    expected_return = Column(MONEY, nullable=False)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())

    __mapper_args__ = {"version_id_col": version}


class CreditCard(Base):
    """Credit card; current_balance is the outstanding debt"""

    __tablename__ = "credit_cards"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(Text, nullable=False, index=True)
    name = Column(Text, nullable=False)
    current_balance = Column(MONEY, nullable=False, default=0)
    credit_limit = Column(MONEY, nullable=True)
    last_four_digits = Column(String(4), nullable=True)
    interest_rate = Column(Numeric(7, 4), nullable=True)
    billing_cycle_day = Column(Integer, nullable=True)
    payment_due_day = Column(Integer, nullable=True)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (CheckConstraint("current_balance >= 0", name="ck_credit_cards_balance_floor"),)


class Expense(Base):
    """Spending record paid from exactly one account (debit) or card (credit)"""

    __tablename__ = "expenses"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(Text, nullable=False, index=True)
    name = Column(Text, nullable=False)
    amount = Column(MONEY, nullable=False)
    category = Column(Text, nullable=False)
    date = Column(DateTime, nullable=False)
    payment_type = Column(Text, nullable=False)
    account_id = Column(String(36), nullable=True, index=True)
    credit_card_id = Column(String(36), nullable=True, index=True)

    is_installment = Column(Boolean, nullable=False, default=False)
    installment_months = Column(Integer, nullable=True)
    installment_months_paid = Column(Integer, nullable=False, default=0)
    monthly_payment = Column(RATE, nullable=True)
    installment_start_date = Column(DateTime, nullable=True)
    remaining_debt = Column(MONEY, nullable=False, default=0)
    is_fully_paid = Column(Boolean, nullable=False, default=False, index=True)

    is_from_recurring = Column(Boolean, nullable=False, default=False)
    recurring_expense_id = Column(String(36), nullable=True, index=True)

    version = Column(Integer, nullable=False)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint(
            "(payment_type = 'debit' AND account_id IS NOT NULL AND credit_card_id IS NULL)"
            " OR (payment_type = 'credit' AND credit_card_id IS NOT NULL AND account_id IS NULL)",
            name="ck_expenses_payment_source",
        ),
    )


class Loan(Base):
    """Money lent to or borrowed from another person through an account"""

    __tablename__ = "loans"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(Text, nullable=False, index=True)
    direction = Column(Text, nullable=False)
    person_name = Column(Text, nullable=False)
    amount = Column(MONEY, nullable=False)
    remaining_amount = Column(MONEY, nullable=False)
    currency = Column(Text, nullable=False, default="USD")
    account_id = Column(String(36), nullable=False, index=True)
    description = Column(Text, nullable=True)
    date = Column(DateTime, nullable=False)
    due_date = Column(DateTime, nullable=True)
    is_paid = Column(Boolean, nullable=False, default=False)
    include_in_dashboard = Column(Boolean, nullable=False, default=True)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())

    __mapper_args__ = {"version_id_col": version}


class LoanPayment(Base):
    """Immutable partial or full settlement of a loan"""

    __tablename__ = "loan_payments"

    id = Column(String(36), primary_key=True, default=new_id)
    loan_id = Column(String(36), nullable=False, index=True)
    user_id = Column(Text, nullable=False, index=True)
    amount = Column(MONEY, nullable=False)
    date = Column(DateTime, nullable=False)
    note = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())


class RecurringExpense(Base):
    """Template materialized into a new expense every time it falls due

    Name, amount and frequency are nullable text/numeric so that malformed
    templates can be stored and reported by the scheduler instead of
    breaking the whole run.
    """

    __tablename__ = "recurring_expenses"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(Text, nullable=True, index=True)
    name = Column(Text, nullable=True)
    amount = Column(MONEY, nullable=True)
    category = Column(Text, nullable=True)
    frequency = Column(Text, nullable=True)
    payment_type = Column(Text, nullable=True)
    account_id = Column(String(36), nullable=True)
    credit_card_id = Column(String(36), nullable=True)
    is_installment = Column(Boolean, nullable=False, default=False)
    installment_months = Column(Integer, nullable=True)
    start_date = Column(DateTime, nullable=True)
    next_due_date = Column(DateTime, nullable=False, index=True)
    end_date = Column(DateTime, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    last_created_at = Column(DateTime, nullable=True)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())

    __mapper_args__ = {"version_id_col": version}


class DashboardSnapshot(Base):
    """Point-in-time copy of a user's dashboard figures"""

    __tablename__ = "dashboard_snapshots"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(Text, nullable=False, index=True)
    total_money = Column(MONEY, nullable=False)
    total_debt = Column(MONEY, nullable=False)
    net_worth = Column(MONEY, nullable=False)
    total_lent = Column(MONEY, nullable=False)
    total_borrowed = Column(MONEY, nullable=False)
    category_breakdown = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, nullable=False, server_default=func.now())


class FunctionLog(Base):
    """Monitoring record written at the end of every scheduled job run"""

    __tablename__ = "function_logs"

    id = Column(String(36), primary_key=True, default=new_id)
    function_name = Column(Text, nullable=False, index=True)
    executed_at = Column(DateTime, nullable=False)
    success = Column(Boolean, nullable=False)
    processed = Column(Integer, nullable=False, default=0)
    errors = Column(Integer, nullable=False, default=0)
    cards_updated = Column(Integer, nullable=True)
    error_details = Column(JSON, nullable=True)
    critical_error = Column(Text, nullable=True)
    duration_ms = Column(Integer, nullable=False, default=0)
