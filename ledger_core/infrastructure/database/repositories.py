"""Data access layer for ledger entities"""

from datetime import datetime
from typing import List, Optional, Type, TypeVar

from sqlalchemy.orm import Session

from ledger_core.domain.exceptions import NotFoundError
from ledger_core.domain.models import JobResult, PaymentType
from ledger_core.infrastructure.database.models import (
    Account,
    CreditCard,
    DashboardSnapshot,
    Expense,
    FunctionLog,
    Investment,
    Loan,
    RecurringExpense,
)

ModelT = TypeVar("ModelT")


class LedgerRepository:
    """Point reads of the rows a ledger transaction touches"""

    def __init__(self, db: Session):
        self.db = db

    def _get_or_raise(self, model: Type[ModelT], entity: str, entity_id: str) -> ModelT:
        row = self.db.get(model, entity_id)
        if row is None:
            raise NotFoundError(entity, entity_id)
        return row

    def get_account(self, account_id: str) -> Account:
        return self._get_or_raise(Account, "Account", account_id)

    def get_credit_card(self, card_id: str) -> CreditCard:
        return self._get_or_raise(CreditCard, "Credit card", card_id)

    def get_expense(self, expense_id: str) -> Expense:
        return self._get_or_raise(Expense, "Expense", expense_id)

    def get_loan(self, loan_id: str) -> Loan:
        return self._get_or_raise(Loan, "Loan", loan_id)

    def get_recurring_expense(self, recurring_id: str) -> RecurringExpense:
        return self._get_or_raise(RecurringExpense, "Recurring expense", recurring_id)

    def get_investment(self, investment_id: str) -> Investment:
        return self._get_or_raise(Investment, "Investment", investment_id)

    def get_snapshot(self, snapshot_id: str) -> DashboardSnapshot:
        return self._get_or_raise(DashboardSnapshot, "Snapshot", snapshot_id)

    def find_expense(self, expense_id: str) -> Optional[Expense]:
        return self.db.get(Expense, expense_id)


class ExpenseRepository:
    """Queries over expenses"""

    def __init__(self, db: Session):
        self.db = db

    def find_open_installments(self) -> List[Expense]:
        """Credit installment expenses that still owe at least one month"""
        return (
            self.db.query(Expense)
            .filter(Expense.payment_type == PaymentType.CREDIT.value)
            .filter(Expense.is_installment.is_(True))
            .filter(Expense.is_fully_paid.is_(False))
            .order_by(Expense.created_at, Expense.id)
            .all()
        )

    def get_expenses_by_user(self, user_id: str) -> List[Expense]:
        return (
            self.db.query(Expense)
            .filter(Expense.user_id == user_id)
            .order_by(Expense.date.desc())
            .all()
        )


class RecurringExpenseRepository:
    """Queries over recurring expense templates"""

    def __init__(self, db: Session):
        self.db = db

    def find_due(self, now: datetime) -> List[RecurringExpense]:
        """Active templates whose next due date is not in the future"""
        return (
            self.db.query(RecurringExpense)
            .filter(RecurringExpense.is_active.is_(True))
            .filter(RecurringExpense.next_due_date <= now)
            .order_by(RecurringExpense.next_due_date, RecurringExpense.id)
            .all()
        )


class PortfolioRepository:
    """Per-user listings used to build dashboard figures"""

    def __init__(self, db: Session):
        self.db = db

    def get_accounts_by_user(self, user_id: str) -> List[Account]:
        return self.db.query(Account).filter(Account.user_id == user_id).all()

    def get_credit_cards_by_user(self, user_id: str) -> List[CreditCard]:
        return self.db.query(CreditCard).filter(CreditCard.user_id == user_id).all()

    def get_investments_by_user(self, user_id: str) -> List[Investment]:
        return self.db.query(Investment).filter(Investment.user_id == user_id).all()

    def get_loans_by_user(self, user_id: str) -> List[Loan]:
        return (
            self.db.query(Loan)
            .filter(Loan.user_id == user_id)
            .order_by(Loan.created_at.desc())
            .all()
        )

    def get_snapshots_by_user(self, user_id: str, limit: int = 50) -> List[DashboardSnapshot]:
        return (
            self.db.query(DashboardSnapshot)
            .filter(DashboardSnapshot.user_id == user_id)
            .order_by(DashboardSnapshot.created_at.desc(), DashboardSnapshot.id)
            .limit(limit)
            .all()
        )


class FunctionLogRepository:
    """Monitoring log of scheduled job runs"""

    def __init__(self, db: Session):
        self.db = db

    def create_log(self, function_name: str, executed_at: datetime, result: JobResult) -> FunctionLog:
        log = FunctionLog(
            function_name=function_name,
            executed_at=executed_at,
            success=result.success,
            processed=result.processed,
            errors=result.errors,
            cards_updated=result.cards_updated,
            error_details=result.error_details or None,
            critical_error=result.critical_error,
            duration_ms=result.duration_ms,
        )
        self.db.add(log)
        return log

    def get_logs(self, function_name: str, limit: int = 10) -> List[FunctionLog]:
        """Most recent runs first"""
        return (
            self.db.query(FunctionLog)
            .filter(FunctionLog.function_name == function_name)
            .order_by(FunctionLog.executed_at.desc())
            .limit(limit)
            .all()
        )
