"""Management of money-holding entities, investments, recurring templates and dashboard figures

None of these operations moves money between records: opening balances are
set once at creation and every later change goes through LedgerService.
"""

import logging
from dataclasses import asdict
from typing import List, Optional, Union

from sqlalchemy.orm import Session, sessionmaker

from ledger_core.config import Settings, settings as default_settings
from ledger_core.domain.exceptions import ValidationError
from ledger_core.domain.models import FinancialSummary, PaymentType
from ledger_core.domain.schedule import next_due_date
from ledger_core.domain.summary import build_financial_summary, calculate_expected_return
from ledger_core.infrastructure.database.models import (
    Account,
    CreditCard,
    DashboardSnapshot,
    Investment,
    RecurringExpense,
    new_id,
)
from ledger_core.infrastructure.database.repositories import (
    ExpenseRepository,
    LedgerRepository,
    PortfolioRepository,
)
from ledger_core.infrastructure.database.transactions import run_transaction
from ledger_core.services.schemas import (
    CreateAccountRequest,
    CreateCreditCardRequest,
    CreateInvestmentRequest,
    CreateRecurringExpenseRequest,
    InstallmentTerms,
    UpdateInvestmentRequest,
    UpdateRecurringExpenseRequest,
    parse_request,
)
from ledger_core.utils.date_utils import utc_now
from ledger_core.utils.decimal_utils import to_money

logger = logging.getLogger(__name__)


class PortfolioService:
    """Accounts, credit cards, investments, recurring templates and snapshots for a user"""

    def __init__(self, session_factory: sessionmaker, settings: Optional[Settings] = None):
        self.session_factory = session_factory
        self.settings = settings or default_settings

    def _transaction(self, fn):
        return run_transaction(self.session_factory, fn, self.settings.transaction_max_attempts)

    def create_account(self, user_id: str, data: Union[CreateAccountRequest, dict]) -> str:
        request = parse_request(CreateAccountRequest, data)

        def _create(session: Session) -> str:
            account = Account(
                id=new_id(),
                user_id=user_id,
                name=request.name,
                type=request.type.value,
                balance=to_money(request.balance),
                currency=request.currency,
                annual_return=request.annual_return,
            )
            session.add(account)
            return account.id

        account_id = self._transaction(_create)
        logger.info("Account created", extra={"user_id": user_id, "account_id": account_id})
        return account_id

    def create_credit_card(self, user_id: str, data: Union[CreateCreditCardRequest, dict]) -> str:
        request = parse_request(CreateCreditCardRequest, data)

        def _create(session: Session) -> str:
            card = CreditCard(
                id=new_id(),
                user_id=user_id,
                name=request.name,
                current_balance=to_money(request.current_balance),
                credit_limit=request.credit_limit,
                last_four_digits=request.last_four_digits,
                interest_rate=request.interest_rate,
                billing_cycle_day=request.billing_cycle_day,
                payment_due_day=request.payment_due_day,
            )
            session.add(card)
            return card.id

        card_id = self._transaction(_create)
        logger.info("Credit card created", extra={"user_id": user_id, "credit_card_id": card_id})
        return card_id

    def create_investment(self, user_id: str, data: Union[CreateInvestmentRequest, dict]) -> str:
        request = parse_request(CreateInvestmentRequest, data)

        def _create(session: Session) -> str:
            investment = Investment(
                id=new_id(),
                user_id=user_id,
                name=request.name,
                current_amount=to_money(request.current_amount),
                annual_return_percentage=request.annual_return_percentage,
                expected_return=calculate_expected_return(request.current_amount, request.annual_return_percentage),
            )
            session.add(investment)
            return investment.id

        investment_id = self._transaction(_create)
        logger.info("Investment created", extra={"user_id": user_id, "investment_id": investment_id})
        return investment_id

    def update_investment(self, investment_id: str, data: Union[UpdateInvestmentRequest, dict]) -> None:
        """Apply the given fields and recompute the expected return"""
        request = parse_request(UpdateInvestmentRequest, data)

        def _update(session: Session) -> None:
            investment = LedgerRepository(session).get_investment(investment_id)
            if request.name is not None:
                investment.name = request.name
            if request.current_amount is not None:
                investment.current_amount = to_money(request.current_amount)
            if request.annual_return_percentage is not None:
                investment.annual_return_percentage = request.annual_return_percentage
            investment.expected_return = calculate_expected_return(
                investment.current_amount, investment.annual_return_percentage
            )

        self._transaction(_update)

    def delete_investment(self, investment_id: str) -> None:
        def _delete(session: Session) -> None:
            session.delete(LedgerRepository(session).get_investment(investment_id))

        self._transaction(_delete)
        logger.info("Investment deleted", extra={"investment_id": investment_id})

    def list_investments(self, user_id: str) -> List[Investment]:
        with self.session_factory(expire_on_commit=False) as session:
            investments = PortfolioRepository(session).get_investments_by_user(user_id)
            session.expunge_all()
            return investments

    def create_recurring_expense(self, user_id: str, data: Union[CreateRecurringExpenseRequest, dict]) -> str:
        """
        Create an active template. The first expense falls due one period
        after the start date.
        """
        request = parse_request(CreateRecurringExpenseRequest, data)
        payment = request.payment

        def _create(session: Session) -> str:
            template = RecurringExpense(
                id=new_id(),
                user_id=user_id,
                name=request.name,
                amount=to_money(request.amount),
                category=request.category,
                frequency=request.frequency.value,
                payment_type=payment.payment_type,
                account_id=getattr(payment, "account_id", None),
                credit_card_id=getattr(payment, "credit_card_id", None),
                is_installment=request.is_installment,
                installment_months=request.installment_months if request.is_installment else None,
                start_date=request.start_date,
                next_due_date=next_due_date(request.start_date, request.frequency),
                end_date=request.end_date,
                is_active=True,
            )
            session.add(template)
            return template.id

        return self._transaction(_create)

    def deactivate_recurring_expense(self, recurring_id: str) -> None:
        """Stop a template for good; there is no way back to active"""

        def _deactivate(session: Session) -> None:
            template = LedgerRepository(session).get_recurring_expense(recurring_id)
            template.is_active = False

        self._transaction(_deactivate)

    def update_recurring_expense(
        self, recurring_id: str, data: Union[UpdateRecurringExpenseRequest, dict]
    ) -> None:
        """
        Change the fields present in ``data``; the schedule is not recomputed.

        Moving the template to a debit payment or turning installments off
        clears installment_months. Expenses already created are unaffected.

        Raises:
            ValidationError: the merged template breaks the installment or date rules
            NotFoundError: template missing
        """
        request = parse_request(UpdateRecurringExpenseRequest, data)
        fields = request.model_fields_set

        def _update(session: Session) -> None:
            template = LedgerRepository(session).get_recurring_expense(recurring_id)

            for name in ("name", "category", "is_installment", "installment_months", "start_date", "end_date"):
                if name in fields:
                    setattr(template, name, getattr(request, name))
            if "amount" in fields:
                template.amount = to_money(request.amount)
            if "frequency" in fields:
                template.frequency = request.frequency.value
            if "next_due_date" in fields:
                template.next_due_date = request.next_due_date
            if "payment" in fields:
                template.payment_type = request.payment.payment_type
                template.account_id = getattr(request.payment, "account_id", None)
                template.credit_card_id = getattr(request.payment, "credit_card_id", None)

            source_field = "account_id" if template.payment_type == PaymentType.DEBIT.value else "credit_card_id"
            parse_request(
                InstallmentTerms,
                {
                    "payment": {"payment_type": template.payment_type, source_field: getattr(template, source_field)},
                    "is_installment": template.is_installment,
                    "installment_months": template.installment_months,
                },
            )
            if not template.is_installment:
                template.installment_months = None
            if template.start_date and template.end_date and template.end_date < template.start_date:
                raise ValidationError("end_date must not precede start_date")

        self._transaction(_update)

    def delete_recurring_expense(self, recurring_id: str) -> None:
        """Remove a template; expenses it already created are kept"""

        def _delete(session: Session) -> None:
            session.delete(LedgerRepository(session).get_recurring_expense(recurring_id))

        self._transaction(_delete)
        logger.info("Recurring expense deleted", extra={"recurring_id": recurring_id})

    def set_loan_dashboard_visibility(self, loan_id: str, include_in_dashboard: bool) -> None:
        def _update(session: Session) -> None:
            loan = LedgerRepository(session).get_loan(loan_id)
            loan.include_in_dashboard = include_in_dashboard

        self._transaction(_update)

    def get_financial_summary(self, user_id: str) -> FinancialSummary:
        if not user_id:
            raise ValidationError("user_id is required")
        with self.session_factory() as session:
            portfolio = PortfolioRepository(session)
            return build_financial_summary(
                accounts=portfolio.get_accounts_by_user(user_id),
                credit_cards=portfolio.get_credit_cards_by_user(user_id),
                investments=portfolio.get_investments_by_user(user_id),
                expenses=ExpenseRepository(session).get_expenses_by_user(user_id),
                loans=portfolio.get_loans_by_user(user_id),
            )

    def create_snapshot(self, user_id: str) -> str:
        """Persist the user's current dashboard figures"""
        summary = self.get_financial_summary(user_id)

        def _create(session: Session) -> str:
            snapshot = DashboardSnapshot(
                id=new_id(),
                user_id=user_id,
                total_money=summary.total_money,
                total_debt=summary.total_debt,
                net_worth=summary.net_worth,
                total_lent=summary.total_lent,
                total_borrowed=summary.total_borrowed,
                category_breakdown=[
                    {**asdict(item), "total": str(item.total)} for item in summary.category_breakdown
                ],
                created_at=utc_now(),
            )
            session.add(snapshot)
            return snapshot.id

        return self._transaction(_create)

    def list_snapshots(self, user_id: str) -> List[DashboardSnapshot]:
        """Snapshots newest first, detached from the session"""
        with self.session_factory(expire_on_commit=False) as session:
            snapshots = PortfolioRepository(session).get_snapshots_by_user(user_id)
            session.expunge_all()
            return snapshots

    def delete_snapshot(self, snapshot_id: str) -> None:
        def _delete(session: Session) -> None:
            session.delete(LedgerRepository(session).get_snapshot(snapshot_id))

        self._transaction(_delete)
