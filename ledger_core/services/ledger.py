"""Ledger transaction engine

Every operation that creates or removes a balance-affecting record also
mutates exactly one money-holding row (two for card payments and transfers),
and both happen in one transaction or not at all.
"""

import logging
import time
from decimal import Decimal
from typing import Callable, Optional, TypeVar, Union

from sqlalchemy.orm import Session, sessionmaker

from ledger_core.config import Settings, settings as default_settings
from ledger_core.domain.exceptions import (
    DomainException,
    InsufficientFundsError,
    InvalidAmountError,
    PaymentExceedsRemainingError,
    ValidationError,
)
from ledger_core.domain.installments import build_installment_fields
from ledger_core.domain.models import LoanDirection, PaymentType
from ledger_core.infrastructure.database.models import Expense, Loan, LoanPayment, new_id
from ledger_core.infrastructure.database.repositories import LedgerRepository
from ledger_core.infrastructure.database.transactions import run_transaction
from ledger_core.infrastructure.observability.logging import log_ledger_operation
from ledger_core.infrastructure.observability.metrics import record_ledger_operation
from ledger_core.services.schemas import (
    CreateExpenseRequest,
    CreateLoanRequest,
    DebitPayment,
    RecordPaymentRequest,
    parse_request,
)
from ledger_core.utils.date_utils import elapsed_ms
from ledger_core.utils.decimal_utils import coerce_decimal, to_money

logger = logging.getLogger(__name__)

T = TypeVar("T")

ZERO = Decimal("0.00")


def apply_new_expense(
    repo: LedgerRepository,
    user_id: str,
    request: CreateExpenseRequest,
    overdraft_limit: Decimal,
    expense_id: Optional[str] = None,
) -> Expense:
    """
    Stage a new expense and its balance effect in ``repo``'s session.

    All checks run before the first mutation, so a raised error leaves the
    session untouched. Shared by create_expense and the recurring scheduler.

    Raises:
        NotFoundError: account or credit card missing
        InsufficientFundsError: debit would overdraw past the soft cap
    """
    amount = to_money(request.amount)
    payment = request.payment

    if isinstance(payment, DebitPayment):
        account = repo.get_account(payment.account_id)
        new_balance = to_money(coerce_decimal(account.balance) - amount)
        if new_balance < -overdraft_limit:
            raise InsufficientFundsError(
                f"Insufficient funds in account {account.id}: balance {account.balance}, expense {amount}"
            )
        account.balance = new_balance
        payment_type = PaymentType.DEBIT
    else:
        card = repo.get_credit_card(payment.credit_card_id)
        card.current_balance = to_money(coerce_decimal(card.current_balance) + amount)
        payment_type = PaymentType.CREDIT

    expense = Expense(
        id=expense_id or new_id(),
        user_id=user_id,
        name=request.name,
        amount=amount,
        category=request.category,
        date=request.date,
        payment_type=payment_type.value,
        account_id=getattr(payment, "account_id", None),
        credit_card_id=getattr(payment, "credit_card_id", None),
        installment_start_date=request.date if request.is_installment else None,
        is_from_recurring=request.is_from_recurring,
        recurring_expense_id=request.recurring_expense_id,
        **build_installment_fields(amount, payment_type, request.is_installment, request.installment_months),
    )
    repo.db.add(expense)
    return expense


def _parse_amount(amount: Union[Decimal, int, str, float]) -> Decimal:
    """Validate a bare monetary argument (one not wrapped in a request model)"""
    try:
        value = coerce_decimal(amount)
    except ArithmeticError as e:
        raise InvalidAmountError(f"Amount is not a number: {amount!r}") from e
    if not value.is_finite():
        raise InvalidAmountError(f"Amount is not a number: {amount!r}")
    if to_money(value) != value:
        raise InvalidAmountError(f"Amount has more than 2 decimal places: {amount}")
    return value


def _require_positive(amount: Union[Decimal, int, str, float]) -> Decimal:
    value = _parse_amount(amount)
    if value <= 0:
        raise InvalidAmountError(f"Amount must be greater than 0, got {amount}")
    return value


class LedgerService:
    """Atomic balance-affecting operations on expenses, credit cards and loans"""

    def __init__(self, session_factory: sessionmaker, settings: Optional[Settings] = None):
        self.session_factory = session_factory
        self.settings = settings or default_settings

    def _execute(
        self,
        operation: str,
        fn: Callable[[Session], T],
        user_id: Optional[str] = None,
        entity_id: Optional[str] = None,
    ) -> T:
        start = time.monotonic()
        try:
            result = run_transaction(self.session_factory, fn, self.settings.transaction_max_attempts)
        except DomainException as e:
            record_ledger_operation(operation, committed=False)
            logger.info(
                f"{operation} rejected: {e}",
                extra={"operation": operation, "user_id": user_id, "error_type": type(e).__name__},
            )
            raise

        record_ledger_operation(operation, committed=True)
        log_ledger_operation(operation, user_id, entity_id or str(result), elapsed_ms(start))
        return result

    # Expenses

    def create_expense(self, user_id: str, data: Union[CreateExpenseRequest, dict]) -> str:
        """
        Create an expense and charge its payment source.

        Debit: account.balance -= amount. Credit: card.current_balance += amount.

        Raises:
            ValidationError, NotFoundError, InsufficientFundsError
        """
        request = parse_request(CreateExpenseRequest, data)

        def _create(session: Session) -> str:
            expense = apply_new_expense(LedgerRepository(session), user_id, request, self.settings.overdraft_limit)
            return expense.id

        return self._execute("create_expense", _create, user_id=user_id)

    def delete_expense(self, expense_id: str) -> None:
        """
        Delete an expense and reverse its original balance effect.

        The full amount is reversed regardless of installment progress; the
        card balance is floored at zero.

        Raises:
            NotFoundError: expense, or the account/card it was paid with
        """

        def _delete(session: Session) -> None:
            repo = LedgerRepository(session)
            expense = repo.get_expense(expense_id)
            amount = to_money(expense.amount)

            if expense.payment_type == PaymentType.DEBIT.value:
                account = repo.get_account(expense.account_id)
                account.balance = to_money(coerce_decimal(account.balance) + amount)
            else:
                card = repo.get_credit_card(expense.credit_card_id)
                card.current_balance = max(ZERO, to_money(coerce_decimal(card.current_balance) - amount))

            session.delete(expense)

        self._execute("delete_expense", _delete, entity_id=expense_id)

    # Credit cards

    def pay_credit_card(self, card_id: str, account_id: str, amount: Union[Decimal, int, str]) -> None:
        """
        Pay down a credit card from an account.

        The account is debited the full amount; the card balance is floored
        at zero when the payment exceeds the debt.

        Raises:
            InvalidAmountError: amount is not positive
            NotFoundError: card or account missing
            InsufficientFundsError: account balance below amount
        """
        amount = _require_positive(amount)

        def _pay(session: Session) -> None:
            repo = LedgerRepository(session)
            card = repo.get_credit_card(card_id)
            account = repo.get_account(account_id)

            balance = coerce_decimal(account.balance)
            if balance < amount:
                raise InsufficientFundsError(
                    f"Insufficient funds in account {account_id}: balance {balance}, payment {amount}"
                )

            card.current_balance = max(ZERO, to_money(coerce_decimal(card.current_balance) - amount))
            account.balance = to_money(balance - amount)

        self._execute("pay_credit_card", _pay, entity_id=card_id)

    # Accounts

    def transfer_between_accounts(self, from_account_id: str, to_account_id: str, amount) -> None:
        """
        Move money between two accounts atomically.

        Raises:
            ValidationError: same account on both sides
            InvalidAmountError, NotFoundError, InsufficientFundsError
        """
        amount = _require_positive(amount)
        if from_account_id == to_account_id:
            raise ValidationError("Source and destination accounts must differ")

        def _transfer(session: Session) -> None:
            repo = LedgerRepository(session)
            source = repo.get_account(from_account_id)
            destination = repo.get_account(to_account_id)

            balance = coerce_decimal(source.balance)
            if balance < amount:
                raise InsufficientFundsError(f"Insufficient funds for transfer from {from_account_id}")

            source.balance = to_money(balance - amount)
            destination.balance = to_money(coerce_decimal(destination.balance) + amount)

        self._execute("transfer_between_accounts", _transfer, entity_id=from_account_id)

    def adjust_account_balance(self, account_id: str, amount: Union[Decimal, int, str]) -> Decimal:
        """
        Add a signed amount straight to an account balance and return the new balance.

        Covers deposits and withdrawals that have no expense or loan behind
        them. A withdrawal may overdraw the account down to the overdraft limit.

        Raises:
            InvalidAmountError: amount is zero, not a number or has sub-cent digits
            NotFoundError: account missing
            InsufficientFundsError: withdrawal would pass the overdraft limit
        """
        amount = _parse_amount(amount)
        if amount == 0:
            raise InvalidAmountError("Balance adjustment must not be zero")

        def _adjust(session: Session) -> Decimal:
            account = LedgerRepository(session).get_account(account_id)
            new_balance = to_money(coerce_decimal(account.balance) + amount)
            if amount < 0 and new_balance < -self.settings.overdraft_limit:
                raise InsufficientFundsError(
                    f"Insufficient funds in account {account_id}: balance {account.balance}, withdrawal {-amount}"
                )
            account.balance = new_balance
            return new_balance

        return self._execute("adjust_account_balance", _adjust, entity_id=account_id)

    # Loans

    def create_loan(self, user_id: str, data: Union[CreateLoanRequest, dict]) -> str:
        """
        Record a loan and move its principal through the linked account.

        Lent: account.balance -= amount. Borrowed: account.balance += amount.
        """
        request = parse_request(CreateLoanRequest, data)
        amount = to_money(request.amount)

        def _create(session: Session) -> str:
            repo = LedgerRepository(session)
            account = repo.get_account(request.account_id)
            balance = coerce_decimal(account.balance)
            account.balance = to_money(balance - amount if request.direction == LoanDirection.LENT else balance + amount)

            loan = Loan(
                id=new_id(),
                user_id=user_id,
                direction=request.direction.value,
                person_name=request.person_name,
                amount=amount,
                remaining_amount=amount,
                currency=request.currency,
                account_id=request.account_id,
                description=request.description,
                date=request.date,
                due_date=request.due_date,
                is_paid=False,
                include_in_dashboard=request.include_in_dashboard,
            )
            session.add(loan)
            return loan.id

        return self._execute("create_loan", _create, user_id=user_id)

    def record_payment(
        self,
        user_id: str,
        loan_id: str,
        known_remaining: Union[Decimal, int, str],
        data: Union[RecordPaymentRequest, dict],
    ) -> str:
        """
        Record a partial or full loan settlement.

        ``known_remaining`` is the caller's view of the loan and only allows an
        early rejection; the remaining amount read inside the transaction is
        authoritative, so two racing payments cannot jointly overpay.

        Lent: account += payment. Borrowed: account -= payment.
        In both cases loan.remaining_amount -= payment.

        Returns:
            Id of the new loan payment record

        Raises:
            ValidationError, NotFoundError, PaymentExceedsRemainingError
        """
        request = parse_request(RecordPaymentRequest, data)
        amount = to_money(request.amount)

        if amount > coerce_decimal(known_remaining):
            record_ledger_operation("record_payment", committed=False)
            raise PaymentExceedsRemainingError(
                f"Payment {amount} exceeds remaining balance {known_remaining}"
            )

        def _record(session: Session) -> str:
            repo = LedgerRepository(session)
            loan = repo.get_loan(loan_id)
            remaining = coerce_decimal(loan.remaining_amount)
            if amount > remaining:
                raise PaymentExceedsRemainingError(
                    f"Payment {amount} exceeds remaining balance {remaining} of loan {loan_id}"
                )

            account = repo.get_account(loan.account_id)
            balance = coerce_decimal(account.balance)
            account.balance = to_money(
                balance + amount if loan.direction == LoanDirection.LENT.value else balance - amount
            )

            new_remaining = max(ZERO, to_money(remaining - amount))
            loan.remaining_amount = new_remaining
            loan.is_paid = new_remaining <= 0

            payment = LoanPayment(
                id=new_id(),
                loan_id=loan_id,
                user_id=user_id,
                amount=amount,
                date=request.date,
                note=request.note,
            )
            session.add(payment)
            return payment.id

        return self._execute("record_payment", _record, user_id=user_id)

    def delete_loan(self, loan_id: str) -> None:
        """
        Delete a loan, returning what is still outstanding to the account.

        Reversal uses remaining_amount, since payments already moved the rest
        back: lent ⇒ account += remaining, borrowed ⇒ account -= remaining.
        A fully paid loan is deleted without touching the account.

        Raises:
            NotFoundError: loan, or the account of an unpaid loan
        """

        def _delete(session: Session) -> None:
            repo = LedgerRepository(session)
            loan = repo.get_loan(loan_id)
            remaining = coerce_decimal(loan.remaining_amount)

            if not loan.is_paid and remaining > 0:
                account = repo.get_account(loan.account_id)
                balance = coerce_decimal(account.balance)
                account.balance = to_money(
                    balance + remaining if loan.direction == LoanDirection.LENT.value else balance - remaining
                )

            session.delete(loan)

        self._execute("delete_loan", _delete, entity_id=loan_id)
