"""Integration tests for loans and loan payments"""

from decimal import Decimal

import pytest

from conftest import USER_ID
from ledger_core.domain.exceptions import NotFoundError, PaymentExceedsRemainingError, ValidationError
from ledger_core.infrastructure.database.models import Account, Loan, LoanPayment


def loan_data(account_id, amount="100.00", direction="lent", **overrides):
    data = {
        "direction": direction,
        "person_name": "Ana",
        "amount": amount,
        "account_id": account_id,
    }
    data.update(overrides)
    return data


def test_lent_loan_leaves_account(ledger, load, account_id):
    loan_id = ledger.create_loan(USER_ID, loan_data(account_id))

    loan = load(Loan, loan_id)
    assert load(Account, account_id).balance == Decimal("900.00")
    assert loan.remaining_amount == Decimal("100.00")
    assert loan.is_paid is False
    assert loan.include_in_dashboard is True


def test_borrowed_loan_enters_account(ledger, load, account_id):
    ledger.create_loan(USER_ID, loan_data(account_id, "250.00", direction="borrowed"))

    assert load(Account, account_id).balance == Decimal("1250.00")


def test_create_loan_missing_account(ledger, count_rows):
    with pytest.raises(NotFoundError):
        ledger.create_loan(USER_ID, loan_data("missing"))

    assert count_rows(Loan) == 0


def test_lent_loan_round_trip(ledger, load, account_id):
    """Test money that left with the loan fully returns with its payment"""
    loan_id = ledger.create_loan(USER_ID, loan_data(account_id))

    payment_id = ledger.record_payment(USER_ID, loan_id, Decimal("100.00"), {"amount": "100.00"})

    loan = load(Loan, loan_id)
    assert loan.remaining_amount == Decimal("0.00")
    assert loan.is_paid is True
    assert load(Account, account_id).balance == Decimal("1000.00")

    payment = load(LoanPayment, payment_id)
    assert payment.loan_id == loan_id
    assert payment.amount == Decimal("100.00")


def test_borrowed_loan_partial_payments(ledger, load, account_id):
    loan_id = ledger.create_loan(USER_ID, loan_data(account_id, "300.00", direction="borrowed"))

    ledger.record_payment(USER_ID, loan_id, Decimal("300.00"), {"amount": "120.00", "note": "first"})
    ledger.record_payment(USER_ID, loan_id, Decimal("180.00"), {"amount": "80.00"})

    loan = load(Loan, loan_id)
    assert loan.remaining_amount == Decimal("100.00")
    assert loan.is_paid is False
    assert load(Account, account_id).balance == Decimal("1100.00")


def test_payment_above_remaining_rejected(ledger, load, count_rows, account_id):
    """Test an overpayment leaves loan and account untouched"""
    loan_id = ledger.create_loan(USER_ID, loan_data(account_id))

    with pytest.raises(PaymentExceedsRemainingError):
        ledger.record_payment(USER_ID, loan_id, Decimal("100.00"), {"amount": "100.01"})

    loan = load(Loan, loan_id)
    assert loan.remaining_amount == Decimal("100.00")
    assert loan.is_paid is False
    assert load(Account, account_id).balance == Decimal("900.00")
    assert count_rows(LoanPayment) == 0


def test_stale_known_remaining_is_rechecked_in_transaction(ledger, load, count_rows, account_id):
    """Test a caller holding an outdated remaining amount cannot overpay"""
    loan_id = ledger.create_loan(USER_ID, loan_data(account_id))
    ledger.record_payment(USER_ID, loan_id, Decimal("100.00"), {"amount": "60.00"})

    with pytest.raises(PaymentExceedsRemainingError):
        ledger.record_payment(USER_ID, loan_id, Decimal("100.00"), {"amount": "50.00"})

    assert load(Loan, loan_id).remaining_amount == Decimal("40.00")
    assert load(Account, account_id).balance == Decimal("960.00")
    assert count_rows(LoanPayment) == 1


def test_payment_on_missing_loan(ledger):
    with pytest.raises(NotFoundError):
        ledger.record_payment(USER_ID, "missing", Decimal("100.00"), {"amount": "10.00"})


def test_payment_amount_must_be_positive(ledger, account_id):
    loan_id = ledger.create_loan(USER_ID, loan_data(account_id))

    with pytest.raises(ValidationError):
        ledger.record_payment(USER_ID, loan_id, Decimal("100.00"), {"amount": "0"})


def test_delete_unpaid_loan_returns_remaining(ledger, load, count_rows, account_id):
    loan_id = ledger.create_loan(USER_ID, loan_data(account_id))
    ledger.record_payment(USER_ID, loan_id, Decimal("100.00"), {"amount": "30.00"})

    ledger.delete_loan(loan_id)

    assert load(Loan, loan_id) is None
    assert load(Account, account_id).balance == Decimal("1000.00")
    # Payment history is kept
    assert count_rows(LoanPayment) == 1


def test_delete_unpaid_borrowed_loan(ledger, load, account_id):
    loan_id = ledger.create_loan(USER_ID, loan_data(account_id, "200.00", direction="borrowed"))

    ledger.delete_loan(loan_id)

    assert load(Account, account_id).balance == Decimal("1000.00")


def test_delete_paid_loan_leaves_account_alone(ledger, load, account_id):
    loan_id = ledger.create_loan(USER_ID, loan_data(account_id))
    ledger.record_payment(USER_ID, loan_id, Decimal("100.00"), {"amount": "100.00"})

    ledger.delete_loan(loan_id)

    assert load(Loan, loan_id) is None
    assert load(Account, account_id).balance == Decimal("1000.00")


def test_delete_missing_loan(ledger):
    with pytest.raises(NotFoundError):
        ledger.delete_loan("missing")
