"""Installment amortization for credit card purchases split into monthly payments"""

from decimal import Decimal
from typing import Any, Dict, Optional

from ledger_core.domain.exceptions import ValidationError
from ledger_core.domain.models import AmortizationResult, PaymentType
from ledger_core.utils.decimal_utils import coerce_decimal, to_money, to_money_ceiling, to_rate


def calculate_monthly_payment(amount: Decimal, months: int) -> Decimal:
    """
    Split an amount into equal monthly payments.

    The payment is kept at 8 decimal places so that ``payment * months``
    re-derives the original amount to the cent:
        100.00 / 3 → 33.33333333, and 3 payments leave 0.00 owed.

    A non-positive month count means the purchase is paid in one go.
    """
    if months <= 0:
        return to_money(amount)
    return to_rate(coerce_decimal(amount) / months)


def calculate_remaining_debt(amount: Decimal, monthly_payment: Decimal, months_paid: int) -> Decimal:
    """
    Debt left after ``months_paid`` payments, floored at zero.

    Partial cents round up: an expense that still owes a fraction of a cent
    reports 0.01, never 0.00, until its last month is paid.
        0.10 over 60 months, 59 paid → 0.00166647 owed → 0.01
    """
    remaining = coerce_decimal(amount) - coerce_decimal(monthly_payment) * months_paid
    if remaining <= 0:
        return Decimal("0.00")
    return to_money_ceiling(remaining)


def build_installment_fields(
    amount: Decimal,
    payment_type: PaymentType,
    is_installment: bool,
    installment_months: Optional[int],
) -> Dict[str, Any]:
    """
    Initial installment columns for a newly created expense.

    Debit expenses are settled immediately; credit expenses start owing the
    full amount whether or not they are split into installments.
    """
    monthly_payment = None
    if is_installment and installment_months:
        monthly_payment = calculate_monthly_payment(amount, installment_months)

    is_credit = payment_type == PaymentType.CREDIT
    return {
        "is_installment": is_installment,
        "installment_months": installment_months if is_installment else None,
        "installment_months_paid": 0,
        "monthly_payment": monthly_payment,
        "remaining_debt": to_money(amount) if is_credit else Decimal("0.00"),
        "is_fully_paid": not is_credit,
    }


def amortize(expense: Any) -> AmortizationResult:
    """
    Advance an installment expense by one paid month.

    ``expense`` is anything exposing ``amount``, ``installment_months``,
    ``installment_months_paid`` and ``monthly_payment`` (an ORM row works).

    Rules:
    - monthly payment is the stored one, else amount / installment_months
    - remaining debt = max(0, amount - monthly_payment * months_paid), cents rounded up
    - a fully paid expense owes exactly 0.00
    - fully paid once every month is paid or nothing is owed

    Raises:
        ValidationError: amount or installment_months missing, zero or not a
            number. Batch callers skip the record and keep going.
    """
    amount = expense.amount
    months = expense.installment_months
    if amount is None or not months:
        raise ValidationError("Missing required fields: amount and installment_months")

    amount = coerce_decimal(amount)
    if not amount.is_finite() or amount <= 0 or months < 0:
        raise ValidationError(f"Invalid calculation input: amount={amount}, installment_months={months}")

    monthly_payment = (
        coerce_decimal(expense.monthly_payment)
        if expense.monthly_payment
        else calculate_monthly_payment(amount, months)
    )
    if not monthly_payment.is_finite():
        raise ValidationError(f"Invalid monthly payment: {monthly_payment}")

    months_paid = expense.installment_months_paid or 0
    new_months_paid = months_paid + 1

    previous_debt = calculate_remaining_debt(amount, monthly_payment, months_paid)
    remaining_debt = calculate_remaining_debt(amount, monthly_payment, new_months_paid)
    is_fully_paid = new_months_paid >= months or remaining_debt <= 0
    if is_fully_paid:
        remaining_debt = Decimal("0.00")

    return AmortizationResult(
        installment_months_paid=new_months_paid,
        monthly_payment=monthly_payment,
        remaining_debt=remaining_debt,
        is_fully_paid=is_fully_paid,
        debt_reduction=previous_debt - remaining_debt,
    )
