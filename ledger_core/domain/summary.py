"""Dashboard aggregates computed from accounts, investments, cards, expenses and loans"""

from collections import defaultdict
from decimal import Decimal
from typing import Dict, Iterable, List

from ledger_core.domain.models import (
    CategoryBreakdown,
    FinancialSummary,
    LoanDirection,
    LoansSummary,
    PaymentType,
)
from ledger_core.utils.decimal_utils import coerce_decimal, to_money

ZERO = Decimal("0.00")


def calculate_total_money(accounts: Iterable, investments: Iterable = ()) -> Decimal:
    """Account balances (overdrafts count negative) plus the current amount of every investment"""
    balances = sum((coerce_decimal(a.balance) for a in accounts), ZERO)
    invested = sum((coerce_decimal(i.current_amount) for i in investments), ZERO)
    return to_money(balances + invested)


def calculate_total_debt(credit_cards: Iterable) -> Decimal:
    return to_money(sum((coerce_decimal(c.current_balance) for c in credit_cards), ZERO))


def calculate_net_worth(accounts: Iterable, credit_cards: Iterable, investments: Iterable = ()) -> Decimal:
    return calculate_total_money(accounts, investments) - calculate_total_debt(credit_cards)


def calculate_expected_return(current_amount, annual_return_percentage) -> Decimal:
    """
    Yearly return of an investment at its stated rate.

    Example: 1000.00 at 7.5% -> 75.00; a negative rate gives a negative return.
    """
    return to_money(coerce_decimal(current_amount) * coerce_decimal(annual_return_percentage) / 100)


def calculate_debt_by_card(expenses: Iterable, card_id: str) -> Decimal:
    """Outstanding debt on one card according to its unpaid credit expenses"""
    return to_money(
        sum(
            (
                coerce_decimal(e.remaining_debt)
                for e in expenses
                if e.credit_card_id == card_id
                and e.payment_type == PaymentType.CREDIT.value
                and not e.is_fully_paid
            ),
            ZERO,
        )
    )


def calculate_loans_summary(loans: Iterable) -> LoansSummary:
    """Outstanding lent/borrowed totals for unpaid loans shown on the dashboard"""
    total_lent = ZERO
    total_borrowed = ZERO
    for loan in loans:
        if not loan.include_in_dashboard or loan.is_paid:
            continue
        if loan.direction == LoanDirection.LENT.value:
            total_lent += coerce_decimal(loan.remaining_amount)
        else:
            total_borrowed += coerce_decimal(loan.remaining_amount)
    return LoansSummary(total_lent=to_money(total_lent), total_borrowed=to_money(total_borrowed))


def calculate_category_breakdown(expenses: Iterable) -> List[CategoryBreakdown]:
    """Group expenses by category, largest total first"""
    totals: Dict[str, Decimal] = defaultdict(lambda: ZERO)
    counts: Dict[str, int] = defaultdict(int)
    grand_total = ZERO

    for expense in expenses:
        amount = coerce_decimal(expense.amount)
        totals[expense.category] += amount
        counts[expense.category] += 1
        grand_total += amount

    breakdown = [
        CategoryBreakdown(
            category=category,
            total=to_money(total),
            count=counts[category],
            percentage=float(total / grand_total * 100) if grand_total > 0 else 0.0,
        )
        for category, total in totals.items()
    ]
    return sorted(breakdown, key=lambda item: item.total, reverse=True)


def build_financial_summary(accounts, credit_cards, expenses, loans, investments=()) -> FinancialSummary:
    accounts = list(accounts)
    credit_cards = list(credit_cards)
    expenses = list(expenses)
    investments = list(investments)
    loans_summary = calculate_loans_summary(loans)
    return FinancialSummary(
        total_money=calculate_total_money(accounts, investments),
        total_debt=calculate_total_debt(credit_cards),
        net_worth=calculate_net_worth(accounts, credit_cards, investments),
        total_lent=loans_summary.total_lent,
        total_borrowed=loans_summary.total_borrowed,
        category_breakdown=calculate_category_breakdown(expenses),
        debt_by_card={card.id: calculate_debt_by_card(expenses, card.id) for card in credit_cards},
    )
