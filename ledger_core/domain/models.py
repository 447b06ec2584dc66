"""Domain models - pure Python dataclasses and enums shared by the ledger core"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional


class PaymentType(str, Enum):
    """How an expense was paid"""

    DEBIT = "debit"
    CREDIT = "credit"


class LoanDirection(str, Enum):
    """Whether the user lent money out or borrowed it"""

    LENT = "lent"
    BORROWED = "borrowed"


class Frequency(str, Enum):
    """Recurrence cadence of a recurring expense template"""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class AccountType(str, Enum):
    CHECKING = "checking"
    SAVINGS = "savings"
    CASH = "cash"
    OTHER = "other"


@dataclass(frozen=True)
class AmortizationResult:
    """State of an installment expense after one more period is paid"""

    installment_months_paid: int
    monthly_payment: Decimal
    remaining_debt: Decimal
    is_fully_paid: bool
    debt_reduction: Decimal  # Remaining debt before minus after


@dataclass
class JobResult:
    """Outcome of one scheduled batch run"""

    success: bool
    processed: int
    errors: int
    duration_ms: int
    error_details: List[Dict[str, str]] = field(default_factory=list)
    cards_updated: Optional[int] = None
    critical_error: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        """Serialize for the scheduler and the monitoring log"""
        data: Dict[str, Any] = {
            "success": self.success,
            "processed": self.processed,
            "errors": self.errors,
            "duration_ms": self.duration_ms,
        }
        if self.error_details:
            data["error_details"] = list(self.error_details)
        if self.cards_updated is not None:
            data["cards_updated"] = self.cards_updated
        if self.critical_error is not None:
            data["critical_error"] = self.critical_error
        return data


@dataclass(frozen=True)
class CategoryBreakdown:
    """Expense total for one category"""

    category: str
    total: Decimal
    count: int
    percentage: float


@dataclass(frozen=True)
class LoansSummary:
    total_lent: Decimal
    total_borrowed: Decimal


@dataclass(frozen=True)
class FinancialSummary:
    """Dashboard figures for one user"""

    total_money: Decimal
    total_debt: Decimal
    net_worth: Decimal
    total_lent: Decimal
    total_borrowed: Decimal
    category_breakdown: List[CategoryBreakdown]
    debt_by_card: Dict[str, Decimal] = field(default_factory=dict)
