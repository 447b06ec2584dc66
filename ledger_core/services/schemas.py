"""Pydantic schemas for validating ledger inputs before any store access"""

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Literal, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

from ledger_core.domain.exceptions import ValidationError
from ledger_core.domain.models import AccountType, Frequency, LoanDirection, PaymentType
from ledger_core.utils.date_utils import utc_now

PositiveMoney = Annotated[Decimal, Field(gt=0, max_digits=14, decimal_places=2)]
SignedMoney = Annotated[Decimal, Field(max_digits=14, decimal_places=2)]
Percentage = Annotated[Decimal, Field(ge=-100, le=1000, max_digits=7, decimal_places=2)]

ModelT = TypeVar("ModelT", bound=BaseModel)


class DebitPayment(BaseModel):
    """Paid straight out of an account"""

    model_config = ConfigDict(extra="forbid")

    payment_type: Literal["debit"] = "debit"
    account_id: str = Field(..., min_length=1)


class CreditPayment(BaseModel):
    """Charged to a credit card"""

    model_config = ConfigDict(extra="forbid")

    payment_type: Literal["credit"] = "credit"
    credit_card_id: str = Field(..., min_length=1)


PaymentSource = Annotated[Union[DebitPayment, CreditPayment], Field(discriminator="payment_type")]


class InstallmentTerms(BaseModel):
    """Installment fields shared by expenses and recurring templates"""

    payment: PaymentSource
    is_installment: bool = False
    installment_months: Optional[int] = Field(None, ge=1, le=360)

    @model_validator(mode="after")
    def check_installments(self):
        if self.is_installment:
            if self.installment_months is None or self.installment_months < 2:
                raise ValueError("Installment payments require installment_months >= 2")
            if self.payment.payment_type != PaymentType.CREDIT.value:
                raise ValueError("Only credit payments can be split into installments")
        return self


class CreateExpenseRequest(InstallmentTerms):
    """Input for LedgerService.create_expense"""

    name: str = Field(..., min_length=1, max_length=100)
    amount: PositiveMoney
    category: str = Field(..., min_length=1)
    date: datetime = Field(default_factory=utc_now)
    is_from_recurring: bool = False
    recurring_expense_id: Optional[str] = None


class CreateLoanRequest(BaseModel):
    """Input for LedgerService.create_loan"""

    direction: LoanDirection
    person_name: str = Field(..., min_length=1, max_length=100)
    amount: PositiveMoney
    currency: str = Field("USD", min_length=1)
    account_id: str = Field(..., min_length=1)
    description: Optional[str] = None
    date: datetime = Field(default_factory=utc_now)
    due_date: Optional[datetime] = None
    include_in_dashboard: bool = True


class RecordPaymentRequest(BaseModel):
    """Input for LedgerService.record_payment"""

    amount: PositiveMoney
    date: datetime = Field(default_factory=utc_now)
    note: Optional[str] = None


class CreateAccountRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: AccountType = AccountType.CHECKING
    balance: SignedMoney = Decimal("0")
    currency: str = Field("USD", min_length=1)
    annual_return: Optional[Decimal] = None


class CreateCreditCardRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    credit_limit: Optional[Annotated[Decimal, Field(ge=0, max_digits=14, decimal_places=2)]] = None
    current_balance: Annotated[Decimal, Field(ge=0, max_digits=14, decimal_places=2)] = Decimal("0")
    last_four_digits: Optional[str] = Field(None, pattern=r"^\d{4}$")
    interest_rate: Optional[Decimal] = None
    billing_cycle_day: Optional[int] = Field(None, ge=1, le=31)
    payment_due_day: Optional[int] = Field(None, ge=1, le=31)


class CreateRecurringExpenseRequest(InstallmentTerms):
    """Input for PortfolioService.create_recurring_expense"""

    name: str = Field(..., min_length=1, max_length=100)
    amount: PositiveMoney
    category: str = Field(..., min_length=1)
    frequency: Frequency
    start_date: datetime
    end_date: Optional[datetime] = None

    @model_validator(mode="after")
    def check_dates(self):
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("end_date must not precede start_date")
        return self


class UpdateRecurringExpenseRequest(BaseModel):
    """
    Partial update for PortfolioService.update_recurring_expense.

    Only fields present in the input are applied; an explicit null clears
    end_date. Installment fields are re-checked against the merged template.
    """

    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(None, min_length=1, max_length=100)
    amount: Optional[PositiveMoney] = None
    category: Optional[str] = Field(None, min_length=1)
    frequency: Optional[Frequency] = None
    payment: Optional[PaymentSource] = None
    is_installment: Optional[bool] = None
    installment_months: Optional[int] = Field(None, ge=1, le=360)
    start_date: Optional[datetime] = None
    next_due_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    @model_validator(mode="after")
    def check_not_empty(self):
        if not self.model_fields_set:
            raise ValueError("At least one field must be updated")
        for name in self.model_fields_set - {"end_date"}:
            if getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self


class CreateInvestmentRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    current_amount: PositiveMoney
    annual_return_percentage: Percentage


class UpdateInvestmentRequest(BaseModel):
    """Partial update; expected_return is recomputed from the merged values"""

    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(None, min_length=1, max_length=100)
    current_amount: Optional[PositiveMoney] = None
    annual_return_percentage: Optional[Percentage] = None

    @model_validator(mode="after")
    def check_not_empty(self):
        if not self.model_fields_set:
            raise ValueError("At least one field must be updated")
        for name in self.model_fields_set:
            if getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self


def parse_request(model: Type[ModelT], data: Union[ModelT, dict]) -> ModelT:
    """
    Validate raw input into a request model.

    Raises:
        ValidationError: with pydantic's message, before anything touches the store
    """
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(str(e)) from e
