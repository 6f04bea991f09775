import datetime as dt
from datetime import date
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from models import (
    AccountKind,
    HouseholdRole,
    PaymentMethod,
    RecurringType,
    TransactionType,
)


class AccountIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    kind: AccountKind = AccountKind.bank
    currency: str = Field(default="EUR", min_length=3, max_length=3)
    balance_cents: int = 0


class AccountOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    kind: AccountKind
    currency: str
    balance_cents: int
    is_active: bool


class TransactionIn(BaseModel):
    account_id: int
    category_id: Optional[int] = None
    type: TransactionType
    amount_cents: int = Field(..., gt=0)
    description: str = Field(..., min_length=1, max_length=500)
    date: date
    notes: Optional[str] = Field(default=None, max_length=1000)
    transfer_to_account_id: Optional[int] = None


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    account_id: int
    category_id: Optional[int]
    type: TransactionType
    amount_cents: int
    description: str
    date: date
    notes: Optional[str]
    recurring_income_id: Optional[int]
    recurring_transaction_id: Optional[int]
    transfer_to_account_id: Optional[int]
    goal_id: Optional[int]


class RecurringIncomeIn(BaseModel):
    account_id: int
    category_id: Optional[int] = None
    amount_cents: int = Field(..., gt=0)
    description: str = Field(..., min_length=1, max_length=500)
    day_of_month: int = Field(..., ge=1, le=28)


class RecurringIncomeUpdate(BaseModel):
    account_id: Optional[int] = None
    category_id: Optional[int] = None
    amount_cents: Optional[int] = Field(default=None, gt=0)
    description: Optional[str] = Field(default=None, min_length=1, max_length=500)
    day_of_month: Optional[int] = Field(default=None, ge=1, le=28)
    is_active: Optional[bool] = None


class RecurringIncomeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    account_id: int
    category_id: Optional[int]
    amount_cents: int
    description: str
    day_of_month: int
    is_active: bool
    last_run_date: Optional[date]
    next_run_date: date


class RecurringTransactionIn(RecurringIncomeIn):
    type: RecurringType
    end_date: Optional[dt.date] = None
    household_id: Optional[int] = None
    is_shared: bool = False


class RecurringTransactionUpdate(RecurringIncomeUpdate):
    type: Optional[RecurringType] = None
    end_date: Optional[dt.date] = None


class RecurringTransactionOut(RecurringIncomeOut):
    type: RecurringType
    end_date: Optional[date]
    household_id: Optional[int]
    is_shared: bool


class ProcessResult(BaseModel):
    id: int
    status: Literal["success", "error"]
    transaction_id: Optional[int] = None
    error: Optional[str] = None


class ProcessOut(BaseModel):
    processed: int
    results: list[ProcessResult]


class BalanceResultOut(BaseModel):
    account_id: int
    account_name: str
    old_balance_cents: int
    new_balance_cents: int
    difference_cents: int


class BalanceErrorOut(BaseModel):
    account_id: int
    error: str


class RecalculateOut(BaseModel):
    success: bool
    results: list[BalanceResultOut]
    errors: list[BalanceErrorOut] = Field(default_factory=list)


class HouseholdIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)


class HouseholdMemberIn(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=64)
    role: HouseholdRole = HouseholdRole.member


class SavingsGoalIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    target_cents: int = Field(..., gt=0)
    target_date: Optional[date] = None
    initial_saved_cents: int = Field(default=0, ge=0)
    household_id: Optional[int] = None


class SavingsGoalOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    target_cents: int
    current_cents: int
    target_date: Optional[date]
    household_id: Optional[int]


class ContributionIn(BaseModel):
    amount_cents: int = Field(..., gt=0)
    date: dt.date
    note: Optional[str] = Field(default=None, max_length=500)
    payment_method: PaymentMethod = PaymentMethod.cash
    source_id: Optional[int] = None


class ContributionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    goal_id: int
    amount_cents: int
    date: date
    note: Optional[str]
    payment_method: PaymentMethod
    transaction_id: Optional[int]
    card_transaction_id: Optional[int]


class CreditCardIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    last_four_digits: str = Field(..., pattern=r"^\d{4}$")
    billing_day: int = Field(..., ge=1, le=28)
    linked_account_id: int
    household_id: Optional[int] = None


class CardTransactionIn(BaseModel):
    amount_cents: int = Field(..., gt=0)
    description: str = Field(..., min_length=1, max_length=500)
    date: dt.date
    category_id: Optional[int] = None
    notes: Optional[str] = Field(default=None, max_length=1000)


class BillingResult(BaseModel):
    card_id: int
    card_name: str
    status: Literal["success", "skipped", "error"]
    transaction_id: Optional[int] = None
    amount_cents: Optional[int] = None
    billed_count: Optional[int] = None
    reason: Optional[str] = None
    error: Optional[str] = None
