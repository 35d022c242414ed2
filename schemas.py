import datetime as dt
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator

from models import (
    AccountType,
    BudgetPeriod,
    CategoryType,
    NotificationType,
    RecurringFrequency,
    RecurringStatus,
    RecurringType,
    TransactionStatus,
    TransactionType,
    UserRole,
)

MONTH_PATTERN = r"^\d{4}-(0[1-9]|1[0-2])$"


class OrmModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# Accounts


class AccountIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: AccountType
    initial_balance_cents: int = 0
    credit_limit_cents: Optional[int] = Field(default=None, ge=0)
    due_day: Optional[int] = Field(default=None, ge=1, le=31)
    color: Optional[str] = Field(default=None, max_length=9)
    icon: Optional[str] = Field(default=None, max_length=50)
    is_active: bool = True


class AccountUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    type: Optional[AccountType] = None
    initial_balance_cents: Optional[int] = None
    credit_limit_cents: Optional[int] = Field(default=None, ge=0)
    due_day: Optional[int] = Field(default=None, ge=1, le=31)
    color: Optional[str] = Field(default=None, max_length=9)
    icon: Optional[str] = Field(default=None, max_length=50)
    is_active: Optional[bool] = None


class AccountRef(OrmModel):
    id: int
    name: str
    type: AccountType


class AccountOut(OrmModel):
    id: int
    name: str
    type: AccountType
    initial_balance_cents: int
    current_balance_cents: int
    credit_limit_cents: Optional[int]
    due_day: Optional[int]
    color: Optional[str]
    icon: Optional[str]
    is_active: bool
    created_at: datetime
    updated_at: datetime

    @computed_field
    @property
    def used_credit_cents(self) -> Optional[int]:
        if self.type != AccountType.credit_card:
            return None
        return max(0, -self.current_balance_cents)

    @computed_field
    @property
    def available_credit_cents(self) -> Optional[int]:
        if self.type != AccountType.credit_card or self.credit_limit_cents is None:
            return None
        return self.credit_limit_cents - (self.used_credit_cents or 0)

    @computed_field
    @property
    def utilization_rate(self) -> Optional[float]:
        if self.type != AccountType.credit_card or not self.credit_limit_cents:
            return None
        return round((self.used_credit_cents or 0) / self.credit_limit_cents * 100, 2)


# Categories


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    type: CategoryType
    color: Optional[str] = Field(default=None, max_length=9)
    icon: Optional[str] = Field(default=None, max_length=50)
    is_default: bool = False


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = None
    type: Optional[CategoryType] = None
    color: Optional[str] = Field(default=None, max_length=9)
    icon: Optional[str] = Field(default=None, max_length=50)
    is_default: Optional[bool] = None


class CategoryRef(OrmModel):
    id: int
    name: str
    color: Optional[str]


class CategoryOut(OrmModel):
    id: int
    name: str
    description: Optional[str]
    type: CategoryType
    color: Optional[str]
    icon: Optional[str]
    is_default: bool
    created_at: datetime
    updated_at: datetime


# Attachments


class AttachmentOut(OrmModel):
    id: int
    transaction_id: int
    url: str
    file_name: str
    file_type: Optional[str]
    size: int
    created_at: datetime


# Transactions


class TransactionIn(BaseModel):
    amount_cents: int = Field(..., gt=0)
    date: dt.date
    description: str = Field(..., min_length=1, max_length=255)
    type: TransactionType
    status: TransactionStatus = TransactionStatus.completed
    account_id: int
    category_id: int
    installment_number: Optional[int] = Field(default=None, ge=1)
    total_installments: Optional[int] = Field(default=None, ge=1, le=360)
    is_recurring: bool = False
    recurring_frequency: Optional[str] = Field(default=None, max_length=20)


class TransactionUpdate(BaseModel):
    amount_cents: Optional[int] = Field(default=None, gt=0)
    date: Optional[dt.date] = None
    description: Optional[str] = Field(default=None, min_length=1, max_length=255)
    type: Optional[TransactionType] = None
    status: Optional[TransactionStatus] = None
    account_id: Optional[int] = None
    category_id: Optional[int] = None
    is_recurring: Optional[bool] = None
    recurring_frequency: Optional[str] = Field(default=None, max_length=20)


class TransactionOut(OrmModel):
    id: int
    amount_cents: int
    date: dt.date
    description: str
    type: TransactionType
    status: TransactionStatus
    account_id: int
    category_id: int
    installment_number: Optional[int]
    total_installments: Optional[int]
    parent_transaction_id: Optional[int]
    is_recurring: bool
    recurring_frequency: Optional[str]
    recurring_expense_id: Optional[int]
    occurrence_date: Optional[dt.date]
    account: Optional[AccountRef] = None
    category: Optional[CategoryRef] = None
    attachments: list[AttachmentOut] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


# Budgets


class BudgetIn(BaseModel):
    amount_cents: int = Field(..., ge=0)
    category_id: int
    period: BudgetPeriod = BudgetPeriod.monthly
    start_date: date
    end_date: date
    alert_at_80: bool = True
    alert_at_100: bool = True
    is_active: bool = True

    @model_validator(mode="after")
    def _check_window(self) -> "BudgetIn":
        if self.end_date < self.start_date:
            raise ValueError("End date must not be before start date")
        return self


class BudgetUpdate(BaseModel):
    amount_cents: Optional[int] = Field(default=None, ge=0)
    category_id: Optional[int] = None
    period: Optional[BudgetPeriod] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    alert_at_80: Optional[bool] = None
    alert_at_100: Optional[bool] = None
    is_active: Optional[bool] = None


class BudgetOut(OrmModel):
    id: int
    amount_cents: int
    category_id: int
    category: Optional[CategoryRef] = None
    period: BudgetPeriod
    start_date: date
    end_date: date
    alert_at_80: bool
    alert_at_100: bool
    is_active: bool
    spent_cents: int = 0
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_budget(cls, budget: object, spent_cents: int) -> "BudgetOut":
        return cls.model_validate(budget).model_copy(update={"spent_cents": spent_cents})

    @computed_field
    @property
    def remaining_cents(self) -> int:
        return self.amount_cents - self.spent_cents

    @computed_field
    @property
    def percentage(self) -> float:
        if self.amount_cents <= 0:
            return 100.0 if self.spent_cents > 0 else 0.0
        return round(self.spent_cents / self.amount_cents * 100, 2)

    @computed_field
    @property
    def is_near_limit(self) -> bool:
        return 80 <= self.percentage < 100

    @computed_field
    @property
    def is_over_limit(self) -> bool:
        return self.percentage >= 100


# Recurring expenses and bills


class RecurringExpenseIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    description: Optional[str] = None
    type: RecurringType
    amount_cents: int = Field(..., gt=0)
    frequency: RecurringFrequency = RecurringFrequency.monthly
    due_day: Optional[int] = Field(default=None, ge=1, le=31)
    start_date: date
    end_date: Optional[date] = None
    current_installment: Optional[int] = Field(default=None, ge=1)
    total_installments: Optional[int] = Field(default=None, ge=1)
    interest_rate: Optional[float] = None
    card_name: Optional[str] = Field(default=None, max_length=100)
    color: str = Field(default="#6366f1", max_length=9)
    icon: str = Field(default="Repeat", max_length=50)
    category_id: Optional[int] = None
    account_id: Optional[int] = None


class RecurringExpenseUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    description: Optional[str] = None
    type: Optional[RecurringType] = None
    status: Optional[RecurringStatus] = None
    amount_cents: Optional[int] = Field(default=None, gt=0)
    frequency: Optional[RecurringFrequency] = None
    due_day: Optional[int] = Field(default=None, ge=1, le=31)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    current_installment: Optional[int] = Field(default=None, ge=1)
    total_installments: Optional[int] = Field(default=None, ge=1)
    interest_rate: Optional[float] = None
    card_name: Optional[str] = Field(default=None, max_length=100)
    color: Optional[str] = Field(default=None, max_length=9)
    icon: Optional[str] = Field(default=None, max_length=50)
    category_id: Optional[int] = None
    account_id: Optional[int] = None


class RecurringExpenseOut(OrmModel):
    id: int
    name: str
    description: Optional[str]
    type: RecurringType
    status: RecurringStatus
    amount_cents: int
    frequency: RecurringFrequency
    due_day: Optional[int]
    start_date: date
    end_date: Optional[date]
    current_installment: Optional[int]
    total_installments: Optional[int]
    interest_rate: Optional[float]
    card_name: Optional[str]
    color: str
    icon: str
    next_due_date: Optional[date]
    category_id: Optional[int]
    account_id: Optional[int]
    category: Optional[CategoryRef] = None
    account: Optional[AccountRef] = None
    created_at: datetime
    updated_at: datetime


class RecurringSummaryOut(BaseModel):
    total_monthly_cents: int
    total_fixed_cents: int
    total_installments_cents: int
    total_loans_cents: int
    fixed_count: int
    installments_count: int
    loans_count: int
    total_count: int


class BillOut(BaseModel):
    id: str
    recurring_expense_id: int
    month: str
    name: str
    type: RecurringType
    amount_cents: int
    due_date: date
    is_paid: bool
    paid_transaction_id: Optional[int] = None
    color: str
    icon: str
    account_id: Optional[int] = None
    category: Optional[CategoryRef] = None
    current_installment: Optional[int] = None
    total_installments: Optional[int] = None


class BillPaymentIn(BaseModel):
    month: str = Field(..., pattern=MONTH_PATTERN)
    account_id: Optional[int] = None
    category_id: Optional[int] = None
    paid_on: Optional[date] = None


class BillUndoIn(BaseModel):
    month: str = Field(..., pattern=MONTH_PATTERN)


# Notifications


class NotificationOut(OrmModel):
    id: int
    title: str
    message: str
    type: NotificationType
    is_read: bool
    data: Optional[dict] = None
    created_at: datetime


# Users and auth


class UserIn(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    name: Optional[str] = Field(default=None, max_length=120)
    password: Optional[str] = Field(default=None, min_length=6, max_length=128)
    avatar: Optional[str] = Field(default=None, max_length=500)
    role: UserRole = UserRole.user


class UserUpdate(BaseModel):
    email: Optional[str] = Field(default=None, min_length=3, max_length=255)
    name: Optional[str] = Field(default=None, max_length=120)
    password: Optional[str] = Field(default=None, min_length=6, max_length=128)
    avatar: Optional[str] = Field(default=None, max_length=500)
    role: Optional[UserRole] = None


class UserOut(OrmModel):
    id: int
    email: str
    name: Optional[str]
    avatar: Optional[str]
    role: UserRole
    created_at: datetime
    updated_at: datetime


class RegisterIn(BaseModel):
    name: str = Field(default="", max_length=120)
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=6, max_length=128)


class LoginIn(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=1, max_length=128)


class AuthOut(BaseModel):
    user: UserOut
