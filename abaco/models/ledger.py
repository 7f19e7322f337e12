"""
Core Ledger Models

These models define the strict schemas for budgets, transactions and the
accounts that own them. They are designed to:
1. Enforce type safety at runtime
2. Provide clear validation error messages
3. Be serializable for storage and logging
4. Expose derived budget figures (remaining, percentage used) in every dump

DESIGN DECISION: Money is Decimal and instants are timezone-aware UTC.
Naive datetimes coming from callers are interpreted as UTC so that
comparisons against budget windows never mix naive and aware values.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Optional
from uuid import UUID, uuid4

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    model_validator,
)


def utc_now() -> datetime:
    """Current instant, timezone-aware UTC."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes and normalise aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UtcDatetime = Annotated[datetime, AfterValidator(ensure_utc)]


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class AccountRole(str, Enum):
    """Role of an account. Admins see every account's data."""
    ADMIN = "admin"
    EMPLOYEE = "employee"


class BudgetCategory(str, Enum):
    """
    Categories a budget can cap.

    These are also the only categories an expense transaction may use.
    """
    FOOD = "food"
    TRANSPORT = "transport"
    HOUSING = "housing"
    HEALTH = "health"
    EDUCATION = "education"
    ENTERTAINMENT = "entertainment"
    UTILITIES = "utilities"
    OTHER = "other"


class TransactionCategory(str, Enum):
    """Every category a transaction may carry (income and expense)."""
    # Income
    SALARY = "salary"
    FREELANCE = "freelance"
    INVESTMENTS = "investments"
    # Expense
    FOOD = "food"
    TRANSPORT = "transport"
    HOUSING = "housing"
    HEALTH = "health"
    EDUCATION = "education"
    ENTERTAINMENT = "entertainment"
    UTILITIES = "utilities"
    # Both
    OTHER = "other"


INCOME_CATEGORIES = frozenset({
    TransactionCategory.SALARY,
    TransactionCategory.FREELANCE,
    TransactionCategory.INVESTMENTS,
    TransactionCategory.OTHER,
})

EXPENSE_CATEGORIES = frozenset(
    TransactionCategory(category.value) for category in BudgetCategory
)


class TransactionKind(str, Enum):
    """Direction of money flow."""
    INCOME = "income"
    EXPENSE = "expense"


class BudgetPeriod(str, Enum):
    """Nominal length of a budget. Informational; the window is start/end."""
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class PaymentMethod(str, Enum):
    """How a transaction was paid."""
    CASH = "cash"
    DEBIT_CARD = "debit_card"
    CREDIT_CARD = "credit_card"
    TRANSFER = "transfer"
    OTHER = "other"


class RecurringFrequency(str, Enum):
    """Recurrence label. Nothing schedules recurring transactions."""
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class BudgetHealth(str, Enum):
    """Traffic-light status of a budget."""
    GOOD = "good"
    WARNING = "warning"
    OVER = "over"


# =============================================================================
# ACCOUNTS
# =============================================================================

class Account(BaseModel):
    """
    An account holder.

    Accounts are managed by the authentication collaborator; the ledger only
    needs their identity, role and active flag.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    name: str = Field(..., min_length=1, max_length=50)
    email: str = Field(..., min_length=3, max_length=254)
    role: AccountRole = AccountRole.EMPLOYEE
    is_active: bool = True
    department: Optional[str] = Field(default=None, max_length=100)
    created_at: UtcDatetime = Field(default_factory=utc_now)


class AccountUpdate(BaseModel):
    """Partial update of an account (admin only)."""
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    email: Optional[str] = Field(default=None, min_length=3, max_length=254)
    role: Optional[AccountRole] = None
    department: Optional[str] = Field(default=None, max_length=100)
    is_active: Optional[bool] = None


class Actor(BaseModel):
    """The caller of a ledger operation."""

    account_id: UUID
    role: AccountRole = AccountRole.EMPLOYEE

    @property
    def is_admin(self) -> bool:
        return self.role == AccountRole.ADMIN

    @classmethod
    def for_account(cls, account: Account) -> "Actor":
        return cls(account_id=account.id, role=account.role)


# =============================================================================
# BUDGETS
# =============================================================================

class Budget(BaseModel):
    """
    A capped spending allowance for a category over a time window.

    CRITICAL: `spent` is a denormalised running total of the expense
    transactions linked to this budget. Only the aggregate maintainer
    changes it, through the store's atomic increment.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    # Identity
    id: UUID = Field(default_factory=uuid4)
    account_id: UUID = Field(..., description="Owning account")

    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    category: BudgetCategory
    amount: Annotated[Decimal, Field(ge=0, description="Allowance for the window")]
    period: BudgetPeriod = BudgetPeriod.MONTHLY
    start_date: UtcDatetime
    end_date: UtcDatetime
    is_active: bool = True

    spent: Decimal = Field(
        default=Decimal("0"),
        description="Sum of linked expense transactions"
    )

    created_at: UtcDatetime = Field(default_factory=utc_now)
    updated_at: UtcDatetime = Field(default_factory=utc_now)

    @computed_field
    @property
    def remaining(self) -> Decimal:
        return self.amount - self.spent

    @computed_field
    @property
    def percentage_used(self) -> float:
        if self.amount > 0:
            return float(self.spent / self.amount * 100)
        return 0.0

    @model_validator(mode='after')
    def validate_window(self) -> 'Budget':
        """End of the window must come after its start."""
        if self.end_date <= self.start_date:
            raise ValueError("Budget end date must be after start date")
        return self

    def covers(self, when: datetime) -> bool:
        """Is `when` inside [start_date, end_date]?"""
        when = ensure_utc(when)
        return self.start_date <= when <= self.end_date

    def health(self, warning_threshold: float = 80.0) -> BudgetHealth:
        used = self.percentage_used
        if used > 100:
            return BudgetHealth.OVER
        if used >= warning_threshold:
            return BudgetHealth.WARNING
        return BudgetHealth.GOOD


class BudgetCreate(BaseModel):
    """Payload for creating a budget. `spent` is not accepted."""
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    category: BudgetCategory
    amount: Annotated[Decimal, Field(ge=0)]
    period: BudgetPeriod = BudgetPeriod.MONTHLY
    start_date: UtcDatetime
    end_date: UtcDatetime


class BudgetUpdate(BaseModel):
    """Partial budget update. Unset fields keep their current value."""
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    category: Optional[BudgetCategory] = None
    amount: Optional[Annotated[Decimal, Field(ge=0)]] = None
    period: Optional[BudgetPeriod] = None
    start_date: Optional[UtcDatetime] = None
    end_date: Optional[UtcDatetime] = None
    is_active: Optional[bool] = None


# =============================================================================
# TRANSACTIONS
# =============================================================================

class Transaction(BaseModel):
    """
    A single recorded income or expense event.

    The budget link is weak: a transaction may outlive its budget, in which
    case `budget_id` is cleared.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    account_id: UUID = Field(..., description="Owning account")
    budget_id: Optional[UUID] = Field(
        default=None,
        description="Budget this transaction counts against, if any"
    )

    kind: TransactionKind
    category: TransactionCategory
    amount: Annotated[Decimal, Field(gt=0)]
    description: str = Field(..., min_length=1, max_length=200)
    date: UtcDatetime = Field(default_factory=utc_now)
    payment_method: PaymentMethod = PaymentMethod.CASH
    notes: Optional[str] = Field(default=None, max_length=500)
    tags: list[str] = Field(default_factory=list)

    # Informational only
    is_recurring: bool = False
    recurring_frequency: Optional[RecurringFrequency] = None

    created_at: UtcDatetime = Field(default_factory=utc_now)
    updated_at: UtcDatetime = Field(default_factory=utc_now)

    @model_validator(mode='after')
    def validate_category_for_kind(self) -> 'Transaction':
        allowed = (
            INCOME_CATEGORIES
            if self.kind == TransactionKind.INCOME
            else EXPENSE_CATEGORIES
        )
        if self.category not in allowed:
            raise ValueError(
                f"Category '{self.category.value}' is not valid for "
                f"{self.kind.value} transactions"
            )
        return self

    @property
    def contributes_to_budget(self) -> bool:
        """Does this transaction count towards a budget's spent total?"""
        return self.kind == TransactionKind.EXPENSE and self.budget_id is not None


class TransactionCreate(BaseModel):
    """Payload for recording a transaction."""
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    budget_id: Optional[UUID] = None
    kind: TransactionKind
    category: TransactionCategory
    amount: Annotated[Decimal, Field(gt=0)]
    description: str = Field(..., min_length=1, max_length=200)
    date: Optional[UtcDatetime] = None
    payment_method: PaymentMethod = PaymentMethod.CASH
    notes: Optional[str] = Field(default=None, max_length=500)
    tags: list[str] = Field(default_factory=list)
    is_recurring: bool = False
    recurring_frequency: Optional[RecurringFrequency] = None


class TransactionUpdate(BaseModel):
    """
    Partial transaction update.

    Only fields the caller actually sent are applied; sending
    `budget_id=None` explicitly unlinks the transaction from its budget.
    """
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    budget_id: Optional[UUID] = None
    kind: Optional[TransactionKind] = None
    category: Optional[TransactionCategory] = None
    amount: Optional[Annotated[Decimal, Field(gt=0)]] = None
    description: Optional[str] = Field(default=None, min_length=1, max_length=200)
    date: Optional[UtcDatetime] = None
    payment_method: Optional[PaymentMethod] = None
    notes: Optional[str] = Field(default=None, max_length=500)
    tags: Optional[list[str]] = None
    is_recurring: Optional[bool] = None
    recurring_frequency: Optional[RecurringFrequency] = None
