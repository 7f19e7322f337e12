"""
Report Models

Read-only views derived from the transaction log and the budgets.
Nothing here is persisted; every report is recomputed on demand.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from abaco.models.ledger import (
    Account,
    AccountRole,
    Budget,
    BudgetHealth,
    Transaction,
    TransactionKind,
    utc_now,
)


# =============================================================================
# DASHBOARD
# =============================================================================

class BudgetStatus(BaseModel):
    """A budget annotated with its health."""

    budget_id: UUID
    name: str
    category: str
    amount: Decimal
    spent: Decimal
    remaining: Decimal
    percentage_used: float
    status: BudgetHealth

    @classmethod
    def from_budget(cls, budget: Budget, warning_threshold: float) -> "BudgetStatus":
        return cls(
            budget_id=budget.id,
            name=budget.name,
            category=budget.category.value,
            amount=budget.amount,
            spent=budget.spent,
            remaining=budget.remaining,
            percentage_used=budget.percentage_used,
            status=budget.health(warning_threshold),
        )


class DashboardSummary(BaseModel):
    month_income: Decimal = Decimal("0")
    month_expense: Decimal = Decimal("0")
    month_balance: Decimal = Decimal("0")
    transaction_count: int = 0
    active_budgets_count: int = 0


class DashboardReport(BaseModel):
    """Current-month snapshot."""

    period_start: datetime
    period_end: datetime
    summary: DashboardSummary
    expenses_by_category: dict[str, Decimal] = Field(default_factory=dict)
    budget_health: list[BudgetStatus] = Field(default_factory=list)
    recent_transactions: list[Transaction] = Field(default_factory=list)


# =============================================================================
# MONTHLY COMPARISON / CATEGORY SPENDING
# =============================================================================

class MonthlyComparisonEntry(BaseModel):
    month: str = Field(..., description="Calendar month as YYYY-MM")
    month_start: datetime
    income: Decimal = Decimal("0")
    expense: Decimal = Decimal("0")
    balance: Decimal = Decimal("0")
    transaction_count: int = 0


class CategoryTransaction(BaseModel):
    date: datetime
    description: str
    amount: Decimal


class CategorySpendingEntry(BaseModel):
    category: str
    total: Decimal = Decimal("0")
    count: int = 0
    percentage: float = Field(
        default=0.0,
        description="Share of total spending, rounded to 2 decimals"
    )
    transactions: list[CategoryTransaction] = Field(default_factory=list)


class CategorySpendingReport(BaseModel):
    total_spending: Decimal = Decimal("0")
    categories: list[CategorySpendingEntry] = Field(default_factory=list)


# =============================================================================
# TRANSACTION STATISTICS / BUDGET SUMMARY
# =============================================================================

class CategoryStat(BaseModel):
    count: int = 0
    total: Decimal = Decimal("0")
    kind: TransactionKind


class PaymentMethodStat(BaseModel):
    count: int = 0
    total: Decimal = Decimal("0")


class TransactionStats(BaseModel):
    total_transactions: int = 0
    total_income: Decimal = Decimal("0")
    total_expense: Decimal = Decimal("0")
    balance: Decimal = Decimal("0")
    by_category: dict[str, CategoryStat] = Field(default_factory=dict)
    by_payment_method: dict[str, PaymentMethodStat] = Field(default_factory=dict)
    recent_transactions: list[Transaction] = Field(default_factory=list)


class BudgetCategoryTotals(BaseModel):
    allocated: Decimal = Decimal("0")
    spent: Decimal = Decimal("0")
    count: int = 0


class OverBudgetEntry(BaseModel):
    budget_id: UUID
    name: str
    category: str
    amount: Decimal
    spent: Decimal
    overage: Decimal


class NearLimitEntry(BaseModel):
    budget_id: UUID
    name: str
    category: str
    amount: Decimal
    spent: Decimal
    percentage_used: float


class BudgetSummaryReport(BaseModel):
    """Roll-up of the caller's active budgets."""

    total_budgets: int = 0
    total_allocated: Decimal = Decimal("0")
    total_spent: Decimal = Decimal("0")
    total_remaining: Decimal = Decimal("0")
    by_category: dict[str, BudgetCategoryTotals] = Field(default_factory=dict)
    over_budget: list[OverBudgetEntry] = Field(default_factory=list)
    near_limit: list[NearLimitEntry] = Field(default_factory=list)


# =============================================================================
# ADMINISTRATION
# =============================================================================

class AccountCounts(BaseModel):
    total: int = 0
    active: int = 0
    admins: int = 0
    employees: int = 0


class BudgetCounts(BaseModel):
    total: int = 0
    active: int = 0


class TransactionTotals(BaseModel):
    total: int = 0
    global_income: Decimal = Decimal("0")
    global_expense: Decimal = Decimal("0")
    global_balance: Decimal = Decimal("0")


class AccountActivity(BaseModel):
    account_id: UUID
    name: str
    email: str
    role: AccountRole
    transaction_count: int = 0
    last_activity: Optional[datetime] = None


class AdminOverview(BaseModel):
    accounts: AccountCounts
    budgets: BudgetCounts
    transactions: TransactionTotals
    top_accounts: list[AccountActivity] = Field(default_factory=list)


class AccountDetail(BaseModel):
    """An account together with its ledger totals."""

    account: Account
    budget_count: int = 0
    transaction_count: int = 0
    total_income: Decimal = Decimal("0")
    total_expense: Decimal = Decimal("0")
    balance: Decimal = Decimal("0")


class BudgetDetail(BaseModel):
    """A budget with the expense transactions currently linked to it."""

    budget: Budget
    transactions: list[Transaction] = Field(default_factory=list)
    transaction_count: int = 0


# =============================================================================
# RECONCILIATION
# =============================================================================

class BudgetReconciliation(BaseModel):
    """Outcome of recomputing one budget's spent total."""

    budget_id: UUID
    previous_spent: Decimal
    recomputed_spent: Decimal
    repaired: bool = False

    @property
    def drift(self) -> Decimal:
        return self.previous_spent - self.recomputed_spent

    @property
    def has_drift(self) -> bool:
        return self.previous_spent != self.recomputed_spent


class ReconciliationReport(BaseModel):
    started_at: datetime = Field(default_factory=utc_now)
    finished_at: Optional[datetime] = None
    budgets_checked: int = 0
    repaired: list[BudgetReconciliation] = Field(default_factory=list)
    failed: list[UUID] = Field(default_factory=list)

    @property
    def is_clean(self) -> bool:
        return not self.repaired and not self.failed
