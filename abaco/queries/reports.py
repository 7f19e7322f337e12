"""
Report Aggregator

DESIGN DECISION: Reports are DETERMINISTIC reads.
Every figure is recomputed from the transaction log and the budgets on
each call. Nothing is cached and nothing is written, so a report is safe
to retry and two calls over the same data return the same result.

Scope: an employee sees only their own ledger; an admin sees the whole
store. Every report accepts an optional `now` so callers (and tests) can
pin the clock.

Division by zero yields 0, never an error.
"""

from collections import defaultdict
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional

from abaco.audit.logger import AuditLogger
from abaco.config import LedgerSettings, get_settings
from abaco.ledger.access import authorize_admin, scope_account_id
from abaco.ledger.errors import ValidationFailedError
from abaco.models.ledger import (
    Actor,
    BudgetHealth,
    AccountRole,
    Transaction,
    TransactionKind,
    ensure_utc,
    utc_now,
)
from abaco.models.reports import (
    AccountActivity,
    AccountCounts,
    AdminOverview,
    BudgetCategoryTotals,
    BudgetCounts,
    BudgetStatus,
    BudgetSummaryReport,
    CategorySpendingEntry,
    CategorySpendingReport,
    CategoryStat,
    CategoryTransaction,
    DashboardReport,
    DashboardSummary,
    MonthlyComparisonEntry,
    NearLimitEntry,
    OverBudgetEntry,
    PaymentMethodStat,
    TransactionStats,
    TransactionTotals,
)
from abaco.services.storage import LedgerStoreInterface


ZERO = Decimal("0")


def month_start(when: datetime) -> datetime:
    """First instant of the calendar month containing `when` (UTC)."""
    when = ensure_utc(when)
    return when.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def shift_months(start: datetime, months: int) -> datetime:
    """Move a first-of-month instant by a number of calendar months."""
    index = start.year * 12 + (start.month - 1) + months
    return start.replace(year=index // 12, month=index % 12 + 1)


def _totals(transactions: Iterable[Transaction]) -> tuple[Decimal, Decimal]:
    income = ZERO
    expense = ZERO
    for tx in transactions:
        if tx.kind == TransactionKind.INCOME:
            income += tx.amount
        else:
            expense += tx.amount
    return income, expense


def _percentage(part: Decimal, whole: Decimal) -> float:
    if whole == 0:
        return 0.0
    return round(float(part / whole * 100), 2)


class ReportAggregator:
    """
    Computes derived financial views from the ledger store.

    GUARANTEES:
    - Only reads from storage
    - Never mutates budgets or transactions
    - Same data in, same report out
    """

    def __init__(
        self,
        store: LedgerStoreInterface,
        settings: Optional[LedgerSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._settings = settings or get_settings().ledger
        self._audit = audit_logger or AuditLogger()

    # -------------------------------------------------------------------------
    # Dashboard
    # -------------------------------------------------------------------------

    async def dashboard(self, actor: Actor, now: Optional[datetime] = None) -> DashboardReport:
        """
        Current calendar month at a glance.

        The month is the half-open interval [first instant, first instant of
        next month).
        """
        now = ensure_utc(now) if now else utc_now()
        account_id = scope_account_id(actor)
        period_start = month_start(now)
        period_end = shift_months(period_start, 1)

        transactions = await self._store.list_transactions(account_id=account_id)
        month = [t for t in transactions if period_start <= t.date < period_end]

        income, expense = _totals(month)
        expenses_by_category: dict[str, Decimal] = defaultdict(lambda: ZERO)
        for tx in month:
            if tx.kind == TransactionKind.EXPENSE:
                expenses_by_category[tx.category.value] += tx.amount

        budgets = await self._store.list_budgets(account_id=account_id, is_active=True)
        current = [b for b in budgets if b.covers(now)]

        return DashboardReport(
            period_start=period_start,
            period_end=period_end,
            summary=DashboardSummary(
                month_income=income,
                month_expense=expense,
                month_balance=income - expense,
                transaction_count=len(month),
                active_budgets_count=len(current),
            ),
            expenses_by_category=dict(expenses_by_category),
            budget_health=[
                BudgetStatus.from_budget(b, self._settings.budget_warning_threshold)
                for b in current
            ],
            # Store returns newest first
            recent_transactions=transactions[: self._settings.dashboard_recent_limit],
        )

    # -------------------------------------------------------------------------
    # Monthly comparison
    # -------------------------------------------------------------------------

    async def monthly_comparison(
        self,
        actor: Actor,
        months: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> list[MonthlyComparisonEntry]:
        """Trailing calendar months including the current one, oldest first."""
        months = self._settings.default_comparison_months if months is None else months
        if months < 1:
            raise ValidationFailedError(
                "months must be at least 1",
                details={"months": months},
            )

        now = ensure_utc(now) if now else utc_now()
        current_start = month_start(now)
        first_start = shift_months(current_start, -(months - 1))

        transactions = await self._store.list_transactions(
            account_id=scope_account_id(actor),
            date_from=first_start,
        )

        entries = []
        for offset in range(months):
            start = shift_months(first_start, offset)
            end = shift_months(start, 1)
            in_month = [t for t in transactions if start <= t.date < end]
            income, expense = _totals(in_month)
            entries.append(MonthlyComparisonEntry(
                month=start.strftime("%Y-%m"),
                month_start=start,
                income=income,
                expense=expense,
                balance=income - expense,
                transaction_count=len(in_month),
            ))
        return entries

    # -------------------------------------------------------------------------
    # Category spending
    # -------------------------------------------------------------------------

    async def category_spending(
        self,
        actor: Actor,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> CategorySpendingReport:
        """Expense totals per category within an optional inclusive window."""
        transactions = await self._store.list_transactions(
            account_id=scope_account_id(actor),
            kind=TransactionKind.EXPENSE,
            date_from=start,
            date_to=end,
        )

        entries: dict[str, CategorySpendingEntry] = {}
        total = ZERO
        for tx in transactions:
            entry = entries.setdefault(
                tx.category.value,
                CategorySpendingEntry(category=tx.category.value),
            )
            entry.total += tx.amount
            entry.count += 1
            entry.transactions.append(CategoryTransaction(
                date=tx.date,
                description=tx.description,
                amount=tx.amount,
            ))
            total += tx.amount

        for entry in entries.values():
            entry.percentage = _percentage(entry.total, total)

        return CategorySpendingReport(
            total_spending=total,
            categories=sorted(entries.values(), key=lambda e: e.total, reverse=True),
        )

    # -------------------------------------------------------------------------
    # Transaction statistics / budget summary
    # -------------------------------------------------------------------------

    async def transaction_stats(
        self,
        actor: Actor,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> TransactionStats:
        transactions = await self._store.list_transactions(
            account_id=scope_account_id(actor),
            date_from=start,
            date_to=end,
        )

        by_category: dict[str, CategoryStat] = {}
        by_payment_method: dict[str, PaymentMethodStat] = {}
        for tx in transactions:
            stat = by_category.setdefault(tx.category.value, CategoryStat(kind=tx.kind))
            stat.count += 1
            stat.total += tx.amount

            method = by_payment_method.setdefault(tx.payment_method.value, PaymentMethodStat())
            method.count += 1
            method.total += tx.amount

        income, expense = _totals(transactions)
        return TransactionStats(
            total_transactions=len(transactions),
            total_income=income,
            total_expense=expense,
            balance=income - expense,
            by_category=by_category,
            by_payment_method=by_payment_method,
            recent_transactions=transactions[: self._settings.stats_recent_limit],
        )

    async def budget_summary(self, actor: Actor) -> BudgetSummaryReport:
        """Roll-up of active budgets with over-budget and near-limit lists."""
        budgets = await self._store.list_budgets(
            account_id=scope_account_id(actor),
            is_active=True,
        )
        threshold = self._settings.budget_warning_threshold

        report = BudgetSummaryReport(total_budgets=len(budgets))
        for budget in budgets:
            report.total_allocated += budget.amount
            report.total_spent += budget.spent

            totals = report.by_category.setdefault(
                budget.category.value, BudgetCategoryTotals()
            )
            totals.allocated += budget.amount
            totals.spent += budget.spent
            totals.count += 1

            health = budget.health(threshold)
            if health == BudgetHealth.OVER:
                report.over_budget.append(OverBudgetEntry(
                    budget_id=budget.id,
                    name=budget.name,
                    category=budget.category.value,
                    amount=budget.amount,
                    spent=budget.spent,
                    overage=budget.spent - budget.amount,
                ))
            elif health == BudgetHealth.WARNING:
                report.near_limit.append(NearLimitEntry(
                    budget_id=budget.id,
                    name=budget.name,
                    category=budget.category.value,
                    amount=budget.amount,
                    spent=budget.spent,
                    percentage_used=budget.percentage_used,
                ))

        report.total_remaining = report.total_allocated - report.total_spent
        return report

    # -------------------------------------------------------------------------
    # Administration
    # -------------------------------------------------------------------------

    async def admin_overview(self, actor: Actor) -> AdminOverview:
        """Store-wide counts and the most active accounts. Admins only."""
        await authorize_admin(actor, "report", self._audit)

        accounts = await self._store.list_accounts()
        budgets = await self._store.list_budgets()
        transactions = await self._store.list_transactions()

        counts: dict = defaultdict(int)
        last_activity: dict = {}
        for tx in transactions:
            counts[tx.account_id] += 1
            seen = last_activity.get(tx.account_id)
            if seen is None or tx.created_at > seen:
                last_activity[tx.account_id] = tx.created_at

        activity = [
            AccountActivity(
                account_id=account.id,
                name=account.name,
                email=account.email,
                role=account.role,
                transaction_count=counts[account.id],
                last_activity=last_activity.get(account.id),
            )
            for account in accounts
        ]
        # Stable sort keeps account creation order among ties
        activity.sort(key=lambda a: a.transaction_count, reverse=True)

        income, expense = _totals(transactions)
        return AdminOverview(
            accounts=AccountCounts(
                total=len(accounts),
                active=sum(1 for a in accounts if a.is_active),
                admins=sum(1 for a in accounts if a.role == AccountRole.ADMIN),
                employees=sum(1 for a in accounts if a.role == AccountRole.EMPLOYEE),
            ),
            budgets=BudgetCounts(
                total=len(budgets),
                active=sum(1 for b in budgets if b.is_active),
            ),
            transactions=TransactionTotals(
                total=len(transactions),
                global_income=income,
                global_expense=expense,
                global_balance=income - expense,
            ),
            top_accounts=activity[: self._settings.top_accounts_limit],
        )
