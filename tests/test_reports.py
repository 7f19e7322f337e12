"""
Tests for the report aggregator.

Every report is called with a pinned `now` where the clock matters.
"""

from decimal import Decimal

import pytest

from abaco.ledger.errors import UnauthorizedError, ValidationFailedError
from abaco.models.ledger import (
    Account,
    AccountRole,
    BudgetCategory,
    BudgetHealth,
    BudgetUpdate,
    PaymentMethod,
    TransactionCategory,
    TransactionKind,
)
from abaco.queries.reports import ReportAggregator, month_start, shift_months

from conftest import utc


class TestMonthHelpers:

    def test_month_start(self):
        assert month_start(utc(2025, 3, 17, 13, 45)) == utc(2025, 3, 1)

    @pytest.mark.parametrize(
        "months, expected",
        [
            (1, utc(2025, 2, 1)),
            (12, utc(2026, 1, 1)),
            (-1, utc(2024, 12, 1)),
            (-13, utc(2023, 12, 1)),
        ],
    )
    def test_shift_months_across_years(self, months, expected):
        assert shift_months(utc(2025, 1, 1), months) == expected


class TestDashboard:
    """Tests for the current-month dashboard."""

    async def test_current_month_figures(self, owner, budgets, transactions, reports, january_budget, expense, income):
        budget = await budgets.create_budget(owner, january_budget("1000"))
        await transactions.create_transaction(owner, expense("200", budget.id))
        await transactions.create_transaction(owner, income("1500"))
        await transactions.create_transaction(
            owner, expense("30", category=TransactionCategory.TRANSPORT, date=utc(2025, 1, 18))
        )
        # Outside January
        await transactions.create_transaction(owner, expense("999", date=utc(2024, 12, 31, 23, 59, 59)))
        await transactions.create_transaction(owner, expense("888", date=utc(2025, 2, 1)))

        report = await reports.dashboard(owner, now=utc(2025, 1, 20))

        assert report.period_start == utc(2025, 1, 1)
        assert report.period_end == utc(2025, 2, 1)
        assert report.summary.month_income == Decimal("1500")
        assert report.summary.month_expense == Decimal("230")
        assert report.summary.month_balance == Decimal("1270")
        assert report.summary.transaction_count == 3
        assert report.expenses_by_category == {"food": Decimal("200"), "transport": Decimal("30")}

    async def test_budget_health_only_for_current_active_budgets(self, owner, budgets, transactions, reports, january_budget, expense):
        current = await budgets.create_budget(owner, january_budget("250"))
        await transactions.create_transaction(owner, expense("200", current.id))
        paused = await budgets.create_budget(owner, january_budget("100", name="Paused"))
        await budgets.update_budget(owner, paused.id, BudgetUpdate(is_active=False))
        await budgets.create_budget(
            owner, january_budget(name="March", start_date=utc(2025, 3, 1), end_date=utc(2025, 3, 31))
        )

        report = await reports.dashboard(owner, now=utc(2025, 1, 20))

        assert report.summary.active_budgets_count == 1
        assert len(report.budget_health) == 1
        status = report.budget_health[0]
        assert status.budget_id == current.id
        assert status.percentage_used == 80.0
        assert status.status == BudgetHealth.WARNING

    async def test_recent_transactions_are_limited(self, owner, transactions, reports, expense):
        for day in range(1, 9):
            await transactions.create_transaction(owner, expense("1", date=utc(2025, 1, day)))

        report = await reports.dashboard(owner, now=utc(2025, 1, 20))

        assert len(report.recent_transactions) == 5
        assert report.recent_transactions[0].date == utc(2025, 1, 8)

    async def test_employee_sees_only_own_ledger(self, owner, other, admin, transactions, reports, expense):
        await transactions.create_transaction(owner, expense("10"))
        await transactions.create_transaction(other, expense("20"))

        mine = await reports.dashboard(owner, now=utc(2025, 1, 20))
        everyone = await reports.dashboard(admin, now=utc(2025, 1, 20))

        assert mine.summary.month_expense == Decimal("10")
        assert everyone.summary.month_expense == Decimal("30")

    async def test_empty_ledger(self, owner, reports):
        report = await reports.dashboard(owner, now=utc(2025, 1, 20))

        assert report.summary.month_balance == Decimal("0")
        assert report.expenses_by_category == {}
        assert report.budget_health == []


class TestMonthlyComparison:
    """Tests for the trailing monthly comparison."""

    async def test_oldest_first_with_empty_months(self, owner, transactions, reports, expense, income):
        await transactions.create_transaction(owner, income("1000"))
        await transactions.create_transaction(owner, expense("200"))
        await transactions.create_transaction(owner, expense("40", date=utc(2025, 3, 2)))
        await transactions.create_transaction(owner, expense("5", date=utc(2024, 12, 31)))

        entries = await reports.monthly_comparison(owner, months=3, now=utc(2025, 3, 10))

        assert [e.month for e in entries] == ["2025-01", "2025-02", "2025-03"]
        assert entries[0].income == Decimal("1000")
        assert entries[0].balance == Decimal("800")
        assert entries[1].transaction_count == 0
        assert entries[1].balance == Decimal("0")
        assert entries[2].expense == Decimal("40")

    async def test_defaults_to_configured_months(self, owner, reports):
        entries = await reports.monthly_comparison(owner, now=utc(2025, 6, 15))

        assert len(entries) == 6
        assert entries[0].month == "2025-01"
        assert entries[-1].month == "2025-06"

    async def test_is_deterministic(self, owner, transactions, reports, expense):
        await transactions.create_transaction(owner, expense("12.34"))

        first = await reports.monthly_comparison(owner, months=2, now=utc(2025, 2, 1))
        second = await reports.monthly_comparison(owner, months=2, now=utc(2025, 2, 1))

        assert first == second

    async def test_rejects_non_positive_months(self, owner, reports):
        with pytest.raises(ValidationFailedError):
            await reports.monthly_comparison(owner, months=0)


class TestCategorySpending:
    """Tests for per-category expense totals."""

    async def test_sorted_with_percentages(self, owner, transactions, reports, expense, income):
        await transactions.create_transaction(owner, expense("25", category=TransactionCategory.TRANSPORT))
        await transactions.create_transaction(owner, expense("50"))
        await transactions.create_transaction(owner, expense("25"))
        await transactions.create_transaction(owner, income("1000"))

        report = await reports.category_spending(owner)

        assert report.total_spending == Decimal("100")
        assert [c.category for c in report.categories] == ["food", "transport"]
        assert report.categories[0].count == 2
        assert report.categories[0].percentage == 75.0
        assert report.categories[1].percentage == 25.0
        assert len(report.categories[0].transactions) == 2

    async def test_percentages_are_rounded(self, owner, transactions, reports, expense):
        await transactions.create_transaction(owner, expense("1"))
        await transactions.create_transaction(owner, expense("2", category=TransactionCategory.HEALTH))

        report = await reports.category_spending(owner)

        assert [c.percentage for c in report.categories] == [66.67, 33.33]

    async def test_window_is_inclusive(self, owner, transactions, reports, expense):
        await transactions.create_transaction(owner, expense("10", date=utc(2025, 1, 1)))
        await transactions.create_transaction(owner, expense("20", date=utc(2025, 1, 31)))
        await transactions.create_transaction(owner, expense("40", date=utc(2025, 2, 1)))

        report = await reports.category_spending(owner, start=utc(2025, 1, 1), end=utc(2025, 1, 31))

        assert report.total_spending == Decimal("30")

    async def test_no_expenses_yields_zero(self, owner, reports):
        report = await reports.category_spending(owner)

        assert report.total_spending == Decimal("0")
        assert report.categories == []


class TestTransactionStats:

    async def test_breakdowns(self, owner, transactions, reports, expense, income):
        await transactions.create_transaction(owner, income("1000", payment_method=PaymentMethod.TRANSFER))
        await transactions.create_transaction(owner, expense("30"))
        await transactions.create_transaction(owner, expense("20", payment_method=PaymentMethod.DEBIT_CARD))

        stats = await reports.transaction_stats(owner)

        assert stats.total_transactions == 3
        assert stats.balance == Decimal("950")
        assert stats.by_category["food"].count == 2
        assert stats.by_category["food"].total == Decimal("50")
        assert stats.by_category["salary"].kind == TransactionKind.INCOME
        assert stats.by_payment_method["transfer"].total == Decimal("1000")
        assert stats.by_payment_method["cash"].count == 1


class TestBudgetSummary:

    async def test_over_and_near_limit(self, owner, budgets, transactions, reports, january_budget, expense):
        over = await budgets.create_budget(owner, january_budget("100", name="Over"))
        near = await budgets.create_budget(owner, january_budget("100", name="Near"))
        fine = await budgets.create_budget(owner, january_budget("100", name="Fine"))
        paused = await budgets.create_budget(owner, january_budget("100", name="Paused"))
        await transactions.create_transaction(owner, expense("120", over.id))
        await transactions.create_transaction(owner, expense("80", near.id))
        await transactions.create_transaction(owner, expense("10", fine.id))
        await budgets.update_budget(owner, paused.id, BudgetUpdate(is_active=False))

        summary = await reports.budget_summary(owner)

        assert summary.total_budgets == 3
        assert summary.total_allocated == Decimal("300")
        assert summary.total_spent == Decimal("210")
        assert summary.total_remaining == Decimal("90")
        assert [e.budget_id for e in summary.over_budget] == [over.id]
        assert summary.over_budget[0].overage == Decimal("20")
        assert [e.budget_id for e in summary.near_limit] == [near.id]
        assert summary.by_category[BudgetCategory.FOOD.value].count == 3

    async def test_exactly_full_budget_is_near_limit(self, owner, budgets, transactions, reports, january_budget, expense):
        budget = await budgets.create_budget(owner, january_budget("100"))
        await transactions.create_transaction(owner, expense("100", budget.id))

        summary = await reports.budget_summary(owner)

        assert summary.over_budget == []
        assert summary.near_limit[0].percentage_used == 100.0

    async def test_follows_configured_warning_threshold(self, owner, store, budgets, transactions, ledger_settings, audit_logger, january_budget, expense):
        """Test that the lists agree with Budget.health for the configured threshold."""
        reports = ReportAggregator(
            store,
            settings=ledger_settings.model_copy(update={"budget_warning_threshold": 50.0}),
            audit_logger=audit_logger,
        )
        half = await budgets.create_budget(owner, january_budget("100", name="Half"))
        quiet = await budgets.create_budget(owner, january_budget("100", name="Quiet"))
        await transactions.create_transaction(owner, expense("60", half.id))
        await transactions.create_transaction(owner, expense("40", quiet.id))

        summary = await reports.budget_summary(owner)

        assert [e.budget_id for e in summary.near_limit] == [half.id]
        stored = await store.get_budget(half.id)
        assert stored.health(50.0) == BudgetHealth.WARNING
        assert stored.health(80.0) == BudgetHealth.GOOD


class TestAdminOverview:

    async def test_employee_is_rejected(self, owner, reports):
        with pytest.raises(UnauthorizedError):
            await reports.admin_overview(owner)

    async def test_counts_and_top_accounts(self, owner, other, admin, store, budgets, transactions, reports, january_budget, expense, income):
        await store.save_account(Account(id=admin.account_id, name="Admin", email="admin@example.com", role=AccountRole.ADMIN))
        await store.save_account(Account(id=owner.account_id, name="Owner", email="owner@example.com"))
        await store.save_account(Account(id=other.account_id, name="Other", email="other@example.com", is_active=False))
        await budgets.create_budget(owner, january_budget())
        await transactions.create_transaction(owner, income("500"))
        await transactions.create_transaction(owner, expense("100"))
        last = await transactions.create_transaction(owner, expense("50"))
        await transactions.create_transaction(other, expense("5"))

        overview = await reports.admin_overview(admin)

        assert overview.accounts.total == 3
        assert overview.accounts.active == 2
        assert overview.accounts.admins == 1
        assert overview.accounts.employees == 2
        assert overview.budgets.total == 1
        assert overview.transactions.total == 4
        assert overview.transactions.global_balance == Decimal("345")

        top = overview.top_accounts
        assert [a.account_id for a in top] == [owner.account_id, other.account_id, admin.account_id]
        assert top[0].transaction_count == 3
        assert top[0].last_activity == last.created_at
        assert top[2].last_activity is None
