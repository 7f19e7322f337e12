"""
Tests for budget management.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from abaco.ledger.errors import (
    BudgetNotFoundError,
    InvalidPeriodError,
    UnauthorizedError,
)
from abaco.models.audit import AuditEventType
from abaco.models.ledger import (
    BudgetCategory,
    BudgetPeriod,
    BudgetUpdate,
    TransactionUpdate,
)

from conftest import utc


class TestCreateBudget:
    """Tests for create_budget."""

    async def test_starts_with_zero_spent(self, owner, budgets, january_budget):
        budget = await budgets.create_budget(owner, january_budget("750"))

        assert budget.account_id == owner.account_id
        assert budget.spent == Decimal("0")
        assert budget.remaining == Decimal("750")
        assert budget.is_active

    async def test_inverted_period_is_rejected(self, owner, budgets, store, january_budget):
        with pytest.raises(InvalidPeriodError) as exc_info:
            await budgets.create_budget(
                owner,
                january_budget(start_date=utc(2025, 2, 1), end_date=utc(2025, 1, 1)),
            )

        assert exc_info.value.status_code == 400
        assert await store.list_budgets() == []

    async def test_equal_start_and_end_is_rejected(self, owner, budgets, january_budget):
        with pytest.raises(InvalidPeriodError):
            await budgets.create_budget(
                owner,
                january_budget(start_date=utc(2025, 1, 1), end_date=utc(2025, 1, 1)),
            )

    async def test_creation_is_audited(self, owner, budgets, audit_storage, january_budget):
        budget = await budgets.create_budget(owner, january_budget())

        events = await audit_storage.get_events_by_entity("budget", budget.id)
        assert events[0].event_type == AuditEventType.BUDGET_CREATED


class TestUpdateBudget:
    """Tests for update_budget."""

    async def test_keeps_spent(self, owner, budgets, transactions, store, january_budget, expense):
        budget = await budgets.create_budget(owner, january_budget("1000"))
        await transactions.create_transaction(owner, expense("300", budget.id))

        updated = await budgets.update_budget(
            owner, budget.id, BudgetUpdate(amount=Decimal("600"), name="Food")
        )

        assert updated.spent == Decimal("300")
        assert updated.amount == Decimal("600")
        assert updated.percentage_used == 50.0
        assert (await store.get_budget(budget.id)).name == "Food"

    async def test_stale_update_does_not_overwrite_spent(self, owner, budgets, store, january_budget):
        """An update merged from an old read must not clobber a concurrent increment."""
        budget = await budgets.create_budget(owner, january_budget())
        stale = await store.get_budget(budget.id)
        await store.increment_budget_spent(budget.id, Decimal("40"))

        await store.update_budget(stale.model_copy(update={"name": "Renamed"}))

        stored = await store.get_budget(budget.id)
        assert stored.spent == Decimal("40")
        assert stored.name == "Renamed"

    async def test_inverted_merged_period_is_rejected(self, owner, budgets, january_budget):
        budget = await budgets.create_budget(owner, january_budget())

        with pytest.raises(InvalidPeriodError):
            await budgets.update_budget(owner, budget.id, BudgetUpdate(end_date=utc(2024, 12, 1)))

    async def test_other_account_cannot_update(self, owner, other, budgets, january_budget):
        budget = await budgets.create_budget(owner, january_budget())

        with pytest.raises(UnauthorizedError):
            await budgets.update_budget(other, budget.id, BudgetUpdate(name="Mine now"))

    async def test_unknown_budget(self, owner, budgets):
        with pytest.raises(BudgetNotFoundError):
            await budgets.update_budget(owner, uuid4(), BudgetUpdate(name="Nothing"))

    async def test_changed_fields_are_audited(self, owner, budgets, audit_storage, january_budget):
        budget = await budgets.create_budget(owner, january_budget())

        await budgets.update_budget(owner, budget.id, BudgetUpdate(name="Food", amount=Decimal("5")))

        events = await audit_storage.get_events_by_entity("budget", budget.id)
        updated = [e for e in events if e.event_type == AuditEventType.BUDGET_UPDATED]
        assert updated[0].details["changed_fields"] == ["amount", "name"]


class TestDeleteBudget:
    """Deleting a budget detaches its transactions."""

    async def test_transactions_survive_unlinked(self, owner, budgets, transactions, store, january_budget, expense):
        budget = await budgets.create_budget(owner, january_budget())
        first = await transactions.create_transaction(owner, expense("10", budget.id))
        second = await transactions.create_transaction(owner, expense("20", budget.id))

        await budgets.delete_budget(owner, budget.id)

        assert await store.get_budget(budget.id) is None
        for tx in (first, second):
            stored = await store.get_transaction(tx.id)
            assert stored.budget_id is None
            assert stored.amount == tx.amount

    async def test_detached_transaction_edits_are_budget_free(self, owner, budgets, transactions, store, january_budget, expense):
        budget = await budgets.create_budget(owner, january_budget())
        tx = await transactions.create_transaction(owner, expense("10", budget.id))
        await budgets.delete_budget(owner, budget.id)

        updated = await transactions.update_transaction(owner, tx.id, TransactionUpdate(amount=Decimal("99")))
        await transactions.delete_transaction(owner, tx.id)

        assert updated.budget_id is None
        assert await store.list_budgets() == []

    async def test_other_account_cannot_delete(self, owner, other, budgets, store, january_budget):
        budget = await budgets.create_budget(owner, january_budget())

        with pytest.raises(UnauthorizedError):
            await budgets.delete_budget(other, budget.id)

        assert await store.get_budget(budget.id) is not None

    async def test_deletion_is_audited_with_detached_count(self, owner, budgets, transactions, audit_storage, january_budget, expense):
        budget = await budgets.create_budget(owner, january_budget())
        await transactions.create_transaction(owner, expense("10", budget.id))

        await budgets.delete_budget(owner, budget.id)

        events = await audit_storage.get_events_by_entity("budget", budget.id)
        deleted = [e for e in events if e.event_type == AuditEventType.BUDGET_DELETED]
        assert deleted[0].details["detached_transactions"] == 1


class TestReadBudgets:
    """Tests for get_budget and list_budgets."""

    async def test_detail_lists_linked_expenses(self, owner, budgets, transactions, january_budget, expense, income):
        budget = await budgets.create_budget(owner, january_budget())
        await transactions.create_transaction(owner, expense("10", budget.id, date=utc(2025, 1, 5)))
        await transactions.create_transaction(owner, expense("20", budget.id, date=utc(2025, 1, 25)))
        await transactions.create_transaction(owner, expense("30"))
        await transactions.create_transaction(owner, income("500"))

        detail = await budgets.get_budget(owner, budget.id)

        assert detail.transaction_count == 2
        assert [t.amount for t in detail.transactions] == [Decimal("20"), Decimal("10")]
        assert detail.budget.spent == Decimal("30")

    async def test_admin_reads_any_budget(self, owner, admin, budgets, january_budget):
        budget = await budgets.create_budget(owner, january_budget())

        detail = await budgets.get_budget(admin, budget.id)

        assert detail.budget.id == budget.id

    async def test_list_filters(self, owner, other, budgets, january_budget):
        food = await budgets.create_budget(owner, january_budget())
        transport = await budgets.create_budget(
            owner,
            january_budget(name="Bus pass", category=BudgetCategory.TRANSPORT, period=BudgetPeriod.YEARLY),
        )
        await budgets.update_budget(owner, transport.id, BudgetUpdate(is_active=False))
        await budgets.create_budget(other, january_budget())

        assert {b.id for b in await budgets.list_budgets(owner)} == {food.id, transport.id}
        assert [b.id for b in await budgets.list_budgets(owner, is_active=True)] == [food.id]
        assert [b.id for b in await budgets.list_budgets(owner, category=BudgetCategory.TRANSPORT)] == [transport.id]
        assert [b.id for b in await budgets.list_budgets(owner, period=BudgetPeriod.YEARLY)] == [transport.id]

    async def test_employee_cannot_list_other_account(self, owner, other, budgets):
        with pytest.raises(UnauthorizedError):
            await budgets.list_budgets(owner, account_id=other.account_id)

    async def test_admin_lists_other_account(self, owner, admin, budgets, january_budget):
        budget = await budgets.create_budget(owner, january_budget())

        listed = await budgets.list_budgets(admin, account_id=owner.account_id)

        assert [b.id for b in listed] == [budget.id]
