"""
Tests for the reconciliation job.
"""

import asyncio
from decimal import Decimal
from uuid import uuid4

from tenacity import wait_none

from abaco.audit import create_correlation_id
from abaco.ledger.aggregates import BudgetAggregateMaintainer
from abaco.ledger.budgets import BudgetManager
from abaco.ledger.reconciliation import ReconciliationJob
from abaco.models.audit import AuditEventType
from abaco.services.storage import InMemoryLedgerStore, StorageError


class FailingSetStore(InMemoryLedgerStore):
    """Store whose repair write always fails for the chosen budgets."""

    def __init__(self):
        super().__init__()
        self.broken = set()

    async def set_budget_spent(self, budget_id, spent, expected=None):
        if budget_id in self.broken:
            raise StorageError("sheet write timed out")
        return await super().set_budget_spent(budget_id, spent, expected)


class OrderRecordingMaintainer(BudgetAggregateMaintainer):

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.order = []

    async def reconcile_budget(self, budget_id, correlation_id=None, excluded_transaction_id=None):
        self.order.append(budget_id)
        return await super().reconcile_budget(budget_id, correlation_id, excluded_transaction_id)


class TestRunOnce:

    async def test_clean_ledger(self, owner, budgets, transactions, reconciliation, january_budget, expense):
        budget = await budgets.create_budget(owner, january_budget())
        await transactions.create_transaction(owner, expense("10", budget.id))

        report = await reconciliation.run_once()

        assert report.budgets_checked == 1
        assert report.is_clean
        assert report.finished_at is not None

    async def test_repairs_drift(self, owner, budgets, transactions, store, reconciliation, january_budget, expense):
        drifted = await budgets.create_budget(owner, january_budget())
        clean = await budgets.create_budget(owner, january_budget(name="Clean"))
        await transactions.create_transaction(owner, expense("120", drifted.id))
        await transactions.create_transaction(owner, expense("15", clean.id))
        # Simulate a writer outside this process
        await store.increment_budget_spent(drifted.id, Decimal("7"))

        report = await reconciliation.run_once()

        assert report.budgets_checked == 2
        assert [r.budget_id for r in report.repaired] == [drifted.id]
        assert report.repaired[0].previous_spent == Decimal("127")
        assert (await store.get_budget(drifted.id)).spent == Decimal("120")
        assert (await store.get_budget(clean.id)).spent == Decimal("15")

    async def test_ignores_detached_and_income_transactions(self, owner, budgets, transactions, store, reconciliation, january_budget, expense, income):
        budget = await budgets.create_budget(owner, january_budget())
        await transactions.create_transaction(owner, expense("40", budget.id))
        await transactions.create_transaction(owner, expense("60"))
        await transactions.create_transaction(owner, income("500"))

        report = await reconciliation.run_once()

        assert report.is_clean
        assert (await store.get_budget(budget.id)).spent == Decimal("40")

    async def test_completion_is_audited(self, reconciliation, audit_storage):
        correlation_id = create_correlation_id()
        report = await reconciliation.run_once(correlation_id)

        events = await audit_storage.get_recent_events()
        assert events[0].event_type == AuditEventType.RECONCILIATION_COMPLETED
        assert events[0].details["budgets_checked"] == report.budgets_checked


class TestPendingQueue:

    async def test_pending_budgets_go_first(self, owner, audit_logger, january_budget):
        store = InMemoryLedgerStore()
        maintainer = OrderRecordingMaintainer(store, audit_logger=audit_logger, wait=wait_none())
        budgets = BudgetManager(store, maintainer, audit_logger=audit_logger)
        first = await budgets.create_budget(owner, january_budget(name="First"))
        second = await budgets.create_budget(owner, january_budget(name="Second"))
        maintainer.pending_budget_ids.add(first.id)

        job = ReconciliationJob(store, maintainer, audit_logger=audit_logger)
        await job.run_once()

        assert maintainer.order[0] == first.id
        assert set(maintainer.order) == {first.id, second.id}
        assert maintainer.pending_budget_ids == set()

    async def test_stale_pending_ids_are_dropped(self, reconciliation, maintainer):
        maintainer.pending_budget_ids.add(uuid4())

        report = await reconciliation.run_once()

        assert report.budgets_checked == 0
        assert maintainer.pending_budget_ids == set()

    async def test_failed_budget_is_requeued(self, owner, audit_logger, january_budget):
        store = FailingSetStore()
        maintainer = BudgetAggregateMaintainer(store, audit_logger=audit_logger, wait=wait_none())
        budgets = BudgetManager(store, maintainer, audit_logger=audit_logger)
        broken = await budgets.create_budget(owner, january_budget(name="Broken"))
        healthy = await budgets.create_budget(owner, january_budget(name="Healthy"))
        await store.increment_budget_spent(broken.id, Decimal("5"))
        await store.increment_budget_spent(healthy.id, Decimal("5"))
        store.broken.add(broken.id)

        job = ReconciliationJob(store, maintainer, audit_logger=audit_logger)
        report = await job.run_once()

        assert report.budgets_checked == 2
        assert report.failed == [broken.id]
        assert [r.budget_id for r in report.repaired] == [healthy.id]
        assert maintainer.pending_budget_ids == {broken.id}
        assert not report.is_clean


class TestRunPeriodically:

    async def test_stops_when_event_is_set(self, reconciliation):
        stop = asyncio.Event()

        async def stop_soon():
            await asyncio.sleep(0.05)
            stop.set()

        runs, _ = await asyncio.gather(
            reconciliation.run_periodically(interval_seconds=0.01, stop_event=stop),
            stop_soon(),
        )

        assert runs >= 1

    async def test_preset_event_runs_nothing(self, reconciliation):
        stop = asyncio.Event()
        stop.set()

        assert await reconciliation.run_periodically(interval_seconds=0.01, stop_event=stop) == 0

    async def test_storage_failure_does_not_stop_the_loop(self, audit_logger):
        class BrokenListStore(InMemoryLedgerStore):
            async def list_budgets(self, *args, **kwargs):
                raise StorageError("sheet unavailable")

        store = BrokenListStore()
        maintainer = BudgetAggregateMaintainer(store, audit_logger=audit_logger, wait=wait_none())
        job = ReconciliationJob(store, maintainer, audit_logger=audit_logger)
        stop = asyncio.Event()

        async def stop_soon():
            await asyncio.sleep(0.05)
            stop.set()

        runs, _ = await asyncio.gather(
            job.run_periodically(interval_seconds=0.01, stop_event=stop),
            stop_soon(),
        )

        assert runs >= 2
