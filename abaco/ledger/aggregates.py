"""
Budget Aggregate Maintainer

Keeps `Budget.spent` equal to the sum of the expense transactions that
currently link to the budget.

CRITICAL: The maintainer never reads `spent`, adds to it in memory and
writes it back. Every change goes through the store's atomic
`increment_budget_spent`, which serialises concurrent adjustments to the
same budget.

RECOVERY DISCIPLINE:
1. A failing adjustment is retried (tenacity, exponential back-off)
2. If it still fails, the budget is repaired at once by recomputing
   `spent` from its live linked expense transactions
3. If the repair fails too, the budget is queued in `pending_budget_ids`
   for the reconciliation job and AggregateSyncError is raised

An adjustment is never silently dropped.

REPAIR SERIALISATION:
- A repair reads `spent`, sums the linked transactions and writes the sum
  back with a compare-and-swap against the value it read, so an increment
  landing in between makes the write fail and the repair start over.
- A transaction write and its hook run inside `guard()` for the budgets
  involved, and so does `reconcile_budget`. A repair therefore never sees
  a transaction that is stored but not yet counted.
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID

import asyncio
from collections import defaultdict
from contextlib import AsyncExitStack, asynccontextmanager

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from abaco.audit.logger import AuditLogger
from abaco.config import get_settings
from abaco.ledger.errors import AggregateSyncError
from abaco.models.ledger import Budget, Transaction
from abaco.models.reports import BudgetReconciliation
from abaco.services.storage import (
    LedgerStoreInterface,
    NotFoundError,
    SpentConflictError,
    StorageError,
)


logger = structlog.get_logger(__name__)


class BudgetAggregateMaintainer:
    """
    Applies the effect of each transaction mutation to budget totals.

    The lifecycle manager must call exactly one of the `on_*` hooks per
    state transition; the hooks are not idempotent.
    """

    def __init__(
        self,
        store: LedgerStoreInterface,
        audit_logger: Optional[AuditLogger] = None,
        max_attempts: Optional[int] = None,
        wait: Optional[wait_base] = None,
    ):
        """
        Args:
            store: Ledger store providing the atomic spent primitives.
            audit_logger: Where adjustments and repairs are recorded.
            max_attempts: Attempts per adjustment. Defaults to settings.
            wait: tenacity wait strategy between attempts.
        """
        self._store = store
        self._audit = audit_logger or AuditLogger()
        self._max_attempts = max_attempts or get_settings().ledger.spent_update_attempts
        self._wait = wait or wait_exponential(multiplier=1, min=2, max=10)
        self.pending_budget_ids: set[UUID] = set()
        self._guards: defaultdict[UUID, asyncio.Lock] = defaultdict(asyncio.Lock)

    @asynccontextmanager
    async def guard(self, *budget_ids: Optional[UUID]):
        """
        Hold the per-budget locks for the given budgets (None is ignored).

        Locks are taken in a fixed order so two writers touching the same
        pair of budgets cannot deadlock.
        """
        ids = sorted({b for b in budget_ids if b is not None}, key=str)
        async with AsyncExitStack() as stack:
            for budget_id in ids:
                await stack.enter_async_context(self._guards[budget_id])
            yield

    # -------------------------------------------------------------------------
    # Hooks
    # -------------------------------------------------------------------------

    async def on_transaction_created(
        self,
        tx: Transaction,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        if tx.contributes_to_budget:
            await self._adjust(tx.budget_id, tx.amount, tx.id, correlation_id)

    async def on_transaction_updated(
        self,
        old_tx: Transaction,
        new_tx: Transaction,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """
        Retract the old contribution, then apply the new one.

        Both steps run even when the budget is unchanged, so an amount edit
        nets to the signed difference.

        The record already holds its new values, so a budget recomputed
        while retracting already counts the new contribution and is not
        adjusted again. A sync failure on the first step does not stop the
        second; the first error is raised once both have run.
        """
        settled: set[UUID] = set()
        sync_error: Optional[AggregateSyncError] = None

        if old_tx.contributes_to_budget:
            try:
                if await self._adjust(old_tx.budget_id, -old_tx.amount, old_tx.id, correlation_id):
                    settled.add(old_tx.budget_id)
            except AggregateSyncError as e:
                # Queued: reconciliation recomputes it from the live rows
                settled.add(old_tx.budget_id)
                sync_error = e

        if new_tx.contributes_to_budget and new_tx.budget_id not in settled:
            try:
                await self._adjust(new_tx.budget_id, new_tx.amount, new_tx.id, correlation_id)
            except AggregateSyncError as e:
                sync_error = sync_error or e

        if sync_error is not None:
            raise sync_error

    async def on_transaction_deleted(
        self,
        tx: Transaction,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Called before the record is removed from the store."""
        if tx.contributes_to_budget:
            await self._adjust(
                tx.budget_id,
                -tx.amount,
                tx.id,
                correlation_id,
                excluded_transaction_id=tx.id,
            )

    async def on_budget_deleted(
        self,
        budget: Budget,
        correlation_id: Optional[UUID] = None,
    ) -> int:
        """Clear the budget link on every transaction pointing at the budget."""
        detached = await self._store.detach_transactions(budget.id)
        self.pending_budget_ids.discard(budget.id)
        logger.info(
            "transactions_detached",
            budget_id=str(budget.id),
            count=detached,
            correlation_id=str(correlation_id) if correlation_id else None,
        )
        return detached

    # -------------------------------------------------------------------------
    # Repair
    # -------------------------------------------------------------------------

    async def recompute_spent(
        self,
        budget_id: UUID,
        excluded_transaction_id: Optional[UUID] = None,
    ) -> Decimal:
        """Sum the live expense transactions linked to the budget."""
        if excluded_transaction_id is None:
            return await self._store.sum_linked_expenses(budget_id)
        linked = await self._store.list_transactions(budget_id=budget_id)
        return sum(
            (
                tx.amount for tx in linked
                if tx.contributes_to_budget and tx.id != excluded_transaction_id
            ),
            Decimal("0"),
        )

    async def reconcile_budget(
        self,
        budget_id: UUID,
        correlation_id: Optional[UUID] = None,
        excluded_transaction_id: Optional[UUID] = None,
    ) -> BudgetReconciliation:
        """
        Recompute a budget's spent total from first principles and store it.

        Raises NotFoundError if the budget does not exist, StorageError if
        it cannot be read or written (SpentConflictError when concurrent
        adjustments kept winning the race).
        """
        async with self.guard(budget_id):
            return await self._reconcile(budget_id, correlation_id, excluded_transaction_id)

    async def _reconcile(
        self,
        budget_id: UUID,
        correlation_id: Optional[UUID],
        excluded_transaction_id: Optional[UUID],
    ) -> BudgetReconciliation:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=self._wait,
            retry=retry_if_exception_type(SpentConflictError),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await self._reconcile_once(
                    budget_id, correlation_id, excluded_transaction_id
                )

    async def _reconcile_once(
        self,
        budget_id: UUID,
        correlation_id: Optional[UUID],
        excluded_transaction_id: Optional[UUID],
    ) -> BudgetReconciliation:
        # spent is read BEFORE the sum so a concurrent increment fails the swap
        budget = await self._store.get_budget(budget_id)
        if budget is None:
            raise NotFoundError(f"Budget not found: {budget_id}")

        recomputed = await self.recompute_spent(budget_id, excluded_transaction_id)
        result = BudgetReconciliation(
            budget_id=budget_id,
            previous_spent=budget.spent,
            recomputed_spent=recomputed,
        )

        if result.has_drift:
            await self._store.set_budget_spent(budget_id, recomputed, expected=budget.spent)
            result.repaired = True
            await self._audit.log_drift_repaired(
                budget_id=budget_id,
                previous_spent=budget.spent,
                recomputed_spent=recomputed,
                correlation_id=correlation_id,
            )

        self.pending_budget_ids.discard(budget_id)
        return result

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _increment(self, budget_id: UUID, delta: Decimal) -> Budget:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=self._wait,
            retry=retry_if_not_exception_type(NotFoundError),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await self._store.increment_budget_spent(budget_id, delta)

    async def _adjust(
        self,
        budget_id: UUID,
        delta: Decimal,
        transaction_id: UUID,
        correlation_id: Optional[UUID],
        excluded_transaction_id: Optional[UUID] = None,
    ) -> bool:
        """Returns True when the budget was recomputed instead of adjusted."""
        try:
            budget = await self._increment(budget_id, delta)
        except NotFoundError:
            # Weak link: the budget may be mid-deletion
            logger.warning(
                "spent_adjustment_skipped",
                budget_id=str(budget_id),
                transaction_id=str(transaction_id),
                reason="budget_not_found",
            )
            return False
        except StorageError as e:
            logger.error(
                "spent_adjustment_failed",
                budget_id=str(budget_id),
                transaction_id=str(transaction_id),
                delta=str(delta),
                attempts=self._max_attempts,
                error=str(e),
            )
            return await self._repair_after_failure(
                budget_id, e, correlation_id, excluded_transaction_id
            )

        await self._audit.log_spent_adjusted(
            budget_id=budget_id,
            delta=delta,
            new_spent=budget.spent,
            transaction_id=transaction_id,
            correlation_id=correlation_id,
        )
        return False

    async def _repair_after_failure(
        self,
        budget_id: UUID,
        cause: Exception,
        correlation_id: Optional[UUID],
        excluded_transaction_id: Optional[UUID],
    ) -> bool:
        # The caller may already hold this budget's guard
        try:
            await self._reconcile(budget_id, correlation_id, excluded_transaction_id)
        except NotFoundError:
            return False
        except StorageError as e:
            self.pending_budget_ids.add(budget_id)
            await self._audit.log_aggregate_sync_failed(
                budget_id=budget_id,
                error_message=f"{cause}; repair failed: {e}",
                correlation_id=correlation_id,
            )
            raise AggregateSyncError(budget_id) from e
        return True
