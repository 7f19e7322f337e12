"""
Reconciliation Job

The correctness backstop for budget totals. Recomputes every budget's
`spent` from its live linked expense transactions and repairs any drift,
whatever caused it (a failed adjustment, a writer in another process, a
manual edit of the sheet).

Budgets the maintainer could not repair inline (`pending_budget_ids`) are
processed first.
"""

import asyncio
from typing import Optional
from uuid import UUID

import structlog

from abaco.audit.logger import AuditLogger, create_correlation_id
from abaco.config import get_settings
from abaco.ledger.aggregates import BudgetAggregateMaintainer
from abaco.models.ledger import utc_now
from abaco.models.reports import ReconciliationReport
from abaco.services.storage import LedgerStoreInterface, NotFoundError, StorageError


logger = structlog.get_logger(__name__)


class ReconciliationJob:
    """Recomputes and repairs budget totals, once or on an interval."""

    def __init__(
        self,
        store: LedgerStoreInterface,
        maintainer: BudgetAggregateMaintainer,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._maintainer = maintainer
        self._audit = audit_logger or AuditLogger()

    async def run_once(self, correlation_id: Optional[UUID] = None) -> ReconciliationReport:
        """
        Reconcile every budget in the store.

        A budget that fails is recorded in the report and queued again;
        the run carries on with the rest.
        """
        correlation_id = correlation_id or create_correlation_id()
        report = ReconciliationReport()

        budget_ids = [b.id for b in await self._store.list_budgets()]
        known = set(budget_ids)

        # Budgets deleted since they were queued need no repair
        for stale in self._maintainer.pending_budget_ids - known:
            self._maintainer.pending_budget_ids.discard(stale)

        pending = [b for b in budget_ids if b in self._maintainer.pending_budget_ids]
        ordered = pending + [b for b in budget_ids if b not in self._maintainer.pending_budget_ids]

        for budget_id in ordered:
            try:
                result = await self._maintainer.reconcile_budget(budget_id, correlation_id)
            except NotFoundError:
                continue
            except StorageError as e:
                logger.error(
                    "budget_reconciliation_failed",
                    budget_id=str(budget_id),
                    error=str(e),
                )
                self._maintainer.pending_budget_ids.add(budget_id)
                report.budgets_checked += 1
                report.failed.append(budget_id)
                continue

            report.budgets_checked += 1
            if result.repaired:
                report.repaired.append(result)

        report.finished_at = utc_now()
        await self._audit.log_reconciliation_completed(
            budgets_checked=report.budgets_checked,
            repaired=len(report.repaired),
            failed=len(report.failed),
            correlation_id=correlation_id,
        )
        return report

    async def run_periodically(
        self,
        interval_seconds: Optional[float] = None,
        stop_event: Optional[asyncio.Event] = None,
    ) -> int:
        """
        Run until `stop_event` is set. Returns the number of runs.

        A run that fails as a whole (e.g. the budget list cannot be read)
        is logged and retried on the next tick.
        """
        interval = interval_seconds or get_settings().ledger.reconciliation_interval_seconds
        stop_event = stop_event or asyncio.Event()
        runs = 0

        while not stop_event.is_set():
            try:
                report = await self.run_once()
                logger.info(
                    "reconciliation_run_finished",
                    budgets_checked=report.budgets_checked,
                    repaired=len(report.repaired),
                    failed=len(report.failed),
                )
            except StorageError as e:
                logger.error("reconciliation_run_failed", error=str(e))
            runs += 1

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

        return runs
