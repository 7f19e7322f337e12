"""
In-Memory Storage Implementation

Used by the test-suite and for local development. It honours the same
contract as the persistent backends, including the atomic spent counter:

- Every table mutation happens under one store lock.
- Spent adjustments additionally hold a lock scoped to the single budget,
  so concurrent adjustments to one budget serialise while adjustments to
  different budgets do not wait on each other's read-modify-write.

Locks are `threading` locks and no `await` happens while one is held, so the
store is safe both for coroutines on one loop and for worker threads.
Lock order is always budget lock -> store lock.

Records are copied on the way in and out; callers never hold a reference
to stored state.
"""

import threading
from collections import defaultdict
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from abaco.models.ledger import (
    Account,
    AccountRole,
    Budget,
    BudgetCategory,
    BudgetPeriod,
    Transaction,
    TransactionCategory,
    TransactionKind,
    utc_now,
)
from abaco.models.audit import AuditEvent
from abaco.services.storage.filters import (
    filter_accounts,
    filter_budgets,
    filter_transactions,
)
from abaco.services.storage.interface import (
    AuditStorageInterface,
    DuplicateError,
    LedgerStoreInterface,
    NotFoundError,
    SpentConflictError,
)


class InMemoryLedgerStore(LedgerStoreInterface):
    """Dictionary-backed ledger store."""

    def __init__(self):
        self._accounts: dict[UUID, Account] = {}
        self._budgets: dict[UUID, Budget] = {}
        self._transactions: dict[UUID, Transaction] = {}
        self._lock = threading.Lock()
        self._budget_locks: defaultdict[UUID, threading.Lock] = defaultdict(threading.Lock)
        self._budget_locks_guard = threading.Lock()

    def _budget_lock(self, budget_id: UUID) -> threading.Lock:
        with self._budget_locks_guard:
            return self._budget_locks[budget_id]

    # -------------------------------------------------------------------------
    # Accounts
    # -------------------------------------------------------------------------

    async def save_account(self, account: Account) -> Account:
        with self._lock:
            if account.id in self._accounts:
                raise DuplicateError(f"Account already exists: {account.id}")
            self._accounts[account.id] = account.model_copy(deep=True)
        return account.model_copy(deep=True)

    async def get_account(self, account_id: UUID) -> Optional[Account]:
        with self._lock:
            account = self._accounts.get(account_id)
            return account.model_copy(deep=True) if account else None

    async def list_accounts(
        self,
        role: Optional[AccountRole] = None,
        is_active: Optional[bool] = None,
    ) -> list[Account]:
        with self._lock:
            snapshot = [a.model_copy(deep=True) for a in self._accounts.values()]
        return filter_accounts(snapshot, role=role, is_active=is_active)

    async def update_account(self, account: Account) -> Account:
        with self._lock:
            if account.id not in self._accounts:
                raise NotFoundError(f"Account not found: {account.id}")
            self._accounts[account.id] = account.model_copy(deep=True)
        return account.model_copy(deep=True)

    async def delete_account(self, account_id: UUID) -> bool:
        with self._lock:
            return self._accounts.pop(account_id, None) is not None

    # -------------------------------------------------------------------------
    # Budgets
    # -------------------------------------------------------------------------

    async def save_budget(self, budget: Budget) -> Budget:
        with self._lock:
            if budget.id in self._budgets:
                raise DuplicateError(f"Budget already exists: {budget.id}")
            self._budgets[budget.id] = budget.model_copy(deep=True)
        return budget.model_copy(deep=True)

    async def get_budget(self, budget_id: UUID) -> Optional[Budget]:
        with self._lock:
            budget = self._budgets.get(budget_id)
            return budget.model_copy(deep=True) if budget else None

    async def list_budgets(
        self,
        account_id: Optional[UUID] = None,
        category: Optional[BudgetCategory] = None,
        is_active: Optional[bool] = None,
        period: Optional[BudgetPeriod] = None,
    ) -> list[Budget]:
        with self._lock:
            snapshot = [b.model_copy(deep=True) for b in self._budgets.values()]
        return filter_budgets(
            snapshot,
            account_id=account_id,
            category=category,
            is_active=is_active,
            period=period,
        )

    async def update_budget(self, budget: Budget) -> Budget:
        with self._lock:
            current = self._budgets.get(budget.id)
            if current is None:
                raise NotFoundError(f"Budget not found: {budget.id}")
            stored = budget.model_copy(update={"spent": current.spent}, deep=True)
            self._budgets[budget.id] = stored
            return stored.model_copy(deep=True)

    async def delete_budget(self, budget_id: UUID) -> bool:
        with self._lock:
            return self._budgets.pop(budget_id, None) is not None

    async def increment_budget_spent(self, budget_id: UUID, delta: Decimal) -> Budget:
        with self._budget_lock(budget_id):
            with self._lock:
                current = self._budgets.get(budget_id)
                if current is None:
                    raise NotFoundError(f"Budget not found: {budget_id}")
                stored = current.model_copy(
                    update={"spent": current.spent + delta, "updated_at": utc_now()}
                )
                self._budgets[budget_id] = stored
                return stored.model_copy(deep=True)

    async def set_budget_spent(
        self,
        budget_id: UUID,
        spent: Decimal,
        expected: Optional[Decimal] = None,
    ) -> Budget:
        with self._budget_lock(budget_id):
            with self._lock:
                current = self._budgets.get(budget_id)
                if current is None:
                    raise NotFoundError(f"Budget not found: {budget_id}")
                if expected is not None and current.spent != expected:
                    raise SpentConflictError(
                        f"Budget {budget_id} spent is {current.spent}, expected {expected}"
                    )
                stored = current.model_copy(
                    update={"spent": spent, "updated_at": utc_now()}
                )
                self._budgets[budget_id] = stored
                return stored.model_copy(deep=True)

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    async def save_transaction(self, transaction: Transaction) -> Transaction:
        with self._lock:
            if transaction.id in self._transactions:
                raise DuplicateError(f"Transaction already exists: {transaction.id}")
            self._transactions[transaction.id] = transaction.model_copy(deep=True)
        return transaction.model_copy(deep=True)

    async def get_transaction(self, transaction_id: UUID) -> Optional[Transaction]:
        with self._lock:
            tx = self._transactions.get(transaction_id)
            return tx.model_copy(deep=True) if tx else None

    async def update_transaction(self, transaction: Transaction) -> Transaction:
        with self._lock:
            if transaction.id not in self._transactions:
                raise NotFoundError(f"Transaction not found: {transaction.id}")
            self._transactions[transaction.id] = transaction.model_copy(deep=True)
        return transaction.model_copy(deep=True)

    async def delete_transaction(self, transaction_id: UUID) -> bool:
        with self._lock:
            return self._transactions.pop(transaction_id, None) is not None

    async def list_transactions(
        self,
        account_id: Optional[UUID] = None,
        kind: Optional[TransactionKind] = None,
        category: Optional[TransactionCategory] = None,
        budget_id: Optional[UUID] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> list[Transaction]:
        with self._lock:
            snapshot = [t.model_copy(deep=True) for t in self._transactions.values()]
        return filter_transactions(
            snapshot,
            account_id=account_id,
            kind=kind,
            category=category,
            budget_id=budget_id,
            date_from=date_from,
            date_to=date_to,
            limit=limit,
        )

    async def detach_transactions(self, budget_id: UUID) -> int:
        detached = 0
        now = utc_now()
        with self._lock:
            for tx_id, tx in self._transactions.items():
                if tx.budget_id == budget_id:
                    self._transactions[tx_id] = tx.model_copy(
                        update={"budget_id": None, "updated_at": now}
                    )
                    detached += 1
        return detached


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only list of audit events."""

    def __init__(self):
        self._events: list[AuditEvent] = []
        self._lock = threading.Lock()

    async def append_event(self, event: AuditEvent) -> bool:
        with self._lock:
            self._events.append(event.model_copy(deep=True))
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        with self._lock:
            events = [e for e in self._events if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        with self._lock:
            events = [
                e for e in self._events
                if e.entity_type == entity_type and e.entity_id == entity_id
            ]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        with self._lock:
            events = list(self._events)
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
