"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap Google Sheets for a real database later
2. Use in-memory storage for testing
3. Keep ledger logic decoupled from storage implementation

The interface is intentionally simple - we're not building a full ORM.
Just the operations the ledger needs: three collections (accounts, budgets,
transactions) and one atomic counter primitive on budgets.

CRITICAL: A budget's `spent` field is only ever written through
`increment_budget_spent` (normal path) or `set_budget_spent` (repair path).
`update_budget` must leave the stored `spent` untouched so that a stale
read-merge-write of other budget fields cannot overwrite a concurrent
increment.
"""

from abc import ABC, abstractmethod
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
)
from abaco.models.audit import AuditEvent


class LedgerStoreInterface(ABC):
    """
    Abstract interface for ledger storage operations.

    Any storage implementation (Google Sheets, PostgreSQL, etc.)
    must implement these methods.
    """

    # -------------------------------------------------------------------------
    # Accounts
    # -------------------------------------------------------------------------

    @abstractmethod
    async def save_account(self, account: Account) -> Account:
        """
        Insert an account.

        Raises:
            DuplicateError: If an account with the same ID exists
        """
        pass

    @abstractmethod
    async def get_account(self, account_id: UUID) -> Optional[Account]:
        """Retrieve an account by ID, or None."""
        pass

    @abstractmethod
    async def list_accounts(
        self,
        role: Optional[AccountRole] = None,
        is_active: Optional[bool] = None,
    ) -> list[Account]:
        """List accounts, optionally filtered by role and active flag."""
        pass

    @abstractmethod
    async def update_account(self, account: Account) -> Account:
        """
        Replace an existing account.

        Raises:
            NotFoundError: If the account doesn't exist
        """
        pass

    @abstractmethod
    async def delete_account(self, account_id: UUID) -> bool:
        """Delete an account. Returns False when it did not exist."""
        pass

    # -------------------------------------------------------------------------
    # Budgets
    # -------------------------------------------------------------------------

    @abstractmethod
    async def save_budget(self, budget: Budget) -> Budget:
        """
        Insert a budget.

        Raises:
            DuplicateError: If a budget with the same ID exists
        """
        pass

    @abstractmethod
    async def get_budget(self, budget_id: UUID) -> Optional[Budget]:
        """Retrieve a budget by ID, or None."""
        pass

    @abstractmethod
    async def list_budgets(
        self,
        account_id: Optional[UUID] = None,
        category: Optional[BudgetCategory] = None,
        is_active: Optional[bool] = None,
        period: Optional[BudgetPeriod] = None,
    ) -> list[Budget]:
        """
        List budgets with optional filters.

        Returns:
            Matching budgets, newest first (by created_at)
        """
        pass

    @abstractmethod
    async def update_budget(self, budget: Budget) -> Budget:
        """
        Replace every field of a budget except `spent`.

        Returns:
            The stored budget, carrying the current `spent`

        Raises:
            NotFoundError: If the budget doesn't exist
        """
        pass

    @abstractmethod
    async def delete_budget(self, budget_id: UUID) -> bool:
        """Delete a budget. Returns False when it did not exist."""
        pass

    @abstractmethod
    async def increment_budget_spent(self, budget_id: UUID, delta: Decimal) -> Budget:
        """
        Atomically add `delta` (may be negative) to a budget's spent total.

        Concurrent calls for the same budget must serialise; the update is a
        single read-modify-write against the backing store, never a write of a
        value computed from an earlier read.

        Returns:
            The budget after the adjustment

        Raises:
            NotFoundError: If the budget doesn't exist
            StorageError: If the adjustment could not be applied
        """
        pass

    @abstractmethod
    async def set_budget_spent(
        self,
        budget_id: UUID,
        spent: Decimal,
        expected: Optional[Decimal] = None,
    ) -> Budget:
        """
        Overwrite a budget's spent total. Reserved for reconciliation.

        With `expected` the write is a compare-and-swap: it happens only if
        the stored total still equals `expected`, checked under the same
        serialisation as `increment_budget_spent`.

        Raises:
            NotFoundError: If the budget doesn't exist
            SpentConflictError: If the stored total is no longer `expected`
        """
        pass

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    @abstractmethod
    async def save_transaction(self, transaction: Transaction) -> Transaction:
        """
        Insert a transaction.

        Raises:
            DuplicateError: If a transaction with the same ID exists
        """
        pass

    @abstractmethod
    async def get_transaction(self, transaction_id: UUID) -> Optional[Transaction]:
        """Retrieve a transaction by ID, or None."""
        pass

    @abstractmethod
    async def update_transaction(self, transaction: Transaction) -> Transaction:
        """
        Replace an existing transaction.

        Raises:
            NotFoundError: If the transaction doesn't exist
        """
        pass

    @abstractmethod
    async def delete_transaction(self, transaction_id: UUID) -> bool:
        """Delete a transaction. Returns False when it did not exist."""
        pass

    @abstractmethod
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
        """
        List transactions with optional filters.

        Args:
            account_id: Owning account
            kind: income or expense
            category: Transaction category
            budget_id: Linked budget
            date_from: Inclusive lower bound on the transaction date
            date_to: Inclusive upper bound on the transaction date
            limit: Maximum number of results

        Returns:
            Matching transactions, newest first (by date)
        """
        pass

    @abstractmethod
    async def detach_transactions(self, budget_id: UUID) -> int:
        """
        Clear the budget reference on every transaction pointing at a budget.

        Amounts and kinds are left untouched.

        Returns:
            Number of transactions detached
        """
        pass

    async def sum_linked_expenses(self, budget_id: UUID) -> Decimal:
        """
        Sum the amounts of expense transactions currently linked to a budget.

        This is the first-principles value of the budget's spent total.
        Backends with server-side aggregation may override it.
        """
        linked = await self.list_transactions(
            budget_id=budget_id,
            kind=TransactionKind.EXPENSE,
        )
        return sum((tx.amount for tx in linked), Decimal("0"))


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (e.g., one request).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a specific entity.

        Returns:
            List of events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class StorageConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass


class SpentConflictError(StorageError):
    """A budget's spent total changed since it was read."""
    pass
