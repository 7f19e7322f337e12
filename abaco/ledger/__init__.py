"""
Ledger package.

Managers live in their own modules (`abaco.ledger.transactions`,
`abaco.ledger.budgets`, ...). Only the error taxonomy is re-exported here.
"""

from abaco.ledger.errors import (
    AccountNotFoundError,
    AggregateSyncError,
    BudgetInactiveError,
    BudgetNotFoundError,
    DateOutOfRangeError,
    InvalidOperationError,
    InvalidPeriodError,
    LedgerError,
    ResourceNotFoundError,
    TransactionNotFoundError,
    UnauthorizedError,
    ValidationFailedError,
)

__all__ = [
    "AccountNotFoundError",
    "AggregateSyncError",
    "BudgetInactiveError",
    "BudgetNotFoundError",
    "DateOutOfRangeError",
    "InvalidOperationError",
    "InvalidPeriodError",
    "LedgerError",
    "ResourceNotFoundError",
    "TransactionNotFoundError",
    "UnauthorizedError",
    "ValidationFailedError",
]
