"""
Ledger Error Taxonomy

Every failure a ledger operation can report to its caller is one of these.
Each carries a stable `code` and the HTTP status the boundary answers with.

Storage failures are NOT part of this taxonomy; they surface as
`abaco.services.storage.StorageError` and the boundary maps them separately.
"""

from typing import Optional
from uuid import UUID

from pydantic import ValidationError


class LedgerError(Exception):
    """Base class for ledger failures."""

    code: str = "LedgerError"
    status_code: int = 400

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ResourceNotFoundError(LedgerError):
    code = "NotFound"
    status_code = 404

    resource = "Resource"

    def __init__(self, resource_id: UUID, message: Optional[str] = None):
        super().__init__(message or f"{self.resource} not found: {resource_id}")
        self.resource_id = resource_id


class BudgetNotFoundError(ResourceNotFoundError):
    resource = "Budget"


class TransactionNotFoundError(ResourceNotFoundError):
    resource = "Transaction"


class AccountNotFoundError(ResourceNotFoundError):
    resource = "Account"


class UnauthorizedError(LedgerError):
    code = "Unauthorized"
    status_code = 403


class BudgetInactiveError(LedgerError):
    code = "BudgetInactive"
    status_code = 400


class DateOutOfRangeError(LedgerError):
    code = "DateOutOfRange"
    status_code = 400


class InvalidPeriodError(LedgerError):
    code = "InvalidPeriod"
    status_code = 400


class ValidationFailedError(LedgerError):
    code = "ValidationFailed"
    status_code = 400

    @classmethod
    def from_pydantic(cls, error: ValidationError) -> "ValidationFailedError":
        """Flatten a pydantic ValidationError into one message plus field details."""
        issues = [
            {
                "field": ".".join(str(part) for part in item["loc"]) or "__root__",
                "message": item["msg"],
            }
            for item in error.errors()
        ]
        message = "; ".join(
            f"{issue['field']}: {issue['message']}" for issue in issues
        )
        return cls(message or "Validation failed", details={"issues": issues})


class InvalidOperationError(LedgerError):
    code = "InvalidOperation"
    status_code = 400


class AggregateSyncError(LedgerError):
    """
    A budget's spent total could not be brought in line with its transactions.

    The transaction change itself is persisted; the budget is queued for the
    reconciliation job.
    """
    code = "AggregateSyncFailed"
    status_code = 500

    def __init__(self, budget_id: UUID, message: Optional[str] = None):
        super().__init__(
            message or f"Budget spent total out of sync: {budget_id}",
            details={"budget_id": str(budget_id)},
        )
        self.budget_id = budget_id
