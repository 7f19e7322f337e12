"""
Budget Linkage Validation

DESIGN DECISION: A transaction may only be linked to a budget that passes
the linkage rules. The checks run in a fixed order and the first failure
wins:

1. NotFound        - the budget does not exist
2. Unauthorized    - the transaction owner does not own the budget
3. BudgetInactive  - the budget has been deactivated
4. DateOutOfRange  - the transaction date is outside [start_date, end_date]

All checks run against the Draft transaction, before anything is written.

IMPORTANT: Updates only run checks 1 and 2. A transaction moved to an
inactive budget, or to one whose window does not contain its date, is
accepted. This mirrors how existing ledgers behave and is kept on purpose
until a policy decision says otherwise.
"""

from datetime import datetime
from uuid import UUID

from abaco.ledger.errors import (
    BudgetInactiveError,
    BudgetNotFoundError,
    DateOutOfRangeError,
    UnauthorizedError,
)
from abaco.models.ledger import Budget
from abaco.services.storage import LedgerStoreInterface


class BudgetLinkageValidator:
    """Validates that a transaction may reference a budget."""

    def __init__(self, store: LedgerStoreInterface):
        self._store = store

    async def _load_owned(self, owner_id: UUID, budget_id: UUID) -> Budget:
        budget = await self._store.get_budget(budget_id)
        if budget is None:
            raise BudgetNotFoundError(budget_id)
        if budget.account_id != owner_id:
            raise UnauthorizedError("Not authorized to use this budget")
        return budget

    async def validate_for_create(
        self,
        owner_id: UUID,
        budget_id: UUID,
        when: datetime,
    ) -> Budget:
        """
        Full linkage check for a new transaction.

        Returns the budget on success.
        """
        budget = await self._load_owned(owner_id, budget_id)

        if not budget.is_active:
            raise BudgetInactiveError(f"Budget is not active: {budget.name}")

        if not budget.covers(when):
            raise DateOutOfRangeError(
                f"Transaction date {when.date().isoformat()} is outside the budget "
                f"period {budget.start_date.date().isoformat()} to "
                f"{budget.end_date.date().isoformat()}",
                details={
                    "date": when.isoformat(),
                    "start_date": budget.start_date.isoformat(),
                    "end_date": budget.end_date.isoformat(),
                },
            )

        return budget

    async def validate_for_update(self, owner_id: UUID, budget_id: UUID) -> Budget:
        """Existence and ownership only. See module docstring."""
        return await self._load_owned(owner_id, budget_id)
