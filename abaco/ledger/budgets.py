"""
Budget Management

CRUD for budgets. The `spent` total is never written here: it starts at
zero and only the aggregate maintainer moves it afterwards.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import ValidationError

from abaco.audit.logger import AuditLogger
from abaco.ledger.access import authorize, ensure_admin
from abaco.ledger.aggregates import BudgetAggregateMaintainer
from abaco.ledger.errors import (
    BudgetNotFoundError,
    InvalidPeriodError,
    ValidationFailedError,
)
from abaco.models.ledger import (
    Actor,
    Budget,
    BudgetCategory,
    BudgetCreate,
    BudgetPeriod,
    BudgetUpdate,
    TransactionKind,
    utc_now,
)
from abaco.models.reports import BudgetDetail
from abaco.services.storage import LedgerStoreInterface


def _check_period(start_date: Optional[datetime], end_date: Optional[datetime]) -> None:
    if start_date is not None and end_date is not None and end_date <= start_date:
        raise InvalidPeriodError(
            "Budget end date must be after start date",
            details={
                "start_date": start_date.isoformat(),
                "end_date": end_date.isoformat(),
            },
        )


class BudgetManager:
    """Creates, edits, deletes and reads budgets on behalf of an actor."""

    def __init__(
        self,
        store: LedgerStoreInterface,
        maintainer: BudgetAggregateMaintainer,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._maintainer = maintainer
        self._audit = audit_logger or AuditLogger()

    async def _get_authorized(
        self,
        actor: Actor,
        budget_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> Budget:
        budget = await self._store.get_budget(budget_id)
        if budget is None:
            raise BudgetNotFoundError(budget_id)
        await authorize(actor, budget.account_id, "budget", budget.id, self._audit, correlation_id)
        return budget

    async def create_budget(
        self,
        actor: Actor,
        payload: BudgetCreate,
        correlation_id: Optional[UUID] = None,
    ) -> Budget:
        _check_period(payload.start_date, payload.end_date)

        try:
            budget = Budget(account_id=actor.account_id, **payload.model_dump())
        except ValidationError as e:
            raise ValidationFailedError.from_pydantic(e)

        saved = await self._store.save_budget(budget)
        await self._audit.log_budget_created(
            budget_id=saved.id,
            name=saved.name,
            amount=saved.amount,
            actor_id=actor.account_id,
            correlation_id=correlation_id,
        )
        return saved

    async def update_budget(
        self,
        actor: Actor,
        budget_id: UUID,
        payload: BudgetUpdate,
        correlation_id: Optional[UUID] = None,
    ) -> Budget:
        """
        Apply a partial update. The period is re-checked on the merged
        start/end dates. The stored `spent` is kept whatever the payload says.
        """
        current = await self._get_authorized(actor, budget_id, correlation_id)
        changes = payload.model_dump(exclude_unset=True)

        _check_period(
            changes.get("start_date", current.start_date),
            changes.get("end_date", current.end_date),
        )

        merged = current.model_dump(exclude={"remaining", "percentage_used"})
        merged.update(changes)
        merged["updated_at"] = utc_now()

        try:
            updated = Budget.model_validate(merged)
        except ValidationError as e:
            raise ValidationFailedError.from_pydantic(e)

        stored = await self._store.update_budget(updated)
        await self._audit.log_budget_updated(
            budget_id=stored.id,
            changed_fields=sorted(changes),
            actor_id=actor.account_id,
            correlation_id=correlation_id,
        )
        return stored

    async def delete_budget(
        self,
        actor: Actor,
        budget_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> Budget:
        """Detach the budget's transactions, then remove the budget."""
        budget = await self._get_authorized(actor, budget_id, correlation_id)

        detached = await self._maintainer.on_budget_deleted(budget, correlation_id)
        await self._store.delete_budget(budget.id)

        await self._audit.log_budget_deleted(
            budget_id=budget.id,
            detached_count=detached,
            actor_id=actor.account_id,
            correlation_id=correlation_id,
        )
        return budget

    async def get_budget(self, actor: Actor, budget_id: UUID) -> BudgetDetail:
        """The budget together with its linked expense transactions, newest first."""
        budget = await self._get_authorized(actor, budget_id)
        transactions = await self._store.list_transactions(
            budget_id=budget.id,
            kind=TransactionKind.EXPENSE,
        )
        return BudgetDetail(
            budget=budget,
            transactions=transactions,
            transaction_count=len(transactions),
        )

    async def list_budgets(
        self,
        actor: Actor,
        category: Optional[BudgetCategory] = None,
        is_active: Optional[bool] = None,
        period: Optional[BudgetPeriod] = None,
        account_id: Optional[UUID] = None,
    ) -> list[Budget]:
        """
        The actor's budgets, newest first.

        Admins may pass `account_id` to list another account's budgets.
        """
        owner_id = actor.account_id
        if account_id is not None and account_id != actor.account_id:
            ensure_admin(actor)
            owner_id = account_id

        return await self._store.list_budgets(
            account_id=owner_id,
            category=category,
            is_active=is_active,
            period=period,
        )
