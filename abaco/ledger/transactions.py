"""
Transaction Lifecycle Manager

Drives a transaction through Draft -> Persisted -> (Updated) -> Deleted and
calls the aggregate maintainer after each successful store mutation.

FLOW (create):
1. Resolve the owner (the actor, or another account when an admin acts on
   its behalf)
2. Build the Draft and validate it as a whole (kind/category consistency)
3. Run the budget linkage checks against the Draft
4. Persist
5. Apply the budget effect

Nothing is written before step 4, so a rejected transaction never touches
a budget. Steps 4 and 5 run under the maintainer's guard for the budget,
so a concurrent repair never sees the record stored but not yet counted.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import ValidationError

from abaco.audit.logger import AuditLogger
from abaco.ledger.access import authorize, ensure_admin
from abaco.ledger.aggregates import BudgetAggregateMaintainer
from abaco.ledger.errors import (
    AccountNotFoundError,
    AggregateSyncError,
    LedgerError,
    TransactionNotFoundError,
    ValidationFailedError,
)
from abaco.models.audit import AuditEventType
from abaco.models.ledger import (
    Actor,
    Transaction,
    TransactionCategory,
    TransactionCreate,
    TransactionKind,
    TransactionUpdate,
    utc_now,
)
from abaco.services.storage import LedgerStoreInterface
from abaco.validation.linkage import BudgetLinkageValidator


class TransactionLifecycleManager:
    """
    Creates, edits and deletes transactions while keeping budgets in sync.

    Side effects are synchronous: when a method returns, the affected
    budget totals already reflect the change.
    """

    def __init__(
        self,
        store: LedgerStoreInterface,
        maintainer: BudgetAggregateMaintainer,
        audit_logger: Optional[AuditLogger] = None,
        validator: Optional[BudgetLinkageValidator] = None,
    ):
        self._store = store
        self._maintainer = maintainer
        self._audit = audit_logger or AuditLogger()
        self._validator = validator or BudgetLinkageValidator(store)

    async def _get_authorized(
        self,
        actor: Actor,
        transaction_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        tx = await self._store.get_transaction(transaction_id)
        if tx is None:
            raise TransactionNotFoundError(transaction_id)
        await authorize(
            actor, tx.account_id, "transaction", tx.id, self._audit, correlation_id
        )
        return tx

    async def create_transaction(
        self,
        actor: Actor,
        payload: TransactionCreate,
        on_behalf_of: Optional[UUID] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """
        Record a new transaction.

        Raises:
            UnauthorizedError: non-admin acting for another account, or the
                owner does not own the referenced budget
            AccountNotFoundError: the on-behalf-of account does not exist
            BudgetNotFoundError / BudgetInactiveError / DateOutOfRangeError:
                budget linkage rejected
            ValidationFailedError: category does not match kind
            AggregateSyncError: the transaction is stored but its budget
                total could not be updated
        """
        owner_id = actor.account_id
        if on_behalf_of is not None and on_behalf_of != actor.account_id:
            ensure_admin(actor)
            if await self._store.get_account(on_behalf_of) is None:
                raise AccountNotFoundError(on_behalf_of)
            owner_id = on_behalf_of

        data = payload.model_dump()
        if data.get("date") is None:
            data["date"] = utc_now()

        try:
            draft = Transaction(account_id=owner_id, **data)
        except ValidationError as e:
            raise ValidationFailedError.from_pydantic(e)

        if draft.budget_id is not None:
            try:
                await self._validator.validate_for_create(
                    owner_id, draft.budget_id, draft.date
                )
            except LedgerError as e:
                await self._audit.log_linkage_rejected(
                    budget_id=draft.budget_id,
                    error_code=e.code,
                    reason=e.message,
                    actor_id=actor.account_id,
                    correlation_id=correlation_id,
                )
                raise

        async with self._maintainer.guard(draft.budget_id):
            saved = await self._store.save_transaction(draft)
            await self._audit.log_transaction_changed(
                AuditEventType.TRANSACTION_CREATED,
                saved,
                actor_id=actor.account_id,
                correlation_id=correlation_id,
            )

            await self._maintainer.on_transaction_created(saved, correlation_id)
        return saved

    async def update_transaction(
        self,
        actor: Actor,
        transaction_id: UUID,
        payload: TransactionUpdate,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """
        Apply a partial update.

        A new budget must exist and belong to the transaction owner. Its
        active flag and date window are NOT checked (see
        abaco.validation.linkage).
        """
        current = await self._get_authorized(actor, transaction_id, correlation_id)
        changes = payload.model_dump(exclude_unset=True)

        merged = current.model_dump()
        merged.update(changes)
        merged["updated_at"] = utc_now()

        try:
            updated = Transaction.model_validate(merged)
        except ValidationError as e:
            raise ValidationFailedError.from_pydantic(e)

        if updated.budget_id is not None and updated.budget_id != current.budget_id:
            await self._validator.validate_for_update(current.account_id, updated.budget_id)

        async with self._maintainer.guard(current.budget_id, updated.budget_id):
            saved = await self._store.update_transaction(updated)
            await self._audit.log_transaction_changed(
                AuditEventType.TRANSACTION_UPDATED,
                saved,
                actor_id=actor.account_id,
                correlation_id=correlation_id,
            )

            await self._maintainer.on_transaction_updated(current, saved, correlation_id)
        return saved

    async def delete_transaction(
        self,
        actor: Actor,
        transaction_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """
        Retract the budget effect, then remove the record.

        The record is removed even if the budget total could not be
        updated; in that case the budget is queued for reconciliation and
        AggregateSyncError is raised afterwards.
        """
        tx = await self._get_authorized(actor, transaction_id, correlation_id)

        sync_error: Optional[AggregateSyncError] = None
        async with self._maintainer.guard(tx.budget_id):
            try:
                await self._maintainer.on_transaction_deleted(tx, correlation_id)
            except AggregateSyncError as e:
                sync_error = e

            await self._store.delete_transaction(tx.id)
        await self._audit.log_transaction_changed(
            AuditEventType.TRANSACTION_DELETED,
            tx,
            actor_id=actor.account_id,
            correlation_id=correlation_id,
        )

        if sync_error is not None:
            raise sync_error
        return tx

    async def get_transaction(
        self,
        actor: Actor,
        transaction_id: UUID,
    ) -> Transaction:
        return await self._get_authorized(actor, transaction_id)

    async def list_transactions(
        self,
        actor: Actor,
        kind: Optional[TransactionKind] = None,
        category: Optional[TransactionCategory] = None,
        budget_id: Optional[UUID] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        limit: Optional[int] = None,
        account_id: Optional[UUID] = None,
    ) -> list[Transaction]:
        """
        The actor's transactions, newest first.

        Admins may pass `account_id` to list another account's transactions.
        """
        owner_id = actor.account_id
        if account_id is not None and account_id != actor.account_id:
            ensure_admin(actor)
            owner_id = account_id

        return await self._store.list_transactions(
            account_id=owner_id,
            kind=kind,
            category=category,
            budget_id=budget_id,
            date_from=date_from,
            date_to=date_to,
            limit=limit,
        )
