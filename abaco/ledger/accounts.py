"""
Account Administration

Admin-only management of account records. Identity and credentials belong
to the authentication collaborator; this module only reads and edits the
stored profile and removes accounts together with their ledger data.
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import ValidationError

from abaco.audit.logger import AuditLogger
from abaco.ledger.access import authorize_admin
from abaco.ledger.aggregates import BudgetAggregateMaintainer
from abaco.ledger.errors import (
    AccountNotFoundError,
    InvalidOperationError,
    ValidationFailedError,
)
from abaco.models.audit import AuditEventType
from abaco.models.ledger import (
    Account,
    AccountRole,
    AccountUpdate,
    Actor,
    TransactionKind,
)
from abaco.models.reports import AccountDetail
from abaco.services.storage import LedgerStoreInterface


class AccountManager:
    """Every method requires an admin actor."""

    def __init__(
        self,
        store: LedgerStoreInterface,
        maintainer: BudgetAggregateMaintainer,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._maintainer = maintainer
        self._audit = audit_logger or AuditLogger()

    async def _get(self, account_id: UUID) -> Account:
        account = await self._store.get_account(account_id)
        if account is None:
            raise AccountNotFoundError(account_id)
        return account

    async def list_accounts(
        self,
        actor: Actor,
        role: Optional[AccountRole] = None,
        is_active: Optional[bool] = None,
    ) -> list[Account]:
        await authorize_admin(actor, "account", self._audit)
        return await self._store.list_accounts(role=role, is_active=is_active)

    async def get_account(self, actor: Actor, account_id: UUID) -> AccountDetail:
        """Account profile plus budget count and lifetime transaction totals."""
        await authorize_admin(actor, "account", self._audit)
        account = await self._get(account_id)

        budgets = await self._store.list_budgets(account_id=account_id)
        transactions = await self._store.list_transactions(account_id=account_id)

        income = sum(
            (t.amount for t in transactions if t.kind == TransactionKind.INCOME),
            Decimal("0"),
        )
        expense = sum(
            (t.amount for t in transactions if t.kind == TransactionKind.EXPENSE),
            Decimal("0"),
        )

        return AccountDetail(
            account=account,
            budget_count=len(budgets),
            transaction_count=len(transactions),
            total_income=income,
            total_expense=expense,
            balance=income - expense,
        )

    async def update_account(
        self,
        actor: Actor,
        account_id: UUID,
        payload: AccountUpdate,
        correlation_id: Optional[UUID] = None,
    ) -> Account:
        await authorize_admin(actor, "account", self._audit, correlation_id)
        current = await self._get(account_id)

        changes = payload.model_dump(exclude_unset=True)
        try:
            updated = Account.model_validate({**current.model_dump(), **changes})
        except ValidationError as e:
            raise ValidationFailedError.from_pydantic(e)

        saved = await self._store.update_account(updated)

        await self._audit.log_account_changed(
            AuditEventType.ACCOUNT_UPDATED,
            account_id=account_id,
            actor_id=actor.account_id,
            details={"changed_fields": sorted(changes)},
            correlation_id=correlation_id,
        )
        return saved

    async def delete_account(
        self,
        actor: Actor,
        account_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> Account:
        """
        Remove an account with all of its budgets and transactions.

        Admins cannot delete their own account.
        """
        await authorize_admin(actor, "account", self._audit, correlation_id)
        if account_id == actor.account_id:
            raise InvalidOperationError("You cannot delete your own account")

        account = await self._get(account_id)

        transactions = await self._store.list_transactions(account_id=account_id)
        for tx in transactions:
            await self._store.delete_transaction(tx.id)

        budgets = await self._store.list_budgets(account_id=account_id)
        for budget in budgets:
            # Another account's transactions may still point here
            await self._maintainer.on_budget_deleted(budget, correlation_id)
            await self._store.delete_budget(budget.id)

        await self._store.delete_account(account_id)

        await self._audit.log_account_changed(
            AuditEventType.ACCOUNT_DELETED,
            account_id=account_id,
            actor_id=actor.account_id,
            details={
                "budgets_deleted": len(budgets),
                "transactions_deleted": len(transactions),
            },
            correlation_id=correlation_id,
        )
        return account
