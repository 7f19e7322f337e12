"""
Main Orchestrator for the Ábaco ledger

This module ties together all the components and exposes the REST-style
boundary the HTTP adapter calls into:
1. Transactions (create / update / delete / read)
2. Budgets (create / update / delete / read)
3. Reports (dashboard, monthly comparison, category spending, ...)
4. Account administration and reconciliation

DESIGN DECISION: Every method returns an ApiResponse envelope and never
raises for an expected failure. A ledger error becomes
`{success: false, code, message}` with the status code its taxonomy
entry maps to; a storage failure becomes `StorageError` / 500.

Mutations return the full entity, including the derived budget fields
`remaining` and `percentage_used`.
"""

from datetime import datetime
from typing import Any, Awaitable, Callable, Optional, Union
from uuid import UUID

import structlog
from pydantic import BaseModel, Field, ValidationError

from abaco.audit import AuditLogger, configure_logging, create_correlation_id
from abaco.config import LedgerSettings, get_settings
from abaco.ledger.access import authorize_admin
from abaco.ledger.accounts import AccountManager
from abaco.ledger.aggregates import BudgetAggregateMaintainer
from abaco.ledger.budgets import BudgetManager
from abaco.ledger.errors import LedgerError, ValidationFailedError
from abaco.ledger.reconciliation import ReconciliationJob
from abaco.ledger.transactions import TransactionLifecycleManager
from abaco.models.ledger import (
    AccountRole,
    AccountUpdate,
    Actor,
    BudgetCategory,
    BudgetCreate,
    BudgetPeriod,
    BudgetUpdate,
    TransactionCategory,
    TransactionCreate,
    TransactionKind,
    TransactionUpdate,
)
from abaco.queries import ReportAggregator
from abaco.services.storage import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStore,
    InMemoryAuditStorage,
    InMemoryLedgerStore,
    LedgerStoreInterface,
    StorageError,
)


logger = structlog.get_logger(__name__)


class ApiResponse(BaseModel):
    """Success/error envelope returned by every boundary method."""

    success: bool
    data: Any = None
    message: Optional[str] = None
    code: Optional[str] = Field(
        default=None,
        description="Error taxonomy code when success is false"
    )
    status_code: int = 200
    details: dict = Field(default_factory=dict)

    @classmethod
    def ok(cls, data: Any = None, message: Optional[str] = None, status_code: int = 200) -> "ApiResponse":
        return cls(success=True, data=data, message=message, status_code=status_code)

    @classmethod
    def fail(
        cls,
        code: str,
        message: str,
        status_code: int,
        details: Optional[dict] = None,
    ) -> "ApiResponse":
        return cls(
            success=False,
            code=code,
            message=message,
            status_code=status_code,
            details=details or {},
        )


def _serialize(result: Any) -> Any:
    """JSON-ready form of a result. Computed fields are included."""
    if isinstance(result, BaseModel):
        return result.model_dump(mode="json")
    if isinstance(result, list):
        return [_serialize(item) for item in result]
    return result


def _parse(model_cls: type[BaseModel], payload: Union[BaseModel, dict]) -> BaseModel:
    if isinstance(payload, model_cls):
        return payload
    return model_cls.model_validate(payload)


class LedgerService:
    """
    REST-style boundary over the ledger.

    Flow for a mutation:
    1. Parse the raw payload into its request model
    2. Call the manager with a fresh correlation ID
    3. Wrap the result (or the failure) in an ApiResponse
    """

    def __init__(
        self,
        store: LedgerStoreInterface,
        audit_logger: Optional[AuditLogger] = None,
        maintainer: Optional[BudgetAggregateMaintainer] = None,
        settings: Optional[LedgerSettings] = None,
    ):
        self._store = store
        self._audit_logger = audit_logger or AuditLogger()
        self._settings = settings or get_settings().ledger

        self.maintainer = maintainer or BudgetAggregateMaintainer(
            store,
            audit_logger=self._audit_logger,
            max_attempts=self._settings.spent_update_attempts,
        )
        self.transactions = TransactionLifecycleManager(
            store, self.maintainer, audit_logger=self._audit_logger
        )
        self.budgets = BudgetManager(
            store, self.maintainer, audit_logger=self._audit_logger
        )
        self.accounts = AccountManager(store, self.maintainer, audit_logger=self._audit_logger)
        self.reports = ReportAggregator(
            store, settings=self._settings, audit_logger=self._audit_logger
        )
        self.reconciliation = ReconciliationJob(
            store, self.maintainer, audit_logger=self._audit_logger
        )

    @property
    def store(self) -> LedgerStoreInterface:
        return self._store

    async def _run(
        self,
        operation: str,
        call: Callable[[], Awaitable[Any]],
        status_code: int = 200,
        message: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> ApiResponse:
        try:
            result = await call()
        except ValidationError as e:
            error = ValidationFailedError.from_pydantic(e)
            return ApiResponse.fail(error.code, error.message, error.status_code, error.details)
        except LedgerError as e:
            logger.info(
                "ledger_operation_rejected",
                operation=operation,
                code=e.code,
                message=e.message,
                correlation_id=str(correlation_id) if correlation_id else None,
            )
            return ApiResponse.fail(e.code, e.message, e.status_code, e.details)
        except StorageError as e:
            await self._audit_logger.log_error(
                error_type="StorageError",
                error_message=str(e),
                details={"operation": operation},
                correlation_id=correlation_id,
            )
            return ApiResponse.fail("StorageError", "Storage operation failed", 500)

        return ApiResponse.ok(_serialize(result), message=message, status_code=status_code)

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    async def create_transaction(
        self,
        actor: Actor,
        payload: Union[TransactionCreate, dict],
        on_behalf_of: Optional[UUID] = None,
    ) -> ApiResponse:
        correlation_id = create_correlation_id()

        async def call():
            return await self.transactions.create_transaction(
                actor,
                _parse(TransactionCreate, payload),
                on_behalf_of=on_behalf_of,
                correlation_id=correlation_id,
            )

        return await self._run(
            "create_transaction", call,
            status_code=201,
            message="Transaction created",
            correlation_id=correlation_id,
        )

    async def update_transaction(
        self,
        actor: Actor,
        transaction_id: UUID,
        payload: Union[TransactionUpdate, dict],
    ) -> ApiResponse:
        correlation_id = create_correlation_id()

        async def call():
            return await self.transactions.update_transaction(
                actor,
                transaction_id,
                _parse(TransactionUpdate, payload),
                correlation_id=correlation_id,
            )

        return await self._run(
            "update_transaction", call,
            message="Transaction updated",
            correlation_id=correlation_id,
        )

    async def delete_transaction(self, actor: Actor, transaction_id: UUID) -> ApiResponse:
        correlation_id = create_correlation_id()

        async def call():
            tx = await self.transactions.delete_transaction(
                actor, transaction_id, correlation_id=correlation_id
            )
            return {"id": str(tx.id)}

        return await self._run(
            "delete_transaction", call,
            message="Transaction deleted",
            correlation_id=correlation_id,
        )

    async def get_transaction(self, actor: Actor, transaction_id: UUID) -> ApiResponse:
        return await self._run(
            "get_transaction",
            lambda: self.transactions.get_transaction(actor, transaction_id),
        )

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
    ) -> ApiResponse:
        return await self._run(
            "list_transactions",
            lambda: self.transactions.list_transactions(
                actor,
                kind=kind,
                category=category,
                budget_id=budget_id,
                date_from=date_from,
                date_to=date_to,
                limit=limit,
                account_id=account_id,
            ),
        )

    # -------------------------------------------------------------------------
    # Budgets
    # -------------------------------------------------------------------------

    async def create_budget(self, actor: Actor, payload: Union[BudgetCreate, dict]) -> ApiResponse:
        correlation_id = create_correlation_id()

        async def call():
            return await self.budgets.create_budget(
                actor,
                _parse(BudgetCreate, payload),
                correlation_id=correlation_id,
            )

        return await self._run(
            "create_budget", call,
            status_code=201,
            message="Budget created",
            correlation_id=correlation_id,
        )

    async def update_budget(
        self,
        actor: Actor,
        budget_id: UUID,
        payload: Union[BudgetUpdate, dict],
    ) -> ApiResponse:
        correlation_id = create_correlation_id()

        async def call():
            return await self.budgets.update_budget(
                actor,
                budget_id,
                _parse(BudgetUpdate, payload),
                correlation_id=correlation_id,
            )

        return await self._run(
            "update_budget", call,
            message="Budget updated",
            correlation_id=correlation_id,
        )

    async def delete_budget(self, actor: Actor, budget_id: UUID) -> ApiResponse:
        correlation_id = create_correlation_id()

        async def call():
            budget = await self.budgets.delete_budget(
                actor, budget_id, correlation_id=correlation_id
            )
            return {"id": str(budget.id)}

        return await self._run(
            "delete_budget", call,
            message="Budget deleted",
            correlation_id=correlation_id,
        )

    async def get_budget(self, actor: Actor, budget_id: UUID) -> ApiResponse:
        return await self._run(
            "get_budget",
            lambda: self.budgets.get_budget(actor, budget_id),
        )

    async def list_budgets(
        self,
        actor: Actor,
        category: Optional[BudgetCategory] = None,
        is_active: Optional[bool] = None,
        period: Optional[BudgetPeriod] = None,
        account_id: Optional[UUID] = None,
    ) -> ApiResponse:
        return await self._run(
            "list_budgets",
            lambda: self.budgets.list_budgets(
                actor,
                category=category,
                is_active=is_active,
                period=period,
                account_id=account_id,
            ),
        )

    # -------------------------------------------------------------------------
    # Reports
    # -------------------------------------------------------------------------

    async def dashboard(self, actor: Actor, now: Optional[datetime] = None) -> ApiResponse:
        return await self._run("dashboard", lambda: self.reports.dashboard(actor, now=now))

    async def monthly_comparison(
        self,
        actor: Actor,
        months: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> ApiResponse:
        return await self._run(
            "monthly_comparison",
            lambda: self.reports.monthly_comparison(actor, months=months, now=now),
        )

    async def category_spending(
        self,
        actor: Actor,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> ApiResponse:
        return await self._run(
            "category_spending",
            lambda: self.reports.category_spending(actor, start=start, end=end),
        )

    async def transaction_stats(
        self,
        actor: Actor,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> ApiResponse:
        return await self._run(
            "transaction_stats",
            lambda: self.reports.transaction_stats(actor, start=start, end=end),
        )

    async def budget_summary(self, actor: Actor) -> ApiResponse:
        return await self._run("budget_summary", lambda: self.reports.budget_summary(actor))

    async def admin_overview(self, actor: Actor) -> ApiResponse:
        return await self._run("admin_overview", lambda: self.reports.admin_overview(actor))

    # -------------------------------------------------------------------------
    # Accounts
    # -------------------------------------------------------------------------

    async def list_accounts(
        self,
        actor: Actor,
        role: Optional[AccountRole] = None,
        is_active: Optional[bool] = None,
    ) -> ApiResponse:
        return await self._run(
            "list_accounts",
            lambda: self.accounts.list_accounts(actor, role=role, is_active=is_active),
        )

    async def get_account(self, actor: Actor, account_id: UUID) -> ApiResponse:
        return await self._run(
            "get_account",
            lambda: self.accounts.get_account(actor, account_id),
        )

    async def update_account(
        self,
        actor: Actor,
        account_id: UUID,
        payload: Union[AccountUpdate, dict],
    ) -> ApiResponse:
        correlation_id = create_correlation_id()

        async def call():
            return await self.accounts.update_account(
                actor,
                account_id,
                _parse(AccountUpdate, payload),
                correlation_id=correlation_id,
            )

        return await self._run(
            "update_account", call,
            message="Account updated",
            correlation_id=correlation_id,
        )

    async def delete_account(self, actor: Actor, account_id: UUID) -> ApiResponse:
        correlation_id = create_correlation_id()

        async def call():
            account = await self.accounts.delete_account(
                actor, account_id, correlation_id=correlation_id
            )
            return {"id": str(account.id)}

        return await self._run(
            "delete_account", call,
            message="Account deleted",
            correlation_id=correlation_id,
        )

    # -------------------------------------------------------------------------
    # Reconciliation
    # -------------------------------------------------------------------------

    async def reconcile(self, actor: Actor) -> ApiResponse:
        """Run one reconciliation pass on demand. Admins only."""
        correlation_id = create_correlation_id()

        async def call():
            await authorize_admin(actor, "budget", self._audit_logger, correlation_id)
            return await self.reconciliation.run_once(correlation_id)

        return await self._run("reconcile", call, correlation_id=correlation_id)


def create_app_components(backend: Optional[str] = None) -> LedgerService:
    """
    Factory function to create all application components.

    Args:
        backend: "memory" or "google_sheets". Defaults to the
                 STORAGE_BACKEND setting.

    Returns:
        A LedgerService wired to the chosen store and audit storage.
    """
    settings = get_settings()
    configure_logging(settings.app.log_level)
    backend = backend or settings.app.storage_backend

    if backend == "google_sheets":
        sheets_client = GoogleSheetsClient()
        store = GoogleSheetsLedgerStore(sheets_client)
        audit_logger = AuditLogger(GoogleSheetsAuditStorage(sheets_client))
    elif backend == "memory":
        store = InMemoryLedgerStore()
        audit_logger = AuditLogger(InMemoryAuditStorage())
    else:
        raise ValueError(f"Unknown storage backend: {backend}")

    logger.info("ledger_service_created", backend=backend)
    return LedgerService(store, audit_logger=audit_logger, settings=settings.ledger)
