"""
Audit Logger

DESIGN DECISION: Every ledger mutation is logged.
This provides:
1. Complete traceability of budget totals
2. Debugging capability when a spent total drifts
3. Account holders can see the history of their budgets

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the ledger if logging fails)
- Supports correlation IDs to trace related events
"""

import logging
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

import structlog

from abaco.models.audit import AuditEvent, AuditEventBuilder, AuditEventType, AuditSeverity
from abaco.models.ledger import Transaction
from abaco.services.storage import AuditStorageInterface


def configure_logging(level: str = "INFO") -> None:
    """Configure structlog and the stdlib root logger it renders through."""
    logging.basicConfig(format="%(message)s")
    logging.getLogger().setLevel(level.upper())
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


# Configure structlog for local logging
configure_logging()


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence and account-holder visibility)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("abaco.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        elif event.severity == AuditSeverity.DEBUG:
            self._logger.debug("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    # -------------------------------------------------------------------------
    # Budgets
    # -------------------------------------------------------------------------

    async def log_budget_created(
        self,
        budget_id: UUID,
        name: str,
        amount: Decimal,
        actor_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.budget_created(
            budget_id=budget_id,
            name=name,
            amount=amount,
            actor_id=actor_id,
            correlation_id=correlation_id,
        ))

    async def log_budget_updated(
        self,
        budget_id: UUID,
        changed_fields: list[str],
        actor_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.budget_updated(
            budget_id=budget_id,
            changed_fields=changed_fields,
            actor_id=actor_id,
            correlation_id=correlation_id,
        ))

    async def log_budget_deleted(
        self,
        budget_id: UUID,
        detached_count: int,
        actor_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.budget_deleted(
            budget_id=budget_id,
            detached_count=detached_count,
            actor_id=actor_id,
            correlation_id=correlation_id,
        ))

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    async def log_transaction_changed(
        self,
        event_type: AuditEventType,
        transaction: Transaction,
        actor_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a transaction create, update or delete."""
        await self.log(AuditEventBuilder.transaction_changed(
            event_type=event_type,
            transaction_id=transaction.id,
            kind=transaction.kind.value,
            amount=transaction.amount,
            budget_id=transaction.budget_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
        ))

    async def log_linkage_rejected(
        self,
        budget_id: UUID,
        error_code: str,
        reason: str,
        actor_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.linkage_rejected(
            budget_id=budget_id,
            error_code=error_code,
            reason=reason,
            actor_id=actor_id,
            correlation_id=correlation_id,
        ))

    # -------------------------------------------------------------------------
    # Aggregate maintenance
    # -------------------------------------------------------------------------

    async def log_spent_adjusted(
        self,
        budget_id: UUID,
        delta: Decimal,
        new_spent: Decimal,
        transaction_id: Optional[UUID] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.spent_adjusted(
            budget_id=budget_id,
            delta=delta,
            new_spent=new_spent,
            transaction_id=transaction_id,
            correlation_id=correlation_id,
        ))

    async def log_drift_repaired(
        self,
        budget_id: UUID,
        previous_spent: Decimal,
        recomputed_spent: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.drift_repaired(
            budget_id=budget_id,
            previous_spent=previous_spent,
            recomputed_spent=recomputed_spent,
            correlation_id=correlation_id,
        ))

    async def log_aggregate_sync_failed(
        self,
        budget_id: UUID,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.aggregate_sync_failed(
            budget_id=budget_id,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_reconciliation_completed(
        self,
        budgets_checked: int,
        repaired: int,
        failed: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.reconciliation_completed(
            budgets_checked=budgets_checked,
            repaired=repaired,
            failed=failed,
            correlation_id=correlation_id,
        ))

    # -------------------------------------------------------------------------
    # Accounts and access
    # -------------------------------------------------------------------------

    async def log_account_changed(
        self,
        event_type: AuditEventType,
        account_id: UUID,
        actor_id: UUID,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.account_changed(
            event_type=event_type,
            account_id=account_id,
            actor_id=actor_id,
            details=details,
            correlation_id=correlation_id,
        ))

    async def log_access_denied(
        self,
        entity_type: str,
        entity_id: Optional[UUID],
        actor_id: UUID,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.access_denied(
            entity_type=entity_type,
            entity_id=entity_id,
            actor_id=actor_id,
            reason=reason,
            correlation_id=correlation_id,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new request (e.g., recording a transaction).
    Pass it through all subsequent operations.
    """
    return uuid4()
