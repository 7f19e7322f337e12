"""
Audit Models for the Ábaco ledger

Every ledger mutation and every budget repair is logged for audit purposes.
This provides:
1. Complete traceability of who changed which budget or transaction
2. Debugging information when a spent total drifts
3. The ability to reconstruct how a budget reached its current total

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from abaco.models.ledger import utc_now


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Budgets
    BUDGET_CREATED = "budget_created"
    BUDGET_UPDATED = "budget_updated"
    BUDGET_DELETED = "budget_deleted"
    TRANSACTIONS_DETACHED = "transactions_detached"

    # Transactions
    TRANSACTION_CREATED = "transaction_created"
    TRANSACTION_UPDATED = "transaction_updated"
    TRANSACTION_DELETED = "transaction_deleted"
    LINKAGE_REJECTED = "linkage_rejected"

    # Aggregate maintenance
    SPENT_ADJUSTED = "spent_adjusted"
    SPENT_DRIFT_REPAIRED = "spent_drift_repaired"
    AGGREGATE_SYNC_FAILED = "aggregate_sync_failed"
    RECONCILIATION_COMPLETED = "reconciliation_completed"

    # Accounts
    ACCOUNT_UPDATED = "account_updated"
    ACCOUNT_DELETED = "account_deleted"
    ACCESS_DENIED = "access_denied"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about, and who touched it?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'budget', 'transaction', 'account')"
    )
    entity_id: Optional[UUID] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )
    actor_id: Optional[UUID] = Field(
        default=None,
        description="Account that triggered the event, if any"
    )

    # Correlation - for tracking related events of one request
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., a transaction and its budget adjustment)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )

    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "actor_id": str(self.actor_id) if self.actor_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         actor_id, correlation_id, description, details_json, error_code,
         error_message]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            str(self.entity_id) if self.entity_id else "",
            str(self.actor_id) if self.actor_id else "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details) if self.details else "",
            self.error_code or "",
            self.error_message or "",
        ]


def _money(value: Decimal) -> str:
    return str(value)


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.budget_created(budget_id, name, amount, actor_id, correlation_id)
        event = AuditEventBuilder.spent_adjusted(budget_id, delta, new_spent, correlation_id)
    """

    @staticmethod
    def budget_created(
        budget_id: UUID,
        name: str,
        amount: Decimal,
        actor_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BUDGET_CREATED,
            entity_type="budget",
            entity_id=budget_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
            description=f"Budget created: {name}",
            details={"name": name, "amount": _money(amount)},
        )

    @staticmethod
    def budget_updated(
        budget_id: UUID,
        changed_fields: list[str],
        actor_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BUDGET_UPDATED,
            entity_type="budget",
            entity_id=budget_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
            description=f"Budget updated ({len(changed_fields)} fields)",
            details={"changed_fields": changed_fields},
        )

    @staticmethod
    def budget_deleted(
        budget_id: UUID,
        detached_count: int,
        actor_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BUDGET_DELETED,
            entity_type="budget",
            entity_id=budget_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
            description=f"Budget deleted, {detached_count} transactions detached",
            details={"detached_transactions": detached_count},
        )

    @staticmethod
    def transaction_changed(
        event_type: AuditEventType,
        transaction_id: UUID,
        kind: str,
        amount: Decimal,
        budget_id: Optional[UUID],
        actor_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        verb = event_type.value.split("_")[-1]
        return AuditEvent(
            event_type=event_type,
            entity_type="transaction",
            entity_id=transaction_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
            description=f"Transaction {verb}: {kind} {_money(amount)}",
            details={
                "kind": kind,
                "amount": _money(amount),
                "budget_id": str(budget_id) if budget_id else None,
            },
        )

    @staticmethod
    def linkage_rejected(
        budget_id: UUID,
        error_code: str,
        reason: str,
        actor_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LINKAGE_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="budget",
            entity_id=budget_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
            description="Transaction rejected by budget linkage rules",
            error_code=error_code,
            error_message=reason,
        )

    @staticmethod
    def spent_adjusted(
        budget_id: UUID,
        delta: Decimal,
        new_spent: Decimal,
        transaction_id: Optional[UUID] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SPENT_ADJUSTED,
            severity=AuditSeverity.DEBUG,
            entity_type="budget",
            entity_id=budget_id,
            correlation_id=correlation_id,
            description=f"Budget spent adjusted by {_money(delta)}",
            details={
                "delta": _money(delta),
                "spent": _money(new_spent),
                "transaction_id": str(transaction_id) if transaction_id else None,
            },
        )

    @staticmethod
    def drift_repaired(
        budget_id: UUID,
        previous_spent: Decimal,
        recomputed_spent: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SPENT_DRIFT_REPAIRED,
            severity=AuditSeverity.WARNING,
            entity_type="budget",
            entity_id=budget_id,
            correlation_id=correlation_id,
            description=(
                f"Budget spent repaired: {_money(previous_spent)} -> "
                f"{_money(recomputed_spent)}"
            ),
            details={
                "previous_spent": _money(previous_spent),
                "recomputed_spent": _money(recomputed_spent),
            },
        )

    @staticmethod
    def aggregate_sync_failed(
        budget_id: UUID,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.AGGREGATE_SYNC_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="budget",
            entity_id=budget_id,
            correlation_id=correlation_id,
            description="Budget spent could not be updated; queued for reconciliation",
            error_code="AggregateSyncFailed",
            error_message=error_message,
        )

    @staticmethod
    def reconciliation_completed(
        budgets_checked: int,
        repaired: int,
        failed: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECONCILIATION_COMPLETED,
            severity=AuditSeverity.WARNING if failed else AuditSeverity.INFO,
            correlation_id=correlation_id,
            description=(
                f"Reconciliation checked {budgets_checked} budgets, "
                f"repaired {repaired}, failed {failed}"
            ),
            details={
                "budgets_checked": budgets_checked,
                "repaired": repaired,
                "failed": failed,
            },
        )

    @staticmethod
    def account_changed(
        event_type: AuditEventType,
        account_id: UUID,
        actor_id: UUID,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=event_type,
            entity_type="account",
            entity_id=account_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
            description=f"Account {event_type.value.split('_')[-1]}",
            details=details or {},
        )

    @staticmethod
    def access_denied(
        entity_type: str,
        entity_id: Optional[UUID],
        actor_id: UUID,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCESS_DENIED,
            severity=AuditSeverity.WARNING,
            entity_type=entity_type,
            entity_id=entity_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
            description=f"Access denied to {entity_type}",
            error_code="Unauthorized",
            error_message=reason,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
