"""
Access rules.

Owners see and change their own budgets and transactions; admins see and
change everything.
"""

from typing import Optional
from uuid import UUID

from abaco.audit.logger import AuditLogger
from abaco.ledger.errors import UnauthorizedError
from abaco.models.ledger import Actor


def can_access(actor: Actor, owner_id: UUID) -> bool:
    return actor.is_admin or actor.account_id == owner_id


def ensure_owner_or_admin(actor: Actor, owner_id: UUID, entity_type: str) -> None:
    """Raise UnauthorizedError unless the actor owns the entity or is an admin."""
    if not can_access(actor, owner_id):
        raise UnauthorizedError(f"Not authorized to access this {entity_type}")


def ensure_admin(actor: Actor) -> None:
    if not actor.is_admin:
        raise UnauthorizedError("Administrator role required")


async def authorize(
    actor: Actor,
    owner_id: UUID,
    entity_type: str,
    entity_id: Optional[UUID],
    audit_logger: AuditLogger,
    correlation_id: Optional[UUID] = None,
) -> None:
    """ensure_owner_or_admin, recording the denial in the audit trail."""
    try:
        ensure_owner_or_admin(actor, owner_id, entity_type)
    except UnauthorizedError as e:
        await audit_logger.log_access_denied(
            entity_type=entity_type,
            entity_id=entity_id,
            actor_id=actor.account_id,
            reason=e.message,
            correlation_id=correlation_id,
        )
        raise


async def authorize_admin(
    actor: Actor,
    entity_type: str,
    audit_logger: AuditLogger,
    correlation_id: Optional[UUID] = None,
) -> None:
    try:
        ensure_admin(actor)
    except UnauthorizedError as e:
        await audit_logger.log_access_denied(
            entity_type=entity_type,
            entity_id=None,
            actor_id=actor.account_id,
            reason=e.message,
            correlation_id=correlation_id,
        )
        raise


def scope_account_id(actor: Actor) -> Optional[UUID]:
    """Account to scope reads to. None means the whole store (admins)."""
    return None if actor.is_admin else actor.account_id
