"""
Audit logging service for tracking order and ledger actions.

Audit writes happen after the primary financial commit. A failed audit write
is reported as a non-fatal side effect and never rolls back the payment.
"""

import logging
from typing import Optional, Dict, Any
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from sqlalchemy.exc import SQLAlchemyError
from pos_backend.app.core.reliability import SideEffectResult
from pos_backend.app.models.audit_log import AuditLog

logger = logging.getLogger("pos_ledger.audit")


# Audit event constants
class AuditAction:
    """Standardized audit action constants."""
    CUSTOMER_CREATED = "CUSTOMER_CREATED"

    # Ledger
    PAYMENT_RECORDED = "PAYMENT_RECORDED"
    LEDGER_ENTRY_POSTED = "LEDGER_ENTRY_POSTED"
    LEDGER_RECORD_ONLY_POSTED = "LEDGER_RECORD_ONLY_POSTED"
    ACCOUNT_DEBIT_POSTED = "ACCOUNT_DEBIT_POSTED"
    LEDGER_RECONCILED = "LEDGER_RECONCILED"

    # Orders
    PAYMENT_COMPLETED = "PAYMENT_COMPLETED"
    SPLIT_PAYMENT_COMPLETED = "SPLIT_PAYMENT_COMPLETED"
    ORDER_STATUS_CHANGED = "ORDER_STATUS_CHANGED"
    ORDER_CANCELLED = "ORDER_CANCELLED"


async def log_event(
    db: AsyncSession,
    action: str,
    tenant_id: Optional[int] = None,
    actor_id: Optional[int] = None,
    actor_username: Optional[str] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[int] = None,
    summary: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None
) -> AuditLog:
    """
    Write an audit event and commit it.

    Args:
        db: Database session
        action: Action being performed (use AuditAction constants)
        tenant_id: Tenant the event belongs to
        actor_id: ID of user performing the action
        actor_username: Username of actor
        entity_type: "order" or "customer"
        entity_id: ID of the entity acted upon
        summary: Human readable one-liner
        metadata: Additional context as JSON (before/after status, amounts)

    Returns:
        Created AuditLog instance
    """
    audit_log = AuditLog(
        user_id=tenant_id,
        actor_id=actor_id,
        actor_username=actor_username,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        summary=summary,
        meta_data=metadata
    )

    db.add(audit_log)
    await db.commit()
    await db.refresh(audit_log)

    return audit_log


async def log_action(
    db: AsyncSession,
    current_user: dict,
    action: str,
    entity_type: str,
    entity_id: int,
    summary: str,
    metadata: Optional[Dict[str, Any]] = None
) -> SideEffectResult:
    """
    Fire-and-forget audit write on behalf of the current staff member.

    Never raises for storage failures: the primary operation has already
    committed, so the failure is logged and returned as a SideEffectResult.
    """
    try:
        await log_event(
            db=db,
            action=action,
            tenant_id=current_user.get("tenant_id"),
            actor_id=current_user.get("user_id"),
            actor_username=current_user.get("sub"),
            entity_type=entity_type,
            entity_id=entity_id,
            summary=summary,
            metadata=metadata
        )
    except (SQLAlchemyError, OSError) as exc:
        await db.rollback()
        logger.warning(
            "Audit log failed for %s %s:%s (tenant %s): %s",
            action, entity_type, entity_id, current_user.get("tenant_id"), exc
        )
        return SideEffectResult.failure("audit_log", exc)
    return SideEffectResult.success("audit_log")


async def get_audit_trail(
    db: AsyncSession,
    tenant_id: int,
    entity_type: Optional[str] = None,
    entity_id: Optional[int] = None,
    action: Optional[str] = None,
    limit: int = 100
) -> list[AuditLog]:
    """
    Retrieve a tenant's audit trail with optional filtering, most recent first.
    """
    query = select(AuditLog).where(AuditLog.user_id == tenant_id).order_by(desc(AuditLog.timestamp), desc(AuditLog.id))

    if entity_type:
        query = query.where(AuditLog.entity_type == entity_type)

    if entity_id:
        query = query.where(AuditLog.entity_id == entity_id)

    if action:
        query = query.where(AuditLog.action == action)

    query = query.limit(limit)

    result = await db.execute(query)
    return result.scalars().all()
