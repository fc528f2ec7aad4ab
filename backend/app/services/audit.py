"""
Audit logging service for tracking admin and operator actions.

Provides centralized logging for compliance monitoring.
"""

from typing import Optional, Dict, Any, List
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from backend.app.models.audit_log import AuditLog


# Audit event constants
class AuditAction:
    """Standardized audit action constants."""
    SHIPMENT_CREATED = "SHIPMENT_CREATED"
    ISSUE_RESPONDED = "ISSUE_RESPONDED"
    NOTIFICATIONS_REDISPATCHED = "NOTIFICATIONS_REDISPATCHED"
    NOTIFICATION_RESENT = "NOTIFICATION_RESENT"
    RIDER_APPROVED = "RIDER_APPROVED"
    RIDER_REJECTED = "RIDER_REJECTED"


async def log_event(
    db: AsyncSession,
    action: str,
    actor_id: Optional[int] = None,
    actor_username: Optional[str] = None,
    shipment_id: Optional[int] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    """
    Log an admin or operator event to the audit log.

    Args:
        db: Database session
        action: Action being performed (use AuditAction constants)
        actor_id: ID of user performing the action
        actor_username: Subject of the actor
        shipment_id: Shipment the action concerned
        metadata: Additional context as JSON

    Returns:
        Created AuditLog instance
    """
    audit_log = AuditLog(
        actor_id=actor_id,
        actor_username=actor_username,
        action=action,
        shipment_id=shipment_id,
        meta_data=metadata,
    )

    db.add(audit_log)
    await db.commit()
    await db.refresh(audit_log)

    return audit_log


async def get_shipment_audit_logs(
    db: AsyncSession,
    shipment_id: int,
    limit: int = 100
) -> List[AuditLog]:
    """Most recent audit entries for a shipment."""
    result = await db.execute(
        select(AuditLog)
        .where(AuditLog.shipment_id == shipment_id)
        .order_by(desc(AuditLog.timestamp))
        .limit(limit)
    )
    return list(result.scalars().all())
