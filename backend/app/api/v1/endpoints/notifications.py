"""
Notification API Endpoints.

Admin views of the notification ledger plus the two maintenance
operations: redispatch (finish an interrupted dispatch) and resend
(retry one failed message on purpose).
"""

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from backend.app.db.session import get_db
from backend.app.core.dependencies import get_dispatcher
from backend.app.core.guards import require_admin
from backend.app.domain.notifications.dispatcher import NotificationDispatcher
from backend.app.domain.notifications.ledger import NotificationLedger
from backend.app.domain.shipments.state_machine import Actor
from backend.app.domain.shipments.status_store import StatusStore
from backend.app.schemas.notification import NotificationRecordResponse, DeadLetterResponse, AuditLogResponse
from backend.app.schemas.transition import DispatchReportResponse, RedispatchRequest
from backend.app.services import dead_letter
from backend.app.services.audit import log_event, get_shipment_audit_logs, AuditAction

router = APIRouter(prefix="/shipments", tags=["Notifications"])
admin_router = APIRouter(prefix="/admin", tags=["Admin - Notifications"])


@router.get("/{shipment_id}/notifications", response_model=List[NotificationRecordResponse])
async def list_shipment_notifications(
    shipment_id: int = Path(..., description="Shipment ID"),
    current_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Ledger records for a shipment, oldest transition first."""
    await StatusStore.read(db, shipment_id)
    return await NotificationLedger.list_for_shipment(db, shipment_id)


@router.post("/{shipment_id}/redispatch", response_model=DispatchReportResponse)
async def redispatch_notifications(
    shipment_id: int = Path(..., description="Shipment ID"),
    request: Optional[RedispatchRequest] = None,
    current_user: dict = Depends(require_admin),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    db: AsyncSession = Depends(get_db)
):
    """
    Finish notifications for a transition that already happened.

    Recipients already recorded in the ledger are not messaged again.
    """
    actor = Actor.from_token(current_user)
    report = await dispatcher.redispatch(db, shipment_id, request.seq if request else None)

    await log_event(
        db=db,
        action=AuditAction.NOTIFICATIONS_REDISPATCHED,
        actor_id=actor.user_id,
        actor_username=actor.username,
        shipment_id=shipment_id,
        metadata={
            "seq": report.transition_seq,
            "sent": [r.value for r in report.sent],
            "skipped": [r.value for r in report.skipped],
        }
    )

    return DispatchReportResponse.from_report(report)


@router.post(
    "/{shipment_id}/notifications/{record_id}/resend",
    response_model=NotificationRecordResponse
)
async def resend_notification(
    shipment_id: int = Path(..., description="Shipment ID"),
    record_id: int = Path(..., description="Notification record ID"),
    current_user: dict = Depends(require_admin),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    db: AsyncSession = Depends(get_db)
):
    """
    Resend a notification whose delivery failed.

    Only records that were never confirmed sent can be resent.
    """
    actor = Actor.from_token(current_user)
    record = await dispatcher.resend(db, shipment_id, record_id)

    await log_event(
        db=db,
        action=AuditAction.NOTIFICATION_RESENT,
        actor_id=actor.user_id,
        actor_username=actor.username,
        shipment_id=shipment_id,
        metadata={"notification_record_id": record_id, "resend_count": record.resend_count}
    )

    return record


@admin_router.get("/dead-letters", response_model=List[DeadLetterResponse])
async def list_dead_letters(
    limit: int = Query(100, ge=1, le=500),
    current_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Failed notification sends waiting for an operator."""
    return await dead_letter.list_open(db, limit)


@router.get("/{shipment_id}/audit", response_model=List[AuditLogResponse])
async def list_shipment_audit_logs(
    shipment_id: int = Path(..., description="Shipment ID"),
    limit: int = Query(100, ge=1, le=500),
    current_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    await StatusStore.read(db, shipment_id)
    return await get_shipment_audit_logs(db, shipment_id, limit)
