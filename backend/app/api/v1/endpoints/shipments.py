"""
Shipment API Endpoints.

Admins create and list shipments; every status change, from any caller,
goes through the transition guard.
"""

from fastapi import APIRouter, Depends, HTTPException, status, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc

from backend.app.db.session import get_db
from backend.app.models.enums import UserRole
from backend.app.models.shipment import Shipment
from backend.app.models.shipment_enums import ShipmentStatus
from backend.app.schemas.shipment import (
    ShipmentCreate, ShipmentDetailResponse, ShipmentListResponse, ShipmentResponse
)
from backend.app.schemas.transition import TransitionRequest, TransitionResponse
from backend.app.core.dependencies import get_current_user, get_transition_guard
from backend.app.core.guards import require_admin, require_role
from backend.app.domain.shipments.state_machine import Actor, TERMINAL_STATUSES
from backend.app.domain.shipments.status_store import StatusStore
from backend.app.domain.shipments.transition_guard import TransitionGuard
from backend.app.services.audit import log_event, AuditAction

router = APIRouter(prefix="/shipments", tags=["Shipments"])


@router.post("", response_model=ShipmentDetailResponse, status_code=status.HTTP_201_CREATED)
async def create_shipment(
    shipment_data: ShipmentCreate,
    current_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """
    Create a shipment (Admin only).

    The shipment starts in `created` with a single history entry.
    """
    actor = Actor.from_token(current_user)
    shipment = await StatusStore.create(db, actor, **shipment_data.model_dump())

    await log_event(
        db=db,
        action=AuditAction.SHIPMENT_CREATED,
        actor_id=actor.user_id,
        actor_username=actor.username,
        shipment_id=shipment.id,
        metadata={"customer_name": shipment.customer_name}
    )

    return shipment


@router.get("", response_model=ShipmentListResponse)
async def list_shipments(
    state: str = Query("active", pattern="^(active|completed|all)$"),
    limit: int = Query(100, ge=1, le=500),
    current_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """
    List shipments created by the calling admin.

    `active` excludes delivered and resolved shipments, `completed` is the inverse.
    """
    query = select(Shipment).where(Shipment.created_by_admin_id == current_user["user_id"])

    if state == "active":
        query = query.where(Shipment.status.not_in(TERMINAL_STATUSES))
    elif state == "completed":
        query = query.where(Shipment.status.in_(TERMINAL_STATUSES))

    result = await db.execute(query.order_by(desc(Shipment.id)).limit(limit))
    shipments = result.scalars().all()

    return ShipmentListResponse(
        shipments=[ShipmentResponse.model_validate(s) for s in shipments],
        total=len(shipments)
    )


@router.get("/available", response_model=ShipmentListResponse)
async def list_available_shipments(
    current_user: dict = Depends(require_role([UserRole.RIDER])),
    db: AsyncSession = Depends(get_db)
):
    """Shipments waiting for a rider (Rider only)."""
    result = await db.execute(
        select(Shipment)
        .where(Shipment.status == ShipmentStatus.CREATED, Shipment.assigned_rider_id.is_(None))
        .order_by(Shipment.id)
    )
    shipments = result.scalars().all()

    return ShipmentListResponse(
        shipments=[ShipmentResponse.model_validate(s) for s in shipments],
        total=len(shipments)
    )


@router.get("/mine", response_model=ShipmentListResponse)
async def list_my_shipments(
    include_completed: bool = Query(False),
    current_user: dict = Depends(require_role([UserRole.RIDER])),
    db: AsyncSession = Depends(get_db)
):
    """Shipments assigned to the calling rider (Rider only)."""
    query = select(Shipment).where(Shipment.assigned_rider_id == current_user["user_id"])

    if not include_completed:
        query = query.where(Shipment.status.not_in(TERMINAL_STATUSES))

    result = await db.execute(query.order_by(desc(Shipment.id)))
    shipments = result.scalars().all()

    return ShipmentListResponse(
        shipments=[ShipmentResponse.model_validate(s) for s in shipments],
        total=len(shipments)
    )


@router.get("/{shipment_id}", response_model=ShipmentDetailResponse)
async def get_shipment(
    shipment_id: int = Path(..., description="Shipment ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Shipment with its status history.

    Riders only see shipments assigned to them or still open for acceptance.
    """
    shipment = await StatusStore.read(db, shipment_id)

    if current_user["role"] == UserRole.RIDER.value:
        visible = (
            shipment.assigned_rider_id == current_user["user_id"]
            or (shipment.status == ShipmentStatus.CREATED and shipment.assigned_rider_id is None)
        )
        if not visible:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="This shipment is not assigned to you"
            )

    return shipment


@router.post("/{shipment_id}/transition", response_model=TransitionResponse)
async def request_transition(
    request: TransitionRequest,
    shipment_id: int = Path(..., description="Shipment ID"),
    current_user: dict = Depends(get_current_user),
    guard: TransitionGuard = Depends(get_transition_guard),
    db: AsyncSession = Depends(get_db)
):
    """
    Request a status change.

    Duplicate and illegal requests return `applied: false` with a reason
    instead of an error, so webhook and client retries are always safe.
    """
    result = await guard.request_transition(
        db,
        shipment_id,
        request.target_status,
        Actor.from_token(current_user),
        rider_id=request.rider_id,
        note=request.note,
    )

    return TransitionResponse.from_result(shipment_id, result)
