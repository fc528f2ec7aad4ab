"""
Rider API Endpoints.

Admins review rider sign-ups; riders push their live position and admins
read it back.
"""

from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status, Path, Query, Body
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from sqlalchemy.exc import IntegrityError

from backend.app.db.session import get_db
from backend.app.models.enums import UserRole, RiderApprovalStatus
from backend.app.models.rider_location import RiderLocation
from backend.app.models.user import User
from backend.app.schemas.issue import (
    RiderListResponse, RiderResponse, RiderLocationUpdate, RiderLocationResponse
)
from backend.app.core.dependencies import get_current_user
from backend.app.core.exceptions import ResourceNotFoundError
from backend.app.core.guards import require_admin, require_role
from backend.app.services.audit import log_event, AuditAction

router = APIRouter(prefix="/riders", tags=["Riders"])


async def _get_rider(db: AsyncSession, rider_id: int) -> User:
    result = await db.execute(
        select(User).where(User.id == rider_id, User.role == UserRole.RIDER)
    )
    rider = result.scalar_one_or_none()

    if not rider:
        raise ResourceNotFoundError("Rider", rider_id)

    return rider


async def _list_riders(db: AsyncSession, approval_status: RiderApprovalStatus) -> RiderListResponse:
    result = await db.execute(
        select(User)
        .where(User.role == UserRole.RIDER, User.approval_status == approval_status)
        .order_by(desc(User.created_at), desc(User.id))
    )
    riders = result.scalars().all()

    return RiderListResponse(
        riders=[RiderResponse.model_validate(r) for r in riders],
        total=len(riders)
    )


@router.get("/pending", response_model=RiderListResponse)
async def list_pending_riders(
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Rider sign-ups waiting for review (Admin only)."""
    return await _list_riders(db, RiderApprovalStatus.PENDING)


@router.get("/approved", response_model=RiderListResponse)
async def list_approved_riders(
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Riders allowed to accept shipments (Admin only)."""
    return await _list_riders(db, RiderApprovalStatus.APPROVED)


@router.post("/{rider_id}/approve", response_model=RiderResponse)
async def approve_rider(
    rider_id: int = Path(..., description="Rider user ID"),
    rider_name: Optional[str] = Query(None, min_length=1, max_length=100),
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """
    Approve a rider (Admin only).

    Activates the directory entry so the rider can sign in, accept
    shipments and receive WhatsApp notifications. `rider_name` replaces the
    display name given at sign-up.
    """
    rider = await _get_rider(db, rider_id)

    if rider.approval_status == RiderApprovalStatus.APPROVED and rider.is_active:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Rider is already approved"
        )

    rider.approval_status = RiderApprovalStatus.APPROVED
    rider.is_active = True
    rider.reviewed_at = datetime.now(timezone.utc)
    if rider_name:
        rider.display_name = rider_name
    await db.commit()
    await db.refresh(rider)

    await log_event(
        db=db,
        action=AuditAction.RIDER_APPROVED,
        actor_id=admin["user_id"],
        actor_username=admin["sub"],
        metadata={"rider_id": rider.id, "display_name": rider.display_name}
    )

    return rider


@router.delete("/{rider_id}", response_model=RiderResponse)
async def reject_rider(
    rider_id: int = Path(..., description="Rider user ID"),
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """
    Reject or remove a rider (Admin only).

    The directory entry is deactivated, not deleted: history and ledger rows
    that name the rider keep resolving, and the rider drops out of
    notification lookups.
    """
    rider = await _get_rider(db, rider_id)

    if rider.approval_status == RiderApprovalStatus.REJECTED:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Rider is already rejected"
        )

    rider.approval_status = RiderApprovalStatus.REJECTED
    rider.is_active = False
    rider.reviewed_at = datetime.now(timezone.utc)
    await db.commit()
    await db.refresh(rider)

    await log_event(
        db=db,
        action=AuditAction.RIDER_REJECTED,
        actor_id=admin["user_id"],
        actor_username=admin["sub"],
        metadata={"rider_id": rider.id}
    )

    return rider


@router.put("/{rider_id}/location", response_model=RiderLocationResponse)
async def update_rider_location(
    rider_id: int = Path(..., description="Rider user ID"),
    location: RiderLocationUpdate = Body(...),
    current_user: dict = Depends(require_role([UserRole.RIDER])),
    db: AsyncSession = Depends(get_db)
):
    """
    Record the rider's latest GPS fix (Rider only, own location).

    Keeps one row per rider. A fix older than the stored one is ignored so
    out-of-order uploads never move the rider backwards.
    """
    if rider_id != current_user["user_id"]:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Riders can only update their own location"
        )

    for _ in range(2):
        result = await db.execute(select(RiderLocation).where(RiderLocation.rider_id == rider_id))
        stored = result.scalar_one_or_none()

        if stored is None:
            stored = RiderLocation(rider_id=rider_id, **location.model_dump())
            db.add(stored)
        elif _as_utc(location.recorded_at) >= _as_utc(stored.recorded_at):
            for field, value in location.model_dump().items():
                setattr(stored, field, value)
        else:
            return stored

        try:
            await db.commit()
        except IntegrityError:
            # Another upload created the row first; update it instead
            await db.rollback()
            continue

        await db.refresh(stored)
        return stored

    raise HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail="Location was updated concurrently, retry the request"
    )


@router.get("/{rider_id}/location", response_model=RiderLocationResponse)
async def get_rider_location(
    rider_id: int = Path(..., description="Rider user ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Latest known position of a rider (Admins, or the rider themselves)."""
    if current_user["role"] != UserRole.ADMIN.value and rider_id != current_user["user_id"]:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied to this rider's location"
        )

    await _get_rider(db, rider_id)
    result = await db.execute(select(RiderLocation).where(RiderLocation.rider_id == rider_id))
    stored = result.scalar_one_or_none()

    if not stored:
        raise ResourceNotFoundError("Rider location", rider_id)

    return stored


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value.astimezone(timezone.utc)
