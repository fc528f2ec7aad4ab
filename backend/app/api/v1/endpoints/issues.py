"""
Issue queue API Endpoints.

Read side of rider-reported issues: the admin queue and the per-shipment
issue list. Reporting and responding stay transition requests in
delivery_actions.
"""

from fastapi import APIRouter, Depends, HTTPException, status, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.db.session import get_db
from backend.app.models.enums import UserRole
from backend.app.schemas.issue import IssueListResponse, IssueResponse
from backend.app.core.dependencies import get_current_user
from backend.app.core.guards import require_admin
from backend.app.domain.shipments.issues import IssueTracker
from backend.app.domain.shipments.status_store import StatusStore

router = APIRouter(prefix="/issues", tags=["Issues"])
shipment_router = APIRouter(prefix="/shipments", tags=["Issues"])


def _issue_list(issues) -> IssueListResponse:
    return IssueListResponse(
        issues=[IssueResponse.model_validate(issue) for issue in issues],
        total=len(issues)
    )


@router.get("", response_model=IssueListResponse)
async def list_issues(
    state: str = Query("pending", pattern="^(pending|all)$"),
    limit: int = Query(100, ge=1, le=500),
    current_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """
    Issue queue for the calling admin's shipments (Admin only).

    `pending` holds issues waiting on an admin decision or on the rider's
    redelivery; `all` adds resolved ones.
    """
    issues = await IssueTracker.list_issues(
        db, current_user["user_id"], pending_only=state == "pending", limit=limit
    )
    return _issue_list(issues)


@shipment_router.get("/{shipment_id}/issues", response_model=IssueListResponse)
async def list_shipment_issues(
    shipment_id: int = Path(..., description="Shipment ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Issues reported on one shipment, oldest first. Riders see their own shipments only."""
    if current_user["role"] == UserRole.RIDER.value:
        shipment = await StatusStore.read(db, shipment_id)
        if shipment.assigned_rider_id != current_user["user_id"]:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="This shipment is not assigned to you"
            )

    return _issue_list(await IssueTracker.for_shipment(db, shipment_id))
