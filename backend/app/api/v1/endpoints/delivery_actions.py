"""
Rider and admin delivery action endpoints.

Shortcuts used by the dashboards: each one is a transition request with a
fixed target status.
"""

from fastapi import APIRouter, Depends, Path
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.db.session import get_db
from backend.app.models.enums import UserRole
from backend.app.models.shipment_enums import ShipmentStatus, IssueAction
from backend.app.schemas.transition import IssueReport, IssueRespondRequest, TransitionResponse
from backend.app.core.dependencies import get_transition_guard
from backend.app.core.exceptions import IllegalTransitionError
from backend.app.core.guards import require_admin, require_role
from backend.app.domain.shipments.issues import format_issue_note
from backend.app.domain.shipments.state_machine import Actor
from backend.app.domain.shipments.transition_guard import TransitionGuard, TransitionReason
from backend.app.services.audit import log_event, AuditAction

router = APIRouter(prefix="/shipments", tags=["Delivery Actions"])

ISSUE_ACTION_TARGETS = {
    IssueAction.REDELIVER: ShipmentStatus.PICKED_UP,
    IssueAction.RETURN_TO_SHOP: ShipmentStatus.RESOLVED,
}


async def _rider_transition(
    db: AsyncSession,
    guard: TransitionGuard,
    shipment_id: int,
    target: ShipmentStatus,
    current_user: dict,
    note: str = None
) -> TransitionResponse:
    result = await guard.request_transition(
        db, shipment_id, target, Actor.from_token(current_user), note=note
    )
    return TransitionResponse.from_result(shipment_id, result)


@router.post("/{shipment_id}/accept", response_model=TransitionResponse)
async def accept_shipment(
    shipment_id: int = Path(..., description="Shipment ID"),
    current_user: dict = Depends(require_role([UserRole.RIDER])),
    guard: TransitionGuard = Depends(get_transition_guard),
    db: AsyncSession = Depends(get_db)
):
    """Rider accepts an available shipment (created -> assigned)."""
    return await _rider_transition(db, guard, shipment_id, ShipmentStatus.ASSIGNED, current_user)


@router.post("/{shipment_id}/pickup", response_model=TransitionResponse)
async def confirm_pickup(
    shipment_id: int = Path(..., description="Shipment ID"),
    current_user: dict = Depends(require_role([UserRole.RIDER])),
    guard: TransitionGuard = Depends(get_transition_guard),
    db: AsyncSession = Depends(get_db)
):
    """Rider collected the package (assigned -> picked_up)."""
    return await _rider_transition(db, guard, shipment_id, ShipmentStatus.PICKED_UP, current_user)


@router.post("/{shipment_id}/complete", response_model=TransitionResponse)
async def confirm_delivery(
    shipment_id: int = Path(..., description="Shipment ID"),
    current_user: dict = Depends(require_role([UserRole.RIDER])),
    guard: TransitionGuard = Depends(get_transition_guard),
    db: AsyncSession = Depends(get_db)
):
    """Rider handed the package over (picked_up -> delivered)."""
    return await _rider_transition(db, guard, shipment_id, ShipmentStatus.DELIVERED, current_user)


@router.post("/{shipment_id}/issues", response_model=TransitionResponse)
async def report_issue(
    issue: IssueReport,
    shipment_id: int = Path(..., description="Shipment ID"),
    current_user: dict = Depends(require_role([UserRole.RIDER])),
    guard: TransitionGuard = Depends(get_transition_guard),
    db: AsyncSession = Depends(get_db)
):
    """Rider cannot complete the delivery (assigned|picked_up -> issue_reported)."""
    note = format_issue_note(issue.issue_type, issue.note)
    return await _rider_transition(db, guard, shipment_id, ShipmentStatus.ISSUE_REPORTED, current_user, note)


@router.post("/{shipment_id}/issues/respond", response_model=TransitionResponse)
async def respond_to_issue(
    response: IssueRespondRequest,
    shipment_id: int = Path(..., description="Shipment ID"),
    current_user: dict = Depends(require_admin),
    guard: TransitionGuard = Depends(get_transition_guard),
    db: AsyncSession = Depends(get_db)
):
    """
    Admin decides on an open issue (Admin only).

    `redeliver` sends the rider back out with the package, `return_to_shop`
    closes the shipment as resolved. The message reaches the rider as their
    instructions.
    """
    actor = Actor.from_token(current_user)
    target = ISSUE_ACTION_TARGETS[response.action]

    result = await guard.request_transition(db, shipment_id, target, actor, note=response.message)

    if result.reason == TransitionReason.ILLEGAL_TRANSITION:
        raise IllegalTransitionError(shipment_id, result.status.value, target.value)

    if result.applied:
        await log_event(
            db=db,
            action=AuditAction.ISSUE_RESPONDED,
            actor_id=actor.user_id,
            actor_username=actor.username,
            shipment_id=shipment_id,
            metadata={"action": response.action.value, "seq": result.seq}
        )

    return TransitionResponse.from_result(shipment_id, result)
