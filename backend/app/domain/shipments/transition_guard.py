"""
Transition Guard (Domain Logic).

The only entry point for changing a shipment's status. A transition is
applied, and its notifications dispatched, exactly once no matter how many
times or how concurrently it is requested.

Flow:
1. Take the per-shipment lock
2. Read the current status
3. Not in the transition table -> rejected ("illegal_transition"), for any actor
4. Role check, then same status -> no-op ("already_in_state"), nothing is dispatched
5. Conditional append; on conflict re-read and validate once more
6. Release the lock and hand the new history entry to the dispatcher
"""

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.exceptions import (
    ConcurrencyConflictError,
    InsufficientPermissionsError,
    TransitionRequestError,
)
from backend.app.domain.notifications.dispatcher import DispatchReport, NotificationDispatcher
from backend.app.domain.shipments.state_machine import Actor, can_request, is_legal
from backend.app.domain.shipments.status_store import StatusStore
from backend.app.models.enums import UserRole
from backend.app.models.shipment import Shipment, ShipmentStatusHistory
from backend.app.models.shipment_enums import ShipmentStatus
from backend.app.services.directory import Directory
from backend.app.services.shipment_lock import shipment_lock

logger = logging.getLogger(__name__)

# One retry after a lost optimistic write, then the caller has to retry
MAX_APPEND_ATTEMPTS = 2


class TransitionReason:
    ALREADY_IN_STATE = "already_in_state"
    ILLEGAL_TRANSITION = "illegal_transition"


@dataclass
class TransitionResult:
    applied: bool
    status: ShipmentStatus
    reason: Optional[str] = None
    seq: Optional[int] = None
    notifications: Optional[DispatchReport] = None


class TransitionGuard:

    def __init__(self, dispatcher: NotificationDispatcher):
        self.dispatcher = dispatcher

    async def request_transition(
        self,
        db: AsyncSession,
        shipment_id: int,
        target_status: ShipmentStatus,
        actor: Actor,
        rider_id: Optional[int] = None,
        note: Optional[str] = None,
    ) -> TransitionResult:
        """
        Move a shipment to `target_status` if that is a genuine, legal change.

        Args:
            db: Database session
            shipment_id: Shipment to move
            target_status: Requested status
            actor: Verified principal making the request
            rider_id: Rider to assign, only for `assigned`
            note: Issue description or admin instructions, stored on the history entry

        Returns:
            TransitionResult; `applied` is False for no-ops and illegal requests

        Raises:
            ResourceNotFoundError: Unknown shipment
            InsufficientPermissionsError: Actor may not request this change
            TransitionRequestError: Bad rider assignment
            ConcurrencyConflictError: Lost the race twice, or lock timeout; retryable
        """
        if rider_id is not None and target_status != ShipmentStatus.ASSIGNED:
            raise TransitionRequestError(
                "rider_id is only accepted when assigning a shipment",
                details={"target_status": target_status.value}
            )

        async with shipment_lock(shipment_id):
            result, shipment, entry = await self._check_and_set(
                db, shipment_id, target_status, actor, rider_id, note
            )

        if not result.applied:
            return result

        result.notifications = await self.dispatcher.dispatch(db, shipment, entry)
        return result

    async def _check_and_set(
        self,
        db: AsyncSession,
        shipment_id: int,
        target: ShipmentStatus,
        actor: Actor,
        rider_id: Optional[int],
        note: Optional[str],
    ) -> Tuple[TransitionResult, Optional[Shipment], Optional[ShipmentStatusHistory]]:
        for attempt in range(1, MAX_APPEND_ATTEMPTS + 1):
            shipment = await StatusStore.read(db, shipment_id)
            current = shipment.status

            # Illegal for anyone outranks not allowed for this actor
            if current != target and not is_legal(current, target):
                logger.info("Rejected shipment %s transition %s -> %s", shipment_id, current.value, target.value)
                return TransitionResult(
                    applied=False,
                    status=current,
                    reason=TransitionReason.ILLEGAL_TRANSITION
                ), None, None

            if not can_request(actor, current, target, shipment.assigned_rider_id):
                raise InsufficientPermissionsError(
                    f"{actor.role.value} cannot move shipment {shipment_id} to {target.value}",
                    details={"shipment_id": shipment_id, "target_status": target.value}
                )

            if current == target:
                logger.info(
                    "Shipment %s already %s, ignoring duplicate request from %s",
                    shipment_id, target.value, actor.username or actor.user_id
                )
                return TransitionResult(
                    applied=False,
                    status=current,
                    reason=TransitionReason.ALREADY_IN_STATE
                ), None, None

            assign_to = None
            if target == ShipmentStatus.ASSIGNED:
                assign_to = await self._resolve_rider(db, shipment, actor, rider_id)

            appended = await StatusStore.append_transition(
                db,
                shipment_id,
                target,
                actor,
                expected_current_status=current,
                expected_version=shipment.version,
                rider_id=assign_to,
                note=note,
            )

            if appended.success:
                logger.info(
                    "Shipment %s moved %s -> %s (seq %s) by %s",
                    shipment_id, current.value, target.value, appended.entry.seq, actor.username or actor.user_id
                )
                shipment = await StatusStore.read(db, shipment_id)
                return TransitionResult(
                    applied=True,
                    status=target,
                    seq=appended.entry.seq
                ), shipment, appended.entry

            logger.warning(
                "Conflicting write on shipment %s (%s -> %s), attempt %d",
                shipment_id, current.value, target.value, attempt
            )

        raise ConcurrencyConflictError(shipment_id)

    async def _resolve_rider(
        self,
        db: AsyncSession,
        shipment: Shipment,
        actor: Actor,
        rider_id: Optional[int]
    ) -> int:
        if actor.role == UserRole.RIDER and rider_id not in (None, actor.user_id):
            raise InsufficientPermissionsError(
                "Riders can only assign shipments to themselves",
                details={"shipment_id": shipment.id}
            )

        if rider_id is None:
            if actor.role == UserRole.RIDER:
                rider_id = actor.user_id
            else:
                rider_id = shipment.assigned_rider_id

        if rider_id is None:
            raise TransitionRequestError(
                "A rider is required to assign this shipment",
                details={"shipment_id": shipment.id}
            )

        rider = await Directory.get_user(db, rider_id)
        if not rider or rider.role != UserRole.RIDER or not rider.is_active:
            raise TransitionRequestError(
                f"User {rider_id} is not an active rider",
                details={"rider_id": rider_id}
            )

        return rider_id
