"""
Issue views derived from the status history.

An issue is an `issue_reported` history entry. The entry right after it is
the admin's decision: `resolved` means the package goes back to the shop,
anything else sends the rider out again. After a redelivery the next
`delivered` or `issue_reported` entry is the rider's reattempt.

Nothing here writes; the history stays the only record of an issue.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from backend.app.domain.shipments.state_machine import TERMINAL_STATUSES
from backend.app.domain.shipments.status_store import StatusStore
from backend.app.models.enums import UserRole
from backend.app.models.shipment import Shipment, ShipmentStatusHistory
from backend.app.models.shipment_enums import IssueAction, ShipmentStatus
from backend.app.models.user import User

# Separates the issue type from the rider's free text in the history note
NOTE_SEPARATOR = ": "
UNSPECIFIED_ISSUE = "unspecified"


class IssueState:
    REPORTED = "reported"
    ADMIN_RESPONDED = "admin_responded"
    RESOLVED = "resolved"


class ReattemptStatus:
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class IssueView:
    id: int
    shipment_id: int
    seq: int
    issue_type: str
    note: Optional[str]
    reported_at: datetime
    state: str
    rider_id: Optional[int] = None
    rider_name: Optional[str] = None
    rider_mobile: Optional[str] = None
    admin_response: Optional[IssueAction] = None
    admin_message: Optional[str] = None
    admin_responded_at: Optional[datetime] = None
    rider_reattempt_status: Optional[str] = None
    rider_reattempt_at: Optional[datetime] = None
    customer_name: Optional[str] = None
    customer_mobile: Optional[str] = None
    customer_address: Optional[str] = None

    @property
    def pending(self) -> bool:
        return self.state != IssueState.RESOLVED


def format_issue_note(issue_type: str, note: Optional[str]) -> str:
    return f"{issue_type}{NOTE_SEPARATOR}{note}" if note else issue_type


def split_issue_note(note: Optional[str]) -> Tuple[str, Optional[str]]:
    if not note:
        return UNSPECIFIED_ISSUE, None
    issue_type, separator, detail = note.partition(NOTE_SEPARATOR)
    return issue_type, (detail or None) if separator else None


def _reattempt(later: Iterable[ShipmentStatusHistory]) -> Optional[ShipmentStatusHistory]:
    for entry in later:
        if entry.status in (ShipmentStatus.DELIVERED, ShipmentStatus.ISSUE_REPORTED):
            return entry
    return None


def build_issues(shipment: Shipment, riders: Dict[int, User]) -> List[IssueView]:
    """Issue views for one shipment, oldest first."""
    history = sorted(shipment.history, key=lambda h: h.seq)
    issues = []

    for index, entry in enumerate(history):
        if entry.status != ShipmentStatus.ISSUE_REPORTED:
            continue

        issue_type, detail = split_issue_note(entry.note)
        rider_id = entry.actor_id if entry.actor_role == UserRole.RIDER else shipment.assigned_rider_id
        rider = riders.get(rider_id)

        issue = IssueView(
            id=entry.id,
            shipment_id=shipment.id,
            seq=entry.seq,
            issue_type=issue_type,
            note=detail,
            reported_at=entry.created_at,
            state=IssueState.REPORTED,
            rider_id=rider_id,
            rider_name=rider.display_name if rider else None,
            rider_mobile=rider.mobile if rider else None,
            customer_name=shipment.customer_name,
            customer_mobile=shipment.customer_mobile,
            customer_address=shipment.customer_address,
        )

        later = history[index + 1:]
        if later:
            response = later[0]
            issue.admin_message = response.note
            issue.admin_responded_at = response.created_at

            if response.status == ShipmentStatus.RESOLVED:
                issue.admin_response = IssueAction.RETURN_TO_SHOP
                issue.state = IssueState.RESOLVED
            else:
                issue.admin_response = IssueAction.REDELIVER
                issue.state = IssueState.ADMIN_RESPONDED

                reattempt = _reattempt(later[1:])
                if reattempt is not None:
                    issue.rider_reattempt_status = (
                        ReattemptStatus.COMPLETED if reattempt.status == ShipmentStatus.DELIVERED
                        else ReattemptStatus.FAILED
                    )
                    issue.rider_reattempt_at = reattempt.created_at
                    issue.state = IssueState.RESOLVED

        issues.append(issue)

    return issues


async def _riders_for(db: AsyncSession, shipments: List[Shipment]) -> Dict[int, User]:
    rider_ids = {s.assigned_rider_id for s in shipments if s.assigned_rider_id}
    rider_ids.update(
        h.actor_id for s in shipments for h in s.history
        if h.status == ShipmentStatus.ISSUE_REPORTED and h.actor_id
    )
    if not rider_ids:
        return {}

    result = await db.execute(select(User).where(User.id.in_(rider_ids)))
    return {user.id: user for user in result.scalars().all()}


class IssueTracker:

    @staticmethod
    async def for_shipment(db: AsyncSession, shipment_id: int) -> List[IssueView]:
        """
        Raises:
            ResourceNotFoundError: Unknown shipment
        """
        shipment = await StatusStore.read(db, shipment_id)
        return build_issues(shipment, await _riders_for(db, [shipment]))

    @staticmethod
    async def list_issues(
        db: AsyncSession,
        admin_id: int,
        pending_only: bool = True,
        limit: int = 100
    ) -> List[IssueView]:
        """
        Issues on shipments created by `admin_id`, newest report first.

        An open issue always sits on a shipment that has not reached a
        terminal status, so pending lookups skip finished shipments.
        """
        query = select(Shipment).where(
            Shipment.created_by_admin_id == admin_id,
            Shipment.id.in_(
                select(ShipmentStatusHistory.shipment_id)
                .where(ShipmentStatusHistory.status == ShipmentStatus.ISSUE_REPORTED)
            )
        )
        if pending_only:
            query = query.where(Shipment.status.not_in(TERMINAL_STATUSES))

        query = query.execution_options(populate_existing=True)

        result = await db.execute(query)
        shipments = list(result.scalars().all())
        riders = await _riders_for(db, shipments)

        issues = [issue for shipment in shipments for issue in build_issues(shipment, riders)]
        if pending_only:
            issues = [issue for issue in issues if issue.pending]

        issues.sort(key=lambda issue: (issue.reported_at, issue.id), reverse=True)
        return issues[:limit]
