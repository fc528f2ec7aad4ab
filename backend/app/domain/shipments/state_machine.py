"""
Shipment status transition table.

The single source of truth for which status changes are legal and who may
request them.
"""

from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional

from backend.app.models.enums import UserRole
from backend.app.models.shipment_enums import ShipmentStatus


TRANSITIONS: Dict[ShipmentStatus, FrozenSet[ShipmentStatus]] = {
    ShipmentStatus.CREATED: frozenset({ShipmentStatus.ASSIGNED}),
    ShipmentStatus.ASSIGNED: frozenset({ShipmentStatus.PICKED_UP, ShipmentStatus.ISSUE_REPORTED}),
    ShipmentStatus.PICKED_UP: frozenset({ShipmentStatus.DELIVERED, ShipmentStatus.ISSUE_REPORTED}),
    # An open issue suspends the linear path until an admin decides
    ShipmentStatus.ISSUE_REPORTED: frozenset({
        ShipmentStatus.ASSIGNED,
        ShipmentStatus.PICKED_UP,
        ShipmentStatus.RESOLVED,
    }),
    ShipmentStatus.DELIVERED: frozenset(),
    ShipmentStatus.RESOLVED: frozenset(),
}

TERMINAL_STATUSES = frozenset({ShipmentStatus.DELIVERED, ShipmentStatus.RESOLVED})

# Targets a rider may request; admins and system principals may request any
RIDER_TARGETS = frozenset({
    ShipmentStatus.ASSIGNED,
    ShipmentStatus.PICKED_UP,
    ShipmentStatus.DELIVERED,
    ShipmentStatus.ISSUE_REPORTED,
})


def is_legal(current: ShipmentStatus, target: ShipmentStatus) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


@dataclass(frozen=True)
class Actor:
    """Verified principal that triggered a transition."""
    user_id: Optional[int]
    role: UserRole
    username: Optional[str] = None

    @classmethod
    def from_token(cls, payload: dict) -> "Actor":
        return cls(
            user_id=payload.get("user_id"),
            role=UserRole(payload["role"]),
            username=payload.get("sub"),
        )


def can_request(
    actor: Actor,
    current: ShipmentStatus,
    target: ShipmentStatus,
    assigned_rider_id: Optional[int],
) -> bool:
    """
    Role policy for transition requests.

    A rider may accept an unassigned shipment and move their own shipments
    along the delivery path; leaving an open issue and anything else needs
    an admin or system principal. Repeating a request that already took
    effect stays allowed so retries reach the no-op path.
    """
    if actor.role in (UserRole.ADMIN, UserRole.SYSTEM):
        return True

    if target not in RIDER_TARGETS:
        return False

    if target == ShipmentStatus.ASSIGNED and assigned_rider_id is None:
        return current == ShipmentStatus.CREATED

    if assigned_rider_id is None or assigned_rider_id != actor.user_id:
        return False

    if current == ShipmentStatus.ISSUE_REPORTED:
        return target == ShipmentStatus.ISSUE_REPORTED

    return True
