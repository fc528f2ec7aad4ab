"""
Transition request/response schemas.
"""

from pydantic import BaseModel, Field
from typing import Optional, List
from backend.app.models.shipment_enums import ShipmentStatus, RecipientRole, IssueAction
from backend.app.domain.notifications.dispatcher import DispatchReport
from backend.app.domain.shipments.transition_guard import TransitionResult


class TransitionRequest(BaseModel):
    """Requested status change. The actor comes from the bearer token."""
    target_status: ShipmentStatus
    rider_id: Optional[int] = Field(None, description="Rider to assign, only for 'assigned'")
    note: Optional[str] = Field(None, max_length=1000)


class IssueReport(BaseModel):
    """Rider reports a delivery problem."""
    issue_type: str = Field(..., min_length=1, max_length=100, pattern=r"^[A-Za-z0-9_\- ]+$", description="e.g. customer_unreachable")
    note: Optional[str] = Field(None, max_length=1000)


class IssueRespondRequest(BaseModel):
    """Admin decision on a reported issue."""
    action: IssueAction
    message: str = Field(..., min_length=1, max_length=1000, description="Instructions sent to the rider")


class NotificationOutcomeResponse(BaseModel):
    recipient_role: RecipientRole
    status: str  # sent, skipped, failed, no_contact
    record_id: Optional[int] = None
    error: Optional[str] = None


class DispatchReportResponse(BaseModel):
    shipment_id: int
    transition_seq: int
    transition_to: ShipmentStatus
    outcomes: List[NotificationOutcomeResponse]

    @classmethod
    def from_report(cls, report: DispatchReport) -> "DispatchReportResponse":
        return cls(
            shipment_id=report.shipment_id,
            transition_seq=report.transition_seq,
            transition_to=report.transition_to,
            outcomes=[
                NotificationOutcomeResponse(
                    recipient_role=o.recipient_role,
                    status=o.status,
                    record_id=o.record_id,
                    error=o.error
                )
                for o in report.outcomes
            ]
        )


class TransitionResponse(BaseModel):
    """Result of a transition request. Non-applied requests are not errors."""
    shipment_id: int
    applied: bool
    status: ShipmentStatus
    reason: Optional[str] = None
    seq: Optional[int] = None
    notifications: Optional[DispatchReportResponse] = None

    @classmethod
    def from_result(cls, shipment_id: int, result: TransitionResult) -> "TransitionResponse":
        return cls(
            shipment_id=shipment_id,
            applied=result.applied,
            status=result.status,
            reason=result.reason,
            seq=result.seq,
            notifications=(
                DispatchReportResponse.from_report(result.notifications)
                if result.notifications else None
            )
        )


class RedispatchRequest(BaseModel):
    seq: Optional[int] = Field(None, ge=1, description="History seq of the transition, defaults to the latest")
