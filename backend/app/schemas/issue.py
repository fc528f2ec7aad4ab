"""
Issue and rider directory schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List
from backend.app.models.enums import RiderApprovalStatus
from backend.app.models.shipment_enums import IssueAction


class IssueResponse(BaseModel):
    """A reported delivery issue and what happened to it."""
    id: int
    shipment_id: int
    seq: int
    issue_type: str
    note: Optional[str]
    reported_at: datetime
    state: str  # reported, admin_responded, resolved
    rider_id: Optional[int]
    rider_name: Optional[str]
    rider_mobile: Optional[str]
    admin_response: Optional[IssueAction]
    admin_message: Optional[str]
    admin_responded_at: Optional[datetime]
    rider_reattempt_status: Optional[str]  # completed, failed
    rider_reattempt_at: Optional[datetime]
    customer_name: Optional[str]
    customer_mobile: Optional[str]
    customer_address: Optional[str]

    class Config:
        from_attributes = True


class IssueListResponse(BaseModel):
    issues: List[IssueResponse]
    total: int


class RiderResponse(BaseModel):
    id: int
    external_id: str
    display_name: str
    mobile: Optional[str]
    is_active: bool
    approval_status: RiderApprovalStatus
    reviewed_at: Optional[datetime]
    created_at: datetime

    class Config:
        from_attributes = True


class RiderListResponse(BaseModel):
    riders: List[RiderResponse]
    total: int


class RiderLocationUpdate(BaseModel):
    """GPS fix pushed by the rider app."""
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    accuracy_meters: Optional[float] = Field(None, gt=0)
    heading: Optional[float] = Field(None, ge=0, lt=360)
    speed: Optional[float] = Field(None, ge=0)
    recorded_at: datetime


class RiderLocationResponse(BaseModel):
    rider_id: int
    latitude: float
    longitude: float
    accuracy_meters: Optional[float]
    heading: Optional[float]
    speed: Optional[float]
    recorded_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
