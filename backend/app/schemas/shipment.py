"""
Shipment Pydantic schemas.

Defines request and response models for shipment management.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List
from backend.app.models.enums import UserRole
from backend.app.models.shipment_enums import ShipmentStatus


class ShipmentCreate(BaseModel):
    """Schema for creating a new shipment."""
    pickup_address: str = Field(..., min_length=1, max_length=500, description="Shop pickup address")
    customer_name: str = Field(..., min_length=1, max_length=100)
    customer_mobile: Optional[str] = Field(None, pattern=r"^\d{8,15}$", description="WhatsApp number, digits only")
    customer_address: str = Field(..., min_length=1, max_length=500)
    price: Optional[float] = Field(None, ge=0)


class StatusHistoryResponse(BaseModel):
    """One entry of the status history."""
    seq: int
    from_status: Optional[ShipmentStatus]
    status: ShipmentStatus
    actor_id: Optional[int]
    actor_role: Optional[UserRole]
    note: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class ShipmentResponse(BaseModel):
    """Schema for shipment response."""
    id: int
    status: ShipmentStatus
    version: int
    created_by_admin_id: int
    assigned_rider_id: Optional[int]
    pickup_address: str
    customer_name: str
    customer_mobile: Optional[str]
    customer_address: str
    price: Optional[float]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ShipmentDetailResponse(ShipmentResponse):
    """Shipment with its full status history."""
    history: List[StatusHistoryResponse]


class ShipmentListResponse(BaseModel):
    shipments: List[ShipmentResponse]
    total: int
