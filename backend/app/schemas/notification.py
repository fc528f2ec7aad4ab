"""
Notification ledger and audit schemas.
"""

from pydantic import BaseModel
from datetime import datetime
from typing import Optional, Dict, Any
from backend.app.models.dlq import DLQStatus
from backend.app.models.shipment_enums import ShipmentStatus, RecipientRole


class NotificationRecordResponse(BaseModel):
    id: int
    shipment_id: int
    transition_seq: int
    transition_to: ShipmentStatus
    recipient_role: RecipientRole
    recipient_address: str
    body: str
    sent_at: Optional[datetime]
    provider_message_id: Optional[str]
    last_error: Optional[str]
    resend_count: int
    created_at: datetime

    class Config:
        from_attributes = True


class DeadLetterResponse(BaseModel):
    id: int
    task_name: str
    notification_record_id: Optional[int]
    error_message: str
    payload: Optional[Dict[str, Any]]
    status: DLQStatus
    retry_count: Optional[int]
    created_at: datetime
    last_retry_at: Optional[datetime]

    class Config:
        from_attributes = True


class AuditLogResponse(BaseModel):
    id: int
    actor_id: Optional[int]
    actor_username: Optional[str]
    action: str
    shipment_id: Optional[int]
    meta_data: Optional[Dict[str, Any]]
    timestamp: datetime

    class Config:
        from_attributes = True
