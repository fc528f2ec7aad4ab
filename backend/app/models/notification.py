"""
Notification ledger database model.

One row per (shipment, transition, recipient) that the dispatcher has
claimed. The unique constraint is the deduplication mechanism.
"""

from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Enum, UniqueConstraint
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.shipment_enums import ShipmentStatus, RecipientRole


class NotificationRecord(Base):
    """
    Delivery idempotency ledger entry.

    Key columns are written once at claim time. `sent_at` goes from NULL to
    a timestamp once, when the channel confirms delivery.
    """
    __tablename__ = "notification_records"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Ledger key
    shipment_id = Column(Integer, ForeignKey('shipments.id'), nullable=False, index=True)
    transition_seq = Column(Integer, nullable=False)
    transition_to = Column(Enum(ShipmentStatus), nullable=False)
    recipient_role = Column(Enum(RecipientRole), nullable=False)

    # What was (or will be) sent
    recipient_address = Column(String(20), nullable=False)
    body = Column(Text, nullable=False)

    # Delivery outcome
    sent_at = Column(DateTime(timezone=True), nullable=True)
    provider_message_id = Column(String(255), nullable=True)
    last_error = Column(Text, nullable=True)
    resend_count = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint(
            'shipment_id', 'transition_seq', 'transition_to', 'recipient_role',
            name='uq_notification_ledger_key'
        ),
    )

    def __repr__(self):
        return (
            f"<NotificationRecord(shipment={self.shipment_id}, seq={self.transition_seq}, "
            f"to='{self.transition_to.value}', role='{self.recipient_role.value}', sent={self.sent_at is not None})>"
        )
