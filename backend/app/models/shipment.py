"""
Shipment database models.

A shipment is created by an admin and moved through its lifecycle only by
the transition guard. Every status change appends a history row.
"""

from sqlalchemy import Column, Integer, String, Float, Text, DateTime, ForeignKey, Enum, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.enums import UserRole
from backend.app.models.shipment_enums import ShipmentStatus


class Shipment(Base):
    """
    Shipment model.

    `version` counts history entries and backs the optimistic concurrency
    check: a status write only lands when both status and version still
    match what the writer read.
    """
    __tablename__ = "shipments"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    status = Column(Enum(ShipmentStatus), default=ShipmentStatus.CREATED, nullable=False, index=True)
    version = Column(Integer, default=1, nullable=False)

    # Ownership
    created_by_admin_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    assigned_rider_id = Column(Integer, ForeignKey('users.id'), nullable=True, index=True)

    # Pickup and drop-off
    pickup_address = Column(String(500), nullable=False)
    customer_name = Column(String(100), nullable=False)
    customer_mobile = Column(String(20), nullable=True)
    customer_address = Column(String(500), nullable=False)
    price = Column(Float, nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    history = relationship(
        "ShipmentStatusHistory",
        order_by="ShipmentStatusHistory.seq",
        back_populates="shipment",
        lazy="selectin",
    )

    def __repr__(self):
        return f"<Shipment(id={self.id}, status='{self.status.value}', version={self.version})>"


class ShipmentStatusHistory(Base):
    """
    Append-only status history.

    (shipment_id, seq) is unique, so two writers can never both append the
    same step even if they got past the status check.
    """
    __tablename__ = "shipment_status_history"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    shipment_id = Column(Integer, ForeignKey('shipments.id'), nullable=False, index=True)
    seq = Column(Integer, nullable=False)

    from_status = Column(Enum(ShipmentStatus), nullable=True)
    status = Column(Enum(ShipmentStatus), nullable=False)

    # Who caused it
    actor_id = Column(Integer, nullable=True)
    actor_role = Column(Enum(UserRole), nullable=True)

    # Issue description or admin instructions
    note = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    shipment = relationship("Shipment", back_populates="history")

    __table_args__ = (
        UniqueConstraint('shipment_id', 'seq', name='uq_shipment_history_seq'),
    )

    def __repr__(self):
        return f"<ShipmentStatusHistory(shipment_id={self.shipment_id}, seq={self.seq}, status='{self.status.value}')>"
