"""
Rider Location database model.

Latest reported GPS position per rider, overwritten on every update.
"""

from sqlalchemy import Column, Integer, Float, ForeignKey, DateTime
from sqlalchemy.sql import func
from backend.app.db.session import Base


class RiderLocation(Base):
    """
    Rider Location model.

    One row per rider. The rider app pushes its position while on shift and
    admins read it back for live tracking.
    """
    __tablename__ = "rider_locations"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    rider_id = Column(Integer, ForeignKey('users.id'), nullable=False, unique=True, index=True)

    # GPS fix
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    accuracy_meters = Column(Float, nullable=True)
    heading = Column(Float, nullable=True)  # Degrees from true north
    speed = Column(Float, nullable=True)  # Metres per second

    # Timing
    recorded_at = Column(DateTime(timezone=True), nullable=False)  # When the device took the fix
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<RiderLocation(rider_id={self.rider_id}, lat={self.latitude}, lng={self.longitude})>"
