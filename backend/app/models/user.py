"""
User database model.

Directory entries for admins, riders and service principals. Credentials
live with the external auth provider; this table holds what the core needs
to address a person: display name and mobile number.
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Enum
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.enums import UserRole, RiderApprovalStatus


class User(Base):
    """
    User model for identity and contact lookup.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Subject claim issued by the auth provider
    external_id = Column(String(255), unique=True, index=True, nullable=False)
    display_name = Column(String(100), nullable=False)

    # WhatsApp address (E.164 without the leading +)
    mobile = Column(String(20), nullable=True)

    role = Column(Enum(UserRole), default=UserRole.RIDER, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    # Rider sign-ups are provisioned PENDING and inactive until an admin reviews them
    approval_status = Column(Enum(RiderApprovalStatus), default=RiderApprovalStatus.APPROVED, nullable=False)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<User(id={self.id}, name='{self.display_name}', role='{self.role.value}')>"
