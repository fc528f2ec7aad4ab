"""
User roles enumeration.

Defines the principal types for the delivery system.
"""

import enum


class UserRole(str, enum.Enum):
    """
    User role enumeration.

    Roles:
        ADMIN: Shop admin who creates shipments and resolves issues
        RIDER: Delivery rider (default role)
        SYSTEM: Service principal used by webhook callbacks
    """
    ADMIN = "ADMIN"
    RIDER = "RIDER"
    SYSTEM = "SYSTEM"


class RiderApprovalStatus(str, enum.Enum):
    """
    Admin review state of a rider's directory entry.

    A pending rider stays inactive until approved; rejection deactivates the
    entry instead of deleting it, so history rows keep resolving.
    """
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
