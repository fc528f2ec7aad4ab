"""
Shipment-related enumerations.
"""

import enum


class ShipmentStatus(str, enum.Enum):
    """Shipment status enumeration."""
    CREATED = "created"  # Created by admin, waiting for a rider
    ASSIGNED = "assigned"  # Rider accepted or was assigned
    PICKED_UP = "picked_up"  # Rider collected the package from the shop
    DELIVERED = "delivered"  # Terminal: handed to the customer
    ISSUE_REPORTED = "issue_reported"  # Rider could not deliver, waiting for admin
    RESOLVED = "resolved"  # Terminal: issue closed (e.g. returned to shop)


class RecipientRole(str, enum.Enum):
    """Who a notification is addressed to."""
    RIDER = "rider"
    ADMIN = "admin"
    CUSTOMER = "customer"


class IssueAction(str, enum.Enum):
    """Admin response to a reported issue."""
    REDELIVER = "redeliver"
    RETURN_TO_SHOP = "return_to_shop"
