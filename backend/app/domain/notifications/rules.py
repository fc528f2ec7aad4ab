"""
Notification rules.

Fixed mapping from a transition to its recipients and message text.
"""

from typing import List, Optional

from backend.app.models.shipment import Shipment, ShipmentStatusHistory
from backend.app.models.shipment_enums import ShipmentStatus, RecipientRole


DEFAULT_INSTRUCTIONS = {
    ShipmentStatus.ASSIGNED: "Please re-attempt this delivery.",
    ShipmentStatus.PICKED_UP: "Please redeliver the package to the customer.",
    ShipmentStatus.RESOLVED: "Please return the package to the shop.",
}


def recipients_for(from_status: Optional[ShipmentStatus], to_status: ShipmentStatus) -> List[RecipientRole]:
    """Recipients notified for `from_status -> to_status`, in send order."""
    if from_status == ShipmentStatus.ISSUE_REPORTED:
        return [RecipientRole.RIDER]

    if to_status == ShipmentStatus.ISSUE_REPORTED:
        return [RecipientRole.ADMIN]

    if from_status == ShipmentStatus.CREATED and to_status == ShipmentStatus.ASSIGNED:
        return [RecipientRole.RIDER]

    if from_status == ShipmentStatus.ASSIGNED and to_status == ShipmentStatus.PICKED_UP:
        return [RecipientRole.RIDER, RecipientRole.ADMIN]

    if from_status == ShipmentStatus.PICKED_UP and to_status == ShipmentStatus.DELIVERED:
        return [RecipientRole.ADMIN, RecipientRole.CUSTOMER]

    return []


def render_message(
    role: RecipientRole,
    shipment: Shipment,
    entry: ShipmentStatusHistory,
    rider_name: Optional[str] = None,
) -> str:
    """WhatsApp text for one recipient of a transition."""
    ref = f"#{shipment.id}"
    rider = rider_name or "your rider"

    if entry.from_status == ShipmentStatus.ISSUE_REPORTED:
        instructions = entry.note or DEFAULT_INSTRUCTIONS.get(entry.status, "Please contact the shop.")
        return f"*Admin Instructions*\n\nShipment {ref}: {instructions}"

    if entry.status == ShipmentStatus.ISSUE_REPORTED:
        details = entry.note or "No details given"
        return f"*Issue Reported*\n\nShipment {ref} reported by {rider}: {details}"

    if entry.status == ShipmentStatus.ASSIGNED:
        return (
            f"*New Delivery Assigned*\n\n"
            f"Shipment {ref}\n"
            f"Pickup: {shipment.pickup_address}\n"
            f"Deliver to: {shipment.customer_name}, {shipment.customer_address}"
        )

    if entry.status == ShipmentStatus.PICKED_UP:
        if role == RecipientRole.RIDER:
            return (
                f"*Package Picked Up*\n\n"
                f"Shipment {ref} is with you. Deliver to {shipment.customer_name} at {shipment.customer_address}."
            )
        return f"*Order Picked Up*\n\nShipment {ref} was picked up by {rider}."

    if entry.status == ShipmentStatus.DELIVERED:
        if role == RecipientRole.CUSTOMER:
            return f"*Delivery Completed*\n\nHi {shipment.customer_name}, your order {ref} has been delivered."
        return f"*Delivery Completed*\n\nShipment {ref} was delivered to {shipment.customer_name} by {rider}."

    return f"Shipment {ref} is now {entry.status.value}."
