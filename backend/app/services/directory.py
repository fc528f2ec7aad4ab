"""
Directory lookup.

Resolves who a notification goes to: rider and admin from the users table,
customer from the shipment itself.
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from backend.app.models.user import User
from backend.app.models.shipment import Shipment
from backend.app.models.shipment_enums import RecipientRole


@dataclass(frozen=True)
class Contact:
    role: RecipientRole
    address: str
    display_name: str


class Directory:

    @staticmethod
    async def get_user(db: AsyncSession, user_id: Optional[int]) -> Optional[User]:
        if user_id is None:
            return None
        result = await db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    @staticmethod
    async def lookup(db: AsyncSession, role: RecipientRole, shipment: Shipment) -> Optional[Contact]:
        """
        Contact for `role` on this shipment.

        Returns None when the recipient is unknown, inactive or has no mobile.
        """
        if role == RecipientRole.CUSTOMER:
            if not shipment.customer_mobile:
                return None
            return Contact(role=role, address=shipment.customer_mobile, display_name=shipment.customer_name)

        user_id = shipment.assigned_rider_id if role == RecipientRole.RIDER else shipment.created_by_admin_id
        user = await Directory.get_user(db, user_id)

        if not user or not user.is_active or not user.mobile:
            return None

        return Contact(role=role, address=user.mobile, display_name=user.display_name)
