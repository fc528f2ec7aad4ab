"""
Shipment Status Store (Domain Logic).

Persists shipments and their append-only status history. Every status write
is conditional on the status and version the writer read, so two concurrent
writers cannot both believe they caused the same transition.
"""

from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError

from backend.app.core.exceptions import ResourceNotFoundError
from backend.app.domain.shipments.state_machine import Actor
from backend.app.models.shipment import Shipment, ShipmentStatusHistory
from backend.app.models.shipment_enums import ShipmentStatus


@dataclass
class AppendResult:
    """Outcome of a conditional append. `entry` is set on success."""
    success: bool
    entry: Optional[ShipmentStatusHistory] = None


class StatusStore:

    @staticmethod
    async def read(db: AsyncSession, shipment_id: int) -> Shipment:
        """
        Load a shipment with its history, bypassing stale identity-map state.

        Raises:
            ResourceNotFoundError: If the shipment does not exist
        """
        result = await db.execute(
            select(Shipment)
            .where(Shipment.id == shipment_id)
            .execution_options(populate_existing=True)
        )
        shipment = result.scalar_one_or_none()

        if not shipment:
            raise ResourceNotFoundError("Shipment", shipment_id)

        return shipment

    @staticmethod
    async def read_history(db: AsyncSession, shipment_id: int) -> List[ShipmentStatusHistory]:
        result = await db.execute(
            select(ShipmentStatusHistory)
            .where(ShipmentStatusHistory.shipment_id == shipment_id)
            .order_by(ShipmentStatusHistory.seq)
        )
        return list(result.scalars().all())

    @staticmethod
    async def get_entry(db: AsyncSession, shipment_id: int, seq: int) -> ShipmentStatusHistory:
        result = await db.execute(
            select(ShipmentStatusHistory).where(
                ShipmentStatusHistory.shipment_id == shipment_id,
                ShipmentStatusHistory.seq == seq
            )
        )
        entry = result.scalar_one_or_none()

        if not entry:
            raise ResourceNotFoundError("Shipment transition", f"{shipment_id}#{seq}")

        return entry

    @staticmethod
    async def create(
        db: AsyncSession,
        actor: Actor,
        pickup_address: str,
        customer_name: str,
        customer_address: str,
        customer_mobile: Optional[str] = None,
        price: Optional[float] = None,
    ) -> Shipment:
        """
        Create a shipment in `created` together with its first history entry.

        Both rows are committed in one transaction.
        """
        shipment = Shipment(
            status=ShipmentStatus.CREATED,
            version=1,
            created_by_admin_id=actor.user_id,
            pickup_address=pickup_address,
            customer_name=customer_name,
            customer_mobile=customer_mobile,
            customer_address=customer_address,
            price=price,
        )
        db.add(shipment)
        await db.flush()

        db.add(ShipmentStatusHistory(
            shipment_id=shipment.id,
            seq=1,
            from_status=None,
            status=ShipmentStatus.CREATED,
            actor_id=actor.user_id,
            actor_role=actor.role,
        ))
        await db.commit()

        return await StatusStore.read(db, shipment.id)

    @staticmethod
    async def append_transition(
        db: AsyncSession,
        shipment_id: int,
        new_status: ShipmentStatus,
        actor: Actor,
        expected_current_status: ShipmentStatus,
        expected_version: Optional[int] = None,
        rider_id: Optional[int] = None,
        note: Optional[str] = None,
    ) -> AppendResult:
        """
        Conditionally move a shipment to `new_status`.

        Flow:
        1. UPDATE ... WHERE status = expected (and version = expected)
        2. Zero rows updated -> conflict, rollback
        3. Insert history row with the next seq in the same transaction
        4. Commit; a unique violation on (shipment_id, seq) is also a conflict

        Args:
            db: Database session
            shipment_id: Shipment to move
            new_status: Target status
            actor: Principal recorded on the history entry
            expected_current_status: Status the caller validated against
            expected_version: Version the caller read; required to append history
            rider_id: Rider to assign (for `assigned`)
            note: Issue description or admin instructions

        Returns:
            AppendResult with the new history entry on success
        """
        if expected_version is None:
            current = await StatusStore.read(db, shipment_id)
            expected_version = current.version

        values = {
            "status": new_status,
            "version": Shipment.version + 1,
            "updated_at": func.now(),
        }
        if rider_id is not None:
            values["assigned_rider_id"] = rider_id

        result = await db.execute(
            update(Shipment)
            .where(
                Shipment.id == shipment_id,
                Shipment.status == expected_current_status,
                Shipment.version == expected_version
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount != 1:
            await db.rollback()
            return AppendResult(success=False)

        entry = ShipmentStatusHistory(
            shipment_id=shipment_id,
            seq=expected_version + 1,
            from_status=expected_current_status,
            status=new_status,
            actor_id=actor.user_id,
            actor_role=actor.role,
            note=note,
        )
        db.add(entry)

        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            return AppendResult(success=False)

        return AppendResult(success=True, entry=entry)
