"""
Delivery Idempotency Ledger.

`try_record` is the only deduplication point for outbound notifications:
an INSERT backed by a unique constraint, so exactly one concurrent caller
wins a given key.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from backend.app.core.exceptions import ResourceNotFoundError
from backend.app.models.notification import NotificationRecord
from backend.app.models.shipment_enums import ShipmentStatus, RecipientRole


@dataclass(frozen=True)
class LedgerKey:
    shipment_id: int
    transition_seq: int
    transition_to: ShipmentStatus
    recipient_role: RecipientRole


@dataclass
class RecordResult:
    inserted: bool
    record: Optional[NotificationRecord] = None


class NotificationLedger:

    @staticmethod
    async def try_record(
        db: AsyncSession,
        key: LedgerKey,
        address: str,
        body: str
    ) -> RecordResult:
        """
        Claim a ledger key.

        Commits its own transaction so the claim is durable before any send.

        Returns:
            RecordResult(inserted=True, record) for the first caller,
            RecordResult(inserted=False) if the key already exists
        """
        record = NotificationRecord(
            shipment_id=key.shipment_id,
            transition_seq=key.transition_seq,
            transition_to=key.transition_to,
            recipient_role=key.recipient_role,
            recipient_address=address,
            body=body,
        )
        db.add(record)

        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            return RecordResult(inserted=False)

        return RecordResult(inserted=True, record=record)

    @staticmethod
    async def mark_sent(db: AsyncSession, record: NotificationRecord, provider_message_id: str) -> bool:
        """
        Set `sent_at` once. Returns False if the record was already marked sent.
        """
        result = await db.execute(
            update(NotificationRecord)
            .where(NotificationRecord.id == record.id, NotificationRecord.sent_at.is_(None))
            .values(
                sent_at=datetime.now(timezone.utc),
                provider_message_id=provider_message_id,
                last_error=None
            )
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        await db.refresh(record)
        return result.rowcount == 1

    @staticmethod
    async def mark_failed(db: AsyncSession, record: NotificationRecord, error: str) -> None:
        await db.execute(
            update(NotificationRecord)
            .where(NotificationRecord.id == record.id, NotificationRecord.sent_at.is_(None))
            .values(last_error=error)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        await db.refresh(record)

    @staticmethod
    async def claim_resend(db: AsyncSession, record: NotificationRecord) -> bool:
        """
        Claim one operator resend of an unsent record.

        The conditional bump on `resend_count` lets only one of several
        concurrent resend requests through.
        """
        result = await db.execute(
            update(NotificationRecord)
            .where(
                NotificationRecord.id == record.id,
                NotificationRecord.sent_at.is_(None),
                NotificationRecord.resend_count == record.resend_count
            )
            .values(resend_count=NotificationRecord.resend_count + 1)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        await db.refresh(record)
        return result.rowcount == 1

    @staticmethod
    async def get(db: AsyncSession, shipment_id: int, record_id: int) -> NotificationRecord:
        result = await db.execute(
            select(NotificationRecord)
            .where(NotificationRecord.id == record_id, NotificationRecord.shipment_id == shipment_id)
            .execution_options(populate_existing=True)
        )
        record = result.scalar_one_or_none()

        if not record:
            raise ResourceNotFoundError("Notification", record_id)

        return record

    @staticmethod
    async def list_for_shipment(db: AsyncSession, shipment_id: int) -> List[NotificationRecord]:
        result = await db.execute(
            select(NotificationRecord)
            .where(NotificationRecord.shipment_id == shipment_id)
            .order_by(NotificationRecord.transition_seq, NotificationRecord.id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())
