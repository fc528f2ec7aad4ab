"""
Notification Dispatcher (Domain Logic).

Turns a confirmed transition into at most one message per recipient.

Flow per recipient:
1. Resolve the contact (unknown contacts are skipped, not claimed)
2. Claim the ledger key
3. Send only if this call made the claim
4. On channel failure keep the claim, record the error and a DLQ entry

The dispatcher never retries a send. A resend is a deliberate operator
action (`resend`), because a failed call may still have delivered.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.exceptions import DeliveryChannelError, NotificationAlreadySentError
from backend.app.domain.notifications.ledger import LedgerKey, NotificationLedger
from backend.app.domain.notifications.rules import recipients_for, render_message
from backend.app.domain.shipments.status_store import StatusStore
from backend.app.models.notification import NotificationRecord
from backend.app.models.shipment import Shipment, ShipmentStatusHistory
from backend.app.models.shipment_enums import ShipmentStatus, RecipientRole
from backend.app.services import dead_letter
from backend.app.services.directory import Directory
from backend.app.services.whatsapp import MessageChannel

logger = logging.getLogger(__name__)


class OutcomeStatus:
    SENT = "sent"
    SKIPPED = "skipped"  # Ledger already had the key
    FAILED = "failed"
    NO_CONTACT = "no_contact"


@dataclass
class NotificationOutcome:
    recipient_role: RecipientRole
    status: str
    record_id: Optional[int] = None
    error: Optional[str] = None


@dataclass
class DispatchReport:
    shipment_id: int
    transition_seq: int
    transition_to: ShipmentStatus
    outcomes: List[NotificationOutcome] = field(default_factory=list)

    def _roles(self, status: str) -> List[RecipientRole]:
        return [o.recipient_role for o in self.outcomes if o.status == status]

    @property
    def sent(self) -> List[RecipientRole]:
        return self._roles(OutcomeStatus.SENT)

    @property
    def skipped(self) -> List[RecipientRole]:
        return self._roles(OutcomeStatus.SKIPPED)

    @property
    def failed(self) -> List[RecipientRole]:
        return self._roles(OutcomeStatus.FAILED)


@dataclass(frozen=True)
class _PlannedMessage:
    role: RecipientRole
    address: str
    body: str


class NotificationDispatcher:

    def __init__(self, channel: MessageChannel):
        self.channel = channel

    async def _plan(
        self,
        db: AsyncSession,
        shipment: Shipment,
        entry: ShipmentStatusHistory,
        report: DispatchReport
    ) -> List[_PlannedMessage]:
        # Rendered up front: a ledger rollback expires ORM state
        rider = await Directory.get_user(db, shipment.assigned_rider_id)
        rider_name = rider.display_name if rider else None

        plan = []
        for role in recipients_for(entry.from_status, entry.status):
            contact = await Directory.lookup(db, role, shipment)
            if contact is None:
                if role != RecipientRole.CUSTOMER:
                    logger.warning(
                        "No contact for %s on shipment %s, not notified for seq %s",
                        role.value, shipment.id, entry.seq
                    )
                report.outcomes.append(NotificationOutcome(recipient_role=role, status=OutcomeStatus.NO_CONTACT))
                continue
            plan.append(_PlannedMessage(
                role=role,
                address=contact.address,
                body=render_message(role, shipment, entry, rider_name),
            ))
        return plan

    async def dispatch(
        self,
        db: AsyncSession,
        shipment: Shipment,
        entry: ShipmentStatusHistory
    ) -> DispatchReport:
        """
        Notify every recipient of `entry` that has not been notified yet.

        Safe to call any number of times for the same transition.

        Args:
            db: Database session
            shipment: Shipment as of the transition
            entry: History entry of the transition

        Returns:
            DispatchReport with one outcome per mapped recipient
        """
        report = DispatchReport(
            shipment_id=shipment.id,
            transition_seq=entry.seq,
            transition_to=entry.status
        )
        plan = await self._plan(db, shipment, entry, report)

        for message in plan:
            key = LedgerKey(
                shipment_id=report.shipment_id,
                transition_seq=report.transition_seq,
                transition_to=report.transition_to,
                recipient_role=message.role
            )
            claim = await NotificationLedger.try_record(db, key, message.address, message.body)

            if not claim.inserted:
                logger.info(
                    "Skipping %s for shipment %s seq %s, already in ledger",
                    message.role.value, key.shipment_id, key.transition_seq
                )
                report.outcomes.append(NotificationOutcome(recipient_role=message.role, status=OutcomeStatus.SKIPPED))
                continue

            outcome = await self._send(db, claim.record, key)
            report.outcomes.append(outcome)

        return report

    async def _send(self, db: AsyncSession, record: NotificationRecord, key: LedgerKey) -> NotificationOutcome:
        record_id = record.id

        try:
            message_id = await self.channel.send(record.recipient_address, record.body)
        except DeliveryChannelError as e:
            logger.error(
                "Failed to notify %s for shipment %s seq %s: %s",
                key.recipient_role.value, key.shipment_id, key.transition_seq, e.message
            )
            await NotificationLedger.mark_failed(db, record, e.message)
            await dead_letter.record_failure(
                db,
                error_message=e.message,
                notification_record_id=record_id,
                payload={
                    "shipment_id": key.shipment_id,
                    "transition_seq": key.transition_seq,
                    "recipient_role": key.recipient_role.value,
                }
            )
            return NotificationOutcome(
                recipient_role=key.recipient_role,
                status=OutcomeStatus.FAILED,
                record_id=record_id,
                error=e.message
            )

        await NotificationLedger.mark_sent(db, record, message_id)
        logger.info(
            "Notified %s for shipment %s seq %s (%s)",
            key.recipient_role.value, key.shipment_id, key.transition_seq, message_id
        )
        return NotificationOutcome(recipient_role=key.recipient_role, status=OutcomeStatus.SENT, record_id=record_id)

    async def redispatch(self, db: AsyncSession, shipment_id: int, seq: Optional[int] = None) -> DispatchReport:
        """
        Re-run dispatch for a transition that already happened.

        Used for recovery after a crash between the status write and the end
        of dispatch. Recipients already in the ledger are skipped.

        Args:
            db: Database session
            shipment_id: Shipment to recover
            seq: History seq of the transition, defaults to the latest one
        """
        shipment = await StatusStore.read(db, shipment_id)

        if seq is None:
            entry = shipment.history[-1]
        else:
            entry = await StatusStore.get_entry(db, shipment_id, seq)

        logger.info("Redispatching shipment %s seq %s (%s)", shipment_id, entry.seq, entry.status.value)
        return await self.dispatch(db, shipment, entry)

    async def resend(self, db: AsyncSession, shipment_id: int, record_id: int) -> NotificationRecord:
        """
        Operator resend of a claimed but unsent notification.

        Raises:
            NotificationAlreadySentError: If the record was sent or another resend won
            DeliveryChannelError: If the channel fails again
        """
        record = await NotificationLedger.get(db, shipment_id, record_id)

        if record.sent_at is not None or not await NotificationLedger.claim_resend(db, record):
            raise NotificationAlreadySentError(record_id)

        try:
            message_id = await self.channel.send(record.recipient_address, record.body)
        except DeliveryChannelError as e:
            logger.error("Resend of notification %s failed: %s", record_id, e.message)
            await NotificationLedger.mark_failed(db, record, e.message)
            await dead_letter.mark_retry(db, record_id, e.message)
            raise

        await NotificationLedger.mark_sent(db, record, message_id)
        await dead_letter.close_for_record(db, record_id)
        logger.info("Resent notification %s for shipment %s", record_id, shipment_id)
        return record
