"""
Dead letter helpers for failed notification sends.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc

from backend.app.models.dlq import DeadLetterQueue, DLQStatus

NOTIFICATION_TASK = "send_notification"

OPEN_STATUSES = (DLQStatus.FAILED, DLQStatus.RETRYING)


async def record_failure(
    db: AsyncSession,
    error_message: str,
    payload: Dict[str, Any],
    notification_record_id: Optional[int] = None,
    task_name: str = NOTIFICATION_TASK
) -> DeadLetterQueue:
    item = DeadLetterQueue(
        task_name=task_name,
        error_message=error_message,
        notification_record_id=notification_record_id,
        payload=payload,
        status=DLQStatus.FAILED
    )
    db.add(item)
    await db.commit()
    return item


async def list_open(db: AsyncSession, limit: int = 100) -> List[DeadLetterQueue]:
    """Failed sends that still need an operator decision."""
    result = await db.execute(
        select(DeadLetterQueue)
        .where(DeadLetterQueue.status.in_(OPEN_STATUSES))
        .order_by(desc(DeadLetterQueue.created_at))
        .limit(limit)
    )
    return list(result.scalars().all())


async def _entries_for_record(db: AsyncSession, record_id: int) -> List[DeadLetterQueue]:
    result = await db.execute(
        select(DeadLetterQueue).where(
            DeadLetterQueue.notification_record_id == record_id,
            DeadLetterQueue.status.in_(OPEN_STATUSES)
        )
    )
    return list(result.scalars().all())


async def mark_retry(db: AsyncSession, record_id: int, error_message: str) -> None:
    now = datetime.now(timezone.utc)
    for item in await _entries_for_record(db, record_id):
        item.status = DLQStatus.RETRYING
        item.retry_count = (item.retry_count or 0) + 1
        item.error_message = error_message
        item.last_retry_at = now
    await db.commit()


async def close_for_record(db: AsyncSession, record_id: int) -> int:
    """Mark DLQ entries of a notification as processed. Returns how many."""
    items = await _entries_for_record(db, record_id)
    now = datetime.now(timezone.utc)
    for item in items:
        item.status = DLQStatus.PROCESSED
        item.last_retry_at = now
    await db.commit()
    return len(items)
