"""
Per-shipment locking service.

Serializes check-and-set on a single shipment across processes using a
Redis lock per shipment. Different shipments never contend.

Built on redis-py's token lock: acquisition is `SET NX PX` and release is a
single compare-and-delete script, so a holder whose TTL lapsed can never
delete the lock a later request took.
"""

import logging
from contextlib import asynccontextmanager

from redis.exceptions import LockError, LockNotOwnedError

from backend.app.core.config import settings
from backend.app.core.exceptions import ConcurrencyConflictError
import backend.app.core.redis_client as redis_client_module

logger = logging.getLogger(__name__)

# Redis key prefix for shipment locks
SHIPMENT_LOCK_PREFIX = "lock:shipment:"


def lock_key(shipment_id: int) -> str:
    return f"{SHIPMENT_LOCK_PREFIX}{shipment_id}"


@asynccontextmanager
async def shipment_lock(
    shipment_id: int,
    ttl_ms: int = None,
    wait_seconds: float = None,
    poll_interval_ms: int = None
):
    """
    Hold the per-shipment lock for the duration of the block.

    The key expires after `ttl_ms` so a crashed holder cannot block the
    shipment forever. The conditional status write stays authoritative if a
    holder outlives its TTL.

    Raises:
        ConcurrencyConflictError: If the lock could not be taken in time
    """
    key = lock_key(shipment_id)
    ttl_ms = ttl_ms or settings.shipment_lock_ttl_ms
    wait_seconds = wait_seconds if wait_seconds is not None else settings.shipment_lock_wait_seconds
    poll_interval_ms = poll_interval_ms or settings.shipment_lock_poll_interval_ms

    lock = redis_client_module.redis_client.lock(
        key,
        timeout=ttl_ms / 1000,
        sleep=poll_interval_ms / 1000,
        blocking_timeout=wait_seconds,
        thread_local=False,
    )

    try:
        acquired = await lock.acquire()
    except LockError as e:
        logger.warning("Lock %s could not be acquired: %s", key, e)
        acquired = False

    if not acquired:
        logger.warning("Timed out waiting for lock on shipment %s", shipment_id)
        raise ConcurrencyConflictError(
            shipment_id,
            message="Shipment is busy with another update, retry the request"
        )

    try:
        yield lock
    finally:
        try:
            await lock.release()
        except LockNotOwnedError:
            logger.warning("Lock %s expired before release", key)
