"""
Stage 4: Concurrency Tests.

Validates that duplicate and simultaneous triggers produce exactly one
transition and exactly one message per recipient.
"""

import asyncio

import pytest

from backend.app.core.config import settings
from backend.app.core.exceptions import ConcurrencyConflictError, InsufficientPermissionsError
from backend.app.domain.notifications.dispatcher import NotificationDispatcher
from backend.app.domain.notifications.ledger import LedgerKey, NotificationLedger
from backend.app.domain.shipments.status_store import AppendResult, StatusStore
from backend.app.domain.shipments.transition_guard import TransitionGuard, TransitionReason
from backend.app.models.shipment_enums import ShipmentStatus, RecipientRole
from backend.app.services.shipment_lock import lock_key, shipment_lock
from backend.tests.helpers import actor_for, auth_headers


async def _request_in_own_session(session_factory, guard, shipment_id, target, actor):
    async with session_factory() as session:
        return await guard.request_transition(session, shipment_id, target, actor)


@pytest.mark.asyncio
async def test_simultaneous_pickups_apply_once(
    session_factory, db_session, guard, channel, shipment, admin_user, rider_user
):
    """Ten identical pickup triggers race; one transition, one message per recipient."""
    actor = actor_for(rider_user)
    await guard.request_transition(db_session, shipment.id, ShipmentStatus.ASSIGNED, actor)
    channel.sent.clear()

    results = await asyncio.gather(*[
        _request_in_own_session(session_factory, guard, shipment.id, ShipmentStatus.PICKED_UP, actor)
        for _ in range(10)
    ])

    applied = [r for r in results if r.applied]
    assert len(applied) == 1
    assert all(r.reason == TransitionReason.ALREADY_IN_STATE for r in results if not r.applied)

    assert len(channel.bodies_to(rider_user.mobile)) == 1
    assert len(channel.bodies_to(admin_user.mobile)) == 1

    history = await StatusStore.read_history(db_session, shipment.id)
    assert [h.seq for h in history] == [1, 2, 3]


@pytest.mark.asyncio
async def test_two_riders_race_to_accept(session_factory, guard, channel, shipment, rider_user, other_rider):
    results = await asyncio.gather(
        _request_in_own_session(session_factory, guard, shipment.id, ShipmentStatus.ASSIGNED, actor_for(rider_user)),
        _request_in_own_session(session_factory, guard, shipment.id, ShipmentStatus.ASSIGNED, actor_for(other_rider)),
        return_exceptions=True,
    )

    applied = [r for r in results if not isinstance(r, Exception) and r.applied]
    rejected = [r for r in results if isinstance(r, InsufficientPermissionsError)]
    assert len(applied) == 1
    assert len(rejected) == 1
    assert len(channel.sent) == 1


@pytest.mark.asyncio
async def test_concurrent_dispatch_of_one_transition(
    session_factory, db_session, guard, channel, shipment, admin_user, rider_user
):
    """The dispatcher invoked twice for one transition sends once per recipient."""
    actor = actor_for(rider_user)
    await guard.request_transition(db_session, shipment.id, ShipmentStatus.ASSIGNED, actor)
    appended = await StatusStore.append_transition(
        db_session,
        shipment.id,
        ShipmentStatus.PICKED_UP,
        actor,
        expected_current_status=ShipmentStatus.ASSIGNED,
        expected_version=2,
    )
    assert appended.success
    channel.sent.clear()

    dispatcher = NotificationDispatcher(channel)

    async def dispatch_in_own_session():
        async with session_factory() as session:
            current = await StatusStore.read(session, shipment.id)
            return await dispatcher.dispatch(session, current, current.history[-1])

    reports = await asyncio.gather(*[dispatch_in_own_session() for _ in range(4)])

    assert len(channel.sent) == 2
    sent_roles = sorted(role.value for report in reports for role in report.sent)
    assert sent_roles == [RecipientRole.ADMIN.value, RecipientRole.RIDER.value]

    records = await NotificationLedger.list_for_shipment(db_session, shipment.id)
    assert len([r for r in records if r.transition_seq == 3]) == 2


@pytest.mark.asyncio
async def test_ledger_rejects_duplicate_key(db_session, shipment):
    key = LedgerKey(
        shipment_id=shipment.id,
        transition_seq=1,
        transition_to=ShipmentStatus.CREATED,
        recipient_role=RecipientRole.ADMIN,
    )

    first = await NotificationLedger.try_record(db_session, key, "919800000001", "hello")
    second = await NotificationLedger.try_record(db_session, key, "919800000001", "hello")

    assert first.inserted
    assert not second.inserted
    assert second.record is None


@pytest.mark.asyncio
async def test_stale_write_is_a_conflict(db_session, shipment, rider_user, admin_user):
    """The conditional write holds even without the lock."""
    actor = actor_for(admin_user)
    first = await StatusStore.append_transition(
        db_session, shipment.id, ShipmentStatus.ASSIGNED, actor,
        expected_current_status=ShipmentStatus.CREATED, expected_version=1, rider_id=rider_user.id
    )
    stale = await StatusStore.append_transition(
        db_session, shipment.id, ShipmentStatus.ASSIGNED, actor,
        expected_current_status=ShipmentStatus.CREATED, expected_version=1, rider_id=rider_user.id
    )

    assert first.success
    assert not stale.success

    history = await StatusStore.read_history(db_session, shipment.id)
    assert len(history) == 2


@pytest.mark.asyncio
async def test_repeated_conflicts_raise(db_session, channel, shipment, rider_user, mocker):
    mocker.patch.object(StatusStore, "append_transition", return_value=AppendResult(success=False))
    guard = TransitionGuard(NotificationDispatcher(channel))

    with pytest.raises(ConcurrencyConflictError) as exc_info:
        await guard.request_transition(db_session, shipment.id, ShipmentStatus.ASSIGNED, actor_for(rider_user))

    assert exc_info.value.details["retryable"] is True
    assert StatusStore.append_transition.await_count == 2
    assert channel.sent == []


@pytest.mark.asyncio
async def test_lock_timeout_is_retryable_conflict(db_session, guard, shipment, rider_user, redis_mock, monkeypatch):
    monkeypatch.setattr(settings, "shipment_lock_wait_seconds", 0.05)
    await redis_mock.set(lock_key(shipment.id), b"someone-else", px=10000)

    with pytest.raises(ConcurrencyConflictError):
        await guard.request_transition(db_session, shipment.id, ShipmentStatus.ASSIGNED, actor_for(rider_user))


@pytest.mark.asyncio
async def test_lock_is_per_shipment(redis_mock):
    async with shipment_lock(1, wait_seconds=0):
        async with shipment_lock(2, wait_seconds=0) as other:
            assert await other.owned()

        with pytest.raises(ConcurrencyConflictError):
            async with shipment_lock(1, wait_seconds=0):
                pass

    assert await redis_mock.exists(lock_key(1)) == 0
    assert await redis_mock.exists(lock_key(2)) == 0


@pytest.mark.asyncio
async def test_expired_holder_does_not_release_successor(redis_mock):
    """A holder that outlived its TTL leaves the next holder's lock alone."""
    successor = redis_mock.lock(lock_key(7), timeout=10, blocking_timeout=0, thread_local=False)

    async with shipment_lock(7, ttl_ms=20, wait_seconds=0):
        await asyncio.sleep(0.05)
        assert await successor.acquire()

    assert await successor.owned()
    assert await redis_mock.exists(lock_key(7)) == 1

    with pytest.raises(ConcurrencyConflictError):
        async with shipment_lock(7, wait_seconds=0):
            pass

    await successor.release()
    assert await redis_mock.exists(lock_key(7)) == 0


@pytest.mark.asyncio
async def test_lock_release_is_one_compare_and_delete(redis_mock, mocker):
    """Release never reads the key and deletes it in two separate commands."""
    get = mocker.spy(redis_mock, "get")
    delete = mocker.spy(redis_mock, "delete")

    async with shipment_lock(8, wait_seconds=0):
        pass

    assert get.call_count == 0
    assert delete.call_count == 0
    assert await redis_mock.exists(lock_key(8)) == 0


@pytest.mark.asyncio
async def test_duplicate_pickup_requests_over_http(client, db_session, channel, shipment, admin_user, rider_user):
    """Double tap on "Picked Up" from the rider app."""
    headers = auth_headers(rider_user)
    response = await client.post(f"/v1/shipments/{shipment.id}/accept", headers=headers)
    assert response.status_code == 200

    responses = await asyncio.gather(
        client.post(f"/v1/shipments/{shipment.id}/pickup", headers=headers),
        client.post(f"/v1/shipments/{shipment.id}/pickup", headers=headers),
    )

    assert [r.status_code for r in responses] == [200, 200]
    bodies = [r.json() for r in responses]
    assert sorted(b["applied"] for b in bodies) == [False, True]
    assert all(b["status"] == "picked_up" for b in bodies)

    pickup_texts = [b for b in channel.bodies_to(admin_user.mobile) if b.startswith("*Order Picked Up*")]
    assert len(pickup_texts) == 1
