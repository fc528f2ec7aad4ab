"""
Stage 5: Failure Injection Tests.

Validates resilience against channel failures and crashes part way through
a dispatch.
"""

import httpx
import pytest

from backend.app.core.exceptions import DeliveryChannelError, NotificationAlreadySentError
from backend.app.core.reliability import CircuitBreaker, CircuitOpenError
from backend.app.domain.notifications.dispatcher import OutcomeStatus
from backend.app.domain.notifications.ledger import NotificationLedger
from backend.app.domain.shipments.status_store import StatusStore
from backend.app.domain.shipments.transition_guard import TransitionReason
from backend.app.models.dlq import DLQStatus
from backend.app.models.shipment_enums import ShipmentStatus, RecipientRole
from backend.app.services import dead_letter
from backend.app.services.whatsapp import WhatsAppChannel
from backend.tests.helpers import CUSTOMER_MOBILE, actor_for


@pytest.mark.asyncio
async def test_circuit_breaker_activates():
    """Test that circuit breaker opens after threshold failures."""
    cb = CircuitBreaker(failure_threshold=2, reset_timeout=1)

    async def failing_func():
        raise ValueError("Boom")

    # Fail 1
    with pytest.raises(ValueError):
        await cb.call(failing_func)

    # Fail 2 (Threshold reached)
    with pytest.raises(ValueError):
        await cb.call(failing_func)

    # Call 3 (Should be CircuitOpenError)
    with pytest.raises(CircuitOpenError):
        await cb.call(failing_func)


def _whatsapp(handler, breaker=None) -> WhatsAppChannel:
    channel = WhatsAppChannel(
        phone_number_id="1055",
        access_token="test-token",
        base_url="https://graph.test/v19.0",
        breaker=breaker,
    )
    channel._client = httpx.AsyncClient(
        base_url=channel.base_url, transport=httpx.MockTransport(handler)
    )
    return channel


@pytest.mark.asyncio
async def test_whatsapp_channel_sends_text_message():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"messages": [{"id": "wamid.ABC"}]})

    channel = _whatsapp(handler)

    message_id = await channel.send("919811112222", "*Delivery Completed*")

    assert message_id == "wamid.ABC"
    assert requests[0].url.path == "/v19.0/1055/messages"
    assert requests[0].headers["Authorization"] == "Bearer test-token"
    await channel.aclose()


@pytest.mark.asyncio
async def test_whatsapp_errors_become_delivery_errors():
    channel = _whatsapp(lambda request: httpx.Response(503, json={"error": "unavailable"}))

    with pytest.raises(DeliveryChannelError) as exc_info:
        await channel.send("919811112222", "hello")

    assert exc_info.value.details["status_code"] == 503
    await channel.aclose()


@pytest.mark.asyncio
async def test_whatsapp_open_circuit_fails_fast():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(500)

    channel = _whatsapp(handler, breaker=CircuitBreaker(failure_threshold=2, reset_timeout=60, name="whatsapp"))

    for _ in range(2):
        with pytest.raises(DeliveryChannelError):
            await channel.send("919811112222", "hello")

    with pytest.raises(DeliveryChannelError) as exc_info:
        await channel.send("919811112222", "hello")

    assert exc_info.value.details["circuit"] == "open"
    assert len(calls) == 2
    await channel.aclose()


@pytest.mark.asyncio
async def test_channel_failure_keeps_transition_and_records_dead_letter(
    db_session, guard, channel, shipment, admin_user, rider_user
):
    actor = actor_for(rider_user)
    await guard.request_transition(db_session, shipment.id, ShipmentStatus.ASSIGNED, actor)
    await guard.request_transition(db_session, shipment.id, ShipmentStatus.PICKED_UP, actor)
    channel.failing_addresses.add(CUSTOMER_MOBILE)

    result = await guard.request_transition(db_session, shipment.id, ShipmentStatus.DELIVERED, actor)

    assert result.applied
    assert result.notifications.sent == [RecipientRole.ADMIN]
    assert result.notifications.failed == [RecipientRole.CUSTOMER]

    stored = await StatusStore.read(db_session, shipment.id)
    assert stored.status == ShipmentStatus.DELIVERED

    records = await NotificationLedger.list_for_shipment(db_session, shipment.id)
    failed = [r for r in records if r.recipient_role == RecipientRole.CUSTOMER]
    assert len(failed) == 1
    assert failed[0].sent_at is None
    assert "503" in failed[0].last_error

    letters = await dead_letter.list_open(db_session)
    assert len(letters) == 1
    assert letters[0].notification_record_id == failed[0].id
    assert letters[0].payload["recipient_role"] == "customer"
    assert letters[0].status == DLQStatus.FAILED


@pytest.mark.asyncio
async def test_failed_send_is_not_retried_by_redispatch(db_session, guard, dispatcher, channel, shipment, rider_user):
    actor = actor_for(rider_user)
    channel.failing_addresses.add(rider_user.mobile)
    await guard.request_transition(db_session, shipment.id, ShipmentStatus.ASSIGNED, actor)
    attempts = channel.attempts

    report = await dispatcher.redispatch(db_session, shipment.id)

    assert report.skipped == [RecipientRole.RIDER]
    assert channel.attempts == attempts


@pytest.mark.asyncio
async def test_operator_resend_delivers_exactly_once(db_session, guard, dispatcher, channel, shipment, rider_user):
    actor = actor_for(rider_user)
    channel.failing_addresses.add(rider_user.mobile)
    result = await guard.request_transition(db_session, shipment.id, ShipmentStatus.ASSIGNED, actor)
    record_id = result.notifications.outcomes[0].record_id

    # Still failing: error surfaces, DLQ entry moves to RETRYING
    with pytest.raises(DeliveryChannelError):
        await dispatcher.resend(db_session, shipment.id, record_id)
    letters = await dead_letter.list_open(db_session)
    assert letters[0].status == DLQStatus.RETRYING
    assert letters[0].retry_count == 1

    channel.failing_addresses.clear()
    record = await dispatcher.resend(db_session, shipment.id, record_id)

    assert record.sent_at is not None
    assert record.resend_count == 2
    assert len(channel.bodies_to(rider_user.mobile)) == 1
    assert await dead_letter.list_open(db_session) == []

    with pytest.raises(NotificationAlreadySentError):
        await dispatcher.resend(db_session, shipment.id, record_id)
    assert len(channel.bodies_to(rider_user.mobile)) == 1


@pytest.mark.asyncio
async def test_crash_mid_dispatch_then_redispatch(
    db_session, guard, dispatcher, channel, shipment, admin_user, rider_user, mocker
):
    """
    Process dies after the status write and the first recipient's send.

    The retried request sees already_in_state; redispatch finishes the
    missing recipient without repeating the first.
    """
    actor = actor_for(rider_user)
    await guard.request_transition(db_session, shipment.id, ShipmentStatus.ASSIGNED, actor)

    original_try_record = NotificationLedger.try_record
    calls = []

    async def crash_on_second_claim(db, key, address, body):
        calls.append(key.recipient_role)
        if len(calls) == 2:
            raise RuntimeError("worker killed")
        return await original_try_record(db, key, address, body)

    mocker.patch.object(NotificationLedger, "try_record", side_effect=crash_on_second_claim)

    with pytest.raises(RuntimeError):
        await guard.request_transition(db_session, shipment.id, ShipmentStatus.PICKED_UP, actor)

    mocker.stopall()
    assert len(channel.bodies_to(rider_user.mobile)) == 2
    assert channel.bodies_to(admin_user.mobile) == []

    retry = await guard.request_transition(db_session, shipment.id, ShipmentStatus.PICKED_UP, actor)
    assert retry.reason == TransitionReason.ALREADY_IN_STATE

    report = await dispatcher.redispatch(db_session, shipment.id)

    assert report.transition_seq == 3
    assert report.skipped == [RecipientRole.RIDER]
    assert report.sent == [RecipientRole.ADMIN]
    assert len(channel.bodies_to(rider_user.mobile)) == 2
    assert len(channel.bodies_to(admin_user.mobile)) == 1

    again = await dispatcher.redispatch(db_session, shipment.id, seq=3)
    assert {o.status for o in again.outcomes} == {OutcomeStatus.SKIPPED}


@pytest.mark.asyncio
async def test_resend_only_closes_its_own_dead_letter(
    db_session, guard, dispatcher, channel, shipment, admin_user, rider_user
):
    actor = actor_for(rider_user)
    await guard.request_transition(db_session, shipment.id, ShipmentStatus.ASSIGNED, actor)
    channel.failing_addresses.update({rider_user.mobile, admin_user.mobile})

    result = await guard.request_transition(db_session, shipment.id, ShipmentStatus.PICKED_UP, actor)
    record_ids = {o.recipient_role: o.record_id for o in result.notifications.outcomes}
    assert set(result.notifications.failed) == {RecipientRole.RIDER, RecipientRole.ADMIN}

    channel.failing_addresses.clear()
    await dispatcher.resend(db_session, shipment.id, record_ids[RecipientRole.RIDER])

    letters = await dead_letter.list_open(db_session)
    assert [item.notification_record_id for item in letters] == [record_ids[RecipientRole.ADMIN]]
    assert letters[0].status == DLQStatus.FAILED
    assert letters[0].retry_count == 0
