"""
Rider review and live location tests.
"""

import pytest

from backend.app.models.enums import RiderApprovalStatus
from backend.app.models.shipment_enums import ShipmentStatus
from backend.tests.helpers import auth_headers


LOCATION = {
    "latitude": 12.9716,
    "longitude": 77.5946,
    "accuracy_meters": 8.5,
    "heading": 90.0,
    "speed": 4.2,
    "recorded_at": "2026-03-01T10:00:00Z",
}


@pytest.mark.asyncio
async def test_pending_rider_cannot_work_until_approved(client, admin_user, pending_rider):
    admin = auth_headers(admin_user)

    blocked = await client.get("/v1/shipments/available", headers=auth_headers(pending_rider))
    assert blocked.status_code == 403

    pending = (await client.get("/v1/riders/pending", headers=admin)).json()
    assert [r["id"] for r in pending["riders"]] == [pending_rider.id]

    approved = await client.post(
        f"/v1/riders/{pending_rider.id}/approve?rider_name=Kiran", headers=admin
    )
    assert approved.status_code == 200
    data = approved.json()
    assert data["approval_status"] == RiderApprovalStatus.APPROVED.value
    assert data["is_active"] is True
    assert data["display_name"] == "Kiran"
    assert data["reviewed_at"] is not None

    assert (await client.get("/v1/riders/pending", headers=admin)).json()["total"] == 0
    approved_list = (await client.get("/v1/riders/approved", headers=admin)).json()
    assert pending_rider.id in [r["id"] for r in approved_list["riders"]]

    allowed = await client.get("/v1/shipments/available", headers=auth_headers(pending_rider))
    assert allowed.status_code == 200


@pytest.mark.asyncio
async def test_approving_twice_is_rejected(client, admin_user, rider_user):
    response = await client.post(f"/v1/riders/{rider_user.id}/approve", headers=auth_headers(admin_user))

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_rejected_rider_is_deactivated(client, shipment, admin_user, rider_user):
    admin = auth_headers(admin_user)

    rejected = await client.delete(f"/v1/riders/{rider_user.id}", headers=admin)
    assert rejected.status_code == 200
    assert rejected.json()["approval_status"] == RiderApprovalStatus.REJECTED.value
    assert rejected.json()["is_active"] is False

    locked_out = await client.get("/v1/shipments/available", headers=auth_headers(rider_user))
    assert locked_out.status_code == 403

    again = await client.delete(f"/v1/riders/{rider_user.id}", headers=admin)
    assert again.status_code == 400

    # No longer assignable
    response = await client.post(
        f"/v1/shipments/{shipment.id}/transition",
        json={"target_status": ShipmentStatus.ASSIGNED.value, "rider_id": rider_user.id},
        headers=admin,
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_review_targets_riders_only(client, admin_user):
    admin = auth_headers(admin_user)

    assert (await client.post(f"/v1/riders/{admin_user.id}/approve", headers=admin)).status_code == 404
    assert (await client.delete("/v1/riders/9999", headers=admin)).status_code == 404


@pytest.mark.asyncio
async def test_rider_review_is_admin_only(client, rider_user, pending_rider):
    rider = auth_headers(rider_user)

    assert (await client.get("/v1/riders/pending", headers=rider)).status_code == 403
    assert (await client.post(f"/v1/riders/{pending_rider.id}/approve", headers=rider)).status_code == 403
    assert (await client.delete(f"/v1/riders/{pending_rider.id}", headers=rider)).status_code == 403


@pytest.mark.asyncio
async def test_rider_location_update_and_lookup(client, admin_user, rider_user):
    rider = auth_headers(rider_user)

    missing = await client.get(f"/v1/riders/{rider_user.id}/location", headers=auth_headers(admin_user))
    assert missing.status_code == 404

    updated = await client.put(f"/v1/riders/{rider_user.id}/location", json=LOCATION, headers=rider)
    assert updated.status_code == 200
    assert updated.json()["rider_id"] == rider_user.id

    moved = dict(LOCATION, latitude=12.9800, recorded_at="2026-03-01T10:00:30Z")
    await client.put(f"/v1/riders/{rider_user.id}/location", json=moved, headers=rider)

    seen = await client.get(f"/v1/riders/{rider_user.id}/location", headers=auth_headers(admin_user))
    assert seen.status_code == 200
    assert seen.json()["latitude"] == 12.9800
    assert seen.json()["heading"] == 90.0

    own = await client.get(f"/v1/riders/{rider_user.id}/location", headers=rider)
    assert own.status_code == 200


@pytest.mark.asyncio
async def test_out_of_order_fix_is_ignored(client, rider_user):
    rider = auth_headers(rider_user)
    await client.put(f"/v1/riders/{rider_user.id}/location", json=LOCATION, headers=rider)

    stale = dict(LOCATION, latitude=0.0, recorded_at="2026-03-01T09:59:00Z")
    response = await client.put(f"/v1/riders/{rider_user.id}/location", json=stale, headers=rider)

    assert response.status_code == 200
    assert response.json()["latitude"] == LOCATION["latitude"]


@pytest.mark.asyncio
async def test_location_is_private_to_rider_and_admins(client, rider_user, other_rider):
    await client.put(f"/v1/riders/{rider_user.id}/location", json=LOCATION, headers=auth_headers(rider_user))
    other = auth_headers(other_rider)

    assert (await client.put(f"/v1/riders/{rider_user.id}/location", json=LOCATION, headers=other)).status_code == 403
    assert (await client.get(f"/v1/riders/{rider_user.id}/location", headers=other)).status_code == 403


@pytest.mark.asyncio
async def test_location_coordinates_are_validated(client, rider_user):
    bad = dict(LOCATION, latitude=91.0)

    response = await client.put(f"/v1/riders/{rider_user.id}/location", json=bad, headers=auth_headers(rider_user))

    assert response.status_code == 422
