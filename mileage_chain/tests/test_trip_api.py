"""
Trip and Chain API Tests.

HTTP surface: status codes, error envelopes, role checks and tenant scoping.
"""

import pytest

BASE = "/v1"


def trip_body(day, start_km, end_km, vehicle_id=1, refuel=False, fuel=None):
    return {
        "vehicle_id": vehicle_id,
        "trip_serial_number": f"API-{day:03d}",
        "trip_start_date": f"2025-01-{day + 1:02d}T08:00:00",
        "trip_end_date": f"2025-01-{day + 1:02d}T17:00:00",
        "start_km": start_km,
        "end_km": end_km,
        "refueling_done": refuel,
        "fuel_quantity": fuel,
    }


@pytest.mark.asyncio
async def test_health_reports_redis(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["redis"] == "up"


@pytest.mark.asyncio
async def test_requires_token(client):
    response = await client.post(f"{BASE}/trips", json=trip_body(0, 0, 100))
    assert response.status_code in (401, 403)


@pytest.mark.asyncio
async def test_create_trip_and_fetch(client, fleet_owner_headers):
    response = await client.post(f"{BASE}/trips", json=trip_body(0, 0, 500, refuel=True, fuel=50), headers=fleet_owner_headers)
    assert response.status_code == 201
    data = response.json()
    assert data["created"] is True
    assert data["continuity"]["classification"] == "no_predecessor"
    assert data["trip"]["calculated_kmpl"] == 10.0
    assert data["trip"]["owner_id"] == 1

    trip_id = data["trip"]["id"]
    fetched = await client.get(f"{BASE}/trips/{trip_id}", headers=fleet_owner_headers)
    assert fetched.status_code == 200
    assert fetched.json()["trip_serial_number"] == "API-000"


@pytest.mark.asyncio
async def test_inverted_readings_rejected(client, fleet_owner_headers):
    response = await client.post(f"{BASE}/trips", json=trip_body(0, 100, 90), headers=fleet_owner_headers)
    assert response.status_code == 422
    assert response.json()["error_code"] == "ERR_CHAIN_001"


@pytest.mark.asyncio
async def test_regression_rejected_with_context(client, fleet_owner_headers):
    await client.post(f"{BASE}/trips", json=trip_body(0, 0, 1000), headers=fleet_owner_headers)

    response = await client.post(f"{BASE}/trips", json=trip_body(1, 950, 1100), headers=fleet_owner_headers)
    assert response.status_code == 422
    body = response.json()
    assert body["error_code"] == "ERR_CHAIN_002"
    assert body["details"]["predecessor_end_km"] == 1000
    assert body["details"]["gap_km"] == -50


@pytest.mark.asyncio
async def test_end_before_start_is_validation_error(client, fleet_owner_headers):
    body = trip_body(0, 0, 100)
    body["trip_end_date"] = "2024-12-31T08:00:00"

    response = await client.post(f"{BASE}/trips", json=body, headers=fleet_owner_headers)
    assert response.status_code == 422
    assert response.json()["error_code"] == "ERR_VALIDATION"


@pytest.mark.asyncio
async def test_successor_conflict_is_409(client, fleet_owner_headers):
    first = await client.post(f"{BASE}/trips", json=trip_body(0, 0, 1000), headers=fleet_owner_headers)
    await client.post(f"{BASE}/trips", json=trip_body(1, 1000, 1100), headers=fleet_owner_headers)

    response = await client.patch(
        f"{BASE}/trips/{first.json()['trip']['id']}", json={"end_km": 1020}, headers=fleet_owner_headers
    )
    assert response.status_code == 409
    assert response.json()["error_code"] == "ERR_CHAIN_003"


@pytest.mark.asyncio
async def test_driver_writes_into_fleet_owner_chain(client, driver_headers, fleet_owner_headers):
    created = await client.post(f"{BASE}/trips", json=trip_body(0, 0, 100), headers=driver_headers)
    assert created.status_code == 201
    assert created.json()["trip"]["owner_id"] == 1

    trip_id = created.json()["trip"]["id"]
    seen = await client.get(f"{BASE}/trips/{trip_id}", headers=fleet_owner_headers)
    assert seen.status_code == 200


@pytest.mark.asyncio
async def test_other_tenant_cannot_see_trip(client, fleet_owner_headers, other_owner_headers):
    created = await client.post(f"{BASE}/trips", json=trip_body(0, 0, 1000), headers=fleet_owner_headers)
    trip_id = created.json()["trip"]["id"]

    response = await client.get(f"{BASE}/trips/{trip_id}", headers=other_owner_headers)
    assert response.status_code == 404

    # The other tenant's vehicle 1 is an empty chain of its own
    own = await client.post(f"{BASE}/trips", json=trip_body(1, 0, 50), headers=other_owner_headers)
    assert own.status_code == 201
    assert own.json()["continuity"]["classification"] == "no_predecessor"


@pytest.mark.asyncio
async def test_soft_delete_and_recover(client, fleet_owner_headers):
    refuel = await client.post(f"{BASE}/trips", json=trip_body(0, 0, 500, refuel=True, fuel=50), headers=fleet_owner_headers)
    await client.post(f"{BASE}/trips", json=trip_body(1, 500, 600), headers=fleet_owner_headers)
    trip_id = refuel.json()["trip"]["id"]

    deleted = await client.delete(f"{BASE}/trips/{trip_id}", headers=fleet_owner_headers)
    assert deleted.status_code == 200
    assert deleted.json()["outcome"] == "soft_deleted"
    assert deleted.json()["impact"]["impact_level"] == "high"

    assert (await client.get(f"{BASE}/trips/{trip_id}", headers=fleet_owner_headers)).status_code == 404
    kept = await client.get(f"{BASE}/trips/{trip_id}?include_deleted=true", headers=fleet_owner_headers)
    assert kept.status_code == 200
    assert kept.json()["deleted_at"] is not None

    recovered = await client.post(
        f"{BASE}/trips/{trip_id}/recover", json={"reason": "Deleted by mistake"}, headers=fleet_owner_headers
    )
    assert recovered.status_code == 200
    assert recovered.json()["success"] is True

    again = await client.post(
        f"{BASE}/trips/{trip_id}/recover", json={"reason": "Twice"}, headers=fleet_owner_headers
    )
    assert again.status_code == 200
    assert again.json()["success"] is False
    assert again.json()["message"] == "Trip not found or not deleted"


@pytest.mark.asyncio
async def test_audit_trail_records_writes(client, fleet_owner_headers):
    created = await client.post(f"{BASE}/trips", json=trip_body(0, 0, 500, refuel=True, fuel=50), headers=fleet_owner_headers)
    trip_id = created.json()["trip"]["id"]
    await client.post(f"{BASE}/trips/{trip_id}/recalculate-mileage?force=true", headers=fleet_owner_headers)

    response = await client.get(f"{BASE}/trips/{trip_id}/audit-trail", headers=fleet_owner_headers)
    assert response.status_code == 200
    actions = [entry["action"] for entry in response.json()]
    assert actions == ["MILEAGE_RECALCULATED", "TRIP_CREATED"]
    assert response.json()[1]["classification"] == "no_predecessor"
    assert response.json()[1]["actor_username"] == "fleet_owner"


@pytest.mark.asyncio
async def test_recalculate_non_refueling_reports_failure(client, fleet_owner_headers):
    created = await client.post(f"{BASE}/trips", json=trip_body(0, 0, 500), headers=fleet_owner_headers)
    trip_id = created.json()["trip"]["id"]

    response = await client.post(f"{BASE}/trips/{trip_id}/recalculate-mileage", headers=fleet_owner_headers)
    assert response.status_code == 200
    assert response.json()["success"] is False
    assert response.json()["method"] == "not_applicable"


@pytest.mark.asyncio
async def test_cascade_correction_requires_fleet_owner(client, fleet_owner_headers, driver_headers):
    first = await client.post(f"{BASE}/trips", json=trip_body(0, 0, 1000), headers=fleet_owner_headers)
    await client.post(f"{BASE}/trips", json=trip_body(1, 1000, 1100), headers=fleet_owner_headers)
    trip_id = first.json()["trip"]["id"]
    payload = {"new_end_km": 1020, "reason": "Odometer re-read"}

    denied = await client.post(f"{BASE}/trips/{trip_id}/cascade-correction", json=payload, headers=driver_headers)
    assert denied.status_code == 403

    preview = await client.get(
        f"{BASE}/trips/{trip_id}/cascade-preview?new_end_km=1020", headers=driver_headers
    )
    assert preview.status_code == 200
    assert preview.json()[0]["new_start_km"] == 1020

    applied = await client.post(f"{BASE}/trips/{trip_id}/cascade-correction", json=payload, headers=fleet_owner_headers)
    assert applied.status_code == 200
    assert applied.json()["affected_trips_count"] == 1
    assert applied.json()["affected_trips"][0]["new_end_km"] == 1120


@pytest.mark.asyncio
async def test_chain_issues_and_auto_fix(client, fleet_owner_headers, driver_headers, seed_trip):
    await seed_trip(0, 0, 1000)
    await seed_trip(1, 950, 1100)

    issues = await client.get(f"{BASE}/vehicles/1/chain/issues", headers=driver_headers)
    assert issues.status_code == 200
    assert [i["issue_type"] for i in issues.json()] == ["odometer_regression"]

    denied = await client.get(f"{BASE}/vehicles/1/chain/issues?auto_fix=true", headers=driver_headers)
    assert denied.status_code == 403
    assert denied.json()["error_code"] == "ERR_PERM_001"

    fixed = await client.get(f"{BASE}/vehicles/1/chain/issues?auto_fix=true", headers=fleet_owner_headers)
    assert fixed.status_code == 200
    assert fixed.json()[0]["fix_applied"] is True

    clean = await client.get(f"{BASE}/vehicles/1/chain/issues", headers=fleet_owner_headers)
    assert [i["issue_type"] for i in clean.json()] == ["no_issues"]


@pytest.mark.asyncio
async def test_continuity_of_empty_vehicle(client, fleet_owner_headers):
    response = await client.get(f"{BASE}/vehicles/7/chain/continuity", headers=fleet_owner_headers)
    assert response.status_code == 200
    assert response.json()["total_trips"] == 0
    assert response.json()["continuity_score"] is None


@pytest.mark.asyncio
async def test_breaks_and_rebuild(client, fleet_owner_headers, driver_headers, seed_trip):
    await seed_trip(0, 0, 500, refuel=True, fuel=50)
    await seed_trip(1, 505, 700)

    breaks = await client.get(f"{BASE}/vehicles/1/chain/breaks", headers=fleet_owner_headers)
    assert breaks.status_code == 200
    assert breaks.json()[0]["gap_type"] == "small_gap"

    denied = await client.post(f"{BASE}/vehicles/1/chain/rebuild", headers=driver_headers)
    assert denied.status_code == 403

    rebuilt = await client.post(f"{BASE}/vehicles/1/chain/rebuild", headers=fleet_owner_headers)
    assert rebuilt.status_code == 200
    assert rebuilt.json()["trips_processed"] == 2
    assert rebuilt.json()["refueling_trips_updated"] == 1


@pytest.mark.asyncio
async def test_mixed_offsets_are_normalised_to_utc(client, fleet_owner_headers):
    body = trip_body(0, 0, 100)
    body["trip_start_date"] = "2025-01-01T10:00:00+02:00"
    body["trip_end_date"] = "2025-01-01T17:00:00"

    response = await client.post(f"{BASE}/trips", json=body, headers=fleet_owner_headers)
    assert response.status_code == 201
    assert response.json()["trip"]["trip_start_date"] == "2025-01-01T08:00:00"

    # 09:00+05:00 is 04:00 UTC, before the 08:00 UTC start
    inverted = trip_body(1, 100, 200)
    inverted["trip_start_date"] = "2025-01-02T08:00:00Z"
    inverted["trip_end_date"] = "2025-01-02T09:00:00+05:00"

    response = await client.post(f"{BASE}/trips", json=inverted, headers=fleet_owner_headers)
    assert response.status_code == 422
    assert response.json()["error_code"] == "ERR_VALIDATION"
