"""
Token Claims Tests.

Bearer token verification and tenant resolution.
"""

import pytest
from jose import jwt

from mileage_chain.app.core.config import settings
from mileage_chain.app.core.exceptions import AuthenticationError
from mileage_chain.app.core.jwt import TokenClaims, create_access_token, decode_claims
from mileage_chain.app.models.enums import UserRole


@pytest.mark.parametrize("claims,owner_id", [
    ({"user_id": 1, "role": "FLEET_OWNER"}, 1),
    ({"user_id": 10, "role": "DRIVER", "fleet_owner_id": 1}, 1),
    ({"user_id": 10, "role": "DRIVER"}, None),
    ({"user_id": 99, "role": "ADMIN"}, None),
    ({"user_id": 99, "role": "ADMIN", "tenant_id": 3}, 3),
])
def test_owner_id_resolution(claims, owner_id):
    assert TokenClaims(**claims).owner_id == owner_id


def test_round_trip_keeps_tenant_claims():
    token = create_access_token(TokenClaims(sub="driver", user_id=10, role=UserRole.DRIVER, fleet_owner_id=1))

    claims = decode_claims(token)
    assert claims.role == UserRole.DRIVER
    assert claims.owner_id == 1
    assert claims.can_repair_chains is False


def test_wrong_signature_rejected():
    token = jwt.encode({"user_id": 1, "role": "FLEET_OWNER"}, "not-the-secret", algorithm=settings.algorithm)

    with pytest.raises(AuthenticationError) as exc:
        decode_claims(token)
    assert exc.value.status_code == 401


def test_missing_role_rejected():
    token = jwt.encode({"user_id": 1}, settings.secret_key, algorithm=settings.algorithm)

    with pytest.raises(AuthenticationError) as exc:
        decode_claims(token)
    assert exc.value.details["fields"] == ["role"]


@pytest.mark.asyncio
async def test_incomplete_token_is_401(client):
    token = jwt.encode({"sub": "someone", "role": "FLEET_OWNER"}, settings.secret_key, algorithm=settings.algorithm)

    response = await client.get("/v1/trips/1", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401
    assert response.json()["error_code"] == "ERR_AUTH_001"


@pytest.mark.asyncio
async def test_unscoped_admin_is_403(client, token_headers):
    response = await client.get("/v1/vehicles/1/chain/breaks", headers=token_headers(user_id=99, role="ADMIN"))
    assert response.status_code == 403
    assert response.json()["error_code"] == "ERR_PERM_001"


@pytest.mark.asyncio
async def test_scoped_admin_works_in_tenant_chain(client, fleet_owner_headers, token_headers):
    created = await client.post(
        "/v1/trips",
        json={
            "vehicle_id": 1,
            "trip_start_date": "2025-01-01T08:00:00",
            "trip_end_date": "2025-01-01T17:00:00",
            "start_km": 0,
            "end_km": 100,
        },
        headers=fleet_owner_headers,
    )
    trip_id = created.json()["trip"]["id"]

    admin = token_headers(sub="admin", user_id=99, role="ADMIN", tenant_id=1)
    response = await client.get(f"/v1/trips/{trip_id}", headers=admin)
    assert response.status_code == 200
    assert response.json()["owner_id"] == 1
