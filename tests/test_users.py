"""
tests/test_users.py
Tests for registration, profile updates, driver profiles, vehicles and
upload URLs.
"""

import pytest
from httpx import AsyncClient

from shared.models.models import User
from tests.helpers import auth_headers, error_codes, gql

CREATE_USER = """
mutation($input: CreateUserInput!) {
  createUser(input: $input) { id email firstName role isActive }
}
"""

CREATE_PROFILE = """
mutation($input: CreateDriverProfileInput!) {
  createDriverProfile(input: $input) {
    id licenseNumber averageRating totalTrips isAvailable backgroundCheckStatus
    user { id }
    vehicle { id }
  }
}
"""

CREATE_VEHICLE = """
mutation($input: CreateVehicleInput!) {
  createVehicle(input: $input) { id licensePlate vehicleImages driver { id } }
}
"""

VEHICLE_INPUT = {
    "make": "Toyota",
    "model": "Hiace",
    "year": 2020,
    "color": "White",
    "licensePlate": "gr-1234-20",
    "vehicleType": "MINIVAN",
    "passengerCapacity": 14,
    "vehicleImages": ["https://cdn.example.com/a.jpg", "https://cdn.example.com/b.jpg"],
}


# ── Registration ──────────────────────────────────────────────

@pytest.mark.asyncio
async def test_create_user_uses_token_subject(client: AsyncClient, db):
    """The account id is the verified subject, never client input."""
    headers = auth_headers("new-uid-9")
    body = await gql(
        client,
        CREATE_USER,
        {"input": {"email": "new@example.com", "firstName": "Abena", "lastName": "Osei", "role": "DRIVER"}},
        headers,
    )
    assert "errors" not in body, body
    assert body["data"]["createUser"] == {
        "id": "new-uid-9",
        "email": "new@example.com",
        "firstName": "Abena",
        "role": "DRIVER",
        "isActive": True,
    }


@pytest.mark.asyncio
async def test_create_user_twice_conflicts(client: AsyncClient, rider: User):
    body = await gql(
        client,
        CREATE_USER,
        {"input": {"email": "again@example.com", "firstName": "A", "lastName": "B"}},
        auth_headers(rider),
    )
    assert error_codes(body) == ["CONFLICT"]


@pytest.mark.asyncio
async def test_create_user_validates_email(client: AsyncClient, db):
    body = await gql(
        client,
        CREATE_USER,
        {"input": {"email": "not-an-email", "firstName": "A", "lastName": "B"}},
        auth_headers("uid-x"),
    )
    assert error_codes(body) == ["BAD_USER_INPUT"]


@pytest.mark.asyncio
async def test_update_user_partial(client: AsyncClient, rider: User):
    mutation = """
    mutation($input: UpdateUserInput!) { updateUser(input: $input) { firstName lastName phone } }
    """
    body = await gql(client, mutation, {"input": {"phone": "+233201234567"}}, auth_headers(rider))
    assert body["data"]["updateUser"] == {
        "firstName": "Ama",
        "lastName": "User",
        "phone": "+233201234567",
    }


@pytest.mark.asyncio
async def test_update_user_phone_taken(client: AsyncClient, rider: User, other_rider: User):
    mutation = "mutation($input: UpdateUserInput!) { updateUser(input: $input) { id } }"
    await gql(client, mutation, {"input": {"phone": "+233201234567"}}, auth_headers(rider))
    body = await gql(client, mutation, {"input": {"phone": "+233201234567"}}, auth_headers(other_rider))
    assert error_codes(body) == ["CONFLICT"]


@pytest.mark.asyncio
async def test_update_user_rejects_null_name(client: AsyncClient, rider: User):
    """Clearing a required column with null is a client error, not a database error."""
    mutation = "mutation($input: UpdateUserInput!) { updateUser(input: $input) { firstName } }"
    body = await gql(client, mutation, {"input": {"firstName": None}}, auth_headers(rider))

    assert error_codes(body) == ["BAD_USER_INPUT"]
    assert body["errors"][0]["extensions"]["statusCode"] == 400

    me = await gql(client, "query { me { firstName } }", headers=auth_headers(rider))
    assert me["data"]["me"] == {"firstName": "Ama"}


@pytest.mark.asyncio
async def test_update_user_allows_clearing_phone(client: AsyncClient, rider: User):
    mutation = "mutation($input: UpdateUserInput!) { updateUser(input: $input) { phone } }"
    await gql(client, mutation, {"input": {"phone": "+233201234567"}}, auth_headers(rider))
    body = await gql(client, mutation, {"input": {"phone": None}}, auth_headers(rider))
    assert body["data"]["updateUser"] == {"phone": None}


@pytest.mark.asyncio
async def test_user_query_by_id(client: AsyncClient, rider: User, driver: User):
    query = 'query($id: ID!) { user(id: $id) { id firstName driverProfile { licenseNumber } } }'
    body = await gql(client, query, {"id": driver.id}, auth_headers(rider))
    assert body["data"]["user"] == {
        "id": driver.id,
        "firstName": "Kofi",
        "driverProfile": {"licenseNumber": "GH-DL-0001"},
    }

    missing = await gql(client, query, {"id": "nobody"}, auth_headers(rider))
    assert missing["data"]["user"] is None


# ── Driver Profile ────────────────────────────────────────────

@pytest.mark.asyncio
async def test_rider_cannot_create_driver_profile(client: AsyncClient, rider: User):
    body = await gql(
        client,
        CREATE_PROFILE,
        {"input": {"licenseNumber": "GH-1", "licenseExpiry": "2099-01-01"}},
        auth_headers(rider),
    )
    assert error_codes(body) == ["FORBIDDEN"]


@pytest.mark.asyncio
async def test_unregistered_caller_cannot_create_driver_profile(client: AsyncClient, db):
    body = await gql(
        client,
        CREATE_PROFILE,
        {"input": {"licenseNumber": "GH-1", "licenseExpiry": "2099-01-01"}},
        auth_headers("ghost-uid"),
    )
    assert error_codes(body) == ["FORBIDDEN"]
    assert body["errors"][0]["message"] == "Registration required"


@pytest.mark.asyncio
async def test_create_driver_profile_defaults(client: AsyncClient, other_driver: User):
    body = await gql(
        client,
        CREATE_PROFILE,
        {"input": {"licenseNumber": "GH-DL-7777", "licenseExpiry": "2099-01-01"}},
        auth_headers(other_driver),
    )
    profile = body["data"]["createDriverProfile"]
    assert profile["averageRating"] == 0.0
    assert profile["totalTrips"] == 0
    assert profile["isAvailable"] is False
    assert profile["backgroundCheckStatus"] == "PENDING"
    assert profile["user"] == {"id": other_driver.id}
    assert profile["vehicle"] is None

    again = await gql(
        client,
        CREATE_PROFILE,
        {"input": {"licenseNumber": "GH-DL-8888", "licenseExpiry": "2099-01-01"}},
        auth_headers(other_driver),
    )
    assert error_codes(again) == ["CONFLICT"]


@pytest.mark.asyncio
async def test_expired_license_rejected(client: AsyncClient, other_driver: User):
    body = await gql(
        client,
        CREATE_PROFILE,
        {"input": {"licenseNumber": "GH-DL-7777", "licenseExpiry": "2001-01-01"}},
        auth_headers(other_driver),
    )
    assert error_codes(body) == ["BAD_USER_INPUT"]


@pytest.mark.asyncio
async def test_update_driver_profile(client: AsyncClient, driver: User, other_driver: User):
    mutation = """
    mutation($input: UpdateDriverProfileInput!) {
      updateDriverProfile(input: $input) { licenseNumber drivingExperienceYears }
    }
    """
    body = await gql(client, mutation, {"input": {"drivingExperienceYears": 12}}, auth_headers(driver))
    assert body["data"]["updateDriverProfile"] == {
        "licenseNumber": "GH-DL-0001",
        "drivingExperienceYears": 12,
    }

    # No profile yet
    missing = await gql(client, mutation, {"input": {"drivingExperienceYears": 3}}, auth_headers(other_driver))
    assert error_codes(missing) == ["NOT_FOUND"]


@pytest.mark.asyncio
async def test_update_driver_profile_checks_expiry(client: AsyncClient, driver: User):
    mutation = """
    mutation($input: UpdateDriverProfileInput!) { updateDriverProfile(input: $input) { licenseExpiry } }
    """
    expired = await gql(client, mutation, {"input": {"licenseExpiry": "2001-01-01"}}, auth_headers(driver))
    cleared = await gql(client, mutation, {"input": {"licenseExpiry": None}}, auth_headers(driver))
    assert error_codes(expired) == ["BAD_USER_INPUT"]
    assert error_codes(cleared) == ["BAD_USER_INPUT"]

    renewed = await gql(client, mutation, {"input": {"licenseExpiry": "2099-06-30"}}, auth_headers(driver))
    assert renewed["data"]["updateDriverProfile"] == {"licenseExpiry": "2099-06-30"}


@pytest.mark.asyncio
async def test_toggle_availability(client: AsyncClient, driver: User):
    mutation = "mutation { toggleDriverAvailability { isAvailable } }"
    first = await gql(client, mutation, headers=auth_headers(driver))
    second = await gql(client, mutation, headers=auth_headers(driver))
    assert first["data"]["toggleDriverAvailability"]["isAvailable"] is True
    assert second["data"]["toggleDriverAvailability"]["isAvailable"] is False


# ── Vehicles ──────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_create_vehicle_round_trips_images(client: AsyncClient, driver: User):
    body = await gql(client, CREATE_VEHICLE, {"input": VEHICLE_INPUT}, auth_headers(driver))
    vehicle = body["data"]["createVehicle"]

    assert vehicle["licensePlate"] == "GR-1234-20"
    assert vehicle["vehicleImages"] == VEHICLE_INPUT["vehicleImages"]
    assert vehicle["driver"] == {"id": driver.id}

    # First vehicle becomes the active one on the profile
    me = await gql(
        client, "query { me { driverProfile { vehicle { id } } } }", headers=auth_headers(driver)
    )
    assert me["data"]["me"]["driverProfile"]["vehicle"] == {"id": vehicle["id"]}


@pytest.mark.asyncio
async def test_duplicate_plate_conflicts(client: AsyncClient, driver: User):
    await gql(client, CREATE_VEHICLE, {"input": VEHICLE_INPUT}, auth_headers(driver))
    body = await gql(client, CREATE_VEHICLE, {"input": VEHICLE_INPUT}, auth_headers(driver))
    assert error_codes(body) == ["CONFLICT"]


@pytest.mark.asyncio
async def test_update_foreign_vehicle_not_found(
    client: AsyncClient, driver: User, other_driver: User
):
    created = await gql(client, CREATE_VEHICLE, {"input": VEHICLE_INPUT}, auth_headers(driver))
    vehicle_id = created["data"]["createVehicle"]["id"]

    mutation = """
    mutation($id: ID!, $input: UpdateVehicleInput!) { updateVehicle(id: $id, input: $input) { color } }
    """
    foreign = await gql(
        client, mutation, {"id": vehicle_id, "input": {"color": "Red"}}, auth_headers(other_driver)
    )
    assert error_codes(foreign) == ["NOT_FOUND"]

    own = await gql(client, mutation, {"id": vehicle_id, "input": {"color": "Red"}}, auth_headers(driver))
    assert own["data"]["updateVehicle"] == {"color": "Red"}


@pytest.mark.asyncio
async def test_delete_vehicle_is_idempotent(client: AsyncClient, driver: User):
    created = await gql(client, CREATE_VEHICLE, {"input": VEHICLE_INPUT}, auth_headers(driver))
    vehicle_id = created["data"]["createVehicle"]["id"]
    mutation = "mutation($id: ID!) { deleteVehicle(id: $id) }"

    first = await gql(client, mutation, {"id": vehicle_id}, auth_headers(driver))
    second = await gql(client, mutation, {"id": vehicle_id}, auth_headers(driver))

    assert first["data"]["deleteVehicle"] is True
    assert second["data"]["deleteVehicle"] is False

    me = await gql(
        client, "query { me { driverProfile { vehicle { id } } } }", headers=auth_headers(driver)
    )
    assert me["data"]["me"]["driverProfile"]["vehicle"] is None


@pytest.mark.asyncio
async def test_delete_foreign_vehicle_keeps_row(
    client: AsyncClient, driver: User, other_driver: User
):
    created = await gql(client, CREATE_VEHICLE, {"input": VEHICLE_INPUT}, auth_headers(driver))
    vehicle_id = created["data"]["createVehicle"]["id"]

    body = await gql(
        client, "mutation($id: ID!) { deleteVehicle(id: $id) }", {"id": vehicle_id}, auth_headers(other_driver)
    )
    assert body["data"]["deleteVehicle"] is False

    me = await gql(
        client, "query { me { driverProfile { vehicle { id } } } }", headers=auth_headers(driver)
    )
    assert me["data"]["me"]["driverProfile"]["vehicle"] == {"id": vehicle_id}


@pytest.mark.asyncio
async def test_update_vehicle_null_for_required_field(client: AsyncClient, driver: User):
    created = await gql(client, CREATE_VEHICLE, {"input": VEHICLE_INPUT}, auth_headers(driver))
    vehicle_id = created["data"]["createVehicle"]["id"]

    body = await gql(
        client,
        "mutation($id: ID!, $input: UpdateVehicleInput!) { updateVehicle(id: $id, input: $input) { id } }",
        {"id": vehicle_id, "input": {"make": None}},
        auth_headers(driver),
    )
    assert error_codes(body) == ["BAD_USER_INPUT"]


@pytest.mark.asyncio
async def test_generate_upload_url(client: AsyncClient, rider: User):
    mutation = """
    mutation { generateUploadUrl(fileName: "avatar.png", fileType: "image/png") { uploadUrl fileUrl } }
    """
    body = await gql(client, mutation, headers=auth_headers(rider))
    urls = body["data"]["generateUploadUrl"]
    assert urls["fileUrl"].startswith("https://uploads.yenko.app/files/rider-uid-1/")
    assert urls["fileUrl"].endswith("_avatar.png")
    assert "contentType=image%2Fpng" in urls["uploadUrl"]

    bad = await gql(
        client,
        'mutation { generateUploadUrl(fileName: "x.exe", fileType: "application/x-msdownload") { fileUrl } }',
        headers=auth_headers(rider),
    )
    assert error_codes(bad) == ["BAD_USER_INPUT"]
