"""
tests/helpers.py
Request helpers and seed factories shared by the test modules.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional, Union

from httpx import AsyncClient

from config.database import session_scope
from shared.models.models import Trip, TripStatus, User, UserRole
from shared.utils.security import create_access_token


def auth_headers(user: Union[User, str], **claims) -> dict:
    """Bearer header for a user (or raw subject id) with optional custom claims."""
    subject = user if isinstance(user, str) else user.id
    email = None if isinstance(user, str) else user.email
    token = create_access_token(subject, email=email, claims=claims)
    return {"Authorization": f"Bearer {token}"}


async def gql(
    client: AsyncClient,
    query: str,
    variables: Optional[dict] = None,
    headers: Optional[dict] = None,
) -> dict:
    """POST a GraphQL operation and return the decoded body."""
    response = await client.post(
        "/graphql",
        json={"query": query, "variables": variables or {}},
        headers=headers or {},
    )
    assert response.status_code == 200, response.text
    return response.json()


def error_codes(body: dict) -> list:
    return [err["extensions"]["code"] for err in body.get("errors", [])]


def future(days: int = 3, hours: int = 0) -> datetime:
    return datetime.now(timezone.utc) + timedelta(days=days, hours=hours)


# ── Seed Data ─────────────────────────────────────────────────

async def make_user(user_id: str, email: str, role: UserRole, **extra) -> User:
    async with session_scope() as session:
        user = User(
            id=user_id,
            email=email,
            first_name=extra.pop("first_name", "Test"),
            last_name=extra.pop("last_name", "User"),
            role=role,
            **extra,
        )
        session.add(user)
    return user


async def make_trip(driver: User, **overrides) -> Trip:
    values = dict(
        driver_id=driver.id,
        origin_city="Accra",
        destination_city="Kumasi",
        departure_time=future(3),
        available_seats=4,
        price_per_seat=Decimal("50.00"),
        trip_status=TripStatus.SCHEDULED,
    )
    values.update(overrides)
    async with session_scope() as session:
        trip = Trip(**values)
        session.add(trip)
    return trip
