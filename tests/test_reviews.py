"""
tests/test_reviews.py
Tests for review creation rules and driver rating aggregation.
"""

import asyncio
from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select

from config.database import query_one, session_scope
from shared.models.models import (
    Booking,
    DriverProfile,
    Notification,
    NotificationType,
    Review,
    Trip,
    User,
    UserRole,
)
from tests.helpers import auth_headers, error_codes, gql, make_user

CREATE_REVIEW = """
mutation($input: CreateReviewInput!) {
  createReview(input: $input) { id rating comment reviewer { id } reviewee { id } }
}
"""


async def _booking(trip: Trip, rider: User) -> Booking:
    async with session_scope() as session:
        booking = Booking(
            trip_id=trip.id,
            rider_id=rider.id,
            seats_booked=1,
            total_amount=Decimal("50.00"),
            commission_amount=Decimal("5.00"),
        )
        session.add(booking)
    return booking


async def _rating(driver_id: str) -> Decimal:
    async with session_scope() as db:
        return await query_one(
            db, select(DriverProfile.average_rating).where(DriverProfile.user_id == driver_id)
        )


async def _review_count() -> int:
    async with session_scope() as db:
        return await query_one(db, select(func.count(Review.id)))


def _input(booking: Booking, rating: int, comment: str = None) -> dict:
    data = {"bookingId": str(booking.id), "rating": rating}
    if comment is not None:
        data["comment"] = comment
    return {"input": data}


# ── Creation ──────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_rider_reviews_driver(client: AsyncClient, rider: User, driver: User, trip: Trip):
    booking = await _booking(trip, rider)

    body = await gql(client, CREATE_REVIEW, _input(booking, 4, "Smooth ride"), auth_headers(rider))
    assert "errors" not in body, body
    review = body["data"]["createReview"]
    assert review["rating"] == 4
    assert review["reviewer"] == {"id": rider.id}
    assert review["reviewee"] == {"id": driver.id}
    assert await _rating(driver.id) == Decimal("4.00")

    async with session_scope() as db:
        note = await query_one(db, select(Notification).where(Notification.user_id == driver.id))
    assert note.notification_type == NotificationType.REVIEW_RECEIVED


@pytest.mark.asyncio
async def test_driver_reviews_rider(client: AsyncClient, rider: User, driver: User, trip: Trip):
    booking = await _booking(trip, rider)
    body = await gql(client, CREATE_REVIEW, _input(booking, 5), auth_headers(driver))
    assert body["data"]["createReview"]["reviewee"] == {"id": rider.id}
    # Rider reviews never touch the driver's average
    assert await _rating(driver.id) == Decimal("0.00")


@pytest.mark.asyncio
@pytest.mark.parametrize("rating", [0, 6, -1])
async def test_out_of_range_rating_writes_nothing(
    client: AsyncClient, rider: User, trip: Trip, rating: int
):
    booking = await _booking(trip, rider)
    body = await gql(client, CREATE_REVIEW, _input(booking, rating), auth_headers(rider))
    assert error_codes(body) == ["BAD_USER_INPUT"]
    assert await _review_count() == 0


@pytest.mark.asyncio
async def test_duplicate_review_conflicts_regardless_of_rating(
    client: AsyncClient, rider: User, trip: Trip
):
    booking = await _booking(trip, rider)
    await gql(client, CREATE_REVIEW, _input(booking, 3), auth_headers(rider))

    valid = await gql(client, CREATE_REVIEW, _input(booking, 5), auth_headers(rider))
    invalid = await gql(client, CREATE_REVIEW, _input(booking, 9), auth_headers(rider))

    assert error_codes(valid) == ["CONFLICT"]
    assert error_codes(invalid) == ["CONFLICT"]
    assert await _review_count() == 1


@pytest.mark.asyncio
async def test_outsider_cannot_review(
    client: AsyncClient, rider: User, other_rider: User, trip: Trip
):
    booking = await _booking(trip, rider)
    body = await gql(client, CREATE_REVIEW, _input(booking, 5), auth_headers(other_rider))
    assert error_codes(body) == ["NOT_FOUND"]


# ── Aggregation ───────────────────────────────────────────────

@pytest.mark.asyncio
async def test_average_is_mean_of_all_reviews(client: AsyncClient, driver: User, trip: Trip):
    ratings = [5, 4, 4, 2]
    for i, rating in enumerate(ratings):
        reviewer = await make_user(f"reviewer-{i}", f"reviewer{i}@example.com", UserRole.RIDER)
        booking = await _booking(trip, reviewer)
        body = await gql(client, CREATE_REVIEW, _input(booking, rating), auth_headers(reviewer))
        assert "errors" not in body, body

    assert await _rating(driver.id) == Decimal("3.75")


@pytest.mark.asyncio
async def test_average_rounds_to_two_places(client: AsyncClient, driver: User, trip: Trip):
    for i, rating in enumerate([5, 4, 4]):
        reviewer = await make_user(f"r-{i}", f"r{i}@example.com", UserRole.RIDER)
        booking = await _booking(trip, reviewer)
        await gql(client, CREATE_REVIEW, _input(booking, rating), auth_headers(reviewer))

    assert await _rating(driver.id) == Decimal("4.33")


@pytest.mark.asyncio
async def test_user_reviews_query(client: AsyncClient, rider: User, driver: User, trip: Trip):
    booking = await _booking(trip, rider)
    await gql(client, CREATE_REVIEW, _input(booking, 5, "Great"), auth_headers(rider))

    body = await gql(
        client,
        "query($id: ID!) { userReviews(userId: $id) { rating comment } }",
        {"id": driver.id},
        auth_headers(rider),
    )
    assert body["data"]["userReviews"] == [{"rating": 5, "comment": "Great"}]


@pytest.mark.asyncio
async def test_concurrent_reviews_keep_average_exact(
    client: AsyncClient, rider: User, other_rider: User, driver: User, trip: Trip
):
    """Two reviews committing at once both count toward the driver's average."""
    first = await _booking(trip, rider)
    second = await _booking(trip, other_rider)

    results = await asyncio.gather(
        gql(client, CREATE_REVIEW, _input(first, 5), auth_headers(rider)),
        gql(client, CREATE_REVIEW, _input(second, 2), auth_headers(other_rider)),
    )

    assert all("errors" not in body for body in results), results
    assert await _review_count() == 2
    assert await _rating(driver.id) == Decimal("3.50")
