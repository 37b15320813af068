"""
services/trip/resolvers.py
Trip search, driver trip management and the trip status machine.

Every status change is a single conditional UPDATE on id, owner and the
allowed source states. When it matches nothing, a follow-up read decides
between NotFoundOrUnauthorized (missing or foreign, same client signal) and
InvalidStateTransition (owned but in the wrong state).
"""

import base64
import binascii
import logging
from datetime import datetime, time, timedelta, timezone
from typing import Dict, FrozenSet, Optional

import graphene
from sqlalchemy import func, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import query, query_one, session_scope
from shared.middleware.auth import require_auth
from shared.models.models import DRIVER_ROLES, DriverProfile, Trip, TripStatus
from shared.schemas.schemas import TripCreate, TripSearch, TripUpdate, validate_input
from shared.schemas.types import (
    CreateTripInput,
    TripConnection,
    TripFilterInput,
    TripNode,
    TripStatusEnum,
    UpdateTripInput,
    parse_id,
)
from shared.utils.exceptions import (
    CreationFailed,
    InvalidStateTransition,
    NotFoundOrUnauthorized,
    ValidationError,
)
from services.user.resolvers import require_account

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 50

# target status -> statuses it may be entered from
TRIP_TRANSITIONS: Dict[TripStatus, FrozenSet[TripStatus]] = {
    TripStatus.ACTIVE: frozenset({TripStatus.SCHEDULED}),
    TripStatus.COMPLETED: frozenset({TripStatus.SCHEDULED, TripStatus.ACTIVE}),
    TripStatus.CANCELLED: frozenset({TripStatus.SCHEDULED, TripStatus.ACTIVE}),
}


def can_transition(current: TripStatus, target: TripStatus) -> bool:
    return TripStatus(current) in TRIP_TRANSITIONS.get(target, frozenset())


async def explain_trip_miss(db: AsyncSession, trip_id, driver_id: str, target: str) -> Exception:
    """Build the error for a conditional trip update that matched zero rows."""
    trip = await query_one(db, select(Trip).where(Trip.id == trip_id))
    if trip is None:
        return NotFoundOrUnauthorized("Trip", detail=f"{trip_id} does not exist")
    if trip.driver_id != driver_id:
        return NotFoundOrUnauthorized("Trip", detail=f"{trip_id} is not owned by {driver_id}")
    return InvalidStateTransition("trip", TripStatus(trip.trip_status).value, target)


async def transition_trip(
    db: AsyncSession,
    trip_id,
    driver_id: str,
    target: TripStatus,
) -> Trip:
    trip = await query_one(
        db,
        update(Trip)
        .where(
            Trip.id == trip_id,
            Trip.driver_id == driver_id,
            Trip.trip_status.in_(sorted(TRIP_TRANSITIONS[target])),
        )
        .values(trip_status=target)
        .returning(Trip),
    )
    if trip is None:
        raise await explain_trip_miss(db, trip_id, driver_id, target.value)
    logger.info("Trip %s -> %s by %s", trip_id, target.value, driver_id)
    return trip


# ── Cursor helpers ────────────────────────────────────────────

def encode_cursor(offset: int) -> str:
    return base64.urlsafe_b64encode(f"trip:{offset}".encode()).decode()


def decode_cursor(cursor: Optional[str]) -> int:
    if not cursor:
        return -1
    try:
        prefix, _, value = base64.urlsafe_b64decode(cursor.encode()).decode().partition(":")
        if prefix != "trip":
            raise ValueError(prefix)
        return int(value)
    except (binascii.Error, UnicodeDecodeError, ValueError):
        raise ValidationError("Invalid cursor")


def _search_conditions(search: TripSearch) -> list:
    conditions = [
        Trip.trip_status == TripStatus.SCHEDULED,
        Trip.available_seats > 0,
    ]
    if search.origin_city:
        conditions.append(func.lower(Trip.origin_city) == search.origin_city.strip().lower())
    if search.destination_city:
        conditions.append(func.lower(Trip.destination_city) == search.destination_city.strip().lower())
    if search.departure_date:
        day_start = datetime.combine(search.departure_date, time.min, tzinfo=timezone.utc)
        conditions.append(Trip.departure_time >= day_start)
        conditions.append(Trip.departure_time < day_start + timedelta(days=1))
    if search.min_price is not None:
        conditions.append(Trip.price_per_seat >= search.min_price)
    if search.max_price is not None:
        conditions.append(Trip.price_per_seat <= search.max_price)
    if search.available_seats:
        conditions.append(Trip.available_seats >= search.available_seats)
    return conditions


# ── Queries ───────────────────────────────────────────────────

class TripQuery(graphene.ObjectType):
    trips = graphene.Field(
        TripConnection,
        first=graphene.Int(default_value=10),
        after=graphene.String(),
        filter=TripFilterInput(),
        required=True,
    )
    trip = graphene.Field(TripNode, id=graphene.ID(required=True))
    my_trips = graphene.List(graphene.NonNull(TripNode), status=TripStatusEnum(), required=True)

    async def resolve_trips(root, info, first=10, after=None, filter=None):
        if first < 1 or first > MAX_PAGE_SIZE:
            raise ValidationError(f"first must be between 1 and {MAX_PAGE_SIZE}")
        search = validate_input(TripSearch, filter)
        offset = decode_cursor(after) + 1
        conditions = _search_conditions(search)

        async with session_scope() as db:
            total = (await query(db, select(func.count(Trip.id)).where(*conditions)))[0]
            trips = await query(
                db,
                select(Trip)
                .where(*conditions)
                .order_by(Trip.departure_time, Trip.id)
                .offset(offset)
                .limit(first),
            )

        edges = [
            {"cursor": encode_cursor(offset + i), "node": trip}
            for i, trip in enumerate(trips)
        ]
        return {
            "edges": edges,
            "page_info": {
                "has_next_page": offset + len(trips) < total,
                "has_previous_page": offset > 0,
                "start_cursor": edges[0]["cursor"] if edges else None,
                "end_cursor": edges[-1]["cursor"] if edges else None,
            },
            "total_count": total,
        }

    async def resolve_trip(root, info, id):
        require_auth(info.context)
        trip_id = parse_id(id, "Trip")
        async with session_scope() as db:
            return await query_one(db, select(Trip).where(Trip.id == trip_id))

    async def resolve_my_trips(root, info, status=None):
        identity = require_auth(info.context)
        stmt = select(Trip).where(Trip.driver_id == identity.subject_id)
        if status is not None:
            stmt = stmt.where(Trip.trip_status == TripStatus(status))
        async with session_scope() as db:
            return await query(db, stmt.order_by(Trip.departure_time.desc()))


# ── Mutations ─────────────────────────────────────────────────

class TripMutation(graphene.ObjectType):
    create_trip = graphene.Field(TripNode, input=CreateTripInput(required=True), required=True)
    update_trip = graphene.Field(
        TripNode, id=graphene.ID(required=True), input=UpdateTripInput(required=True), required=True
    )
    cancel_trip = graphene.Field(TripNode, id=graphene.ID(required=True), required=True)
    start_trip = graphene.Field(TripNode, id=graphene.ID(required=True), required=True)
    complete_trip = graphene.Field(TripNode, id=graphene.ID(required=True), required=True)

    async def resolve_create_trip(root, info, input):
        identity = require_auth(info.context)
        data = validate_input(TripCreate, input)

        values = data.model_dump(exclude={"origin_coordinates", "destination_coordinates"})
        if data.origin_coordinates:
            values["origin_latitude"] = data.origin_coordinates.latitude
            values["origin_longitude"] = data.origin_coordinates.longitude
        if data.destination_coordinates:
            values["destination_latitude"] = data.destination_coordinates.latitude
            values["destination_longitude"] = data.destination_coordinates.longitude

        async with session_scope() as db:
            await require_account(db, identity.subject_id, DRIVER_ROLES)
            rows = await query(
                db,
                insert(Trip)
                .values(driver_id=identity.subject_id, trip_status=TripStatus.SCHEDULED, **values)
                .returning(Trip),
            )
            if not rows:
                raise CreationFailed("Failed to create trip")
        logger.info("Trip %s created by %s", rows[0].id, identity.subject_id)
        return rows[0]

    async def resolve_update_trip(root, info, id, input):
        identity = require_auth(info.context)
        trip_id = parse_id(id, "Trip")
        updates = validate_input(TripUpdate, input).model_dump(exclude_unset=True)
        if not updates:
            raise ValidationError("No fields to update")

        async with session_scope() as db:
            trip = await query_one(
                db,
                update(Trip)
                .where(
                    Trip.id == trip_id,
                    Trip.driver_id == identity.subject_id,
                    Trip.trip_status == TripStatus.SCHEDULED,
                )
                .values(**updates)
                .returning(Trip),
            )
            if trip is None:
                raise await explain_trip_miss(db, trip_id, identity.subject_id, "updated")
        return trip

    async def resolve_cancel_trip(root, info, id):
        identity = require_auth(info.context)
        async with session_scope() as db:
            return await transition_trip(db, parse_id(id, "Trip"), identity.subject_id, TripStatus.CANCELLED)

    async def resolve_start_trip(root, info, id):
        identity = require_auth(info.context)
        async with session_scope() as db:
            return await transition_trip(db, parse_id(id, "Trip"), identity.subject_id, TripStatus.ACTIVE)

    async def resolve_complete_trip(root, info, id):
        identity = require_auth(info.context)
        async with session_scope() as db:
            trip = await transition_trip(
                db, parse_id(id, "Trip"), identity.subject_id, TripStatus.COMPLETED
            )
            await query(
                db,
                update(DriverProfile)
                .where(DriverProfile.user_id == identity.subject_id)
                .values(total_trips=DriverProfile.total_trips + 1)
                .returning(DriverProfile.id),
            )
        return trip
