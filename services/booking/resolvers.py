"""
services/booking/resolvers.py
Seat bookings: creation priced from the trip row, driver confirmation and
rider cancellation. Booking status is independent of later trip status.
"""

import logging
from decimal import ROUND_HALF_UP, Decimal

import graphene
from sqlalchemy import insert, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import query, query_one, session_scope
from config.settings import settings
from shared.middleware.auth import require_auth
from shared.models.models import (
    RIDER_ROLES,
    Booking,
    BookingStatus,
    NotificationType,
    Trip,
    TripStatus,
)
from shared.schemas.schemas import BookingCreate, validate_input
from shared.schemas.types import BookingNode, BookingStatusEnum, CreateBookingInput, parse_id
from shared.utils.exceptions import (
    InvalidStateTransition,
    NotFoundOrUnauthorized,
    ValidationError,
)
from services.notification.resolvers import create_notification
from services.user.resolvers import require_account

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")

CANCELLABLE = (BookingStatus.PENDING, BookingStatus.CONFIRMED)


def compute_amounts(price_per_seat, seats: int, rate=None) -> tuple:
    """Return (total, commission) rounded to cents."""
    rate = Decimal(str(settings.PLATFORM_COMMISSION_RATE if rate is None else rate))
    total = (Decimal(str(price_per_seat)) * seats).quantize(CENTS, rounding=ROUND_HALF_UP)
    commission = (total * rate).quantize(CENTS, rounding=ROUND_HALF_UP)
    return total, commission


async def explain_booking_miss(
    db: AsyncSession,
    booking_id,
    owner_check,
    target: BookingStatus,
) -> Exception:
    booking = await query_one(db, select(Booking).where(Booking.id == booking_id))
    if booking is None:
        return NotFoundOrUnauthorized("Booking", detail=f"{booking_id} does not exist")
    if not await owner_check(booking):
        return NotFoundOrUnauthorized("Booking", detail=f"{booking_id} is not owned by caller")
    return InvalidStateTransition("booking", BookingStatus(booking.booking_status).value, target.value)


# ── Queries ───────────────────────────────────────────────────

class BookingQuery(graphene.ObjectType):
    booking = graphene.Field(BookingNode, id=graphene.ID(required=True))
    my_bookings = graphene.List(
        graphene.NonNull(BookingNode), status=BookingStatusEnum(), required=True
    )
    trip_bookings = graphene.List(
        graphene.NonNull(BookingNode), trip_id=graphene.ID(required=True), required=True
    )

    async def resolve_booking(root, info, id):
        identity = require_auth(info.context)
        booking_id = parse_id(id, "Booking")
        async with session_scope() as db:
            # Visible to the rider and to the trip's driver
            return await query_one(
                db,
                select(Booking)
                .join(Trip, Trip.id == Booking.trip_id)
                .where(
                    Booking.id == booking_id,
                    or_(
                        Booking.rider_id == identity.subject_id,
                        Trip.driver_id == identity.subject_id,
                    ),
                ),
            )

    async def resolve_my_bookings(root, info, status=None):
        identity = require_auth(info.context)
        stmt = select(Booking).where(Booking.rider_id == identity.subject_id)
        if status is not None:
            stmt = stmt.where(Booking.booking_status == BookingStatus(status))
        async with session_scope() as db:
            return await query(db, stmt.order_by(Booking.created_at.desc()))

    async def resolve_trip_bookings(root, info, trip_id):
        identity = require_auth(info.context)
        trip_uuid = parse_id(trip_id, "Trip")
        async with session_scope() as db:
            owned = await query_one(
                db,
                select(Trip.id).where(Trip.id == trip_uuid, Trip.driver_id == identity.subject_id),
            )
            if owned is None:
                raise NotFoundOrUnauthorized("Trip", detail=f"{trip_uuid} for {identity.subject_id}")
            return await query(
                db,
                select(Booking).where(Booking.trip_id == trip_uuid).order_by(Booking.created_at),
            )


# ── Mutations ─────────────────────────────────────────────────

class BookingMutation(graphene.ObjectType):
    create_booking = graphene.Field(
        BookingNode, input=CreateBookingInput(required=True), required=True
    )
    confirm_booking = graphene.Field(BookingNode, id=graphene.ID(required=True), required=True)
    cancel_booking = graphene.Field(BookingNode, id=graphene.ID(required=True), required=True)

    async def resolve_create_booking(root, info, input):
        identity = require_auth(info.context)
        data = validate_input(BookingCreate, input)
        trip_id = parse_id(data.trip_id, "Trip")

        async with session_scope() as db:
            await require_account(db, identity.subject_id, RIDER_ROLES)

            # Reserve seats and read the real per-seat price in one statement
            trip = await query_one(
                db,
                update(Trip)
                .where(
                    Trip.id == trip_id,
                    Trip.trip_status == TripStatus.SCHEDULED,
                    Trip.driver_id != identity.subject_id,
                    Trip.available_seats >= data.seats_booked,
                )
                .values(available_seats=Trip.available_seats - data.seats_booked)
                .returning(Trip),
            )
            if trip is None:
                current = await query_one(db, select(Trip).where(Trip.id == trip_id))
                if current is None:
                    raise NotFoundOrUnauthorized("Trip", detail=f"{trip_id} does not exist")
                if current.driver_id == identity.subject_id:
                    raise ValidationError("Drivers cannot book their own trip")
                if current.trip_status != TripStatus.SCHEDULED:
                    raise ValidationError("Trip is not open for booking")
                raise ValidationError(f"Only {current.available_seats} seat(s) available")

            total, commission = compute_amounts(trip.price_per_seat, data.seats_booked)
            values = data.model_dump(exclude={"trip_id", "pickup_coordinates"})
            if data.pickup_coordinates:
                values["pickup_latitude"] = data.pickup_coordinates.latitude
                values["pickup_longitude"] = data.pickup_coordinates.longitude

            booking = (
                await query(
                    db,
                    insert(Booking)
                    .values(
                        trip_id=trip.id,
                        rider_id=identity.subject_id,
                        total_amount=total,
                        commission_amount=commission,
                        booking_status=BookingStatus.PENDING,
                        **values,
                    )
                    .returning(Booking),
                )
            )[0]

            await create_notification(
                db,
                user_id=trip.driver_id,
                notification_type=NotificationType.BOOKING_CREATED,
                title="New booking",
                message=(
                    f"{data.seats_booked} seat(s) booked on your trip "
                    f"{trip.origin_city} to {trip.destination_city}."
                ),
                data={"bookingId": str(booking.id), "tripId": str(trip.id)},
            )

        logger.info(
            "Booking %s: %s seat(s) on trip %s, total=%s commission=%s",
            booking.id, data.seats_booked, trip.id, total, commission,
        )
        return booking

    async def resolve_confirm_booking(root, info, id):
        identity = require_auth(info.context)
        booking_id = parse_id(id, "Booking")
        driver_trips = select(Trip.id).where(Trip.driver_id == identity.subject_id)

        async with session_scope() as db:
            booking = await query_one(
                db,
                update(Booking)
                .where(
                    Booking.id == booking_id,
                    Booking.trip_id.in_(driver_trips),
                    Booking.booking_status == BookingStatus.PENDING,
                )
                .values(booking_status=BookingStatus.CONFIRMED)
                .returning(Booking),
            )
            if booking is None:
                async def is_driver(b):
                    trip = await query_one(db, select(Trip.driver_id).where(Trip.id == b.trip_id))
                    return trip == identity.subject_id

                raise await explain_booking_miss(db, booking_id, is_driver, BookingStatus.CONFIRMED)

            await create_notification(
                db,
                user_id=booking.rider_id,
                notification_type=NotificationType.BOOKING_CONFIRMED,
                title="Booking confirmed",
                message="Your driver confirmed your booking.",
                data={"bookingId": str(booking.id)},
            )
        return booking

    async def resolve_cancel_booking(root, info, id):
        identity = require_auth(info.context)
        booking_id = parse_id(id, "Booking")

        async with session_scope() as db:
            booking = await query_one(
                db,
                update(Booking)
                .where(
                    Booking.id == booking_id,
                    Booking.rider_id == identity.subject_id,
                    Booking.booking_status.in_(CANCELLABLE),
                )
                .values(booking_status=BookingStatus.CANCELLED)
                .returning(Booking),
            )
            if booking is None:
                async def is_rider(b):
                    return b.rider_id == identity.subject_id

                raise await explain_booking_miss(db, booking_id, is_rider, BookingStatus.CANCELLED)

            # Give the seats back if the trip has not left yet
            trip = await query_one(
                db,
                update(Trip)
                .where(Trip.id == booking.trip_id, Trip.trip_status == TripStatus.SCHEDULED)
                .values(available_seats=Trip.available_seats + booking.seats_booked)
                .returning(Trip),
            )
            if trip is not None:
                await create_notification(
                    db,
                    user_id=trip.driver_id,
                    notification_type=NotificationType.BOOKING_CANCELLED,
                    title="Booking cancelled",
                    message=f"A rider cancelled {booking.seats_booked} seat(s) on your trip.",
                    data={"bookingId": str(booking.id), "tripId": str(trip.id)},
                )
        return booking
