"""
shared/schemas/types.py
graphene object, input and enum types for the GraphQL schema.
Relationship fields resolve with their own short-lived session.
"""

import uuid
from typing import Optional

import graphene
from sqlalchemy import select

from config.database import query, query_one, session_scope
from shared.models.models import (
    BackgroundCheckStatus,
    Booking,
    BookingStatus,
    DriverProfile,
    NotificationType,
    Payment,
    PaymentStatus,
    Trip,
    TripStatus,
    TripType,
    User,
    UserRole,
    Vehicle,
    VehicleType,
)
from shared.utils.exceptions import ValidationError

# ── Enums ─────────────────────────────────────────────────────

UserRoleEnum = graphene.Enum.from_enum(UserRole)
BackgroundCheckStatusEnum = graphene.Enum.from_enum(BackgroundCheckStatus)
VehicleTypeEnum = graphene.Enum.from_enum(VehicleType)
TripStatusEnum = graphene.Enum.from_enum(TripStatus)
TripTypeEnum = graphene.Enum.from_enum(TripType)
BookingStatusEnum = graphene.Enum.from_enum(BookingStatus)
PaymentStatusEnum = graphene.Enum.from_enum(PaymentStatus)
NotificationTypeEnum = graphene.Enum.from_enum(NotificationType)


def parse_id(value, resource: str = "Resource") -> uuid.UUID:
    """GraphQL IDs arrive as strings; table keys are UUIDs."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {resource.lower()} id")


async def load_one(statement) -> Optional[object]:
    async with session_scope() as db:
        return await query_one(db, statement)


async def load_all(statement) -> list:
    async with session_scope() as db:
        return await query(db, statement)


def _coordinates(latitude, longitude) -> Optional[dict]:
    if latitude is None or longitude is None:
        return None
    return {"latitude": latitude, "longitude": longitude}


# ── Object Types ──────────────────────────────────────────────

class Coordinates(graphene.ObjectType):
    latitude = graphene.Float(required=True)
    longitude = graphene.Float(required=True)


class UserNode(graphene.ObjectType):
    class Meta:
        name = "User"

    id = graphene.ID(required=True)
    email = graphene.String(required=True)
    phone = graphene.String()
    first_name = graphene.String(required=True)
    last_name = graphene.String(required=True)
    profile_image_url = graphene.String()
    role = UserRoleEnum(required=True)
    is_verified = graphene.Boolean(required=True)
    is_active = graphene.Boolean(required=True)
    created_at = graphene.DateTime(required=True)
    updated_at = graphene.DateTime(required=True)
    driver_profile = graphene.Field(lambda: DriverProfileNode)

    async def resolve_driver_profile(user, info):
        return await load_one(select(DriverProfile).where(DriverProfile.user_id == user.id))


class DriverProfileNode(graphene.ObjectType):
    class Meta:
        name = "DriverProfile"

    id = graphene.ID(required=True)
    user = graphene.Field(UserNode)
    license_number = graphene.String(required=True)
    license_expiry = graphene.Date(required=True)
    license_image_url = graphene.String()
    vehicle = graphene.Field(lambda: VehicleNode)
    background_check_status = BackgroundCheckStatusEnum(required=True)
    driving_experience_years = graphene.Int(required=True)
    average_rating = graphene.Float(required=True)
    total_trips = graphene.Int(required=True)
    is_available = graphene.Boolean(required=True)
    created_at = graphene.DateTime(required=True)

    async def resolve_user(profile, info):
        return await load_one(select(User).where(User.id == profile.user_id))

    async def resolve_vehicle(profile, info):
        if profile.vehicle_id is None:
            return None
        return await load_one(select(Vehicle).where(Vehicle.id == profile.vehicle_id))


class VehicleNode(graphene.ObjectType):
    class Meta:
        name = "Vehicle"

    id = graphene.ID(required=True)
    driver = graphene.Field(UserNode)
    make = graphene.String(required=True)
    model = graphene.String(required=True)
    year = graphene.Int(required=True)
    color = graphene.String(required=True)
    license_plate = graphene.String(required=True)
    vehicle_type = VehicleTypeEnum(required=True)
    passenger_capacity = graphene.Int(required=True)
    insurance_policy_number = graphene.String()
    insurance_expiry = graphene.Date()
    vehicle_images = graphene.List(graphene.NonNull(graphene.String), required=True)
    is_verified = graphene.Boolean(required=True)
    created_at = graphene.DateTime(required=True)

    async def resolve_driver(vehicle, info):
        return await load_one(select(User).where(User.id == vehicle.driver_id))

    def resolve_vehicle_images(vehicle, info):
        return list(vehicle.vehicle_images or [])


class TripNode(graphene.ObjectType):
    class Meta:
        name = "Trip"

    id = graphene.ID(required=True)
    driver = graphene.Field(UserNode)
    origin_city = graphene.String(required=True)
    destination_city = graphene.String(required=True)
    origin_coordinates = graphene.Field(Coordinates)
    destination_coordinates = graphene.Field(Coordinates)
    departure_time = graphene.DateTime(required=True)
    estimated_arrival_time = graphene.DateTime()
    available_seats = graphene.Int(required=True)
    price_per_seat = graphene.Float(required=True)
    trip_status = TripStatusEnum(required=True)
    trip_type = TripTypeEnum(required=True)
    return_departure_time = graphene.DateTime()
    description = graphene.String()
    bookings = graphene.List(graphene.NonNull(lambda: BookingNode), required=True)
    created_at = graphene.DateTime(required=True)
    updated_at = graphene.DateTime(required=True)

    async def resolve_driver(trip, info):
        return await load_one(select(User).where(User.id == trip.driver_id))

    def resolve_origin_coordinates(trip, info):
        return _coordinates(trip.origin_latitude, trip.origin_longitude)

    def resolve_destination_coordinates(trip, info):
        return _coordinates(trip.destination_latitude, trip.destination_longitude)

    async def resolve_bookings(trip, info):
        # Only the driver sees who booked
        identity = getattr(info.context, "identity", None)
        if identity is None or identity.subject_id != trip.driver_id:
            return []
        return await load_all(
            select(Booking).where(Booking.trip_id == trip.id).order_by(Booking.created_at)
        )


class BookingNode(graphene.ObjectType):
    class Meta:
        name = "Booking"

    id = graphene.ID(required=True)
    trip = graphene.Field(TripNode)
    rider = graphene.Field(UserNode)
    seats_booked = graphene.Int(required=True)
    total_amount = graphene.Float(required=True)
    commission_amount = graphene.Float(required=True)
    booking_status = BookingStatusEnum(required=True)
    payment_status = PaymentStatusEnum(required=True)
    payment_method = graphene.String(required=True)
    pickup_location = graphene.String()
    pickup_coordinates = graphene.Field(Coordinates)
    special_requests = graphene.String()
    payment_reference = graphene.String()
    payment = graphene.Field(lambda: PaymentNode)
    created_at = graphene.DateTime(required=True)
    updated_at = graphene.DateTime(required=True)

    async def resolve_trip(booking, info):
        return await load_one(select(Trip).where(Trip.id == booking.trip_id))

    async def resolve_rider(booking, info):
        return await load_one(select(User).where(User.id == booking.rider_id))

    def resolve_pickup_coordinates(booking, info):
        return _coordinates(booking.pickup_latitude, booking.pickup_longitude)

    async def resolve_payment(booking, info):
        return await load_one(select(Payment).where(Payment.booking_id == booking.id))


class PaymentNode(graphene.ObjectType):
    class Meta:
        name = "Payment"

    id = graphene.ID(required=True)
    booking = graphene.Field(BookingNode)
    amount = graphene.Float(required=True)
    payment_method = graphene.String(required=True)
    gateway_reference = graphene.String(required=True)
    gateway_transaction_id = graphene.String()
    payment_status = PaymentStatusEnum(required=True)
    gateway_response = graphene.JSONString()
    created_at = graphene.DateTime(required=True)
    updated_at = graphene.DateTime(required=True)

    async def resolve_booking(payment, info):
        return await load_one(select(Booking).where(Booking.id == payment.booking_id))


class ReviewNode(graphene.ObjectType):
    class Meta:
        name = "Review"

    id = graphene.ID(required=True)
    booking = graphene.Field(BookingNode)
    reviewer = graphene.Field(UserNode)
    reviewee = graphene.Field(UserNode)
    rating = graphene.Int(required=True)
    comment = graphene.String()
    created_at = graphene.DateTime(required=True)

    async def resolve_booking(review, info):
        return await load_one(select(Booking).where(Booking.id == review.booking_id))

    async def resolve_reviewer(review, info):
        return await load_one(select(User).where(User.id == review.reviewer_id))

    async def resolve_reviewee(review, info):
        return await load_one(select(User).where(User.id == review.reviewee_id))


class NotificationNode(graphene.ObjectType):
    class Meta:
        name = "Notification"

    id = graphene.ID(required=True)
    user = graphene.Field(UserNode)
    title = graphene.String(required=True)
    message = graphene.String(required=True)
    notification_type = NotificationTypeEnum(required=True)
    is_read = graphene.Boolean(required=True)
    read_at = graphene.DateTime()
    data = graphene.JSONString()
    created_at = graphene.DateTime(required=True)

    async def resolve_user(notification, info):
        return await load_one(select(User).where(User.id == notification.user_id))


# ── Pagination ────────────────────────────────────────────────

class PageInfo(graphene.ObjectType):
    has_next_page = graphene.Boolean(required=True)
    has_previous_page = graphene.Boolean(required=True)
    start_cursor = graphene.String()
    end_cursor = graphene.String()


class TripEdge(graphene.ObjectType):
    cursor = graphene.String(required=True)
    node = graphene.Field(TripNode, required=True)


class TripConnection(graphene.ObjectType):
    edges = graphene.List(graphene.NonNull(TripEdge), required=True)
    page_info = graphene.Field(PageInfo, required=True)
    total_count = graphene.Int(required=True)


class UploadUrl(graphene.ObjectType):
    upload_url = graphene.String(required=True)
    file_url = graphene.String(required=True)


# ── Input Types ───────────────────────────────────────────────

class CoordinatesInput(graphene.InputObjectType):
    latitude = graphene.Float(required=True)
    longitude = graphene.Float(required=True)


class CreateUserInput(graphene.InputObjectType):
    email = graphene.String(required=True)
    phone = graphene.String()
    first_name = graphene.String(required=True)
    last_name = graphene.String(required=True)
    role = UserRoleEnum()
    profile_image_url = graphene.String()


class UpdateUserInput(graphene.InputObjectType):
    first_name = graphene.String()
    last_name = graphene.String()
    phone = graphene.String()
    profile_image_url = graphene.String()


class CreateDriverProfileInput(graphene.InputObjectType):
    license_number = graphene.String(required=True)
    license_expiry = graphene.Date(required=True)
    license_image_url = graphene.String()
    driving_experience_years = graphene.Int()


class UpdateDriverProfileInput(graphene.InputObjectType):
    license_number = graphene.String()
    license_expiry = graphene.Date()
    license_image_url = graphene.String()
    driving_experience_years = graphene.Int()


class CreateVehicleInput(graphene.InputObjectType):
    make = graphene.String(required=True)
    model = graphene.String(required=True)
    year = graphene.Int(required=True)
    color = graphene.String(required=True)
    license_plate = graphene.String(required=True)
    vehicle_type = VehicleTypeEnum(required=True)
    passenger_capacity = graphene.Int(required=True)
    insurance_policy_number = graphene.String()
    insurance_expiry = graphene.Date()
    vehicle_images = graphene.List(graphene.NonNull(graphene.String))


class UpdateVehicleInput(graphene.InputObjectType):
    make = graphene.String()
    model = graphene.String()
    year = graphene.Int()
    color = graphene.String()
    vehicle_type = VehicleTypeEnum()
    passenger_capacity = graphene.Int()
    insurance_policy_number = graphene.String()
    insurance_expiry = graphene.Date()
    vehicle_images = graphene.List(graphene.NonNull(graphene.String))


class CreateTripInput(graphene.InputObjectType):
    origin_city = graphene.String(required=True)
    destination_city = graphene.String(required=True)
    origin_coordinates = graphene.InputField(CoordinatesInput)
    destination_coordinates = graphene.InputField(CoordinatesInput)
    departure_time = graphene.DateTime(required=True)
    estimated_arrival_time = graphene.DateTime()
    available_seats = graphene.Int(required=True)
    price_per_seat = graphene.Float(required=True)
    trip_type = TripTypeEnum()
    return_departure_time = graphene.DateTime()
    description = graphene.String()


class UpdateTripInput(graphene.InputObjectType):
    departure_time = graphene.DateTime()
    estimated_arrival_time = graphene.DateTime()
    available_seats = graphene.Int()
    price_per_seat = graphene.Float()
    return_departure_time = graphene.DateTime()
    description = graphene.String()


class TripFilterInput(graphene.InputObjectType):
    origin_city = graphene.String()
    destination_city = graphene.String()
    departure_date = graphene.Date()
    min_price = graphene.Float()
    max_price = graphene.Float()
    available_seats = graphene.Int()


class CreateBookingInput(graphene.InputObjectType):
    trip_id = graphene.ID(required=True)
    seats_booked = graphene.Int(required=True)
    pickup_location = graphene.String()
    pickup_coordinates = graphene.InputField(CoordinatesInput)
    special_requests = graphene.String()
    payment_method = graphene.String()


class InitializePaymentInput(graphene.InputObjectType):
    booking_id = graphene.ID(required=True)
    payment_method = graphene.String()


class CreateReviewInput(graphene.InputObjectType):
    booking_id = graphene.ID(required=True)
    rating = graphene.Int(required=True)
    comment = graphene.String()
