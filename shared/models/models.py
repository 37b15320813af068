"""
shared/models/models.py
All SQLAlchemy ORM models for the ride-sharing marketplace.
UUID primary keys throughout, except users which are keyed by the
identity provider's subject id.
"""

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum as PyEnum
from typing import List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    SmallInteger,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from config.database import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum(enum_cls: type, name: str) -> Enum:
    # Store the lowercase values, not the member names
    return Enum(enum_cls, name=name, values_callable=lambda e: [m.value for m in e])


# ── Enumerations ──────────────────────────────────────────────

class UserRole(str, PyEnum):
    RIDER = "rider"
    DRIVER = "driver"
    BOTH = "both"


class BackgroundCheckStatus(str, PyEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class VehicleType(str, PyEnum):
    SEDAN = "sedan"
    SUV = "suv"
    MINIVAN = "minivan"
    BUS = "bus"


class TripStatus(str, PyEnum):
    SCHEDULED = "scheduled"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TripType(str, PyEnum):
    ONE_WAY = "one_way"
    ROUND_TRIP = "round_trip"


class BookingStatus(str, PyEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class PaymentStatus(str, PyEnum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class NotificationType(str, PyEnum):
    BOOKING_CREATED = "booking_created"
    BOOKING_CONFIRMED = "booking_confirmed"
    BOOKING_CANCELLED = "booking_cancelled"
    PAYMENT_SUCCESS = "payment_success"
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_REFUNDED = "payment_refunded"
    REVIEW_RECEIVED = "review_received"
    TRIP_UPDATE = "trip_update"


DRIVER_ROLES = (UserRole.DRIVER, UserRole.BOTH)
RIDER_ROLES = (UserRole.RIDER, UserRole.BOTH)


# ── Mixins ────────────────────────────────────────────────────

class TimestampMixin:
    """Adds created_at and updated_at to any model."""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )


# ── Models ────────────────────────────────────────────────────

class User(TimestampMixin, Base):
    """Account keyed by the identity provider's subject id. Never hard-deleted."""
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True, unique=True)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    profile_image_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    role: Mapped[UserRole] = mapped_column(
        _enum(UserRole, "user_role"), nullable=False, default=UserRole.RIDER
    )
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (Index("ix_users_role", "role"),)

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.role})>"


class Vehicle(TimestampMixin, Base):
    __tablename__ = "vehicles"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    driver_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    make: Mapped[str] = mapped_column(String(50), nullable=False)
    model: Mapped[str] = mapped_column(String(50), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    color: Mapped[str] = mapped_column(String(30), nullable=False)
    license_plate: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    vehicle_type: Mapped[VehicleType] = mapped_column(
        _enum(VehicleType, "vehicle_type"), nullable=False
    )
    passenger_capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    insurance_policy_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    insurance_expiry: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    vehicle_images: Mapped[List[str]] = mapped_column(JSONType, default=list, nullable=False)
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (
        CheckConstraint("passenger_capacity > 0", name="ck_vehicle_capacity_positive"),
        Index("ix_vehicles_driver_id", "driver_id"),
    )

    def __repr__(self) -> str:
        return f"<Vehicle {self.license_plate}>"


class DriverProfile(TimestampMixin, Base):
    """One-to-one extension of a driver User. References at most one active vehicle."""
    __tablename__ = "driver_profiles"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(
        String(128),
        ForeignKey("users.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    license_number: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    license_expiry: Mapped[date] = mapped_column(Date, nullable=False)
    license_image_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    vehicle_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("vehicles.id", ondelete="SET NULL"), nullable=True
    )
    background_check_status: Mapped[BackgroundCheckStatus] = mapped_column(
        _enum(BackgroundCheckStatus, "background_check_status"),
        nullable=False,
        default=BackgroundCheckStatus.PENDING,
    )
    driving_experience_years: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    average_rating: Mapped[Decimal] = mapped_column(
        Numeric(3, 2), default=Decimal("0.00"), nullable=False
    )
    total_trips: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_available: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    def __repr__(self) -> str:
        return f"<DriverProfile user={self.user_id} rating={self.average_rating}>"


class Trip(TimestampMixin, Base):
    """
    A driver's scheduled intercity trip.
    Lifecycle: scheduled -> active -> completed, cancelled from scheduled or active.
    """
    __tablename__ = "trips"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    driver_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    origin_city: Mapped[str] = mapped_column(String(100), nullable=False)
    destination_city: Mapped[str] = mapped_column(String(100), nullable=False)
    origin_latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    origin_longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    destination_latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    destination_longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    departure_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    estimated_arrival_time: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    available_seats: Mapped[int] = mapped_column(Integer, nullable=False)
    price_per_seat: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    trip_status: Mapped[TripStatus] = mapped_column(
        _enum(TripStatus, "trip_status"), nullable=False, default=TripStatus.SCHEDULED
    )
    trip_type: Mapped[TripType] = mapped_column(
        _enum(TripType, "trip_type"), nullable=False, default=TripType.ONE_WAY
    )
    return_departure_time: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint("available_seats >= 0", name="ck_trip_seats_non_negative"),
        CheckConstraint("price_per_seat >= 0", name="ck_trip_price_non_negative"),
        Index("ix_trips_driver_id", "driver_id"),
        Index("ix_trips_route", "origin_city", "destination_city"),
        Index("ix_trips_departure", "departure_time"),
        Index("ix_trips_status", "trip_status"),
    )

    def __repr__(self) -> str:
        return f"<Trip {self.origin_city}->{self.destination_city} [{self.trip_status}]>"


class Booking(TimestampMixin, Base):
    """A rider's seat reservation on a trip."""
    __tablename__ = "bookings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    trip_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("trips.id", ondelete="CASCADE"), nullable=False
    )
    rider_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    seats_booked: Mapped[int] = mapped_column(Integer, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    commission_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    booking_status: Mapped[BookingStatus] = mapped_column(
        _enum(BookingStatus, "booking_status"), nullable=False, default=BookingStatus.PENDING
    )
    payment_status: Mapped[PaymentStatus] = mapped_column(
        _enum(PaymentStatus, "payment_status"), nullable=False, default=PaymentStatus.PENDING
    )
    payment_method: Mapped[str] = mapped_column(String(50), default="paystack", nullable=False)
    pickup_location: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    pickup_latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    pickup_longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    special_requests: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    payment_reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    __table_args__ = (
        CheckConstraint("seats_booked > 0", name="ck_booking_seats_positive"),
        Index("ix_bookings_trip_id", "trip_id"),
        Index("ix_bookings_rider_id", "rider_id"),
    )

    def __repr__(self) -> str:
        return f"<Booking {self.id} [{self.booking_status}/{self.payment_status}]>"


class Payment(TimestampMixin, Base):
    """At most one payment per booking; status mirrors Booking.payment_status."""
    __tablename__ = "payments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    payment_method: Mapped[str] = mapped_column(String(50), nullable=False)
    gateway_reference: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    gateway_transaction_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    payment_status: Mapped[PaymentStatus] = mapped_column(
        _enum(PaymentStatus, "payment_status"), nullable=False, default=PaymentStatus.PENDING
    )
    gateway_response: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    def __repr__(self) -> str:
        return f"<Payment {self.gateway_reference} [{self.payment_status}]>"


class Review(TimestampMixin, Base):
    """One review per (booking, reviewer); the reviewee is the other party."""
    __tablename__ = "reviews"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False
    )
    reviewer_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    reviewee_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    rating: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    comment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("booking_id", "reviewer_id", name="uq_review_booking_reviewer"),
        CheckConstraint("rating >= 1 AND rating <= 5", name="ck_review_rating_range"),
        Index("ix_reviews_reviewee_id", "reviewee_id"),
    )


class Notification(TimestampMixin, Base):
    """In-app notification. Only the owning user may flip the read flag."""
    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    notification_type: Mapped[NotificationType] = mapped_column(
        _enum(NotificationType, "notification_type"), nullable=False
    )
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    read_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    data: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    __table_args__ = (Index("ix_notifications_user_unread", "user_id", "is_read"),)
