"""
shared/schemas/schemas.py
Pydantic v2 models that validate GraphQL mutation inputs before any write.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, ClassVar, List, Mapping, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from shared.models.models import TripType, UserRole, VehicleType

S = TypeVar("S", bound=BaseModel)

CURRENT_YEAR = datetime.now(timezone.utc).year


# ── Base ──────────────────────────────────────────────────────

class BaseSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True, extra="ignore")


class UpdateSchema(BaseSchema):
    """
    Partial update. Fields may be omitted, but those listed in
    ``not_nullable`` back NOT NULL columns and cannot be cleared with null.
    """

    not_nullable: ClassVar[Tuple[str, ...]] = ()

    @model_validator(mode="before")
    @classmethod
    def reject_null_for_required_columns(cls, data: Any) -> Any:
        if isinstance(data, Mapping):
            cleared = [name for name in cls.not_nullable if name in data and data[name] is None]
            if cleared:
                raise ValueError(f"{', '.join(cleared)} cannot be null")
        return data


def validate_input(schema: Type[S], data: Optional[Mapping[str, Any]]) -> S:
    """Validate a GraphQL input object. pydantic errors map to BAD_USER_INPUT."""
    return schema.model_validate(dict(data or {}))


def validate_license_expiry(v: Optional[date]) -> Optional[date]:
    if v is not None and v <= datetime.now(timezone.utc).date():
        raise ValueError("License has expired")
    return v


class CoordinatesSchema(BaseSchema):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


# ── User ──────────────────────────────────────────────────────

class UserCreate(BaseSchema):
    email: EmailStr
    phone: Optional[str] = Field(None, pattern=r"^\+?[1-9]\d{7,14}$")
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    role: UserRole = UserRole.RIDER
    profile_image_url: Optional[str] = None


class UserUpdate(UpdateSchema):
    not_nullable = ("first_name", "last_name")

    first_name: Optional[str] = Field(None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(None, min_length=1, max_length=100)
    phone: Optional[str] = Field(None, pattern=r"^\+?[1-9]\d{7,14}$")
    profile_image_url: Optional[str] = None


# ── Driver Profile / Vehicle ──────────────────────────────────

class DriverProfileCreate(BaseSchema):
    license_number: str = Field(..., min_length=3, max_length=50)
    license_expiry: date
    license_image_url: Optional[str] = None
    driving_experience_years: int = Field(0, ge=0, le=70)

    check_license_expiry = field_validator("license_expiry")(validate_license_expiry)


class DriverProfileUpdate(UpdateSchema):
    not_nullable = ("license_number", "license_expiry", "driving_experience_years")

    license_number: Optional[str] = Field(None, min_length=3, max_length=50)
    license_expiry: Optional[date] = None
    license_image_url: Optional[str] = None
    driving_experience_years: Optional[int] = Field(None, ge=0, le=70)

    check_license_expiry = field_validator("license_expiry")(validate_license_expiry)


class VehicleCreate(BaseSchema):
    make: str = Field(..., min_length=1, max_length=50)
    model: str = Field(..., min_length=1, max_length=50)
    year: int = Field(..., ge=1980, le=CURRENT_YEAR + 1)
    color: str = Field(..., min_length=1, max_length=30)
    license_plate: str = Field(..., min_length=2, max_length=20)
    vehicle_type: VehicleType
    passenger_capacity: int = Field(..., ge=1, le=60)
    insurance_policy_number: Optional[str] = Field(None, max_length=50)
    insurance_expiry: Optional[date] = None
    vehicle_images: List[str] = Field(default_factory=list)

    @field_validator("license_plate")
    @classmethod
    def normalize_plate(cls, v: str) -> str:
        return v.strip().upper()


class VehicleUpdate(UpdateSchema):
    not_nullable = (
        "make", "model", "year", "color", "vehicle_type", "passenger_capacity", "vehicle_images",
    )

    make: Optional[str] = Field(None, min_length=1, max_length=50)
    model: Optional[str] = Field(None, min_length=1, max_length=50)
    year: Optional[int] = Field(None, ge=1980, le=CURRENT_YEAR + 1)
    color: Optional[str] = Field(None, min_length=1, max_length=30)
    vehicle_type: Optional[VehicleType] = None
    passenger_capacity: Optional[int] = Field(None, ge=1, le=60)
    insurance_policy_number: Optional[str] = Field(None, max_length=50)
    insurance_expiry: Optional[date] = None
    vehicle_images: Optional[List[str]] = None


class UploadRequest(BaseSchema):
    file_name: str = Field(..., min_length=1, max_length=255)
    file_type: str = Field(..., pattern=r"^image/(jpeg|png|webp|heic)$")


# ── Trip ──────────────────────────────────────────────────────

class TripCreate(BaseSchema):
    origin_city: str = Field(..., min_length=1, max_length=100)
    destination_city: str = Field(..., min_length=1, max_length=100)
    origin_coordinates: Optional[CoordinatesSchema] = None
    destination_coordinates: Optional[CoordinatesSchema] = None
    departure_time: datetime
    estimated_arrival_time: Optional[datetime] = None
    available_seats: int = Field(..., ge=1, le=60)
    price_per_seat: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2)
    trip_type: TripType = TripType.ONE_WAY
    return_departure_time: Optional[datetime] = None
    description: Optional[str] = Field(None, max_length=2000)

    @model_validator(mode="after")
    def validate_times(self) -> "TripCreate":
        if self.estimated_arrival_time and self.estimated_arrival_time <= self.departure_time:
            raise ValueError("Estimated arrival must be after departure")
        if self.trip_type == TripType.ROUND_TRIP and not self.return_departure_time:
            raise ValueError("Round trips need a return departure time")
        return self


class TripUpdate(UpdateSchema):
    not_nullable = ("departure_time", "available_seats", "price_per_seat")

    departure_time: Optional[datetime] = None
    estimated_arrival_time: Optional[datetime] = None
    available_seats: Optional[int] = Field(None, ge=0, le=60)
    price_per_seat: Optional[Decimal] = Field(None, ge=0, max_digits=10, decimal_places=2)
    return_departure_time: Optional[datetime] = None
    description: Optional[str] = Field(None, max_length=2000)


class TripSearch(BaseSchema):
    origin_city: Optional[str] = None
    destination_city: Optional[str] = None
    departure_date: Optional[date] = None
    min_price: Optional[Decimal] = Field(None, ge=0)
    max_price: Optional[Decimal] = Field(None, ge=0)
    available_seats: Optional[int] = Field(None, ge=1)


# ── Booking / Payment ─────────────────────────────────────────

class BookingCreate(BaseSchema):
    trip_id: str
    seats_booked: int = Field(..., ge=1, le=60)
    pickup_location: Optional[str] = Field(None, max_length=500)
    pickup_coordinates: Optional[CoordinatesSchema] = None
    special_requests: Optional[str] = Field(None, max_length=1000)
    payment_method: str = Field("paystack", max_length=50)


class PaymentInitialize(BaseSchema):
    booking_id: str
    payment_method: str = Field("paystack", min_length=1, max_length=50)


# ── Review ────────────────────────────────────────────────────

class ReviewCreate(BaseSchema):
    booking_id: str
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=2000)
