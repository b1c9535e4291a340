"""Pydantic schemas for API serialisation."""

from datetime import date, datetime
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

from resortbook.models.booking import BookingStatus, BookingType, DailyRecurringSession, ScheduledSession, YogaRef
from resortbook.models.coupon import CouponServiceType, DiscountType

# --- Auth ---

# Optional leading +, no leading zero, up to 15 digits
PHONE_PATTERN = r"^\+?[1-9]\d{1,14}$"


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8)
    first_name: str
    last_name: str
    # Also the identity a coupon redemption is recorded against
    phone: str = Field(pattern=PHONE_PATTERN)


class RefreshRequest(BaseModel):
    refresh_token: str


class ProfileUpdate(BaseModel):
    first_name: str | None = Field(None, min_length=1, max_length=100)
    last_name: str | None = Field(None, min_length=1, max_length=100)
    phone: str | None = Field(None, pattern=PHONE_PATTERN)


# --- User ---


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    first_name: str
    last_name: str
    phone: str | None
    role: str


# --- Inventory ---


class RoomOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    room_number: str
    room_type: str
    price_per_night_paise: int
    capacity: int
    amenities: list[str] | None
    description: str | None
    is_available: bool


class RoomAvailabilityOut(BaseModel):
    room_id: int
    check_in: date
    check_out: date
    is_available: bool
    conflicts: list[dict] = []


class YogaSessionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    type: str
    batch_name: str
    start_date: date
    end_date: date
    capacity: int
    booked_seats: int
    available_seats: int
    price_paise: int
    instructor: str | None
    schedule: dict | None
    description: str | None
    is_active: bool


class DailyYogaSessionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    type: str
    price_paise: int
    duration_minutes: int
    description: str | None
    time_slots: list[dict]


class ServiceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    category: str
    subcategory: str | None
    price_paise: int
    price_unit: str
    description: str | None
    min_age: int | None
    max_age: int | None
    available_slots: int | None
    duration_minutes: int | None


# --- Booking ---


class GuestIn(BaseModel):
    # Range checks on age live in the availability rules so they report a booking error
    name: str
    age: int
    gender: Literal["male", "female", "other"] | None = None
    id_type: str | None = None
    id_number: str | None = None


class PrimaryGuestIn(BaseModel):
    name: str = Field(min_length=1)
    email: EmailStr
    phone: str = Field(min_length=6, max_length=20)


class TransportIn(BaseModel):
    pickup: bool = False
    drop: bool = False
    flight_number: str | None = None
    pickup_location: str | None = None
    drop_location: str | None = None
    arrival_time: datetime | None = None
    departure_time: datetime | None = None


class SelectedServiceIn(BaseModel):
    service_id: int
    quantity: int = Field(1, ge=1)
    details: dict | None = None


class ScheduledYogaIn(BaseModel):
    kind: Literal["scheduled"] = "scheduled"
    session_id: int


class DailyYogaIn(BaseModel):
    kind: Literal["daily"] = "daily"
    daily_session_id: int
    time_slot: str = Field(pattern=r"^([01]\d|2[0-3]):[0-5]\d$")


YogaSelection = Annotated[ScheduledYogaIn | DailyYogaIn, Field(discriminator="kind")]


class BookingCreate(BaseModel):
    booking_type: BookingType
    room_id: int | None = None
    check_in: date
    check_out: date
    guests: list[GuestIn]
    primary_guest: PrimaryGuestIn | None = None
    include_food: bool = True
    include_breakfast: bool = False
    transport: TransportIn | None = None
    services: list[SelectedServiceIn] = []
    yoga: YogaSelection | None = None
    coupon_code: str | None = None
    special_requests: str | None = Field(None, max_length=1000)

    @model_validator(mode="after")
    def _selection_matches_type(self):
        match self.booking_type:
            case BookingType.ROOM if self.room_id is None:
                raise ValueError("room_id is required for room bookings")
            case BookingType.YOGA if self.yoga is None:
                raise ValueError("yoga selection is required for yoga bookings")
            case BookingType.TRANSPORT if self.transport is None or not (self.transport.pickup or self.transport.drop):
                raise ValueError("transport bookings need a pickup or a drop")
            case BookingType.SERVICE if not self.services:
                raise ValueError("service bookings need at least one service")
        return self

    def yoga_ref(self) -> YogaRef | None:
        match self.yoga:
            case ScheduledYogaIn(session_id=session_id):
                return ScheduledSession(session_id)
            case DailyYogaIn(daily_session_id=daily_id, time_slot=slot):
                return DailyRecurringSession(daily_id, slot)
        return None


class PublicBookingCreate(BookingCreate):
    primary_guest: PrimaryGuestIn


class BookingServiceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    service_id: int
    quantity: int
    total_price_paise: int
    details: dict | None


class BookingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    booking_type: str
    user_id: int | None
    guest_email: str | None
    primary_guest: dict | None
    room_id: int | None
    yoga_session_id: int | None
    daily_yoga_session_id: int | None
    daily_time_slot: str | None
    check_in: date
    check_out: date
    guests: list[dict]
    total_guests: int
    adults: int
    children: int
    include_food: bool
    include_breakfast: bool
    transport: dict | None
    services: list[BookingServiceOut]
    room_price_paise: int
    food_price_paise: int
    breakfast_price_paise: int
    services_price_paise: int
    transport_price_paise: int
    yoga_price_paise: int
    total_amount_paise: int
    coupon_code: str | None
    coupon_discount_paise: int | None
    final_amount_paise: int | None
    status: str
    payment_status: str
    cancelled_at: datetime | None
    cancellation_reason: str | None
    special_requests: str | None
    created_at: datetime


class BookingPage(BaseModel):
    bookings: list[BookingOut]
    page: int
    limit: int
    total: int


class CancelRequest(BaseModel):
    reason: str | None = None


# --- Payments ---


class CreateOrderRequest(BaseModel):
    booking_id: int
    amount_paise: int


class OrderOut(BaseModel):
    order_id: str
    amount_paise: int
    currency: str
    client_secret: str | None
    booking_id: int


class VerifyPaymentRequest(BaseModel):
    order_id: str
    payment_id: str
    signature: str


class PaymentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    provider_order_id: str
    provider_payment_id: str | None
    amount_paise: int
    currency: str
    status: str
    payment_method: str | None
    failure_reason: str | None
    refund_amount_paise: int | None
    created_at: datetime


class PaymentStatusOut(BaseModel):
    booking_id: int
    booking_status: BookingStatus
    payment_status: str
    amount_payable_paise: int
    orders: list[PaymentOut]


class RefundRequest(BaseModel):
    amount_paise: int | None = Field(None, gt=0)
    reason: str | None = None


# --- Coupons ---


class CouponValidateRequest(BaseModel):
    code: str = Field(min_length=1)
    service_type: CouponServiceType
    order_value_paise: int = Field(gt=0)
    user_id: int | None = None
    phone_number: str | None = None


class CouponSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    code: str
    description: str
    discount_type: str
    discount_value: int


class CouponQuoteOut(BaseModel):
    coupon: CouponSummary
    discount_paise: int
    final_amount_paise: int


class CouponCreate(BaseModel):
    code: str = Field(min_length=3, max_length=40, pattern=r"^[A-Za-z0-9]+$")
    description: str = Field(min_length=1, max_length=200)
    discount_type: DiscountType
    discount_value: int = Field(ge=0)
    applicable_service_types: list[CouponServiceType] = Field(min_length=1)
    min_order_value_paise: int = Field(0, ge=0)
    max_discount_paise: int | None = Field(None, ge=0)
    valid_from: datetime
    valid_until: datetime
    usage_limit: int | None = Field(None, ge=1)
    is_active: bool = True


class CouponUpdate(BaseModel):
    code: str | None = Field(None, min_length=3, max_length=40, pattern=r"^[A-Za-z0-9]+$")
    description: str | None = Field(None, min_length=1, max_length=200)
    discount_type: DiscountType | None = None
    discount_value: int | None = Field(None, ge=0)
    applicable_service_types: list[CouponServiceType] | None = Field(None, min_length=1)
    min_order_value_paise: int | None = Field(None, ge=0)
    max_discount_paise: int | None = Field(None, ge=0)
    valid_from: datetime | None = None
    valid_until: datetime | None = None
    usage_limit: int | None = Field(None, ge=1)
    is_active: bool | None = None


class CouponOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    code: str
    description: str
    discount_type: str
    discount_value: int
    applicable_service_types: list[str]
    min_order_value_paise: int
    max_discount_paise: int | None
    valid_from: datetime
    valid_until: datetime
    usage_limit: int | None
    current_usage_count: int
    is_active: bool
    created_by: int | None
    updated_by: int | None
    created_at: datetime


class CouponPage(BaseModel):
    coupons: list[CouponOut]
    page: int
    limit: int
    total: int
    total_pages: int


class CouponUsageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    booking_id: int
    user_id: int | None
    phone_number: str | None
    discount_amount_paise: int
    order_value_paise: int
    service_type: str
    used_at: datetime


class CouponDetailOut(BaseModel):
    coupon: CouponOut
    total_usages: int
    recent_usages: list[CouponUsageOut]
