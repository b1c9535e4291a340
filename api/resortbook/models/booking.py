"""Booking model.

A booking is created `pending` with a full pricing snapshot before payment and
only becomes `confirmed` once the payment provider confirms the charge. The
booking owns its guest list, primary-guest contact and transport details
(stored as JSON sub-documents) and its selected services; rooms, yoga sessions
and services are referenced by id.
"""

import enum
from dataclasses import dataclass
from datetime import date, datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from resortbook.models.base import Base, JSONType, TimestampMixin


class BookingStatus(enum.StrEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CHECKED_IN = "checked_in"
    CHECKED_OUT = "checked_out"
    CANCELLED = "cancelled"


# Statuses that hold a room for their date range
ACTIVE_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED, BookingStatus.CHECKED_IN)


class PaymentStatus(enum.StrEnum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class BookingType(enum.StrEnum):
    ROOM = "room"
    YOGA = "yoga"
    TRANSPORT = "transport"
    SERVICE = "service"


@dataclass(frozen=True)
class ScheduledSession:
    """A seat in a capacity-limited yoga batch."""

    session_id: int


@dataclass(frozen=True)
class DailyRecurringSession:
    """A drop-in daily yoga class at a given time slot. No seat accounting."""

    daily_session_id: int
    time_slot: str


YogaRef = ScheduledSession | DailyRecurringSession


class Booking(TimestampMixin, Base):
    __tablename__ = "bookings"

    id: Mapped[int] = mapped_column(primary_key=True)
    booking_type: Mapped[BookingType] = mapped_column(
        Enum(BookingType, name="booking_type", values_callable=lambda e: [x.value for x in e]),
        nullable=False,
    )

    # Who: a registered user or an anonymous guest, never both
    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"))
    guest_email: Mapped[str | None] = mapped_column(String(254))
    primary_guest: Mapped[dict | None] = mapped_column(JSONType)

    # What
    room_id: Mapped[int | None] = mapped_column(ForeignKey("rooms.id"))
    yoga_session_id: Mapped[int | None] = mapped_column(ForeignKey("yoga_sessions.id"))
    daily_yoga_session_id: Mapped[int | None] = mapped_column(ForeignKey("daily_yoga_sessions.id"))
    daily_time_slot: Mapped[str | None] = mapped_column(String(5))
    include_food: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    include_breakfast: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    transport: Mapped[dict | None] = mapped_column(JSONType)

    # When
    check_in: Mapped[date] = mapped_column(Date, nullable=False)
    check_out: Mapped[date] = mapped_column(Date, nullable=False)

    # Guests
    guests: Mapped[list] = mapped_column(JSONType, nullable=False)
    total_guests: Mapped[int] = mapped_column(Integer, nullable=False)
    adults: Mapped[int] = mapped_column(Integer, nullable=False)
    children: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Pricing snapshot (paise)
    room_price_paise: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    food_price_paise: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    breakfast_price_paise: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    services_price_paise: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    transport_price_paise: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    yoga_price_paise: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_amount_paise: Mapped[int] = mapped_column(Integer, nullable=False)
    coupon_code: Mapped[str | None] = mapped_column(String(40))
    coupon_discount_paise: Mapped[int | None] = mapped_column(Integer)
    final_amount_paise: Mapped[int | None] = mapped_column(Integer)

    # Status
    status: Mapped[BookingStatus] = mapped_column(
        Enum(BookingStatus, name="booking_status", values_callable=lambda e: [x.value for x in e]),
        default=BookingStatus.PENDING,
        nullable=False,
    )
    payment_status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus, name="payment_status", values_callable=lambda e: [x.value for x in e]),
        default=PaymentStatus.PENDING,
        nullable=False,
    )
    payment_id: Mapped[str | None] = mapped_column(String(100))
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancellation_reason: Mapped[str | None] = mapped_column(Text)

    # Metadata
    special_requests: Mapped[str | None] = mapped_column(Text)

    services: Mapped[list["BookingService"]] = relationship(
        back_populates="booking", cascade="all, delete-orphan", lazy="selectin"
    )

    __table_args__ = (
        CheckConstraint("(user_id IS NULL) <> (guest_email IS NULL)", name="ck_bookings_owner"),
        CheckConstraint("check_out > check_in", name="ck_bookings_dates"),
        CheckConstraint("total_guests >= 1 AND adults >= 1", name="ck_bookings_guests"),
        CheckConstraint(
            "final_amount_paise IS NULL OR (final_amount_paise >= 0 AND final_amount_paise <= total_amount_paise)",
            name="ck_bookings_final_amount",
        ),
        CheckConstraint(
            "yoga_session_id IS NULL OR daily_yoga_session_id IS NULL",
            name="ck_bookings_single_yoga_ref",
        ),
        # Overlap checks: active bookings of one room by date
        Index("ix_bookings_room_dates", "room_id", "check_in", "check_out"),
        Index("ix_bookings_user", "user_id", "created_at"),
        Index("ix_bookings_status", "status"),
    )

    @property
    def amount_payable_paise(self) -> int:
        if self.final_amount_paise is not None:
            return self.final_amount_paise
        return self.total_amount_paise

    @property
    def yoga_ref(self) -> YogaRef | None:
        if self.yoga_session_id is not None:
            return ScheduledSession(self.yoga_session_id)
        if self.daily_yoga_session_id is not None:
            return DailyRecurringSession(self.daily_yoga_session_id, self.daily_time_slot or "")
        return None

    @yoga_ref.setter
    def yoga_ref(self, ref: YogaRef | None) -> None:
        self.yoga_session_id = None
        self.daily_yoga_session_id = None
        self.daily_time_slot = None
        match ref:
            case ScheduledSession(session_id=session_id):
                self.yoga_session_id = session_id
            case DailyRecurringSession(daily_session_id=daily_id, time_slot=slot):
                self.daily_yoga_session_id = daily_id
                self.daily_time_slot = slot

    @property
    def contact_phone(self) -> str | None:
        return (self.primary_guest or {}).get("phone")

    @property
    def contact_name(self) -> str:
        return (self.primary_guest or {}).get("name") or "Guest"

    def __repr__(self) -> str:
        return f"<Booking {self.id} {self.booking_type} {self.check_in}-{self.check_out} {self.status}>"


class BookingService(Base):
    """A service selected on a booking, priced at booking time."""

    __tablename__ = "booking_services"

    id: Mapped[int] = mapped_column(primary_key=True)
    booking_id: Mapped[int] = mapped_column(ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False)
    service_id: Mapped[int] = mapped_column(ForeignKey("services.id"), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    total_price_paise: Mapped[int] = mapped_column(Integer, nullable=False)
    details: Mapped[dict | None] = mapped_column(JSONType)

    booking: Mapped["Booking"] = relationship(back_populates="services")

    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_booking_services_quantity"),
        CheckConstraint("total_price_paise >= 0", name="ck_booking_services_price"),
    )
