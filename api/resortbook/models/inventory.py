"""Bookable inventory: rooms, yoga sessions and add-on services.

Room availability over time is never stored. It is derived from the absence
of overlapping active bookings; `is_available` is only the static
in-service/out-of-service flag.
"""

import enum
from datetime import date

from sqlalchemy import Boolean, CheckConstraint, Date, Enum, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from resortbook.models.base import Base, JSONType, TimestampMixin


class RoomType(enum.StrEnum):
    AC = "AC"
    NON_AC = "Non-AC"


class YogaSessionType(enum.StrEnum):
    TTC_200 = "200hr"
    TTC_300 = "300hr"


class DailySessionType(enum.StrEnum):
    REGULAR = "regular"
    THERAPY = "therapy"


class ServiceCategory(enum.StrEnum):
    ADDON = "addon"
    TRANSPORT = "transport"
    FOOD = "food"
    YOGA = "yoga"
    ADVENTURE = "adventure"


class PriceUnit(enum.StrEnum):
    PER_PERSON = "per_person"
    PER_DAY = "per_day"
    PER_SESSION = "per_session"
    FLAT_RATE = "flat_rate"


class Room(TimestampMixin, Base):
    __tablename__ = "rooms"

    id: Mapped[int] = mapped_column(primary_key=True)
    room_number: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    room_type: Mapped[RoomType] = mapped_column(
        Enum(RoomType, name="room_type", values_callable=lambda e: [x.value for x in e]),
        nullable=False,
    )
    price_per_night_paise: Mapped[int] = mapped_column(Integer, nullable=False)
    capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    amenities: Mapped[list] = mapped_column(JSONType, default=list)
    description: Mapped[str | None] = mapped_column(Text)
    is_available: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        CheckConstraint("capacity BETWEEN 1 AND 10", name="ck_rooms_capacity"),
        CheckConstraint("price_per_night_paise >= 0", name="ck_rooms_price"),
        Index("ix_rooms_type_available", "room_type", "is_available"),
    )

    def __repr__(self) -> str:
        return f"<Room {self.room_number} {self.room_type}>"


class YogaSession(TimestampMixin, Base):
    """A scheduled training batch with a fixed seat capacity."""

    __tablename__ = "yoga_sessions"

    id: Mapped[int] = mapped_column(primary_key=True)
    type: Mapped[YogaSessionType] = mapped_column(
        Enum(YogaSessionType, name="yoga_session_type", values_callable=lambda e: [x.value for x in e]),
        nullable=False,
    )
    batch_name: Mapped[str] = mapped_column(String(100), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    capacity: Mapped[int] = mapped_column(Integer, default=15, nullable=False)
    booked_seats: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    price_paise: Mapped[int] = mapped_column(Integer, nullable=False)
    instructor: Mapped[str | None] = mapped_column(String(100))
    schedule: Mapped[dict | None] = mapped_column(JSONType, default=dict)  # {"days": [...], "time": "HH:MM"}
    description: Mapped[str | None] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        # Seats can never be oversold or released below zero
        CheckConstraint("booked_seats >= 0 AND booked_seats <= capacity", name="ck_yoga_sessions_seats"),
        CheckConstraint("capacity BETWEEN 1 AND 50", name="ck_yoga_sessions_capacity"),
        CheckConstraint("end_date > start_date", name="ck_yoga_sessions_dates"),
        Index("ix_yoga_sessions_type_active_start", "type", "is_active", "start_date"),
    )

    @property
    def available_seats(self) -> int:
        return self.capacity - self.booked_seats

    def __repr__(self) -> str:
        return f"<YogaSession {self.batch_name} {self.booked_seats}/{self.capacity}>"


class DailyYogaSession(TimestampMixin, Base):
    """A drop-in class that recurs every day at fixed time slots. No seat limit."""

    __tablename__ = "daily_yoga_sessions"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[DailySessionType] = mapped_column(
        Enum(DailySessionType, name="daily_session_type", values_callable=lambda e: [x.value for x in e]),
        nullable=False,
    )
    price_paise: Mapped[int] = mapped_column(Integer, nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, default=90, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    time_slots: Mapped[list] = mapped_column(JSONType, default=list)  # [{"time": "HH:MM", "is_active": bool}]
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def has_active_slot(self, time_slot: str) -> bool:
        return any(s.get("time") == time_slot and s.get("is_active", True) for s in self.time_slots or [])

    def __repr__(self) -> str:
        return f"<DailyYogaSession {self.name}>"


class Service(TimestampMixin, Base):
    __tablename__ = "services"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    category: Mapped[ServiceCategory] = mapped_column(
        Enum(ServiceCategory, name="service_category", values_callable=lambda e: [x.value for x in e]),
        nullable=False,
    )
    subcategory: Mapped[str | None] = mapped_column(String(50))
    price_paise: Mapped[int] = mapped_column(Integer, nullable=False)
    price_unit: Mapped[PriceUnit] = mapped_column(
        Enum(PriceUnit, name="price_unit", values_callable=lambda e: [x.value for x in e]),
        nullable=False,
    )
    description: Mapped[str | None] = mapped_column(Text)
    min_age: Mapped[int | None] = mapped_column(Integer)
    max_age: Mapped[int | None] = mapped_column(Integer)
    available_slots: Mapped[int | None] = mapped_column(Integer)  # None = unlimited
    duration_minutes: Mapped[int | None] = mapped_column(Integer)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        CheckConstraint("available_slots IS NULL OR available_slots >= 0", name="ck_services_slots"),
        Index("ix_services_category_active", "category", "is_active"),
    )

    def __repr__(self) -> str:
        return f"<Service {self.name} {self.price_unit}>"
