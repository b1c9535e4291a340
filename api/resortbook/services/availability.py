"""Availability rules.

Date sanity, room overlap, guest and capacity checks, kept apart from the
workflow so each rule can be tested on its own. Every rule raises a
BookingError subclass on failure and returns quietly (or with a count the
client can display) when it passes.

Room availability over time is derived, never stored: a room is free for a
range when no booking in an active status overlaps it.
"""

import logging
from collections.abc import Sequence
from datetime import date, datetime, timedelta
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from resortbook.core.config import settings
from resortbook.models.base import utcnow
from resortbook.models.booking import ACTIVE_STATUSES, Booking, BookingStatus, PaymentStatus
from resortbook.models.inventory import DailyYogaSession, Room, Service, YogaSession
from resortbook.services import payment_provider
from resortbook.services.errors import ConflictError, DateError, NotFoundError, ValidationError
from resortbook.services.pricing import ADULT_AGE

logger = logging.getLogger(__name__)

MAX_GUEST_AGE = 120
HOLD_EXPIRED_REASON = "hold expired"


def validate_booking_dates(check_in: date, check_out: date, today: date | None = None) -> None:
    """Check-in not in the past, check-out after check-in, within the advance window."""
    today = today or utcnow().date()

    if check_in < today:
        raise DateError("past_check_in", "Check-in date cannot be in the past.")

    if check_out <= check_in:
        raise DateError("check_out_before_check_in", "Check-out date must be after check-in date.")

    max_date = today + timedelta(days=settings.max_advance_booking_days)
    if check_in > max_date:
        raise DateError(
            "advance_window",
            f"Bookings can only be made up to {settings.max_advance_booking_days} days in advance.",
        )


async def check_date_overlap(
    db: AsyncSession,
    room_id: int,
    check_in: date,
    check_out: date,
    exclude_booking_id: int | None = None,
) -> list[Booking]:
    """Active bookings of the room whose [check_in, check_out) intersects the requested range."""
    query = select(Booking).where(
        Booking.room_id == room_id,
        Booking.status.in_(ACTIVE_STATUSES),
        Booking.check_in < check_out,
        Booking.check_out > check_in,
    )
    if exclude_booking_id is not None:
        query = query.where(Booking.id != exclude_booking_id)

    result = await db.execute(query.order_by(Booking.check_in))
    return list(result.scalars().all())


def overlap_conflict(conflicts: Sequence[Booking]) -> ConflictError:
    return ConflictError(
        "room_unavailable",
        "Room is not available for the selected dates.",
        conflicts=[
            {
                "booking_id": b.id,
                "check_in": b.check_in.isoformat(),
                "check_out": b.check_out.isoformat(),
                "status": str(b.status),
            }
            for b in conflicts
        ],
    )


def validate_guests(guests: Sequence[Any], room_capacity: int | None = None) -> None:
    """At least one guest, at least one adult, sane names and ages, and within room capacity."""
    if not guests:
        raise ValidationError("no_guests", "At least one guest is required.")

    for guest in guests:
        name = (guest.name or "").strip()
        if not name:
            raise ValidationError("guest_name", "Each guest must have a name.")
        if guest.age is None or not 0 <= guest.age <= MAX_GUEST_AGE:
            raise ValidationError("guest_age", f"Guest {name} has an invalid age.")

    if not any(g.age >= ADULT_AGE for g in guests):
        raise ValidationError("no_adult", "At least one adult guest (18 or over) is required.")

    if room_capacity is not None and len(guests) > room_capacity:
        raise ValidationError(
            "room_capacity",
            f"Room capacity is {room_capacity} guests. You have {len(guests)} guests.",
        )


async def get_bookable_room(db: AsyncSession, room_id: int, lock: bool = True) -> Room:
    """Load a room that exists and is in service.

    With lock=True the row is taken FOR UPDATE, so two bookings for the same room
    run their overlap check and insert one after the other.
    """
    query = select(Room).where(Room.id == room_id)
    if lock:
        query = query.with_for_update()
    room = (await db.execute(query)).scalar_one_or_none()
    if room is None:
        raise NotFoundError("Room")
    if not room.is_available:
        raise ConflictError("room_out_of_service", f"Room {room.room_number} is not available for booking.")
    return room


async def validate_yoga_seats(
    db: AsyncSession,
    session_id: int,
    seats_required: int,
    today: date | None = None,
    lock: bool = False,
) -> int:
    """Check a scheduled yoga batch has room for `seats_required`. Returns the seats available."""
    today = today or utcnow().date()

    query = select(YogaSession).where(YogaSession.id == session_id)
    if lock:
        query = query.with_for_update()
    session = (await db.execute(query)).scalar_one_or_none()
    if session is None:
        raise NotFoundError("Yoga session")

    if not session.is_active:
        raise ConflictError("yoga_session_inactive", "Yoga session is not active.")

    if session.start_date < today:
        raise ConflictError("yoga_session_started", "Yoga session has already started.")

    available = session.available_seats
    if available < seats_required:
        raise ConflictError(
            "yoga_capacity",
            f"Only {available} seat{'s' if available != 1 else ''} available, required {seats_required}.",
        )

    return available


async def validate_daily_session(db: AsyncSession, daily_session_id: int, time_slot: str) -> DailyYogaSession:
    session = await db.get(DailyYogaSession, daily_session_id)
    if session is None:
        raise NotFoundError("Daily yoga session")
    if not session.is_active:
        raise ConflictError("daily_session_inactive", f"{session.name} is not currently running.")
    if not session.has_active_slot(time_slot):
        raise ValidationError("time_slot", f"Time slot {time_slot} is not available for {session.name}.")
    return session


def validate_service_slots(service: Service, quantity: int) -> None:
    """A service with a slot count must have at least `quantity` slots left."""
    if not service.is_active:
        raise ConflictError("service_inactive", f"{service.name} is not currently offered.")
    if service.available_slots is not None and service.available_slots < quantity:
        raise ConflictError(
            "service_capacity",
            f"Only {service.available_slots} slots available for {service.name}, required {quantity}.",
        )


async def expire_stale_pending_bookings(
    db: AsyncSession,
    room_id: int | None = None,
    now: datetime | None = None,
) -> int:
    """Cancel unpaid pending bookings older than the hold window.

    Their open provider orders are cancelled too, so an expired hold can no
    longer be paid. Disabled when pending_hold_minutes is 0. Returns the
    number of bookings cancelled. Runs inside the caller's transaction.
    """
    if settings.pending_hold_minutes <= 0:
        return 0

    now = now or utcnow()
    cutoff = now - timedelta(minutes=settings.pending_hold_minutes)

    query = (
        select(Booking)
        .where(
            Booking.status == BookingStatus.PENDING,
            Booking.payment_status != PaymentStatus.PAID,
            Booking.created_at < cutoff,
        )
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    if room_id is not None:
        query = query.where(Booking.room_id == room_id)

    stale = (await db.execute(query)).scalars().all()
    for booking in stale:
        booking.status = BookingStatus.CANCELLED
        booking.cancelled_at = now
        booking.cancellation_reason = HOLD_EXPIRED_REASON
        await payment_provider.cancel_open_orders(db, booking.id, HOLD_EXPIRED_REASON)

    if stale:
        await db.flush()
        logger.info("Expired %d stale pending booking(s) (room=%s)", len(stale), room_id)
    return len(stale)
