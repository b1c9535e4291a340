"""Availability rules: dates, guests, room overlap, yoga seats, service slots, hold expiry."""

from datetime import date, timedelta
from types import SimpleNamespace
from unittest.mock import patch

import pytest

from resortbook.core.config import settings
from resortbook.models.base import utcnow
from resortbook.models.booking import BookingStatus, PaymentStatus
from resortbook.models.inventory import YogaSession
from resortbook.services.availability import (
    HOLD_EXPIRED_REASON,
    check_date_overlap,
    expire_stale_pending_bookings,
    get_bookable_room,
    overlap_conflict,
    validate_booking_dates,
    validate_daily_session,
    validate_guests,
    validate_service_slots,
    validate_yoga_seats,
)
from resortbook.services.errors import ConflictError, DateError, NotFoundError, ValidationError

TODAY = date(2026, 1, 5)


def _guest(name: str, age: int):
    return SimpleNamespace(name=name, age=age)


class TestBookingDates:
    def test_valid_range(self):
        validate_booking_dates(date(2026, 1, 10), date(2026, 1, 12), today=TODAY)

    def test_check_in_today_allowed(self):
        validate_booking_dates(TODAY, TODAY + timedelta(days=1), today=TODAY)

    def test_past_check_in(self):
        with pytest.raises(DateError) as exc:
            validate_booking_dates(date(2026, 1, 4), date(2026, 1, 6), today=TODAY)
        assert exc.value.rule == "past_check_in"

    def test_check_out_same_day(self):
        with pytest.raises(DateError) as exc:
            validate_booking_dates(date(2026, 1, 10), date(2026, 1, 10), today=TODAY)
        assert exc.value.rule == "check_out_before_check_in"

    def test_beyond_advance_window(self):
        far = TODAY + timedelta(days=settings.max_advance_booking_days + 1)
        with pytest.raises(DateError) as exc:
            validate_booking_dates(far, far + timedelta(days=1), today=TODAY)
        assert exc.value.rule == "advance_window"


class TestGuests:
    def test_valid(self):
        validate_guests([_guest("A", 30), _guest("B", 4)], room_capacity=2)

    def test_empty(self):
        with pytest.raises(ValidationError) as exc:
            validate_guests([])
        assert exc.value.rule == "no_guests"

    def test_blank_name(self):
        with pytest.raises(ValidationError) as exc:
            validate_guests([_guest("  ", 30)])
        assert exc.value.rule == "guest_name"

    def test_age_out_of_range(self):
        with pytest.raises(ValidationError) as exc:
            validate_guests([_guest("A", 30), _guest("B", 121)])
        assert exc.value.rule == "guest_age"

    def test_no_adult(self):
        with pytest.raises(ValidationError) as exc:
            validate_guests([_guest("A", 17), _guest("B", 12)])
        assert exc.value.rule == "no_adult"

    def test_over_capacity(self):
        with pytest.raises(ValidationError) as exc:
            validate_guests([_guest("A", 30), _guest("B", 30), _guest("C", 30)], room_capacity=2)
        assert exc.value.rule == "room_capacity"
        assert "Room capacity is 2 guests" in exc.value.message


class TestServiceSlots:
    def test_unlimited(self):
        validate_service_slots(SimpleNamespace(name="Kayak", is_active=True, available_slots=None), 50)

    def test_enough(self):
        validate_service_slots(SimpleNamespace(name="Kayak", is_active=True, available_slots=3), 3)

    def test_not_enough(self):
        with pytest.raises(ConflictError) as exc:
            validate_service_slots(SimpleNamespace(name="Kayak", is_active=True, available_slots=2), 3)
        assert exc.value.rule == "service_capacity"

    def test_inactive(self):
        with pytest.raises(ConflictError) as exc:
            validate_service_slots(SimpleNamespace(name="Kayak", is_active=False, available_slots=None), 1)
        assert exc.value.rule == "service_inactive"


# ---------------------------------------------------------------------------
# Database-backed rules
# ---------------------------------------------------------------------------


async def test_overlap_detects_intersecting_ranges(db, inventory, make_booking):
    room = inventory["room"]
    start = inventory["start"]
    existing = await make_booking(db, room_id=room.id, check_in=start, check_out=start + timedelta(days=5))

    conflicts = await check_date_overlap(db, room.id, start + timedelta(days=2), start + timedelta(days=8))
    assert [b.id for b in conflicts] == [existing.id]

    error = overlap_conflict(conflicts)
    assert error.rule == "room_unavailable"
    assert error.conflicts[0]["booking_id"] == existing.id
    assert error.to_detail()["conflicts"][0]["check_in"] == start.isoformat()


async def test_overlap_half_open_ranges_touching(db, inventory, make_booking):
    """Check-out day of one stay is free for the next check-in."""
    room = inventory["room"]
    start = inventory["start"]
    await make_booking(db, room_id=room.id, check_in=start, check_out=start + timedelta(days=3))

    assert await check_date_overlap(db, room.id, start + timedelta(days=3), start + timedelta(days=5)) == []
    assert await check_date_overlap(db, room.id, start - timedelta(days=2), start) == []


async def test_overlap_ignores_cancelled_and_checked_out(db, inventory, make_booking):
    room = inventory["room"]
    start = inventory["start"]
    await make_booking(db, room_id=room.id, check_in=start, status=BookingStatus.CANCELLED)
    await make_booking(db, room_id=room.id, check_in=start, status=BookingStatus.CHECKED_OUT)

    assert await check_date_overlap(db, room.id, start, start + timedelta(days=2)) == []


async def test_overlap_pending_blocks_room(db, inventory, make_booking):
    room = inventory["room"]
    start = inventory["start"]
    await make_booking(db, room_id=room.id, check_in=start)

    assert len(await check_date_overlap(db, room.id, start, start + timedelta(days=1))) == 1


async def test_overlap_excludes_booking(db, inventory, make_booking):
    room = inventory["room"]
    start = inventory["start"]
    existing = await make_booking(db, room_id=room.id, check_in=start)

    assert await check_date_overlap(db, room.id, start, start + timedelta(days=2), exclude_booking_id=existing.id) == []


async def test_bookable_room_out_of_service(db, inventory):
    room = inventory["small_room"]
    loaded = await get_bookable_room(db, room.id)
    loaded.is_available = False
    await db.commit()

    with pytest.raises(ConflictError) as exc:
        await get_bookable_room(db, room.id)
    assert exc.value.rule == "room_out_of_service"


async def test_bookable_room_missing(db, inventory):
    with pytest.raises(NotFoundError):
        await get_bookable_room(db, 9999)


async def test_yoga_seats_available(db, inventory):
    assert await validate_yoga_seats(db, inventory["batch"].id, 3) == 15


async def test_yoga_seats_one_left(db, inventory):
    """14 of 15 seats taken: a booking for 2 is refused and nothing changes."""
    batch = await db.get(YogaSession, inventory["batch"].id)
    batch.booked_seats = 14
    await db.commit()

    with pytest.raises(ConflictError) as exc:
        await validate_yoga_seats(db, batch.id, 2)
    assert exc.value.rule == "yoga_capacity"
    assert exc.value.message == "Only 1 seat available, required 2."

    await db.refresh(batch)
    assert batch.booked_seats == 14


async def test_yoga_session_already_started(db, inventory):
    with pytest.raises(ConflictError) as exc:
        await validate_yoga_seats(db, inventory["batch"].id, 1, today=inventory["start"] + timedelta(days=1))
    assert exc.value.rule == "yoga_session_started"


async def test_yoga_session_inactive(db, inventory):
    batch = await db.get(YogaSession, inventory["batch"].id)
    batch.is_active = False
    await db.commit()

    with pytest.raises(ConflictError) as exc:
        await validate_yoga_seats(db, batch.id, 1)
    assert exc.value.rule == "yoga_session_inactive"


async def test_daily_session_slot(db, inventory):
    daily = await validate_daily_session(db, inventory["daily"].id, "07:00")
    assert daily.name == "Morning Hatha"


async def test_daily_session_inactive_slot(db, inventory):
    with pytest.raises(ValidationError) as exc:
        await validate_daily_session(db, inventory["daily"].id, "18:00")
    assert exc.value.rule == "time_slot"


async def test_expire_disabled_by_default(db, inventory, make_booking):
    booking = await make_booking(
        db, room_id=inventory["room"].id, created_at=utcnow() - timedelta(days=3)
    )
    assert await expire_stale_pending_bookings(db) == 0
    await db.refresh(booking)
    assert booking.status == BookingStatus.PENDING


async def test_expire_stale_pending(db, inventory, make_booking):
    room_id = inventory["room"].id
    stale = await make_booking(db, room_id=room_id, created_at=utcnow() - timedelta(hours=2))
    fresh = await make_booking(
        db, room_id=room_id, check_in=inventory["start"] + timedelta(days=5), created_at=utcnow()
    )
    paid = await make_booking(
        db,
        room_id=room_id,
        check_in=inventory["start"] + timedelta(days=10),
        status=BookingStatus.PENDING,
        payment_status=PaymentStatus.PAID,
        created_at=utcnow() - timedelta(hours=2),
    )

    with patch.object(settings, "pending_hold_minutes", 30):
        assert await expire_stale_pending_bookings(db, room_id=room_id) == 1
    await db.commit()

    for booking in (stale, fresh, paid):
        await db.refresh(booking)
    assert stale.status == BookingStatus.CANCELLED
    assert stale.cancellation_reason == HOLD_EXPIRED_REASON
    assert fresh.status == BookingStatus.PENDING
    assert paid.status == BookingStatus.PENDING
