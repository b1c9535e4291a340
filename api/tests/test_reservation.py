"""Reservation workflow: creation checks, pricing snapshot, payment confirmation and the state machine."""

from datetime import timedelta
from unittest.mock import patch

import pytest
from sqlalchemy import select

from resortbook.core.config import settings
from resortbook.models.base import utcnow
from resortbook.models.booking import (
    BookingStatus,
    BookingType,
    DailyRecurringSession,
    PaymentStatus,
    ScheduledSession,
)
from resortbook.models.coupon import Coupon, CouponServiceType, CouponUsage, DiscountType
from resortbook.models.inventory import Service, YogaSession
from resortbook.models.payment import Payment, PaymentOrderStatus
from resortbook.schemas import BookingCreate
from resortbook.services.availability import HOLD_EXPIRED_REASON
from resortbook.services.errors import AgeRestrictionError, ConflictError, IllegalTransitionError, ValidationError
from resortbook.services.reservation import (
    BookingFilter,
    can_transition,
    cancel_booking,
    check_in,
    check_out,
    confirm_payment,
    create_booking,
    list_bookings,
    record_payment_failure,
)

CONTACT = {"name": "Asha Guest", "email": "asha@example.com", "phone": "9800000001"}


def _request(inventory, **overrides) -> BookingCreate:
    start = inventory["start"]
    body = {
        "booking_type": "room",
        "room_id": inventory["room"].id,
        "check_in": start.isoformat(),
        "check_out": (start + timedelta(days=3)).isoformat(),
        "guests": [
            {"name": "Ravi", "age": 40},
            {"name": "Meera", "age": 38},
            {"name": "Anu", "age": 7},
            {"name": "Kiki", "age": 3},
        ],
        "primary_guest": CONTACT,
    }
    body.update(overrides)
    return BookingCreate.model_validate(body)


def _yoga_request(inventory, guests: int, **overrides) -> BookingCreate:
    fields = {
        "booking_type": "yoga",
        "room_id": None,
        "guests": [{"name": f"Yogi {i}", "age": 30 + i} for i in range(guests)],
        "yoga": {"kind": "scheduled", "session_id": inventory["batch"].id},
    }
    fields.update(overrides)
    return _request(inventory, **fields)


async def _pay(db, booking, order_id: str = "pi_test", charge_id: str = "ch_test"):
    payment = Payment(
        booking_id=booking.id,
        provider_order_id=order_id,
        amount_paise=booking.amount_payable_paise,
        currency="inr",
        status=PaymentOrderStatus.CREATED,
    )
    db.add(payment)
    await db.flush()
    await confirm_payment(db, booking, payment, charge_id, method="card")
    await db.commit()
    return payment


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


async def test_room_booking_priced_and_pending(db, inventory):
    booking = await create_booking(db, _request(inventory))
    await db.commit()

    assert booking.status == BookingStatus.PENDING
    assert booking.payment_status == PaymentStatus.PENDING
    assert booking.guest_email == "asha@example.com"
    assert booking.user_id is None
    assert (booking.total_guests, booking.adults, booking.children) == (4, 2, 2)
    assert booking.room_price_paise == 600000
    assert booking.food_price_paise == 15000 * 3 * 3
    assert booking.total_amount_paise == 735000
    assert booking.final_amount_paise is None
    assert booking.amount_payable_paise == 735000


async def test_user_booking_uses_profile_contact(db, inventory, users):
    booking = await create_booking(db, _request(inventory, primary_guest=None), user=users["user"])
    assert booking.user_id == users["user"].id
    assert booking.guest_email is None
    assert booking.primary_guest["phone"] == "9800000001"


async def test_anonymous_needs_contact(db, inventory):
    with pytest.raises(ValidationError) as exc:
        await create_booking(db, _request(inventory, primary_guest=None))
    assert exc.value.rule == "primary_guest"


async def test_overlapping_request_rejected(db, inventory):
    """Second request for [day 2, day 8) loses to the booked [day 0, day 5)."""
    start = inventory["start"]
    first = await create_booking(
        db, _request(inventory, check_out=(start + timedelta(days=5)).isoformat())
    )
    await db.commit()

    with pytest.raises(ConflictError) as exc:
        await create_booking(
            db,
            _request(
                inventory,
                check_in=(start + timedelta(days=2)).isoformat(),
                check_out=(start + timedelta(days=8)).isoformat(),
            ),
        )
    assert exc.value.rule == "room_unavailable"
    assert exc.value.conflicts[0]["booking_id"] == first.id


async def test_back_to_back_stays_allowed(db, inventory):
    start = inventory["start"]
    await create_booking(db, _request(inventory))
    await db.commit()
    second = await create_booking(
        db,
        _request(
            inventory,
            check_in=(start + timedelta(days=3)).isoformat(),
            check_out=(start + timedelta(days=4)).isoformat(),
        ),
    )
    assert second.id is not None


async def test_expired_hold_frees_room(db, inventory, make_booking):
    stale = await make_booking(
        db,
        room_id=inventory["room"].id,
        check_in=inventory["start"],
        created_at=utcnow() - timedelta(hours=3),
    )
    order = Payment(booking_id=stale.id, provider_order_id="pi_stale", amount_paise=1000, currency="inr")
    db.add(order)
    await db.commit()

    with (
        patch.object(settings, "pending_hold_minutes", 60),
        patch("resortbook.services.payment_provider.cancel_order") as mock_cancel,
    ):
        booking = await create_booking(db, _request(inventory))
    await db.commit()

    await db.refresh(stale)
    await db.refresh(order)
    assert stale.status == BookingStatus.CANCELLED
    assert booking.status == BookingStatus.PENDING
    # The expired hold can no longer be paid
    mock_cancel.assert_called_once_with("pi_stale")
    assert order.status == PaymentOrderStatus.FAILED
    assert order.failure_reason == HOLD_EXPIRED_REASON


async def test_room_capacity(db, inventory):
    with pytest.raises(ValidationError) as exc:
        await create_booking(db, _request(inventory, room_id=inventory["small_room"].id))
    assert exc.value.rule == "room_capacity"


async def test_service_age_restriction(db, inventory):
    with pytest.raises(AgeRestrictionError) as exc:
        await create_booking(db, _request(inventory, services=[{"service_id": inventory["scuba"].id}]))
    assert exc.value.message == "Scuba Diving requires minimum age of 12. Guest Anu is 7 years old."


async def test_services_priced(db, inventory):
    booking = await create_booking(
        db,
        _request(inventory, services=[{"service_id": inventory["scooter"].id, "quantity": 2}]),
    )
    assert booking.services_price_paise == 50000 * 2 * 3
    assert booking.services[0].total_price_paise == 300000


async def test_breakfast_rate_from_service(db, inventory):
    booking = await create_booking(db, _request(inventory, include_food=False, include_breakfast=True))
    assert booking.food_price_paise == 0
    assert booking.breakfast_price_paise == 25000 * 3 * 3


async def test_transport_only_has_no_meals(db, inventory):
    booking = await create_booking(
        db,
        _request(
            inventory,
            booking_type="transport",
            room_id=None,
            guests=[{"name": "Ravi", "age": 40}],
            transport={"pickup": True, "drop": True, "flight_number": "6E 123"},
        ),
    )
    assert booking.booking_type == BookingType.TRANSPORT
    assert booking.food_price_paise == 0
    assert booking.include_food is False
    assert booking.transport_price_paise == 300000
    assert booking.total_amount_paise == 300000


async def test_scheduled_yoga_priced_per_guest(db, inventory):
    booking = await create_booking(db, _yoga_request(inventory, 2))
    assert booking.yoga_ref == ScheduledSession(inventory["batch"].id)
    assert booking.yoga_price_paise == 1000000 * 2


async def test_daily_yoga_priced_per_night(db, inventory):
    selection = {"kind": "daily", "daily_session_id": inventory["daily"].id, "time_slot": "07:00"}
    booking = await create_booking(db, _yoga_request(inventory, 2, yoga=selection))
    assert booking.yoga_ref == DailyRecurringSession(inventory["daily"].id, "07:00")
    assert booking.yoga_price_paise == 60000 * 2 * 3


async def test_yoga_seat_shortage(db, inventory):
    batch = await db.get(YogaSession, inventory["batch"].id)
    batch.booked_seats = 14
    await db.commit()

    with pytest.raises(ConflictError) as exc:
        await create_booking(db, _yoga_request(inventory, 2))
    assert exc.value.message == "Only 1 seat available, required 2."

    await db.refresh(batch)
    assert batch.booked_seats == 14


async def test_coupon_applied_and_counted(db, inventory):
    now = utcnow()
    coupon = Coupon(
        code="STAY10",
        description="10% off",
        discount_type=DiscountType.PERCENTAGE,
        discount_value=10,
        max_discount_paise=50000,
        valid_from=now - timedelta(days=1),
        valid_until=now + timedelta(days=30),
    )
    coupon.set_service_types([CouponServiceType.AIRPORT])
    db.add(coupon)
    await db.commit()

    booking = await create_booking(db, _request(inventory, coupon_code="stay10"))
    await db.commit()

    assert booking.coupon_code == "STAY10"
    assert booking.coupon_discount_paise == 50000
    assert booking.final_amount_paise == 735000 - 50000
    await db.refresh(coupon)
    assert coupon.current_usage_count == 1

    # The usage record only appears once the booking is paid
    await _pay(db, booking)
    usage = (await db.execute(select(CouponUsage).where(CouponUsage.coupon_id == coupon.id))).scalar_one()
    assert usage.booking_id == booking.id
    assert usage.phone_number == "9800000001"


async def test_coupon_below_minimum_rejected(db, inventory):
    now = utcnow()
    coupon = Coupon(
        code="BIGSPEND",
        description="Flat off big stays",
        discount_type=DiscountType.FIXED,
        discount_value=100000,
        min_order_value_paise=5000000,
        valid_from=now - timedelta(days=1),
        valid_until=now + timedelta(days=30),
    )
    coupon.set_service_types([CouponServiceType.AIRPORT])
    db.add(coupon)
    await db.commit()

    with pytest.raises(ValidationError) as exc:
        await create_booking(db, _request(inventory, coupon_code="BIGSPEND"))
    assert exc.value.rule == "coupon_min_order"


# ---------------------------------------------------------------------------
# Payment and capacity
# ---------------------------------------------------------------------------


async def test_confirmation_takes_capacity(db, inventory):
    booking = await create_booking(
        db,
        _yoga_request(inventory, 2, services=[{"service_id": inventory["scuba"].id, "quantity": 1}]),
    )
    await db.commit()

    await _pay(db, booking)

    assert booking.status == BookingStatus.CONFIRMED
    assert booking.payment_status == PaymentStatus.PAID
    assert booking.payment_id == "ch_test"
    batch = await db.get(YogaSession, inventory["batch"].id)
    await db.refresh(batch)
    assert batch.booked_seats == 2
    scuba = await db.get(Service, inventory["scuba"].id)
    await db.refresh(scuba)
    assert scuba.available_slots == 4


async def test_confirmation_is_idempotent(db, inventory):
    booking = await create_booking(db, _yoga_request(inventory, 2))
    await db.commit()
    payment = await _pay(db, booking)

    await confirm_payment(db, booking, payment, "ch_test")
    await db.commit()

    batch = await db.get(YogaSession, inventory["batch"].id)
    await db.refresh(batch)
    assert batch.booked_seats == 2


async def test_payment_failure_keeps_booking_pending(db, inventory):
    booking = await create_booking(db, _yoga_request(inventory, 2))
    payment = Payment(
        booking_id=booking.id, provider_order_id="pi_fail", amount_paise=1, currency="inr"
    )
    db.add(payment)
    await db.flush()

    await record_payment_failure(db, booking, payment, "Card declined")
    await db.commit()

    assert booking.status == BookingStatus.PENDING
    assert booking.payment_status == PaymentStatus.FAILED
    assert payment.status == PaymentOrderStatus.FAILED
    batch = await db.get(YogaSession, inventory["batch"].id)
    assert batch.booked_seats == 0


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------


class TestTransitions:
    def test_allowed(self):
        assert can_transition(BookingStatus.PENDING, BookingStatus.CONFIRMED)
        assert can_transition(BookingStatus.PENDING, BookingStatus.CANCELLED)
        assert can_transition(BookingStatus.CONFIRMED, BookingStatus.CHECKED_IN)
        assert can_transition(BookingStatus.CONFIRMED, BookingStatus.CANCELLED)
        assert can_transition(BookingStatus.CHECKED_IN, BookingStatus.CHECKED_OUT)

    def test_forbidden(self):
        assert not can_transition(BookingStatus.PENDING, BookingStatus.CHECKED_IN)
        assert not can_transition(BookingStatus.CHECKED_IN, BookingStatus.CANCELLED)
        assert not can_transition(BookingStatus.CHECKED_OUT, BookingStatus.CANCELLED)
        assert not can_transition(BookingStatus.CANCELLED, BookingStatus.CONFIRMED)


async def test_cancel_paid_yoga_releases_seats(db, inventory):
    """Cancelling a paid 3-guest booking takes a 10-seat batch back to 7."""
    booking = await create_booking(db, _yoga_request(inventory, 3))
    await db.commit()
    await _pay(db, booking)

    batch = await db.get(YogaSession, inventory["batch"].id)
    batch.booked_seats = 10
    await db.commit()

    await cancel_booking(db, booking, reason="Change of plans")
    await db.commit()

    await db.refresh(batch)
    assert batch.booked_seats == 7
    assert booking.status == BookingStatus.CANCELLED
    assert booking.cancellation_reason == "Change of plans"
    assert booking.cancelled_at is not None


async def test_seats_stay_within_capacity_across_confirm_and_cancel(db, inventory):
    """Confirm, cancel, confirm again on one 15-seat batch; seats never leave [0, 15]."""
    batch = await db.get(YogaSession, inventory["batch"].id)

    async def seats() -> int:
        await db.refresh(batch)
        assert 0 <= batch.booked_seats <= batch.capacity
        return batch.booked_seats

    first = await create_booking(db, _yoga_request(inventory, 6))
    await db.commit()
    await _pay(db, first, order_id="pi_first", charge_id="ch_first")
    assert await seats() == 6

    second = await create_booking(db, _yoga_request(inventory, 5))
    await db.commit()
    await _pay(db, second, order_id="pi_second", charge_id="ch_second")
    assert await seats() == 11

    await cancel_booking(db, first)
    await db.commit()
    assert await seats() == 5

    third = await create_booking(db, _yoga_request(inventory, 8))
    await db.commit()
    await _pay(db, third, order_id="pi_third", charge_id="ch_third")
    assert await seats() == 13

    # Cancelling an unpaid booking gives nothing back
    unpaid = await create_booking(db, _yoga_request(inventory, 2))
    await cancel_booking(db, unpaid)
    await db.commit()
    assert await seats() == 13


async def test_paying_for_more_seats_than_left_caps_at_capacity(db, inventory):
    """Two 10-guest holds both pass creation; paying for both never oversells the batch."""
    first = await create_booking(db, _yoga_request(inventory, 10))
    second = await create_booking(db, _yoga_request(inventory, 10))
    await db.commit()

    await _pay(db, first, order_id="pi_first", charge_id="ch_first")
    await _pay(db, second, order_id="pi_second", charge_id="ch_second")

    batch = await db.get(YogaSession, inventory["batch"].id)
    await db.refresh(batch)
    assert batch.booked_seats == batch.capacity == 15
    assert second.status == BookingStatus.CONFIRMED


@patch("resortbook.services.payment_provider.cancel_order")
async def test_cancel_unpaid_closes_open_orders(mock_cancel, db, inventory):
    booking = await create_booking(db, _request(inventory))
    payment = Payment(booking_id=booking.id, provider_order_id="pi_open", amount_paise=1000, currency="inr")
    db.add(payment)
    await db.commit()

    await cancel_booking(db, booking)
    await db.commit()

    mock_cancel.assert_called_once_with("pi_open")
    assert payment.status == PaymentOrderStatus.FAILED


async def test_check_in_and_out(db, inventory):
    booking = await create_booking(db, _request(inventory))
    await db.commit()

    with pytest.raises(IllegalTransitionError):
        await check_in(db, booking)

    await _pay(db, booking)
    await check_in(db, booking)
    assert booking.status == BookingStatus.CHECKED_IN

    with pytest.raises(IllegalTransitionError) as exc:
        await cancel_booking(db, booking)
    assert exc.value.rule == "cannot_cancel"

    await check_out(db, booking)
    await db.commit()
    assert booking.status == BookingStatus.CHECKED_OUT


async def test_cancelled_booking_cannot_be_cancelled_again(db, inventory):
    booking = await create_booking(db, _request(inventory))
    await cancel_booking(db, booking)

    with pytest.raises(IllegalTransitionError):
        await cancel_booking(db, booking)


async def test_list_bookings_filters(db, inventory, users):
    user = users["user"]
    await create_booking(db, _request(inventory, primary_guest=None), user=user)
    await create_booking(db, _yoga_request(inventory, 1, primary_guest=None), user=user)
    await create_booking(db, _yoga_request(inventory, 1))
    await db.commit()

    bookings, total = await list_bookings(db, BookingFilter(user_id=user.id))
    assert total == 2
    assert {b.user_id for b in bookings} == {user.id}

    _, total = await list_bookings(db, BookingFilter(user_id=user.id, booking_type=BookingType.YOGA))
    assert total == 1
