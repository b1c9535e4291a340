"""Reservation workflow: create, cancel, confirm and move bookings through their states.

    pending ──pay──> confirmed ──check in──> checked_in ──check out──> checked_out
       │                 │
       └──cancel─────────┴──cancel/refund──> cancelled

Creation runs every check and the insert in the caller's transaction; nothing
is written unless everything passes. Capacity (yoga seats, service slots) is
only committed when the payment is confirmed, in a second transaction.

None of these functions commit. Route handlers commit once the operation
returns, then send notifications.
"""

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from resortbook.core.config import settings
from resortbook.models.base import utcnow
from resortbook.models.booking import (
    Booking,
    BookingService,
    BookingStatus,
    BookingType,
    DailyRecurringSession,
    PaymentStatus,
    ScheduledSession,
)
from resortbook.models.inventory import PriceUnit, Service, ServiceCategory, YogaSession
from resortbook.models.payment import Payment, PaymentOrderStatus
from resortbook.models.user import User
from resortbook.schemas import BookingCreate
from resortbook.services import payment_provider
from resortbook.services.availability import (
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
from resortbook.services.coupons import (
    coupon_service_type_for,
    ensure_not_used,
    get_coupon_by_code,
    record_coupon_usage,
    validate_coupon_for_service,
)
from resortbook.services.errors import (
    IllegalTransitionError,
    NotFoundError,
    TransactionAbortError,
    ValidationError,
)
from resortbook.services.pricing import (
    calculate_booking_price,
    calculate_nights,
    calculate_service_price,
    calculate_transport_price,
    guest_breakdown,
    validate_service_age,
)

logger = logging.getLogger(__name__)

_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.CHECKED_IN, BookingStatus.CANCELLED}),
    BookingStatus.CHECKED_IN: frozenset({BookingStatus.CHECKED_OUT}),
    BookingStatus.CHECKED_OUT: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
}


def can_transition(current: BookingStatus, target: BookingStatus) -> bool:
    return target in _TRANSITIONS[current]


def ensure_transition(booking: Booking, target: BookingStatus) -> None:
    if can_transition(booking.status, target):
        return
    if target == BookingStatus.CANCELLED:
        raise IllegalTransitionError(
            "cannot_cancel", f"A booking that is {booking.status} cannot be cancelled."
        )
    raise IllegalTransitionError(
        "illegal_transition", f"Cannot move booking {booking.id} from {booking.status} to {target}."
    )


@dataclass
class BookingFilter:
    """Booking listing filter. Unset fields add no clause."""

    user_id: int | None = None
    status: BookingStatus | None = None
    booking_type: BookingType | None = None
    page: int = 1
    limit: int = 20

    def to_clauses(self) -> list:
        clauses = []
        if self.user_id is not None:
            clauses.append(Booking.user_id == self.user_id)
        if self.status is not None:
            clauses.append(Booking.status == self.status)
        if self.booking_type is not None:
            clauses.append(Booking.booking_type == self.booking_type)
        return clauses

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


async def list_bookings(db: AsyncSession, filters: BookingFilter) -> tuple[list[Booking], int]:
    clauses = filters.to_clauses()
    total = (await db.execute(select(func.count(Booking.id)).where(*clauses))).scalar_one()
    result = await db.execute(
        select(Booking)
        .where(*clauses)
        .order_by(Booking.check_in.desc(), Booking.id.desc())
        .offset(filters.offset)
        .limit(filters.limit)
    )
    return list(result.scalars().all()), total


async def get_booking(db: AsyncSession, booking_id: int, lock: bool = False) -> Booking:
    query = select(Booking).where(Booking.id == booking_id)
    if lock:
        query = query.with_for_update().execution_options(populate_existing=True)
    booking = (await db.execute(query)).scalar_one_or_none()
    if booking is None:
        raise NotFoundError("Booking")
    return booking


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


async def _breakfast_rate(db: AsyncSession) -> int:
    """Rate of the active breakfast service, or the configured default."""
    result = await db.execute(
        select(Service.price_paise)
        .where(
            Service.category == ServiceCategory.FOOD,
            Service.subcategory == "breakfast",
            Service.price_unit == PriceUnit.PER_PERSON,
            Service.is_active.is_(True),
        )
        .limit(1)
    )
    rate = result.scalar_one_or_none()
    return rate if rate is not None else settings.default_breakfast_price_paise


def _primary_guest(request: BookingCreate, user: User | None) -> dict | None:
    if request.primary_guest is not None:
        return request.primary_guest.model_dump()
    if user is not None:
        return {"name": user.full_name, "email": user.email, "phone": user.phone}
    return None


async def create_booking(
    db: AsyncSession,
    request: BookingCreate,
    user: User | None = None,
    now: datetime | None = None,
) -> Booking:
    """Validate, price and insert a pending booking.

    `user` is None for public (anonymous) bookings, which are owned by the
    primary guest's email instead.
    """
    now = now or utcnow()
    today = now.date()
    guests = request.guests

    if user is None and request.primary_guest is None:
        raise ValidationError("primary_guest", "Contact details are required for bookings without an account.")

    validate_booking_dates(request.check_in, request.check_out, today)

    room = None
    if request.room_id is not None:
        # Row lock first: concurrent bookings of this room queue here
        room = await get_bookable_room(db, request.room_id)
        await expire_stale_pending_bookings(db, room_id=room.id, now=now)

    validate_guests(guests, room.capacity if room else None)

    if room is not None:
        conflicts = await check_date_overlap(db, room.id, request.check_in, request.check_out)
        if conflicts:
            raise overlap_conflict(conflicts)

    nights = calculate_nights(request.check_in, request.check_out)

    # Services
    selected: list[BookingService] = []
    services_price = 0
    for item in request.services:
        service = await db.get(Service, item.service_id)
        if service is None:
            raise NotFoundError("Service", f"Service {item.service_id} not found")
        validate_service_age(service, guests)
        validate_service_slots(service, item.quantity)
        price = calculate_service_price(service, item.quantity, guests, nights)
        services_price += price
        selected.append(
            BookingService(
                service_id=service.id,
                quantity=item.quantity,
                total_price_paise=price,
                details=item.details,
            )
        )

    # Yoga
    yoga_ref = request.yoga_ref()
    yoga_price = 0
    match yoga_ref:
        case ScheduledSession(session_id=session_id):
            await validate_yoga_seats(db, session_id, len(guests), today)
            session = await db.get(YogaSession, session_id)
            yoga_price = session.price_paise * len(guests)
        case DailyRecurringSession(daily_session_id=daily_id, time_slot=slot):
            daily = await validate_daily_session(db, daily_id, slot)
            yoga_price = daily.price_paise * len(guests) * nights

    # Transport
    transport = request.transport
    transport_price = calculate_transport_price(transport.pickup, transport.drop) if transport else 0

    # Meals only come with a room stay
    include_food = request.include_food and room is not None
    include_breakfast = request.include_breakfast and room is not None
    breakfast_rate = await _breakfast_rate(db) if include_breakfast else 0

    primary_guest = _primary_guest(request, user)

    # Coupon
    coupon = None
    coupon_service_type = None
    if request.coupon_code:
        coupon = await get_coupon_by_code(db, request.coupon_code, lock=True)
        coupon_service_type = coupon_service_type_for(request.booking_type)
        validate_coupon_for_service(coupon, coupon_service_type, now)
        await ensure_not_used(
            db,
            coupon,
            user.id if user else None,
            (primary_guest or {}).get("phone"),
        )

    quote = calculate_booking_price(
        room_price_per_night=room.price_per_night_paise if room else 0,
        check_in=request.check_in,
        check_out=request.check_out,
        guests=guests,
        include_food=include_food,
        include_breakfast=include_breakfast,
        breakfast_rate=breakfast_rate,
        services_price=services_price,
        transport_price=transport_price,
        yoga_price=yoga_price,
        coupon=coupon,
        coupon_service_type=coupon_service_type,
        now=now,
    )

    if coupon is not None:
        if not quote.coupon_discount:
            raise ValidationError(
                "coupon_min_order",
                f"Coupon {coupon.code} requires a minimum order value of {coupon.min_order_value_paise} paise.",
            )
        coupon.current_usage_count += 1

    counts = guest_breakdown(guests)
    booking = Booking(
        booking_type=request.booking_type,
        user_id=user.id if user else None,
        guest_email=None if user else request.primary_guest.email,
        primary_guest=primary_guest,
        room_id=room.id if room else None,
        include_food=include_food,
        include_breakfast=include_breakfast,
        transport=transport.model_dump(mode="json") if transport else None,
        check_in=request.check_in,
        check_out=request.check_out,
        guests=[g.model_dump() for g in guests],
        total_guests=counts.total,
        adults=counts.adults,
        children=counts.children,
        coupon_code=coupon.code if coupon else None,
        status=BookingStatus.PENDING,
        payment_status=PaymentStatus.PENDING,
        special_requests=request.special_requests,
        services=selected,
        **quote.as_booking_fields(),
    )
    booking.yoga_ref = yoga_ref
    db.add(booking)

    try:
        await db.flush()
    except IntegrityError as exc:
        logger.warning("Booking insert aborted: %s", exc.orig)
        raise TransactionAbortError() from exc

    logger.info(
        "Booking %s created: %s %s-%s, %d guest(s), %d paise",
        booking.id,
        booking.booking_type,
        booking.check_in,
        booking.check_out,
        booking.total_guests,
        booking.amount_payable_paise,
    )
    return booking


# ---------------------------------------------------------------------------
# Capacity
# ---------------------------------------------------------------------------


async def _lock(db: AsyncSession, model, row_id: int):
    """SELECT ... FOR UPDATE one row, refreshing any copy already in the session."""
    result = await db.execute(
        select(model).where(model.id == row_id).with_for_update().execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _commit_capacity(db: AsyncSession, booking: Booking) -> None:
    """Take yoga seats and service slots for a booking that has just been paid."""
    if booking.yoga_session_id is not None:
        session = await _lock(db, YogaSession, booking.yoga_session_id)
        if session is not None:
            seats = booking.total_guests
            if session.booked_seats + seats > session.capacity:
                # Paid already; never oversell, flag for the front desk instead
                logger.error(
                    "Yoga session %s over capacity confirming booking %s (%d/%d + %d)",
                    session.id,
                    booking.id,
                    session.booked_seats,
                    session.capacity,
                    seats,
                )
                seats = session.capacity - session.booked_seats
            session.booked_seats += seats

    for item in booking.services:
        service = await _lock(db, Service, item.service_id)
        if service is not None and service.available_slots is not None:
            service.available_slots = max(0, service.available_slots - item.quantity)


async def _release_yoga_seats(db: AsyncSession, booking: Booking) -> None:
    if booking.yoga_session_id is None:
        return
    session = await _lock(db, YogaSession, booking.yoga_session_id)
    if session is not None:
        session.booked_seats = max(0, session.booked_seats - booking.total_guests)


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


async def confirm_payment(
    db: AsyncSession,
    booking: Booking,
    payment: Payment,
    provider_payment_id: str,
    method: str | None = None,
    signature: str | None = None,
) -> Booking:
    """Flip a pending booking to confirmed/paid and commit its capacity.

    Repeating the confirmation for an already-paid order is a no-op.
    """
    if payment.status == PaymentOrderStatus.PAID and booking.payment_status == PaymentStatus.PAID:
        return booking

    ensure_transition(booking, BookingStatus.CONFIRMED)

    payment.status = PaymentOrderStatus.PAID
    payment.provider_payment_id = provider_payment_id
    payment.payment_method = method
    payment.signature = signature
    payment.failure_reason = None

    booking.status = BookingStatus.CONFIRMED
    booking.payment_status = PaymentStatus.PAID
    booking.payment_id = provider_payment_id

    await _commit_capacity(db, booking)
    await db.flush()
    await record_coupon_usage(db, booking)

    logger.info("Booking %s confirmed (payment %s)", booking.id, provider_payment_id)
    return booking


async def record_payment_failure(
    db: AsyncSession,
    booking: Booking,
    payment: Payment,
    reason: str,
    provider_payment_id: str | None = None,
) -> None:
    """The booking stays pending so the guest can retry. No capacity changes."""
    if booking.payment_status == PaymentStatus.PAID:
        return

    payment.status = PaymentOrderStatus.FAILED
    payment.failure_reason = reason
    if provider_payment_id and payment.provider_payment_id is None:
        payment.provider_payment_id = provider_payment_id

    booking.payment_status = PaymentStatus.FAILED
    await db.flush()
    logger.warning("Payment failed for booking %s: %s", booking.id, reason)


async def cancel_booking(
    db: AsyncSession,
    booking: Booking,
    reason: str | None = None,
    now: datetime | None = None,
) -> Booking:
    """Cancel a pending or confirmed booking.

    Paid bookings give their yoga seats back. Unpaid bookings have any open
    provider order cancelled. Refunds are a separate admin operation.
    """
    ensure_transition(booking, BookingStatus.CANCELLED)

    if booking.payment_status == PaymentStatus.PAID:
        await _release_yoga_seats(db, booking)
    else:
        await payment_provider.cancel_open_orders(db, booking.id, "Booking cancelled")

    booking.status = BookingStatus.CANCELLED
    booking.cancelled_at = now or utcnow()
    booking.cancellation_reason = reason
    await db.flush()

    logger.info("Booking %s cancelled: %s", booking.id, reason or "no reason given")
    return booking


async def check_in(db: AsyncSession, booking: Booking) -> Booking:
    ensure_transition(booking, BookingStatus.CHECKED_IN)
    booking.status = BookingStatus.CHECKED_IN
    await db.flush()
    return booking


async def check_out(db: AsyncSession, booking: Booking) -> Booking:
    ensure_transition(booking, BookingStatus.CHECKED_OUT)
    booking.status = BookingStatus.CHECKED_OUT
    await db.flush()
    return booking


async def mark_refunded(db: AsyncSession, booking: Booking, reason: str | None, now: datetime | None = None) -> None:
    """Cancel a paid booking after its refund went through."""
    ensure_transition(booking, BookingStatus.CANCELLED)
    await _release_yoga_seats(db, booking)
    booking.status = BookingStatus.CANCELLED
    booking.payment_status = PaymentStatus.REFUNDED
    booking.cancelled_at = now or utcnow()
    booking.cancellation_reason = reason or "Refunded"
    await db.flush()
