"""Payment orders, verification and refunds for bookings.

A booking has at most one open (created or attempted) order at a time.
Confirmation is only ever driven by the provider: a valid signature plus a
captured charge, or a signed webhook event.
"""

import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from resortbook.models.booking import Booking, BookingStatus, PaymentStatus
from resortbook.models.payment import OPEN_ORDER_STATUSES, Payment, PaymentOrderStatus
from resortbook.models.user import User
from resortbook.services import payment_provider
from resortbook.services.errors import ConflictError, NotFoundError, ValidationError
from resortbook.services.reservation import (
    confirm_payment,
    ensure_transition,
    get_booking,
    mark_refunded,
    record_payment_failure,
)

logger = logging.getLogger(__name__)


@dataclass
class OrderResult:
    payment: Payment
    client_secret: str | None
    created: bool


@dataclass
class VerificationResult:
    booking: Booking
    payment: Payment
    verified: bool
    reason: str | None = None


async def _payment_by_order(db: AsyncSession, order_id: str) -> Payment | None:
    result = await db.execute(
        select(Payment)
        .where(Payment.provider_order_id == order_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def create_payment_order(db: AsyncSession, booking: Booking, amount_paise: int) -> OrderResult:
    """Raise a provider order for a pending booking, or return the one already open."""
    booking = await get_booking(db, booking.id, lock=True)

    if booking.status != BookingStatus.PENDING or booking.payment_status == PaymentStatus.PAID:
        raise ConflictError("not_payable", "Booking not eligible for payment")
    if amount_paise <= 0:
        raise ValidationError("amount", "Valid payment amount is required")
    if amount_paise > booking.amount_payable_paise:
        raise ValidationError("amount", "Payment amount exceeds the booking total")

    result = await db.execute(
        select(Payment)
        .where(Payment.booking_id == booking.id, Payment.status.in_(OPEN_ORDER_STATUSES))
        .order_by(Payment.created_at.desc())
        .limit(1)
    )
    existing = result.scalar_one_or_none()
    if existing is not None:
        order = payment_provider.retrieve_order(existing.provider_order_id)
        logger.info("Reusing open order %s for booking %s", existing.provider_order_id, booking.id)
        return OrderResult(payment=existing, client_secret=order.client_secret, created=False)

    customer_id = None
    if booking.user_id is not None:
        user = await db.get(User, booking.user_id)
        customer_id = await payment_provider.ensure_customer(user, db)

    order = payment_provider.create_order(
        amount_paise,
        booking.id,
        customer_id=customer_id,
        customer_email=(booking.primary_guest or {}).get("email") or booking.guest_email,
    )
    payment = Payment(
        booking_id=booking.id,
        provider_order_id=order.id,
        amount_paise=order.amount,
        currency=order.currency,
        status=PaymentOrderStatus.CREATED,
    )
    db.add(payment)
    await db.flush()

    logger.info("Order %s created for booking %s (%d paise)", order.id, booking.id, order.amount)
    return OrderResult(payment=payment, client_secret=order.client_secret, created=True)


async def verify_payment(db: AsyncSession, order_id: str, payment_id: str, signature: str) -> VerificationResult:
    """Check the checkout signature and the charge, then confirm or record the failure.

    Failures are recorded, not raised, so the caller can commit them before
    reporting the error.
    """
    payment = await _payment_by_order(db, order_id)
    if payment is None:
        raise NotFoundError("Payment", "Payment order not found")
    booking = await get_booking(db, payment.booking_id, lock=True)

    if payment.status == PaymentOrderStatus.PAID:
        if payment.provider_payment_id != payment_id:
            raise ConflictError("order_already_paid", "This order has already been paid by another payment")
        return VerificationResult(booking, payment, verified=True)

    if not payment_provider.verify_signature(order_id, payment_id, signature):
        reason = "Invalid payment signature"
        await record_payment_failure(db, booking, payment, reason)
        return VerificationResult(booking, payment, verified=False, reason=reason)

    details = payment_provider.get_payment_details(payment_id)
    if not details.captured:
        reason = details.failure_reason or f"Payment not captured (status: {details.status})"
        await record_payment_failure(db, booking, payment, reason, provider_payment_id=payment_id)
        return VerificationResult(booking, payment, verified=False, reason=reason)

    await confirm_payment(db, booking, payment, payment_id, method=details.method, signature=signature)
    return VerificationResult(booking, payment, verified=True)


async def refund_booking(
    db: AsyncSession,
    booking: Booking,
    amount_paise: int | None = None,
    reason: str | None = None,
) -> Payment:
    """Refund a paid booking in full or in part and cancel it."""
    booking = await get_booking(db, booking.id, lock=True)
    if booking.payment_status != PaymentStatus.PAID:
        raise ConflictError("not_refundable", "Only paid bookings can be refunded")
    # Refunds cancel the booking, so only a confirmed stay qualifies
    ensure_transition(booking, BookingStatus.CANCELLED)

    result = await db.execute(
        select(Payment).where(Payment.booking_id == booking.id, Payment.status == PaymentOrderStatus.PAID)
    )
    payment = result.scalar_one_or_none()
    if payment is None or payment.provider_payment_id is None:
        raise NotFoundError("Payment", "No captured payment found for this booking")

    amount = amount_paise if amount_paise is not None else payment.amount_paise
    if amount > payment.amount_paise:
        raise ValidationError("amount", "Refund amount exceeds the amount paid")

    refund = payment_provider.refund_payment(payment.provider_payment_id, amount, reason)

    full = amount == payment.amount_paise
    payment.status = PaymentOrderStatus.REFUNDED if full else PaymentOrderStatus.PARTIAL_REFUND
    payment.refund_amount_paise = amount
    payment.refund_id = refund.id
    await mark_refunded(db, booking, reason)

    logger.info("Refunded %d paise on booking %s (%s)", amount, booking.id, refund.id)
    return payment


# ---------------------------------------------------------------------------
# Webhook events
# ---------------------------------------------------------------------------


async def handle_payment_succeeded(db: AsyncSession, intent: dict) -> Booking | None:
    """Confirm the booking behind a succeeded PaymentIntent.

    Returns the booking only when this event confirmed it; unknown intents and
    bookings already paid give None.
    """
    payment = await _payment_by_order(db, intent["id"])
    if payment is None:
        return None
    booking = await get_booking(db, payment.booking_id, lock=True)
    if booking.payment_status == PaymentStatus.PAID:
        return None

    charge_id = intent.get("latest_charge") or intent["id"]
    method_types = intent.get("payment_method_types") or [None]
    await confirm_payment(db, booking, payment, charge_id, method=method_types[0])
    return booking


async def handle_payment_failed(db: AsyncSession, intent: dict) -> Booking | None:
    payment = await _payment_by_order(db, intent["id"])
    if payment is None:
        return None
    booking = await get_booking(db, payment.booking_id, lock=True)

    error = intent.get("last_payment_error") or {}
    await record_payment_failure(db, booking, payment, error.get("message") or "Payment failed")
    return booking
