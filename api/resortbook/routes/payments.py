"""Payment routes: create an order, verify a checkout, status, refund.

Bookings made without an account can be paid anonymously; bookings that
belong to a user only by that user (or an admin).
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from resortbook.core.database import get_db
from resortbook.core.dependencies import can_access_booking, get_optional_user, require_admin
from resortbook.models.booking import Booking
from resortbook.models.payment import Payment
from resortbook.models.user import User
from resortbook.schemas import (
    BookingOut,
    CreateOrderRequest,
    OrderOut,
    PaymentOut,
    PaymentStatusOut,
    RefundRequest,
    VerifyPaymentRequest,
)
from resortbook.services.errors import PaymentVerificationError
from resortbook.services.notifications import booking_recipient, send_booking_cancellation, send_booking_confirmation
from resortbook.services.payments import create_payment_order, refund_booking, verify_payment
from resortbook.services.reservation import get_booking

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


def _ensure_payer(booking: Booking, user: User | None) -> None:
    if booking.user_id is None:
        return
    if not can_access_booking(booking, user):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found")


@router.post("/create-order", response_model=OrderOut, status_code=status.HTTP_201_CREATED)
async def create_order(
    body: CreateOrderRequest,
    user: User | None = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
):
    booking = await get_booking(db, body.booking_id)
    _ensure_payer(booking, user)

    result = await create_payment_order(db, booking, body.amount_paise)
    await db.commit()

    return OrderOut(
        order_id=result.payment.provider_order_id,
        amount_paise=result.payment.amount_paise,
        currency=result.payment.currency,
        client_secret=result.client_secret,
        booking_id=booking.id,
    )


@router.post("/verify", response_model=BookingOut)
async def verify(
    body: VerifyPaymentRequest,
    user: User | None = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
):
    """Confirm a booking from the checkout's signed callback.

    A failed verification is committed (the booking stays pending with
    payment failed) before the error is returned.
    """
    payment = (
        await db.execute(select(Payment).where(Payment.provider_order_id == body.order_id))
    ).scalar_one_or_none()
    if payment is not None:
        _ensure_payer(await get_booking(db, payment.booking_id), user)

    outcome = await verify_payment(db, body.order_id, body.payment_id, body.signature)
    await db.commit()

    if not outcome.verified:
        raise PaymentVerificationError("payment_verification_failed", outcome.reason or "Payment verification failed")

    await send_booking_confirmation(outcome.booking, booking_recipient(outcome.booking))
    return outcome.booking


@router.get("/{booking_id}/status", response_model=PaymentStatusOut)
async def payment_status(
    booking_id: int,
    user: User | None = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
):
    booking = await get_booking(db, booking_id)
    _ensure_payer(booking, user)

    result = await db.execute(
        select(Payment).where(Payment.booking_id == booking.id).order_by(Payment.created_at.desc())
    )
    return PaymentStatusOut(
        booking_id=booking.id,
        booking_status=booking.status,
        payment_status=booking.payment_status,
        amount_payable_paise=booking.amount_payable_paise,
        orders=[PaymentOut.model_validate(p) for p in result.scalars().all()],
    )


@router.post("/{booking_id}/refund", response_model=PaymentOut)
async def refund(
    booking_id: int,
    body: RefundRequest,
    _admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    booking = await get_booking(db, booking_id)
    payment = await refund_booking(db, booking, amount_paise=body.amount_paise, reason=body.reason)
    await db.commit()

    await send_booking_cancellation(booking, booking_recipient(booking))
    return payment
