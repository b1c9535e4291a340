"""Stripe webhook handler.

Processes payment_intent.succeeded and payment_intent.payment_failed events.
Both are idempotent, so provider retries are harmless.
"""

import logging

import stripe
from fastapi import APIRouter, HTTPException, Request, status

from resortbook.core.database import async_session_factory
from resortbook.services.errors import BookingError
from resortbook.services.notifications import booking_recipient, send_booking_confirmation
from resortbook.services.payment_provider import construct_webhook_event
from resortbook.services.payments import handle_payment_failed, handle_payment_succeeded

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/stripe")
async def stripe_webhook(request: Request):
    """Handle Stripe webhook events.

    Uses a dedicated DB session (not the request-scoped one) because webhook
    processing must commit independently of any ongoing request.
    """
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature", "")

    try:
        event = construct_webhook_event(payload, sig_header)
    except (ValueError, stripe.SignatureVerificationError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid webhook signature") from None

    event_type = event["type"]
    data = event["data"]["object"]

    if event_type == "payment_intent.succeeded":
        await _handle_payment_succeeded(data)
    elif event_type == "payment_intent.payment_failed":
        await _handle_payment_failed(data)

    return {"status": "ok"}


async def _handle_payment_succeeded(payment_intent: dict) -> None:
    """Confirm the booking and send the confirmation email."""
    async with async_session_factory() as db:
        try:
            booking = await handle_payment_succeeded(db, payment_intent)
        except BookingError as exc:
            # Paid but no longer confirmable (e.g. cancelled meanwhile): needs a manual refund
            logger.error("Could not confirm payment intent %s: %s", payment_intent["id"], exc.message)
            await db.rollback()
            return
        await db.commit()

    if booking is not None:
        await send_booking_confirmation(booking, booking_recipient(booking))


async def _handle_payment_failed(payment_intent: dict) -> None:
    """Record the failure; the booking stays pending for a retry."""
    async with async_session_factory() as db:
        await handle_payment_failed(db, payment_intent)
        await db.commit()
