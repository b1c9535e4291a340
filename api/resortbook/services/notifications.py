"""Booking notifications.

Always called after the booking transaction has committed. Delivery failures
are logged and reported in the result, never raised: a booking stands whether
or not its email goes out.
"""

import logging

import aiosmtplib

from resortbook.models.booking import Booking
from resortbook.services.email import booking_cancellation_body, booking_confirmation_body, send_email

logger = logging.getLogger(__name__)


def booking_recipient(booking: Booking, user_email: str | None = None) -> str | None:
    return user_email or (booking.primary_guest or {}).get("email") or booking.guest_email


async def _deliver(recipient: str | None, subject: str, body: str, booking_id: int) -> dict:
    if not recipient:
        logger.warning("No recipient for booking %s; notification skipped", booking_id)
        return {"success": False}
    try:
        await send_email(recipient, subject, body)
    except (aiosmtplib.SMTPException, OSError):
        logger.exception("Failed to send '%s' for booking %s to %s", subject, booking_id, recipient)
        return {"success": False}
    logger.info("Sent '%s' for booking %s to %s", subject, booking_id, recipient)
    return {"success": True}


async def send_booking_confirmation(booking: Booking, recipient: str | None) -> dict:
    return await _deliver(
        recipient, f"Booking #{booking.id} confirmed", booking_confirmation_body(booking), booking.id
    )


async def send_booking_cancellation(booking: Booking, recipient: str | None) -> dict:
    return await _deliver(
        recipient, f"Booking #{booking.id} cancelled", booking_cancellation_body(booking), booking.id
    )
