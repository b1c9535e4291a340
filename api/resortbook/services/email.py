"""Email sending via SMTP."""

import logging
from email.message import EmailMessage

import aiosmtplib

from resortbook.core.config import settings
from resortbook.models.booking import Booking

logger = logging.getLogger(__name__)


def format_rupees(paise: int) -> str:
    return f"₹{paise / 100:,.2f}"


async def send_email(to: str, subject: str, body: str) -> None:
    """Send a plain-text email via SMTP."""
    message = EmailMessage()
    message["From"] = settings.smtp_from
    message["To"] = to
    message["Subject"] = subject
    message.set_content(body)

    await aiosmtplib.send(message, hostname=settings.smtp_host, port=settings.smtp_port)


def booking_confirmation_body(booking: Booking) -> str:
    lines = [
        f"Hi {booking.contact_name},",
        "",
        f"Your {booking.booking_type} booking #{booking.id} is confirmed.",
        "",
        f"Check-in:  {booking.check_in:%A %d %B %Y}",
        f"Check-out: {booking.check_out:%A %d %B %Y}",
        f"Guests:    {booking.total_guests}",
    ]
    if booking.coupon_code and booking.coupon_discount_paise:
        lines.append(f"Coupon:    {booking.coupon_code} (-{format_rupees(booking.coupon_discount_paise)})")
    lines += [
        f"Amount paid: {format_rupees(booking.amount_payable_paise)}",
        "",
        f"{settings.app_name}",
    ]
    return "\n".join(lines)


def booking_cancellation_body(booking: Booking) -> str:
    lines = [
        f"Hi {booking.contact_name},",
        "",
        f"Your booking #{booking.id} for {booking.check_in:%d %B %Y} has been cancelled.",
    ]
    if booking.cancellation_reason:
        lines.append(f"Reason: {booking.cancellation_reason}")
    lines += ["", f"{settings.app_name}"]
    return "\n".join(lines)
