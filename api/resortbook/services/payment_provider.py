"""Payment provider integration.

Wraps the Stripe Python SDK. All amounts are in paise (INR).

A provider order is a PaymentIntent; a provider payment is the Charge it
produces. The checkout page confirms a payment by posting back the order id,
the charge id and an HMAC signature over both, which only this service (and
the checkout backend holding the same secret) can produce.
"""

import contextlib
import hashlib
import hmac
import logging
from dataclasses import dataclass

import stripe
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from resortbook.core.config import settings
from resortbook.models.payment import OPEN_ORDER_STATUSES, Payment, PaymentOrderStatus
from resortbook.models.user import User
from resortbook.services.errors import PaymentProviderError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderOrder:
    id: str
    amount: int
    currency: str
    client_secret: str | None


@dataclass(frozen=True)
class PaymentDetails:
    id: str
    status: str
    captured: bool
    method: str | None
    failure_reason: str | None = None


def _configure() -> None:
    """Set the Stripe API key from settings."""
    stripe.api_key = settings.stripe_secret_key


def _as_order(intent) -> ProviderOrder:
    return ProviderOrder(
        id=intent.id,
        amount=intent.amount,
        currency=intent.currency,
        client_secret=intent.client_secret,
    )


async def ensure_customer(user: User, db: AsyncSession) -> str:
    """Get or create a Stripe customer for the user.

    Stores the customer ID on the User model for future use.
    """
    _configure()

    if user.stripe_customer_id:
        return user.stripe_customer_id

    try:
        customer = stripe.Customer.create(
            email=user.email,
            name=user.full_name,
            phone=user.phone,
            metadata={"resortbook_user_id": str(user.id)},
        )
    except stripe.StripeError as exc:
        logger.error("Customer creation failed for user %s: %s", user.id, exc)
        raise PaymentProviderError("Failed to create payment customer") from exc

    user.stripe_customer_id = customer.id
    await db.flush()
    return customer.id


def create_order(
    amount_paise: int,
    booking_id: int,
    customer_id: str | None = None,
    customer_email: str | None = None,
) -> ProviderOrder:
    """Create a PaymentIntent for a booking payment."""
    _configure()

    try:
        intent = stripe.PaymentIntent.create(
            amount=amount_paise,
            currency=settings.currency,
            customer=customer_id,
            receipt_email=customer_email,
            metadata={"booking_id": str(booking_id)},
            automatic_payment_methods={"enabled": True},
        )
    except stripe.StripeError as exc:
        logger.error("Order creation failed for booking %s: %s", booking_id, exc)
        raise PaymentProviderError("Failed to create payment order") from exc

    return _as_order(intent)


def retrieve_order(order_id: str) -> ProviderOrder:
    _configure()

    try:
        return _as_order(stripe.PaymentIntent.retrieve(order_id))
    except stripe.StripeError as exc:
        logger.error("Failed to fetch order %s: %s", order_id, exc)
        raise PaymentProviderError("Failed to fetch payment order") from exc


def expected_signature(order_id: str, payment_id: str) -> str:
    """HMAC-SHA256 hex digest of "order_id|payment_id"."""
    message = f"{order_id}|{payment_id}".encode()
    return hmac.new(settings.payment_signing_secret.encode(), message, hashlib.sha256).hexdigest()


def verify_signature(order_id: str, payment_id: str, signature: str) -> bool:
    return hmac.compare_digest(expected_signature(order_id, payment_id), signature or "")


def get_payment_details(payment_id: str) -> PaymentDetails:
    """Fetch the charge from the provider. Only a captured, succeeded charge counts as paid."""
    _configure()

    try:
        charge = stripe.Charge.retrieve(payment_id)
    except stripe.StripeError as exc:
        logger.error("Failed to fetch payment %s: %s", payment_id, exc)
        raise PaymentProviderError("Failed to fetch payment details") from exc

    method_details = getattr(charge, "payment_method_details", None)
    return PaymentDetails(
        id=charge.id,
        status=charge.status,
        captured=bool(charge.status == "succeeded" and charge.captured),
        method=getattr(method_details, "type", None),
        failure_reason=getattr(charge, "failure_message", None),
    )


def refund_payment(payment_id: str, amount_paise: int | None = None, reason: str | None = None) -> stripe.Refund:
    """Refund all or part of a charge."""
    _configure()

    params: dict = {"charge": payment_id, "metadata": {"reason": reason or "Customer request"}}
    if amount_paise is not None:
        params["amount"] = amount_paise

    try:
        return stripe.Refund.create(**params)
    except stripe.StripeError as exc:
        logger.error("Refund failed for payment %s: %s", payment_id, exc)
        raise PaymentProviderError("Failed to process refund") from exc


def cancel_order(order_id: str) -> None:
    """Cancel an unpaid PaymentIntent (e.g. on booking cancellation)."""
    _configure()

    with contextlib.suppress(stripe.StripeError):
        stripe.PaymentIntent.cancel(order_id)


async def cancel_open_orders(db: AsyncSession, booking_id: int, reason: str) -> int:
    """Cancel every order of a booking that could still be paid and mark it failed."""
    result = await db.execute(
        select(Payment).where(Payment.booking_id == booking_id, Payment.status.in_(OPEN_ORDER_STATUSES))
    )
    payments = result.scalars().all()
    for payment in payments:
        cancel_order(payment.provider_order_id)
        payment.status = PaymentOrderStatus.FAILED
        payment.failure_reason = reason
    return len(payments)


def construct_webhook_event(payload: bytes, sig_header: str) -> stripe.Event:
    """Verify and construct a Stripe webhook event."""
    return stripe.Webhook.construct_event(
        payload,
        sig_header,
        settings.stripe_webhook_secret,
    )
