"""Coupon ledger.

Validity windows, usage caps, service applicability and the at-most-once
redemption per identity (user id or guest phone). `current_usage_count` is
bumped when a booking applies a coupon; the CouponUsage record that blocks
reuse is written only once the booking is paid.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from resortbook.models.base import as_utc, utcnow
from resortbook.models.booking import Booking, BookingType
from resortbook.models.coupon import Coupon, CouponServiceType, CouponServiceTypeLink, CouponUsage, DiscountType
from resortbook.services.errors import ConflictError, NotFoundError, ValidationError
from resortbook.services.pricing import calculate_coupon_discount

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = {
    "code",
    "description",
    "discount_type",
    "discount_value",
    "min_order_value_paise",
    "max_discount_paise",
    "valid_from",
    "valid_until",
    "usage_limit",
    "is_active",
}


def normalise_code(code: str) -> str:
    return code.strip().upper()


def coupon_service_type_for(booking_type: BookingType) -> CouponServiceType:
    """Which coupon service type a booking redeems against.

    Yoga bookings redeem yoga coupons; every other booking redeems as airport.
    """
    if booking_type == BookingType.YOGA:
        return CouponServiceType.YOGA
    return CouponServiceType.AIRPORT


@dataclass
class CouponFilter:
    """Admin coupon listing filter. Unset fields add no clause."""

    is_active: bool | None = None
    service_type: CouponServiceType | None = None
    discount_type: DiscountType | None = None
    valid_from: datetime | None = None
    valid_until: datetime | None = None
    page: int = 1
    limit: int = 10

    def to_clauses(self) -> list:
        clauses = []
        if self.is_active is not None:
            clauses.append(Coupon.is_active.is_(self.is_active))
        if self.service_type is not None:
            clauses.append(
                Coupon.id.in_(
                    select(CouponServiceTypeLink.coupon_id).where(
                        CouponServiceTypeLink.service_type == self.service_type
                    )
                )
            )
        if self.discount_type is not None:
            clauses.append(Coupon.discount_type == self.discount_type)
        if self.valid_from is not None:
            clauses.append(Coupon.valid_from >= self.valid_from)
        if self.valid_until is not None:
            clauses.append(Coupon.valid_until <= self.valid_until)
        return clauses

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


# ---------------------------------------------------------------------------
# Redemption
# ---------------------------------------------------------------------------


def validate_coupon_for_service(coupon: Coupon, service_type: str, now: datetime | None = None) -> None:
    """Raise ValidationError if the coupon cannot be redeemed for `service_type` right now."""
    now = now or utcnow()

    if not coupon.is_active:
        raise ValidationError("coupon_inactive", "Coupon is not active")

    if not coupon.is_currently_valid(now):
        # Active but outside its window or exhausted: say which
        if now < as_utc(coupon.valid_from):
            raise ValidationError("coupon_not_yet_valid", "Coupon is not yet valid")
        if now > as_utc(coupon.valid_until):
            raise ValidationError("coupon_expired", "Coupon has expired")
        raise ValidationError("coupon_usage_limit", "Coupon usage limit exceeded")

    if not coupon.is_applicable_to_service(service_type):
        raise ValidationError("coupon_not_applicable", f"Coupon is not applicable for {service_type} bookings")


async def get_coupon_by_code(db: AsyncSession, code: str, lock: bool = False) -> Coupon:
    query = select(Coupon).where(Coupon.code == normalise_code(code))
    if lock:
        query = query.with_for_update()
    coupon = (await db.execute(query)).scalar_one_or_none()
    if coupon is None:
        raise NotFoundError("Coupon", "Invalid coupon code")
    return coupon


async def has_identity_used_coupon(
    db: AsyncSession,
    coupon_id: int,
    user_id: int | None = None,
    phone_number: str | None = None,
) -> bool:
    """True if a usage exists for the coupon under either identity key."""
    identity = []
    if user_id is not None:
        identity.append(CouponUsage.user_id == user_id)
    if phone_number:
        identity.append(CouponUsage.phone_number == phone_number)
    if not identity:
        raise ValueError("Either user_id or phone_number must be provided")

    result = await db.execute(
        select(CouponUsage.id).where(CouponUsage.coupon_id == coupon_id, or_(*identity)).limit(1)
    )
    return result.scalar_one_or_none() is not None


async def ensure_not_used(
    db: AsyncSession, coupon: Coupon, user_id: int | None, phone_number: str | None
) -> None:
    if user_id is None and not phone_number:
        return
    if await has_identity_used_coupon(db, coupon.id, user_id, phone_number):
        raise ConflictError("coupon_already_used", "You have already used this coupon")


async def quote_coupon(
    db: AsyncSession,
    code: str,
    service_type: str,
    order_value: int,
    user_id: int | None = None,
    phone_number: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Check a coupon for an order without redeeming it."""
    coupon = await get_coupon_by_code(db, code)
    validate_coupon_for_service(coupon, service_type, now)
    await ensure_not_used(db, coupon, user_id, phone_number)

    discount = calculate_coupon_discount(coupon, order_value)
    return {"coupon": coupon, "discount": discount, "final_amount": order_value - discount}


async def record_coupon_usage(db: AsyncSession, booking: Booking) -> CouponUsage | None:
    """Write the usage record for a paid booking that applied a coupon.

    Runs in a SAVEPOINT. If the insert fails (the coupon vanished, or the
    identity already holds a usage) the failure is logged and the caller's
    payment confirmation stands.
    """
    if not booking.coupon_code or not booking.coupon_discount_paise:
        return None

    coupon = (
        await db.execute(select(Coupon).where(Coupon.code == booking.coupon_code))
    ).scalar_one_or_none()
    if coupon is None:
        logger.warning("Coupon %s on booking %s no longer exists; usage not recorded", booking.coupon_code, booking.id)
        return None

    usage = CouponUsage(
        coupon_id=coupon.id,
        user_id=booking.user_id,
        phone_number=booking.contact_phone,
        email=(booking.primary_guest or {}).get("email") or booking.guest_email,
        booking_id=booking.id,
        used_at=utcnow(),
        discount_amount_paise=booking.coupon_discount_paise,
        order_value_paise=booking.total_amount_paise,
        service_type=coupon_service_type_for(booking.booking_type),
    )
    try:
        async with db.begin_nested():
            db.add(usage)
            await db.flush()
    except IntegrityError:
        logger.exception("Failed to record coupon usage for booking %s (coupon %s)", booking.id, coupon.code)
        return None

    logger.info("Coupon %s redeemed by booking %s", coupon.code, booking.id)
    return usage


# ---------------------------------------------------------------------------
# Administration
# ---------------------------------------------------------------------------


async def _code_taken(db: AsyncSession, code: str, exclude_id: int | None = None) -> bool:
    query = select(Coupon.id).where(Coupon.code == code)
    if exclude_id is not None:
        query = query.where(Coupon.id != exclude_id)
    return (await db.execute(query)).scalar_one_or_none() is not None


def _check_terms(coupon: Coupon) -> None:
    if coupon.discount_type == DiscountType.PERCENTAGE and coupon.discount_value > 100:
        raise ValidationError("discount_value", "Percentage discount cannot be more than 100%")
    if (
        coupon.discount_type == DiscountType.FIXED
        and coupon.max_discount_paise is not None
        and coupon.max_discount_paise < coupon.discount_value
    ):
        raise ValidationError(
            "max_discount", "Maximum discount cannot be less than discount value for fixed discounts"
        )
    if as_utc(coupon.valid_until) <= as_utc(coupon.valid_from):
        raise ValidationError("validity_window", "Valid until date must be after valid from date")
    if not coupon.service_types:
        raise ValidationError("service_types", "At least one applicable service is required")


async def create_coupon(db: AsyncSession, data: dict, admin_id: int) -> Coupon:
    code = normalise_code(data["code"])
    if await _code_taken(db, code):
        raise ConflictError("duplicate_code", "Coupon code already exists")

    fields = {k: v for k, v in data.items() if k in UPDATABLE_FIELDS}
    fields["code"] = code
    coupon = Coupon(**fields, current_usage_count=0, created_by=admin_id)
    coupon.set_service_types(data["applicable_service_types"])
    _check_terms(coupon)

    db.add(coupon)
    await db.flush()
    logger.info("Coupon %s created by user %s", coupon.code, admin_id)
    return coupon


async def get_coupon(db: AsyncSession, coupon_id: int) -> Coupon:
    coupon = await db.get(Coupon, coupon_id)
    if coupon is None:
        raise NotFoundError("Coupon")
    return coupon


async def list_coupons(db: AsyncSession, filters: CouponFilter) -> tuple[list[Coupon], int]:
    clauses = filters.to_clauses()
    total = (await db.execute(select(func.count(Coupon.id)).where(*clauses))).scalar_one()
    result = await db.execute(
        select(Coupon).where(*clauses).order_by(Coupon.created_at.desc()).offset(filters.offset).limit(filters.limit)
    )
    return list(result.scalars().all()), total


def total_pages(total: int, limit: int) -> int:
    return math.ceil(total / limit) if limit else 0


async def update_coupon(db: AsyncSession, coupon_id: int, changes: dict, admin_id: int) -> Coupon:
    """Apply a partial update. The usage count is never editable."""
    coupon = await get_coupon(db, coupon_id)

    if "code" in changes and changes["code"] is not None:
        code = normalise_code(changes["code"])
        if code != coupon.code and await _code_taken(db, code, exclude_id=coupon.id):
            raise ConflictError("duplicate_code", "Coupon code already exists")
        changes = {**changes, "code": code}

    for key, value in changes.items():
        if key in UPDATABLE_FIELDS:
            setattr(coupon, key, value)
    if changes.get("applicable_service_types") is not None:
        coupon.set_service_types(changes["applicable_service_types"])

    coupon.updated_by = admin_id
    _check_terms(coupon)
    await db.flush()
    return coupon


async def toggle_coupon(db: AsyncSession, coupon_id: int, admin_id: int) -> Coupon:
    coupon = await get_coupon(db, coupon_id)
    coupon.is_active = not coupon.is_active
    coupon.updated_by = admin_id
    await db.flush()
    logger.info("Coupon %s %s by user %s", coupon.code, "activated" if coupon.is_active else "deactivated", admin_id)
    return coupon


async def delete_coupon(db: AsyncSession, coupon_id: int) -> None:
    """Delete a coupon that has never been redeemed."""
    coupon = await get_coupon(db, coupon_id)
    used = (
        await db.execute(select(func.count(CouponUsage.id)).where(CouponUsage.coupon_id == coupon.id))
    ).scalar_one()
    if used:
        raise ConflictError(
            "coupon_in_use", "Cannot delete coupon that has been used. Please deactivate it instead."
        )
    await db.delete(coupon)
    await db.flush()


async def coupon_usage_statistics(db: AsyncSession, coupon_id: int) -> dict:
    """Usage count and the ten most recent redemptions of one coupon."""
    total = (
        await db.execute(select(func.count(CouponUsage.id)).where(CouponUsage.coupon_id == coupon_id))
    ).scalar_one()
    recent = await db.execute(
        select(CouponUsage).where(CouponUsage.coupon_id == coupon_id).order_by(CouponUsage.used_at.desc()).limit(10)
    )
    return {"total_usages": total, "recent_usages": list(recent.scalars().all())}


async def coupon_statistics(db: AsyncSession, now: datetime | None = None) -> dict:
    now = now or utcnow()

    total_coupons = (await db.execute(select(func.count(Coupon.id)))).scalar_one()
    active_coupons = (await db.execute(select(func.count(Coupon.id)).where(Coupon.is_active.is_(True)))).scalar_one()
    expired_coupons = (await db.execute(select(func.count(Coupon.id)).where(Coupon.valid_until < now))).scalar_one()
    total_usages = (await db.execute(select(func.count(CouponUsage.id)))).scalar_one()
    total_discount = (
        await db.execute(select(func.coalesce(func.sum(CouponUsage.discount_amount_paise), 0)))
    ).scalar_one()

    usage_count = func.count(CouponUsage.id).label("usage_count")
    most_used = await db.execute(
        select(
            Coupon.code,
            Coupon.description,
            usage_count,
            func.sum(CouponUsage.discount_amount_paise).label("total_discount"),
        )
        .select_from(CouponUsage)
        .join(Coupon, Coupon.id == CouponUsage.coupon_id)
        .group_by(Coupon.id, Coupon.code, Coupon.description)
        .order_by(usage_count.desc())
        .limit(10)
    )

    return {
        "overview": {
            "total_coupons": total_coupons,
            "active_coupons": active_coupons,
            "expired_coupons": expired_coupons,
            "total_usages": total_usages,
            "total_discount_given_paise": total_discount,
        },
        "most_used_coupons": [
            {
                "code": row.code,
                "description": row.description,
                "usage_count": row.usage_count,
                "total_discount_paise": row.total_discount,
            }
            for row in most_used
        ],
    }
