"""Pricing engine for booking quotes.

Pure calculation module: no database, no async, no FastAPI dependencies.
All amounts are integer paise. Inputs are duck-typed (ORM rows, pydantic
models or SimpleNamespace all work) so the same functions price a new request
and re-price a stored booking.

Business rules:
- Children under 5 are free for food and breakfast.
- Food is a flat per-person-per-day rate, not configurable per room.
- A coupon discount never exceeds its max_discount cap or the order value.
"""

import math
from collections.abc import Sequence
from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from typing import Any

from resortbook.core.config import settings
from resortbook.models.coupon import DiscountType
from resortbook.models.inventory import PriceUnit
from resortbook.services.errors import AgeRestrictionError

ADULT_AGE = 18
FREE_CHILD_AGE = 5  # under this age: no food / breakfast charge

SECONDS_PER_DAY = 24 * 3600


@dataclass(frozen=True)
class GuestBreakdown:
    adults: int
    children: int
    paying_guests: int

    @property
    def total(self) -> int:
        return self.adults + self.children


@dataclass(frozen=True)
class PriceQuote:
    room_price: int
    food_price: int
    breakfast_price: int
    services_price: int
    transport_price: int
    yoga_price: int
    total_amount: int
    coupon_discount: int | None = None
    final_amount: int | None = None
    breakdown: dict = field(default_factory=dict)

    @property
    def amount_payable(self) -> int:
        return self.final_amount if self.final_amount is not None else self.total_amount

    def as_booking_fields(self) -> dict:
        return {
            "room_price_paise": self.room_price,
            "food_price_paise": self.food_price,
            "breakfast_price_paise": self.breakfast_price,
            "services_price_paise": self.services_price,
            "transport_price_paise": self.transport_price,
            "yoga_price_paise": self.yoga_price,
            "total_amount_paise": self.total_amount,
            "coupon_discount_paise": self.coupon_discount,
            "final_amount_paise": self.final_amount,
        }


def _as_datetime(value: date | datetime) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime(value.year, value.month, value.day)


def calculate_nights(check_in: date | datetime, check_out: date | datetime) -> int:
    """Whole nights between two dates, rounding partial days up."""
    seconds = (_as_datetime(check_out) - _as_datetime(check_in)).total_seconds()
    return math.ceil(seconds / SECONDS_PER_DAY)


def guest_breakdown(guests: Sequence[Any]) -> GuestBreakdown:
    """Adults are 18+, everyone else is a child; only guests aged 5+ pay for meals."""
    adults = sum(1 for g in guests if g.age >= ADULT_AGE)
    children = len(guests) - adults
    paying = sum(1 for g in guests if g.age >= FREE_CHILD_AGE)
    return GuestBreakdown(adults=adults, children=children, paying_guests=paying)


def calculate_service_price(service: Any, quantity: int, guests: Sequence[Any], nights: int) -> int:
    """Price one selected service according to its price unit."""
    unit = service.price_unit
    if unit == PriceUnit.PER_PERSON:
        return service.price_paise * len(guests) * quantity
    if unit == PriceUnit.PER_DAY:
        return service.price_paise * quantity * nights
    # per_session and flat_rate
    return service.price_paise * quantity


def calculate_transport_price(
    pickup: bool,
    drop: bool,
    pickup_fee: int | None = None,
    drop_fee: int | None = None,
) -> int:
    pickup_fee = settings.pickup_fee_paise if pickup_fee is None else pickup_fee
    drop_fee = settings.drop_fee_paise if drop_fee is None else drop_fee
    total = 0
    if pickup:
        total += pickup_fee
    if drop:
        total += drop_fee
    return total


def validate_service_age(service: Any, guests: Sequence[Any]) -> None:
    """Reject the whole booking if any guest falls outside the service's age bounds."""
    min_age = service.min_age
    max_age = service.max_age
    for guest in guests:
        if min_age is not None and guest.age < min_age:
            raise AgeRestrictionError(
                service.name,
                guest.name,
                f"{service.name} requires minimum age of {min_age}. Guest {guest.name} is {guest.age} years old.",
            )
        if max_age is not None and guest.age > max_age:
            raise AgeRestrictionError(
                service.name,
                guest.name,
                f"{service.name} requires maximum age of {max_age}. Guest {guest.name} is {guest.age} years old.",
            )


def calculate_coupon_discount(coupon: Any, order_value: int) -> int:
    """Discount in paise for an order. Zero below the coupon's minimum order value."""
    if coupon.min_order_value_paise and order_value < coupon.min_order_value_paise:
        return 0

    if coupon.discount_type == DiscountType.PERCENTAGE:
        discount = order_value * coupon.discount_value // 100
    else:
        discount = coupon.discount_value

    if coupon.max_discount_paise is not None and discount > coupon.max_discount_paise:
        discount = coupon.max_discount_paise

    return max(0, min(discount, order_value))


def calculate_booking_price(
    room_price_per_night: int,
    check_in: date | datetime,
    check_out: date | datetime,
    guests: Sequence[Any],
    include_food: bool = True,
    include_breakfast: bool = False,
    breakfast_rate: int = 0,
    services_price: int = 0,
    transport_price: int = 0,
    yoga_price: int = 0,
    coupon: Any = None,
    coupon_service_type: str | None = None,
    now: datetime | None = None,
) -> PriceQuote:
    """Build the full price quote for a booking.

    `services_price` is the sum of already-priced selected services (see
    calculate_service_price). The coupon is applied only when it is currently
    valid, applicable to `coupon_service_type` and the order meets its minimum.
    """
    nights = calculate_nights(check_in, check_out)
    counts = guest_breakdown(guests)

    room_price = room_price_per_night * nights
    food_price = settings.food_price_per_person_per_day_paise * counts.paying_guests * nights if include_food else 0
    breakfast_price = breakfast_rate * counts.paying_guests * nights if include_breakfast else 0

    total = room_price + food_price + breakfast_price + services_price + transport_price + yoga_price

    discount = 0
    if coupon is not None and coupon.is_currently_valid(now):
        if coupon_service_type is None or coupon.is_applicable_to_service(coupon_service_type):
            discount = calculate_coupon_discount(coupon, total)

    return PriceQuote(
        room_price=room_price,
        food_price=food_price,
        breakfast_price=breakfast_price,
        services_price=services_price,
        transport_price=transport_price,
        yoga_price=yoga_price,
        total_amount=total,
        coupon_discount=discount if discount > 0 else None,
        final_amount=total - discount if discount > 0 else None,
        breakdown={"nights": nights, **asdict(counts)},
    )
