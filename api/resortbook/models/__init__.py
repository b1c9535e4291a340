"""All models imported here so Base.metadata knows every table."""

from resortbook.models.base import Base
from resortbook.models.booking import (
    Booking,
    BookingService,
    BookingStatus,
    BookingType,
    DailyRecurringSession,
    PaymentStatus,
    ScheduledSession,
)
from resortbook.models.coupon import Coupon, CouponServiceType, CouponServiceTypeLink, CouponUsage, DiscountType
from resortbook.models.inventory import (
    DailySessionType,
    DailyYogaSession,
    PriceUnit,
    Room,
    RoomType,
    Service,
    ServiceCategory,
    YogaSession,
    YogaSessionType,
)
from resortbook.models.payment import Payment, PaymentOrderStatus
from resortbook.models.user import User, UserRole

__all__ = [
    "Base",
    "User",
    "UserRole",
    "Room",
    "RoomType",
    "YogaSession",
    "YogaSessionType",
    "DailyYogaSession",
    "DailySessionType",
    "Service",
    "ServiceCategory",
    "PriceUnit",
    "Coupon",
    "CouponServiceType",
    "CouponServiceTypeLink",
    "CouponUsage",
    "DiscountType",
    "Booking",
    "BookingService",
    "BookingStatus",
    "BookingType",
    "PaymentStatus",
    "ScheduledSession",
    "DailyRecurringSession",
    "Payment",
    "PaymentOrderStatus",
]
