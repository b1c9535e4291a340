"""Coupon and coupon-usage models.

A coupon may be redeemed at most once per identity. The identity is the
registered user id or, for anonymous guests, the phone number. The partial
unique indexes on coupon_usages are what enforce that in the store.
"""

import enum
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from resortbook.models.base import Base, TimestampMixin, as_utc, utcnow


class DiscountType(enum.StrEnum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class CouponServiceType(enum.StrEnum):
    AIRPORT = "airport"
    YOGA = "yoga"
    RENTAL = "rental"
    ADVENTURE = "adventure"


class Coupon(TimestampMixin, Base):
    __tablename__ = "coupons"

    id: Mapped[int] = mapped_column(primary_key=True)
    code: Mapped[str] = mapped_column(String(40), unique=True, nullable=False, index=True)
    description: Mapped[str] = mapped_column(String(200), nullable=False)
    discount_type: Mapped[DiscountType] = mapped_column(
        Enum(DiscountType, name="discount_type", values_callable=lambda e: [x.value for x in e]),
        nullable=False,
    )
    # Percent (0-100) for percentage coupons, paise for fixed coupons
    discount_value: Mapped[int] = mapped_column(Integer, nullable=False)
    min_order_value_paise: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_discount_paise: Mapped[int | None] = mapped_column(Integer)
    valid_from: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    valid_until: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    usage_limit: Mapped[int | None] = mapped_column(Integer)
    current_usage_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"))
    updated_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"))

    service_types: Mapped[list["CouponServiceTypeLink"]] = relationship(
        back_populates="coupon", cascade="all, delete-orphan", lazy="selectin"
    )

    __table_args__ = (
        CheckConstraint("discount_value >= 0", name="ck_coupons_discount_value"),
        CheckConstraint("valid_until > valid_from", name="ck_coupons_window"),
        CheckConstraint("current_usage_count >= 0", name="ck_coupons_usage_count"),
        Index("ix_coupons_window", "valid_from", "valid_until"),
    )

    @property
    def applicable_service_types(self) -> list[CouponServiceType]:
        return [link.service_type for link in self.service_types]

    def set_service_types(self, service_types: list[CouponServiceType]) -> None:
        self.service_types = [CouponServiceTypeLink(service_type=t) for t in dict.fromkeys(service_types)]

    def is_currently_valid(self, now: datetime | None = None) -> bool:
        now = now or utcnow()
        return (
            self.is_active
            and as_utc(self.valid_from) <= now <= as_utc(self.valid_until)
            and (self.usage_limit is None or self.current_usage_count < self.usage_limit)
        )

    def is_applicable_to_service(self, service_type: str) -> bool:
        return service_type in self.applicable_service_types

    def __repr__(self) -> str:
        return f"<Coupon {self.code} {self.discount_type} {self.discount_value}>"


class CouponServiceTypeLink(Base):
    __tablename__ = "coupon_service_types"

    coupon_id: Mapped[int] = mapped_column(ForeignKey("coupons.id", ondelete="CASCADE"), primary_key=True)
    service_type: Mapped[CouponServiceType] = mapped_column(
        Enum(CouponServiceType, name="coupon_service_type", values_callable=lambda e: [x.value for x in e]),
        primary_key=True,
    )

    coupon: Mapped["Coupon"] = relationship(back_populates="service_types")


class CouponUsage(TimestampMixin, Base):
    __tablename__ = "coupon_usages"

    id: Mapped[int] = mapped_column(primary_key=True)
    coupon_id: Mapped[int] = mapped_column(ForeignKey("coupons.id"), nullable=False)
    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"))
    phone_number: Mapped[str | None] = mapped_column(String(20))
    email: Mapped[str | None] = mapped_column(String(254))
    booking_id: Mapped[int] = mapped_column(ForeignKey("bookings.id"), nullable=False)
    used_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    discount_amount_paise: Mapped[int] = mapped_column(Integer, nullable=False)
    order_value_paise: Mapped[int] = mapped_column(Integer, nullable=False)
    service_type: Mapped[CouponServiceType] = mapped_column(
        Enum(CouponServiceType, name="coupon_service_type", values_callable=lambda e: [x.value for x in e]),
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint("user_id IS NOT NULL OR phone_number IS NOT NULL", name="ck_coupon_usages_identity"),
        Index(
            "uq_coupon_usages_coupon_user",
            "coupon_id",
            "user_id",
            unique=True,
            postgresql_where=text("user_id IS NOT NULL"),
            sqlite_where=text("user_id IS NOT NULL"),
        ),
        Index(
            "uq_coupon_usages_coupon_phone",
            "coupon_id",
            "phone_number",
            unique=True,
            postgresql_where=text("phone_number IS NOT NULL"),
            sqlite_where=text("phone_number IS NOT NULL"),
        ),
        Index("ix_coupon_usages_booking", "booking_id"),
    )

    def __repr__(self) -> str:
        return f"<CouponUsage coupon={self.coupon_id} user={self.user_id} phone={self.phone_number}>"
