"""Payment model: one row per provider order raised for a booking."""

import enum

from sqlalchemy import Enum, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from resortbook.models.base import Base, TimestampMixin


class PaymentOrderStatus(enum.StrEnum):
    CREATED = "created"
    ATTEMPTED = "attempted"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"
    PARTIAL_REFUND = "partial_refund"


# Orders that may still be paid; at most one per booking
OPEN_ORDER_STATUSES = (PaymentOrderStatus.CREATED, PaymentOrderStatus.ATTEMPTED)


class Payment(TimestampMixin, Base):
    __tablename__ = "payments"

    id: Mapped[int] = mapped_column(primary_key=True)
    booking_id: Mapped[int] = mapped_column(ForeignKey("bookings.id"), nullable=False)
    provider_order_id: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    provider_payment_id: Mapped[str | None] = mapped_column(String(100), unique=True)
    signature: Mapped[str | None] = mapped_column(String(200))
    amount_paise: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[PaymentOrderStatus] = mapped_column(
        Enum(PaymentOrderStatus, name="payment_order_status", values_callable=lambda e: [x.value for x in e]),
        default=PaymentOrderStatus.CREATED,
        nullable=False,
    )
    payment_method: Mapped[str | None] = mapped_column(String(50))
    failure_reason: Mapped[str | None] = mapped_column(Text)
    refund_amount_paise: Mapped[int | None] = mapped_column(Integer)
    refund_id: Mapped[str | None] = mapped_column(String(100))

    __table_args__ = (Index("ix_payments_booking_status", "booking_id", "status"),)

    def __repr__(self) -> str:
        return f"<Payment {self.provider_order_id} {self.status} {self.amount_paise}p>"
