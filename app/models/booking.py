from sqlalchemy import String, Integer, DateTime, Float, Text, JSON, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from app.db.session import Base

PENDING_PAYMENT = "pending_payment"
AUTHORIZED = "authorized"
CONFIRMED = "confirmed"
IN_PROGRESS = "in_progress"
COMPLETED = "completed"
DECLINED = "declined"
CANCELED = "canceled"

TERMINAL_STATUSES = (COMPLETED, DECLINED, CANCELED)


class Booking(Base):
    __tablename__ = "bookings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    customer_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), index=True)
    professional_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), index=True)

    scheduled_start: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    scheduled_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Money is stored in minor units of `currency`
    currency: Mapped[str] = mapped_column(String(3), default="COP")
    amount_estimated: Mapped[int] = mapped_column(Integer, default=0)
    amount_authorized: Mapped[int | None] = mapped_column(Integer, nullable=True)
    amount_captured: Mapped[int | None] = mapped_column(Integer, nullable=True)
    refund_amount: Mapped[int | None] = mapped_column(Integer, nullable=True)
    service_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    service_hourly_rate: Mapped[int | None] = mapped_column(Integer, nullable=True)
    address: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    special_instructions: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(String(30), default=PENDING_PAYMENT, index=True)

    payment_provider: Mapped[str] = mapped_column(String(12), default="stripe")  # stripe|paypal
    stripe_payment_intent_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    stripe_payment_status: Mapped[str | None] = mapped_column(String(40), nullable=True)
    paypal_order_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    paypal_capture_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    payment_status: Mapped[str] = mapped_column(String(20), default="unpaid")  # unpaid, authorized, paid, refunded, canceled

    checked_in_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    check_in_latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    check_in_longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    check_in_gps_status: Mapped[str | None] = mapped_column(String(12), nullable=True)  # verified|rejected|skipped
    checked_out_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    check_out_latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    check_out_longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    check_out_gps_status: Mapped[str | None] = mapped_column(String(12), nullable=True)
    actual_duration_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    completion_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    decline_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    canceled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    rebooked_from_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    included_in_payout_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
