from sqlalchemy import String, Integer, DateTime, Float, Text, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from app.db.session import Base

class Payout(Base):
    """One professional's settlement for one payout run (batch) and currency."""

    __tablename__ = "payouts"
    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    batch_id: Mapped[str] = mapped_column(String(40), index=True)  # payout-2025-11-14-fri
    professional_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), index=True)
    period_start: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    period_end: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    currency: Mapped[str] = mapped_column(String(3))
    gross_amount: Mapped[int] = mapped_column(Integer, default=0)
    commission_amount: Mapped[int] = mapped_column(Integer, default=0)
    net_amount: Mapped[int] = mapped_column(Integer, default=0)
    commission_rate: Mapped[float] = mapped_column(Float, default=0.15)
    booking_count: Mapped[int] = mapped_column(Integer, default=0)
    status: Mapped[str] = mapped_column(String(20), default="pending")  # pending, paid, failed
    stripe_transfer_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))


class BalanceClearance(Base):
    """One row per completed booking: earnings held in pending balance until `clearance_at`."""

    __tablename__ = "balance_clearances"
    __table_args__ = (UniqueConstraint("booking_id", name="uq_balance_clearances_booking"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    booking_id: Mapped[str] = mapped_column(String(36), ForeignKey("bookings.id"))
    professional_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), index=True)
    amount: Mapped[int] = mapped_column(Integer)
    currency: Mapped[str] = mapped_column(String(3))
    completed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    clearance_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    status: Mapped[str] = mapped_column(String(20), default="pending", index=True)  # pending, cleared
    cleared_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))


class PayoutTransfer(Base):
    """A professional-initiated cash-out of available balance (instant payout)."""

    __tablename__ = "payout_transfers"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    professional_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), index=True)
    payout_type: Mapped[str] = mapped_column(String(20), default="instant")
    currency: Mapped[str] = mapped_column(String(3))
    gross_amount: Mapped[int] = mapped_column(Integer)  # deducted from available balance
    fee_amount: Mapped[int] = mapped_column(Integer, default=0)
    fee_percentage: Mapped[float] = mapped_column(Float, default=0)
    net_amount: Mapped[int] = mapped_column(Integer)  # sent to the professional
    status: Mapped[str] = mapped_column(String(20), default="processing", index=True)  # processing, pending, failed
    stripe_payout_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
