from sqlalchemy import String, DateTime, Integer, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from app.db.session import Base

class ProfessionalProfile(Base):
    __tablename__ = "professional_profiles"

    profile_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), primary_key=True)
    slug: Mapped[str | None] = mapped_column(String(80), unique=True, nullable=True)  # vanity URL
    hourly_rate: Mapped[int] = mapped_column(Integer, default=0)
    currency: Mapped[str] = mapped_column(String(3), default="COP")
    stripe_account_id: Mapped[str | None] = mapped_column(String(64), nullable=True)  # Stripe Connect destination

    # Earnings wallet (minor units)
    available_balance: Mapped[int] = mapped_column(Integer, default=0)
    pending_balance: Mapped[int] = mapped_column(Integer, default=0)
    last_balance_update: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
