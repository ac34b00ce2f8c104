"""Booking amounts, per-country marketplace rules and the cancellation refund policy.

All money is integer minor units. Rounding is half-up, matching what
customers see on the checkout screen.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP

from app.core.config import settings
from app.core.timeutil import as_utc, utcnow

DEFAULT_COMMISSION_RATE = 0.15


@dataclass(frozen=True)
class CountryPricing:
    country: str
    currency: str
    commission_rate: float
    primary_processor: str  # stripe|paypal
    fallback_processor: str | None = None


COUNTRY_PRICING: dict[str, CountryPricing] = {
    "CO": CountryPricing("CO", "COP", 0.15, "stripe", "paypal"),
    "PY": CountryPricing("PY", "PYG", 0.15, "paypal"),
    "UY": CountryPricing("UY", "UYU", 0.15, "paypal"),
    "AR": CountryPricing("AR", "ARS", 0.15, "paypal"),
}

# Currencies with no minor unit at the processors
ZERO_DECIMAL_CURRENCIES = {"PYG"}


def round_half_up(value) -> int:
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def pricing_for_country(country: str | None) -> CountryPricing:
    return COUNTRY_PRICING.get((country or "").upper(), COUNTRY_PRICING["CO"])


def currency_for_country(country: str | None) -> str:
    return pricing_for_country(country).currency


def processor_for_country(country: str | None) -> str:
    return pricing_for_country(country).primary_processor


def commission_rate_for_currency(currency: str | None) -> float:
    for p in COUNTRY_PRICING.values():
        if p.currency == (currency or "").upper():
            return p.commission_rate
    return DEFAULT_COMMISSION_RATE


def calculate_scheduled_end(start: datetime | None, duration_minutes: int | None) -> datetime | None:
    if not start or not duration_minutes:
        return None
    return start + timedelta(minutes=duration_minutes)


def calculate_booking_amount(
    amount: int | None,
    hourly_rate: int | None,
    duration_minutes: int | None,
    minimum: int | None = None,
) -> int:
    """Explicit positive amount wins; otherwise rate x hours with a floor at `minimum`."""
    if minimum is None:
        minimum = settings.MIN_BOOKING_AMOUNT
    if amount and amount > 0:
        return int(amount)
    if hourly_rate and duration_minutes:
        return max(minimum, round_half_up(Decimal(hourly_rate) * Decimal(duration_minutes) / Decimal(60)))
    return minimum


@dataclass
class CancellationPolicy:
    can_cancel: bool
    refund_percentage: int
    reason: str
    hours_until_service: float


def calculate_cancellation_policy(scheduled_start: datetime, status: str, now: datetime | None = None) -> CancellationPolicy:
    now = as_utc(now) or utcnow()
    if status == "completed":
        return CancellationPolicy(False, 0, "Cannot cancel completed services", 0)
    if status == "in_progress":
        return CancellationPolicy(False, 0, "Cannot cancel services that are in progress", 0)
    if status in ("declined", "canceled"):
        return CancellationPolicy(False, 0, f"Cannot cancel a booking that is already {status}", 0)

    hours = (as_utc(scheduled_start) - now).total_seconds() / 3600
    if hours < 0:
        return CancellationPolicy(False, 0, "Cannot cancel past services", hours)
    if hours >= 24:
        return CancellationPolicy(True, 100, "Full refund (cancelled 24+ hours in advance)", hours)
    if hours >= 12:
        return CancellationPolicy(True, 50, "50% refund (cancelled 12-24 hours in advance)", hours)
    if hours >= 4:
        return CancellationPolicy(True, 25, "25% refund (cancelled 4-12 hours in advance)", hours)
    return CancellationPolicy(True, 0, "No refund (cancelled less than 4 hours in advance)", hours)


def calculate_refund_amount(amount: int, refund_percentage: int) -> int:
    return round_half_up(Decimal(amount) * Decimal(refund_percentage) / Decimal(100))
