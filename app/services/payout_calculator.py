"""Payout windows and commission math. No I/O.

Payouts run twice a week in the marketplace timezone:
    Tuesday 10:00 pays bookings completed Friday through Monday
    Friday 10:00 pays bookings completed Tuesday through Thursday
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta, time
from decimal import Decimal
from typing import Iterable, Protocol
from zoneinfo import ZoneInfo

from app.core.config import settings
from app.core.timeutil import as_utc, utcnow
from app.services.pricing import DEFAULT_COMMISSION_RATE, commission_rate_for_currency, round_half_up

# Python weekday(): Monday == 0
TUESDAY = 1
FRIDAY = 4


class PayableBooking(Protocol):
    id: str
    amount_captured: int | None
    currency: str
    checked_out_at: datetime | None


@dataclass(frozen=True)
class PayoutPeriod:
    period_start: datetime
    period_end: datetime
    next_payout_date: datetime


@dataclass
class PayoutCalculation:
    gross_amount: int
    commission_amount: int
    net_amount: int
    currency: str
    booking_count: int
    commission_rate: float
    booking_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "grossAmount": self.gross_amount,
            "commissionAmount": self.commission_amount,
            "netAmount": self.net_amount,
            "currency": self.currency,
            "bookingCount": self.booking_count,
            "commissionRate": self.commission_rate,
            "bookingIds": list(self.booking_ids),
        }


def _days_since(weekday: int, target: int) -> int:
    return (weekday - target) % 7


def _days_until(weekday: int, target: int) -> int:
    return (target - weekday) % 7


def _midnight(d: datetime, tz: ZoneInfo) -> datetime:
    return datetime.combine(d.date(), time(0, 0), tzinfo=tz)


def get_current_payout_period(now: datetime | None = None, tz_name: str | None = None, payout_hour: int | None = None) -> PayoutPeriod:
    """Return the open settlement window for `now`, in the payout timezone.

    On a payout day the window ends at that day's midnight, so it has
    already closed by the time the 10:00 run starts.
    """
    tz = ZoneInfo(tz_name or settings.PAYOUT_TIMEZONE)
    hour = settings.PAYOUT_HOUR if payout_hour is None else payout_hour
    local = (as_utc(now) or utcnow()).astimezone(tz)
    wd = local.weekday()

    if wd in (6, 0, TUESDAY):  # Sunday, Monday, Tuesday
        start_day, payout_day = FRIDAY, TUESDAY
    else:
        start_day, payout_day = TUESDAY, FRIDAY

    start = _midnight(local - timedelta(days=_days_since(wd, start_day)), tz)
    end = _midnight(local + timedelta(days=_days_until(wd, payout_day)), tz)
    return PayoutPeriod(period_start=start, period_end=end, next_payout_date=end.replace(hour=hour))


def completion_time(booking) -> datetime | None:
    return as_utc(getattr(booking, "checked_out_at", None) or getattr(booking, "completed_at", None))


def is_booking_in_payout_period(booking, period_start: datetime, period_end: datetime) -> bool:
    """Half-open [start, end) on the check-out time."""
    done = completion_time(booking)
    if done is None:
        return False
    return as_utc(period_start) <= done < as_utc(period_end)


def calculate_commission(gross_amount: int, commission_rate: float = DEFAULT_COMMISSION_RATE) -> tuple[int, int]:
    commission = round_half_up(Decimal(gross_amount) * Decimal(str(commission_rate)))
    return commission, gross_amount - commission


def calculate_payout_from_bookings(bookings: Iterable[PayableBooking], commission_rate: float | None = None) -> PayoutCalculation:
    """Fold captured amounts into gross/commission/net. Order of `bookings` does not matter."""
    bookings = list(bookings)
    if not bookings:
        rate = DEFAULT_COMMISSION_RATE if commission_rate is None else commission_rate
        return PayoutCalculation(0, 0, 0, settings.DEFAULT_CURRENCY, 0, rate, [])

    currencies = {b.currency for b in bookings}
    if len(currencies) > 1:
        raise ValueError(f"Cannot combine bookings in different currencies: {sorted(currencies)}")
    currency = currencies.pop()
    rate = commission_rate_for_currency(currency) if commission_rate is None else commission_rate

    gross = sum(int(b.amount_captured or 0) for b in bookings)
    commission, net = calculate_commission(gross, rate)
    return PayoutCalculation(
        gross_amount=gross,
        commission_amount=commission,
        net_amount=net,
        currency=currency,
        booking_count=len(bookings),
        commission_rate=rate,
        booking_ids=sorted(b.id for b in bookings),
    )
