"""Professional payouts: the twice-weekly batch and on-demand instant cash-outs.

The batch pays every completed booking that is not yet attached to a payout and
finished before the current period closes. Stamping `included_in_payout_id` is
what keeps a booking from being paid twice; a failed transfer clears the stamp
so a later run pays the booking again.

Instant payouts spend `available_balance` (cleared earnings) through the
professional's Stripe Connect account for a fee.
"""
import logging
import uuid
from collections import defaultdict
from datetime import datetime, timedelta, timezone

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.timeutil import as_utc, utcnow
from app.models.booking import Booking, COMPLETED
from app.models.payout import Payout, PayoutTransfer
from app.models.professional import ProfessionalProfile
from app.models.user import User
from app.services.audit_service import record_audit
from app.services.balance_service import deduct_available_balance, get_balance_breakdown, restore_available_balance
from app.services.errors import NotFoundError, RateLimitError, UpstreamError, ValidationError
from app.services.payment_gateway import PaymentGatewayError, get_payment_gateway
from app.services.payout_calculator import (
    calculate_payout_from_bookings,
    completion_time,
    get_current_payout_period,
    is_booking_in_payout_period,
)
from app.services.pricing import round_half_up

logger = logging.getLogger(__name__)

_DAY_NAMES = ["mon", "tue", "wed", "thu", "fri", "sat", "sun"]


def make_batch_id(run_at: datetime) -> str:
    """One batch per payout day, e.g. payout-2025-11-14-fri."""
    return f"payout-{run_at:%Y-%m-%d}-{_DAY_NAMES[run_at.weekday()]}"


def eligible_bookings(db: Session, professional_id: str | None = None, start: datetime | None = None, end: datetime | None = None) -> list[Booking]:
    """Completed, captured bookings not yet attached to a payout.

    With only `end`, everything completed before it qualifies.
    """
    q = db.query(Booking).filter(
        Booking.status == COMPLETED,
        Booking.included_in_payout_id.is_(None),
        Booking.amount_captured.isnot(None),
    )
    if professional_id:
        q = q.filter(Booking.professional_id == professional_id)
    rows = q.order_by(Booking.checked_out_at.asc()).all()
    if start is not None and end is not None:
        return [b for b in rows if is_booking_in_payout_period(b, start, end)]
    if end is not None:
        cutoff = as_utc(end)
        return [b for b in rows if completion_time(b) is not None and completion_time(b) < cutoff]
    return rows


def _payout_out(p: Payout) -> dict:
    return {
        "id": p.id,
        "batchId": p.batch_id,
        "periodStart": as_utc(p.period_start).isoformat(),
        "periodEnd": as_utc(p.period_end).isoformat(),
        "grossAmount": p.gross_amount,
        "commissionAmount": p.commission_amount,
        "netAmount": p.net_amount,
        "currency": p.currency,
        "bookingCount": p.booking_count,
        "status": p.status,
        "createdAt": as_utc(p.created_at).isoformat() if p.created_at else None,
    }


def pending_payout_summary(db: Session, professional_id: str, now: datetime | None = None) -> dict:
    now = as_utc(now) or utcnow()
    profile = db.get(ProfessionalProfile, professional_id)
    currency = profile.currency if profile else settings.DEFAULT_CURRENCY
    period = get_current_payout_period(now)

    pending = eligible_bookings(db, professional_id)
    other = [b for b in pending if b.currency != currency]
    if other:
        logger.warning("Professional %s has %s pending bookings outside %s; excluded from summary", professional_id, len(other), currency)
    pending = [b for b in pending if b.currency == currency]
    current = [b for b in pending if is_booking_in_payout_period(b, period.period_start, period.period_end)]

    recent = (
        db.query(Payout)
        .filter(Payout.professional_id == professional_id)
        .order_by(Payout.created_at.desc())
        .limit(10)
        .all()
    )
    return {
        "currentPeriod": {
            **calculate_payout_from_bookings(current).to_dict(),
            "periodStart": period.period_start.isoformat(),
            "periodEnd": period.period_end.isoformat(),
            "nextPayoutDate": period.next_payout_date.isoformat(),
        },
        "allPending": calculate_payout_from_bookings(pending).to_dict(),
        "recentPayouts": [_payout_out(p) for p in recent],
    }


def run_payout_batch(db: Session, now: datetime | None = None, dry_run: bool = False, gateway=None) -> dict:
    """Create one payout per professional and currency for everything unpaid before the period closes.

    Safe to run again for the same payout day: already stamped bookings are skipped.
    Callers hold the ``payout-batch`` advisory lock so two runs never overlap.
    """
    now = as_utc(now) or utcnow()
    period = get_current_payout_period(now)
    batch_id = make_batch_id(period.next_payout_date)

    groups: dict[tuple[str, str], list[Booking]] = defaultdict(list)
    for b in eligible_bookings(db, end=period.period_end):
        groups[(b.professional_id, b.currency)].append(b)

    summary = {"batchId": batch_id, "payouts": 0, "paid": 0, "pending": 0, "failed": 0, "totalNet": 0, "errors": []}
    if not groups:
        logger.info("Payout batch %s: nothing to pay", batch_id)
        return summary

    for (professional_id, currency), bookings in sorted(groups.items()):
        calc = calculate_payout_from_bookings(bookings)
        payout = Payout(
            id=str(uuid.uuid4()),
            batch_id=batch_id,
            professional_id=professional_id,
            period_start=as_utc(period.period_start),
            period_end=as_utc(period.period_end),
            currency=currency,
            gross_amount=calc.gross_amount,
            commission_amount=calc.commission_amount,
            net_amount=calc.net_amount,
            commission_rate=calc.commission_rate,
            booking_count=calc.booking_count,
            status="pending",
        )
        db.add(payout)
        db.flush()
        db.execute(
            update(Booking)
            .where(Booking.id.in_(calc.booking_ids), Booking.included_in_payout_id.is_(None))
            .values(included_in_payout_id=payout.id)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        summary["payouts"] += 1
        summary["totalNet"] += calc.net_amount

        profile = db.get(ProfessionalProfile, professional_id)
        if dry_run or not profile or not profile.stripe_account_id:
            # paid out manually (PayPal countries, or no connected account yet)
            summary["pending"] += 1
            continue

        try:
            if gateway is None:
                gateway = get_payment_gateway()
            payout.stripe_transfer_id = gateway.transfer(
                calc.net_amount,
                currency,
                profile.stripe_account_id,
                metadata={"batch_id": batch_id, "payout_id": payout.id, "professional_id": professional_id, "booking_count": str(calc.booking_count)},
                idempotency_key=f"payout-{payout.id}-transfer",
            )
            payout.status = "paid"
            summary["paid"] += 1
            logger.info("Payout %s sent: %s %s to %s", payout.id, calc.net_amount, currency, professional_id)
        except PaymentGatewayError as e:
            payout.status = "failed"
            payout.error_message = str(e)
            db.execute(
                update(Booking)
                .where(Booking.included_in_payout_id == payout.id)
                .values(included_in_payout_id=None)
                .execution_options(synchronize_session=False)
            )
            summary["failed"] += 1
            summary["errors"].append({"professionalId": professional_id, "amount": calc.net_amount, "error": str(e)})
            logger.error("Payout transfer failed for professional %s in %s: %s", professional_id, batch_id, e)
        db.commit()

    logger.info(
        "Payout batch %s: payouts=%s paid=%s pending=%s failed=%s",
        batch_id, summary["payouts"], summary["paid"], summary["pending"], summary["failed"],
    )
    return summary


# ---------------------------------------------------------------- instant payouts

def instant_payout_fee(amount: int) -> tuple[int, int]:
    """(fee, net) for cashing out `amount` now."""
    fee = round_half_up(amount * settings.INSTANT_PAYOUT_FEE_PERCENT / 100)
    return fee, amount - fee


def _instant_payouts_since(db: Session, professional_id: str, since: datetime) -> int:
    return (
        db.query(func.count(PayoutTransfer.id))
        .filter(
            PayoutTransfer.professional_id == professional_id,
            PayoutTransfer.payout_type == "instant",
            PayoutTransfer.status != "failed",
            PayoutTransfer.requested_at >= since,
        )
        .scalar()
        or 0
    )


def instant_payout_eligibility(db: Session, professional_id: str, now: datetime | None = None) -> dict:
    now = as_utc(now) or utcnow()
    breakdown = get_balance_breakdown(db, professional_id, now=now)
    profile = db.get(ProfessionalProfile, professional_id)
    available = breakdown["availableBalance"]
    used = _instant_payouts_since(db, professional_id, now - timedelta(hours=24))
    limit = settings.INSTANT_PAYOUT_DAILY_LIMIT
    minimum = settings.INSTANT_PAYOUT_MIN_AMOUNT

    reasons = []
    if available < minimum:
        reasons.append(f"Minimum balance is {minimum} {breakdown['currency']}")
    if used >= limit:
        reasons.append(f"Daily limit reached ({limit} payouts per 24 hours)")
    if not profile or not profile.stripe_account_id:
        reasons.append("Stripe Connect account not set up")

    fee, net = instant_payout_fee(available)
    return {
        "balance": {
            "available": available,
            "pending": breakdown["pendingBalance"],
            "total": breakdown["totalBalance"],
            "currency": breakdown["currency"],
        },
        "eligibility": {"isEligible": not reasons, "reasons": reasons},
        "feeInfo": {
            "feePercentage": settings.INSTANT_PAYOUT_FEE_PERCENT,
            "minAmount": minimum,
            "dailyLimit": limit,
            "usedToday": used,
            "remainingToday": max(0, limit - used),
        },
        "estimate": {"grossAmount": available, "feeAmount": fee, "netAmount": net},
        "pendingClearances": breakdown["pendingClearances"],
    }


def request_instant_payout(db: Session, professional: User, amount: int, gateway=None, now: datetime | None = None) -> dict:
    """Deduct `amount` from available balance and pay it out now, minus the fee.

    The deduction only succeeds if the whole amount is available. A refused
    payout restores the balance and marks the transfer failed.
    """
    now = as_utc(now) or utcnow()
    if amount < settings.INSTANT_PAYOUT_MIN_AMOUNT:
        raise ValidationError(f"Minimum instant payout is {settings.INSTANT_PAYOUT_MIN_AMOUNT}")
    if amount > settings.INSTANT_PAYOUT_MAX_AMOUNT:
        raise ValidationError(f"Maximum instant payout is {settings.INSTANT_PAYOUT_MAX_AMOUNT}")

    # row lock serialises concurrent requests from the same professional (no-op on SQLite)
    profile = (
        db.query(ProfessionalProfile)
        .filter(ProfessionalProfile.profile_id == professional.id)
        .with_for_update()
        .first()
    )
    if not profile:
        raise NotFoundError("Professional profile not found")
    if not profile.stripe_account_id:
        db.rollback()
        raise ValidationError("Stripe Connect account not configured")
    if _instant_payouts_since(db, professional.id, now - timedelta(hours=24)) >= settings.INSTANT_PAYOUT_DAILY_LIMIT:
        db.rollback()
        raise RateLimitError(f"Rate limit exceeded. Maximum {settings.INSTANT_PAYOUT_DAILY_LIMIT} instant payouts per 24 hours.")

    fee, net = instant_payout_fee(amount)
    currency = profile.currency
    account_id = profile.stripe_account_id
    if not deduct_available_balance(db, professional.id, amount, now=now):
        db.rollback()
        raise ValidationError("Insufficient available balance")
    transfer = PayoutTransfer(
        id=str(uuid.uuid4()),
        professional_id=professional.id,
        payout_type="instant",
        currency=currency,
        gross_amount=amount,
        fee_amount=fee,
        fee_percentage=settings.INSTANT_PAYOUT_FEE_PERCENT,
        net_amount=net,
        status="processing",
        requested_at=now,
    )
    db.add(transfer)
    db.commit()

    try:
        result = (gateway or get_payment_gateway()).instant_payout(
            net,
            currency,
            account_id,
            metadata={"transfer_id": transfer.id, "professional_id": professional.id, "payout_type": "instant", "fee_amount": str(fee)},
            idempotency_key=f"instant-payout-{transfer.id}",
        )
    except PaymentGatewayError as e:
        transfer.status = "failed"
        transfer.error_message = str(e)
        transfer.updated_at = now
        restore_available_balance(db, professional.id, amount, now=now)
        db.commit()
        logger.error("Instant payout %s for %s failed, balance restored: %s", transfer.id, professional.id, e)
        raise UpstreamError("Instant payout failed; your balance was restored") from e

    transfer.stripe_payout_id = result["id"]
    transfer.status = "pending"  # the processor reports completion later
    transfer.updated_at = now
    db.commit()
    logger.info("Instant payout %s: %s %s (fee %s) to %s", transfer.id, net, currency, fee, professional.id)
    record_audit(db, professional.id, "payout.instant", "payout_transfer", transfer.id,
                 {"gross": amount, "fee": fee, "net": net, "stripePayoutId": result["id"]})

    db.refresh(profile)
    arrival = result.get("arrival_date")
    return {
        "payout": {
            "transferId": transfer.id,
            "stripePayoutId": result["id"],
            "grossAmount": amount,
            "feeAmount": fee,
            "netAmount": net,
            "currency": currency,
            "status": transfer.status,
            "arrivalDate": datetime.fromtimestamp(arrival, tz=timezone.utc).isoformat() if arrival else None,
            "requestedAt": now.isoformat(),
        },
        "newBalance": {"available": profile.available_balance},
    }
