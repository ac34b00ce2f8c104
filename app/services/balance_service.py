"""Professional earnings wallet: pending balance, 24h clearance, available balance.

A completed booking credits the professional's pending balance and queues a
clearance row. The hourly job moves each row's amount to the available
balance once its hold has elapsed.
"""
import logging
import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy import update
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from app.core.config import settings
from app.core.timeutil import as_utc, utcnow
from app.models.payout import BalanceClearance
from app.models.professional import ProfessionalProfile
from app.services.payout_calculator import calculate_commission
from app.services.pricing import commission_rate_for_currency

logger = logging.getLogger(__name__)


@dataclass
class BalanceUpdate:
    success: bool
    available_balance: int = 0
    pending_balance: int = 0
    currency: str = ""
    message: str = ""


@dataclass
class ClearanceBatchResult:
    processed: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"processed": self.processed, "failed": self.failed, "errors": list(self.errors)}


def professional_earnings(amount: int, currency: str) -> int:
    _, net = calculate_commission(amount, commission_rate_for_currency(currency))
    return net


def add_to_pending_balance(
    db: Session,
    professional_id: str,
    booking_id: str,
    amount: int,
    currency: str,
    now: datetime | None = None,
) -> BalanceClearance:
    """Credit pending balance and queue the clearance. Joins the caller's transaction (no commit)."""
    now = as_utc(now) or utcnow()
    earnings = professional_earnings(amount, currency)
    result = db.execute(
        update(ProfessionalProfile)
        .where(ProfessionalProfile.profile_id == professional_id)
        .values(
            pending_balance=ProfessionalProfile.pending_balance + earnings,
            last_balance_update=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.add(ProfessionalProfile(profile_id=professional_id, currency=currency, pending_balance=earnings, last_balance_update=now))

    clearance = BalanceClearance(
        id=str(uuid.uuid4()),
        booking_id=booking_id,
        professional_id=professional_id,
        amount=earnings,
        currency=currency,
        completed_at=now,
        clearance_at=now + timedelta(hours=settings.BALANCE_CLEARANCE_HOURS),
        status="pending",
    )
    db.add(clearance)
    logger.info("Queued %s %s for clearance (booking %s, professional %s)", earnings, currency, booking_id, professional_id)
    return clearance


def _balances(db: Session, professional_id: str) -> tuple[int, int]:
    profile = db.get(ProfessionalProfile, professional_id)
    if not profile:
        return 0, 0
    db.refresh(profile)
    return profile.available_balance or 0, profile.pending_balance or 0


def clear_pending_balance(db: Session, booking_id: str, now: datetime | None = None) -> BalanceUpdate:
    """Move one booking's earnings from pending to available. Commits on success."""
    now = as_utc(now) or utcnow()
    clearance = db.query(BalanceClearance).filter(BalanceClearance.booking_id == booking_id).first()
    if not clearance:
        return BalanceUpdate(False, message=f"Clearance record not found for booking {booking_id}")
    if clearance.status != "pending":
        return BalanceUpdate(False, currency=clearance.currency, message=f"Booking {booking_id} already processed (status: {clearance.status})")

    try:
        claimed = db.execute(
            update(BalanceClearance)
            .where(BalanceClearance.id == clearance.id, BalanceClearance.status == "pending")
            .values(status="cleared", cleared_at=now)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount == 0:
            db.rollback()
            return BalanceUpdate(False, currency=clearance.currency, message=f"Booking {booking_id} already processed")

        moved = db.execute(
            update(ProfessionalProfile)
            .where(ProfessionalProfile.profile_id == clearance.professional_id)
            .values(
                pending_balance=ProfessionalProfile.pending_balance - clearance.amount,
                available_balance=ProfessionalProfile.available_balance + clearance.amount,
                last_balance_update=now,
            )
            .execution_options(synchronize_session=False)
        )
        if moved.rowcount == 0:
            db.rollback()
            return BalanceUpdate(False, currency=clearance.currency, message=f"Professional profile {clearance.professional_id} not found")
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception("Failed to clear balance for booking %s", booking_id)
        return BalanceUpdate(False, currency=clearance.currency, message=f"Failed to clear pending balance: {e}")

    available, pending = _balances(db, clearance.professional_id)
    return BalanceUpdate(True, available, pending, clearance.currency, f"Cleared {clearance.amount} {clearance.currency} to available balance.")


def process_batch_clearances(db: Session, now: datetime | None = None) -> ClearanceBatchResult:
    """Clear every pending row whose hold has elapsed, oldest first. Reports partial failure, never raises."""
    now = as_utc(now) or utcnow()
    result = ClearanceBatchResult()
    try:
        booking_ids = [
            row.booking_id
            for row in db.query(BalanceClearance.booking_id)
            .filter(BalanceClearance.status == "pending", BalanceClearance.clearance_at <= now)
            .order_by(BalanceClearance.clearance_at.asc())
            .all()
        ]
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception("Could not load pending clearances")
        result.errors.append(f"Failed to fetch clearances: {e}")
        return result

    for booking_id in booking_ids:
        try:
            update_ = clear_pending_balance(db, booking_id, now=now)
        except Exception as e:
            db.rollback()
            logger.exception("Unexpected error clearing booking %s", booking_id)
            update_ = BalanceUpdate(False, message=str(e))
        if update_.success:
            result.processed += 1
        else:
            result.failed += 1
            result.errors.append(f"Booking {booking_id}: {update_.message}")

    logger.info("Balance clearance batch: processed=%s failed=%s", result.processed, result.failed)
    return result


def get_balance_breakdown(db: Session, professional_id: str, now: datetime | None = None) -> dict:
    now = as_utc(now) or utcnow()
    profile = db.get(ProfessionalProfile, professional_id)
    available = profile.available_balance if profile else 0
    pending = profile.pending_balance if profile else 0
    currency = profile.currency if profile else settings.DEFAULT_CURRENCY
    rows = (
        db.query(BalanceClearance)
        .filter(BalanceClearance.professional_id == professional_id, BalanceClearance.status == "pending")
        .order_by(BalanceClearance.clearance_at.asc())
        .all()
    )
    clearances = []
    for r in rows:
        seconds_left = (as_utc(r.clearance_at) - now).total_seconds()
        clearances.append({
            "bookingId": r.booking_id,
            "amount": r.amount,
            "currency": r.currency,
            "completedAt": as_utc(r.completed_at).isoformat(),
            "clearanceAt": as_utc(r.clearance_at).isoformat(),
            "hoursRemaining": max(0, math.ceil(seconds_left / 3600)),
        })
    last = as_utc(profile.last_balance_update) if profile else None
    return {
        "professionalId": professional_id,
        "availableBalance": available,
        "pendingBalance": pending,
        "totalBalance": available + pending,
        "currency": currency,
        "lastUpdate": last.isoformat() if last else None,
        "pendingClearances": clearances,
    }


def deduct_available_balance(db: Session, professional_id: str, amount: int, now: datetime | None = None) -> bool:
    """Take `amount` out of available balance only if it is all there. Joins the caller's transaction."""
    now = as_utc(now) or utcnow()
    result = db.execute(
        update(ProfessionalProfile)
        .where(ProfessionalProfile.profile_id == professional_id, ProfessionalProfile.available_balance >= amount)
        .values(available_balance=ProfessionalProfile.available_balance - amount, last_balance_update=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def restore_available_balance(db: Session, professional_id: str, amount: int, now: datetime | None = None) -> None:
    now = as_utc(now) or utcnow()
    db.execute(
        update(ProfessionalProfile)
        .where(ProfessionalProfile.profile_id == professional_id)
        .values(available_balance=ProfessionalProfile.available_balance + amount, last_balance_update=now)
        .execution_options(synchronize_session=False)
    )
