"""Booking lifecycle.

    pending_payment -> authorized -> confirmed -> in_progress -> completed
    pending_payment | authorized -> declined
    pending_payment | authorized | confirmed -> canceled

Every transition re-reads the booking, checks the actor and the exact current
status, then writes with a compare-and-swap on the status column so two
concurrent requests cannot both win. Emails, pushes and audit rows are queued
only after the state change is committed and never fail the request.
"""
import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import update
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from app.core.config import settings
from app.core.timeutil import as_utc, utcnow
from app.models.booking import (
    Booking,
    PENDING_PAYMENT,
    AUTHORIZED,
    CONFIRMED,
    IN_PROGRESS,
    COMPLETED,
    DECLINED,
    CANCELED,
)
from app.models.professional import ProfessionalProfile
from app.models.user import User, ROLE_ADMIN, ROLE_CUSTOMER, ROLE_PROFESSIONAL
from app.services import gps
from app.services.audit_service import record_audit
from app.services.balance_service import add_to_pending_balance
from app.services.email_service import queue_email
from app.services.errors import AuthorizationError, ConflictError, NotFoundError, UpstreamError, ValidationError
from app.services.notification_service import notify
from app.services.payment_gateway import PaymentGatewayError, get_payment_gateway
from app.services.paypal_client import PayPalError, get_paypal_client
from app.services.pricing import (
    calculate_booking_amount,
    calculate_cancellation_policy,
    calculate_refund_amount,
    calculate_scheduled_end,
    currency_for_country,
    processor_for_country,
)

logger = logging.getLogger(__name__)

CAPTURE_WRITE_ATTEMPTS = 3


@dataclass
class BookingCreated:
    booking: Booking
    client_secret: str | None


# ---------------------------------------------------------------- helpers

def load_booking(db: Session, booking_id: str) -> Booking:
    b = db.get(Booking, booking_id)
    if not b:
        raise NotFoundError("Booking not found")
    return b


def require_professional(b: Booking, actor: User) -> None:
    if b.professional_id != actor.id:
        raise AuthorizationError("Only the assigned professional can perform this action")


def require_customer(b: Booking, actor: User) -> None:
    if b.customer_id != actor.id:
        raise AuthorizationError("Only the customer who made this booking can perform this action")


def require_status(b: Booking, allowed: tuple[str, ...], action: str) -> None:
    if b.status not in allowed:
        raise ValidationError(f"Cannot {action} booking with status: {b.status}")


def _require_coordinates(latitude: float, longitude: float) -> gps.Coordinates:
    if not gps.is_valid_coordinate(latitude, longitude):
        raise ValidationError("Invalid coordinates: latitude must be within [-90, 90] and longitude within [-180, 180]")
    return gps.Coordinates(float(latitude), float(longitude))


def swap_status(db: Session, b: Booking, expected: str, new_status: str, **values) -> None:
    """UPDATE bookings SET status=:new ... WHERE id=:id AND status=:expected. Caller commits."""
    result = db.execute(
        update(Booking)
        .where(Booking.id == b.id, Booking.status == expected)
        .values(status=new_status, **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        logger.warning("Booking %s: lost status race (%s -> %s)", b.id, expected, new_status)
        raise ConflictError("Booking status changed concurrently, reload and try again")


def commit_transition(db: Session, b: Booking, expected: str, new_status: str, **values) -> Booking:
    swap_status(db, b, expected, new_status, **values)
    db.commit()
    db.refresh(b)
    logger.info("Booking %s: %s -> %s", b.id, expected, new_status)
    return b


def _user(db: Session, user_id: str) -> User | None:
    return db.get(User, user_id)


def _email(db: Session, user: User | None, subject: str, body: str, booking: Booking) -> None:
    if user and user.email:
        queue_email(db, user.email, subject, body, related_booking_id=booking.id)


def _booking_link(b: Booking) -> str:
    return f"{settings.CLIENT_BASE_URL}/bookings/{b.id}" if settings.CLIENT_BASE_URL else ""


def _when(b: Booking) -> str:
    start = as_utc(b.scheduled_start)
    return start.strftime("%Y-%m-%d %H:%M UTC") if start else "(unscheduled)"


# ---------------------------------------------------------------- reads

def get_booking(db: Session, actor: User, booking_id: str) -> Booking:
    b = load_booking(db, booking_id)
    if actor.role != ROLE_ADMIN and actor.id not in (b.customer_id, b.professional_id):
        raise AuthorizationError("You do not have access to this booking")
    return b


def list_bookings(db: Session, actor: User, status: str | None = None, limit: int = 100) -> list[Booking]:
    q = db.query(Booking)
    if actor.role == ROLE_PROFESSIONAL:
        q = q.filter(Booking.professional_id == actor.id)
    elif actor.role != ROLE_ADMIN:
        q = q.filter(Booking.customer_id == actor.id)
    if status:
        q = q.filter(Booking.status == status)
    return q.order_by(Booking.scheduled_start.desc()).limit(limit).all()


# ---------------------------------------------------------------- create

def _ensure_stripe_customer(db: Session, customer: User, gateway) -> str:
    if customer.stripe_customer_id:
        return customer.stripe_customer_id
    try:
        customer.stripe_customer_id = gateway.ensure_customer(customer.email, customer.id)
    except PaymentGatewayError as e:
        logger.error("Could not create processor customer for %s: %s", customer.id, e)
        raise UpstreamError("Payment processor unavailable, please try again") from e
    db.commit()
    return customer.stripe_customer_id


def create_booking(
    db: Session,
    customer: User,
    *,
    professional_id: str,
    scheduled_start: datetime,
    duration_minutes: int | None = None,
    amount: int | None = None,
    currency: str | None = None,
    service_name: str | None = None,
    service_hourly_rate: int | None = None,
    address: dict | None = None,
    special_instructions: str | None = None,
    payment_provider: str | None = None,
    rebooked_from_id: str | None = None,
    gateway=None,
    now: datetime | None = None,
) -> BookingCreated:
    """Insert a booking in pending_payment and, for card payments, hold the funds.

    The insert and the authorization share one database transaction: if the
    processor refuses, nothing is persisted. If the commit itself fails after
    the processor accepted, the authorization is released.
    """
    now = as_utc(now) or utcnow()
    if customer.role != ROLE_CUSTOMER:
        raise AuthorizationError("Only customers can create bookings")
    if professional_id == customer.id:
        raise ValidationError("You cannot book yourself")

    professional = _user(db, professional_id)
    if not professional or professional.role != ROLE_PROFESSIONAL or not professional.is_active:
        raise NotFoundError("Professional not found")

    start = as_utc(scheduled_start)
    if start is None or start <= now:
        raise ValidationError("Scheduled start must be in the future")
    if duration_minutes is not None and duration_minutes <= 0:
        raise ValidationError("Duration must be positive")

    profile = db.get(ProfessionalProfile, professional_id)
    hourly_rate = service_hourly_rate or (profile.hourly_rate if profile else None)
    currency = (currency or (profile.currency if profile else None) or currency_for_country(customer.country)).upper()
    provider = payment_provider or processor_for_country(customer.country)
    if provider not in ("stripe", "paypal"):
        raise ValidationError(f"Unsupported payment provider: {provider}")
    total = calculate_booking_amount(amount, hourly_rate, duration_minutes)

    gateway = gateway or get_payment_gateway()
    customer_ref = _ensure_stripe_customer(db, customer, gateway) if provider == "stripe" else None

    booking = Booking(
        id=str(uuid.uuid4()),
        customer_id=customer.id,
        professional_id=professional_id,
        scheduled_start=start,
        scheduled_end=calculate_scheduled_end(start, duration_minutes),
        duration_minutes=duration_minutes,
        currency=currency,
        amount_estimated=total,
        service_name=service_name,
        service_hourly_rate=hourly_rate,
        address=address,
        special_instructions=special_instructions,
        status=PENDING_PAYMENT,
        payment_provider=provider,
        payment_status="unpaid",
        rebooked_from_id=rebooked_from_id,
    )
    db.add(booking)
    db.flush()

    client_secret = None
    intent = None
    if provider == "stripe":
        try:
            intent = gateway.authorize(
                total,
                currency,
                customer_ref,
                metadata={"booking_id": booking.id, "profile_id": customer.id, "professional_id": professional_id},
                idempotency_key=f"booking-{booking.id}-authorize",
            )
        except PaymentGatewayError as e:
            db.rollback()
            logger.error("Authorization failed for new booking (customer %s, amount %s %s): %s", customer.id, total, currency, e)
            raise UpstreamError("Payment authorization failed") from e
        booking.stripe_payment_intent_id = intent.id
        booking.stripe_payment_status = intent.status
        booking.amount_authorized = total
        client_secret = intent.client_secret

    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception("Booking insert failed after authorization (intent %s)", intent.id if intent else None)
        if intent is not None:
            try:
                gateway.cancel(intent.id)
            except PaymentGatewayError:
                logger.error("Could not release orphaned authorization %s", intent.id, exc_info=True)
        raise UpstreamError("Could not save booking") from e
    db.refresh(booking)
    logger.info("Booking %s created by %s for %s (%s %s via %s)", booking.id, customer.id, professional_id, total, currency, provider)

    notify(db, professional_id, "New booking request", f"{customer.full_name or 'A customer'} requested {service_name or 'a service'} on {_when(booking)}",
           {"bookingId": booking.id, "type": "booking_created"})
    _email(db, professional, "New booking request",
           f"You have a new booking request for {_when(booking)}.\n{_booking_link(booking)}", booking)
    record_audit(db, customer.id, "booking.create", "booking", booking.id,
                 {"amount": total, "currency": currency, "provider": provider, "rebookedFrom": rebooked_from_id})
    return BookingCreated(booking=booking, client_secret=client_secret)


def mark_payment_authorized(db: Session, intent_id: str, amount_capturable: int | None = None) -> Booking | None:
    """Processor confirmed the hold. Idempotent: only moves bookings still in pending_payment."""
    b = db.query(Booking).filter(Booking.stripe_payment_intent_id == intent_id).first()
    if not b:
        logger.warning("Authorization for unknown intent %s", intent_id)
        return None
    if b.status != PENDING_PAYMENT:
        return b
    commit_transition(
        db, b, PENDING_PAYMENT, AUTHORIZED,
        payment_status="authorized",
        stripe_payment_status="requires_capture",
        amount_authorized=amount_capturable if amount_capturable is not None else b.amount_authorized,
    )
    notify(db, b.professional_id, "Booking awaiting your confirmation", f"Payment is held for {_when(b)}. Accept or decline.",
           {"bookingId": b.id, "type": "booking_authorized"})
    record_audit(db, "stripe", "booking.authorized", "booking", b.id, {"intent": intent_id})
    return b


def mirror_payment_status(db: Session, intent_id: str, status: str) -> Booking | None:
    b = db.query(Booking).filter(Booking.stripe_payment_intent_id == intent_id).first()
    if not b:
        return None
    b.stripe_payment_status = status
    if status == "canceled" and b.payment_status in ("unpaid", "authorized"):
        b.payment_status = "canceled"
    db.commit()
    return b


# ---------------------------------------------------------------- professional actions

def accept_booking(db: Session, actor: User, booking_id: str) -> Booking:
    b = load_booking(db, booking_id)
    require_professional(b, actor)
    require_status(b, (AUTHORIZED,), "accept")
    commit_transition(db, b, AUTHORIZED, CONFIRMED)

    customer = _user(db, b.customer_id)
    _email(db, customer, "Your booking is confirmed",
           f"{actor.full_name or 'Your professional'} confirmed your booking for {_when(b)}.\n{_booking_link(b)}", b)
    notify(db, b.customer_id, "Booking confirmed", f"{actor.full_name or 'Your professional'} accepted your booking",
           {"bookingId": b.id, "type": "booking_confirmed"})
    record_audit(db, actor.id, "booking.accept", "booking", b.id)
    return b


def decline_booking(db: Session, actor: User, booking_id: str, reason: str | None = None, gateway=None, paypal=None) -> Booking:
    b = load_booking(db, booking_id)
    require_professional(b, actor)
    require_status(b, (AUTHORIZED, PENDING_PAYMENT), "decline")
    commit_transition(db, b, b.status, DECLINED, decline_reason=reason)

    # releasing the money is best-effort; the decline stands either way
    try:
        if b.stripe_payment_intent_id:
            (gateway or get_payment_gateway()).cancel(b.stripe_payment_intent_id)
            b.payment_status = "canceled"
            b.stripe_payment_status = "canceled"
            db.commit()
        elif b.paypal_capture_id and b.payment_status == "paid":
            (paypal or get_paypal_client()).refund_capture(capture_id=b.paypal_capture_id, amount=None, currency=b.currency)
            b.payment_status = "refunded"
            b.refund_amount = b.amount_captured
            db.commit()
    except (PaymentGatewayError, PayPalError, SQLAlchemyError):
        db.rollback()
        logger.warning("Booking %s declined but releasing payment failed", b.id, exc_info=True)

    customer = _user(db, b.customer_id)
    _email(db, customer, "Your booking was declined",
           f"Your booking for {_when(b)} was declined.{(' Reason: ' + reason) if reason else ''}\n"
           "Any hold on your card has been released.", b)
    notify(db, b.customer_id, "Booking declined", "Your professional could not take this booking", {"bookingId": b.id, "type": "booking_declined"})
    record_audit(db, actor.id, "booking.decline", "booking", b.id, {"reason": reason})
    return b


def check_in(db: Session, actor: User, booking_id: str, latitude: float, longitude: float, now: datetime | None = None) -> tuple[Booking, gps.GPSVerification]:
    here = _require_coordinates(latitude, longitude)
    now = as_utc(now) or utcnow()
    b = load_booking(db, booking_id)
    require_professional(b, actor)
    require_status(b, (CONFIRMED,), "check in to")

    verification = gps.verify_booking_location(here, b.address, settings.GPS_MAX_DISTANCE_METERS)
    if verification.status == gps.STATUS_REJECTED:
        logger.warning("Booking %s: check-in %sm from service address (max %sm)", b.id, verification.distance, verification.max_distance)
    else:
        logger.info("Booking %s: check-in GPS %s (distance=%s)", b.id, verification.status, verification.distance)

    commit_transition(
        db, b, CONFIRMED, IN_PROGRESS,
        checked_in_at=now,
        check_in_latitude=here.latitude,
        check_in_longitude=here.longitude,
        check_in_gps_status=verification.status,
    )
    notify(db, b.customer_id, "Service started", f"{actor.full_name or 'Your professional'} has checked in",
           {"bookingId": b.id, "type": "service_started"})
    record_audit(db, actor.id, "booking.check_in", "booking", b.id, {"gps": verification.to_dict()})
    return b, verification


def _capture_for_checkout(b: Booking, gateway) -> int:
    if b.payment_provider == "paypal":
        # PayPal orders are captured when the customer pays
        return b.amount_captured or b.amount_estimated
    amount = b.amount_authorized or b.amount_estimated
    try:
        intent = gateway.capture(b.stripe_payment_intent_id, amount, idempotency_key=f"booking-{b.id}-checkout-capture")
    except PaymentGatewayError as e:
        logger.error("Booking %s: capture of %s %s failed: %s", b.id, amount, b.currency, e)
        raise UpstreamError("Payment capture failed") from e
    logger.info("Booking %s: captured %s %s (intent %s)", b.id, intent.amount_received or amount, b.currency, intent.id)
    return intent.amount_received or amount


def check_out(
    db: Session,
    actor: User,
    booking_id: str,
    latitude: float,
    longitude: float,
    completion_notes: str | None = None,
    gateway=None,
    now: datetime | None = None,
) -> tuple[Booking, gps.GPSVerification]:
    here = _require_coordinates(latitude, longitude)
    now = as_utc(now) or utcnow()
    b = load_booking(db, booking_id)
    require_professional(b, actor)
    require_status(b, (IN_PROGRESS,), "check out of")
    if not b.checked_in_at:
        raise ValidationError("Booking has no check-in time")
    has_payment = b.stripe_payment_intent_id if b.payment_provider == "stripe" else b.payment_status == "paid"
    if not has_payment:
        raise ValidationError("Booking has no payment to capture")

    verification = gps.verify_booking_location(here, b.address, settings.GPS_MAX_DISTANCE_METERS)
    if verification.status == gps.STATUS_REJECTED:
        logger.warning("Booking %s: check-out %sm from service address (max %sm)", b.id, verification.distance, verification.max_distance)

    captured = _capture_for_checkout(b, gateway or get_payment_gateway())
    minutes = max(0, round((now - as_utc(b.checked_in_at)).total_seconds() / 60))
    values = dict(
        checked_out_at=now,
        check_out_latitude=here.latitude,
        check_out_longitude=here.longitude,
        check_out_gps_status=verification.status,
        actual_duration_minutes=minutes,
        completion_notes=completion_notes,
        amount_captured=captured,
        payment_status="paid",
        stripe_payment_status="succeeded" if b.payment_provider == "stripe" else b.stripe_payment_status,
    )
    booking_id, professional_id, currency = b.id, b.professional_id, b.currency

    # money has moved; retry the write before giving up
    for attempt in range(1, CAPTURE_WRITE_ATTEMPTS + 1):
        try:
            swap_status(db, b, IN_PROGRESS, COMPLETED, **values)
            add_to_pending_balance(db, professional_id, booking_id, captured, currency, now=now)
            db.commit()
            break
        except ConflictError:
            logger.critical("Booking %s: captured %s %s but status changed concurrently", booking_id, captured, currency)
            raise
        except SQLAlchemyError:
            db.rollback()
            if attempt == CAPTURE_WRITE_ATTEMPTS:
                logger.critical("Booking %s: captured %s %s but could not record completion", booking_id, captured, currency, exc_info=True)
                raise UpstreamError("Payment captured but booking update failed; support has been alerted")
            time.sleep(0.2 * 2 ** (attempt - 1))
    db.refresh(b)
    logger.info("Booking %s: in_progress -> completed (%s min, %s %s)", b.id, minutes, captured, currency)

    customer = _user(db, b.customer_id)
    _email(db, customer, "Your service is complete",
           f"Thanks for booking with Casaora. You were charged {captured} {currency} (minor units).\n{_booking_link(b)}", b)
    _email(db, actor, "Service completed",
           f"You completed the booking on {_when(b)}. Earnings become available after the clearance period.", b)
    notify(db, b.customer_id, "Service completed", "How did it go? Leave a review or book again.",
           {"bookingId": b.id, "type": "service_completed"})
    record_audit(db, actor.id, "booking.check_out", "booking", b.id,
                 {"captured": captured, "durationMinutes": minutes, "gps": verification.to_dict()})
    return b, verification


# ---------------------------------------------------------------- customer actions

def _release_for_cancel(b: Booking, claimed_from: str, base: int, refund: int, refund_percentage: int, gateway, paypal) -> dict:
    """Move the money for an already canceled booking. Returns the payment columns to record."""
    if b.payment_provider == "stripe" and b.stripe_payment_intent_id:
        gateway = gateway or get_payment_gateway()
        if claimed_from == PENDING_PAYMENT or refund_percentage == 100:
            gateway.cancel(b.stripe_payment_intent_id)
            return dict(payment_status="canceled", stripe_payment_status="canceled", refund_amount=base)
        kept = base - refund
        intent = gateway.capture(b.stripe_payment_intent_id, kept, idempotency_key=f"booking-{b.id}-cancel-capture")
        return dict(payment_status="paid", stripe_payment_status=intent.status, amount_captured=kept)
    if b.payment_provider == "paypal" and b.payment_status == "paid" and b.paypal_capture_id and refund > 0:
        (paypal or get_paypal_client()).refund_capture(capture_id=b.paypal_capture_id, amount=refund, currency=b.currency)
        return dict(payment_status="refunded" if refund == base else "partially_refunded", amount_captured=base - refund)
    return {}


def cancel_booking(
    db: Session,
    actor: User,
    booking_id: str,
    reason: str | None = None,
    gateway=None,
    paypal=None,
    now: datetime | None = None,
) -> tuple[Booking, dict]:
    """Cancel on behalf of the customer, applying the time-based refund policy.

    The status is claimed first; the hold is released or partly captured only
    once this request owns the cancellation. A failed payment step leaves the
    booking canceled with its payment columns untouched for follow-up.
    """
    now = as_utc(now) or utcnow()
    b = load_booking(db, booking_id)
    require_customer(b, actor)
    require_status(b, (PENDING_PAYMENT, AUTHORIZED, CONFIRMED), "cancel")
    expected = b.status
    policy = calculate_cancellation_policy(b.scheduled_start, expected, now)
    if not policy.can_cancel:
        raise ValidationError(policy.reason)

    base = b.amount_captured or b.amount_authorized or b.amount_estimated
    refund = calculate_refund_amount(base, policy.refund_percentage)
    holds_money = bool(b.stripe_payment_intent_id) or (b.payment_provider == "paypal" and b.payment_status == "paid")
    commit_transition(
        db, b, expected, CANCELED,
        canceled_at=now,
        cancellation_reason=reason,
        refund_amount=refund if holds_money else 0,
    )

    payment_processed = True
    try:
        payment = _release_for_cancel(b, expected, base, refund, policy.refund_percentage, gateway, paypal)
    except (PaymentGatewayError, PayPalError) as e:
        payment_processed = False
        logger.error("Booking %s canceled but the payment step failed: %s", b.id, e)
        record_audit(db, actor.id, "booking.cancel_payment_failed", "booking", b.id, {"error": str(e), "refund": refund})
    else:
        if payment:
            for column, value in payment.items():
                setattr(b, column, value)
            db.commit()

    professional = _user(db, b.professional_id)
    _email(db, professional, "Booking canceled", f"The customer canceled the booking for {_when(b)}.", b)
    _email(db, actor, "Your booking was canceled", f"{policy.reason}. Refund: {b.refund_amount or 0} {b.currency} (minor units).", b)
    notify(db, b.professional_id, "Booking canceled", "A customer canceled their booking", {"bookingId": b.id, "type": "booking_canceled"})
    record_audit(db, actor.id, "booking.cancel", "booking", b.id,
                 {"refundPercentage": policy.refund_percentage, "refund": b.refund_amount, "reason": reason})
    return b, {
        "canCancel": True,
        "refundPercentage": policy.refund_percentage,
        "refundAmount": b.refund_amount or 0,
        "reason": policy.reason,
        "hoursUntilService": round(policy.hours_until_service, 2),
        "paymentProcessed": payment_processed,
    }


def rebook(db: Session, actor: User, booking_id: str, scheduled_start: datetime, gateway=None, now: datetime | None = None) -> BookingCreated:
    """New pending_payment booking copying professional, address, instructions and pricing from a completed one."""
    source = load_booking(db, booking_id)
    require_customer(source, actor)
    require_status(source, (COMPLETED,), "rebook")
    return create_booking(
        db,
        actor,
        professional_id=source.professional_id,
        scheduled_start=scheduled_start,
        duration_minutes=source.duration_minutes,
        amount=source.amount_estimated,
        currency=source.currency,
        service_name=source.service_name,
        service_hourly_rate=source.service_hourly_rate,
        address=source.address,
        special_instructions=source.special_instructions,
        payment_provider=source.payment_provider,
        rebooked_from_id=source.id,
        gateway=gateway,
        now=now,
    )
