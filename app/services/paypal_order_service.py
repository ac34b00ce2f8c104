import logging
import uuid
from datetime import datetime, timedelta

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.timeutil import as_utc, utcnow
from app.models.booking import Booking, PENDING_PAYMENT, AUTHORIZED
from app.models.user import User
from app.models.webhook_event import PaymentWebhookEvent
from app.services.audit_service import record_audit
from app.services.booking_service import load_booking, require_customer, require_status, commit_transition
from app.services.errors import NotFoundError, ServiceError, UpstreamError, ValidationError
from app.services.notification_service import notify
from app.services.paypal_client import PayPalError, first_capture_id, get_paypal_client, is_capture_completed, parse_amount

logger = logging.getLogger(__name__)

CAPTURE_EVENTS = {"PAYMENT.CAPTURE.COMPLETED", "PAYMENT.CAPTURE.DENIED", "PAYMENT.CAPTURE.REFUNDED"}


def create_order(db: Session, actor: User, booking_id: str, paypal=None) -> dict:
    b = load_booking(db, booking_id)
    require_customer(b, actor)
    require_status(b, (PENDING_PAYMENT,), "pay for")
    if b.payment_provider != "paypal":
        raise ValidationError("Booking is not paid through PayPal")
    if b.paypal_order_id:
        return {"orderId": b.paypal_order_id, "bookingId": b.id, "status": "CREATED"}

    try:
        order = (paypal or get_paypal_client()).create_order(amount=b.amount_estimated, currency=b.currency, reference_id=b.id)
    except PayPalError as e:
        logger.error("PayPal order creation failed for booking %s: %s", b.id, e)
        raise UpstreamError("Could not create PayPal order") from e
    b.paypal_order_id = order["id"]
    db.commit()
    logger.info("PayPal order %s created for booking %s", order["id"], b.id)
    return {"orderId": order["id"], "bookingId": b.id, "status": order.get("status")}


def capture_order(db: Session, actor: User, order_id: str, paypal=None) -> dict:
    """Capture an approved order. Calling it again on a paid booking changes nothing."""
    b = db.query(Booking).filter(Booking.paypal_order_id == order_id).first()
    if not b:
        raise NotFoundError("Booking not found for this order")
    require_customer(b, actor)

    if b.payment_status == "paid":
        return {"ok": True, "alreadyCaptured": True, "bookingId": b.id, "captureId": b.paypal_capture_id}
    require_status(b, (PENDING_PAYMENT,), "capture payment for")

    client = paypal or get_paypal_client()
    try:
        order = client.capture_order(order_id)
    except PayPalError as e:
        # a retried capture may have completed on PayPal's side already
        logger.warning("PayPal capture of %s failed, checking order state: %s", order_id, e)
        try:
            order = client.get_order(order_id)
        except PayPalError:
            raise UpstreamError("PayPal capture failed") from e
    if not is_capture_completed(order):
        logger.error("PayPal order %s not completed after capture (status=%s)", order_id, order.get("status"))
        raise UpstreamError("PayPal capture not completed")

    capture_id = first_capture_id(order)
    commit_transition(
        db, b, PENDING_PAYMENT, AUTHORIZED,
        payment_status="paid",
        paypal_capture_id=capture_id,
        amount_authorized=b.amount_estimated,
        amount_captured=b.amount_estimated,
    )
    notify(db, b.professional_id, "Booking awaiting your confirmation", "The customer paid. Accept or decline the booking.",
           {"bookingId": b.id, "type": "booking_authorized"})
    record_audit(db, actor.id, "booking.paypal_capture", "booking", b.id, {"orderId": order_id, "captureId": capture_id})
    return {"ok": True, "alreadyCaptured": False, "bookingId": b.id, "captureId": capture_id}


# ---------------------------------------------------------------- webhooks

MAX_WEBHOOK_AGE = timedelta(minutes=5)


def _event_time(event: dict) -> datetime | None:
    raw = event.get("create_time")
    if not raw:
        return None
    try:
        return as_utc(datetime.fromisoformat(raw.replace("Z", "+00:00")))
    except ValueError:
        return None


def _order_id(resource: dict) -> str | None:
    return ((resource.get("supplementary_data") or {}).get("related_ids") or {}).get("order_id")


def _refunded_capture_id(resource: dict) -> str | None:
    for link in resource.get("links") or []:
        if link.get("rel") == "up" and "/captures/" in (link.get("href") or ""):
            return link["href"].rstrip("/").rsplit("/", 1)[-1]
    return None


def _booking_for(db: Session, order_id: str | None, capture_id: str | None) -> Booking | None:
    if order_id:
        b = db.query(Booking).filter(Booking.paypal_order_id == order_id).first()
        if b:
            return b
    if capture_id:
        return db.query(Booking).filter(Booking.paypal_capture_id == capture_id).first()
    return None


def _apply_capture_event(db: Session, event_type: str, resource: dict) -> str | None:
    if event_type == "PAYMENT.CAPTURE.REFUNDED":
        b = _booking_for(db, _order_id(resource), _refunded_capture_id(resource))
    else:
        b = _booking_for(db, _order_id(resource), resource.get("id"))
    if not b:
        logger.warning("PayPal %s for unknown booking (capture %s)", event_type, resource.get("id"))
        return None

    if event_type == "PAYMENT.CAPTURE.COMPLETED":
        if b.payment_status == "paid" or b.status != PENDING_PAYMENT:
            return b.id
        # customer paid but our capture callback never ran
        commit_transition(
            db, b, PENDING_PAYMENT, AUTHORIZED,
            payment_status="paid",
            paypal_capture_id=resource.get("id"),
            amount_authorized=b.amount_estimated,
            amount_captured=b.amount_estimated,
        )
        notify(db, b.professional_id, "Booking awaiting your confirmation", "The customer paid. Accept or decline the booking.",
               {"bookingId": b.id, "type": "booking_authorized"})
    elif event_type == "PAYMENT.CAPTURE.DENIED":
        if b.payment_status != "paid":
            b.payment_status = "failed"
            db.commit()
        logger.warning("PayPal capture denied for booking %s", b.id)
    elif event_type == "PAYMENT.CAPTURE.REFUNDED":
        amount = resource.get("amount") or {}
        refunded = parse_amount(amount["value"], amount.get("currency_code") or b.currency) if amount.get("value") else 0
        # refunds issued here are already recorded; only raise the total when PayPal reports more
        b.refund_amount = max(b.refund_amount or 0, refunded)
        captured = b.amount_captured or b.amount_estimated
        b.payment_status = "refunded" if b.refund_amount >= captured else "partially_refunded"
        db.commit()
    return b.id


def handle_webhook_event(db: Session, event: dict, now: datetime | None = None) -> dict:
    """Mirror a verified PayPal capture event into its booking, once per event id."""
    now = as_utc(now) or utcnow()
    event_id = event.get("id")
    event_type = event.get("event_type") or ""
    if not event_id:
        raise ValidationError("Event has no id")
    created = _event_time(event)
    if created is None or now - created > MAX_WEBHOOK_AGE:
        raise ValidationError("Webhook event too old")

    row = (
        db.query(PaymentWebhookEvent)
        .filter(PaymentWebhookEvent.provider == "paypal", PaymentWebhookEvent.event_id == event_id)
        .first()
    )
    if row and row.status != "failed":
        logger.info("Duplicate PayPal event %s ignored", event_id)
        return {"received": True, "duplicate": True}
    if row is None:
        row = PaymentWebhookEvent(id=str(uuid.uuid4()), provider="paypal", event_id=event_id, event_type=event_type, status="processing")
        db.add(row)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            return {"received": True, "duplicate": True}

    booking_id = None
    try:
        if event_type in CAPTURE_EVENTS:
            booking_id = _apply_capture_event(db, event_type, event.get("resource") or {})
        else:
            logger.info("Ignoring PayPal event %s", event_type)
    except (ServiceError, SQLAlchemyError) as e:
        db.rollback()
        row.status = "failed"
        row.error_message = str(e)
        row.processed_at = now
        db.commit()
        logger.error("PayPal event %s (%s) failed: %s", event_id, event_type, e)
        raise UpstreamError("Webhook processing failed") from e

    row.status = "completed"
    row.error_message = None
    row.processed_at = now
    db.commit()
    return {"received": True, "bookingId": booking_id}
