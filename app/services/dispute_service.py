import logging
import uuid
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from app.core.timeutil import utcnow
from app.models.booking import Booking, IN_PROGRESS, COMPLETED
from app.models.dispute import Dispute, RESOLUTION_TYPES
from app.models.moderation import ModerationFlag, UserSuspension
from app.models.user import User, ROLE_ADMIN
from app.services.audit_service import log_audit
from app.services.errors import AuthorizationError, ConflictError, NotFoundError, UpstreamError, ValidationError
from app.services.notification_service import notify
from app.services.payment_gateway import PaymentGatewayError, get_payment_gateway
from app.services.paypal_client import PayPalError, get_paypal_client

logger = logging.getLogger(__name__)

DEFAULT_SUSPENSION_DAYS = 7


def dispute_out(d: Dispute) -> dict:
    return {
        "id": d.id,
        "bookingId": d.booking_id,
        "openedBy": d.opened_by_id,
        "against": d.against_id,
        "reason": d.reason,
        "description": d.description,
        "status": d.status,
        "resolutionType": d.resolution_type,
        "resolutionAction": d.resolution_action,
        "refundAmount": d.refund_amount,
        "adminNotes": d.admin_notes,
        "resolvedAt": d.resolved_at.isoformat() if d.resolved_at else None,
        "createdAt": d.created_at.isoformat() if d.created_at else None,
    }


def open_dispute(db: Session, actor: User, booking_id: str, reason: str, description: str = "") -> Dispute:
    b = db.get(Booking, booking_id)
    if not b:
        raise NotFoundError("Booking not found")
    if actor.id == b.customer_id:
        against = b.professional_id
    elif actor.id == b.professional_id:
        against = b.customer_id
    else:
        raise AuthorizationError("Only the parties of a booking can open a dispute")
    if b.status not in (IN_PROGRESS, COMPLETED):
        raise ValidationError(f"Cannot dispute booking with status: {b.status}")
    existing = db.query(Dispute).filter(Dispute.booking_id == b.id, Dispute.status != "resolved").first()
    if existing:
        raise ConflictError("This booking already has an open dispute")

    d = Dispute(
        id=str(uuid.uuid4()),
        booking_id=b.id,
        opened_by_id=actor.id,
        against_id=against,
        reason=reason,
        description=description or "",
        status="open",
    )
    db.add(d)
    log_audit(db, actor.id, "dispute.open", "dispute", d.id, {"bookingId": b.id, "reason": reason})
    db.commit()
    logger.info("Dispute %s opened on booking %s by %s", d.id, b.id, actor.id)
    return d


def list_disputes(db: Session, status: str | None = None, limit: int = 100) -> list[Dispute]:
    q = db.query(Dispute)
    if status:
        q = q.filter(Dispute.status == status)
    return q.order_by(Dispute.created_at.desc()).limit(limit).all()


def _refund(b: Booking, amount: int, gateway, paypal) -> None:
    if not b.amount_captured:
        raise ValidationError("Booking has no captured payment to refund")
    if amount <= 0 or amount > b.amount_captured - (b.refund_amount or 0):
        raise ValidationError("Refund amount must be positive and not exceed the captured amount")
    try:
        if b.payment_provider == "paypal":
            if not b.paypal_capture_id:
                raise ValidationError("Booking has no PayPal capture to refund")
            (paypal or get_paypal_client()).refund_capture(capture_id=b.paypal_capture_id, amount=amount, currency=b.currency)
        else:
            if not b.stripe_payment_intent_id:
                raise ValidationError("Booking has no card payment to refund")
            (gateway or get_payment_gateway()).refund(b.stripe_payment_intent_id, amount)
    except (PaymentGatewayError, PayPalError) as e:
        logger.error("Dispute refund of %s %s on booking %s failed: %s", amount, b.currency, b.id, e)
        raise UpstreamError("Refund failed") from e
    b.refund_amount = (b.refund_amount or 0) + amount
    b.payment_status = "refunded" if b.refund_amount >= b.amount_captured else "partially_refunded"


def resolve_dispute(
    db: Session,
    admin: User,
    dispute_id: str,
    resolution_type: str,
    *,
    refund_amount: int | None = None,
    admin_notes: str | None = None,
    suspension_days: int | None = None,
    gateway=None,
    paypal=None,
    now: datetime | None = None,
) -> Dispute:
    now = now or utcnow()
    if resolution_type not in RESOLUTION_TYPES:
        raise ValidationError(f"Unknown resolution type: {resolution_type}")
    d = db.get(Dispute, dispute_id)
    if not d:
        raise NotFoundError("Dispute not found")
    if d.status == "resolved":
        raise ValidationError("Dispute is already resolved")
    b = db.get(Booking, d.booking_id)

    action = None
    if resolution_type == "refund":
        if refund_amount is None:
            raise ValidationError("refundAmount is required for a refund")
        _refund(b, int(refund_amount), gateway, paypal)
        d.refund_amount = int(refund_amount)
        action = f"Refunded {refund_amount} {b.currency}"
    elif resolution_type == "warning":
        flag = ModerationFlag(
            id=str(uuid.uuid4()),
            user_id=d.against_id,
            flag_type="warning",
            severity="medium",
            reason=admin_notes or d.reason,
            status="open",
            created_by=admin.id,
        )
        db.add(flag)
        d.moderation_flag_id = flag.id
        action = "Warning issued"
    elif resolution_type == "suspend":
        target = db.get(User, d.against_id)
        if target and target.role == ROLE_ADMIN:
            raise ValidationError("Admins cannot be suspended")
        days = suspension_days or DEFAULT_SUSPENSION_DAYS
        suspension = UserSuspension(
            id=str(uuid.uuid4()),
            user_id=d.against_id,
            suspended_by=admin.id,
            suspension_type="temporary",
            reason=admin_notes or d.reason,
            expires_at=now + timedelta(days=days),
        )
        db.add(suspension)
        d.suspension_id = suspension.id
        action = f"Suspended for {days} days"
    elif resolution_type == "no_action":
        action = "No action taken"

    d.admin_notes = admin_notes
    d.resolution_type = resolution_type
    if resolution_type == "request_info":
        d.status = "awaiting_info"
        d.resolution_action = "More information requested"
    else:
        d.status = "resolved"
        d.resolution_action = action
        d.resolved_by_id = admin.id
        d.resolved_at = now
    log_audit(db, admin.id, "dispute.resolve", "dispute", d.id, {"type": resolution_type, "refund": refund_amount})
    db.commit()
    logger.info("Dispute %s: %s (%s)", d.id, d.status, resolution_type)

    for user_id in (d.opened_by_id, d.against_id):
        notify(db, user_id, "Dispute update", d.resolution_action or "Your dispute was updated", {"disputeId": d.id, "type": "dispute_update"})
    return d
