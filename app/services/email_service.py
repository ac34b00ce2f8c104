from datetime import datetime, timezone
import logging
import smtplib
from email.message import EmailMessage
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
import uuid
import requests

from app.core.config import settings
from app.models.email_log import EmailLog

logger = logging.getLogger(__name__)


def queue_email(db: Session, to_email: str, subject: str, body: str, related_booking_id: str | None = None) -> str | None:
    """Queue an email for the worker. Never raises: a failed enqueue is logged and dropped.

    Call after the primary state change has been committed.
    """
    eid = str(uuid.uuid4())
    try:
        db.add(
            EmailLog(
                id=eid,
                to_email=to_email,
                subject=subject,
                body=body,
                status="queued",
                related_booking_id=related_booking_id,
            )
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.warning("Could not queue email %r to %s (booking %s)", subject, to_email, related_booking_id, exc_info=True)
        return None
    return eid


def send_email(to_email: str, subject: str, body: str):
    """Send email via SendGrid if configured, otherwise SMTP (MailHog recommended for local)."""

    if settings.SENDGRID_API_KEY:
        _send_via_sendgrid(to_email, subject, body)
        return

    msg = EmailMessage()
    msg["From"] = settings.SMTP_FROM
    msg["To"] = to_email
    msg["Subject"] = subject
    msg.set_content(body)

    with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=10) as smtp:
        if settings.SMTP_USERNAME:
            smtp.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
        smtp.send_message(msg)


def _send_via_sendgrid(to_email: str, subject: str, body: str):
    from_email = settings.SENDGRID_FROM_EMAIL or settings.SMTP_FROM
    payload = {
        "personalizations": [{"to": [{"email": to_email}]}],
        "from": {"email": from_email},
        "subject": subject,
        "content": [{"type": "text/plain", "value": body}],
    }
    r = requests.post(
        "https://api.sendgrid.com/v3/mail/send",
        json=payload,
        headers={"Authorization": f"Bearer {settings.SENDGRID_API_KEY}"},
        timeout=20,
    )
    if r.status_code >= 400:
        raise RuntimeError(f"SendGrid error {r.status_code}: {r.text}")


def process_pending_emails(db: Session, limit: int = 50, sender=send_email) -> dict:
    """Send up to `limit` queued or failed emails. Rows that keep failing are marked dead."""
    pending = (
        db.query(EmailLog)
        .filter(EmailLog.status.in_(["queued", "failed"]))
        .order_by(EmailLog.created_at.asc())
        .limit(limit)
        .all()
    )
    sent, failed, dead = 0, 0, 0
    for log in pending:
        log.attempts = (log.attempts or 0) + 1
        try:
            sender(log.to_email, log.subject, log.body or "")
            log.status = "sent"
            log.sent_at = datetime.now(timezone.utc)
            sent += 1
        except Exception as e:
            log.last_error = str(e)[:1000]
            if log.attempts >= settings.EMAIL_MAX_ATTEMPTS:
                log.status = "dead"
                dead += 1
                logger.error("Email %s to %s gave up after %s attempts: %s", log.id, log.to_email, log.attempts, e)
            else:
                log.status = "failed"
                failed += 1
                logger.warning("Email %s to %s failed (attempt %s): %s", log.id, log.to_email, log.attempts, e)
    if pending:
        db.commit()
    return {"processed": len(pending), "sent": sent, "failed": failed, "dead": dead}
