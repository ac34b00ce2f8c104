"""Push/in-app notifications.

Request handlers only insert `notifications` rows; the Celery worker delivers
them to Expo and retries failures. Users without a push token keep the row as
an in-app notification (status ``stored``).
"""
from datetime import datetime, timezone
import logging
import uuid

import requests
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from app.core.config import settings
from app.models.notification import Notification
from app.models.user import User

logger = logging.getLogger(__name__)


def notify(db: Session, user_id: str, title: str, body: str, data: dict | None = None) -> str | None:
    """Queue a notification. Never raises; call after the primary change is committed."""
    nid = str(uuid.uuid4())
    try:
        db.add(Notification(id=nid, user_id=user_id, title=title, body=body, data=data or {}, status="queued"))
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.warning("Could not queue notification %r for user %s", title, user_id, exc_info=True)
        return None
    return nid


def send_expo_push(token: str, title: str, body: str, data: dict | None = None):
    r = requests.post(
        settings.EXPO_PUSH_URL,
        json={"to": token, "title": title, "body": body, "data": data or {}, "sound": "default"},
        headers={"Accept": "application/json", "Content-Type": "application/json"},
        timeout=15,
    )
    if r.status_code >= 400:
        raise RuntimeError(f"Expo push error {r.status_code}: {r.text}")
    ticket = (r.json() or {}).get("data") or {}
    if isinstance(ticket, dict) and ticket.get("status") == "error":
        raise RuntimeError(f"Expo push rejected: {ticket.get('message')}")


def process_pending_notifications(db: Session, limit: int = 100, sender=send_expo_push) -> dict:
    pending = (
        db.query(Notification)
        .filter(Notification.status.in_(["queued", "failed"]))
        .order_by(Notification.created_at.asc())
        .limit(limit)
        .all()
    )
    sent, stored, failed, dead = 0, 0, 0, 0
    for n in pending:
        user = db.get(User, n.user_id)
        if not user or not user.push_token:
            n.status = "stored"
            stored += 1
            continue
        n.attempts = (n.attempts or 0) + 1
        try:
            sender(user.push_token, n.title, n.body, n.data)
            n.status = "sent"
            n.sent_at = datetime.now(timezone.utc)
            sent += 1
        except Exception as e:
            n.last_error = str(e)[:1000]
            if n.attempts >= settings.NOTIFICATION_MAX_ATTEMPTS:
                n.status = "dead"
                dead += 1
                logger.error("Notification %s for user %s gave up after %s attempts: %s", n.id, n.user_id, n.attempts, e)
            else:
                n.status = "failed"
                failed += 1
                logger.warning("Notification %s for user %s failed: %s", n.id, n.user_id, e)
    if pending:
        db.commit()
    return {"processed": len(pending), "sent": sent, "stored": stored, "failed": failed, "dead": dead}
