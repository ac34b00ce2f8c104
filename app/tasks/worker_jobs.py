import logging

from sqlalchemy.orm import Session
from sqlalchemy.exc import ProgrammingError

from app.db.session import SessionLocal
from app.services.balance_service import process_batch_clearances
from app.services.cron_lock import advisory_lock
from app.services.email_service import process_pending_emails
from app.services.notification_service import process_pending_notifications
from app.services import payout_service

logger = logging.getLogger(__name__)


def _run(fn, *args, **kwargs) -> dict:
    db: Session = SessionLocal()
    try:
        try:
            return fn(db, *args, **kwargs)
        except ProgrammingError:
            # DB not migrated yet; don't crash the worker.
            db.rollback()
            logger.warning("%s skipped: tables missing", fn.__name__)
            return {"skipped": True, "reason": "missing_tables"}
    finally:
        db.close()


def process_email_queue(limit: int = 50) -> dict:
    """Process queued/failed emails (retry send). Run periodically via Celery beat."""
    return _run(process_pending_emails, limit=limit)


def process_notification_queue(limit: int = 100) -> dict:
    return _run(process_pending_notifications, limit=limit)


def _clear_balances(db: Session) -> dict:
    with advisory_lock(db, "clear-balances") as acquired:
        if not acquired:
            return {"skipped": True, "reason": "locked"}
        return process_batch_clearances(db).to_dict()


def clear_balances() -> dict:
    return _run(_clear_balances)


def _payout_batch(db: Session) -> dict:
    with advisory_lock(db, "payout-batch") as acquired:
        if not acquired:
            return {"skipped": True, "reason": "locked"}
        return payout_service.run_payout_batch(db)


def run_payout_batch() -> dict:
    return _run(_payout_batch)
