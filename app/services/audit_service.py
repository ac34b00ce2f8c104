import uuid, json, logging
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
from app.models.audit_log import AuditLog

logger = logging.getLogger(__name__)

def log_audit(db: Session, actor_user_id: str, action: str, entity_type: str, entity_id: str, details: dict | None = None):
    """Add an audit row to the current transaction; the caller commits."""
    db.add(AuditLog(
        id=str(uuid.uuid4()),
        actor_user_id=actor_user_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        details_json=json.dumps(details or {}, ensure_ascii=False, default=str),
    ))

def record_audit(db: Session, actor_user_id: str, action: str, entity_type: str, entity_id: str, details: dict | None = None) -> bool:
    """Write an audit row in its own commit after the primary change. Failures are logged, not raised."""
    try:
        log_audit(db, actor_user_id, action, entity_type, entity_id, details)
        db.commit()
        return True
    except SQLAlchemyError:
        db.rollback()
        logger.warning("Audit log write failed for %s %s/%s", action, entity_type, entity_id, exc_info=True)
        return False
