import hmac
import logging

from fastapi import APIRouter, Depends, Header, HTTPException
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.session import get_db
from app.services.balance_service import process_batch_clearances
from app.services.cron_lock import advisory_lock

logger = logging.getLogger(__name__)

router = APIRouter(tags=["cron"])


def require_cron_secret(authorization: str | None = Header(default=None)) -> None:
    if not settings.is_production:
        return
    if not settings.CRON_SECRET:
        logger.error("CRON_SECRET is not set; rejecting cron call")
        raise HTTPException(status_code=401, detail="Unauthorized")
    if not hmac.compare_digest(authorization or "", f"Bearer {settings.CRON_SECRET}"):
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.get("/cron/clear-balances", dependencies=[Depends(require_cron_secret)])
def clear_balances(db: Session = Depends(get_db)):
    with advisory_lock(db, "clear-balances") as acquired:
        if not acquired:
            return {"success": True, "skipped": True}
        result = process_batch_clearances(db)
    return {"success": True, **result.to_dict()}
