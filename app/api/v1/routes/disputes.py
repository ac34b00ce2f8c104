from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.api.deps import get_current_user
from app.models.user import User
from app.schemas.dispute import DisputeCreate
from app.services.dispute_service import dispute_out, open_dispute

router = APIRouter(tags=["disputes"])


@router.post("/disputes", status_code=201)
def create_dispute(body: DisputeCreate, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    return dispute_out(open_dispute(db, me, str(body.bookingId), body.reason, body.description))
