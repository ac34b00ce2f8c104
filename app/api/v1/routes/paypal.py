from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.api.deps import require_roles, paypal_client
from app.models.user import User
from app.schemas.paypal import PayPalOrderCreate
from app.services import paypal_order_service

router = APIRouter(tags=["paypal"])


@router.post("/paypal/orders")
def create_order(body: PayPalOrderCreate, db: Session = Depends(get_db),
                 me: User = Depends(require_roles("customer")), paypal=Depends(paypal_client)):
    return paypal_order_service.create_order(db, me, str(body.bookingId), paypal=paypal)


@router.post("/paypal/orders/{order_id}/capture")
def capture_order(order_id: str, db: Session = Depends(get_db),
                  me: User = Depends(require_roles("customer")), paypal=Depends(paypal_client)):
    return paypal_order_service.capture_order(db, me, order_id, paypal=paypal)
