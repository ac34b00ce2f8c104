from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.api.deps import require_roles, payment_gateway
from app.models.user import User
from app.schemas.payout import InstantPayoutRequest
from app.services.balance_service import get_balance_breakdown
from app.services.payout_service import instant_payout_eligibility, pending_payout_summary, request_instant_payout

router = APIRouter(tags=["payouts"])


@router.get("/pro/payouts/pending")
def pending_payouts(db: Session = Depends(get_db), me: User = Depends(require_roles("professional"))):
    return pending_payout_summary(db, me.id)


@router.get("/pro/balance")
def balance(db: Session = Depends(get_db), me: User = Depends(require_roles("professional"))):
    return get_balance_breakdown(db, me.id)


@router.get("/pro/payouts/instant")
def instant_payout_status(db: Session = Depends(get_db), me: User = Depends(require_roles("professional"))):
    """Balance, fee estimate and whether an instant payout is possible right now."""
    return instant_payout_eligibility(db, me.id)


@router.post("/pro/payouts/instant", status_code=201)
def instant_payout(body: InstantPayoutRequest, db: Session = Depends(get_db),
                   me: User = Depends(require_roles("professional")), gateway=Depends(payment_gateway)):
    return {"success": True, **request_instant_payout(db, me, body.amount, gateway=gateway)}
