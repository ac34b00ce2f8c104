from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from sqlalchemy import func

from app.db.session import get_db
from app.api.deps import require_roles, payment_gateway, paypal_client
from app.models.user import User
from app.schemas.dispute import DisputeResolve
from app.services.dispute_service import dispute_out, list_disputes, resolve_dispute
from app.services.cron_lock import advisory_lock
from app.services.payout_service import run_payout_batch

router = APIRouter(tags=["admin"])

@router.get("/admin/users")
def list_users(role: str | None = None, q: str | None = None, limit: int = 50, offset: int = 0,
               db: Session = Depends(get_db),
               me: User = Depends(require_roles("admin"))):
    query = db.query(User)
    if role:
        query = query.filter(User.role == role)
    if q:
        ql = f"%{q.lower()}%"
        query = query.filter(func.lower(User.email).like(ql) | func.lower(User.full_name).like(ql))
    total = query.count()
    users = query.order_by(User.created_at.desc()).limit(min(limit, 200)).offset(max(offset, 0)).all()
    return {
        "total": total,
        "items": [{"id": u.id, "email": u.email, "fullName": u.full_name, "role": u.role,
                   "isActive": u.is_active, "country": u.country} for u in users],
    }


@router.get("/admin/disputes")
def admin_disputes(status: str | None = None, limit: int = 100,
                   db: Session = Depends(get_db), me: User = Depends(require_roles("admin"))):
    return [dispute_out(d) for d in list_disputes(db, status=status, limit=min(max(limit, 1), 500))]


@router.post("/admin/disputes/{dispute_id}/resolve")
def admin_resolve_dispute(dispute_id: str, body: DisputeResolve,
                          db: Session = Depends(get_db), me: User = Depends(require_roles("admin")),
                          gateway=Depends(payment_gateway), paypal=Depends(paypal_client)):
    d = resolve_dispute(
        db, me, dispute_id, body.resolutionType,
        refund_amount=body.refundAmount,
        admin_notes=body.adminNotes,
        suspension_days=body.suspensionDays,
        gateway=gateway,
        paypal=paypal,
    )
    return dispute_out(d)


@router.post("/admin/payouts/run")
def admin_run_payouts(dry_run: bool = False, db: Session = Depends(get_db), me: User = Depends(require_roles("admin")),
                      gateway=Depends(payment_gateway)):
    """Run the payout batch for the current period now (normally Celery beat does this Tue/Fri)."""
    with advisory_lock(db, "payout-batch") as acquired:
        if not acquired:
            return {"skipped": True, "reason": "locked"}
        return run_payout_batch(db, dry_run=dry_run, gateway=gateway)
