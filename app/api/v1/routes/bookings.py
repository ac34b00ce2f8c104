from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.api.deps import get_current_user, require_roles, payment_gateway, paypal_client
from app.core.timeutil import as_utc
from app.models.booking import Booking
from app.models.user import User
from app.schemas.booking import (
    BookingCreate,
    BookingAction,
    DeclineRequest,
    CancelRequest,
    LocationRequest,
    CheckOutRequest,
    RebookRequest,
)
from app.services import booking_service

router = APIRouter(tags=["bookings"])


def _iso(value):
    value = as_utc(value)
    return value.isoformat() if value else None


def booking_out(b: Booking) -> dict:
    return {
        "id": b.id,
        "customerId": b.customer_id,
        "professionalId": b.professional_id,
        "status": b.status,
        "scheduledStart": _iso(b.scheduled_start),
        "scheduledEnd": _iso(b.scheduled_end),
        "durationMinutes": b.duration_minutes,
        "currency": b.currency,
        "amountEstimated": b.amount_estimated,
        "amountAuthorized": b.amount_authorized,
        "amountCaptured": b.amount_captured,
        "refundAmount": b.refund_amount,
        "serviceName": b.service_name,
        "serviceHourlyRate": b.service_hourly_rate,
        "address": b.address,
        "specialInstructions": b.special_instructions,
        "paymentProvider": b.payment_provider,
        "paymentStatus": b.payment_status,
        "checkedInAt": _iso(b.checked_in_at),
        "checkInGpsStatus": b.check_in_gps_status,
        "checkedOutAt": _iso(b.checked_out_at),
        "checkOutGpsStatus": b.check_out_gps_status,
        "actualDurationMinutes": b.actual_duration_minutes,
        "completionNotes": b.completion_notes,
        "declineReason": b.decline_reason,
        "cancellationReason": b.cancellation_reason,
        "rebookedFromId": b.rebooked_from_id,
        "createdAt": _iso(b.created_at),
    }


@router.post("/bookings", status_code=201)
def create_booking(body: BookingCreate, db: Session = Depends(get_db),
                   me: User = Depends(require_roles("customer")),
                   gateway=Depends(payment_gateway)):
    created = booking_service.create_booking(
        db, me,
        professional_id=body.professionalId,
        scheduled_start=body.scheduledStart,
        duration_minutes=body.durationMinutes,
        amount=body.amount,
        currency=body.currency,
        service_name=body.serviceName,
        service_hourly_rate=body.serviceHourlyRate,
        address=body.address,
        special_instructions=body.specialInstructions,
        payment_provider=body.paymentProvider,
        gateway=gateway,
    )
    return {"booking": booking_out(created.booking), "clientSecret": created.client_secret}


@router.get("/bookings")
def list_bookings(status: str | None = None, limit: int = 100,
                  db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    rows = booking_service.list_bookings(db, me, status=status, limit=min(max(limit, 1), 500))
    return [booking_out(b) for b in rows]


@router.get("/bookings/{booking_id}")
def get_booking(booking_id: str, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    return booking_out(booking_service.get_booking(db, me, booking_id))


@router.post("/bookings/accept")
def accept(body: BookingAction, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    b = booking_service.accept_booking(db, me, str(body.bookingId))
    return {"success": True, "booking": booking_out(b)}


@router.post("/bookings/decline")
def decline(body: DeclineRequest, db: Session = Depends(get_db), me: User = Depends(get_current_user),
            gateway=Depends(payment_gateway), paypal=Depends(paypal_client)):
    b = booking_service.decline_booking(db, me, str(body.bookingId), body.reason, gateway=gateway, paypal=paypal)
    return {"success": True, "booking": booking_out(b)}


@router.post("/bookings/check-in")
def check_in(body: LocationRequest, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    b, gps = booking_service.check_in(db, me, str(body.bookingId), body.latitude, body.longitude)
    return {"success": True, "booking": booking_out(b), "gpsVerification": gps.to_dict()}


@router.post("/bookings/check-out")
def check_out(body: CheckOutRequest, db: Session = Depends(get_db), me: User = Depends(get_current_user),
              gateway=Depends(payment_gateway)):
    b, gps = booking_service.check_out(db, me, str(body.bookingId), body.latitude, body.longitude,
                                       body.completionNotes, gateway=gateway)
    return {"success": True, "booking": booking_out(b), "gpsVerification": gps.to_dict()}


@router.post("/bookings/cancel")
def cancel(body: CancelRequest, db: Session = Depends(get_db), me: User = Depends(get_current_user),
           gateway=Depends(payment_gateway), paypal=Depends(paypal_client)):
    b, policy = booking_service.cancel_booking(db, me, str(body.bookingId), body.reason, gateway=gateway, paypal=paypal)
    return {"success": True, "booking": booking_out(b), "cancellationPolicy": policy}


@router.post("/bookings/rebook", status_code=201)
def rebook(body: RebookRequest, db: Session = Depends(get_db), me: User = Depends(get_current_user),
           gateway=Depends(payment_gateway)):
    created = booking_service.rebook(db, me, str(body.bookingId), body.scheduledStart, gateway=gateway)
    return {"booking": booking_out(created.booking), "clientSecret": created.client_secret}
