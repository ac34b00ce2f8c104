from datetime import timedelta

from app.core.timeutil import utcnow
from app.models.booking import Booking
from app.models.email_log import EmailLog
from app.models.notification import Notification
from app.models.payout import BalanceClearance
from app.models.professional import ProfessionalProfile

from tests.conftest import SERVICE_ADDRESS, auth


def _create_body(professional, **overrides):
    body = {
        "professionalId": professional.id,
        "scheduledStart": (utcnow() + timedelta(days=2)).isoformat(),
        "durationMinutes": 120,
        "amount": 0,
        "serviceName": "Limpieza general",
        "address": SERVICE_ADDRESS,
    }
    body.update(overrides)
    return body


def test_requires_authentication(client, make_booking):
    b = make_booking()
    r = client.post("/api/v1/bookings/accept", json={"bookingId": b.id})
    assert r.status_code == 401


def test_create_derives_amount_and_authorizes(client, db, customer, professional, gateway):
    r = client.post("/api/v1/bookings", json=_create_body(professional), headers=auth(customer))
    assert r.status_code == 201, r.text
    data = r.json()
    assert data["booking"]["amountEstimated"] == 100000
    assert data["booking"]["status"] == "pending_payment"
    assert data["clientSecret"] == "pi_test_1_secret"

    authorize = [c for c in gateway.calls if c[0] == "authorize"][0][1]
    assert authorize["amount"] == 100000
    assert authorize["currency"] == "COP"
    b = db.get(Booking, data["booking"]["id"])
    assert b.stripe_payment_intent_id == "pi_test_1"
    assert db.query(Notification).filter_by(user_id=professional.id).count() == 1


def test_create_with_failed_authorization_persists_nothing(client, db, customer, professional, gateway):
    gateway.fail_on.add("authorize")
    r = client.post("/api/v1/bookings", json=_create_body(professional), headers=auth(customer))
    assert r.status_code == 500
    assert r.json()["detail"] == "Payment authorization failed"
    assert db.query(Booking).count() == 0


def test_create_rejects_past_start(client, customer, professional, gateway):
    body = _create_body(professional, scheduledStart=(utcnow() - timedelta(hours=1)).isoformat())
    r = client.post("/api/v1/bookings", json=body, headers=auth(customer))
    assert r.status_code == 400
    assert gateway.calls == []


def test_professional_cannot_create_booking(client, professional, other_professional):
    r = client.post("/api/v1/bookings", json=_create_body(other_professional), headers=auth(professional))
    assert r.status_code == 403


def test_accept_confirms_and_emails_customer(client, db, make_booking, professional, customer):
    b = make_booking(status="authorized")
    r = client.post("/api/v1/bookings/accept", json={"bookingId": b.id}, headers=auth(professional))
    assert r.status_code == 200, r.text
    assert r.json()["booking"]["status"] == "confirmed"
    assert db.query(EmailLog).filter_by(to_email=customer.email, related_booking_id=b.id).count() == 1


def test_accept_by_other_professional_is_forbidden(client, db, make_booking, other_professional):
    b = make_booking(status="authorized")
    r = client.post("/api/v1/bookings/accept", json={"bookingId": b.id}, headers=auth(other_professional))
    assert r.status_code == 403
    db.refresh(b)
    assert b.status == "authorized"


def test_accept_wrong_status_names_it(client, make_booking, professional):
    b = make_booking(status="pending_payment")
    r = client.post("/api/v1/bookings/accept", json={"bookingId": b.id}, headers=auth(professional))
    assert r.status_code == 400
    assert r.json()["detail"] == "Cannot accept booking with status: pending_payment"


def test_unknown_booking_is_404(client, professional):
    r = client.post("/api/v1/bookings/accept", json={"bookingId": "0b8f1f4e-7d5c-4f0e-9a57-3c1de0d4b2aa"}, headers=auth(professional))
    assert r.status_code == 404


def test_malformed_booking_id_is_400(client, professional):
    r = client.post("/api/v1/bookings/accept", json={"bookingId": "not-a-uuid"}, headers=auth(professional))
    assert r.status_code == 400


def test_decline_completed_booking_is_rejected_without_cancel(client, db, make_booking, professional, gateway):
    b = make_booking(status="completed")
    r = client.post("/api/v1/bookings/decline", json={"bookingId": b.id, "reason": "busy"}, headers=auth(professional))
    assert r.status_code == 400
    assert "completed" in r.json()["detail"]
    db.refresh(b)
    assert b.status == "completed"
    assert "cancel" not in gateway.names()


def test_decline_releases_authorization(client, db, make_booking, professional, gateway):
    b = make_booking(status="authorized")
    r = client.post("/api/v1/bookings/decline", json={"bookingId": b.id, "reason": "Sin disponibilidad"}, headers=auth(professional))
    assert r.status_code == 200, r.text
    db.refresh(b)
    assert b.status == "declined"
    assert b.decline_reason == "Sin disponibilidad"
    assert b.payment_status == "canceled"
    assert ("cancel", {"intent_id": b.stripe_payment_intent_id}) in gateway.calls


def test_decline_stands_when_release_fails(client, db, make_booking, professional, gateway):
    gateway.fail_on.add("cancel")
    b = make_booking(status="authorized")
    r = client.post("/api/v1/bookings/decline", json={"bookingId": b.id}, headers=auth(professional))
    assert r.status_code == 200
    db.refresh(b)
    assert b.status == "declined"


def test_check_in_out_of_range_latitude(client, db, make_booking, professional):
    b = make_booking(status="confirmed")
    r = client.post("/api/v1/bookings/check-in", json={"bookingId": b.id, "latitude": 91, "longitude": -74.0},
                    headers=auth(professional))
    assert r.status_code == 400
    db.refresh(b)
    assert b.status == "confirmed"
    assert b.checked_in_at is None


def test_check_in_at_address_verifies(client, db, make_booking, professional):
    b = make_booking(status="confirmed")
    r = client.post("/api/v1/bookings/check-in",
                    json={"bookingId": b.id, "latitude": SERVICE_ADDRESS["lat"], "longitude": SERVICE_ADDRESS["lng"]},
                    headers=auth(professional))
    assert r.status_code == 200, r.text
    assert r.json()["gpsVerification"]["status"] == "verified"
    db.refresh(b)
    assert b.status == "in_progress"
    assert b.check_in_gps_status == "verified"


def test_check_in_far_away_is_recorded_not_blocked(client, db, make_booking, professional):
    b = make_booking(status="confirmed")
    r = client.post("/api/v1/bookings/check-in", json={"bookingId": b.id, "latitude": 4.70, "longitude": -74.0483},
                    headers=auth(professional))
    assert r.status_code == 200
    assert r.json()["gpsVerification"]["verified"] is False
    db.refresh(b)
    assert b.status == "in_progress"
    assert b.check_in_gps_status == "rejected"


def test_check_in_without_address_coordinates_is_skipped(client, db, make_booking, professional):
    b = make_booking(status="confirmed", address={"street": "Calle 93"})
    r = client.post("/api/v1/bookings/check-in", json={"bookingId": b.id, "latitude": 4.6, "longitude": -74.0},
                    headers=auth(professional))
    assert r.status_code == 200
    assert r.json()["gpsVerification"]["status"] == "skipped"


def test_check_out_captures_and_credits_pending_balance(client, db, make_booking, professional, gateway):
    b = make_booking(status="in_progress", checked_in_at=utcnow() - timedelta(minutes=95))
    r = client.post("/api/v1/bookings/check-out",
                    json={"bookingId": b.id, "latitude": SERVICE_ADDRESS["lat"], "longitude": SERVICE_ADDRESS["lng"],
                          "completionNotes": "Todo limpio"},
                    headers=auth(professional))
    assert r.status_code == 200, r.text

    capture = [c for c in gateway.calls if c[0] == "capture"][0][1]
    assert capture["amount"] == 100000
    assert capture["idempotency_key"] == f"booking-{b.id}-checkout-capture"

    db.refresh(b)
    assert b.status == "completed"
    assert b.amount_captured == 100000
    assert b.payment_status == "paid"
    assert 94 <= b.actual_duration_minutes <= 96

    profile = db.get(ProfessionalProfile, professional.id)
    assert profile.pending_balance == 85000
    clearance = db.query(BalanceClearance).filter_by(booking_id=b.id).one()
    assert clearance.status == "pending"


def test_check_out_capture_failure_leaves_booking_in_progress(client, db, make_booking, professional, gateway):
    gateway.fail_on.add("capture")
    b = make_booking(status="in_progress", checked_in_at=utcnow() - timedelta(minutes=60))
    r = client.post("/api/v1/bookings/check-out", json={"bookingId": b.id, "latitude": 4.6767, "longitude": -74.0483},
                    headers=auth(professional))
    assert r.status_code == 500
    db.refresh(b)
    assert b.status == "in_progress"
    assert db.query(BalanceClearance).count() == 0


def test_check_out_requires_check_in_time(client, make_booking, professional, gateway):
    b = make_booking(status="in_progress")
    r = client.post("/api/v1/bookings/check-out", json={"bookingId": b.id, "latitude": 4.6767, "longitude": -74.0483},
                    headers=auth(professional))
    assert r.status_code == 400
    assert "capture" not in gateway.names()


def test_cancel_early_releases_full_hold(client, db, make_booking, customer, gateway):
    b = make_booking(status="confirmed", start_in=timedelta(hours=48))
    r = client.post("/api/v1/bookings/cancel", json={"bookingId": b.id, "reason": "Viaje"}, headers=auth(customer))
    assert r.status_code == 200, r.text
    assert r.json()["cancellationPolicy"]["refundPercentage"] == 100
    assert "cancel" in gateway.names()
    db.refresh(b)
    assert b.status == "canceled"
    assert b.refund_amount == 100000


def test_cancel_late_captures_non_refunded_share(client, db, make_booking, customer, gateway):
    b = make_booking(status="confirmed", start_in=timedelta(hours=6))
    r = client.post("/api/v1/bookings/cancel", json={"bookingId": b.id}, headers=auth(customer))
    assert r.status_code == 200, r.text
    capture = [c for c in gateway.calls if c[0] == "capture"][0][1]
    assert capture["amount"] == 75000
    db.refresh(b)
    assert b.refund_amount == 25000
    assert b.amount_captured == 75000


def test_cancel_by_professional_is_forbidden(client, make_booking, professional):
    b = make_booking(status="confirmed")
    r = client.post("/api/v1/bookings/cancel", json={"bookingId": b.id}, headers=auth(professional))
    assert r.status_code == 403


def test_rebook_copies_completed_booking(client, db, make_booking, customer, gateway):
    source = make_booking(status="completed", special_instructions="Llaves en portería")
    start = (utcnow() + timedelta(days=7)).isoformat()
    r = client.post("/api/v1/bookings/rebook", json={"bookingId": source.id, "scheduledStart": start}, headers=auth(customer))
    assert r.status_code == 201, r.text
    new = db.get(Booking, r.json()["booking"]["id"])
    assert new.rebooked_from_id == source.id
    assert new.status == "pending_payment"
    assert new.professional_id == source.professional_id
    assert new.special_instructions == "Llaves en portería"
    assert new.amount_estimated == source.amount_estimated
    assert "authorize" in gateway.names()


def test_rebook_requires_completed_source(client, make_booking, customer):
    source = make_booking(status="confirmed")
    start = (utcnow() + timedelta(days=7)).isoformat()
    r = client.post("/api/v1/bookings/rebook", json={"bookingId": source.id, "scheduledStart": start}, headers=auth(customer))
    assert r.status_code == 400


def test_get_booking_only_for_parties(client, make_booking, customer, other_customer, admin):
    b = make_booking()
    assert client.get(f"/api/v1/bookings/{b.id}", headers=auth(customer)).status_code == 200
    assert client.get(f"/api/v1/bookings/{b.id}", headers=auth(admin)).status_code == 200
    assert client.get(f"/api/v1/bookings/{b.id}", headers=auth(other_customer)).status_code == 403


def test_list_bookings_scoped_to_actor(client, make_booking, customer, other_customer):
    make_booking(status="confirmed")
    make_booking(status="completed")
    assert len(client.get("/api/v1/bookings", headers=auth(customer)).json()) == 2
    assert len(client.get("/api/v1/bookings?status=completed", headers=auth(customer)).json()) == 1
    assert client.get("/api/v1/bookings", headers=auth(other_customer)).json() == []
