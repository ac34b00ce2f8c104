from datetime import timedelta

from app.core.timeutil import utcnow
from app.models.audit_log import AuditLog
from app.models.booking import Booking

from tests.conftest import auth


def _paypal_booking(make_booking, **kw):
    return make_booking(status="pending_payment", provider="paypal", payment_status="unpaid",
                        amount_authorized=None, currency="PYG", amount_estimated=150000, **kw)


def test_create_order_for_own_booking(client, db, make_booking, customer, paypal):
    b = _paypal_booking(make_booking)
    r = client.post("/api/v1/paypal/orders", json={"bookingId": b.id}, headers=auth(customer))
    assert r.status_code == 200, r.text
    db.refresh(b)
    assert b.paypal_order_id == r.json()["orderId"]


def test_create_order_rejects_stripe_booking(client, make_booking, customer):
    b = make_booking(status="pending_payment")
    r = client.post("/api/v1/paypal/orders", json={"bookingId": b.id}, headers=auth(customer))
    assert r.status_code == 400


def test_capture_moves_booking_to_authorized(client, db, make_booking, customer, paypal):
    b = _paypal_booking(make_booking, paypal_order_id="ORDER-1")
    r = client.post("/api/v1/paypal/orders/ORDER-1/capture", headers=auth(customer))
    assert r.status_code == 200, r.text
    assert r.json()["alreadyCaptured"] is False
    db.refresh(b)
    assert b.status == "authorized"
    assert b.payment_status == "paid"
    assert b.paypal_capture_id == "CAP-ORDER-1"
    assert b.amount_captured == 150000


def test_double_capture_is_idempotent(client, db, make_booking, customer, paypal):
    b = _paypal_booking(make_booking, paypal_order_id="ORDER-2")
    client.post("/api/v1/paypal/orders/ORDER-2/capture", headers=auth(customer))
    audits_after_first = db.query(AuditLog).filter_by(entity_id=b.id).count()

    for _ in range(2):
        r = client.post("/api/v1/paypal/orders/ORDER-2/capture", headers=auth(customer))
        assert r.status_code == 200
        assert r.json()["alreadyCaptured"] is True

    assert [c for c in paypal.calls if c[0] == "capture_order"] == [("capture_order", "ORDER-2")]
    assert db.query(AuditLog).filter_by(entity_id=b.id).count() == audits_after_first
    db.refresh(b)
    assert b.status == "authorized"


def test_capture_not_completed_is_upstream_error(client, db, make_booking, customer, paypal):
    paypal.capture_fails = True
    b = _paypal_booking(make_booking, paypal_order_id="ORDER-3")
    r = client.post("/api/v1/paypal/orders/ORDER-3/capture", headers=auth(customer))
    assert r.status_code == 500
    db.refresh(b)
    assert b.status == "pending_payment"
    assert ("get_order", "ORDER-3") in paypal.calls


def test_capture_by_other_customer_forbidden(client, make_booking, other_customer):
    _paypal_booking(make_booking, paypal_order_id="ORDER-4")
    r = client.post("/api/v1/paypal/orders/ORDER-4/capture", headers=auth(other_customer))
    assert r.status_code == 403


def test_unknown_order_is_404(client, customer):
    r = client.post("/api/v1/paypal/orders/NOPE/capture", headers=auth(customer))
    assert r.status_code == 404


def test_paypal_booking_check_out_does_not_capture_again(client, db, make_booking, professional, gateway):
    b = make_booking(status="in_progress", provider="paypal", payment_status="paid", amount_captured=150000,
                     paypal_capture_id="CAP-X", checked_in_at=utcnow() - timedelta(hours=1))
    r = client.post("/api/v1/bookings/check-out", json={"bookingId": b.id, "latitude": 4.6767, "longitude": -74.0483},
                    headers=auth(professional))
    assert r.status_code == 200, r.text
    assert gateway.calls == []
    assert db.get(Booking, b.id).status == "completed"
