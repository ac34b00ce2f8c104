import json
from datetime import timedelta

import pytest

from app.core.config import settings
from app.core.timeutil import utcnow
from app.models.booking import Booking
from app.models.webhook_event import PaymentWebhookEvent
from app.services import paypal_order_service
from app.services.errors import UpstreamError, ValidationError

URL = "/api/v1/webhooks/paypal"
HEADERS = {
    "paypal-auth-algo": "SHA256withRSA",
    "paypal-cert-url": "https://api.paypal.com/v1/notifications/certs/CERT-1",
    "paypal-transmission-id": "tx-1",
    "paypal-transmission-sig": "sig",
    "paypal-transmission-time": "2026-03-13T15:00:00Z",
}


@pytest.fixture(autouse=True)
def webhook_id(monkeypatch):
    monkeypatch.setattr(settings, "PAYPAL_WEBHOOK_ID", "WH-TEST")


def _event(event_type, resource, event_id="WH-EVT-1", age=timedelta(seconds=5)):
    return {
        "id": event_id,
        "event_type": event_type,
        "create_time": (utcnow() - age).isoformat().replace("+00:00", "Z"),
        "resource": resource,
    }


def _completed(order_id, capture_id="CAP-9"):
    return {"id": capture_id, "status": "COMPLETED", "supplementary_data": {"related_ids": {"order_id": order_id}}}


def _post(client, event, headers=HEADERS):
    return client.post(URL, content=json.dumps(event), headers={**headers, "Content-Type": "application/json"})


def _paypal_booking(make_booking, **kw):
    return make_booking(status="pending_payment", provider="paypal", payment_status="unpaid",
                        amount_authorized=None, currency="PYG", amount_estimated=150000, **kw)


def test_missing_headers_is_400(client, paypal):
    r = _post(client, _event("PAYMENT.CAPTURE.COMPLETED", {}), headers={})
    assert r.status_code == 400
    assert r.json()["detail"] == "Missing required headers"
    assert paypal.calls == []


def test_bad_signature_is_400(client, db, paypal):
    paypal.signature_valid = False
    r = _post(client, _event("PAYMENT.CAPTURE.COMPLETED", {}))
    assert r.status_code == 400
    assert r.json()["detail"] == "Invalid signature"
    assert db.query(PaymentWebhookEvent).count() == 0


def test_unconfigured_webhook_id_is_500(client, monkeypatch):
    monkeypatch.setattr(settings, "PAYPAL_WEBHOOK_ID", "")
    assert _post(client, _event("PAYMENT.CAPTURE.COMPLETED", {})).status_code == 500


def test_completed_capture_authorizes_booking(client, db, make_booking, paypal):
    b = _paypal_booking(make_booking, paypal_order_id="ORDER-7")
    r = _post(client, _event("PAYMENT.CAPTURE.COMPLETED", _completed("ORDER-7")))
    assert r.status_code == 200, r.text
    assert r.json() == {"received": True, "bookingId": b.id}
    db.refresh(b)
    assert b.status == "authorized"
    assert b.payment_status == "paid"
    assert b.paypal_capture_id == "CAP-9"
    assert b.amount_captured == 150000
    assert db.query(PaymentWebhookEvent).one().status == "completed"


def test_completed_capture_after_callback_changes_nothing(client, db, make_booking):
    b = _paypal_booking(make_booking, paypal_order_id="ORDER-7")
    b.status, b.payment_status, b.paypal_capture_id = "confirmed", "paid", "CAP-9"
    db.commit()
    r = _post(client, _event("PAYMENT.CAPTURE.COMPLETED", _completed("ORDER-7")))
    assert r.status_code == 200
    db.refresh(b)
    assert b.status == "confirmed"


def test_redelivered_event_is_a_duplicate(client, db, make_booking):
    _paypal_booking(make_booking, paypal_order_id="ORDER-7")
    event = _event("PAYMENT.CAPTURE.COMPLETED", _completed("ORDER-7"))
    _post(client, event)
    r = _post(client, event)
    assert r.json() == {"received": True, "duplicate": True}
    assert db.query(PaymentWebhookEvent).count() == 1


def test_stale_event_is_rejected(client, make_booking):
    _paypal_booking(make_booking, paypal_order_id="ORDER-7")
    r = _post(client, _event("PAYMENT.CAPTURE.COMPLETED", _completed("ORDER-7"), age=timedelta(minutes=6)))
    assert r.status_code == 400
    assert r.json()["detail"] == "Webhook event too old"


def test_denied_capture_marks_payment_failed(client, db, make_booking):
    b = _paypal_booking(make_booking, paypal_order_id="ORDER-7")
    r = _post(client, _event("PAYMENT.CAPTURE.DENIED", {"id": "CAP-9", "status": "DENIED",
                                                         "supplementary_data": {"related_ids": {"order_id": "ORDER-7"}}}))
    assert r.status_code == 200
    db.refresh(b)
    assert b.payment_status == "failed"
    assert b.status == "pending_payment"


def test_partial_refund_is_recorded(client, db, make_booking):
    b = make_booking(status="completed", provider="paypal", payment_status="paid", currency="PYG",
                     amount_estimated=150000, amount_captured=150000, paypal_capture_id="CAP-9")
    refund = {
        "id": "REF-1",
        "status": "COMPLETED",
        "amount": {"value": "50000", "currency_code": "PYG"},
        "links": [{"rel": "up", "href": "https://api.paypal.com/v2/payments/captures/CAP-9"}],
    }
    r = _post(client, _event("PAYMENT.CAPTURE.REFUNDED", refund))
    assert r.status_code == 200, r.text
    db.refresh(b)
    assert b.refund_amount == 50000
    assert b.payment_status == "partially_refunded"


def test_other_event_types_are_acknowledged(client, db):
    r = _post(client, _event("CHECKOUT.ORDER.APPROVED", {"id": "ORDER-1"}))
    assert r.json() == {"received": True, "bookingId": None}


def test_failed_event_is_processed_again_on_redelivery(db, make_booking, monkeypatch):
    b = _paypal_booking(make_booking, paypal_order_id="ORDER-7")
    event = _event("PAYMENT.CAPTURE.COMPLETED", _completed("ORDER-7"))

    def fail(*args, **kwargs):
        raise ValidationError("boom")

    monkeypatch.setattr(paypal_order_service, "_apply_capture_event", fail)
    with pytest.raises(UpstreamError):
        paypal_order_service.handle_webhook_event(db, event)
    assert db.query(PaymentWebhookEvent).one().status == "failed"

    monkeypatch.undo()
    result = paypal_order_service.handle_webhook_event(db, event)
    assert result == {"received": True, "bookingId": b.id}
    assert db.get(Booking, b.id).status == "authorized"
