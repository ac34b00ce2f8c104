import hashlib
import hmac
import json
import time

import pytest

from app.core.config import settings

SECRET = "whsec_test"


@pytest.fixture(autouse=True)
def webhook_secret(monkeypatch):
    monkeypatch.setattr(settings, "STRIPE_WEBHOOK_SECRET", SECRET)


def _send(client, event_type, intent, secret=SECRET):
    payload = json.dumps({"id": "evt_1", "object": "event", "type": event_type, "data": {"object": intent}})
    ts = int(time.time())
    sig = hmac.new(secret.encode(), f"{ts}.{payload}".encode(), hashlib.sha256).hexdigest()
    return client.post("/api/v1/webhooks/stripe", content=payload,
                       headers={"stripe-signature": f"t={ts},v1={sig}", "Content-Type": "application/json"})


def test_bad_signature_rejected(client, make_booking):
    b = make_booking(status="pending_payment")
    r = _send(client, "payment_intent.amount_capturable_updated",
              {"id": b.stripe_payment_intent_id, "object": "payment_intent"}, secret="whsec_other")
    assert r.status_code == 400


def test_capturable_marks_booking_authorized(client, db, make_booking):
    b = make_booking(status="pending_payment", payment_status="unpaid")
    r = _send(client, "payment_intent.amount_capturable_updated",
              {"id": b.stripe_payment_intent_id, "object": "payment_intent", "amount_capturable": 100000})
    assert r.status_code == 200, r.text
    db.refresh(b)
    assert b.status == "authorized"
    assert b.amount_authorized == 100000


def test_canceled_intent_is_mirrored(client, db, make_booking):
    b = make_booking(status="pending_payment", payment_status="unpaid")
    _send(client, "payment_intent.canceled", {"id": b.stripe_payment_intent_id, "object": "payment_intent"})
    db.refresh(b)
    assert b.stripe_payment_status == "canceled"
    assert b.payment_status == "canceled"
    assert b.status == "pending_payment"


def test_unknown_intent_is_acknowledged(client):
    r = _send(client, "payment_intent.amount_capturable_updated", {"id": "pi_unknown", "object": "payment_intent"})
    assert r.status_code == 200
