import pytest

from app.models.booking import Booking
from app.models.dispute import Dispute
from app.models.moderation import ModerationFlag, UserSuspension

from tests.conftest import auth


@pytest.fixture()
def disputed(db, make_booking, customer, client):
    b = make_booking(status="completed", amount_captured=100000, payment_status="paid")
    r = client.post("/api/v1/disputes", json={"bookingId": b.id, "reason": "quality", "description": "Quedó sucio"},
                    headers=auth(customer))
    assert r.status_code == 201, r.text
    return db.get(Dispute, r.json()["id"])


def test_open_dispute_targets_other_party(disputed, professional):
    assert disputed.against_id == professional.id
    assert disputed.status == "open"


def test_only_one_open_dispute_per_booking(client, disputed, customer):
    r = client.post("/api/v1/disputes", json={"bookingId": disputed.booking_id, "reason": "again"}, headers=auth(customer))
    assert r.status_code == 409


def test_outsider_cannot_dispute(client, make_booking, other_customer):
    b = make_booking(status="completed")
    r = client.post("/api/v1/disputes", json={"bookingId": b.id, "reason": "x"}, headers=auth(other_customer))
    assert r.status_code == 403


def test_cannot_dispute_unstarted_booking(client, make_booking, customer):
    b = make_booking(status="confirmed")
    r = client.post("/api/v1/disputes", json={"bookingId": b.id, "reason": "x"}, headers=auth(customer))
    assert r.status_code == 400


def test_refund_resolution(client, db, disputed, admin, gateway):
    r = client.post(f"/api/v1/admin/disputes/{disputed.id}/resolve",
                    json={"resolutionType": "refund", "refundAmount": 30000}, headers=auth(admin))
    assert r.status_code == 200, r.text
    assert r.json()["status"] == "resolved"
    assert [c for c in gateway.calls if c[0] == "refund"][0][1]["amount"] == 30000
    b = db.get(Booking, disputed.booking_id)
    assert b.refund_amount == 30000
    assert b.payment_status == "partially_refunded"


def test_full_refund_marks_payment_refunded(client, db, disputed, admin, gateway):
    r = client.post(f"/api/v1/admin/disputes/{disputed.id}/resolve",
                    json={"resolutionType": "refund", "refundAmount": 100000}, headers=auth(admin))
    assert r.status_code == 200, r.text
    assert db.get(Booking, disputed.booking_id).payment_status == "refunded"


def test_refund_cannot_exceed_capture(client, disputed, admin, gateway):
    r = client.post(f"/api/v1/admin/disputes/{disputed.id}/resolve",
                    json={"resolutionType": "refund", "refundAmount": 100001}, headers=auth(admin))
    assert r.status_code == 400
    assert gateway.calls == []


def test_warning_flags_other_party(client, db, disputed, admin, professional):
    r = client.post(f"/api/v1/admin/disputes/{disputed.id}/resolve", json={"resolutionType": "warning"}, headers=auth(admin))
    assert r.status_code == 200
    flag = db.query(ModerationFlag).one()
    assert flag.user_id == professional.id
    db.refresh(disputed)
    assert disputed.moderation_flag_id == flag.id


def test_suspend_defaults_to_seven_days(client, db, disputed, admin, professional):
    r = client.post(f"/api/v1/admin/disputes/{disputed.id}/resolve", json={"resolutionType": "suspend"}, headers=auth(admin))
    assert r.status_code == 200
    s = db.query(UserSuspension).one()
    assert s.user_id == professional.id
    assert round((s.expires_at - s.created_at).total_seconds() / 86400) == 7


def test_request_info_keeps_dispute_open(client, db, disputed, admin):
    r = client.post(f"/api/v1/admin/disputes/{disputed.id}/resolve", json={"resolutionType": "request_info"}, headers=auth(admin))
    assert r.json()["status"] == "awaiting_info"
    assert r.json()["resolvedAt"] is None


def test_unknown_resolution_type_is_400(client, disputed, admin):
    r = client.post(f"/api/v1/admin/disputes/{disputed.id}/resolve", json={"resolutionType": "ban"}, headers=auth(admin))
    assert r.status_code == 400


def test_non_admin_cannot_resolve(client, disputed, customer):
    r = client.post(f"/api/v1/admin/disputes/{disputed.id}/resolve", json={"resolutionType": "no_action"}, headers=auth(customer))
    assert r.status_code == 403


def test_admin_lists_disputes(client, disputed, admin):
    r = client.get("/api/v1/admin/disputes?status=open", headers=auth(admin))
    assert [d["id"] for d in r.json()] == [disputed.id]
