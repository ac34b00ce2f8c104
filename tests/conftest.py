import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("PAYMENTS_SANDBOX", "false")

import uuid
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.main import app
from app.api import deps
from app.core.security import create_access_token, hash_password
from app.core.timeutil import utcnow
from app.db.session import Base, get_db
from app.models.booking import Booking
from app.models.professional import ProfessionalProfile
from app.models.user import User
from app.services.payment_gateway import PaymentGatewayError, PaymentIntent
from app.services.paypal_client import PayPalError

SERVICE_ADDRESS = {"street": "Calle 93 #11-27", "city": "Bogotá", "lat": 4.6767, "lng": -74.0483}


class FakeGateway:
    """Records every processor call; names in `fail_on` raise PaymentGatewayError.

    `during[name]` runs just before the call returns, to interleave another request.
    """

    def __init__(self):
        self.calls = []
        self.fail_on = set()
        self.during = {}
        self._n = 0

    def _record(self, name, **kwargs):
        self.calls.append((name, kwargs))
        if name in self.during:
            self.during[name]()
        if name in self.fail_on:
            raise PaymentGatewayError(f"{name} declined")

    def names(self):
        return [c[0] for c in self.calls]

    def ensure_customer(self, email, profile_id):
        self._record("ensure_customer", email=email)
        return f"cus_{profile_id[:8]}"

    def authorize(self, amount, currency, customer_ref, metadata, idempotency_key=None):
        self._record("authorize", amount=amount, currency=currency, idempotency_key=idempotency_key)
        self._n += 1
        return PaymentIntent(id=f"pi_test_{self._n}", status="requires_capture", amount=amount,
                             currency=currency, client_secret=f"pi_test_{self._n}_secret")

    def capture(self, intent_id, amount=None, idempotency_key=None):
        self._record("capture", intent_id=intent_id, amount=amount, idempotency_key=idempotency_key)
        return PaymentIntent(id=intent_id, status="succeeded", amount=amount or 0, currency="", amount_received=amount or 0)

    def cancel(self, intent_id):
        self._record("cancel", intent_id=intent_id)
        return PaymentIntent(id=intent_id, status="canceled", amount=0, currency="")

    def refund(self, intent_id, amount=None):
        self._record("refund", intent_id=intent_id, amount=amount)
        return {"id": "re_test", "status": "succeeded", "amount": amount}

    def transfer(self, amount, currency, destination, metadata, idempotency_key):
        self._record("transfer", amount=amount, currency=currency, destination=destination, idempotency_key=idempotency_key)
        return "tr_test"

    def instant_payout(self, amount, currency, account_id, metadata, idempotency_key):
        self._record("instant_payout", amount=amount, currency=currency, account_id=account_id, idempotency_key=idempotency_key)
        return {"id": "po_test", "status": "pending", "arrival_date": 1773400000}


class FakePayPal:
    def __init__(self):
        self.calls = []
        self.capture_fails = False
        self.signature_valid = True

    def create_order(self, *, amount, currency, reference_id):
        self.calls.append(("create_order", reference_id))
        return {"id": f"ORDER-{reference_id[:8]}", "status": "CREATED"}

    def capture_order(self, order_id):
        self.calls.append(("capture_order", order_id))
        if self.capture_fails:
            raise PayPalError("PayPal 422: ORDER_NOT_APPROVED")
        return {
            "id": order_id,
            "status": "COMPLETED",
            "purchase_units": [{"payments": {"captures": [{"id": f"CAP-{order_id}", "status": "COMPLETED"}]}}],
        }

    def get_order(self, order_id):
        self.calls.append(("get_order", order_id))
        return {"id": order_id, "status": "APPROVED", "purchase_units": []}

    def refund_capture(self, *, capture_id, amount, currency):
        self.calls.append(("refund_capture", capture_id, amount))
        return {"id": f"REF-{capture_id}", "status": "COMPLETED"}

    def verify_webhook_signature(self, headers, event, webhook_id):
        self.calls.append(("verify_webhook_signature", event.get("id")))
        return self.signature_valid


@pytest.fixture()
def db():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def gateway():
    return FakeGateway()


@pytest.fixture()
def paypal():
    return FakePayPal()


@pytest.fixture()
def client(db, gateway, paypal):
    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[deps.payment_gateway] = lambda: gateway
    app.dependency_overrides[deps.paypal_client] = lambda: paypal
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def _user(db, role, name, country="CO"):
    u = User(
        id=str(uuid.uuid4()),
        email=f"{name.lower().replace(' ', '.')}@example.com",
        full_name=name,
        role=role,
        password_hash=hash_password("secret123"),
        is_active=True,
        country=country,
    )
    db.add(u)
    db.commit()
    return u


@pytest.fixture()
def customer(db):
    return _user(db, "customer", "Ana Cliente")


@pytest.fixture()
def other_customer(db):
    return _user(db, "customer", "Otro Cliente")


@pytest.fixture()
def professional(db):
    u = _user(db, "professional", "Pedro Pro")
    db.add(ProfessionalProfile(profile_id=u.id, slug="pedro-pro", hourly_rate=50000, currency="COP"))
    db.commit()
    return u


@pytest.fixture()
def other_professional(db):
    return _user(db, "professional", "Otra Pro")


@pytest.fixture()
def admin(db):
    return _user(db, "admin", "Admin User")


def auth(user):
    return {"Authorization": f"Bearer {create_access_token(user.id, role=user.role)}"}


@pytest.fixture()
def make_booking(db, customer, professional):
    def _make(status="authorized", provider="stripe", start_in=timedelta(days=3), **overrides):
        start = utcnow() + start_in
        values = dict(
            id=str(uuid.uuid4()),
            customer_id=customer.id,
            professional_id=professional.id,
            scheduled_start=start,
            scheduled_end=start + timedelta(hours=2),
            duration_minutes=120,
            currency="COP",
            amount_estimated=100000,
            amount_authorized=100000,
            service_name="Limpieza general",
            service_hourly_rate=50000,
            address=dict(SERVICE_ADDRESS),
            status=status,
            payment_provider=provider,
            payment_status="authorized",
        )
        if provider == "stripe":
            values["stripe_payment_intent_id"] = f"pi_existing_{values['id'][:8]}"
        values.update(overrides)
        b = Booking(**values)
        db.add(b)
        db.commit()
        return b

    return _make
