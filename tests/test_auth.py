from app.core.config import settings
from app.core.security import create_refresh_token

from tests.conftest import auth


def test_login_sets_cookie_and_returns_tokens(client, customer):
    r = client.post("/api/v1/auth/login", json={"email": customer.email, "password": "secret123"})
    assert r.status_code == 200
    assert r.json()["access_token"]
    assert settings.AUTH_COOKIE_NAME in r.cookies


def test_cookie_authenticates(client, customer):
    client.post("/api/v1/auth/login", json={"email": customer.email, "password": "secret123"})
    r = client.get("/api/v1/auth/me")
    assert r.status_code == 200
    assert r.json()["role"] == "customer"


def test_wrong_password(client, customer):
    r = client.post("/api/v1/auth/login", json={"email": customer.email, "password": "nope"})
    assert r.status_code == 401


def test_refresh_token_cannot_be_used_as_access(client, customer):
    r = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {create_refresh_token(customer.id)}"})
    assert r.status_code == 401


def test_refresh_issues_new_pair(client, customer):
    r = client.post("/api/v1/auth/refresh", json={"refreshToken": create_refresh_token(customer.id)})
    assert r.status_code == 200
    me = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {r.json()['access_token']}"})
    assert me.json()["id"] == customer.id


def test_inactive_user_rejected(client, db, customer):
    customer.is_active = False
    db.commit()
    assert client.get("/api/v1/auth/me", headers=auth(customer)).status_code == 401
