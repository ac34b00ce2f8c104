from contextlib import contextmanager
from datetime import timedelta

import pytest
from sqlalchemy import create_engine, event, text
from sqlalchemy.orm import Session
from sqlalchemy.pool import QueuePool

from app.core.config import settings
from app.core.timeutil import utcnow
from app.services.balance_service import add_to_pending_balance
from app.services.cron_lock import advisory_lock, connection_lock


@pytest.fixture()
def production(monkeypatch):
    monkeypatch.setattr(settings, "ENV", "production")
    monkeypatch.setattr(settings, "CRON_SECRET", "cron-secret")


def test_open_outside_production(client):
    r = client.get("/api/v1/cron/clear-balances")
    assert r.status_code == 200
    assert r.json() == {"success": True, "processed": 0, "failed": 0, "errors": []}


def test_production_requires_bearer_secret(client, production):
    assert client.get("/api/v1/cron/clear-balances").status_code == 401
    assert client.get("/api/v1/cron/clear-balances", headers={"Authorization": "Bearer wrong"}).status_code == 401
    r = client.get("/api/v1/cron/clear-balances", headers={"Authorization": "Bearer cron-secret"})
    assert r.status_code == 200


def test_production_without_secret_rejects(client, monkeypatch):
    monkeypatch.setattr(settings, "ENV", "production")
    monkeypatch.setattr(settings, "CRON_SECRET", "")
    r = client.get("/api/v1/cron/clear-balances", headers={"Authorization": "Bearer "})
    assert r.status_code == 401


def test_clears_elapsed_balances(client, db, make_booking, professional):
    b = make_booking(status="completed", amount_captured=100000)
    add_to_pending_balance(db, professional.id, b.id, 100000, "COP", now=utcnow() - timedelta(hours=25))
    db.commit()
    r = client.get("/api/v1/cron/clear-balances")
    assert r.json()["processed"] == 1


def test_skips_when_another_run_holds_the_lock(client, db, make_booking, professional, monkeypatch):
    @contextmanager
    def held(db, name):
        yield False

    monkeypatch.setattr("app.api.v1.routes.cron.advisory_lock", held)
    b = make_booking(status="completed", amount_captured=100000)
    add_to_pending_balance(db, professional.id, b.id, 100000, "COP", now=utcnow() - timedelta(hours=25))
    db.commit()
    r = client.get("/api/v1/cron/clear-balances")
    assert r.json() == {"success": True, "skipped": True}


def test_lock_released_on_the_connection_that_took_it(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'lock.db'}", poolclass=QueuePool)
    seen = []

    @event.listens_for(engine, "connect")
    def _register(dbapi_conn, _record):
        dbapi_conn.create_function("pg_try_advisory_lock", 1, lambda k: seen.append(("lock", id(dbapi_conn))) or 1)
        dbapi_conn.create_function("pg_advisory_unlock", 1, lambda k: seen.append(("unlock", id(dbapi_conn))) or 1)

    session = Session(engine)
    with engine.connect() as conn:
        with connection_lock(conn, "clear-balances") as acquired:
            assert acquired
            # the session checks out and returns its own connection meanwhile
            session.execute(text("SELECT 1"))
            session.commit()
    session.close()
    engine.dispose()

    assert [s[0] for s in seen] == ["lock", "unlock"]
    assert seen[0][1] == seen[1][1]


def test_lock_not_released_when_not_acquired(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'lock.db'}", poolclass=QueuePool)
    unlocks = []

    @event.listens_for(engine, "connect")
    def _register(dbapi_conn, _record):
        dbapi_conn.create_function("pg_try_advisory_lock", 1, lambda k: 0)
        dbapi_conn.create_function("pg_advisory_unlock", 1, lambda k: unlocks.append(k) or 1)

    with engine.connect() as conn:
        with connection_lock(conn, "payout-batch") as acquired:
            assert not acquired
    engine.dispose()
    assert unlocks == []


def test_lock_granted_on_other_dialects(db):
    with advisory_lock(db, "payout-batch") as acquired:
        assert acquired is True
