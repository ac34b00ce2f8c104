import logging
import zlib
from contextlib import contextmanager

from sqlalchemy import text
from sqlalchemy.engine import Connection
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


def lock_key(name: str) -> int:
    return zlib.crc32(name.encode("utf-8"))


@contextmanager
def connection_lock(conn: Connection, name: str):
    """Session-level advisory lock taken and released on `conn`, which must stay checked out throughout."""
    key = lock_key(name)
    acquired = bool(conn.execute(text("SELECT pg_try_advisory_lock(:k)"), {"k": key}).scalar())
    conn.commit()
    if not acquired:
        logger.info("Advisory lock %s held elsewhere, skipping", name)
    try:
        yield acquired
    finally:
        if acquired:
            conn.execute(text("SELECT pg_advisory_unlock(:k)"), {"k": key})
            conn.commit()


@contextmanager
def advisory_lock(db: Session, name: str):
    """Yield True if this process holds the named Postgres advisory lock.

    The lock lives on a dedicated connection held for the whole block; the
    session's connection can change on every commit. Other dialects have no
    advisory locks; there the lock is always granted.
    """
    engine = db.get_bind().engine
    if engine.dialect.name != "postgresql":
        yield True
        return
    with engine.connect() as conn:
        with connection_lock(conn, name) as acquired:
            yield acquired
