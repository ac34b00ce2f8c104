#!/usr/bin/env python3
"""Container entrypoint: wait for Postgres, migrate, seed demo users, exec uvicorn."""
import logging
import os
import sys

logging.basicConfig(level=logging.INFO, format="[start_api] %(message)s")
logger = logging.getLogger("start_api")


def migrate() -> None:
    from alembic import command
    from alembic.config import Config
    from app.core.config import settings

    cfg = Config(os.path.join(os.path.dirname(__file__), "alembic.ini"))
    cfg.set_main_option("sqlalchemy.url", settings.DATABASE_URL)
    command.upgrade(cfg, "head")
    logger.info("Migrations applied")


def seed() -> None:
    # fresh engine so the seed never reuses a connection opened during alembic's env load
    from sqlalchemy import create_engine
    from sqlalchemy.orm import sessionmaker
    from app.core.config import settings
    from app.seed import run as run_seed

    engine = create_engine(settings.DATABASE_URL, pool_pre_ping=True)
    try:
        run_seed(sessionmaker(autocommit=False, autoflush=False, bind=engine)())
    finally:
        engine.dispose()


def main() -> None:
    import wait_for_db  # noqa: F401
    migrate()
    if os.getenv("SEED_DEMO_DATA", "true").lower() in ("1", "true", "yes"):
        seed()
    port = os.getenv("PORT", "8000")
    logger.info("Starting uvicorn on :%s", port)
    os.execv(sys.executable, [sys.executable, "-m", "uvicorn", "app.main:app", "--host", "0.0.0.0", "--port", port])


if __name__ == "__main__":
    main()
