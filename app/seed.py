import logging
import uuid

from sqlalchemy.orm import Session
from sqlalchemy import text
from sqlalchemy.exc import ProgrammingError, OperationalError

from app.db.session import SessionLocal
from app.core.security import hash_password
from app.models.user import User
from app.models.professional import ProfessionalProfile

logger = logging.getLogger(__name__)


def ensure_user(db: Session, email: str, password: str, role: str, name: str, country: str = "CO") -> User:
    u = db.query(User).filter(User.email == email).first()
    if u:
        return u
    u = User(
        id=str(uuid.uuid4()),
        email=email,
        full_name=name,
        role=role,
        password_hash=hash_password(password),
        is_active=True,
        country=country,
    )
    db.add(u)
    db.commit()
    return u


def ensure_profile(db: Session, user: User, slug: str, hourly_rate: int, currency: str) -> None:
    if db.get(ProfessionalProfile, user.id):
        return
    db.add(ProfessionalProfile(profile_id=user.id, slug=slug, hourly_rate=hourly_rate, currency=currency))
    db.commit()


def run(db=None):
    if db is None:
        db = SessionLocal()
    try:
        # If migrations haven't been applied yet, seeding must not crash the API.
        try:
            db.execute(text("SELECT 1 FROM users LIMIT 1"))
        except (ProgrammingError, OperationalError):
            db.rollback()
            logger.warning("users table not found yet. Skipping seeding (run alembic upgrade head).")
            return

        ensure_user(db, "admin@casaora.local", "admin12345", "admin", "Admin")
        ensure_user(db, "cliente@casaora.local", "cliente12345", "customer", "Cliente Demo")
        pro = ensure_user(db, "pro@casaora.local", "pro12345", "professional", "Profesional Demo")
        ensure_profile(db, pro, "profesional-demo", hourly_rate=50000, currency="COP")
        pro_py = ensure_user(db, "pro.py@casaora.local", "pro12345", "professional", "Profesional Asunción", country="PY")
        ensure_profile(db, pro_py, "profesional-asuncion", hourly_rate=60000, currency="PYG")
        logger.info("Seed data ensured")
    finally:
        db.close()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    run()
