import os
from datetime import datetime, timezone

from sqlmodel import Session, select

from core.database import create_db_and_tables, get_engine
from models.user import AuthUser, Profile, UserRole
from utils.security import hash_password

ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin@traffic.local")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "admin12345")
ADMIN_NAME = "Portal Administrator"
ADMIN_PHONE = "08000000001"
ADMIN_PLATE = "ADMIN001"
ADMIN_BADGE = "TP-0001"
ADMIN_DEPARTMENT = "Traffic Control"


def seed_admin(engine=None) -> str:
    """Create a confirmed admin identity and profile in the local backend; returns its id"""
    engine = engine or get_engine()
    create_db_and_tables(engine)
    with Session(engine) as session:
        # check if admin already exists
        existing = session.exec(select(AuthUser).where(AuthUser.email == ADMIN_EMAIL)).first()
        if existing:
            print("Admin already exists")
            return existing.id

        identity = AuthUser(
            email=ADMIN_EMAIL,
            password_hash=hash_password(ADMIN_PASSWORD),
            user_metadata={"full_name": ADMIN_NAME, "role": UserRole.admin.value},
            email_confirmed_at=datetime.now(timezone.utc),
        )
        session.add(identity)
        session.commit()
        session.refresh(identity)

        profile = Profile(
            id=identity.id,
            full_name=ADMIN_NAME,
            email=ADMIN_EMAIL,
            phone_number=ADMIN_PHONE,
            vehicle_plate=ADMIN_PLATE,
            badge_id=ADMIN_BADGE,
            department=ADMIN_DEPARTMENT,
            role=UserRole.admin,
        )
        session.add(profile)
        session.commit()
        print(f"Admin seeded successfully: {ADMIN_EMAIL}")
        return identity.id


if __name__ == "__main__":
    seed_admin()
