"""
Demo data seeder for Sahayak.

Creates a demo citizen with a completed profile and one submitted Aadhaar
application, so tracking and history work immediately after a fresh start.

  Demo user  : X-User-Id printed on first run, phone 9000000001
  Reference  : printed on first run

This seeder is idempotent and safe to call on every startup.
"""
import logging

from .models.base import SessionLocal, Base, engine, generate_uuid
from .models.user import User, Gender, Language
from .models.workflow import WorkflowRecord
from .services.sync_processor import submit_workflow

logger = logging.getLogger(__name__)

DEMO_USER_NAME = "Asha Devi"
DEMO_USER_PHONE = "9000000001"
DEMO_USER_EMAIL = "asha@sahayak.demo"
DEMO_DEVICE_ID = "demo-device-1"
DEMO_LOCAL_ID = "demo-aadhaar-1"


def seed_demo_data() -> None:
    """Create the demo user and application if they do not already exist."""
    # No-op when already created by main.py
    Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        user = _seed_user(db)
        _seed_application(db, user.id)
    finally:
        db.close()


def _seed_user(db) -> User:
    user = db.query(User).filter(User.phone == DEMO_USER_PHONE).first()
    if not user:
        user = User(
            id=generate_uuid(),
            name=DEMO_USER_NAME,
            age="34",
            gender=Gender.FEMALE,
            location="Jaipur, Rajasthan",
            language=Language.HINDI,
            voice_profile_created=True,
            phone=DEMO_USER_PHONE,
            email=DEMO_USER_EMAIL,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        logger.info("[seed] Created demo user: %s (id: %s)", user.name, user.id)
    return user


def _seed_application(db, user_id: str) -> None:
    if db.query(WorkflowRecord).filter(WorkflowRecord.local_id == DEMO_LOCAL_ID).first():
        return
    record = submit_workflow(
        db,
        "aadhaar-application",
        {"ask_name": DEMO_USER_NAME, "ask_age": "34", "scan_address_proof": "Ward 12, Jaipur"},
        user_id=user_id,
        device_id=DEMO_DEVICE_ID,
        local_id=DEMO_LOCAL_ID,
    )
    logger.info("[seed] Created demo application: %s", record.reference_number)
