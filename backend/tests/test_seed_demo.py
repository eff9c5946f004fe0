"""Tests for the demo data seeder."""
import pytest

from app.models.user import User
from app.models.workflow import WorkflowRecord
from app.seed_demo import DEMO_LOCAL_ID, DEMO_USER_PHONE, seed_demo_data
from app.services.reference_numbers import REFERENCE_PATTERN


class TestSeedDemoData:
    def test_creates_demo_user(self, db):
        seed_demo_data()
        user = db.query(User).filter(User.phone == DEMO_USER_PHONE).first()
        assert user is not None
        assert user.voice_profile_created is True

    def test_creates_tracked_application(self, db):
        seed_demo_data()
        record = db.query(WorkflowRecord).filter(WorkflowRecord.local_id == DEMO_LOCAL_ID).one()
        assert REFERENCE_PATTERN.match(record.reference_number)
        assert record.user_id == db.query(User).filter(User.phone == DEMO_USER_PHONE).one().id

    def test_is_idempotent(self, db):
        seed_demo_data()
        seed_demo_data()
        assert db.query(User).filter(User.phone == DEMO_USER_PHONE).count() == 1
        assert db.query(WorkflowRecord).count() == 1
