"""
Device-local tables. These live in the on-device SQLite file, not in the
server database, so they hang off their own declarative base.
"""
from sqlalchemy import Column, Integer, String, Text, JSON, DateTime, Boolean
from sqlalchemy.orm import declarative_base

from .base import utcnow

LocalBase = declarative_base()


class SyncItemType:
    WORKFLOW_SUBMISSION = "workflow_submission"
    PROFILE_UPDATE = "profile_update"
    DOCUMENT_UPLOAD = "document_upload"

    ALL = [WORKFLOW_SUBMISSION, PROFILE_UPDATE, DOCUMENT_UPLOAD]


class DeliveryStatus:
    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    SYNCED = "synced"
    FAILED = "failed"
    FAILED_TERMINAL = "failed_terminal"  # dead-lettered, needs manual requeue

    ALL = [PENDING, IN_FLIGHT, SYNCED, FAILED, FAILED_TERMINAL]
    DELIVERABLE = (PENDING, FAILED)


class RecordStatus:
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class LocalUserProfile(LocalBase):
    __tablename__ = "user_profile"

    id = Column(Integer, primary_key=True)  # always 1
    remote_user_id = Column(String, nullable=True)
    name = Column(String(200), nullable=True)
    age = Column(String(10), nullable=True)
    gender = Column(String(10), nullable=True)
    location = Column(String(200), nullable=True)
    language = Column(String(20), nullable=True)
    voice_profile_created = Column(Boolean, default=False, nullable=False)
    phone = Column(String(20), nullable=True)
    email = Column(String(255), nullable=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class LocalWorkflowRecord(LocalBase):
    """Append-only history of guided forms completed on this device."""
    __tablename__ = "workflow_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    workflow_type = Column(String(100), nullable=False)
    workflow_data = Column(JSON, nullable=False, default=dict)
    status = Column(String(20), nullable=False, default=RecordStatus.PENDING)
    reference_number = Column(String(20), nullable=True)
    server_id = Column(String, nullable=True)
    sync_local_id = Column(String(100), nullable=True, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True)
    synced_at = Column(DateTime, nullable=True)


class SyncQueueItem(LocalBase):
    __tablename__ = "sync_queue"

    # Integer key preserves creation order when timestamps tie
    id = Column(Integer, primary_key=True, autoincrement=True)
    local_id = Column(String(100), unique=True, nullable=False, index=True)
    item_type = Column(String(50), nullable=False)
    payload = Column(JSON, nullable=False)
    record_id = Column(Integer, nullable=True)
    delivery_status = Column(String(20), nullable=False, default=DeliveryStatus.PENDING, index=True)
    last_error = Column(Text, nullable=True)
    attempts = Column(Integer, nullable=False, default=0)
    rejections = Column(Integer, nullable=False, default=0)
    reference_number = Column(String(20), nullable=True)
    server_id = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    last_attempt_at = Column(DateTime, nullable=True)
    synced_at = Column(DateTime, nullable=True)


class LocalSetting(LocalBase):
    __tablename__ = "settings"

    key = Column(String(100), primary_key=True)
    value = Column(Text, nullable=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
