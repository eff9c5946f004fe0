from sqlalchemy import Column, String, Text, JSON, DateTime
from .base import Base, TimestampMixin, generate_uuid


class SyncFailureStatus:
    PENDING = "pending"
    SYNCED = "synced"


class SyncFailure(Base, TimestampMixin):
    """A batch item the server rejected, kept for a later server-side retry."""
    __tablename__ = "sync_failures"

    id = Column(String, primary_key=True, default=generate_uuid)
    user_id = Column(String, nullable=True, index=True)
    device_id = Column(String(100), nullable=True)
    local_id = Column(String(100), nullable=False, index=True)
    item_type = Column(String(50), nullable=False)
    payload = Column(JSON, nullable=True)
    status = Column(String(20), nullable=False, default=SyncFailureStatus.PENDING, index=True)
    error_message = Column(Text, nullable=True)
    synced_at = Column(DateTime, nullable=True)


class ActivityLog(Base, TimestampMixin):
    """Operational trail of sync, workflow and profile requests."""
    __tablename__ = "activity_logs"

    id = Column(String, primary_key=True, default=generate_uuid)
    user_id = Column(String, nullable=True, index=True)
    device_id = Column(String(100), nullable=True)
    feature = Column(String(50), nullable=False, index=True)
    action = Column(String(50), nullable=False)
    message = Column(Text, nullable=True)
    request_method = Column(String(10), nullable=True)
    request_path = Column(String(500), nullable=True)
    status_code = Column(String(3), nullable=True)
    details = Column(JSON, nullable=True)
