from sqlalchemy import Column, String, JSON, DateTime
from .base import Base, TimestampMixin, generate_uuid


class WorkflowStatus:
    SUBMITTED = "submitted"
    PROCESSING = "processing"
    COMPLETED = "completed"
    REJECTED = "rejected"

    ALL = [SUBMITTED, PROCESSING, COMPLETED, REJECTED]
    TERMINAL = {COMPLETED, REJECTED}


class WorkflowRecord(Base, TimestampMixin):
    """A submitted workflow. Source of truth for tracking; never deleted."""
    __tablename__ = "workflows"

    id = Column(String, primary_key=True, default=generate_uuid)
    user_id = Column(String, nullable=True, index=True)
    device_id = Column(String(100), nullable=True)
    # Idempotency key from the device queue; one record per key
    local_id = Column(String(100), unique=True, nullable=True, index=True)
    reference_number = Column(String(20), unique=True, nullable=False, index=True)
    workflow_type = Column(String(100), nullable=False, index=True)
    workflow_data = Column(JSON, nullable=False, default=dict)
    status = Column(String(20), nullable=False, default=WorkflowStatus.SUBMITTED, index=True)
    submitted_at = Column(DateTime, nullable=False)
    processing_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
