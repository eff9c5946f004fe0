"""Status tracking for submitted workflows."""
from datetime import timedelta
from typing import Dict, List

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.errors import IllegalTransitionError
from ..models.base import utcnow
from ..models.workflow import WorkflowRecord, WorkflowStatus

PROGRESS = {
    WorkflowStatus.SUBMITTED: 25,
    WorkflowStatus.PROCESSING: 60,
    WorkflowStatus.COMPLETED: 100,
    WorkflowStatus.REJECTED: 100,
}

NEXT_STATUSES = {
    WorkflowStatus.SUBMITTED: {WorkflowStatus.PROCESSING, WorkflowStatus.REJECTED},
    WorkflowStatus.PROCESSING: {WorkflowStatus.COMPLETED, WorkflowStatus.REJECTED},
    WorkflowStatus.COMPLETED: set(),
    WorkflowStatus.REJECTED: set(),
}


def _iso(value):
    return value.isoformat() + "Z" if value is not None else None


def build_timeline(record: WorkflowRecord) -> List[Dict]:
    timeline = [{
        "stage": WorkflowStatus.SUBMITTED,
        "timestamp": _iso(record.submitted_at),
        "description": "Application submitted successfully",
    }]
    if record.processing_at is not None:
        timeline.append({
            "stage": WorkflowStatus.PROCESSING,
            "timestamp": _iso(record.processing_at),
            "description": "Application under review",
        })
    if record.status == WorkflowStatus.COMPLETED:
        timeline.append({
            "stage": WorkflowStatus.COMPLETED,
            "timestamp": _iso(record.completed_at),
            "description": "Application processed",
        })
    elif record.status == WorkflowStatus.REJECTED:
        timeline.append({
            "stage": WorkflowStatus.REJECTED,
            "timestamp": _iso(record.completed_at),
            "description": "Application rejected",
        })
    return timeline


def tracking_view(record: WorkflowRecord) -> Dict:
    if record.completed_at is not None:
        estimated = record.completed_at
    else:
        estimated = record.submitted_at + timedelta(days=settings.DEFAULT_PROCESSING_DAYS)
    return {
        "referenceNumber": record.reference_number,
        "workflowType": record.workflow_type,
        "status": record.status,
        "currentStage": record.status,
        "progress": PROGRESS.get(record.status, 0),
        "timeline": build_timeline(record),
        "estimatedCompletion": _iso(estimated),
        "submittedAt": _iso(record.submitted_at),
    }


def update_status(db: Session, record: WorkflowRecord, status: str) -> WorkflowRecord:
    if status not in NEXT_STATUSES.get(record.status, set()):
        raise IllegalTransitionError(f"Cannot move {record.reference_number} from {record.status} to {status}")
    now = utcnow()
    record.status = status
    if status == WorkflowStatus.PROCESSING:
        record.processing_at = now
    else:
        record.completed_at = now
    db.commit()
    db.refresh(record)
    return record
