"""Workflow catalogue, direct submission and reference-number tracking."""
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, ConfigDict
from sqlalchemy.orm import Session

from ..core.errors import DuplicateSubmissionError, IllegalTransitionError, ServerError, WorkflowNotFoundError
from ..core.identity import get_device_id, get_user_id
from ..models.base import get_db
from ..models.workflow import WorkflowRecord
from ..services import sync_processor, tracking
from ..services.workflow_definitions import list_workflows, load_workflow

router = APIRouter(prefix="/workflows", tags=["workflows"])

NEXT_STEPS = [
    "Your application has been submitted successfully",
    "You will receive SMS updates on your registered mobile number",
    "Track your application status using the reference number",
    "Visit the nearest center if biometric verification is required",
]


class SubmitRequest(BaseModel):
    workflowId: str
    data: Dict[str, Any]
    localId: Optional[str] = None
    submittedAt: Optional[str] = None


class StatusUpdateRequest(BaseModel):
    status: str


class WorkflowRecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    workflow_type: str
    workflow_data: Dict[str, Any]
    status: str
    reference_number: str
    submitted_at: datetime
    completed_at: Optional[datetime]


@router.get("/")
def get_workflows(category: Optional[str] = None):
    return [d.summary() for d in list_workflows(category)]


@router.get("/user/{user_id}", response_model=List[WorkflowRecordResponse])
def get_user_workflows(
    user_id: str,
    db: Session = Depends(get_db),
    caller_id: Optional[str] = Depends(get_user_id),
):
    """A user's submitted workflows, newest first."""
    if caller_id != user_id:
        raise HTTPException(status_code=403, detail="Access denied")
    return (
        db.query(WorkflowRecord)
        .filter(WorkflowRecord.user_id == user_id)
        .order_by(WorkflowRecord.submitted_at.desc())
        .limit(50)
        .all()
    )


@router.get("/track/{reference_number}", name="track_workflow")
def track_workflow(reference_number: str, db: Session = Depends(get_db)):
    record = db.query(WorkflowRecord).filter(WorkflowRecord.reference_number == reference_number).first()
    if not record:
        raise HTTPException(status_code=404, detail="Workflow not found with this reference number")
    return tracking.tracking_view(record)


@router.patch("/track/{reference_number}/status")
def update_workflow_status(
    reference_number: str,
    req: StatusUpdateRequest,
    db: Session = Depends(get_db),
):
    """Advance a submitted workflow through review."""
    record = db.query(WorkflowRecord).filter(WorkflowRecord.reference_number == reference_number).first()
    if not record:
        raise HTTPException(status_code=404, detail="Workflow not found with this reference number")
    try:
        record = tracking.update_status(db, record, req.status)
    except IllegalTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return tracking.tracking_view(record)


@router.get("/{workflow_id}")
def get_workflow(workflow_id: str):
    try:
        return load_workflow(workflow_id).to_dict()
    except WorkflowNotFoundError:
        raise HTTPException(status_code=404, detail="Workflow not found")


@router.post("/submit", status_code=status.HTTP_201_CREATED)
def submit_workflow(
    req: SubmitRequest,
    request: Request,
    db: Session = Depends(get_db),
    user_id: Optional[str] = Depends(get_user_id),
    device_id: Optional[str] = Depends(get_device_id),
):
    """Online submission. Re-sending the same ``localId`` returns the original reference."""
    try:
        definition = load_workflow(req.workflowId)
    except WorkflowNotFoundError:
        raise HTTPException(status_code=400, detail="Invalid workflow ID")

    duplicate = False
    try:
        record = sync_processor.submit_workflow(
            db, definition.id, req.data,
            user_id=user_id, device_id=device_id, local_id=req.localId,
        )
    except DuplicateSubmissionError as dup:
        record = dup.record
        duplicate = True
    except ServerError as e:
        raise HTTPException(status_code=e.status_code or 400, detail=str(e))

    return {
        "submissionId": record.id,
        "workflowId": record.workflow_type,
        "status": record.status,
        "referenceNumber": record.reference_number,
        "estimatedProcessingTime": definition.processing_time,
        "trackingUrl": str(request.url_for("track_workflow", reference_number=record.reference_number)),
        "nextSteps": NEXT_STEPS,
        "duplicate": duplicate,
    }
