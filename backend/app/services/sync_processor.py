"""
Remote submission service behind ``POST /sync`` and ``POST /workflows/submit``.

Each batch item is processed and committed on its own, so one bad item never
takes its siblings down with it. ``localId`` is an idempotency key: a second
submission with the same key returns the record created by the first.
"""
import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.errors import (
    DuplicateSubmissionError,
    ServerError,
    SyncError,
    UserNotFoundError,
    WorkflowNotFoundError,
)
from ..models.base import generate_uuid, utcnow
from ..models.local import SyncItemType
from ..models.sync import ActivityLog, SyncFailure, SyncFailureStatus
from ..models.user import User
from ..models.workflow import WorkflowRecord, WorkflowStatus
from .profiles import normalize_profile_changes
from .reference_numbers import allocate_reference_number, generate_reference_number
from .workflow_definitions import load_workflow

logger = logging.getLogger(__name__)


def find_by_local_id(db: Session, local_id: str) -> Optional[WorkflowRecord]:
    return db.query(WorkflowRecord).filter(WorkflowRecord.local_id == local_id).first()


def _already_submitted(record: WorkflowRecord, user_id: Optional[str]) -> SyncError:
    """The earlier submission for a reused key, unless it belongs to someone else."""
    if record.user_id != user_id:
        return ServerError("localId already used by another account", status_code=409)
    return DuplicateSubmissionError(record)


def submit_workflow(
    db: Session,
    workflow_type: str,
    workflow_data: Dict[str, Any],
    user_id: Optional[str] = None,
    device_id: Optional[str] = None,
    local_id: Optional[str] = None,
    generator=generate_reference_number,
) -> WorkflowRecord:
    """
    Persist a submitted workflow under a fresh reference number.

    Raises DuplicateSubmissionError when ``local_id`` was already used by the
    same caller, including when a concurrent request with the same key wins
    the insert, and ServerError when another caller owns the key.
    """
    if local_id:
        existing = find_by_local_id(db, local_id)
        if existing is not None:
            raise _already_submitted(existing, user_id)

    for _ in range(settings.REFERENCE_MAX_ATTEMPTS):
        reference_number = allocate_reference_number(db, generator=generator)
        record = WorkflowRecord(
            id=generate_uuid(),
            user_id=user_id,
            device_id=device_id,
            local_id=local_id,
            reference_number=reference_number,
            workflow_type=workflow_type,
            workflow_data=dict(workflow_data),
            status=WorkflowStatus.SUBMITTED,
            submitted_at=utcnow(),
        )
        db.add(record)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            if local_id:
                existing = find_by_local_id(db, local_id)
                if existing is not None:
                    raise _already_submitted(existing, user_id)
            logger.info("Reference number %s taken concurrently, regenerating", reference_number)
            continue
        db.refresh(record)
        return record
    raise ServerError("Could not allocate a unique reference number")


def apply_profile_update(db: Session, user_id: Optional[str], changes: Any) -> User:
    try:
        values = normalize_profile_changes(changes)
    except ValueError as exc:
        raise ServerError(str(exc)) from exc
    user = db.query(User).filter(User.id == user_id).first() if user_id else None
    if user is None:
        raise UserNotFoundError()
    for column, value in values.items():
        setattr(user, column, value)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ServerError("Phone or email already belongs to another user") from exc
    db.refresh(user)
    return user


def _workflow_fields(payload: Any) -> Tuple[str, Dict[str, Any]]:
    if not isinstance(payload, dict):
        raise ServerError("Workflow submission payload must be an object")
    workflow_type = payload.get("workflowId")
    workflow_data = payload.get("workflowData", {})
    if not isinstance(workflow_type, str) or not workflow_type:
        raise ServerError("workflowId is required")
    if not isinstance(workflow_data, dict):
        raise ServerError("workflowData must be an object")
    try:
        load_workflow(workflow_type)
    except WorkflowNotFoundError as exc:
        raise ServerError(str(exc)) from exc
    return workflow_type, workflow_data


def process_item(
    db: Session,
    local_id: str,
    item_type: str,
    payload: Any,
    user_id: Optional[str] = None,
    device_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Process one batch item and describe the outcome. Never raises."""
    try:
        if item_type == SyncItemType.WORKFLOW_SUBMISSION:
            workflow_type, workflow_data = _workflow_fields(payload)
            try:
                record = submit_workflow(
                    db, workflow_type, workflow_data,
                    user_id=user_id, device_id=device_id, local_id=local_id,
                )
                duplicate = False
            except DuplicateSubmissionError as dup:
                record = dup.record
                duplicate = True
            return {
                "localId": local_id,
                "status": "success",
                "serverId": record.id,
                "referenceNumber": record.reference_number,
                "duplicate": duplicate,
            }

        if item_type == SyncItemType.PROFILE_UPDATE:
            user = apply_profile_update(db, user_id, payload)
            return {"localId": local_id, "status": "success", "serverId": user.id}

        if item_type == SyncItemType.DOCUMENT_UPLOAD:
            # File bytes travel through the OCR service; this only acknowledges
            return {"localId": local_id, "status": "success", "serverId": f"doc_{local_id}"}

        raise ServerError("Unknown sync item type")
    except ServerError as exc:
        db.rollback()
        return {"localId": local_id, "status": "failed", "error": str(exc)}
    except Exception as exc:
        db.rollback()
        logger.exception("Sync item %s (%s) failed unexpectedly", local_id, item_type)
        return {"localId": local_id, "status": "failed", "error": str(exc) or exc.__class__.__name__}


def _record_failure(db: Session, user_id, device_id, local_id, item_type, payload, error) -> None:
    try:
        failure = db.query(SyncFailure).filter(
            SyncFailure.local_id == local_id,
            SyncFailure.status == SyncFailureStatus.PENDING,
        ).first()
        if failure is None:
            failure = SyncFailure(
                id=generate_uuid(),
                user_id=user_id,
                device_id=device_id,
                local_id=local_id,
                item_type=item_type,
                payload=payload,
            )
            db.add(failure)
        failure.error_message = error
        db.commit()
    except Exception as exc:
        db.rollback()
        logger.warning("Could not record sync failure for %s: %s", local_id, exc)


def _resolve_failures(db: Session, local_id: str) -> None:
    """A later successful delivery settles earlier failures of the same item."""
    try:
        db.query(SyncFailure).filter(
            SyncFailure.local_id == local_id,
            SyncFailure.status == SyncFailureStatus.PENDING,
        ).update(
            {SyncFailure.status: SyncFailureStatus.SYNCED, SyncFailure.synced_at: utcnow(), SyncFailure.error_message: None},
            synchronize_session=False,
        )
        db.commit()
    except Exception as exc:
        db.rollback()
        logger.warning("Could not settle sync failures for %s: %s", local_id, exc)


def process_batch(
    db: Session,
    items: Iterable[Dict[str, Any]],
    user_id: Optional[str] = None,
    device_id: Optional[str] = None,
    last_sync_time: Optional[str] = None,
) -> Dict[str, Any]:
    """Process every item independently; ``successful + failed == processed``."""
    results: List[Dict[str, Any]] = []
    successful = failed = 0

    for item in items:
        local_id = str(item.get("localId"))
        result = process_item(
            db, local_id, item.get("type"), item.get("payload"),
            user_id=user_id, device_id=device_id,
        )
        if result["status"] == "success":
            successful += 1
            _resolve_failures(db, local_id)
        else:
            failed += 1
            _record_failure(db, user_id, device_id, local_id, item.get("type"), item.get("payload"), result["error"])
        results.append(result)

    try:
        db.add(ActivityLog(
            id=generate_uuid(),
            user_id=user_id,
            device_id=device_id,
            feature="sync",
            action="bulk_sync",
            message=f"Bulk sync completed: {successful} successful, {failed} failed",
            details={
                "itemCount": len(results),
                "successful": successful,
                "failed": failed,
                "lastSyncTime": last_sync_time,
            },
        ))
        db.commit()
    except Exception as exc:
        db.rollback()
        logger.warning("Could not write sync activity log: %s", exc)

    logger.info("Bulk sync from %s: %d processed, %d successful, %d failed",
                device_id or "unknown device", len(results), successful, failed)
    return {
        "processed": len(results),
        "successful": successful,
        "failed": failed,
        "results": results,
        "syncTime": utcnow().isoformat() + "Z",
    }


def list_failures(db: Session, user_id: Optional[str], limit: int = 100) -> List[SyncFailure]:
    return (
        db.query(SyncFailure)
        .filter(SyncFailure.user_id == user_id, SyncFailure.status == SyncFailureStatus.PENDING)
        .order_by(SyncFailure.created_at)
        .limit(limit)
        .all()
    )


def retry_failures(db: Session, user_id: Optional[str], sync_ids: List[str]) -> Dict[str, Any]:
    failures = (
        db.query(SyncFailure)
        .filter(
            SyncFailure.id.in_(sync_ids),
            SyncFailure.user_id == user_id,
            SyncFailure.status == SyncFailureStatus.PENDING,
        )
        .order_by(SyncFailure.created_at)
        .all()
    )
    results = []
    successful = 0
    for failure in failures:
        result = process_item(
            db, failure.local_id, failure.item_type, failure.payload,
            user_id=failure.user_id, device_id=failure.device_id,
        )
        if result["status"] == "success":
            failure.status = SyncFailureStatus.SYNCED
            failure.synced_at = utcnow()
            failure.error_message = None
            successful += 1
        else:
            failure.error_message = result["error"]
        db.commit()
        results.append(dict(result, syncId=failure.id))
    return {"processed": len(failures), "successful": successful, "results": results}
