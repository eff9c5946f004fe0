"""Bulk sync endpoints for offline-queued device data."""
from datetime import datetime
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from ..core.identity import get_device_id, get_user_id
from ..models.base import get_db
from ..services import sync_processor

router = APIRouter(prefix="/sync", tags=["sync"])


class SyncItemIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    local_id: str = Field(validation_alias=AliasChoices("localId", "id", "local_id"))
    type: str
    payload: Any = Field(default=None, validation_alias=AliasChoices("payload", "data"))
    timestamp: Optional[str] = None


class SyncBatchRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    items: List[SyncItemIn]
    device_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("deviceId", "device_id"))
    last_sync_time: Optional[str] = Field(default=None, validation_alias=AliasChoices("lastSyncTime", "last_sync_time"))


class SyncItemResult(BaseModel):
    localId: str
    status: str
    serverId: Optional[str] = None
    referenceNumber: Optional[str] = None
    duplicate: bool = False
    error: Optional[str] = None


class SyncBatchResponse(BaseModel):
    processed: int
    successful: int
    failed: int
    results: List[SyncItemResult]
    syncTime: str


class SyncFailureResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    local_id: str
    item_type: str
    payload: Any
    error_message: Optional[str]
    created_at: datetime


class RetryRequest(BaseModel):
    syncIds: List[str]


@router.post("", response_model=SyncBatchResponse, response_model_exclude_none=True)
def bulk_sync(
    req: SyncBatchRequest,
    db: Session = Depends(get_db),
    user_id: Optional[str] = Depends(get_user_id),
    header_device_id: Optional[str] = Depends(get_device_id),
):
    """Process a batch of queued device items; each item succeeds or fails on its own."""
    seen = set()
    for item in req.items:
        if item.local_id in seen:
            raise HTTPException(status_code=400, detail=f"Duplicate localId {item.local_id} in batch")
        seen.add(item.local_id)

    return sync_processor.process_batch(
        db,
        [{"localId": i.local_id, "type": i.type, "payload": i.payload} for i in req.items],
        user_id=user_id,
        device_id=req.device_id or header_device_id,
        last_sync_time=req.last_sync_time,
    )


@router.get("/queue", response_model=List[SyncFailureResponse])
def get_failed_items(
    db: Session = Depends(get_db),
    user_id: Optional[str] = Depends(get_user_id),
):
    """Items this user's devices sent that the server could not process."""
    return sync_processor.list_failures(db, user_id)


@router.post("/retry")
def retry_failed_items(
    req: RetryRequest,
    db: Session = Depends(get_db),
    user_id: Optional[str] = Depends(get_user_id),
):
    return sync_processor.retry_failures(db, user_id, req.syncIds)
