"""
Device-local durable storage.

Holds the user profile, the history of completed guided forms, the outbound
sync queue and a small settings table. It is the one resource shared by the
UI thread (enqueue, history reads) and the background sync path (drain,
reference-number write-back), so every public method runs in its own
transaction and write-back touches only the columns the sync path owns.
"""
import json
import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import create_engine, func, select, update
from sqlalchemy.orm import sessionmaker

from ..core.config import settings
from ..models.base import engine_options, utcnow
from ..models.local import (
    DeliveryStatus,
    LocalBase,
    LocalSetting,
    LocalUserProfile,
    LocalWorkflowRecord,
    RecordStatus,
    SyncItemType,
    SyncQueueItem,
)
from .profiles import normalize_profile_changes, profile_to_wire

logger = logging.getLogger(__name__)

PROFILE_ROW_ID = 1


class LocalStore:

    def __init__(self, url: Optional[str] = None, engine=None):
        if engine is None:
            url = url or settings.LOCAL_DATABASE_URL
            engine = create_engine(url, **engine_options(url))
        self.engine = engine
        self._Session = sessionmaker(bind=engine, expire_on_commit=False)
        LocalBase.metadata.create_all(bind=engine)

    def _transaction(self):
        return self._Session.begin()

    # ------------------------------------------------------------------
    # User profile
    # ------------------------------------------------------------------

    def get_user_profile(self) -> Optional[Dict[str, Any]]:
        with self._transaction() as db:
            row = db.get(LocalUserProfile, PROFILE_ROW_ID)
            if row is None:
                return None
            profile = profile_to_wire(row)
            profile["remoteUserId"] = row.remote_user_id
            return profile

    def save_user_profile(self, changes: Dict[str, Any], remote_user_id: Optional[str] = None) -> Dict[str, Any]:
        """Create or partially update the single profile row."""
        values = normalize_profile_changes(changes)
        with self._transaction() as db:
            row = db.get(LocalUserProfile, PROFILE_ROW_ID)
            if row is None:
                row = LocalUserProfile(id=PROFILE_ROW_ID)
                db.add(row)
            for column, value in values.items():
                setattr(row, column, value)
            if remote_user_id is not None:
                row.remote_user_id = remote_user_id
        return self.get_user_profile()

    # ------------------------------------------------------------------
    # Workflow history
    # ------------------------------------------------------------------

    def add_workflow_submission(
        self,
        local_id: str,
        workflow_type: str,
        workflow_data: Dict[str, Any],
        completed_at=None,
    ) -> Tuple[LocalWorkflowRecord, SyncQueueItem]:
        """Write the history row and its queue item in one transaction."""
        with self._transaction() as db:
            record = LocalWorkflowRecord(
                workflow_type=workflow_type,
                workflow_data=dict(workflow_data),
                status=RecordStatus.PENDING,
                completed_at=completed_at or utcnow(),
                sync_local_id=local_id,
            )
            db.add(record)
            db.flush()
            item = SyncQueueItem(
                local_id=local_id,
                item_type=SyncItemType.WORKFLOW_SUBMISSION,
                payload={"workflowId": workflow_type, "workflowData": dict(workflow_data)},
                record_id=record.id,
            )
            db.add(item)
        return record, item

    def get_workflow_record(self, record_id: int) -> Optional[LocalWorkflowRecord]:
        with self._transaction() as db:
            return db.get(LocalWorkflowRecord, record_id)

    def list_workflow_records(self, limit: Optional[int] = None) -> List[LocalWorkflowRecord]:
        stmt = select(LocalWorkflowRecord).order_by(
            LocalWorkflowRecord.created_at.desc(), LocalWorkflowRecord.id.desc()
        )
        if limit:
            stmt = stmt.limit(limit)
        with self._transaction() as db:
            return list(db.scalars(stmt))

    # ------------------------------------------------------------------
    # Sync queue
    # ------------------------------------------------------------------

    def add_sync_item(self, local_id: str, item_type: str, payload: Any, record_id: Optional[int] = None) -> SyncQueueItem:
        item = SyncQueueItem(local_id=local_id, item_type=item_type, payload=payload, record_id=record_id)
        with self._transaction() as db:
            db.add(item)
        return item

    def get_sync_item(self, local_id: str) -> Optional[SyncQueueItem]:
        with self._transaction() as db:
            return db.scalar(select(SyncQueueItem).where(SyncQueueItem.local_id == local_id))

    def list_sync_items(self, statuses: Optional[Iterable[str]] = None) -> List[SyncQueueItem]:
        stmt = select(SyncQueueItem).order_by(SyncQueueItem.id)
        if statuses is not None:
            stmt = stmt.where(SyncQueueItem.delivery_status.in_(list(statuses)))
        with self._transaction() as db:
            return list(db.scalars(stmt))

    def claim_for_delivery(self) -> List[SyncQueueItem]:
        """
        Move every deliverable item to ``in_flight`` and return them in
        creation order. A row already claimed elsewhere is skipped.
        """
        claimed = []
        now = utcnow()
        with self._transaction() as db:
            candidates = list(db.scalars(
                select(SyncQueueItem)
                .where(SyncQueueItem.delivery_status.in_(DeliveryStatus.DELIVERABLE))
                .order_by(SyncQueueItem.id)
            ))
            for item in candidates:
                result = db.execute(
                    update(SyncQueueItem)
                    .where(SyncQueueItem.id == item.id)
                    .where(SyncQueueItem.delivery_status.in_(DeliveryStatus.DELIVERABLE))
                    .values(
                        delivery_status=DeliveryStatus.IN_FLIGHT,
                        attempts=SyncQueueItem.attempts + 1,
                        last_attempt_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    continue
                if item.record_id is not None:
                    self._set_record_status(db, item.record_id, RecordStatus.IN_PROGRESS)
                claimed.append(item)
            for item in claimed:
                db.refresh(item)
        return claimed

    def mark_synced(self, local_id: str, reference_number: Optional[str] = None, server_id: Optional[str] = None) -> Optional[int]:
        """Acknowledge an item and write the server reference into its history row."""
        now = utcnow()
        with self._transaction() as db:
            item = db.scalar(select(SyncQueueItem).where(SyncQueueItem.local_id == local_id))
            if item is None:
                logger.warning("Acknowledgement for unknown sync item %s ignored", local_id)
                return None
            db.execute(
                update(SyncQueueItem)
                .where(SyncQueueItem.id == item.id)
                .values(
                    delivery_status=DeliveryStatus.SYNCED,
                    last_error=None,
                    reference_number=reference_number,
                    server_id=server_id,
                    synced_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if item.record_id is not None:
                db.execute(
                    update(LocalWorkflowRecord)
                    .where(LocalWorkflowRecord.id == item.record_id)
                    .values(
                        status=RecordStatus.COMPLETED,
                        reference_number=reference_number,
                        server_id=server_id,
                        synced_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
            return item.record_id

    def mark_failed(self, local_id: str, error: str, rejected: bool = False, max_rejections: int = 0) -> Optional[str]:
        """
        Record a failed delivery. Rejections by the server count toward
        ``max_rejections``; reaching it dead-letters the item. Returns the
        new delivery status.
        """
        with self._transaction() as db:
            item = db.scalar(select(SyncQueueItem).where(SyncQueueItem.local_id == local_id))
            if item is None:
                return None
            rejections = item.rejections + (1 if rejected else 0)
            status = DeliveryStatus.FAILED
            if rejected and max_rejections and rejections >= max_rejections:
                status = DeliveryStatus.FAILED_TERMINAL
            db.execute(
                update(SyncQueueItem)
                .where(SyncQueueItem.id == item.id)
                .values(delivery_status=status, last_error=error, rejections=rejections)
                .execution_options(synchronize_session=False)
            )
            if item.record_id is not None:
                record_status = RecordStatus.FAILED if status == DeliveryStatus.FAILED_TERMINAL else RecordStatus.PENDING
                self._set_record_status(db, item.record_id, record_status)
            return status

    def reset_in_flight(self) -> int:
        """Return items orphaned by a crash mid-delivery to ``pending``."""
        with self._transaction() as db:
            orphaned = list(db.scalars(
                select(SyncQueueItem).where(SyncQueueItem.delivery_status == DeliveryStatus.IN_FLIGHT)
            ))
            for item in orphaned:
                item.delivery_status = DeliveryStatus.PENDING
                if item.record_id is not None:
                    self._set_record_status(db, item.record_id, RecordStatus.PENDING)
            return len(orphaned)

    def release_in_flight(self, local_ids: Iterable[str], error: str) -> int:
        """Move any of ``local_ids`` still ``in_flight`` to ``failed``."""
        local_ids = list(local_ids)
        if not local_ids:
            return 0
        with self._transaction() as db:
            stuck = list(db.scalars(
                select(SyncQueueItem)
                .where(SyncQueueItem.local_id.in_(local_ids))
                .where(SyncQueueItem.delivery_status == DeliveryStatus.IN_FLIGHT)
            ))
            for item in stuck:
                item.delivery_status = DeliveryStatus.FAILED
                item.last_error = error
                if item.record_id is not None:
                    self._set_record_status(db, item.record_id, RecordStatus.PENDING)
            return len(stuck)

    def requeue(self, local_id: str) -> bool:
        with self._transaction() as db:
            item = db.scalar(select(SyncQueueItem).where(SyncQueueItem.local_id == local_id))
            if item is None or item.delivery_status not in (DeliveryStatus.FAILED, DeliveryStatus.FAILED_TERMINAL):
                return False
            item.delivery_status = DeliveryStatus.PENDING
            item.rejections = 0
            if item.record_id is not None:
                self._set_record_status(db, item.record_id, RecordStatus.PENDING)
            return True

    def count_by_status(self) -> Dict[str, int]:
        counts = {status: 0 for status in DeliveryStatus.ALL}
        with self._transaction() as db:
            rows = db.execute(
                select(SyncQueueItem.delivery_status, func.count()).group_by(SyncQueueItem.delivery_status)
            )
            for status, count in rows:
                counts[status] = count
        return counts

    @staticmethod
    def _set_record_status(db, record_id: int, status: str) -> None:
        db.execute(
            update(LocalWorkflowRecord)
            .where(LocalWorkflowRecord.id == record_id)
            .values(status=status)
            .execution_options(synchronize_session=False)
        )

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def get_setting(self, key: str, default: Optional[str] = None) -> Optional[str]:
        with self._transaction() as db:
            row = db.get(LocalSetting, key)
            return row.value if row is not None else default

    def set_setting(self, key: str, value: Optional[str]) -> None:
        with self._transaction() as db:
            row = db.get(LocalSetting, key)
            if row is None:
                db.add(LocalSetting(key=key, value=value))
            else:
                row.value = value

    def delete_setting(self, key: str) -> None:
        with self._transaction() as db:
            row = db.get(LocalSetting, key)
            if row is not None:
                db.delete(row)

    def get_json_setting(self, key: str) -> Optional[Any]:
        raw = self.get_setting(key)
        return json.loads(raw) if raw is not None else None

    def set_json_setting(self, key: str, value: Any) -> None:
        self.set_setting(key, json.dumps(value))
