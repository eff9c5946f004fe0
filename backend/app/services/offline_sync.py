"""
Offline Mode & Sync Service.
Queues completed guided forms and profile changes on the device and delivers
them to the backend when connectivity allows, retrying until acknowledged.
"""
import logging
import secrets
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError

from ..core.config import settings
from ..core.errors import NetworkError, ServerError
from ..models.local import DeliveryStatus, SyncItemType, SyncQueueItem
from ..models.base import utcnow

logger = logging.getLogger(__name__)

DEVICE_ID_SETTING = "device_id"
LAST_SYNC_SETTING = "last_sync_time"
LOCAL_ID_ATTEMPTS = 5


def generate_local_id() -> str:
    """Millisecond timestamp plus a random suffix."""
    return f"{int(time.time() * 1000)}-{secrets.token_hex(4)}"


def _run_in_background(fn: Callable[[], Any]) -> None:
    threading.Thread(target=fn, name="sync-drain", daemon=True).start()


def _submission_fields(payload: Any) -> Tuple[str, Dict[str, Any]]:
    if not isinstance(payload, dict) or not isinstance(payload.get("workflowId"), str):
        raise ValueError("A workflow submission needs a workflowId")
    workflow_data = payload.get("workflowData") or {}
    if not isinstance(workflow_data, dict):
        raise ValueError("workflowData must be an object")
    return payload["workflowId"], workflow_data


def _outcomes_by_local_id(response: Any) -> Dict[str, Dict[str, Any]]:
    if not isinstance(response, dict) or not isinstance(response.get("results"), list):
        raise ServerError("Sync endpoint returned an unreadable reply")
    outcomes = {}
    for outcome in response["results"]:
        if isinstance(outcome, dict) and outcome.get("localId") is not None:
            outcomes[str(outcome["localId"])] = outcome
    return outcomes


@dataclass
class DrainResult:
    attempted: int = 0
    synced: int = 0
    failed: int = 0
    dead_lettered: int = 0
    passes: int = 0

    def merge(self, other: "DrainResult") -> None:
        self.attempted += other.attempted
        self.synced += other.synced
        self.failed += other.failed
        self.dead_lettered += other.dead_lettered
        self.passes += other.passes


class SyncQueueManager:
    """
    Durable outbound queue.

    ``drain()`` is serialized: a call made while another drain is running
    only sets a flag, and the running drain makes one more pass when it
    finishes. Items are sent in creation order in chunks; each chunk gets a
    timeout proportional to its size, and responses are matched to items by
    ``localId``. A failure never stops the rest of the queue.
    """

    def __init__(
        self,
        store,
        transport,
        is_online: Optional[Callable[[], bool]] = None,
        schedule: Optional[Callable[[Callable[[], Any]], None]] = _run_in_background,
        batch_size: Optional[int] = None,
        item_timeout: Optional[float] = None,
        max_rejections: Optional[int] = None,
    ):
        self.store = store
        self.transport = transport
        self._is_online = is_online
        self._schedule = schedule
        self.batch_size = max(1, batch_size or settings.SYNC_BATCH_SIZE)
        self.item_timeout = item_timeout if item_timeout is not None else settings.SYNC_ITEM_TIMEOUT
        self.max_rejections = settings.SYNC_MAX_REJECTIONS if max_rejections is None else max_rejections

        self._state_lock = threading.Lock()
        self._draining = False
        self._rerun = False

        self.device_id = store.get_setting(DEVICE_ID_SETTING)
        if not self.device_id:
            self.device_id = f"device-{uuid.uuid4().hex[:12]}"
            store.set_setting(DEVICE_ID_SETTING, self.device_id)

        recovered = store.reset_in_flight()
        if recovered:
            logger.info("Returned %d interrupted sync item(s) to the queue", recovered)

    # ------------------------------------------------------------------
    # Enqueue
    # ------------------------------------------------------------------

    def _insert(self, write: Callable[[str], Any]) -> str:
        for _ in range(LOCAL_ID_ATTEMPTS):
            local_id = generate_local_id()
            try:
                write(local_id)
                return local_id
            except IntegrityError:
                logger.debug("localId collision on %s, regenerating", local_id)
        raise RuntimeError("Could not allocate a unique localId")

    def enqueue(self, item_type: str, payload: Any) -> str:
        """
        Persist an outbound item and return its ``localId``. Never touches the
        network. A ``workflow_submission`` payload (``workflowId`` plus
        ``workflowData``) also gets a history row that receives the reference
        number once delivered.
        """
        if item_type not in SyncItemType.ALL:
            raise ValueError(f"Unknown sync item type '{item_type}'")
        if item_type == SyncItemType.WORKFLOW_SUBMISSION:
            workflow_type, workflow_data = _submission_fields(payload)
            local_id = self._insert(
                lambda lid: self.store.add_workflow_submission(lid, workflow_type, workflow_data)
            )
        else:
            local_id = self._insert(lambda lid: self.store.add_sync_item(lid, item_type, payload))
        logger.debug("Queued %s item %s", item_type, local_id)
        self._schedule_delivery()
        return local_id

    def submit_workflow(self, completion) -> str:
        """Record a completed guided form locally and queue it for submission."""
        local_id = self._insert(lambda lid: self.store.add_workflow_submission(
            lid,
            completion.workflow_type,
            completion.collected_data,
            completed_at=completion.completed_at,
        ))
        logger.info("Queued %s submission %s", completion.workflow_type, local_id)
        self._schedule_delivery()
        return local_id

    def update_profile(self, changes: Dict[str, Any]) -> str:
        """Apply a profile change locally and queue it for the server."""
        self.store.save_user_profile(changes)
        return self.enqueue(SyncItemType.PROFILE_UPDATE, dict(changes))

    def _schedule_delivery(self) -> None:
        if self._schedule is None or self._is_online is None:
            return
        try:
            if self._is_online():
                self._schedule(self.drain)
        except Exception:
            logger.exception("Could not schedule sync delivery")

    # ------------------------------------------------------------------
    # Drain
    # ------------------------------------------------------------------

    def drain(self) -> Optional[DrainResult]:
        """
        Deliver every pending or failed item. Returns ``None`` when another
        drain is already running; that drain will pick up the request.
        """
        with self._state_lock:
            if self._draining:
                self._rerun = True
                logger.debug("Drain already running; coalescing request")
                return None
            self._draining = True
            self._rerun = False

        total = DrainResult()
        try:
            while True:
                total.merge(self._drain_once())
                with self._state_lock:
                    if not self._rerun:
                        self._draining = False
                        break
                    self._rerun = False
        except BaseException:
            with self._state_lock:
                self._draining = False
                self._rerun = False
            raise

        logger.info(
            "Sync drain finished: %d attempted, %d synced, %d failed, %d dead-lettered",
            total.attempted, total.synced, total.failed, total.dead_lettered,
        )
        return total

    def _drain_once(self) -> DrainResult:
        result = DrainResult(passes=1)
        items = self.store.claim_for_delivery()
        result.attempted = len(items)
        responded = False
        try:
            for start in range(0, len(items), self.batch_size):
                chunk = items[start:start + self.batch_size]
                responded = self._deliver_chunk(chunk, result) or responded
            if responded:
                self.store.set_setting(LAST_SYNC_SETTING, utcnow().isoformat())
        finally:
            # Anything still claimed had no outcome recorded; make it retryable
            released = self.store.release_in_flight([i.local_id for i in items], "Delivery interrupted")
            if released:
                result.failed += released
                logger.warning("Returned %d unacknowledged sync item(s) to the queue", released)
        return result

    def _deliver_chunk(self, chunk: List[SyncQueueItem], result: DrainResult) -> bool:
        batch = [
            {
                "localId": item.local_id,
                "type": item.item_type,
                "payload": item.payload,
                "timestamp": item.created_at.isoformat() if item.created_at else None,
            }
            for item in chunk
        ]
        try:
            response = self.transport.send_batch(
                batch,
                device_id=self.device_id,
                last_sync_time=self.store.get_setting(LAST_SYNC_SETTING),
                timeout=self.item_timeout * len(chunk),
            )
            outcomes = _outcomes_by_local_id(response)
        except NetworkError as exc:
            logger.info("Sync batch of %d not delivered: %s", len(chunk), exc)
            self._fail_all(chunk, str(exc), rejected=False, result=result)
            return False
        except ServerError as exc:
            # A 4xx means the batch itself was refused; 5xx or a garbled reply is the server's problem
            rejected = exc.status_code is not None and 400 <= exc.status_code < 500
            logger.warning("Sync batch of %d refused (%s): %s", len(chunk), exc.status_code, exc)
            self._fail_all(chunk, str(exc), rejected=rejected, result=result)
            return False
        except Exception as exc:
            logger.exception("Unexpected error delivering sync batch")
            self._fail_all(chunk, str(exc) or exc.__class__.__name__, rejected=False, result=result)
            return False

        for item in chunk:
            outcome = outcomes.get(item.local_id)
            if outcome is None:
                self._fail(item, "No result returned for item", rejected=False, result=result)
            elif outcome.get("status") == "success":
                try:
                    self.store.mark_synced(
                        item.local_id,
                        reference_number=outcome.get("referenceNumber"),
                        server_id=outcome.get("serverId"),
                    )
                except Exception:
                    logger.exception("Could not record acknowledgement for sync item %s", item.local_id)
                    continue
                result.synced += 1
                if outcome.get("duplicate"):
                    logger.debug("Item %s was already processed by the server", item.local_id)
            else:
                self._fail(item, outcome.get("error") or "Rejected by server", rejected=True, result=result)
        return True

    def _fail_all(self, chunk, error: str, rejected: bool, result: DrainResult) -> None:
        for item in chunk:
            self._fail(item, error, rejected, result)

    def _fail(self, item: SyncQueueItem, error: str, rejected: bool, result: DrainResult) -> None:
        try:
            status = self.store.mark_failed(
                item.local_id, error, rejected=rejected, max_rejections=self.max_rejections
            )
        except Exception:
            logger.exception("Could not record failure for sync item %s", item.local_id)
            return
        result.failed += 1
        if status == DeliveryStatus.FAILED_TERMINAL:
            result.dead_lettered += 1
            logger.warning("Sync item %s dead-lettered after repeated rejection: %s", item.local_id, error)
        elif rejected:
            logger.warning("Sync item %s rejected: %s", item.local_id, error)

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def get_pending_items(self) -> List[SyncQueueItem]:
        """Items still waiting for delivery (pending or failed)."""
        return self.store.list_sync_items(DeliveryStatus.DELIVERABLE)

    def get_dead_letters(self) -> List[SyncQueueItem]:
        return self.store.list_sync_items([DeliveryStatus.FAILED_TERMINAL])

    def requeue(self, local_id: str) -> bool:
        """Give a dead-lettered or failed item a fresh set of retries."""
        requeued = self.store.requeue(local_id)
        if requeued:
            self._schedule_delivery()
        return requeued

    def status_summary(self) -> Dict[str, Any]:
        """Counts for the offline-sync indicator."""
        counts = self.store.count_by_status()
        counts["outstanding"] = (
            counts[DeliveryStatus.PENDING]
            + counts[DeliveryStatus.FAILED]
            + counts[DeliveryStatus.IN_FLIGHT]
            + counts[DeliveryStatus.FAILED_TERMINAL]
        )
        counts["last_sync_time"] = self.store.get_setting(LAST_SYNC_SETTING)
        return counts
