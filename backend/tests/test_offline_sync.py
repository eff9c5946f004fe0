"""Tests for the device sync queue."""
import threading

import pytest

from app.core.errors import NetworkError, ServerError
from app.models.local import DeliveryStatus, RecordStatus, SyncItemType
from app.services.offline_sync import LAST_SYNC_SETTING, SyncQueueManager
from app.services.workflow_engine import WorkflowCompletion
from app.models.base import utcnow


class FakeTransport:
    """Acknowledges every item unless told otherwise."""

    def __init__(self, fail_ids=(), error=None):
        self.fail_ids = set(fail_ids)
        self.error = error
        self.batches = []
        self.timeouts = []
        self.seen = {}

    def send_batch(self, items, device_id, last_sync_time, timeout):
        self.batches.append([i["localId"] for i in items])
        self.timeouts.append(timeout)
        if self.error is not None:
            raise self.error
        results = []
        for item in items:
            if item["localId"] in self.fail_ids:
                results.append({"localId": item["localId"], "status": "failed", "error": "invalid"})
                continue
            duplicate = item["localId"] in self.seen
            ref = self.seen.setdefault(item["localId"], f"REF{len(self.seen):06d}ABC")
            results.append({
                "localId": item["localId"], "status": "success",
                "serverId": f"srv-{item['localId']}", "referenceNumber": ref, "duplicate": duplicate,
            })
        return {"processed": len(items), "results": results}


def _completion(workflow_type="aadhaar-application", **data):
    return WorkflowCompletion(
        session_id="s-1",
        workflow_type=workflow_type,
        collected_data=data or {"ask_name": "Asha"},
        completed_at=utcnow(),
    )


def _queue(store, transport, **kwargs):
    kwargs.setdefault("schedule", None)
    return SyncQueueManager(store, transport, **kwargs)


class TestEnqueue:
    def test_enqueue_never_touches_network(self, store):
        transport = FakeTransport()
        queue = _queue(store, transport)
        local_id = queue.enqueue(SyncItemType.DOCUMENT_UPLOAD, {"documentType": "address_proof"})
        assert transport.batches == []
        assert [i.local_id for i in queue.get_pending_items()] == [local_id]

    def test_enqueue_rejects_unknown_type(self, store):
        with pytest.raises(ValueError):
            _queue(store, FakeTransport()).enqueue("telemetry", {})

    def test_local_ids_are_unique(self, store):
        queue = _queue(store, FakeTransport())
        ids = {queue.enqueue(SyncItemType.DOCUMENT_UPLOAD, {}) for _ in range(50)}
        assert len(ids) == 50

    def test_device_id_is_stable(self, store):
        first = _queue(store, FakeTransport()).device_id
        assert _queue(store, FakeTransport()).device_id == first

    def test_update_profile_applies_locally_and_queues(self, store):
        queue = _queue(store, FakeTransport())
        queue.update_profile({"name": "Asha", "location": "Jaipur"})
        assert store.get_user_profile()["location"] == "Jaipur"
        [item] = queue.get_pending_items()
        assert item.item_type == SyncItemType.PROFILE_UPDATE
        assert item.payload == {"name": "Asha", "location": "Jaipur"}

    def test_enqueue_schedules_drain_when_online(self, store):
        scheduled = []
        queue = SyncQueueManager(store, FakeTransport(), is_online=lambda: True, schedule=scheduled.append)
        queue.enqueue(SyncItemType.DOCUMENT_UPLOAD, {})
        assert scheduled == [queue.drain]

    def test_enqueue_does_not_schedule_when_offline(self, store):
        scheduled = []
        queue = SyncQueueManager(store, FakeTransport(), is_online=lambda: False, schedule=scheduled.append)
        queue.enqueue(SyncItemType.DOCUMENT_UPLOAD, {})
        assert scheduled == []


class TestDrain:
    def test_submission_gets_reference_number(self, store):
        transport = FakeTransport()
        queue = _queue(store, transport)
        local_id = queue.submit_workflow(_completion())
        result = queue.drain()
        assert result.synced == 1
        [record] = store.list_workflow_records()
        assert record.status == RecordStatus.COMPLETED
        assert record.reference_number == transport.seen[local_id]
        assert queue.get_pending_items() == []
        assert store.get_setting(LAST_SYNC_SETTING) is not None

    def test_offline_drain_keeps_items_queued(self, store):
        queue = _queue(store, FakeTransport(error=NetworkError("unreachable")))
        local_id = queue.submit_workflow(_completion())
        result = queue.drain()
        assert result.failed == 1
        assert result.dead_lettered == 0
        item = store.get_sync_item(local_id)
        assert item.delivery_status == DeliveryStatus.FAILED
        assert item.last_error == "unreachable"
        assert store.list_workflow_records()[0].status == RecordStatus.PENDING
        assert store.get_setting(LAST_SYNC_SETTING) is None

    def test_failed_items_retry_on_next_drain(self, store):
        transport = FakeTransport(error=NetworkError("unreachable"))
        queue = _queue(store, transport)
        local_id = queue.submit_workflow(_completion())
        queue.drain()
        transport.error = None
        assert queue.drain().synced == 1
        assert store.get_sync_item(local_id).attempts == 2

    def test_partial_failure_does_not_block_others(self, store):
        queue = _queue(store, FakeTransport())
        good = queue.enqueue(SyncItemType.DOCUMENT_UPLOAD, {})
        bad = queue.enqueue(SyncItemType.DOCUMENT_UPLOAD, {})
        queue.transport.fail_ids = {bad}
        result = queue.drain()
        assert (result.synced, result.failed) == (1, 1)
        assert store.get_sync_item(good).delivery_status == DeliveryStatus.SYNCED
        assert store.get_sync_item(bad).delivery_status == DeliveryStatus.FAILED

    def test_items_sent_in_order_and_chunks(self, store):
        transport = FakeTransport()
        queue = _queue(store, transport, batch_size=2, item_timeout=5.0)
        ids = [queue.enqueue(SyncItemType.DOCUMENT_UPLOAD, {}) for _ in range(5)]
        queue.drain()
        assert transport.batches == [ids[0:2], ids[2:4], ids[4:5]]
        assert transport.timeouts == [10.0, 10.0, 5.0]

    def test_repeated_rejection_dead_letters(self, store):
        transport = FakeTransport()
        queue = _queue(store, transport, max_rejections=2)
        local_id = queue.enqueue(SyncItemType.DOCUMENT_UPLOAD, {})
        transport.fail_ids = {local_id}
        queue.drain()
        result = queue.drain()
        assert result.dead_lettered == 1
        assert [i.local_id for i in queue.get_dead_letters()] == [local_id]
        # Dead letters are not retried
        assert queue.drain().attempted == 0

    def test_requeue_revives_dead_letter(self, store):
        transport = FakeTransport()
        queue = _queue(store, transport, max_rejections=1)
        local_id = queue.enqueue(SyncItemType.DOCUMENT_UPLOAD, {})
        transport.fail_ids = {local_id}
        queue.drain()
        transport.fail_ids = set()
        assert queue.requeue(local_id) is True
        assert queue.drain().synced == 1

    def test_client_error_counts_as_rejection(self, store):
        queue = _queue(store, FakeTransport(error=ServerError("bad batch", status_code=400)), max_rejections=1)
        local_id = queue.enqueue(SyncItemType.DOCUMENT_UPLOAD, {})
        queue.drain()
        assert store.get_sync_item(local_id).delivery_status == DeliveryStatus.FAILED_TERMINAL

    def test_server_error_is_retried(self, store):
        queue = _queue(store, FakeTransport(error=ServerError("boom", status_code=503)), max_rejections=1)
        local_id = queue.enqueue(SyncItemType.DOCUMENT_UPLOAD, {})
        queue.drain()
        assert store.get_sync_item(local_id).delivery_status == DeliveryStatus.FAILED

    def test_missing_result_leaves_item_queued(self, store):
        class SilentTransport(FakeTransport):
            def send_batch(self, items, device_id, last_sync_time, timeout):
                return {"results": []}

        queue = _queue(store, SilentTransport())
        local_id = queue.enqueue(SyncItemType.DOCUMENT_UPLOAD, {})
        assert queue.drain().failed == 1
        assert store.get_sync_item(local_id).delivery_status == DeliveryStatus.FAILED

    def test_lost_acknowledgement_resend_is_idempotent(self, store):
        """The server processed the item but the reply never arrived."""
        transport = FakeTransport()
        queue = _queue(store, transport)
        local_id = queue.submit_workflow(_completion())
        transport.send_batch([{"localId": local_id}], None, None, 1.0)
        first_ref = transport.seen[local_id]
        queue.drain()
        assert store.list_workflow_records()[0].reference_number == first_ref

    def test_crash_recovery_resets_in_flight(self, store):
        queue = _queue(store, FakeTransport())
        local_id = queue.enqueue(SyncItemType.DOCUMENT_UPLOAD, {})
        store.claim_for_delivery()
        assert store.get_sync_item(local_id).delivery_status == DeliveryStatus.IN_FLIGHT
        restarted = _queue(store, FakeTransport())
        assert [i.local_id for i in restarted.get_pending_items()] == [local_id]


class TestCoalescing:
    def test_concurrent_drain_requests_coalesce(self, store):
        entered = threading.Event()
        release = threading.Event()

        class BlockingTransport(FakeTransport):
            def send_batch(self, items, device_id, last_sync_time, timeout):
                entered.set()
                release.wait(5)
                return super().send_batch(items, device_id, last_sync_time, timeout)

        transport = BlockingTransport()
        queue = _queue(store, transport)
        queue.enqueue(SyncItemType.DOCUMENT_UPLOAD, {})

        results = []
        worker = threading.Thread(target=lambda: results.append(queue.drain()))
        worker.start()
        assert entered.wait(5)

        late = queue.enqueue(SyncItemType.DOCUMENT_UPLOAD, {})
        assert queue.drain() is None
        release.set()
        worker.join(5)

        [total] = results
        assert total.passes == 2
        assert total.synced == 2
        assert store.get_sync_item(late).delivery_status == DeliveryStatus.SYNCED
        # Each item delivered once
        assert sorted(sum(transport.batches, [])) == sorted(transport.seen)

    def test_status_summary(self, store):
        queue = _queue(store, FakeTransport(error=NetworkError("offline")))
        queue.enqueue(SyncItemType.DOCUMENT_UPLOAD, {})
        queue.enqueue(SyncItemType.DOCUMENT_UPLOAD, {})
        queue.drain()
        summary = queue.status_summary()
        assert summary[DeliveryStatus.FAILED] == 2
        assert summary["outstanding"] == 2
        assert summary["last_sync_time"] is None


class TestEnqueueWorkflowSubmission:
    def test_enqueued_submission_receives_reference(self, store):
        transport = FakeTransport()
        queue = _queue(store, transport)
        local_id = queue.enqueue(
            SyncItemType.WORKFLOW_SUBMISSION,
            {"workflowId": "aadhaar-application", "workflowData": {"ask_name": "Asha"}},
        )
        [record] = store.list_workflow_records()
        assert record.status == RecordStatus.PENDING
        assert record.reference_number is None

        queue.drain()
        [record] = store.list_workflow_records()
        assert record.status == RecordStatus.COMPLETED
        assert record.reference_number == transport.seen[local_id]
        assert record.workflow_data == {"ask_name": "Asha"}

    def test_submission_without_workflow_id_is_refused(self, store):
        queue = _queue(store, FakeTransport())
        with pytest.raises(ValueError):
            queue.enqueue(SyncItemType.WORKFLOW_SUBMISSION, {"workflowData": {}})
        assert queue.get_pending_items() == []


class TestUnreadableReplies:
    def test_malformed_reply_leaves_items_retryable(self, store):
        class GarbledTransport(FakeTransport):
            def send_batch(self, items, device_id, last_sync_time, timeout):
                return {"results": None}

        queue = _queue(store, GarbledTransport(), max_rejections=1)
        ids = [queue.enqueue(SyncItemType.DOCUMENT_UPLOAD, {}) for _ in range(2)]
        result = queue.drain()
        assert result.failed == 2
        assert [store.get_sync_item(i).delivery_status for i in ids] == [DeliveryStatus.FAILED] * 2
        # Not a rejection, so no dead-lettering and still retried
        assert queue.drain().attempted == 2

    def test_non_dict_reply_fails_chunk_only(self, store):
        class ListTransport(FakeTransport):
            def send_batch(self, items, device_id, last_sync_time, timeout):
                if len(self.batches) == 0:
                    self.batches.append([i["localId"] for i in items])
                    return ["ok"]
                return super().send_batch(items, device_id, last_sync_time, timeout)

        queue = _queue(store, ListTransport(), batch_size=1)
        first = queue.enqueue(SyncItemType.DOCUMENT_UPLOAD, {})
        second = queue.enqueue(SyncItemType.DOCUMENT_UPLOAD, {})
        result = queue.drain()
        assert (result.synced, result.failed) == (1, 1)
        assert store.get_sync_item(first).delivery_status == DeliveryStatus.FAILED
        assert store.get_sync_item(second).delivery_status == DeliveryStatus.SYNCED

    def test_write_back_error_releases_item(self, store, monkeypatch):
        queue = _queue(store, FakeTransport())
        local_id = queue.enqueue(SyncItemType.DOCUMENT_UPLOAD, {})

        def broken(*args, **kwargs):
            raise RuntimeError("database is locked")

        monkeypatch.setattr(store, "mark_synced", broken)
        result = queue.drain()
        assert result.synced == 0
        assert result.failed == 1
        item = store.get_sync_item(local_id)
        assert item.delivery_status == DeliveryStatus.FAILED
        assert item.last_error == "Delivery interrupted"

        monkeypatch.undo()
        assert queue.drain().synced == 1
