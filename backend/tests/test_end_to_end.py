"""Guided form on the device through to a tracked application on the server."""
import httpx
import pytest

from app.core.errors import NetworkError, ServerError
from app.models.local import DeliveryStatus, RecordStatus
from app.services.connectivity import ConnectivityMonitor
from app.services.offline_client import OfflineClient
from app.services.reference_numbers import REFERENCE_PATTERN
from app.services.sync_client import HttpSyncTransport
from app.services.workflow_definitions import load_workflow


def _complete_aadhaar(sessions):
    sessions.start(load_workflow("aadhaar-application"))
    sessions.advance()
    sessions.record_answer("ask_name", "Asha Devi")
    sessions.advance()
    sessions.record_answer("ask_age", "34")
    sessions.advance()
    sessions.advance()
    sessions.advance()
    return sessions.advance()


def _unreachable(request):
    raise httpx.ConnectError("no route to host", request=request)


def _offline_transport():
    return HttpSyncTransport(
        base_url="http://sahayak.invalid/api/v1",
        client=httpx.Client(transport=httpx.MockTransport(_unreachable)),
    )


def test_offline_completion_is_kept_for_later(store):
    device = OfflineClient(store=store, transport=_offline_transport(), schedule=None)
    _complete_aadhaar(device.sessions)

    assert device.queue.drain().failed == 1
    [record] = device.history()
    assert record.status == RecordStatus.PENDING
    assert record.reference_number is None
    assert device.sync_status()["outstanding"] == 1


def test_reconnect_delivers_and_writes_back_reference(store, client, db):
    transport = HttpSyncTransport(base_url="http://testserver/api/v1", client=client)
    monitor = ConnectivityMonitor(probe=transport.probe)
    device = OfflineClient(store=store, transport=transport, monitor=monitor, schedule=None)

    _complete_aadhaar(device.sessions)
    assert device.history()[0].status == RecordStatus.PENDING

    # Reconnect triggers the drain listener synchronously
    assert monitor.check() is True
    [record] = device.history()
    assert record.status == RecordStatus.COMPLETED
    assert REFERENCE_PATTERN.match(record.reference_number)

    tracked = client.get(f"/api/v1/workflows/track/{record.reference_number}").json()
    assert tracked["workflowType"] == "aadhaar-application"
    assert device.sync_status()["outstanding"] == 0


def test_resend_after_lost_reply_keeps_one_server_record(store, client, db):
    from app.models.workflow import WorkflowRecord

    transport = HttpSyncTransport(base_url="http://testserver/api/v1", client=client)
    device = OfflineClient(store=store, transport=transport, schedule=None)
    completion = _complete_aadhaar(device.sessions)
    assert completion is not None

    [item] = device.queue.get_pending_items()
    batch = [{"localId": item.local_id, "type": item.item_type, "payload": item.payload}]
    first = transport.send_batch(batch, device_id=device.queue.device_id, last_sync_time=None, timeout=5)

    device.queue.drain()
    [record] = device.history()
    assert record.reference_number == first["results"][0]["referenceNumber"]
    assert db.query(WorkflowRecord).count() == 1


def test_profile_change_syncs_to_server(store, client, demo_user):
    transport = HttpSyncTransport(base_url="http://testserver/api/v1", client=client, user_id=demo_user["id"])
    device = OfflineClient(store=store, transport=transport, schedule=None)
    device.queue.update_profile({"name": "Asha Devi", "location": "Ajmer"})
    assert device.queue.drain().synced == 1
    profile = client.get(
        f"/api/v1/users/{demo_user['id']}/profile", headers={"X-User-Id": demo_user["id"]}
    ).json()
    assert profile["location"] == "Ajmer"


def test_resume_interrupted_form_on_start(store):
    device = OfflineClient(store=store, transport=_offline_transport(), schedule=None)
    device.sessions.start(load_workflow("pan-application"))
    device.sessions.advance()
    device.sessions.record_answer("ask_name", "Asha")

    restarted = OfflineClient(
        store=store, transport=_offline_transport(),
        monitor=ConnectivityMonitor(probe=lambda: False, interval=60), schedule=None,
    )
    restarted.start()
    try:
        session = restarted.sessions.active_session
        assert session.workflow_id == "pan-application"
        assert session.collected_data == {"ask_name": "Asha"}
    finally:
        restarted.stop(timeout=1)
    assert restarted.monitor._thread is None


class TestHttpSyncTransport:
    def test_unreachable_is_network_error(self):
        with pytest.raises(NetworkError):
            _offline_transport().send_batch([], device_id="d", last_sync_time=None, timeout=1)

    def test_timeout_is_network_error(self):
        def slow(request):
            raise httpx.ReadTimeout("timed out", request=request)

        transport = HttpSyncTransport(base_url="http://x/api/v1", client=httpx.Client(transport=httpx.MockTransport(slow)))
        with pytest.raises(NetworkError):
            transport.send_batch([], device_id="d", last_sync_time=None, timeout=1)

    def test_error_status_is_server_error(self):
        def refuse(request):
            return httpx.Response(503, json={"detail": "maintenance"})

        transport = HttpSyncTransport(base_url="http://x/api/v1", client=httpx.Client(transport=httpx.MockTransport(refuse)))
        with pytest.raises(ServerError) as exc_info:
            transport.send_batch([], device_id="d", last_sync_time=None, timeout=1)
        assert exc_info.value.status_code == 503
        assert str(exc_info.value) == "maintenance"

    def test_headers_carry_identity(self):
        seen = {}

        def capture(request):
            seen.update(request.headers)
            return httpx.Response(200, json={"results": []})

        transport = HttpSyncTransport(
            base_url="http://x/api/v1", user_id="u-1",
            client=httpx.Client(transport=httpx.MockTransport(capture)),
        )
        transport.send_batch([], device_id="d-1", last_sync_time=None, timeout=1)
        assert seen["x-user-id"] == "u-1"
        assert seen["x-device-id"] == "d-1"

    def test_probe_failure_is_offline(self):
        assert _offline_transport().probe() is False
