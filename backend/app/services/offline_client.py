"""
Device-side wiring: local store, guided-form sessions, sync queue and
connectivity monitor, connected the way the mobile app uses them.
"""
import logging
from typing import Optional

from .connectivity import ConnectivityMonitor
from .local_store import LocalStore
from .offline_sync import SyncQueueManager, _run_in_background
from .sync_client import HttpSyncTransport
from .workflow_engine import WorkflowSessionManager

logger = logging.getLogger(__name__)


class OfflineClient:

    def __init__(
        self,
        store: Optional[LocalStore] = None,
        transport=None,
        monitor: Optional[ConnectivityMonitor] = None,
        schedule=_run_in_background,
    ):
        self.store = store or LocalStore()
        if transport is None:
            profile = self.store.get_user_profile() or {}
            transport = HttpSyncTransport(user_id=profile.get("remoteUserId"))
        self.transport = transport
        self.monitor = monitor or ConnectivityMonitor(probe=getattr(transport, "probe", None))
        self.queue = SyncQueueManager(
            self.store,
            self.transport,
            is_online=lambda: self.monitor.is_online,
            schedule=schedule,
        )
        self.monitor.add_listener(self.queue.drain)
        self.sessions = WorkflowSessionManager(store=self.store, on_complete=self.queue.submit_workflow)

    def start(self) -> None:
        """Restore an interrupted guided form and begin watching the network."""
        session = self.sessions.resume()
        if session is not None:
            logger.info("Resumed %s at step %d", session.workflow_id, session.current_step_index)
        self.monitor.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self.monitor.stop(timeout)

    def history(self, limit: Optional[int] = None):
        return self.store.list_workflow_records(limit=limit)

    def sync_status(self):
        return self.queue.status_summary()
