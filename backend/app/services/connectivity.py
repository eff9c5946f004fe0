"""
Network reachability monitor.

Polls a probe (or accepts pushed platform signals through ``set_online``)
and notifies listeners once per offline -> online transition.
"""
import logging
import threading
from typing import Callable, List, Optional

from ..core.config import settings

logger = logging.getLogger(__name__)


class ConnectivityMonitor:

    def __init__(
        self,
        probe: Optional[Callable[[], bool]] = None,
        interval: Optional[float] = None,
        initial_online: bool = False,
    ):
        self._probe = probe
        self.interval = interval if interval is not None else settings.CONNECTIVITY_POLL_INTERVAL
        self._online = initial_online
        self._lock = threading.Lock()
        self._listeners: List[Callable[[], object]] = []
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_online(self) -> bool:
        return self._online

    def add_listener(self, callback: Callable[[], object]) -> None:
        """Register a callback run on every reconnect."""
        self._listeners.append(callback)

    def set_online(self, online: bool) -> bool:
        """Record the current state. Returns True if this was a reconnect."""
        with self._lock:
            reconnected = online and not self._online
            changed = online != self._online
            self._online = online
        if changed:
            logger.info("Connectivity changed: %s", "online" if online else "offline")
        if reconnected:
            self._notify()
        return reconnected

    def check(self) -> bool:
        """Run the probe once. A probe that raises counts as offline."""
        if self._probe is None:
            return False
        try:
            online = bool(self._probe())
        except Exception as exc:
            logger.debug("Connectivity probe raised: %s", exc)
            online = False
        return self.set_online(online)

    def _notify(self) -> None:
        for callback in list(self._listeners):
            try:
                callback()
            except Exception:
                logger.exception("Reconnect listener %r failed", callback)

    # ------------------------------------------------------------------
    # Background polling
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="connectivity-monitor", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _run(self) -> None:
        self.check()
        while not self._stop.wait(self.interval):
            self.check()
