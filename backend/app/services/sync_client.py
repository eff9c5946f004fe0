"""
HTTP transport from the device sync queue to the batch sync endpoint.

Transport failures (no route, DNS, timeouts) surface as ``NetworkError`` and
HTTP error statuses as ``ServerError`` so the queue can tell "offline" from
"rejected".
"""
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urlsplit

import httpx

from ..core.config import settings
from ..core.errors import NetworkError, ServerError

logger = logging.getLogger(__name__)


def default_probe_url(base_url: Optional[str] = None) -> str:
    if settings.CONNECTIVITY_PROBE_URL:
        return settings.CONNECTIVITY_PROBE_URL
    parts = urlsplit(base_url or settings.SYNC_API_URL)
    return f"{parts.scheme}://{parts.netloc}/health"


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text or resp.reason_phrase
    if isinstance(body, dict):
        if isinstance(body.get("error"), dict):
            return body["error"].get("message") or str(body["error"])
        if body.get("detail"):
            return str(body["detail"])
    return str(body)


class HttpSyncTransport:
    """Posts queue batches to ``<base_url>/sync``."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        user_id: Optional[str] = None,
        client: Optional[httpx.Client] = None,
        probe_url: Optional[str] = None,
    ):
        self.base_url = (base_url or settings.SYNC_API_URL).rstrip("/")
        self.user_id = user_id
        self.probe_url = probe_url or default_probe_url(self.base_url)
        self._client = client

    def _headers(self, device_id: Optional[str]) -> Dict[str, str]:
        headers = {}
        if self.user_id:
            headers["X-User-Id"] = self.user_id
        if device_id:
            headers["X-Device-Id"] = device_id
        return headers

    def _post(self, url: str, body: Dict, headers: Dict, timeout: float) -> httpx.Response:
        if self._client is not None:
            return self._client.post(url, json=body, headers=headers, timeout=timeout)
        with httpx.Client(timeout=timeout) as client:
            return client.post(url, json=body, headers=headers)

    def send_batch(
        self,
        items: List[Dict[str, Any]],
        device_id: Optional[str],
        last_sync_time: Optional[str],
        timeout: float,
    ) -> Dict[str, Any]:
        body = {"items": items, "deviceId": device_id, "lastSyncTime": last_sync_time}
        url = f"{self.base_url}/sync"
        try:
            resp = self._post(url, body, self._headers(device_id), timeout)
        except httpx.TimeoutException as exc:
            raise NetworkError(f"Sync request timed out after {timeout:.1f}s") from exc
        except httpx.TransportError as exc:
            raise NetworkError(f"Sync endpoint unreachable: {exc}") from exc

        if resp.status_code >= 400:
            raise ServerError(_error_message(resp), status_code=resp.status_code)
        try:
            payload = resp.json()
        except ValueError as exc:
            raise ServerError("Sync endpoint returned a non-JSON body", status_code=resp.status_code) from exc
        return payload.get("data", payload)

    def probe(self, timeout: float = 3.0) -> bool:
        """True when the backend health check answers without a server error."""
        try:
            if self._client is not None:
                resp = self._client.get(self.probe_url, timeout=timeout)
            else:
                with httpx.Client(timeout=timeout) as client:
                    resp = client.get(self.probe_url)
        except httpx.HTTPError as exc:
            logger.debug("Connectivity probe to %s failed: %s", self.probe_url, exc)
            return False
        return resp.status_code < 500
