"""
Delivery transport: retryable JSON POSTs for regular flushes, and a separate
fire-and-forget beacon path for page teardown.
"""
import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import requests

logger = logging.getLogger("capturepipe.transport")


@dataclass
class DeliveryOutcome:
    ok: bool
    status: Optional[int] = None
    data: Any = None
    error: Optional[str] = None


class Transport:
    """Posts batches to the ingestion backend on behalf of one collector."""

    REQUEST_TIMEOUT = 10.0
    BEACON_TIMEOUT = 5.0

    def __init__(self, api_key: str, session: Optional[requests.Session] = None,
                 timeout: Optional[float] = None):
        self.api_key = api_key
        self.timeout = timeout or self.REQUEST_TIMEOUT
        self._session = session or requests.Session()
        self._beacons: List[threading.Thread] = []

    def headers(self) -> Dict[str, str]:
        return {"Content-Type": "application/json", "x-api-key": self.api_key}

    async def send_batch(self, url: str, body: Any,
                         headers: Optional[Dict[str, str]] = None) -> DeliveryOutcome:
        """POST ``body`` as JSON off the event loop. Never raises; failures come back as ``ok=False``."""
        return await asyncio.to_thread(self._post, url, body, headers or self.headers())

    def _post(self, url: str, body: Any, headers: Dict[str, str]) -> DeliveryOutcome:
        try:
            response = self._session.post(url, json=body, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            logger.warning(f"Delivery to {url} failed: {e}")
            return DeliveryOutcome(ok=False, error=str(e))

        try:
            data = response.json()
        except ValueError:
            data = None

        if not 200 <= response.status_code < 300:
            logger.warning(f"Delivery to {url} rejected with HTTP {response.status_code}")
            return DeliveryOutcome(ok=False, status=response.status_code, data=data,
                                   error=f"HTTP {response.status_code}")
        return DeliveryOutcome(ok=True, status=response.status_code, data=data)

    def send_final(self, url: str, body: Any):
        """
        Best-effort beacon: start the POST and return immediately.
        No response is observable, nothing is retried, and errors are only logged.
        """
        thread = threading.Thread(target=self._beacon, args=(url, body),
                                  name="capturepipe-beacon")
        self._beacons = [t for t in self._beacons if t.is_alive()]
        self._beacons.append(thread)
        thread.start()

    def _beacon(self, url: str, body: Any):
        try:
            self._session.post(url, json=body, headers={"Content-Type": "application/json"},
                               timeout=self.BEACON_TIMEOUT)
        except requests.RequestException as e:
            logger.debug(f"Beacon to {url} dropped: {e}")

    def beacon_url(self, url: str) -> str:
        """Beacons cannot carry headers, so the key travels in the query string."""
        separator = "&" if "?" in url else "?"
        return f"{url}{separator}{urlencode({'key': self.api_key})}"

    def wait_for_beacons(self, timeout: Optional[float] = None):
        """Block until in-flight beacons finish (used at process exit and in tests)."""
        for thread in list(self._beacons):
            thread.join(timeout)
        self._beacons = [t for t in self._beacons if t.is_alive()]

    def close(self):
        self._session.close()
