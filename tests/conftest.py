"""
Shared fixtures: a transport that records instead of posting, and a clock the
tests move by hand.
"""
import copy
from unittest.mock import MagicMock

import pytest

from capturepipe.transport import DeliveryOutcome, Transport

API_KEY = "pk_test_123"
HOST = "http://analytics.test"
INGEST_URL = HOST + "/api/ingest"
SESSIONS_URL = HOST + "/api/sessions"
EVENTS_URL = HOST + "/api/sessions/events"


class FakeTransport(Transport):
    """Records every send. ``fail_next`` fails that many calls; ``recording_id`` answers registrations."""

    def __init__(self):
        super().__init__(API_KEY, session=MagicMock())
        self.sent = []
        self.beacons = []
        self.fail_next = 0
        self.fail_urls = set()
        self.recording_id = "rec-1"
        # Set to an asyncio.Event to hold sends in flight until it is set
        self.gate = None

    async def send_batch(self, url, body, headers=None):
        self.sent.append((url, copy.deepcopy(body)))
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_next > 0:
            self.fail_next -= 1
            return DeliveryOutcome(ok=False, error="connection refused")
        if url in self.fail_urls:
            return DeliveryOutcome(ok=False, status=503, error="HTTP 503")
        if url == SESSIONS_URL:
            data = {"recording_id": self.recording_id} if self.recording_id else {}
            return DeliveryOutcome(ok=True, status=200, data=data)
        return DeliveryOutcome(ok=True, status=200, data={"success": True})

    def send_final(self, url, body):
        self.beacons.append((url, copy.deepcopy(body)))

    def sent_to(self, url):
        return [body for sent_url, body in self.sent if sent_url == url]


class FakeClock:
    def __init__(self, now: float = 1_700_000_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float):
        self.now += ms


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def clock():
    return FakeClock()
