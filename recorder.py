"""
Session recorder: a full replay timeline of DOM, input, mutation, network and
performance events, delivered in grouped batches tied to a server-assigned
recording id.
"""
import asyncio
import functools
import logging
from typing import Any, Callable, Dict, List, Optional

from .buffer import BatchScheduler, EventBuffer
from .collector import Collector, CollectorState, Handler
from .config import RecorderConfig
from .dom import Element
from .events import (INPUT_VALUE_LIMIT, LCP, MUTATION, NETWORK, RECORDER, TARGET_TEXT_LIMIT,
                     CapturedEvent, round_half_up, truncate)
from .mutations import MutationCoalescer
from .network import NetworkSummarizer
from .selector import recorder_selector

logger = logging.getLogger("capturepipe.recorder")

POINTER_EVENTS = ('click', 'dblclick', 'mousedown', 'mouseup', 'mousemove', 'mouseenter',
                  'mouseleave', 'mouseover', 'mouseout')
KEYBOARD_EVENTS = ('keydown', 'keyup', 'keypress')
FORM_EVENTS = ('focus', 'blur', 'change', 'input', 'submit', 'reset', 'select')
VIEWPORT_EVENTS = ('scroll', 'resize', 'wheel')
TOUCH_EVENTS = ('touchstart', 'touchend', 'touchmove', 'touchcancel')
DOCUMENT_EVENTS = ('load', 'DOMContentLoaded', 'error', 'hashchange', 'popstate')

RECORDED_EVENTS = (POINTER_EVENTS + KEYBOARD_EVENTS + FORM_EVENTS + VIEWPORT_EVENTS
                   + TOUCH_EVENTS + DOCUMENT_EVENTS)

# Relayed by the bridge rather than by DOM listeners
MUTATIONS = "mutations"
NETWORK_REQUEST = "network_request"
ONLINE = "online"
OFFLINE = "offline"


class SessionRecorder(Collector):
    """Records one page session and streams it to the sessions API."""

    SESSION_PREFIX = "sr"

    def __init__(self, config: RecorderConfig, snapshot: Optional[Callable[[], Any]] = None, **kwargs):
        super().__init__(config, **kwargs)
        self.config: RecorderConfig = config
        self.buffer: EventBuffer[CapturedEvent] = EventBuffer(config.batch_size, on_full=self._flush_now)
        self.recording_id: Optional[str] = None
        self.events_count = 0
        self.is_recording = True
        self.session_start = self.clock()
        self.mutations = MutationCoalescer(
            self._on_mutations_settled,
            snapshot=snapshot,
            debounce_ms=config.mutation_debounce,
            max_records=config.max_mutations,
            max_html_length=config.max_html_length,
        )
        self.network = NetworkSummarizer()
        self._scheduler = BatchScheduler(config.batch_timeout, self.flush, name="recorder")
        self._registration: Optional[asyncio.Task] = None
        self._delivery_lock = asyncio.Lock()
        self._size_flush_inflight = False
        self._stopped = False
        self._ended = False

    def _offset(self) -> int:
        return round_half_up(self.clock() - self.session_start)

    # --- lifecycle ---

    def _build_handlers(self) -> Dict[str, Handler]:
        handlers: Dict[str, Handler] = {
            event_type: functools.partial(self._on_dom_event, event_type)
            for event_type in RECORDED_EVENTS
        }
        capabilities = self.environment.capabilities
        if capabilities.mutation_observer:
            handlers[MUTATIONS] = self._on_mutations
        if capabilities.performance_observer:
            handlers[LCP] = self._on_lcp
        handlers[ONLINE] = functools.partial(self._on_network_status, ONLINE)
        handlers[OFFLINE] = functools.partial(self._on_network_status, OFFLINE)
        if self.config.capture_network:
            handlers[NETWORK_REQUEST] = self._on_network_request
        return handlers

    def _on_start(self):
        self._registration = self.spawn(self.register())
        self._scheduler.start()
        if self.environment.ready_state in ("interactive", "complete"):
            # Listeners attached after the fact; note the document as already loaded
            for event_type in ("DOMContentLoaded", "load"):
                self.record_event(event_type, {"timestamp": 0, "loaded": True})

    async def _on_stop(self):
        self._scheduler.stop()
        if self.capturing:
            await self.mutations.flush()
        else:
            self.mutations.cancel()
        if self.state in (CollectorState.ACTIVE, CollectorState.PAUSED) and not self._stopped:
            self.is_recording = False
            self._stopped = True
            self._marker("stop")

    def pause_recording(self):
        if self.state is not CollectorState.ACTIVE:
            return
        self.is_recording = False
        self.state = CollectorState.PAUSED
        self.mutations.cancel()
        self._marker("pause")

    def resume_recording(self):
        if self.state is not CollectorState.PAUSED:
            return
        self.is_recording = True
        self._stopped = False
        self.state = CollectorState.ACTIVE
        self._marker("resume")

    def stop_recording(self):
        """Stop capturing, mark the timeline and flush what is buffered."""
        if self.state not in (CollectorState.ACTIVE, CollectorState.PAUSED) or self._stopped:
            return
        self.is_recording = False
        self._stopped = True
        self.state = CollectorState.PAUSED
        self.mutations.cancel()
        self._marker("stop")
        self.spawn(self.flush())

    def _marker(self, action: str):
        # Lifecycle markers are appended even while recording is off
        self._append(RECORDER, {"action": action, "timestamp": self._offset()})

    # --- registration ---

    def registration_payload(self) -> Dict[str, Any]:
        env = self.environment
        info = env.classify()
        return {
            "session_id": self.session_id,
            "user_id": self.user_id,
            "browser": info.browser,
            "os": info.os,
            "device_type": info.device_type,
            "screen_width": env.screen_width,
            "screen_height": env.screen_height,
            "url": env.url,
            "referrer": env.referrer,
            "metadata": {
                "userAgent": env.user_agent,
                "language": env.language,
                "cookieEnabled": env.cookie_enabled,
            },
        }

    async def register(self) -> bool:
        outcome = await self.transport.send_batch(self.config.sessions_url, self.registration_payload())
        data = outcome.data if isinstance(outcome.data, dict) else {}
        if outcome.ok and data.get("recording_id"):
            self.recording_id = data["recording_id"]
            logger.debug(f"Session {self.session_id} registered as recording {self.recording_id}")
            return True
        logger.warning(f"Failed to start session {self.session_id}: {outcome.error or 'no recording_id'}")
        return False

    async def ensure_registered(self) -> bool:
        """Join the in-flight registration, or start a new one if the last attempt failed."""
        if self.recording_id:
            return True
        if self._registration is None or self._registration.done():
            self._registration = self.spawn(self.register())
        await asyncio.shield(self._registration)
        return self.recording_id is not None

    # --- capture ---

    def record_event(self, event_type: str, data: Dict[str, Any]):
        if not self.enabled or not self.is_recording:
            return
        self._append(event_type, data)

    def _append(self, event_type: str, data: Dict[str, Any]):
        if not self.enabled:
            return
        event = CapturedEvent(event_type, data.get("timestamp") or self._offset(), data)
        self.events_count += 1
        self.buffer.append(event)

    def _on_dom_event(self, event_type: str, payload: Dict[str, Any]):
        if not self.capturing:
            return
        self.record_event(event_type, self.extract_event_data(event_type, payload))

    def extract_event_data(self, event_type: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Pick the fields worth replaying for ``event_type`` out of a relayed DOM event."""
        data: Dict[str, Any] = {"timestamp": self._offset()}
        target = Element.from_descriptor(payload.get("target"))

        if event_type == "scroll":
            data["scrollX"] = payload.get("scrollX")
            data["scrollY"] = payload.get("scrollY")
            data["scrollHeight"] = payload.get("scrollHeight")
            data["clientHeight"] = payload.get("clientHeight")
        elif event_type == "resize":
            data["width"] = payload.get("innerWidth")
            data["height"] = payload.get("innerHeight")
        elif event_type in POINTER_EVENTS:
            data["x"] = payload.get("x")
            data["y"] = payload.get("y")
            data["target"] = recorder_selector(target)
            data["targetText"] = truncate(payload.get("text"), TARGET_TEXT_LIMIT)
            if event_type == "click":
                data["tagName"] = payload.get("tagName")
                data["href"] = payload.get("href")
                data["inputType"] = payload.get("inputType")
        elif event_type in KEYBOARD_EVENTS:
            data["key"] = payload.get("key")
            data["code"] = payload.get("code")
            data["keyCode"] = payload.get("keyCode")
            data["target"] = recorder_selector(target)
        elif event_type in ("input", "change"):
            data["target"] = recorder_selector(target)
            data["value"] = truncate(payload.get("value"), INPUT_VALUE_LIMIT)
            data["inputType"] = payload.get("inputType") or ""
            data["tagName"] = payload.get("tagName")
        elif event_type in ("focus", "blur"):
            data["target"] = recorder_selector(target)
        elif event_type in ("error", "load"):
            data["message"] = payload.get("message") or ""
            data["source"] = payload.get("filename")
            data["lineno"] = payload.get("lineno")

        data["type"] = payload.get("eventClass") or "Event"
        return data

    def _on_mutations(self, payload: Dict[str, Any]):
        if not self.capturing:
            return
        records = payload.get("records") or []
        if records:
            self.mutations.observe(records)

    def _on_mutations_settled(self, data: Dict[str, Any]):
        self.record_event(MUTATION, {"timestamp": self._offset(), **data})

    def _on_lcp(self, payload: Dict[str, Any]):
        if not self.capturing:
            return
        self.record_event(LCP, {
            "timestamp": self._offset(),
            "startTime": payload.get("startTime"),
            "size": payload.get("size"),
            "id": payload.get("id"),
        })

    def _on_network_status(self, status: str, payload: Dict[str, Any]):
        if not self.capturing:
            return
        self.record_event(NETWORK, {"timestamp": self._offset(), "status": status})

    def _on_network_request(self, payload: Dict[str, Any]):
        if not self.capturing:
            return
        summary = self.network.process(payload)
        if summary:
            self.record_event(NETWORK, {"timestamp": self._offset(), **summary})

    # --- delivery ---

    def _batch_body(self, events: List[CapturedEvent]) -> Dict[str, Any]:
        return {
            "recording_id": self.recording_id,
            "session_id": self.session_id,
            "events": [event.to_dict() for event in events],
        }

    async def _deliver_next(self) -> bool:
        """
        Send the head batch as one grouped request. On any failure the batch goes
        back to the head of the buffer. Deliveries run one at a time, so a failed
        batch is always requeued ahead of anything taken after it.
        """
        async with self._delivery_lock:
            events = self.buffer.take()
            if not events:
                return True
            if not await self.ensure_registered():
                self.buffer.requeue(events)
                return False
            outcome = await self.transport.send_batch(self.config.events_url, self._batch_body(events))
            if not outcome.ok:
                logger.warning(f"Batch of {len(events)} events not delivered, requeued")
                self.buffer.requeue(events)
                return False
            return True

    def _flush_now(self):
        if self._size_flush_inflight:
            # A size-triggered send is already out; the timer picks up the rest
            return
        self._size_flush_inflight = True
        self.spawn(self._deliver_size_batch())

    async def _deliver_size_batch(self):
        try:
            await self._deliver_next()
        finally:
            self._size_flush_inflight = False

    async def flush(self) -> bool:
        if not self.buffer:
            return True
        return await self._deliver_next()

    async def flush_all(self):
        while self.buffer:
            if not await self._deliver_next():
                break

    def _flush_final(self, ended: bool):
        if self.recording_id:
            url = self.transport.beacon_url(self.config.events_url)
            while self.buffer:
                self.transport.send_final(url, self._batch_body(self.buffer.take()))
        elif self.buffer:
            logger.debug(f"Holding {len(self.buffer)} events: session not registered yet")

        if ended and self.recording_id and not self._ended:
            self._ended = True
            self.transport.send_final(self.transport.beacon_url(self.config.sessions_url), {
                "session_id": self.session_id,
                "metadata": {
                    "events_count": self.events_count,
                    "ended_at": self.clock(),
                },
            })
