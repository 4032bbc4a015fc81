"""
Heatmap tracker: click positions, scroll depth and rage clicks.

Clicks are buffered and sent one request per click; scroll readings are
deduplicated at flush time and sent as one grouped request; rage clicks skip
the buffer and go out immediately.
"""
import asyncio
import logging
from typing import Any, Dict, List

from .buffer import BatchScheduler, EventBuffer
from .collector import Collector, CollectorState, Handler
from .config import HeatmapConfig
from .dom import Element
from .events import (CLICK, HEATMAP_CLICK, HEATMAP_SCROLL, HEATMAP_TEXT_LIMIT, RAGE_CLICK,
                     SCROLL, SESSION_START, round_half_up, truncate)
from .rage import RageClickDetector
from .scroll import ScrollDepthSampler, dedupe_by_key
from .selector import heatmap_selector

logger = logging.getLogger("capturepipe.heatmap")


class HeatmapTracker(Collector):
    """Collects click and scroll heatmap data for one page session."""

    SESSION_PREFIX = "s"

    def __init__(self, config: HeatmapConfig, **kwargs):
        super().__init__(config, **kwargs)
        self.config: HeatmapConfig = config
        self.rage_clicks = RageClickDetector(config.rage_click_threshold, config.rage_click_time_window)
        self.scroll_sampler = ScrollDepthSampler(config.scroll_throttle)
        self.click_buffer: EventBuffer[Dict[str, Any]] = EventBuffer(config.batch_size,
                                                                     on_full=self._flush_clicks_now)
        self.scroll_buffer: EventBuffer[Dict[str, Any]] = EventBuffer(config.batch_size)
        self._scheduler = BatchScheduler(config.batch_timeout, self.tick, name="heatmap")
        # One delivery per buffer at a time keeps requeued items ahead of later ones
        self._click_lock = asyncio.Lock()
        self._scroll_lock = asyncio.Lock()

    @property
    def max_scroll_depth(self) -> int:
        return self.scroll_sampler.max_depth

    def enable(self):
        self.enabled = True

    def disable(self):
        """Stop sending. Capture continues and buffered events wait for ``enable()``."""
        self.enabled = False

    def _build_handlers(self) -> Dict[str, Handler]:
        return {CLICK: self._on_click, SCROLL: self._on_scroll}

    def _on_start(self):
        env = self.environment
        info = env.classify()
        self.spawn(self._send({
            "event_type": SESSION_START,
            "session_id": self.session_id,
            "user_id": self.user_id,
            "url": env.url,
            "device_type": info.device_type,
            "browser": info.browser,
            "os": info.os,
            "screen_width": env.screen_width,
            "screen_height": env.screen_height,
        }))
        self._scheduler.start()

    async def _on_stop(self):
        self._scheduler.stop()

    # --- capture ---

    def _on_click(self, payload: Dict[str, Any]):
        if not self.capturing:
            return
        x = payload.get("x") or 0
        y = payload.get("y") or 0
        selector = heatmap_selector(Element.from_descriptor(payload.get("target")))
        text = truncate(payload.get("text"), HEATMAP_TEXT_LIMIT)

        self.click_buffer.append({
            "event_type": HEATMAP_CLICK,
            "x": x,
            "y": y,
            "selector": selector,
            "text": text,
            "page_url": self.environment.page_path,
            "session_id": self.session_id,
            "user_id": self.user_id,
        })

        result = self.rage_clicks.on_click(x, y, self.clock())
        if result.fired:
            logger.debug(f"Rage click at ({x}, {y}) after {result.burst_size} clicks")
            self.spawn(self._send_rage_click({
                "event_type": RAGE_CLICK,
                "x": round_half_up(x),
                "y": round_half_up(y),
                "selector": selector,
                "text": text,
                "click_count": result.burst_size,
                "page_url": self.environment.page_path,
                "session_id": self.session_id,
                "user_id": self.user_id,
            }))

    def _on_scroll(self, payload: Dict[str, Any]):
        if not self.capturing:
            return
        record = self.scroll_sampler.sample(
            payload.get("scrollY", 0),
            payload.get("scrollHeight", 0),
            payload.get("innerHeight", self.environment.viewport_height),
            payload.get("innerWidth", self.environment.viewport_width),
            self.clock(),
        )
        if record is None:
            return
        self.scroll_buffer.append({
            "event_type": HEATMAP_SCROLL,
            "depth": record.depth,
            "viewport_height": record.viewport_height,
            "viewport_width": record.viewport_width,
            "page_url": self.environment.page_path,
            "session_id": self.session_id,
        })

    # --- delivery ---

    def _payload(self, item: Dict[str, Any]) -> Dict[str, Any]:
        return {**item, "timestamp": self.clock(), "apiKey": self.config.api_key}

    async def _send(self, item: Dict[str, Any]) -> bool:
        outcome = await self.transport.send_batch(self.config.ingest_url, self._payload(item))
        return outcome.ok

    async def _send_rage_click(self, item: Dict[str, Any]):
        if self.enabled and await self._send(item):
            return
        if self.state is CollectorState.DESTROYED:
            logger.debug(f"Dropping undelivered rage click for {self.session_id}: tracker destroyed")
            return
        # Held with the clicks until the next flush
        self.click_buffer.requeue([item])

    def _flush_clicks_now(self):
        if not self.enabled:
            return
        self.spawn(self.flush_clicks())

    async def flush_clicks(self) -> bool:
        """Send the head batch of clicks, one request per click. Failed clicks are requeued in order."""
        async with self._click_lock:
            if not self.enabled:
                return True
            batch = self.click_buffer.take()
            if not batch:
                return True
            results = await asyncio.gather(*(self._send(item) for item in batch))
            failed = [item for item, ok in zip(batch, results) if not ok]
            if failed:
                logger.warning(f"{len(failed)} of {len(batch)} clicks not delivered, requeued")
                self.click_buffer.requeue(failed)
            return not failed

    def _scroll_group(self, items: List[Dict[str, Any]]) -> Dict[str, Any]:
        return self._payload({"event_type": HEATMAP_SCROLL, "session_id": self.session_id,
                              "events": items})

    async def flush_scrolls(self) -> bool:
        """Send up to ``batch_size`` scroll readings, deduplicated, as one grouped request."""
        async with self._scroll_lock:
            if not self.enabled:
                return True
            unique = dedupe_by_key(self.scroll_buffer.take())
            if not unique:
                return True
            outcome = await self.transport.send_batch(self.config.ingest_url, self._scroll_group(unique))
            if not outcome.ok:
                self.scroll_buffer.requeue(unique)
            return outcome.ok

    async def tick(self):
        self.rage_clicks.sweep(self.clock())
        await self.flush_clicks()
        await self.flush_scrolls()

    async def flush_all(self):
        while self.enabled and self.click_buffer:
            if not await self.flush_clicks():
                break
        while self.enabled and self.scroll_buffer:
            if not await self.flush_scrolls():
                break

    def _flush_final(self, ended: bool):
        if not self.enabled:
            return
        url = self.transport.beacon_url(self.config.ingest_url)
        for item in self.click_buffer.take_all():
            self.transport.send_final(url, self._payload(item))
        while self.scroll_buffer:
            unique = dedupe_by_key(self.scroll_buffer.take())
            self.transport.send_final(url, self._scroll_group(unique))
