"""
The capture session: bridges every tracked browser tab to its own heatmap
tracker and session recorder, and drives them from an interactive prompt.
"""
import asyncio
import logging
from typing import Dict, List, Optional

from playwright.async_api import Page, Error as PWError

from .capture_script import install_capture_script, parse_console_event, take_snapshot
from .collector import BEFORE_UNLOAD, NAVIGATE, Collector, ListenerRegistry
from .config import HeatmapConfig, RecorderConfig
from .connection import CDPConnection
from .environment import probe_environment
from .heatmap import HeatmapTracker
from .recorder import NETWORK_REQUEST, SessionRecorder
from .transport import Transport

logger = logging.getLogger("capturepipe.monitor")

INTERNAL_PREFIXES = ('chrome://', 'chrome-extension://', 'devtools://', 'about:')


class PageBridge:
    """Relays one tab's captured events to the collectors of its current document."""

    def __init__(self, page: Page, client, page_id: str, monitor: 'CaptureMonitor'):
        self.page = page
        self.client = client
        self.page_id = page_id
        self.monitor = monitor
        self.registry = ListenerRegistry()
        self.heatmap: Optional[HeatmapTracker] = None
        self.recorder: Optional[SessionRecorder] = None
        self.main_frame_id: Optional[str] = None
        self.attached = False

    @property
    def collectors(self) -> List[Collector]:
        return [c for c in (self.heatmap, self.recorder) if c is not None]

    async def attach(self):
        if self.attached:
            return
        try:
            await self.client.send('Runtime.enable')
            self.client.on('Runtime.consoleAPICalled', self._handle_console_api)

            if self.monitor.recorder_config and self.monitor.recorder_config.capture_network:
                self.client.on('Network.requestWillBeSent', self._handle_network_request)
                await self.client.send('Network.enable')

            await self.client.send('Page.enable')
            frame_tree = await self.client.send('Page.getFrameTree')
            self.main_frame_id = frame_tree.get('frameTree', {}).get('frame', {}).get('id')
            self.client.on('Page.frameNavigated', self._handle_navigation)
            self.client.on('Page.navigatedWithinDocument', self._handle_same_document_navigation)

            self.attached = True
            if self.page.url.startswith(INTERNAL_PREFIXES):
                # The init script still reaches the first real document navigated to
                await install_capture_script(self.page, current_document=False)
                print(f"[Tab {self.page_id}] '{self.page.url}' blocks script injection; waiting for a real page.")
                return
            await self._start_collectors()
            await install_capture_script(self.page)
            print(f"[Tab {self.page_id}] Capturing {self.page.url}")
        except PWError as e:
            print(f"[Tab {self.page_id}] Failed to attach: {e}")

    async def _start_collectors(self):
        env = await probe_environment(self.page)
        monitor = self.monitor
        if monitor.heatmap_config:
            self.heatmap = HeatmapTracker(monitor.heatmap_config, registry=self.registry,
                                          transport=monitor.transport_for(monitor.heatmap_config),
                                          environment=env)
            await self.heatmap.start()
        if monitor.recorder_config:
            self.recorder = SessionRecorder(monitor.recorder_config, snapshot=self._snapshot,
                                            registry=self.registry,
                                            transport=monitor.transport_for(monitor.recorder_config),
                                            environment=env)
            await self.recorder.start()

    async def _snapshot(self) -> str:
        return await take_snapshot(self.page)

    async def detach(self):
        """Destroy this document's collectors; each does its own final flush."""
        collectors, self.heatmap, self.recorder = self.collectors, None, None
        for collector in collectors:
            await collector.destroy()

    def _handle_console_api(self, event: dict):
        parsed = parse_console_event(event)
        if parsed is None:
            return
        event_type, payload = parsed
        self.registry.dispatch(event_type, payload)

    def _handle_network_request(self, event: dict):
        event['tab_id'] = self.page_id
        self.registry.dispatch(NETWORK_REQUEST, event)

    async def _handle_navigation(self, event: dict):
        """A new document replaced the old one: close out the old session and start fresh."""
        frame = event.get('frame', {})
        if frame.get('parentId') is not None and frame.get('id') != self.main_frame_id:
            return
        url = frame.get('url', '')
        print(f"\n[Tab {self.page_id}] Navigated to: {url}")

        # The old document may have died before relaying its own unload
        self.registry.dispatch(BEFORE_UNLOAD, {})
        await self.detach()
        if url.startswith(INTERNAL_PREFIXES):
            return
        await self._start_collectors()

    def _handle_same_document_navigation(self, event: dict):
        if event.get('frameId') == self.main_frame_id:
            self.registry.dispatch(NAVIGATE, {"url": event.get('url', '')})


class CaptureMonitor:
    """Owns the CDP connection, one bridge per tracked tab, and the shared transports."""

    def __init__(self, cdp_port: int, heatmap_config: Optional[HeatmapConfig] = None,
                 recorder_config: Optional[RecorderConfig] = None, track_all_tabs: bool = False):
        self.conn = CDPConnection(cdp_port=cdp_port)
        self.heatmap_config = heatmap_config
        self.recorder_config = recorder_config
        self.track_all_tabs = track_all_tabs
        self._transports: Dict[str, Transport] = {}
        self._bridges: Dict[str, PageBridge] = {}
        self._page_listener_active = False

    def transport_for(self, config) -> Transport:
        if config.api_key not in self._transports:
            self._transports[config.api_key] = Transport(config.api_key)
        return self._transports[config.api_key]

    async def start(self):
        print(f"Connecting to browser on CDP port {self.conn.cdp_port}...")
        if not await self.conn.connect():
            return
        try:
            await self._attach_pages()
            await self._interactive_loop()
        finally:
            await self.shutdown()

    async def shutdown(self):
        print("Flushing collectors and disconnecting...")
        for bridge in list(self._bridges.values()):
            await bridge.detach()
        self._bridges.clear()
        for transport in self._transports.values():
            await asyncio.to_thread(transport.wait_for_beacons, Transport.BEACON_TIMEOUT)
            transport.close()
        await self.conn.disconnect()

    async def _attach_pages(self):
        pages = self.conn.pages() if self.track_all_tabs else self.conn.pages()[:1]
        for page in pages:
            await self._attach_page(page)
        if self.track_all_tabs and not self._page_listener_active:
            self.conn.context.on("page", self._attach_page)
            self._page_listener_active = True
            print("Listening for new tabs and pop-ups...")

    async def _attach_page(self, page: Page):
        page_id = "main" if not self.track_all_tabs else f"tab-{len(self._bridges)}"
        if page_id in self._bridges:
            return
        try:
            client = await self.conn.new_cdp_session(page)
        except PWError as e:
            print(f"[Tab {page_id}] Could not open a CDP session: {e}")
            return
        bridge = PageBridge(page, client, page_id, self)
        self._bridges[page_id] = bridge
        await bridge.attach()

    def _recorders(self) -> List[SessionRecorder]:
        return [b.recorder for b in self._bridges.values() if b.recorder]

    def _heatmaps(self) -> List[HeatmapTracker]:
        return [b.heatmap for b in self._bridges.values() if b.heatmap]

    async def _interactive_loop(self):
        print("\nCommands:\n  pause        - Pause session recording.\n  resume       - Resume session recording."
              "\n  stop         - Stop session recording.\n  user <id>    - Tag future events with a user id."
              "\n  enable       - Resume heatmap delivery.\n  disable      - Hold heatmap delivery."
              "\n  flush        - Send everything buffered now.\n  tabs         - List tracked tabs."
              "\n  quit         - Flush and exit.")
        while True:
            command_str = await asyncio.to_thread(input, "\n> ")
            parts = command_str.strip().split()
            if not parts:
                continue
            command, args = parts[0].lower(), parts[1:]

            if command == "pause":
                for recorder in self._recorders():
                    recorder.pause_recording()
                print("Recording paused.")
            elif command == "resume":
                for recorder in self._recorders():
                    recorder.resume_recording()
                print("Recording resumed.")
            elif command == "stop":
                for recorder in self._recorders():
                    recorder.stop_recording()
                print("Recording stopped.")
            elif command == "user":
                user_id = args[0] if args else None
                for bridge in self._bridges.values():
                    for collector in bridge.collectors:
                        collector.update_user_id(user_id)
                print(f"User id set to {user_id!r}.")
            elif command == "enable":
                for heatmap in self._heatmaps():
                    heatmap.enable()
                print("Heatmap delivery enabled.")
            elif command == "disable":
                for heatmap in self._heatmaps():
                    heatmap.disable()
                print("Heatmap delivery disabled; events keep buffering.")
            elif command == "flush":
                for bridge in self._bridges.values():
                    for collector in bridge.collectors:
                        await collector.flush_all()
                print("Flushed.")
            elif command == "tabs":
                self._list_tabs()
            elif command == "quit":
                break
            else:
                print("Unknown command.")

    def _list_tabs(self):
        if not self._bridges:
            print("No tabs are being tracked.")
            return
        print(f"\nTracking {len(self._bridges)} tab(s):")
        for page_id, bridge in self._bridges.items():
            print(f"  [{page_id}] {bridge.page.url}")
            for collector in bridge.collectors:
                extra = ""
                if isinstance(collector, SessionRecorder):
                    extra = f" recording={collector.recording_id} events={collector.events_count}"
                print(f"           {type(collector).__name__} {collector.session_id} "
                      f"[{collector.state.value}]{extra}")
