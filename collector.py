"""
Shared collector lifecycle: the listener registry that stands in for
addEventListener, the handler table each collector registers on it, and the
uninitialized -> initializing -> active <-> paused -> destroyed state machine.
"""
import asyncio
import enum
import logging
from collections import defaultdict
from typing import Any, Callable, Coroutine, Dict, List, Optional, Set

from .config import CollectorConfig
from .environment import PageEnvironment
from .events import generate_session_id, now_ms
from .transport import Transport

logger = logging.getLogger("capturepipe.collector")

Handler = Callable[[Dict[str, Any]], None]

# Page-lifecycle event names dispatched by the bridge
BEFORE_UNLOAD = "beforeunload"
PAGE_HIDE = "pagehide"
VISIBILITY_CHANGE = "visibilitychange"
NAVIGATE = "navigate"


class ListenerRegistry:
    """Per-page dispatch table from event type to handlers."""

    def __init__(self):
        self._listeners: Dict[str, List[Handler]] = defaultdict(list)

    def add_listener(self, event_type: str, handler: Handler):
        if handler not in self._listeners[event_type]:
            self._listeners[event_type].append(handler)

    def remove_listener(self, event_type: str, handler: Handler):
        handlers = self._listeners.get(event_type)
        if handlers and handler in handlers:
            handlers.remove(handler)
            if not handlers:
                del self._listeners[event_type]

    def listeners(self, event_type: str) -> List[Handler]:
        return list(self._listeners.get(event_type, []))

    def dispatch(self, event_type: str, payload: Optional[Dict[str, Any]] = None):
        for handler in self.listeners(event_type):
            try:
                handler(payload or {})
            except Exception as e:
                logger.warning(f"Listener for '{event_type}' failed: {e}")

    def __len__(self):
        return sum(len(h) for h in self._listeners.values())


class CollectorState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    ACTIVE = "active"
    PAUSED = "paused"
    DESTROYED = "destroyed"


class Collector:
    """
    Base for the heatmap tracker and the session recorder.

    Subclasses provide ``_build_handlers``, ``_on_start``, ``flush_all`` and
    ``_flush_final``. Captured state (buffers, rage map, counters) lives on the
    instance from construction to ``destroy()``.
    """

    SESSION_PREFIX = "s"

    def __init__(self, config: CollectorConfig, registry: Optional[ListenerRegistry] = None,
                 transport: Optional[Transport] = None,
                 environment: Optional[PageEnvironment] = None,
                 clock: Optional[Callable[[], float]] = None):
        self.config = config
        self.clock = clock or now_ms
        self.registry = registry if registry is not None else ListenerRegistry()
        self.transport = transport if transport is not None else Transport(config.api_key)
        self.environment = environment if environment is not None else PageEnvironment()
        self.session_id = generate_session_id(self.SESSION_PREFIX, self.clock())
        self.user_id = config.user_id
        self.enabled = config.enabled
        self.state = CollectorState.UNINITIALIZED
        self._handlers: Dict[str, Handler] = {}
        self._tasks: Set[asyncio.Task] = set()

    @property
    def capturing(self) -> bool:
        return self.state is CollectorState.ACTIVE

    async def start(self):
        """Attach listeners, start the flush timer and dispatch session registration."""
        if not self.config.enabled or self.state is not CollectorState.UNINITIALIZED:
            return
        self.state = CollectorState.INITIALIZING
        self._handlers = self._build_handlers()
        self._handlers.setdefault(BEFORE_UNLOAD, self._on_unload)
        self._handlers.setdefault(PAGE_HIDE, self._on_unload)
        self._handlers.setdefault(VISIBILITY_CHANGE, self._on_visibility_change)
        self._handlers.setdefault(NAVIGATE, self._on_navigate)
        for event_type, handler in self._handlers.items():
            self.registry.add_listener(event_type, handler)
        self._on_start()
        self.state = CollectorState.ACTIVE
        logger.debug(f"{type(self).__name__} {self.session_id} active with "
                     f"{len(self._handlers)} listeners")

    async def destroy(self):
        """Final flush, stop the timer and detach every listener. Safe to call twice."""
        if self.state is CollectorState.DESTROYED:
            await self.flush_all()
            return
        await self._on_stop()
        for event_type, handler in self._handlers.items():
            self.registry.remove_listener(event_type, handler)
        self._handlers = {}
        await self.flush_all()
        self.enabled = False
        self.state = CollectorState.DESTROYED
        await self.wait_idle()

    def update_user_id(self, user_id: Optional[str]):
        """Only events captured from now on carry the new id."""
        self.user_id = user_id

    def spawn(self, coro: Coroutine) -> asyncio.Task:
        """Run ``coro`` detached from the caller, keeping a reference until it finishes."""
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def wait_idle(self):
        """Wait for detached sends to settle."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _on_unload(self, payload: Dict[str, Any]):
        self._flush_final(ended=True)

    def _on_visibility_change(self, payload: Dict[str, Any]):
        if payload.get("state") == "hidden":
            self._flush_final(ended=False)

    def _on_navigate(self, payload: Dict[str, Any]):
        if payload.get("url"):
            self.environment.url = payload["url"]

    def _build_handlers(self) -> Dict[str, Handler]:
        raise NotImplementedError

    def _on_start(self):
        pass

    async def _on_stop(self):
        pass

    async def flush_all(self):
        raise NotImplementedError

    def _flush_final(self, ended: bool):
        raise NotImplementedError

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.destroy()
