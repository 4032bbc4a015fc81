"""
Bounded-chunk FIFO event buffer and the periodic batch scheduler that drains it.
"""
import asyncio
import inspect
import logging
from typing import Any, Callable, Generic, Iterable, List, Optional, TypeVar

logger = logging.getLogger("capturepipe.buffer")

T = TypeVar("T")


class EventBuffer(Generic[T]):
    """
    Ordered, append-only queue owned by one collector.

    ``append`` reports when the size threshold is reached so the owner can
    flush right away. ``take`` is an atomic remove-and-return of the head, so
    a periodic flush and an unload flush can never hand out the same item twice.
    """

    def __init__(self, batch_size: int, on_full: Optional[Callable[[], None]] = None):
        self.batch_size = batch_size
        self._on_full = on_full
        self._items: List[T] = []

    def append(self, item: T) -> bool:
        self._items.append(item)
        if len(self._items) >= self.batch_size:
            if self._on_full:
                self._on_full()
            return True
        return False

    def take(self, limit: Optional[int] = None) -> List[T]:
        """Remove and return up to ``limit`` items (default ``batch_size``) from the head."""
        count = self.batch_size if limit is None else limit
        batch = self._items[:count]
        del self._items[:count]
        return batch

    def take_all(self) -> List[T]:
        batch, self._items = self._items, []
        return batch

    def requeue(self, items: Iterable[T]):
        """Put a failed batch back at the head, ahead of anything appended since."""
        self._items[0:0] = list(items)

    def peek(self) -> List[T]:
        return list(self._items)

    def __len__(self):
        return len(self._items)


class BatchScheduler:
    """Calls ``callback`` every ``interval_ms`` until stopped. Errors are logged, never raised."""

    def __init__(self, interval_ms: float, callback: Callable[[], Any], name: str = "flush"):
        self.interval_ms = interval_ms
        self._callback = callback
        self._name = name
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    def stop(self):
        if self._task:
            self._task.cancel()
            self._task = None

    async def tick(self):
        try:
            result = self._callback()
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning(f"[{self._name}] periodic flush failed: {e}")

    async def _run(self):
        try:
            while True:
                await asyncio.sleep(self.interval_ms / 1000)
                # stop() must not cut a flush off between taking a batch and requeueing it
                await asyncio.shield(self.tick())
        except asyncio.CancelledError:
            pass
