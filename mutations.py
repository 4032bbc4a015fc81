"""
Debounced DOM-mutation coalescing for the session recorder.
"""
import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from .dom import Element
from .events import HTML_SNAPSHOT_LIMIT, MAX_MUTATION_RECORDS, OLD_VALUE_LIMIT
from .selector import recorder_selector

logger = logging.getLogger("capturepipe.mutations")


@dataclass
class MutationRecord:
    type: str
    target: Optional[Element] = None
    added_nodes: int = 0
    removed_nodes: int = 0
    attribute_name: Optional[str] = None
    old_value: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MutationRecord':
        return cls(
            type=data.get("type", ""),
            target=Element.from_descriptor(data.get("target")),
            added_nodes=int(data.get("addedNodes") or 0),
            removed_nodes=int(data.get("removedNodes") or 0),
            attribute_name=data.get("attributeName"),
            old_value=data.get("oldValue"),
        )


def summarize(records: List[MutationRecord], limit: int = MAX_MUTATION_RECORDS) -> List[Dict[str, Any]]:
    """Summaries for the first ``limit`` records; the rest of the burst is dropped."""
    return [
        {
            "type": record.type,
            "target": recorder_selector(record.target),
            "addedNodes": record.added_nodes,
            "removedNodes": record.removed_nodes,
            "attributeName": record.attribute_name,
            "oldValue": record.old_value[:OLD_VALUE_LIMIT] if record.old_value else None,
        }
        for record in records[:limit]
    ]


class MutationCoalescer:
    """
    Turns bursts of mutation-observer callbacks into at most one event per
    quiet period. Each ``observe`` call replaces the pending batch and restarts
    the debounce timer; when the timer survives, the latest batch is summarized
    and a single HTML snapshot is taken.
    """

    def __init__(self, emit: Callable[[Dict[str, Any]], None],
                 snapshot: Optional[Callable[[], Any]] = None,
                 debounce_ms: float = 100,
                 max_records: int = MAX_MUTATION_RECORDS,
                 max_html_length: int = HTML_SNAPSHOT_LIMIT):
        self._emit = emit
        self._snapshot = snapshot
        self.debounce_ms = debounce_ms
        self.max_records = max_records
        self.max_html_length = max_html_length
        self._pending: Optional[List[MutationRecord]] = None
        self._timer: Optional[asyncio.Task] = None

    @property
    def pending(self) -> bool:
        return self._pending is not None

    def observe(self, records: List[Any]):
        self._pending = [r if isinstance(r, MutationRecord) else MutationRecord.from_dict(r)
                         for r in records]
        if self._timer:
            self._timer.cancel()
        self._timer = asyncio.get_running_loop().create_task(self._debounce())

    async def _debounce(self):
        try:
            await asyncio.sleep(self.debounce_ms / 1000)
        except asyncio.CancelledError:
            return
        self._timer = None
        await self._process()

    async def flush(self):
        """Process the pending batch now instead of waiting out the timer."""
        self.cancel()
        await self._process()

    def cancel(self):
        if self._timer:
            self._timer.cancel()
            self._timer = None

    async def _process(self):
        records, self._pending = self._pending, None
        if not records:
            return
        mutations = summarize(records, self.max_records)
        if not mutations:
            return
        html = await self._take_snapshot()
        self._emit({"mutations": mutations, "html": html})

    async def _take_snapshot(self) -> str:
        if self._snapshot is None:
            return ""
        try:
            html = self._snapshot()
            if inspect.isawaitable(html):
                html = await html
        except Exception as e:
            logger.debug(f"HTML snapshot unavailable: {e}")
            return ""
        return (html or "")[:self.max_html_length]
