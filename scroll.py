"""
Scroll-depth sampling with a leading-edge throttle, and flush-time dedup of
identical (depth, viewport) readings.
"""
from typing import Dict, Iterable, List, NamedTuple, Optional, Tuple

from .events import round_half_up


class ScrollDepthRecord(NamedTuple):
    depth: int
    viewport_height: int
    viewport_width: int


def compute_depth(scroll_y: float, scroll_height: float, viewport_height: float) -> int:
    """Scroll depth as an integer percentage in [0, 100]; 0 when the page cannot scroll."""
    doc_height = (scroll_height or 0) - (viewport_height or 0)
    if doc_height <= 0:
        return 0
    depth = round_half_up((scroll_y or 0) / doc_height * 100)
    return max(0, min(100, depth))


class ScrollDepthSampler:
    """Processes at most one scroll callback per ``throttle`` ms; the first call of a burst wins."""

    def __init__(self, throttle: float = 500):
        self.throttle = throttle
        self.max_depth = 0
        self._last_time: Optional[float] = None

    def sample(self, scroll_y: float, scroll_height: float, viewport_height: int,
               viewport_width: int, now: float) -> Optional[ScrollDepthRecord]:
        if self._last_time is not None and now - self._last_time < self.throttle:
            return None
        self._last_time = now

        depth = compute_depth(scroll_y, scroll_height, viewport_height)
        if depth > self.max_depth:
            self.max_depth = depth
        return ScrollDepthRecord(depth, int(viewport_height or 0), int(viewport_width or 0))


def dedupe_by_key(items: Iterable[dict]) -> List[dict]:
    """
    Keep the first payload per (depth, viewport_height, viewport_width), in
    arrival order.
    """
    unique: Dict[Tuple, dict] = {}
    for item in items:
        key = (item.get("depth"), item.get("viewport_height"), item.get("viewport_width"))
        if key not in unique:
            unique[key] = item
    return list(unique.values())
