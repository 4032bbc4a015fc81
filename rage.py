"""
Rage-click detection: a per-coordinate sliding window of click timestamps.
"""
from typing import Dict, List, NamedTuple

from .events import round_half_up


class RageClickResult(NamedTuple):
    fired: bool
    burst_size: int


class RageClickDetector:
    """Counts clicks per rounded (x, y) and fires once a burst reaches the threshold."""

    def __init__(self, threshold: int = 3, time_window: float = 1000):
        self.threshold = threshold
        self.time_window = time_window
        self._clicks: Dict[str, List[float]] = {}

    @staticmethod
    def key(x: float, y: float) -> str:
        return f"{round_half_up(x)},{round_half_up(y)}"

    def on_click(self, x: float, y: float, now: float) -> RageClickResult:
        key = self.key(x, y)
        clicks = [t for t in self._clicks.get(key, []) if now - t < self.time_window]
        clicks.append(now)
        self._clicks[key] = clicks

        if len(clicks) >= self.threshold:
            # Next click at this spot starts a fresh burst
            del self._clicks[key]
            return RageClickResult(True, len(clicks))
        return RageClickResult(False, len(clicks))

    def sweep(self, now: float) -> int:
        """Drop keys whose clicks have all left the window. Returns how many were dropped."""
        stale = [k for k, clicks in self._clicks.items()
                 if not clicks or now - clicks[-1] >= self.time_window]
        for key in stale:
            del self._clicks[key]
        return len(stale)

    def pending(self, x: float, y: float) -> int:
        return len(self._clicks.get(self.key(x, y), []))

    def __len__(self):
        return len(self._clicks)
