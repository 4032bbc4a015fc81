"""
Captured event model shared by both collectors, plus the payload caps that keep
every serialized event bounded.
"""
import math
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

# Event vocabulary
CLICK = "click"
SCROLL = "scroll"
RAGE_CLICK = "rage_click"
SESSION_START = "session_start"
HEATMAP_CLICK = "heatmap_click"
HEATMAP_SCROLL = "heatmap_scroll"
MUTATION = "mutation"
NETWORK = "network"
LCP = "lcp"
RECORDER = "recorder"

# Payload caps
HEATMAP_TEXT_LIMIT = 200
TARGET_TEXT_LIMIT = 100
INPUT_VALUE_LIMIT = 100
OLD_VALUE_LIMIT = 200
HTML_SNAPSHOT_LIMIT = 5000
MAX_MUTATION_RECORDS = 20


@dataclass
class CapturedEvent:
    """The atomic unit moving through a collector's buffer."""
    event_type: str
    timestamp: float
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type,
            "timestamp": self.timestamp,
            "data": self.data,
        }


def truncate(value: Any, limit: int) -> str:
    """Coerce to text and cut to ``limit`` characters. None becomes ''."""
    if value is None:
        return ""
    if not isinstance(value, str):
        value = str(value)
    return value[:limit]


def round_half_up(value: float) -> int:
    """Round like the browser does (halves go up, -0.5 goes to 0)."""
    return int(math.floor(value + 0.5))


def now_ms() -> float:
    return time.time() * 1000


def generate_session_id(prefix: str, now: Optional[float] = None) -> str:
    """Opaque ``<prefix>_<epoch-ms>_<9 random chars>`` identifier."""
    stamp = int(now if now is not None else now_ms())
    return f"{prefix}_{stamp}_{uuid.uuid4().hex[:9]}"
