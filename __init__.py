"""
capturepipe - client-side telemetry capture and delivery.

Heatmap tracking (clicks, scroll depth, rage clicks) and full session
recording for browser pages, with throttled capture, buffered batching and
unload-safe delivery to an analytics backend.
"""

from .collector import CollectorState, ListenerRegistry
from .config import HeatmapConfig, RecorderConfig
from .heatmap import HeatmapTracker
from .recorder import SessionRecorder
from .transport import DeliveryOutcome, Transport

__version__ = "0.1.0"
__all__ = [
    "CollectorState",
    "DeliveryOutcome",
    "HeatmapConfig",
    "HeatmapTracker",
    "ListenerRegistry",
    "RecorderConfig",
    "SessionRecorder",
    "Transport",
]
