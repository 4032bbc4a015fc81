"""
Collector configuration. Options mirror the browser snippet's constructor
options; ``from_options`` accepts them in their camelCase spelling.
"""
from dataclasses import dataclass, fields
from typing import Any, Dict, Optional
from urllib.parse import urljoin

DEFAULT_HOST = "http://localhost:3000"


def _snake(name: str) -> str:
    return "".join("_" + c.lower() if c.isupper() else c for c in name)


@dataclass
class CollectorConfig:
    api_key: str = ""
    api_url: str = ""
    host: str = DEFAULT_HOST
    user_id: Optional[str] = None
    enabled: bool = True
    batch_size: int = 10
    batch_timeout: int = 1000

    def __post_init__(self):
        if not self.api_key:
            raise ValueError("api_key is required")
        for name in ("batch_size", "batch_timeout"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)!r}")

    def url(self, path: str) -> str:
        """Resolve an endpoint path against ``host``; absolute URLs pass through."""
        return urljoin(self.host.rstrip("/") + "/", path)

    @property
    def sessions_url(self) -> str:
        return self.url(self.api_url)

    @classmethod
    def from_options(cls, options: Dict[str, Any]) -> 'CollectorConfig':
        known = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in options.items():
            name = _snake(key)
            if name in known and value is not None:
                kwargs[name] = value
        return cls(**kwargs)


@dataclass
class HeatmapConfig(CollectorConfig):
    api_url: str = "/api/ingest"
    batch_size: int = 10
    batch_timeout: int = 1000
    rage_click_threshold: int = 3
    rage_click_time_window: int = 1000
    scroll_throttle: int = 500

    def __post_init__(self):
        super().__post_init__()
        if self.rage_click_threshold < 1:
            raise ValueError("rage_click_threshold must be at least 1")

    @property
    def ingest_url(self) -> str:
        return self.url(self.api_url)


@dataclass
class RecorderConfig(CollectorConfig):
    api_url: str = "/api/sessions"
    events_api_url: str = "/api/sessions/events"
    batch_size: int = 50
    batch_timeout: int = 2000
    mutation_debounce: int = 100
    max_mutations: int = 20
    max_html_length: int = 5000
    capture_network: bool = True

    @property
    def events_url(self) -> str:
        return self.url(self.events_api_url)
