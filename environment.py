"""
Device/environment classification and the one-time environment probe.
Usage: env = await probe_environment(page); env.classify()
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, NamedTuple, Optional
from urllib.parse import urlparse

from playwright.async_api import Page, Error as PWError

logger = logging.getLogger("capturepipe.environment")

MOBILE_MAX_WIDTH = 768
TABLET_MAX_WIDTH = 1024


class DeviceInfo(NamedTuple):
    device_type: str
    browser: str
    os: str


def device_type(viewport_width: Optional[int]) -> str:
    if viewport_width is None:
        return "unknown"
    if viewport_width < MOBILE_MAX_WIDTH:
        return "mobile"
    if viewport_width < TABLET_MAX_WIDTH:
        return "tablet"
    return "desktop"


def browser_family(user_agent: Optional[str]) -> str:
    """
    Map a user agent to a browser family.

    Order matters: Edge and Chrome user agents both mention "Safari", and
    Edge also mentions "Chrome", so the more specific tokens go first.
    """
    ua = user_agent or ""
    if "Edg" in ua:
        return "Edge"
    if "Firefox" in ua:
        return "Firefox"
    if "Chrome" in ua or "Chromium" in ua:
        return "Chrome"
    if "Safari" in ua:
        return "Safari"
    return "unknown"


def os_family(user_agent: Optional[str]) -> str:
    # Android agents contain "Linux" and iOS agents contain "Mac OS X"
    ua = user_agent or ""
    if "Windows" in ua:
        return "Windows"
    if "Android" in ua:
        return "Android"
    if "iPhone" in ua or "iPad" in ua or "iPod" in ua or "iOS" in ua:
        return "iOS"
    if "Mac" in ua:
        return "macOS"
    if "Linux" in ua:
        return "Linux"
    return "unknown"


def classify(user_agent: Optional[str], viewport_width: Optional[int]) -> DeviceInfo:
    return DeviceInfo(device_type(viewport_width), browser_family(user_agent), os_family(user_agent))


@dataclass
class Capabilities:
    """Optional browser features, resolved once when a page is attached."""
    mutation_observer: bool = True
    performance_observer: bool = True
    beacon: bool = True

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'Capabilities':
        data = data or {}
        return cls(
            mutation_observer=bool(data.get("mutationObserver", False)),
            performance_observer=bool(data.get("performanceObserver", False)),
            beacon=bool(data.get("beacon", False)),
        )


@dataclass
class PageEnvironment:
    """What a collector knows about the page it is attached to."""
    url: str = ""
    referrer: str = ""
    user_agent: str = ""
    language: str = ""
    cookie_enabled: bool = False
    screen_width: Optional[int] = None
    screen_height: Optional[int] = None
    viewport_width: Optional[int] = None
    viewport_height: Optional[int] = None
    ready_state: str = ""
    capabilities: Capabilities = field(default_factory=Capabilities)

    def classify(self) -> DeviceInfo:
        return classify(self.user_agent, self.viewport_width)

    @property
    def page_path(self) -> str:
        """Path plus query string of the current URL."""
        parsed = urlparse(self.url)
        return parsed.path + (f"?{parsed.query}" if parsed.query else "")

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'PageEnvironment':
        data = data or {}
        return cls(
            url=data.get("url") or "",
            referrer=data.get("referrer") or "",
            user_agent=data.get("userAgent") or "",
            language=data.get("language") or "",
            cookie_enabled=bool(data.get("cookieEnabled", False)),
            screen_width=data.get("screenWidth"),
            screen_height=data.get("screenHeight"),
            viewport_width=data.get("innerWidth"),
            viewport_height=data.get("innerHeight"),
            ready_state=data.get("readyState") or "",
            capabilities=Capabilities.from_dict(data.get("capabilities")),
        )


PROBE_SCRIPT = """
() => ({
    url: window.location.href,
    referrer: document.referrer,
    userAgent: navigator.userAgent,
    language: navigator.language,
    cookieEnabled: navigator.cookieEnabled,
    screenWidth: window.screen.width,
    screenHeight: window.screen.height,
    innerWidth: window.innerWidth,
    innerHeight: window.innerHeight,
    readyState: document.readyState,
    capabilities: {
        mutationObserver: typeof MutationObserver !== 'undefined',
        performanceObserver: typeof PerformanceObserver !== 'undefined',
        beacon: typeof navigator.sendBeacon === 'function'
    }
})
"""


async def probe_environment(page: Page) -> PageEnvironment:
    """
    Read environment strings and capability flags from a live page.
    Falls back to an empty environment if the page cannot be evaluated
    (e.g. it is mid-navigation).
    """
    try:
        data = await page.evaluate(PROBE_SCRIPT)
        env = PageEnvironment.from_dict(data)
        logger.debug(f"Probed environment: {env.classify()} at {env.url}")
        return env
    except PWError as e:
        logger.warning(f"Environment probe failed: {e}")
        return PageEnvironment(url=getattr(page, "url", "") or "")
