"""
Attaches to an already-running Chromium-family browser over CDP.
"""
import logging
from typing import List, Optional

import requests
from playwright.async_api import Browser, BrowserContext, CDPSession, Page, Playwright, async_playwright

logger = logging.getLogger("capturepipe.connection")


class CDPConnection:
    """Owns the Playwright instance and the browser handle for one CDP port."""

    VERSION_CHECK_TIMEOUT = 5

    def __init__(self, cdp_port: int, host: str = "localhost"):
        self.cdp_port = cdp_port
        self.host = host
        self.playwright: Optional[Playwright] = None
        self.browser: Optional[Browser] = None
        self.browser_version: Optional[str] = None

    @property
    def endpoint(self) -> str:
        return f"http://{self.host}:{self.cdp_port}"

    @property
    def context(self) -> Optional[BrowserContext]:
        if self.browser and self.browser.contexts:
            return self.browser.contexts[0]
        return None

    def check_endpoint(self) -> bool:
        """Confirm the debugging endpoint answers before handing it to Playwright."""
        try:
            response = requests.get(f"{self.endpoint}/json/version", timeout=self.VERSION_CHECK_TIMEOUT)
        except requests.ConnectionError:
            logger.error(f"No browser is listening on {self.endpoint}.")
            logger.error("Start one with --remote-debugging-port=<port> and try again.")
            return False
        except requests.RequestException as e:
            logger.error(f"Version check against {self.endpoint} failed: {e}")
            return False

        if response.status_code != 200:
            logger.error(f"{self.endpoint} answered HTTP {response.status_code}; is it a CDP endpoint?")
            return False
        self.browser_version = response.json().get('Browser', 'unknown')
        logger.info(f"Found browser: {self.browser_version}")
        return True

    async def connect(self) -> bool:
        """Returns True once Playwright holds a browser with at least one page."""
        if not self.check_endpoint():
            return False
        try:
            self.playwright = await async_playwright().start()
            self.browser = await self.playwright.chromium.connect_over_cdp(self.endpoint)
            if self.context is None:
                logger.error("Browser exposes no context to attach to.")
                await self.disconnect()
                return False
            if not self.context.pages:
                await self.context.new_page()
            return True
        except Exception as e:
            logger.error(f"Playwright could not attach over CDP: {e}")
            await self.disconnect()
            return False

    def pages(self) -> List[Page]:
        return list(self.context.pages) if self.context else []

    async def new_cdp_session(self, page: Page) -> CDPSession:
        return await page.context.new_cdp_session(page)

    async def disconnect(self):
        if self.playwright:
            await self.playwright.stop()
            self.playwright = None
            self.browser = None
            logger.info("Playwright connection stopped.")
