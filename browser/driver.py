#!/usr/bin/env python3
"""
Playwright Browser Driver

Local Chromium session with an optional egress proxy. This is the only module
that talks to Playwright; the scrape engine works against the methods below.

Example:
    driver = await BrowserDriver.launch(config, proxy)
    await driver.goto("https://www.google.com/maps")
    links = await driver.find_many("xpath=//a[contains(@href, '/maps/place/')]")
    await driver.close()
"""

import logging
import random
from typing import Any, List, Optional

from playwright.async_api import (
    Browser,
    BrowserContext,
    ElementHandle,
    Error as PlaywrightError,
    Page,
    Playwright,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from core.config import USER_AGENTS
from core.models import ProxyEndpoint, SessionConfig

logger = logging.getLogger(__name__)

VIEWPORTS = [
    {"width": 1920, "height": 1080},
    {"width": 1536, "height": 864},
    {"width": 1440, "height": 900},
    {"width": 1366, "height": 768},
]

LAUNCH_ARGS = [
    "--disable-dev-shm-usage",
    "--no-sandbox",
    "--disable-gpu",
    "--disable-extensions",
    "--disable-blink-features=AutomationControlled",
    "--lang=en-US",
]


class BrowserDriver:
    """Async wrapper around one Playwright browser, context and page."""

    def __init__(
        self,
        playwright: Playwright,
        browser: Browser,
        context: BrowserContext,
        page: Page,
        proxy: Optional[ProxyEndpoint] = None
    ):
        self.playwright = playwright
        self.browser = browser
        self.context = context
        self.page = page
        self.proxy = proxy
        self._closed = False

    @classmethod
    async def launch(
        cls,
        config: SessionConfig,
        proxy: Optional[ProxyEndpoint] = None,
        user_agent: Optional[str] = None
    ) -> "BrowserDriver":
        """
        Start Chromium with the session's proxy, user agent and timeouts.

        Args:
            config: Session configuration (timeouts, headless flag)
            proxy: Egress proxy for this browser, if any
            user_agent: Override the randomly chosen user agent
        """
        playwright = await async_playwright().start()
        try:
            launch_options = {"headless": config.headless, "args": list(LAUNCH_ARGS)}
            if proxy:
                launch_options["proxy"] = proxy.to_playwright_format()
                logger.info(f"[Browser] Using proxy: {proxy.address}")

            browser = await playwright.chromium.launch(**launch_options)
            context = await browser.new_context(
                viewport=random.choice(VIEWPORTS),
                user_agent=user_agent or random.choice(USER_AGENTS),
                locale="en-US",
            )
            context.set_default_navigation_timeout(config.navigation_timeout_ms)
            context.set_default_timeout(config.navigation_timeout_ms)
            page = await context.new_page()
        except Exception:
            await playwright.stop()
            raise

        logger.info("[Browser] Chromium session started")
        return cls(playwright, browser, context, page, proxy)

    @property
    def url(self) -> str:
        return self.page.url

    @property
    def closed(self) -> bool:
        return self._closed

    async def goto(self, url: str):
        await self.page.goto(url, wait_until="domcontentloaded")

    async def go_back(self):
        await self.page.go_back(wait_until="domcontentloaded")

    async def find_one(self, selector: str, root: Optional[ElementHandle] = None, timeout_ms: int = 0) -> Optional[ElementHandle]:
        """
        Return the first match or None.

        With timeout_ms > 0 the page is polled until the element attaches.
        """
        if root is not None:
            return await root.query_selector(selector)
        if timeout_ms > 0:
            try:
                return await self.page.wait_for_selector(selector, timeout=timeout_ms, state="attached")
            except PlaywrightTimeoutError:
                return None
        return await self.page.query_selector(selector)

    async def find_many(self, selector: str, root: Optional[ElementHandle] = None) -> List[ElementHandle]:
        scope = root if root is not None else self.page
        return await scope.query_selector_all(selector)

    async def get_attribute(self, element: ElementHandle, name: str) -> Optional[str]:
        return await element.get_attribute(name)

    async def get_text(self, element: ElementHandle) -> str:
        return (await element.inner_text()) or ""

    async def click(self, element: ElementHandle):
        """Click directly after scrolling into view; fall back to a script click."""
        try:
            await element.scroll_into_view_if_needed()
            await element.click()
        except PlaywrightError as e:
            logger.debug(f"[Browser] Direct click failed, using script click: {e}")
            await element.evaluate("el => el.click()")

    async def fill(self, element: ElementHandle, text: str):
        await element.fill(text)

    async def press(self, element: ElementHandle, key: str):
        await element.press(key)

    async def execute_script(self, script: str, arg: Any = None) -> Any:
        if arg is None:
            return await self.page.evaluate(script)
        return await self.page.evaluate(script, arg)

    async def fetch_bytes(self, url: str) -> bytes:
        """Download a resource through the browser context, so the proxy and cookies apply."""
        response = await self.context.request.get(url)
        if not response.ok:
            raise PlaywrightError(f"GET {url} returned {response.status}")
        return await response.body()

    async def close(self):
        """Tear down page, browser and Playwright. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        try:
            await self.context.close()
            await self.browser.close()
        except PlaywrightError as e:
            logger.debug(f"[Browser] Error closing browser: {e}")
        finally:
            await self.playwright.stop()
        logger.info("[Browser] Chromium session closed")


async def launch_driver(config: SessionConfig, proxy: Optional[ProxyEndpoint] = None) -> BrowserDriver:
    """Default driver factory used by the scrape session."""
    return await BrowserDriver.launch(config, proxy)
