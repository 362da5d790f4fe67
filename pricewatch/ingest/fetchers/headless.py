"""Headless browser renderer for JavaScript-rendered and bot-protected pages."""

import asyncio
import logging
import random
from typing import Optional

from playwright.async_api import Browser, Page, Playwright, async_playwright, TimeoutError as PlaywrightTimeoutError

from pricewatch.config import settings
from pricewatch.ingest.base import BaseRenderer, RenderError
from pricewatch.ingest.fetchers.static import USER_AGENT

logger = logging.getLogger(__name__)

# Stealth browser launch args
STEALTH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-blink-features=AutomationControlled",
    "--disable-infobars",
    "--disable-crash-reporter",
    "--window-size=1920,1080",
    "--start-maximized",
]

VIEWPORT = {"width": 1920, "height": 1080}

STEALTH_SCRIPTS = [
    # Hide webdriver property
    """
    Object.defineProperty(navigator, 'webdriver', {
        get: () => false
    });
    """,
    # Mock languages
    """
    Object.defineProperty(navigator, 'languages', {
        get: () => ['en-US', 'en']
    });
    """,
    # Chrome runtime
    """
    window.chrome = {
        runtime: {}
    };
    """,
]

CHALLENGE_TITLES = ("just a moment", "checking your browser")


class HeadlessRenderer(BaseRenderer):
    """
    Render pages in headless Chromium.

    The browser is started lazily and shared between renders; each render gets
    a fresh context and page. Anti-bot interstitials are waited out by polling
    the page title.
    """

    def __init__(
        self,
        challenge_wait_seconds: Optional[float] = None,
        challenge_poll_seconds: Optional[float] = None,
    ):
        self.challenge_wait_seconds = (
            challenge_wait_seconds if challenge_wait_seconds is not None else settings.challenge_wait_seconds
        )
        self.challenge_poll_seconds = (
            challenge_poll_seconds if challenge_poll_seconds is not None else settings.challenge_poll_seconds
        )
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._init_lock = asyncio.Lock()

    async def _ensure_browser(self) -> Browser:
        async with self._init_lock:
            if self._playwright is None:
                self._playwright = await async_playwright().start()
            if self._browser is None:
                self._browser = await self._playwright.chromium.launch(
                    headless=True,
                    args=STEALTH_ARGS,
                    ignore_default_args=["--enable-automation"],
                )
            return self._browser

    async def close(self) -> None:
        """Close browser and cleanup."""
        if self._browser:
            await self._browser.close()
            self._browser = None
        if self._playwright:
            await self._playwright.stop()
            self._playwright = None

    async def render(self, url: str, timeout: float) -> str:
        try:
            return await asyncio.wait_for(self._render(url, timeout), timeout=timeout + self.challenge_wait_seconds + 10)
        except asyncio.TimeoutError:
            raise RenderError(url, "render timeout")

    async def _render(self, url: str, timeout: float) -> str:
        browser = await self._ensure_browser()
        context = await browser.new_context(
            user_agent=USER_AGENT,
            viewport=VIEWPORT,
            locale="en-US",
        )
        page: Optional[Page] = None
        try:
            for script in STEALTH_SCRIPTS:
                await context.add_init_script(script)
            page = await context.new_page()

            logger.debug(f"Navigating to {url}")
            try:
                await page.goto(url, wait_until="networkidle", timeout=timeout * 1000)
            except PlaywrightTimeoutError:
                # Keep whatever has rendered so far
                logger.debug(f"Network never went idle for {url}, continuing")
            except Exception as e:
                raise RenderError(url, str(e))

            await page.mouse.move(100, 200)
            await asyncio.sleep(0.5)
            await page.mouse.move(300, 400)

            await self._wait_for_challenge(page, url)

            await page.evaluate("window.scrollBy(0, 300)")
            await asyncio.sleep(1)

            return await page.content()
        except RenderError:
            raise
        except Exception as e:
            logger.error(f"Headless render failed for {url}: {type(e).__name__}: {e}")
            raise RenderError(url, f"{type(e).__name__}: {e}")
        finally:
            if page:
                await page.close()
            await context.close()

    async def _wait_for_challenge(self, page: Page, url: str) -> None:
        """Poll the title until the interstitial clears or the wait budget runs out."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.challenge_wait_seconds
        while loop.time() < deadline:
            title = (await page.title()).lower()
            if not any(marker in title for marker in CHALLENGE_TITLES):
                return
            logger.info(f"Waiting for bot challenge to clear on {url} ({title})")
            await page.mouse.move(100 + random.random() * 500, 100 + random.random() * 400)
            await asyncio.sleep(self.challenge_poll_seconds)
        logger.warning(f"Bot challenge still present on {url} after {self.challenge_wait_seconds}s")
