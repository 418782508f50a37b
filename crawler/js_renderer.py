import logging
from typing import Optional

from playwright.async_api import async_playwright, Error as PlaywrightError

from errors import BrowserUnavailable

logger = logging.getLogger(__name__)

BASE_ARGS = [
    "--no-first-run",
    "--no-default-browser-check",
    "--disable-gpu",
    "--disable-dev-shm-usage",
    "--disable-extensions",
    "--disable-default-apps",
    "--no-sandbox",
]
HEADLESS_ARGS = ["--disable-blink-features=AutomationControlled"]
VISIBLE_ARGS = ["--window-position=0,0", "--window-size=1,1"]

NOT_READY_WAIT_MS = 3000


class JSRenderer:
    """Headless Chromium via Playwright, one browser context per crawl run.

    ``start()`` walks the launch chain: headless, then a minimal visible
    window. If both fail the renderer stays unavailable for the rest of the
    run and ``render()`` raises ``BrowserUnavailable``.
    """

    def __init__(self, user_agent: str = ""):
        self.user_agent = user_agent
        self.mode: Optional[str] = None
        self._pw = None
        self._browser = None
        self._context = None

    @property
    def available(self) -> bool:
        return self._context is not None

    async def _launch(self, headless: bool):
        args = BASE_ARGS + (HEADLESS_ARGS if headless else VISIBLE_ARGS)
        browser = await self._pw.chromium.launch(headless=headless, args=args)
        try:
            context = await browser.new_context(
                user_agent=self.user_agent or None,
                ignore_https_errors=True,
                viewport={"width": 1920, "height": 1080},
            )
            # make sure the browser actually answers before committing to it
            page = await context.new_page()
            try:
                ua = await page.evaluate("navigator.userAgent")
            finally:
                await page.close()
        except BaseException:
            await browser.close()
            raise
        logger.info(f"browser ready ({'headless' if headless else 'visible'}), user agent: {ua}")
        return browser, context

    async def start(self) -> bool:
        try:
            self._pw = await async_playwright().start()
        except (PlaywrightError, OSError) as e:
            logger.warning(f"playwright unavailable, using plain HTTP for this run: {e}")
            self._pw = None
            return False

        for headless in (True, False):
            try:
                self._browser, self._context = await self._launch(headless)
                self.mode = "headless" if headless else "visible"
                return True
            except (PlaywrightError, OSError) as e:
                logger.warning(f"browser launch failed (headless={headless}): {e}")

        logger.warning("both headless and visible browser modes failed, falling back to plain HTTP")
        await self.stop()
        return False

    async def stop(self):
        if self._context is not None:
            try:
                await self._context.close()
            except PlaywrightError as e:
                logger.debug(f"closing browser context: {e}")
            self._context = None
        if self._browser is not None:
            try:
                await self._browser.close()
            except PlaywrightError as e:
                logger.debug(f"closing browser: {e}")
            self._browser = None
        if self._pw is not None:
            await self._pw.stop()
            self._pw = None
        self.mode = None

    async def render(self, url: str) -> str:
        """Navigate and return the rendered document. The caller applies the deadline."""
        if self._context is None:
            raise BrowserUnavailable("no browser for this run")

        page = await self._context.new_page()
        try:
            await page.goto(url, wait_until="domcontentloaded", timeout=0)
            state = await page.evaluate("document.readyState")
            if state != "complete":
                logger.debug(f"page not fully loaded ({state}), waiting once more: {url}")
                await page.wait_for_timeout(NOT_READY_WAIT_MS)
            return await page.content()
        finally:
            try:
                await page.close()
            except PlaywrightError as e:
                logger.debug(f"closing page {url}: {e}")
