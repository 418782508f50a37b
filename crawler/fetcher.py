import asyncio
import logging
from typing import Optional

from config import Settings
from errors import FetchError, FetchTimeout
from models import ScrapingRules
from .http_fetcher import HttpFetcher
from .js_renderer import JSRenderer

logger = logging.getLogger(__name__)


class Fetcher:
    """Rendered fetch first, plain fetch second.

    Each strategy runs under its own ``asyncio.wait_for`` bound, so a slow
    page only costs that page: the deadline surfaces as ``TimeoutError``
    inside this call and never cancels the crawl task. A stop request
    cancels the crawl task and propagates straight through.
    """

    def __init__(
        self,
        settings: Settings,
        rules: ScrapingRules,
        renderer: Optional[JSRenderer] = None,
        http: Optional[HttpFetcher] = None,
    ):
        ua = rules.user_agent or settings.user_agents[0]
        self.renderer = renderer if renderer is not None else JSRenderer(ua)
        self.http = http if http is not None else HttpFetcher(ua, max_bytes=settings.max_page_bytes)

        self.render_timeout = rules.timeout or settings.render_timeout
        self.http_timeout = rules.timeout or settings.http_timeout
        self.probe_timeout = settings.probe_timeout

    async def open(self):
        await self.http.open()
        await self.renderer.start()

    async def close(self):
        await self.renderer.stop()
        await self.http.close()

    async def probe(self, url: str) -> bool:
        """Advisory only: warns about unreachable or bot-protected sites, never raises."""
        try:
            status = await asyncio.wait_for(self.http.probe(url, self.probe_timeout), self.probe_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"site accessibility check timed out after {self.probe_timeout}s: {url}")
            return False
        except FetchError as e:
            logger.warning(f"site accessibility check failed: {e}")
            return False
        logger.info(f"site {url} is accessible via HTTP with status {status}")
        return True

    async def fetch(self, url: str) -> str:
        if self.renderer.available:
            try:
                return await asyncio.wait_for(self.renderer.render(url), self.render_timeout)
            except asyncio.TimeoutError:
                logger.warning(f"navigation timeout after {self.render_timeout}s for {url}, falling back to HTTP client")
            except Exception as e:
                logger.warning(f"browser fetch failed for {url}: {e}, falling back to HTTP client")

        try:
            return await asyncio.wait_for(self.http.fetch(url), self.http_timeout)
        except asyncio.TimeoutError as e:
            raise FetchTimeout(url, f"plain fetch timed out after {self.http_timeout}s") from e
