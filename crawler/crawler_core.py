import asyncio
import logging
import random
from typing import Callable

from errors import FetchError
from models import Job, ScrapingRules, SelectorPurpose
from .asset_pipeline import AssetPipeline
from .fetcher import Fetcher
from .link_extractor import PageDocument

logger = logging.getLogger(__name__)

MIN_CONTENT_CHARS = 100


def request_delay(rules: ScrapingRules, rng: Callable[[], float] = random.random) -> float:
    """Seconds to wait before a request; randomized delays fall in [0.5, 1.5] x base."""
    if rules.request_delay <= 0:
        return 0.0
    if rules.randomize_delay:
        return rules.request_delay * (0.5 + rng())
    return rules.request_delay


class Crawler:
    def __init__(self, fetcher: Fetcher, pipeline: AssetPipeline, rng: Callable[[], float] = random.random):
        self.fetcher = fetcher
        self.pipeline = pipeline
        self._rng = rng

    async def crawl(self, job: Job, url: str, depth: int = 0) -> None:
        """Depth-first traversal under ``url``.

        Hitting MaxDepth or MaxAssets is a normal stop, not an error. A fetch
        or parse failure is fatal only at depth 0; deeper failures are logged
        and the siblings carry on. Cancellation always propagates.
        """
        async with job.lock:
            if job.rules.max_depth > 0 and depth > job.rules.max_depth:
                return
            if job.asset_cap_reached():
                return

        delay = request_delay(job.rules, self._rng)
        if delay > 0:
            await asyncio.sleep(delay)

        logger.info(f"scraping {url} (depth {depth})")

        try:
            html = await self.fetcher.fetch(url)
        except FetchError as e:
            if depth == 0:
                raise
            logger.warning(f"skipping {url} due to error: {e}")
            return

        if len(html) < MIN_CONTENT_CHARS:
            logger.warning(f"content from {url} seems too short ({len(html)} chars)")
        else:
            logger.debug(f"fetched {url} ({len(html)} chars)")

        try:
            page = PageDocument(url, html)
        except Exception as e:
            if depth == 0:
                raise
            logger.warning(f"error parsing HTML from {url}: {e}")
            return

        links = page.extract_links(
            job.selectors_for(SelectorPurpose.LINKS),
            job.rules.include_pattern,
            job.rules.exclude_pattern,
        )

        await self._dispatch_assets(job, page)

        for link in links:
            # links past MaxDepth stay out of the dedup set
            if job.rules.max_depth > 0 and depth + 1 > job.rules.max_depth:
                break
            async with job.lock:
                if link in job.completed:
                    continue
                job.completed.add(link)

            try:
                await self.crawl(job, link, depth + 1)
            except Exception as e:
                logger.warning(f"error scraping link {link}: {e}")

    async def _dispatch_assets(self, job: Job, page: PageDocument):
        for sel in job.selectors_for(SelectorPurpose.ASSETS):
            for el in page.select(sel):
                if job.asset_cap_reached():
                    logger.info(f"asset limit of {job.rules.max_assets} reached for job {job.id}")
                    return
                await self.pipeline.submit(job, page.url, el, sel)
