import asyncio
import datetime
import logging
import re
import uuid
from typing import Callable, Dict, List, Optional

import soupsieve
from lxml import etree

from config import Settings
from crawler.asset_pipeline import AssetPipeline
from crawler.crawler_core import Crawler
from crawler.downloader import Downloader
from crawler.fetcher import Fetcher
from crawler.thumbnails import ThumbnailGenerator
from errors import AssetNotFound, InvalidJob, JobAlreadyRunning, JobNotRunning
from models import Job, JobStatus, ScrapingRules, Selector, SelectorKind
from storage.job_store import JobStore
from utils import is_http_url
from .cron_scheduler import CronScheduler, is_valid_cron

logger = logging.getLogger(__name__)


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def validate_job(job: Job) -> None:
    if not job.base_url or not is_http_url(job.base_url):
        raise InvalidJob("base_url must be an http(s) URL")
    if not job.selectors:
        raise InvalidJob("at least one selector is required")

    for sel in job.selectors:
        if not sel.query.strip():
            raise InvalidJob("selector query must not be empty")
        try:
            if sel.kind == SelectorKind.CSS:
                soupsieve.compile(sel.query)
            else:
                etree.XPath(sel.query)
        except (soupsieve.SelectorSyntaxError, etree.XPathSyntaxError) as e:
            raise InvalidJob(f"invalid {sel.kind.value} selector {sel.query!r}: {e}") from None

    for name in ("include_pattern", "exclude_pattern"):
        pattern = getattr(job.rules, name)
        if pattern:
            try:
                re.compile(pattern)
            except re.error as e:
                raise InvalidJob(f"invalid {name} {pattern!r}: {e}") from None

    for name in ("max_depth", "max_assets", "timeout", "request_delay", "max_size"):
        if getattr(job.rules, name) < 0:
            raise InvalidJob(f"{name} must not be negative")

    if job.schedule and not is_valid_cron(job.schedule):
        raise InvalidJob(f"invalid cron expression {job.schedule!r}")


class JobManager:
    """Submit / start / stop / delete jobs; one asyncio task per active run."""

    def __init__(
        self,
        settings: Settings,
        store: Optional[JobStore] = None,
        fetcher_factory: Optional[Callable[[ScrapingRules], Fetcher]] = None,
        downloader_factory: Optional[Callable[[], Downloader]] = None,
    ):
        self.settings = settings
        self.store = store if store is not None else JobStore(settings.jobs_file)
        self.scheduler = CronScheduler(self.start_job)
        self.thumbnails = ThumbnailGenerator(settings.storage_path, settings.thumbnails_path, settings.icons_path)
        self._fetcher_factory = fetcher_factory or (lambda rules: Fetcher(settings, rules))
        self._downloader_factory = downloader_factory or (
            lambda: Downloader(settings.storage_path, settings.user_agents, timeout=settings.download_timeout)
        )

    async def startup(self) -> int:
        return await self.store.load(self.scheduler)

    async def shutdown(self) -> None:
        self.scheduler.stop()
        tasks = [job.task for job in self.store.list() if job.task is not None and not job.task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.wait(tasks)
        await self.store.save()

    # -------------------- COMMANDS --------------------

    async def submit(
        self,
        base_url: str,
        selectors: List[Selector],
        rules: Optional[ScrapingRules] = None,
        schedule: str = "",
    ) -> Job:
        rules = rules or ScrapingRules()
        if not rules.timeout:
            rules.timeout = self.settings.default_timeout
        if not rules.user_agent:
            rules.user_agent = self.settings.user_agents[0]

        job = Job(
            id=str(uuid.uuid4()),
            base_url=base_url,
            selectors=list(selectors),
            rules=rules,
            schedule=(schedule or "").strip(),
        )
        validate_job(job)

        self.store.add(job)
        if job.schedule:
            self.scheduler.schedule(job)
        await self.store.save()
        logger.info(f"created job {job.id} for {job.base_url}")
        return job

    async def start_job(self, job_id: str) -> Job:
        job = self.store.require(job_id)
        async with job.lock:
            if job.status == JobStatus.RUNNING:
                raise JobAlreadyRunning(f"job {job_id} is already running")
            job.status = JobStatus.RUNNING
            job.last_run = _utcnow()
            job.completed = set()
            job.pending_assets = 0
            job.task = asyncio.create_task(self._run(job), name=f"run:{job_id}")
        await self.store.save()
        return job

    async def stop_job(self, job_id: str) -> Job:
        job = self.store.require(job_id)
        async with job.lock:
            if job.status != JobStatus.RUNNING or job.task is None:
                raise JobNotRunning(f"job {job_id} is not running")
            job.task.cancel()
            job.status = JobStatus.STOPPED
        await self.store.save()
        logger.info(f"stop requested for job {job_id}")
        return job

    async def delete_job(self, job_id: str) -> None:
        job = self.store.require(job_id)
        self.scheduler.unschedule(job_id)
        task = job.task
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait([task])
        self.store.remove(job_id)
        await self.store.save()
        logger.info(f"deleted job {job_id}")

    async def wait(self, job_id: str) -> JobStatus:
        """Block until the job's current run (if any) has fully finished."""
        job = self.store.require(job_id)
        task = job.task
        if task is not None:
            await asyncio.wait([task])
        return job.status

    # -------------------- RUN --------------------

    async def _run(self, job: Job) -> None:
        fetcher = self._fetcher_factory(job.rules)
        downloader = self._downloader_factory()
        pipeline = AssetPipeline(self.store, downloader, self.thumbnails, self.settings.max_concurrent_downloads)
        crawler = Crawler(fetcher, pipeline)

        logger.info(f"started job {job.id}: {job.base_url}")
        status = JobStatus.FAILED
        try:
            crawled = False
            try:
                await fetcher.probe(job.base_url)
                await fetcher.open()
                async with job.lock:
                    job.completed.add(job.base_url)
                await crawler.crawl(job, job.base_url, 0)
                crawled = True
            except Exception as e:
                logger.error(f"job {job.id} failed: {e}")
            # a stop during this join still ends the run as "stopped"
            await pipeline.join()
            status = JobStatus.COMPLETED if crawled else JobStatus.FAILED
        except asyncio.CancelledError:
            status = JobStatus.STOPPED
            pipeline.cancel()
            await pipeline.join()
            raise
        finally:
            # set before the first await so a second cancel cannot skip it
            job.status = status
            job.task = None
            await asyncio.shield(self._finish_run(job, fetcher, downloader, status))

    async def _finish_run(self, job: Job, fetcher, downloader, status: JobStatus) -> None:
        try:
            await fetcher.close()
            await downloader.close()
        finally:
            await self.store.save()
            logger.info(f"job {job.id} {status.value} with {len(job.assets)} assets")

    # -------------------- READ FEED --------------------

    def list_jobs(self) -> List[Dict]:
        return [job.to_dict() for job in self.store.list()]

    def get_job(self, job_id: str) -> Dict:
        return self.store.require(job_id).to_dict()

    def list_assets(self, job_id: str) -> List[Dict]:
        return [a.to_dict() for a in self.store.require(job_id).assets]

    def get_asset(self, asset_id: str) -> Dict:
        asset = self.store.find_asset(asset_id)
        if asset is None:
            raise AssetNotFound(asset_id)
        return asset.to_dict()
