import asyncio
import datetime
import logging
from typing import Awaitable, Callable, Dict, List, Optional

from croniter import croniter

from errors import HarvesterError, JobAlreadyRunning
from models import Job, JobStatus

logger = logging.getLogger(__name__)


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def is_valid_cron(expr: str) -> bool:
    """Standard five fields: minute hour day-of-month month day-of-week."""
    return len((expr or "").split()) == 5 and croniter.is_valid(expr)


def next_fire(expr: str, after: datetime.datetime) -> datetime.datetime:
    return croniter(expr, after).get_next(datetime.datetime)


class CronScheduler:
    """One sleeping asyncio task per scheduled job.

    A firing never overlaps a run of the same job: if the job is "running"
    the firing is dropped, not queued. Removing a schedule only stops future
    firings.
    """

    def __init__(self, trigger: Callable[[str], Awaitable[object]], clock: Callable[[], datetime.datetime] = utcnow):
        self._trigger = trigger
        self._clock = clock
        self._entries: Dict[str, "asyncio.Task[None]"] = {}

    @property
    def scheduled(self) -> List[str]:
        return list(self._entries)

    def is_scheduled(self, job_id: str) -> bool:
        return job_id in self._entries

    def schedule(self, job: Job) -> bool:
        if not job.schedule:
            return False
        if not is_valid_cron(job.schedule):
            logger.error(f"error scheduling job {job.id}: invalid cron expression {job.schedule!r}")
            return False

        self.unschedule(job.id)
        job.next_run = next_fire(job.schedule, self._clock())
        self._entries[job.id] = asyncio.create_task(self._loop(job), name=f"cron:{job.id}")
        logger.info(f"job {job.id} scheduled with cron {job.schedule!r}, next run: {job.next_run.isoformat()}")
        return True

    def unschedule(self, job_id: str) -> bool:
        task = self._entries.pop(job_id, None)
        if task is None:
            return False
        task.cancel()
        logger.info(f"job {job_id} removed from scheduler")
        return True

    def stop(self) -> None:
        for job_id in list(self._entries):
            self.unschedule(job_id)

    async def fire(self, job: Job) -> bool:
        async with job.lock:
            running = job.status == JobStatus.RUNNING
        if running:
            logger.info(f"skipping scheduled run of job {job.id}: previous run still active")
            return False

        logger.info(f"running scheduled job {job.id}")
        try:
            await self._trigger(job.id)
        except JobAlreadyRunning:
            logger.info(f"skipping scheduled run of job {job.id}: previous run still active")
            return False
        except HarvesterError as e:
            logger.error(f"failed to run scheduled job {job.id}: {e}")
            return False
        return True

    async def _loop(self, job: Job) -> None:
        base: Optional[datetime.datetime] = None
        while True:
            now = self._clock()
            nxt = next_fire(job.schedule, max(base, now) if base else now)
            job.next_run = nxt
            delay = (nxt - now).total_seconds()
            if delay > 0:
                await asyncio.sleep(delay)
            try:
                await self.fire(job)
            except Exception:
                logger.exception(f"scheduled firing of job {job.id} failed")
            base = nxt
