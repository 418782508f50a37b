import asyncio
import json
import logging
import os
from typing import Dict, List, Optional

import aiofiles

from errors import JobNotFound
from models import Asset, Job, JobStatus

logger = logging.getLogger(__name__)


class JobStore:
    """Owns the in-memory job table and its JSON file.

    The file is a single object mapping job id to the serialized job. Run-only
    state (lock, dedup set, run task) is never written and is rebuilt empty
    on load.
    """

    def __init__(self, path: str = "jobs.json"):
        self.path = path
        self._jobs: Dict[str, Job] = {}
        self._save_lock = asyncio.Lock()

    def __len__(self):
        return len(self._jobs)

    def __contains__(self, job_id: str):
        return job_id in self._jobs

    def add(self, job: Job) -> None:
        self._jobs[job.id] = job

    def get(self, job_id: str) -> Optional[Job]:
        return self._jobs.get(job_id)

    def require(self, job_id: str) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFound(job_id)
        return job

    def remove(self, job_id: str) -> Job:
        job = self._jobs.pop(job_id, None)
        if job is None:
            raise JobNotFound(job_id)
        return job

    def list(self) -> List[Job]:
        return list(self._jobs.values())

    def find_asset(self, asset_id: str) -> Optional[Asset]:
        for job in self._jobs.values():
            for asset in job.assets:
                if asset.id == asset_id:
                    return asset
        return None

    def snapshot(self) -> Dict[str, dict]:
        return {job_id: job.to_dict() for job_id, job in self._jobs.items()}

    async def save(self) -> bool:
        """Write the table to a temp file and rename it over the real one."""
        async with self._save_lock:
            data = json.dumps(self.snapshot(), ensure_ascii=False, indent=2)
            tmp_path = self.path + ".tmp"
            try:
                parent = os.path.dirname(os.path.abspath(self.path))
                os.makedirs(parent, exist_ok=True)
                async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
                    await f.write(data)
                os.replace(tmp_path, self.path)
            except OSError as e:
                logger.error(f"error saving jobs to {self.path}: {e}")
                return False
        return True

    async def load(self, scheduler=None) -> int:
        """Read the job table back. Jobs left "running" by a dead process become "stopped".

        Every loaded job with a schedule is handed to ``scheduler``.
        """
        if not os.path.exists(self.path):
            return 0

        try:
            async with aiofiles.open(self.path, "r", encoding="utf-8") as f:
                raw = json.loads(await f.read() or "{}")
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"error loading jobs from {self.path}: {e}")
            return 0

        loaded = 0
        for job_id, data in raw.items():
            try:
                job = Job.from_dict(data)
            except (KeyError, TypeError, ValueError) as e:
                logger.error(f"skipping unreadable job {job_id}: {e}")
                continue

            if job.status == JobStatus.RUNNING:
                logger.warning(f"job {job_id} was running when the process stopped; marking it stopped")
                job.status = JobStatus.STOPPED

            self._jobs[job.id] = job
            loaded += 1

            if job.schedule and scheduler is not None:
                scheduler.schedule(job)

        logger.info(f"loaded {loaded} jobs from {self.path}")
        return loaded
