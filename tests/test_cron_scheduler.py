import datetime

import pytest

from conftest import make_job
from errors import JobAlreadyRunning
from models import JobStatus
from workers.cron_scheduler import CronScheduler, is_valid_cron, next_fire

UTC = datetime.timezone.utc


@pytest.mark.parametrize("expr,ok", [
    ("*/5 * * * *", True),
    ("0 3 * * 1-5", True),
    ("* * *", False),
    ("0 0 * * * *", False),
    ("not a cron", False),
    ("", False),
])
def test_is_valid_cron(expr, ok):
    assert is_valid_cron(expr) is ok


def test_next_fire():
    after = datetime.datetime(2024, 1, 1, 0, 0, 30, tzinfo=UTC)
    assert next_fire("0 * * * *", after) == datetime.datetime(2024, 1, 1, 1, 0, tzinfo=UTC)


class Trigger:
    def __init__(self, exc=None):
        self.calls = []
        self.exc = exc

    async def __call__(self, job_id):
        self.calls.append(job_id)
        if self.exc:
            raise self.exc


async def test_fire_runs_idle_job():
    trigger = Trigger()
    job = make_job()
    assert await CronScheduler(trigger).fire(job)
    assert trigger.calls == [job.id]


async def test_fire_skips_running_job():
    trigger = Trigger()
    job = make_job()
    job.status = JobStatus.RUNNING
    assert not await CronScheduler(trigger).fire(job)
    assert trigger.calls == []


async def test_fire_treats_race_with_manual_start_as_skip():
    trigger = Trigger(exc=JobAlreadyRunning("busy"))
    assert not await CronScheduler(trigger).fire(make_job())


async def test_schedule_sets_next_run_and_unschedule_removes():
    clock = lambda: datetime.datetime(2024, 1, 1, 0, 0, 30, tzinfo=UTC)
    scheduler = CronScheduler(Trigger(), clock=clock)
    job = make_job()
    job.schedule = "0 * * * *"

    assert scheduler.schedule(job)
    assert scheduler.is_scheduled(job.id)
    assert job.next_run == datetime.datetime(2024, 1, 1, 1, 0, tzinfo=UTC)

    assert scheduler.unschedule(job.id)
    assert not scheduler.is_scheduled(job.id)
    assert not scheduler.unschedule(job.id)


async def test_invalid_schedule_is_not_registered():
    scheduler = CronScheduler(Trigger())
    job = make_job()
    job.schedule = "every minute"
    assert not scheduler.schedule(job)
    assert scheduler.scheduled == []
