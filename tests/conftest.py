import asyncio
import os

import pytest

from config import Settings
from errors import DownloadError, FetchError
from models import Job, ScrapingRules, Selector, SelectorKind, SelectorPurpose

SITE = "http://site.test"


def css(query, purpose):
    return Selector(SelectorKind.CSS, query, SelectorPurpose(purpose))


def make_job(job_id="job-1", base_url=SITE + "/", selectors=None, **rules):
    return Job(
        id=job_id,
        base_url=base_url,
        selectors=selectors if selectors is not None else [css("a.next", "links"), css("img", "assets")],
        rules=ScrapingRules(**rules),
    )


def page(links=(), images=(), extra=""):
    body = "".join(f'<a class="next" href="{h}">link</a>' for h in links)
    body += "".join(f'<img src="{s}">' for s in images)
    # pad so the page never counts as suspiciously short
    return f"<html><head><title>t</title></head><body>{body}{extra}<p>{'x' * 120}</p></body></html>"


class FakeFetcher:
    """Serves canned pages; unknown URLs fail, ``blocked`` URLs hang until cancelled."""

    def __init__(self, pages, blocked=()):
        self.pages = pages
        self.blocked = set(blocked)
        self.calls = []
        self.opened = False
        self.closed = False

    async def probe(self, url):
        return True

    async def open(self):
        self.opened = True

    async def close(self):
        self.closed = True

    async def fetch(self, url):
        self.calls.append(url)
        if url in self.blocked:
            await asyncio.sleep(3600)
        if url not in self.pages:
            raise FetchError(url, "server returned status code 404")
        return self.pages[url]


class FakeDownloader:
    def __init__(self, storage_path, fail=(), hang=()):
        self.storage_path = storage_path
        self.fail = set(fail)
        self.hang = set(hang)
        self.calls = []
        self.closed = False

    async def download(self, job, asset):
        self.calls.append(asset.url)
        if asset.url in self.hang:
            await asyncio.sleep(3600)
        if asset.url in self.fail:
            raise DownloadError("failed after 3 attempts: server returned status: 500")
        asset.local_path = os.path.join(job.id, asset.id + ".bin")
        asset.size = 1

    async def close(self):
        self.closed = True


class FakeThumbnails:
    async def generate(self, asset):
        return os.path.join(asset.job_id, asset.id + ".jpg")


class FakeStore:
    def __init__(self):
        self.saves = 0

    async def save(self):
        self.saves += 1
        return True


@pytest.fixture
def settings(tmp_path):
    return Settings(
        storage_path=str(tmp_path / "storage"),
        thumbnails_path=str(tmp_path / "thumbnails"),
        icons_path=str(tmp_path / "icons"),
        jobs_file=str(tmp_path / "jobs.json"),
        max_concurrent_downloads=2,
    )
