import os

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from crawler.downloader import Downloader, ext_for_type, type_from_content_type
from errors import DownloadError
from models import Asset, AssetType, Job, ScrapingRules

PAYLOAD = b"\x89PNG" + b"0" * 2048


@pytest.fixture
async def server():
    hits = {}
    referers = []

    def count(request):
        hits[request.path] = hits.get(request.path, 0) + 1
        referers.append(request.headers.get("Referer"))
        return hits[request.path]

    async def flaky(request):
        if count(request) < 3:
            return web.Response(status=500)
        return web.Response(body=PAYLOAD, content_type="image/png")

    async def broken(request):
        count(request)
        return web.Response(status=502)

    async def blob(request):
        count(request)
        return web.Response(body=b"\x00" * 64, content_type="video/mp4")

    app = web.Application()
    app.router.add_get("/img/flaky.png", flaky)
    app.router.add_get("/img/broken.png", broken)
    app.router.add_get("/blob/1", blob)

    srv = TestServer(app)
    await srv.start_server()
    srv.hits = hits
    srv.referers = referers
    yield srv
    await srv.close()


@pytest.fixture
async def downloader(tmp_path):
    d = Downloader(str(tmp_path), ["agent-a", "agent-b"], timeout=30, backoff_s=0)
    yield d
    await d.close()


def make_job(server, **rules):
    return Job(id="job-1", base_url=str(server.make_url("/")), rules=ScrapingRules(**rules))


async def test_succeeds_on_third_attempt(server, downloader, tmp_path):
    job = make_job(server)
    asset = Asset(id="a1", url=str(server.make_url("/img/flaky.png")), type=AssetType.IMAGE)

    await downloader.download(job, asset)

    assert server.hits["/img/flaky.png"] == 3
    assert asset.local_path == os.path.join("job-1", "a1.png")
    assert asset.size == len(PAYLOAD)
    assert (tmp_path / "job-1" / "a1.png").read_bytes() == PAYLOAD
    assert asset.metadata["content_type"].startswith("image/png")
    assert set(server.referers) == {job.base_url}


async def test_fails_after_three_attempts(server, downloader, tmp_path):
    job = make_job(server)
    asset = Asset(id="a2", url=str(server.make_url("/img/broken.png")), type=AssetType.IMAGE)

    with pytest.raises(DownloadError, match="failed after 3 attempts"):
        await downloader.download(job, asset)

    assert server.hits["/img/broken.png"] == 3
    assert not (tmp_path / "job-1" / "a2.png").exists()


async def test_content_type_refines_unknown_asset(server, downloader, tmp_path):
    job = make_job(server)
    asset = Asset(id="a3", url=str(server.make_url("/blob/1")))

    await downloader.download(job, asset)

    assert asset.type == AssetType.VIDEO
    assert asset.local_path == os.path.join("job-1", "a3.bin")


async def test_max_size_fails_without_retry(server, downloader, tmp_path):
    job = make_job(server, max_size=16)
    asset = Asset(id="a4", url=str(server.make_url("/blob/1")))

    with pytest.raises(DownloadError, match="max size"):
        await downloader.download(job, asset)

    assert server.hits["/blob/1"] == 1
    assert not (tmp_path / "job-1" / "a4.bin").exists()


def test_type_helpers():
    assert type_from_content_type("audio/mpeg") == AssetType.AUDIO
    assert type_from_content_type("application/pdf") == AssetType.DOCUMENT
    assert type_from_content_type("application/octet-stream") is None
    assert ext_for_type(AssetType.UNKNOWN) == ".bin"
    assert ext_for_type(AssetType.VIDEO) == ".mp4"
