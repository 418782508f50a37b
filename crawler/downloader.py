import asyncio
import logging
import os
import random
from typing import List, Optional

import aiofiles
import aiohttp

from errors import DownloadError
from models import Asset, AssetType, Job
from utils import get_ext

logger = logging.getLogger(__name__)

DEFAULT_EXT = {
    AssetType.VIDEO: ".mp4",
    AssetType.IMAGE: ".jpg",
    AssetType.AUDIO: ".mp3",
    AssetType.DOCUMENT: ".pdf",
}

CHUNK = 256 * 1024


def ext_for_type(asset_type: AssetType) -> str:
    return DEFAULT_EXT.get(asset_type, ".bin")


def type_from_content_type(ctype: str) -> Optional[AssetType]:
    ctype = (ctype or "").lower()
    if "video/" in ctype:
        return AssetType.VIDEO
    if "audio/" in ctype:
        return AssetType.AUDIO
    if "image/" in ctype:
        return AssetType.IMAGE
    if "application/pdf" in ctype or "application/json" in ctype or "text/plain" in ctype:
        return AssetType.DOCUMENT
    return None


class _TooLarge(Exception):
    pass


class Downloader:
    """Streams assets to ``<storage>/<job_id>/<asset_id><ext>``.

    Up to ``attempts`` tries; any status >= 400 and any transport error is
    retried after ``attempt * backoff_s`` seconds. The whole download is
    bounded by ``timeout`` on its own. Cancelling the calling task aborts it.
    """

    def __init__(
        self,
        storage_path: str,
        user_agents: List[str],
        timeout: float = 3600.0,
        attempts: int = 3,
        backoff_s: float = 2.0,
    ):
        self.storage_path = storage_path
        self.user_agents = user_agents
        self.timeout = timeout
        self.attempts = attempts
        self.backoff_s = backoff_s
        self._session: Optional[aiohttp.ClientSession] = None

    async def open(self):
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                connector=aiohttp.TCPConnector(ssl=False, limit=100),
                timeout=aiohttp.ClientTimeout(total=None, sock_connect=30),
            )

    async def close(self):
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    def _headers(self, referer: str) -> dict:
        return {
            "User-Agent": random.choice(self.user_agents),
            "Accept": "*/*",
            "Accept-Language": "en-US,en;q=0.9",
            "Referer": referer,
        }

    async def download(self, job: Job, asset: Asset) -> None:
        await self.open()

        asset_dir = os.path.join(self.storage_path, job.id)
        os.makedirs(asset_dir, exist_ok=True)

        ext = get_ext(asset.url) or ext_for_type(asset.type)
        file_name = f"{asset.id}{ext}"
        file_path = os.path.join(asset_dir, file_name)
        asset.local_path = os.path.join(job.id, file_name)

        try:
            await asyncio.wait_for(self._download(job, asset, file_path), self.timeout)
        except asyncio.TimeoutError:
            self._discard(file_path)
            raise DownloadError(f"download timeout after {self.timeout:.0f}s: {asset.url}") from None
        except (DownloadError, asyncio.CancelledError):
            self._discard(file_path)
            raise

    @staticmethod
    def _discard(path: str):
        if os.path.exists(path):
            os.remove(path)

    async def _download(self, job: Job, asset: Asset, file_path: str) -> None:
        assert self._session is not None
        headers = self._headers(job.base_url)
        max_size = job.rules.max_size

        last_err = ""
        for attempt in range(self.attempts):
            try:
                async with self._session.get(asset.url, headers=headers, allow_redirects=True) as resp:
                    if resp.status < 400:
                        ctype = resp.headers.get("Content-Type", "")
                        if ctype:
                            asset.metadata["content_type"] = ctype
                            if asset.type == AssetType.UNKNOWN:
                                asset.type = type_from_content_type(ctype) or AssetType.UNKNOWN
                        if max_size and (resp.content_length or 0) > max_size:
                            raise _TooLarge(resp.content_length)
                        asset.size = await self._stream(resp, file_path, max_size)
                        logger.info(f"downloaded {asset.url}: {asset.size} bytes")
                        return
                    last_err = f"server returned status: {resp.status}"
            except _TooLarge as e:
                raise DownloadError(f"asset exceeds max size of {max_size} bytes ({e.args[0]} bytes)") from None
            except aiohttp.ClientError as e:
                last_err = str(e) or e.__class__.__name__

            if attempt + 1 < self.attempts:
                logger.info(f"retrying download for {asset.url} (attempt {attempt + 2} of {self.attempts}): {last_err}")
                await asyncio.sleep((attempt + 1) * self.backoff_s)

        raise DownloadError(f"failed after {self.attempts} attempts: {last_err}")

    async def _stream(self, resp: aiohttp.ClientResponse, file_path: str, max_size: int) -> int:
        written = 0
        async with aiofiles.open(file_path, "wb") as out:
            async for chunk in resp.content.iter_chunked(CHUNK):
                written += len(chunk)
                if max_size and written > max_size:
                    raise _TooLarge(written)
                await out.write(chunk)
        return written
