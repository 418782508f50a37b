import asyncio
import logging
import os
import uuid
from typing import Optional, Set

from bs4 import BeautifulSoup, Tag

from errors import DownloadError
from models import Asset, AssetType, Job, Selector, SelectorPurpose
from utils import get_ext, is_http_url, last_path_segment, make_absolute_url
from .downloader import Downloader
from .file_pipeline import extract_file_metadata
from .link_extractor import select_text
from .thumbnails import ThumbnailGenerator

logger = logging.getLogger(__name__)

# first present attribute wins
ASSET_URL_ATTRS = ("src", "href", "data-src", "data-video", "data-media")

SAVE_EVERY = 5

EXTENSIONS = {
    AssetType.VIDEO: (".mp4", ".webm", ".mkv", ".avi", ".mov", ".flv", ".m4v", ".mpg", ".mpeg", ".ts"),
    AssetType.IMAGE: (".jpg", ".jpeg", ".png", ".gif", ".webp", ".svg", ".bmp", ".tiff", ".ico"),
    AssetType.AUDIO: (".mp3", ".wav", ".ogg", ".flac", ".aac", ".m4a", ".wma"),
    AssetType.DOCUMENT: (".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx", ".txt", ".rtf", ".csv"),
}

KEYWORDS = {
    AssetType.VIDEO: ("video", "movie", "watch"),
    AssetType.IMAGE: ("image", "photo", "pic"),
    AssetType.AUDIO: ("audio", "music", "sound"),
    AssetType.DOCUMENT: ("doc", "pdf", "file"),
}


def classify(url: str) -> AssetType:
    ext = get_ext(url)
    for asset_type, exts in EXTENSIONS.items():
        if ext in exts:
            return asset_type

    low = url.lower()
    for asset_type, words in KEYWORDS.items():
        if any(w in low for w in words):
            return asset_type

    return AssetType.UNKNOWN


def resolve_asset_url(page_url: str, el: Tag) -> str:
    for attr in ASSET_URL_ATTRS:
        value = el.get(attr)
        if value:
            url = make_absolute_url(page_url, value)
            return url if is_http_url(url) else ""
    return ""


def _metadata_texts(el: Tag, selectors):
    for sel in selectors:
        try:
            text = select_text(el, sel)
        except Exception as e:
            logger.debug(f"metadata selector {sel.query!r} failed: {e}")
            continue
        if text:
            yield text


class AssetPipeline:
    """Per-run asset worker pool.

    ``submit`` does the cheap, synchronous part (URL resolution, dedup,
    MaxAssets reservation, classification, metadata) and schedules the
    download on the pool. ``join`` waits for every scheduled download to
    settle; the run is only finalised after it returns.
    """

    def __init__(
        self,
        store,
        downloader: Downloader,
        thumbnails: ThumbnailGenerator,
        max_concurrent: int = 5,
    ):
        self.store = store
        self.downloader = downloader
        self.thumbnails = thumbnails
        self._sem = asyncio.Semaphore(max(1, max_concurrent))
        self._tasks: Set["asyncio.Task[None]"] = set()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def submit(self, job: Job, page_url: str, el: Tag, source: Optional[Selector] = None) -> Optional[Asset]:
        url = resolve_asset_url(page_url, el)
        if not url:
            return None

        async with job.lock:
            if url in job.completed or job.asset_cap_reached():
                return None
            job.completed.add(url)
            job.pending_assets += 1

        asset = Asset(
            id=str(uuid.uuid4()),
            url=url,
            job_id=job.id,
            type=classify(url),
            source=source.query if source else "",
        )
        asset.metadata["page_url"] = page_url
        self._apply_metadata(job, el, asset)

        task = asyncio.create_task(self._process(job, asset))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return asset

    def _apply_metadata(self, job: Job, el: Tag, asset: Asset):
        selectors = job.selectors_for(SelectorPurpose.METADATA)
        texts = []
        if selectors:
            # the match itself first, then the element that contains it
            for scope in (el, el.parent):
                if isinstance(scope, Tag) and not isinstance(scope, BeautifulSoup):
                    texts = list(_metadata_texts(scope, selectors))
                if texts:
                    break
        if texts:
            asset.title = texts[0]
        if len(texts) > 1:
            asset.description = texts[1]
        if not asset.title:
            asset.title = last_path_segment(asset.url) or asset.url

    async def _process(self, job: Job, asset: Asset):
        try:
            async with self._sem:
                await self._download(job, asset)
        except asyncio.CancelledError:
            if not asset.downloaded:
                asset.error = asset.error or "download cancelled"
            raise
        finally:
            # no await here, so this cannot interleave with any job.lock holder
            job.pending_assets -= 1
            job.assets.append(asset)
            count = len(job.assets)

        if count % SAVE_EVERY == 0:
            await self.store.save()

    async def _download(self, job: Job, asset: Asset):
        try:
            await self.downloader.download(job, asset)
        except DownloadError as e:
            logger.warning(f"error downloading asset {asset.url}: {e}")
            asset.error = str(e)
            return
        except Exception as e:
            logger.exception(f"unexpected error downloading asset {asset.url}")
            asset.error = str(e) or e.__class__.__name__
            return

        asset.downloaded = True
        path = os.path.join(self.downloader.storage_path, asset.local_path)

        try:
            asset.metadata.update(await asyncio.to_thread(extract_file_metadata, path, asset.type))
        except Exception as e:
            logger.warning(f"metadata extraction failed for {asset.url}: {e}")

        try:
            asset.thumbnail_path = await self.thumbnails.generate(asset)
        except Exception as e:
            logger.warning(f"error generating thumbnail for {asset.url}: {e}")

    def cancel(self):
        for task in list(self._tasks):
            task.cancel()

    async def join(self):
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
