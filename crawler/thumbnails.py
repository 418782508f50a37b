import asyncio
import logging
import os
import shutil

from PIL import Image

from models import Asset, AssetType

logger = logging.getLogger(__name__)

THUMB_WIDTH = 320
MIN_VIDEO_BYTES = 10_000
FFMPEG_TIMEOUT_S = 30
FRAME_OFFSET = "00:00:01"

ICON_COLORS = {
    AssetType.VIDEO: (25, 25, 100),
    AssetType.AUDIO: (25, 100, 25),
    AssetType.IMAGE: (100, 25, 25),
    AssetType.DOCUMENT: (100, 100, 25),
}
GENERIC_COLOR = (50, 50, 50)


class MediaToolError(Exception):
    pass


def resize_image(src: str, dst: str, width: int = THUMB_WIDTH):
    with Image.open(src) as img:
        img = img.convert("RGB")
        w, h = img.size
        if w > width:
            img = img.resize((width, max(1, round(h * width / w))), Image.Resampling.LANCZOS)
        img.save(dst, "JPEG", quality=85)


class ThumbnailGenerator:
    def __init__(self, storage_path: str, thumbnails_path: str, icons_path: str, ffmpeg: str = "ffmpeg"):
        self.storage_path = storage_path
        self.thumbnails_path = thumbnails_path
        self.icons_path = icons_path
        self.ffmpeg = ffmpeg

    def icon_for(self, asset_type: AssetType) -> str:
        """Path of the placeholder icon for ``asset_type``, drawn on first use."""
        name = asset_type.value if asset_type in ICON_COLORS else "generic"
        path = os.path.join(self.icons_path, f"{name}.jpg")
        if not os.path.exists(path):
            os.makedirs(self.icons_path, exist_ok=True)
            color = ICON_COLORS.get(asset_type, GENERIC_COLOR)
            Image.new("RGB", (THUMB_WIDTH, THUMB_WIDTH), color).save(path, "JPEG")
        return path

    async def _video_frame(self, src: str, dst: str):
        proc = await asyncio.create_subprocess_exec(
            self.ffmpeg,
            "-ss", FRAME_OFFSET,
            "-i", src,
            "-vframes", "1",
            "-vf", f"scale={THUMB_WIDTH}:-1",
            "-y", dst,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            _, stderr = await asyncio.wait_for(proc.communicate(), FFMPEG_TIMEOUT_S)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise MediaToolError(f"ffmpeg timed out after {FFMPEG_TIMEOUT_S}s") from None
        if proc.returncode != 0:
            tail = stderr.decode("utf-8", errors="replace")[-300:]
            raise MediaToolError(f"ffmpeg exited with {proc.returncode}: {tail}")

    async def generate(self, asset: Asset) -> str:
        """Write ``<thumbnails>/<job_id>/<asset_id>.jpg`` and return it relative to the thumbnails root."""
        rel_dir = os.path.dirname(asset.local_path)
        thumb_dir = os.path.join(self.thumbnails_path, rel_dir)
        os.makedirs(thumb_dir, exist_ok=True)

        thumb_name = f"{asset.id}.jpg"
        thumb_path = os.path.join(thumb_dir, thumb_name)
        rel_path = os.path.join(rel_dir, thumb_name)
        source = os.path.join(self.storage_path, asset.local_path)

        try:
            if asset.type == AssetType.VIDEO:
                size = os.path.getsize(source)
                if size < MIN_VIDEO_BYTES:
                    raise MediaToolError(f"video file too small for ffmpeg: {size} bytes")
                await self._video_frame(source, thumb_path)
                return rel_path
            if asset.type == AssetType.IMAGE:
                await asyncio.to_thread(resize_image, source, thumb_path)
                return rel_path
        except Exception as e:
            logger.warning(f"thumbnail for {asset.url} failed, using placeholder: {e}")

        shutil.copyfile(self.icon_for(asset.type), thumb_path)
        return rel_path
