import asyncio
import logging
from typing import Optional

import aiohttp

from errors import FetchError

logger = logging.getLogger(__name__)

BROWSER_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    "Accept-Encoding": "gzip, deflate",
    "Connection": "keep-alive",
    "Upgrade-Insecure-Requests": "1",
    "Cache-Control": "max-age=0",
    "Sec-Fetch-Dest": "document",
    "Sec-Fetch-Mode": "navigate",
    "Sec-Fetch-Site": "none",
    "Sec-Fetch-User": "?1",
}

BOT_WALL_MARKERS = ("captcha", "ddos", "checking your browser")


def decode_html(data: bytes, content_type: Optional[str]) -> str:
    if content_type and "charset=" in content_type.lower():
        charset = content_type.lower().split("charset=")[-1].split(";")[0].strip()
        try:
            return data.decode(charset)
        except (LookupError, UnicodeDecodeError):
            pass

    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        pass

    return data.decode("latin-1", errors="replace")


def looks_like_bot_wall(body: str) -> bool:
    body = body.lower()
    if any(m in body for m in BOT_WALL_MARKERS):
        return True
    return "cloudflare" in body and "security" in body


class HttpFetcher:
    """Plain HTTP strategy: no script execution, browser-like headers, capped body."""

    def __init__(
        self,
        user_agent: str,
        max_bytes: int = 10 * 1024 * 1024,
        attempts: int = 3,
        backoff_s: float = 2.0,
    ):
        self._ua = user_agent
        self.max_bytes = max_bytes
        self.attempts = attempts
        self.backoff_s = backoff_s
        self._session: Optional[aiohttp.ClientSession] = None

    async def open(self):
        if self._session is None or self._session.closed:
            headers = dict(BROWSER_HEADERS)
            headers["User-Agent"] = self._ua
            self._session = aiohttp.ClientSession(
                headers=headers,
                connector=aiohttp.TCPConnector(ssl=False),
                timeout=aiohttp.ClientTimeout(total=None),
            )

    async def close(self):
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _read_capped(self, resp: aiohttp.ClientResponse) -> bytes:
        buf = bytearray()
        async for chunk in resp.content.iter_chunked(64 * 1024):
            buf.extend(chunk)
            if len(buf) >= self.max_bytes:
                logger.warning(f"response from {resp.url} truncated at {self.max_bytes} bytes")
                return bytes(buf[: self.max_bytes])
        return bytes(buf)

    async def fetch(self, url: str) -> str:
        """GET ``url`` and return decoded HTML. 5xx and transport errors are retried.

        No deadline is applied here; the caller bounds the whole call.
        """
        await self.open()
        assert self._session is not None

        last_err = ""
        for attempt in range(self.attempts):
            try:
                async with self._session.get(url, allow_redirects=True, max_redirects=10) as resp:
                    if resp.status < 500:
                        if resp.status >= 400:
                            raise FetchError(url, f"server returned status code {resp.status}")
                        ctype = resp.headers.get("Content-Type", "") or ""
                        low = ctype.lower()
                        if ctype and "html" not in low and "text" not in low:
                            logger.warning(f"{url} returned non-HTML content type: {ctype}")
                        data = await self._read_capped(resp)
                        return decode_html(data, ctype)
                    last_err = f"server returned status: {resp.status}"
            except aiohttp.ClientError as e:
                last_err = str(e) or e.__class__.__name__

            if attempt + 1 < self.attempts:
                logger.info(f"retrying HTTP fetch for {url} (attempt {attempt + 2}/{self.attempts}): {last_err}")
                await asyncio.sleep((attempt + 1) * self.backoff_s)

        raise FetchError(url, f"HTTP fetch failed after {self.attempts} attempts: {last_err}")

    async def probe(self, url: str, timeout: float) -> int:
        """Cheap reachability check. Returns the status code or raises FetchError."""
        await self.open()
        assert self._session is not None

        try:
            async with self._session.get(
                url,
                allow_redirects=False,
                timeout=aiohttp.ClientTimeout(total=timeout),
            ) as resp:
                if resp.status >= 400:
                    raise FetchError(url, f"site returned error status: {resp.status} {resp.reason}")
                head = await resp.content.read(1024)
        except aiohttp.ClientError as e:
            raise FetchError(url, f"HTTP request failed: {e}") from e

        if looks_like_bot_wall(head.decode("utf-8", errors="ignore")):
            raise FetchError(url, "site appears to have bot protection active")
        return resp.status
