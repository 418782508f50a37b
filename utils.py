import os
import re
from functools import lru_cache
from urllib.parse import urljoin, urldefrag, urlparse


def make_absolute_url(base: str, ref: str) -> str:
    """Resolve ``ref`` against ``base`` and drop any fragment. Returns "" when unusable."""
    ref = (ref or "").strip()
    if not ref:
        return ""
    try:
        abs_url, _ = urldefrag(urljoin(base, ref))
    except ValueError:
        return ""
    return abs_url


def is_http_url(url: str) -> bool:
    return urlparse(url).scheme in ("http", "https")


@lru_cache(maxsize=256)
def _compile(pattern: str) -> "re.Pattern[str]":
    return re.compile(pattern)


def is_valid_url(url: str, include_pattern: str = "", exclude_pattern: str = "") -> bool:
    # exclude always wins over include
    if exclude_pattern and _compile(exclude_pattern).search(url):
        return False
    if include_pattern and not _compile(include_pattern).search(url):
        return False
    return True


def url_path(url: str) -> str:
    return urlparse(url).path


def last_path_segment(url: str) -> str:
    path = url_path(url).rstrip("/")
    return path.rsplit("/", 1)[-1].strip()


def get_ext(url: str) -> str:
    _, ext = os.path.splitext(url_path(url).lower())
    return ext
