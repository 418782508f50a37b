import logging
import os
from dataclasses import dataclass, field
from typing import List

from dotenv import load_dotenv

load_dotenv()


USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.4 Safari/605.1.15",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:125.0) Gecko/20100101 Firefox/125.0",
]


@dataclass
class Settings:
    storage_path: str = "./storage"
    thumbnails_path: str = "./thumbnails"
    icons_path: str = "./static/icons"
    jobs_file: str = "./jobs.json"

    max_concurrent_downloads: int = 5
    default_timeout: float = 60.0
    render_timeout: float = 300.0
    http_timeout: float = 120.0
    probe_timeout: float = 10.0
    download_timeout: float = 3600.0
    max_page_bytes: int = 10 * 1024 * 1024

    log_level: str = "INFO"
    log_file: str = ""

    api_host: str = "127.0.0.1"
    api_port: int = 8080

    user_agents: List[str] = field(default_factory=lambda: list(USER_AGENTS))


def _env(name: str, default, cast=str):
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw.strip())
    except ValueError:
        raise ValueError(f"invalid value for {name}: {raw!r}") from None


def load_settings() -> Settings:
    d = Settings()
    return Settings(
        storage_path=_env("STORAGE_PATH", d.storage_path),
        thumbnails_path=_env("THUMBNAILS_PATH", d.thumbnails_path),
        icons_path=_env("ICONS_PATH", d.icons_path),
        jobs_file=_env("JOBS_FILE", d.jobs_file),
        max_concurrent_downloads=_env("MAX_CONCURRENT_DOWNLOADS", d.max_concurrent_downloads, int),
        default_timeout=_env("DEFAULT_TIMEOUT", d.default_timeout, float),
        render_timeout=_env("RENDER_TIMEOUT", d.render_timeout, float),
        http_timeout=_env("HTTP_TIMEOUT", d.http_timeout, float),
        probe_timeout=_env("PROBE_TIMEOUT", d.probe_timeout, float),
        download_timeout=_env("DOWNLOAD_TIMEOUT", d.download_timeout, float),
        max_page_bytes=_env("MAX_PAGE_BYTES", d.max_page_bytes, int),
        log_level=_env("LOG_LEVEL", d.log_level).upper(),
        log_file=_env("LOG_FILE", d.log_file),
        api_host=_env("API_HOST", d.api_host),
        api_port=_env("API_PORT", d.api_port, int),
    )


def setup_logging(settings: Settings) -> None:
    fmt = logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")

    root = logging.getLogger()
    root.setLevel(settings.log_level)

    console = logging.StreamHandler()
    console.setFormatter(fmt)
    root.addHandler(console)

    if settings.log_file:
        os.makedirs(os.path.dirname(os.path.abspath(settings.log_file)), exist_ok=True)
        fh = logging.FileHandler(settings.log_file, encoding="utf-8")
        fh.setFormatter(fmt)
        root.addHandler(fh)
