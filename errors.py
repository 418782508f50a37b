class HarvesterError(Exception):
    """Base class for every error raised by the crawl engine."""


class FetchError(HarvesterError):
    """Neither the rendered nor the plain strategy could retrieve a page."""

    def __init__(self, url: str, message: str):
        super().__init__(f"{url}: {message}")
        self.url = url


class FetchTimeout(FetchError):
    """The last fetch strategy tried for a page ran out of time."""


class BrowserUnavailable(HarvesterError):
    pass


class DownloadError(HarvesterError):
    pass


class JobNotFound(HarvesterError, KeyError):
    def __str__(self):
        return f"job not found: {self.args[0]}" if self.args else "job not found"


class JobAlreadyRunning(HarvesterError):
    pass


class JobNotRunning(HarvesterError):
    pass


class InvalidJob(HarvesterError, ValueError):
    pass


class AssetNotFound(HarvesterError, KeyError):
    def __str__(self):
        return f"asset not found: {self.args[0]}" if self.args else "asset not found"
