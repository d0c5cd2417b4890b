from typing import Optional


class ScrapeError(RuntimeError):
    """Base class for failures that abort a thread scrape."""


class MissingInput(ScrapeError):
    pass


class TransportFailure(ScrapeError):
    def __init__(self, url: str, cause: Optional[BaseException], attempts: int):
        self.url = url
        self.cause = cause
        self.attempts = attempts
        super().__init__(f"Failed to fetch after {attempts} attempts: {cause}")


class MalformedResponse(ScrapeError):
    pass
