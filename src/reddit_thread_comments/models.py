from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class FlatComment:
    id: str
    author: Optional[str]
    body: str
    score: int
    created_utc: float
    parent_id: Optional[str]  # bare id of the parent comment, None for top-level comments
    permalink: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class FetchResult:
    ok: bool
    document: Any = None
    cause: Optional[BaseException] = None
    attempts: int = 0
    status_code: Optional[int] = None

    @classmethod
    def success(cls, document: Any, attempts: int, status_code: int = 200) -> "FetchResult":
        return cls(ok=True, document=document, attempts=attempts, status_code=status_code)

    @classmethod
    def failure(
        cls,
        cause: Optional[BaseException],
        attempts: int,
        status_code: Optional[int] = None,
    ) -> "FetchResult":
        return cls(ok=False, cause=cause, attempts=attempts, status_code=status_code)


@dataclass
class ThreadRequest:
    start_url: str
    results_wanted: int
    proxy_urls: List[str] = field(default_factory=list)


@dataclass
class ScrapeSummary:
    post_id: str = ""
    subreddit: str = ""
    from_thread: int = 0
    from_more: int = 0
    saved: int = 0
    failed_batches: int = 0

    @property
    def total_extracted(self) -> int:
        return self.from_thread + self.from_more
