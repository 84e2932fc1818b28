"""Pull request metadata cache.

Owned by one source instance and shared by every request made against it.
Entries are upserted by any scan; only a completed full scan may prune.
"""

import threading
from dataclasses import dataclass

from adosource.gateway.models import GitPullRequest
from adosource.logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class PullRequestMetadata:
    title: str
    description: str
    url: str


@dataclass(frozen=True)
class ContributorMetadata:
    display_name: str
    unique_name: str
    image_url: str


def pull_request_web_url(repo_web_url: str, number: int) -> str:
    return f"{repo_web_url.rstrip('/')}/pullrequest/{number}"


class PullRequestMetadataCache:
    """Thread-safe ``number -> metadata`` and ``number -> contributor`` maps."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._metadata: dict[int, PullRequestMetadata] = {}
        self._contributors: dict[int, ContributorMetadata] = {}

    def record(self, pr: GitPullRequest, repo_web_url: str) -> None:
        number = pr.pull_request_id
        metadata = PullRequestMetadata(
            title=pr.title,
            description=pr.description,
            url=pull_request_web_url(repo_web_url, number),
        )
        contributor = ContributorMetadata(
            display_name=pr.created_by.display_name,
            unique_name=pr.created_by.unique_name,
            image_url=pr.created_by.image_url,
        )
        with self._lock:
            self._metadata[number] = metadata
            self._contributors[number] = contributor

    def metadata(self, number: int) -> PullRequestMetadata | None:
        with self._lock:
            return self._metadata.get(number)

    def contributor(self, number: int) -> ContributorMetadata | None:
        with self._lock:
            return self._contributors.get(number)

    def numbers(self) -> set[int]:
        with self._lock:
            return set(self._metadata) | set(self._contributors)

    def begin_scan(self, full: bool, repo_web_url: str) -> "PullRequestScan":
        return PullRequestScan(self, full, repo_web_url)

    def _retain(self, numbers: set[int]) -> None:
        with self._lock:
            before = len(self._metadata)
            self._metadata = {k: v for k, v in self._metadata.items() if k in numbers}
            self._contributors = {k: v for k, v in self._contributors.items() if k in numbers}
            evicted = before - len(self._metadata)
        if evicted:
            logger.debug("Pruned pull request metadata", evicted=evicted, retained=len(numbers))


class PullRequestScan:
    """Tracks what one pass over the pull request collection saw."""

    def __init__(self, cache: PullRequestMetadataCache, full: bool, repo_web_url: str) -> None:
        self._cache = cache
        self._repo_web_url = repo_web_url
        self.full = full
        self.completed = False
        self.observed: set[int] = set()

    def observe(self, pr: GitPullRequest) -> None:
        self._cache.record(pr, self._repo_web_url)
        self.observed.add(pr.pull_request_id)

    def complete(self) -> None:
        self.completed = True

    def finish(self) -> None:
        """Reconcile the cache. A narrowed or interrupted scan never prunes."""
        if self.full and self.completed:
            self._cache._retain(self.observed)
