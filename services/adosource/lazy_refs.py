"""Lazy branch, tag and pull request collections for one request.

Each collection first checks whether the request names exactly one item
and, if so, fetches only that item.
"""

from __future__ import annotations

from adosource.cache import PullRequestMetadataCache, PullRequestScan
from adosource.context import Request
from adosource.gateway.models import GitPullRequest, GitRef, GitRepository, PullRequestStatus
from adosource.gateway.protocol import Gateway
from adosource.lazy import LazyIterable, ObservingIterator


def sort_default_first(refs: list[GitRef], default_branch: str) -> list[GitRef]:
    """Move the default branch to the front; everything else keeps its order."""
    return sorted(refs, key=lambda ref: ref.branch_name != default_branch)


class LazyBranches(LazyIterable[GitRef]):
    def __init__(
        self,
        request: Request,
        gateway: Gateway,
        repo: GitRepository,
        default_branch: str,
    ) -> None:
        super().__init__(self._fetch)
        self._request = request
        self._gateway = gateway
        self._repo = repo
        self._default_branch = default_branch

    async def _fetch(self) -> list[GitRef]:
        names = self._request.requested_origin_branch_names
        if names is not None and len(names) == 1:
            (name,) = names
            self._request.log.info("Getting remote branch", branch=name)
            ref = await self._gateway.get_ref(self._repo, f"heads/{name}")
            return [ref] if ref is not None else []
        self._request.log.info("Getting remote branches")
        refs = await self._gateway.list_branches(self._repo)
        return sort_default_first(refs, self._default_branch)


class LazyTags(LazyIterable[GitRef]):
    def __init__(self, request: Request, gateway: Gateway, repo: GitRepository) -> None:
        super().__init__(self._fetch)
        self._request = request
        self._gateway = gateway
        self._repo = repo

    async def _fetch(self) -> list[GitRef]:
        names = self._request.requested_tag_names
        if names is not None and len(names) == 1:
            (name,) = names
            self._request.log.info("Getting remote tag", tag=name)
            ref = await self._gateway.get_ref(self._repo, f"tags/{name}", peeled=True)
            return [ref] if ref is not None else []
        self._request.log.info("Getting remote tags")
        return await self._gateway.list_tags(self._repo)


class LazyPullRequests(LazyIterable[GitPullRequest]):
    """Pull requests of one request, observed into the metadata cache.

    Only a fetch without a number or branch filter counts as a full scan;
    ``close()`` lets the scan prune the cache if it also ran to the end.
    """

    def __init__(
        self,
        request: Request,
        gateway: Gateway,
        repo: GitRepository,
        cache: PullRequestMetadataCache,
        repo_web_url: str,
    ) -> None:
        super().__init__(self._fetch)
        self._request = request
        self._gateway = gateway
        self._repo = repo
        self._cache = cache
        self._repo_web_url = repo_web_url
        self.scan: PullRequestScan | None = None

    async def _fetch(self) -> list[GitPullRequest]:
        numbers = self._request.requested_pull_request_numbers
        branches = self._request.requested_origin_branch_names
        log = self._request.log
        full = False
        if numbers is not None and len(numbers) == 1:
            (number,) = numbers
            log.info("Getting remote pull request", number=number)
            pr = await self._gateway.get_pull_request(self._repo, number)
            prs = [pr] if pr is not None and pr.status is PullRequestStatus.ACTIVE else []
        elif branches is not None and len(branches) == 1:
            (branch,) = branches
            log.info("Getting remote pull requests from branch", branch=branch)
            prs = await self._gateway.list_pull_requests(
                self._repo, PullRequestStatus.ACTIVE, source_branch=branch
            )
        else:
            log.info("Getting remote pull requests")
            full = True
            prs = await self._gateway.list_pull_requests(self._repo, PullRequestStatus.ACTIVE)
        self.scan = self._cache.begin_scan(full, self._repo_web_url)
        return prs

    # The scan only exists once the fetch ran, so look it up per call.
    def _observe(self, pr: GitPullRequest) -> None:
        if self.scan is not None:
            self.scan.observe(pr)

    def _complete(self) -> None:
        if self.scan is not None:
            self.scan.complete()

    def __aiter__(self) -> ObservingIterator[GitPullRequest]:
        return ObservingIterator(self._iterate(), self._observe, self._complete)

    def close(self) -> None:
        if self.scan is not None:
            self.scan.finish()
