"""Source context and request.

A SourceContext says what a discovery pass wants (which ref kinds, which
checkout strategies, who is trusted). A Request is the scoped session built
from it: it owns the lazy collections for one pass and must be closed, which
is when the pull request cache gets reconciled.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from enum import StrEnum
from types import TracebackType
from typing import TYPE_CHECKING, Any

import structlog

from adosource.errors import ClosedError
from adosource.gateway.models import GitPullRequest, GitRef, GitRepository
from adosource.models import (
    BranchHead,
    CheckoutStrategy,
    Head,
    Origin,
    PullRequestHead,
    Revision,
    TagHead,
)
from adosource.observer import CollectingObserver, HeadObserver, SourceCriteria

if TYPE_CHECKING:
    from adosource.lazy import LazyIterable
    from adosource.lazy_refs import LazyPullRequests
    from adosource.notification import NotificationStrategy
    from adosource.probe import Probe
    from adosource.traits import HeadFilter, HeadPrefilter, SourceTrait, TrustPolicy

ProbeFactory = Callable[[Head], Awaitable["Probe"]]
RevisionFactory = Callable[[Head], Awaitable[Revision]]
Witness = Callable[[Head, Revision | None, bool], None]


class RepositoryPermission(StrEnum):
    ADMIN = "admin"
    WRITE = "write"
    READ = "read"
    NONE = "none"


class AdminPermissionSource:
    """Azure DevOps does not expose per-user repository permissions to a PAT.

    Anyone able to open a pull request is reported as ADMIN.
    """

    async def permission(self, user: str) -> RepositoryPermission:
        return RepositoryPermission.ADMIN


@dataclass
class SourceContext:
    criteria: SourceCriteria | None = None
    observer: HeadObserver = field(default_factory=CollectingObserver)
    wants_branches: bool = False
    wants_tags: bool = False
    wants_origin_prs: bool = False
    wants_fork_prs: bool = False
    origin_strategies: set[CheckoutStrategy] = field(default_factory=set)
    fork_strategies: set[CheckoutStrategy] = field(default_factory=set)
    trust: TrustPolicy | None = None
    notification_strategies: list[NotificationStrategy] = field(default_factory=list)
    notifications_disabled: bool = False
    prefilters: list[HeadPrefilter] = field(default_factory=list)
    filters: list[HeadFilter] = field(default_factory=list)
    _frozen: bool = field(default=False, repr=False)

    def __setattr__(self, name: str, value: Any) -> None:
        if getattr(self, "_frozen", False):
            raise RuntimeError("SourceContext is frozen")
        super().__setattr__(name, value)

    def with_traits(self, traits: Iterable[SourceTrait]) -> SourceContext:
        if self._frozen:
            raise RuntimeError("SourceContext is frozen")
        for trait in traits:
            trait.decorate(self)
        return self

    def freeze(self) -> SourceContext:
        self.origin_strategies = frozenset(self.origin_strategies)  # type: ignore[assignment]
        self.fork_strategies = frozenset(self.fork_strategies)  # type: ignore[assignment]
        self.prefilters = tuple(self.prefilters)  # type: ignore[assignment]
        self.filters = tuple(self.filters)  # type: ignore[assignment]
        self.notification_strategies = tuple(self.notification_strategies)  # type: ignore[assignment]
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def wants_prs(self) -> bool:
        return self.wants_origin_prs or self.wants_fork_prs

    def strategies_for(self, origin: Origin) -> frozenset[CheckoutStrategy]:
        """Checkout strategies that apply to PRs of one origin class."""
        match origin:
            case Origin.FORK:
                return frozenset(self.fork_strategies) if self.wants_fork_prs else frozenset()
            case Origin.ORIGIN:
                return frozenset(self.origin_strategies) if self.wants_origin_prs else frozenset()


def _requested_sets(
    includes: frozenset[Head] | None,
) -> tuple[set[int] | None, set[str] | None, set[str] | None]:
    if includes is None:
        return None, None, None
    numbers: set[int] = set()
    branches: set[str] = set()
    tags: set[str] = set()
    for head in includes:
        match head:
            case PullRequestHead():
                numbers.add(head.number)
                if head.origin is Origin.ORIGIN:
                    branches.add(head.source_branch)
            case BranchHead():
                branches.add(head.name)
            case TagHead():
                tags.add(head.name)
    return numbers, branches, tags


class Request:
    """One discovery session. Use as ``async with``."""

    def __init__(
        self,
        context: SourceContext,
        repo: GitRepository,
        project: str,
        log: structlog.stdlib.BoundLogger,
    ) -> None:
        self.context = context
        self.repo = repo
        self.project = project
        self.log = log
        self.permissions = AdminPermissionSource()
        self._branches: LazyIterable[GitRef] | None = None
        self._tags: LazyIterable[GitRef] | None = None
        self._pull_requests: LazyPullRequests | None = None
        self._closed = False
        (
            self.requested_pull_request_numbers,
            self.requested_origin_branch_names,
            self.requested_tag_names,
        ) = _requested_sets(context.observer.includes)

    # --- collections ---

    def set_branches(self, branches: LazyIterable[GitRef] | None) -> None:
        self._branches = branches

    def set_tags(self, tags: LazyIterable[GitRef] | None) -> None:
        self._tags = tags

    def set_pull_requests(self, pull_requests: LazyPullRequests | None) -> None:
        self._pull_requests = pull_requests

    async def _empty(self) -> AsyncIterator[Any]:
        return
        yield

    def branches(self) -> AsyncIterator[GitRef]:
        self._check_open()
        return aiter(self._branches) if self._branches is not None else self._empty()

    def tags(self) -> AsyncIterator[GitRef]:
        self._check_open()
        return aiter(self._tags) if self._tags is not None else self._empty()

    def pull_requests(self) -> AsyncIterator[GitPullRequest]:
        """Single-pass iterator that feeds the metadata cache as it goes."""
        self._check_open()
        return aiter(self._pull_requests) if self._pull_requests is not None else self._empty()

    async def pull_request_list(self) -> list[GitPullRequest]:
        """All pull requests of this pass, without observing them."""
        self._check_open()
        if self._pull_requests is None:
            return []
        return await self._pull_requests.materialize()

    # --- decisions ---

    async def is_trusted(self, head: PullRequestHead) -> bool:
        if head.origin is Origin.ORIGIN:
            return True
        trust = self.context.trust
        if trust is None:
            return False
        return await trust.is_trusted(self, head)

    async def is_excluded(self, head: Head) -> bool:
        includes = self.context.observer.includes
        if includes is not None and head.name not in {h.name for h in includes}:
            return True
        if any(p.is_excluded(head) for p in self.context.prefilters):
            return True
        for head_filter in self.context.filters:
            if await head_filter.is_excluded(self, head):
                return True
        return False

    def is_complete(self) -> bool:
        return self.context.observer.is_complete()

    async def process(
        self,
        head: Head,
        probe_factory: ProbeFactory,
        revision_factory: RevisionFactory,
        witness: Witness | None = None,
    ) -> bool:
        """Offer one head to the observer.

        The probe is only opened when criteria are configured, and the
        revision is only built once the criteria matched.

        Returns:
            True once the observer wants nothing more.
        """
        self._check_open()
        if await self.is_excluded(head):
            return self.is_complete()
        criteria = self.context.criteria
        if criteria is not None:
            probe = await probe_factory(head)
            async with probe:
                matches = await criteria.is_head(probe, self.log)
            if not matches:
                if witness is not None:
                    witness(head, None, False)
                return self.is_complete()
        revision = await revision_factory(head)
        if witness is not None:
            witness(head, revision, True)
        self.context.observer.observe(head, revision)
        return self.is_complete()

    # --- lifecycle ---

    def _check_open(self) -> None:
        if self._closed:
            raise ClosedError("Request closed")

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._pull_requests is not None:
            self._pull_requests.close()

    async def __aenter__(self) -> Request:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()
