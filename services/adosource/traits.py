"""
Traits configure a SourceContext before a request is made.

Each trait only touches the context inside ``decorate``; once the context
is frozen it can no longer change. Trust policies and head filters that
traits install live here too.
"""

from __future__ import annotations

import fnmatch
from collections.abc import Iterable
from typing import TYPE_CHECKING, Protocol

from adosource.models import (
    BranchHead,
    CheckoutStrategy,
    Head,
    PullRequestHead,
)

if TYPE_CHECKING:
    from adosource.context import Request, SourceContext
    from adosource.notification import NotificationStrategy


# --- Trust ---


class TrustPolicy(Protocol):
    """Decides whether a fork pull request may supply its own build files."""

    name: str

    async def is_trusted(self, request: Request, head: PullRequestHead) -> bool:
        ...


class TrustNobody:
    name = "Nobody"

    async def is_trusted(self, request: Request, head: PullRequestHead) -> bool:
        return False


class TrustContributors:
    """Trust forks that live in the same Azure DevOps project."""

    name = "Contributors"

    async def is_trusted(self, request: Request, head: PullRequestHead) -> bool:
        return head.source_owner.lower() == request.project.lower()


class TrustPermission:
    """Trust contributors with write or admin permission on the repository."""

    name = "From users with Admin or Write permission"

    async def is_trusted(self, request: Request, head: PullRequestHead) -> bool:
        from adosource.context import RepositoryPermission

        permission = await request.permissions.permission(head.source_owner)
        return permission in (RepositoryPermission.ADMIN, RepositoryPermission.WRITE)


class TrustEveryone:
    name = "Everyone"

    async def is_trusted(self, request: Request, head: PullRequestHead) -> bool:
        return True


# --- Filters ---


class HeadPrefilter(Protocol):
    """Name-based exclusion, checked before anything is fetched for a head."""

    def is_excluded(self, head: Head) -> bool:
        ...


class HeadFilter(Protocol):
    """Exclusion that may need to look at the request's other collections."""

    async def is_excluded(self, request: Request, head: Head) -> bool:
        ...


class WildcardHeadPrefilter:
    """Space-separated ``*`` patterns. PR heads match on their target branch."""

    def __init__(self, includes: str = "*", excludes: str = "") -> None:
        self.includes = includes.split()
        self.excludes = excludes.split()

    def is_excluded(self, head: Head) -> bool:
        name = head.target.name if isinstance(head, PullRequestHead) else head.name
        if not any(fnmatch.fnmatchcase(name, p) for p in self.includes):
            return True
        return any(fnmatch.fnmatchcase(name, p) for p in self.excludes)


async def _origin_pull_request_branches(request: Request) -> set[str]:
    return {
        pr.source_branch
        for pr in await request.pull_request_list()
        if not pr.is_fork
    }


class ExcludeOriginPullRequestBranchesFilter:
    """Drop branches that are the source of an origin pull request."""

    async def is_excluded(self, request: Request, head: Head) -> bool:
        if not isinstance(head, BranchHead):
            return False
        return head.name in await _origin_pull_request_branches(request)


class OnlyOriginPullRequestBranchesFilter:
    """Keep only branches that are the source of an origin pull request."""

    async def is_excluded(self, request: Request, head: Head) -> bool:
        if not isinstance(head, BranchHead):
            return False
        return head.name not in await _origin_pull_request_branches(request)


# --- Traits ---


class SourceTrait:
    def decorate(self, context: SourceContext) -> None:
        raise NotImplementedError


class BranchDiscoveryTrait(SourceTrait):
    """Discover branches.

    Strategy 1 excludes branches that are also filed as origin PRs,
    2 keeps only those, and 3 keeps every branch.
    """

    EXCLUDE_PR_BRANCHES = 1
    ONLY_PR_BRANCHES = 2
    ALL_BRANCHES = 3

    def __init__(self, strategy_id: int = EXCLUDE_PR_BRANCHES) -> None:
        if strategy_id not in (1, 2, 3):
            raise ValueError(f"Unknown branch discovery strategy {strategy_id}")
        self.strategy_id = strategy_id

    @property
    def build_branch(self) -> bool:
        return self.strategy_id in (self.EXCLUDE_PR_BRANCHES, self.ALL_BRANCHES)

    @property
    def build_branches_with_pr(self) -> bool:
        return self.strategy_id in (self.ONLY_PR_BRANCHES, self.ALL_BRANCHES)

    def decorate(self, context: SourceContext) -> None:
        context.wants_branches = True
        match self.strategy_id:
            case self.EXCLUDE_PR_BRANCHES:
                context.wants_origin_prs = True
                context.filters.append(ExcludeOriginPullRequestBranchesFilter())
            case self.ONLY_PR_BRANCHES:
                context.wants_origin_prs = True
                context.filters.append(OnlyOriginPullRequestBranchesFilter())


class OriginPullRequestDiscoveryTrait(SourceTrait):
    def __init__(self, strategies: Iterable[CheckoutStrategy] = (CheckoutStrategy.MERGE,)) -> None:
        self.strategies = frozenset(strategies)

    def decorate(self, context: SourceContext) -> None:
        context.wants_origin_prs = True
        context.origin_strategies.update(self.strategies)


class ForkPullRequestDiscoveryTrait(SourceTrait):
    def __init__(
        self,
        strategies: Iterable[CheckoutStrategy] = (CheckoutStrategy.MERGE,),
        trust: TrustPolicy | None = None,
    ) -> None:
        self.strategies = frozenset(strategies)
        self.trust = trust if trust is not None else TrustPermission()

    def decorate(self, context: SourceContext) -> None:
        context.wants_fork_prs = True
        context.fork_strategies.update(self.strategies)
        context.trust = self.trust


class TagDiscoveryTrait(SourceTrait):
    def decorate(self, context: SourceContext) -> None:
        context.wants_tags = True


class WildcardHeadFilterTrait(SourceTrait):
    def __init__(self, includes: str = "*", excludes: str = "") -> None:
        self.includes = includes
        self.excludes = excludes

    def decorate(self, context: SourceContext) -> None:
        context.prefilters.append(WildcardHeadPrefilter(self.includes, self.excludes))


class DisableNotificationsTrait(SourceTrait):
    def decorate(self, context: SourceContext) -> None:
        context.notifications_disabled = True


class NotificationStrategyTrait(SourceTrait):
    def __init__(self, strategy: NotificationStrategy) -> None:
        self.strategy = strategy

    def decorate(self, context: SourceContext) -> None:
        context.notification_strategies.append(self.strategy)


def default_traits() -> list[SourceTrait]:
    """Traits of a freshly configured source."""
    return [
        BranchDiscoveryTrait(BranchDiscoveryTrait.EXCLUDE_PR_BRANCHES),
        OriginPullRequestDiscoveryTrait({CheckoutStrategy.MERGE}),
        ForkPullRequestDiscoveryTrait({CheckoutStrategy.MERGE}, TrustPermission()),
    ]
