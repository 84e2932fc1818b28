"""
Head and revision model.

A head is a named line of development (branch, tag or pull request); a
revision pins a head to concrete commits. Both are immutable and hashable
so they can be used as observer keys.
"""

import re
from dataclasses import dataclass, field
from enum import StrEnum

PR_NAME_PATTERN = re.compile(r"^PR-(\d+)(?:-(.*))?$")


class CheckoutStrategy(StrEnum):
    """How a pull request is built."""

    HEAD = "HEAD"  # the contributor's tip as-is
    MERGE = "MERGE"  # synthetic merge of the tip onto the current target


class Origin(StrEnum):
    ORIGIN = "origin"
    FORK = "fork"


class RealBranchType(StrEnum):
    """What a branch head's ref structurally is.

    Discovery may present pull or tag refs as plain branches; this records it.
    """

    BRANCH = "branch"
    PR = "pr"
    TAG = "tag"


@dataclass(frozen=True)
class BranchHead:
    name: str
    real_branch_type: RealBranchType = RealBranchType.BRANCH

    @property
    def ref_name(self) -> str:
        """Ref name without ``refs/``, as used by the refs API."""
        match self.real_branch_type:
            case RealBranchType.PR:
                return f"pull/{self.name}"
            case RealBranchType.TAG:
                return f"tags/{self.name}"
            case _:
                return f"heads/{self.name}"


@dataclass(frozen=True)
class TagHead:
    name: str
    timestamp_millis: int = field(default=0, compare=False)

    @property
    def ref_name(self) -> str:
        return f"tags/{self.name}"


@dataclass(frozen=True)
class PullRequestHead:
    name: str
    number: int
    target: BranchHead
    source_owner: str
    source_repo: str
    source_branch: str
    origin: Origin
    checkout_strategy: CheckoutStrategy

    @property
    def is_fork(self) -> bool:
        return self.origin is Origin.FORK

    @property
    def ref_name(self) -> str:
        suffix = "merge" if self.checkout_strategy is CheckoutStrategy.MERGE else "head"
        return f"pull/{self.number}/{suffix}"


Head = BranchHead | TagHead | PullRequestHead


@dataclass(frozen=True)
class CommitRevision:
    """A branch or tag pinned to one commit."""

    head: BranchHead | TagHead
    sha: str


@dataclass(frozen=True)
class PullRequestRevision:
    """A pull request pinned to its base, source and (optional) merge commits.

    For MERGE heads ``base_sha`` is the target tip resolved when the
    revision was built, not the base recorded on the pull request.
    """

    head: PullRequestHead
    base_sha: str
    source_sha: str
    merge_sha: str | None = None

    @property
    def target(self) -> CommitRevision:
        return CommitRevision(self.head.target, self.base_sha)


Revision = CommitRevision | PullRequestRevision


def pull_request_head_name(
    number: int, strategy: CheckoutStrategy, strategy_count: int
) -> str:
    """External name for a PR head.

    ``PR-<n>`` when a single strategy applies to its origin class, otherwise
    ``PR-<n>-<strategy>`` so the names stay distinct per strategy.
    """
    if strategy_count <= 1:
        return f"PR-{number}"
    return f"PR-{number}-{strategy.lower()}"


def short_sha(sha: str | None) -> str:
    return sha[:8] if sha else ""
