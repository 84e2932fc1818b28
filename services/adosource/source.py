"""Azure DevOps Repos branch source.

Discovers branches, pull requests and tags of one repository and turns
them into heads and revisions. A discovery pass walks branches, then pull
requests, then tags, and stops as soon as the observer has what it wants.
Every head is first checked against the criteria through a probe; the
(more expensive) revision is only built for heads that match.
"""

from __future__ import annotations

from contextlib import aclosing
from dataclasses import dataclass
from urllib.parse import quote

import structlog

from adosource.cache import ContributorMetadata, PullRequestMetadataCache, pull_request_web_url
from adosource.config import settings
from adosource.context import Request, SourceContext, Witness
from adosource.errors import (
    AbortError,
    NotFoundError,
    RateLimitedError,
    TransportError,
    WrappedError,
    unwrap,
)
from adosource.gateway.models import (
    GitCommitRef,
    GitPullRequest,
    GitRef,
    GitRepository,
    PullRequestAsyncStatus,
)
from adosource.gateway.protocol import Gateway
from adosource.lazy_refs import LazyBranches, LazyPullRequests, LazyTags
from adosource.logging_config import get_logger
from adosource.models import (
    PR_NAME_PATTERN,
    BranchHead,
    CheckoutStrategy,
    CommitRevision,
    Head,
    Origin,
    PullRequestHead,
    PullRequestRevision,
    RealBranchType,
    Revision,
    TagHead,
    pull_request_head_name,
    short_sha,
)
from adosource.observer import CollectingObserver, HeadObserver, SourceCriteria
from adosource.probe import Probe
from adosource.traits import SourceTrait, default_traits

logger = get_logger(__name__)


@dataclass(frozen=True)
class HeadMetadata:
    """Display information for a head: where it lives and what it is."""

    url: str
    title: str = ""
    description: str = ""
    contributor: ContributorMetadata | None = None
    primary: bool = False


def _commit_id(ref: GitCommitRef | None) -> str:
    return ref.commit_id if ref is not None else ""


def classify_ref(ref: GitRef) -> BranchHead:
    """Present any ref as a branch head, recording what it really is."""
    if ref.is_pull_request:
        return BranchHead(ref.name.removeprefix("refs/pull/"), RealBranchType.PR)
    if ref.is_tag:
        return BranchHead(ref.tag_name, RealBranchType.TAG)
    return BranchHead(ref.branch_name, RealBranchType.BRANCH)


class AzureDevOpsSource:
    """One Azure DevOps repository configured as a branch source."""

    def __init__(
        self,
        gateway: Gateway,
        project: str,
        repository: str,
        traits: list[SourceTrait] | None = None,
        source_id: str = "",
    ) -> None:
        self.gateway = gateway
        self.project = project
        self.repository = repository
        self.traits = traits if traits is not None else default_traits()
        self.id = source_id or f"{project}/{repository}"
        self.pull_request_cache = PullRequestMetadataCache()

    # --- plumbing ---

    def _bind(self, log: structlog.stdlib.BoundLogger | None) -> structlog.stdlib.BoundLogger:
        base = log if log is not None else logger
        return base.bind(project=self.project, repository=self.repository)

    def new_context(
        self,
        criteria: SourceCriteria | None = None,
        observer: HeadObserver | None = None,
    ) -> SourceContext:
        context = SourceContext(criteria=criteria, observer=observer or CollectingObserver())
        return context.with_traits(self.traits).freeze()

    async def get_repository(self) -> GitRepository:
        if not self.repository.strip():
            raise AbortError("No repository selected, skipping")
        repo = await self.gateway.get_repository(self.project, self.repository)
        if repo is None:
            raise AbortError(f"Repository {self.project}/{self.repository} not found")
        return repo

    @staticmethod
    def _web_url(repo: GitRepository) -> str:
        return (repo.web_url or repo.remote_url).rstrip("/")

    @staticmethod
    def _default_branch(repo: GitRepository) -> str:
        return repo.default_branch_name or settings.discovery.default_branch_fallback

    def _new_request(
        self, context: SourceContext, repo: GitRepository, log: structlog.stdlib.BoundLogger
    ) -> Request:
        request = Request(context, repo, self.project, log)
        if context.wants_branches:
            request.set_branches(
                LazyBranches(request, self.gateway, repo, self._default_branch(repo))
            )
        if context.wants_tags:
            request.set_tags(LazyTags(request, self.gateway, repo))
        if context.wants_prs:
            request.set_pull_requests(
                LazyPullRequests(
                    request, self.gateway, repo, self.pull_request_cache, self._web_url(repo)
                )
            )
        return request

    # --- discovery ---

    async def retrieve(
        self,
        criteria: SourceCriteria | None,
        observer: HeadObserver,
        log: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        """Run a discovery pass, feeding matching heads to ``observer``.

        Raises:
            AbortError: No repository configured, or the remote failed.
            RateLimitedError: Azure DevOps throttled us; retry later.
        """
        log = self._bind(log)
        try:
            repo = await self.get_repository()
            log.info("Examining repository")
            context = self.new_context(criteria, observer)
            async with self._new_request(context, repo, log) as request:
                await self._discover(request, repo)
        except (WrappedError, TransportError) as e:
            cause = unwrap(e)
            log.error("Discovery failed", error=str(cause))
            if isinstance(cause, TransportError) and not isinstance(cause, RateLimitedError):
                raise AbortError(
                    f"Failed to examine {self.project}/{self.repository}: {cause}"
                ) from cause
            # Rate limiting keeps its own type so the caller can back off.
            raise cause from None
        log.info("Finished examining")

    async def _discover(self, request: Request, repo: GitRepository) -> None:
        context = request.context
        if context.wants_branches and await self._discover_branches(request, repo):
            return
        if context.wants_prs and await self._discover_pull_requests(request, repo):
            return
        if context.wants_tags:
            await self._discover_tags(request, repo)

    def _criteria_witness(self, log: structlog.stdlib.BoundLogger) -> Witness:
        def witness(head: Head, revision: Revision | None, matched: bool) -> None:
            if matched:
                log.info("Met criteria", head=head.name)
            else:
                log.info("Does not meet criteria", head=head.name)

        return witness

    def _mergeability_witness(
        self,
        pr: GitPullRequest,
        strategy: CheckoutStrategy,
        log: structlog.stdlib.BoundLogger,
    ) -> Witness:
        criteria_witness = self._criteria_witness(log)

        def witness(head: Head, revision: Revision | None, matched: bool) -> None:
            criteria_witness(head, revision, matched)
            if matched and pr.merge_status is not PullRequestAsyncStatus.SUCCEEDED:
                if strategy is CheckoutStrategy.MERGE:
                    log.warning("Not mergeable, build likely to fail", head=head.name)
                else:
                    log.info("Not mergeable, but will be built anyway", head=head.name)

        return witness

    async def _discover_branches(self, request: Request, repo: GitRepository) -> bool:
        log = request.log
        log.info("Checking branches")
        count = 0
        async with aclosing(request.branches()) as refs:
            async for ref in refs:
                head = classify_ref(ref)
                count += 1
                log.debug("Checking branch", branch=head.name, sha=short_sha(ref.object_id))
                revision = CommitRevision(head, ref.object_id)
                if await request.process(
                    head,
                    self._commit_probe_factory(repo, revision),
                    self._fixed_revision(revision),
                    self._criteria_witness(log),
                ):
                    log.info("Branches processed (query completed)", count=count)
                    return True
        log.info("Branches processed", count=count)
        return False

    async def _discover_pull_requests(self, request: Request, repo: GitRepository) -> bool:
        log = request.log
        log.info("Checking pull requests")
        count = 0
        async with aclosing(request.pull_requests()) as prs:
            async for pr in prs:
                count += 1
                pr_log = log.bind(pull_request=pr.pull_request_id)
                pr_log.info("Checking pull request", title=pr.title, source=pr.source_branch)
                origin = Origin.FORK if pr.is_fork else Origin.ORIGIN
                strategies = request.context.strategies_for(origin)
                if not strategies:
                    if pr.is_fork:
                        pr_log.info("Submitted from fork, skipping")
                    else:
                        pr_log.info("Submitted from origin repository, skipping")
                    continue
                for strategy in sorted(strategies):
                    head = self._pull_request_head(repo, pr, strategy, len(strategies))
                    if await request.process(
                        head,
                        self._pull_request_probe_factory(request, repo, pr),
                        self._pull_request_revision_factory(repo, pr),
                        self._mergeability_witness(pr, strategy, pr_log),
                    ):
                        log.info("Pull requests processed (query completed)", count=count)
                        return True
        log.info("Pull requests processed", count=count)
        return False

    async def _discover_tags(self, request: Request, repo: GitRepository) -> bool:
        log = request.log
        log.info("Checking tags")
        count = 0
        async with aclosing(request.tags()) as refs:
            async for ref in refs:
                if not ref.is_tag:
                    continue
                count += 1
                sha = ref.commit_id
                head = TagHead(ref.tag_name, await self._commit_timestamp(repo, sha, log))
                revision = CommitRevision(head, sha)
                if await request.process(
                    head,
                    self._commit_probe_factory(repo, revision),
                    self._fixed_revision(revision),
                    self._criteria_witness(log),
                ):
                    log.info("Tags processed (query completed)", count=count)
                    return True
        log.info("Tags processed", count=count)
        return False

    # --- factories ---

    def _commit_probe_factory(self, repo: GitRepository, revision: CommitRevision):
        async def create(head: Head) -> Probe:
            return Probe(self.gateway, repo, head, revision)

        return create

    @staticmethod
    def _fixed_revision(revision: Revision):
        async def create(head: Head) -> Revision:
            return revision

        return create

    def _pull_request_probe_factory(
        self, request: Request, repo: GitRepository, pr: GitPullRequest
    ):
        async def create(head: Head) -> Probe:
            assert isinstance(head, PullRequestHead)
            if await request.is_trusted(head):
                recorded = PullRequestRevision(
                    head,
                    base_sha=_commit_id(pr.last_merge_target_commit),
                    source_sha=_commit_id(pr.last_merge_source_commit),
                    merge_sha=_commit_id(pr.last_merge_commit) or None,
                )
                return Probe(self.gateway, repo, head, recorded)
            request.log.info("Not from a trusted source, probing target branch", head=head.name)
            return Probe(self.gateway, repo, head.target)

        return create

    def _pull_request_revision_factory(self, repo: GitRepository, pr: GitPullRequest):
        async def create(head: Head) -> Revision:
            assert isinstance(head, PullRequestHead)
            return await self._pull_request_revision(repo, head, pr)

        return create

    def _pull_request_head(
        self,
        repo: GitRepository,
        pr: GitPullRequest,
        strategy: CheckoutStrategy,
        strategy_count: int,
    ) -> PullRequestHead:
        if pr.fork_source is not None:
            fork_repo = pr.fork_source.repository
            source_owner = fork_repo.project.name
            source_repo = fork_repo.name
            origin = Origin.FORK
        else:
            source_owner = repo.project.name or self.project
            source_repo = repo.name
            origin = Origin.ORIGIN
        return PullRequestHead(
            name=pull_request_head_name(pr.pull_request_id, strategy, strategy_count),
            number=pr.pull_request_id,
            target=BranchHead(pr.target_branch),
            source_owner=source_owner,
            source_repo=source_repo,
            source_branch=pr.source_branch,
            origin=origin,
            checkout_strategy=strategy,
        )

    async def _pull_request_revision(
        self, repo: GitRepository, head: PullRequestHead, pr: GitPullRequest
    ) -> PullRequestRevision:
        base_sha = _commit_id(pr.last_merge_target_commit)
        if head.checkout_strategy is CheckoutStrategy.MERGE:
            # Merge revisions go stale with the target branch: use its current tip.
            target = await self.gateway.get_ref(repo, pr.target_ref_name.removeprefix("refs/"))
            if target is not None:
                base_sha = target.object_id
        return PullRequestRevision(
            head,
            base_sha=base_sha,
            source_sha=_commit_id(pr.last_merge_source_commit),
            merge_sha=_commit_id(pr.last_merge_commit) or None,
        )

    async def _commit_timestamp(
        self, repo: GitRepository, sha: str, log: structlog.stdlib.BoundLogger
    ) -> int:
        try:
            commit = await self.gateway.get_commit(repo, sha)
        except RateLimitedError:
            raise
        except TransportError as e:
            log.debug("Could not read commit timestamp", sha=short_sha(sha), error=str(e))
            return 0
        return commit.push_timestamp_millis if commit is not None else 0

    # --- resolution by name / head ---

    async def retrieve_by_name(
        self, head_name: str, log: structlog.stdlib.BoundLogger | None = None
    ) -> Revision | None:
        """Resolve a free-text name to a revision.

        Tries ``PR-<n>[-<strategy>]``, then a branch, then a tag. Not finding
        anything is a normal outcome and returns None.
        """
        log = self._bind(log)
        repo = await self.get_repository()
        context = self.new_context()

        match = PR_NAME_PATTERN.match(head_name)
        if match is not None:
            number = int(match.group(1))
            pr = await self.gateway.get_pull_request(repo, number)
            if pr is not None:
                origin = Origin.FORK if pr.is_fork else Origin.ORIGIN
                if context.wants_prs:
                    strategies = context.strategies_for(origin)
                else:
                    strategies = frozenset({CheckoutStrategy.MERGE})
                strategy = self._pick_strategy(head_name, number, match.group(2), strategies, log)
                if strategy is None:
                    return None
                head = self._pull_request_head(repo, pr, strategy, len(strategies))
                return await self._pull_request_revision(repo, head, pr)

        ref = await self.gateway.get_ref(repo, f"heads/{head_name}")
        if ref is not None:
            return CommitRevision(BranchHead(head_name), ref.object_id)

        ref = await self.gateway.get_ref(repo, f"tags/{head_name}", peeled=True)
        if ref is not None:
            timestamp = await self._commit_timestamp(repo, ref.commit_id, log)
            return CommitRevision(TagHead(head_name, timestamp), ref.commit_id)

        log.error("Could not resolve", name=head_name)
        return None

    @staticmethod
    def _pick_strategy(
        head_name: str,
        number: int,
        suffix: str | None,
        strategies: frozenset[CheckoutStrategy],
        log: structlog.stdlib.BoundLogger,
    ) -> CheckoutStrategy | None:
        options = sorted(f"PR-{number}-{s.lower()}" for s in strategies)
        if suffix is None:
            if len(strategies) == 1:
                return next(iter(strategies))
            log.warning(
                "Resolved as pull request but checkout strategy is indeterminate",
                name=head_name,
                number=number,
                options=options,
            )
            return None
        for strategy in strategies:
            if strategy.lower() == suffix.lower():
                return strategy
        log.warning(
            "Resolved as pull request but checkout strategy is unknown",
            name=head_name,
            number=number,
            strategy=suffix,
            options=options,
        )
        return None

    async def retrieve_names(self, log: structlog.stdlib.BoundLogger | None = None) -> set[str]:
        """Names of every head this source could build, without probing."""
        log = self._bind(log)
        repo = await self.get_repository()
        context = self.new_context()
        # Pull refs carry no fork information: cover the names of both classes.
        per_origin = [context.strategies_for(origin) for origin in Origin]
        single = any(len(strategies) == 1 for strategies in per_origin)
        multiple = any(len(strategies) > 1 for strategies in per_origin)
        all_strategies = frozenset().union(*per_origin)
        names: set[str] = set()
        for ref in await self.gateway.list_refs(repo):
            if ref.is_branch and context.wants_branches:
                names.add(ref.branch_name)
            elif ref.is_pull_request and context.wants_prs:
                number = ref.pull_request_number
                if number < 0:
                    continue
                if single:
                    names.add(f"PR-{number}")
                if multiple:
                    names.update(
                        pull_request_head_name(number, s, len(all_strategies))
                        for s in all_strategies
                    )
            elif ref.is_tag and context.wants_tags:
                names.add(ref.tag_name)
        log.debug("Listed head names", count=len(names))
        return names

    async def retrieve_head(
        self, head: Head, log: structlog.stdlib.BoundLogger | None = None
    ) -> Revision:
        """Current revision of a known head.

        Raises:
            NotFoundError: The head no longer exists.
        """
        log = self._bind(log)
        repo = await self.get_repository()
        log.debug("Resolving head", head=head.name)
        match head:
            case PullRequestHead():
                pr = await self.gateway.get_pull_request(repo, head.number)
                if pr is None:
                    raise NotFoundError(f"Pull request {head.number} cannot be found.")
                return await self._pull_request_revision(repo, head, pr)
            case TagHead():
                ref = await self.gateway.get_ref(repo, head.ref_name, peeled=True)
                if ref is None:
                    raise NotFoundError(f"Tag {head.name} cannot be found.")
                return CommitRevision(head, ref.commit_id)
            case BranchHead():
                ref = await self.gateway.get_ref(repo, head.ref_name)
                if ref is None:
                    raise NotFoundError(f"Branch {head.name} cannot be found.")
                return CommitRevision(head, ref.object_id)

    async def get_trusted_revision(
        self, revision: Revision, log: structlog.stdlib.BoundLogger | None = None
    ) -> Revision:
        """Revision whose build files may be used for ``revision``.

        Untrusted pull requests are built with the files of their target branch.
        """
        if not isinstance(revision, PullRequestRevision):
            return revision
        log = self._bind(log)
        repo = await self.get_repository()
        async with Request(self.new_context(), repo, self.project, log) as request:
            trusted = await request.is_trusted(revision.head)
        if trusted:
            return revision
        log.info(
            "Loading trusted files from base branch",
            base=revision.head.target.name,
            base_sha=short_sha(revision.base_sha),
            rather_than=short_sha(revision.source_sha),
        )
        return revision.target

    async def head_metadata(self, head: Head) -> HeadMetadata:
        """Links and titles to show next to a head."""
        repo = await self.get_repository()
        web_url = self._web_url(repo)
        match head:
            case PullRequestHead():
                metadata = self.pull_request_cache.metadata(head.number)
                if metadata is None:
                    await self._fill_pull_request_cache(repo, head.number, web_url)
                    metadata = self.pull_request_cache.metadata(head.number)
                return HeadMetadata(
                    url=pull_request_web_url(web_url, head.number),
                    title=metadata.title if metadata else "",
                    description=metadata.description if metadata else "",
                    contributor=self.pull_request_cache.contributor(head.number),
                )
            case TagHead():
                return HeadMetadata(url=f"{web_url}?version=GT{quote(head.name, safe='')}")
            case BranchHead():
                return HeadMetadata(
                    url=f"{web_url}?version=GB{quote(head.name, safe='')}",
                    primary=head.name == self._default_branch(repo),
                )

    async def _fill_pull_request_cache(
        self, repo: GitRepository, number: int, web_url: str
    ) -> None:
        try:
            pr = await self.gateway.get_pull_request(repo, number)
        except TransportError as e:
            logger.debug("Pull request metadata unavailable", number=number, error=str(e))
            return
        if pr is not None:
            self.pull_request_cache.record(pr, web_url)
