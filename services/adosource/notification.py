"""Build status notification.

Reports build state back to Azure DevOps as commit statuses (and, for pull
request heads, pull request statuses):

    job scheduled for a PR head   -> PENDING (QueuedJobNotifier)
    build checks out its sources  -> PENDING
    build finished                -> SUCCEEDED, FAILED or ERROR

The status context is a fixed ``(genre, "pr" | "commit")`` pair so that a
branch policy configured against it survives job renames. Delivery is best
effort: failures are logged, never raised into the build.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol

import structlog

from adosource.config import settings
from adosource.errors import NotFoundError, RateLimitedError, SourceError
from adosource.gateway.models import (
    GitRepository,
    GitStatusContext,
    GitStatusForCreation,
    GitStatusState,
)
from adosource.logging_config import get_logger
from adosource.models import (
    BranchHead,
    CommitRevision,
    Head,
    PullRequestHead,
    PullRequestRevision,
    RealBranchType,
    Revision,
    short_sha,
)

if TYPE_CHECKING:
    from adosource.source import AzureDevOpsSource

logger = get_logger(__name__)


class BuildResult(StrEnum):
    SUCCESS = "SUCCESS"
    UNSTABLE = "UNSTABLE"
    FAILURE = "FAILURE"
    NOT_BUILT = "NOT_BUILT"
    ABORTED = "ABORTED"


@dataclass(frozen=True)
class BuildInfo:
    display_name: str
    url: str
    result: BuildResult | None = None  # None while the build is running


@dataclass(frozen=True)
class NotificationContext:
    head: Head
    job_url: str
    build: BuildInfo | None = None


@dataclass(frozen=True)
class NotificationRequest:
    url: str
    message: str
    state: GitStatusState
    ignore_error: bool = False


class NotificationStrategy(Protocol):
    def notifications(
        self, context: NotificationContext, log: structlog.stdlib.BoundLogger
    ) -> list[NotificationRequest]:
        ...


class DefaultNotificationStrategy:
    """One status per build, mapped from the build result."""

    def notifications(
        self, context: NotificationContext, log: structlog.stdlib.BoundLogger
    ) -> list[NotificationRequest]:
        build = context.build
        if build is None:
            return [
                NotificationRequest(
                    context.job_url,
                    "This commit is scheduled to be built.",
                    GitStatusState.PENDING,
                )
            ]
        match build.result:
            case None:
                message, state = "This commit is being built", GitStatusState.PENDING
            case BuildResult.SUCCESS:
                message, state = "This commit looks good", GitStatusState.SUCCEEDED
            case BuildResult.UNSTABLE:
                message, state = "This commit has test failures", GitStatusState.FAILED
            case BuildResult.FAILURE:
                message, state = "This commit cannot be built", GitStatusState.ERROR
            case BuildResult.ABORTED:
                message, state = "The build of this commit was aborted", GitStatusState.ERROR
            case _:
                message, state = (
                    "Something is wrong with the build of this commit",
                    GitStatusState.ERROR,
                )
        return [NotificationRequest(build.url, message, state)]


def resolve_head_commit(revision: Revision) -> str | None:
    """Commit a status is posted against. Pull requests report on the merge commit."""
    match revision:
        case CommitRevision(sha=sha):
            return sha
        case PullRequestRevision(merge_sha=merge_sha):
            return merge_sha
        case _:
            raise ValueError(f"did not recognize {revision!r}")


def status_context_name(head: Head) -> str:
    if isinstance(head, PullRequestHead):
        return "pr"
    if isinstance(head, BranchHead) and head.real_branch_type is RealBranchType.PR:
        return "pr"
    return "commit"


class BuildStatusNotifier:
    """Posts the statuses that a source's notification strategies ask for."""

    def __init__(self, source: AzureDevOpsSource, genre: str | None = None) -> None:
        self.source = source
        self.genre = genre or settings.notification.context_genre

    async def notify(
        self,
        revision: Revision,
        job_url: str,
        build: BuildInfo | None = None,
        log: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        log = (log if log is not None else logger).bind(
            project=self.source.project, repository=self.source.repository
        )
        context = self.source.new_context()
        if context.notifications_disabled or settings.notification.disabled:
            return
        sha = resolve_head_commit(revision)
        if not sha:
            log.warning("No commit to notify", head=revision.head.name)
            return
        strategies = list(context.notification_strategies) or [DefaultNotificationStrategy()]
        head = revision.head
        try:
            repo = await self.source.get_repository()
            for strategy in strategies:
                # TODO let strategies combine their requests into one notification
                details = strategy.notifications(NotificationContext(head, job_url, build), log)
                for request in details:
                    await self._post(repo, head, sha, request, log)
        except SourceError as e:
            log.warning("Could not update commit status", sha=short_sha(sha), error=str(e))
            return
        if build is not None and build.result is not None:
            log.info("Commit status set", sha=short_sha(sha), result=str(build.result))

    async def _post(
        self,
        repo: GitRepository,
        head: Head,
        sha: str,
        request: NotificationRequest,
        log: structlog.stdlib.BoundLogger,
    ) -> None:
        status = GitStatusForCreation(
            state=request.state,
            description=request.message,
            target_url=request.url,
            context=GitStatusContext(genre=self.genre, name=status_context_name(head)),
        )
        gateway = self.source.gateway
        created = await gateway.create_commit_status(repo, sha, status)
        if created is None and not request.ignore_error:
            log.warning(
                "Could not update commit status, please check if your scan credentials "
                "belong to a member of the project and have the Code (status) scope",
                sha=short_sha(sha),
                state=str(request.state),
            )
        if isinstance(head, PullRequestHead):
            created = await gateway.create_pull_request_status(repo, head.number, status)
            if created is None and not request.ignore_error:
                log.warning(
                    "Could not update pull request status",
                    number=head.number,
                    state=str(request.state),
                )


# --- Queue-time notification ---


@dataclass(frozen=True)
class QueuedItem:
    id: int
    head: Head
    job_url: str


class QueueView(Protocol):
    def has_left(self, item_id: int) -> bool:
        """True once the item is no longer waiting (started or cancelled)."""
        ...


class QueuedJobNotifier:
    """Marks pull request commits PENDING as soon as their job is queued.

    Work runs in background tasks, at most ``max_workers`` at a time, so
    scheduling is never held up by Azure DevOps. A task that finds its item
    already left the queue does nothing; the checkout-time notification
    takes over from there.
    """

    def __init__(
        self,
        source: AzureDevOpsSource,
        queue: QueueView,
        notifier: BuildStatusNotifier | None = None,
        max_workers: int | None = None,
    ) -> None:
        self.source = source
        self.queue = queue
        self.notifier = notifier or BuildStatusNotifier(source)
        self._semaphore = asyncio.Semaphore(max_workers or settings.notification.queue_workers)
        self._tasks: set[asyncio.Task[None]] = set()

    def on_enter_waiting(self, item: QueuedItem) -> asyncio.Task[None] | None:
        if not isinstance(item.head, PullRequestHead):
            return None
        if settings.notification.disabled or self.source.new_context().notifications_disabled:
            return None
        task = asyncio.get_running_loop().create_task(self._notify_pending(item))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _notify_pending(self, item: QueuedItem) -> None:
        async with self._semaphore:
            try:
                revision = await self.source.retrieve_head(item.head)
                if self.queue.has_left(item.id):
                    logger.debug("Queue item left before pending status", item_id=item.id)
                    return
                await self.notifier.notify(revision, item.job_url)
            except NotFoundError as e:
                logger.warning(
                    "Could not update commit status to PENDING. "
                    "Valid scan credentials? Valid scopes?",
                    head=item.head.name,
                    error=str(e),
                )
            except RateLimitedError:
                logger.warning(
                    "Could not update commit status to PENDING. Rate limit exhausted",
                    head=item.head.name,
                )
            except SourceError as e:
                logger.warning(
                    "Could not update commit status to PENDING",
                    head=item.head.name,
                    error=str(e),
                )

    async def drain(self) -> None:
        """Wait for every outstanding notification task."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
