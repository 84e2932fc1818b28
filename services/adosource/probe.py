"""Read-only, point-in-time views of a head's tree.

A snapshot resolves its commit once and evaluates every path against it,
so it never moves with the ref. Once closed, every operation raises
ClosedError.
"""

from __future__ import annotations

import threading
from types import TracebackType

from adosource.errors import ClosedError, NotFoundError
from adosource.gateway.models import GitRepository
from adosource.gateway.protocol import Gateway
from adosource.logging_config import get_logger
from adosource.models import (
    CheckoutStrategy,
    CommitRevision,
    Head,
    PullRequestRevision,
    Revision,
    short_sha,
)
from adosource.scm_file import FileType, ScmFile, normalize_path

logger = get_logger(__name__)

__all__ = ["FileType", "Probe", "Snapshot", "revision_sha"]


def revision_sha(revision: Revision | None) -> str | None:
    """Commit a revision's tree should be read at, if the revision pins one."""
    match revision:
        case CommitRevision(sha=sha):
            return sha
        case PullRequestRevision() if revision.head.checkout_strategy is CheckoutStrategy.MERGE:
            return revision.merge_sha
        case PullRequestRevision(source_sha=source_sha):
            return source_sha
        case _:
            return None


class Snapshot:
    """Shared machinery for Probe and FileSystem."""

    def __init__(
        self,
        gateway: Gateway,
        repo: GitRepository,
        head: Head,
        revision: Revision | None = None,
    ) -> None:
        self.gateway = gateway
        self.repo = repo
        self.head = head
        self.revision = revision
        self._lock = threading.Lock()
        self._open = True
        self._sha: str | None = revision_sha(revision)

    @property
    def ref(self) -> str:
        return self.head.ref_name

    @property
    def is_open(self) -> bool:
        with self._lock:
            return self._open

    def check_open(self) -> None:
        with self._lock:
            if not self._open:
                raise ClosedError()

    async def version(self) -> str:
        """The commit every read is evaluated against, resolved on first use."""
        self.check_open()
        if self._sha is None:
            ref = await self.gateway.get_ref(self.repo, self.ref)
            if ref is None:
                raise NotFoundError(f"Cannot resolve {self.ref}")
            self._sha = ref.object_id
            logger.debug("Snapshot resolved", ref=self.ref, sha=short_sha(self._sha))
        return self._sha

    async def last_modified(self) -> int:
        """Push time of the snapshot's commit in epoch millis, 0 if unknown or closed."""
        if not self.is_open:
            return 0
        try:
            sha = await self.version()
        except NotFoundError:
            return 0
        commit = await self.gateway.get_commit(self.repo, sha)
        if commit is None:
            return 0
        return commit.push_timestamp_millis

    def root(self) -> ScmFile:
        self.check_open()
        return ScmFile.root(self)

    async def close(self) -> None:
        with self._lock:
            self._open = False

    async def __aenter__(self) -> Snapshot:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()


class Probe(Snapshot):
    """What criteria look at to decide whether a head is interesting."""

    def __init__(
        self,
        gateway: Gateway,
        repo: GitRepository,
        head: Head,
        revision: Revision | None = None,
    ) -> None:
        super().__init__(gateway, repo, head, revision)
        self._stats: dict[str, FileType] = {}

    @property
    def name(self) -> str:
        return self.head.name

    async def stat(self, path: str) -> FileType:
        self.check_open()
        key = normalize_path(path)
        cached = self._stats.get(key)
        if cached is None:
            try:
                cached = await self.root().child(key.lstrip("/")).type()
            except NotFoundError:
                # No commit behind the ref (conflicting merge, deleted target).
                logger.debug("Nothing to probe", ref=self.ref, path=key)
                cached = FileType.NONEXISTENT
            self._stats[key] = cached
        self.check_open()
        return cached
