"""Lightweight filesystem over a head, for reading files without a checkout."""

from __future__ import annotations

from typing import BinaryIO

from adosource.changelog import write_changelog
from adosource.config import settings
from adosource.errors import NotFoundError
from adosource.gateway.models import GitRepository
from adosource.gateway.protocol import Gateway
from adosource.logging_config import get_logger
from adosource.models import (
    BranchHead,
    CommitRevision,
    Head,
    PullRequestHead,
    PullRequestRevision,
    Revision,
    TagHead,
)
from adosource.probe import Snapshot

logger = get_logger(__name__)


class FileSystem(Snapshot):
    """Snapshot of a head's tree plus changelog support.

    Pull requests are read at the contributor's commit, not the merge.
    """

    def __init__(
        self,
        gateway: Gateway,
        repo: GitRepository,
        head: Head,
        revision: Revision | None = None,
    ) -> None:
        super().__init__(gateway, repo, head, revision)
        if isinstance(revision, PullRequestRevision):
            self._sha = revision.source_sha or None

    @classmethod
    async def open(
        cls,
        gateway: Gateway,
        repo: GitRepository,
        head: Head,
        revision: Revision | None = None,
    ) -> FileSystem:
        """Build a filesystem, resolving the head's current commit if no revision is given."""
        if revision is None:
            match head:
                case BranchHead() | TagHead():
                    ref = await gateway.get_ref(
                        repo, head.ref_name, peeled=isinstance(head, TagHead)
                    )
                    if ref is None:
                        raise NotFoundError(f"{head.name} cannot be found.")
                    revision = CommitRevision(head, ref.commit_id)
                case PullRequestHead():
                    # Resolved lazily from pull/<n>/head.
                    pass
        return cls(gateway, repo, head, revision)

    @property
    def ref(self) -> str:
        if isinstance(self.head, PullRequestHead):
            return f"pull/{self.head.number}/head"
        return self.head.ref_name

    async def changes_since(self, since: Revision | None, sink: BinaryIO) -> bool:
        """Write the changelog from ``since`` (exclusive) to this snapshot.

        Returns:
            True if at least one commit was written.
        """
        if since == self.revision:
            # Nothing can have changed between a revision and itself.
            return False
        version = await self.version()
        limit = settings.discovery.max_changelog_commits
        commits = await self.gateway.list_commits(self.repo, version, top=limit + 1)
        end = since.sha if isinstance(since, CommitRevision) else None
        count = write_changelog(commits, sink, stop_at=end, max_commits=limit)
        logger.debug("Changelog written", ref=self.ref, commits=count)
        return count > 0
