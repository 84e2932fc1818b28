"""
Remote gateway protocol for Azure DevOps Repos.

Defines the narrow interface the discovery engine, probes and notifiers
consume. Absence is reported as ``None`` (or an empty list), never as an
exception; transport failures raise TransportError / RateLimitedError.
"""

from enum import StrEnum
from typing import Protocol, runtime_checkable

from adosource.gateway.models import (
    GitCommit,
    GitItem,
    GitPullRequest,
    GitRef,
    GitRepository,
    GitStatus,
    GitStatusForCreation,
    PullRequestStatus,
)


class RecursionLevel(StrEnum):
    NONE = "none"
    ONE_LEVEL = "oneLevel"
    FULL = "full"


@runtime_checkable
class Gateway(Protocol):
    """Protocol defining the Azure DevOps Git operations used by the source.

    All methods are async. The gateway is bound to one collection URL and
    one set of credentials.
    """

    async def get_repository(self, project: str, repository: str) -> GitRepository | None:
        """Look up a repository by project and repository name (or id).

        Returns:
            The repository, or None if it does not exist or is not visible.
        """
        ...

    async def list_refs(self, repo: GitRepository, filter: str = "") -> list[GitRef]:
        """List refs whose name (without ``refs/``) starts with ``filter``."""
        ...

    async def list_branches(self, repo: GitRepository) -> list[GitRef]:
        """List ``refs/heads/*``."""
        ...

    async def list_tags(self, repo: GitRepository) -> list[GitRef]:
        """List ``refs/tags/*`` with peeled object ids."""
        ...

    async def get_ref(
        self, repo: GitRepository, ref_name: str, peeled: bool = False
    ) -> GitRef | None:
        """Get a single ref.

        Args:
            repo: Target repository.
            ref_name: Ref name without the ``refs/`` prefix, e.g. ``heads/main``.
            peeled: Ask the server to resolve annotated tags to their commit.

        Returns:
            The ref whose full name is exactly ``refs/<ref_name>``, or None.
        """
        ...

    async def list_pull_requests(
        self,
        repo: GitRepository,
        status: PullRequestStatus = PullRequestStatus.ACTIVE,
        source_branch: str | None = None,
    ) -> list[GitPullRequest]:
        """List pull requests, optionally only those from one source branch."""
        ...

    async def get_pull_request(self, repo: GitRepository, number: int) -> GitPullRequest | None:
        """Get a pull request by id. Returns None if not found."""
        ...

    async def get_commit(self, repo: GitRepository, sha: str) -> GitCommit | None:
        """Get a commit (with push info). Returns None if not found."""
        ...

    async def list_commits(self, repo: GitRepository, sha: str, top: int) -> list[GitCommit]:
        """List up to ``top`` commits reachable from ``sha``, newest first."""
        ...

    async def get_item(self, repo: GitRepository, path: str, version: str) -> GitItem | None:
        """Get item metadata at a commit. Returns None if the path does not exist."""
        ...

    async def get_items(
        self,
        repo: GitRepository,
        path: str,
        version: str,
        recursion: RecursionLevel = RecursionLevel.ONE_LEVEL,
    ) -> list[GitItem] | None:
        """List items under ``path`` at a commit.

        Returns:
            The items (the folder itself may be included), or None if the
            path does not exist.
        """
        ...

    async def get_item_stream(self, repo: GitRepository, path: str, version: str) -> bytes | None:
        """Download raw file content at a commit. Returns None if not found."""
        ...

    async def create_commit_status(
        self, repo: GitRepository, sha: str, status: GitStatusForCreation
    ) -> GitStatus | None:
        """Post a commit status.

        Returns:
            The created status, or None if the server rejected it.
        """
        ...

    async def create_pull_request_status(
        self, repo: GitRepository, number: int, status: GitStatusForCreation
    ) -> GitStatus | None:
        """Post a pull-request level status. Returns None if rejected."""
        ...

    async def close(self) -> None:
        """Release any resources held by the gateway."""
        ...
