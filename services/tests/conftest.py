"""
Top-level test configuration for adosource.
"""

import os
from datetime import UTC, datetime

# Ensure test-friendly defaults
os.environ.setdefault("ADOSOURCE_JSON_LOGS", "false")
os.environ.setdefault("ADOSOURCE_LOG_LEVEL", "DEBUG")
os.environ.setdefault("ADOSOURCE_NOTIFICATION__CONTEXT_GENRE", "jenkins")

import pytest  # noqa: E402

from adosource.gateway.models import (  # noqa: E402
    GitCommit,
    GitCommitRef,
    GitForkRef,
    GitItem,
    GitPullRequest,
    GitPushRef,
    GitRef,
    GitRepository,
    GitStatus,
    GitStatusForCreation,
    GitUserDate,
    IdentityRef,
    PullRequestAsyncStatus,
    PullRequestStatus,
    TeamProjectReference,
)
from adosource.gateway.protocol import RecursionLevel  # noqa: E402
from adosource.scm_file import normalize_path  # noqa: E402


class FakeGateway:
    """In-memory Azure DevOps with a recorded call log."""

    def __init__(self) -> None:
        self.repository: GitRepository | None = GitRepository(
            id="repo-1",
            name="widgets",
            web_url="https://dev.azure.com/acme/shop/_git/widgets",
            default_branch="refs/heads/master",
            project=TeamProjectReference(id="proj-1", name="shop"),
        )
        self.refs: list[GitRef] = []
        self.pull_requests: dict[int, GitPullRequest] = {}
        self.commits: dict[str, GitCommit] = {}
        self.trees: dict[str, dict[str, bytes]] = {}
        self.commit_statuses: list[tuple[str, GitStatusForCreation]] = []
        self.pull_request_statuses: list[tuple[int, GitStatusForCreation]] = []
        self.reject_statuses = False
        self.fail_with: Exception | None = None
        self.calls: list[tuple] = []

    # --- builders ---

    def add_branch(self, name: str, sha: str) -> GitRef:
        ref = GitRef(name=f"refs/heads/{name}", object_id=sha)
        self.refs.append(ref)
        return ref

    def add_tag(self, name: str, sha: str, peeled: str | None = None) -> GitRef:
        ref = GitRef(name=f"refs/tags/{name}", object_id=sha, peeled_object_id=peeled)
        self.refs.append(ref)
        return ref

    def add_commit(
        self,
        sha: str,
        message: str = "change",
        parents: list[str] | None = None,
        pushed: datetime | None = None,
    ) -> GitCommit:
        when = datetime(2024, 3, 1, 12, 0, 0, tzinfo=UTC)
        commit = GitCommit(
            commit_id=sha,
            author=GitUserDate(name="Ada", email="ada@example.com", date=when),
            committer=GitUserDate(name="Ada", email="ada@example.com", date=when),
            comment=message,
            parents=parents or [],
            push=GitPushRef(push_id=1, date=pushed) if pushed else None,
        )
        self.commits[sha] = commit
        return commit

    def add_file(self, sha: str, path: str, content: bytes = b"") -> None:
        self.trees.setdefault(sha, {})[normalize_path(path)] = content

    def add_pull_request(
        self,
        number: int,
        source: str,
        target: str = "master",
        fork_project: str | None = None,
        source_sha: str = "",
        target_sha: str = "",
        merge_sha: str = "",
        merge_status: PullRequestAsyncStatus = PullRequestAsyncStatus.SUCCEEDED,
        status: PullRequestStatus = PullRequestStatus.ACTIVE,
        title: str = "",
    ) -> GitPullRequest:
        fork = None
        if fork_project is not None:
            fork = GitForkRef(
                name=f"refs/heads/{source}",
                repository=GitRepository(
                    name="widgets-fork",
                    project=TeamProjectReference(name=fork_project),
                ),
            )
        pr = GitPullRequest(
            pull_request_id=number,
            title=title or f"PR {number}",
            description=f"Description of {number}",
            status=status,
            source_ref_name=f"refs/heads/{source}",
            target_ref_name=f"refs/heads/{target}",
            merge_status=merge_status,
            fork_source=fork,
            last_merge_source_commit=GitCommitRef(commit_id=source_sha or f"src{number}"),
            last_merge_target_commit=GitCommitRef(commit_id=target_sha or f"tgt{number}"),
            last_merge_commit=GitCommitRef(commit_id=merge_sha or f"mrg{number}"),
            created_by=IdentityRef(display_name="Grace", unique_name="grace@example.com"),
        )
        self.pull_requests[number] = pr
        self.refs.append(
            GitRef(name=f"refs/pull/{number}/merge", object_id=merge_sha or f"mrg{number}")
        )
        return pr

    def _check(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with

    # --- Gateway protocol ---

    async def get_repository(self, project, repository):
        self.calls.append(("get_repository", project, repository))
        return self.repository

    async def list_refs(self, repo, filter=""):
        self.calls.append(("list_refs", filter))
        self._check()
        return [r for r in self.refs if r.name.startswith(f"refs/{filter}")]

    async def list_branches(self, repo):
        self.calls.append(("list_branches",))
        self._check()
        return [r for r in self.refs if r.is_branch]

    async def list_tags(self, repo):
        self.calls.append(("list_tags",))
        self._check()
        return [r for r in self.refs if r.is_tag]

    async def get_ref(self, repo, ref_name, peeled=False):
        self.calls.append(("get_ref", ref_name))
        self._check()
        for ref in self.refs:
            if ref.name == f"refs/{ref_name}":
                return ref
        return None

    async def list_pull_requests(self, repo, status=PullRequestStatus.ACTIVE, source_branch=None):
        self.calls.append(("list_pull_requests", source_branch))
        self._check()
        return [
            pr
            for pr in self.pull_requests.values()
            if pr.status is status and (source_branch is None or pr.source_branch == source_branch)
        ]

    async def get_pull_request(self, repo, number):
        self.calls.append(("get_pull_request", number))
        self._check()
        return self.pull_requests.get(number)

    async def get_commit(self, repo, sha):
        self.calls.append(("get_commit", sha))
        return self.commits.get(sha)

    async def list_commits(self, repo, sha, top):
        self.calls.append(("list_commits", sha, top))
        ordered = list(reversed(list(self.commits.values())))
        ids = [c.commit_id for c in ordered]
        start = ids.index(sha) if sha in ids else 0
        return ordered[start : start + top]

    def _item(self, sha: str, path: str) -> GitItem | None:
        tree = self.trees.get(sha)
        if tree is None:
            return None
        path = normalize_path(path)
        if path in tree:
            return GitItem(path=path, commit_id=sha)
        prefix = "/" if path == "/" else f"{path}/"
        if any(p.startswith(prefix) for p in tree):
            return GitItem(path=path, commit_id=sha, is_folder=True)
        return None

    async def get_item(self, repo, path, version):
        self.calls.append(("get_item", path, version))
        return self._item(version, path)

    async def get_items(self, repo, path, version, recursion=RecursionLevel.ONE_LEVEL):
        self.calls.append(("get_items", path, version, recursion))
        own = self._item(version, path)
        if own is None:
            return None
        if recursion is RecursionLevel.NONE or not own.is_folder:
            return [own]
        prefix = "/" if own.path == "/" else f"{own.path}/"
        names = sorted(
            {p[len(prefix) :].split("/", 1)[0] for p in self.trees[version] if p.startswith(prefix)}
        )
        children = [self._item(version, prefix + name) for name in names]
        return [own] + [c for c in children if c is not None]

    async def get_item_stream(self, repo, path, version):
        self.calls.append(("get_item_stream", path, version))
        return self.trees.get(version, {}).get(normalize_path(path))

    async def create_commit_status(self, repo, sha, status):
        self.calls.append(("create_commit_status", sha))
        self.commit_statuses.append((sha, status))
        if self.reject_statuses:
            return None
        return GitStatus(id=len(self.commit_statuses), state=status.state, context=status.context)

    async def create_pull_request_status(self, repo, number, status):
        self.calls.append(("create_pull_request_status", number))
        self.pull_request_statuses.append((number, status))
        if self.reject_statuses:
            return None
        return GitStatus(id=len(self.pull_request_statuses), state=status.state)

    async def close(self):
        pass

    def count(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()
