"""Azure DevOps REST gateway.

Talks to the Git endpoints of an Azure DevOps collection with a personal
access token (Basic auth, empty user name). Every method maps 404 to
``None`` so callers can treat absence as a normal outcome.
"""

from typing import Any
from urllib.parse import quote

import httpx

from adosource.errors import RateLimitedError, TransportError
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
from adosource.gateway.protocol import RecursionLevel
from adosource.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_AZURE_DEVOPS_URL = "https://dev.azure.com"


def _raise_for_status(resp: httpx.Response) -> None:
    """Translate error responses into the branch source's exception types."""
    if resp.status_code == 429:
        retry_after = resp.headers.get("Retry-After")
        raise RateLimitedError(
            "Azure DevOps rate limit exceeded",
            retry_after=float(retry_after) if retry_after else None,
        )
    if resp.is_error:
        raise TransportError(
            f"Azure DevOps returned HTTP {resp.status_code} for {resp.request.url.path}",
            status_code=resp.status_code,
        )


class AzureDevOpsGateway:
    """httpx implementation of the Gateway protocol."""

    def __init__(
        self,
        server_url: str = DEFAULT_AZURE_DEVOPS_URL,
        personal_access_token: str = "",
        api_version: str = "5.0",
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._server_url = (server_url or DEFAULT_AZURE_DEVOPS_URL).rstrip("/")
        self._api_version = api_version
        self._client = httpx.AsyncClient(
            base_url=self._server_url,
            auth=httpx.BasicAuth("", personal_access_token),
            headers={"Accept": "application/json"},
            timeout=timeout_seconds,
            transport=transport,
        )

    # --- helpers ---

    def _repo_path(self, repo: GitRepository) -> str:
        project = quote(repo.project.name or repo.project.id, safe="")
        repository = quote(repo.id or repo.name, safe="")
        return f"/{project}/_apis/git/repositories/{repository}"

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> httpx.Response:
        query = {"api-version": self._api_version}
        if params:
            query.update({k: v for k, v in params.items() if v is not None})
        try:
            return await self._client.request(method, path, params=query, json=json)
        except httpx.HTTPError as e:
            raise TransportError(f"Azure DevOps request failed: {e}") from e

    async def _get_json(self, path: str, params: dict[str, Any] | None = None) -> Any | None:
        resp = await self._request("GET", path, params=params)
        if resp.status_code == 404:
            return None
        _raise_for_status(resp)
        return resp.json()

    async def _get_values(self, path: str, params: dict[str, Any] | None = None) -> list[Any]:
        data = await self._get_json(path, params=params)
        if data is None:
            return []
        return data.get("value", [])

    async def _post_status(self, path: str, status: GitStatusForCreation) -> GitStatus | None:
        resp = await self._request(
            "POST", path, json=status.model_dump(by_alias=True, mode="json")
        )
        if resp.status_code == 429 or resp.status_code >= 500:
            _raise_for_status(resp)
        if resp.is_error:
            logger.warning(
                "Status rejected by Azure DevOps",
                path=resp.request.url.path,
                status_code=resp.status_code,
            )
            return None
        return GitStatus.model_validate(resp.json())

    # --- Gateway protocol ---

    async def get_repository(self, project: str, repository: str) -> GitRepository | None:
        data = await self._get_json(
            f"/{quote(project, safe='')}/_apis/git/repositories/{quote(repository, safe='')}"
        )
        if data is None:
            return None
        return GitRepository.model_validate(data)

    async def list_refs(self, repo: GitRepository, filter: str = "") -> list[GitRef]:
        values = await self._get_values(
            f"{self._repo_path(repo)}/refs",
            params={"filter": filter or None, "peelTags": "true"},
        )
        return [GitRef.model_validate(v) for v in values]

    async def list_branches(self, repo: GitRepository) -> list[GitRef]:
        return await self.list_refs(repo, "heads/")

    async def list_tags(self, repo: GitRepository) -> list[GitRef]:
        return await self.list_refs(repo, "tags/")

    async def get_ref(
        self, repo: GitRepository, ref_name: str, peeled: bool = False
    ) -> GitRef | None:
        values = await self._get_values(
            f"{self._repo_path(repo)}/refs",
            params={"filter": ref_name, "peelTags": "true" if peeled else None},
        )
        # The filter is a prefix match; only an exact name counts.
        full_name = f"refs/{ref_name}"
        for value in values:
            ref = GitRef.model_validate(value)
            if ref.name == full_name:
                return ref
        return None

    async def list_pull_requests(
        self,
        repo: GitRepository,
        status: PullRequestStatus = PullRequestStatus.ACTIVE,
        source_branch: str | None = None,
    ) -> list[GitPullRequest]:
        params = {
            "searchCriteria.status": str(status),
            "searchCriteria.sourceRefName": (
                f"refs/heads/{source_branch}" if source_branch else None
            ),
        }
        values = await self._get_values(f"{self._repo_path(repo)}/pullRequests", params=params)
        return [GitPullRequest.model_validate(v) for v in values]

    async def get_pull_request(self, repo: GitRepository, number: int) -> GitPullRequest | None:
        data = await self._get_json(f"{self._repo_path(repo)}/pullRequests/{number}")
        if data is None:
            return None
        return GitPullRequest.model_validate(data)

    async def get_commit(self, repo: GitRepository, sha: str) -> GitCommit | None:
        data = await self._get_json(f"{self._repo_path(repo)}/commits/{sha}")
        if data is None:
            return None
        return GitCommit.model_validate(data)

    async def list_commits(self, repo: GitRepository, sha: str, top: int) -> list[GitCommit]:
        values = await self._get_values(
            f"{self._repo_path(repo)}/commits",
            params={
                "searchCriteria.itemVersion.version": sha,
                "searchCriteria.itemVersion.versionType": "commit",
                "searchCriteria.$top": top,
            },
        )
        return [GitCommit.model_validate(v) for v in values]

    async def get_item(self, repo: GitRepository, path: str, version: str) -> GitItem | None:
        data = await self._get_json(
            f"{self._repo_path(repo)}/items",
            params={
                "path": path,
                "versionDescriptor.version": version,
                "versionDescriptor.versionType": "commit",
            },
        )
        if data is None:
            return None
        return GitItem.model_validate(data)

    async def get_items(
        self,
        repo: GitRepository,
        path: str,
        version: str,
        recursion: RecursionLevel = RecursionLevel.ONE_LEVEL,
    ) -> list[GitItem] | None:
        data = await self._get_json(
            f"{self._repo_path(repo)}/items",
            params={
                "scopePath": path,
                "recursionLevel": str(recursion),
                "versionDescriptor.version": version,
                "versionDescriptor.versionType": "commit",
            },
        )
        if data is None:
            return None
        return [GitItem.model_validate(v) for v in data.get("value", [])]

    async def get_item_stream(self, repo: GitRepository, path: str, version: str) -> bytes | None:
        resp = await self._request(
            "GET",
            f"{self._repo_path(repo)}/items",
            params={
                "path": path,
                "download": "true",
                "$format": "octetStream",
                "versionDescriptor.version": version,
                "versionDescriptor.versionType": "commit",
            },
        )
        if resp.status_code == 404:
            return None
        _raise_for_status(resp)
        return resp.content

    async def create_commit_status(
        self, repo: GitRepository, sha: str, status: GitStatusForCreation
    ) -> GitStatus | None:
        return await self._post_status(f"{self._repo_path(repo)}/commits/{sha}/statuses", status)

    async def create_pull_request_status(
        self, repo: GitRepository, number: int, status: GitStatusForCreation
    ) -> GitStatus | None:
        return await self._post_status(
            f"{self._repo_path(repo)}/pullRequests/{number}/statuses", status
        )

    async def close(self) -> None:
        await self._client.aclose()
