"""Azure DevOps Git REST resources.

Only the fields the branch source reads are modelled. Unknown fields are
ignored so newer API versions keep parsing.
"""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

REFS_PREFIX = "refs/"
HEADS_PREFIX = "refs/heads/"
TAGS_PREFIX = "refs/tags/"
PULL_PREFIX = "refs/pull/"


class AzureModel(BaseModel):
    """Base for all REST resources: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class GitStatusState(StrEnum):
    NOT_SET = "notSet"
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ERROR = "error"
    NOT_APPLICABLE = "notApplicable"


class PullRequestAsyncStatus(StrEnum):
    """Mergeability as computed by Azure DevOps."""

    CONFLICTS = "conflicts"
    FAILURE = "failure"
    NOT_SET = "notSet"
    QUEUED = "queued"
    REJECTED_BY_POLICY = "rejectedByPolicy"
    SUCCEEDED = "succeeded"


class PullRequestStatus(StrEnum):
    ACTIVE = "active"
    ABANDONED = "abandoned"
    COMPLETED = "completed"
    ALL = "all"


class TeamProjectReference(AzureModel):
    id: str = ""
    name: str = ""


class GitRepository(AzureModel):
    id: str = ""
    name: str
    url: str = ""
    remote_url: str = ""
    web_url: str = ""
    default_branch: str | None = None
    is_fork: bool = False
    project: TeamProjectReference = Field(default_factory=TeamProjectReference)

    @property
    def default_branch_name(self) -> str | None:
        """Default branch without the refs/heads/ prefix."""
        if not self.default_branch:
            return None
        return self.default_branch.removeprefix(HEADS_PREFIX)


class GitRef(AzureModel):
    name: str
    object_id: str
    peeled_object_id: str | None = None

    @property
    def is_branch(self) -> bool:
        return self.name.startswith(HEADS_PREFIX)

    @property
    def is_tag(self) -> bool:
        return self.name.startswith(TAGS_PREFIX)

    @property
    def is_pull_request(self) -> bool:
        return self.name.startswith(PULL_PREFIX)

    @property
    def branch_name(self) -> str:
        return self.name.removeprefix(HEADS_PREFIX)

    @property
    def tag_name(self) -> str:
        return self.name.removeprefix(TAGS_PREFIX)

    @property
    def pull_request_number(self) -> int:
        """PR number from refs/pull/<n>/..., or -1 when this is not a pull ref."""
        if not self.is_pull_request:
            return -1
        number, _, _ = self.name.removeprefix(PULL_PREFIX).partition("/")
        return int(number) if number.isdigit() else -1

    @property
    def commit_id(self) -> str:
        """Commit the ref points at, looking through annotated tags."""
        return self.peeled_object_id or self.object_id


class GitUserDate(AzureModel):
    name: str = ""
    email: str = ""
    date: datetime | None = None


class GitPushRef(AzureModel):
    push_id: int | None = None
    date: datetime | None = None


class GitCommit(AzureModel):
    commit_id: str
    author: GitUserDate = Field(default_factory=GitUserDate)
    committer: GitUserDate = Field(default_factory=GitUserDate)
    comment: str = ""
    parents: list[str] = Field(default_factory=list)
    push: GitPushRef | None = None

    @property
    def push_timestamp_millis(self) -> int:
        """When the commit reached the server, in epoch millis (0 if unknown)."""
        if self.push is None or self.push.date is None:
            return 0
        return int(self.push.date.timestamp() * 1000)


class GitCommitRef(AzureModel):
    commit_id: str


class IdentityRef(AzureModel):
    id: str = ""
    display_name: str = ""
    unique_name: str = ""
    image_url: str = ""


class GitForkRef(AzureModel):
    name: str = ""
    object_id: str = ""
    repository: GitRepository


class GitPullRequest(AzureModel):
    pull_request_id: int
    title: str = ""
    description: str = ""
    url: str = ""
    status: PullRequestStatus = PullRequestStatus.ACTIVE
    source_ref_name: str
    target_ref_name: str
    merge_status: PullRequestAsyncStatus = PullRequestAsyncStatus.NOT_SET
    fork_source: GitForkRef | None = None
    last_merge_commit: GitCommitRef | None = None
    last_merge_source_commit: GitCommitRef | None = None
    last_merge_target_commit: GitCommitRef | None = None
    created_by: IdentityRef = Field(default_factory=IdentityRef)
    repository: GitRepository | None = None

    @property
    def is_fork(self) -> bool:
        return self.fork_source is not None

    @property
    def source_branch(self) -> str:
        return self.source_ref_name.removeprefix(HEADS_PREFIX)

    @property
    def target_branch(self) -> str:
        return self.target_ref_name.removeprefix(HEADS_PREFIX)


class ItemType(StrEnum):
    """Git object type of an item, as reported by the items API."""

    BLOB = "blob"
    TREE = "tree"
    COMMIT = "commit"
    TAG = "tag"


class GitItem(AzureModel):
    path: str
    object_id: str = ""
    commit_id: str = ""
    git_object_type: ItemType | None = None
    is_folder: bool = False
    is_sym_link: bool = False


class GitStatusContext(AzureModel):
    genre: str
    name: str


class GitStatusForCreation(AzureModel):
    state: GitStatusState
    description: str = ""
    target_url: str = ""
    context: GitStatusContext


class GitStatus(AzureModel):
    id: int | None = None
    state: GitStatusState
    description: str = ""
    target_url: str = ""
    context: GitStatusContext | None = None
