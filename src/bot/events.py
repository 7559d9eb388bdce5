"""Domain model for decoded webhook deliveries.

Every delivery decodes to exactly one variant of the closed `Event` union.
Models are frozen: they are built once per delivery and discarded when the
handler completes.
"""

from enum import Enum

from pydantic import BaseModel


class Issue(BaseModel, frozen=True):
    """Identity of an issue or pull request: (owner, repo, number)."""

    owner: str
    repo: str
    number: int

    @property
    def repo_full_name(self) -> str:
        return f"{self.owner}/{self.repo}"

    def __str__(self) -> str:
        return f"{self.owner}/{self.repo}#{self.number}"


class IssueInfo(BaseModel, frozen=True):
    issue: Issue
    id: str  # GraphQL node id
    user: str
    labels: tuple[str, ...] = ()
    milestoned: bool = False
    is_pull_request: bool = False
    body: str | None = None


class RemoteRefInfo(BaseModel, frozen=True):
    repo_url: str
    name: str


class CommitInfo(BaseModel, frozen=True):
    branch: RemoteRefInfo
    sha: str


class PullRequestAction(str, Enum):
    OPENED = "opened"
    REOPENED = "reopened"
    SYNCHRONIZED = "synchronize"
    CLOSED = "closed"


class PullRequestInfo(BaseModel, frozen=True):
    issue: IssueInfo
    base: CommitInfo
    head: CommitInfo
    merged: bool = False
    last_commit_message: str | None = None


class ProjectCard(BaseModel, frozen=True):
    """A project board card. `issue=None` marks a free-form note."""

    issue: Issue | None
    column_id: int


class CommentInfo(BaseModel, frozen=True):
    body: str
    author: str
    pull_request: PullRequestInfo | None = None
    issue: IssueInfo


class CheckRunInfo(BaseModel, frozen=True):
    id: int
    node_id: str
    url: str
    external_id: str = ""


class PushInfo(BaseModel, frozen=True):
    owner: str
    repo: str
    base_ref: str
    commit_messages: tuple[str, ...] = ()


class CIEventCommon(BaseModel, frozen=True):
    """Fields shared by GitLab job and pipeline deliveries."""

    project_id: int
    project_path: str
    repo_url: str
    head_commit: str
    branch: str


class JobInfo(BaseModel, frozen=True):
    common: CIEventCommon
    build_id: int
    build_name: str
    build_status: str
    failure_reason: str | None = None
    allow_fail: bool = False


class PipelineInfo(BaseModel, frozen=True):
    common: CIEventCommon
    pipeline_id: int
    state: str


# ========== Event variants ==========


class NoOp(BaseModel, frozen=True):
    reason: str


class UnsupportedEvent(BaseModel, frozen=True):
    description: str


class IssueOpened(BaseModel, frozen=True):
    issue: IssueInfo


class IssueClosed(BaseModel, frozen=True):
    issue: IssueInfo


class RemovedFromProject(BaseModel, frozen=True):
    card: ProjectCard


class PullRequestUpdated(BaseModel, frozen=True):
    action: PullRequestAction
    pull_request: PullRequestInfo


class BranchCreated(BaseModel, frozen=True):
    ref: RemoteRefInfo


class TagCreated(BaseModel, frozen=True):
    ref: RemoteRefInfo


class CommentCreated(BaseModel, frozen=True):
    comment: CommentInfo


class CheckRunCreated(BaseModel, frozen=True):
    check_run: CheckRunInfo


class CheckRunReRequested(BaseModel, frozen=True):
    check_run: CheckRunInfo


class PushEvent(BaseModel, frozen=True):
    push: PushInfo


class JobEvent(BaseModel, frozen=True):
    job: JobInfo


class PipelineEvent(BaseModel, frozen=True):
    pipeline: PipelineInfo


Event = (
    NoOp
    | UnsupportedEvent
    | IssueOpened
    | IssueClosed
    | RemovedFromProject
    | PullRequestUpdated
    | BranchCreated
    | TagCreated
    | CommentCreated
    | CheckRunCreated
    | CheckRunReRequested
    | PushEvent
    | JobEvent
    | PipelineEvent
)
