"""Shared fixtures: a bot context wired to mocked API clients and a fake git runner."""

from collections.abc import Sequence
from pathlib import Path
from unittest.mock import Mock

import pytest

from connectors.gitlab.gitlab_client import GitLabClient
from src.bot.context import BotContext, BotSettings
from src.bot.events import (
    CommitInfo,
    Issue,
    IssueInfo,
    PullRequestInfo,
    RemoteRefInfo,
)
from src.bot.mapping import RepositoryMapper
from src.clients.github import GitHubClient
from src.sync.git_sync import GitMirror, ProcessOutcome, ProcessResult


class FakeGitRunner:
    """Records commands instead of running them.

    `failing` holds the step kinds that should fail: "fetch", "push", "init",
    "config" or "make_ancestor".
    """

    def __init__(self):
        self.calls: list[list[str]] = []
        self.failing: set[str] = set()
        self.outcome = ProcessOutcome.NON_ZERO_EXIT

    @staticmethod
    def kind(args: Sequence[str]) -> str:
        return args[1] if args[0] == "git" else "make_ancestor"

    def calls_of(self, kind: str) -> list[list[str]]:
        return [call for call in self.calls if self.kind(call) == kind]

    async def __call__(self, args: Sequence[str], cwd: Path) -> ProcessResult:
        self.calls.append(list(args))
        if self.kind(args) in self.failing:
            return ProcessResult(command=" ".join(args), outcome=self.outcome, code=1)
        return ProcessResult(command=" ".join(args), outcome=ProcessOutcome.SUCCESS, code=0)


@pytest.fixture
def git_runner():
    return FakeGitRunner()


@pytest.fixture
def bot_settings():
    return BotSettings(
        github_access_token="gh-token",
        gitlab_access_token="gl-token",
        github_webhook_secret="gh-secret",
        gitlab_webhook_secret="gl-secret",
        bot_name="mirrorbot",
        repo_mappings=(("coq/coq", "coq/coq"), ("owner/repo", "group/project")),
        team_mappings={"martijn-org": "martijn-team"},
        mirror_path=Path("/tmp/mirror.git"),
        make_ancestor_script=Path("/opt/mirrorbot/make_ancestor.sh"),
        issue_closed_delay=0.0,
    )


@pytest.fixture
def github_client():
    github = Mock(spec=GitHubClient)
    github.get_existing_status_check.return_value = False
    github.get_team_membership.return_value = True
    github.get_pull_request_backport_metadata.return_value = None
    github.get_pull_request_project_cards.return_value = []
    github.get_issue_closer_info.return_value = None
    return github


@pytest.fixture
def gitlab_client():
    gitlab = Mock(spec=GitLabClient)
    gitlab.get_job_trace.return_value = ""
    gitlab.artifact_exists.return_value = True
    return gitlab


@pytest.fixture
def bot_context(bot_settings, github_client, gitlab_client, git_runner):
    return BotContext(
        settings=bot_settings,
        github=github_client,
        gitlab=gitlab_client,
        mapper=RepositoryMapper(bot_settings.repo_mappings),
        mirror=GitMirror(
            path=bot_settings.mirror_path,
            bot_name=bot_settings.bot_name,
            bot_email="mirrorbot@users.noreply.github.com",
            gitlab_url="https://gitlab.com",
            gitlab_token="gl-token",
            make_ancestor_script=bot_settings.make_ancestor_script,
            runner=git_runner,
        ),
    )


@pytest.fixture
def make_pull_request():
    def _make(
        owner: str = "coq",
        repo: str = "coq",
        number: int = 42,
        labels: tuple[str, ...] = (),
        merged: bool = False,
        milestoned: bool = False,
        user: str = "contributor",
    ) -> PullRequestInfo:
        return PullRequestInfo(
            issue=IssueInfo(
                issue=Issue(owner=owner, repo=repo, number=number),
                id="PR_node",
                user=user,
                labels=labels,
                milestoned=milestoned,
                is_pull_request=True,
            ),
            base=CommitInfo(
                branch=RemoteRefInfo(repo_url=f"https://github.com/{owner}/{repo}", name="master"),
                sha="base0000",
            ),
            head=CommitInfo(
                branch=RemoteRefInfo(repo_url=f"https://github.com/{user}/{repo}", name="feature"),
                sha="head1111",
            ),
            merged=merged,
        )

    return _make
