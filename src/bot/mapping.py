"""Bidirectional mapping between GitHub repositories and GitLab project paths.

Both tables are built once at startup and are read-only afterwards, so they
can be shared by every concurrent handler. A missing mapping is always an
error: an event is never routed to a guessed counterpart.
"""

from collections.abc import Iterable
from urllib.parse import urlparse

from src.bot.errors import MappingError


class RepositoryMapper:
    """Lookup between `owner/repo` on GitHub and `group/project` on GitLab."""

    def __init__(self, pairs: Iterable[tuple[str, str]]):
        github_to_gitlab: dict[str, str] = {}
        gitlab_to_github: dict[str, str] = {}

        for github_repo, gitlab_project in pairs:
            if github_repo in github_to_gitlab:
                raise ValueError(f"Duplicate GitHub repository in mappings: {github_repo}")
            if gitlab_project in gitlab_to_github:
                raise ValueError(f"Duplicate GitLab project in mappings: {gitlab_project}")
            github_to_gitlab[github_repo] = gitlab_project
            gitlab_to_github[gitlab_project] = github_repo

        self._github_to_gitlab = github_to_gitlab
        self._gitlab_to_github = gitlab_to_github

    def __len__(self) -> int:
        return len(self._github_to_gitlab)

    def gitlab_project_of_github(self, owner: str, repo: str) -> str:
        """Return the GitLab project path mirroring `owner/repo`.

        Raises:
            MappingError: If no mapping is configured
        """
        key = f"{owner}/{repo}"
        try:
            return self._github_to_gitlab[key]
        except KeyError:
            raise MappingError(f"No GitLab project is mapped to GitHub repository {key}") from None

    def github_repo_of_gitlab_project(self, project_path: str) -> tuple[str, str]:
        """Return the (owner, repo) GitHub pair mirrored by a GitLab project path.

        Raises:
            MappingError: If no mapping is configured
        """
        try:
            github_repo = self._gitlab_to_github[project_path]
        except KeyError:
            raise MappingError(
                f"No GitHub repository is mapped to GitLab project {project_path}"
            ) from None
        owner, _, repo = github_repo.partition("/")
        return owner, repo

    def github_repo_of_gitlab_url(self, url: str) -> tuple[str, str]:
        """Same as github_repo_of_gitlab_project for a project URL (https://gitlab.com/group/project)."""
        project_path = urlparse(url).path.strip("/").removesuffix(".git")
        return self.github_repo_of_gitlab_project(project_path)
