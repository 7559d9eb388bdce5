"""Settings and shared collaborators handed to every handler.

Settings are resolved once at startup from environment variables (see
`src/utils/config.py`) and never mutated afterwards. The `BotContext` bundles
them with the API clients, the repository mapper and the mirror repository.
"""

from dataclasses import dataclass
from pathlib import Path

from pydantic import BaseModel

from connectors.gitlab.gitlab_client import GITLAB_URL, GitLabClient
from src.bot.mapping import RepositoryMapper
from src.clients.github import GITHUB_API_URL, GitHubClient
from src.sync.git_sync import DEFAULT_MAKE_ANCESTOR_SCRIPT, GitMirror
from src.utils.config import (
    get_config_value,
    get_config_value_str,
    parse_pairs,
    require_config_value,
)

DEFAULT_BOT_NAME = "mirrorbot"


class BotSettings(BaseModel, frozen=True):
    github_access_token: str
    gitlab_access_token: str
    github_webhook_secret: str = ""
    gitlab_webhook_secret: str = ""
    github_api_url: str = GITHUB_API_URL
    gitlab_url: str = GITLAB_URL

    bot_name: str = DEFAULT_BOT_NAME
    bot_email: str = f"{DEFAULT_BOT_NAME}@users.noreply.github.com"
    port: int = 8000

    # ("owner/repo", "group/project") pairs
    repo_mappings: tuple[tuple[str, str], ...] = ()
    # GitHub owner -> team whose members may trigger CI
    team_mappings: dict[str, str] = {}

    mirror_path: Path = Path("mirror.git")
    make_ancestor_script: Path = DEFAULT_MAKE_ANCESTOR_SCRIPT

    max_concurrent_tasks: int = 16
    trace_poll_max_attempts: int = 10
    trace_poll_initial_delay: float = 2.0
    issue_closed_delay: float = 5.0
    image_not_found_repository: str = "coq/coq"

    @classmethod
    def from_env(cls) -> "BotSettings":
        """Build settings from environment variables.

        Raises:
            ValueError: If a required variable is missing or a mapping is malformed
        """
        bot_name = get_config_value_str("BOT_NAME", DEFAULT_BOT_NAME) or DEFAULT_BOT_NAME
        return cls(
            github_access_token=require_config_value("GITHUB_ACCESS_TOKEN"),
            gitlab_access_token=require_config_value("GITLAB_ACCESS_TOKEN"),
            github_webhook_secret=get_config_value_str("GITHUB_WEBHOOK_SECRET", "") or "",
            gitlab_webhook_secret=get_config_value_str("GITLAB_WEBHOOK_SECRET", "") or "",
            github_api_url=get_config_value_str("GITHUB_API_URL", GITHUB_API_URL),
            gitlab_url=get_config_value_str("GITLAB_URL", GITLAB_URL),
            bot_name=bot_name,
            bot_email=get_config_value_str(
                "BOT_EMAIL", f"{bot_name}@users.noreply.github.com"
            ),
            port=get_config_value("PORT", 8000),
            repo_mappings=tuple(parse_pairs(get_config_value_str("REPO_MAPPINGS"))),
            team_mappings=dict(parse_pairs(get_config_value_str("TEAM_MAPPINGS"))),
            mirror_path=Path(get_config_value_str("MIRROR_PATH", "mirror.git")),
            make_ancestor_script=Path(
                get_config_value_str("MAKE_ANCESTOR_SCRIPT", str(DEFAULT_MAKE_ANCESTOR_SCRIPT))
            ),
            max_concurrent_tasks=get_config_value("MAX_CONCURRENT_TASKS", 16),
            trace_poll_max_attempts=get_config_value("TRACE_POLL_MAX_ATTEMPTS", 10),
            image_not_found_repository=get_config_value_str(
                "IMAGE_NOT_FOUND_REPOSITORY", "coq/coq"
            ),
        )


@dataclass
class BotContext:
    """Everything a handler needs, passed explicitly instead of read from globals."""

    settings: BotSettings
    github: GitHubClient
    gitlab: GitLabClient
    mapper: RepositoryMapper
    mirror: GitMirror

    @classmethod
    def from_settings(cls, settings: BotSettings) -> "BotContext":
        return cls(
            settings=settings,
            github=GitHubClient(
                settings.github_access_token,
                api_url=settings.github_api_url,
                user_agent=settings.bot_name,
            ),
            gitlab=GitLabClient(settings.gitlab_access_token, gitlab_url=settings.gitlab_url),
            mapper=RepositoryMapper(settings.repo_mappings),
            mirror=GitMirror(
                path=settings.mirror_path,
                bot_name=settings.bot_name,
                bot_email=settings.bot_email,
                gitlab_url=settings.gitlab_url,
                gitlab_token=settings.gitlab_access_token,
                make_ancestor_script=settings.make_ancestor_script,
            ),
        )

    async def aclose(self) -> None:
        await self.github.aclose()
        await self.gitlab.aclose()
