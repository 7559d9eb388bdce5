import os
from pathlib import Path
from unittest.mock import patch

import pytest

from src.bot.context import BotSettings

REQUIRED = {"GITHUB_ACCESS_TOKEN": "gh", "GITLAB_ACCESS_TOKEN": "gl"}


class TestBotSettingsFromEnv:
    def test_defaults(self):
        with patch.dict(os.environ, REQUIRED, clear=True):
            settings = BotSettings.from_env()

        assert settings.bot_name == "mirrorbot"
        assert settings.bot_email == "mirrorbot@users.noreply.github.com"
        assert settings.gitlab_url == "https://gitlab.com"
        assert settings.repo_mappings == ()
        assert settings.max_concurrent_tasks == 16
        assert settings.mirror_path == Path("mirror.git")

    def test_mappings_and_overrides(self):
        env = {
            **REQUIRED,
            "BOT_NAME": "coqbot",
            "REPO_MAPPINGS": "coq/coq=coq/coq,owner/repo=group/project",
            "TEAM_MAPPINGS": "coq=pushers",
            "GITLAB_WEBHOOK_SECRET": "0123",
            "MAX_CONCURRENT_TASKS": "4",
        }
        with patch.dict(os.environ, env, clear=True):
            settings = BotSettings.from_env()

        assert settings.bot_email == "coqbot@users.noreply.github.com"
        assert settings.repo_mappings == (("coq/coq", "coq/coq"), ("owner/repo", "group/project"))
        assert settings.team_mappings == {"coq": "pushers"}
        assert settings.gitlab_webhook_secret == "0123"
        assert settings.max_concurrent_tasks == 4

    def test_missing_token(self):
        with patch.dict(os.environ, {"GITHUB_ACCESS_TOKEN": "gh"}, clear=True):
            with pytest.raises(ValueError, match="GITLAB_ACCESS_TOKEN"):
                BotSettings.from_env()
