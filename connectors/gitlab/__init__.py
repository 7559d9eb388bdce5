"""GitLab connector for CI job and pipeline events."""

from connectors.gitlab.gitlab_client import GitLabClient
from connectors.gitlab.gitlab_webhook_handler import (
    GitLabWebhookVerifier,
    decode_gitlab_webhook,
    extract_gitlab_webhook_metadata,
    verify_gitlab_webhook,
)

__all__ = [
    # Client
    "GitLabClient",
    # Webhook Handlers
    "GitLabWebhookVerifier",
    "verify_gitlab_webhook",
    "decode_gitlab_webhook",
    "extract_gitlab_webhook_metadata",
]
