"""GitHub connector: webhook verification and decoding."""

from connectors.github.github_webhook_handler import (
    GitHubWebhookVerifier,
    decode_github_webhook,
    extract_github_webhook_metadata,
    verify_github_webhook,
)

__all__ = [
    # Webhook Handlers
    "GitHubWebhookVerifier",
    "verify_github_webhook",
    "decode_github_webhook",
    "extract_github_webhook_metadata",
]
