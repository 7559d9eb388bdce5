"""GitLab webhook verification and decoding (job and pipeline hooks)."""

import hmac
import json
import logging
import re
from typing import Any
from urllib.parse import urlparse

from src.bot.errors import DecodeError
from src.bot.events import (
    CIEventCommon,
    Event,
    JobEvent,
    JobInfo,
    PipelineEvent,
    PipelineInfo,
    UnsupportedEvent,
)
from src.gateway.verification import BaseSigningSecretVerifier, SignatureStatus
from src.utils.size_formatting import format_size

logger = logging.getLogger(__name__)

# Commits created by the bot when it merges a PR into its base before testing
BOT_MERGE_COMMIT_PATTERN = re.compile(r"Bot merge .* into (.*)")

WEBHOOK_PASSWORD_MISMATCH = "Webhook password mismatch."


class GitLabWebhookVerifier(BaseSigningSecretVerifier):
    """Verifier for GitLab webhooks using the shared X-Gitlab-Token secret."""

    source_type = "gitlab"
    verify_func = staticmethod(lambda h, b, s: verify_gitlab_webhook(h, b, s))


def verify_gitlab_webhook(headers: dict[str, str], body: bytes, secret: str) -> SignatureStatus:
    """Verify the GitLab shared secret header.

    GitLab does not sign bodies: the configured secret is echoed back verbatim in
    X-Gitlab-Token. When no secret is configured every delivery is unsigned.
    """
    del body  # GitLab tokens do not cover the body
    if not secret:
        return SignatureStatus.UNSIGNED

    token = headers.get("x-gitlab-token", "")
    if not hmac.compare_digest(token.encode("utf-8"), secret.encode("utf-8")):
        raise ValueError(WEBHOOK_PASSWORD_MISMATCH)

    return SignatureStatus.VALID


def extract_gitlab_webhook_metadata(
    headers: dict[str, str], body_str: str
) -> dict[str, str | int | bool]:
    """Extract metadata from GitLab webhook for observability."""
    metadata: dict[str, str | int | bool] = {
        "payload_size": len(body_str),
        "payload_size_human": format_size(len(body_str)),
        "event_type": headers.get("x-gitlab-event", "unknown"),
    }

    try:
        payload = json.loads(body_str)
        if isinstance(payload, dict):
            metadata["object_kind"] = payload.get("object_kind") or ""
    except (json.JSONDecodeError, ValueError):
        metadata["parse_error"] = "Failed to parse JSON"

    return metadata


def _member(json_obj: Any, key: str) -> Any:
    if not isinstance(json_obj, dict):
        raise DecodeError(f"Json type error: expected an object when reading field {key!r}")
    return json_obj.get(key)


def _require_str(json_obj: Any, key: str) -> str:
    value = _member(json_obj, key)
    if not isinstance(value, str):
        raise DecodeError(f"Json type error: expected a string for field {key!r}")
    return value


def _require_int(json_obj: Any, key: str) -> int:
    value = _member(json_obj, key)
    if not isinstance(value, int) or isinstance(value, bool):
        raise DecodeError(f"Json type error: expected an integer for field {key!r}")
    return value


def extract_commit(commit_json: Any, fallback_sha: str | None = None) -> str:
    """Return the sha a CI event should report statuses against.

    When the bot tested a merge of the PR into its base, the tested commit message
    names the PR head sha and statuses must go there instead.
    In job hooks the commit sha is under "sha" ("id" is a number), in pipeline hooks
    only "id" is present and holds the sha.
    """
    if isinstance(commit_json, dict):
        message = commit_json.get("message")
        if isinstance(message, str) and (matched := BOT_MERGE_COMMIT_PATTERN.match(message)):
            return matched.group(1).strip()
        for key in ("sha", "id"):
            if isinstance(sha := commit_json.get(key), str):
                return sha

    if fallback_sha:
        return fallback_sha
    raise DecodeError("Could not find the commit sha of the CI event.")


def _project_path_of_url(repo_url: str) -> str:
    path = urlparse(repo_url).path.strip("/")
    if not path:
        raise DecodeError(f"Could not extract a project path from {repo_url!r}")
    return path.removesuffix(".git")


def job_info_of_json(payload: dict[str, Any]) -> JobInfo:
    repo_url = _require_str(_member(payload, "repository"), "homepage")
    project = _member(payload, "project")
    project_path = (
        _require_str(project, "path_with_namespace")
        if isinstance(project, dict) and "path_with_namespace" in project
        else _project_path_of_url(repo_url)
    )

    failure_reason = _member(payload, "build_failure_reason")
    allow_fail = _member(payload, "build_allow_failure")

    return JobInfo(
        common=CIEventCommon(
            project_id=_require_int(payload, "project_id"),
            project_path=project_path,
            repo_url=repo_url,
            head_commit=extract_commit(_member(payload, "commit"), _member(payload, "sha")),
            branch=_require_str(payload, "ref"),
        ),
        build_id=_require_int(payload, "build_id"),
        build_name=_require_str(payload, "build_name"),
        build_status=_require_str(payload, "build_status"),
        failure_reason=failure_reason if isinstance(failure_reason, str) else None,
        allow_fail=allow_fail is True,
    )


def pipeline_info_of_json(payload: dict[str, Any]) -> PipelineInfo:
    attributes = _member(payload, "object_attributes")
    project = _member(payload, "project")

    return PipelineInfo(
        common=CIEventCommon(
            project_id=_require_int(project, "id"),
            project_path=_require_str(project, "path_with_namespace"),
            repo_url=_require_str(project, "web_url"),
            head_commit=extract_commit(_member(payload, "commit"), _member(attributes, "sha")),
            branch=_require_str(attributes, "ref"),
        ),
        pipeline_id=_require_int(attributes, "id"),
        state=_require_str(attributes, "status"),
    )


def decode_gitlab_webhook(headers: dict[str, str], body: bytes | str) -> Event:
    """Decode a GitLab delivery into a single domain event.

    Raises:
        DecodeError: If the payload is malformed
    """
    event = headers.get("x-gitlab-event", "")

    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise DecodeError(f"Json error: {e}") from e

    if not isinstance(payload, dict):
        raise DecodeError("Json type error: expected an object at the top level")

    match event:
        case "Job Hook":
            return JobEvent(job=job_info_of_json(payload))
        case "Pipeline Hook":
            return PipelineEvent(pipeline=pipeline_info_of_json(payload))
        case _:
            return UnsupportedEvent(description=event or "missing X-Gitlab-Event header")
