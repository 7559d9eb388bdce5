import hashlib
import hmac
import json
import logging
import re
from typing import Any

from src.bot.errors import DecodeError
from src.bot.events import (
    BranchCreated,
    CheckRunCreated,
    CheckRunInfo,
    CheckRunReRequested,
    CommentCreated,
    CommentInfo,
    CommitInfo,
    Event,
    Issue,
    IssueClosed,
    IssueInfo,
    IssueOpened,
    NoOp,
    ProjectCard,
    PullRequestAction,
    PullRequestInfo,
    PullRequestUpdated,
    PushEvent,
    PushInfo,
    RemoteRefInfo,
    RemovedFromProject,
    TagCreated,
    UnsupportedEvent,
)
from src.gateway.verification import BaseSigningSecretVerifier, SignatureStatus
from src.utils.size_formatting import format_size

logger = logging.getLogger(__name__)

PULL_REQUEST_URL_PATTERN = re.compile(r"https://github\.com/[^/]*/[^/]*/pull/[0-9]*")
CARD_CONTENT_URL_PATTERN = re.compile(
    r"https://api\.github\.com/repos/([^/]+)/([^/]+)/issues/([0-9]+)"
)

# Events whose variant is selected by the payload "action" field
ACTION_EVENTS = frozenset(
    {
        "pull_request",
        "issues",
        "project_card",
        "issue_comment",
        "pull_request_review",
        "check_run",
    }
)


class GitHubWebhookVerifier(BaseSigningSecretVerifier):
    """Verifier for GitHub webhooks using HMAC signatures."""

    source_type = "github"
    verify_func = staticmethod(lambda h, b, s: verify_github_webhook(h, b, s))


def verify_github_webhook(headers: dict[str, str], body: bytes, secret: str) -> SignatureStatus:
    """Verify GitHub webhook signature.

    X-Hub-Signature-256 is preferred, the legacy SHA-1 X-Hub-Signature header is still accepted.
    A delivery without any signature header is reported as unsigned.
    """
    if signature := headers.get("x-hub-signature-256"):
        prefix, digestmod = "sha256=", hashlib.sha256
    elif signature := headers.get("x-hub-signature"):
        prefix, digestmod = "sha1=", hashlib.sha1
    else:
        return SignatureStatus.UNSIGNED

    if not signature.startswith(prefix):
        raise ValueError(f"Invalid signature format - expected {prefix} prefix")

    expected = prefix + hmac.new(secret.encode("utf-8"), body, digestmod).hexdigest()

    if not hmac.compare_digest(signature.encode("utf-8"), expected.encode("utf-8")):
        raise ValueError("Webhook signed but with wrong signature.")

    return SignatureStatus.VALID


def extract_github_webhook_metadata(
    headers: dict[str, str], body_str: str
) -> dict[str, str | int | bool]:
    """Extract metadata from GitHub webhook for observability.

    Safely extracts key information without failing webhook processing.

    Args:
        headers: Webhook headers
        body_str: Webhook body as string

    Returns:
        Dictionary containing extracted metadata with at least payload_size
    """
    metadata: dict[str, str | int | bool] = {
        "payload_size": len(body_str),
        "payload_size_human": format_size(len(body_str)),
    }

    try:
        metadata["event_type"] = headers.get("x-github-event", "unknown")
        metadata["delivery_id"] = headers.get("x-github-delivery", "")
        metadata["hook_id"] = headers.get("x-github-hook-id", "")

        try:
            payload = json.loads(body_str)
        except (json.JSONDecodeError, ValueError):
            metadata["parse_error"] = "Failed to parse JSON"
            return metadata

        if not isinstance(payload, dict):
            return metadata

        metadata["action"] = payload.get("action") or ""
        if isinstance(repository := payload.get("repository"), dict):
            metadata["repository"] = repository.get("full_name") or ""
        if isinstance(sender := payload.get("sender"), dict):
            metadata["sender_type"] = sender.get("type") or ""

    except Exception as e:
        # Log but don't fail
        logger.error(f"Error extracting GitHub webhook metadata: {e}")
        metadata["extraction_error"] = str(e)

    return metadata


# ========== Defensive field access ==========


def _member(json_obj: Any, key: str) -> Any:
    if not isinstance(json_obj, dict):
        raise DecodeError(f"Json type error: expected an object when reading field {key!r}")
    return json_obj.get(key)


def _require_str(json_obj: Any, key: str) -> str:
    value = _member(json_obj, key)
    if not isinstance(value, str):
        raise DecodeError(f"Json type error: expected a string for field {key!r}")
    return value


def _optional_str(json_obj: Any, key: str) -> str | None:
    value = _member(json_obj, key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise DecodeError(f"Json type error: expected a string or null for field {key!r}")
    return value


def _require_int(json_obj: Any, key: str) -> int:
    value = _member(json_obj, key)
    if not isinstance(value, int) or isinstance(value, bool):
        raise DecodeError(f"Json type error: expected an integer for field {key!r}")
    return value


def _require_list(json_obj: Any, key: str) -> list[Any]:
    value = _member(json_obj, key)
    if not isinstance(value, list):
        raise DecodeError(f"Json type error: expected a list for field {key!r}")
    return value


# ========== Payload decoders ==========


def issue_info_of_json(payload: dict[str, Any], issue_json: Any = None) -> IssueInfo:
    if issue_json is None:
        issue_json = _member(payload, "issue")
    repo_json = _member(payload, "repository")

    return IssueInfo(
        issue=Issue(
            owner=_require_str(_member(repo_json, "owner"), "login"),
            repo=_require_str(repo_json, "name"),
            number=_require_int(issue_json, "number"),
        ),
        id=_require_str(issue_json, "node_id"),
        user=_require_str(_member(issue_json, "user"), "login"),
        labels=tuple(
            _require_str(label, "name") for label in _require_list(issue_json, "labels")
        ),
        milestoned=_member(issue_json, "milestone") is not None,
        is_pull_request=bool(
            PULL_REQUEST_URL_PATTERN.match(_require_str(issue_json, "html_url"))
        ),
        body=_optional_str(issue_json, "body"),
    )


def commit_info_of_json(commit_json: Any) -> CommitInfo:
    return CommitInfo(
        branch=RemoteRefInfo(
            repo_url=_require_str(_member(commit_json, "repo"), "html_url"),
            name=_require_str(commit_json, "ref"),
        ),
        sha=_require_str(commit_json, "sha"),
    )


def pull_request_info_of_json(payload: dict[str, Any]) -> PullRequestInfo:
    pr_json = _member(payload, "pull_request")
    return PullRequestInfo(
        issue=issue_info_of_json(payload, issue_json=pr_json),
        base=commit_info_of_json(_member(pr_json, "base")),
        head=commit_info_of_json(_member(pr_json, "head")),
        merged=_member(pr_json, "merged_at") is not None,
    )


def project_card_of_json(payload: dict[str, Any]) -> ProjectCard:
    card_json = _member(payload, "project_card")
    column_id = _require_int(card_json, "column_id")

    match _member(card_json, "content_url"):
        case None:
            return ProjectCard(issue=None, column_id=column_id)
        case str() as content_url:
            matched = CARD_CONTENT_URL_PATTERN.match(content_url)
            if not matched:
                raise DecodeError("Could not parse content_url field.")
            owner, repo, number = matched.groups()
            return ProjectCard(
                issue=Issue(owner=owner, repo=repo, number=int(number)), column_id=column_id
            )
        case _:
            raise DecodeError("content_url field has unexpected type.")


def comment_info_of_json(payload: dict[str, Any], review_comment: bool = False) -> CommentInfo:
    comment_json = _member(payload, "review" if review_comment else "comment")
    pull_request = pull_request_info_of_json(payload) if review_comment else None

    # Body of review comments can be null
    body = _optional_str(comment_json, "body") or ""

    return CommentInfo(
        body=body,
        author=_require_str(_member(comment_json, "user"), "login"),
        pull_request=pull_request,
        issue=pull_request.issue if pull_request else issue_info_of_json(payload),
    )


def check_run_info_of_json(payload: dict[str, Any]) -> CheckRunInfo:
    check_run = _member(payload, "check_run")
    return CheckRunInfo(
        id=_require_int(check_run, "id"),
        node_id=_require_str(check_run, "node_id"),
        url=_require_str(check_run, "url"),
        external_id=_optional_str(check_run, "external_id") or "",
    )


def push_info_of_json(payload: dict[str, Any]) -> PushInfo:
    repo_json = _member(payload, "repository")
    return PushInfo(
        owner=_require_str(_member(repo_json, "owner"), "login"),
        repo=_require_str(repo_json, "name"),
        base_ref=_require_str(payload, "ref"),
        commit_messages=tuple(
            _require_str(commit, "message") for commit in _require_list(payload, "commits")
        ),
    )


def github_action(event: str, action: str, payload: dict[str, Any]) -> Event:
    match (event, action):
        case ("pull_request", "opened" | "reopened" | "synchronize" | "closed"):
            return PullRequestUpdated(
                action=PullRequestAction(action),
                pull_request=pull_request_info_of_json(payload),
            )
        case ("issues", "opened"):
            return IssueOpened(issue=issue_info_of_json(payload))
        case ("issues", "closed"):
            return IssueClosed(issue=issue_info_of_json(payload))
        case ("project_card", "deleted"):
            return RemovedFromProject(card=project_card_of_json(payload))
        case ("issue_comment", "created"):
            return CommentCreated(comment=comment_info_of_json(payload))
        case ("pull_request_review", "submitted"):
            return CommentCreated(comment=comment_info_of_json(payload, review_comment=True))
        case ("check_run", "created"):
            return CheckRunCreated(check_run=check_run_info_of_json(payload))
        case ("check_run", "rerequested"):
            return CheckRunReRequested(check_run=check_run_info_of_json(payload))
        case _:
            return NoOp(reason="Unhandled GitHub action.")


def github_event(event: str, payload: dict[str, Any]) -> Event:
    if event in ACTION_EVENTS:
        return github_action(event, _require_str(payload, "action"), payload)

    match event:
        case "create":
            ref_info = RemoteRefInfo(
                repo_url=_require_str(_member(payload, "repository"), "html_url"),
                name=_require_str(payload, "ref"),
            )
            match _require_str(payload, "ref_type"):
                case "branch":
                    return BranchCreated(ref=ref_info)
                case "tag":
                    return TagCreated(ref=ref_info)
                case ref_type:
                    raise DecodeError(f"Unexpected ref_type: {ref_type}")
        case "push":
            return PushEvent(push=push_info_of_json(payload))
        case _:
            return UnsupportedEvent(description=f"Unhandled GitHub event {event}.")


def decode_github_webhook(headers: dict[str, str], body: bytes | str) -> Event:
    """Decode a GitHub delivery into a single domain event.

    Args:
        headers: Request headers with lower-cased keys
        body: Raw request body

    Raises:
        DecodeError: If the delivery is not a GitHub webhook or its payload is malformed
    """
    event = headers.get("x-github-event")
    if not event:
        raise DecodeError("Not a GitHub webhook.")

    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise DecodeError(f"Json error: {e}") from e

    if not isinstance(payload, dict):
        raise DecodeError("Json type error: expected an object at the top level")

    return github_event(event, payload)
