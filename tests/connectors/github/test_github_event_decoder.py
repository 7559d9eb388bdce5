"""Tests for decoding GitHub webhook deliveries into events."""

import json

import pytest

from connectors.github import decode_github_webhook
from connectors.github.github_webhook_handler import extract_github_webhook_metadata
from src.bot.errors import DecodeError
from src.bot.events import (
    BranchCreated,
    CheckRunReRequested,
    CommentCreated,
    IssueClosed,
    IssueOpened,
    NoOp,
    PullRequestAction,
    PullRequestUpdated,
    PushEvent,
    RemovedFromProject,
    TagCreated,
    UnsupportedEvent,
)

REPOSITORY = {
    "name": "r",
    "owner": {"login": "o"},
    "html_url": "https://github.com/o/r",
}


def issue_json(number: int = 7, html_url: str | None = None, **overrides):
    issue = {
        "number": number,
        "node_id": "I_kwDO",
        "user": {"login": "alice"},
        "labels": [{"name": "a"}, {"name": "b"}],
        "milestone": None,
        "html_url": html_url or f"https://github.com/o/r/issues/{number}",
        "body": "Some text",
    }
    issue.update(overrides)
    return issue


def pull_request_json(merged_at: str | None = None):
    return {
        **issue_json(html_url="https://github.com/o/r/pull/7"),
        "base": {
            "ref": "master",
            "sha": "base0000",
            "repo": {"html_url": "https://github.com/o/r"},
        },
        "head": {
            "ref": "feature",
            "sha": "head1111",
            "repo": {"html_url": "https://github.com/alice/r"},
        },
        "merged_at": merged_at,
    }


def decode(event: str, payload) -> object:
    return decode_github_webhook({"x-github-event": event}, json.dumps(payload).encode())


class TestEnvelope:
    def test_missing_event_header(self):
        with pytest.raises(DecodeError, match="Not a GitHub webhook"):
            decode_github_webhook({}, b"{}")

    def test_invalid_json(self):
        with pytest.raises(DecodeError, match="Json error"):
            decode_github_webhook({"x-github-event": "push"}, b"{not json")

    def test_non_object_payload(self):
        with pytest.raises(DecodeError):
            decode("push", [1, 2])

    def test_unknown_event(self):
        event = decode("fork", {"repository": REPOSITORY})

        assert event == UnsupportedEvent(description="Unhandled GitHub event fork.")

    def test_unknown_action(self):
        event = decode("issues", {"action": "labeled", "repository": REPOSITORY})

        assert isinstance(event, NoOp)


class TestIssues:
    def test_issue_opened(self):
        event = decode(
            "issues", {"action": "opened", "issue": issue_json(), "repository": REPOSITORY}
        )

        assert isinstance(event, IssueOpened)
        info = event.issue
        assert (info.issue.owner, info.issue.repo, info.issue.number) == ("o", "r", 7)
        assert str(info.issue) == "o/r#7"
        assert info.labels == ("a", "b")
        assert info.user == "alice"
        assert info.is_pull_request is False
        assert info.milestoned is False

    def test_issue_closed_with_milestone(self):
        payload = {
            "action": "closed",
            "issue": issue_json(milestone={"number": 3}),
            "repository": REPOSITORY,
        }

        event = decode("issues", payload)

        assert isinstance(event, IssueClosed)
        assert event.issue.milestoned is True

    def test_missing_number_is_type_error(self):
        issue = issue_json()
        del issue["number"]

        with pytest.raises(DecodeError, match="number"):
            decode("issues", {"action": "opened", "issue": issue, "repository": REPOSITORY})


class TestPullRequests:
    @pytest.mark.parametrize("action", ["opened", "reopened", "synchronize", "closed"])
    def test_pull_request_actions(self, action):
        event = decode(
            "pull_request",
            {"action": action, "pull_request": pull_request_json(), "repository": REPOSITORY},
        )

        assert isinstance(event, PullRequestUpdated)
        assert event.action is PullRequestAction(action)
        pr = event.pull_request
        assert pr.issue.is_pull_request is True
        assert pr.base.branch.name == "master"
        assert pr.head.branch.repo_url == "https://github.com/alice/r"
        assert pr.head.sha == "head1111"
        assert pr.merged is False

    def test_merged_pull_request(self):
        event = decode(
            "pull_request",
            {
                "action": "closed",
                "pull_request": pull_request_json(merged_at="2020-01-01T00:00:00Z"),
                "repository": REPOSITORY,
            },
        )

        assert event.pull_request.merged is True

    def test_review_is_a_comment(self):
        event = decode(
            "pull_request_review",
            {
                "action": "submitted",
                "review": {"body": None, "user": {"login": "bob"}},
                "pull_request": pull_request_json(),
                "repository": REPOSITORY,
            },
        )

        assert isinstance(event, CommentCreated)
        assert event.comment.body == ""
        assert event.comment.author == "bob"
        assert event.comment.pull_request is not None
        assert event.comment.issue.is_pull_request is True


class TestProjectCards:
    def payload(self, content_url):
        return {
            "action": "deleted",
            "project_card": {"column_id": 123, "content_url": content_url},
            "repository": REPOSITORY,
        }

    def test_card_with_issue(self):
        event = decode("project_card", self.payload("https://api.github.com/repos/o/r/issues/9"))

        assert isinstance(event, RemovedFromProject)
        assert str(event.card.issue) == "o/r#9"
        assert event.card.column_id == 123

    def test_note_card(self):
        event = decode("project_card", self.payload(None))

        assert event.card.issue is None

    def test_unparseable_content_url(self):
        with pytest.raises(DecodeError, match="Could not parse content_url"):
            decode("project_card", self.payload("https://example.com/whatever"))

    def test_non_string_content_url(self):
        with pytest.raises(DecodeError, match="unexpected type"):
            decode("project_card", self.payload(42))


class TestOtherEvents:
    def test_comment_created(self):
        event = decode(
            "issue_comment",
            {
                "action": "created",
                "comment": {"body": "@bot run CI now", "user": {"login": "carol"}},
                "issue": issue_json(html_url="https://github.com/o/r/pull/7"),
                "repository": REPOSITORY,
            },
        )

        assert isinstance(event, CommentCreated)
        assert event.comment.issue.is_pull_request is True
        assert event.comment.pull_request is None

    def test_check_run_rerequested(self):
        event = decode(
            "check_run",
            {
                "action": "rerequested",
                "check_run": {
                    "id": 1,
                    "node_id": "CR_1",
                    "url": "https://api.github.com/x",
                    "external_id": "o/r,job,5",
                },
                "repository": REPOSITORY,
            },
        )

        assert isinstance(event, CheckRunReRequested)
        assert event.check_run.external_id == "o/r,job,5"

    def test_push(self):
        event = decode(
            "push",
            {
                "ref": "refs/heads/v8.11",
                "commits": [{"message": "first"}, {"message": "second"}],
                "repository": REPOSITORY,
            },
        )

        assert isinstance(event, PushEvent)
        assert event.push.base_ref == "refs/heads/v8.11"
        assert event.push.commit_messages == ("first", "second")

    @pytest.mark.parametrize("ref_type,variant", [("branch", BranchCreated), ("tag", TagCreated)])
    def test_create(self, ref_type, variant):
        event = decode("create", {"ref": "x", "ref_type": ref_type, "repository": REPOSITORY})

        assert isinstance(event, variant)
        assert event.ref.repo_url == "https://github.com/o/r"

    def test_create_with_unexpected_ref_type(self):
        with pytest.raises(DecodeError, match="Unexpected ref_type: note"):
            decode("create", {"ref": "x", "ref_type": "note", "repository": REPOSITORY})


def test_metadata_survives_invalid_json():
    metadata = extract_github_webhook_metadata({"x-github-event": "push"}, "not json")

    assert metadata["event_type"] == "push"
    assert metadata["parse_error"] == "Failed to parse JSON"
    assert metadata["payload_size"] == 8
