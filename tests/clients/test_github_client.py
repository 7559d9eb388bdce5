"""Tests for the GitHub REST/GraphQL client against a mocked transport."""

import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from src.bot.errors import RemoteAPIError
from src.bot.events import Issue
from src.clients.github import GitHubClient, ProjectCardPlacement


class Recorder:
    """httpx MockTransport handler returning canned responses in order."""

    def __init__(self, *responses: httpx.Response):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responses.pop(0)


def make_client(recorder: Recorder) -> GitHubClient:
    return GitHubClient("token", transport=httpx.MockTransport(recorder))


ISSUE = Issue(owner="coq", repo="coq", number=12)


class TestRestCalls:
    @pytest.mark.asyncio
    async def test_create_status_check(self):
        recorder = Recorder(httpx.Response(201, json={}))

        async with make_client(recorder) as client:
            await client.create_status_check(
                "coq/coq", "abc", state="failure", context="build", description="d", target_url="u"
            )

        (request,) = recorder.requests
        assert request.method == "POST"
        assert request.url.path == "/repos/coq/coq/statuses/abc"
        assert request.headers["Authorization"] == "Bearer token"
        assert json.loads(request.content) == {
            "state": "failure",
            "context": "build",
            "description": "d",
            "target_url": "u",
        }

    @pytest.mark.asyncio
    async def test_remove_label_quotes_name(self):
        recorder = Recorder(httpx.Response(200, json=[]))

        async with make_client(recorder) as client:
            await client.remove_label(ISSUE, "needs: rebase")

        assert recorder.requests[0].url.path == "/repos/coq/coq/issues/12/labels/needs: rebase"

    @pytest.mark.asyncio
    async def test_clear_milestone(self):
        recorder = Recorder(httpx.Response(200, json={}))

        async with make_client(recorder) as client:
            await client.set_milestone(ISSUE, None)

        assert json.loads(recorder.requests[0].content) == {"milestone": None}

    @pytest.mark.asyncio
    async def test_existing_status_check(self):
        recorder = Recorder(httpx.Response(200, json=[{"context": "a"}, {"context": "build"}]))

        async with make_client(recorder) as client:
            assert await client.get_existing_status_check("coq/coq", "abc", "build") is True

    @pytest.mark.asyncio
    async def test_existing_status_check_follows_pagination(self):
        next_page = "https://api.github.com/repositories/1/commits/abc/statuses?per_page=100&page=2"
        recorder = Recorder(
            httpx.Response(
                200,
                json=[{"context": f"job-{i}"} for i in range(100)],
                headers={"Link": f'<{next_page}>; rel="next"'},
            ),
            httpx.Response(200, json=[{"context": "build"}]),
        )

        async with make_client(recorder) as client:
            assert await client.get_existing_status_check("coq/coq", "abc", "build") is True

        first, second = recorder.requests
        assert first.url.params["per_page"] == "100"
        assert str(second.url) == next_page

    @pytest.mark.asyncio
    async def test_existing_status_check_missing_on_last_page(self):
        recorder = Recorder(httpx.Response(200, json=[{"context": "other"}]))

        async with make_client(recorder) as client:
            assert await client.get_existing_status_check("coq/coq", "abc", "build") is False

        assert len(recorder.requests) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response,expected",
        [
            (httpx.Response(200, json={"state": "active"}), True),
            (httpx.Response(200, json={"state": "pending"}), False),
            (httpx.Response(404, json={"message": "Not Found"}), False),
        ],
    )
    async def test_team_membership(self, response, expected):
        async with make_client(Recorder(response)) as client:
            assert await client.get_team_membership("coq", "pushers", "alice") is expected

    @pytest.mark.asyncio
    async def test_error_status_raises(self):
        recorder = Recorder(httpx.Response(422, text="Validation Failed"))

        async with make_client(recorder) as client:
            with pytest.raises(RemoteAPIError) as exc_info:
                await client.add_label(ISSUE, "x")

        assert exc_info.value.status_code == 422

    @pytest.mark.asyncio
    async def test_rate_limit_is_retried(self):
        recorder = Recorder(
            httpx.Response(403, text="API rate limit exceeded", headers={"x-ratelimit-reset": "0"}),
            httpx.Response(201, json={}),
        )

        with patch("src.utils.rate_limiter.asyncio.sleep", new=AsyncMock()) as sleep:
            async with make_client(recorder) as client:
                await client.add_label(ISSUE, "x")

        assert len(recorder.requests) == 2
        sleep.assert_awaited_once_with(1)

    @pytest.mark.asyncio
    async def test_project_card_moves_use_preview_media_type(self):
        recorder = Recorder(httpx.Response(201, json={}))

        async with make_client(recorder) as client:
            await client.move_project_card(5, 8)

        request = recorder.requests[0]
        assert request.url.path == "/projects/columns/cards/5/moves"
        assert request.headers["Accept"] == "application/vnd.github.inertia-preview+json"
        assert json.loads(request.content) == {"position": "top", "column_id": 8}


class TestGraphQLCalls:
    @pytest.mark.asyncio
    async def test_backport_metadata(self):
        data = {
            "repository": {
                "pullRequest": {
                    "id": "PR_node",
                    "databaseId": 555,
                    "milestone": {"description": "backport to v8.12"},
                }
            }
        }
        recorder = Recorder(httpx.Response(200, json={"data": data}))

        async with make_client(recorder) as client:
            metadata = await client.get_pull_request_backport_metadata("coq", "coq", 12)

        assert metadata.pr_node_id == "PR_node"
        assert metadata.pr_database_id == 555
        assert metadata.milestone_description == "backport to v8.12"
        assert json.loads(recorder.requests[0].content)["variables"] == {
            "owner": "coq",
            "repo": "coq",
            "number": 12,
        }

    @pytest.mark.asyncio
    async def test_missing_pull_request(self):
        recorder = Recorder(httpx.Response(200, json={"data": {"repository": {"pullRequest": None}}}))

        async with make_client(recorder) as client:
            assert await client.get_pull_request_backport_metadata("coq", "coq", 12) is None

    @pytest.mark.asyncio
    async def test_graphql_errors_raise(self):
        recorder = Recorder(httpx.Response(200, json={"errors": [{"message": "bad"}]}))

        async with make_client(recorder) as client:
            with pytest.raises(RemoteAPIError, match="GraphQL errors"):
                await client.post_comment("PR_node", "hello")

    @pytest.mark.asyncio
    async def test_project_cards(self):
        nodes = [
            {"databaseId": 1, "column": {"databaseId": 7}},
            {"databaseId": 2, "column": None},
        ]
        data = {"repository": {"pullRequest": {"projectCards": {"nodes": nodes}}}}
        recorder = Recorder(httpx.Response(200, json={"data": data}))

        async with make_client(recorder) as client:
            cards = await client.get_pull_request_project_cards("coq", "coq", 12)

        assert cards == [ProjectCardPlacement(card_id=1, column_id=7)]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "closer,expected_milestone",
        [
            ({"__typename": "PullRequest", "number": 9, "merged": True, "milestone": {"number": 4}}, 4),
            ({"__typename": "PullRequest", "number": 9, "merged": False, "milestone": None}, None),
            ({"__typename": "Commit"}, None),
        ],
    )
    async def test_issue_closer(self, closer, expected_milestone):
        data = {
            "repository": {
                "issue": {
                    "milestone": None,
                    "timelineItems": {"nodes": [{"closer": closer}]},
                }
            }
        }
        recorder = Recorder(httpx.Response(200, json={"data": data}))

        async with make_client(recorder) as client:
            info = await client.get_issue_closer_info(ISSUE)

        if expected_milestone is None:
            assert info is None
        else:
            assert info.closer_pr_number == 9
            assert info.closer_milestone == expected_milestone
            assert info.issue_milestone is None
