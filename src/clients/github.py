"""GitHub client used by the bot's handlers.

Wraps the handful of REST and GraphQL calls the bot needs (labels, milestones,
commit statuses, project cards, comments, team membership). Every non-2xx
response is raised as RemoteAPIError; rate limiting is retried with backoff.
"""

import time
from typing import Any
from urllib.parse import quote

import httpx
from pydantic import BaseModel

from connectors.github.github_webhook_handler import pull_request_info_of_json
from src.bot.errors import RemoteAPIError
from src.bot.events import Issue, IssueInfo, PullRequestInfo
from src.utils.logging import get_logger
from src.utils.rate_limiter import RateLimitedError, rate_limited

logger = get_logger(__name__)

GITHUB_API_URL = "https://api.github.com"

CLIENT_TIMEOUT_SECONDS = 30.0

# Maximum page size accepted by the REST API
STATUSES_PER_PAGE = 100

# Classic project boards are only served with the inertia preview media type
PROJECT_API_PREVIEW_HEADERS = {"Accept": "application/vnd.github.inertia-preview+json"}

BACKPORT_METADATA_QUERY = """
query($owner: String!, $repo: String!, $number: Int!) {
  repository(owner: $owner, name: $repo) {
    pullRequest(number: $number) {
      id
      databaseId
      milestone { description }
    }
  }
}
"""

PROJECT_CARDS_QUERY = """
query($owner: String!, $repo: String!, $number: Int!) {
  repository(owner: $owner, name: $repo) {
    pullRequest(number: $number) {
      projectCards(first: 20) {
        nodes { databaseId column { databaseId } }
      }
    }
  }
}
"""

ISSUE_CLOSER_QUERY = """
query($owner: String!, $repo: String!, $number: Int!) {
  repository(owner: $owner, name: $repo) {
    issue(number: $number) {
      milestone { number }
      timelineItems(itemTypes: [CLOSED_EVENT], last: 1) {
        nodes {
          ... on ClosedEvent {
            closer {
              __typename
              ... on PullRequest { number merged milestone { number } }
            }
          }
        }
      }
    }
  }
}
"""

ADD_COMMENT_MUTATION = """
mutation($subjectId: ID!, $body: String!) {
  addComment(input: {subjectId: $subjectId, body: $body}) {
    commentEdge { node { id } }
  }
}
"""


class BackportMetadata(BaseModel, frozen=True):
    """Identifiers of a pull request plus the raw description of its milestone."""

    pr_node_id: str
    pr_database_id: int
    milestone_description: str | None = None


class ProjectCardPlacement(BaseModel, frozen=True):
    card_id: int
    column_id: int


class IssueCloserInfo(BaseModel, frozen=True):
    """Milestones of a closed issue and of the merged pull request that closed it."""

    issue_milestone: int | None
    closer_pr_number: int
    closer_milestone: int | None


def _calculate_retry_after(headers: httpx.Headers) -> int:
    """Calculate retry_after seconds from GitHub rate limit headers (minimum 1 second)."""
    reset_time = headers.get("x-ratelimit-reset")
    if reset_time:
        try:
            return max(1, int(reset_time) - int(time.time()))
        except ValueError:
            pass
    return 60


class GitHubClient:
    """Async client for the GitHub REST and GraphQL APIs."""

    def __init__(
        self,
        access_token: str,
        api_url: str = GITHUB_API_URL,
        user_agent: str = "mirrorbot",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_url = api_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.api_url,
            headers={
                "Authorization": f"Bearer {access_token}",
                "Accept": "application/vnd.github+json",
                "User-Agent": user_agent,
            },
            timeout=CLIENT_TIMEOUT_SECONDS,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    @rate_limited(max_retries=3, base_delay=5)
    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        allowed_statuses: tuple[int, ...] = (),
    ) -> httpx.Response:
        try:
            response = await self._client.request(
                method, path, json=json, params=params, headers=headers
            )
        except httpx.HTTPError as e:
            raise RemoteAPIError(f"GitHub {method} {path} failed: {e}") from e

        if response.status_code == httpx.codes.FORBIDDEN and "rate limit" in response.text.lower():
            raise RateLimitedError(retry_after=_calculate_retry_after(response.headers))

        if response.is_success or response.status_code in allowed_statuses:
            return response

        logger.warning(
            "GitHub API call failed",
            method=method,
            path=path,
            status_code=response.status_code,
        )
        raise RemoteAPIError(
            f"GitHub {method} {path} returned {response.status_code}: {response.text}",
            status_code=response.status_code,
        )

    async def _graphql(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        response = await self._request(
            "POST", "/graphql", json={"query": query, "variables": variables}
        )
        data = response.json()
        if data.get("errors"):
            raise RemoteAPIError(f"GraphQL errors: {data['errors']}")
        return data["data"]

    # ========== Labels & milestones ==========

    async def add_label(self, issue: Issue, label: str) -> None:
        await self._request(
            "POST",
            f"/repos/{issue.owner}/{issue.repo}/issues/{issue.number}/labels",
            json={"labels": [label]},
        )
        logger.info("Added label", issue=str(issue), label=label)

    async def remove_label(self, issue: Issue, label: str) -> None:
        await self._request(
            "DELETE",
            f"/repos/{issue.owner}/{issue.repo}/issues/{issue.number}/labels/{quote(label, safe='')}",
        )
        logger.info("Removed label", issue=str(issue), label=label)

    async def set_milestone(self, issue: Issue, milestone: int | None) -> None:
        """Set the milestone (by number) of an issue or pull request, None clears it."""
        await self._request(
            "PATCH",
            f"/repos/{issue.owner}/{issue.repo}/issues/{issue.number}",
            json={"milestone": milestone},
        )
        logger.info("Updated milestone", issue=str(issue), milestone=milestone)

    # ========== Commit statuses ==========

    async def create_status_check(
        self,
        repo_full_name: str,
        sha: str,
        state: str,
        context: str,
        description: str,
        target_url: str | None = None,
    ) -> None:
        """Create a commit status (state is one of error, failure, pending, success)."""
        body: dict[str, Any] = {"state": state, "context": context, "description": description}
        if target_url:
            body["target_url"] = target_url
        await self._request("POST", f"/repos/{repo_full_name}/statuses/{sha}", json=body)
        logger.info(
            "Published status check",
            repo=repo_full_name,
            sha=sha,
            state=state,
            context=context,
        )

    async def get_existing_status_check(self, repo_full_name: str, sha: str, context: str) -> bool:
        """Whether a status with this context was already published on the commit.

        Statuses are paginated, pages are followed through the Link header.
        """
        url: str | None = f"/repos/{repo_full_name}/commits/{sha}/statuses"
        params: dict[str, Any] | None = {"per_page": STATUSES_PER_PAGE}
        while url:
            response = await self._request("GET", url, params=params)
            if any(status.get("context") == context for status in response.json()):
                return True
            # The next link already carries the query string
            url = response.links.get("next", {}).get("url")
            params = None
        return False

    # ========== Project boards ==========

    async def move_project_card(self, card_id: int, column_id: int) -> None:
        await self._request(
            "POST",
            f"/projects/columns/cards/{card_id}/moves",
            json={"position": "top", "column_id": column_id},
            headers=PROJECT_API_PREVIEW_HEADERS,
        )
        logger.info("Moved project card", card_id=card_id, column_id=column_id)

    async def add_pr_to_column(self, pr_database_id: int, column_id: int) -> None:
        await self._request(
            "POST",
            f"/projects/columns/{column_id}/cards",
            json={"content_id": pr_database_id, "content_type": "PullRequest"},
            headers=PROJECT_API_PREVIEW_HEADERS,
        )
        logger.info("Added pull request to column", pr_id=pr_database_id, column_id=column_id)

    async def get_pull_request_project_cards(
        self, owner: str, repo: str, number: int
    ) -> list[ProjectCardPlacement]:
        data = await self._graphql(
            PROJECT_CARDS_QUERY, {"owner": owner, "repo": repo, "number": number}
        )
        pull_request = (data.get("repository") or {}).get("pullRequest") or {}
        cards = []
        for node in (pull_request.get("projectCards") or {}).get("nodes") or []:
            if node and node.get("column"):
                cards.append(
                    ProjectCardPlacement(
                        card_id=node["databaseId"], column_id=node["column"]["databaseId"]
                    )
                )
        return cards

    # ========== Comments ==========

    async def post_comment(self, subject_id: str, body: str) -> None:
        """Post a comment on an issue or pull request identified by its node id."""
        await self._graphql(ADD_COMMENT_MUTATION, {"subjectId": subject_id, "body": body})
        logger.info("Posted comment", subject_id=subject_id)

    # ========== Teams ==========

    async def get_team_membership(self, org: str, team: str, user: str) -> bool:
        response = await self._request(
            "GET",
            f"/orgs/{org}/teams/{team}/memberships/{user}",
            allowed_statuses=(httpx.codes.NOT_FOUND,),
        )
        if response.status_code == httpx.codes.NOT_FOUND:
            return False
        return response.json().get("state") == "active"

    # ========== Pull requests & issues ==========

    async def get_pull_request_info(self, issue: IssueInfo) -> PullRequestInfo:
        number = issue.issue.number
        response = await self._request(
            "GET", f"/repos/{issue.issue.owner}/{issue.issue.repo}/pulls/{number}"
        )
        pr_json = response.json()
        return pull_request_info_of_json(
            {"repository": pr_json["base"]["repo"], "pull_request": pr_json}
        )

    async def get_pull_request_backport_metadata(
        self, owner: str, repo: str, number: int
    ) -> BackportMetadata | None:
        data = await self._graphql(
            BACKPORT_METADATA_QUERY, {"owner": owner, "repo": repo, "number": number}
        )
        pull_request = (data.get("repository") or {}).get("pullRequest")
        if not pull_request or pull_request.get("databaseId") is None:
            return None
        milestone = pull_request.get("milestone") or {}
        return BackportMetadata(
            pr_node_id=pull_request["id"],
            pr_database_id=pull_request["databaseId"],
            milestone_description=milestone.get("description"),
        )

    async def get_issue_closer_info(self, issue: Issue) -> IssueCloserInfo | None:
        """Return milestone info when the issue was closed by a merged pull request."""
        data = await self._graphql(
            ISSUE_CLOSER_QUERY,
            {"owner": issue.owner, "repo": issue.repo, "number": issue.number},
        )
        issue_json = (data.get("repository") or {}).get("issue")
        if not issue_json:
            return None

        nodes = (issue_json.get("timelineItems") or {}).get("nodes") or []
        closer = (nodes[-1] or {}).get("closer") if nodes else None
        if not closer or closer.get("__typename") != "PullRequest" or not closer.get("merged"):
            return None

        return IssueCloserInfo(
            issue_milestone=(issue_json.get("milestone") or {}).get("number"),
            closer_pr_number=closer["number"],
            closer_milestone=(closer.get("milestone") or {}).get("number"),
        )
