"""GitLab REST API client for CI job triage.

Covers job traces and job/pipeline retries. Rate limiting (429) and server
errors (5xx) are retried with exponential backoff, anything else non-2xx is
raised as RemoteAPIError.
"""

import logging
from typing import Any

import httpx
from aiolimiter import AsyncLimiter

from src.bot.errors import RemoteAPIError
from src.utils.rate_limiter import RateLimitedError, rate_limited

logger = logging.getLogger(__name__)

GITLAB_URL = "https://gitlab.com"

# Default retry after seconds when not provided by server
DEFAULT_RETRY_AFTER_SECONDS = 10

CLIENT_TIMEOUT_SECONDS = 30.0

# GitLab has ~300-2000 req/min depending on tier, stay well below
REQUESTS_PER_SECOND = 5.0


def _parse_retry_after(header_value: str | None) -> int:
    """Safely parse the Retry-After header value.

    Per RFC 7231, Retry-After can be either an integer (delay in seconds) or an
    HTTP-date. Dates fall back to the default.
    """
    if not header_value:
        return DEFAULT_RETRY_AFTER_SECONDS

    try:
        return int(header_value)
    except ValueError:
        logger.debug(f"Could not parse Retry-After header '{header_value}', using default")
        return DEFAULT_RETRY_AFTER_SECONDS


def _get_safe_endpoint_tag(endpoint: str) -> str:
    """Extract a redacted endpoint tag for logging.

    Examples:
        /projects/123/jobs/45/trace -> /projects/.../jobs/.../trace
        /projects/group%2Fproject/pipelines/9/retry -> /projects/.../pipelines/.../retry
    """
    parts = endpoint.strip("/").split("/")
    safe_parts = []

    i = 0
    while i < len(parts):
        part = parts[i]
        if part in ("projects", "jobs", "pipelines"):
            safe_parts.append(part)
            if i + 1 < len(parts):
                safe_parts.append("...")
                i += 1
        elif part.isdigit() or "%" in part:
            if safe_parts and safe_parts[-1] != "...":
                safe_parts.append("...")
        else:
            safe_parts.append(part)
        i += 1

    return "/" + "/".join(safe_parts) if safe_parts else endpoint


class GitLabClient:
    """Async client for GitLab REST API v4."""

    def __init__(
        self,
        access_token: str,
        gitlab_url: str = GITLAB_URL,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize GitLab client.

        Args:
            access_token: Personal or project access token with api scope
            gitlab_url: Base URL of the GitLab instance
            transport: Optional httpx transport (tests inject a MockTransport)
        """
        self.gitlab_url = gitlab_url.rstrip("/")
        self.api_url = f"{self.gitlab_url}/api/v4"
        self._limiter = AsyncLimiter(1, 1 / REQUESTS_PER_SECOND)

        self._client = httpx.AsyncClient(
            headers={"PRIVATE-TOKEN": access_token, "Accept": "application/json"},
            timeout=CLIENT_TIMEOUT_SECONDS,
            transport=transport,
        )
        # Artifact links are public pages, never send the token there
        self._public_client = httpx.AsyncClient(
            timeout=CLIENT_TIMEOUT_SECONDS, follow_redirects=True, transport=transport
        )

    async def aclose(self) -> None:
        """Close the HTTP clients."""
        await self._client.aclose()
        await self._public_client.aclose()

    async def __aenter__(self) -> "GitLabClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    @rate_limited(max_retries=5, base_delay=5)
    async def _request(self, method: str, endpoint: str) -> httpx.Response:
        """Make a request to the GitLab API with rate limiting and retry logic."""
        url = f"{self.api_url}{endpoint}"
        safe_endpoint = _get_safe_endpoint_tag(endpoint)

        try:
            async with self._limiter:
                response = await self._client.request(method, url)
        except httpx.TimeoutException as e:
            logger.warning(f"GitLab {method} {safe_endpoint} timeout, retrying")
            raise RateLimitedError(
                retry_after=DEFAULT_RETRY_AFTER_SECONDS,
                message=f"GitLab timeout on {safe_endpoint}",
            ) from e
        except httpx.HTTPError as e:
            raise RemoteAPIError(f"GitLab {method} {safe_endpoint} failed: {e}") from e

        if response.status_code == httpx.codes.TOO_MANY_REQUESTS:
            retry_after = _parse_retry_after(response.headers.get("Retry-After"))
            logger.warning(
                f"GitLab {method} {safe_endpoint} rate limited (429), retry after {retry_after}s"
            )
            raise RateLimitedError(
                retry_after=retry_after,
                message=f"GitLab rate limited on {safe_endpoint}",
            )

        if response.is_server_error:
            logger.warning(
                f"GitLab {method} {safe_endpoint} server error ({response.status_code}), retrying"
            )
            raise RateLimitedError(
                retry_after=DEFAULT_RETRY_AFTER_SECONDS,
                message=f"GitLab server error on {safe_endpoint}",
            )

        if not response.is_success:
            raise RemoteAPIError(
                f"GitLab {method} {safe_endpoint} returned {response.status_code}",
                status_code=response.status_code,
            )
        return response

    # ========== Jobs ==========

    async def get_job_trace(self, project_id: int, job_id: int) -> str:
        """Get the raw log of a job. GitLab may serve an empty body until the log is archived."""
        response = await self._request("GET", f"/projects/{project_id}/jobs/{job_id}/trace")
        return response.text

    async def retry_job(self, project_id: int, job_id: int) -> None:
        await self._request("POST", f"/projects/{project_id}/jobs/{job_id}/retry")
        logger.info(f"Retried GitLab job {job_id} of project {project_id}")

    async def generic_retry(self, url_part: str) -> None:
        """Retry a job or pipeline given its API path, e.g. `projects/12/jobs/34`."""
        await self._request("POST", f"/{url_part.strip('/')}/retry")
        logger.info(f"Retried GitLab resource {_get_safe_endpoint_tag(url_part)}")

    # ========== Artifacts ==========

    async def artifact_exists(self, url: str) -> bool:
        """Whether a published artifact URL resolves with a 200."""
        try:
            response = await self._public_client.get(url)
        except httpx.HTTPError as e:
            logger.warning(f"Could not reach artifact URL: {e}")
            return False
        return response.status_code == httpx.codes.OK
