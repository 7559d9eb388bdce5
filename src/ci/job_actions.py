"""Handlers for GitLab job and pipeline events.

Failed jobs are triaged: infrastructure failures are retried on GitLab, real
failures are reported as failing status checks on the GitHub commit the job
tested. Successful jobs override a previous failing status and, for the
documentation jobs, publish links to their artifacts.
"""

import asyncio
from collections.abc import Awaitable, Callable

from connectors.gitlab.gitlab_client import GitLabClient
from src.bot.context import BotContext
from src.bot.errors import TraceUnavailableError
from src.bot.events import JobInfo, PipelineInfo
from src.ci.trace_classifier import BuildFailure, classify_trace, default_trace_rules
from src.utils.logging import get_logger

logger = get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]

PIPELINE_STATUS_CONTEXT = "GitLab CI pipeline"


# Job name -> (artifact kind, path inside the job artifacts)
ARTIFACT_JOBS: dict[str, tuple[tuple[str, str], ...]] = {
    "doc:refman": (
        ("refman", "_install_ci/share/doc/coq/sphinx/html/index.html"),
        ("stdlib", "_install_ci/share/doc/coq/html/stdlib/index.html"),
    ),
    "doc:ml-api:odoc": (("ml-api", "_build/default/_doc/_html/index.html"),),
}

# GitLab pipeline status -> (GitHub status state, description)
PIPELINE_STATES: dict[str, tuple[str, str]] = {
    "success": ("success", "Pipeline completed on GitLab CI"),
    "pending": ("pending", "Pipeline is pending on GitLab CI"),
    "running": ("pending", "Pipeline is running on GitLab CI"),
    "failed": ("failure", "Pipeline completed with errors on GitLab CI"),
    "cancelled": ("error", "Pipeline was cancelled on GitLab CI"),
}


def job_url(gitlab_url: str, project_path: str, build_id: int) -> str:
    return f"{gitlab_url}/{project_path}/-/jobs/{build_id}"


def pipeline_url(gitlab_url: str, project_path: str, pipeline_id: int) -> str:
    return f"{gitlab_url}/{project_path}/pipelines/{pipeline_id}"


def artifact_url(project_path: str, build_id: int, path: str) -> str:
    """URL of a job artifact served by GitLab Pages, e.g.
    https://coq.gitlab.io/-/coq/-/jobs/42/artifacts/_build/index.html
    """
    group, _, project = project_path.partition("/")
    return f"https://{group}.gitlab.io/-/{project}/-/jobs/{build_id}/artifacts/{path}"


def pipeline_status(state: str) -> tuple[str, str] | None:
    """GitHub status for a pipeline state, None when nothing should be reported."""
    if state == "skipped":
        return None
    return PIPELINE_STATES.get(state, ("error", f"Unknown pipeline status: {state}"))


async def poll_job_trace(
    gitlab: GitLabClient,
    project_id: int,
    build_id: int,
    max_attempts: int = 10,
    initial_delay: float = 2.0,
    sleep: Sleep = asyncio.sleep,
) -> str:
    """Fetch a job trace, waiting while GitLab still serves it empty.

    Waits `initial_delay` after the first empty response and doubles the wait
    after each further one.

    Raises:
        TraceUnavailableError: If every attempt returned an empty trace
    """
    delay = initial_delay
    for attempt in range(1, max_attempts + 1):
        trace = await gitlab.get_job_trace(project_id, build_id)
        if trace:
            return trace
        if attempt == max_attempts:
            break
        logger.info(
            "Job trace is empty, waiting before retrying",
            build_id=build_id,
            attempt=attempt,
            delay=delay,
        )
        await sleep(delay)
        delay *= 2

    raise TraceUnavailableError(
        f"Trace of job {build_id} in project {project_id} still empty after {max_attempts} attempts"
    )


class JobHandler:
    """Triage of one GitLab job event."""

    def __init__(self, ctx: BotContext, job: JobInfo, sleep: Sleep = asyncio.sleep):
        self.ctx = ctx
        self.job = job
        self.sleep = sleep
        owner, repo = ctx.mapper.github_repo_of_gitlab_project(job.common.project_path)
        self.repo_full_name = f"{owner}/{repo}"
        self.url = job_url(ctx.settings.gitlab_url, job.common.project_path, job.build_id)

    async def run(self) -> None:
        match self.job.build_status:
            case "failed":
                await self.on_failure()
            case "success":
                await self.on_success()
            case status:
                logger.debug("Nothing to do for job status", status=status)

    async def _retry(self) -> None:
        await self.ctx.gitlab.retry_job(self.job.common.project_id, self.job.build_id)

    async def _report_failure(self) -> None:
        if self.job.allow_fail:
            logger.info("Job is allowed to fail", build_name=self.job.build_name)
            return
        reason = self.job.failure_reason or "unknown_failure"
        await self.ctx.github.create_status_check(
            self.repo_full_name,
            self.job.common.head_commit,
            state="failure",
            context=self.job.build_name,
            description=f"{reason} on GitLab CI",
            target_url=self.url,
        )

    async def on_failure(self) -> None:
        logger.info(
            "Failed job",
            build_id=self.job.build_id,
            project_id=self.job.common.project_id,
            failure_reason=self.job.failure_reason,
        )
        match self.job.failure_reason:
            case "runner_system_failure":
                logger.info("Runner failure reported by GitLab CI, retrying")
                await self._retry()
            case "stuck_or_timeout_failure":
                await self._report_failure()
            case "script_failure":
                await self._triage_script_failure()
            case _:
                logger.info("Unusual failure reason, reporting it")
                await self._report_failure()

    async def _triage_script_failure(self) -> None:
        settings = self.ctx.settings
        try:
            trace = await poll_job_trace(
                self.ctx.gitlab,
                self.job.common.project_id,
                self.job.build_id,
                max_attempts=settings.trace_poll_max_attempts,
                initial_delay=settings.trace_poll_initial_delay,
                sleep=self.sleep,
            )
        except TraceUnavailableError as e:
            logger.warning(f"{e}, reporting the failure")
            await self._report_failure()
            return

        rules = default_trace_rules(settings.image_not_found_repository)
        outcome, rule = classify_trace(trace, self.repo_full_name, rules)
        logger.info("Classified job trace", outcome=outcome.value, rule=rule, trace_size=len(trace))

        match outcome:
            case BuildFailure.RETRY:
                await self._retry()
            case BuildFailure.IGNORE:
                pass
            case BuildFailure.WARN:
                await self._report_failure()

    async def on_success(self) -> None:
        github = self.ctx.github
        commit = self.job.common.head_commit
        if await github.get_existing_status_check(self.repo_full_name, commit, self.job.build_name):
            logger.info("Overriding a previous status check", build_name=self.job.build_name)
            await github.create_status_check(
                self.repo_full_name,
                commit,
                state="success",
                context=self.job.build_name,
                description="Test succeeded on GitLab CI after being retried",
                target_url=self.url,
            )

        artifacts = ARTIFACT_JOBS.get(self.job.build_name, ())
        await asyncio.gather(*(self._publish_artifact(kind, path) for kind, path in artifacts))

    async def _publish_artifact(self, kind: str, path: str) -> None:
        url = artifact_url(self.job.common.project_path, self.job.build_id, path)
        context = f"{self.job.build_name}: {kind} artifact"
        description = f"Link to {kind} build artifact"

        if await self.ctx.gitlab.artifact_exists(url):
            await self.ctx.github.create_status_check(
                self.repo_full_name,
                self.job.common.head_commit,
                state="success",
                context=context,
                description=f"{description}.",
                target_url=url,
            )
        else:
            logger.warning("Artifact URL did not resolve", url=url)
            await self.ctx.github.create_status_check(
                self.repo_full_name,
                self.job.common.head_commit,
                state="failure",
                context=context,
                description=f"{description}: not found.",
                target_url=self.url,
            )


async def job_action(ctx: BotContext, job: JobInfo, sleep: Sleep = asyncio.sleep) -> None:
    await JobHandler(ctx, job, sleep=sleep).run()


async def pipeline_action(ctx: BotContext, pipeline: PipelineInfo) -> None:
    status = pipeline_status(pipeline.state)
    if status is None:
        return

    common = pipeline.common
    owner, repo = ctx.mapper.github_repo_of_gitlab_project(common.project_path)
    state, description = status
    await ctx.github.create_status_check(
        f"{owner}/{repo}",
        common.head_commit,
        state=state,
        context=PIPELINE_STATUS_CONTEXT,
        description=description,
        target_url=pipeline_url(ctx.settings.gitlab_url, common.project_path, pipeline.pipeline_id),
    )
