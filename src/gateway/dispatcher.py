"""Routing of decoded events to their handlers.

`dispatch` is synchronous: it picks the handler, hands it to the task
supervisor and returns the acknowledgement sent back to the webhook sender.
The acknowledgement never depends on what the handler later does.
"""

import re
from dataclasses import dataclass

from src.bot import backport, pull_requests
from src.bot.context import BotContext
from src.bot.events import (
    BranchCreated,
    CheckRunCreated,
    CheckRunReRequested,
    CommentCreated,
    CommentInfo,
    Event,
    IssueClosed,
    IssueOpened,
    JobEvent,
    NoOp,
    PipelineEvent,
    PullRequestAction,
    PullRequestUpdated,
    PushEvent,
    RemovedFromProject,
    TagCreated,
    UnsupportedEvent,
)
from src.ci import job_actions
from src.gateway.tasks import TaskSupervisor
from src.utils.logging import get_logger

logger = get_logger(__name__)

NOT_SUPPORTED = "No action taken: event or action is not yet supported."

HTML_COMMENT_PATTERN = re.compile(r"<!--.*?-->", re.DOTALL)


@dataclass(frozen=True)
class DispatchResult:
    status_code: int
    message: str


def ok(message: str) -> DispatchResult:
    return DispatchResult(200, message)


def strip_html_comments(body: str) -> str:
    return HTML_COMMENT_PATTERN.sub("", body)


class CommentCommands:
    """Recognizers for `@<bot>` commands in issue bodies and comments."""

    def __init__(self, bot_name: str):
        mention = rf"@{re.escape(bot_name)}:?"
        self.minimize = re.compile(rf"{mention} [Mm]inimize[^`]*```")
        self.ci_minimize = re.compile(rf"{mention} [Cc][Ii][- ][Mm]inimize")
        self.resume_ci_minimize = re.compile(rf"{mention} resume [Cc][Ii][- ][Mm]inimiz(e|ation)")
        self.run_ci = re.compile(rf"{mention} [Rr]un CI now")
        self.merge_now = re.compile(rf"{mention} [Mm]erge now")


class Dispatcher:
    def __init__(self, ctx: BotContext, supervisor: TaskSupervisor):
        self.ctx = ctx
        self.supervisor = supervisor
        self.commands = CommentCommands(ctx.settings.bot_name)

    def dispatch(self, event: Event, signed: bool) -> DispatchResult:
        ctx = self.ctx
        spawn = self.supervisor.spawn

        match event:
            case PullRequestUpdated(action=PullRequestAction.CLOSED, pull_request=pr):
                issue = pr.issue.issue
                spawn(f"pr-closed {issue}", pull_requests.pull_request_closed(ctx, pr))
                return ok(f"Pull request {issue} was closed: removing the branch from GitLab.")

            case PullRequestUpdated(pull_request=pr):
                issue = pr.issue.issue
                spawn(f"pr-sync {issue}", pull_requests.pull_request_updated_if_authorized(ctx, pr))
                team = ctx.settings.team_mappings.get(issue.owner)
                if team is not None:
                    return ok(
                        "Pull request was (re)opened / updated. Checking that user "
                        f"{pr.issue.user} is a member of @{issue.owner}/{team} before "
                        "pushing to GitLab."
                    )
                return ok(f"Pull request {issue} was (re)opened / updated: (force-)pushing to GitLab.")

            case IssueClosed(issue=info):
                spawn(f"adjust-milestone {info.issue}", backport.adjust_milestone(ctx, info.issue))
                return ok(f"Issue {info.issue} was closed: checking its milestone.")

            case RemovedFromProject(card=card) if card.issue is not None:
                spawn(
                    f"project-card {card.issue}",
                    backport.project_action(ctx, card.issue, card.column_id),
                )
                return ok(
                    f"Issue or PR {card.issue} was removed from project column "
                    f"{card.column_id}: checking if this was a backporting column."
                )

            case RemovedFromProject():
                return ok("Note card removed from project: nothing to do.")

            case IssueOpened(issue=info):
                body = strip_html_comments(info.body or "")
                if self.commands.minimize.search(body):
                    return ok("Minimization requests are not handled by this bot.")
                return ok(f"Unhandled new issue: {body}" if body else "No action taken: new issue.")

            case CommentCreated(comment=comment):
                return self._comment(comment, signed)

            case CheckRunReRequested(check_run=check_run):
                if not signed:
                    return DispatchResult(401, "Request to rerun check run must be signed.")
                if not check_run.external_id:
                    return DispatchResult(400, "Request to rerun check run but empty external ID.")
                spawn(
                    f"generic-retry {check_run.external_id}",
                    ctx.gitlab.generic_retry(check_run.external_id),
                )
                return ok(
                    "Received a request to re-run a job / pipeline "
                    f"(GitLab ID : {check_run.external_id})."
                )

            case PushEvent(push=push):
                spawn(f"push {push.owner}/{push.repo}", backport.push_action(ctx, push))
                return ok("Processing push event.")

            case JobEvent(job=job):
                spawn(f"job {job.build_id}", job_actions.job_action(ctx, job))
                return ok("Job event.")

            case PipelineEvent(pipeline=pipeline):
                spawn(f"pipeline {pipeline.pipeline_id}", job_actions.pipeline_action(ctx, pipeline))
                return ok("Pipeline event.")

            case NoOp(reason=reason):
                return ok(f"No action taken: {reason}")

            case UnsupportedEvent(description=description):
                return ok(f"No action taken: {description}")

            case BranchCreated() | TagCreated() | CheckRunCreated():
                return ok(NOT_SUPPORTED)

        raise AssertionError(f"Unhandled event variant: {type(event).__name__}")

    def _comment(self, comment: CommentInfo, signed: bool) -> DispatchResult:
        body = strip_html_comments(comment.body)
        is_pull_request = comment.issue.is_pull_request
        commands = self.commands

        if (
            commands.minimize.search(body)
            or commands.ci_minimize.search(body)
            or commands.resume_ci_minimize.search(body)
        ):
            return ok("Minimization requests are not handled by this bot.")

        if commands.run_ci.search(body) and is_pull_request:
            issue = comment.issue.issue
            self.supervisor.spawn(f"run-ci {issue}", pull_requests.run_ci_action(self.ctx, comment))
            return ok(
                f"Received a request to run CI on {issue}: checking that "
                f"{comment.author} is authorized."
            )

        if commands.merge_now.search(body) and is_pull_request and signed:
            return ok("Received a request to merge the PR: not supported by this bot.")

        return ok(f"Unhandled comment: {body}")
