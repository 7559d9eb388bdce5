"""Pull request mirroring: rebase-conflict detection and branch lifecycle.

An opened, reopened or synchronized pull request walks through

    Start -> FetchBase -> FetchHead -> TestAncestor -> Clean | Conflict

Clean pushes the tested head to GitLab as `pr-<number>`, Conflict labels
the pull request and publishes an error status instead. Any failing step
ends in Conflict.
"""

from enum import Enum

from src.bot.context import BotContext
from src.bot.errors import RemoteAPIError
from src.bot.events import CommentInfo, PullRequestInfo
from src.utils.logging import LogContext, get_logger
from src.utils.rate_limiter import RateLimitedError

logger = get_logger(__name__)

REBASE_LABEL = "needs: rebase"
CONFLICT_STATUS_CONTEXT = "GitLab CI pipeline"
CONFLICT_STATUS_DESCRIPTION = (
    "Pipeline did not run on GitLab CI because PR has conflicts with base branch."
)


class SyncState(str, Enum):
    START = "start"
    FETCH_BASE = "fetch-base"
    FETCH_HEAD = "fetch-head"
    TEST_ANCESTOR = "test-ancestor"
    CLEAN = "clean"
    CONFLICT = "conflict"


def pr_branch_name(number: int) -> str:
    return f"pr-{number}"


def base_branch_name(base_ref: str) -> str:
    return f"remote-{base_ref}"


async def _test_ancestor(ctx: BotContext, pr: PullRequestInfo) -> SyncState:
    mirror = ctx.mirror
    head_branch = pr_branch_name(pr.issue.issue.number)
    base_branch = base_branch_name(pr.base.branch.name)

    state = SyncState.START
    while state not in (SyncState.CLEAN, SyncState.CONFLICT):
        match state:
            case SyncState.START:
                next_state = SyncState.FETCH_BASE
            case SyncState.FETCH_BASE:
                ref = pr.base.branch
                result = await mirror.fetch(ref.repo_url, ref.name, base_branch)
                next_state = SyncState.FETCH_HEAD if result.ok else SyncState.CONFLICT
            case SyncState.FETCH_HEAD:
                ref = pr.head.branch
                result = await mirror.fetch(ref.repo_url, ref.name, head_branch)
                next_state = SyncState.TEST_ANCESTOR if result.ok else SyncState.CONFLICT
            case SyncState.TEST_ANCESTOR:
                result = await mirror.make_ancestor(base_branch, head_branch)
                next_state = SyncState.CLEAN if result.ok else SyncState.CONFLICT
        logger.debug("Sync transition", source=state.value, target=next_state.value)
        state = next_state
    return state


async def _update_rebase_label(ctx: BotContext, pr: PullRequestInfo, conflict: bool) -> None:
    """Add or remove the rebase label. Failures are logged, the sync outcome stands."""
    issue = pr.issue.issue
    try:
        if conflict:
            await ctx.github.add_label(issue, REBASE_LABEL)
        elif REBASE_LABEL in pr.issue.labels:
            await ctx.github.remove_label(issue, REBASE_LABEL)
    except (RemoteAPIError, RateLimitedError) as e:
        logger.warning(f"Could not update rebase label: {e}", conflict=conflict)


async def _on_clean(ctx: BotContext, pr: PullRequestInfo, gitlab_project: str) -> None:
    branch = pr_branch_name(pr.issue.issue.number)

    await _update_rebase_label(ctx, pr, conflict=False)

    result = await ctx.mirror.push(ctx.mirror.gitlab_remote_url(gitlab_project), branch, branch)
    if not result.ok:
        logger.error("Could not push pull request branch to GitLab", branch=branch)


async def _on_conflict(ctx: BotContext, pr: PullRequestInfo) -> None:
    issue = pr.issue.issue
    await _update_rebase_label(ctx, pr, conflict=True)
    await ctx.github.create_status_check(
        issue.repo_full_name,
        pr.head.sha,
        state="error",
        context=CONFLICT_STATUS_CONTEXT,
        description=CONFLICT_STATUS_DESCRIPTION,
    )


async def pull_request_updated(ctx: BotContext, pr: PullRequestInfo) -> SyncState:
    """Test the pull request against its base and mirror it to GitLab when clean.

    Raises:
        MappingError: If the repository is not mirrored on GitLab
    """
    issue = pr.issue.issue
    gitlab_project = ctx.mapper.gitlab_project_of_github(issue.owner, issue.repo)

    with LogContext(pull_request=str(issue)):
        async with ctx.mirror.branch_lock(pr_branch_name(issue.number)):
            outcome = await _test_ancestor(ctx, pr)
            logger.info("Pull request sync finished", outcome=outcome.value)
            if outcome is SyncState.CLEAN:
                await _on_clean(ctx, pr, gitlab_project)
            else:
                await _on_conflict(ctx, pr)
    return outcome


async def pull_request_closed(ctx: BotContext, pr: PullRequestInfo) -> None:
    """Remove the mirrored branch, and the milestone of a pull request closed without merge.

    Raises:
        MappingError: If the repository is not mirrored on GitLab
    """
    issue = pr.issue.issue
    gitlab_project = ctx.mapper.gitlab_project_of_github(issue.owner, issue.repo)
    branch = pr_branch_name(issue.number)

    async with ctx.mirror.branch_lock(branch):
        result = await ctx.mirror.delete_remote_branch(
            ctx.mirror.gitlab_remote_url(gitlab_project), branch
        )
    if not result.ok:
        logger.warning("Could not delete mirrored branch", branch=branch)

    if not pr.merged and pr.issue.milestoned:
        await ctx.github.set_milestone(issue, None)


async def is_authorized(ctx: BotContext, owner: str, user: str) -> bool | None:
    """Membership of `user` in the team configured for `owner`.

    Returns None when no team is configured for the owner. Lookup errors are
    logged and count as unauthorized.
    """
    team = ctx.settings.team_mappings.get(owner)
    if team is None:
        return None
    try:
        return await ctx.github.get_team_membership(owner, team, user)
    except (RemoteAPIError, RateLimitedError) as e:
        logger.warning(f"Team membership check failed: {e}", owner=owner, team=team, user=user)
        return False


async def pull_request_updated_if_authorized(ctx: BotContext, pr: PullRequestInfo) -> None:
    """Sync a pull request, gated on team membership for owners with a configured team."""
    issue = pr.issue
    authorized = await is_authorized(ctx, issue.issue.owner, issue.user)
    if authorized is False:
        logger.info("Unauthorized user, not pushing to GitLab", user=issue.user)
        return
    await pull_request_updated(ctx, pr)


async def run_ci_action(ctx: BotContext, comment: CommentInfo) -> None:
    """Handle a `run CI now` request from a pull request comment.

    Only members of the team configured for the repository owner may trigger
    a sync. Without a configured team the request is ignored.
    """
    issue = comment.issue.issue
    authorized = await is_authorized(ctx, issue.owner, comment.author)
    if not authorized:
        logger.info(
            "Not running CI on request",
            user=comment.author,
            reason="no team configured" if authorized is None else "unauthorized",
        )
        return

    pr = comment.pull_request or await ctx.github.get_pull_request_info(comment.issue)
    await pull_request_updated(ctx, pr)

