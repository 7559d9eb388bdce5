"""Backport tracking on classic project boards.

A milestone opts into backport tracking through its description, e.g.

    mirrorbot: backport to v8.12 (request inclusion column:
    https://github.com/coq/coq/projects/11#column-7; backported column:
    https://github.com/coq/coq/projects/11#column-8; move rejected PRs to:
    https://github.com/coq/coq/milestone/42)

Merged pull requests land in the request inclusion column, backported ones
move to the backported column and cards removed from the request inclusion
column are rejected: the pull request is moved to the rejection milestone.
"""

import asyncio
import re
from collections.abc import Awaitable, Callable

from pydantic import BaseModel

from src.bot.context import BotContext
from src.bot.events import Issue, PushInfo
from src.clients.github import BackportMetadata
from src.utils.logging import get_logger

logger = get_logger(__name__)

POSTPONED_COMMENT = (
    "This PR was postponed. Please update accordingly the milestone of any issue "
    "that this fixes as this cannot be done automatically."
)

MERGE_COMMIT_PATTERN = re.compile(r"Merge PR #([0-9]+):")
BACKPORT_COMMIT_PATTERN = re.compile(r"Backport PR #([0-9]+):")

_COLUMN_URL = r"https://github\.com/[^/\s]+/[^/\s]+/projects/[0-9]+#column-([0-9]+)"
_MILESTONE_URL = r"https://github\.com/[^/\s]+/[^/\s]+/milestone/([0-9]+)"


def backport_pattern(bot_name: str) -> re.Pattern[str]:
    return re.compile(
        rf"{re.escape(bot_name)}: backport to (\S+) "
        rf"\(request inclusion column: {_COLUMN_URL}; "
        rf"backported column: {_COLUMN_URL}; "
        rf"move rejected PRs to: {_MILESTONE_URL}\)"
    )


class BackportInfo(BaseModel, frozen=True):
    backport_to: str
    request_inclusion_column: int
    backported_column: int
    rejected_milestone: int


def parse_backport_info(bot_name: str, description: str | None) -> list[BackportInfo]:
    """Every backport declaration found in a milestone description, in order."""
    if not description:
        return []
    return [
        BackportInfo(
            backport_to=match.group(1),
            request_inclusion_column=int(match.group(2)),
            backported_column=int(match.group(3)),
            rejected_milestone=int(match.group(4)),
        )
        for match in backport_pattern(bot_name).finditer(" ".join(description.split()))
    ]


async def _backport_metadata(
    ctx: BotContext, owner: str, repo: str, number: int
) -> tuple[BackportMetadata, list[BackportInfo]] | None:
    metadata = await ctx.github.get_pull_request_backport_metadata(owner, repo, number)
    if metadata is None:
        return None
    infos = parse_backport_info(ctx.settings.bot_name, metadata.milestone_description)
    if not infos:
        return None
    return metadata, infos


async def project_action(ctx: BotContext, issue: Issue, column_id: int) -> bool:
    """Reject a pull request whose card left a request inclusion column.

    Returns whether the pull request was postponed.
    """
    found = await _backport_metadata(ctx, issue.owner, issue.repo, issue.number)
    if found is None:
        logger.info("Could not find backporting info for pull request", issue=str(issue))
        return False

    metadata, infos = found
    for info in infos:
        if info.request_inclusion_column == column_id:
            logger.info(
                "Card removed from a request inclusion column, postponing",
                issue=str(issue),
                milestone=info.rejected_milestone,
            )
            await asyncio.gather(
                ctx.github.set_milestone(issue, info.rejected_milestone),
                ctx.github.post_comment(metadata.pr_node_id, POSTPONED_COMMENT),
            )
            return True

    logger.info("Not a request inclusion column, ignoring", column_id=column_id)
    return False


async def _merged_pull_request(ctx: BotContext, push: PushInfo, number: int) -> None:
    found = await _backport_metadata(ctx, push.owner, push.repo, number)
    if found is None:
        logger.info("Did not get any backporting info", number=number)
        return

    metadata, infos = found
    for info in infos:
        if push.base_ref == f"refs/heads/{info.backport_to}":
            logger.info("Pull request merged into the backport branch directly", number=number)
            await ctx.github.add_pr_to_column(metadata.pr_database_id, info.backported_column)
        else:
            logger.info("Backport requested", number=number, backport_to=info.backport_to)
            await ctx.github.add_pr_to_column(
                metadata.pr_database_id, info.request_inclusion_column
            )


async def _backported_pull_request(ctx: BotContext, push: PushInfo, number: int) -> None:
    found = await _backport_metadata(ctx, push.owner, push.repo, number)
    info = None
    if found is not None:
        info = next(
            (i for i in found[1] if push.base_ref == f"refs/heads/{i.backport_to}"),
            None,
        )
    if info is None:
        logger.warning("Could not find backporting info for backported pull request", number=number)
        return

    cards = await ctx.github.get_pull_request_project_cards(push.owner, push.repo, number)
    for card in cards:
        if card.column_id == info.request_inclusion_column:
            await ctx.github.move_project_card(card.card_id, info.backported_column)
            return
    logger.info("Backported pull request has no card to move", number=number)


async def push_action(ctx: BotContext, push: PushInfo) -> None:
    """Track merge and backport commits pushed to a branch, in push order."""
    for message in push.commit_messages:
        if match := MERGE_COMMIT_PATTERN.search(message):
            await _merged_pull_request(ctx, push, int(match.group(1)))
        elif match := BACKPORT_COMMIT_PATTERN.search(message):
            await _backported_pull_request(ctx, push, int(match.group(1)))


async def adjust_milestone(
    ctx: BotContext,
    issue: Issue,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> None:
    """Copy the milestone of the merged pull request that closed `issue` onto it."""
    # GitHub links the closing pull request a few seconds after the event
    await sleep(ctx.settings.issue_closed_delay)

    closer = await ctx.github.get_issue_closer_info(issue)
    if closer is None:
        logger.info("Issue was not closed by a merged pull request", issue=str(issue))
        return
    if closer.closer_milestone is None or closer.closer_milestone == closer.issue_milestone:
        return

    logger.info(
        "Reflecting pull request milestone on issue",
        issue=str(issue),
        pull_request=closer.closer_pr_number,
        milestone=closer.closer_milestone,
    )
    await ctx.github.set_milestone(issue, closer.closer_milestone)
