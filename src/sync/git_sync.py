"""Mirror repository operations: fetch, push, delete and ancestor test.

The mirror is a bare git repository used as the routing hub between GitHub
and GitLab. Every operation is an external git process awaited as a
subprocess, its exit status is classified rather than raised.
"""

import asyncio
from collections import defaultdict
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from urllib.parse import urlparse

from src.bot.errors import ProcessFailure
from src.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_MAKE_ANCESTOR_SCRIPT = Path(__file__).resolve().parents[2] / "scripts" / "make_ancestor.sh"


class ProcessOutcome(str, Enum):
    SUCCESS = "success"
    NON_ZERO_EXIT = "non-zero-exit"
    SIGNALED = "signaled"
    STOPPED = "stopped"


@dataclass(frozen=True)
class ProcessResult:
    command: str
    outcome: ProcessOutcome
    code: int | None = None
    output: str = ""

    @property
    def ok(self) -> bool:
        return self.outcome is ProcessOutcome.SUCCESS

    def to_failure(self) -> ProcessFailure:
        return ProcessFailure(self.command, self.outcome.value, self.code)


CommandRunner = Callable[[Sequence[str], Path], Awaitable[ProcessResult]]


def classify_returncode(returncode: int | None) -> tuple[ProcessOutcome, int | None]:
    """Classify a subprocess return code.

    asyncio reports death by signal N as -N. A stopped process never reaches
    wait(), a missing return code is the only trace of it.
    """
    if returncode is None:
        return ProcessOutcome.STOPPED, None
    if returncode == 0:
        return ProcessOutcome.SUCCESS, 0
    if returncode < 0:
        return ProcessOutcome.SIGNALED, -returncode
    return ProcessOutcome.NON_ZERO_EXIT, returncode


def redact_credentials(text: str) -> str:
    """Hide the userinfo part of any authenticated URL in a command line."""
    words = []
    for word in text.split(" "):
        parsed = urlparse(word)
        if parsed.scheme in ("http", "https") and parsed.password:
            word = word.replace(f"{parsed.username}:{parsed.password}@", "***@")
        words.append(word)
    return " ".join(words)


async def run_command(args: Sequence[str], cwd: Path) -> ProcessResult:
    """Run a command to completion and classify its exit status."""
    command = redact_credentials(" ".join(args))
    process = await asyncio.create_subprocess_exec(
        *args,
        cwd=cwd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.STDOUT,
    )
    stdout, _ = await process.communicate()
    outcome, code = classify_returncode(process.returncode)
    return ProcessResult(
        command=command,
        outcome=outcome,
        code=code,
        output=redact_credentials(stdout.decode("utf-8", errors="replace")),
    )


class GitMirror:
    """The bot's local bare repository."""

    def __init__(
        self,
        path: Path,
        bot_name: str,
        bot_email: str,
        gitlab_url: str,
        gitlab_token: str,
        make_ancestor_script: Path = DEFAULT_MAKE_ANCESTOR_SCRIPT,
        runner: CommandRunner = run_command,
    ):
        self.path = path
        self.bot_name = bot_name
        self.bot_email = bot_email
        self.gitlab_url = gitlab_url.rstrip("/")
        self.make_ancestor_script = make_ancestor_script
        self._gitlab_token = gitlab_token
        self._runner = runner
        self._branch_locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def _run(self, *args: str) -> ProcessResult:
        result = await self._runner(args, self.path)
        if result.ok:
            logger.info("Command succeeded", command=result.command)
        else:
            logger.warning(
                "Command failed",
                command=result.command,
                outcome=result.outcome.value,
                code=result.code,
                output=result.output[-2000:],
            )
        return result

    async def initialize(self) -> None:
        """Create the bare repository and configure the bot identity.

        Raises:
            ProcessFailure: If the repository cannot be initialized
        """
        self.path.mkdir(parents=True, exist_ok=True)
        for args in (
            ("git", "init", "--bare"),
            ("git", "config", "user.email", self.bot_email),
            ("git", "config", "user.name", self.bot_name),
        ):
            result = await self._run(*args)
            if not result.ok:
                raise result.to_failure()

    def branch_lock(self, branch: str) -> asyncio.Lock:
        """Lock serializing fetch/test/push sequences that touch the same local branch."""
        return self._branch_locks[branch]

    def gitlab_remote_url(self, project_path: str) -> str:
        parsed = urlparse(self.gitlab_url)
        return f"{parsed.scheme}://oauth2:{self._gitlab_token}@{parsed.netloc}/{project_path}.git"

    async def fetch(
        self, repo_url: str, remote_ref: str, local_branch: str, force: bool = True
    ) -> ProcessResult:
        refspec = f"{'+' if force else ''}{remote_ref}:refs/heads/{local_branch}"
        return await self._run("git", "fetch", "-fu", repo_url, refspec)

    async def push(
        self, remote_url: str, local_ref: str, remote_branch: str, force: bool = True
    ) -> ProcessResult:
        refspec = f"{'+' if force else ''}{local_ref}:refs/heads/{remote_branch}"
        return await self._run("git", "push", remote_url, refspec)

    async def delete_remote_branch(self, remote_url: str, remote_branch: str) -> ProcessResult:
        return await self.push(remote_url, "", remote_branch, force=False)

    async def make_ancestor(self, base: str, head: str) -> ProcessResult:
        """Make `base` an ancestor of `head`, merging when needed. Fails on conflicts."""
        return await self._run(str(self.make_ancestor_script), base, head)
