"""Classification of failed CI job logs.

Rules are evaluated in order and the first match wins. The table is plain
immutable data and `classify_trace` keeps no state between calls, so the same
rules can be shared by every concurrent job handler.
"""

import re
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum


class BuildFailure(str, Enum):
    WARN = "warn"
    RETRY = "retry"
    IGNORE = "ignore"


@dataclass(frozen=True)
class TraceRule:
    """A rule matches when every `all_of` pattern, at least one `any_of`
    pattern (if any are given) and none of the `none_of` patterns are found.

    `repository` scopes the rule to a single `owner/repo`.
    """

    description: str
    outcome: BuildFailure
    all_of: tuple[re.Pattern[str], ...] = ()
    any_of: tuple[re.Pattern[str], ...] = ()
    none_of: tuple[re.Pattern[str], ...] = ()
    repository: str | None = None

    def matches(self, trace: str, repo_full_name: str | None = None) -> bool:
        if self.repository is not None and self.repository != repo_full_name:
            return False
        if not all(pattern.search(trace) for pattern in self.all_of):
            return False
        if self.any_of and not any(pattern.search(trace) for pattern in self.any_of):
            return False
        return not any(pattern.search(trace) for pattern in self.none_of)


def _patterns(*expressions: str) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(expression) for expression in expressions)


def _literals(*texts: str) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(re.escape(text)) for text in texts)


CONNECTIVITY_ERRORS = (
    *_literals(
        "transfer closed with outstanding read data remaining",
        "The requested URL returned error: 502",
        "The remote end hung up unexpectedly",
        "error: unable to download 'https://cache.nixos.org/",
    ),
    *_patterns(r"HTTP request sent, awaiting response\.\.\. 50[0-9]"),
)


def default_trace_rules(image_not_found_repository: str = "coq/coq") -> tuple[TraceRule, ...]:
    return (
        TraceRule(
            "Runner killed the job (out of memory)",
            BuildFailure.RETRY,
            all_of=_literals("Job failed: exit code 137"),
        ),
        TraceRule(
            "Job exited with status 255",
            BuildFailure.RETRY,
            all_of=_literals("Job failed: exit status 255"),
        ),
        TraceRule(
            "Runner system failure",
            BuildFailure.RETRY,
            all_of=_literals("Job failed (system failure)"),
        ),
        TraceRule(
            "Artifact upload failed",
            BuildFailure.RETRY,
            all_of=_patterns(r"Uploading artifacts to coordinator\.\.\. (failed|error)"),
            none_of=_patterns(r"Uploading artifacts to coordinator\.\.\. ok"),
        ),
        TraceRule(
            "Artifact download timed out",
            BuildFailure.RETRY,
            all_of=(
                *_patterns(r"ERROR: Downloading artifacts from coordinator\.\.\. error"),
                *_literals(
                    "request canceled (Client.Timeout exceeded while reading body)",
                    "FATAL: invalid argument",
                ),
            ),
        ),
        TraceRule("Connectivity issue", BuildFailure.RETRY, any_of=CONNECTIVITY_ERRORS),
        TraceRule(
            "Head commit is not available",
            BuildFailure.IGNORE,
            all_of=_literals("fatal: reference is not a tree"),
        ),
        TraceRule(
            "Docker image not found",
            BuildFailure.IGNORE,
            all_of=_patterns(r"Error response from daemon: manifest for .* not found"),
            repository=image_not_found_repository,
        ),
    )


DEFAULT_TRACE_RULES = default_trace_rules()


def classify_trace(
    trace: str,
    repo_full_name: str | None = None,
    rules: Sequence[TraceRule] = DEFAULT_TRACE_RULES,
) -> tuple[BuildFailure, str | None]:
    """Return the outcome of the first matching rule, Warn when none matches.

    The second element is the description of the matching rule.
    """
    for rule in rules:
        if rule.matches(trace, repo_full_name):
            return rule.outcome, rule.description
    return BuildFailure.WARN, None
