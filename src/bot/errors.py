"""Error taxonomy for the bot.

Each error maps to a single handling policy:
- AuthenticationError: rejected with HTTP 401 before any side effect
- DecodeError: rejected with HTTP 400
- MappingError: logged, the handler does nothing
- ProcessFailure: folded into the conflict branch of the git sync
- RemoteAPIError: logged, best effort
- TraceUnavailableError: the job log never became available
"""


class BotError(Exception):
    """Base class for all bot errors."""


class AuthenticationError(BotError):
    """Webhook signature or shared token did not match."""


class DecodeError(BotError):
    """Webhook payload is malformed or has an unexpected shape."""


class MappingError(BotError):
    """No cross-platform mapping is configured for a repository."""


class ProcessFailure(BotError):
    """An external git process did not exit successfully."""

    def __init__(self, command: str, outcome: str, code: int | None = None):
        self.command = command
        self.outcome = outcome
        self.code = code
        super().__init__(f"Command {command!r} {outcome} ({code})")


class RemoteAPIError(BotError):
    """An outbound API call returned a non-2xx response or failed in transport."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class TraceUnavailableError(BotError):
    """A CI job trace stayed empty for every polling attempt."""
