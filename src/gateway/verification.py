"""Webhook verification protocol and result types.

Each platform ships a verifier that recomputes the expected credential from
the raw request body and the configured secret. Verification has three
outcomes: the delivery was not signed, it was signed correctly, or it was
signed incorrectly. Only the last one is a hard failure.
"""

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Protocol


class SignatureStatus(str, Enum):
    UNSIGNED = "unsigned"
    VALID = "signed-valid"
    INVALID = "signed-invalid"


@dataclass(frozen=True)
class VerificationResult:
    """Result of webhook verification."""

    status: SignatureStatus
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.status is not SignatureStatus.INVALID

    @property
    def signed(self) -> bool:
        return self.status is SignatureStatus.VALID


class WebhookVerifier(Protocol):
    """Protocol for webhook verification handlers."""

    def verify(self, headers: dict[str, str], body: bytes) -> VerificationResult:
        """Verify a webhook delivery.

        Args:
            headers: HTTP headers from the webhook request (lower-cased keys)
            body: Raw request body as bytes

        Returns:
            VerificationResult carrying the signature status
        """
        ...


# Returns UNSIGNED or VALID, raises ValueError when the credential does not match
VerifyFunc = Callable[[dict[str, str], bytes, str], SignatureStatus]


class BaseSigningSecretVerifier:
    """Base class for verifiers that check a delivery against a shared secret.

    Subclasses only need to define:
    - source_type: The platform identifier used in log lines
    - verify_func: The function that performs the actual verification
    """

    source_type: str
    verify_func: VerifyFunc

    def __init__(self, secret: str | None) -> None:
        self.secret = secret or ""

    def verify(self, headers: dict[str, str], body: bytes) -> VerificationResult:
        try:
            status = self.verify_func(headers, body, self.secret)
        except ValueError as e:
            return VerificationResult(status=SignatureStatus.INVALID, error=str(e))
        return VerificationResult(status=status)
