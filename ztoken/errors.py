"""
ztoken error taxonomy.

Library code raises these; only the CLI turns them into exit codes.
The ``retryable`` attribute tells callers whether backing off and trying
again can help.
"""

from enum import Enum
from typing import Optional


class ZTokenError(Exception):
    """Base exception for ztoken errors."""

    retryable = False


class KeyLoadError(ZTokenError):
    """Raised when a key file is missing or cannot be parsed."""

    pass


class SigningError(ZTokenError):
    """Raised when a principal token cannot be serialized or signed."""

    pass


class ExchangeErrorKind(str, Enum):
    """Why the authority did not hand out a role token."""

    FORBIDDEN = "forbidden"
    UNAVAILABLE = "unavailable"


class ExchangeError(ZTokenError):
    """
    Raised when the role token exchange with the authority fails.

    Attributes:
        kind: FORBIDDEN when the authority denied the role, UNAVAILABLE for
              network failures, unexpected statuses and malformed bodies.
        status_code: HTTP status returned by the authority, None when no
                     response was received.
    """

    def __init__(
        self,
        kind: ExchangeErrorKind,
        message: str = "",
        status_code: Optional[int] = None,
    ):
        self.kind = kind
        self.status_code = status_code
        if not message:
            message = f"Role token exchange failed ({kind.value})"
        if status_code is not None:
            message = f"{message} [status={status_code}]"
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        return self.kind is ExchangeErrorKind.UNAVAILABLE

    @property
    def forbidden(self) -> bool:
        return self.kind is ExchangeErrorKind.FORBIDDEN


class ValidationError(ZTokenError):
    """
    Raised when a token is malformed, expired, wrongly bound or badly signed.

    A role token failing validation right after an exchange usually points
    at clock skew or a protocol mismatch, so it is retryable like an
    unavailable authority.
    """

    retryable = True
