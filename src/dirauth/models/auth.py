"""Models for the outcome of an authentication attempt."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from ..exceptions import DirectoryError

__all__ = [
    "AuthenticationResult",
    "AuthenticationStatus",
]


class AuthenticationStatus(Enum):
    """Possible outcomes of an authentication attempt."""

    AUTHENTICATED = "authenticated"
    """The password matched the user's entry in the directory."""

    NOT_AUTHENTICATED = "not_authenticated"
    """The user doesn't exist or the password didn't match."""

    ERROR = "error"
    """Talking to the directory failed."""


@dataclass(frozen=True, slots=True)
class AuthenticationResult:
    """Outcome of one authentication attempt.

    A user that doesn't exist and a password that doesn't match both produce
    `AuthenticationStatus.NOT_AUTHENTICATED` and cannot be told apart.
    """

    status: AuthenticationStatus
    """Overall outcome."""

    profile: dict[str, Any] | None = None
    """Decoded directory entry of the user, only set when authenticated."""

    error: DirectoryError | None = None
    """The failure, only set if the status is an error."""

    @classmethod
    def authenticated(cls, profile: dict[str, Any]) -> AuthenticationResult:
        """Create a successful result for the given profile."""
        return cls(status=AuthenticationStatus.AUTHENTICATED, profile=profile)

    @classmethod
    def not_authenticated(cls) -> AuthenticationResult:
        """Create a result for an unknown user or wrong password."""
        return cls(status=AuthenticationStatus.NOT_AUTHENTICATED)

    @classmethod
    def failed(cls, error: DirectoryError) -> AuthenticationResult:
        """Create a result for a failure talking to the directory."""
        return cls(status=AuthenticationStatus.ERROR, error=error)

    @property
    def is_authenticated(self) -> bool:
        """Whether the user was authenticated."""
        return self.status == AuthenticationStatus.AUTHENTICATED
