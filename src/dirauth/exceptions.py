"""Exceptions for dirauth."""

from __future__ import annotations

from fastapi import status
from safir.fastapi import ClientRequestError
from safir.slack.blockkit import SlackException

__all__ = [
    "DirectoryBindError",
    "DirectoryConnectionError",
    "DirectoryError",
    "DirectorySearchError",
    "InvalidCredentialsError",
]


class InvalidCredentialsError(ClientRequestError):
    """The username or password was missing or did not match.

    Does not say which, so callers cannot learn which usernames exist in the
    directory.
    """

    error = "invalid_credentials"
    status_code = status.HTTP_401_UNAUTHORIZED


class DirectoryError(SlackException):
    """Talking to the LDAP server failed.

    This is the base class for transport and protocol failures. A user that
    doesn't exist or a password that doesn't match is not an error and is
    never reported with this exception.
    """


class DirectoryConnectionError(DirectoryError):
    """The connection to the LDAP server failed.

    Parameters
    ----------
    message
        Human-readable error message.
    user
        User on whose behalf the operation was performed, if known.
    code
        Short code identifying the kind of failure: the symbolic ``errno``
        name for operating system errors, otherwise the name of the
        underlying exception class.
    """

    def __init__(
        self, message: str, user: str | None = None, *, code: str
    ) -> None:
        super().__init__(message, user)
        self.code = code


class DirectoryBindError(DirectoryError):
    """Binding to the LDAP server failed."""


class DirectorySearchError(DirectoryError):
    """Searching the LDAP server failed."""
