"""Authentication of users against an LDAP directory."""

from __future__ import annotations

import asyncio
import re
from typing import Any

from bonsai.utils import escape_filter_exp
from structlog.stdlib import BoundLogger

from ..config import LDAPConfig
from ..decoder import decode_entry
from ..exceptions import DirectoryConnectionError, DirectoryError
from ..models.auth import AuthenticationResult
from ..models.ldap import DirectoryEntry
from ..storage.ldap import DirectoryConnection, DirectoryConnectionFactory

_PLACEHOLDER_REGEX = re.compile(r"\{0\}", re.IGNORECASE)
"""Matches the username placeholder in the search filter template."""

__all__ = [
    "AuthenticationAttempt",
    "DirectoryAuthenticator",
    "build_search_filter",
]


def build_search_filter(template: str, username: str) -> str:
    """Substitute a username into a search filter template.

    Parameters
    ----------
    template
        LDAP filter in which every ``{0}`` is replaced by the username.
    username
        The username. Filter metacharacters are escaped so that it only
        matches itself.

    Returns
    -------
    str
        The search filter.
    """
    escaped = escape_filter_exp(username)
    return _PLACEHOLDER_REGEX.sub(lambda _: escaped, template)


class AuthenticationAttempt:
    """State of a single authentication attempt.

    Holds the connection used by the attempt, the entry found by the search,
    and whether the password was verified. Completion is latched: only the
    first call to `finish` produces the outcome, and the connection is
    destroyed at that point. Later calls, whether from the step sequence or
    from the connection's error channel, do nothing.

    Parameters
    ----------
    connection
        Connection owned by this attempt.
    logger
        Logger to use.
    """

    def __init__(
        self, connection: DirectoryConnection, logger: BoundLogger
    ) -> None:
        self.connection = connection
        self.entry: DirectoryEntry | None = None
        self.profile: dict[str, Any] | None = None
        self.authenticated = False
        self._logger = logger
        self._done = False
        loop = asyncio.get_running_loop()
        self._outcome: asyncio.Future[AuthenticationResult] = (
            loop.create_future()
        )

    @property
    def done(self) -> bool:
        """Whether the outcome has already been determined."""
        return self._done

    @property
    def outcome(self) -> asyncio.Future[AuthenticationResult]:
        """Future holding the outcome of the attempt."""
        return self._outcome

    def finish(self, error: DirectoryError | None = None) -> bool:
        """Complete the attempt.

        Parameters
        ----------
        error
            The failure, if the attempt failed. Otherwise, the outcome is
            determined by whether the password was verified.

        Returns
        -------
        bool
            `True` if this call completed the attempt, `False` if it had
            already been completed.
        """
        if self._done:
            return False
        self._done = True
        if error:
            result = AuthenticationResult.failed(error)
        elif self.authenticated and self.profile:
            result = AuthenticationResult.authenticated(self.profile)
        else:
            result = AuthenticationResult.not_authenticated()
        self._outcome.set_result(result)
        self.connection.destroy()
        return True

    def handle_connection_error(self, error: DirectoryConnectionError) -> None:
        """Handle a failure reported by the connection's error channel.

        Parameters
        ----------
        error
            The reported failure. Failures the connection recovers from by
            itself are ignored. All others fail the attempt.
        """
        if self.connection.is_recoverable(error):
            self._logger.debug(
                "Ignoring recoverable LDAP connection error",
                error=str(error),
                code=error.code,
            )
            return
        if self._done:
            return
        self._logger.error(
            "LDAP connection error", error=str(error), code=error.code
        )
        self.finish(error)


class DirectoryAuthenticator:
    """Authenticate users with a username and password.

    Each authentication opens its own connection, binds as the service
    account, searches for the user, unbinds, and then binds as the user's DN
    with the provided password. Nothing is shared between attempts except
    the configuration and the limit on open connections.

    Parameters
    ----------
    config
        Configuration of the LDAP server.
    connection_factory
        Creates the connection for each attempt.
    slots
        Limits the number of attempts with an open connection.
    logger
        Logger to use.
    """

    def __init__(
        self,
        config: LDAPConfig,
        connection_factory: DirectoryConnectionFactory,
        slots: asyncio.Semaphore,
        logger: BoundLogger,
    ) -> None:
        self._config = config
        self._connection_factory = connection_factory
        self._slots = slots
        self._logger = logger.bind(ldap_url=str(config.url))

    async def authenticate(
        self, username: str | None, password: str | None
    ) -> dict[str, Any] | None:
        """Authenticate a user, raising an exception on errors.

        Parameters
        ----------
        username
            Username of the user.
        password
            Password of the user.

        Returns
        -------
        dict or None
            The decoded directory entry of the user if the password was
            correct, otherwise `None`.

        Raises
        ------
        DirectoryError
            Raised if talking to the LDAP server failed.
        """
        result = await self.validate(username, password)
        if result.error:
            raise result.error
        return result.profile

    async def validate(
        self, username: str | None, password: str | None
    ) -> AuthenticationResult:
        """Check a username and password against the directory.

        Parameters
        ----------
        username
            Username of the user.
        password
            Password of the user.

        Returns
        -------
        AuthenticationResult
            Outcome of the attempt. An unknown user and a wrong password both
            result in a status of ``NOT_AUTHENTICATED``.
        """
        logger = self._logger.bind(user=username)

        # An empty password would be an anonymous bind, which succeeds.
        if not username or not password:
            logger.debug("Username or password missing")
            return AuthenticationResult.not_authenticated()

        async with self._slots:
            connection = self._connection_factory.create(username)
            attempt = AuthenticationAttempt(connection, logger)
            connection.on_error(attempt.handle_connection_error)
            steps = asyncio.create_task(
                self._run_steps(attempt, username, password, logger)
            )
            try:
                await asyncio.wait(
                    (steps, attempt.outcome),
                    return_when=asyncio.FIRST_COMPLETED,
                )
            finally:
                if not steps.done():
                    steps.cancel()
                connection.destroy()
            if not attempt.outcome.done():
                # The steps raised an unexpected exception. Propagate it.
                steps.result()
            result = attempt.outcome.result()

        logger.info("Authentication finished", status=result.status.value)
        return result

    async def _run_steps(
        self,
        attempt: AuthenticationAttempt,
        username: str,
        password: str,
        logger: BoundLogger,
    ) -> None:
        """Run the bind, search, unbind, and verify steps in order."""
        try:
            await self._bind_service(attempt, logger)
            await self._search(attempt, username, logger)
        except DirectoryError as e:
            attempt.finish(e)
            return
        await self._unbind(attempt, logger)
        await self._verify(attempt, password, logger)
        attempt.finish()

    async def _bind_service(
        self, attempt: AuthenticationAttempt, logger: BoundLogger
    ) -> None:
        """Bind as the service account so that the user can be found."""
        bind_dn = self._config.bind_dn
        password = self._config.bind_password.get_secret_value()
        try:
            await attempt.connection.bind(bind_dn, password)
        except DirectoryError as e:
            logger.error(
                "Cannot bind to LDAP as service account",
                bind_dn=bind_dn,
                error=str(e),
            )
            raise

    async def _search(
        self,
        attempt: AuthenticationAttempt,
        username: str,
        logger: BoundLogger,
    ) -> None:
        """Search for the user's entry."""
        search = build_search_filter(self._config.search_query, username)
        logger = logger.bind(
            ldap_base=self._config.base_dn, ldap_search=search
        )
        logger.debug("Searching LDAP for user")
        try:
            entries = await attempt.connection.search(
                self._config.base_dn, search
            )
        except DirectoryError as e:
            logger.error("Cannot search LDAP", error=str(e))
            raise
        if not entries:
            logger.debug("No LDAP entry found for user")
            return
        if len(entries) > 1:
            dns = [e.dn for e in entries]
            logger.warning("Multiple LDAP entries found, using first", dns=dns)
        attempt.entry = entries[0]

    async def _unbind(
        self, attempt: AuthenticationAttempt, logger: BoundLogger
    ) -> None:
        """End the service account session."""
        try:
            await attempt.connection.unbind()
        except DirectoryError as e:
            logger.warning("Error unbinding from LDAP", error=str(e))

    async def _verify(
        self,
        attempt: AuthenticationAttempt,
        password: str,
        logger: BoundLogger,
    ) -> None:
        """Check the password by binding as the user's DN."""
        if not attempt.entry:
            return
        attempt.profile = decode_entry(attempt.entry)
        dn = attempt.profile["dn"]
        try:
            await attempt.connection.bind(dn, password)
        except DirectoryError as e:
            logger.info("Password verification failed", dn=dn, error=str(e))
            return
        attempt.authenticated = True
