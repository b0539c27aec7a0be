"""LDAP connection layer for dirauth."""

from __future__ import annotations

import asyncio
import errno
from collections.abc import Awaitable, Callable
from typing import Any

import bonsai
from bonsai import LDAPClient, LDAPSearchScope
from bonsai.asyncio import AIOLDAPConnection
from structlog.stdlib import BoundLogger

from ..config import LDAPConfig
from ..constants import GUID_ATTRIBUTE, PHOTO_ATTRIBUTE
from ..exceptions import (
    DirectoryBindError,
    DirectoryConnectionError,
    DirectoryError,
    DirectorySearchError,
)
from ..models.ldap import DirectoryEntry

type ErrorListener = Callable[[DirectoryConnectionError], None]
"""Callback notified of connection failures."""

_CONNECTION_ERRORS = (bonsai.ConnectionError, bonsai.TimeoutError, OSError)
"""Exceptions that indicate the connection itself failed."""

__all__ = [
    "DirectoryConnection",
    "DirectoryConnectionFactory",
    "ErrorListener",
    "error_code",
]


def error_code(exc: BaseException) -> str:
    """Return the short code identifying a connection failure.

    Parameters
    ----------
    exc
        Exception raised by the LDAP client or the operating system.

    Returns
    -------
    str
        Symbolic ``errno`` name, such as ``ECONNRESET``, for operating system
        errors that carry one, and otherwise the name of the exception class.
    """
    if isinstance(exc, OSError) and exc.errno in errno.errorcode:
        return errno.errorcode[exc.errno]
    return type(exc).__name__


class DirectoryConnection:
    """Connection to the LDAP server for a single authentication attempt.

    Wraps a bonsai asyncio connection and provides bind, search, unbind, and
    destroy operations plus an error channel. bonsai binds while opening a
    connection, so each bind closes any existing session and opens a new one
    with the new credentials.

    Failures of the connection itself (network errors and timeouts) are
    raised from the operation that hit them and are also reported to every
    listener registered with `on_error`. Listeners are called from the event
    loop after the operation has failed, not synchronously.

    Parameters
    ----------
    config
        Configuration of the LDAP server.
    logger
        Logger for debug messages and errors.
    user
        User on whose behalf the connection is used, for error reporting.
    """

    def __init__(
        self,
        config: LDAPConfig,
        logger: BoundLogger,
        *,
        user: str | None = None,
    ) -> None:
        self._config = config
        self._logger = logger.bind(ldap_url=str(config.url))
        self._user = user
        self._conn: AIOLDAPConnection | None = None
        self._credentials: tuple[str, str] | None = None
        self._listeners: list[ErrorListener] = []
        self._idle_timer: asyncio.TimerHandle | None = None
        self._destroyed = False

    @property
    def destroyed(self) -> bool:
        """Whether `destroy` has been called."""
        return self._destroyed

    def on_error(self, listener: ErrorListener) -> None:
        """Register a listener for connection failures.

        Parameters
        ----------
        listener
            Called with the `~dirauth.exceptions.DirectoryConnectionError`
            for each failure of the connection until it is destroyed.
        """
        self._listeners.append(listener)

    def is_recoverable(self, error: DirectoryConnectionError) -> bool:
        """Whether the connection recovers from this error by itself.

        Parameters
        ----------
        error
            A connection failure reported by this connection.

        Returns
        -------
        bool
            `True` if reconnecting is enabled and the error code is one of
            the configured recoverable errors.
        """
        if not self._config.reconnect:
            return False
        return error.code in self._config.reconnect_errors

    async def bind(self, dn: str, password: str) -> None:
        """Bind to the LDAP server.

        Parameters
        ----------
        dn
            DN to bind as.
        password
            Password for that DN.

        Raises
        ------
        DirectoryBindError
            Raised if the server rejected the bind.
        DirectoryConnectionError
            Raised if the server could not be reached.
        """
        self._check_usable()
        self._cancel_idle_timer()
        self._close()
        self._credentials = None
        self._conn = await self._connect(dn, password)
        self._credentials = (dn, password)
        self._start_idle_timer()

    async def search(
        self, base: str, filter_exp: str
    ) -> list[DirectoryEntry]:
        """Search the subtree below a base DN.

        Parameters
        ----------
        base
            Base DN of the search.
        filter_exp
            Search filter.

        Returns
        -------
        list of DirectoryEntry
            All matching entries, possibly empty.

        Raises
        ------
        DirectoryConnectionError
            Raised if the connection failed during the search.
        DirectorySearchError
            Raised if the server returned an error for the search.
        """

        async def run_search(conn: AIOLDAPConnection) -> list[Any]:
            return await conn.search(
                base=base,
                scope=LDAPSearchScope.SUB,
                filter_exp=filter_exp,
                timeout=self._timeout,
            )

        try:
            results = await self._perform("search", run_search)
        except bonsai.LDAPError as e:
            msg = f"LDAP search failed: {e!s}"
            raise DirectorySearchError(msg, self._user) from e
        return [DirectoryEntry.from_ldap(r) for r in results]

    async def unbind(self) -> None:
        """End the current session.

        Raises
        ------
        DirectoryError
            Raised if closing the session failed. The connection is no longer
            bound either way.
        """
        self._check_usable()
        self._cancel_idle_timer()
        conn, self._conn = self._conn, None
        self._credentials = None
        if not conn:
            return
        try:
            conn.close()
        except (bonsai.LDAPError, OSError) as e:
            msg = f"Cannot unbind from LDAP server: {e!s}"
            raise DirectoryError(msg, self._user) from e

    def destroy(self) -> None:
        """Close the connection for good.

        Safe to call more than once. Listeners are dropped and any later
        operation fails without notifying them.
        """
        if self._destroyed:
            return
        self._destroyed = True
        self._listeners.clear()
        self._cancel_idle_timer()
        self._close()
        self._credentials = None

    @property
    def _timeout(self) -> float | None:
        """Timeout for a single operation, in seconds."""
        if not self._config.timeout:
            return None
        return self._config.timeout.total_seconds()

    @property
    def _connect_timeout(self) -> float | None:
        """Timeout for opening the connection, in seconds."""
        if self._config.connect_timeout:
            return self._config.connect_timeout.total_seconds()
        return self._timeout

    def _cancel_idle_timer(self) -> None:
        if self._idle_timer:
            self._idle_timer.cancel()
            self._idle_timer = None

    def _check_usable(self) -> None:
        if self._destroyed:
            msg = "LDAP connection already closed"
            raise DirectoryConnectionError(msg, self._user, code="EBADF")

    def _close(self) -> None:
        """Close the underlying connection, if any, logging failures."""
        conn, self._conn = self._conn, None
        if not conn:
            return
        try:
            conn.close()
        except (bonsai.LDAPError, OSError) as e:
            self._logger.warning("Error closing LDAP connection", error=str(e))

    def _close_idle(self) -> None:
        self._idle_timer = None
        self._logger.debug("Closing idle LDAP connection")
        self._close()

    async def _connect(self, dn: str, password: str) -> AIOLDAPConnection:
        """Open a connection to the LDAP server bound with credentials."""
        client = self._create_client()
        client.set_credentials("SIMPLE", user=dn, password=password)
        try:
            return await client.connect(
                is_async=True, timeout=self._connect_timeout
            )
        except _CONNECTION_ERRORS as e:
            raise self._report(e, "Cannot connect to LDAP server") from e
        except bonsai.LDAPError as e:
            msg = f"Cannot bind to LDAP server as {dn}: {e!s}"
            raise DirectoryBindError(msg, self._user) from e

    def _create_client(self) -> LDAPClient:
        """Create the bonsai client for the configured server."""
        tls = self._config.tls
        start_tls = bool(tls and tls.start_tls)
        client = LDAPClient(str(self._config.url), tls=start_tls)
        client.set_raw_attributes([GUID_ATTRIBUTE, PHOTO_ATTRIBUTE])
        if tls:
            if tls.cert_policy:
                client.set_cert_policy(tls.cert_policy)
            if tls.ca_cert:
                client.set_ca_cert(str(tls.ca_cert))
            if tls.ca_cert_dir:
                client.set_ca_cert_dir(str(tls.ca_cert_dir))
            if tls.client_cert and tls.client_key:
                client.set_client_cert(str(tls.client_cert))
                client.set_client_key(str(tls.client_key))
        return client

    async def _ensure_connected(self) -> AIOLDAPConnection:
        """Return the open connection, reopening an idle one if allowed."""
        if self._conn:
            return self._conn
        if self._config.reconnect and self._credentials:
            self._logger.debug("Reopening closed LDAP connection")
            self._conn = await self._connect(*self._credentials)
            return self._conn
        msg = "Not connected to LDAP server"
        raise DirectoryConnectionError(msg, self._user, code="ENOTCONN")

    async def _perform[T](
        self, name: str, operation: Callable[[AIOLDAPConnection], Awaitable[T]]
    ) -> T:
        """Run an operation on the connection.

        If the connection fails with a recoverable error, reopen it with the
        current credentials and retry the operation once.

        Parameters
        ----------
        name
            Name of the operation, for error messages.
        operation
            Coroutine function performing the operation on a connection.

        Returns
        -------
        T
            Result of the operation.

        Raises
        ------
        DirectoryConnectionError
            Raised if the connection failed.
        """
        self._check_usable()
        self._cancel_idle_timer()
        try:
            conn = await self._ensure_connected()
            try:
                return await operation(conn)
            except _CONNECTION_ERRORS as e:
                error = self._report(e, f"LDAP {name} failed")
                credentials = self._credentials
                if not self.is_recoverable(error) or not credentials:
                    raise error from e
            self._logger.info(
                "Reconnecting to LDAP server",
                error=str(error),
                code=error.code,
            )
            self._close()
            self._conn = await self._connect(*credentials)
            try:
                return await operation(self._conn)
            except _CONNECTION_ERRORS as e:
                raise self._report(e, f"LDAP {name} failed") from e
        finally:
            self._start_idle_timer()

    def _report(
        self, exc: BaseException, message: str
    ) -> DirectoryConnectionError:
        """Convert a connection failure and notify the listeners of it."""
        code = error_code(exc)
        error = DirectoryConnectionError(
            f"{message}: {exc!s}", self._user, code=code
        )
        if not self._destroyed:
            loop = asyncio.get_running_loop()
            for listener in self._listeners:
                loop.call_soon(listener, error)
        return error

    def _start_idle_timer(self) -> None:
        if not self._config.idle_timeout or not self._conn:
            return
        if self._destroyed:
            return
        loop = asyncio.get_running_loop()
        delay = self._config.idle_timeout.total_seconds()
        self._idle_timer = loop.call_later(delay, self._close_idle)


class DirectoryConnectionFactory:
    """Create connections to the LDAP server.

    Parameters
    ----------
    config
        Configuration of the LDAP server.
    logger
        Logger for the created connections.
    """

    def __init__(self, config: LDAPConfig, logger: BoundLogger) -> None:
        self._config = config
        self._logger = logger

    def create(self, user: str | None = None) -> DirectoryConnection:
        """Create a new, not yet bound, connection.

        Parameters
        ----------
        user
            User on whose behalf the connection is used, for error reporting.

        Returns
        -------
        DirectoryConnection
            The new connection.
        """
        return DirectoryConnection(self._config, self._logger, user=user)
