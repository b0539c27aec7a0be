"""Mock bonsai LDAP API for testing."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from collections.abc import Iterator
from typing import Any
from unittest.mock import Mock, patch

import bonsai
from bonsai.asyncio import AIOLDAPConnection

from dirauth.dependencies.config import config_dependency
from dirauth.services.authenticator import build_search_filter
from dirauth.storage import ldap

_SearchResults = list[dict[str, Any]]

__all__ = [
    "MockLDAP",
    "MockLDAPClient",
    "MockLDAPConnection",
    "patch_ldap",
]


class MockLDAPConnection(Mock):
    """Mock bonsai asyncio connection, bound as one DN."""

    def __init__(self, server: MockLDAP, dn: str) -> None:
        super().__init__(spec=AIOLDAPConnection)
        self.server = server
        self.dn = dn
        self.closed = False

    def close(self) -> None:
        self.closed = True

    async def search(
        self,
        base: str | None = None,
        scope: bonsai.LDAPSearchScope | None = None,
        filter_exp: str | None = None,
        timeout: float | None = None,
        **kwargs: Any,
    ) -> _SearchResults:
        assert not self.closed, "search on closed connection"
        assert scope == bonsai.LDAPSearchScope.SUB
        assert base
        assert filter_exp
        self.server.searches.append((self.dn, base, filter_exp))
        self.server.search_timeouts.append(timeout)
        if self.server.search_gate:
            await self.server.search_gate.wait()
        if self.server.search_failures:
            raise self.server.search_failures.pop(0)
        entries = self.server.entries[base].get(filter_exp, [])
        return [dict(e) for e in entries]


class MockLDAPClient(Mock):
    """Mock bonsai client that connects to a `MockLDAP` server."""

    def __init__(self, server: MockLDAP, url: str, tls: bool) -> None:
        super().__init__(spec=bonsai.LDAPClient)
        self.server = server
        self.url = url
        self.tls = tls
        self.user: str | None = None
        self.password: str | None = None

    def set_credentials(
        self,
        mechanism: str,
        user: str | None = None,
        password: str | None = None,
        **kwargs: Any,
    ) -> None:
        assert mechanism == "SIMPLE"
        self.user = user
        self.password = password

    async def connect(
        self, is_async: bool = False, timeout: float | None = None
    ) -> MockLDAPConnection:
        assert is_async
        assert self.user is not None
        assert self.password is not None
        self.server.connect_timeouts.append(timeout)
        return self.server.bind(self.user, self.password)


class MockLDAP:
    """Mock LDAP server for testing.

    Tracks every bind, search, and connection so that tests can check the
    sequence of operations. Failures can be injected for binds as a given
    DN and for searches.
    """

    def __init__(self) -> None:
        self.passwords: dict[str, str] = {}
        self.entries: dict[str, dict[str, _SearchResults]] = defaultdict(dict)
        self.binds: list[str] = []
        self.searches: list[tuple[str, str, str]] = []
        self.search_timeouts: list[float | None] = []
        self.connect_timeouts: list[float | None] = []
        self.clients: list[MockLDAPClient] = []
        self.connections: list[MockLDAPConnection] = []
        self.bind_failures: dict[str, BaseException] = {}
        self.search_failures: list[BaseException] = []
        self.search_gate: asyncio.Event | None = None

    @property
    def open_connections(self) -> list[MockLDAPConnection]:
        """Connections that have not been closed."""
        return [c for c in self.connections if not c.closed]

    def add_account(self, dn: str, password: str) -> None:
        """Add an account that can bind.

        Parameters
        ----------
        dn
            DN of the account.
        password
            Password of the account.
        """
        self.passwords[dn] = password

    def add_entries_for_test(
        self, base_dn: str, filter_exp: str, entries: _SearchResults
    ) -> None:
        """Add LDAP entries returned by a search.

        Parameters
        ----------
        base_dn
            The base DN of the search.
        filter_exp
            The exact search filter.
        entries
            The entries returned by that search. Each must have a ``dn`` key.
        """
        self.entries[base_dn][filter_exp] = entries

    def add_test_user(
        self,
        username: str,
        dn: str,
        password: str,
        attributes: dict[str, Any] | None = None,
    ) -> None:
        """Add an entry and account for a test user.

        The entry is returned by the configured search for the username.

        Parameters
        ----------
        username
            Username the user logs in with.
        dn
            DN of the entry of the user.
        password
            Password of the user.
        attributes
            Attributes of the entry, other than the DN.
        """
        config = config_dependency.config()
        search = build_search_filter(config.ldap.search_query, username)
        entry = {"dn": dn, **(attributes or {})}
        self.add_entries_for_test(config.ldap.base_dn, search, [entry])
        self.add_account(dn, password)

    def bind(self, dn: str, password: str) -> MockLDAPConnection:
        """Open a connection bound as the given DN."""
        self.binds.append(dn)
        if dn in self.bind_failures:
            raise self.bind_failures[dn]
        if not password or self.passwords.get(dn) != password:
            raise bonsai.AuthenticationError("Invalid credentials")
        connection = MockLDAPConnection(self, dn)
        self.connections.append(connection)
        return connection

    def create_client(
        self, url: str, tls: bool = False
    ) -> MockLDAPClient:
        """Create a client, used in place of `bonsai.LDAPClient`."""
        client = MockLDAPClient(self, url, tls)
        self.clients.append(client)
        return client


def patch_ldap() -> Iterator[MockLDAP]:
    """Mock the bonsai API for testing.

    Returns
    -------
    MockLDAP
        The mock LDAP server.
    """
    mock_ldap = MockLDAP()
    with patch.object(ldap, "LDAPClient") as mock_client:
        mock_client.side_effect = mock_ldap.create_client
        yield mock_ldap
