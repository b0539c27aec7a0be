"""Tests for the LDAP connection layer."""

from __future__ import annotations

import asyncio
import errno
from datetime import timedelta

import bonsai
import pytest
import structlog

from dirauth.config import Config
from dirauth.exceptions import (
    DirectoryBindError,
    DirectoryConnectionError,
    DirectorySearchError,
)
from dirauth.factory import Factory
from dirauth.models.ldap import DirectoryAttribute
from dirauth.storage.ldap import DirectoryConnection, error_code

from ..support.config import configure
from ..support.constants import SERVICE_DN, SERVICE_PASSWORD
from ..support.ldap import MockLDAP


def _reset_error() -> ConnectionResetError:
    return ConnectionResetError(errno.ECONNRESET, "Connection reset by peer")


def test_error_code() -> None:
    assert error_code(_reset_error()) == "ECONNRESET"
    assert error_code(TimeoutError(errno.ETIMEDOUT, "Timed out")) == (
        "ETIMEDOUT"
    )
    assert error_code(OSError("no errno")) == "OSError"
    assert error_code(bonsai.ConnectionError("down")) == "ConnectionError"
    assert error_code(bonsai.TimeoutError("slow")) == "TimeoutError"


@pytest.mark.asyncio
async def test_lifecycle(factory: Factory, mock_ldap: MockLDAP) -> None:
    base = "dc=example,dc=com"
    entry = {"dn": "cn=alice,dc=example,dc=com", "cn": ["alice"]}
    mock_ldap.add_entries_for_test(base, "(cn=alice)", [entry])
    connection = factory.create_connection_factory().create("alice")

    await connection.bind(SERVICE_DN, SERVICE_PASSWORD)
    entries = await connection.search(base, "(cn=alice)")
    assert [e.dn for e in entries] == ["cn=alice,dc=example,dc=com"]
    assert entries[0].attributes == [DirectoryAttribute("cn", ["alice"])]
    assert await connection.search(base, "(cn=bob)") == []
    assert mock_ldap.searches == [
        (SERVICE_DN, base, "(cn=alice)"),
        (SERVICE_DN, base, "(cn=bob)"),
    ]

    await connection.unbind()
    assert mock_ldap.open_connections == []
    with pytest.raises(DirectoryConnectionError) as excinfo:
        await connection.search(base, "(cn=alice)")
    assert excinfo.value.code == "ENOTCONN"

    # Binding again after an unbind opens a new connection.
    await connection.bind(SERVICE_DN, SERVICE_PASSWORD)
    assert len(mock_ldap.open_connections) == 1

    connection.destroy()
    connection.destroy()
    assert connection.destroyed
    assert mock_ldap.open_connections == []
    with pytest.raises(DirectoryConnectionError) as excinfo:
        await connection.bind(SERVICE_DN, SERVICE_PASSWORD)
    assert excinfo.value.code == "EBADF"
    assert len(mock_ldap.binds) == 2


@pytest.mark.asyncio
async def test_bind_rejected(factory: Factory, mock_ldap: MockLDAP) -> None:
    connection = factory.create_connection_factory().create("alice")
    errors: list[DirectoryConnectionError] = []
    connection.on_error(errors.append)

    with pytest.raises(DirectoryBindError):
        await connection.bind(SERVICE_DN, "wrong-password")
    await asyncio.sleep(0)
    assert errors == []
    assert mock_ldap.open_connections == []


@pytest.mark.asyncio
async def test_connection_error(
    factory: Factory, mock_ldap: MockLDAP
) -> None:
    mock_ldap.bind_failures[SERVICE_DN] = bonsai.ConnectionError("down")
    connection = factory.create_connection_factory().create("alice")
    errors: list[DirectoryConnectionError] = []
    connection.on_error(errors.append)

    with pytest.raises(DirectoryConnectionError) as excinfo:
        await connection.bind(SERVICE_DN, SERVICE_PASSWORD)
    assert excinfo.value.code == "ConnectionError"
    assert excinfo.value.user == "alice"

    # Listeners are notified from the event loop, not synchronously.
    assert errors == []
    await asyncio.sleep(0)
    assert errors == [excinfo.value]
    assert not connection.is_recoverable(excinfo.value)

    # Once destroyed, failures are no longer reported.
    connection.destroy()
    with pytest.raises(DirectoryConnectionError):
        await connection.bind(SERVICE_DN, SERVICE_PASSWORD)
    await asyncio.sleep(0)
    assert len(errors) == 1


@pytest.mark.asyncio
async def test_search_error(factory: Factory, mock_ldap: MockLDAP) -> None:
    connection = factory.create_connection_factory().create("alice")
    await connection.bind(SERVICE_DN, SERVICE_PASSWORD)

    mock_ldap.search_failures.append(bonsai.LDAPError("Bad search filter"))
    with pytest.raises(DirectorySearchError, match="Bad search filter"):
        await connection.search("dc=example,dc=com", "(cn=alice")

    mock_ldap.search_failures.append(_reset_error())
    with pytest.raises(DirectoryConnectionError) as excinfo:
        await connection.search("dc=example,dc=com", "(cn=alice)")
    assert excinfo.value.code == "ECONNRESET"
    assert not connection.is_recoverable(excinfo.value)
    connection.destroy()


@pytest.mark.asyncio
async def test_reconnect(mock_ldap: MockLDAP) -> None:
    config = configure("reconnect")
    logger = structlog.get_logger("dirauth")
    connection = DirectoryConnection(config.ldap, logger, user="alice")
    errors: list[DirectoryConnectionError] = []
    connection.on_error(errors.append)
    base = config.ldap.base_dn
    entry = {"dn": "cn=alice,dc=example,dc=com"}
    mock_ldap.add_entries_for_test(base, "(cn=alice)", [entry])

    await connection.bind(SERVICE_DN, SERVICE_PASSWORD)
    mock_ldap.search_failures.append(_reset_error())
    entries = await connection.search(base, "(cn=alice)")

    assert [e.dn for e in entries] == ["cn=alice,dc=example,dc=com"]
    assert mock_ldap.binds == [SERVICE_DN, SERVICE_DN]
    assert len(mock_ldap.searches) == 2
    assert len(mock_ldap.open_connections) == 1
    await asyncio.sleep(0)
    assert len(errors) == 1
    assert errors[0].code == "ECONNRESET"
    assert connection.is_recoverable(errors[0])

    # Only one retry is attempted.
    mock_ldap.search_failures.extend([_reset_error(), _reset_error()])
    with pytest.raises(DirectoryConnectionError):
        await connection.search(base, "(cn=alice)")
    connection.destroy()
    assert mock_ldap.open_connections == []


@pytest.mark.asyncio
async def test_idle_timeout(config: Config, mock_ldap: MockLDAP) -> None:
    logger = structlog.get_logger("dirauth")
    ldap_config = config.ldap.model_copy(
        update={"idle_timeout": timedelta(milliseconds=10)}
    )
    connection = DirectoryConnection(ldap_config, logger)

    await connection.bind(SERVICE_DN, SERVICE_PASSWORD)
    await asyncio.sleep(0.1)
    assert mock_ldap.open_connections == []
    with pytest.raises(DirectoryConnectionError) as excinfo:
        await connection.search("dc=example,dc=com", "(cn=alice)")
    assert excinfo.value.code == "ENOTCONN"
    connection.destroy()

    # With reconnection enabled, the idle connection is reopened.
    ldap_config = ldap_config.model_copy(update={"reconnect": True})
    connection = DirectoryConnection(ldap_config, logger)
    await connection.bind(SERVICE_DN, SERVICE_PASSWORD)
    await asyncio.sleep(0.1)
    assert mock_ldap.open_connections == []
    assert await connection.search("dc=example,dc=com", "(cn=alice)") == []
    assert mock_ldap.binds == [SERVICE_DN, SERVICE_DN, SERVICE_DN]
    connection.destroy()
    assert mock_ldap.open_connections == []


@pytest.mark.asyncio
async def test_client_options(mock_ldap: MockLDAP) -> None:
    config = configure("uid")
    logger = structlog.get_logger("dirauth")
    connection = DirectoryConnection(config.ldap, logger)

    await connection.bind(SERVICE_DN, SERVICE_PASSWORD)
    await connection.search(config.ldap.base_dn, "(uid=alice)")
    connection.destroy()

    client = mock_ldap.clients[0]
    assert client.url == "ldaps://ldap.example.com:636/"
    assert not client.tls
    client.set_raw_attributes.assert_called_once_with(
        ["objectGUID", "thumbnailPhoto"]
    )
    client.set_cert_policy.assert_called_once_with("demand")
    client.set_ca_cert.assert_called_once_with("/etc/ssl/certs/ca.pem")
    client.set_client_cert.assert_not_called()
    assert mock_ldap.connect_timeouts == [5.0]
    assert mock_ldap.search_timeouts == [10.0]
