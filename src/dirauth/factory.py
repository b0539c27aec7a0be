"""Create dirauth components."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import aclosing, asynccontextmanager
from dataclasses import dataclass
from typing import Self

import structlog
from safir.slack.webhook import SlackWebhookClient
from structlog.stdlib import BoundLogger

from .config import Config
from .services.authenticator import DirectoryAuthenticator
from .storage.ldap import DirectoryConnectionFactory

__all__ = ["Factory", "ProcessContext"]


@dataclass(frozen=True, slots=True)
class ProcessContext:
    """Per-process application context.

    This object caches the per-process state that is shared by every
    request and only needs to be recreated if the application configuration
    changes. LDAP connections are not part of it: each authentication attempt
    opens and closes its own.
    """

    config: Config
    """dirauth's configuration."""

    ldap_slots: asyncio.Semaphore
    """Limits the number of simultaneously open LDAP connections."""

    @classmethod
    async def from_config(cls, config: Config) -> Self:
        """Create a new process context from the dirauth configuration.

        Parameters
        ----------
        config
            The dirauth configuration.

        Returns
        -------
        ProcessContext
            Shared context for a dirauth process.
        """
        return cls(
            config=config,
            ldap_slots=asyncio.Semaphore(config.ldap.max_connections),
        )

    async def aclose(self) -> None:
        """Clean up a process context.

        Called during shutdown, or before recreating the process context using
        a different configuration. Nothing is currently held open between
        requests, so this only exists so that callers don't need to know that.
        """


class Factory:
    """Build dirauth components.

    Uses the contents of a `ProcessContext` to construct the components of the
    application on demand.

    Parameters
    ----------
    context
        Shared process context.
    logger
        Logger to use for errors.
    """

    @classmethod
    async def create(cls, config: Config) -> Self:
        """Create a component factory outside of a request.

        If an async context manager can be used, call `standalone` rather than
        this method.

        Parameters
        ----------
        config
            dirauth configuration.

        Returns
        -------
        Factory
            Newly-created factory. The caller must call `aclose` on the
            returned object during shutdown.
        """
        logger = structlog.get_logger("dirauth")
        context = await ProcessContext.from_config(config)
        return cls(context, logger)

    @classmethod
    @asynccontextmanager
    async def standalone(cls, config: Config) -> AsyncIterator[Self]:
        """Async context manager for dirauth components.

        Intended for command-line use. Uses the non-request default values for
        the dependencies of `Factory`.

        Parameters
        ----------
        config
            dirauth configuration.

        Yields
        ------
        Factory
            The factory. Must be used as an async context manager.

        Examples
        --------
        .. code-block:: python

           async with Factory.standalone(config) as factory:
               authenticator = factory.create_authenticator()
               result = await authenticator.validate(username, password)
        """
        factory = await cls.create(config)
        async with aclosing(factory):
            yield factory

    def __init__(self, context: ProcessContext, logger: BoundLogger) -> None:
        self._context = context
        self._logger = logger

    async def aclose(self) -> None:
        """Shut down the factory.

        After this method is called, the factory object is no longer valid and
        must not be used.
        """
        await self._context.aclose()

    def create_authenticator(self) -> DirectoryAuthenticator:
        """Create an authenticator for usernames and passwords.

        Returns
        -------
        DirectoryAuthenticator
            Newly-created authenticator.
        """
        return DirectoryAuthenticator(
            config=self._context.config.ldap,
            connection_factory=self.create_connection_factory(),
            slots=self._context.ldap_slots,
            logger=self._logger,
        )

    def create_connection_factory(self) -> DirectoryConnectionFactory:
        """Create a factory for connections to the LDAP server.

        Returns
        -------
        DirectoryConnectionFactory
            Newly-created connection factory.
        """
        return DirectoryConnectionFactory(
            self._context.config.ldap, self._logger
        )

    def create_slack_client(self) -> SlackWebhookClient | None:
        """Create a client for sending messages to Slack.

        Returns
        -------
        safir.slack.webhook.SlackWebhookClient or None
            Configured Slack client if a Slack webhook was configured,
            otherwise `None`.
        """
        if not self._context.config.slack_webhook:
            return None
        return SlackWebhookClient(
            self._context.config.slack_webhook.get_secret_value(),
            "dirauth",
            self._logger,
        )

    def set_logger(self, logger: BoundLogger) -> None:
        """Replace the internal logger.

        Used by the context dependency to update the logger for all
        newly-created components when it's rebound with additional context.

        Parameters
        ----------
        logger
            New logger.
        """
        self._logger = logger
