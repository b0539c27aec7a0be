"""Application definition for dirauth."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from importlib.metadata import version

import structlog
from fastapi import FastAPI
from safir.fastapi import ClientRequestError, client_request_error_handler
from safir.logging import configure_uvicorn_logging
from safir.slack.webhook import SlackRouteErrorHandler

from .dependencies.config import config_dependency
from .dependencies.context import context_dependency
from .handlers import internal, login

__all__ = ["create_app"]


def create_app(*, load_config: bool = True) -> FastAPI:
    """Create the FastAPI application.

    This is in a function rather than using a global variable (as is more
    typical for FastAPI) so that the test suite can recreate the application
    with a different configuration.

    Parameters
    ----------
    load_config
        If set to `False`, do not load the configuration while creating the
        application. Slack alerts and Uvicorn logging are then left
        unconfigured. The configuration is still loaded on startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
        config = config_dependency.config()
        await context_dependency.initialize(config)

        yield

        await context_dependency.aclose()

    app = FastAPI(
        title="dirauth",
        description=(
            "dirauth checks usernames and passwords against an LDAP directory"
            " and returns the directory profile of authenticated users."
        ),
        version=version("dirauth"),
        tags_metadata=[
            {
                "name": "user",
                "description": "Routes for authenticating users.",
            },
            {
                "name": "internal",
                "description": "Internal routes used by health checks.",
            },
        ],
        lifespan=lifespan,
    )

    # Add all of the routes.
    app.include_router(internal.router)
    app.include_router(login.router)

    # Load configuration if it is available to us and configure Uvicorn
    # logging.
    config = None
    if load_config:
        config = config_dependency.config()
        configure_uvicorn_logging(config.log_level)

    # Configure Slack alerts.
    if config and config.slack_alerts and config.slack_webhook:
        logger = structlog.get_logger("dirauth")
        SlackRouteErrorHandler.initialize(
            config.slack_webhook.get_secret_value(), "dirauth", logger
        )
        logger.debug("Initialized Slack webhook")

    # Handle exceptions descended from ClientRequestError.
    app.exception_handler(ClientRequestError)(client_request_error_handler)

    return app
