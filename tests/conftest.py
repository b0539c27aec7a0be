"""Test fixtures."""

from __future__ import annotations

from collections.abc import AsyncIterator, Iterator

import pytest
import pytest_asyncio
import respx
import structlog
from asgi_lifespan import LifespanManager
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from safir.testing.slack import MockSlackWebhook, mock_slack_webhook

from dirauth.config import Config
from dirauth.factory import Factory, ProcessContext
from dirauth.main import create_app

from .support.config import configure
from .support.constants import SERVICE_DN, SERVICE_PASSWORD
from .support.ldap import MockLDAP, patch_ldap


@pytest.fixture(autouse=True)
def environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Set default values of environment variables for testing."""
    monkeypatch.setenv("DIRAUTH_LDAP_BIND_PASSWORD", SERVICE_PASSWORD)
    monkeypatch.setenv(
        "DIRAUTH_SLACK_WEBHOOK", "https://slack.example.com/webhook"
    )


@pytest_asyncio.fixture
async def app(
    config: Config, mock_slack: MockSlackWebhook | None
) -> AsyncIterator[FastAPI]:
    """Return a configured test application.

    Wraps the application in a lifespan manager so that startup and shutdown
    events are sent during test execution.
    """
    app = create_app()
    async with LifespanManager(app):
        yield app


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    """Return an ``httpx.AsyncClient`` configured to talk to the test app."""
    async with AsyncClient(
        base_url="https://example.com/", transport=ASGITransport(app=app)
    ) as client:
        yield client


@pytest.fixture
def config() -> Config:
    """Set up and return the default test configuration.

    Notes
    -----
    This fixture must not be async so that it can be used by the cli tests,
    which must not be async because the Click support starts its own asyncio
    loop.
    """
    return configure("base")


@pytest_asyncio.fixture
async def factory(config: Config) -> AsyncIterator[Factory]:
    """Create a component factory for tests."""
    context = await ProcessContext.from_config(config)
    logger = structlog.get_logger("dirauth")
    factory = Factory(context, logger)
    yield factory
    await factory.aclose()


@pytest.fixture
def mock_ldap(config: Config) -> Iterator[MockLDAP]:
    """Replace the bonsai LDAP API with a mock class.

    The service account from the configuration can bind with the password
    from the environment.
    """
    for mock_ldap in patch_ldap():
        mock_ldap.add_account(SERVICE_DN, SERVICE_PASSWORD)
        yield mock_ldap


@pytest.fixture
def mock_slack(
    config: Config, respx_mock: respx.Router
) -> MockSlackWebhook | None:
    """Mock a Slack webhook."""
    if not config.slack_webhook:
        return None
    webhook = config.slack_webhook.get_secret_value()
    return mock_slack_webhook(webhook, respx_mock)
