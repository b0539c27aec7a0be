"""Command-line interface for dirauth."""

from __future__ import annotations

import sys
from pathlib import Path

import click
import structlog
import uvicorn
from safir.asyncio import run_with_asyncio
from safir.click import display_help

from .constants import CONFIG_PATH_ENV
from .dependencies.config import config_dependency
from .factory import Factory
from .models.profile import UserProfile

__all__ = [
    "help",
    "main",
    "run",
    "validate",
]


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(message="%(version)s")
def main() -> None:
    """Command-line interface for dirauth."""


@main.command()
@click.argument("topic", default=None, required=False, nargs=1)
@click.pass_context
def help(ctx: click.Context, topic: str | None) -> None:
    """Show help for any command."""
    display_help(main, ctx, topic)


@main.command()
@click.option(
    "--port", default=8080, type=int, help="Port to run the application on."
)
def run(*, port: int) -> None:
    """Run the application (for testing only)."""
    uvicorn.run(
        "dirauth.main:create_app",
        factory=True,
        port=port,
        reload=True,
        reload_dirs=["src"],
    )


@main.command()
@click.argument("username")
@click.option(
    "--password",
    prompt=True,
    hide_input=True,
    help="Password of the user (prompted for if not given).",
)
@click.option(
    "--config-path",
    envvar=CONFIG_PATH_ENV,
    type=click.Path(path_type=Path),
    default=None,
    help="Application configuration file.",
)
@run_with_asyncio
async def validate(
    *, username: str, password: str, config_path: Path | None
) -> None:
    """Check a username and password against the directory.

    Prints the profile of the user as JSON if the password is correct and
    exits with a non-zero status otherwise.
    """
    if config_path:
        config_dependency.set_config_path(config_path)
    config = await config_dependency()
    logger = structlog.get_logger("dirauth")
    async with Factory.standalone(config) as factory:
        authenticator = factory.create_authenticator()
        result = await authenticator.validate(username, password)
    if result.error:
        logger.error("Directory error", error=str(result.error))
        msg = f"Cannot check password: {result.error!s}"
        raise click.ClickException(msg)
    if not result.profile:
        raise click.ClickException("Invalid username or password")
    profile = UserProfile.from_directory(result.profile)
    sys.stdout.write(profile.model_dump_json(by_alias=True, indent=2) + "\n")
