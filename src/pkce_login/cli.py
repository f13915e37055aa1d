"""Command-line interface for pkce-login.

Runs an interactive login and prints the access token to stdout so it
can be captured by scripts, e.g. ``TOKEN=$(pkce-login login)``.
"""

from __future__ import annotations

import asyncio
import sys

import typer

from pkce_login import __version__
from pkce_login.config import Config, ConfigError, load_config
from pkce_login.exceptions import LoginError
from pkce_login.logging_config import get_logger, setup_logging
from pkce_login.oauth.presenters import browser_or_print, print_url

app = typer.Typer(
    name="pkce-login",
    help="Sign in with OAuth 2.0 Authorization Code + PKCE and print the access token",
    add_completion=False,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"pkce-login version {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
) -> None:
    """pkce-login CLI."""


@app.command()
def login(
    config_path: str | None = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to configuration file (JSON or YAML)",
    ),
    log_level: str | None = typer.Option(
        None,
        "--log-level",
        "-l",
        help="Log level override (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    ),
    url: str | None = typer.Option(
        None,
        "--url",
        "-u",
        help="Base URL of the authorization server",
    ),
    client_id: str | None = typer.Option(
        None,
        "--client-id",
        help="OAuth client identifier",
    ),
    scope: str | None = typer.Option(
        None,
        "--scope",
        "-s",
        help="Space-separated scopes to request",
    ),
    timeout: float | None = typer.Option(
        None,
        "--timeout",
        "-t",
        help="Seconds to wait for the sign-in to complete",
    ),
    no_browser: bool = typer.Option(
        False,
        "--no-browser",
        help="Print the authorization URL instead of opening a browser",
    ),
) -> None:
    """Sign in through the browser and print the access token."""
    cli_args: dict[str, str | float | bool | None] = {
        "log_level": log_level,
        "auth_server_url": url,
        "client_id": client_id,
        "scope": scope,
        "login_timeout": timeout,
    }
    if no_browser:
        cli_args["open_browser"] = False

    try:
        config = load_config(path=config_path, cli_args=cli_args)
        config.require_login_settings()
    except ConfigError as e:
        typer.echo(f"Configuration error: {e}", err=True)
        raise typer.Exit(code=1) from None

    setup_logging(config)
    logger = get_logger(__name__)

    try:
        access_token = asyncio.run(_run_login(config))
    except LoginError as e:
        typer.echo(f"Login failed: {e}", err=True)
        raise typer.Exit(code=1) from None
    except KeyboardInterrupt:
        logger.info("Login interrupted")
        raise typer.Exit(code=130) from None

    typer.echo(access_token)


async def _run_login(config: Config) -> str:
    """Run one login attempt with the configured presenter.

    Args:
        config: Loaded configuration

    Returns:
        The access token
    """
    presenter = browser_or_print if config.open_browser else print_url
    async with config.create_flow() as flow:
        tokens = await flow.login(presenter, timeout=config.login_timeout)
    return tokens.access_token


@app.command()
def version() -> None:
    """Print version information."""
    typer.echo(f"pkce-login version {__version__}")
    typer.echo(f"Python {sys.version}")


def main() -> None:
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
