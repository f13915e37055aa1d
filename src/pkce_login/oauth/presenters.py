"""Presenters that put the authorization URL in front of the user.

Each presenter takes the URL and the attempt's cancel event. Nothing is
shown once the attempt has been canceled.
"""

from __future__ import annotations

import asyncio
import webbrowser

import typer

from pkce_login.exceptions import PresentationFailedError
from pkce_login.logging_config import get_logger

logger = get_logger(__name__)


async def open_browser(url: str, cancel: asyncio.Event) -> None:
    """Open the authorization URL in the system browser.

    Raises:
        PresentationFailedError: If no browser could be launched
    """
    if cancel.is_set():
        logger.debug("Attempt canceled, not opening a browser")
        return

    try:
        opened = await asyncio.to_thread(webbrowser.open, url)
    except webbrowser.Error as e:
        raise PresentationFailedError(detail=str(e)) from e

    if not opened:
        raise PresentationFailedError(detail="no usable web browser found")

    logger.debug("Opened authorization URL in the system browser")


def print_url(url: str, cancel: asyncio.Event) -> None:
    """Ask the user to open the authorization URL themselves."""
    if cancel.is_set():
        return
    typer.echo("Open the following URL in your browser to sign in:", err=True)
    typer.echo(f"\n    {url}\n", err=True)


async def browser_or_print(url: str, cancel: asyncio.Event) -> None:
    """Open the browser, falling back to printing the URL."""
    try:
        await open_browser(url, cancel)
    except PresentationFailedError as e:
        logger.info("Could not open a browser (%s), printing the URL instead", e.detail)
        print_url(url, cancel)
