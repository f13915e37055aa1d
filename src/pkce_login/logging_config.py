"""Logging configuration for pkce-login.

Everything goes to stderr: stdout is reserved for the token printed by
the CLI. The embedded uvicorn server that receives the OAuth callback
logs through the same handler, but is held at WARNING so its startup
chatter never shows up in the middle of an interactive login.
"""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pkce_login.config import Config

# Package logger name
LOGGER_NAME = "pkce_login"

# Loggers used by the callback server
SERVER_LOGGER_NAMES = ("uvicorn", "uvicorn.error", "uvicorn.access", "uvicorn.asgi")
SERVER_MIN_LEVEL = logging.WARNING

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

_handler: logging.Handler | None = None


def quiet_server_loggers(level: int = SERVER_MIN_LEVEL) -> None:
    """Hold the callback server's loggers at ``level`` or WARNING, whichever is higher.

    Only ever raises a level; a stricter level set by the application wins.
    """
    floor = max(level, SERVER_MIN_LEVEL)
    for name in SERVER_LOGGER_NAMES:
        server_logger = logging.getLogger(name)
        if server_logger.getEffectiveLevel() < floor:
            server_logger.setLevel(floor)


def setup_logging(config: Config) -> None:
    """Configure logging for the package and the callback server.

    The first call installs a stderr handler on the package logger and on
    the uvicorn logger. Later calls only change levels.

    Args:
        config: Configuration containing the log_level setting
    """
    global _handler

    log_level = getattr(logging, config.log_level.value)

    package_logger = logging.getLogger(LOGGER_NAME)
    package_logger.setLevel(log_level)

    server_logger = logging.getLogger(SERVER_LOGGER_NAMES[0])
    for name in SERVER_LOGGER_NAMES:
        logging.getLogger(name).setLevel(logging.NOTSET)
    server_logger.setLevel(max(log_level, SERVER_MIN_LEVEL))

    if _handler is None:
        _handler = logging.StreamHandler(sys.stderr)
        _handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))

        for target in (package_logger, server_logger):
            target.handlers.clear()
            target.addHandler(_handler)
            target.propagate = False

    _handler.setLevel(log_level)

    package_logger.debug("Logging configured with level %s", config.log_level.value)


def get_logger(name: str) -> logging.Logger:
    """Get a child of the package logger for a module.

    Args:
        name: Logger name, typically __name__ of the calling module

    Returns:
        Logger instance
    """
    if name.startswith(LOGGER_NAME):
        return logging.getLogger(name)

    return logging.getLogger(f"{LOGGER_NAME}.{name}")


def reset_logging() -> None:
    """Undo setup_logging and quiet_server_loggers.

    Used by tests to allow re-initialization.
    """
    global _handler

    for name in (LOGGER_NAME, *SERVER_LOGGER_NAMES):
        target = logging.getLogger(name)
        if _handler is not None and _handler in target.handlers:
            target.removeHandler(_handler)
            target.propagate = True
        target.setLevel(logging.NOTSET)

    _handler = None
