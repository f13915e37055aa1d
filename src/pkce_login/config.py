"""Configuration management for pkce-login.

Provides configuration loading from environment variables, .env files,
and optional configuration files with proper precedence handling.
"""

from __future__ import annotations

import contextlib
import ipaddress
import logging
import os
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, Field, field_validator

if TYPE_CHECKING:
    import httpx

    from pkce_login.oauth.flows import PKCELoginFlow

logger = logging.getLogger(__name__)

ENV_PREFIX = "PKCE_LOGIN_"


class ConfigError(Exception):
    """Raised when configuration validation fails."""


class LogLevel(str, Enum):
    """Supported log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class Config(BaseModel):
    """Configuration model for pkce-login.

    Configuration can be loaded from:
    - Environment variables with PKCE_LOGIN_ prefix
    - Optional .env file in the working directory
    - Optional configuration file passed via CLI
    """

    app_name: str = Field(default="pkce-login", description="Application name")
    log_level: LogLevel = Field(default=LogLevel.WARNING, description="Logging level")

    # Authorization server
    auth_server_url: str | None = Field(
        default=None, description="Base URL of the authorization server"
    )
    client_id: str | None = Field(default=None, description="OAuth client identifier")
    scope: str = Field(default="*", description="OAuth scopes (space-separated)")
    authorize_path: str = Field(
        default="/oauth/authorize", description="Authorization endpoint path"
    )
    token_path: str = Field(default="/oauth/token", description="Token endpoint path")

    # Loopback callback
    callback_host: str = Field(
        default="127.0.0.1", description="Loopback address for the callback listener"
    )
    callback_path: str = Field(default="/callback", description="Callback endpoint path")

    # Timing
    login_timeout: float = Field(
        default=300.0, gt=0, description="Seconds to wait for the user to finish signing in"
    )
    http_timeout: float = Field(
        default=30.0, gt=0, description="Timeout for token endpoint requests"
    )

    open_browser: bool = Field(
        default=True, description="Open the system browser instead of printing the URL"
    )

    model_config = {
        "extra": "forbid",
        "validate_assignment": True,
    }

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: Any) -> Any:
        """Normalize log level to uppercase."""
        if isinstance(v, str):
            return v.upper()
        return v

    @field_validator("auth_server_url")
    @classmethod
    def validate_auth_server_url(cls, v: str | None) -> str | None:
        """Require an http(s) URL and drop trailing slashes."""
        if v is None:
            return v
        if not v.startswith(("http://", "https://")):
            msg = f"auth_server_url must be an http(s) URL: {v}"
            raise ValueError(msg)
        return v.rstrip("/")

    @field_validator("authorize_path", "token_path", "callback_path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        """Paths are absolute."""
        if not v.startswith("/"):
            msg = f"path must start with '/': {v}"
            raise ValueError(msg)
        return v

    @field_validator("callback_host")
    @classmethod
    def validate_callback_host(cls, v: str) -> str:
        """Only loopback addresses may receive the authorization code."""
        if v == "localhost":
            return v
        try:
            address = ipaddress.ip_address(v)
        except ValueError:
            msg = f"callback_host must be 'localhost' or a loopback IP address: {v}"
            raise ValueError(msg) from None
        if not address.is_loopback:
            msg = f"callback_host must be a loopback address: {v}"
            raise ValueError(msg)
        return v

    def require_login_settings(self) -> None:
        """Check that the settings needed to log in are present.

        Raises:
            ConfigError: If auth_server_url or client_id is missing
        """
        missing = [
            name
            for name, value in (
                ("auth_server_url", self.auth_server_url),
                ("client_id", self.client_id),
            )
            if not value
        ]
        if missing:
            msg = f"Missing required login settings: {', '.join(missing)}"
            raise ConfigError(msg)

    def create_flow(self, http_client: httpx.AsyncClient | None = None) -> PKCELoginFlow:
        """Build a login flow from this configuration.

        Raises:
            ConfigError: If required login settings are missing
        """
        from pkce_login.oauth.flows import PKCELoginFlow

        self.require_login_settings()
        return PKCELoginFlow(
            self.auth_server_url or "",
            self.client_id or "",
            self.scope,
            authorize_path=self.authorize_path,
            token_path=self.token_path,
            callback_host=self.callback_host,
            callback_path=self.callback_path,
            http_client=http_client,
            http_timeout=self.http_timeout,
        )


# Config field -> environment variable suffix
_ENV_MAPPING = {
    "app_name": "APP_NAME",
    "log_level": "LOG_LEVEL",
    "auth_server_url": "AUTH_SERVER_URL",
    "client_id": "CLIENT_ID",
    "scope": "SCOPE",
    "authorize_path": "AUTHORIZE_PATH",
    "token_path": "TOKEN_PATH",
    "callback_host": "CALLBACK_HOST",
    "callback_path": "CALLBACK_PATH",
    "login_timeout": "LOGIN_TIMEOUT",
    "http_timeout": "HTTP_TIMEOUT",
    "open_browser": "OPEN_BROWSER",
}

_BOOL_FIELDS = ("open_browser",)
_FLOAT_FIELDS = ("login_timeout", "http_timeout")


def _get_env_value(key: str, prefix: str = ENV_PREFIX) -> str | None:
    """Get environment variable value with prefix."""
    return os.environ.get(f"{prefix}{key.upper()}")


def _load_env_config() -> dict[str, Any]:
    """Load configuration from environment variables."""
    config: dict[str, Any] = {}
    for field_name, env_suffix in _ENV_MAPPING.items():
        value: Any = _get_env_value(env_suffix)
        if value is None:
            continue
        if field_name in _BOOL_FIELDS:
            value = value.lower() in ("true", "1", "yes", "on")
        elif field_name in _FLOAT_FIELDS:
            with contextlib.suppress(ValueError):
                value = float(value)
        config[field_name] = value

    return config


def _load_file_config(path: str | Path) -> dict[str, Any]:
    """Load configuration from a file (JSON or YAML)."""
    import json

    path = Path(path)
    if not path.exists():
        msg = f"Configuration file not found: {path}"
        raise ConfigError(msg)

    suffix = path.suffix.lower()
    content = path.read_text()

    if suffix == ".json":
        try:
            return dict(json.loads(content))
        except ValueError as e:
            msg = f"Invalid JSON configuration file {path}: {e}"
            raise ConfigError(msg) from e

    if suffix in (".yaml", ".yml"):
        import yaml

        try:
            return dict(yaml.safe_load(content) or {})
        except yaml.YAMLError as e:
            msg = f"Invalid YAML configuration file {path}: {e}"
            raise ConfigError(msg) from e

    msg = f"Unsupported configuration file format: {suffix}"
    raise ConfigError(msg)


def load_config(
    path: str | Path | None = None,
    cli_args: dict[str, Any] | None = None,
) -> Config:
    """Load and validate configuration.

    Precedence (highest to lowest):
    1. CLI arguments
    2. Environment variables
    3. Configuration file
    4. Model defaults

    Args:
        path: Optional path to configuration file
        cli_args: Optional CLI argument overrides

    Returns:
        Validated Config instance

    Raises:
        ConfigError: If configuration is invalid
    """
    load_dotenv(find_dotenv(usecwd=True))

    config_dict: dict[str, Any] = {}
    if path:
        logger.debug("Loading configuration from file: %s", path)
        config_dict.update(_load_file_config(path))

    for key, value in _load_env_config().items():
        config_dict[key] = value
        logger.debug("Config %s from environment: %s", key, value)

    if cli_args:
        for key, value in cli_args.items():
            if value is not None:
                config_dict[key] = value
                logger.debug("Config %s from CLI: %s", key, value)

    try:
        return Config(**config_dict)
    except Exception as e:
        msg = f"Configuration validation failed: {e}"
        raise ConfigError(msg) from e
