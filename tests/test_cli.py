"""Tests for the command-line interface."""

from __future__ import annotations

from collections.abc import Iterator

import pytest
from typer.testing import CliRunner

from pkce_login import __version__, cli
from pkce_login.config import Config
from pkce_login.exceptions import ProviderDeniedError
from pkce_login.logging_config import reset_logging

pytestmark = pytest.mark.usefixtures("isolated_env")

runner = CliRunner()


@pytest.fixture(autouse=True)
def reset_logging_state() -> Iterator[None]:
    """Drop handlers bound to the runner's captured streams."""
    yield
    reset_logging()


class TestVersion:
    """Tests for version output."""

    def test_version_command(self) -> None:
        """Test the version command."""
        result = runner.invoke(cli.app, ["version"])

        assert result.exit_code == 0
        assert __version__ in result.output

    def test_version_flag(self) -> None:
        """Test the --version flag."""
        result = runner.invoke(cli.app, ["--version"])

        assert result.exit_code == 0
        assert f"pkce-login version {__version__}" in result.output


class TestLoginCommand:
    """Tests for the login command."""

    def test_missing_settings(self) -> None:
        """Test that missing settings fail with exit code 1."""
        result = runner.invoke(cli.app, ["login"])

        assert result.exit_code == 1
        assert "auth_server_url" in result.output

    def test_invalid_setting(self) -> None:
        """Test that invalid options are reported as configuration errors."""
        result = runner.invoke(
            cli.app, ["login", "--url", "ftp://x", "--client-id", "abc"]
        )

        assert result.exit_code == 1
        assert "Configuration error" in result.output

    def test_prints_token(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that the access token is printed on success."""
        seen: list[Config] = []

        async def fake_run_login(config: Config) -> str:
            seen.append(config)
            return "the-access-token"

        monkeypatch.setattr(cli, "_run_login", fake_run_login)

        result = runner.invoke(
            cli.app,
            [
                "login",
                "--url",
                "https://auth.example.com",
                "--client-id",
                "abc",
                "--scope",
                "read write",
                "--timeout",
                "12",
                "--no-browser",
            ],
        )

        assert result.exit_code == 0
        assert result.stdout.strip().endswith("the-access-token")
        (config,) = seen
        assert config.auth_server_url == "https://auth.example.com"
        assert config.client_id == "abc"
        assert config.scope == "read write"
        assert config.login_timeout == 12
        assert config.open_browser is False

    def test_settings_from_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that environment variables feed the login command."""
        monkeypatch.setenv("PKCE_LOGIN_AUTH_SERVER_URL", "https://auth.example.com")
        monkeypatch.setenv("PKCE_LOGIN_CLIENT_ID", "env-client")
        seen: list[Config] = []

        async def fake_run_login(config: Config) -> str:
            seen.append(config)
            return "tok"

        monkeypatch.setattr(cli, "_run_login", fake_run_login)

        result = runner.invoke(cli.app, ["login"])

        assert result.exit_code == 0
        assert seen[0].client_id == "env-client"
        assert seen[0].open_browser is True

    def test_login_failure(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that login errors exit with code 1."""

        async def fake_run_login(config: Config) -> str:
            raise ProviderDeniedError("access_denied", "User said no")

        monkeypatch.setattr(cli, "_run_login", fake_run_login)

        result = runner.invoke(
            cli.app, ["login", "--url", "https://auth.example.com", "--client-id", "abc"]
        )

        assert result.exit_code == 1
        assert "Login failed" in result.output
        assert "access_denied" in result.output

    def test_interrupted(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that Ctrl-C exits with code 130."""

        async def fake_run_login(config: Config) -> str:
            raise KeyboardInterrupt

        monkeypatch.setattr(cli, "_run_login", fake_run_login)

        result = runner.invoke(
            cli.app, ["login", "--url", "https://auth.example.com", "--client-id", "abc"]
        )

        assert result.exit_code == 130
