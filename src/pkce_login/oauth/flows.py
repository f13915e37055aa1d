"""OAuth 2.0 Authorization Code flow with PKCE for public clients.

Drives one interactive login: the authorization URL is handed to a
presenter (usually the system browser), the redirect lands on a loopback
callback receiver, and the authorization code is exchanged for a token.
No client secret is involved and nothing is retried; a failed attempt is
surfaced to the caller, who may start a fresh one.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, TypeVar
from urllib.parse import urlencode

import httpx

from pkce_login.exceptions import (
    CallbackMalformedError,
    LoginCanceledError,
    PresentationFailedError,
    ProviderDeniedError,
    StateMismatchError,
    TokenExchangeRejectedError,
    TransportFailedError,
)
from pkce_login.logging_config import get_logger
from pkce_login.oauth.callback import (
    DEFAULT_CALLBACK_HOST,
    DEFAULT_CALLBACK_PATH,
    CallbackReceiver,
    CallbackResult,
)
from pkce_login.oauth.pkce import ChallengeMethod, create_pkce_pair
from pkce_login.oauth.state import generate_state, state_matches
from pkce_login.security import fingerprint, mask_sensitive_data

if TYPE_CHECKING:
    from types import TracebackType

logger = get_logger(__name__)

# Default HTTP timeout for token endpoint requests
DEFAULT_TIMEOUT = 30.0

DEFAULT_SCOPE = "*"
DEFAULT_AUTHORIZE_PATH = "/oauth/authorize"
DEFAULT_TOKEN_PATH = "/oauth/token"

# Shows the authorization URL to the user. Called with the URL and the
# attempt's cancel event; failure is signalled by raising. It must return
# once the URL is presented, not when the login finishes.
Presenter = Callable[[str, asyncio.Event], Awaitable[None] | None]

T = TypeVar("T")

_TOKEN_FIELDS = frozenset({"access_token", "token_type", "scope", "expires_in", "refresh_token"})


@dataclass
class TokenResponse:
    """Successful token endpoint response.

    Fields the provider sends beyond the standard ones are kept in ``extra``.
    """

    access_token: str
    token_type: str
    scope: str | None = None
    expires_in: int | None = None
    refresh_token: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_token_response(cls, response: dict[str, Any]) -> TokenResponse:
        """Create a TokenResponse from the decoded token endpoint body.

        Args:
            response: Decoded JSON object

        Returns:
            TokenResponse instance

        Raises:
            TokenExchangeRejectedError: If required fields are missing
        """
        for name in ("access_token", "token_type"):
            value = response.get(name)
            if not isinstance(value, str) or not value:
                raise TokenExchangeRejectedError(
                    f"Token response missing '{name}'",
                    response_body=mask_sensitive_data(response),
                )

        expires_in = response.get("expires_in")
        try:
            expires_in = int(expires_in) if expires_in is not None else None
        except (TypeError, ValueError):
            logger.debug("Ignoring non-numeric expires_in: %r", expires_in)
            expires_in = None

        return cls(
            access_token=response["access_token"],
            token_type=response["token_type"],
            scope=response.get("scope"),
            expires_in=expires_in,
            refresh_token=response.get("refresh_token"),
            extra={k: v for k, v in response.items() if k not in _TOKEN_FIELDS},
        )


def _error_detail(response: httpx.Response) -> tuple[str | None, dict | str]:
    """Extract an RFC 6749 error description from a failed token response."""
    try:
        body = response.json()
    except ValueError:
        return (response.text or None), response.text

    if not isinstance(body, dict):
        return None, response.text

    error = body.get("error")
    description = body.get("error_description")
    if error and description:
        detail = f"{error}: {description}"
    else:
        detail = error or description
    return detail, mask_sensitive_data(body)


class PKCELoginFlow:
    """Interactive OAuth 2.0 Authorization Code flow with PKCE.

    Every call to :meth:`login` is an independent attempt with its own
    verifier, state and callback listener, so a single flow can serve
    concurrent attempts.
    """

    def __init__(
        self,
        auth_server_url: str,
        client_id: str,
        scope: str = DEFAULT_SCOPE,
        *,
        authorize_path: str = DEFAULT_AUTHORIZE_PATH,
        token_path: str = DEFAULT_TOKEN_PATH,
        callback_host: str = DEFAULT_CALLBACK_HOST,
        callback_path: str = DEFAULT_CALLBACK_PATH,
        http_client: httpx.AsyncClient | None = None,
        http_timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        """Initialize the login flow.

        Args:
            auth_server_url: Base URL of the authorization server
            client_id: OAuth client identifier
            scope: Space-separated scopes to request
            authorize_path: Authorization endpoint path below the base URL
            token_path: Token endpoint path below the base URL
            callback_host: Loopback address for the callback listener
            callback_path: Path of the callback endpoint
            http_client: Optional custom HTTP client
            http_timeout: Timeout for token endpoint requests
        """
        base_url = auth_server_url.rstrip("/")
        self.authorization_url = f"{base_url}{authorize_path}"
        self.token_url = f"{base_url}{token_path}"
        self.client_id = client_id
        self.scope = scope
        self.callback_host = callback_host
        self.callback_path = callback_path
        self.http_timeout = http_timeout
        self._http_client = http_client
        self._owns_client = http_client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.http_timeout)
        return self._http_client

    async def close(self) -> None:
        """Close HTTP client if we own it."""
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def __aenter__(self) -> PKCELoginFlow:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    def build_authorization_url(self, redirect_uri: str, state: str, code_challenge: str) -> str:
        """Build the authorization request URL.

        Args:
            redirect_uri: Loopback redirect URI of this attempt
            state: State token of this attempt
            code_challenge: S256 challenge of this attempt's verifier

        Returns:
            Authorization URL to present to the user
        """
        params = {
            "client_id": self.client_id,
            "response_type": "code",
            "scope": self.scope,
            "redirect_uri": redirect_uri,
            "state": state,
            "code_challenge": code_challenge,
            "code_challenge_method": ChallengeMethod.S256.value,
        }
        separator = "&" if "?" in self.authorization_url else "?"
        return f"{self.authorization_url}{separator}{urlencode(params)}"

    async def exchange_code(
        self,
        code: str,
        redirect_uri: str,
        code_verifier: str,
    ) -> TokenResponse:
        """Exchange an authorization code for a token.

        Args:
            code: Authorization code from the callback
            redirect_uri: The redirect URI used in the authorization request
            code_verifier: The raw PKCE verifier of this attempt

        Returns:
            TokenResponse from the token endpoint

        Raises:
            TransportFailedError: If the token endpoint could not be reached
            TokenExchangeRejectedError: On a non-success status or bad body
        """
        client = await self._get_client()

        data = {
            "grant_type": "authorization_code",
            "client_id": self.client_id,
            "code": code,
            "redirect_uri": redirect_uri,
            "code_verifier": code_verifier,
        }

        logger.debug("Exchanging authorization code at %s", self.token_url)

        try:
            response = await client.post(
                self.token_url,
                data=data,
                headers={"Accept": "application/json", "Cache-Control": "no-store"},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            detail, body = _error_detail(e.response)
            logger.error(
                "Token exchange failed: %s %s - %s",
                e.response.status_code,
                e.response.reason_phrase,
                detail,
            )
            raise TokenExchangeRejectedError(
                "Token exchange failed",
                detail,
                status_code=e.response.status_code,
                response_body=body,
            ) from e
        except httpx.HTTPError as e:
            logger.error("Token exchange transport error: %s", e)
            raise TransportFailedError(detail=str(e) or type(e).__name__) from e

        try:
            token_data = response.json()
        except ValueError as e:
            raise TokenExchangeRejectedError(
                "Token endpoint returned an unparseable body",
                status_code=response.status_code,
                response_body=response.text,
            ) from e

        if not isinstance(token_data, dict):
            raise TokenExchangeRejectedError(
                "Token endpoint returned a non-object body",
                status_code=response.status_code,
                response_body=response.text,
            )

        if "no-store" not in response.headers.get("Cache-Control", ""):
            logger.debug("Token response does not carry Cache-Control: no-store")

        tokens = TokenResponse.from_token_response(token_data)
        logger.info(
            "Exchanged authorization code for %s token (scope: %s)",
            tokens.token_type,
            tokens.scope or "N/A",
        )
        return tokens

    async def login(
        self,
        present: Presenter,
        *,
        timeout: float | None = None,
        cancel: asyncio.Event | None = None,
    ) -> TokenResponse:
        """Run one interactive login attempt.

        Setting ``cancel`` aborts the attempt wherever it is: while the
        presenter runs, while waiting for the callback, or during the
        token exchange.

        Args:
            present: Callable that shows the authorization URL to the user
            timeout: Seconds to wait for the callback (None waits forever)
            cancel: Event that aborts the attempt when set

        Returns:
            TokenResponse from the token endpoint

        Raises:
            PresentationFailedError: If the presenter failed
            ProviderDeniedError: If the authorization server returned an error
            StateMismatchError: If the callback state is not this attempt's
            CallbackMalformedError: If the callback lacked code or state
            LoginCanceledError: If canceled, or timed out waiting for the callback
            TransportFailedError: If the token endpoint could not be reached
            TokenExchangeRejectedError: If the token endpoint refused the code
        """
        if cancel is None:
            cancel = asyncio.Event()
        elif cancel.is_set():
            raise LoginCanceledError(detail="canceled before the login started")

        pkce = create_pkce_pair(ChallengeMethod.S256)
        state = generate_state()

        receiver = CallbackReceiver(self.callback_host, self.callback_path)
        redirect_uri = await receiver.start()
        try:
            auth_url = self.build_authorization_url(redirect_uri, state, pkce.code_challenge)
            logger.info(
                "Starting login for client %s (state %s)",
                self.client_id,
                fingerprint(state),
            )

            await _until_canceled(
                self._present(present, auth_url, cancel),
                cancel,
                "while presenting the authorization URL",
            )
            result = await self._wait_for_callback(receiver, timeout, cancel)
        finally:
            await receiver.stop()

        if result.error is not None:
            logger.error(
                "Authorization denied: %s - %s",
                result.error,
                result.error_description or "no description",
            )
            raise ProviderDeniedError(result.error, result.error_description)

        if not state_matches(state, result.state):
            logger.warning(
                "Rejecting callback with state %s (expected %s)",
                fingerprint(result.state),
                fingerprint(state),
            )
            raise StateMismatchError()

        if not result.code:
            raise CallbackMalformedError(detail="missing code")

        return await _until_canceled(
            self.exchange_code(result.code, redirect_uri, pkce.code_verifier),
            cancel,
            "during the token exchange",
        )

    async def _present(self, present: Presenter, url: str, cancel: asyncio.Event) -> None:
        """Hand the authorization URL to the presenter."""
        try:
            outcome = present(url, cancel)
            if inspect.isawaitable(outcome):
                await outcome
        except PresentationFailedError:
            raise
        except Exception as e:
            logger.error("Presenting the authorization URL failed: %s", e)
            raise PresentationFailedError(detail=str(e) or type(e).__name__) from e

    async def _wait_for_callback(
        self,
        receiver: CallbackReceiver,
        timeout: float | None,
        cancel: asyncio.Event,
    ) -> CallbackResult:
        """Wait for whichever comes first: callback, cancel event or timeout."""
        cancel_waiter = asyncio.ensure_future(cancel.wait())
        try:
            done, _ = await asyncio.wait(
                {receiver.result, cancel_waiter},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            cancel_waiter.cancel()

        if receiver.result in done:
            return receiver.result.result()

        if cancel_waiter in done:
            logger.info("Login canceled while waiting for the callback")
            raise LoginCanceledError(detail="canceled while waiting for the authorization callback")

        logger.info("Login timed out after %s seconds", timeout)
        raise LoginCanceledError("Login timed out", detail=f"no callback within {timeout:g} seconds")


async def _until_canceled(step: Awaitable[T], cancel: asyncio.Event, stage: str) -> T:
    """Run one step of the login, abandoning it as soon as ``cancel`` is set."""
    task = asyncio.ensure_future(step)
    cancel_waiter = asyncio.ensure_future(cancel.wait())
    try:
        await asyncio.wait({task, cancel_waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        cancel_waiter.cancel()
        if not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    if task.cancelled():
        logger.info("Login canceled %s", stage)
        raise LoginCanceledError(detail=f"canceled {stage}")
    return task.result()


async def login(
    auth_server_url: str,
    client_id: str,
    scope: str,
    present: Presenter,
    *,
    timeout: float | None = None,
    cancel: asyncio.Event | None = None,
    http_client: httpx.AsyncClient | None = None,
    authorize_path: str = DEFAULT_AUTHORIZE_PATH,
    token_path: str = DEFAULT_TOKEN_PATH,
) -> str:
    """Log a user in and return the access token.

    Convenience wrapper around :class:`PKCELoginFlow` for one attempt.

    Returns:
        The access token issued by the token endpoint
    """
    flow = PKCELoginFlow(
        auth_server_url,
        client_id,
        scope,
        authorize_path=authorize_path,
        token_path=token_path,
        http_client=http_client,
    )
    async with flow:
        tokens = await flow.login(present, timeout=timeout, cancel=cancel)
    return tokens.access_token
