"""Loopback callback receiver for the authorization redirect.

Serves a single callback path on an OS-assigned loopback port and hands
the first request's outcome to the login flow through a one-shot future.
"""

from __future__ import annotations

import asyncio
import contextlib
import html
import socket
from dataclasses import dataclass
from typing import TYPE_CHECKING

import uvicorn
from starlette.applications import Starlette
from starlette.responses import HTMLResponse
from starlette.routing import Route

from pkce_login.exceptions import CallbackMalformedError, LoginError
from pkce_login.logging_config import get_logger, quiet_server_loggers
from pkce_login.security import fingerprint

if TYPE_CHECKING:
    from collections.abc import Iterator
    from types import TracebackType

    from starlette.requests import Request

logger = get_logger(__name__)

DEFAULT_CALLBACK_HOST = "127.0.0.1"
DEFAULT_CALLBACK_PATH = "/callback"

# Seconds to wait for the listener to come up
STARTUP_TIMEOUT = 5.0

# Headers sent with every page so neither the browser nor a proxy keeps them
NO_STORE_HEADERS = {"Cache-Control": "no-store", "Pragma": "no-cache"}

_PAGE_TEMPLATE = """<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>{title}</title></head>
<body>
<h2>{title}</h2>
<p>{message}</p>
</body>
</html>
"""


@dataclass(frozen=True)
class CallbackResult:
    """Outcome of the authorization redirect.

    Either ``code`` and ``state`` are set (success) or ``error`` is set
    (the authorization server refused or failed the request).
    """

    code: str | None = None
    state: str | None = None
    error: str | None = None
    error_description: str | None = None

    @property
    def is_error(self) -> bool:
        """Whether the provider reported an error."""
        return self.error is not None

    @classmethod
    def success(cls, code: str, state: str) -> CallbackResult:
        return cls(code=code, state=state)

    @classmethod
    def failure(cls, error: str, error_description: str | None = None) -> CallbackResult:
        return cls(error=error, error_description=error_description)


def _page(title: str, message: str, status_code: int = 200) -> HTMLResponse:
    """Render a static acknowledgment page."""
    content = _PAGE_TEMPLATE.format(title=html.escape(title), message=html.escape(message))
    return HTMLResponse(content, status_code=status_code, headers=NO_STORE_HEADERS)


class _CallbackServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the running event loop."""

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield

    def install_signal_handlers(self) -> None:
        pass


def _bind_loopback(host: str) -> socket.socket:
    """Bind a listening socket on an OS-assigned loopback port."""
    bind_host = DEFAULT_CALLBACK_HOST if host == "localhost" else host
    family = socket.AF_INET6 if ":" in bind_host else socket.AF_INET

    sock = socket.socket(family, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((bind_host, 0))
        sock.listen()
        sock.setblocking(False)
    except OSError:
        sock.close()
        raise
    return sock


async def _wait_started(server: uvicorn.Server, serve_task: asyncio.Task[None]) -> None:
    # uvicorn only exposes a ``started`` flag, there is no event to await
    while not server.started:
        if serve_task.done():
            raise LoginError("Callback listener exited during startup")
        await asyncio.sleep(0.01)


class CallbackReceiver:
    """Single-use HTTP endpoint receiving the OAuth redirect.

    The first GET on the callback path decides the result; any later
    request is answered with 410 Gone and leaves the result untouched.
    The listener is released by :meth:`stop`, which is idempotent and
    runs automatically when used as an async context manager.
    """

    def __init__(
        self,
        host: str = DEFAULT_CALLBACK_HOST,
        path: str = DEFAULT_CALLBACK_PATH,
    ) -> None:
        """Initialize the receiver.

        Args:
            host: Loopback address to bind to
            path: Callback path, must start with "/"
        """
        if not path.startswith("/"):
            msg = f"callback path must start with '/': {path!r}"
            raise ValueError(msg)

        self.host = host
        self.path = path
        self._socket: socket.socket | None = None
        self._server: _CallbackServer | None = None
        self._serve_task: asyncio.Task[None] | None = None
        self._result: asyncio.Future[CallbackResult] | None = None
        self._port: int | None = None
        self._redirect_uri: str | None = None
        self._stopped = False

    @property
    def port(self) -> int | None:
        """The OS-assigned port, once started."""
        return self._port

    @property
    def redirect_uri(self) -> str | None:
        """The concrete redirect URI, once started."""
        return self._redirect_uri

    @property
    def is_running(self) -> bool:
        """Whether the listener is currently serving."""
        return self._serve_task is not None and not self._stopped

    @property
    def result(self) -> asyncio.Future[CallbackResult]:
        """One-shot future resolved by the first callback request."""
        if self._result is None:
            msg = "Callback receiver has not been started"
            raise RuntimeError(msg)
        return self._result

    def _build_app(self) -> Starlette:
        return Starlette(routes=[Route(self.path, self._handle_callback, methods=["GET"])])

    async def start(self) -> str:
        """Bind the listener and start serving.

        Returns:
            The redirect URI including the OS-assigned port

        Raises:
            LoginError: If the listener could not be bound or started
        """
        if self._serve_task is not None or self._stopped:
            msg = "Callback receiver can only be started once"
            raise RuntimeError(msg)

        loop = asyncio.get_running_loop()
        self._result = loop.create_future()

        try:
            self._socket = _bind_loopback(self.host)
        except OSError as e:
            raise LoginError("Could not bind callback listener", str(e)) from e
        self._port = int(self._socket.getsockname()[1])

        quiet_server_loggers()
        config = uvicorn.Config(
            app=self._build_app(),
            log_config=None,
            access_log=False,
            lifespan="off",
            timeout_graceful_shutdown=1,
        )
        server = _CallbackServer(config)
        serve_task = loop.create_task(server.serve(sockets=[self._socket]))
        self._server = server
        self._serve_task = serve_task

        try:
            await asyncio.wait_for(_wait_started(server, serve_task), timeout=STARTUP_TIMEOUT)
        except (asyncio.TimeoutError, LoginError) as e:
            await self.stop()
            raise LoginError("Callback listener failed to start", str(e) or None) from e

        host = f"[{self.host}]" if ":" in self.host else self.host
        self._redirect_uri = f"http://{host}:{self.port}{self.path}"
        logger.debug("Callback listener ready at %s", self._redirect_uri)
        return self._redirect_uri

    async def wait(self) -> CallbackResult:
        """Wait for the callback result.

        Raises:
            CallbackMalformedError: If the callback request was malformed
        """
        return await self.result

    async def stop(self) -> None:
        """Shut the listener down and release its socket.

        Safe to call more than once, before or after a result arrived.
        """
        if self._stopped:
            return
        self._stopped = True

        if self._server is not None:
            self._server.should_exit = True

        try:
            if self._serve_task is not None:
                try:
                    await asyncio.shield(self._serve_task)
                except Exception as e:
                    logger.warning("Callback listener stopped with error: %s", e)
        finally:
            if self._socket is not None:
                self._socket.close()
            if self._result is not None and not self._result.done():
                self._result.cancel()
            logger.debug("Callback listener on port %s released", self.port)

    async def __aenter__(self) -> CallbackReceiver:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.stop()

    async def _handle_callback(self, request: Request) -> HTMLResponse:
        """Handle the redirect from the authorization server."""
        result = self._result

        # Link previews and prefetchers issue HEAD requests; they never count
        if request.method != "GET":
            return _page("Sign-in", "Waiting for the authorization server.")

        if result is None or result.done():
            logger.debug("Ignoring repeated callback request")
            return _page(
                "Sign-in already completed",
                "This sign-in attempt has already finished. You can close this window.",
                status_code=410,
            )

        params = request.query_params
        if "error" in params:
            error = params["error"]
            description = params.get("error_description")
            logger.info("Authorization server returned error: %s", error)
            result.set_result(CallbackResult.failure(error, description))
            return _page(
                "Sign-in not completed",
                f"The authorization server reported '{error}'. "
                "You can close this window and return to the application.",
            )

        code = params.get("code")
        state = params.get("state")
        if code and state:
            logger.debug("Received authorization code (state %s)", fingerprint(state))
            result.set_result(CallbackResult.success(code, state))
            return _page(
                "Sign-in complete",
                "You can close this window and return to the application.",
            )

        missing = [name for name, value in (("code", code), ("state", state)) if not value]
        logger.warning("Malformed callback, missing: %s", ", ".join(missing))
        result.set_exception(CallbackMalformedError(detail=f"missing {', '.join(missing)}"))
        return _page(
            "Sign-in failed",
            "The authorization response was incomplete. Please try again.",
            status_code=400,
        )
