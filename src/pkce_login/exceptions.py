"""Login flow exceptions.

Every failure of a login attempt is terminal for that attempt; callers
start a fresh attempt (new verifier, challenge and state) if they want
to try again.
"""

from __future__ import annotations


class LoginError(Exception):
    """Base exception for login flow errors.

    Attributes:
        message: Human-readable error message
        detail: Additional detail (provider description, response text)
    """

    def __init__(self, message: str, detail: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail

    def __str__(self) -> str:
        if self.detail:
            return f"{self.message}: {self.detail}"
        return self.message


class PresentationFailedError(LoginError):
    """Raised when the presenter could not show the authorization URL."""

    def __init__(
        self,
        message: str = "Failed to present the authorization URL",
        detail: str | None = None,
    ) -> None:
        super().__init__(message, detail)


class ProviderDeniedError(LoginError):
    """Raised when the authorization server redirects back with an error.

    Attributes:
        error: OAuth error code (e.g. ``access_denied``)
        error_description: Provider supplied description, if any
    """

    def __init__(self, error: str, error_description: str | None = None) -> None:
        super().__init__(f"Authorization server returned '{error}'", error_description)
        self.error = error
        self.error_description = error_description


class StateMismatchError(LoginError):
    """Raised when the callback state differs from the issued state."""

    def __init__(
        self,
        message: str = "Callback state does not match the login attempt",
        detail: str | None = None,
    ) -> None:
        super().__init__(message, detail)


class CallbackMalformedError(LoginError):
    """Raised when the callback request lacks the required parameters."""

    def __init__(
        self,
        message: str = "Malformed authorization callback",
        detail: str | None = None,
    ) -> None:
        super().__init__(message, detail)


class LoginCanceledError(LoginError):
    """Raised when the login was canceled or timed out while waiting."""

    def __init__(
        self,
        message: str = "Login canceled",
        detail: str | None = None,
    ) -> None:
        super().__init__(message, detail)


class TransportFailedError(LoginError):
    """Raised on network failures talking to the authorization server."""

    def __init__(
        self,
        message: str = "Could not reach the authorization server",
        detail: str | None = None,
    ) -> None:
        super().__init__(message, detail)


class TokenExchangeRejectedError(LoginError):
    """Raised when the token endpoint rejects the exchange or answers garbage.

    Attributes:
        status_code: HTTP status code (if applicable)
        response_body: Raw or decoded response body (if available)
    """

    def __init__(
        self,
        message: str = "Token exchange rejected",
        detail: str | None = None,
        status_code: int | None = None,
        response_body: dict | str | None = None,
    ) -> None:
        super().__init__(message, detail)
        self.status_code = status_code
        self.response_body = response_body

    def __str__(self) -> str:
        text = super().__str__()
        if self.status_code:
            return f"[{self.status_code}] {text}"
        return text
