"""pkce-login.

Interactive OAuth 2.0 Authorization Code login with PKCE for
command-line and desktop applications.
"""

__version__ = "0.1.0"

from pkce_login.config import Config, ConfigError, load_config
from pkce_login.exceptions import (
    CallbackMalformedError,
    LoginCanceledError,
    LoginError,
    PresentationFailedError,
    ProviderDeniedError,
    StateMismatchError,
    TokenExchangeRejectedError,
    TransportFailedError,
)
from pkce_login.oauth.flows import PKCELoginFlow, TokenResponse, login

__all__ = [
    "CallbackMalformedError",
    "Config",
    "ConfigError",
    "LoginCanceledError",
    "LoginError",
    "PKCELoginFlow",
    "PresentationFailedError",
    "ProviderDeniedError",
    "StateMismatchError",
    "TokenExchangeRejectedError",
    "TokenResponse",
    "TransportFailedError",
    "__version__",
    "load_config",
    "login",
]
