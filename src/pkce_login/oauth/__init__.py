"""OAuth 2.0 login for public clients.

Authorization Code flow with PKCE, a loopback callback receiver and
pluggable presenters for the authorization URL.
"""

from pkce_login.oauth.callback import CallbackReceiver, CallbackResult
from pkce_login.oauth.flows import PKCELoginFlow, Presenter, TokenResponse, login
from pkce_login.oauth.pkce import (
    ChallengeMethod,
    PKCEPair,
    create_pkce_pair,
    generate_code_challenge,
    generate_code_verifier,
    verify_code_challenge,
)
from pkce_login.oauth.state import generate_state, state_matches

__all__ = [
    "CallbackReceiver",
    "CallbackResult",
    "ChallengeMethod",
    "PKCELoginFlow",
    "PKCEPair",
    "Presenter",
    "TokenResponse",
    "create_pkce_pair",
    "generate_code_challenge",
    "generate_code_verifier",
    "generate_state",
    "login",
    "state_matches",
    "verify_code_challenge",
]
