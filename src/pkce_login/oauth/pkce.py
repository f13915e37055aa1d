"""PKCE (Proof Key for Code Exchange) implementation.

Implements RFC 7636 for public-client OAuth 2.0 Authorization Code flows:
verifier generation, challenge derivation and the verification the
authorization server performs at token exchange time.
"""

from __future__ import annotations

import base64
import hashlib
import re
import secrets
from dataclasses import dataclass
from enum import Enum

from pkce_login.security import constant_time_equals

MIN_VERIFIER_LENGTH = 43
MAX_VERIFIER_LENGTH = 128

# RFC 7636 section 4.1: unreserved characters only
_VERIFIER_PATTERN = re.compile(r"^[A-Za-z0-9\-._~]+$")


class ChallengeMethod(str, Enum):
    """Code challenge transformation methods."""

    PLAIN = "plain"
    S256 = "S256"


@dataclass(frozen=True)
class PKCEPair:
    """PKCE code verifier and challenge pair.

    Attributes:
        code_verifier: Random secret sent only with the token request
        code_challenge: Value derived from the verifier, sent with the auth request
        method: Transformation used to derive the challenge
    """

    code_verifier: str
    code_challenge: str
    method: ChallengeMethod = ChallengeMethod.S256

    def verify(self, verifier: str) -> bool:
        """Check a presented verifier against this pair's challenge."""
        return verify_code_challenge(verifier, self.code_challenge, self.method)


def validate_code_verifier(verifier: str) -> None:
    """Validate a code verifier's length and character set.

    Args:
        verifier: The code verifier string

    Raises:
        ValueError: If the verifier is not 43-128 unreserved characters
    """
    if not MIN_VERIFIER_LENGTH <= len(verifier) <= MAX_VERIFIER_LENGTH:
        msg = (
            f"code verifier must be {MIN_VERIFIER_LENGTH}-{MAX_VERIFIER_LENGTH} "
            f"characters, got {len(verifier)}"
        )
        raise ValueError(msg)
    if not _VERIFIER_PATTERN.match(verifier):
        msg = "code verifier contains characters outside the unreserved set"
        raise ValueError(msg)


def generate_code_verifier(nbytes: int = 32) -> str:
    """Generate a cryptographically random code verifier.

    Args:
        nbytes: Number of random bytes (32-96, giving 43-128 characters)

    Returns:
        URL-safe code verifier string

    Raises:
        ValueError: If nbytes is outside 32-96
    """
    if nbytes < 32:
        msg = "nbytes must be at least 32 for sufficient entropy"
        raise ValueError(msg)
    if nbytes > 96:
        msg = "nbytes must be at most 96 to stay within 128 characters"
        raise ValueError(msg)

    verifier = secrets.token_urlsafe(nbytes)
    validate_code_verifier(verifier)
    return verifier


def generate_code_challenge(
    verifier: str,
    method: ChallengeMethod | str = ChallengeMethod.S256,
) -> str:
    """Derive the code challenge for a verifier.

    S256 computes BASE64URL(SHA256(ASCII(code_verifier))) without padding;
    plain returns the verifier unchanged.

    Args:
        verifier: The code verifier string
        method: Challenge method

    Returns:
        The code challenge

    Raises:
        ValueError: If the method is not supported
    """
    method = ChallengeMethod(method)

    if method is ChallengeMethod.PLAIN:
        return verifier

    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def verify_code_challenge(
    verifier: str,
    challenge: str,
    method: ChallengeMethod | str = ChallengeMethod.S256,
) -> bool:
    """Check that a verifier matches a previously issued challenge.

    This is the check an authorization server performs at token exchange.
    Malformed verifiers and unknown methods never verify.

    Args:
        verifier: The presented code verifier
        challenge: The stored code challenge
        method: Challenge method used when the challenge was issued

    Returns:
        True if the verifier derives the challenge
    """
    try:
        validate_code_verifier(verifier)
        expected = generate_code_challenge(verifier, method)
    except (ValueError, UnicodeEncodeError):
        return False

    return constant_time_equals(expected, challenge)


def create_pkce_pair(
    method: ChallengeMethod | str = ChallengeMethod.S256,
    nbytes: int = 32,
) -> PKCEPair:
    """Create a new PKCE code verifier/challenge pair.

    Args:
        method: Challenge method
        nbytes: Number of random bytes for the verifier

    Returns:
        PKCEPair with verifier and challenge
    """
    method = ChallengeMethod(method)
    verifier = generate_code_verifier(nbytes)
    challenge = generate_code_challenge(verifier, method)
    return PKCEPair(code_verifier=verifier, code_challenge=challenge, method=method)
