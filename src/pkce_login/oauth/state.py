"""Anti-CSRF state tokens binding a callback to its login attempt."""

from __future__ import annotations

from pkce_login.security import constant_time_equals, generate_secure_token

# Below this the state becomes guessable
MIN_STATE_BYTES = 16


def generate_state(nbytes: int = 32) -> str:
    """Generate an unpredictable state token for one login attempt.

    Args:
        nbytes: Number of random bytes (minimum 16)

    Returns:
        URL-safe state string

    Raises:
        ValueError: If nbytes < 16
    """
    if nbytes < MIN_STATE_BYTES:
        msg = f"nbytes must be at least {MIN_STATE_BYTES} for an unguessable state"
        raise ValueError(msg)

    return generate_secure_token(nbytes)


def state_matches(expected: str, received: str | None) -> bool:
    """Compare the issued state with the one returned in the callback."""
    if not received:
        return False
    return constant_time_equals(expected, received)
