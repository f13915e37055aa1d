"""Tests for state token generation."""

from __future__ import annotations

import base64

import pytest

from pkce_login.oauth.state import generate_state, state_matches


class TestGenerateState:
    """Tests for generate_state function."""

    def test_unique_values(self) -> None:
        """Test that states are unique."""
        states = {generate_state() for _ in range(100)}
        assert len(states) == 100

    def test_default_entropy(self) -> None:
        """Test that the default state carries 32 random bytes."""
        state = generate_state()
        decoded = base64.urlsafe_b64decode(state + "=" * (-len(state) % 4))
        assert len(decoded) == 32

    def test_minimum_entropy_allowed(self) -> None:
        """Test that 16 bytes is accepted."""
        assert len(generate_state(16)) >= 22

    def test_rejects_low_entropy(self) -> None:
        """Test that fewer than 16 bytes is rejected."""
        with pytest.raises(ValueError, match="at least 16"):
            generate_state(15)

    def test_url_safe(self) -> None:
        """Test that state survives a query string unescaped."""
        allowed = set("ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_")
        assert set(generate_state()) <= allowed


class TestStateMatches:
    """Tests for state_matches function."""

    def test_exact_match(self) -> None:
        """Test identical states match."""
        state = generate_state()
        assert state_matches(state, state) is True

    def test_mismatch(self) -> None:
        """Test different states do not match."""
        assert state_matches(generate_state(), generate_state()) is False

    def test_missing(self) -> None:
        """Test missing or empty received state never matches."""
        assert state_matches("abc", None) is False
        assert state_matches("abc", "") is False

    def test_case_sensitive(self) -> None:
        """Test comparison is exact, not case-insensitive."""
        assert state_matches("AbC", "abc") is False

    def test_prefix_is_not_a_match(self) -> None:
        """Test a truncated state does not match."""
        state = generate_state()
        assert state_matches(state, state[:-1]) is False
