"""Tests for auth/exceptions.py - Typed exceptions for auth failures."""

import pytest

from auth.exceptions import (
    AuthError,
    ConfigurationError,
    EmailInUseError,
    InvalidTokenError,
    RateLimitError,
    TokenExpiredError,
    TokenUsedError,
    UnauthenticatedError,
    ValidationError,
)


class TestExceptionInheritance:
    """User-facing auth exceptions inherit from AuthError."""

    @pytest.mark.parametrize(
        "exc_class",
        [ValidationError, RateLimitError, InvalidTokenError, UnauthenticatedError, EmailInUseError],
    )
    def test_inherits_auth_error(self, exc_class):
        assert issubclass(exc_class, AuthError)

    def test_token_failures_are_invalid_token_errors(self):
        """Used and expired tokens can be caught as one class."""
        assert issubclass(TokenUsedError, InvalidTokenError)
        assert issubclass(TokenExpiredError, InvalidTokenError)

    def test_configuration_error_is_not_auth_error(self):
        """Misconfiguration is operational, never mapped to a 4xx."""
        assert not issubclass(ConfigurationError, AuthError)


class TestRateLimitError:
    """RateLimitError should carry retry timing info."""

    def test_stores_retry_seconds(self):
        err = RateLimitError(30)
        assert err.retry_after_seconds == 30

    def test_message_includes_seconds(self):
        assert "30" in str(RateLimitError(30))
