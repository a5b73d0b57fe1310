"""Typed exceptions for auth failures."""


class AuthError(Exception):
    """Base class for authentication/authorization errors."""


class ValidationError(AuthError):
    """Malformed user input (email, name, token parameter)."""


class RateLimitError(AuthError):
    """Too many magic link requests. Client should wait before retrying."""

    def __init__(self, retry_after_seconds: int):
        self.retry_after_seconds = retry_after_seconds
        super().__init__(f"Rate limited. Retry after {retry_after_seconds} seconds.")


class InvalidTokenError(AuthError):
    """
    Magic link token is unknown.

    Subclasses narrow the reason for server-side logging. Clients only ever
    see the generic "invalid or expired" message.
    """


class TokenUsedError(InvalidTokenError):
    """Token was already consumed or superseded by a newer link."""


class TokenExpiredError(InvalidTokenError):
    """Token is past its expiry."""


class UnauthenticatedError(AuthError):
    """No valid session, or the session points at a user that no longer exists."""


class EmailInUseError(AuthError):
    """Requested email change collides with another account."""


class ConfigurationError(Exception):
    """Operational misconfiguration (e.g. missing signing secret). Not user-facing."""
