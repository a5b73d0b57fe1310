"""Session cookie transport.

Name and attributes are shared by write/read/clear so a cleared cookie always
matches the one that was set.
"""

from starlette.requests import Request
from starlette.responses import Response

from auth.config import AuthConfig

SESSION_COOKIE_NAME = "auth_token"
SESSION_COOKIE_PATH = "/"
SESSION_COOKIE_SAMESITE = "lax"


class CookieTransport:
    """Carries the session credential in an HttpOnly cookie."""

    def __init__(self, secure: bool, max_age_seconds: int = 7 * 24 * 3600):
        self._secure = secure
        self._max_age = max_age_seconds

    @classmethod
    def from_config(cls, config: AuthConfig) -> "CookieTransport":
        return cls(secure=config.cookie_secure, max_age_seconds=config.session_max_age_seconds)

    @property
    def cookie_name(self) -> str:
        return SESSION_COOKIE_NAME

    def write(self, response: Response, token: str) -> None:
        response.set_cookie(
            key=SESSION_COOKIE_NAME,
            value=token,
            max_age=self._max_age,
            path=SESSION_COOKIE_PATH,
            secure=self._secure,
            httponly=True,
            samesite=SESSION_COOKIE_SAMESITE,
        )

    def read(self, request: Request) -> str | None:
        return request.cookies.get(SESSION_COOKIE_NAME) or None

    def clear(self, response: Response) -> None:
        """Expire the cookie immediately."""
        response.delete_cookie(
            key=SESSION_COOKIE_NAME,
            path=SESSION_COOKIE_PATH,
            secure=self._secure,
            httponly=True,
            samesite=SESSION_COOKIE_SAMESITE,
        )
