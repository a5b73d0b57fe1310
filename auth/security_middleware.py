"""Security middleware for FastAPI - session gates and page guards."""

from urllib.parse import urlencode

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import RedirectResponse, Response

from auth.exceptions import UnauthenticatedError
from auth.service import AuthService
from api.base import error_json, ErrorCodes
from utils.user_context import set_current_user_id, clear_current_user_id


def _matches(path: str, prefixes: list[str]) -> bool:
    return any(path == prefix or path.startswith(prefix.rstrip("/") + "/") for prefix in prefixes)


class AuthMiddleware(BaseHTTPMiddleware):
    """Hard gate for API routes.

    For protected routes:
    1. Verifies the session cookie via AuthService
    2. Sets session/user_id in request.state and user context
    3. Clears context after request completes

    Public paths bypass authentication entirely.
    """

    PUBLIC_PATHS = [
        "/auth/send-magic-link",
        "/auth/verify-token",
        "/auth/me",
        "/auth/logout",
        "/health",
        "/docs",
        "/openapi.json",
    ]

    def __init__(self, app, auth_service: AuthService, protected_prefixes: list[str] | None = None):
        super().__init__(app)
        self._auth_service = auth_service
        self._protected_prefixes = protected_prefixes or ["/api"]

    def _is_public_path(self, path: str) -> bool:
        """Check if path is in public paths list."""
        for public_path in self.PUBLIC_PATHS:
            if path == public_path or path.startswith(public_path + "/"):
                return True
        return False

    async def dispatch(self, request: Request, call_next):
        """Process request through middleware."""
        path = request.url.path

        if self._is_public_path(path) or not _matches(path, self._protected_prefixes):
            return await call_next(request)

        try:
            session = self._auth_service.require_session(request)
        except UnauthenticatedError:
            return error_json(401, ErrorCodes.NOT_AUTHENTICATED, "Authentication required")

        set_current_user_id(session.user_id)
        request.state.user_id = session.user_id
        request.state.session = session

        try:
            response = await call_next(request)
            return response
        finally:
            # Always clear context
            clear_current_user_id()


class PageGuardMiddleware(BaseHTTPMiddleware):
    """Redirects for page routes.

    - Protected pages: anonymous visitors go to login?redirect=<path>
    - Guest pages (login, register): signed-in visitors go to the dashboard

    A near-expiry session is refreshed before the decision, and the new
    cookie rides on whichever response goes out.
    """

    def __init__(self, app, auth_service: AuthService):
        super().__init__(app)
        self._auth_service = auth_service
        self._config = auth_service.config

    def _login_redirect(self, request: Request) -> RedirectResponse:
        target = request.url.path
        if request.url.query:
            target = f"{target}?{request.url.query}"
        return RedirectResponse(
            url=f"{self._config.login_path}?{urlencode({'redirect': target})}",
            status_code=302,
        )

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        protected = _matches(path, self._config.protected_page_prefixes)
        guest_only = _matches(path, self._config.guest_page_prefixes)

        if not protected and not guest_only:
            return await call_next(request)

        # Collects a refreshed cookie, if any
        carrier = Response()
        user = self._auth_service.get_session_user(request, carrier)

        if protected and user is None:
            response = self._login_redirect(request)
        elif guest_only and user is not None:
            response = RedirectResponse(url=self._config.dashboard_path, status_code=302)
        else:
            if user is not None:
                request.state.user_id = user.id
            response = await call_next(request)

        for header in carrier.headers.getlist("set-cookie"):
            response.headers.append("set-cookie", header)
        return response
