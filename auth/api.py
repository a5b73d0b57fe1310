"""HTTP routes for authentication.

Auth failures are raised as typed exceptions and mapped to the response
envelope by api.errors.
"""

from fastapi import APIRouter, Request, Response

from auth.service import AuthService
from auth.types import MagicLinkRequest, User, UserUpdate, VerifyTokenRequest
from auth.validation import ip_or_none
from api.base import success_response


def _get_client_ip(request: Request) -> str | None:
    """Extract valid IP address from request, or None if invalid."""
    if not request.client:
        return None
    return ip_or_none(request.client.host)


def _public_user(user: User) -> dict:
    return {"id": user.id, "email": user.email, "name": user.name}


def _profile(user: User) -> dict:
    """Fields the signed-in user sees about themselves."""
    return {**_public_user(user), "created_at": user.created_at.isoformat()}

def create_auth_router(auth_service: AuthService) -> APIRouter:
    """Create auth router with injected service."""
    router = APIRouter(prefix="/auth", tags=["auth"])

    @router.post("/send-magic-link")
    async def send_magic_link(request: Request, body: MagicLinkRequest):
        """Email a sign-in link. New emails get an account on first request."""
        result = auth_service.issue_magic_link(
            email=body.email,
            name=body.name,
            ip_address=_get_client_ip(request),
            user_agent=request.headers.get("User-Agent"),
        )
        return success_response({"message": result.message})

    @router.post("/verify-token")
    async def verify_token(request: Request, response: Response, body: VerifyTokenRequest):
        """Consume the magic link token and set the session cookie."""
        result = auth_service.verify_and_consume(
            token=body.token,
            response=response,
            ip_address=_get_client_ip(request),
            user_agent=request.headers.get("User-Agent"),
        )
        return success_response({
            "user": _public_user(result.user),
            "is_new_user": result.is_new_user,
        })

    @router.get("/me")
    async def get_me(request: Request, response: Response):
        """Current user, or null when signed out. Extends a near-expiry session."""
        user = auth_service.get_session_user(request, response)
        return success_response({"user": _profile(user) if user else None})

    @router.patch("/me")
    async def update_me(request: Request, body: UserUpdate):
        user = auth_service.update_current_user(request, body.model_dump(exclude_unset=True))
        return success_response({"user": _profile(user)})

    @router.post("/logout")
    async def logout(request: Request, response: Response):
        """Clear the session cookie. Always succeeds."""
        auth_service.logout(response, request)
        return success_response({"message": "Logged out successfully"})

    return router
