"""Global exception handlers for FastAPI."""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError

from auth.exceptions import (
    AuthError,
    EmailInUseError,
    InvalidTokenError,
    RateLimitError,
    UnauthenticatedError,
    ValidationError,
)
from api.base import error_json, ErrorCodes

logger = logging.getLogger(__name__)

# Unknown, used, superseded and expired tokens all look the same to clients
INVALID_TOKEN_MESSAGE = "Invalid or expired token"


def register_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers on the app."""

    @app.exception_handler(ValidationError)
    async def validation_handler(request: Request, exc: ValidationError):
        return error_json(400, ErrorCodes.VALIDATION_ERROR, str(exc))

    @app.exception_handler(RateLimitError)
    async def rate_limit_handler(request: Request, exc: RateLimitError):
        return error_json(
            429,
            ErrorCodes.RATE_LIMITED,
            f"Too many requests. Please wait {exc.retry_after_seconds} seconds.",
            headers={"Retry-After": str(exc.retry_after_seconds)},
        )

    @app.exception_handler(InvalidTokenError)
    async def invalid_token_handler(request: Request, exc: InvalidTokenError):
        return error_json(400, ErrorCodes.INVALID_TOKEN, INVALID_TOKEN_MESSAGE)

    @app.exception_handler(UnauthenticatedError)
    async def unauthenticated_handler(request: Request, exc: UnauthenticatedError):
        return error_json(401, ErrorCodes.NOT_AUTHENTICATED, "Authentication required")

    @app.exception_handler(EmailInUseError)
    async def email_in_use_handler(request: Request, exc: EmailInUseError):
        return error_json(409, ErrorCodes.EMAIL_IN_USE, str(exc))

    @app.exception_handler(AuthError)
    async def auth_error_handler(request: Request, exc: AuthError):
        return error_json(400, ErrorCodes.INVALID_REQUEST, str(exc))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return error_json(422, ErrorCodes.VALIDATION_ERROR, str(exc.errors()))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception")
        return error_json(500, ErrorCodes.INTERNAL_ERROR, "An internal error occurred")
