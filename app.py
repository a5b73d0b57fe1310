"""Application factory.

Run with:
    uvicorn app:create_app --factory

Dependencies are built once here and passed down explicitly. Secrets come
from Vault; nothing is lazily created inside the auth service.
"""

import logging
from datetime import timedelta

from fastapi import FastAPI

from api.base import success_response
from api.errors import register_error_handlers
from auth.api import create_auth_router
from auth.config import AuthConfig
from auth.cookies import CookieTransport
from auth.database import PostgresTokenStore, PostgresUserStore
from auth.rate_limiter import InMemoryRateLimiter, RateLimiter, ValkeyRateLimiter
from auth.security_logger import SecurityLogger
from auth.security_middleware import AuthMiddleware, PageGuardMiddleware
from auth.service import AuthService, BillingCustomerLinker
from auth.session import SessionCodec
from auth.stores import InMemoryTokenStore, InMemoryUserStore
from clients.email_client import EmailSender, create_email_sender
from clients.postgres_client import PostgresClient
from clients.valkey_client import ValkeyClient
from clients import vault_client

logger = logging.getLogger(__name__)


def _build_rate_limiter(config: AuthConfig) -> RateLimiter:
    if config.rate_limit_backend == "valkey":
        return ValkeyRateLimiter(ValkeyClient(vault_client.get_valkey_url()), config)
    if config.rate_limit_backend != "memory":
        raise ValueError(
            f"Unknown rate limit backend '{config.rate_limit_backend}'. Valid: memory, valkey"
        )
    return InMemoryRateLimiter.from_config(config)


def build_auth_service(
    config: AuthConfig,
    billing_linker: BillingCustomerLinker | None = None,
) -> AuthService:
    """Production wiring: Postgres stores, Vault secrets, configured email provider."""
    postgres = PostgresClient(vault_client.get_database_url())
    email_sender = create_email_sender(
        config.email_provider,
        app_url=config.app_base_url,
        app_name=config.app_name,
        settings=vault_client.get_email_config(config.email_provider),
        expiry_minutes=config.magic_link_expiry_minutes,
    )

    return AuthService(
        config=config,
        user_store=PostgresUserStore(postgres),
        token_store=PostgresTokenStore(postgres),
        session_codec=SessionCodec(
            vault_client.get_jwt_secret(),
            expiry=timedelta(days=config.session_expiry_days),
        ),
        cookies=CookieTransport.from_config(config),
        rate_limiter=_build_rate_limiter(config),
        email_sender=email_sender,
        security_logger=SecurityLogger(postgres),
        billing_linker=billing_linker,
    )


def build_in_memory_auth_service(
    config: AuthConfig,
    jwt_secret: str | None,
    email_sender: EmailSender | None = None,
    billing_linker: BillingCustomerLinker | None = None,
) -> AuthService:
    """Single-process wiring for local development and tests. No external services."""
    return AuthService(
        config=config,
        user_store=InMemoryUserStore(),
        token_store=InMemoryTokenStore(),
        session_codec=SessionCodec(jwt_secret, expiry=timedelta(days=config.session_expiry_days)),
        cookies=CookieTransport.from_config(config),
        rate_limiter=InMemoryRateLimiter.from_config(config),
        email_sender=email_sender or create_email_sender(
            "console",
            app_url=config.app_base_url,
            app_name=config.app_name,
            expiry_minutes=config.magic_link_expiry_minutes,
        ),
        security_logger=SecurityLogger(),
        billing_linker=billing_linker,
    )


def create_app(
    config: AuthConfig | None = None,
    auth_service: AuthService | None = None,
) -> FastAPI:
    """Create the FastAPI app with auth routes, middleware and error handlers."""
    config = config or AuthConfig()
    auth_service = auth_service or build_auth_service(config)

    app = FastAPI(title=config.app_name)
    app.add_middleware(PageGuardMiddleware, auth_service=auth_service)
    app.add_middleware(AuthMiddleware, auth_service=auth_service)
    register_error_handlers(app)

    app.include_router(create_auth_router(auth_service))

    @app.get("/health")
    async def health():
        return success_response({"status": "ok"})

    logger.info(f"App created (environment={config.environment})")
    return app
