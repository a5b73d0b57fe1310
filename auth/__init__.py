"""Magic link authentication: issuance, verification, sessions and guards."""

from auth.exceptions import (
    AuthError,
    ValidationError,
    RateLimitError,
    InvalidTokenError,
    TokenUsedError,
    TokenExpiredError,
    UnauthenticatedError,
    EmailInUseError,
    ConfigurationError,
)
from auth.types import (
    User,
    VerificationToken,
    SessionClaims,
    MagicLinkRequest,
    VerifyTokenRequest,
    UserUpdate,
    MagicLinkResult,
    VerificationResult,
)
from auth.config import AuthConfig
from auth.cookies import CookieTransport, SESSION_COOKIE_NAME
from auth.database import PostgresUserStore, PostgresTokenStore
from auth.rate_limiter import RateLimiter, InMemoryRateLimiter, ValkeyRateLimiter
from auth.security_logger import SecurityLogger, SecurityEvent
from auth.session import SessionCodec
from auth.stores import UserStore, TokenStore, InMemoryUserStore, InMemoryTokenStore
from auth.service import AuthService, BillingCustomerLinker
from auth.security_middleware import AuthMiddleware, PageGuardMiddleware
from auth.api import create_auth_router
