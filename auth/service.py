"""Authentication service - orchestrates the magic link flow.

Token lifecycle per verification token:
    PENDING -> CONSUMED    (verified once)
    PENDING -> SUPERSEDED  (a newer link was issued for the same email)
    PENDING -> EXPIRED     (checked at verification time, never swept)

CONSUMED and SUPERSEDED are both stored as used=True.
"""

import logging
from typing import Any, Protocol

from starlette.requests import Request
from starlette.responses import Response

from auth import tokens
from auth.config import AuthConfig
from auth.cookies import CookieTransport
from auth.exceptions import (
    EmailInUseError,
    InvalidTokenError,
    RateLimitError,
    TokenExpiredError,
    TokenUsedError,
    UnauthenticatedError,
    ValidationError,
)
from auth.rate_limiter import RateLimiter
from auth.security_logger import SecurityEvent, SecurityLogger
from auth.session import SessionCodec
from auth.stores import TokenStore, UserStore, clean_user_patch
from auth.types import MagicLinkResult, SessionClaims, User, VerificationResult
from auth.validation import (
    is_non_empty_string,
    ip_or_none,
    is_valid_display_name,
    is_valid_opaque_id,
    normalize_and_validate_email,
    normalize_display_name,
)
from clients.email_client import EmailDeliveryError, EmailSender

logger = logging.getLogger(__name__)

MAGIC_LINK_SENT_MESSAGE = "Magic link sent to your email"


class BillingCustomerLinker(Protocol):
    """Creates the payment-provider customer for a new user.

    Returns the provider's customer reference, or None when nothing was created.
    """

    def link(self, user: User) -> str | None: ...


class AuthService:
    """Orchestrates magic link authentication.

    Handles:
    - Magic link issuance (rate limited, supersedes older links)
    - Single-use token verification and session creation
    - Session reads, sliding refresh and logout
    - Profile reads/updates for the signed-in user
    """

    def __init__(
        self,
        config: AuthConfig,
        user_store: UserStore,
        token_store: TokenStore,
        session_codec: SessionCodec,
        cookies: CookieTransport,
        rate_limiter: RateLimiter,
        email_sender: EmailSender,
        security_logger: SecurityLogger,
        billing_linker: BillingCustomerLinker | None = None,
    ):
        self._config = config
        self._users = user_store
        self._tokens = token_store
        self._sessions = session_codec
        self._cookies = cookies
        self._rate_limiter = rate_limiter
        self._email = email_sender
        self._security_logger = security_logger
        self._billing_linker = billing_linker

    @property
    def config(self) -> AuthConfig:
        return self._config

    # Users

    def _create_user(self, email: str, name: str | None) -> tuple[User, bool]:
        """Create the user row, then attach a billing customer best-effort.

        Returns (user, created). A concurrent request that created the same
        email first is treated as a find.
        """
        try:
            user = self._users.create(email=email, name=name)
        except ValueError:
            existing = self._users.find_by_email(email)
            if existing is None:
                raise
            return existing, False

        self._security_logger.log(SecurityEvent.USER_CREATED, email=email, user_id=user.id)
        return self._link_billing_customer(user), True

    def _link_billing_customer(self, user: User) -> User:
        if self._billing_linker is None:
            return user
        try:
            customer_id = self._billing_linker.link(user)
            if customer_id:
                linked = self._users.update(user.id, {"billing_customer_id": customer_id})
                return linked or user
        except Exception as e:
            # Billing is retriable out of band and never blocks authentication
            logger.warning(f"Billing customer linkage failed for user {user.id}: {e}")
            self._security_logger.log(
                SecurityEvent.BILLING_LINK_FAILED,
                email=user.email,
                user_id=user.id,
                details={"error": str(e)},
            )
        return user

    def _find_or_create_user(self, email: str, name: str | None = None) -> tuple[User, bool]:
        user = self._users.find_by_email(email)
        if user is not None:
            return user, False
        return self._create_user(email, name)

    # Magic link issuance

    def issue_magic_link(
        self,
        email: Any,
        name: Any = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> MagicLinkResult:
        """Issue and email a fresh magic link.

        Flow:
        1. Normalize and validate email
        2. Check per-email rate limit
        3. Find or create user (valid names are normalized and kept)
        4. Supersede every unused token for the email
        5. Generate token, store its hash and expiry
        6. Send email

        Raises:
            ValidationError: Email missing or malformed.
            RateLimitError: Too many requests for this email.
            EmailDeliveryError: Email could not be sent (propagated).
        """
        normalized = normalize_and_validate_email(email)
        if normalized is None:
            raise ValidationError("Valid email is required")

        if not self._rate_limiter.admit(normalized):
            retry_after = self._rate_limiter.retry_after(normalized)
            self._security_logger.log(
                SecurityEvent.RATE_LIMITED,
                email=normalized,
                ip_address=ip_address,
                user_agent=user_agent,
                details={"retry_after_seconds": retry_after},
            )
            raise RateLimitError(retry_after_seconds=retry_after)

        display_name = normalize_display_name(name) if is_valid_display_name(name) else None
        user, _ = self._find_or_create_user(normalized, display_name)

        # Priors must be unusable before the new token exists
        superseded = self._tokens.invalidate_all_unused(normalized)
        if superseded:
            self._security_logger.log(
                SecurityEvent.MAGIC_LINK_SUPERSEDED,
                email=normalized,
                user_id=user.id,
                details={"count": superseded},
            )

        raw_token = tokens.generate_token()
        self._tokens.create(
            token_hash=tokens.hash_token(raw_token),
            email=normalized,
            expires_at=tokens.expiry_at(self._config.magic_link_expiry_minutes),
        )

        self._security_logger.log(
            SecurityEvent.MAGIC_LINK_REQUESTED,
            email=normalized,
            user_id=user.id,
            ip_address=ip_address,
            user_agent=user_agent,
        )

        self._email.send_magic_link(normalized, raw_token, display_name or user.name)

        self._security_logger.log(
            SecurityEvent.MAGIC_LINK_SENT,
            email=normalized,
            user_id=user.id,
            ip_address=ip_address,
        )

        return MagicLinkResult(success=True, message=MAGIC_LINK_SENT_MESSAGE)

    # Verification

    def verify_and_consume(
        self,
        token: Any,
        response: Response,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> VerificationResult:
        """Consume a magic link token and start a session.

        Flow:
        1. Reject empty input
        2. Look up by hash
        3. Reject used, then expired
        4. Atomically mark used (only one concurrent caller wins)
        5. Find or create user, welcome new users
        6. Record login, sign session, write cookie

        Raises:
            ValidationError: Token missing or not a string.
            InvalidTokenError: Unknown token.
            TokenUsedError: Consumed, superseded, or lost a concurrent race.
            TokenExpiredError: Past expiry.
        """
        if not is_non_empty_string(token):
            raise ValidationError("Token is required")

        record = self._tokens.find_by_hash(tokens.hash_token(token.strip()))

        if record is None:
            self._security_logger.log(
                SecurityEvent.MAGIC_LINK_FAILED,
                ip_address=ip_address,
                user_agent=user_agent,
                details={"reason": "token_not_found"},
            )
            raise InvalidTokenError("Invalid or expired token")

        if record.used:
            self._security_logger.log(
                SecurityEvent.MAGIC_LINK_ALREADY_USED,
                email=record.email,
                ip_address=ip_address,
                user_agent=user_agent,
            )
            raise TokenUsedError("Token has already been used")

        if tokens.is_expired(record.expires_at):
            self._security_logger.log(
                SecurityEvent.MAGIC_LINK_EXPIRED,
                email=record.email,
                ip_address=ip_address,
                user_agent=user_agent,
            )
            raise TokenExpiredError("Token has expired")

        if not self._tokens.mark_used_if_unused(record.id):
            self._security_logger.log(
                SecurityEvent.MAGIC_LINK_ALREADY_USED,
                email=record.email,
                ip_address=ip_address,
                user_agent=user_agent,
                details={"reason": "concurrent_consume"},
            )
            raise TokenUsedError("Token has already been used")

        user, created = self._find_or_create_user(record.email)
        # Issuance creates the row, so a first completed login is the real signal
        is_new_user = created or user.last_login_at is None

        if is_new_user:
            self._send_welcome(user)

        self._users.record_login(user.id)
        user = self._users.find_by_id(user.id) or user

        self._start_session(response, user)

        self._security_logger.log(
            SecurityEvent.MAGIC_LINK_VERIFIED,
            email=user.email,
            user_id=user.id,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        self._security_logger.log(
            SecurityEvent.SESSION_CREATED,
            email=user.email,
            user_id=user.id,
            ip_address=ip_address,
            user_agent=user_agent,
        )

        return VerificationResult(user=user, is_new_user=is_new_user)

    def _send_welcome(self, user: User) -> None:
        try:
            self._email.send_welcome(user.email, user.name or "there")
        except EmailDeliveryError as e:
            self._security_logger.log(
                SecurityEvent.WELCOME_EMAIL_FAILED,
                email=user.email,
                user_id=user.id,
                details={"error": str(e)},
            )
            if self._config.welcome_email_failure_fatal:
                raise

    def _start_session(self, response: Response, user: User) -> str:
        credential = self._sessions.sign(user.id, user.email)
        self._cookies.write(response, credential)
        return credential

    # Sessions

    def current_session(self, request: Request) -> SessionClaims | None:
        """Claims for the request's session cookie, or None. Never raises for bad input."""
        credential = self._cookies.read(request)
        if credential is None:
            return None

        claims = self._sessions.verify(credential)
        if claims is None:
            # Unverified claims are attacker-controlled: details only
            unverified = self._sessions.decode_unsafe(credential)
            details = (
                {"unverified_sub": unverified.user_id, "unverified_email": unverified.email}
                if unverified
                else {"reason": "undecodable"}
            )
            self._security_logger.log(
                SecurityEvent.SESSION_REJECTED,
                ip_address=ip_or_none(request.client.host) if request.client else None,
                details=details,
            )
        return claims

    def require_session(self, request: Request) -> SessionClaims:
        """
        Raises:
            UnauthenticatedError: No valid session cookie.
        """
        claims = self.current_session(request)
        if claims is None:
            raise UnauthenticatedError("Authentication required")
        return claims

    def require_user(self, request: Request) -> User:
        """Signed-in user, re-read from the store.

        Raises:
            UnauthenticatedError: No session, malformed subject, or user gone.
        """
        claims = self.require_session(request)
        if not is_valid_opaque_id(claims.user_id):
            raise UnauthenticatedError("Authentication required")

        user = self._users.find_by_id(claims.user_id)
        if user is None:
            raise UnauthenticatedError("Authentication required")
        return user

    def refresh_if_needed(
        self,
        request: Request,
        response: Response,
        user: User,
        threshold_minutes: int | None = None,
    ) -> str | None:
        """Re-issue the session cookie if it is close to expiry.

        Returns the new credential, or None when nothing changed.
        """
        credential = self._cookies.read(request)
        if credential is None:
            return None

        threshold = threshold_minutes or self._config.session_refresh_threshold_minutes
        if not self._sessions.is_expiring_soon(credential, threshold):
            return None

        refreshed = self._start_session(response, user)
        self._security_logger.log(SecurityEvent.SESSION_EXTENDED, email=user.email, user_id=user.id)
        return refreshed

    def logout(self, response: Response, request: Request | None = None) -> None:
        """Clear the session cookie. Safe without a session."""
        claims = self.current_session(request) if request is not None else None
        self._cookies.clear(response)
        self._security_logger.log(
            SecurityEvent.SESSION_REVOKED,
            email=claims.email if claims else None,
            user_id=claims.user_id if claims else None,
        )

    # Profile

    def get_session_user(self, request: Request, response: Response | None = None) -> User | None:
        """The signed-in user or None. Never raises for a missing or bad session; refreshes opportunistically."""
        try:
            user = self.require_user(request)
        except UnauthenticatedError:
            return None

        if response is not None:
            self.refresh_if_needed(request, response, user)
        return user

    def update_current_user(self, request: Request, changes: dict[str, Any]) -> User:
        """Apply a profile patch for the signed-in user.

        Raises:
            UnauthenticatedError: No valid session.
            ValidationError: Empty patch, or invalid name/email.
            EmailInUseError: Email belongs to another account.
        """
        user = self.require_user(request)
        patch = {k: v for k, v in clean_user_patch(changes).items() if v is not None}
        # Billing linkage is not user-editable
        patch.pop("billing_customer_id", None)

        if "name" in patch:
            if not is_valid_display_name(patch["name"]):
                raise ValidationError("Name must be between 2 and 100 characters")
            patch["name"] = normalize_display_name(patch["name"])

        if "email" in patch:
            email = normalize_and_validate_email(patch["email"])
            if email is None:
                raise ValidationError("Valid email is required")
            existing = self._users.find_by_email(email)
            if existing is not None and existing.id != user.id:
                raise EmailInUseError("Email is already in use")
            patch["email"] = email

        if not patch:
            raise ValidationError("No valid fields to update")

        try:
            updated = self._users.update(user.id, patch)
        except ValueError:
            raise EmailInUseError("Email is already in use")
        if updated is None:
            raise UnauthenticatedError("Authentication required")

        self._security_logger.log(
            SecurityEvent.USER_UPDATED,
            email=updated.email,
            user_id=updated.id,
            details={"fields": sorted(patch)},
        )
        return updated
