"""Session credential signing and verification.

Sessions are stateless HS256 JWTs carrying sub/email/iat/exp. Nothing is
stored server-side; the signature and exp claim are the whole trust check.
"""

import logging
from datetime import datetime, timedelta, timezone

import jwt

from auth.exceptions import ConfigurationError
from auth.types import SessionClaims
from utils.timezone import now_utc

logger = logging.getLogger(__name__)

_ALGORITHM = "HS256"
_REQUIRED_CLAIMS = ["sub", "email", "iat", "exp"]


def _claims_from_payload(payload: dict) -> SessionClaims | None:
    try:
        return SessionClaims(
            user_id=str(payload["sub"]),
            email=str(payload["email"]),
            issued_at=datetime.fromtimestamp(int(payload["iat"]), tz=timezone.utc),
            expires_at=datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc),
        )
    except (KeyError, TypeError, ValueError, OverflowError):
        return None


class SessionCodec:
    """Signs and verifies session credentials.

    The signing secret is injected at startup. A missing secret is only an
    error once something tries to sign or verify, so the app can still boot
    (health checks, docs) without it.
    """

    def __init__(self, secret: str | None, expiry: timedelta = timedelta(days=7)):
        self._secret = secret
        self._expiry = expiry

    def _require_secret(self) -> str:
        if not self._secret:
            raise ConfigurationError(
                "Session signing secret is not configured. Set session/jwt_secret in Vault."
            )
        return self._secret

    @property
    def expiry(self) -> timedelta:
        return self._expiry

    def sign(self, user_id: str, email: str, expires_in: timedelta | None = None) -> str:
        """Create a signed credential for user_id/email."""
        secret = self._require_secret()
        now = now_utc()
        payload = {
            "sub": user_id,
            "email": email,
            "iat": now,
            "exp": now + (expires_in or self._expiry),
        }
        return jwt.encode(payload, secret, algorithm=_ALGORITHM)

    def verify(self, token: str) -> SessionClaims | None:
        """Claims if signature and expiry check out, else None.

        Callers get no hint about why a credential was rejected.
        """
        secret = self._require_secret()
        if not isinstance(token, str) or not token:
            return None
        try:
            payload = jwt.decode(
                token,
                secret,
                algorithms=[_ALGORITHM],
                options={"require": _REQUIRED_CLAIMS},
            )
        except jwt.PyJWTError:
            return None
        return _claims_from_payload(payload)

    def decode_unsafe(self, token: str) -> SessionClaims | None:
        """Decode WITHOUT checking the signature.

        Diagnostic logging only. Never use the result to authorize anything.
        """
        if not isinstance(token, str) or not token:
            return None
        try:
            payload = jwt.decode(
                token,
                options={"verify_signature": False, "verify_exp": False},
                algorithms=[_ALGORITHM],
            )
        except jwt.PyJWTError:
            return None
        return _claims_from_payload(payload)

    def expires_at(self, token: str) -> datetime | None:
        claims = self.decode_unsafe(token)
        return claims.expires_at if claims else None

    def is_expiring_soon(self, token: str, threshold_minutes: int = 60) -> bool:
        """True if fewer than threshold_minutes remain. Unparsable counts as expiring."""
        expires_at = self.expires_at(token)
        if expires_at is None:
            return True
        return expires_at - now_utc() < timedelta(minutes=threshold_minutes)
